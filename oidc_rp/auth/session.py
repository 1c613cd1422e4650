"""
JWT Session Management Module
==============================

Encodes the session state (refresh token, expiry, subject) into a signed,
self-contained JWT kept in the ``session_jwt`` cookie, and decodes it on
every request. No session state is held server-side.

The standard ``exp`` claim is not used: an expired session must
still decode so the refresh token inside it can be redeemed. Expiry is the
custom ``expire`` claim, checked by the session gate.
"""

import base64
import binascii
from typing import Any, Dict, Optional, Sequence

import jwt
from fastapi import HTTPException, Request, status
from jwt.exceptions import InvalidTokenError
from pydantic import ValidationError

from oidc_rp.errors import SessionVerificationError
from oidc_rp.models import Session


SESSION_COOKIE = "session_jwt"


# =============================================================================
# Session Creation
# =============================================================================

def create_session(
    refresh_token: str,
    *,
    now: int,
    ttl_seconds: int,
    sub: Optional[str] = None,
) -> Session:
    """
    Build a session valid for ``ttl_seconds`` from ``now``.

    Args:
        refresh_token: Refresh token to carry
        now: Current UNIX time in seconds
        ttl_seconds: Session lifetime
        sub: Subject of the authenticated user, if known

    Returns:
        New Session
    """
    return Session(refresh_token=refresh_token, expire=now + ttl_seconds, sub=sub)


# =============================================================================
# Codec
# =============================================================================

def encode_session(session: Session, secret: str, algorithm: str = "HS256") -> str:
    """
    Sign a session into a compact JWT.

    Args:
        session: Session to encode
        secret: HMAC signing secret
        algorithm: HS256, HS384 or HS512

    Returns:
        Encoded JWT string
    """
    payload: Dict[str, Any] = {
        "refresh_token": session.refresh_token,
        "expire": session.expire,
    }
    if session.sub is not None:
        payload["sub"] = session.sub
    return jwt.encode(payload, secret, algorithm=algorithm)


def decode_session(
    token: str,
    secret: str,
    algorithms: Sequence[str] = ("HS256",),
) -> Session:
    """
    Verify and decode a session JWT.

    Args:
        token: JWT string from the session cookie
        secret: HMAC signing secret
        algorithms: Accepted signing algorithms

    Returns:
        The decoded Session

    Raises:
        SessionVerificationError: If the token is malformed, its signature
            does not verify or its claims are missing or ill-typed
    """
    if not token:
        raise SessionVerificationError("Empty session token")

    if not _is_canonical(token):
        raise SessionVerificationError("Session token is not canonically encoded")

    try:
        claims = jwt.decode(
            token,
            secret,
            algorithms=list(algorithms),
            options={
                "verify_signature": True,
                "require": ["refresh_token", "expire"],
            },
        )
    except InvalidTokenError as e:
        raise SessionVerificationError(f"Invalid session token: {e}") from e

    try:
        return Session.model_validate(
            {
                "refresh_token": claims["refresh_token"],
                "expire": claims["expire"],
                "sub": claims.get("sub"),
            }
        )
    except ValidationError as e:
        raise SessionVerificationError("Session token has invalid claims") from e


def _is_canonical(token: str) -> bool:
    """
    Return True if every segment is canonical unpadded base64url.

    Base64 tolerates altered trailing bits in the last character of a
    segment; re-encoding catches those so any modified byte is rejected.
    """
    segments = token.split(".")
    if len(segments) != 3:
        return False
    for segment in segments:
        try:
            raw = base64.urlsafe_b64decode(segment + "=" * (-len(segment) % 4))
        except (binascii.Error, ValueError):
            return False
        if base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii") != segment:
            return False
    return True


# =============================================================================
# FastAPI Dependencies
# =============================================================================

async def get_optional_session(request: Request) -> Optional[Session]:
    """
    FastAPI dependency returning the session resolved by the session gate.

    Usage:
        @app.get("/optional-auth")
        async def route(session: Optional[Session] = Depends(get_optional_session)):
            ...
    """
    return getattr(request.state, "session", None)


async def require_session(request: Request) -> Session:
    """
    FastAPI dependency for routes that need an authenticated user.

    Raises:
        HTTPException: 401 if the request carries no valid session
    """
    session = getattr(request.state, "session", None)
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )
    return session


__all__ = [
    "SESSION_COOKIE",
    "create_session",
    "encode_session",
    "decode_session",
    "get_optional_session",
    "require_session",
]
