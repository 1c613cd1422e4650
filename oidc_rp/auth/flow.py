"""
Authorization code flow and session lifecycle.

This module implements the relying-party side of the flow:

1. ``build_authorization_url``: the redirect sent to the provider at login
2. ``handle_callback``: validates the authorization response, exchanges the
   code for tokens and builds the session
3. ``SessionGate``: decides, for every incoming request, whether the session
   cookie is kept, refreshed or dropped
"""

import enum
import hmac
import logging
from dataclasses import dataclass
from typing import Mapping, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from oidc_rp.auth.context import AuthContext
from oidc_rp.auth.pkce import CODE_CHALLENGE_METHOD
from oidc_rp.auth.session import create_session, decode_session, encode_session
from oidc_rp.auth.utils import mask_token, verify_id_token
from oidc_rp.errors import (
    AuthorizationDeniedError,
    CallbackValidationError,
    CodeExchangeError,
    IdTokenVerificationError,
    MissingRefreshTokenError,
    RefreshGrantError,
    SessionVerificationError,
    StateMismatchError,
)
from oidc_rp.models import ClientConfig, ProviderMetadata, Session

logger = logging.getLogger(__name__)

DEFAULT_SCOPE = "openid offline_access"


# =============================================================================
# Authorization Redirect
# =============================================================================

def build_authorization_url(
    metadata: ProviderMetadata,
    client: ClientConfig,
    *,
    code_challenge: str,
    state: str,
    redirect_uri: str,
    scope: str = DEFAULT_SCOPE,
) -> str:
    """
    Build the provider authorization URL for a login attempt.

    Query parameters already present on the authorization endpoint are
    preserved; the flow parameters are appended after them.

    Args:
        metadata: Resolved provider metadata
        client: Client credentials (only the client_id is sent)
        code_challenge: S256 challenge of the login's code verifier
        state: Anti-CSRF state of the login
        redirect_uri: Registered redirect URI
        scope: Space-separated scopes

    Returns:
        Absolute authorization URL
    """
    parts = urlsplit(metadata.authorization_endpoint)
    params = parse_qsl(parts.query, keep_blank_values=True)
    params.extend(
        [
            ("client_id", client.client_id),
            ("code_challenge", code_challenge),
            ("code_challenge_method", CODE_CHALLENGE_METHOD),
            ("redirect_uri", redirect_uri),
            ("response_type", "code"),
            ("scope", scope),
            ("state", state),
        ]
    )
    return urlunsplit(parts._replace(query=urlencode(params)))


# =============================================================================
# Callback Handling
# =============================================================================

async def handle_callback(
    ctx: AuthContext,
    *,
    params: Mapping[str, str],
    stored_state: Optional[str],
    code_verifier: Optional[str],
) -> Session:
    """
    Validate an authorization response and turn it into a session.

    This function:
    1. Rejects provider error responses
    2. Checks the ``iss`` parameter against the provider metadata (RFC 9207)
    3. Compares the returned state with the one issued at login
    4. Exchanges the code and verifier for tokens
    5. Requires a refresh token
    6. Verifies the id_token when one is returned

    Args:
        ctx: Authentication context
        params: Callback query parameters
        stored_state: State read from the login cookie
        code_verifier: Verifier read from the login cookie

    Returns:
        A new Session valid for SESSION_TTL_SECONDS

    Raises:
        AuthorizationDeniedError: If the provider returned an error
        CallbackValidationError: If iss, code or verifier are invalid
        StateMismatchError: If the state does not match
        DiscoveryError: If provider metadata is unavailable
        CodeExchangeError: If the code exchange or id_token verification fails
        MissingRefreshTokenError: If no refresh token was issued
    """
    error = params.get("error")
    if error:
        logger.warning("Provider returned an authorization error", extra={"oauth_error": error})
        raise AuthorizationDeniedError(error, params.get("error_description"))

    metadata = await ctx.metadata.get_metadata()

    iss = params.get("iss")
    if iss is not None:
        if iss.rstrip("/") != metadata.issuer.rstrip("/"):
            logger.warning("Callback issuer mismatch", extra={"received": iss})
            raise CallbackValidationError("Authorization response issuer does not match the provider")
    elif metadata.authorization_response_iss_parameter_supported:
        raise CallbackValidationError("Authorization response is missing the iss parameter")

    state = params.get("state")
    if not state or not stored_state or not hmac.compare_digest(
        state.encode("utf-8"), stored_state.encode("utf-8")
    ):
        logger.warning(
            "State mismatch on callback",
            extra={"has_state": bool(state), "has_stored_state": bool(stored_state)},
        )
        raise StateMismatchError()

    code = params.get("code")
    if not code:
        raise CallbackValidationError("Authorization response is missing the code parameter")
    if not code_verifier:
        raise CallbackValidationError("Login attempt has no code verifier")

    tokens = await ctx.oauth.exchange_code(
        metadata,
        ctx.client,
        code=code,
        redirect_uri=ctx.settings.OIDC_REDIRECT_URI,
        code_verifier=code_verifier,
    )

    if not tokens.refresh_token:
        logger.error(
            "Token response has no refresh token; check that offline_access is granted to the client",
            extra={"client_id": ctx.client.client_id},
        )
        raise MissingRefreshTokenError()

    sub = None
    if ctx.settings.VERIFY_ID_TOKEN and tokens.id_token and metadata.jwks_uri and ctx.jwks is not None:
        try:
            claims = await verify_id_token(
                tokens.id_token,
                metadata=metadata,
                client_id=ctx.client.client_id,
                jwks_cache=ctx.jwks,
            )
        except IdTokenVerificationError as e:
            logger.warning(f"ID token rejected: {e}")
            raise CodeExchangeError(f"ID token verification failed: {e}") from e
        sub = claims["sub"]

    session = create_session(
        tokens.refresh_token,
        now=ctx.now(),
        ttl_seconds=ctx.settings.SESSION_TTL_SECONDS,
        sub=sub,
    )
    logger.info(
        "Login completed",
        extra={"sub": sub, "expire": session.expire, "refresh_token": mask_token(tokens.refresh_token)},
    )
    return session


# =============================================================================
# Session Gate
# =============================================================================

class CookieAction(str, enum.Enum):
    """What the gate asks the response to do with the session cookie."""

    KEEP = "keep"
    SET = "set"
    DELETE = "delete"


@dataclass(frozen=True)
class GateOutcome:
    """Result of the session gate for one request."""

    session: Optional[Session]
    cookie_action: CookieAction = CookieAction.KEEP
    token: Optional[str] = None


class SessionGate:
    """
    Pre-request session check.

    States of the incoming cookie and their outcome:
        - absent: no session, cookie untouched
        - malformed or badly signed: no session, cookie deleted
        - valid (``expire`` in the future): session, cookie untouched
        - expired: exactly one refresh-token grant; on success the session is
          re-issued and the cookie overwritten, on failure the cookie is
          deleted and the request continues without a session

    With ``refresh=False`` an expired session is returned as-is and the
    cookie left untouched; no provider call is made.

    A DiscoveryError raised while refreshing propagates to the caller.
    """

    def __init__(self, ctx: AuthContext):
        self.ctx = ctx

    async def resolve(self, token: Optional[str], refresh: bool = True) -> GateOutcome:
        if not token:
            return GateOutcome(session=None)

        settings = self.ctx.settings
        try:
            session = decode_session(
                token,
                settings.SESSION_JWT_SECRET,
                algorithms=[settings.SESSION_JWT_ALGORITHM],
            )
        except SessionVerificationError as e:
            logger.info(f"Dropping session cookie: {e}")
            return GateOutcome(session=None, cookie_action=CookieAction.DELETE)

        if not refresh or not session.is_expired(self.ctx.now()):
            return GateOutcome(session=session)

        try:
            refreshed = await self.refresh(session)
        except RefreshGrantError as e:
            logger.warning(
                "Session refresh failed",
                extra={"oauth_error": e.oauth_error, "status_code": e.status, "sub": session.sub},
            )
            return GateOutcome(session=None, cookie_action=CookieAction.DELETE)

        return GateOutcome(
            session=refreshed,
            cookie_action=CookieAction.SET,
            token=encode_session(
                refreshed,
                settings.SESSION_JWT_SECRET,
                algorithm=settings.SESSION_JWT_ALGORITHM,
            ),
        )

    async def refresh(self, session: Session) -> Session:
        """
        Redeem the session's refresh token and build the next session.

        The prior refresh token is kept when the provider does not rotate it.

        Raises:
            RefreshGrantError: If the grant is rejected or the call fails
            DiscoveryError: If provider metadata is unavailable
        """
        metadata = await self.ctx.metadata.get_metadata()
        tokens = await self.ctx.oauth.refresh(metadata, self.ctx.client, session.refresh_token)
        refreshed = create_session(
            tokens.refresh_token or session.refresh_token,
            now=self.ctx.now(),
            ttl_seconds=self.ctx.settings.SESSION_TTL_SECONDS,
            sub=session.sub,
        )
        logger.info(
            "Session refreshed",
            extra={"sub": session.sub, "rotated": tokens.refresh_token is not None, "expire": refreshed.expire},
        )
        return refreshed


__all__ = [
    "DEFAULT_SCOPE",
    "build_authorization_url",
    "handle_callback",
    "CookieAction",
    "GateOutcome",
    "SessionGate",
]
