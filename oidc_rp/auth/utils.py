"""
Authentication utilities for ID token verification and JWKS management.

This module handles:
- Fetching and caching the provider JWKS (JSON Web Key Set)
- Verifying ID tokens returned by the token endpoint
- Masking token values for log correlation
"""

import logging
import time
from typing import Any, Callable, Dict, Optional

import httpx
from jose import jwk, jwt
from jose.exceptions import JOSEError, JWTError

from oidc_rp.errors import IdTokenVerificationError
from oidc_rp.models import ProviderMetadata

logger = logging.getLogger(__name__)

ALLOWED_ID_TOKEN_ALGORITHMS = ("RS256", "RS384", "RS512", "ES256", "ES384", "ES512")


# =============================================================================
# JWKS Cache
# =============================================================================

class JWKSCache:
    """Per-process JWKS cache keyed by ``jwks_uri``."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        *,
        cache_seconds: int = 3600,
        timeout: float = 10.0,
        clock: Callable[[], float] = time.time,
    ):
        self._http = http_client
        self._cache_seconds = cache_seconds
        self._timeout = timeout
        self._clock = clock
        self._entries: Dict[str, Dict[str, Any]] = {}
        self._fetched_at: Dict[str, float] = {}

    async def get_keys(self, jwks_uri: str, force_refresh: bool = False) -> Dict[str, Any]:
        """
        Fetch JWKS with caching.

        Args:
            jwks_uri: JWKS document URL from the provider metadata
            force_refresh: If True, bypass cache and fetch fresh JWKS

        Returns:
            JWKS document containing keys

        Raises:
            IdTokenVerificationError: If the endpoint is unreachable or the
                document has no keys
        """
        current_time = self._clock()
        cached = self._entries.get(jwks_uri)
        if (
            not force_refresh
            and cached is not None
            and (current_time - self._fetched_at[jwks_uri]) < self._cache_seconds
        ):
            return cached

        try:
            response = await self._http.get(jwks_uri, timeout=self._timeout)
            response.raise_for_status()
            jwks_data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"JWKS fetch failed: {e}", extra={"url": jwks_uri})
            raise IdTokenVerificationError("Unable to fetch provider signing keys") from e

        if not isinstance(jwks_data, dict) or "keys" not in jwks_data:
            raise IdTokenVerificationError("Invalid JWKS response: missing 'keys' field")

        self._entries[jwks_uri] = jwks_data
        self._fetched_at[jwks_uri] = current_time
        return jwks_data


def get_signing_key(token: str, jwks: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Extract the public key from JWKS that matches the token's kid.

    A token without ``kid`` matches only when the set holds a single key.

    Raises:
        IdTokenVerificationError: If token header is malformed
    """
    try:
        unverified_header = jwt.get_unverified_header(token)
    except JWTError as e:
        raise IdTokenVerificationError(f"Failed to decode token header: {e}") from e

    keys = jwks.get("keys", [])
    kid = unverified_header.get("kid")
    if not kid:
        return keys[0] if len(keys) == 1 else None

    for key in keys:
        if key.get("kid") == kid:
            return key

    return None


async def verify_id_token(
    id_token: str,
    *,
    metadata: ProviderMetadata,
    client_id: str,
    jwks_cache: JWKSCache,
    leeway: int = 10,
) -> Dict[str, Any]:
    """
    Verify and decode an ID token returned by the token endpoint.

    1. Fetches JWKS and finds the key matching the token's kid
    2. Verifies the token signature
    3. Validates iss, aud, exp, iat and nbf with clock-skew leeway
    4. Requires a string ``sub`` claim

    Args:
        id_token: JWT ID token string
        metadata: Provider metadata (issuer and jwks_uri)
        client_id: Expected audience
        jwks_cache: Shared JWKS cache
        leeway: Clock skew tolerance in seconds

    Returns:
        Dictionary of verified token claims

    Raises:
        IdTokenVerificationError: If the token cannot be verified
    """
    if not metadata.jwks_uri:
        raise IdTokenVerificationError("Provider metadata has no jwks_uri")

    try:
        algorithm = jwt.get_unverified_header(id_token).get("alg")
    except JWTError as e:
        raise IdTokenVerificationError(f"Failed to decode token header: {e}") from e

    if algorithm not in ALLOWED_ID_TOKEN_ALGORITHMS:
        raise IdTokenVerificationError(f"Unsupported ID token algorithm: {algorithm}")

    jwks = await jwks_cache.get_keys(metadata.jwks_uri)
    signing_key = get_signing_key(id_token, jwks)
    if not signing_key:
        # Keys may have rotated since the last fetch
        jwks = await jwks_cache.get_keys(metadata.jwks_uri, force_refresh=True)
        signing_key = get_signing_key(id_token, jwks)
        if not signing_key:
            raise IdTokenVerificationError("Unable to find matching signing key in JWKS")

    try:
        public_key = jwk.construct(signing_key, algorithm=algorithm)
        claims = jwt.decode(
            id_token,
            public_key.to_pem().decode("utf-8"),
            algorithms=[algorithm],
            audience=client_id,
            issuer=metadata.issuer,
            options={
                "verify_signature": True,
                "verify_aud": True,
                "verify_iat": True,
                "verify_exp": True,
                "verify_nbf": True,
                "verify_iss": True,
                "verify_sub": True,
                "verify_at_hash": False,
                "leeway": leeway,
            },
        )
    except JOSEError as e:
        raise IdTokenVerificationError(f"ID token verification failed: {e}") from e

    if not isinstance(claims.get("sub"), str) or not claims["sub"]:
        raise IdTokenVerificationError("ID token has no subject")

    return claims


# =============================================================================
# Logging Helpers
# =============================================================================

def mask_token(value: Optional[str], keep: int = 6) -> str:
    """Return a short prefix of a secret value for log correlation."""
    if not value:
        return "<none>"
    return f"{value[:keep]}****"
