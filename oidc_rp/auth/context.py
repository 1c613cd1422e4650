"""
Per-process authentication context.

Every component of the relying-party flow receives its collaborators through
an ``AuthContext`` instead of module-level globals: the settings, the client
credentials, the metadata resolver, the token endpoint client and the clock.
The running application keeps one on ``app.state.auth_context``.
"""

import time
from dataclasses import dataclass
from typing import Callable, Optional

import httpx
from fastapi import HTTPException, Request, status

from oidc_rp.auth.cookies import CookieStore
from oidc_rp.auth.provider import DiscoveryResolver, MetadataResolver, OAuthClient, OIDCClient
from oidc_rp.auth.utils import JWKSCache
from oidc_rp.config import Settings
from oidc_rp.models import ClientConfig


@dataclass
class AuthContext:
    """Collaborators shared by login, callback, the session gate and logout."""

    settings: Settings
    client: ClientConfig
    metadata: MetadataResolver
    oauth: OAuthClient
    jwks: Optional[JWKSCache] = None
    clock: Callable[[], float] = time.time
    cookies: Optional[CookieStore] = None

    def __post_init__(self) -> None:
        if self.cookies is None:
            self.cookies = CookieStore.from_settings(self.settings)

    def now(self) -> int:
        """Current UNIX time in whole seconds."""
        return int(self.clock())

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        http_client: httpx.AsyncClient,
        clock: Callable[[], float] = time.time,
    ) -> "AuthContext":
        """
        Build the production context over a shared httpx client.

        Args:
            settings: Loaded application settings
            http_client: Client used for discovery, JWKS and token calls
            clock: Time source, injectable for tests

        Returns:
            AuthContext wired with DiscoveryResolver, OIDCClient and JWKSCache
        """
        timeout = settings.HTTP_TIMEOUT_SECONDS
        return cls(
            settings=settings,
            client=ClientConfig.from_settings(settings),
            metadata=DiscoveryResolver(
                settings.OIDC_ISSUER,
                http_client,
                cache_seconds=settings.DISCOVERY_CACHE_SECONDS,
                timeout=timeout,
                clock=clock,
            ),
            oauth=OIDCClient(http_client, timeout=timeout),
            jwks=JWKSCache(
                http_client,
                cache_seconds=settings.JWKS_CACHE_SECONDS,
                timeout=timeout,
                clock=clock,
            ),
            clock=clock,
        )


def get_auth_context(request: Request) -> AuthContext:
    """
    FastAPI dependency returning the application's AuthContext.

    Raises:
        HTTPException: 503 if the application has not been initialised
    """
    ctx = getattr(request.app.state, "auth_context", None)
    if ctx is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Authentication is not initialised",
        )
    return ctx


__all__ = ["AuthContext", "get_auth_context"]
