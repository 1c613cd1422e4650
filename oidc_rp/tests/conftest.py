"""
Shared fixtures for the relying-party gateway tests.

Provider calls are replaced by AsyncMock capabilities injected through
``AuthContext``; time is a fixed, adjustable clock.
"""

from typing import Optional
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from oidc_rp.auth.context import AuthContext
from oidc_rp.auth.session import encode_session
from oidc_rp.config import Settings
from oidc_rp.main import create_app
from oidc_rp.models import ClientConfig, ProviderMetadata, Session

from helpers import ISSUER, NOW, FakeClock, make_settings


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def metadata() -> ProviderMetadata:
    return ProviderMetadata(
        issuer=ISSUER,
        authorization_endpoint=f"{ISSUER}/authorize",
        token_endpoint=f"{ISSUER}/token",
        jwks_uri=f"{ISSUER}/jwks",
        revocation_endpoint=f"{ISSUER}/revoke",
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def resolver(metadata):
    """Metadata resolver returning the fixture metadata."""
    resolver = AsyncMock()
    resolver.get_metadata.return_value = metadata
    return resolver


@pytest.fixture
def oauth():
    """Token endpoint client; tests configure each call's result."""
    return AsyncMock()


@pytest.fixture
def ctx(settings, resolver, oauth, clock) -> AuthContext:
    return AuthContext(
        settings=settings,
        client=ClientConfig.from_settings(settings),
        metadata=resolver,
        oauth=oauth,
        clock=clock,
    )


@pytest.fixture
def app(settings, ctx):
    return create_app(settings=settings, context=ctx)


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app)


@pytest.fixture
def make_session_token(settings):
    """Encode a session for the fixture settings."""

    def _make(refresh_token: str = "rt-initial", expire: int = NOW + 600, sub: Optional[str] = "user-1") -> str:
        session = Session(refresh_token=refresh_token, expire=expire, sub=sub)
        return encode_session(session, settings.SESSION_JWT_SECRET, settings.SESSION_JWT_ALGORITHM)

    return _make
