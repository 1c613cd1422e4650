"""
Data Models Module

Pydantic models shared by the relying-party flow:
- Provider models (discovery metadata, client credentials)
- Login models (PKCE verifier/challenge and state for one attempt)
- Token models (token endpoint response)
- Session models (the state carried inside the signed session cookie)
"""

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


# ============================================================================
# Provider Models
# ============================================================================

class ProviderMetadata(BaseModel):
    """Authorization server metadata resolved through OIDC discovery."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    issuer: str = Field(..., min_length=1, description="Issuer identifier")
    authorization_endpoint: str = Field(..., min_length=1, description="Authorization endpoint URL")
    token_endpoint: str = Field(..., min_length=1, description="Token endpoint URL")
    jwks_uri: Optional[str] = Field(None, description="JWKS document URL")
    revocation_endpoint: Optional[str] = Field(None, description="RFC 7009 revocation endpoint")
    end_session_endpoint: Optional[str] = Field(None, description="RP-initiated logout endpoint")
    authorization_response_iss_parameter_supported: bool = Field(
        False, description="Provider returns iss on the authorization response (RFC 9207)"
    )


class ClientConfig(BaseModel):
    """Client credentials used against the token endpoint."""

    model_config = ConfigDict(frozen=True)

    client_id: str = Field(..., min_length=1)
    client_secret: str = Field(..., min_length=1, repr=False)
    token_endpoint_auth_method: Literal["client_secret_basic", "client_secret_post"] = "client_secret_basic"

    @classmethod
    def from_settings(cls, settings) -> "ClientConfig":
        return cls(
            client_id=settings.OIDC_CLIENT_ID,
            client_secret=settings.OIDC_CLIENT_SECRET,
            token_endpoint_auth_method=settings.TOKEN_ENDPOINT_AUTH_METHOD,
        )


# ============================================================================
# Login Models
# ============================================================================

class LoginAttempt(BaseModel):
    """PKCE pair and anti-CSRF state issued for a single /login."""

    model_config = ConfigDict(frozen=True)

    code_verifier: str = Field(..., min_length=43, max_length=128, repr=False)
    code_challenge: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    code_challenge_method: Literal["S256"] = "S256"


# ============================================================================
# Token Models
# ============================================================================

class TokenResult(BaseModel):
    """Successful token endpoint response. The access token is never persisted."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    access_token: str = Field(..., min_length=1, repr=False)
    token_type: str = Field(default="Bearer")
    expires_in: Optional[int] = None
    refresh_token: Optional[str] = Field(None, repr=False)
    id_token: Optional[str] = Field(None, repr=False)
    scope: Optional[str] = None


# ============================================================================
# Session Models
# ============================================================================

class Session(BaseModel):
    """
    State carried inside the signed session cookie.

    ``expire`` is a UNIX timestamp in seconds. ``sub`` is the subject of the
    id_token verified at login, if any, and survives refresh rotations.
    """

    model_config = ConfigDict(frozen=True)

    refresh_token: str = Field(..., min_length=1, repr=False)
    expire: int = Field(..., strict=True)
    sub: Optional[str] = None

    def is_expired(self, now: int) -> bool:
        """Return True once ``now`` has reached ``expire``."""
        return self.expire <= now


# ============================================================================
# Response Models
# ============================================================================

class IdentityResponse(BaseModel):
    """Identity exposed to the client for the current request."""

    authenticated: bool
    sub: Optional[str] = None
    expire: Optional[int] = None


class ErrorResponse(BaseModel):
    """Standardized error response model."""

    error: str = Field(..., description="Error type or code")
    message: str = Field(..., description="Human-readable error message")
