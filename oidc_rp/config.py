"""
Configuration module for the OIDC Relying-Party Gateway.

This module uses Pydantic Settings to load and validate environment variables
for the OpenID provider, client credentials, session JWT signing, cookie
attributes and outbound HTTP behaviour.

Environment variables are loaded from .env file or system environment.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Issuer, client credentials, redirect URI and the session signing secret
    are required; a missing value fails startup with a ValidationError.
    """

    # =========================================================================
    # OpenID Provider / Client Configuration
    # =========================================================================

    OIDC_ISSUER: str = Field(
        ...,
        description="Issuer identifier of the OpenID provider (e.g., https://idp.example.com)",
        min_length=1,
    )

    OIDC_CLIENT_ID: str = Field(
        ...,
        description="Client ID registered at the provider",
        min_length=1,
    )

    OIDC_CLIENT_SECRET: str = Field(
        ...,
        description="Client secret registered at the provider",
        min_length=1,
    )

    OIDC_REDIRECT_URI: str = Field(
        ...,
        description="Redirect URI registered at the provider (e.g., https://app.example.com/callback)",
        min_length=1,
    )

    OIDC_SCOPE: str = Field(
        default="openid offline_access",
        description="Space-separated scopes requested at login",
    )

    TOKEN_ENDPOINT_AUTH_METHOD: Literal["client_secret_basic", "client_secret_post"] = Field(
        default="client_secret_basic",
        description="How the client authenticates at the token endpoint",
    )

    # =========================================================================
    # Session JWT Configuration
    # =========================================================================

    SESSION_JWT_SECRET: str = Field(
        ...,
        description="Secret key for signing session JWTs (must be cryptographically secure)",
        min_length=32,
    )

    SESSION_JWT_ALGORITHM: str = Field(
        default="HS256",
        description="JWT signing algorithm (HS256, HS384, or HS512)",
    )

    SESSION_TTL_SECONDS: int = Field(
        default=3600,
        description="Seconds a session stays valid before the refresh token is redeemed",
        ge=60,
        le=86400,  # Max 24 hours
    )

    # =========================================================================
    # Cookie Configuration
    # =========================================================================

    LOGIN_COOKIE_MAX_AGE: int = Field(
        default=60 * 60 * 24,
        description="Lifetime in seconds of the code_verifier and state cookies",
        ge=60,
    )

    COOKIE_SECURE: bool = Field(
        default=True,
        description="Mark cookies Secure (disable only for plain-HTTP development)",
    )

    # =========================================================================
    # Provider Communication
    # =========================================================================

    HTTP_TIMEOUT_SECONDS: float = Field(
        default=10.0,
        description="Timeout applied to every discovery, JWKS and token endpoint call",
        gt=0,
        le=120,
    )

    DISCOVERY_CACHE_SECONDS: int = Field(
        default=3600,
        description="Time to cache the provider metadata document in seconds",
        ge=0,
        le=86400,
    )

    JWKS_CACHE_SECONDS: int = Field(
        default=3600,
        description="Time to cache provider JWKS keys in seconds",
        ge=0,
        le=86400,
    )

    VERIFY_ID_TOKEN: bool = Field(
        default=True,
        description="Verify the id_token signature and claims at callback when one is returned",
    )

    REVOKE_ON_LOGOUT: bool = Field(
        default=False,
        description="Revoke the refresh token at the provider on logout (RFC 7009)",
    )

    # =========================================================================
    # Server Configuration
    # =========================================================================

    HOST: str = Field(default="0.0.0.0", description="Host to bind the gateway server")

    PORT: int = Field(
        default=8080,
        description="Port to bind the gateway server",
        ge=1,
        le=65535,
    )

    LOG_LEVEL: str = Field(default="INFO", description="Logging level")

    # =========================================================================
    # Pydantic Settings Configuration
    # =========================================================================

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",  # Ignore extra env vars not defined here
    )

    # =========================================================================
    # Computed Properties
    # =========================================================================

    @property
    def discovery_url(self) -> str:
        """
        Construct the OpenID provider configuration URL.

        Returns:
            Well-known discovery URL derived from the issuer.
        """
        return f"{self.OIDC_ISSUER.rstrip('/')}/.well-known/openid-configuration"

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("OIDC_ISSUER", "OIDC_REDIRECT_URI")
    @classmethod
    def validate_http_url(cls, v: str) -> str:
        """
        Validate that issuer and redirect URI are absolute http(s) URLs.

        The value is returned verbatim: the issuer identifier is compared
        against the discovery document and must not be normalised.

        Raises:
            ValueError: If the value is not an http or https URL
        """
        if not v.startswith(("https://", "http://")):
            raise ValueError(f"Expected an absolute http(s) URL, got: {v}")
        return v

    @field_validator("OIDC_SCOPE")
    @classmethod
    def validate_scope(cls, v: str) -> str:
        """
        Validate that the requested scopes allow obtaining a refresh token.

        Raises:
            ValueError: If openid or offline_access is missing
        """
        scopes = v.split()
        missing = [s for s in ("openid", "offline_access") if s not in scopes]
        if missing:
            raise ValueError(f"OIDC_SCOPE must include {', '.join(missing)}")
        return " ".join(scopes)

    @field_validator("SESSION_JWT_ALGORITHM")
    @classmethod
    def validate_jwt_algorithm(cls, v: str) -> str:
        """
        Validate JWT algorithm is one of the supported HMAC algorithms.

        Raises:
            ValueError: If algorithm is not supported
        """
        allowed_algorithms = ["HS256", "HS384", "HS512"]

        if v not in allowed_algorithms:
            raise ValueError(
                f"JWT algorithm must be one of {allowed_algorithms}, got: {v}"
            )

        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {v}")
        return level


# =============================================================================
# Settings Singleton
# =============================================================================

@lru_cache()
def get_settings() -> Settings:
    """
    Get or create a singleton Settings instance.

    This function is cached so that the settings are loaded only once
    during the application lifecycle.

    Returns:
        Settings instance with all configuration loaded and validated.

    Raises:
        ValidationError: If required environment variables are missing
                        or invalid.
    """
    return Settings()


# =============================================================================
# Configuration Helpers
# =============================================================================

def validate_configuration(settings: Settings) -> dict:
    """
    Check a loaded configuration for risky but legal values.

    Called during application startup; hard errors are already rejected by
    the Settings validators, so this only produces warnings.

    Returns:
        Dictionary with the warnings and a few non-sensitive values.
    """
    warnings = []

    if not settings.COOKIE_SECURE:
        warnings.append("COOKIE_SECURE is disabled (cookies will travel over plain HTTP)")

    if settings.OIDC_REDIRECT_URI.startswith("http://"):
        warnings.append("OIDC_REDIRECT_URI uses plain HTTP")

    if settings.OIDC_ISSUER.startswith("http://"):
        warnings.append("OIDC_ISSUER uses plain HTTP")

    if settings.DISCOVERY_CACHE_SECONDS == 0:
        warnings.append("Provider metadata caching is disabled (discovery on every login/refresh)")

    return {
        "warnings": warnings,
        "issuer": settings.OIDC_ISSUER,
        "session_ttl_seconds": settings.SESSION_TTL_SECONDS,
        "token_endpoint_auth_method": settings.TOKEN_ENDPOINT_AUTH_METHOD,
    }


# =============================================================================
# Configuration Report
# =============================================================================

if __name__ == "__main__":
    """
    Validate your .env configuration:
        python -m oidc_rp.config
    """
    print("=" * 80)
    print("OIDC RELYING-PARTY CONFIGURATION")
    print("=" * 80)

    try:
        config = get_settings()
    except Exception as e:
        print(f"\nConfiguration error: {e}")
        print("""
Required variables:
  - OIDC_ISSUER
  - OIDC_CLIENT_ID
  - OIDC_CLIENT_SECRET
  - OIDC_REDIRECT_URI
  - SESSION_JWT_SECRET
        """)
        raise SystemExit(1)

    print("\nProvider:")
    print(f"  Issuer:         {config.OIDC_ISSUER}")
    print(f"  Discovery URL:  {config.discovery_url}")
    print(f"  Client ID:      {config.OIDC_CLIENT_ID}")
    print(f"  Redirect URI:   {config.OIDC_REDIRECT_URI}")
    print(f"  Scope:          {config.OIDC_SCOPE}")
    print(f"  Auth method:    {config.TOKEN_ENDPOINT_AUTH_METHOD}")

    print("\nSession:")
    print(f"  JWT Algorithm:  {config.SESSION_JWT_ALGORITHM}")
    print(f"  Session TTL:    {config.SESSION_TTL_SECONDS} seconds")
    print(f"  Secure cookies: {config.COOKIE_SECURE}")

    status = validate_configuration(config)
    if status["warnings"]:
        print("\nWarnings:")
        for warning in status["warnings"]:
            print(f"  - {warning}")
    print("\n" + "=" * 80)
