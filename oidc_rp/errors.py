"""
Exception types raised by the relying-party flow.

Only lightweight, data-carrying exceptions live here so that the HTTP layer
can translate them into responses in a single place. Messages never contain
tokens, codes or secrets.
"""

from typing import Dict, Optional


class AuthError(Exception):
    """Base exception for authentication failures."""

    status_code: int = 401
    error_code: str = "authentication_failed"
    default_message: str = "Authentication failed"

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.default_message)

    def to_payload(self) -> Dict[str, str]:
        """Return a JSON-serialisable payload without secrets."""
        return {"error": self.error_code, "message": str(self)}


class DiscoveryError(AuthError):
    """Provider metadata could not be fetched or failed validation."""

    status_code = 503
    error_code = "discovery_failed"
    default_message = "Identity provider metadata is unavailable"


# =============================================================================
# Callback Validation
# =============================================================================

class CallbackValidationError(AuthError):
    """The authorization response is malformed or fails validation."""

    error_code = "invalid_callback"
    default_message = "Invalid authorization response"


class StateMismatchError(CallbackValidationError):
    """The returned state is missing or differs from the one issued."""

    error_code = "state_mismatch"
    default_message = "State parameter does not match this login attempt"


class AuthorizationDeniedError(CallbackValidationError):
    """The provider returned an OAuth2 error on the authorization response."""

    error_code = "authorization_denied"
    default_message = "The identity provider denied the authorization request"

    def __init__(self, oauth_error: str, description: Optional[str] = None) -> None:
        super().__init__(f"{self.default_message}: {description or oauth_error}")
        self.oauth_error = oauth_error
        self.description = description


# =============================================================================
# Token Endpoint
# =============================================================================

class TokenExchangeError(AuthError):
    """
    The token endpoint call failed.

    Covers transport errors, non-success responses, OAuth2 error bodies and
    WWW-Authenticate challenges. ``oauth_error`` holds the provider's error
    code when one was returned.
    """

    error_code = "token_exchange_failed"
    default_message = "Token request failed"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        oauth_error: Optional[str] = None,
        status: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.oauth_error = oauth_error
        self.status = status


class CodeExchangeError(TokenExchangeError):
    """Authorization-code grant failed at callback."""

    error_code = "code_exchange_failed"
    default_message = "Authorization code exchange failed"


class RefreshGrantError(TokenExchangeError):
    """Refresh-token grant failed (revoked/expired grant or transport error)."""

    error_code = "refresh_failed"
    default_message = "Refresh token grant failed"


class MissingRefreshTokenError(AuthError):
    """The token response carried no refresh_token (offline_access not granted)."""

    error_code = "missing_refresh_token"
    default_message = "The identity provider did not issue a refresh token"


class IdTokenVerificationError(AuthError):
    """The id_token signature or claims did not verify."""

    error_code = "invalid_id_token"
    default_message = "ID token verification failed"


# =============================================================================
# Session
# =============================================================================

class SessionVerificationError(AuthError):
    """The session cookie is malformed or its signature does not verify."""

    error_code = "invalid_session"
    default_message = "Session token could not be verified"
