"""
PKCE and state generation for the authorization code flow.

RFC 7636 binds the authorization code to the party that started the flow:
a random code verifier is kept client-side and only its S256 digest, the
code challenge, is sent to the authorization endpoint.

Verifiers and states are never logged.
"""

import base64
import hashlib
import secrets
import string

from oidc_rp.models import LoginAttempt


CODE_CHALLENGE_METHOD = "S256"

# RFC 7636 section 4.1: 43-128 characters from the unreserved set
VERIFIER_MIN_LENGTH = 43
VERIFIER_MAX_LENGTH = 128
_VERIFIER_LENGTH = 64
_VERIFIER_CHARSET = string.ascii_letters + string.digits + "-._~"


def generate_code_verifier(length: int = _VERIFIER_LENGTH) -> str:
    """
    Generate a cryptographically random code verifier for PKCE.

    Args:
        length: Verifier length between 43 and 128 characters

    Returns:
        Random string drawn from the RFC 7636 unreserved characters

    Raises:
        ValueError: If length is out of bounds
    """
    if not VERIFIER_MIN_LENGTH <= length <= VERIFIER_MAX_LENGTH:
        raise ValueError(
            f"code verifier length must be {VERIFIER_MIN_LENGTH}-{VERIFIER_MAX_LENGTH} characters"
        )
    return "".join(secrets.choice(_VERIFIER_CHARSET) for _ in range(length))


def generate_code_challenge(verifier: str) -> str:
    """
    Generate code challenge from verifier using S256 method.

    Args:
        verifier: Code verifier string

    Returns:
        Base64-URL-encoded SHA256 hash of verifier, without padding
    """
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


def generate_state() -> str:
    """Return an anti-CSRF state value carrying 256 bits of randomness."""
    return secrets.token_urlsafe(32)


def generate_login() -> LoginAttempt:
    """Create a fresh verifier, its challenge and an independent state."""
    code_verifier = generate_code_verifier()
    return LoginAttempt(
        code_verifier=code_verifier,
        code_challenge=generate_code_challenge(code_verifier),
        state=generate_state(),
        code_challenge_method=CODE_CHALLENGE_METHOD,
    )


__all__ = [
    "CODE_CHALLENGE_METHOD",
    "generate_code_verifier",
    "generate_code_challenge",
    "generate_state",
    "generate_login",
]
