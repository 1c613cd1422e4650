"""Test helpers: fixed clock, settings factory and cookie/response builders."""

from typing import Dict, Optional

import httpx

from oidc_rp.config import Settings


NOW = 1_700_000_000
ISSUER = "https://idp.example.com"
SESSION_SECRET = "test-session-secret-with-at-least-32-chars"


class FakeClock:
    """Callable clock returning a settable UNIX time."""

    def __init__(self, now: float = NOW):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_settings(**overrides) -> Settings:
    values = {
        "OIDC_ISSUER": ISSUER,
        "OIDC_CLIENT_ID": "rp-client",
        "OIDC_CLIENT_SECRET": "rp-secret",
        "OIDC_REDIRECT_URI": "http://testserver/callback",
        "SESSION_JWT_SECRET": SESSION_SECRET,
        "COOKIE_SECURE": False,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def make_response(
    status_code: int = 200,
    json: Optional[Dict] = None,
    headers: Optional[Dict[str, str]] = None,
    method: str = "POST",
    url: str = f"{ISSUER}/token",
    content: Optional[bytes] = None,
) -> httpx.Response:
    """Build an httpx.Response bound to a request, as the real client returns."""
    return httpx.Response(
        status_code,
        json=json,
        content=content,
        headers=headers,
        request=httpx.Request(method, url),
    )


def set_cookie_headers(response) -> Dict[str, str]:
    """Map cookie name to its full Set-Cookie header."""
    return {
        header.split("=", 1)[0]: header
        for header in response.headers.get_list("set-cookie")
    }


def cookie_value(header: str) -> str:
    return header.split(";", 1)[0].split("=", 1)[1]


def is_deletion(header: str) -> bool:
    return "Max-Age=0" in header


def cookie_header(**cookies: str) -> Dict[str, str]:
    return {"cookie": "; ".join(f"{name}={value}" for name, value in cookies.items())}
