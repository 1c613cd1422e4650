"""
Cookie store adapter.

Thin wrapper over Starlette's request cookies and ``Response.set_cookie`` /
``delete_cookie`` so every cookie the gateway writes carries the same path,
HttpOnly, SameSite and Secure attributes.
"""

from typing import Optional

from starlette.requests import Request
from starlette.responses import Response


CODE_VERIFIER_COOKIE = "code_verifier"
STATE_COOKIE = "state"


class CookieStore:
    """Get/set/delete opaque string values with uniform attributes."""

    def __init__(self, *, secure: bool = True, samesite: str = "lax", path: str = "/"):
        self.secure = secure
        self.samesite = samesite
        self.path = path

    @classmethod
    def from_settings(cls, settings) -> "CookieStore":
        return cls(secure=settings.COOKIE_SECURE)

    def get(self, request: Request, name: str) -> Optional[str]:
        return request.cookies.get(name) or None

    def set(self, response: Response, name: str, value: str, *, max_age: Optional[int] = None) -> None:
        response.set_cookie(
            name,
            value,
            max_age=max_age,
            path=self.path,
            secure=self.secure,
            httponly=True,
            samesite=self.samesite,
        )

    def delete(self, response: Response, name: str) -> None:
        response.delete_cookie(
            name,
            path=self.path,
            secure=self.secure,
            httponly=True,
            samesite=self.samesite,
        )

    @staticmethod
    def writes(response: Response, name: str) -> bool:
        """Return True if ``response`` already sets or deletes cookie ``name``."""
        prefix = f"{name}="
        return any(
            value.startswith(prefix)
            for key, value in response.headers.items()
            if key.lower() == "set-cookie"
        )


__all__ = ["CODE_VERIFIER_COOKIE", "STATE_COOKIE", "CookieStore"]
