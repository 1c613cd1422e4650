"""
Authentication Package

This package implements the relying-party side of OpenID Connect for the
gateway, keeping the user's session in a signed cookie instead of a
server-side store.

Key responsibilities:
- Authorization code flow with PKCE (login redirect and callback handling)
- Provider metadata discovery and token endpoint calls
- ID token verification using the provider JWKS
- Session JWT encoding and validation
- Transparent session refresh before each request

Modules:
- routes: Public authentication endpoints (/login, /callback, /logout, /me)
- flow: Authorization URL builder, callback validation and the session gate
- middleware: Starlette middleware running the session gate
- provider: Discovery resolver and OAuth2 token endpoint client
- pkce: Code verifier, challenge and state generation
- session: Session JWT creation and validation logic
- cookies: Cookie attribute handling
- utils: JWKS fetching, caching, and ID token verification utilities

The authentication flow:
1. Browser is sent to /login and redirected to the provider
2. User authenticates at the provider
3. Provider redirects to /callback with an authorization code
4. Gateway exchanges the code, stores the refresh token in a session JWT cookie
5. Expired sessions are refreshed with the refresh token on the next request
"""

from .middleware import SessionRefreshMiddleware
from .routes import auth_router

__all__ = [
    "auth_router",
    "SessionRefreshMiddleware",
]
