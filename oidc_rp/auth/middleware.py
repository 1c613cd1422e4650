"""
Session refresh middleware.

Runs the ``SessionGate`` before every request: the resolved session is
attached to ``request.state.session`` and the gate's cookie action (keep,
overwrite or delete ``session_jwt``) is applied to the response after the
handler ran, unless the handler wrote the session cookie itself.

Paths listed in ``no_refresh_paths`` (``/callback`` and ``/logout`` by
default) still see the decoded session but never trigger a refresh grant:
those handlers replace or delete the session cookie themselves and must run
even when the provider is unreachable.
"""

import logging
from typing import Iterable

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from oidc_rp.auth.flow import CookieAction, SessionGate
from oidc_rp.auth.responses import auth_error_response
from oidc_rp.auth.session import SESSION_COOKIE
from oidc_rp.errors import DiscoveryError

logger = logging.getLogger(__name__)

DEFAULT_NO_REFRESH_PATHS = ("/callback", "/logout")


class SessionRefreshMiddleware(BaseHTTPMiddleware):
    """Resolve, refresh or drop the session cookie on every request."""

    def __init__(self, app: ASGIApp, no_refresh_paths: Iterable[str] = DEFAULT_NO_REFRESH_PATHS):
        super().__init__(app)
        self.no_refresh_paths = frozenset(no_refresh_paths)

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        ctx = getattr(request.app.state, "auth_context", None)
        if ctx is None:
            request.state.session = None
            return await call_next(request)

        token = ctx.cookies.get(request, SESSION_COOKIE)
        refresh = request.url.path not in self.no_refresh_paths
        try:
            outcome = await SessionGate(ctx).resolve(token, refresh=refresh)
        except DiscoveryError as e:
            logger.error(
                f"Session refresh aborted: {e}",
                extra={"path": request.url.path, "method": request.method},
            )
            return auth_error_response(e, request)

        request.state.session = outcome.session
        response = await call_next(request)

        if ctx.cookies.writes(response, SESSION_COOKIE):
            return response

        if outcome.cookie_action is CookieAction.SET:
            ctx.cookies.set(response, SESSION_COOKIE, outcome.token)
        elif outcome.cookie_action is CookieAction.DELETE:
            ctx.cookies.delete(response, SESSION_COOKIE)
        return response


__all__ = ["DEFAULT_NO_REFRESH_PATHS", "SessionRefreshMiddleware"]
