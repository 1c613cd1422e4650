"""
FastAPI Relying-Party Gateway Application Factory
=================================================

Entry point for the gateway that authenticates browser users against an
OpenID provider and keeps a signed, stateless session in a cookie.

Routes:
    - /login        : Start the authorization code flow with PKCE
    - /callback     : Handle the provider's authorization response
    - /logout       : Drop the session (optionally revoking the refresh token)
    - /me           : Identity of the current session (requires a session)
    - /             : Identity of the current request (anonymous allowed)
    - /health       : Health check endpoint

Every request first passes through SessionRefreshMiddleware, which refreshes
expired sessions and drops invalid ones.

Environment Variables Required:
    - OIDC_ISSUER: Issuer identifier of the OpenID provider
    - OIDC_CLIENT_ID / OIDC_CLIENT_SECRET: Client credentials
    - OIDC_REDIRECT_URI: Registered redirect URI (points at /callback)
    - SESSION_JWT_SECRET: Secret for signing session JWTs (32+ characters)
    - LOG_LEVEL: Logging level (default: INFO)

Running the Service:
    Development:
        uvicorn oidc_rp.main:create_app --factory --reload --host 0.0.0.0 --port 8080

    Production:
        uvicorn oidc_rp.main:create_app --factory --host 0.0.0.0 --port 8080 --workers 4
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import Dict, Optional

import httpx
import uvicorn
from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse

from oidc_rp.auth.context import AuthContext
from oidc_rp.auth.middleware import SessionRefreshMiddleware
from oidc_rp.auth.responses import auth_error_response
from oidc_rp.auth.routes import auth_router
from oidc_rp.auth.session import get_optional_session
from oidc_rp.config import Settings, get_settings, validate_configuration
from oidc_rp.errors import AuthError
from oidc_rp.models import IdentityResponse, Session

logger = logging.getLogger(__name__)


# Configure structured JSON logging
def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format='{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s", "module": "%(module)s", "function": "%(funcName)s"}',
        handlers=[logging.StreamHandler(sys.stdout)]
    )


def _build_lifespan(settings: Settings):
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Application lifespan manager.

        Startup tasks:
            - Configure logging
            - Report risky configuration values
            - Open the shared httpx client and build the AuthContext
              (unless one was injected)

        Shutdown tasks:
            - Close the shared httpx client
        """
        setup_logging(settings.LOG_LEVEL)

        status = validate_configuration(settings)
        for warning in status["warnings"]:
            logger.warning(f"Configuration warning: {warning}")

        http_client: Optional[httpx.AsyncClient] = None
        if getattr(app.state, "auth_context", None) is None:
            http_client = httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS)
            app.state.auth_context = AuthContext.from_settings(settings, http_client)

        logger.info(
            "Relying-party gateway started",
            extra={
                "issuer": status["issuer"],
                "session_ttl_seconds": status["session_ttl_seconds"],
                "token_endpoint_auth_method": status["token_endpoint_auth_method"],
            },
        )

        yield

        logger.info("Shutting down relying-party gateway")
        if http_client is not None:
            await http_client.aclose()
            app.state.auth_context = None
        logger.info("Relying-party gateway shutdown complete")

    return lifespan


# Create FastAPI application
def create_app(
    settings: Optional[Settings] = None,
    context: Optional[AuthContext] = None,
) -> FastAPI:
    """
    Application factory function.

    Creates and configures the FastAPI application instance with:
        - Lifespan management
        - Session refresh middleware
        - Route handlers
        - Exception handlers

    Args:
        settings: Settings to use; loaded from the environment when omitted
        context: Pre-built AuthContext (tests inject fakes here)

    Returns:
        FastAPI: Configured application instance
    """
    if settings is None:
        settings = context.settings if context is not None else get_settings()

    app = FastAPI(
        title="OIDC Relying-Party Gateway",
        description="OpenID Connect login with stateless, self-refreshing session cookies",
        version="1.0.0",
        lifespan=_build_lifespan(settings),
    )
    app.state.auth_context = context

    app.add_middleware(SessionRefreshMiddleware)
    app.include_router(auth_router)

    # Health check endpoint
    @app.get("/health", tags=["System"])
    async def health_check() -> Dict[str, str]:
        """
        Health check endpoint.

        Returns:
            dict: Service health information
        """
        return {
            "status": "ok",
            "service": "oidc-rp-gateway",
            "version": "1.0.0",
        }

    # Root endpoint
    @app.get("/", response_model=IdentityResponse, tags=["System"])
    async def root(session: Optional[Session] = Depends(get_optional_session)) -> IdentityResponse:
        """Return whether the current request carries a session."""
        if session is None:
            return IdentityResponse(authenticated=False)
        return IdentityResponse(authenticated=True, sub=session.sub, expire=session.expire)

    @app.exception_handler(AuthError)
    async def auth_exception_handler(request: Request, exc: AuthError):
        return auth_error_response(exc, request)

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """
        Global exception handler for unhandled errors.

        Logs the error and returns a standardized error response.
        """
        logger.error(
            f"Unhandled exception: {str(exc)}",
            extra={
                "path": request.url.path,
                "method": request.method,
                "exception_type": type(exc).__name__
            },
            exc_info=True
        )

        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_server_error",
                "message": "An unexpected error occurred",
            }
        )

    return app


if __name__ == "__main__":
    """
    Direct execution entry point.

    This allows running the service directly with: python -m oidc_rp.main
    """
    settings = get_settings()

    uvicorn.run(
        "oidc_rp.main:create_app",
        factory=True,
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower()
    )
