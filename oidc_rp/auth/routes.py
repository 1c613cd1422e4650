"""
Authentication routes for OIDC login, callback and logout handling.

This module implements the browser-facing side of the OAuth 2.0 / OIDC
authorization code flow with PKCE against the configured OpenID provider.
"""

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse

from oidc_rp.auth.context import AuthContext, get_auth_context
from oidc_rp.auth.cookies import CODE_VERIFIER_COOKIE, STATE_COOKIE
from oidc_rp.auth.flow import build_authorization_url, handle_callback
from oidc_rp.auth.pkce import generate_login
from oidc_rp.auth.responses import auth_error_response, render_error_page, render_success_page
from oidc_rp.auth.session import SESSION_COOKIE, encode_session, require_session
from oidc_rp.errors import AuthError
from oidc_rp.models import IdentityResponse, Session

logger = logging.getLogger(__name__)


# =============================================================================
# Router Setup
# =============================================================================

auth_router = APIRouter(tags=["authentication"])


# =============================================================================
# Login Endpoint
# =============================================================================

@auth_router.get("/login", response_class=RedirectResponse)
async def login(request: Request, ctx: AuthContext = Depends(get_auth_context)):
    """
    Initiate OIDC login flow by redirecting to the provider.

    This endpoint:
    1. Resolves the provider metadata
    2. Generates the PKCE verifier/challenge and the state
    3. Stores verifier and state in short-lived HttpOnly cookies
    4. Redirects the user to the authorization endpoint

    Returns:
        302 RedirectResponse to the provider authorization endpoint
    """
    try:
        metadata = await ctx.metadata.get_metadata()
    except AuthError as e:
        return auth_error_response(e, request)

    attempt = generate_login()
    authorization_url = build_authorization_url(
        metadata,
        ctx.client,
        code_challenge=attempt.code_challenge,
        state=attempt.state,
        redirect_uri=ctx.settings.OIDC_REDIRECT_URI,
        scope=ctx.settings.OIDC_SCOPE,
    )

    response = RedirectResponse(url=authorization_url, status_code=302)
    max_age = ctx.settings.LOGIN_COOKIE_MAX_AGE
    ctx.cookies.set(response, CODE_VERIFIER_COOKIE, attempt.code_verifier, max_age=max_age)
    ctx.cookies.set(response, STATE_COOKIE, attempt.state, max_age=max_age)

    logger.info("Redirecting to provider for login", extra={"issuer": metadata.issuer})
    return response


# =============================================================================
# Callback Endpoint
# =============================================================================

@auth_router.get("/callback", response_class=HTMLResponse)
async def callback(request: Request, ctx: AuthContext = Depends(get_auth_context)):
    """
    Handle the authorization response from the provider.

    The code_verifier and state cookies are consumed here and deleted
    whatever the outcome. On success the session cookie is set.

    Query Parameters:
        code: Authorization code
        state: State parameter (must match the state cookie)
        iss: Issuer identifier (RFC 9207), when the provider sends it
        error: Error code if login failed
        error_description: Human-readable error description

    Returns:
        HTMLResponse: success page (200) or error page (401, 503 when the
        provider metadata is unavailable)
    """
    try:
        session = await handle_callback(
            ctx,
            params=request.query_params,
            stored_state=ctx.cookies.get(request, STATE_COOKIE),
            code_verifier=ctx.cookies.get(request, CODE_VERIFIER_COOKIE),
        )
    except AuthError as e:
        logger.warning(
            "Login callback rejected",
            extra={"error_code": e.error_code, "status_code": e.status_code},
        )
        response = render_error_page(
            title="Authentication Failed",
            message=str(e),
            show_retry=True,
            status_code=e.status_code,
        )
    else:
        token = encode_session(
            session,
            ctx.settings.SESSION_JWT_SECRET,
            algorithm=ctx.settings.SESSION_JWT_ALGORITHM,
        )
        response = render_success_page(session.sub)
        ctx.cookies.set(response, SESSION_COOKIE, token)

    ctx.cookies.delete(response, CODE_VERIFIER_COOKIE)
    ctx.cookies.delete(response, STATE_COOKIE)
    return response


# =============================================================================
# Logout Endpoint
# =============================================================================

@auth_router.get("/logout")
async def logout(request: Request, ctx: AuthContext = Depends(get_auth_context)) -> JSONResponse:
    """
    Log the user out by deleting the session cookie.

    Idempotent. When REVOKE_ON_LOGOUT is enabled the refresh token is also
    revoked at the provider; revocation failures are logged and do not
    change the response.

    Returns:
        JSONResponse: {"status": "logged_out"}
    """
    session = getattr(request.state, "session", None)
    if session is not None and ctx.settings.REVOKE_ON_LOGOUT:
        try:
            metadata = await ctx.metadata.get_metadata()
            await ctx.oauth.revoke(metadata, ctx.client, session.refresh_token)
        except AuthError as e:
            logger.warning(f"Refresh token revocation failed: {e}", extra={"sub": session.sub})

    response = JSONResponse(content={"status": "logged_out"})
    ctx.cookies.delete(response, SESSION_COOKIE)
    logger.info("User logged out", extra={"had_session": session is not None})
    return response


# =============================================================================
# Identity Endpoint
# =============================================================================

@auth_router.get("/me", response_model=IdentityResponse)
async def me(session: Session = Depends(require_session)) -> IdentityResponse:
    """
    Return the identity attached to the current session.

    Raises:
        HTTPException: 401 if the request carries no valid session
    """
    return IdentityResponse(authenticated=True, sub=session.sub, expire=session.expire)


__all__ = ["auth_router"]
