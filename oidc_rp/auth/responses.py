"""
Response rendering for the authentication routes.

Holds the HTML pages shown to the browser after the provider redirects
back, and ``auth_error_response``, the one place where an ``AuthError``
is turned into an HTTP response.
"""

import html
from typing import Optional

from fastapi import Request
from fastapi.responses import HTMLResponse, JSONResponse, Response

from oidc_rp.errors import AuthError
from oidc_rp.models import ErrorResponse


_PAGE_STYLE = """
            * { margin: 0; padding: 0; box-sizing: border-box; }
            body {
                font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, Helvetica, Arial, sans-serif;
                background: linear-gradient(135deg, #667eea 0%, #764ba2 100%);
                min-height: 100vh;
                display: flex;
                align-items: center;
                justify-content: center;
                padding: 20px;
            }
            .container {
                background: white;
                border-radius: 12px;
                padding: 40px;
                max-width: 500px;
                width: 100%;
                box-shadow: 0 10px 40px rgba(0,0,0,0.2);
                text-align: center;
            }
            h1 {
                color: #1f2937;
                font-size: 24px;
                margin-bottom: 16px;
            }
            .message {
                color: #6b7280;
                font-size: 16px;
                line-height: 1.6;
                margin-bottom: 32px;
            }
            .button {
                display: inline-block;
                background: #667eea;
                color: white;
                padding: 14px 32px;
                border-radius: 8px;
                text-decoration: none;
                font-weight: 600;
                font-size: 16px;
            }
"""


def _render_page(title: str, message: str, link: Optional[str], link_label: str, status_code: int) -> HTMLResponse:
    button = f'<a href="{link}" class="button">{link_label}</a>' if link else ""
    html_content = f"""
    <!DOCTYPE html>
    <html lang="en">
    <head>
        <meta charset="UTF-8">
        <meta name="viewport" content="width=device-width, initial-scale=1.0">
        <title>{html.escape(title)}</title>
        <style>{_PAGE_STYLE}</style>
    </head>
    <body>
        <div class="container">
            <h1>{html.escape(title)}</h1>
            <p class="message">{html.escape(message)}</p>
            {button}
        </div>
    </body>
    </html>
    """
    return HTMLResponse(content=html_content, status_code=status_code)


def render_success_page(sub: Optional[str] = None) -> HTMLResponse:
    """
    Render the page shown after a successful login.

    Args:
        sub: Subject of the signed-in user, if the id_token was verified

    Returns:
        HTMLResponse (200) linking back to the application root
    """
    message = f"You are signed in as {sub}." if sub else "You are signed in."
    return _render_page("Login Successful", message, "/", "Continue", 200)


def render_error_page(
    title: str,
    message: str,
    show_retry: bool = True,
    status_code: int = 401,
) -> HTMLResponse:
    """
    Render error page for authentication failures.

    Args:
        title: Error title
        message: Error message (no tokens or secrets)
        show_retry: Whether to show a link back to /login
        status_code: HTTP status code

    Returns:
        HTMLResponse with error information
    """
    return _render_page(title, message, "/login" if show_retry else None, "Try Again", status_code)


def _wants_html(request: Optional[Request]) -> bool:
    if request is None:
        return False
    return "text/html" in request.headers.get("accept", "")


def auth_error_response(exc: AuthError, request: Optional[Request] = None) -> Response:
    """
    Translate an AuthError into an HTTP response.

    Browsers (``Accept: text/html``) get an error page; API clients get an
    ``ErrorResponse`` JSON body. The status code comes from the exception.
    """
    if _wants_html(request):
        return render_error_page(
            title="Authentication Failed",
            message=str(exc),
            show_retry=exc.status_code == 401,
            status_code=exc.status_code,
        )
    body = ErrorResponse(error=exc.error_code, message=str(exc))
    return JSONResponse(status_code=exc.status_code, content=body.model_dump())


__all__ = ["render_success_page", "render_error_page", "auth_error_response"]
