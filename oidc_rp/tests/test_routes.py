"""
End-to-end tests for the gateway routes and the session refresh middleware.

Requests go through the real FastAPI app; the provider is replaced by the
AsyncMock resolver and token client injected through the AuthContext.
Cookies are sent as explicit headers so each request carries exactly the
cookies under test.
"""

from urllib.parse import parse_qs, urlsplit

from fastapi.testclient import TestClient

from oidc_rp.auth.pkce import generate_code_challenge
from oidc_rp.auth.session import decode_session
from oidc_rp.errors import DiscoveryError, RefreshGrantError, TokenExchangeError
from oidc_rp.main import create_app
from oidc_rp.models import Session, TokenResult

from helpers import (
    ISSUER,
    NOW,
    SESSION_SECRET,
    cookie_header,
    cookie_value,
    is_deletion,
    make_settings,
    set_cookie_headers,
)

VERIFIER = "v" * 64


# =============================================================================
# Login
# =============================================================================

class TestLogin:
    """Test suite for GET /login"""

    def test_redirects_to_provider_with_pkce(self, client):
        response = client.get("/login", follow_redirects=False)

        assert response.status_code == 302
        location = response.headers["location"]
        assert location.startswith(f"{ISSUER}/authorize?")

        cookies = set_cookie_headers(response)
        verifier = cookie_value(cookies["code_verifier"])
        state = cookie_value(cookies["state"])

        query = parse_qs(urlsplit(location).query)
        assert query["code_challenge"] == [generate_code_challenge(verifier)]
        assert query["code_challenge_method"] == ["S256"]
        assert query["state"] == [state]
        assert query["client_id"] == ["rp-client"]
        assert query["response_type"] == ["code"]
        assert query["redirect_uri"] == ["http://testserver/callback"]
        assert query["scope"] == ["openid offline_access"]

    def test_login_cookie_attributes(self, client):
        response = client.get("/login", follow_redirects=False)

        for name in ("code_verifier", "state"):
            header = set_cookie_headers(response)[name]
            assert "HttpOnly" in header
            assert "Max-Age=86400" in header
            assert "Path=/" in header
            assert "samesite=lax" in header.lower()
        assert "session_jwt" not in set_cookie_headers(response)

    def test_each_login_is_fresh(self, client):
        first = set_cookie_headers(client.get("/login", follow_redirects=False))
        second = set_cookie_headers(client.get("/login", follow_redirects=False))

        assert cookie_value(first["state"]) != cookie_value(second["state"])
        assert cookie_value(first["code_verifier"]) != cookie_value(second["code_verifier"])

    def test_discovery_failure(self, client, resolver):
        resolver.get_metadata.side_effect = DiscoveryError()

        response = client.get("/login", follow_redirects=False)

        assert response.status_code == 503
        assert response.json()["error"] == "discovery_failed"


# =============================================================================
# Callback
# =============================================================================

class TestCallback:
    """Test suite for GET /callback"""

    def test_successful_callback_sets_session(self, client, oauth):
        oauth.exchange_code.return_value = TokenResult(access_token="at", refresh_token="rt-1")

        response = client.get(
            "/callback",
            params={"code": "auth-code", "state": "state-123"},
            headers=cookie_header(code_verifier=VERIFIER, state="state-123"),
        )

        assert response.status_code == 200
        assert "text/html" in response.headers["content-type"]

        cookies = set_cookie_headers(response)
        session = decode_session(cookie_value(cookies["session_jwt"]), SESSION_SECRET)
        assert session == Session(refresh_token="rt-1", expire=NOW + 3600)
        assert "HttpOnly" in cookies["session_jwt"]
        assert "Max-Age" not in cookies["session_jwt"]
        assert is_deletion(cookies["code_verifier"])
        assert is_deletion(cookies["state"])

        assert oauth.exchange_code.await_args.kwargs["code_verifier"] == VERIFIER

    def test_state_mismatch_rejected(self, client, oauth):
        response = client.get(
            "/callback",
            params={"code": "auth-code", "state": "forged"},
            headers=cookie_header(code_verifier=VERIFIER, state="state-123"),
        )

        assert response.status_code == 401
        cookies = set_cookie_headers(response)
        assert set(cookies) == {"code_verifier", "state"}
        assert is_deletion(cookies["code_verifier"])
        assert is_deletion(cookies["state"])
        oauth.exchange_code.assert_not_called()

    def test_callback_without_login_cookies(self, client, oauth):
        response = client.get("/callback", params={"code": "auth-code", "state": "state-123"})

        assert response.status_code == 401
        assert "session_jwt" not in set_cookie_headers(response)
        oauth.exchange_code.assert_not_called()

    def test_provider_error(self, client, oauth):
        response = client.get(
            "/callback",
            params={"error": "access_denied", "state": "state-123"},
            headers=cookie_header(code_verifier=VERIFIER, state="state-123"),
        )

        assert response.status_code == 401
        assert "access_denied" in response.text
        assert "session_jwt" not in set_cookie_headers(response)

    def test_exchange_failure(self, client, oauth):
        oauth.exchange_code.side_effect = TokenExchangeError("rejected", oauth_error="invalid_grant")

        response = client.get(
            "/callback",
            params={"code": "auth-code", "state": "state-123"},
            headers=cookie_header(code_verifier=VERIFIER, state="state-123"),
        )

        assert response.status_code == 401
        cookies = set_cookie_headers(response)
        assert "session_jwt" not in cookies
        assert is_deletion(cookies["state"])

    def test_missing_refresh_token(self, client, oauth):
        oauth.exchange_code.return_value = TokenResult(access_token="at")

        response = client.get(
            "/callback",
            params={"code": "auth-code", "state": "state-123"},
            headers=cookie_header(code_verifier=VERIFIER, state="state-123"),
        )

        assert response.status_code == 401
        assert "session_jwt" not in set_cookie_headers(response)

    def test_callback_replaces_invalid_session_cookie(self, client, oauth):
        oauth.exchange_code.return_value = TokenResult(access_token="at", refresh_token="rt-1")

        response = client.get(
            "/callback",
            params={"code": "auth-code", "state": "state-123"},
            headers=cookie_header(code_verifier=VERIFIER, state="state-123", session_jwt="garbage"),
        )

        assert response.status_code == 200
        session_headers = [h for h in response.headers.get_list("set-cookie") if h.startswith("session_jwt=")]
        assert len(session_headers) == 1
        assert not is_deletion(session_headers[0])

    def test_discovery_outage_still_clears_login_cookies(self, client, resolver, oauth, make_session_token):
        resolver.get_metadata.side_effect = DiscoveryError()

        response = client.get(
            "/callback",
            params={"code": "auth-code", "state": "state-123"},
            headers=cookie_header(
                code_verifier=VERIFIER,
                state="state-123",
                session_jwt=make_session_token(expire=NOW - 1),
            ),
        )

        assert response.status_code == 503
        cookies = set_cookie_headers(response)
        assert is_deletion(cookies["code_verifier"])
        assert is_deletion(cookies["state"])
        assert "session_jwt" not in cookies
        oauth.refresh.assert_not_called()
        oauth.exchange_code.assert_not_called()


# =============================================================================
# Session Refresh Middleware
# =============================================================================

class TestSessionRefresh:
    """Test suite for the pre-request session gate"""

    def test_valid_session_is_untouched(self, client, oauth, make_session_token):
        response = client.get("/me", headers=cookie_header(session_jwt=make_session_token()))

        assert response.status_code == 200
        assert response.json() == {"authenticated": True, "sub": "user-1", "expire": NOW + 600}
        assert "set-cookie" not in response.headers
        oauth.refresh.assert_not_called()

    def test_expired_session_refreshed_exactly_once(self, client, oauth, make_session_token):
        oauth.refresh.return_value = TokenResult(access_token="at", refresh_token="rt-2")

        response = client.get(
            "/me", headers=cookie_header(session_jwt=make_session_token("rt-1", expire=NOW - 1))
        )

        assert response.status_code == 200
        oauth.refresh.assert_awaited_once()
        assert oauth.refresh.await_args.args[2] == "rt-1"

        session = decode_session(cookie_value(set_cookie_headers(response)["session_jwt"]), SESSION_SECRET)
        assert session == Session(refresh_token="rt-2", expire=NOW + 3600, sub="user-1")

    def test_refresh_without_rotation_keeps_refresh_token(self, client, oauth, make_session_token):
        oauth.refresh.return_value = TokenResult(access_token="at")

        response = client.get(
            "/me", headers=cookie_header(session_jwt=make_session_token("rt-1", expire=NOW - 1))
        )

        session = decode_session(cookie_value(set_cookie_headers(response)["session_jwt"]), SESSION_SECRET)
        assert session.refresh_token == "rt-1"
        assert session.expire == NOW + 3600

    def test_refresh_failure_deletes_cookie(self, client, oauth, make_session_token):
        oauth.refresh.side_effect = RefreshGrantError("rejected", oauth_error="invalid_grant", status=400)

        response = client.get(
            "/me", headers=cookie_header(session_jwt=make_session_token(expire=NOW - 1))
        )

        assert response.status_code == 401
        assert response.json() == {"detail": "Not authenticated"}
        assert is_deletion(set_cookie_headers(response)["session_jwt"])
        oauth.refresh.assert_awaited_once()

    def test_refresh_failure_continues_anonymously(self, client, oauth, make_session_token):
        oauth.refresh.side_effect = RefreshGrantError("down")

        response = client.get("/", headers=cookie_header(session_jwt=make_session_token(expire=NOW - 1)))

        assert response.status_code == 200
        assert response.json()["authenticated"] is False

    def test_malformed_cookie_deleted(self, client, oauth):
        response = client.get("/", headers=cookie_header(session_jwt="not.a.jwt"))

        assert response.status_code == 200
        assert response.json()["authenticated"] is False
        assert is_deletion(set_cookie_headers(response)["session_jwt"])
        oauth.refresh.assert_not_called()

    def test_discovery_failure_returns_503_and_keeps_cookie(self, client, resolver, oauth, make_session_token):
        resolver.get_metadata.side_effect = DiscoveryError()

        response = client.get("/me", headers=cookie_header(session_jwt=make_session_token(expire=NOW - 1)))

        assert response.status_code == 503
        assert response.json()["error"] == "discovery_failed"
        assert "set-cookie" not in response.headers
        oauth.refresh.assert_not_called()

    def test_anonymous_request(self, client, oauth):
        response = client.get("/")

        assert response.json() == {"authenticated": False, "sub": None, "expire": None}
        assert "set-cookie" not in response.headers


# =============================================================================
# Logout
# =============================================================================

class TestLogout:
    """Test suite for GET /logout"""

    def test_logout_deletes_session(self, client, make_session_token):
        response = client.get("/logout", headers=cookie_header(session_jwt=make_session_token()))

        assert response.status_code == 200
        assert response.json() == {"status": "logged_out"}
        assert is_deletion(set_cookie_headers(response)["session_jwt"])

    def test_logout_is_idempotent(self, client):
        response = client.get("/logout")

        assert response.status_code == 200
        assert is_deletion(set_cookie_headers(response)["session_jwt"])

    def test_protected_request_after_logout_is_anonymous(self, client, make_session_token):
        logout = client.get("/logout", headers=cookie_header(session_jwt=make_session_token()))
        assert cookie_value(set_cookie_headers(logout)["session_jwt"]) in ("", '""')

        after_logout = client.get("/me", headers={"cookie": "session_jwt="})
        anonymous = client.get("/me")

        assert after_logout.status_code == anonymous.status_code == 401
        assert after_logout.json() == anonymous.json()

    def test_expired_session_not_refreshed_on_logout(self, client, oauth, make_session_token):
        response = client.get(
            "/logout", headers=cookie_header(session_jwt=make_session_token(expire=NOW - 1))
        )

        assert response.status_code == 200
        assert is_deletion(set_cookie_headers(response)["session_jwt"])
        oauth.refresh.assert_not_called()

    def test_logout_during_discovery_outage(self, client, resolver, make_session_token):
        resolver.get_metadata.side_effect = DiscoveryError()

        response = client.get(
            "/logout", headers=cookie_header(session_jwt=make_session_token(expire=NOW - 1))
        )

        assert response.status_code == 200
        assert response.json() == {"status": "logged_out"}
        assert is_deletion(set_cookie_headers(response)["session_jwt"])

    def test_expired_session_revoked_on_logout(self, ctx, oauth, make_session_token):
        ctx.settings = make_settings(REVOKE_ON_LOGOUT=True)
        client = TestClient(create_app(settings=ctx.settings, context=ctx))

        client.get("/logout", headers=cookie_header(session_jwt=make_session_token("rt-old", expire=NOW - 1)))

        oauth.refresh.assert_not_called()
        oauth.revoke.assert_awaited_once()
        assert oauth.revoke.await_args.args[2] == "rt-old"

    def test_logout_does_not_revoke_by_default(self, client, oauth, make_session_token):
        client.get("/logout", headers=cookie_header(session_jwt=make_session_token()))

        oauth.revoke.assert_not_called()

    def test_logout_revokes_when_enabled(self, ctx, oauth, make_session_token):
        ctx.settings = make_settings(REVOKE_ON_LOGOUT=True)
        client = TestClient(create_app(settings=ctx.settings, context=ctx))

        response = client.get("/logout", headers=cookie_header(session_jwt=make_session_token("rt-9")))

        assert response.status_code == 200
        oauth.revoke.assert_awaited_once()
        assert oauth.revoke.await_args.args[2] == "rt-9"

    def test_revocation_failure_is_ignored(self, ctx, oauth, make_session_token):
        ctx.settings = make_settings(REVOKE_ON_LOGOUT=True)
        oauth.revoke.side_effect = TokenExchangeError("revocation endpoint returned 503", status=503)
        client = TestClient(create_app(settings=ctx.settings, context=ctx))

        response = client.get("/logout", headers=cookie_header(session_jwt=make_session_token()))

        assert response.status_code == 200
        assert response.json() == {"status": "logged_out"}
        assert is_deletion(set_cookie_headers(response)["session_jwt"])


# =============================================================================
# System Endpoints
# =============================================================================

class TestSystemEndpoints:
    """Test suite for health and lifespan wiring"""

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_lifespan_builds_and_releases_context(self):
        app = create_app(settings=make_settings())

        with TestClient(app) as client:
            assert app.state.auth_context is not None
            assert client.get("/health").status_code == 200

        assert app.state.auth_context is None

    def test_injected_context_survives_lifespan(self, settings, ctx):
        app = create_app(settings=settings, context=ctx)

        with TestClient(app):
            assert app.state.auth_context is ctx

        assert app.state.auth_context is ctx
