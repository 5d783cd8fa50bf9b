"""Integration tests for /api/v1/auth/* with email verification and 2FA disabled.

Covers:
- register returns 201 with tokens, duplicate email returns 400 email_exists
- login success, uniform 401 for unknown email and wrong password
- refresh rotation and single use over HTTP
- logout ends the session
- session listing, deletion, and blocking scoped to the bearer
- request validation returns the 422 envelope
- token responses carry Cache-Control: no-store
- resend endpoints report feature_disabled
- the auth rate limit is read from settings on each request
"""

from types import SimpleNamespace

import pytest

import api.limiter
from api.limiter import auth_rate_limit


def _bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


# ===========================================================================
# Register and login
# ===========================================================================


class TestRegister:
    def test_register_returns_tokens_and_user(self, api_client):
        data = api_client.register("Alice", "alice@example.com")
        assert data["access_token"]
        assert data["refresh_token"]
        assert data["token_type"] == "bearer"
        assert data["expires_in"] == 3600
        assert data["requires_2fa"] is False
        assert data["user"]["email"] == "alice@example.com"
        assert data["user"]["is_verified"] is True
        assert data["user"]["role"]["slug"] == "user"
        assert "password" not in data["user"]

    def test_duplicate_email(self, api_client):
        api_client.register("Dup One", "dup@example.com")
        resp = api_client.client.post(
            "/api/v1/auth/register",
            json={"name": "Dup Two", "email": "dup@example.com", "password": "secret1"},
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "email_exists"

    @pytest.mark.parametrize(
        "body",
        [
            {"name": "Al", "email": "short@example.com", "password": "secret1"},
            {"name": "Valid Name", "email": "not-an-email", "password": "secret1"},
            {"name": "Valid Name", "email": "shortpw@example.com", "password": "123"},
            {"name": "Valid Name", "email": "longpw@example.com", "password": "x" * 51},
            {"name": "Valid Name", "email": "widepw@example.com", "password": "é" * 40},
        ],
    )
    def test_invalid_body_is_422(self, api_client, body):
        resp = api_client.client.post("/api/v1/auth/register", json=body)
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"

    def test_multibyte_password_up_to_72_bytes(self, api_client):
        api_client.register("Zoë Multibyte", "zoe@example.com", "é" * 36)
        assert api_client.login("zoe@example.com", "é" * 36)["access_token"]

    def test_no_store_header(self, api_client):
        resp = api_client.client.post(
            "/api/v1/auth/register",
            json={"name": "Cache Test", "email": "cache@example.com", "password": "secret1"},
        )
        assert resp.headers["Cache-Control"] == "no-store"


class TestLogin:
    def test_login_success(self, api_client):
        api_client.register("Bob Smith", "bob@example.com", "hunter22")
        data = api_client.login("bob@example.com", "hunter22")
        assert data["access_token"]
        assert data["user"]["email"] == "bob@example.com"

    def test_wrong_password_and_unknown_email_look_the_same(self, api_client):
        api_client.register("Carol", "carol@example.com", "hunter22")
        wrong = api_client.client.post("/api/v1/auth/login", json={"email": "carol@example.com", "password": "nope"})
        unknown = api_client.client.post("/api/v1/auth/login", json={"email": "ghost@example.com", "password": "nope"})
        assert wrong.status_code == unknown.status_code == 401
        assert wrong.json() == unknown.json()
        assert wrong.json()["error"]["code"] == "invalid_credentials"

    def test_super_admin_can_log_in(self, api_client):
        headers = api_client.superadmin_headers()
        resp = api_client.client.get("/api/v1/users/me", headers=headers)
        assert resp.status_code == 200
        assert resp.json()["role"]["slug"] == "super_admin"


# ===========================================================================
# Refresh and logout
# ===========================================================================


class TestRefreshAndLogout:
    def test_refresh_rotates(self, api_client):
        first = api_client.register("Dave", "dave@example.com")
        resp = api_client.client.post("/api/v1/auth/refresh", json={"refresh_token": first["refresh_token"]})
        assert resp.status_code == 200
        second = resp.json()
        assert second["refresh_token"] != first["refresh_token"]
        assert resp.headers["Cache-Control"] == "no-store"

        reuse = api_client.client.post("/api/v1/auth/refresh", json={"refresh_token": first["refresh_token"]})
        assert reuse.status_code == 401
        assert reuse.json()["error"]["code"] == "session_not_found"

    def test_refresh_garbage_token(self, api_client):
        resp = api_client.client.post("/api/v1/auth/refresh", json={"refresh_token": "garbage"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "invalid_or_expired_token"

    def test_logout_then_refresh_fails(self, api_client):
        data = api_client.register("Erin", "erin@example.com")
        resp = api_client.client.post("/api/v1/auth/logout", json={"refresh_token": data["refresh_token"]})
        assert resp.status_code == 200
        assert resp.json()["message"] == "Logged out successfully."

        again = api_client.client.post("/api/v1/auth/refresh", json={"refresh_token": data["refresh_token"]})
        assert again.status_code == 401

    def test_logout_unknown_token_is_200(self, api_client):
        resp = api_client.client.post("/api/v1/auth/logout", json={"refresh_token": "never-issued"})
        assert resp.status_code == 200


# ===========================================================================
# Session management
# ===========================================================================


class TestSessions:
    def test_requires_bearer(self, api_client):
        resp = api_client.client.get("/api/v1/auth/sessions")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthorized"
        assert resp.headers["WWW-Authenticate"] == "Bearer"

    def test_invalid_bearer(self, api_client):
        resp = api_client.client.get("/api/v1/auth/sessions", headers=_bearer("nope"))
        assert resp.status_code == 401

    def test_list_records_metadata(self, api_client):
        data = api_client.register("Frank", "frank@example.com")
        api_client.client.post(
            "/api/v1/auth/login",
            json={"email": "frank@example.com", "password": "secret1"},
            headers={"User-Agent": "frank-cli/1.0", "X-Device-ID": "laptop-7"},
        )
        resp = api_client.client.get("/api/v1/auth/sessions", headers=_bearer(data["access_token"]))
        assert resp.status_code == 200
        sessions = resp.json()
        assert len(sessions) == 2
        assert sessions[0]["device_id"] == "laptop-7"
        assert sessions[0]["user_agent"] == "frank-cli/1.0"
        assert "token" not in sessions[0]

    def test_block_then_refresh_fails(self, api_client):
        data = api_client.register("Grace", "grace@example.com")
        headers = _bearer(data["access_token"])
        session_id = api_client.client.get("/api/v1/auth/sessions", headers=headers).json()[0]["id"]

        resp = api_client.client.patch(f"/api/v1/auth/sessions/{session_id}/block", headers=headers)
        assert resp.status_code == 200
        listed = api_client.client.get("/api/v1/auth/sessions", headers=headers).json()
        assert listed[0]["is_blocked"] is True

        refresh = api_client.client.post("/api/v1/auth/refresh", json={"refresh_token": data["refresh_token"]})
        assert refresh.status_code == 401

    def test_delete_own_session(self, api_client):
        data = api_client.register("Heidi", "heidi@example.com")
        headers = _bearer(data["access_token"])
        session_id = api_client.client.get("/api/v1/auth/sessions", headers=headers).json()[0]["id"]

        resp = api_client.client.delete(f"/api/v1/auth/sessions/{session_id}", headers=headers)
        assert resp.status_code == 200
        assert api_client.client.get("/api/v1/auth/sessions", headers=headers).json() == []

    def test_cannot_touch_another_users_session(self, api_client):
        victim = api_client.register("Ivan", "ivan@example.com")
        attacker = api_client.register("Judy", "judy@example.com")
        victim_session = api_client.client.get(
            "/api/v1/auth/sessions", headers=_bearer(victim["access_token"])
        ).json()[0]["id"]

        headers = _bearer(attacker["access_token"])
        deleted = api_client.client.delete(f"/api/v1/auth/sessions/{victim_session}", headers=headers)
        blocked = api_client.client.patch(f"/api/v1/auth/sessions/{victim_session}/block", headers=headers)
        assert deleted.status_code == 404
        assert blocked.status_code == 404

        refresh = api_client.client.post("/api/v1/auth/refresh", json={"refresh_token": victim["refresh_token"]})
        assert refresh.status_code == 200


# ===========================================================================
# Disabled features
# ===========================================================================


class TestDisabledFeatures:
    def test_resend_verification_disabled(self, api_client):
        resp = api_client.client.post("/api/v1/auth/resend-verification", json={"email": "alice@example.com"})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "feature_disabled"

    def test_resend_2fa_disabled(self, api_client):
        resp = api_client.client.post("/api/v1/auth/resend-2fa", json={"email": "alice@example.com"})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "feature_disabled"

    def test_verify_code_must_be_six_digits(self, api_client):
        resp = api_client.client.post("/api/v1/auth/verify-email", json={"email": "alice@example.com", "code": "12ab"})
        assert resp.status_code == 422

    def test_oauth_providers_empty_when_unconfigured(self, api_client):
        resp = api_client.client.get("/api/v1/oauth/providers")
        assert resp.status_code == 200
        assert resp.json() == []

    def test_oauth_redirect_unknown_provider(self, api_client):
        resp = api_client.client.get("/api/v1/oauth/github", follow_redirects=False)
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "provider_not_found"


# ===========================================================================
# Rate limiting
# ===========================================================================


class TestRateLimit:
    def test_limit_follows_settings(self, monkeypatch):
        monkeypatch.setattr(api.limiter, "get_settings", lambda: SimpleNamespace(login_rate_limit="3/minute"))
        assert auth_rate_limit() == "3/minute"

    def test_suite_runs_with_raised_limit(self):
        assert auth_rate_limit() == "10000/minute"
