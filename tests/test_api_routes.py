"""
tests/test_api_routes.py -- Integration tests for the /api/v1 endpoints.

Coverage:
  - POST /auth/login: token in body and cookie, no-store, generic 401,
    rate limit (LOGIN_RATE_LIMIT) answered with 429 rate_limited
  - GET /auth/me through cookie and Bearer transport
  - POST /auth/logout clears the cookie
  - /invites: ADMIN create/list, ADMIN role rejected, non-admin 403 JSON,
    public validity check
"""

from __future__ import annotations

from auth.models import Role
from auth.tokens import COOKIE_NAME


def _login(harness, username: str, password: str):
    return harness.client.post("/api/v1/auth/login", json={"username": username, "password": password})


class TestLogin:
    def test_success_returns_token_and_cookie(self, harness) -> None:
        harness.make_user("emma", full_name="Emma Stone")
        resp = _login(harness, "emma", "password1")
        assert resp.status_code == 200
        assert resp.headers["cache-control"] == "no-store"
        body = resp.json()
        assert body["token_type"] == "bearer"
        assert body["expires_in"] == 3600
        assert body["role"] == "EMPLOYEE"
        assert body["must_change_password"] is False
        assert resp.cookies.get(COOKIE_NAME) == body["access_token"]
        assert harness.token_service.verify(body["access_token"]).username == "emma"

    def test_bad_password_is_generic_401(self, harness) -> None:
        harness.make_user("emma")
        wrong_password = _login(harness, "emma", "nope")
        unknown_user = _login(harness, "nobody", "nope")
        for resp in (wrong_password, unknown_user):
            assert resp.status_code == 401
            assert resp.json()["error"]["code"] == "bad_credentials"
            assert resp.headers["cache-control"] == "no-store"
        assert wrong_password.json() == unknown_user.json()

    def test_empty_body_is_422(self, harness) -> None:
        resp = harness.client.post("/api/v1/auth/login", json={"username": "", "password": ""})
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"

    def test_pending_change_still_gets_token(self, harness) -> None:
        harness.make_user("admin", Role.ADMIN, password="admin", must_change_password=True)
        resp = _login(harness, "admin", "admin")
        assert resp.status_code == 200
        assert resp.json()["must_change_password"] is True

    def test_rate_limited_after_ten_attempts(self, harness) -> None:
        for _ in range(10):
            assert _login(harness, "nobody", "nope").status_code == 401
        resp = _login(harness, "nobody", "nope")
        assert resp.status_code == 429
        assert resp.json()["error"]["code"] == "rate_limited"
        assert "retry-after" in resp.headers


class TestMeAndLogout:
    def test_me_with_cookie(self, harness) -> None:
        user = harness.make_user("emma", Role.HR, full_name="Emma Stone")
        harness.login(user)
        resp = harness.client.get("/api/v1/auth/me")
        assert resp.status_code == 200
        assert resp.json() == {
            "user_id": user.id,
            "username": "emma",
            "full_name": "Emma Stone",
            "role": "HR",
            "must_change_password": False,
            "team_id": None,
            "project_id": None,
        }

    def test_me_without_token_redirects(self, harness) -> None:
        resp = harness.client.get("/api/v1/auth/me")
        assert resp.status_code == 303
        assert resp.headers["location"] == "/login"

    def test_logout_clears_cookie(self, harness) -> None:
        harness.login(harness.make_user("emma"))
        resp = harness.client.post("/api/v1/auth/logout")
        assert resp.status_code == 200
        assert resp.json() == {"message": "Logged out."}
        set_cookie = resp.headers.get("set-cookie", "").lower()
        assert set_cookie.startswith(f"{COOKIE_NAME}=")
        assert "max-age=0" in set_cookie


class TestInvites:
    def test_admin_creates_and_lists(self, harness) -> None:
        admin = harness.make_user("root", Role.ADMIN)
        harness.login(admin)
        resp = harness.client.post("/api/v1/invites", json={"role": "HR", "full_name": "Helen"})
        assert resp.status_code == 201
        created = resp.json()
        assert created["role"] == "HR"
        assert created["used"] is False
        assert created["register_path"] == f"/register?code={created['code']}"
        assert len(created["code"]) >= 32

        listed = harness.client.get("/api/v1/invites").json()
        assert [i["code"] for i in listed] == [created["code"]]

    def test_admin_role_cannot_be_invited(self, harness) -> None:
        harness.login(harness.make_user("root", Role.ADMIN))
        resp = harness.client.post("/api/v1/invites", json={"role": "ADMIN"})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "invalid_role"

    def test_unknown_team_is_rejected(self, harness) -> None:
        harness.login(harness.make_user("root", Role.ADMIN))
        resp = harness.client.post("/api/v1/invites", json={"role": "EMPLOYEE", "team_id": 999})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "unknown_affiliation"
        assert harness.client.get("/api/v1/invites").json() == []

    def test_unknown_role_is_422(self, harness) -> None:
        harness.login(harness.make_user("root", Role.ADMIN))
        assert harness.client.post("/api/v1/invites", json={"role": "BOSS"}).status_code == 422

    def test_non_admin_forbidden(self, harness) -> None:
        harness.login(harness.make_user("helen", Role.HR))
        resp = harness.client.post("/api/v1/invites", json={"role": "EMPLOYEE"})
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "forbidden"

    def test_public_status_check(self, harness) -> None:
        admin = harness.make_user("root", Role.ADMIN)
        invite = harness.ledger.create(admin.id, Role.SUPERVISOR)
        harness.client.cookies.clear()

        resp = harness.client.get(f"/api/v1/invites/{invite.code}")
        assert resp.status_code == 200
        assert resp.json() == {"valid": True, "role": "SUPERVISOR", "reason": None}

        harness.clock.advance(days=7)
        expired = harness.client.get(f"/api/v1/invites/{invite.code}").json()
        assert expired["valid"] is False
        assert expired["role"] is None
        assert "expired" in expired["reason"]

    def test_unknown_code_status(self, harness) -> None:
        body = harness.client.get("/api/v1/invites/not-a-code").json()
        assert body["valid"] is False
        assert body["reason"] == "Invalid invite link."
