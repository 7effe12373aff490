"""
tests/test_api_auth.py -- Integration tests for the /api/v1/auth routes.

These tests exercise the full stack: FastAPI routing -> session middleware ->
Authenticator/SessionManager -> SQLite stores -> response serialization.

Coverage:
  - POST /login valid 200 + cookie, invalid 401 bad_credentials
  - unknown user and wrong password give identical responses
  - GET /me 200 with session, 401 without
  - logout: the old cookie no longer authenticates even if replayed
  - POST /signup 201 / 409 duplicate_name / 400 password_mismatch
  - guest bootstrap through the HTTP surface

Fixtures used (from conftest.py):
  - client: TestClient with an empty cookie jar, follow_redirects=False.
    A user "testuser" / "testpass123" exists.
"""

from __future__ import annotations

from fastapi.testclient import TestClient

from conftest import TEST_PASSWORD, TEST_USERNAME  # created by the app_client fixture
from core.config import get_settings

_COOKIE = get_settings().session_cookie_name


def _login(client: TestClient, username: str = TEST_USERNAME, password: str = TEST_PASSWORD):
    return client.post("/api/v1/auth/login", json={"username": username, "password": password})


class TestLogin:
    def test_login_valid_credentials(self, client: TestClient) -> None:
        resp = _login(client)
        assert resp.status_code == 200, resp.text
        assert resp.json() == {"username": TEST_USERNAME, "role": "editor"}
        assert _COOKIE in resp.cookies
        assert resp.headers["cache-control"] == "no-store"

    def test_login_invalid_credentials(self, client: TestClient) -> None:
        resp = _login(client, password="wrongpassword")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "bad_credentials"
        assert _COOKIE not in resp.cookies

    def test_login_ignores_whitespace_around_username(self, client: TestClient) -> None:
        resp = _login(client, username=f"  {TEST_USERNAME} ")
        assert resp.status_code == 200, resp.text
        assert resp.json()["username"] == TEST_USERNAME

    def test_unknown_user_and_wrong_password_are_indistinguishable(self, client: TestClient) -> None:
        unknown = _login(client, username="nonexistent", password="anything")
        wrong = _login(client, password="wrongpass")
        assert unknown.status_code == wrong.status_code == 401
        assert unknown.json() == wrong.json()
        assert unknown.json()["error"]["message"] == "Incorrect username or password."

    def test_login_validation_error(self, client: TestClient) -> None:
        resp = client.post("/api/v1/auth/login", json={"username": TEST_USERNAME})
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"

    def test_guest_login_bootstraps_once(self, app_client, client: TestClient) -> None:
        _, credentials = app_client
        first = _login(client, username="guest", password="letmein")
        client.cookies.clear()
        second = _login(client, username="guest", password="letmein")
        assert first.status_code == second.status_code == 200
        assert credentials.find_by_name("guest") is not None


class TestMe:
    def test_me_unauthenticated(self, client: TestClient) -> None:
        resp = client.get("/api/v1/auth/me")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthorized"

    def test_me_authenticated(self, client: TestClient) -> None:
        _login(client)
        resp = client.get("/api/v1/auth/me")
        assert resp.status_code == 200
        assert resp.json() == {"username": TEST_USERNAME, "role": "editor"}

    def test_forged_cookie_is_anonymous(self, client: TestClient) -> None:
        client.cookies.set(_COOKIE, "not-a-signed-session-id")
        assert client.get("/api/v1/auth/me").status_code == 401


class TestLogout:
    def test_logout_clears_session(self, client: TestClient) -> None:
        _login(client)
        resp = client.post("/api/v1/auth/logout")
        assert resp.status_code == 200
        assert resp.json() == {"message": "Logged out."}
        assert client.get("/api/v1/auth/me").status_code == 401

    def test_replayed_cookie_after_logout_is_anonymous(self, client: TestClient) -> None:
        old_cookie = _login(client).cookies[_COOKIE]
        client.get("/api/v1/auth/logout")
        client.cookies.clear()
        client.cookies.set(_COOKIE, old_cookie)
        assert client.get("/api/v1/auth/me").status_code == 401

    def test_logout_when_anonymous(self, client: TestClient) -> None:
        assert client.post("/api/v1/auth/logout").status_code == 200


class TestSignup:
    def test_signup_creates_principal(self, client: TestClient) -> None:
        resp = client.post(
            "/api/v1/auth/signup",
            json={"username": "api-bob", "password": "p1", "password_confirmed": "p1"},
        )
        assert resp.status_code == 201, resp.text
        data = resp.json()
        assert data["username"] == "api-bob"
        assert isinstance(data["id"], int)
        assert _login(client, username="api-bob", password="p1").status_code == 200

    def test_signup_duplicate_name(self, client: TestClient) -> None:
        resp = client.post(
            "/api/v1/auth/signup",
            json={"username": TEST_USERNAME, "password": "x", "password_confirmed": "x"},
        )
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "duplicate_name"

    def test_signup_password_mismatch_creates_nothing(self, app_client, client: TestClient) -> None:
        _, credentials = app_client
        resp = client.post(
            "/api/v1/auth/signup",
            json={"username": "api-carol", "password": "p1", "password_confirmed": "p2"},
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "password_mismatch"
        assert credentials.find_by_name("api-carol") is None


class TestHealth:
    def test_health_no_auth_required(self, client: TestClient) -> None:
        resp = client.get("/api/v1/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "healthy"
        assert data["components"] == {"app": "ok", "database": "ok"}
