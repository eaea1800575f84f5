"""
tests/test_auth_routes.py -- Integration tests for /api/v1/auth/* and session failures.

These tests exercise the full stack: FastAPI routing -> request validation ->
session resolution -> UserStore -> cookie handling. The cookie jar of the
TestClient plays the browser: a Set-Cookie from one response is sent back on
the next request.

Coverage:
  - register: 201 + cookie + role forced to user, duplicate email 409, validation 400
  - login: success, wrong password / unknown email share one 401, short-circuit
    with a live session, stale cookie cleared before the credential check
  - guest login: role guest, no users row created
  - logout: cookie cleared even without a session
  - expiry: a token past its TTL is rejected with the expired message
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from fastapi.testclient import TestClient

from conftest import DEFAULT_PASSWORD, cookie_cleared, seed_user, set_token_cookie, sign_in


def _session_cookie_attrs(resp) -> list[str]:
    for header in resp.headers.get_list("set-cookie"):
        if header.startswith("token="):
            return [part.strip().lower() for part in header.split(";")]
    raise AssertionError("No session cookie in response")


class TestRegister:
    def test_register_then_me(self, client: TestClient) -> None:
        """Register sets the cookie; the same cookie authenticates GET /users/me."""
        resp = client.post(
            "/api/v1/auth/register",
            json={"name": "A", "email": "a@x.com", "password": "secret1"},
        )
        assert resp.status_code == 201, f"Expected 201, got {resp.status_code}: {resp.text}"
        assert "token" in client.cookies, "Register must set the session cookie"

        me = client.get("/api/v1/users/me")
        assert me.status_code == 200, me.text
        data = me.json()
        assert data["name"] == "A"
        assert data["email"] == "a@x.com"
        assert data["role"] == "user"
        assert data["id"] == resp.json()["user"]["id"]

    def test_cookie_attributes(self, client: TestClient) -> None:
        resp = client.post(
            "/api/v1/auth/register",
            json={"name": "A", "email": "a@x.com", "password": "secret1"},
        )
        attrs = _session_cookie_attrs(resp)
        assert "httponly" in attrs
        assert "samesite=strict" in attrs
        assert "path=/api/v1" in attrs
        assert "max-age=86400" in attrs
        assert "secure" not in attrs, "Secure must be off outside production"
        assert resp.headers["cache-control"] == "no-store"

    def test_role_in_body_is_ignored(self, client: TestClient) -> None:
        """Self-registration can never create an admin."""
        resp = client.post(
            "/api/v1/auth/register",
            json={"name": "Sneaky", "email": "sneaky@x.com", "password": "secret1", "role": "admin"},
        )
        assert resp.status_code == 201
        assert resp.json()["user"]["role"] == "user"

    def test_email_is_lowercased(self, client: TestClient) -> None:
        resp = client.post(
            "/api/v1/auth/register",
            json={"name": "Mixed", "email": "MiXeD@X.com", "password": "secret1"},
        )
        assert resp.json()["user"]["email"] == "mixed@x.com"

    def test_duplicate_email_conflict(self, client: TestClient, app) -> None:
        seed_user(app, email="taken@x.com")
        resp = client.post(
            "/api/v1/auth/register",
            json={"name": "B", "email": "TAKEN@x.com", "password": "secret1"},
        )
        assert resp.status_code == 409, resp.text
        assert resp.json() == {"message": "User with this email already exists"}

    def test_password_limit_counts_utf8_bytes(self, client: TestClient, app) -> None:
        """40 characters of "é" are 80 bytes: over bcrypt's limit, so a 400 and no row."""
        resp = client.post(
            "/api/v1/auth/register",
            json={"name": "Accent", "email": "accent@x.com", "password": "é" * 40},
        )
        assert resp.status_code == 400, resp.text
        assert resp.json()["errors"][0]["field"] == "password"
        assert app.state.user_store.get_by_email("accent@x.com") is None

    def test_multibyte_password_within_limit(self, client: TestClient) -> None:
        password = "é" * 36
        reg = client.post(
            "/api/v1/auth/register",
            json={"name": "Accent", "email": "accent@x.com", "password": password},
        )
        assert reg.status_code == 201, reg.text
        client.cookies.clear()
        resp = client.post("/api/v1/auth/login", json={"email": "accent@x.com", "password": password})
        assert resp.status_code == 200, resp.text

    def test_validation_errors_listed_per_field(self, client: TestClient) -> None:
        resp = client.post(
            "/api/v1/auth/register",
            json={"name": "", "email": "not-an-email", "password": "123"},
        )
        assert resp.status_code == 400
        body = resp.json()
        assert body["message"] == "Validation failed"
        fields = {e["field"] for e in body["errors"]}
        assert fields == {"name", "email", "password"}


class TestLogin:
    def test_login_success_sets_cookie(self, client: TestClient, app) -> None:
        seed_user(app, email="ada@x.com")
        resp = client.post("/api/v1/auth/login", json={"email": "ada@x.com", "password": DEFAULT_PASSWORD})
        assert resp.status_code == 200, resp.text
        assert resp.json()["message"] == "Login successful"
        assert "token" in client.cookies
        assert client.get("/api/v1/users/me").status_code == 200

    def test_wrong_password_and_unknown_email_look_the_same(self, client: TestClient, app) -> None:
        seed_user(app, email="ada@x.com")
        wrong = client.post("/api/v1/auth/login", json={"email": "ada@x.com", "password": "nope-nope"})
        unknown = client.post("/api/v1/auth/login", json={"email": "ghost@x.com", "password": "nope-nope"})
        assert wrong.status_code == unknown.status_code == 401
        assert wrong.json() == unknown.json() == {"message": "Invalid email or password"}
        assert wrong.headers["cache-control"] == "no-store"

    def test_login_password_over_byte_limit(self, client: TestClient, app) -> None:
        seed_user(app, email="ada@x.com")
        resp = client.post("/api/v1/auth/login", json={"email": "ada@x.com", "password": "ß" * 37})
        assert resp.status_code == 400, resp.text

    def test_short_circuit_with_live_session(self, client: TestClient, app) -> None:
        """A valid persisted session skips the credential check and refreshes the token."""
        user = seed_user(app, email="ada@x.com")
        sign_in(client, user.id)
        resp = client.post("/api/v1/auth/login", json={"email": "ada@x.com", "password": "wrong-password"})
        assert resp.status_code == 200, resp.text
        assert resp.json()["message"] == "Already logged in. Session refreshed."
        assert resp.json()["user"]["id"] == user.id
        assert "max-age=86400" in _session_cookie_attrs(resp)

    def test_guest_session_does_not_short_circuit(self, client: TestClient, app) -> None:
        seed_user(app, email="ada@x.com")
        sign_in(client, "guest_1", role="guest")
        resp = client.post("/api/v1/auth/login", json={"email": "ada@x.com", "password": DEFAULT_PASSWORD})
        assert resp.status_code == 200
        assert resp.json()["message"] == "Login successful"
        assert resp.json()["user"]["role"] == "user"

    def test_stale_cookie_cleared_then_credentials_checked(self, client: TestClient, app) -> None:
        seed_user(app, email="ada@x.com")
        set_token_cookie(client, "garbage.token.value")
        resp = client.post("/api/v1/auth/login", json={"email": "ada@x.com", "password": "wrong-password"})
        assert resp.status_code == 401
        assert cookie_cleared(resp), "Stale cookie must be deleted"

    def test_stale_cookie_then_valid_credentials(self, client: TestClient, app) -> None:
        seed_user(app, email="ada@x.com")
        set_token_cookie(client, "garbage.token.value")
        resp = client.post("/api/v1/auth/login", json={"email": "ada@x.com", "password": DEFAULT_PASSWORD})
        assert resp.status_code == 200
        assert resp.json()["message"] == "Login successful"
        assert client.get("/api/v1/users/me").status_code == 200


class TestGuestAndLogout:
    def test_guest_login(self, client: TestClient, app) -> None:
        resp = client.post("/api/v1/auth/guest/login")
        assert resp.status_code == 200, resp.text
        user = resp.json()["user"]
        assert user["role"] == "guest"
        assert user["id"].startswith("guest_")
        assert user["email"] is None
        assert app.state.user_store.count_users() == 0, "Guest login must not create a row"

        me = client.get("/api/v1/users/me")
        assert me.status_code == 200
        assert me.json()["name"] == "Guest User"

    def test_logout_clears_cookie(self, client: TestClient, app) -> None:
        seed_user(app, email="ada@x.com")
        client.post("/api/v1/auth/login", json={"email": "ada@x.com", "password": DEFAULT_PASSWORD})
        resp = client.post("/api/v1/auth/logout")
        assert resp.status_code == 200
        assert resp.json() == {"message": "User logged out successfully"}
        assert cookie_cleared(resp)
        assert client.get("/api/v1/users/me").status_code == 401

    def test_logout_without_session(self, client: TestClient) -> None:
        resp = client.post("/api/v1/auth/logout")
        assert resp.status_code == 200
        assert cookie_cleared(resp)


class TestSessionFailures:
    def test_no_cookie(self, client: TestClient) -> None:
        resp = client.get("/api/v1/users/me")
        assert resp.status_code == 401
        assert resp.json() == {"message": "Not authorized, no token provided"}
        assert not cookie_cleared(resp), "Nothing to clear without a cookie"

    def test_invalid_cookie_is_cleared(self, client: TestClient) -> None:
        set_token_cookie(client, "tampered")
        resp = client.get("/api/v1/users/me")
        assert resp.status_code == 401
        assert resp.json() == {"message": "Not authorized, token is invalid"}
        assert cookie_cleared(resp)

    def test_token_replay_after_ttl(self, client: TestClient, app) -> None:
        """Log in, then present a token whose TTL has elapsed: 401 expired."""
        user = seed_user(app)
        sign_in(client, user.id)
        assert client.get("/api/v1/users/me").status_code == 200

        expired = app.state.token_codec.issue(user.id, "user", now=datetime.now(timezone.utc) - timedelta(days=2))
        set_token_cookie(client, expired)
        resp = client.get("/api/v1/users/me")
        assert resp.status_code == 401
        assert resp.json() == {"message": "Not authorized, token has expired"}
        assert cookie_cleared(resp)

    def test_token_for_deleted_user(self, client: TestClient, app) -> None:
        user = seed_user(app)
        sign_in(client, user.id)
        app.state.catalog.delete_user_account(user.id)
        resp = client.get("/api/v1/users/me")
        assert resp.status_code == 401
        assert resp.json() == {"message": "Not authorized, user for this token no longer exists"}
        assert cookie_cleared(resp)

    def test_guest_token_survives_deletion_of_all_rows(self, client: TestClient, app) -> None:
        seed_user(app)
        client.post("/api/v1/auth/guest/login")
        with app.state.engine.begin() as conn:
            for table in ("user_books", "books", "users"):
                conn.exec_driver_sql(f"DELETE FROM {table}")
        resp = client.get("/api/v1/users/me")
        assert resp.status_code == 200
        assert resp.json()["role"] == "guest"
