"""
tests/test_api_routes.py -- Integration tests for the auth and user routes.

These tests exercise the full stack: FastAPI routing -> Bearer dependency ->
CredentialFlows / AccountService -> response model serialization -> the
error envelope. Unit testing individual route functions would miss
middleware, dependency injection, and exception-handler mapping.

Fixtures used (from conftest.py):
  - api_client: (client, services, admin_id) -- the admin logs in as
    admin@ex.com with STRONG_PASSWORD. The client is module-scoped, so every
    test registers its own email.
"""

from __future__ import annotations

from fastapi.testclient import TestClient

from conftest import ADMIN_EMAIL, STRONG_PASSWORD, login_headers, register


class TestAuthFailure:
    """Unauthenticated or badly authenticated requests must return 401."""

    def test_me_without_token(self, api_client) -> None:
        client, _svc, _admin_id = api_client
        resp = client.get("/api/v1/auth/me")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthorized"

    def test_me_with_garbage_token(self, api_client) -> None:
        client, _svc, _admin_id = api_client
        resp = client.get("/api/v1/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
        assert resp.status_code == 401

    def test_wrong_scheme(self, api_client) -> None:
        client, _svc, _admin_id = api_client
        headers = login_headers(client, ADMIN_EMAIL)
        resp = client.get("/api/v1/auth/me", headers={"Authorization": headers["Authorization"].replace("Bearer", "Basic")})
        assert resp.status_code == 401

    def test_refresh_token_cannot_authenticate(self, api_client) -> None:
        client, _svc, _admin_id = api_client
        data = client.post("/api/v1/auth/login", json={"email": ADMIN_EMAIL, "password": STRONG_PASSWORD}).json()
        resp = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {data['refresh_token']}"})
        assert resp.status_code == 401

    def test_projects_require_auth(self, api_client) -> None:
        client, _svc, _admin_id = api_client
        assert client.get("/api/v1/projects").status_code == 401
        assert client.post("/api/v1/projects", json={"name": "X"}).status_code == 401


class TestRegisterAndLogin:
    def test_register_returns_profile(self, api_client) -> None:
        client, _svc, _admin_id = api_client
        resp = client.post(
            "/api/v1/auth/register",
            json={"email": "alice@ex.com", "password": STRONG_PASSWORD, "first_name": "Alice", "last_name": "Smith"},
        )
        assert resp.status_code == 201, resp.text
        data = resp.json()
        assert data["email"] == "alice@ex.com"
        assert data["role"] == "user"
        assert "hashed_password" not in data

    def test_register_duplicate_is_409(self, api_client) -> None:
        client, _svc, _admin_id = api_client
        register(client, "dup@ex.com")
        resp = client.post(
            "/api/v1/auth/register",
            json={"email": "DUP@ex.com", "password": STRONG_PASSWORD, "first_name": "D", "last_name": "Up"},
        )
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "conflict"

    def test_register_weak_password_is_422_with_reasons(self, api_client) -> None:
        client, _svc, _admin_id = api_client
        resp = client.post(
            "/api/v1/auth/register",
            json={"email": "weak@ex.com", "password": "abc", "first_name": "W", "last_name": "Eak"},
        )
        assert resp.status_code == 422
        error = resp.json()["error"]
        assert error["code"] == "validation_error"
        assert len(error["reasons"]) == 4

    def test_register_password_over_72_bytes_is_422(self, api_client) -> None:
        client, _svc, _admin_id = api_client
        resp = client.post(
            "/api/v1/auth/register",
            json={"email": "long@ex.com", "password": "Aa1!" + "x" * 80, "first_name": "L", "last_name": "Ong"},
        )
        assert resp.status_code == 422
        assert resp.json()["error"]["reasons"] == ["Password must be at most 72 bytes long"]

    def test_login_with_over_length_password_is_401(self, api_client) -> None:
        client, _svc, _admin_id = api_client
        register(client, "longlogin@ex.com")
        resp = client.post(
            "/api/v1/auth/login",
            json={"email": "longlogin@ex.com", "password": STRONG_PASSWORD + "x" * 80},
        )
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthorized"

    def test_register_bad_email_is_422(self, api_client) -> None:
        client, _svc, _admin_id = api_client
        resp = client.post(
            "/api/v1/auth/register",
            json={"email": "nope", "password": STRONG_PASSWORD, "first_name": "N", "last_name": "O"},
        )
        assert resp.status_code == 422

    def test_login_returns_tokens_and_profile(self, api_client) -> None:
        client, _svc, _admin_id = api_client
        register(client, "login@ex.com")
        resp = client.post("/api/v1/auth/login", json={"email": "login@ex.com", "password": STRONG_PASSWORD})
        assert resp.status_code == 200
        assert resp.headers["cache-control"] == "no-store"
        data = resp.json()
        assert data["token_type"] == "bearer"
        assert data["expires_in"] == 15 * 60
        assert data["access_token"] and data["refresh_token"]
        assert data["user"]["email"] == "login@ex.com"

    def test_login_failures_share_one_message(self, api_client) -> None:
        client, _svc, _admin_id = api_client
        register(client, "samemsg@ex.com")
        wrong = client.post("/api/v1/auth/login", json={"email": "samemsg@ex.com", "password": "Wr0ng!Pass"})
        unknown = client.post("/api/v1/auth/login", json={"email": "ghost@ex.com", "password": STRONG_PASSWORD})
        assert wrong.status_code == unknown.status_code == 401
        assert wrong.json() == unknown.json()

    def test_me(self, api_client) -> None:
        client, _svc, admin_id = api_client
        resp = client.get("/api/v1/auth/me", headers=login_headers(client, ADMIN_EMAIL))
        assert resp.status_code == 200
        assert resp.json()["id"] == admin_id
        assert resp.json()["role"] == "admin"


class TestSessions:
    def _login(self, client: TestClient, email: str) -> dict:
        resp = client.post("/api/v1/auth/login", json={"email": email, "password": STRONG_PASSWORD})
        assert resp.status_code == 200
        return resp.json()

    def test_refresh_rotates(self, api_client) -> None:
        client, _svc, _admin_id = api_client
        register(client, "rotate@ex.com")
        first = self._login(client, "rotate@ex.com")
        resp = client.post("/api/v1/auth/refresh", json={"refresh_token": first["refresh_token"]})
        assert resp.status_code == 200
        second = resp.json()
        assert second["refresh_token"] != first["refresh_token"]

        replay = client.post("/api/v1/auth/refresh", json={"refresh_token": first["refresh_token"]})
        assert replay.status_code == 401

    def test_logout_revokes_refresh_token(self, api_client) -> None:
        client, _svc, _admin_id = api_client
        register(client, "logout@ex.com")
        tokens = self._login(client, "logout@ex.com")
        resp = client.post(
            "/api/v1/auth/logout",
            json={"refresh_token": tokens["refresh_token"]},
            headers={"Authorization": f"Bearer {tokens['access_token']}"},
        )
        assert resp.status_code == 200
        assert resp.json() == {"success": True}
        assert client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]}).status_code == 401

    def test_logout_without_anything_succeeds(self, api_client) -> None:
        client, _svc, _admin_id = api_client
        assert client.post("/api/v1/auth/logout").status_code == 200

    def test_logout_all_and_sessions(self, api_client) -> None:
        client, _svc, _admin_id = api_client
        register(client, "everywhere@ex.com")
        sessions = [self._login(client, "everywhere@ex.com") for _ in range(3)]
        headers = {"Authorization": f"Bearer {sessions[0]['access_token']}"}

        listed = client.get("/api/v1/auth/sessions", headers=headers).json()
        assert len(listed) == 3
        assert all("token_hash" not in s for s in listed)

        resp = client.post("/api/v1/auth/logout-all", headers=headers)
        assert resp.status_code == 200
        assert resp.json()["tokens_revoked"] == 3
        for s in sessions:
            assert client.post("/api/v1/auth/refresh", json={"refresh_token": s["refresh_token"]}).status_code == 401


class TestUsers:
    def test_list_users_admin_only(self, api_client) -> None:
        client, _svc, _admin_id = api_client
        register(client, "plain@ex.com")
        assert client.get("/api/v1/users", headers=login_headers(client, "plain@ex.com")).status_code == 403
        resp = client.get("/api/v1/users", headers=login_headers(client, ADMIN_EMAIL))
        assert resp.status_code == 200
        assert "plain@ex.com" in [u["email"] for u in resp.json()]

    def test_update_me(self, api_client) -> None:
        client, _svc, _admin_id = api_client
        register(client, "rename@ex.com")
        headers = login_headers(client, "rename@ex.com")
        resp = client.patch("/api/v1/users/me", json={"first_name": "Renamed"}, headers=headers)
        assert resp.status_code == 200
        assert resp.json()["first_name"] == "Renamed"
        assert client.get("/api/v1/auth/me", headers=headers).json()["first_name"] == "Renamed"

    def test_other_profiles_are_admin_only(self, api_client) -> None:
        client, _svc, admin_id = api_client
        uid = register(client, "nosy@ex.com")
        headers = login_headers(client, "nosy@ex.com")
        assert client.get(f"/api/v1/users/{uid}", headers=headers).status_code == 200
        assert client.get(f"/api/v1/users/{admin_id}", headers=headers).status_code == 403

    def test_role_change(self, api_client) -> None:
        client, _svc, _admin_id = api_client
        uid = register(client, "promote@ex.com")
        user_headers = login_headers(client, "promote@ex.com")
        resp = client.patch(f"/api/v1/users/{uid}/role", json={"role": "admin"}, headers=login_headers(client, ADMIN_EMAIL))
        assert resp.status_code == 200
        assert resp.json()["role"] == "admin"
        # The existing token now carries admin rights.
        assert client.get("/api/v1/users", headers=user_headers).status_code == 200

    def test_invalid_role_is_422(self, api_client) -> None:
        client, _svc, _admin_id = api_client
        uid = register(client, "badrole@ex.com")
        resp = client.patch(f"/api/v1/users/{uid}/role", json={"role": "owner"}, headers=login_headers(client, ADMIN_EMAIL))
        assert resp.status_code == 422

    def test_deactivate_mid_session(self, api_client) -> None:
        client, _svc, _admin_id = api_client
        uid = register(client, "leaver@ex.com")
        tokens = client.post("/api/v1/auth/login", json={"email": "leaver@ex.com", "password": STRONG_PASSWORD}).json()
        headers = {"Authorization": f"Bearer {tokens['access_token']}"}
        assert client.get("/api/v1/auth/me", headers=headers).status_code == 200

        resp = client.post(f"/api/v1/users/{uid}/deactivate", headers=login_headers(client, ADMIN_EMAIL))
        assert resp.status_code == 200
        assert resp.json() == {"id": uid, "is_active": False, "sessions_revoked": 1}

        assert client.get("/api/v1/auth/me", headers=headers).status_code == 401
        assert client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]}).status_code == 401
        relogin = client.post("/api/v1/auth/login", json={"email": "leaver@ex.com", "password": STRONG_PASSWORD})
        assert relogin.status_code == 401

    def test_admin_cannot_deactivate_self(self, api_client) -> None:
        client, _svc, admin_id = api_client
        resp = client.post(f"/api/v1/users/{admin_id}/deactivate", headers=login_headers(client, ADMIN_EMAIL))
        assert resp.status_code == 422

    def test_deactivate_unknown_user_is_404(self, api_client) -> None:
        client, _svc, _admin_id = api_client
        resp = client.post("/api/v1/users/99999/deactivate", headers=login_headers(client, ADMIN_EMAIL))
        assert resp.status_code == 404
