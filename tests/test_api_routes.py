"""
tests/test_api_routes.py -- Integration tests for the v1 REST routes.

These tests exercise the full stack: FastAPI routing -> bearer dependency ->
service -> repository -> response model serialization, against the per-test
SQLite database wired in by conftest's patched lifespan.

Coverage:
  - Health: 200 without auth, database reachable
  - Auth: signup 201 (first account ADMIN, always a personal team),
    duplicate 409, login no-store, bad password 401, /me 401 without token
  - Error envelope: {"error": {"code", "message", ...}} on service and
    request-validation errors
  - Teams: create 201, member read 200, cross-tenant read 404, delete with
    members 409 carrying member_count
  - Invitations: create returns the token once, list never does,
    validate/accept/validate-again lifecycle
  - Admin routes: non-admin 403
"""

from __future__ import annotations

from fastapi.testclient import TestClient

PASSWORD = "correct horse battery"


def _signup(client: TestClient, email: str, **extra) -> dict:
    resp = client.post("/api/v1/auth/signup", json={"email": email, "password": PASSWORD, **extra})
    assert resp.status_code == 201, f"Expected 201, got {resp.status_code}: {resp.text}"
    return resp.json()


class TestHealth:
    def test_health_no_auth_required(self, api_client: TestClient) -> None:
        resp = api_client.get("/api/v1/health", headers={})
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "ok"
        assert data["database"] == "ok"
        assert "version" in data


class TestAuthRoutes:
    def test_first_signup_is_admin(self, api_client: TestClient) -> None:
        first = _signup(api_client, "first@example.com", first_name="Ada")
        second = _signup(api_client, "second@example.com")
        assert first["role"] == "ADMIN"
        assert second["role"] == "USER"
        assert first["team_id"] is not None
        assert "password_hash" not in first

    def test_duplicate_signup_conflict_envelope(self, api_client: TestClient) -> None:
        _signup(api_client, "dup@example.com")
        resp = api_client.post("/api/v1/auth/signup", json={"email": "DUP@example.com", "password": PASSWORD})
        assert resp.status_code == 409
        error = resp.json()["error"]
        assert error["code"] == "conflict"
        assert error["message"] == "An account with this email already exists."

    def test_signup_ignores_team_id(self, api_client: TestClient) -> None:
        owner = _signup(api_client, "owner@example.com")
        joiner = _signup(api_client, "joiner@example.com", team_id=owner["team_id"])
        assert joiner["team_id"] != owner["team_id"]

        missing = api_client.post(
            "/api/v1/auth/signup", json={"email": "ghost@example.com", "password": PASSWORD, "team_id": 99999}
        )
        assert missing.status_code == 201

    def test_signup_malformed_email_422(self, api_client: TestClient) -> None:
        resp = api_client.post("/api/v1/auth/signup", json={"email": "not-an-email", "password": PASSWORD})
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"

    def test_login_returns_no_store_tokens(self, api_client: TestClient) -> None:
        _signup(api_client, "login@example.com")
        resp = api_client.post("/api/v1/auth/login", json={"email": "login@example.com", "password": PASSWORD})
        assert resp.status_code == 200
        assert resp.headers["Cache-Control"] == "no-store"
        data = resp.json()
        assert data["token_type"] == "bearer"
        assert data["access_token"] and data["refresh_token"]

    def test_login_bad_password_401(self, api_client: TestClient) -> None:
        _signup(api_client, "login@example.com")
        resp = api_client.post("/api/v1/auth/login", json={"email": "login@example.com", "password": "wrong"})
        assert resp.status_code == 401
        assert resp.json()["error"]["message"] == "Invalid email or password."

    def test_me_requires_token(self, api_client: TestClient) -> None:
        resp = api_client.get("/api/v1/auth/me")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthorized"

    def test_me_with_token(self, api_client: TestClient, login_headers) -> None:
        created = _signup(api_client, "me@example.com")
        resp = api_client.get("/api/v1/auth/me", headers=login_headers("me@example.com"))
        assert resp.status_code == 200
        assert resp.json()["id"] == created["id"]

    def test_refresh_round_trip(self, api_client: TestClient) -> None:
        _signup(api_client, "refresh@example.com")
        tokens = api_client.post(
            "/api/v1/auth/login", json={"email": "refresh@example.com", "password": PASSWORD}
        ).json()
        resp = api_client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
        assert resp.status_code == 200
        assert resp.headers["Cache-Control"] == "no-store"

    def test_non_admin_cannot_change_platform_role(self, api_client: TestClient, login_headers) -> None:
        admin = _signup(api_client, "admin@example.com")
        _signup(api_client, "user@example.com")
        resp = api_client.patch(
            f"/api/v1/auth/accounts/{admin['id']}/role",
            json={"role": "USER"},
            headers=login_headers("user@example.com"),
        )
        assert resp.status_code == 403
        assert resp.json()["error"]["message"] == "Admin access required."

    def test_admin_promotes_user(self, api_client: TestClient, login_headers) -> None:
        _signup(api_client, "admin@example.com")
        user = _signup(api_client, "user@example.com")
        resp = api_client.patch(
            f"/api/v1/auth/accounts/{user['id']}/role",
            json={"role": "ADMIN"},
            headers=login_headers("admin@example.com"),
        )
        assert resp.status_code == 200
        assert resp.json() == {"account_id": user["id"], "old_role": "USER", "new_role": "ADMIN", "team_id": None}


class TestTeamRoutes:
    def test_create_and_read_team(self, api_client: TestClient, login_headers) -> None:
        _signup(api_client, "admin@example.com")
        _signup(api_client, "owner@example.com")
        headers = login_headers("owner@example.com")

        resp = api_client.post("/api/v1/teams", json={"name": "Platform", "slug": "platform"}, headers=headers)
        assert resp.status_code == 201, resp.text
        team = resp.json()

        detail = api_client.get(f"/api/v1/teams/{team['id']}", headers=headers)
        assert detail.status_code == 200
        assert detail.json()["slug"] == "platform"

        members = api_client.get(f"/api/v1/teams/{team['id']}/members", headers=headers).json()
        assert [m["role"] for m in members] == ["OWNER"]

    def test_cross_tenant_read_is_404(self, api_client: TestClient, login_headers) -> None:
        _signup(api_client, "admin@example.com")
        owner = _signup(api_client, "owner@example.com")
        _signup(api_client, "outsider@example.com")

        resp = api_client.get(f"/api/v1/teams/{owner['team_id']}", headers=login_headers("outsider@example.com"))
        assert resp.status_code == 404
        assert resp.json()["error"] == {"code": "not_found", "message": "Team not found."}

    def test_delete_team_with_members_409(self, api_client: TestClient, login_headers) -> None:
        _signup(api_client, "admin@example.com")
        owner = _signup(api_client, "owner@example.com")

        resp = api_client.delete(f"/api/v1/teams/{owner['team_id']}", headers=login_headers("admin@example.com"))
        assert resp.status_code == 409
        error = resp.json()["error"]
        assert error["metadata"] == {"member_count": 1}
        assert "1 active member(s)" in error["message"]

    def test_invalid_slug_422(self, api_client: TestClient, login_headers) -> None:
        _signup(api_client, "admin@example.com")
        resp = api_client.post(
            "/api/v1/teams",
            json={"name": "Bad", "slug": "Not A Slug"},
            headers=login_headers("admin@example.com"),
        )
        assert resp.status_code == 422


class TestInvitationRoutes:
    def _invite(self, client: TestClient, headers: dict, team_id: int) -> dict:
        resp = client.post(
            "/api/v1/invitations",
            json={"email": "invitee@example.com", "team_id": team_id, "message": "Join us"},
            headers=headers,
        )
        assert resp.status_code == 201, resp.text
        return resp.json()

    def test_invitation_lifecycle(self, api_client: TestClient, login_headers) -> None:
        _signup(api_client, "admin@example.com")
        owner = _signup(api_client, "owner@example.com")
        headers = login_headers("owner@example.com")
        created = self._invite(api_client, headers, owner["team_id"])
        token = created["token"]
        assert created["email"] == "invitee@example.com"

        listed = api_client.get(f"/api/v1/teams/{owner['team_id']}/invitations", headers=headers).json()
        assert [i["id"] for i in listed] == [created["id"]]
        assert "token" not in listed[0]
        assert "token_hash" not in listed[0]

        check = api_client.get("/api/v1/invitations/validate", params={"token": token}).json()
        assert check["valid"] is True
        assert check["email"] == "invitee@example.com"

        accepted = api_client.post(
            "/api/v1/invitations/accept",
            json={"token": token, "password": PASSWORD, "first_name": "Ivy"},
        )
        assert accepted.status_code == 201, accepted.text
        assert accepted.headers["Cache-Control"] == "no-store"
        body = accepted.json()
        assert body["account"]["email"] == "invitee@example.com"
        assert body["account"]["team_id"] == owner["team_id"]
        assert body["tokens"]["access_token"]

        again = api_client.get("/api/v1/invitations/validate", params={"token": token}).json()
        assert (again["valid"], again["reason"]) == (False, "used")

        replay = api_client.post("/api/v1/invitations/accept", json={"token": token, "password": PASSWORD})
        assert replay.status_code == 404

    def test_validate_unknown_token(self, api_client: TestClient) -> None:
        resp = api_client.get("/api/v1/invitations/validate", params={"token": "nope"})
        assert resp.status_code == 200
        assert resp.json()["reason"] == "not_found"

    def test_invite_requires_auth(self, api_client: TestClient) -> None:
        resp = api_client.post("/api/v1/invitations", json={"email": "x@example.com", "team_id": 1})
        assert resp.status_code == 401

    def test_outsider_cannot_list_invitations(self, api_client: TestClient, login_headers) -> None:
        _signup(api_client, "admin@example.com")
        owner = _signup(api_client, "owner@example.com")
        _signup(api_client, "outsider@example.com")
        resp = api_client.get(
            f"/api/v1/teams/{owner['team_id']}/invitations", headers=login_headers("outsider@example.com")
        )
        assert resp.status_code == 404
