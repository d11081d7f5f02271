from datetime import timedelta
from unittest.mock import patch

import httpx

from auth import create_access_token, create_refresh_token
from auth_providers import get_auth_provider
from conftest import register


def test_register_returns_tokens_and_profile(client):
    data = register(client)

    assert data["user"]["email"] == "tenant@example.com"
    assert data["user"]["username"] == "tenant"
    assert data["needsConfirmation"] is False
    assert data["token"] and data["refresh_token"]


def test_register_rejects_duplicates_and_bad_input(client):
    register(client)

    duplicate = client.post("/api/auth/register", json={
        "email": "TENANT@example.com", "password": "secret123", "username": "tenant2", "full_name": "Another",
    })
    assert duplicate.status_code == 400
    assert duplicate.json()["message"] == "User already exists"

    invalid = client.post("/api/auth/register", json={
        "email": "not-an-email", "password": "123", "username": "x!", "full_name": "A",
    })
    assert invalid.status_code == 400
    errors = invalid.json()["errors"]
    assert "Password must be at least 6 characters long" in errors
    assert "Username must contain only alphanumeric characters" in errors
    assert "Full name must be at least 2 characters long" in errors


def test_registration_awaiting_confirmation(client, monkeypatch):
    monkeypatch.setenv("REQUIRE_EMAIL_CONFIRMATION", "true")
    data = register(client)

    assert data["needsConfirmation"] is True
    assert "token" not in data

    login = client.post("/api/auth/login", json={"email": "tenant@example.com", "password": "secret123"})
    assert login.status_code == 401


def test_login_and_profile(client):
    register(client)

    bad = client.post("/api/auth/login", json={"email": "tenant@example.com", "password": "wrong-password"})
    assert bad.status_code == 401
    assert bad.json()["message"] == "Invalid credentials"

    login = client.post("/api/auth/login", json={"email": "tenant@example.com", "password": "secret123"})
    assert login.status_code == 200
    token = login.json()["data"]["token"]

    profile = client.get("/api/auth/profile", headers={"Authorization": f"Bearer {token}"})
    assert profile.status_code == 200
    assert profile.json()["data"]["user"]["email_confirmed"] is True


def test_profile_update_requires_a_field(client):
    headers = {"Authorization": f"Bearer {register(client)['token']}"}

    empty = client.put("/api/auth/profile", json={}, headers=headers)
    assert empty.status_code == 400
    assert empty.json()["errors"] == ["At least one field must be provided for update"]

    updated = client.put("/api/auth/profile", json={"full_name": "Renamed Tenant"}, headers=headers)
    assert updated.status_code == 200
    assert updated.json()["data"]["user"]["full_name"] == "Renamed Tenant"
    assert updated.json()["data"]["user"]["username"] == "tenant"


def test_invalid_and_expired_tokens(client):
    data = register(client)
    user = get_auth_provider().get_user(data["user"]["id"])

    garbage = client.get("/api/auth/profile", headers={"Authorization": "Bearer not-a-token"})
    assert garbage.status_code == 401
    assert garbage.json()["message"] == "Invalid token"

    expired = create_access_token(user, expires_delta=timedelta(minutes=-1))
    response = client.get("/api/auth/profile", headers={"Authorization": f"Bearer {expired}"})
    assert response.status_code == 401
    assert response.json()["message"] == "Token expired"


def test_refresh_token_is_not_an_access_token(client):
    data = register(client)

    response = client.get("/api/auth/profile", headers={"Authorization": f"Bearer {data['refresh_token']}"})
    assert response.status_code == 401

    refreshed = client.post("/api/auth/refresh", json={"refresh_token": data["refresh_token"]})
    assert refreshed.status_code == 200
    assert refreshed.json()["data"]["user"]["id"] == data["user"]["id"]

    access_as_refresh = client.post("/api/auth/refresh", json={"refresh_token": data["token"]})
    assert access_as_refresh.status_code == 401

    assert client.post("/api/auth/refresh", json={}).status_code == 400


def test_tokens_of_deleted_users_stop_working(client):
    data = register(client)
    user = get_auth_provider().get_user(data["user"]["id"])
    refresh = create_refresh_token(user)
    get_auth_provider().delete_user(user.id)

    response = client.get("/api/auth/profile", headers={"Authorization": f"Bearer {data['token']}"})
    assert response.status_code == 401
    assert response.json()["message"] == "Invalid or expired token"
    assert client.post("/api/auth/refresh", json={"refresh_token": refresh}).status_code == 401


def test_logout_always_succeeds(client):
    assert client.post("/api/auth/logout").status_code == 200

    data = register(client)
    response = client.post("/api/auth/logout", headers={"Authorization": f"Bearer {data['token']}"})
    assert response.json() == {"success": True, "message": "Logout successful"}


def test_google_sign_in_unavailable_without_credentials(client):
    with patch("auth_routes.GOOGLE_CLIENT_ID", None):
        assert client.get("/api/auth/google").status_code == 501


def test_google_callback_creates_user_and_redirects(client):
    profile = {"email": "oauth.user@example.com", "name": "OAuth User", "picture": "https://example.com/a.png"}
    with patch("auth_routes.GOOGLE_CLIENT_ID", "client-id"), \
            patch("auth_routes.GOOGLE_CLIENT_SECRET", "client-secret"), \
            patch("auth_routes.fetch_google_profile", return_value=profile):
        start = client.get("/api/auth/google")
        assert "accounts.google.com" in start.json()["data"]["url"]

        response = client.get("/api/auth/callback?code=abc", follow_redirects=False)

    assert response.status_code == 307
    assert response.headers["location"].startswith("http://localhost:3000/auth/success?token=")
    user = get_auth_provider().get_user_by_email("oauth.user@example.com")
    assert user.full_name == "OAuth User"
    assert user.email_confirmed_at is not None


def test_google_callback_exchange_failure(client):
    with patch("auth_routes.GOOGLE_CLIENT_ID", "client-id"), \
            patch("auth_routes.GOOGLE_CLIENT_SECRET", "client-secret"), \
            patch("auth_routes.fetch_google_profile", side_effect=httpx.ConnectError("unreachable")):
        response = client.get("/api/auth/callback?code=abc", follow_redirects=False)

    assert response.status_code == 400
    assert response.json()["message"] == "OAuth callback failed"
