from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock


from orchat.schemas.auth import GENERIC_RESET_MESSAGE


def _register(client, email="alice@example.com", password="password123", **extra):
    return client.post("/api/register", json={"email": email, "password": password, **extra})


def test_register_sets_session_cookie(client):
    response = _register(client, email="  Alice@Example.com ", name="Alice")

    assert response.status_code == 201
    user = response.json()["user"]
    assert user["email"] == "alice@example.com"
    assert user["name"] == "Alice"
    assert "password_hash" not in user
    assert "session" in response.cookies

    me = client.get("/api/auth/me")
    assert me.status_code == 200
    assert me.json()["user"]["id"] == user["id"]


def test_register_validation(client):
    assert _register(client, email="").json()["detail"] == "Email is required"
    assert _register(client, email="nope").json()["detail"] == "Invalid email address"
    short = _register(client, password="short")
    assert short.status_code == 400
    assert short.json()["detail"] == "Password must be at least 8 characters long"

    assert _register(client).status_code == 201
    duplicate = _register(client, email="ALICE@example.com")
    assert duplicate.status_code == 400
    assert duplicate.json()["detail"] == "User with this email already exists"


def test_login_and_logout(client):
    _register(client)
    client.cookies.clear()

    bad = client.post("/api/auth/login", json={"email": "alice@example.com", "password": "wrong-pass"})
    assert bad.status_code == 401
    assert bad.json()["detail"] == "Invalid email or password"

    missing = client.post("/api/auth/login", json={"email": "alice@example.com"})
    assert missing.status_code == 400
    assert missing.json()["detail"] == "Email and password are required"

    login = client.post("/api/auth/login", json={"email": "alice@example.com", "password": "password123"})
    assert login.status_code == 200
    headers = {"Authorization": f"Bearer {login.json()['token']}"}
    client.cookies.clear()
    assert client.get("/api/auth/me", headers=headers).status_code == 200

    assert client.post("/api/auth/logout", headers=headers).status_code == 200
    assert client.get("/api/auth/me", headers=headers).status_code == 401


def test_protected_routes_require_session(client):
    response = client.get("/api/chats")
    assert response.status_code == 401
    assert response.json()["detail"] == "Unauthorized"


def test_forgot_password_is_generic(client):
    sender = client.app.state.email_sender
    sender.send_password_reset = AsyncMock()
    _register(client)

    unknown = client.post("/api/auth/forgot-password", json={"email": "ghost@example.com"})
    known = client.post("/api/auth/forgot-password", json={"email": "alice@example.com"})

    assert unknown.status_code == known.status_code == 200
    assert unknown.json() == known.json() == {"message": GENERIC_RESET_MESSAGE}
    sender.send_password_reset.assert_awaited_once()
    assert sender.send_password_reset.await_args.args[0] == "alice@example.com"


def test_forgot_password_survives_email_failure(client):
    _register(client)
    # No RESEND_API_KEY is configured, so delivery fails and is only logged
    response = client.post("/api/auth/forgot-password", json={"email": "alice@example.com"})
    assert response.status_code == 200
    assert response.json() == {"message": GENERIC_RESET_MESSAGE}


def test_reset_password_flow(client):
    sender = client.app.state.email_sender
    sender.send_password_reset = AsyncMock()
    _register(client)
    old_session = client.cookies.get("session")
    client.cookies.clear()

    client.post("/api/auth/forgot-password", json={"email": "alice@example.com"})
    token = sender.send_password_reset.await_args.args[1]

    short = client.post("/api/auth/reset-password", json={"token": token, "password": "short"})
    assert short.status_code == 400

    reset = client.post("/api/auth/reset-password", json={"token": token, "password": "brand-new-pass"})
    assert reset.status_code == 200
    assert reset.json()["message"] == "Password has been reset successfully"

    reused = client.post("/api/auth/reset-password", json={"token": token, "password": "another-pass"})
    assert reused.json()["detail"] == "This reset token has already been used"

    bogus = client.post("/api/auth/reset-password", json={"token": "bogus", "password": "another-pass"})
    assert bogus.json()["detail"] == "Invalid or expired reset token"

    assert client.get("/api/auth/me", headers={"Authorization": f"Bearer {old_session}"}).status_code == 401
    login = client.post("/api/auth/login", json={"email": "alice@example.com", "password": "brand-new-pass"})
    assert login.status_code == 200


def test_expired_reset_token_is_deleted(client):
    _register(client)
    repository = client.app.state.repository

    async def _seed() -> str:
        user = await repository.get_user_by_email("alice@example.com")
        past = datetime.now(timezone.utc) - timedelta(minutes=5)
        await repository.replace_reset_token(user["id"], "stale", past)
        return user["id"]

    client.portal.call(_seed)

    response = client.post("/api/auth/reset-password", json={"token": "stale", "password": "brand-new-pass"})
    assert response.status_code == 400
    assert response.json()["detail"] == "Reset token has expired. Please request a new one."
    assert client.portal.call(repository.get_reset_token, "stale") is None
