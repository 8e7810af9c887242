"""
Tests for the authentication routes: tokens, registration and password reset
"""

import re

import pytest

from hookcms.services import email_service
from hookcms.services.options_service import OptionsService


LOGIN_URL = "/api/v1/auth/login"
TEST_PASSWORD = "Secret123!"  # nosec B105


async def login(client, email="admin@example.com", password=TEST_PASSWORD):
    return await client.post(LOGIN_URL, json={"email": email, "password": password})


@pytest.fixture
async def smtp_configured(db):
    for name, value in (("smtp_host", "smtp.example.com"), ("smtp_user", "mailer"), ("smtp_password", "pw")):
        await OptionsService.set_option(db, name, value)


@pytest.fixture
def outbox(monkeypatch):
    sent = []
    monkeypatch.setattr(email_service, "_deliver", lambda transport, msg: sent.append(msg))
    return sent


class TestLogin:
    async def test_login_returns_token_pair(self, client, admin_user):
        response = await login(client)

        assert response.status_code == 200
        data = response.json()
        assert set(data) == {"accessToken", "refreshToken", "expiresIn", "expiresAt"}
        assert data["expiresIn"] > 0

    async def test_wrong_password(self, client, admin_user):
        response = await login(client, password="Wrong123!")

        assert response.status_code == 401
        assert response.json()["error"]["error_code"] == "AUTH_INVALID_CREDENTIALS"

    async def test_unknown_email(self, client):
        response = await login(client, email="nobody@example.com")
        assert response.status_code == 401

    async def test_token_authenticates_requests(self, client, admin_user):
        tokens = (await login(client)).json()

        response = await client.get(
            "/api/v1/users/me", headers={"Authorization": f"Bearer {tokens['accessToken']}"}
        )

        assert response.status_code == 200
        assert response.json()["email"] == "admin@example.com"

    async def test_garbage_token_is_rejected(self, client):
        response = await client.get("/api/v1/users/me", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401


class TestRefresh:
    async def test_refresh_rotates_the_token(self, client, admin_user):
        tokens = (await login(client)).json()

        response = await client.post("/api/v1/auth/refresh", json={"refreshToken": tokens["refreshToken"]})
        assert response.status_code == 200
        rotated = response.json()
        assert rotated["refreshToken"] != tokens["refreshToken"]

        reused = await client.post("/api/v1/auth/refresh", json={"refreshToken": tokens["refreshToken"]})
        assert reused.status_code == 401

        again = await client.post("/api/v1/auth/refresh", json={"refreshToken": rotated["refreshToken"]})
        assert again.status_code == 200

    async def test_missing_refresh_token(self, client):
        response = await client.post("/api/v1/auth/refresh", json={})
        assert response.status_code == 400

    async def test_access_token_is_not_a_refresh_token(self, client, admin_user):
        tokens = (await login(client)).json()

        response = await client.post("/api/v1/auth/refresh", json={"refreshToken": tokens["accessToken"]})

        assert response.status_code == 401


class TestLogout:
    async def test_logout_revokes_access_and_refresh_tokens(self, client, admin_user):
        tokens = (await login(client)).json()
        headers = {"Authorization": f"Bearer {tokens['accessToken']}"}

        response = await client.post("/api/v1/auth/logout", headers=headers)
        assert response.status_code == 200
        assert response.json()["success"] is True

        assert (await client.get("/api/v1/users/me", headers=headers)).status_code == 401
        refreshed = await client.post("/api/v1/auth/refresh", json={"refreshToken": tokens["refreshToken"]})
        assert refreshed.status_code == 401

    async def test_logout_requires_a_token(self, client):
        response = await client.post("/api/v1/auth/logout")
        assert response.status_code == 401


class TestRegister:
    async def test_disabled_by_default(self, client):
        response = await client.post(
            "/api/v1/auth/register", json={"email": "new@example.com", "password": TEST_PASSWORD}
        )

        assert response.status_code == 403
        assert response.json()["error"]["error_code"] == "AUTH_REGISTRATION_DISABLED"

    async def test_register_when_allowed(self, client, db):
        await OptionsService.set_option(db, "allow_registrations", True)

        response = await client.post(
            "/api/v1/auth/register",
            json={"email": "new@example.com", "password": TEST_PASSWORD, "username": "newbie"},
        )

        assert response.status_code == 201
        headers = {"Authorization": f"Bearer {response.json()['accessToken']}"}
        me = (await client.get("/api/v1/users/me", headers=headers)).json()
        assert me["username"] == "newbie"
        assert me["roles"] == ["user"]

    async def test_weak_password(self, client, db):
        await OptionsService.set_option(db, "allow_registrations", True)

        response = await client.post(
            "/api/v1/auth/register", json={"email": "new@example.com", "password": "password"}
        )

        assert response.status_code == 400
        assert response.json()["error"]["details"]["field"] == "password"

    async def test_duplicate_email(self, client, db, admin_user):
        await OptionsService.set_option(db, "allow_registrations", True)

        response = await client.post(
            "/api/v1/auth/register", json={"email": "admin@example.com", "password": TEST_PASSWORD}
        )

        assert response.status_code == 409

    async def test_welcome_email_is_sent(self, client, db, smtp_configured, outbox):
        await OptionsService.set_option(db, "allow_registrations", True)

        await client.post("/api/v1/auth/register", json={"email": "new@example.com", "password": TEST_PASSWORD})

        assert len(outbox) == 1
        assert outbox[0]["To"] == "new@example.com"
        assert outbox[0]["Subject"].startswith("Welcome to")


class TestPasswordReset:
    async def test_unknown_email_gets_the_same_answer(self, client, outbox):
        response = await client.post("/api/v1/auth/forgot-password", json={"email": "nobody@example.com"})

        assert response.status_code == 200
        assert "If this email exists" in response.json()["message"]
        assert outbox == []

    async def test_reset_flow(self, client, admin_user, smtp_configured, outbox):
        response = await client.post(
            "/api/v1/auth/forgot-password",
            json={"email": "admin@example.com", "origin": "https://cms.example.com"},
        )
        assert response.status_code == 200

        [message] = outbox
        body = message.as_string()
        assert "https://cms.example.com/admin/reset-password?token=" in body
        token = re.search(r"token=([0-9a-f]{64})", body).group(1)

        valid = await client.post("/api/v1/auth/validate-reset-token", json={"token": token})
        assert valid.json() == {"valid": True}

        reset = await client.post("/api/v1/auth/reset-password", json={"token": token, "password": "NewSecret1!"})
        assert reset.status_code == 200

        assert (await login(client, password=TEST_PASSWORD)).status_code == 401
        assert (await login(client, password="NewSecret1!")).status_code == 200

        reused = await client.post("/api/v1/auth/reset-password", json={"token": token, "password": "Other123!"})
        assert reused.status_code == 401

    async def test_invalid_token(self, client):
        response = await client.post("/api/v1/auth/validate-reset-token", json={"token": "f" * 64})

        assert response.status_code == 401
        assert response.json()["error"]["details"]["valid"] is False

    async def test_reset_rejects_weak_password(self, client, admin_user, db):
        from hookcms.services.password_reset_service import PasswordResetService

        _, token = await PasswordResetService.create_reset_token(db, "admin@example.com")

        response = await client.post("/api/v1/auth/reset-password", json={"token": token, "password": "short"})

        assert response.status_code == 400
