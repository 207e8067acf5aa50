import pytest

from app.core.exceptions import UnauthorizedError
from app.deps import SESSION_COOKIE_NAME
from app.models.audit_log import AuditLog
from app.models.user import User
from app.services import users as user_service
from conftest import auth_headers


async def test_me_requires_cookie(client):
    r = await client.get("/v1/auth/me")
    assert r.status_code == 401
    assert r.json()["error"]["message"] == "Not authenticated"


async def test_me_with_tampered_cookie(client):
    r = await client.get("/v1/auth/me", headers={"Cookie": f"{SESSION_COOKIE_NAME}=garbage"})
    assert r.status_code == 401


async def test_me_returns_user(client, user):
    r = await client.get("/v1/auth/me", headers=auth_headers(user))
    assert r.status_code == 200
    assert r.json()["email"] == "alice@example.com"
    assert r.json()["id"] == str(user.id)


async def test_logout_invalidates_existing_sessions(client, user):
    headers = auth_headers(user)
    r = await client.post("/v1/auth/logout", headers=headers)
    assert r.status_code == 200
    assert r.json() == {"status": "logged_out"}
    r = await client.get("/v1/auth/me", headers=headers)
    assert r.status_code == 401
    assert r.json()["error"]["message"] == "Session invalidated"


async def test_refresh_reissues_cookie(client, user):
    r = await client.post("/v1/auth/refresh", headers=auth_headers(user))
    assert r.status_code == 200
    assert SESSION_COOKIE_NAME in r.headers.get("set-cookie", "")


async def test_google_sign_in_creates_then_updates_user(client, monkeypatch):
    claims = {"sub": "google-123", "email": "carol@example.com", "name": "Carol", "picture": None}
    monkeypatch.setattr(user_service, "verify_google_id_token", lambda token: dict(claims))

    r = await client.post("/v1/auth/google", json={"id_token": "tok"})
    assert r.status_code == 200
    assert r.json()["user"]["email"] == "carol@example.com"
    assert SESSION_COOKIE_NAME in r.headers.get("set-cookie", "")

    claims["name"] = "Carol D."
    r = await client.post("/v1/auth/google", json={"id_token": "tok"})
    assert r.json()["user"]["name"] == "Carol D."
    assert await User.find(User.google_sub == "google-123").count() == 1
    assert await AuditLog.find(AuditLog.event_type == "user_created").count() == 1
    assert await AuditLog.find(AuditLog.event_type == "user_login").count() == 1


async def test_invalid_google_token(client, monkeypatch):
    def reject(token, request, audience):
        raise ValueError("Wrong number of segments in token")

    monkeypatch.setattr(user_service.id_token, "verify_oauth2_token", reject)
    r = await client.post("/v1/auth/google", json={"id_token": "not-a-jwt"})
    assert r.status_code == 401
    assert r.json()["error"]["code"] == "UNAUTHORIZED"


def test_sign_in_without_client_id_is_config_error(monkeypatch):
    from app.core.config import get_settings
    from app.core.exceptions import ConfigurationError
    monkeypatch.setattr(get_settings(), "google_client_id", "")
    with pytest.raises(ConfigurationError):
        user_service.verify_google_id_token("tok")


def test_google_auth_error_is_unauthorized(monkeypatch):
    from google.auth.exceptions import TransportError

    def offline(token, request, audience):
        raise TransportError("cannot fetch certs")

    monkeypatch.setattr(user_service.id_token, "verify_oauth2_token", offline)
    with pytest.raises(UnauthorizedError):
        user_service.verify_google_id_token("tok")
