"""Auth resolution and the normalized error envelope."""
from datetime import datetime, timedelta, timezone

import jwt
import pytest
from sqlalchemy import select

from career_compass.core.auth import verify_session_token
from career_compass.core.config import settings
from career_compass.core.database import get_db_session, profiles
from career_compass.core.errors import UnauthorizedError


def _token(sub="u-jwt", email="jwt@example.com", expires_in=timedelta(hours=1), secret=None):
    payload = {"sub": sub, "email": email, "exp": datetime.now(timezone.utc) + expires_in}
    return jwt.encode(payload, secret or settings.SUPABASE_JWT_SECRET, algorithm="HS256")


def test_missing_credentials_return_401(client):
    resp = client.get("/api/tickets")
    assert resp.status_code == 401
    body = resp.json()
    assert body["error"] == "Unauthorized"
    assert body["code"] == "unauthorized"
    assert body["request_id"] == resp.headers["x-request-id"]


def test_bearer_token_authenticates_and_creates_profile(client):
    resp = client.get("/api/tickets", headers={"Authorization": f"Bearer {_token()}"})
    assert resp.status_code == 200

    with get_db_session() as session:
        profile = session.execute(select(profiles).where(profiles.c.id == "u-jwt")).mappings().one()
    assert profile["email"] == "jwt@example.com"
    assert profile["subscription_status"] == "free"


def test_bad_bearer_token_is_401_even_with_user_header(client):
    resp = client.get(
        "/api/tickets",
        headers={"Authorization": f"Bearer {_token(secret='wrong-secret-wrong-secret-wrong-secret')}", "X-User-Id": "u1"},
    )
    assert resp.status_code == 401


def test_expired_token_rejected():
    with pytest.raises(UnauthorizedError):
        verify_session_token(_token(expires_in=timedelta(minutes=-5)))


def test_token_without_subject_rejected():
    token = jwt.encode(
        {"exp": datetime.now(timezone.utc) + timedelta(hours=1)},
        settings.SUPABASE_JWT_SECRET,
        algorithm="HS256",
    )
    with pytest.raises(UnauthorizedError):
        verify_session_token(token)


def test_header_fallback_disabled_in_production(client, monkeypatch):
    monkeypatch.setattr(settings, "ENV", "production")
    resp = client.get("/api/tickets", headers={"X-User-Id": "u1"})
    assert resp.status_code == 401


def test_request_body_validation_is_400(client):
    resp = client.post("/api/referrals/apply", json={}, headers={"X-User-Id": "u1"})
    assert resp.status_code == 400
    body = resp.json()
    assert body["code"] == "validation_error"
    assert "code" in body["fields"]


def test_request_id_is_echoed(client):
    resp = client.get("/api/tickets", headers={"X-User-Id": "u1", "X-Request-Id": "rid-123"})
    assert resp.headers["x-request-id"] == "rid-123"


def test_healthz(client):
    resp = client.get("/healthz")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_readyz_with_tables(client):
    resp = client.get("/readyz")
    assert resp.status_code == 200
