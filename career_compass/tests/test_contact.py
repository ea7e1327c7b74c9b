"""Public contact form."""
from sqlalchemy import select

from career_compass.core.database import contact_messages, get_db_session

VALID = {
    "name": "山田太郎",
    "email": "taro@example.com",
    "category": "billing",
    "subject": "請求について",
    "message": "二重請求されています",
}


def test_contact_without_auth(client):
    resp = client.post("/api/contact", json=VALID)
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True

    with get_db_session() as session:
        row = session.execute(select(contact_messages).where(contact_messages.c.id == body["id"])).mappings().one()
    assert row["status"] == "unread"
    assert row["urgent"] is False


def test_urgent_contact_status(client):
    resp = client.post("/api/contact", json={**VALID, "urgent": True})
    assert resp.status_code == 200

    with get_db_session() as session:
        status = session.execute(select(contact_messages.c.status)).scalar()
    assert status == "urgent"


def test_missing_fields(client):
    resp = client.post("/api/contact", json={**VALID, "subject": "  "})
    assert resp.status_code == 400
    assert resp.json()["code"] == "missing_fields"


def test_invalid_email(client):
    resp = client.post("/api/contact", json={**VALID, "email": "not-an-email"})
    assert resp.status_code == 400
    assert resp.json()["code"] == "invalid_email"
