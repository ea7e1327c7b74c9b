"""Ticket accounting: balances, consumption order, purchase intents."""
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from career_compass.core.database import get_db_session, usage_tickets
from career_compass.core.errors import BusinessRuleError, ValidationError
from career_compass.features.tickets.service import (
    create_ticket_purchase_intent,
    get_available_tickets,
    get_user_ticket_balance,
    grant_tickets,
    use_ticket,
    validate_quantity,
    validate_ticket_for_analysis,
)
from conftest import seed_tickets


def _used(ticket_id):
    with get_db_session() as session:
        return session.execute(select(usage_tickets.c.used).where(usage_tickets.c.id == ticket_id)).scalar()


def test_use_ticket_increments_used():
    ticket_id = seed_tickets("u1", quantity=5, used=3)

    with get_db_session() as session:
        assert use_ticket(session, "u1", "analysis_normal") is True

    assert _used(ticket_id) == 4


def test_use_ticket_on_exhausted_batch_returns_false():
    ticket_id = seed_tickets("u1", quantity=5, used=5)

    with get_db_session() as session:
        assert use_ticket(session, "u1", "analysis_normal") is False

    assert _used(ticket_id) == 5


def test_expired_batches_are_not_consumed():
    past = datetime.now(timezone.utc) - timedelta(days=1)
    ticket_id = seed_tickets("u1", quantity=5, expires_at=past)

    with get_db_session() as session:
        assert use_ticket(session, "u1", "analysis_normal") is False
        assert get_available_tickets(session, "u1", "analysis_normal") == 0

    assert _used(ticket_id) == 0


def test_consumes_earliest_expiring_batch_first():
    now = datetime.now(timezone.utc)
    later = seed_tickets("u1", quantity=1, expires_at=now + timedelta(days=20), ticket_id="later")
    sooner = seed_tickets("u1", quantity=1, expires_at=now + timedelta(days=2), ticket_id="sooner")

    with get_db_session() as session:
        assert use_ticket(session, "u1", "analysis_normal") is True

    assert _used(sooner) == 1
    assert _used(later) == 0


def test_used_never_exceeds_quantity():
    ticket_id = seed_tickets("u1", quantity=2)

    with get_db_session() as session:
        results = [use_ticket(session, "u1", "analysis_normal") for _ in range(4)]

    assert results == [True, True, False, False]
    assert _used(ticket_id) == 2


def test_tickets_are_scoped_to_owner():
    seed_tickets("owner", quantity=3)

    with get_db_session() as session:
        assert use_ticket(session, "intruder", "analysis_normal") is False


def test_balance_reports_every_type_and_expiring_batches():
    now = datetime.now(timezone.utc)
    seed_tickets("u1", quantity=4, used=1, expires_at=now + timedelta(days=3))
    seed_tickets("u1", quantity=2, expires_at=now + timedelta(days=25))

    with get_db_session() as session:
        balances = {b.ticket_type: b for b in get_user_ticket_balance(session, "u1")}

    normal = balances["analysis_normal"]
    assert normal.total == 6
    assert normal.used == 1
    assert normal.available == 5
    assert len(normal.expires_soon) == 1
    assert normal.expires_soon[0].remaining == 3
    assert balances["analysis_persona"].available == 0


def test_grant_tickets_expires_after_one_month():
    now = datetime(2024, 1, 31, 12, 0, tzinfo=timezone.utc)
    with get_db_session() as session:
        row = grant_tickets(session, "u1", "analysis_persona", 2, source="referral", now=now)

    assert row["quantity"] == 2
    assert row["source"] == "referral"
    with get_db_session() as session:
        expires_at = session.execute(
            select(usage_tickets.c.expires_at).where(usage_tickets.c.id == row["id"])
        ).scalar()
    assert expires_at.replace(tzinfo=None) == datetime(2024, 2, 29, 12, 0)


@pytest.mark.parametrize("quantity", [0, 11, -1, 2.5, "3", True, None])
def test_invalid_quantities_rejected(quantity):
    with pytest.raises(ValidationError) as exc_info:
        validate_quantity(quantity)
    assert exc_info.value.code == "invalid_quantity"


def test_purchase_intent_prices_from_product_table():
    intent = create_ticket_purchase_intent("analysis_persona", 3)

    assert intent.unit_price == 500
    assert intent.amount == 1500
    assert intent.currency == "jpy"
    assert intent.expires_at is not None


def test_purchase_intent_unknown_type():
    with pytest.raises(ValidationError) as exc_info:
        create_ticket_purchase_intent("analysis_deluxe", 1)
    assert exc_info.value.code == "invalid_ticket_type"


def test_ticket_analysis_mismatch():
    with pytest.raises(BusinessRuleError) as exc_info:
        validate_ticket_for_analysis("analysis_persona", "clarity")
    assert exc_info.value.code == "ticket_mismatch"

    validate_ticket_for_analysis("analysis_normal", "values")


def test_use_endpoint_reports_remaining(client):
    seed_tickets("u-api", quantity=2)

    resp = client.post(
        "/api/tickets/use",
        json={"ticket_type": "analysis_normal", "analysis_type": "clarity"},
        headers={"X-User-Id": "u-api"},
    )
    assert resp.status_code == 200
    assert resp.json() == {"success": True, "remaining": 1}


def test_use_endpoint_without_tickets(client):
    resp = client.post(
        "/api/tickets/use",
        json={"ticket_type": "analysis_normal", "analysis_type": "clarity"},
        headers={"X-User-Id": "u-api"},
    )
    assert resp.status_code == 400
    assert resp.json()["code"] == "no_ticket_available"


def test_purchase_intent_endpoint(client):
    resp = client.post("/api/tickets", json={"ticket_type": "analysis_normal", "quantity": 3}, headers={"X-User-Id": "u-api"})
    assert resp.status_code == 200
    assert resp.json()["intent"]["amount"] == 600

    bad = client.post("/api/tickets", json={"ticket_type": "analysis_normal", "quantity": 3.5}, headers={"X-User-Id": "u-api"})
    assert bad.status_code == 400
    assert bad.json()["code"] == "invalid_quantity"


def test_products_endpoint_is_public(client):
    resp = client.get("/api/tickets/products")
    assert resp.status_code == 200
    types = [p["ticket_type"] for p in resp.json()["products"]]
    assert types == ["analysis_normal", "analysis_persona"]
