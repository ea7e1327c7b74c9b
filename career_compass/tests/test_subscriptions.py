"""Cancel, downgrade and pause flows."""
from datetime import datetime, timezone

import pytest
from sqlalchemy import select

from career_compass.core.database import (
    get_db_session,
    profiles,
    retention_offers,
    subscription_cancellations,
    user_subscriptions,
)
from career_compass.core.errors import NotFoundError, UpstreamError, ValidationError
from career_compass.features.plans.service import get_user_plan
from career_compass.features.profiles.service import get_or_create_profile, set_subscription_status
from career_compass.features.subscriptions.service import (
    cancel_subscription,
    downgrade_subscription,
    pause_subscription,
    validate_pause_months,
)
from conftest import FakeBillingProvider, auth_headers, seed_subscription

USER = "u-sub"


@pytest.fixture
def paid_user():
    with get_db_session() as session:
        get_or_create_profile(session, USER, "sub@example.com")
        set_subscription_status(session, USER, "standard")
    return seed_subscription(USER, "standard", stripe_subscription_id="sub_stripe_1")


def _subscription(sub_id):
    with get_db_session() as session:
        return session.execute(select(user_subscriptions).where(user_subscriptions.c.id == sub_id)).mappings().first()


def _profile_status():
    with get_db_session() as session:
        return session.execute(select(profiles.c.subscription_status).where(profiles.c.id == USER)).scalar()


def test_cancel_marks_row_and_logs_reason(paid_user):
    provider = FakeBillingProvider()
    with get_db_session() as session:
        cancel_subscription(session, provider, USER, paid_user, reason="too_expensive", custom_reason="高い")

    row = _subscription(paid_user)
    assert row["status"] == "canceled"
    assert row["cancel_at_period_end"] is True
    assert row["canceled_at"] is not None
    assert _profile_status() == "free"
    assert provider.called("cancel_subscription") == [{"subscription_id": "sub_stripe_1", "prorate": True}]

    with get_db_session() as session:
        log = session.execute(select(subscription_cancellations)).mappings().first()
    assert log["reason_code"] == "too_expensive"
    assert log["reason_text"] == "高い"


def test_cancel_survives_processor_failure(paid_user):
    provider = FakeBillingProvider()
    provider.fail_on.add("cancel_subscription")

    with get_db_session() as session:
        cancel_subscription(session, provider, USER, paid_user)

    assert _subscription(paid_user)["status"] == "canceled"


def test_downgrade_survives_processor_failure(paid_user):
    provider = FakeBillingProvider()
    provider.fail_on.add("cancel_subscription")

    with get_db_session() as session:
        downgrade_subscription(session, provider, USER, paid_user)
        assert get_user_plan(session, USER).plan_id == "free"

    row = _subscription(paid_user)
    assert row["plan_id"] == "free"
    assert row["status"] == "active"
    assert row["downgraded_from"] == "standard"
    assert row["retention_offer_type"] == "downgrade"
    assert _profile_status() == "free"

    with get_db_session() as session:
        offer = session.execute(select(retention_offers)).mappings().first()
    assert offer["offer_type"] == "downgrade"


def test_pause_sets_resume_date(paid_user):
    provider = FakeBillingProvider()
    now = datetime(2024, 1, 31, 9, 0, tzinfo=timezone.utc)

    with get_db_session() as session:
        resume_at = pause_subscription(session, provider, USER, paid_user, 1, now=now)

    assert resume_at == datetime(2024, 2, 29, 9, 0, tzinfo=timezone.utc)
    assert provider.called("pause_subscription")[0]["resumes_at"] == resume_at
    row = _subscription(paid_user)
    assert row["status"] == "paused"
    assert row["pause_until"].replace(tzinfo=None) == datetime(2024, 2, 29, 9, 0)


def test_pause_processor_failure_is_fatal(paid_user):
    provider = FakeBillingProvider()
    provider.fail_on.add("pause_subscription")

    with get_db_session() as session:
        with pytest.raises(UpstreamError) as exc_info:
            pause_subscription(session, provider, USER, paid_user, 2)

    assert exc_info.value.status_code == 500
    assert _subscription(paid_user)["status"] == "active"


@pytest.mark.parametrize("months", [0, 13, 1.5, "2", True])
def test_invalid_pause_duration(months):
    with pytest.raises(ValidationError) as exc_info:
        validate_pause_months(months)
    assert exc_info.value.code == "invalid_pause_duration"


def test_other_users_subscription_is_not_found(paid_user):
    provider = FakeBillingProvider()
    with get_db_session() as session:
        with pytest.raises(NotFoundError):
            cancel_subscription(session, provider, "someone-else", paid_user)
    assert provider.calls == []


def test_downgrade_endpoint_with_processor_failure(client, fake_provider, paid_user):
    fake_provider.fail_on.add("cancel_subscription")

    resp = client.post("/api/subscription/downgrade", json={"subscriptionId": paid_user}, headers=auth_headers(USER))
    assert resp.status_code == 200
    assert resp.json()["success"] is True
    assert _profile_status() == "free"


def test_pause_endpoint_failure_returns_500(client, fake_provider, paid_user):
    fake_provider.fail_on.add("pause_subscription")

    resp = client.post(
        "/api/subscription/pause",
        json={"subscriptionId": paid_user, "pauseMonths": 3},
        headers=auth_headers(USER),
    )
    assert resp.status_code == 500
    assert resp.json()["code"] == "payment_error"


def test_pause_endpoint_returns_resume_date(client, paid_user):
    resp = client.post(
        "/api/subscription/pause",
        json={"subscriptionId": paid_user, "pauseMonths": 2},
        headers=auth_headers(USER),
    )
    assert resp.status_code == 200
    assert resp.json()["resumeDate"]


def test_subscription_status_endpoint(client, paid_user):
    resp = client.get("/api/subscription", headers=auth_headers(USER))
    assert resp.status_code == 200
    body = resp.json()
    assert body["plan"]["plan_id"] == "standard"
    assert body["subscription"]["id"] == paid_user
