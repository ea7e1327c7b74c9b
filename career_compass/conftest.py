# career_compass/conftest.py
import json
import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

# Test environment must be in place before career_compass.core.config is imported
os.environ.setdefault("ENV", "test")
os.environ.setdefault("SKIP_ENV_VALIDATION", "1")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SUPABASE_JWT_SECRET", "test-jwt-secret-with-enough-length-for-hs256")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_dummy")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_dummy")
os.environ.setdefault("STRIPE_STANDARD_MONTHLY_PRICE_ID", "price_standard_monthly")
os.environ.setdefault("STRIPE_STANDARD_YEARLY_PRICE_ID", "price_standard_yearly")
os.environ.setdefault("STRIPE_PREMIUM_MONTHLY_PRICE_ID", "price_premium_monthly")
os.environ.setdefault("STRIPE_PREMIUM_YEARLY_PRICE_ID", "price_premium_yearly")
os.environ.setdefault("APP_URL", "http://localhost:3000")

# Add project root to PYTHONPATH
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from sqlalchemy import delete, insert  # noqa: E402

from career_compass.core.database import (  # noqa: E402
    create_all_tables,
    drop_all_tables,
    get_db_session,
    get_engine,
    init_engine,
    metadata,
    usage_events,
    usage_tickets,
    user_subscriptions,
)
from career_compass.features.billing.provider import (  # noqa: E402
    BillingEvent,
    BillingProviderError,
    BillingWebhookError,
    CheckoutSession,
)


class FakeBillingProvider:
    """In-memory BillingProvider that records every call."""

    def __init__(self):
        self.calls: List[tuple] = []
        self.fail_on: set = set()
        self.coupons = 0

    def _record(self, call_name: str, **kwargs):
        self.calls.append((call_name, kwargs))
        if call_name in self.fail_on:
            raise BillingProviderError(f"{call_name} failed")

    def called(self, name: str) -> List[Dict[str, Any]]:
        return [kwargs for call, kwargs in self.calls if call == name]

    def find_or_create_customer(self, email, user_id, name=None):
        self._record("find_or_create_customer", email=email, user_id=user_id, name=name)
        return f"cus_{user_id}"

    def create_subscription_checkout(self, **kwargs):
        self._record("create_subscription_checkout", **kwargs)
        return CheckoutSession(session_id="cs_sub_1", url="https://checkout.example/cs_sub_1")

    def create_payment_checkout(self, **kwargs):
        self._record("create_payment_checkout", **kwargs)
        return CheckoutSession(session_id="cs_pay_1", url="https://checkout.example/cs_pay_1")

    def create_coupon(self, **kwargs):
        self._record("create_coupon", **kwargs)
        self.coupons += 1
        return f"coupon_{self.coupons}"

    def cancel_subscription(self, subscription_id, *, prorate=True):
        self._record("cancel_subscription", subscription_id=subscription_id, prorate=prorate)

    def pause_subscription(self, subscription_id, *, resumes_at):
        self._record("pause_subscription", subscription_id=subscription_id, resumes_at=resumes_at)

    def construct_event(self, headers, body):
        if headers.get("stripe-signature") != "valid":
            raise BillingWebhookError("Invalid signature")
        try:
            payload = json.loads(body)
        except ValueError as e:
            raise BillingWebhookError(f"Invalid payload: {e}")
        return BillingEvent(
            event_id=payload["id"],
            event_type=payload["type"],
            data=payload["data"]["object"],
        )


@pytest.fixture(scope="session", autouse=True)
def create_tables():
    """Single in-memory database for the whole session."""
    init_engine("sqlite://")
    create_all_tables()
    yield
    drop_all_tables()


@pytest.fixture(scope="function", autouse=True)
def reset_db():
    """Empty every table before each test."""
    engine = get_engine()
    with engine.begin() as conn:
        for table in reversed(metadata.sorted_tables):
            conn.execute(delete(table))
    yield


@pytest.fixture
def fake_provider():
    return FakeBillingProvider()


@pytest.fixture
def client(fake_provider):
    from fastapi.testclient import TestClient

    from career_compass.features.billing.service import get_provider
    from career_compass.main import app

    app.dependency_overrides[get_provider] = lambda: fake_provider
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.pop(get_provider, None)


def auth_headers(user_id: str, email: Optional[str] = None) -> Dict[str, str]:
    headers = {"X-User-Id": user_id}
    if email:
        headers["X-User-Email"] = email
    return headers


def seed_subscription(
    user_id: str,
    plan_id: str = "standard",
    status: str = "active",
    stripe_subscription_id: Optional[str] = None,
    subscription_id: Optional[str] = None,
) -> str:
    sub_id = subscription_id or f"sub-{user_id}"
    with get_db_session() as session:
        session.execute(
            insert(user_subscriptions).values(
                id=sub_id,
                user_id=user_id,
                plan_id=plan_id,
                billing_cycle="monthly",
                status=status,
                stripe_subscription_id=stripe_subscription_id,
            )
        )
    return sub_id


def seed_usage(user_id: str, usage_key: str, count: int = 1, occurred_at: Optional[datetime] = None) -> None:
    when = occurred_at or datetime.now(timezone.utc)
    with get_db_session() as session:
        for _ in range(count):
            session.execute(insert(usage_events).values(user_id=user_id, usage_key=usage_key, occurred_at=when))


def seed_tickets(
    user_id: str,
    ticket_type: str = "analysis_normal",
    quantity: int = 5,
    used: int = 0,
    expires_at: Optional[datetime] = None,
    created_at: Optional[datetime] = None,
    ticket_id: Optional[str] = None,
) -> str:
    now = datetime.now(timezone.utc)
    values = dict(
        user_id=user_id,
        ticket_type=ticket_type,
        quantity=quantity,
        used=used,
        source="purchase",
        expires_at=expires_at or now + timedelta(days=30),
        created_at=created_at or now,
    )
    if ticket_id:
        values["id"] = ticket_id
    with get_db_session() as session:
        row = session.execute(insert(usage_tickets).values(**values).returning(usage_tickets.c.id)).first()
    return row.id
