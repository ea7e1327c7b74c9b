"""Checkout orchestration against a fake billing provider."""
import pytest

from career_compass.core.config import Settings
from career_compass.core.database import get_db_session
from career_compass.core.errors import UpstreamError, ValidationError
from career_compass.features.billing.service import (
    create_subscription_checkout,
    create_ticket_checkout,
    normalize_base_url,
)
from career_compass.features.profiles.service import get_or_create_profile
from conftest import FakeBillingProvider, auth_headers


def _profile(user_id="u-pay", email="pay@example.com"):
    with get_db_session() as session:
        get_or_create_profile(session, user_id, email)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("example.com", "https://example.com"),
        ("https://example.com/", "https://example.com"),
        ("http://localhost:3000", "http://localhost:3000"),
        (None, "http://localhost:3000"),
        ("   ", "http://localhost:3000"),
    ],
)
def test_normalize_base_url(raw, expected):
    assert normalize_base_url(raw) == expected


def test_subscription_checkout_uses_configured_price():
    _profile()
    provider = FakeBillingProvider()

    with get_db_session() as session:
        result = create_subscription_checkout(session, provider, "u-pay", "premium", "yearly")

    assert result == {"sessionId": "cs_sub_1", "url": "https://checkout.example/cs_sub_1"}
    call = provider.called("create_subscription_checkout")[0]
    assert call["price_id"] == "price_premium_yearly"
    assert call["customer_id"] == "cus_u-pay"
    assert call["coupon_id"] is None
    assert call["metadata"] == {"user_id": "u-pay", "plan_id": "premium", "billing_cycle": "yearly"}
    assert call["success_url"].endswith("/subscription/success?session_id={CHECKOUT_SESSION_ID}")
    assert call["cancel_url"].endswith("/pricing")
    assert provider.called("create_coupon") == []


def test_referral_discount_creates_yen_coupon():
    _profile()
    provider = FakeBillingProvider()

    with get_db_session() as session:
        create_subscription_checkout(session, provider, "u-pay", "standard", "monthly", referral_discount=500)

    coupon = provider.called("create_coupon")[0]
    assert coupon["amount_off"] == 500
    assert coupon["currency"] == "jpy"
    assert provider.called("create_subscription_checkout")[0]["coupon_id"] == "coupon_1"


def test_unresolved_price_fails_before_any_provider_call():
    _profile()
    provider = FakeBillingProvider()
    cfg = Settings(STRIPE_PREMIUM_YEARLY_PRICE_ID=None)

    with get_db_session() as session:
        with pytest.raises(ValidationError) as exc_info:
            create_subscription_checkout(session, provider, "u-pay", "premium", "yearly", settings_obj=cfg)

    assert exc_info.value.code == "invalid_plan_configuration"
    assert exc_info.value.status_code == 400
    assert provider.calls == []


def test_unknown_plan_is_rejected():
    provider = FakeBillingProvider()
    with get_db_session() as session:
        with pytest.raises(ValidationError):
            create_subscription_checkout(session, provider, "u-pay", "free", "monthly")
    assert provider.calls == []


def test_provider_failure_surfaces_as_upstream_error():
    _profile()
    provider = FakeBillingProvider()
    provider.fail_on.add("create_subscription_checkout")

    with get_db_session() as session:
        with pytest.raises(UpstreamError) as exc_info:
            create_subscription_checkout(session, provider, "u-pay", "standard", "monthly")
    assert exc_info.value.code == "payment_error"


def test_ticket_checkout_line_items_and_metadata():
    _profile()
    provider = FakeBillingProvider()

    with get_db_session() as session:
        result = create_ticket_checkout(session, provider, "u-pay", "analysis_normal", 4)

    assert result["sessionId"] == "cs_pay_1"
    call = provider.called("create_payment_checkout")[0]
    item = call["line_items"][0]
    assert item.unit_amount == 200
    assert item.quantity == 4
    assert item.currency == "jpy"
    assert call["metadata"] == {
        "user_id": "u-pay",
        "ticket_type": "analysis_normal",
        "quantity": "4",
        "type": "ticket_purchase",
    }
    assert call["cancel_url"].endswith("/tickets")


def test_ticket_checkout_validates_before_provider():
    provider = FakeBillingProvider()
    with get_db_session() as session:
        with pytest.raises(ValidationError):
            create_ticket_checkout(session, provider, "u-pay", "analysis_normal", 11)
    assert provider.calls == []


def test_checkout_endpoint(client, fake_provider):
    resp = client.post(
        "/api/stripe/create-checkout-session",
        json={"planId": "standard", "billingCycle": "monthly", "referralDiscount": 300},
        headers=auth_headers("u-api", "api@example.com"),
    )
    assert resp.status_code == 200
    assert resp.json()["sessionId"] == "cs_sub_1"
    assert fake_provider.called("find_or_create_customer")[0]["email"] == "api@example.com"
    assert fake_provider.called("create_coupon")[0]["amount_off"] == 300


def test_checkout_endpoint_unknown_cycle(client, fake_provider):
    resp = client.post(
        "/api/stripe/create-checkout-session",
        json={"planId": "standard", "billingCycle": "weekly"},
        headers=auth_headers("u-api"),
    )
    assert resp.status_code == 400
    assert resp.json()["code"] == "invalid_plan_configuration"
    assert fake_provider.calls == []


def test_ticket_checkout_endpoint(client, fake_provider):
    resp = client.post(
        "/api/tickets/create-checkout-session",
        json={"ticket_type": "analysis_persona", "quantity": 2},
        headers=auth_headers("u-api"),
    )
    assert resp.status_code == 200
    assert fake_provider.called("create_payment_checkout")[0]["line_items"][0].unit_amount == 500
