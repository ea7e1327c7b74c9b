"""StripeProvider request shaping, with the stripe SDK patched out."""
import json
from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import patch

import pytest
import stripe

from career_compass.features.billing.provider import BillingProviderError, BillingWebhookError, CheckoutLineItem
from career_compass.features.billing.stripe_provider import StripeProvider


@pytest.fixture
def provider():
    return StripeProvider(secret_key="sk_test_unit", webhook_secret="whsec_unit")


def test_requires_secret_key(monkeypatch):
    from career_compass.core.config import settings

    monkeypatch.setattr(settings, "STRIPE_SECRET_KEY", None)
    with pytest.raises(BillingProviderError):
        StripeProvider()


def test_subscription_checkout_with_coupon_disables_promotion_codes(provider):
    with patch("stripe.checkout.Session.create", return_value=SimpleNamespace(id="cs_1", url="https://x")) as create:
        session = provider.create_subscription_checkout(
            customer_id="cus_1",
            price_id="price_1",
            success_url="https://app/s",
            cancel_url="https://app/c",
            metadata={"user_id": "u1"},
            subscription_metadata={"user_id": "u1"},
            coupon_id="coupon_1",
        )

    assert session.session_id == "cs_1"
    params = create.call_args.kwargs
    assert params["mode"] == "subscription"
    assert params["discounts"] == [{"coupon": "coupon_1"}]
    assert "allow_promotion_codes" not in params


def test_subscription_checkout_without_coupon_allows_promotion_codes(provider):
    with patch("stripe.checkout.Session.create", return_value=SimpleNamespace(id="cs_1", url=None)) as create:
        provider.create_subscription_checkout(
            customer_id="cus_1",
            price_id="price_1",
            success_url="https://app/s",
            cancel_url="https://app/c",
            metadata={},
            subscription_metadata={},
        )

    assert create.call_args.kwargs["allow_promotion_codes"] is True


def test_payment_checkout_uses_inline_prices(provider):
    item = CheckoutLineItem(name="通常分析チケット", description="d", unit_amount=200, currency="jpy", quantity=3)
    with patch("stripe.checkout.Session.create", return_value=SimpleNamespace(id="cs_2", url="https://y")) as create:
        provider.create_payment_checkout(
            customer_id="cus_1",
            line_items=[item],
            success_url="https://app/s",
            cancel_url="https://app/c",
            metadata={"type": "ticket_purchase"},
        )

    line = create.call_args.kwargs["line_items"][0]
    assert line["price_data"]["unit_amount"] == 200
    assert line["quantity"] == 3
    assert create.call_args.kwargs["mode"] == "payment"


def test_stripe_errors_become_provider_errors(provider):
    with patch("stripe.Subscription.cancel", side_effect=stripe.StripeError("boom")):
        with pytest.raises(BillingProviderError):
            provider.cancel_subscription("sub_1")


def test_pause_sends_resume_timestamp(provider):
    resume = datetime(2024, 3, 1, tzinfo=timezone.utc)
    with patch("stripe.Subscription.modify") as modify:
        provider.pause_subscription("sub_1", resumes_at=resume)

    assert modify.call_args.kwargs["pause_collection"] == {"behavior": "void", "resumes_at": int(resume.timestamp())}


def test_construct_event_requires_signature(provider):
    with pytest.raises(BillingWebhookError):
        provider.construct_event({}, b"{}")


def test_construct_event_rejects_bad_signature(provider):
    with patch("stripe.Webhook.construct_event", side_effect=stripe.SignatureVerificationError("bad", "sig")):
        with pytest.raises(BillingWebhookError):
            provider.construct_event({"stripe-signature": "t=1,v1=x"}, b"{}")


def test_construct_event_parses_verified_payload(provider):
    body = json.dumps(
        {
            "id": "evt_1",
            "type": "checkout.session.completed",
            "created": 1700000000,
            "data": {"object": {"id": "cs_1", "metadata": {"user_id": "u1"}}},
        }
    ).encode()
    with patch("stripe.Webhook.construct_event"):
        event = provider.construct_event({"stripe-signature": "t=1,v1=x"}, body)

    assert event.event_id == "evt_1"
    assert event.event_type == "checkout.session.completed"
    assert event.metadata == {"user_id": "u1"}
    assert event.created == datetime.fromtimestamp(1700000000, timezone.utc)
