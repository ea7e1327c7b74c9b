"""
Checkout orchestration.

Translates internal plan and ticket identifiers into processor checkout
sessions:
- Subscriptions: `<plan>_<cycle>` -> configured price id, recurring mode
- Tickets: local product table -> inline price data, one-time payment mode

All processor calls go through an injected BillingProvider.
"""
import logging
from typing import Dict, Optional

from sqlalchemy.orm import Session

from career_compass.core.config import Settings, settings
from career_compass.core.errors import NotFoundError, UpstreamError, ValidationError
from career_compass.features.billing.provider import (
    BillingProvider,
    BillingProviderError,
    CheckoutLineItem,
)
from career_compass.features.billing.stripe_provider import StripeProvider
from career_compass.features.plans.catalog import resolve_price_id
from career_compass.features.profiles.service import get_profile
from career_compass.features.tickets.service import create_ticket_purchase_intent

logger = logging.getLogger("career_compass")

REFERRAL_COUPON_NAME = "友達紹介特典"
SUBSCRIPTION_CURRENCY = "jpy"


def get_provider() -> BillingProvider:
    """FastAPI dependency returning the configured payment processor."""
    try:
        return StripeProvider()
    except BillingProviderError as e:
        logger.error(f"[billing] provider unavailable: {e}")
        raise UpstreamError(code="payment_error")


def normalize_base_url(url: Optional[str]) -> str:
    """Absolute base URL without trailing slash; bare hosts get https://."""
    value = (url or "").strip() or "http://localhost:3000"
    if not value.startswith("http://") and not value.startswith("https://"):
        value = f"https://{value}"
    return value.rstrip("/")


def _customer_for(db: Session, provider: BillingProvider, user_id: str) -> str:
    profile = get_profile(db, user_id)
    if profile is None:
        raise NotFoundError(code="profile_not_found")
    return provider.find_or_create_customer(profile["email"], user_id, profile["full_name"])


def create_subscription_checkout(
    db: Session,
    provider: BillingProvider,
    user_id: str,
    plan_id: str,
    billing_cycle: str,
    referral_discount: int = 0,
    settings_obj: Optional[Settings] = None,
) -> Dict[str, Optional[str]]:
    """
    Start a subscription checkout.

    Raises:
        ValidationError: `(plan_id, billing_cycle)` has no configured price;
            raised before any processor call
        NotFoundError: caller has no profile
        UpstreamError: processor failure
    """
    cfg = settings_obj or settings
    price_id = resolve_price_id(plan_id, billing_cycle, cfg)
    if not price_id:
        logger.warning(
            "[checkout] unresolved price",
            extra={"user_id": user_id, "plan_id": plan_id, "billing_cycle": billing_cycle},
        )
        raise ValidationError(code="invalid_plan_configuration")

    base_url = normalize_base_url(cfg.APP_URL)
    try:
        customer_id = _customer_for(db, provider, user_id)
        coupon_id = None
        if referral_discount and referral_discount > 0:
            # JPY is zero-decimal: amount_off is in yen
            coupon_id = provider.create_coupon(
                amount_off=int(referral_discount),
                currency=SUBSCRIPTION_CURRENCY,
                name=REFERRAL_COUPON_NAME,
            )
        session = provider.create_subscription_checkout(
            customer_id=customer_id,
            price_id=price_id,
            success_url=f"{base_url}/subscription/success?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{base_url}/pricing",
            metadata={"user_id": user_id, "plan_id": plan_id, "billing_cycle": billing_cycle},
            subscription_metadata={"user_id": user_id, "plan_id": plan_id},
            coupon_id=coupon_id,
        )
    except BillingProviderError as e:
        logger.error(f"[checkout] subscription session failed: {e}", extra={"user_id": user_id})
        raise UpstreamError(code="payment_error")

    logger.info(
        "[checkout] subscription session created",
        extra={"user_id": user_id, "plan_id": plan_id, "billing_cycle": billing_cycle, "discounted": bool(coupon_id)},
    )
    return {"sessionId": session.session_id, "url": session.url}


def create_ticket_checkout(
    db: Session,
    provider: BillingProvider,
    user_id: str,
    ticket_type: str,
    quantity,
    settings_obj: Optional[Settings] = None,
) -> Dict[str, Optional[str]]:
    """
    Start a one-time ticket purchase. The ticket batch itself is created
    by the webhook once payment completes.
    """
    cfg = settings_obj or settings
    intent = create_ticket_purchase_intent(ticket_type, quantity)
    base_url = normalize_base_url(cfg.APP_URL)
    try:
        customer_id = _customer_for(db, provider, user_id)
        session = provider.create_payment_checkout(
            customer_id=customer_id,
            line_items=[
                CheckoutLineItem(
                    name=intent.product_name,
                    description=intent.description,
                    unit_amount=intent.unit_price,
                    currency=intent.currency,
                    quantity=intent.quantity,
                )
            ],
            success_url=f"{base_url}/tickets/purchase/success?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{base_url}/tickets",
            metadata={
                "user_id": user_id,
                "ticket_type": intent.ticket_type,
                "quantity": str(intent.quantity),
                "type": "ticket_purchase",
            },
        )
    except BillingProviderError as e:
        logger.error(f"[checkout] ticket session failed: {e}", extra={"user_id": user_id})
        raise UpstreamError(code="payment_error")

    logger.info(
        "[checkout] ticket session created",
        extra={"user_id": user_id, "ticket_type": intent.ticket_type, "quantity": intent.quantity, "amount": intent.amount},
    )
    return {"sessionId": session.session_id, "url": session.url}
