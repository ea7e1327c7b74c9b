"""
Stripe billing provider implementation.

Implements BillingProvider protocol using the Stripe API.
Handles webhook signature verification and event parsing.
"""
import json
import logging
from typing import Dict, Any, List, Optional
from datetime import datetime, timezone
import stripe

from career_compass.core.config import settings
from career_compass.features.billing.provider import (
    BillingEvent,
    BillingProviderError,
    BillingWebhookError,
    CheckoutLineItem,
    CheckoutSession,
)

logger = logging.getLogger("career_compass")


class StripeProvider:
    """Stripe implementation of BillingProvider protocol."""

    def __init__(self, secret_key: Optional[str] = None, webhook_secret: Optional[str] = None):
        """
        Initialize Stripe provider.

        Args:
            secret_key: Stripe secret key (defaults to STRIPE_SECRET_KEY)
            webhook_secret: Stripe webhook secret (defaults to STRIPE_WEBHOOK_SECRET)
        """
        self.secret_key = secret_key or settings.STRIPE_SECRET_KEY
        self.webhook_secret = webhook_secret or settings.STRIPE_WEBHOOK_SECRET

        if not self.secret_key:
            raise BillingProviderError("STRIPE_SECRET_KEY not configured")

        stripe.api_key = self.secret_key

    def find_or_create_customer(self, email: Optional[str], user_id: str, name: Optional[str] = None) -> str:
        """Reuse the Stripe customer with this email, else create one."""
        try:
            if email:
                customers = stripe.Customer.list(email=email, limit=1)
                if customers.data:
                    return customers.data[0].id

            customer_data: Dict[str, Any] = {"metadata": {"user_id": user_id}}
            if email:
                customer_data["email"] = email
            if name:
                customer_data["name"] = name

            customer = stripe.Customer.create(**customer_data)
            return customer.id
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe customer lookup failed: {e}")

    def create_subscription_checkout(
        self,
        *,
        customer_id: str,
        price_id: str,
        success_url: str,
        cancel_url: str,
        metadata: Dict[str, str],
        subscription_metadata: Dict[str, str],
        coupon_id: Optional[str] = None,
    ) -> CheckoutSession:
        params: Dict[str, Any] = {
            "customer": customer_id,
            "payment_method_types": ["card"],
            "line_items": [{"price": price_id, "quantity": 1}],
            "mode": "subscription",
            "metadata": metadata,
            "subscription_data": {"metadata": subscription_metadata},
            "success_url": success_url,
            "cancel_url": cancel_url,
            "customer_update": {"address": "auto", "name": "auto"},
            "billing_address_collection": "auto",
            "custom_text": {"submit": {"message": "いつでもキャンセル可能です。"}},
        }
        # Stripe rejects promotion codes alongside explicit discounts
        if coupon_id:
            params["discounts"] = [{"coupon": coupon_id}]
        else:
            params["allow_promotion_codes"] = True

        try:
            session = stripe.checkout.Session.create(**params)
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe checkout session creation failed: {e}")
        return CheckoutSession(session_id=session.id, url=session.url)

    def create_payment_checkout(
        self,
        *,
        customer_id: str,
        line_items: List[CheckoutLineItem],
        success_url: str,
        cancel_url: str,
        metadata: Dict[str, str],
    ) -> CheckoutSession:
        try:
            session = stripe.checkout.Session.create(
                customer=customer_id,
                payment_method_types=["card"],
                line_items=[
                    {
                        "price_data": {
                            "currency": item.currency,
                            "product_data": {"name": item.name, "description": item.description},
                            "unit_amount": item.unit_amount,
                        },
                        "quantity": item.quantity,
                    }
                    for item in line_items
                ],
                mode="payment",
                success_url=success_url,
                cancel_url=cancel_url,
                metadata=metadata,
                payment_intent_data={"metadata": metadata},
            )
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe checkout session creation failed: {e}")
        return CheckoutSession(session_id=session.id, url=session.url)

    def create_coupon(self, *, amount_off: int, currency: str, name: str) -> str:
        try:
            coupon = stripe.Coupon.create(amount_off=amount_off, currency=currency, duration="once", name=name)
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe coupon creation failed: {e}")
        return coupon.id

    def cancel_subscription(self, subscription_id: str, *, prorate: bool = True) -> None:
        try:
            stripe.Subscription.cancel(subscription_id, prorate=prorate)
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe subscription cancel failed: {e}")

    def pause_subscription(self, subscription_id: str, *, resumes_at: datetime) -> None:
        try:
            stripe.Subscription.modify(
                subscription_id,
                pause_collection={"behavior": "void", "resumes_at": int(resumes_at.timestamp())},
            )
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe subscription pause failed: {e}")

    def construct_event(self, headers: Dict[str, str], body: bytes) -> BillingEvent:
        """Verify Stripe webhook signature and parse event."""
        if not self.webhook_secret:
            raise BillingWebhookError("STRIPE_WEBHOOK_SECRET not configured")

        sig_header = headers.get("stripe-signature") or headers.get("Stripe-Signature")
        if not sig_header:
            raise BillingWebhookError("Missing stripe-signature header")

        try:
            stripe.Webhook.construct_event(body, sig_header, self.webhook_secret)
            # Verified; read the raw payload as plain dicts
            event = json.loads(body)
        except ValueError as e:
            raise BillingWebhookError(f"Invalid payload: {e}")
        except stripe.SignatureVerificationError as e:
            raise BillingWebhookError(f"Invalid signature: {e}")

        return self._parse_event(event)

    def _parse_event(self, event: Dict[str, Any]) -> BillingEvent:
        """Parse Stripe event into normalized BillingEvent."""
        data = event.get("data", {}).get("object", {}) or {}
        created_ts = event.get("created")
        return BillingEvent(
            event_id=event["id"],
            event_type=event["type"],
            data=data,
            created=datetime.fromtimestamp(created_ts, timezone.utc) if created_ts else None,
            metadata=data.get("metadata") or {},
        )
