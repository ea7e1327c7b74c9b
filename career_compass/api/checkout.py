"""
Stripe API routes.

- POST /api/stripe/create-checkout-session: subscription checkout
- POST /api/stripe/webhooks: processor webhook (signature-verified, no session auth)
"""
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from career_compass.core.auth import get_current_user_id
from career_compass.core.database import get_db
from career_compass.core.logging import log_event
from career_compass.features.billing.provider import BillingProvider, BillingWebhookError
from career_compass.features.billing.service import create_subscription_checkout, get_provider
from career_compass.features.billing.webhooks import process_webhook_event

router = APIRouter(prefix="/api/stripe", tags=["billing"])


class SubscriptionCheckoutRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    plan_id: str = Field(alias="planId")
    billing_cycle: str = Field(alias="billingCycle")
    referral_discount: int = Field(0, alias="referralDiscount", ge=0)


class CheckoutResponse(BaseModel):
    sessionId: str
    url: Optional[str]


@router.post("/create-checkout-session", response_model=CheckoutResponse)
def post_checkout_session(
    body: SubscriptionCheckoutRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    provider: BillingProvider = Depends(get_provider),
):
    """
    Create a subscription checkout session.

    Errors:
        400: unknown plan/billing cycle pair (no processor call is made)
        404: caller has no profile
        500: processor error
    """
    return create_subscription_checkout(
        db,
        provider,
        user_id,
        body.plan_id,
        body.billing_cycle,
        body.referral_discount,
    )


@router.post("/webhooks")
async def post_webhook(
    request: Request,
    db: Session = Depends(get_db),
    provider: BillingProvider = Depends(get_provider),
):
    body = await request.body()
    try:
        event = process_webhook_event(db, provider, dict(request.headers), body)
    except BillingWebhookError as e:
        log_event(
            "warning",
            "webhook.rejected",
            event_type="webhook.rejected",
            error_code="invalid_webhook",
            extra={"reason": e},
        )
        return JSONResponse(status_code=400, content={"error": "Invalid webhook", "code": "invalid_webhook"})
    return {"received": True, "event_id": event.event_id}
