"""Subscription lifecycle routes: status, cancel, downgrade, pause."""
from typing import Any, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from career_compass.core.auth import get_current_user_id
from career_compass.core.database import get_db
from career_compass.core.messages import message_for
from career_compass.features.billing.provider import BillingProvider
from career_compass.features.billing.service import get_provider
from career_compass.features.plans.service import get_user_plan
from career_compass.features.subscriptions.service import (
    cancel_subscription,
    downgrade_subscription,
    get_current_subscription,
    pause_subscription,
)

router = APIRouter(prefix="/api/subscription", tags=["subscription"])


class SubscriptionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    subscription_id: str = Field(alias="subscriptionId")


class CancelRequest(SubscriptionRequest):
    reason: Optional[str] = None
    custom_reason: Optional[str] = Field(None, alias="customReason")


class PauseRequest(SubscriptionRequest):
    # Validated by the subscription service (integer months, 1..12)
    pause_months: Any = Field(1, alias="pauseMonths")


@router.get("")
def get_subscription_status(user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)):
    sub = get_current_subscription(db, user_id)
    plan = get_user_plan(db, user_id)
    return {
        "plan": plan.model_dump(),
        "subscription": dict(sub) if sub else None,
    }


@router.post("/cancel")
def post_cancel(
    body: CancelRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    provider: BillingProvider = Depends(get_provider),
):
    cancel_subscription(db, provider, user_id, body.subscription_id, body.reason, body.custom_reason)
    return {"success": True, "message": message_for("subscription_canceled")}


@router.post("/downgrade")
def post_downgrade(
    body: SubscriptionRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    provider: BillingProvider = Depends(get_provider),
):
    downgrade_subscription(db, provider, user_id, body.subscription_id)
    return {"success": True, "message": message_for("subscription_downgraded")}


@router.post("/pause")
def post_pause(
    body: PauseRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    provider: BillingProvider = Depends(get_provider),
):
    resume_at = pause_subscription(db, provider, user_id, body.subscription_id, body.pause_months)
    return {
        "success": True,
        "message": message_for("subscription_paused"),
        "resumeDate": resume_at.isoformat(),
    }
