"""
Referral API routes.

- GET  /api/referrals           stats + history
- POST /api/referrals           issue (or reuse) the caller's code
- POST /api/referrals/validate  check a code for the caller
- POST /api/referrals/apply     complete a referral and grant rewards
"""
from fastapi import APIRouter, Depends
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from career_compass.core.auth import get_current_user_id
from career_compass.core.database import get_db
from career_compass.core.errors import BusinessRuleError, PermissionError
from career_compass.core.logging import log_event
from career_compass.core.messages import message_for
from career_compass.features.plans.catalog import REFERRAL_REWARDS
from career_compass.features.plans.service import has_active_paid_subscription
from career_compass.features.referrals.service import (
    create_referral_code,
    get_referral_history,
    get_user_referral_stats,
    has_completed_referral_as_referee,
    process_referral_success,
    validate_referral_code,
)
from career_compass.features.usage.service import count_completed_analyses

router = APIRouter(prefix="/api/referrals", tags=["referrals"])


class ReferralCodeRequest(BaseModel):
    code: str

    @field_validator("code")
    @classmethod
    def _normalize(cls, value: str) -> str:
        return value.strip().upper()


@router.get("")
def get_referrals(user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)):
    stats = get_user_referral_stats(db, user_id)
    history = get_referral_history(db, user_id)
    return {
        "stats": stats.model_dump(),
        "history": [r.model_dump(mode="json") for r in history],
    }


@router.post("")
def post_referral_code(user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)):
    """Issue a code. Requires an active paid plan and at least one completed analysis."""
    if not has_active_paid_subscription(db, user_id):
        raise PermissionError(message_for("referral_subscription_required"), code="referrer_not_premium")
    if count_completed_analyses(db, user_id) == 0:
        raise PermissionError(message_for("referral_analysis_required"), code="referrer_no_analysis")

    referral = create_referral_code(db, user_id)
    return {"referral": referral.model_dump(mode="json")}


@router.post("/validate")
def post_validate(body: ReferralCodeRequest, user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)):
    result = validate_referral_code(db, body.code, user_id)
    payload = {"isValid": result.is_valid, "reason": result.reason}
    if not result.is_valid:
        payload["message"] = message_for(result.reason)
    else:
        payload["reward"] = REFERRAL_REWARDS["referee"]
    return payload


@router.post("/apply")
def post_apply(body: ReferralCodeRequest, user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)):
    if has_completed_referral_as_referee(db, user_id):
        raise BusinessRuleError(code="already_used")

    result = validate_referral_code(db, body.code, user_id)
    if not result.is_valid:
        raise BusinessRuleError(code=result.reason)

    referral = process_referral_success(db, body.code, user_id)
    log_event(
        "info",
        "referral.applied",
        user_id=user_id,
        event_type="referral.applied",
        extra={"referral_id": referral.id, "referrer_id": referral.referrer_id},
    )
    return {
        "success": True,
        "message": message_for("referral_applied"),
        "reward": REFERRAL_REWARDS["referee"],
    }
