"""Usage status: monthly analysis usage against plan limits, plus ticket balance."""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from career_compass.core.auth import get_current_user_id
from career_compass.core.database import get_db
from career_compass.features.entitlements.service import get_usage_status
from career_compass.features.plans.service import get_user_plan
from career_compass.features.tickets.service import get_user_ticket_balance

router = APIRouter(prefix="/api/usage", tags=["usage"])


@router.get("/status")
def get_status(user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)):
    plan = get_user_plan(db, user_id)
    return {
        "success": True,
        "subscription_status": plan.plan_id,
        "usage": [item.model_dump() for item in get_usage_status(db, user_id)],
        "tickets": [t.model_dump(mode="json") for t in get_user_ticket_balance(db, user_id)],
    }
