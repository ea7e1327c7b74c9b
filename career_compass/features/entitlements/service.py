"""
Entitlement ledger (analysis eligibility and save permission).

Eligibility is decided from the user's current plan and the count of plan
usage events in the current calendar month. A limit of -1 is unlimited.
Over the limit, a matching unexpired ticket makes the run allowed via the
ticket path; the caller consumes the ticket.

Checks are read-only; only `authorize_analysis_run` writes.
"""

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from career_compass.core.dates import normalize_now
from career_compass.core.errors import PaymentRequiredError, ValidationError
from career_compass.features.plans.catalog import ANALYSIS_TYPES, TICKET_PRODUCTS, ticket_type_for_analysis
from career_compass.features.plans.service import get_user_plan
from career_compass.features.tickets.service import consume_ticket, get_available_tickets
from career_compass.features.usage.service import (
    count_monthly_usage,
    plan_usage_key,
    record_usage,
    ticket_usage_key,
)
from career_compass.models.entitlement import (
    AnalysisEligibility,
    SaveEligibility,
    UsageInfo,
    UsageStatusItem,
)
from career_compass.models.plan import UNLIMITED

logger = logging.getLogger("career_compass")


def _require_analysis_type(analysis_type: str) -> None:
    if analysis_type not in ANALYSIS_TYPES:
        raise ValidationError(code="invalid_analysis_type")


def _within_limit(used: int, limit: int) -> bool:
    return limit == UNLIMITED or used < limit


def check_analysis_eligibility(
    db: Session,
    user_id: str,
    analysis_type: str,
    now: Optional[datetime] = None,
) -> AnalysisEligibility:
    _require_analysis_type(analysis_type)
    current = normalize_now(now)
    plan = get_user_plan(db, user_id)
    limit = plan.limit_for(analysis_type)

    if limit == UNLIMITED:
        return AnalysisEligibility(can_analyze=True, plan_id=plan.plan_id, via="plan")

    used = count_monthly_usage(db, user_id, plan_usage_key(analysis_type), current)
    usage_info = UsageInfo(used=used, limit=limit)
    if _within_limit(used, limit):
        return AnalysisEligibility(can_analyze=True, plan_id=plan.plan_id, via="plan", usage_info=usage_info)

    ticket_type = ticket_type_for_analysis(analysis_type)
    ticket_price = TICKET_PRODUCTS[ticket_type].price
    if get_available_tickets(db, user_id, ticket_type, current) > 0:
        return AnalysisEligibility(
            can_analyze=True,
            plan_id=plan.plan_id,
            via="ticket",
            usage_info=usage_info,
            ticket_price=ticket_price,
        )

    logger.info(
        "[entitlement] limit_exceeded",
        extra={"user_id": user_id, "analysis_type": analysis_type, "used": used, "limit": limit, "plan_id": plan.plan_id},
    )
    return AnalysisEligibility(
        can_analyze=False,
        plan_id=plan.plan_id,
        reason="limit_exceeded",
        usage_info=usage_info,
        ticket_price=ticket_price,
    )


def can_save_analysis(db: Session, user_id: str) -> SaveEligibility:
    """Saving is a plan feature; the free tier can never save."""
    plan = get_user_plan(db, user_id)
    return SaveEligibility(
        can_save=plan.is_paid and plan.can_save_results,
        plan_id=plan.plan_id,
        history_months=plan.history_months,
    )


def authorize_analysis_run(
    db: Session,
    user_id: str,
    analysis_type: str,
    now: Optional[datetime] = None,
) -> AnalysisEligibility:
    """
    Gate one analysis run and meter it.

    Plan path: records a plan usage event. Ticket path: consumes one ticket
    and records a ticket usage event. Both happen in one commit. Denied runs
    raise PaymentRequiredError carrying the usage/limit pair and ticket price.
    """
    current = normalize_now(now)
    eligibility = check_analysis_eligibility(db, user_id, analysis_type, current)

    if eligibility.can_analyze and eligibility.via == "ticket":
        ticket_type = ticket_type_for_analysis(analysis_type)
        batch_id = consume_ticket(db, user_id, ticket_type, current)
        if batch_id is None:
            # Balance was spent between the check and the claim
            db.rollback()
            eligibility = eligibility.model_copy(update={"can_analyze": False, "via": None, "reason": "limit_exceeded"})
        else:
            record_usage(db, user_id, ticket_usage_key(analysis_type), current, {"ticket_id": batch_id})
    elif eligibility.can_analyze:
        record_usage(db, user_id, plan_usage_key(analysis_type), current)

    if not eligibility.can_analyze:
        details = {"reason": eligibility.reason, "ticket_price": eligibility.ticket_price}
        if eligibility.usage_info:
            details["usage_info"] = eligibility.usage_info.model_dump()
        raise PaymentRequiredError(code="limit_exceeded", details=details)

    db.commit()
    logger.info(
        "[entitlement] analysis authorized",
        extra={"user_id": user_id, "analysis_type": analysis_type, "via": eligibility.via, "plan_id": eligibility.plan_id},
    )
    return eligibility


def get_usage_status(db: Session, user_id: str, now: Optional[datetime] = None) -> List[UsageStatusItem]:
    current = normalize_now(now)
    plan = get_user_plan(db, user_id)
    items = []
    for analysis_type in ANALYSIS_TYPES:
        limit = plan.limit_for(analysis_type)
        used = count_monthly_usage(db, user_id, plan_usage_key(analysis_type), current)
        items.append(
            UsageStatusItem(
                analysis_type=analysis_type,
                used=used,
                limit=limit,
                can_use=_within_limit(used, limit),
            )
        )
    return items
