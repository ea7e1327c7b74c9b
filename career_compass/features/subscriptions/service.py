"""
Subscription lifecycle: cancel, downgrade to free, pause.

Each operation:
1. Looks up the caller's subscription (owner-scoped)
2. Calls the processor
3. Commits the local state change (subscription row + profile status) as one unit
4. Writes the reason/offer log as a separate best-effort step

Processor failures are non-fatal for cancel and downgrade (the local change
proceeds and the mismatch is reconciled by hand) and fatal for pause.
"""
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import Table
from sqlalchemy.engine import RowMapping
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from career_compass.core.database import retention_offers, subscription_cancellations, user_subscriptions
from career_compass.core.dates import add_months, normalize_now
from career_compass.core.errors import NotFoundError, UpstreamError, ValidationError
from career_compass.core.repository import UserScopedRepository
from career_compass.features.billing.provider import BillingProvider, BillingProviderError
from career_compass.features.plans.catalog import DEFAULT_PLAN_ID
from career_compass.features.profiles.service import set_subscription_status

logger = logging.getLogger("career_compass")

MIN_PAUSE_MONTHS = 1
MAX_PAUSE_MONTHS = 12


def get_subscription(db: Session, user_id: str, subscription_id: str) -> RowMapping:
    row = UserScopedRepository(db, user_id).fetch_one(
        user_subscriptions,
        user_subscriptions.c.id == subscription_id,
    )
    if row is None:
        raise NotFoundError(code="subscription_not_found")
    return row


def get_current_subscription(db: Session, user_id: str) -> Optional[RowMapping]:
    """Most recent subscription row in any status."""
    rows = UserScopedRepository(db, user_id).fetch_all(
        user_subscriptions,
        order_by=(user_subscriptions.c.created_at.desc(),),
        limit=1,
    )
    return rows[0] if rows else None


def _commit_state_change(db: Session, user_id: str, subscription_id: str, values: Dict[str, Any], profile_status: str) -> None:
    try:
        UserScopedRepository(db, user_id).update(
            user_subscriptions,
            values,
            user_subscriptions.c.id == subscription_id,
        )
        set_subscription_status(db, user_id, profile_status)
        db.commit()
    except Exception:
        db.rollback()
        raise


def _log_best_effort(db: Session, user_id: str, table: Table, values: Dict[str, Any]) -> None:
    try:
        UserScopedRepository(db, user_id).insert(table, values)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.warning(
            "[subscription] side log failed",
            extra={"user_id": user_id, "table": table.name},
            exc_info=True,
        )


def cancel_subscription(
    db: Session,
    provider: BillingProvider,
    user_id: str,
    subscription_id: str,
    reason: Optional[str] = None,
    custom_reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> None:
    current = normalize_now(now)
    sub = get_subscription(db, user_id, subscription_id)

    if sub["stripe_subscription_id"]:
        try:
            provider.cancel_subscription(sub["stripe_subscription_id"], prorate=True)
        except BillingProviderError as e:
            logger.error(
                f"[subscription] processor cancel failed, continuing: {e}",
                extra={"user_id": user_id, "subscription_id": subscription_id},
            )

    _commit_state_change(
        db,
        user_id,
        subscription_id,
        {"status": "canceled", "canceled_at": current, "cancel_at_period_end": True, "updated_at": current},
        DEFAULT_PLAN_ID,
    )
    logger.info("[subscription] canceled", extra={"user_id": user_id, "subscription_id": subscription_id})

    _log_best_effort(
        db,
        user_id,
        subscription_cancellations,
        {
            "subscription_id": subscription_id,
            "reason_code": reason,
            "reason_text": custom_reason or reason,
            "canceled_at": current,
        },
    )


def downgrade_subscription(
    db: Session,
    provider: BillingProvider,
    user_id: str,
    subscription_id: str,
    now: Optional[datetime] = None,
) -> None:
    """Move the user to the free plan. Succeeds even if the processor call fails."""
    current = normalize_now(now)
    sub = get_subscription(db, user_id, subscription_id)

    if sub["stripe_subscription_id"]:
        try:
            provider.cancel_subscription(sub["stripe_subscription_id"], prorate=True)
        except BillingProviderError as e:
            logger.error(
                f"[subscription] processor cancel failed during downgrade, continuing: {e}",
                extra={"user_id": user_id, "subscription_id": subscription_id},
            )

    _commit_state_change(
        db,
        user_id,
        subscription_id,
        {
            "plan_id": DEFAULT_PLAN_ID,
            "status": "active",
            "downgraded_from": sub["plan_id"],
            "downgraded_at": current,
            "retention_offer_applied": True,
            "retention_offer_type": "downgrade",
            "retention_offer_date": current,
            "updated_at": current,
        },
        DEFAULT_PLAN_ID,
    )
    logger.info(
        "[subscription] downgraded",
        extra={"user_id": user_id, "subscription_id": subscription_id, "from_plan": sub["plan_id"]},
    )

    _log_best_effort(
        db,
        user_id,
        retention_offers,
        {"subscription_id": subscription_id, "offer_type": "downgrade", "offer_value": "free_plan", "applied_at": current},
    )


def validate_pause_months(pause_months) -> int:
    if isinstance(pause_months, bool) or not isinstance(pause_months, int):
        raise ValidationError(code="invalid_pause_duration")
    if pause_months < MIN_PAUSE_MONTHS or pause_months > MAX_PAUSE_MONTHS:
        raise ValidationError(code="invalid_pause_duration")
    return pause_months


def pause_subscription(
    db: Session,
    provider: BillingProvider,
    user_id: str,
    subscription_id: str,
    pause_months=1,
    now: Optional[datetime] = None,
) -> datetime:
    """Pause billing for `pause_months`; returns the resume date."""
    months = validate_pause_months(pause_months)
    current = normalize_now(now)
    sub = get_subscription(db, user_id, subscription_id)
    resume_at = add_months(current, months)

    if sub["stripe_subscription_id"]:
        try:
            provider.pause_subscription(sub["stripe_subscription_id"], resumes_at=resume_at)
        except BillingProviderError as e:
            logger.error(
                f"[subscription] processor pause failed: {e}",
                extra={"user_id": user_id, "subscription_id": subscription_id},
            )
            raise UpstreamError(code="payment_error")

    _commit_state_change(
        db,
        user_id,
        subscription_id,
        {
            "status": "paused",
            "paused_at": current,
            "pause_until": resume_at,
            "retention_offer_applied": True,
            "retention_offer_type": "pause",
            "retention_offer_date": current,
            "updated_at": current,
        },
        DEFAULT_PLAN_ID,
    )
    logger.info(
        "[subscription] paused",
        extra={"user_id": user_id, "subscription_id": subscription_id, "resume_at": resume_at.isoformat()},
    )

    _log_best_effort(
        db,
        user_id,
        retention_offers,
        {"subscription_id": subscription_id, "offer_type": "pause", "offer_value": f"{months} months", "applied_at": current},
    )
    return resume_at
