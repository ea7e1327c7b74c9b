"""
Referral program.

State machine per referral row: pending -> completed (a referee applied the
code) or pending -> expired (past expires_at). Completion and both reward
grants are one transaction.
"""
import logging
import secrets
import string
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import and_, func, select, update
from sqlalchemy.engine import RowMapping
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from career_compass.core.database import referrals
from career_compass.core.dates import ensure_utc, month_start, normalize_now
from career_compass.core.errors import BusinessRuleError, ConflictError
from career_compass.core.repository import UserScopedRepository
from career_compass.features.plans.catalog import (
    REFERRAL_CODE_LENGTH,
    REFERRAL_CODE_TTL_DAYS,
    REFERRAL_REWARDS,
)
from career_compass.features.plans.service import has_active_paid_subscription
from career_compass.features.tickets.service import grant_tickets
from career_compass.features.usage.service import count_completed_analyses
from career_compass.models.referral import ReferralCode, ReferralStats, ReferralValidation

logger = logging.getLogger("career_compass")

CODE_ALPHABET = string.ascii_uppercase + string.digits
MAX_CODE_ATTEMPTS = 5


def generate_code(length: int = REFERRAL_CODE_LENGTH) -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def normalize_code(code: Optional[str]) -> str:
    return (code or "").strip().upper()


def _to_model(row: RowMapping) -> ReferralCode:
    return ReferralCode(
        id=row["id"],
        referrer_id=row["referrer_id"],
        referral_code=row["referral_code"],
        status=row["status"],
        expires_at=ensure_utc(row["expires_at"]),
        created_at=ensure_utc(row["created_at"]),
        referee_id=row["referee_id"],
        reward_type=row["reward_type"],
        reward_value=row["reward_value"],
        completed_at=ensure_utc(row["completed_at"]),
    )


def _referrer_repo(db: Session, user_id: str) -> UserScopedRepository:
    return UserScopedRepository(db, user_id, owner_column="referrer_id")


def _find_by_code(db: Session, code: str) -> Optional[RowMapping]:
    # Codes are looked up across users: the code is the capability.
    return db.execute(
        select(referrals).where(referrals.c.referral_code == code)
    ).mappings().first()


def has_completed_referral_as_referee(db: Session, user_id: str) -> bool:
    repo = UserScopedRepository(db, user_id, owner_column="referee_id")
    return repo.count(referrals, referrals.c.status == "completed") > 0


def create_referral_code(db: Session, user_id: str, now: Optional[datetime] = None) -> ReferralCode:
    """
    Return the user's live pending code, or issue a new one valid for
    REFERRAL_CODE_TTL_DAYS. Eligibility gating is the caller's job.
    """
    current = normalize_now(now)
    repo = _referrer_repo(db, user_id)
    existing = repo.fetch_all(
        referrals,
        referrals.c.status == "pending",
        referrals.c.referee_id.is_(None),
        referrals.c.expires_at > current,
        order_by=(referrals.c.created_at.desc(),),
        limit=1,
    )
    if existing:
        return _to_model(existing[0])

    for attempt in range(MAX_CODE_ATTEMPTS):
        try:
            row = repo.insert(
                referrals,
                {
                    "referral_code": generate_code(),
                    "status": "pending",
                    "reward_type": REFERRAL_REWARDS["referrer"]["ticket_type"],
                    "reward_value": 0,
                    "expires_at": current + timedelta(days=REFERRAL_CODE_TTL_DAYS),
                    "created_at": current,
                },
            )
            db.commit()
        except IntegrityError:
            db.rollback()
            logger.warning("[referrals] code collision, retrying", extra={"user_id": user_id, "attempt": attempt + 1})
            continue
        logger.info("[referrals] code created", extra={"user_id": user_id, "referral_id": row["id"]})
        return _to_model(row)

    raise ConflictError("could not allocate a unique referral code")


def _mark_expired(db: Session, referral_id: str) -> None:
    db.execute(
        update(referrals)
        .where(and_(referrals.c.id == referral_id, referrals.c.status == "pending"))
        .values(status="expired")
    )
    db.commit()


def validate_referral_code(db: Session, code: str, user_id: str, now: Optional[datetime] = None) -> ReferralValidation:
    """
    Check a code for `user_id` as referee. Rejections, first match wins:
    invalid_code, expired, self_referral, already_used,
    referrer_not_premium, referrer_no_analysis.

    A pending code found past its expiry is marked expired on the way.
    """
    current = normalize_now(now)
    row = _find_by_code(db, normalize_code(code))
    if row is None:
        return ReferralValidation(is_valid=False, reason="invalid_code")

    if row["status"] == "expired":
        return ReferralValidation(is_valid=False, reason="expired")
    if ensure_utc(row["expires_at"]) <= current:
        if row["status"] == "pending":
            _mark_expired(db, row["id"])
        return ReferralValidation(is_valid=False, reason="expired")

    referrer_id = row["referrer_id"]
    if referrer_id == user_id:
        return ReferralValidation(is_valid=False, reason="self_referral")

    if row["status"] == "completed" or has_completed_referral_as_referee(db, user_id):
        return ReferralValidation(is_valid=False, reason="already_used")

    if not has_active_paid_subscription(db, referrer_id):
        return ReferralValidation(is_valid=False, reason="referrer_not_premium")

    if count_completed_analyses(db, referrer_id) == 0:
        return ReferralValidation(is_valid=False, reason="referrer_no_analysis")

    return ReferralValidation(is_valid=True, referrer_id=referrer_id)


def process_referral_success(db: Session, code: str, referee_id: str, now: Optional[datetime] = None) -> ReferralCode:
    """
    Complete the referral and grant both rewards atomically.

    The status flip is conditional on the row still being pending and
    unexpired, so two concurrent applications of one code cannot both win.
    Any failure rolls back the flip together with the grants.
    """
    current = normalize_now(now)
    normalized = normalize_code(code)
    referrer_reward = REFERRAL_REWARDS["referrer"]
    referee_reward = REFERRAL_REWARDS["referee"]

    try:
        if has_completed_referral_as_referee(db, referee_id):
            raise BusinessRuleError(code="already_used")

        result = db.execute(
            update(referrals)
            .where(
                and_(
                    referrals.c.referral_code == normalized,
                    referrals.c.status == "pending",
                    referrals.c.expires_at > current,
                    referrals.c.referrer_id != referee_id,
                )
            )
            .values(
                status="completed",
                referee_id=referee_id,
                completed_at=current,
                reward_value=referrer_reward["quantity"],
            )
        )
        if result.rowcount != 1:
            raise BusinessRuleError(code="already_used")

        row = _find_by_code(db, normalized)
        grant_tickets(
            db,
            row["referrer_id"],
            referrer_reward["ticket_type"],
            referrer_reward["quantity"],
            source="referral",
            now=current,
        )
        grant_tickets(
            db,
            referee_id,
            referee_reward["ticket_type"],
            referee_reward["quantity"],
            source="referral",
            now=current,
        )
        db.commit()
    except BusinessRuleError:
        db.rollback()
        raise
    except Exception:
        db.rollback()
        logger.warning("[referrals] completion rolled back", extra={"user_id": referee_id}, exc_info=True)
        raise

    logger.info(
        "[referrals] completed",
        extra={"referral_id": row["id"], "referrer_id": row["referrer_id"], "user_id": referee_id},
    )
    return _to_model(row)


def get_user_referral_stats(db: Session, user_id: str, now: Optional[datetime] = None) -> ReferralStats:
    current = normalize_now(now)
    repo = _referrer_repo(db, user_id)
    rewards = db.execute(
        select(func.coalesce(func.sum(referrals.c.reward_value), 0)).where(
            and_(referrals.c.referrer_id == user_id, referrals.c.status == "completed")
        )
    ).scalar() or 0
    return ReferralStats(
        total_referrals=repo.count(referrals),
        successful_referrals=repo.count(referrals, referrals.c.status == "completed"),
        pending_referrals=repo.count(referrals, referrals.c.status == "pending"),
        total_rewards_earned=int(rewards),
        current_month_referrals=repo.count(referrals, referrals.c.created_at >= month_start(current)),
    )


def get_referral_history(db: Session, user_id: str, limit: int = 50) -> List[ReferralCode]:
    rows = _referrer_repo(db, user_id).fetch_all(
        referrals,
        order_by=(referrals.c.created_at.desc(),),
        limit=limit,
    )
    return [_to_model(r) for r in rows]


def expire_stale_referrals(db: Session, now: Optional[datetime] = None) -> int:
    """Batch pending -> expired transition for codes past their expiry."""
    current = normalize_now(now)
    result = db.execute(
        update(referrals)
        .where(and_(referrals.c.status == "pending", referrals.c.expires_at <= current))
        .values(status="expired")
    )
    return result.rowcount or 0
