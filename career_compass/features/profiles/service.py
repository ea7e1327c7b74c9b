"""
Profile service.

A profile row exists for every authenticated user and carries the
denormalized `subscription_status` shown in the UI.
"""
import logging
from typing import Optional

from sqlalchemy import insert, select, update
from sqlalchemy.engine import RowMapping
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from career_compass.core.database import profiles
from career_compass.core.dates import utc_now

logger = logging.getLogger("career_compass")


def get_profile(db: Session, user_id: str) -> Optional[RowMapping]:
    return db.execute(select(profiles).where(profiles.c.id == user_id)).mappings().first()


def get_or_create_profile(db: Session, user_id: str, email: Optional[str] = None) -> RowMapping:
    """Return the user's profile, creating it on first sight (idempotent)."""
    existing = get_profile(db, user_id)
    if existing:
        if email and not existing["email"]:
            db.execute(update(profiles).where(profiles.c.id == user_id).values(email=email))
            db.commit()
            return get_profile(db, user_id)
        return existing

    try:
        db.execute(insert(profiles).values(id=user_id, email=email, subscription_status="free"))
        db.commit()
        logger.info("[profiles] created", extra={"user_id": user_id})
    except IntegrityError:
        # Concurrent first request created it
        db.rollback()
    return get_profile(db, user_id)


def set_subscription_status(db: Session, user_id: str, status: str) -> None:
    """Stage the profile status change; the caller owns the commit."""
    db.execute(
        update(profiles)
        .where(profiles.c.id == user_id)
        .values(subscription_status=status, updated_at=utc_now())
    )
