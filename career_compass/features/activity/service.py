"""Best-effort activity tracking (goal_created, task_completed, ...)."""
import logging
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from career_compass.core.database import user_activities
from career_compass.core.repository import UserScopedRepository

logger = logging.getLogger("career_compass")


def track_activity(db: Session, user_id: str, activity_type: str, data: Optional[Dict[str, Any]] = None) -> bool:
    """Record an activity in its own commit. Failures are logged, never raised."""
    try:
        UserScopedRepository(db, user_id).insert(
            user_activities,
            {"activity_type": activity_type, "activity_data": data or {}},
        )
        db.commit()
        return True
    except SQLAlchemyError:
        db.rollback()
        logger.warning(
            "[activity] tracking failed",
            extra={"user_id": user_id, "activity_type": activity_type},
            exc_info=True,
        )
        return False
