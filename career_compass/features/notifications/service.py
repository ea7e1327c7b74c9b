"""In-app notifications written by billing events. Best-effort."""
import logging
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from career_compass.core.database import notifications
from career_compass.core.repository import UserScopedRepository

logger = logging.getLogger("career_compass")


def notify(
    db: Session,
    user_id: str,
    notification_type: str,
    title: str,
    message: str,
    data: Optional[Dict[str, Any]] = None,
) -> bool:
    try:
        UserScopedRepository(db, user_id).insert(
            notifications,
            {"type": notification_type, "title": title, "message": message, "data": data or {}},
        )
        db.commit()
        return True
    except SQLAlchemyError:
        db.rollback()
        logger.warning(
            "[notifications] insert failed",
            extra={"user_id": user_id, "notification_type": notification_type},
            exc_info=True,
        )
        return False
