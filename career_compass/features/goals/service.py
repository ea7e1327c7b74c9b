"""Goals: user-authored planning records (active | completed | paused)."""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.engine import RowMapping
from sqlalchemy.orm import Session

from career_compass.core.database import goals
from career_compass.core.dates import normalize_now
from career_compass.core.errors import NotFoundError, ValidationError
from career_compass.core.repository import UserScopedRepository
from career_compass.features.activity.service import track_activity

logger = logging.getLogger("career_compass")

GOAL_STATUSES = ("active", "completed", "paused")
EDITABLE_FIELDS = ("title", "description", "priority", "target_date", "status")


def create_goal(
    db: Session,
    user_id: str,
    title: str,
    description: Optional[str] = None,
    target_date: Optional[str] = None,
    priority: Optional[str] = None,
) -> RowMapping:
    if not title or not title.strip():
        raise ValidationError(code="missing_fields")
    row = UserScopedRepository(db, user_id).insert(
        goals,
        {
            "title": title.strip(),
            "description": description,
            "target_date": target_date,
            "priority": priority,
            "status": "active",
        },
    )
    db.commit()
    track_activity(db, user_id, "goal_created", {"goal_id": row["id"], "title": row["title"]})
    return row


def list_goals(db: Session, user_id: str, status: Optional[str] = None) -> List[RowMapping]:
    criteria = [goals.c.status == status] if status else []
    return UserScopedRepository(db, user_id).fetch_all(
        goals,
        *criteria,
        order_by=(goals.c.created_at.desc(),),
    )


def update_goal(
    db: Session,
    user_id: str,
    goal_id: str,
    changes: Dict[str, Any],
    now: Optional[datetime] = None,
) -> RowMapping:
    values = {k: v for k, v in changes.items() if k in EDITABLE_FIELDS and v is not None}
    status = values.get("status")
    if status is not None and status not in GOAL_STATUSES:
        raise ValidationError(code="validation_error")
    if "title" in values and not str(values["title"]).strip():
        raise ValidationError(code="missing_fields")

    current = normalize_now(now)
    values["updated_at"] = current
    if status == "completed":
        values["completed_at"] = current

    rows = UserScopedRepository(db, user_id).update(goals, values, goals.c.id == goal_id)
    if not rows:
        db.rollback()
        raise NotFoundError()
    db.commit()

    if status == "completed":
        track_activity(db, user_id, "goal_completed", {"goal_id": goal_id})
    return rows[0]
