"""Tasks: planning records (pending | in_progress | completed), optionally under a goal."""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.engine import RowMapping
from sqlalchemy.orm import Session

from career_compass.core.database import goals, tasks
from career_compass.core.dates import normalize_now
from career_compass.core.errors import NotFoundError, ValidationError
from career_compass.core.repository import UserScopedRepository
from career_compass.features.activity.service import track_activity

logger = logging.getLogger("career_compass")

TASK_STATUSES = ("pending", "in_progress", "completed")
EDITABLE_FIELDS = ("title", "description", "priority", "due_date", "status", "goal_id")


def _require_owned_goal(repo: UserScopedRepository, goal_id: Optional[str]) -> None:
    if goal_id and repo.fetch_one(goals, goals.c.id == goal_id) is None:
        raise NotFoundError()


def create_task(
    db: Session,
    user_id: str,
    title: str,
    description: Optional[str] = None,
    priority: Optional[str] = None,
    due_date: Optional[str] = None,
    goal_id: Optional[str] = None,
) -> RowMapping:
    if not title or not title.strip():
        raise ValidationError(code="missing_fields")
    repo = UserScopedRepository(db, user_id)
    _require_owned_goal(repo, goal_id)
    row = repo.insert(
        tasks,
        {
            "title": title.strip(),
            "description": description,
            "priority": priority,
            "due_date": due_date,
            "goal_id": goal_id,
            "status": "pending",
        },
    )
    db.commit()
    return row


def list_tasks(db: Session, user_id: str, goal_id: Optional[str] = None, status: Optional[str] = None) -> List[RowMapping]:
    criteria = []
    if goal_id:
        criteria.append(tasks.c.goal_id == goal_id)
    if status:
        criteria.append(tasks.c.status == status)
    return UserScopedRepository(db, user_id).fetch_all(
        tasks,
        *criteria,
        order_by=(tasks.c.created_at.desc(),),
    )


def update_task(
    db: Session,
    user_id: str,
    task_id: str,
    changes: Dict[str, Any],
    now: Optional[datetime] = None,
) -> RowMapping:
    """Update an owned task; a transition to completed is tracked as activity."""
    values = {k: v for k, v in changes.items() if k in EDITABLE_FIELDS and v is not None}
    status = values.get("status")
    if status is not None and status not in TASK_STATUSES:
        raise ValidationError(code="validation_error")
    if "title" in values and not str(values["title"]).strip():
        raise ValidationError(code="missing_fields")

    repo = UserScopedRepository(db, user_id)
    _require_owned_goal(repo, values.get("goal_id"))

    current = normalize_now(now)
    values["updated_at"] = current
    if status == "completed":
        values["completed_at"] = current

    rows = repo.update(tasks, values, tasks.c.id == task_id)
    if not rows:
        db.rollback()
        raise NotFoundError()
    db.commit()

    if status == "completed":
        track_activity(db, user_id, "task_completed", {"task_id": task_id, "title": rows[0]["title"]})
    return rows[0]
