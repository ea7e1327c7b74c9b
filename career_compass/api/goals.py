"""Goal and task endpoints."""
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from career_compass.core.auth import get_current_user_id
from career_compass.core.database import get_db
from career_compass.features.goals.service import create_goal, list_goals, update_goal
from career_compass.features.tasks.service import create_task, list_tasks, update_task

goals_router = APIRouter(prefix="/api/goals", tags=["goals"])
tasks_router = APIRouter(prefix="/api/tasks", tags=["tasks"])


def _blank_to_none(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    return value.strip() or None


class GoalCreateRequest(BaseModel):
    title: str
    description: Optional[str] = None
    target_date: Optional[str] = None
    priority: Optional[str] = None

    @field_validator("description", "target_date", "priority")
    @classmethod
    def _trim(cls, value: Optional[str]) -> Optional[str]:
        return _blank_to_none(value)


class GoalUpdateRequest(BaseModel):
    id: str
    title: Optional[str] = None
    description: Optional[str] = None
    target_date: Optional[str] = None
    priority: Optional[str] = None
    status: Optional[str] = None


class TaskCreateRequest(BaseModel):
    title: str
    description: Optional[str] = None
    priority: Optional[str] = None
    due_date: Optional[str] = None
    goal_id: Optional[str] = None

    @field_validator("description", "priority", "due_date", "goal_id")
    @classmethod
    def _trim(cls, value: Optional[str]) -> Optional[str]:
        return _blank_to_none(value)


class TaskUpdateRequest(BaseModel):
    id: str
    title: Optional[str] = None
    description: Optional[str] = None
    priority: Optional[str] = None
    due_date: Optional[str] = None
    goal_id: Optional[str] = None
    status: Optional[str] = None


@goals_router.get("")
def get_goals(
    status: Optional[str] = Query(None),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    return {"goals": [dict(r) for r in list_goals(db, user_id, status)]}


@goals_router.post("")
def post_goal(body: GoalCreateRequest, user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)):
    row = create_goal(db, user_id, body.title, body.description, body.target_date, body.priority)
    return {"goal": dict(row)}


@goals_router.patch("")
def patch_goal(body: GoalUpdateRequest, user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)):
    row = update_goal(db, user_id, body.id, body.model_dump(exclude={"id"}, exclude_none=True))
    return {"goal": dict(row)}


@tasks_router.get("")
def get_tasks(
    goal_id: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    return {"tasks": [dict(r) for r in list_tasks(db, user_id, goal_id, status)]}


@tasks_router.post("")
def post_task(body: TaskCreateRequest, user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)):
    row = create_task(db, user_id, body.title, body.description, body.priority, body.due_date, body.goal_id)
    return {"task": dict(row)}


@tasks_router.patch("")
def patch_task(body: TaskUpdateRequest, user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)):
    row = update_task(db, user_id, body.id, body.model_dump(exclude={"id"}, exclude_none=True))
    return {"task": dict(row)}
