"""
career_compass/features/plans/service.py

Plan resolution: which tier a user is on right now.

A user is on a paid plan while they hold an `active` user_subscriptions
row; everyone else is on the free tier.
"""

from typing import Optional

from sqlalchemy.engine import RowMapping
from sqlalchemy.orm import Session

from career_compass.core.database import user_subscriptions
from career_compass.core.repository import UserScopedRepository
from career_compass.features.plans.catalog import PLANS, get_plan
from career_compass.models.plan import PlanDefinition


def get_active_subscription(db: Session, user_id: str) -> Optional[RowMapping]:
    repo = UserScopedRepository(db, user_id)
    rows = repo.fetch_all(
        user_subscriptions,
        user_subscriptions.c.status == "active",
        order_by=(user_subscriptions.c.created_at.desc(),),
        limit=1,
    )
    return rows[0] if rows else None


def has_active_paid_subscription(db: Session, user_id: str) -> bool:
    sub = get_active_subscription(db, user_id)
    return bool(sub and sub["plan_id"] in PLANS and PLANS[sub["plan_id"]].is_paid)


def get_user_plan(db: Session, user_id: str) -> PlanDefinition:
    sub = get_active_subscription(db, user_id)
    return get_plan(sub["plan_id"] if sub else None)
