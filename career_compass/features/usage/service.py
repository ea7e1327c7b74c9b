"""
career_compass/features/usage/service.py

Usage accounting for metered analysis runs.

Each allowed run appends one usage_events row; monthly usage is the count
of rows in the current calendar month, never a mutable counter.

Keys:
- analysis.<type>         run covered by the plan allowance
- analysis.<type>.ticket  run paid for with a ticket (not counted against the plan)
"""

from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from career_compass.core.database import usage_events
from career_compass.core.dates import add_months, month_start, normalize_now
from career_compass.core.repository import UserScopedRepository


def plan_usage_key(analysis_type: str) -> str:
    return f"analysis.{analysis_type}"


def ticket_usage_key(analysis_type: str) -> str:
    return f"analysis.{analysis_type}.ticket"


def record_usage(
    db: Session,
    user_id: str,
    usage_key: str,
    occurred_at: Optional[datetime] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> None:
    """Stage a usage event; the caller owns the commit."""
    UserScopedRepository(db, user_id).insert(
        usage_events,
        {
            "usage_key": usage_key,
            "occurred_at": normalize_now(occurred_at),
            "metadata": metadata,
        },
    )


def count_monthly_usage(db: Session, user_id: str, usage_key: str, now: Optional[datetime] = None) -> int:
    """Count events for `usage_key` in the calendar month containing `now`."""
    start = month_start(normalize_now(now))
    end = add_months(start, 1)
    return UserScopedRepository(db, user_id).count(
        usage_events,
        usage_events.c.usage_key == usage_key,
        usage_events.c.occurred_at >= start,
        usage_events.c.occurred_at < end,
    )


def count_completed_analyses(db: Session, user_id: str) -> int:
    """All-time number of analysis runs, whichever way they were paid for."""
    return UserScopedRepository(db, user_id).count(
        usage_events,
        usage_events.c.usage_key.like("analysis.%"),
    )
