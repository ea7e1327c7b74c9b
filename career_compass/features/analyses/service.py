"""
Saved analysis results.

Saving is gated on the plan (free tier cannot save). Each saved row gets an
expiry from the plan's retention window; unlimited retention leaves
`expires_at` NULL. Expired rows are purged by workers/cleanup_analyses.py.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, func, or_, select
from sqlalchemy.engine import RowMapping
from sqlalchemy.orm import Session

from career_compass.core.database import ai_analyses
from career_compass.core.dates import add_months, normalize_now
from career_compass.core.errors import PermissionError, ValidationError
from career_compass.core.repository import UserScopedRepository
from career_compass.features.entitlements.service import can_save_analysis
from career_compass.features.plans.catalog import ANALYSIS_TYPES
from career_compass.models.plan import UNLIMITED

logger = logging.getLogger("career_compass")

TITLE_SUFFIX = "分析結果"
MAX_TAGS = 10


def default_title(analysis_type: str) -> str:
    return f"{analysis_type}{TITLE_SUFFIX}"


def retention_expiry(created_at: datetime, history_months: int) -> Optional[datetime]:
    if history_months == UNLIMITED:
        return None
    return add_months(created_at, history_months)


def save_analysis(
    db: Session,
    user_id: str,
    analysis_type: str,
    input_data: Dict[str, Any],
    result: Dict[str, Any],
    title: Optional[str] = None,
    tags: Optional[List[str]] = None,
    is_favorite: bool = False,
    now: Optional[datetime] = None,
) -> RowMapping:
    """
    Persist an analysis result for a paid user.

    Raises:
        PermissionError: plan does not include saving
        ValidationError: unknown type or empty payloads
    """
    eligibility = can_save_analysis(db, user_id)
    if not eligibility.can_save:
        raise PermissionError(code="save_not_allowed")

    if analysis_type not in ANALYSIS_TYPES:
        raise ValidationError(code="invalid_analysis_type")
    if not input_data or not result:
        raise ValidationError(code="missing_fields")

    current = normalize_now(now)
    clean_tags = [t.strip() for t in (tags or []) if isinstance(t, str) and t.strip()][:MAX_TAGS]
    row = UserScopedRepository(db, user_id).insert(
        ai_analyses,
        {
            "analysis_type": analysis_type,
            "title": (title or "").strip() or default_title(analysis_type),
            "input_data": input_data,
            "result": result,
            "tags": clean_tags,
            "is_favorite": bool(is_favorite),
            "expires_at": retention_expiry(current, eligibility.history_months),
            "created_at": current,
            "updated_at": current,
        },
    )
    db.commit()
    logger.info(
        "[analysis] saved",
        extra={"user_id": user_id, "analysis_id": row["id"], "analysis_type": analysis_type, "plan_id": eligibility.plan_id},
    )
    return row


def list_analyses(
    db: Session,
    user_id: str,
    analysis_type: Optional[str] = None,
    limit: int = 50,
    now: Optional[datetime] = None,
) -> List[RowMapping]:
    """Saved, unexpired analyses, newest first."""
    current = normalize_now(now)
    criteria = [or_(ai_analyses.c.expires_at.is_(None), ai_analyses.c.expires_at > current)]
    if analysis_type:
        criteria.append(ai_analyses.c.analysis_type == analysis_type)
    return UserScopedRepository(db, user_id).fetch_all(
        ai_analyses,
        *criteria,
        order_by=(ai_analyses.c.created_at.desc(),),
        limit=limit,
    )


def count_expired_analyses(db: Session, now: Optional[datetime] = None) -> int:
    current = normalize_now(now)
    return db.execute(
        select(func.count()).select_from(ai_analyses).where(
            ai_analyses.c.expires_at.is_not(None),
            ai_analyses.c.expires_at <= current,
        )
    ).scalar() or 0


def delete_expired_analyses(db: Session, now: Optional[datetime] = None) -> int:
    """Retention purge across all users; the caller commits."""
    current = normalize_now(now)
    result = db.execute(
        delete(ai_analyses).where(
            ai_analyses.c.expires_at.is_not(None),
            ai_analyses.c.expires_at <= current,
        )
    )
    return result.rowcount or 0
