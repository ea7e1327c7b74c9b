"""Retention purge for saved analyses past their plan's history window."""
import logging
from datetime import datetime
from typing import Optional

from career_compass.core.config import settings
from career_compass.core.database import get_db_session
from career_compass.core.dates import normalize_now
from career_compass.features.analyses.service import count_expired_analyses, delete_expired_analyses

logger = logging.getLogger("career_compass.cleanup.analyses")


def cleanup_expired_analyses(*, dry_run: Optional[bool] = None, now: Optional[datetime] = None) -> dict:
    dry = dry_run if dry_run is not None else bool(settings.ANALYSIS_CLEANUP_DRY_RUN)
    current = normalize_now(now)

    with get_db_session() as session:
        candidates = count_expired_analyses(session, current)
        deleted = 0
        if not dry and candidates:
            deleted = delete_expired_analyses(session, current)

    logger.info(
        "[cleanup] analysis retention",
        extra={"dry_run": dry, "candidates": candidates, "deleted": deleted},
    )
    return {"dry_run": dry, "candidates": candidates, "deleted": deleted}


if __name__ == "__main__":
    result = cleanup_expired_analyses()
    print(result)
