"""Move pending referral codes past their expiry to `expired`."""
import logging
from datetime import datetime
from typing import Optional

from career_compass.core.database import get_db_session
from career_compass.core.dates import normalize_now
from career_compass.features.referrals.service import expire_stale_referrals

logger = logging.getLogger("career_compass.cleanup.referrals")


def expire_referral_codes(*, now: Optional[datetime] = None) -> dict:
    current = normalize_now(now)
    with get_db_session() as session:
        expired = expire_stale_referrals(session, current)

    logger.info("[cleanup] referral codes expired", extra={"expired": expired})
    return {"expired": expired}


if __name__ == "__main__":
    print(expire_referral_codes())
