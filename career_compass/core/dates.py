"""UTC time helpers shared by the ledger, ticket and referral services."""

import calendar
from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on the way back)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def normalize_now(now: Optional[datetime] = None) -> datetime:
    return ensure_utc(now) if now is not None else utc_now()


def add_months(value: datetime, months: int) -> datetime:
    """Calendar-month arithmetic, clamping the day (Jan 31 + 1 -> Feb 28/29)."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def month_start(now: datetime) -> datetime:
    """First instant of the calendar month containing `now` (UTC)."""
    now = ensure_utc(now)
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
