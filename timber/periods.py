"""Calendar windows used by the daily, pay-week and monthly reports.

All windows are computed in UTC and are inclusive at both ends, with the
end set to the last whole second of the window, which is what
``Store.sessions_in_range`` expects.
"""

from __future__ import annotations

import calendar
from datetime import datetime, timedelta, timezone

ONE_SECOND = timedelta(seconds=1)

# datetime.weekday() numbering
SATURDAY = 5


def _utc(date: datetime | None) -> datetime:
    if date is None:
        return datetime.now(timezone.utc)
    if date.tzinfo is None:
        return date.replace(tzinfo=timezone.utc)
    return date.astimezone(timezone.utc)


def _midnight(date: datetime) -> datetime:
    return date.replace(hour=0, minute=0, second=0, microsecond=0)


def day_range(date: datetime | None = None) -> tuple[datetime, datetime]:
    """Get 00:00:00 to 23:59:59 UTC of the given day (default: today)."""
    start = _midnight(_utc(date))
    return start, start + timedelta(days=1) - ONE_SECOND


def current_week_range(date: datetime | None = None) -> tuple[datetime, datetime]:
    """Get the pay week containing ``date``: Saturday 00:00:00 to Friday 23:59:59 UTC.

    A Saturday is the first day of its own pay week.
    """
    date = _midnight(_utc(date))
    days_since_saturday = (date.weekday() - SATURDAY) % 7
    start = date - timedelta(days=days_since_saturday)
    return start, start + timedelta(days=7) - ONE_SECOND


def month_range(date: datetime | None = None) -> tuple[datetime, datetime]:
    """Get the first of the month 00:00:00 to its last day 23:59:59 UTC."""
    date = _utc(date)
    start = _midnight(date.replace(day=1))
    days_in_month = calendar.monthrange(start.year, start.month)[1]
    return start, start + timedelta(days=days_in_month) - ONE_SECOND
