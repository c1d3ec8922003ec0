"""Elapsed-time computation for sessions."""

from __future__ import annotations

from datetime import datetime, timedelta

from timber.models import Session, utc_now


def duration(session: Session, now: datetime | None = None) -> timedelta:
    """Elapsed time of a session including its manual offset.

    Open sessions are measured up to ``now``. The result can be negative
    when a large negative offset has been patched onto a short session.

    Raises:
        ValueError: If a stored timestamp is malformed.
    """
    end = session.end
    if end is None:
        end = now if now is not None else utc_now()
    return (end - session.start) + timedelta(minutes=session.offset_minutes)


def duration_minutes(session: Session, now: datetime | None = None) -> int:
    """Whole minutes of ``duration``, truncated toward zero."""
    return int(duration(session, now) / timedelta(minutes=1))


def split_minutes(total_minutes: int) -> tuple[int, int]:
    """Split a non-negative minute count into (hours, minutes)."""
    if total_minutes < 0:
        raise ValueError(f"total_minutes must be non-negative, got {total_minutes}")
    return total_minutes // 60, total_minutes % 60


def format_minutes(total_minutes: int) -> str:
    """Format minutes as 'Xh Ym', with a leading '-' when negative.

    Examples:
        105 -> '1h 45m'
        -20 -> '-0h 20m'
    """
    sign = "-" if total_minutes < 0 else ""
    hours, minutes = split_minutes(abs(total_minutes))
    return f"{sign}{hours}h {minutes}m"
