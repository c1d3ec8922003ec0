"""Client and session records plus the stored timestamp format."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def utc_now() -> datetime:
    """Current time in UTC, truncated to whole seconds."""
    return datetime.now(timezone.utc).replace(microsecond=0)


def format_timestamp(dt: datetime) -> str:
    """Format a datetime in the stored fixed-width UTC format.

    Naive datetimes are taken to already be in UTC.
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def parse_timestamp(ts: str) -> datetime:
    """Parse a stored timestamp into an aware UTC datetime.

    Also accepts RFC 3339 strings with an explicit offset and fractional
    seconds. Raises ValueError on anything else.
    """
    dt = datetime.fromisoformat(ts.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        raise ValueError(f"Timestamp has no UTC offset: {ts!r}")
    return dt.astimezone(timezone.utc)


class Client(BaseModel):
    """A client (or project) that sessions are logged against."""

    id: int = 0
    name: str
    note: str | None = None


class Session(BaseModel):
    """A block of work for one client.

    ``end_timestamp`` is None while the session is still running.
    """

    id: int = 0
    client_id: int
    start_timestamp: str
    end_timestamp: str | None = None
    note: str | None = None
    offset_minutes: int = 0

    @property
    def is_active(self) -> bool:
        return self.end_timestamp is None

    @property
    def start(self) -> datetime:
        return parse_timestamp(self.start_timestamp)

    @property
    def end(self) -> datetime | None:
        if self.end_timestamp is None:
            return None
        return parse_timestamp(self.end_timestamp)
