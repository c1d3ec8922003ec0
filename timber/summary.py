"""Per-client time totals over a window."""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime

from pydantic import BaseModel

from timber.accounting import duration_minutes
from timber.db import Store
from timber.models import format_timestamp, utc_now


class ClientTotal(BaseModel):
    client_id: int
    name: str | None
    minutes: int
    session_count: int


class Summary(BaseModel):
    """Minutes logged per client between ``start`` and ``end``."""

    start: str
    end: str
    clients: list[ClientTotal]
    total_minutes: int

    @property
    def minutes_by_client(self) -> dict[int, int]:
        return {c.client_id: c.minutes for c in self.clients}


def summarize(
    store: Store,
    start: datetime,
    end: datetime,
    *,
    now: datetime | None = None,
) -> Summary:
    """Sum session minutes per client for sessions starting in [start, end].

    A session is counted in full if it starts inside the window, wherever it
    ends, and not at all if it started before the window. Open sessions are
    measured up to ``now``.

    Clients are ordered by total descending, then by id.
    """
    if now is None:
        now = utc_now()

    minutes: defaultdict[int, int] = defaultdict(int)
    counts: defaultdict[int, int] = defaultdict(int)
    for session in store.sessions_in_range(start, end):
        minutes[session.client_id] += duration_minutes(session, now)
        counts[session.client_id] += 1

    clients = [
        ClientTotal(
            client_id=client_id,
            name=store.get_client_name(client_id),
            minutes=total,
            session_count=counts[client_id],
        )
        for client_id, total in minutes.items()
    ]
    clients.sort(key=lambda c: (-c.minutes, c.client_id))

    return Summary(
        start=format_timestamp(start),
        end=format_timestamp(end),
        clients=clients,
        total_minutes=sum(c.minutes for c in clients),
    )
