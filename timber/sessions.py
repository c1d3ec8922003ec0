"""Start, end, patch and switch the active session.

At most one session in the store may be open at a time. Every operation
here does its check and its write inside a single ``Store.transaction()``
so two processes racing on the same database file cannot both open a
session.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import NamedTuple

from timber.accounting import duration
from timber.db import Store
from timber.errors import AlreadyActiveError, ClientNotFoundError, NoActiveSessionError
from timber.models import Session, format_timestamp, utc_now

logger = logging.getLogger(__name__)


class SwitchResult(NamedTuple):
    """Outcome of ``switch_session``."""

    ended: Session | None
    ended_duration: timedelta | None
    started: Session


def start_session(
    store: Store,
    client_id: int,
    note: str | None = None,
    *,
    now: datetime | None = None,
) -> Session:
    """Open a new session for a client.

    Raises:
        AlreadyActiveError: A session is already open, for any client.
        ClientNotFoundError: No client has this id.
    """
    if now is None:
        now = utc_now()
    with store.transaction():
        active = store.get_active_session()
        if active is not None:
            raise AlreadyActiveError(active)
        if store.get_client(client_id) is None:
            raise ClientNotFoundError(client_id)
        session = Session(
            client_id=client_id,
            start_timestamp=format_timestamp(now),
            note=note,
        )
        session.id = store.add_session(session)
    logger.info("Started session %d for client %d", session.id, client_id)
    return session


def end_session(store: Store, *, now: datetime | None = None) -> tuple[Session, timedelta]:
    """Close the active session.

    Returns:
        The closed session and its duration.

    Raises:
        NoActiveSessionError: Nothing is open.
    """
    if now is None:
        now = utc_now()
    with store.transaction():
        session = store.get_active_session()
        if session is None:
            raise NoActiveSessionError()
        session.end_timestamp = format_timestamp(now)
        store.commit_session(session)
    elapsed = duration(session, now)
    logger.info("Ended session %d after %s", session.id, elapsed)
    return session, elapsed


def patch_session(store: Store, minutes: int) -> Session:
    """Add ``minutes`` (possibly negative) to the active session's offset.

    Raises:
        NoActiveSessionError: Nothing is open.
    """
    with store.transaction():
        session = store.get_active_session()
        if session is None:
            raise NoActiveSessionError()
        session.offset_minutes += minutes
        store.commit_session(session)
    logger.info(
        "Patched session %d by %+d minutes (offset now %d)",
        session.id,
        minutes,
        session.offset_minutes,
    )
    return session


def switch_session(
    store: Store,
    client_id: int,
    note: str | None = None,
    *,
    now: datetime | None = None,
) -> SwitchResult:
    """End the active session, if any, and start one for ``client_id``.

    With nothing open this is a plain start. Both halves share one
    transaction, so a failed start leaves the previous session open.
    """
    if now is None:
        now = utc_now()
    with store.transaction():
        try:
            ended, elapsed = end_session(store, now=now)
        except NoActiveSessionError:
            logger.debug("No active session to end; switch degrades to start")
            ended, elapsed = None, None
        started = start_session(store, client_id, note, now=now)
    return SwitchResult(ended, elapsed, started)
