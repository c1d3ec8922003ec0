"""Table definitions and forward-only schema migrations."""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Callable, Iterator
from contextlib import contextmanager

from timber.errors import MigrationError
from timber.models import format_timestamp, parse_timestamp

logger = logging.getLogger(__name__)

# Version 1 layout. Later columns are added by MIGRATIONS, so a fresh store
# and an upgraded one end up identical.
SCHEMA = """
CREATE TABLE IF NOT EXISTS clients (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL UNIQUE,
    note TEXT
);

CREATE TABLE IF NOT EXISTS sessions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    client_id INTEGER NOT NULL,
    start_timestamp TEXT NOT NULL,
    end_timestamp TEXT,
    note TEXT,
    FOREIGN KEY (client_id) REFERENCES clients(id)
);

CREATE TABLE IF NOT EXISTS meta (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_sessions_start ON sessions(start_timestamp);
CREATE INDEX IF NOT EXISTS idx_sessions_client ON sessions(client_id);
"""

VERSION_KEY = "schema_version"


@contextmanager
def atomic(conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    """Run the enclosed statements in one write transaction.

    Takes the write lock up front (BEGIN IMMEDIATE) so that reads made
    inside the block cannot go stale before the writes land. Nested use
    joins the outer transaction.
    """
    if conn.in_transaction:
        yield conn
        return
    conn.execute("BEGIN IMMEDIATE")
    try:
        yield conn
    except BaseException:
        if conn.in_transaction:
            conn.execute("ROLLBACK")
        raise
    try:
        conn.execute("COMMIT")
    except sqlite3.Error:
        # SQLite keeps the transaction open when COMMIT fails (SQLITE_BUSY)
        if conn.in_transaction:
            conn.execute("ROLLBACK")
        raise


def _column_names(conn: sqlite3.Connection, table: str) -> set[str]:
    return {row[1] for row in conn.execute(f"PRAGMA table_info({table})")}


def _add_offset_minutes(conn: sqlite3.Connection) -> None:
    """Version 2: manual minute corrections on sessions."""
    if "offset_minutes" in _column_names(conn, "sessions"):
        return
    conn.execute(
        "ALTER TABLE sessions ADD COLUMN offset_minutes INTEGER NOT NULL DEFAULT 0"
    )


# GLOB pattern for the fixed-width stored format, YYYY-MM-DDTHH:MM:SSZ
STORED_TIMESTAMP_GLOB = (
    "[0-9][0-9][0-9][0-9]-[0-9][0-9]-[0-9][0-9]"
    "T[0-9][0-9]:[0-9][0-9]:[0-9][0-9]Z"
)


def _normalize_timestamps(conn: sqlite3.Connection) -> None:
    """Version 3: rewrite RFC 3339 timestamps in the stored format.

    Older rows carry an explicit offset and fractional seconds, which sort
    before the `Z` form within the same second. Fractions are dropped.
    """
    rows = conn.execute(
        """
        SELECT id, start_timestamp, end_timestamp FROM sessions
        WHERE start_timestamp NOT GLOB ? OR end_timestamp NOT GLOB ?
        """,
        (STORED_TIMESTAMP_GLOB, STORED_TIMESTAMP_GLOB),
    ).fetchall()
    for session_id, start, end in rows:
        conn.execute(
            "UPDATE sessions SET start_timestamp = ?, end_timestamp = ? WHERE id = ?",
            (
                format_timestamp(parse_timestamp(start)),
                format_timestamp(parse_timestamp(end)) if end is not None else None,
                session_id,
            ),
        )
    if rows:
        logger.info("Normalized timestamps on %d session(s)", len(rows))


# (target version, step). Must stay sorted by version.
MIGRATIONS: list[tuple[int, Callable[[sqlite3.Connection], None]]] = [
    (2, _add_offset_minutes),
    (3, _normalize_timestamps),
]

SCHEMA_VERSION = MIGRATIONS[-1][0]


def get_schema_version(conn: sqlite3.Connection) -> int:
    """Return the recorded schema version, or 0 if none is recorded."""
    try:
        row = conn.execute(
            "SELECT value FROM meta WHERE key = ?", (VERSION_KEY,)
        ).fetchone()
    except sqlite3.OperationalError:
        # meta table not created yet
        return 0
    return int(row[0]) if row else 0


def _set_schema_version(conn: sqlite3.Connection, version: int) -> None:
    conn.execute(
        "INSERT OR REPLACE INTO meta (key, value) VALUES (?, ?)",
        (VERSION_KEY, str(version)),
    )


def ensure_schema(conn: sqlite3.Connection) -> None:
    """Create missing tables and seed version 1 on a new store.

    Raises:
        MigrationError: If the tables cannot be created.
    """
    try:
        with atomic(conn):
            for statement in SCHEMA.split(";"):
                if statement.strip():
                    conn.execute(statement)
            if get_schema_version(conn) == 0:
                logger.info("Initializing new store at schema version 1")
                _set_schema_version(conn, 1)
    except sqlite3.Error as e:
        raise MigrationError(f"Could not create schema: {e}") from e


def apply_migrations(conn: sqlite3.Connection) -> int:
    """Apply every pending migration in order and return the final version.

    Each step and its version bump commit together, so a failed step leaves
    the store at the previous version.

    Raises:
        MigrationError: If a step fails.
    """
    version = get_schema_version(conn)
    for target, step in MIGRATIONS:
        if target <= version:
            continue
        logger.info("Migrating schema from version %d to %d", version, target)
        try:
            with atomic(conn):
                step(conn)
                _set_schema_version(conn, target)
        except (sqlite3.Error, ValueError) as e:
            raise MigrationError(
                f"Migration to schema version {target} failed: {e}"
            ) from e
        version = target
    return version
