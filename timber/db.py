"""SQLite store for clients and sessions."""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

from timber.errors import ClientInUseError, ClientNotFoundError, StorageError
from timber.models import Client, Session, format_timestamp
from timber.schema import apply_migrations, atomic, ensure_schema

logger = logging.getLogger(__name__)

SESSION_COLUMNS = "id, client_id, start_timestamp, end_timestamp, note, offset_minutes"


def _row_to_client(row: sqlite3.Row) -> Client:
    return Client(id=row["id"], name=row["name"], note=row["note"])


def _row_to_session(row: sqlite3.Row) -> Session:
    return Session(
        id=row["id"],
        client_id=row["client_id"],
        start_timestamp=row["start_timestamp"],
        end_timestamp=row["end_timestamp"],
        note=row["note"],
        offset_minutes=row["offset_minutes"],
    )


class Store:
    """SQLite-backed client and session store.

    Runs in autocommit mode: each statement commits on its own unless it is
    inside ``transaction()``. Not thread-safe.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self._conn.isolation_level = None
        self._conn.row_factory = sqlite3.Row
        try:
            self._conn.execute("PRAGMA foreign_keys = ON")
            ensure_schema(self._conn)
            apply_migrations(self._conn)
        except Exception:
            self._conn.close()
            raise

    def __enter__(self) -> "Store":
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        self.close()

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    @classmethod
    def open(cls, path: Path) -> Store:
        """Open or create a database at the given path.

        Missing parent directories are created.
        """
        path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(path)
        return cls(conn)

    @classmethod
    def open_in_memory(cls) -> Store:
        """Open a throwaway in-memory database."""
        return cls(sqlite3.connect(":memory:"))

    @contextmanager
    def transaction(self) -> Iterator[Store]:
        """Group several store calls into one atomic write.

        The write lock is held from the first statement, so a check made
        inside the block still holds when the block commits.
        """
        try:
            with atomic(self._conn):
                yield self
        except sqlite3.Error as e:
            raise StorageError(str(e)) from e

    # Clients

    def add_client(self, name: str, note: str | None = None) -> int | None:
        """Insert a client.

        Returns:
            The new client id, or None if a client with this name already
            exists (the insert is skipped).

        Raises:
            ValueError: If the name is empty or only whitespace.
        """
        if not name.strip():
            raise ValueError("Client name cannot be empty")
        with self.transaction():
            try:
                cursor = self._conn.execute(
                    "INSERT INTO clients (name, note) VALUES (?, ?)", (name, note)
                )
            except sqlite3.IntegrityError:
                logger.debug("Client %r already exists; insert ignored", name)
                return None
        return cursor.lastrowid

    def get_client(self, client_id: int) -> Client | None:
        row = self._conn.execute(
            "SELECT id, name, note FROM clients WHERE id = ?", (client_id,)
        ).fetchone()
        return _row_to_client(row) if row else None

    def get_client_name(self, client_id: int) -> str | None:
        """Name of the client with this id, for display."""
        client = self.get_client(client_id)
        return client.name if client else None

    def find_client_by_name(self, name: str) -> int | None:
        """Exact, case-sensitive lookup of a client id by name."""
        row = self._conn.execute(
            "SELECT id FROM clients WHERE name = ?", (name,)
        ).fetchone()
        return row["id"] if row else None

    def remove_client(self, client_id: int) -> None:
        """Delete a client that no session references.

        Raises:
            ClientNotFoundError: No client has this id.
            ClientInUseError: Sessions still reference the client. Nothing
                is deleted.
        """
        with self.transaction():
            if self.get_client(client_id) is None:
                raise ClientNotFoundError(client_id)
            (count,) = self._conn.execute(
                "SELECT COUNT(*) FROM sessions WHERE client_id = ?", (client_id,)
            ).fetchone()
            if count:
                raise ClientInUseError(client_id, count)
            try:
                self._conn.execute("DELETE FROM clients WHERE id = ?", (client_id,))
            except sqlite3.IntegrityError as e:
                raise ClientInUseError(client_id, count) from e
        logger.info("Removed client %d", client_id)

    def list_clients(self) -> list[Client]:
        """All clients in insertion order."""
        cursor = self._conn.execute("SELECT id, name, note FROM clients ORDER BY id")
        return [_row_to_client(row) for row in cursor.fetchall()]

    # Sessions

    def add_session(self, session: Session) -> int:
        """Insert a session and return its new id. ``session.id`` is ignored.

        Raises:
            StorageError: The insert failed, e.g. ``client_id`` does not exist.
        """
        with self.transaction():
            cursor = self._conn.execute(
                """
                INSERT INTO sessions
                (client_id, start_timestamp, end_timestamp, note, offset_minutes)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    session.client_id,
                    session.start_timestamp,
                    session.end_timestamp,
                    session.note,
                    session.offset_minutes,
                ),
            )
        return cursor.lastrowid

    def get_session(self, session_id: int) -> Session | None:
        row = self._conn.execute(
            f"SELECT {SESSION_COLUMNS} FROM sessions WHERE id = ?", (session_id,)
        ).fetchone()
        return _row_to_session(row) if row else None

    def remove_session(self, session_id: int) -> bool:
        """Delete a session by id. Returns False if there was no such session."""
        with self.transaction():
            cursor = self._conn.execute("DELETE FROM sessions WHERE id = ?", (session_id,))
        return cursor.rowcount > 0

    def list_sessions(self, client_id: int | None = None) -> list[Session]:
        """Sessions, newest first, optionally for one client."""
        if client_id is None:
            cursor = self._conn.execute(
                f"SELECT {SESSION_COLUMNS} FROM sessions "
                "ORDER BY start_timestamp DESC, id DESC"
            )
        else:
            cursor = self._conn.execute(
                f"SELECT {SESSION_COLUMNS} FROM sessions WHERE client_id = ? "
                "ORDER BY start_timestamp DESC, id DESC",
                (client_id,),
            )
        return [_row_to_session(row) for row in cursor.fetchall()]

    def get_active_session(self) -> Session | None:
        """The session with no end timestamp, if any."""
        row = self._conn.execute(
            f"""
            SELECT {SESSION_COLUMNS} FROM sessions
            WHERE end_timestamp IS NULL
            ORDER BY start_timestamp DESC
            LIMIT 1
            """
        ).fetchone()
        return _row_to_session(row) if row else None

    def commit_session(self, session: Session) -> None:
        """Overwrite every column of an existing session row."""
        with self.transaction():
            self._conn.execute(
                """
                UPDATE sessions
                SET client_id = ?, start_timestamp = ?, end_timestamp = ?,
                    note = ?, offset_minutes = ?
                WHERE id = ?
                """,
                (
                    session.client_id,
                    session.start_timestamp,
                    session.end_timestamp,
                    session.note,
                    session.offset_minutes,
                    session.id,
                ),
            )

    def sessions_in_range(self, start: datetime, end: datetime) -> list[Session]:
        """Sessions whose start falls in [start, end], oldest first.

        Only the start timestamp is compared; the end is ignored.
        """
        cursor = self._conn.execute(
            f"""
            SELECT {SESSION_COLUMNS} FROM sessions
            WHERE start_timestamp >= ? AND start_timestamp <= ?
            ORDER BY start_timestamp ASC, id ASC
            """,
            (format_timestamp(start), format_timestamp(end)),
        )
        return [_row_to_session(row) for row in cursor.fetchall()]
