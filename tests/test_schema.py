"""Tests for schema creation and migrations."""

import sqlite3
from datetime import datetime, timezone
from pathlib import Path

import pytest

from timber import schema
from timber.db import Store
from timber.errors import MigrationError
from timber.periods import day_range
from timber.schema import SCHEMA_VERSION, apply_migrations, get_schema_version
from timber.summary import summarize

V1_TABLES = """
CREATE TABLE clients (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL UNIQUE,
    note TEXT
);
CREATE TABLE sessions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    client_id INTEGER NOT NULL,
    start_timestamp TEXT NOT NULL,
    end_timestamp TEXT,
    note TEXT,
    FOREIGN KEY (client_id) REFERENCES clients(id)
);
"""


def session_columns(conn: sqlite3.Connection) -> list[str]:
    return [row[1] for row in conn.execute("PRAGMA table_info(sessions)")]


def make_v1_store(path: Path, *, with_meta: bool = True) -> None:
    """Write a database laid out the way version 1 of the tool did."""
    conn = sqlite3.connect(path)
    conn.executescript(V1_TABLES)
    if with_meta:
        conn.execute("CREATE TABLE meta (key TEXT PRIMARY KEY, value TEXT NOT NULL)")
        conn.execute("INSERT INTO meta (key, value) VALUES ('schema_version', '1')")
    conn.execute("INSERT INTO clients (name, note) VALUES ('Acme', NULL)")
    conn.execute(
        "INSERT INTO sessions (client_id, start_timestamp, end_timestamp, note) "
        "VALUES (1, '2025-01-25T09:00:00Z', '2025-01-25T10:00:00Z', 'kickoff')"
    )
    conn.execute(
        "INSERT INTO sessions (client_id, start_timestamp, end_timestamp, note) "
        "VALUES (1, '2025-01-26T09:00:00Z', NULL, NULL)"
    )
    conn.commit()
    conn.close()


class TestNewStore:
    """Tests for creating a store from scratch."""

    def test_new_store_is_at_latest_version(self):
        store = Store.open_in_memory()
        assert get_schema_version(store._conn) == SCHEMA_VERSION == 3

    def test_new_store_has_offset_column(self):
        store = Store.open_in_memory()
        assert "offset_minutes" in session_columns(store._conn)

    def test_open_creates_parent_directories(self, tmp_path: Path):
        db_path = tmp_path / "nested" / "dir" / "timber.db"
        with Store.open(db_path) as store:
            store.add_client("Acme")
        assert db_path.exists()

    def test_reopen_keeps_data(self, tmp_path: Path):
        db_path = tmp_path / "timber.db"
        with Store.open(db_path) as store:
            store.add_client("Acme")
        with Store.open(db_path) as store:
            assert [c.name for c in store.list_clients()] == ["Acme"]
            assert get_schema_version(store._conn) == SCHEMA_VERSION


class TestMigrations:
    """Tests for upgrading older stores."""

    def test_v1_store_upgrades_to_latest(self, tmp_path: Path):
        db_path = tmp_path / "old.db"
        make_v1_store(db_path)

        with Store.open(db_path) as store:
            assert get_schema_version(store._conn) == SCHEMA_VERSION
            assert "offset_minutes" in session_columns(store._conn)
            sessions = store.list_sessions()
            assert len(sessions) == 2
            assert all(s.offset_minutes == 0 for s in sessions)
            assert {s.note for s in sessions} == {"kickoff", None}

    def test_store_without_meta_table_upgrades(self, tmp_path: Path):
        """Databases from before versioning are treated as version 1."""
        db_path = tmp_path / "legacy.db"
        make_v1_store(db_path, with_meta=False)

        with Store.open(db_path) as store:
            assert get_schema_version(store._conn) == SCHEMA_VERSION
            assert store.get_active_session() is not None
            assert store.get_active_session().offset_minutes == 0

    def test_rerunning_migrations_is_noop(self, tmp_path: Path):
        db_path = tmp_path / "old.db"
        make_v1_store(db_path)

        with Store.open(db_path) as store:
            columns_before = session_columns(store._conn)
            rows_before = [s.model_dump() for s in store.list_sessions()]

            assert apply_migrations(store._conn) == SCHEMA_VERSION

            assert session_columns(store._conn) == columns_before
            assert [s.model_dump() for s in store.list_sessions()] == rows_before
            assert get_schema_version(store._conn) == SCHEMA_VERSION

    def test_failed_step_raises_and_keeps_version(self, tmp_path: Path, monkeypatch):
        def broken_step(conn: sqlite3.Connection) -> None:
            conn.execute("ALTER TABLE sessions ADD COLUMN half_done INTEGER")
            conn.execute("ALTER TABLE no_such_table ADD COLUMN x INTEGER")

        db_path = tmp_path / "timber.db"
        Store.open(db_path).close()

        monkeypatch.setattr(
            schema, "MIGRATIONS", schema.MIGRATIONS + [(SCHEMA_VERSION + 1, broken_step)]
        )
        with pytest.raises(MigrationError):
            Store.open(db_path)

        conn = sqlite3.connect(db_path)
        assert get_schema_version(conn) == SCHEMA_VERSION
        assert "half_done" not in session_columns(conn)
        conn.close()

    def test_migration_error_is_storage_error(self):
        from timber.errors import StorageError

        assert issubclass(MigrationError, StorageError)
        assert MigrationError.category == "migration"


def add_v1_session(path: Path, start: str, end: str | None) -> None:
    conn = sqlite3.connect(path)
    conn.execute(
        "INSERT INTO sessions (client_id, start_timestamp, end_timestamp) VALUES (1, ?, ?)",
        (start, end),
    )
    conn.commit()
    conn.close()


class TestLegacyTimestamps:
    """Tests for rewriting RFC 3339 rows into the stored format."""

    def test_offset_and_fraction_rows_are_normalized(self, tmp_path: Path):
        db_path = tmp_path / "old.db"
        make_v1_store(db_path)
        add_v1_session(db_path, "2025-01-27T10:30:00.250+00:00", "2025-01-27T11:45:10.900+00:00")
        add_v1_session(db_path, "2025-01-28T01:00:00+01:00", None)

        with Store.open(db_path) as store:
            assert store.get_session(3).start_timestamp == "2025-01-27T10:30:00Z"
            assert store.get_session(3).end_timestamp == "2025-01-27T11:45:10Z"
            assert store.get_session(4).start_timestamp == "2025-01-28T00:00:00Z"
            assert store.get_session(4).end_timestamp is None
            # Rows already in the stored format are untouched
            assert store.get_session(1).start_timestamp == "2025-01-25T09:00:00Z"
            assert store.get_session(1).end_timestamp == "2025-01-25T10:00:00Z"

    def test_first_second_of_window_is_counted(self, tmp_path: Path):
        """A legacy row starting at midnight sorted before the window's `Z` bound."""
        db_path = tmp_path / "old.db"
        make_v1_store(db_path)
        add_v1_session(db_path, "2025-01-27T00:00:00.250+00:00", "2025-01-27T01:00:00.250+00:00")

        with Store.open(db_path) as store:
            summary = summarize(store, *day_range(datetime(2025, 1, 27, tzinfo=timezone.utc)))
        assert summary.total_minutes == 60

    def test_malformed_timestamp_fails_migration(self, tmp_path: Path):
        db_path = tmp_path / "old.db"
        make_v1_store(db_path)
        add_v1_session(db_path, "yesterday", None)

        with pytest.raises(MigrationError):
            Store.open(db_path)

        conn = sqlite3.connect(db_path)
        assert get_schema_version(conn) == 2
        assert conn.execute(
            "SELECT start_timestamp FROM sessions WHERE id = 3"
        ).fetchone()[0] == "yesterday"
        conn.close()
