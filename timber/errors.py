"""Exceptions raised by the Timber core."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from timber.models import Session


class TimberError(Exception):
    """Base exception for Timber errors.

    The ``category`` attribute is stable and lets the command layer pick a
    message without inspecting the exception type.
    """

    category = "error"


class ClientNotFoundError(TimberError):
    """Raised when a client id or name does not match any row."""

    category = "not_found"

    def __init__(self, client: int | str) -> None:
        super().__init__(f"Client {client!r} could not be found")
        self.client = client


class SessionNotFoundError(TimberError):
    """Raised when a session id does not match any row."""

    category = "not_found"

    def __init__(self, session_id: int) -> None:
        super().__init__(f"Session {session_id} could not be found")
        self.session_id = session_id


class ClientInUseError(TimberError):
    """Raised when removing a client that sessions still reference."""

    category = "referenced"

    def __init__(self, client_id: int, session_count: int) -> None:
        super().__init__(
            f"Cannot remove client {client_id}: referenced by {session_count} session(s)"
        )
        self.client_id = client_id
        self.session_count = session_count


class AlreadyActiveError(TimberError):
    """Raised when starting a session while another one is open."""

    category = "already_active"

    def __init__(self, session: Session) -> None:
        super().__init__(f"Session {session.id} is already active")
        self.session = session


class NoActiveSessionError(TimberError):
    """Raised when an operation needs an open session and there is none."""

    category = "no_active_session"

    def __init__(self) -> None:
        super().__init__("No active session")


class StorageError(TimberError):
    """Raised when the database fails underneath a core operation."""

    category = "storage"


class MigrationError(StorageError):
    """Raised when a schema migration cannot be applied."""

    category = "migration"


class ConfigError(TimberError):
    """Raised when the configuration file cannot be read or validated."""

    category = "config"
