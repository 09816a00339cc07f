"""Central error types used across the application."""

from __future__ import annotations


class StreetSweeperError(RuntimeError):
    """Base error for the tracking core."""


class InvalidTransition(StreetSweeperError):
    """Raised when a session method is called from a state that forbids it."""

    def __init__(self, action: str, state: object) -> None:
        self.action = action
        self.state = state
        label = getattr(state, "value", state)
        super().__init__(f"Cannot {action} a tracking session while {label}")


class PersistenceFailure(StreetSweeperError):
    """Raised when the storage collaborator fails to write or read a record.

    ``status`` and ``code`` carry the HTTP status and the PostgREST/Postgres
    error code when the store reported them.
    """

    def __init__(
        self, message: str, *, status: int | None = None, code: str | None = None
    ) -> None:
        super().__init__(message)
        self.status = status
        self.code = code


class StoragePermissionError(PersistenceFailure):
    """Raised when the store rejects the credentials or row-level policy."""


class StorageNotFoundError(PersistenceFailure):
    """Raised when a table or record does not exist."""


__all__ = [
    "StreetSweeperError",
    "InvalidTransition",
    "PersistenceFailure",
    "StoragePermissionError",
    "StorageNotFoundError",
]
