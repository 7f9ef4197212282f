"""Shared exceptions for note store, sync, and roster operations."""


class NoteSyncError(Exception):
    """Base class for all errors raised by the notes core."""

    def __init__(self, message: str) -> None:
        super().__init__(message)


class NoteNotFoundError(NoteSyncError):
    """Raised when a note is absent at read or write time."""

    def __init__(self, note_id: str) -> None:
        self.note_id = note_id
        super().__init__(f"Note not found: {note_id}")


class AccessDeniedError(NoteSyncError):
    """
    Raised when the resolved access level is insufficient for an operation.

    Covers both "no access at all" and "read access but attempted a write".
    """

    def __init__(self, operation: str, note_id: str | None = None) -> None:
        self.operation = operation
        self.note_id = note_id
        target = f" on note {note_id}" if note_id else ""
        super().__init__(f"Access denied: cannot {operation}{target}")


class TransientIOError(NoteSyncError):
    """
    Raised when a store read, write, or subscription fails for a reason other
    than a missing document or denied access (connection loss, lock timeout, etc).
    """

    def __init__(self, operation: str, detail: str = "") -> None:
        self.operation = operation
        suffix = f": {detail}" if detail else ""
        super().__init__(f"Store {operation} failed{suffix}")


class UnauthenticatedError(NoteSyncError):
    """Raised when an operation requires a signed-in identity and none is available."""

    def __init__(self, message: str = "Must be signed in") -> None:
        super().__init__(message)


class InvalidStateError(NoteSyncError):
    """
    Raised when an operation is invalid for an object's current state.

    Used by subscriptions and sync engines, e.g. starting a subscription twice
    or subscribing an engine that was already used.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message)
