"""Domain errors raised by the access-session coordinator."""

from typing import Optional


class CoordinatorError(Exception):
    """Base exception for coordinator errors."""

    status_code: int = 500

    def __init__(self, message: str, detail: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail


class ValidationError(CoordinatorError):
    """Input rejected before anything was persisted (bad duration, missing field)."""

    status_code = 422


class NotFoundError(CoordinatorError):
    """Unknown request or device id on a mutating call."""

    status_code = 404


class ConflictError(CoordinatorError):
    """The target record is no longer in a state that allows the operation.

    ``current_status`` carries the status the caller should re-fetch and show.
    """

    status_code = 409

    def __init__(self, message: str, current_status: Optional[str] = None):
        super().__init__(message, detail=f"Current status: {current_status}" if current_status else None)
        self.current_status = current_status


class StoreUnavailable(CoordinatorError):
    """The durable store failed or timed out."""

    status_code = 503


class StoreConflict(Exception):
    """A versioned commit found a key changed since it was read."""

    def __init__(self, key: str, expected: int, actual: int):
        super().__init__(f"Version conflict on '{key}': expected {expected}, found {actual}")
        self.key = key
        self.expected = expected
        self.actual = actual
