"""Exception hierarchy for the lending core."""


class LendingError(Exception):
    """Base exception for all lending errors."""


class ValidationError(LendingError, ValueError):
    """Raised when an input is malformed or out of range."""


class InvalidStateError(LendingError):
    """Raised when a loan is in the wrong state for the operation."""


class ConcurrentModificationError(InvalidStateError):
    """Raised when a loan was saved by another writer since it was read."""


class NotFoundError(LendingError):
    """Raised when a referenced loan does not exist."""
