"""Typed exceptions raised by the commission ledger.

Every failure a caller may want to react to has its own class carrying the
structured data needed to report it, so callers catch by type instead of
parsing messages.

    LedgerError
    +-- ValidationError         malformed entry input (has ``field``)
    +-- InvalidStateTransition  operation forbidden in the period's state
    +-- NotFoundError           unknown entry, period, or seller
    +-- PersistenceError        workbook read/write failure
"""

from __future__ import annotations

from typing import Optional


class LedgerError(Exception):
    """Base class for every ledger failure."""


class ValidationError(LedgerError):
    """Raised when entry input violates a field constraint."""

    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}")


class InvalidStateTransition(LedgerError):
    """Raised when a period's status forbids the requested operation."""

    def __init__(self, message: str, *, status: Optional[str] = None):
        self.status = status
        super().__init__(message)


class NotFoundError(LedgerError):
    """Raised when a referenced entry, period, or seller does not exist."""

    def __init__(self, kind: str, key: str):
        self.kind = kind
        self.key = key
        super().__init__(f"Unknown {kind}: {key}")


class PersistenceError(LedgerError):
    """Raised when the backing workbook rejects a read or write."""


__all__ = [
    "LedgerError",
    "ValidationError",
    "InvalidStateTransition",
    "NotFoundError",
    "PersistenceError",
]
