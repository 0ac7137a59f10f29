"""
Error taxonomy for ledger operations.

Every engine operation runs in one transaction; any of these errors aborts it
and the caller sees the ledger exactly as it was before the call.

- ValidationError: malformed or missing input, caller can fix and resubmit
- ConflictError: input is fine but current state forbids the operation
- NotFoundError: a referenced row does not exist
- NegativeStockError / InsufficientStockError: stock would drop below zero
- PermissionDeniedError: admin-gated operation called by a non-admin
"""

from __future__ import annotations


class LedgerError(Exception):
    """Base class for all ledger errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(LedgerError, ValueError):
    """Input problem (400-level)."""


class ConflictError(LedgerError, ValueError):
    """Business rule conflict with current state (409-level)."""


class NotFoundError(LedgerError, LookupError):
    """Referenced entity is missing."""


class PermissionDeniedError(LedgerError):
    """Actor lacks the role required for this operation."""


class SessionAlreadyOpenError(ConflictError):
    """A cash register session is already open."""


class NoOpenSessionError(ConflictError):
    """The operation needs an open cash register session."""


class InvalidStateError(ConflictError):
    """Document is not in a state that allows the operation."""


class DuplicateSerialError(ValidationError, ConflictError):
    """Serial number repeated in the request or already registered."""


class AppendOnlyViolationError(LedgerError):
    """Attempt to update or delete an append-only audit row."""


class NegativeStockError(LedgerError):
    """Stock for an item would go below zero."""

    def __init__(
        self,
        message: str,
        *,
        item_id: int | None = None,
        item_name: str | None = None,
        required: int | None = None,
        available: int | None = None,
        details: dict | None = None,
    ):
        merged = {
            "item_id": item_id,
            "item_name": item_name,
            "required": required,
            "available": available,
        }
        merged.update(details or {})
        super().__init__(message, merged)
        self.item_id = item_id
        self.item_name = item_name
        self.required = required
        self.available = available


class InsufficientStockError(NegativeStockError):
    """Business-rule stock check failed before any mutation."""
