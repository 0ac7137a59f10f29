"""
ORM-level append-only enforcement for audit tables.

ItemLog, MoneyTransaction and CashRegisterSessionAudit rows are written once
and never changed. Listeners fire before the SQL is emitted, so a violating
flush raises and the surrounding transaction rolls back.
"""

from __future__ import annotations

from sqlalchemy import event

from ..errors import AppendOnlyViolationError
from .inventory import ItemLog
from .money import MoneyTransaction
from .registers import CashRegisterSessionAudit

APPEND_ONLY_MODELS = (ItemLog, MoneyTransaction, CashRegisterSessionAudit)


def _reject_update(mapper, connection, target):
    raise AppendOnlyViolationError(
        f"{type(target).__name__} rows are append-only and cannot be updated",
        details={"id": target.id},
    )


def _reject_delete(mapper, connection, target):
    raise AppendOnlyViolationError(
        f"{type(target).__name__} rows are append-only and cannot be deleted",
        details={"id": target.id},
    )


def register_append_only_guards() -> None:
    """Install listeners once per process; safe to call from every create_app()."""
    for model in APPEND_ONLY_MODELS:
        if not event.contains(model, "before_update", _reject_update):
            event.listen(model, "before_update", _reject_update)
        if not event.contains(model, "before_delete", _reject_delete):
            event.listen(model, "before_delete", _reject_delete)
