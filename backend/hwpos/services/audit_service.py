# Overview: Audit trail writer; appends ItemLog and MoneyTransaction rows next to each ledger mutation.

from __future__ import annotations

from sqlalchemy import case, func

from ..errors import ValidationError
from ..extensions import db
from ..models import ItemLog, MoneyTransaction
from ..models.inventory import ITEM_LOG_TYPES
from ..models.money import (
    DIRECTION_IN,
    DIRECTION_OUT,
    SOURCE_BANK_ACCOUNT,
    SOURCE_CASH_REGISTER,
)
from ..references import EntityRef
from .costing import StockMovement

"""
Audit trail invariants

- Append-only: rows are inserted, never updated or deleted (ORM guards in
  models/guards.py).
- Written in the same transaction as the ledger mutation they describe. A
  mutation without its log is a defect.
- The writer has no domain logic; it records what the engine tells it.
"""


def log_item_change(
    *,
    item_id: int,
    type: str,
    quantity_change: int,
    old_stock: int,
    new_stock: int,
    description: str | None = None,
    user_id: int | None = None,
    reference: EntityRef | None = None,
) -> ItemLog:
    if type not in ITEM_LOG_TYPES:
        raise ValidationError(f"Unknown item log type: {type}")

    log = ItemLog(
        item_id=item_id,
        type=type,
        quantity_change=quantity_change,
        old_stock=old_stock,
        new_stock=new_stock,
        description=description,
        user_id=user_id,
        reference_type=reference.kind.value if reference else None,
        reference_id=reference.id if reference else None,
    )
    db.session.add(log)
    db.session.flush()
    return log


def log_stock_movement(
    movement: StockMovement,
    *,
    user_id: int | None,
    reference: EntityRef | None,
) -> ItemLog:
    """Write a StockMovement produced by the costing planners."""
    return log_item_change(
        item_id=movement.item_id,
        type=movement.log_type,
        quantity_change=movement.quantity_change,
        old_stock=movement.old_stock,
        new_stock=movement.new_stock,
        description=movement.description,
        user_id=user_id,
        reference=reference,
    )


def log_money_transaction(
    *,
    direction: str,
    amount_cents: int,
    source_type: str,
    source_id: int,
    category: str,
    user_id: int | None = None,
    description: str | None = None,
    session_id: int | None = None,
    reference: EntityRef | None = None,
) -> MoneyTransaction:
    if direction not in (DIRECTION_IN, DIRECTION_OUT):
        raise ValidationError(f"Unknown money direction: {direction}")
    if source_type not in (SOURCE_CASH_REGISTER, SOURCE_BANK_ACCOUNT):
        raise ValidationError(f"Unknown money source: {source_type}")
    if amount_cents <= 0:
        raise ValidationError("Money transaction amount must be > 0")

    tx = MoneyTransaction(
        type=direction,
        amount_cents=amount_cents,
        source_type=source_type,
        source_id=source_id,
        cash_register_session_id=session_id,
        category=category,
        description=description,
        user_id=user_id,
        reference_type=reference.kind.value if reference else None,
        reference_id=reference.id if reference else None,
    )
    db.session.add(tx)
    db.session.flush()
    return tx


def log_cash_in(session_id: int, amount_cents: int, category: str, **kwargs) -> MoneyTransaction:
    return log_money_transaction(
        direction=DIRECTION_IN,
        amount_cents=amount_cents,
        source_type=SOURCE_CASH_REGISTER,
        source_id=session_id,
        session_id=session_id,
        category=category,
        **kwargs,
    )


def log_cash_out(session_id: int, amount_cents: int, category: str, **kwargs) -> MoneyTransaction:
    return log_money_transaction(
        direction=DIRECTION_OUT,
        amount_cents=amount_cents,
        source_type=SOURCE_CASH_REGISTER,
        source_id=session_id,
        session_id=session_id,
        category=category,
        **kwargs,
    )


def log_bank_in(bank_account_id: int, amount_cents: int, category: str, **kwargs) -> MoneyTransaction:
    return log_money_transaction(
        direction=DIRECTION_IN,
        amount_cents=amount_cents,
        source_type=SOURCE_BANK_ACCOUNT,
        source_id=bank_account_id,
        category=category,
        **kwargs,
    )


def log_bank_out(bank_account_id: int, amount_cents: int, category: str, **kwargs) -> MoneyTransaction:
    return log_money_transaction(
        direction=DIRECTION_OUT,
        amount_cents=amount_cents,
        source_type=SOURCE_BANK_ACCOUNT,
        source_id=bank_account_id,
        category=category,
        **kwargs,
    )


# =============================================================================
# READ HELPERS
# =============================================================================

def item_history(item_id: int, limit: int | None = None) -> list[ItemLog]:
    """Stock movements for an item, newest first."""
    query = db.session.query(ItemLog).filter_by(item_id=item_id).order_by(ItemLog.id.desc())
    if limit:
        query = query.limit(limit)
    return query.all()


def logs_for_reference(reference: EntityRef) -> list[ItemLog]:
    return (
        db.session.query(ItemLog)
        .filter_by(reference_type=reference.kind.value, reference_id=reference.id)
        .order_by(ItemLog.id)
        .all()
    )


def session_transactions(session_id: int) -> list[MoneyTransaction]:
    """Every money movement tagged with a session, cash or bank."""
    return (
        db.session.query(MoneyTransaction)
        .filter_by(cash_register_session_id=session_id)
        .order_by(MoneyTransaction.id)
        .all()
    )


def _signed_sum(query) -> int:
    signed = case(
        (MoneyTransaction.type == DIRECTION_IN, MoneyTransaction.amount_cents),
        else_=-MoneyTransaction.amount_cents,
    )
    return int(query.with_entities(func.coalesce(func.sum(signed), 0)).scalar() or 0)


def bank_account_balance(bank_account_id: int) -> int:
    query = db.session.query(MoneyTransaction).filter_by(
        source_type=SOURCE_BANK_ACCOUNT, source_id=bank_account_id
    )
    return _signed_sum(query)


def bank_account_statement(bank_account_id: int) -> list[MoneyTransaction]:
    return (
        db.session.query(MoneyTransaction)
        .filter_by(source_type=SOURCE_BANK_ACCOUNT, source_id=bank_account_id)
        .order_by(MoneyTransaction.id)
        .all()
    )


def cash_drawer_net(session_id: int) -> int:
    """Net cash movement logged against a drawer session."""
    query = db.session.query(MoneyTransaction).filter_by(
        source_type=SOURCE_CASH_REGISTER, source_id=session_id
    )
    return _signed_sum(query)
