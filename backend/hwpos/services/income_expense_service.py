# Overview: Manual income/expense book-keeping against the drawer or a bank account.

"""
Income and expense entries outside the sale flow (rent, supplies, deposits).

- source cash_register: needs the open session; logs a cash in/out on it
- source bank_account: logs a bank in/out on the account
- no source: book-keeping only, no money movement
- system-generated entries (per-session "POS Sales") are read-only
"""

from __future__ import annotations

from datetime import date

from flask import current_app

from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import IncomeExpense
from ..models.money import (
    CATEGORY_EXPENSE,
    CATEGORY_INCOME,
    ENTRY_EXPENSE,
    ENTRY_INCOME,
    SOURCE_BANK_ACCOUNT,
    SOURCE_CASH_REGISTER,
)
from ..references import EntityRef
from . import audit_service
from .bank_service import get_bank_account
from .concurrency import atomic
from .register_service import require_open_session
from .user_service import Actor


def record_income_expense(
    actor: Actor,
    type: str,
    category: str,
    amount_cents: int,
    *,
    source: str | None = None,
    bank_account_id: int | None = None,
    transaction_date: date | None = None,
    description: str | None = None,
) -> IncomeExpense:
    """
    Raises:
        ValidationError: bad type/source/amount or missing category/bank account
        NoOpenSessionError: cash source with no open drawer
        NotFoundError: unknown bank account
    """
    if type not in (ENTRY_INCOME, ENTRY_EXPENSE):
        raise ValidationError("type must be income or expense")
    category = (category or "").strip()
    if not category:
        raise ValidationError("category is required")
    if amount_cents is None or amount_cents <= 0:
        raise ValidationError("amount_cents must be > 0")
    if source not in (None, SOURCE_CASH_REGISTER, SOURCE_BANK_ACCOUNT):
        raise ValidationError("source must be cash_register or bank_account")
    if source == SOURCE_BANK_ACCOUNT and not bank_account_id:
        raise ValidationError("A bank account is required for bank entries")

    with atomic():
        entry = IncomeExpense(
            type=type,
            category=category,
            amount_cents=amount_cents,
            description=description,
            transaction_date=transaction_date or date.today(),
            source=source,
            user_id=actor.user_id,
            is_system_generated=False,
        )

        session = None
        account = None
        if source == SOURCE_CASH_REGISTER:
            session = require_open_session()
            entry.cash_register_session_id = session.id
        elif source == SOURCE_BANK_ACCOUNT:
            account = get_bank_account(bank_account_id)
            entry.bank_account_id = account.id

        db.session.add(entry)
        db.session.flush()

        money_category = CATEGORY_INCOME if type == ENTRY_INCOME else CATEGORY_EXPENSE
        log_kwargs = dict(
            user_id=actor.user_id,
            description=f"{category}: {description}" if description else category,
            reference=EntityRef.of(entry),
        )
        if session is not None:
            writer = audit_service.log_cash_in if type == ENTRY_INCOME else audit_service.log_cash_out
            writer(session.id, amount_cents, money_category, **log_kwargs)
        elif account is not None:
            writer = audit_service.log_bank_in if type == ENTRY_INCOME else audit_service.log_bank_out
            writer(account.id, amount_cents, money_category, **log_kwargs)

    current_app.logger.info("%s %s recorded (%s cents)", type.capitalize(), entry.id, amount_cents)
    return entry


def _get_editable(entry_id: int) -> IncomeExpense:
    entry = db.session.get(IncomeExpense, entry_id)
    if not entry:
        raise NotFoundError(f"Income/expense entry {entry_id} not found")
    if entry.is_system_generated:
        raise ConflictError("System-generated entries cannot be changed")
    return entry


def update_income_expense(entry_id: int, *, category: str | None = None, description: str | None = None) -> IncomeExpense:
    """Only labels are editable; amounts already moved money."""
    entry = _get_editable(entry_id)
    if category is not None and not category.strip():
        raise ValidationError("category cannot be blank")
    with atomic():
        if category is not None:
            entry.category = category.strip()
        if description is not None:
            entry.description = description
    return entry


def delete_income_expense(entry_id: int) -> None:
    """Removes the entry; any MoneyTransaction it produced stays in the ledger."""
    entry = _get_editable(entry_id)
    with atomic():
        db.session.delete(entry)


def list_income_expenses(type: str | None = None) -> list[IncomeExpense]:
    query = db.session.query(IncomeExpense)
    if type:
        query = query.filter_by(type=type)
    return query.order_by(IncomeExpense.transaction_date.desc(), IncomeExpense.id.desc()).all()
