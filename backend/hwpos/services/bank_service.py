# Overview: Bank accounts and their ledgers (balance/statement derived from MoneyTransactions).

from __future__ import annotations

from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import BankAccount, MoneyTransaction
from ..models.money import SOURCE_BANK_ACCOUNT
from . import audit_service
from .concurrency import atomic


def get_bank_account(bank_account_id: int) -> BankAccount:
    account = db.session.get(BankAccount, bank_account_id)
    if not account:
        raise NotFoundError(
            f"Bank account {bank_account_id} not found",
            details={"bank_account_id": bank_account_id},
        )
    return account


def list_bank_accounts() -> list[BankAccount]:
    return db.session.query(BankAccount).order_by(BankAccount.bank_name, BankAccount.account_name).all()


def create_bank_account(
    bank_name: str,
    account_name: str,
    account_number: str | None = None,
    notes: str | None = None,
) -> BankAccount:
    bank_name = (bank_name or "").strip()
    account_name = (account_name or "").strip()
    if not bank_name or not account_name:
        raise ValidationError("bank_name and account_name are required")

    account = BankAccount(
        bank_name=bank_name,
        account_name=account_name,
        account_number=(account_number or "").strip() or None,
        notes=notes,
    )
    with atomic():
        db.session.add(account)
    return account


def update_bank_account(bank_account_id: int, **fields) -> BankAccount:
    account = get_bank_account(bank_account_id)
    for key in ("bank_name", "account_name"):
        if key in fields and not (fields[key] or "").strip():
            raise ValidationError(f"{key} cannot be blank")
    with atomic():
        for key in ("bank_name", "account_name"):
            if key in fields:
                setattr(account, key, fields[key].strip())
        if "account_number" in fields:
            account.account_number = (fields["account_number"] or "").strip() or None
        if "notes" in fields:
            account.notes = fields["notes"]
    return account


def delete_bank_account(bank_account_id: int) -> None:
    """Accounts with ledger history stay; the history would dangle otherwise."""
    account = get_bank_account(bank_account_id)
    has_history = db.session.query(MoneyTransaction.id).filter_by(
        source_type=SOURCE_BANK_ACCOUNT, source_id=account.id
    ).first()
    if has_history:
        raise ConflictError("Bank account has transactions and cannot be deleted")
    with atomic():
        db.session.delete(account)


def get_balance(bank_account_id: int) -> int:
    get_bank_account(bank_account_id)
    return audit_service.bank_account_balance(bank_account_id)


def get_statement(bank_account_id: int) -> list[MoneyTransaction]:
    get_bank_account(bank_account_id)
    return audit_service.bank_account_statement(bank_account_id)
