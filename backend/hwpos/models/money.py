from __future__ import annotations

from ..extensions import db
from ..references import EntityRef
from ..time_utils import to_utc_z, utcnow

DIRECTION_IN = "in"
DIRECTION_OUT = "out"

SOURCE_CASH_REGISTER = "cash_register"
SOURCE_BANK_ACCOUNT = "bank_account"

# MoneyTransaction categories
CATEGORY_SALE = "sale"
CATEGORY_REFUND = "refund"
CATEGORY_EXPENSE = "expense"
CATEGORY_INCOME = "income"
CATEGORY_DEPOSIT = "deposit"
CATEGORY_DEBT_PAYMENT = "debt_payment"
CATEGORY_OPENING_BALANCE = "opening_balance"

ENTRY_INCOME = "income"
ENTRY_EXPENSE = "expense"

POS_INCOME_CATEGORY = "POS Sales"


class BankAccount(db.Model):
    """Bank account whose ledger is the sum of its MoneyTransactions."""
    __tablename__ = "bank_accounts"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    bank_name = db.Column(db.String(128), nullable=False)
    account_name = db.Column(db.String(128), nullable=False)
    account_number = db.Column(db.String(64), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "bank_name": self.bank_name,
            "account_name": self.account_name,
            "account_number": self.account_number,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }


class MoneyTransaction(db.Model):
    """
    Append-only money movement for a cash drawer or a bank account.

    source_type/source_id name the ledger (cash_register -> session id,
    bank_account -> account id). Bank movements made during a shift are also
    tagged with cash_register_session_id for the shift summary.

    IMMUTABLE: insert only.
    """
    __tablename__ = "money_transactions"
    __table_args__ = (
        db.Index("ix_money_tx_source", "source_type", "source_id"),
        db.Index("ix_money_tx_reference", "reference_type", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    type = db.Column(db.String(8), nullable=False)  # in, out
    amount_cents = db.Column(db.Integer, nullable=False)
    source_type = db.Column(db.String(32), nullable=False)
    source_id = db.Column(db.Integer, nullable=False)
    cash_register_session_id = db.Column(
        db.Integer, db.ForeignKey("cash_register_sessions.id"), nullable=True, index=True
    )
    category = db.Column(db.String(32), nullable=False, index=True)
    description = db.Column(db.Text, nullable=True)

    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.Integer, nullable=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    @property
    def reference(self) -> EntityRef | None:
        return EntityRef.from_columns(self.reference_type, self.reference_id)

    @property
    def signed_amount_cents(self) -> int:
        return self.amount_cents if self.type == DIRECTION_IN else -self.amount_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "amount_cents": self.amount_cents,
            "source_type": self.source_type,
            "source_id": self.source_id,
            "cash_register_session_id": self.cash_register_session_id,
            "category": self.category,
            "description": self.description,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
        }


class IncomeExpense(db.Model):
    """
    Book-keeping entry for income or expenses outside the sale flow.

    System-generated rows (the per-session "POS Sales" income written at
    close) cannot be edited or deleted.
    """
    __tablename__ = "income_expenses"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    type = db.Column(db.String(16), nullable=False, index=True)  # income, expense
    category = db.Column(db.String(64), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    description = db.Column(db.Text, nullable=True)
    transaction_date = db.Column(db.Date, nullable=False)

    source = db.Column(db.String(32), nullable=True)  # cash_register, bank_account
    bank_account_id = db.Column(db.Integer, db.ForeignKey("bank_accounts.id"), nullable=True)
    cash_register_session_id = db.Column(
        db.Integer, db.ForeignKey("cash_register_sessions.id"), nullable=True, index=True
    )
    is_system_generated = db.Column(db.Boolean, nullable=False, default=False)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "category": self.category,
            "amount_cents": self.amount_cents,
            "description": self.description,
            "transaction_date": self.transaction_date.isoformat() if self.transaction_date else None,
            "source": self.source,
            "bank_account_id": self.bank_account_id,
            "cash_register_session_id": self.cash_register_session_id,
            "is_system_generated": self.is_system_generated,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
        }
