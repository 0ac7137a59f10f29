from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow

SESSION_OPEN = "open"
SESSION_CLOSED = "closed"

ACCESS_PENDING = "pending"
ACCESS_APPROVED = "approved"
ACCESS_DENIED = "denied"
ACCESS_USED = "used"


class CashRegisterSession(db.Model):
    """
    Cash drawer session (shift).

    WHY: Cashier accountability. Running totals accumulate while the session
    is open and are reconciled against a physical count at close.

    LIFECYCLE:
    - open: sales and debt payments accumulate into cash_sales/debt_repaid
    - closed: actual_cash recorded; further changes only via audited amendment

    INVARIANTS:
    - expected_cash_cents == opening_balance_cents + cash_sales_cents + debt_repaid_cents
    - at most one row with status='open' (partial unique index)
    """
    __tablename__ = "cash_register_sessions"
    __table_args__ = (
        db.Index(
            "uq_cash_register_sessions_single_open",
            "status",
            unique=True,
            sqlite_where=db.text("status = 'open'"),
            postgresql_where=db.text("status = 'open'"),
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    opened_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    closed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    status = db.Column(db.String(16), nullable=False, default=SESSION_OPEN)

    # Cash tracking (all amounts in cents)
    opening_balance_cents = db.Column(db.Integer, nullable=False, default=0)
    cash_sales_cents = db.Column(db.Integer, nullable=False, default=0)
    debt_repaid_cents = db.Column(db.Integer, nullable=False, default=0)
    expected_cash_cents = db.Column(db.Integer, nullable=False, default=0)
    actual_cash_cents = db.Column(db.Integer, nullable=True)  # Set when closing

    opened_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    opened_by = db.relationship("User", foreign_keys=[opened_by_user_id])
    closed_by = db.relationship("User", foreign_keys=[closed_by_user_id])
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_open(self) -> bool:
        return self.status == SESSION_OPEN

    @property
    def variance_cents(self) -> int | None:
        if self.actual_cash_cents is None:
            return None
        return self.actual_cash_cents - self.expected_cash_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "opened_by_user_id": self.opened_by_user_id,
            "closed_by_user_id": self.closed_by_user_id,
            "status": self.status,
            "opening_balance_cents": self.opening_balance_cents,
            "cash_sales_cents": self.cash_sales_cents,
            "debt_repaid_cents": self.debt_repaid_cents,
            "expected_cash_cents": self.expected_cash_cents,
            "actual_cash_cents": self.actual_cash_cents,
            "variance_cents": self.variance_cents,
            "opened_at": to_utc_z(self.opened_at),
            "closed_at": to_utc_z(self.closed_at) if self.closed_at else None,
            "version_id": self.version_id,
        }


class CashRegisterSessionAccessRequest(db.Model):
    """
    Non-admin request to change a closed session (amend totals or process returns).

    LIFECYCLE: pending -> approved|denied; approved -> used after an amendment.
    """
    __tablename__ = "cash_register_session_access_requests"
    __table_args__ = (
        db.Index("ix_session_access_session_user", "cash_register_session_id", "user_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    cash_register_session_id = db.Column(
        db.Integer, db.ForeignKey("cash_register_sessions.id"), nullable=False
    )
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    reason = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(16), nullable=False, default=ACCESS_PENDING)

    approved_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    used_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    session = db.relationship("CashRegisterSession", backref=db.backref("access_requests", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "cash_register_session_id": self.cash_register_session_id,
            "user_id": self.user_id,
            "reason": self.reason,
            "status": self.status,
            "approved_by_user_id": self.approved_by_user_id,
            "approved_at": to_utc_z(self.approved_at) if self.approved_at else None,
            "used_at": to_utc_z(self.used_at) if self.used_at else None,
            "created_at": to_utc_z(self.created_at),
        }


class CashRegisterSessionAudit(db.Model):
    """
    Immutable record of a retroactive change to a closed session.

    old_values/new_values hold the four editable totals plus expected cash.
    """
    __tablename__ = "cash_register_session_audits"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    cash_register_session_id = db.Column(
        db.Integer, db.ForeignKey("cash_register_sessions.id"), nullable=False, index=True
    )
    changed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    approved_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    old_values = db.Column(db.JSON, nullable=False)
    new_values = db.Column(db.JSON, nullable=False)
    reason = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    session = db.relationship("CashRegisterSession", backref=db.backref("audits", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "cash_register_session_id": self.cash_register_session_id,
            "changed_by_user_id": self.changed_by_user_id,
            "approved_by_user_id": self.approved_by_user_id,
            "old_values": self.old_values,
            "new_values": self.new_values,
            "reason": self.reason,
            "created_at": to_utc_z(self.created_at),
        }
