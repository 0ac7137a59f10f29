from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow

PAYMENT_CASH = "cash"
PAYMENT_BANK = "bank"
PAYMENT_CREDIT = "credit"
PAYMENT_METHODS = (PAYMENT_CASH, PAYMENT_BANK, PAYMENT_CREDIT)

SALE_COMPLETED = "completed"
SALE_REFUNDED = "refunded"
SALE_VOIDED = "voided"

REFUND_SOURCE_CASH = "cash"
REFUND_SOURCE_BANK = "bank"
REFUND_SOURCE_CREDIT = "credit"


class Sale(db.Model):
    """
    Completed POS sale, or a refund child of one.

    WHY: A sale is written once with its SaleItems inside the same
    transaction that moves stock and money. Afterwards only status and the
    refund fields change.

    RETURNS: a refund is its own Sale row with parent_sale_id set, negative
    totals and status 'refunded'. The parent flips to 'refunded' once every
    unit has come back.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.Index("ix_sales_session_created", "cash_register_session_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    cash_register_session_id = db.Column(
        db.Integer, db.ForeignKey("cash_register_sessions.id"), nullable=False
    )
    bank_account_id = db.Column(db.Integer, db.ForeignKey("bank_accounts.id"), nullable=True)

    payment_method = db.Column(db.String(16), nullable=False)
    subtotal_cents = db.Column(db.Integer, nullable=False)
    total_cents = db.Column(db.Integer, nullable=False)
    amount_paid_cents = db.Column(db.Integer, nullable=False)
    change_given_cents = db.Column(db.Integer, nullable=False, default=0)
    status = db.Column(db.String(16), nullable=False, default=SALE_COMPLETED, index=True)
    notes = db.Column(db.Text, nullable=True)

    parent_sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)
    refund_source = db.Column(db.String(16), nullable=True)
    refund_bank_account_id = db.Column(db.Integer, db.ForeignKey("bank_accounts.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    customer = db.relationship("Customer", backref=db.backref("sales", lazy=True))
    session = db.relationship("CashRegisterSession", backref=db.backref("sales", lazy=True))
    items = db.relationship("SaleItem", backref="sale", lazy=True, order_by="SaleItem.id")
    parent = db.relationship("Sale", remote_side=[id], backref=db.backref("refunds", lazy=True))

    @property
    def is_refund(self) -> bool:
        return self.parent_sale_id is not None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "user_id": self.user_id,
            "cash_register_session_id": self.cash_register_session_id,
            "bank_account_id": self.bank_account_id,
            "payment_method": self.payment_method,
            "subtotal_cents": self.subtotal_cents,
            "total_cents": self.total_cents,
            "amount_paid_cents": self.amount_paid_cents,
            "change_given_cents": self.change_given_cents,
            "status": self.status,
            "notes": self.notes,
            "parent_sale_id": self.parent_sale_id,
            "refund_source": self.refund_source,
            "refund_bank_account_id": self.refund_bank_account_id,
            "items": [i.to_dict() for i in self.items],
            "created_at": to_utc_z(self.created_at),
        }


class SaleItem(db.Model):
    """One sale line. Refund lines carry a negative quantity and point at the sold line."""
    __tablename__ = "sale_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False, index=True)
    returned_from_sale_item_id = db.Column(db.Integer, db.ForeignKey("sale_items.id"), nullable=True, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    price_cents = db.Column(db.Integer, nullable=False)
    subtotal_cents = db.Column(db.Integer, nullable=False)

    item = db.relationship("Item")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "item_id": self.item_id,
            "returned_from_sale_item_id": self.returned_from_sale_item_id,
            "quantity": self.quantity,
            "price_cents": self.price_cents,
            "subtotal_cents": self.subtotal_cents,
        }


class Warranty(db.Model):
    """
    One warranty per unit sold of an item with warranty terms.

    serial_number is optional; when present it is unique per item.
    expires_at = sold_at + warranty_months (clamped to month end).
    """
    __tablename__ = "warranties"
    __table_args__ = (
        db.UniqueConstraint("item_id", "serial_number", name="uq_warranties_item_serial"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    sale_item_id = db.Column(db.Integer, db.ForeignKey("sale_items.id"), nullable=False)
    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True)

    serial_number = db.Column(db.String(128), nullable=True)
    warranty_months = db.Column(db.Integer, nullable=False)
    sold_at = db.Column(db.DateTime(timezone=True), nullable=False)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    item = db.relationship("Item")
    sale = db.relationship("Sale", backref=db.backref("warranties", lazy=True))
    customer = db.relationship("Customer")

    def is_expired(self, now=None) -> bool:
        return (now or utcnow()) > self.expires_at

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "sale_item_id": self.sale_item_id,
            "item_id": self.item_id,
            "customer_id": self.customer_id,
            "serial_number": self.serial_number,
            "warranty_months": self.warranty_months,
            "sold_at": to_utc_z(self.sold_at),
            "expires_at": to_utc_z(self.expires_at),
            "is_expired": self.is_expired(),
        }
