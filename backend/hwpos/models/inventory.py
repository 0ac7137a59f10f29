from __future__ import annotations

from ..extensions import db
from ..references import EntityRef
from ..time_utils import to_utc_z, utcnow

# ItemLog types
LOG_RECEIVED = "received"
LOG_ADJUSTMENT = "adjustment"
LOG_SALE = "sale"
LOG_ASSEMBLY = "assembly"
LOG_REVERSED = "reversed"

ITEM_LOG_TYPES = (LOG_RECEIVED, LOG_ADJUSTMENT, LOG_SALE, LOG_ASSEMBLY, LOG_REVERSED)

# StockAdjustment reasons and their display labels
ADJUSTMENT_REASON_LABELS = {
    "adjustment": "Stock Adjustment",
    "warranty": "Warranty Claim",
    "damage": "Damaged Goods",
    "internal_use": "Internal Use",
}


class ItemCategory(db.Model):
    __tablename__ = "item_categories"
    __table_args__ = (
        db.UniqueConstraint("name", name="uq_item_categories_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    description = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "created_at": to_utc_z(self.created_at),
        }


class Supplier(db.Model):
    """Vendors that purchase orders are placed with."""
    __tablename__ = "suppliers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False, index=True)
    contact_person = db.Column(db.String(128), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)
    address = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "contact_person": self.contact_person,
            "email": self.email,
            "phone": self.phone,
            "address": self.address,
            "created_at": to_utc_z(self.created_at),
        }


class Item(db.Model):
    """
    Stocked item master data and on-hand state.

    WHY: stock and cost_cents are the two numbers every engine operation
    touches. Sales decrement stock, PO receipts increment it and re-weight
    cost, adjustments move it either way, assemblies consume parts and
    produce finished goods.

    INVARIANTS:
    - stock >= 0 (service guard plus CHECK constraint)
    - cost_cents is the weighted-average unit cost in cents
    - never deleted while ItemLog rows reference it
    """
    __tablename__ = "items"
    __table_args__ = (
        db.UniqueConstraint("name", name="uq_items_name"),
        db.CheckConstraint("stock >= 0", name="ck_items_stock_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    category_id = db.Column(db.Integer, db.ForeignKey("item_categories.id"), nullable=True, index=True)

    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    # Authoritative storage in cents
    price_cents = db.Column(db.Integer, nullable=False, default=0)
    cost_cents = db.Column(db.Integer, nullable=False, default=0)

    stock = db.Column(db.Integer, nullable=False, default=0)

    has_warranty = db.Column(db.Boolean, nullable=False, default=False)
    warranty_months = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    category = db.relationship("ItemCategory", backref=db.backref("items", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def carries_warranty(self) -> bool:
        return bool(self.has_warranty) and (self.warranty_months or 0) > 0

    def __repr__(self) -> str:
        return f"<Item id={self.id} name={self.name!r} stock={self.stock}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "category_id": self.category_id,
            "name": self.name,
            "description": self.description,
            "price_cents": self.price_cents,
            "cost_cents": self.cost_cents,
            "stock": self.stock,
            "has_warranty": self.has_warranty,
            "warranty_months": self.warranty_months,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class ItemLog(db.Model):
    """
    Append-only stock movement history.

    IMMUTABLE: rows are only ever inserted. Update/delete through the ORM
    raises AppendOnlyViolationError (see models/guards.py).

    reference_type/reference_id point back at the entity that caused the
    movement; use the `reference` property to get a typed EntityRef.
    """
    __tablename__ = "item_logs"
    __table_args__ = (
        db.Index("ix_item_logs_item_created", "item_id", "created_at"),
        db.Index("ix_item_logs_reference", "reference_type", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    type = db.Column(db.String(16), nullable=False, index=True)
    quantity_change = db.Column(db.Integer, nullable=False)
    old_stock = db.Column(db.Integer, nullable=False)
    new_stock = db.Column(db.Integer, nullable=False)
    description = db.Column(db.Text, nullable=True)

    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    item = db.relationship("Item", backref=db.backref("logs", lazy="dynamic"))
    user = db.relationship("User")

    @property
    def reference(self) -> EntityRef | None:
        return EntityRef.from_columns(self.reference_type, self.reference_id)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "item_id": self.item_id,
            "user_id": self.user_id,
            "type": self.type,
            "quantity_change": self.quantity_change,
            "old_stock": self.old_stock,
            "new_stock": self.new_stock,
            "description": self.description,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "created_at": to_utc_z(self.created_at),
        }


class StockAdjustment(db.Model):
    """
    Manual stock correction (count fix, warranty claim, damage, internal use).

    Reversible: deleting an adjustment restores item stock to old_stock and
    writes a `reversed` ItemLog; that log is the only trace left behind.
    """
    __tablename__ = "stock_adjustments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    quantity_change = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(32), nullable=False)
    notes = db.Column(db.Text, nullable=True)
    old_stock = db.Column(db.Integer, nullable=False)
    new_stock = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    item = db.relationship("Item")

    @property
    def reason_label(self) -> str:
        return ADJUSTMENT_REASON_LABELS.get(self.reason, self.reason)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "item_id": self.item_id,
            "user_id": self.user_id,
            "quantity_change": self.quantity_change,
            "reason": self.reason,
            "reason_label": self.reason_label,
            "notes": self.notes,
            "old_stock": self.old_stock,
            "new_stock": self.new_stock,
            "created_at": to_utc_z(self.created_at),
        }


class Assembly(db.Model):
    """
    A finished-item build: `quantity` units of final_item made from parts.

    IMMUTABLE once created. There is no reversal path.
    """
    __tablename__ = "assemblies"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    final_item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    quantity = db.Column(db.Integer, nullable=False)
    unit_cost_cents = db.Column(db.Integer, nullable=False, default=0)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    final_item = db.relationship("Item")
    parts = db.relationship("AssemblyItem", backref="assembly", lazy=True, order_by="AssemblyItem.id")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "final_item_id": self.final_item_id,
            "user_id": self.user_id,
            "quantity": self.quantity,
            "unit_cost_cents": self.unit_cost_cents,
            "notes": self.notes,
            "parts": [p.to_dict() for p in self.parts],
            "created_at": to_utc_z(self.created_at),
        }


class AssemblyItem(db.Model):
    __tablename__ = "assembly_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    assembly_id = db.Column(db.Integer, db.ForeignKey("assemblies.id"), nullable=False, index=True)
    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False, index=True)
    quantity_per_unit = db.Column(db.Integer, nullable=False)
    quantity_used = db.Column(db.Integer, nullable=False)

    item = db.relationship("Item")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "assembly_id": self.assembly_id,
            "item_id": self.item_id,
            "quantity_per_unit": self.quantity_per_unit,
            "quantity_used": self.quantity_used,
        }
