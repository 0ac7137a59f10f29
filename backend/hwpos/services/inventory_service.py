# Overview: Item master data and stock adjustments (create and reverse).

"""
Inventory operations outside the sale/PO/assembly engines.

- Item master data never touches stock after creation; stock moves only
  through the engines and adjustments, each with its ItemLog.
- Adjustments are reversible: reversal restores the recorded old_stock,
  logs a `reversed` ItemLog and deletes the adjustment row.
"""

from __future__ import annotations

from flask import current_app

from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Item, ItemCategory, ItemLog, StockAdjustment, Supplier
from ..models.inventory import (
    ADJUSTMENT_REASON_LABELS,
    LOG_ADJUSTMENT,
    LOG_RECEIVED,
    LOG_REVERSED,
)
from ..references import EntityRef
from . import audit_service
from .concurrency import atomic, lock_for_update
from .ledger_service import adjust_stock
from .user_service import Actor

ITEM_FIELDS = ("name", "description", "category_id", "price_cents", "cost_cents", "has_warranty", "warranty_months")


# =============================================================================
# CATEGORIES / SUPPLIERS
# =============================================================================

def create_category(name: str, description: str | None = None) -> ItemCategory:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Category name is required")
    if db.session.query(ItemCategory).filter_by(name=name).first():
        raise ConflictError(f"Category '{name}' already exists")
    category = ItemCategory(name=name, description=description)
    with atomic():
        db.session.add(category)
    return category


def create_supplier(name: str, **contact) -> Supplier:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Supplier name is required")
    supplier = Supplier(
        name=name,
        contact_person=contact.get("contact_person"),
        email=contact.get("email"),
        phone=contact.get("phone"),
        address=contact.get("address"),
    )
    with atomic():
        db.session.add(supplier)
    return supplier


# =============================================================================
# ITEMS
# =============================================================================

def _validate_item_fields(fields: dict) -> None:
    for key in ("price_cents", "cost_cents"):
        if key in fields and fields[key] is not None and fields[key] < 0:
            raise ValidationError(f"{key} must be >= 0")
    if fields.get("warranty_months") is not None and fields["warranty_months"] < 0:
        raise ValidationError("warranty_months must be >= 0")
    if fields.get("category_id") is not None and not db.session.get(ItemCategory, fields["category_id"]):
        raise NotFoundError(f"Category {fields['category_id']} not found")


def get_item(item_id: int) -> Item:
    item = db.session.get(Item, item_id)
    if not item:
        raise NotFoundError(f"Item {item_id} not found")
    return item


def list_items(search: str | None = None) -> list[Item]:
    query = db.session.query(Item)
    if search:
        query = query.filter(Item.name.ilike(f"%{search}%"))
    return query.order_by(Item.name).all()


def create_item(actor: Actor, name: str, *, stock: int = 0, **fields) -> Item:
    """
    Create an item. Opening stock is logged as a `received` movement.

    Raises:
        ValidationError: blank name, negative stock/price/cost, unknown field
        ConflictError: name already used
    """
    name = (name or "").strip()
    if not name:
        raise ValidationError("Item name is required")
    unknown = set(fields) - set(ITEM_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown item fields: {', '.join(sorted(unknown))}")
    if stock is None or stock < 0:
        raise ValidationError("Initial stock must be >= 0")
    _validate_item_fields(fields)

    with atomic():
        if db.session.query(Item).filter_by(name=name).first():
            raise ConflictError(f"Item '{name}' already exists")

        item = Item(name=name, stock=0, **fields)
        db.session.add(item)
        db.session.flush()

        if stock > 0:
            change = adjust_stock(item.id, stock)
            audit_service.log_item_change(
                item_id=item.id,
                type=LOG_RECEIVED,
                quantity_change=stock,
                old_stock=change.old_stock,
                new_stock=change.new_stock,
                description="Initial stock",
                user_id=actor.user_id,
                reference=EntityRef.of(item),
            )

    current_app.logger.info("Item %s created with stock %s", item.id, stock)
    return item


def update_item(actor: Actor, item_id: int, **fields) -> Item:
    """Edit master data. Stock is not editable here; use an adjustment."""
    if "stock" in fields:
        raise ValidationError("Stock changes go through stock adjustments")
    unknown = set(fields) - set(ITEM_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown item fields: {', '.join(sorted(unknown))}")
    _validate_item_fields(fields)

    with atomic():
        item = lock_for_update(db.session.query(Item).filter_by(id=item_id)).first()
        if not item:
            raise NotFoundError(f"Item {item_id} not found")
        if "name" in fields:
            name = (fields["name"] or "").strip()
            if not name:
                raise ValidationError("Item name cannot be blank")
            clash = db.session.query(Item).filter(Item.name == name, Item.id != item.id).first()
            if clash:
                raise ConflictError(f"Item '{name}' already exists")
            fields["name"] = name
        for key, value in fields.items():
            setattr(item, key, value)
    return item


def delete_item(actor: Actor, item_id: int) -> None:
    """Items with stock history are kept so the history still resolves."""
    with atomic():
        item = lock_for_update(db.session.query(Item).filter_by(id=item_id)).first()
        if not item:
            raise NotFoundError(f"Item {item_id} not found")
        if db.session.query(ItemLog.id).filter_by(item_id=item.id).first():
            raise ConflictError(f"{item.name} has stock history and cannot be deleted")
        db.session.delete(item)


# =============================================================================
# STOCK ADJUSTMENTS
# =============================================================================

def _adjustment_description(reason: str, notes: str | None) -> str:
    label = ADJUSTMENT_REASON_LABELS[reason]
    return f"{label}: {notes}" if notes else label


def create_adjustment(
    actor: Actor,
    item_id: int,
    quantity_change: int,
    reason: str,
    notes: str | None = None,
) -> StockAdjustment:
    """
    Apply a signed manual stock correction.

    Raises:
        ValidationError: zero change or unknown reason
        NotFoundError: unknown item
        NegativeStockError: stock would go below zero
    """
    if not quantity_change:
        raise ValidationError("quantity_change must be non-zero")
    if reason not in ADJUSTMENT_REASON_LABELS:
        raise ValidationError(
            f"Invalid reason. Must be one of: {', '.join(ADJUSTMENT_REASON_LABELS)}"
        )
    notes = (notes or "").strip() or None

    with atomic():
        change = adjust_stock(item_id, quantity_change)
        adjustment = StockAdjustment(
            item_id=item_id,
            user_id=actor.user_id,
            quantity_change=quantity_change,
            reason=reason,
            notes=notes,
            old_stock=change.old_stock,
            new_stock=change.new_stock,
        )
        db.session.add(adjustment)
        db.session.flush()

        audit_service.log_item_change(
            item_id=item_id,
            type=LOG_ADJUSTMENT,
            quantity_change=quantity_change,
            old_stock=change.old_stock,
            new_stock=change.new_stock,
            description=_adjustment_description(reason, notes),
            user_id=actor.user_id,
            reference=EntityRef.of(adjustment),
        )

    current_app.logger.info("Stock adjustment %s on item %s (%+d)", adjustment.id, item_id, quantity_change)
    return adjustment


def reverse_adjustment(actor: Actor, adjustment_id: int) -> ItemLog:
    """
    Undo an adjustment: stock goes back to the adjustment's old_stock.

    The `reversed` ItemLog records the negated quantity change and is the
    only trace left once the adjustment row is deleted.
    """
    with atomic():
        adjustment = lock_for_update(
            db.session.query(StockAdjustment).filter_by(id=adjustment_id)
        ).first()
        if not adjustment:
            raise NotFoundError(f"Stock adjustment {adjustment_id} not found")

        item = lock_for_update(db.session.query(Item).filter_by(id=adjustment.item_id)).first()
        change = adjust_stock(item.id, adjustment.old_stock - item.stock)
        log = audit_service.log_item_change(
            item_id=item.id,
            type=LOG_REVERSED,
            quantity_change=-adjustment.quantity_change,
            old_stock=change.old_stock,
            new_stock=change.new_stock,
            description=f"Reversed adjustment #{adjustment.id}",
            user_id=actor.user_id,
            reference=EntityRef.of(adjustment),
        )
        db.session.delete(adjustment)

    current_app.logger.info("Stock adjustment %s reversed", adjustment_id)
    return log


def list_adjustments(item_id: int | None = None) -> list[StockAdjustment]:
    query = db.session.query(StockAdjustment)
    if item_id is not None:
        query = query.filter_by(item_id=item_id)
    return query.order_by(StockAdjustment.id.desc()).all()
