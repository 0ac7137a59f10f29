"""
Purchase Order Receiving Engine

WHY: Stock arrives in pieces. A PO is approved once, then received over as
many deliveries as it takes; each delivery re-weights the item's average
cost and leaves a `received` ItemLog.

LIFECYCLE:
- pending: lines may be edited, PO may be deleted
- approved: admin sign-off; receiving allowed
- partially_received / received: derived from line quantities, never set by hand

Receiving takes CUMULATIVE quantities per line. Re-sending the amount
already received is a no-op, so a retried delivery note cannot double-count.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass

from flask import current_app

from ..errors import InvalidStateError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Item, PurchaseOrder, PurchaseOrderItem, Supplier
from ..models.purchasing import (
    PO_APPROVED,
    PO_PENDING,
    PO_RECEIVABLE_STATUSES,
    PO_RECEIVED,
)
from ..references import EntityRef
from ..time_utils import utcnow
from . import audit_service
from .concurrency import atomic, lock_for_update
from .costing import ItemState, derive_po_status, plan_receipt_line
from .ledger_service import adjust_stock, get_item_for_update, set_item_cost
from .user_service import Actor, require_admin


@dataclass
class PurchaseOrderLineInput:
    item_id: int
    quantity: int
    unit_price_cents: int


@dataclass
class ReceiveLine:
    po_item_id: int
    received_quantity: int  # cumulative


def get_purchase_order(po_id: int) -> PurchaseOrder:
    po = db.session.get(PurchaseOrder, po_id)
    if not po:
        raise NotFoundError(f"Purchase order {po_id} not found")
    return po


def _lock_purchase_order(po_id: int) -> PurchaseOrder:
    po = lock_for_update(db.session.query(PurchaseOrder).filter_by(id=po_id)).first()
    if not po:
        raise NotFoundError(f"Purchase order {po_id} not found")
    return po


def list_purchase_orders(status: str | None = None) -> list[PurchaseOrder]:
    query = db.session.query(PurchaseOrder)
    if status:
        query = query.filter_by(status=status)
    return query.order_by(PurchaseOrder.id.desc()).all()


def _build_lines(lines: list[PurchaseOrderLineInput]) -> list[PurchaseOrderItem]:
    if not lines:
        raise ValidationError("A purchase order needs at least one line")
    built = []
    for line in lines:
        if line.quantity is None or line.quantity <= 0:
            raise ValidationError("Ordered quantity must be > 0", details={"item_id": line.item_id})
        if line.unit_price_cents is None or line.unit_price_cents < 0:
            raise ValidationError("Unit price must be >= 0", details={"item_id": line.item_id})
        if not db.session.get(Item, line.item_id):
            raise NotFoundError(f"Item {line.item_id} not found", details={"item_id": line.item_id})
        built.append(PurchaseOrderItem(
            item_id=line.item_id,
            quantity=line.quantity,
            received_quantity=0,
            unit_price_cents=line.unit_price_cents,
        ))
    return built


def _require_supplier(supplier_id: int) -> Supplier:
    supplier = db.session.get(Supplier, supplier_id)
    if not supplier:
        raise NotFoundError(f"Supplier {supplier_id} not found")
    return supplier


def create_purchase_order(
    actor: Actor,
    supplier_id: int,
    lines: list[PurchaseOrderLineInput],
    notes: str | None = None,
) -> PurchaseOrder:
    """
    Create a pending PO numbered PO-000001, PO-000002, ...

    Raises:
        ValidationError: no lines or bad quantities/prices
        NotFoundError: unknown supplier or item
    """
    with atomic():
        _require_supplier(supplier_id)
        po_lines = _build_lines(lines)
        po = PurchaseOrder(
            po_number=f"tmp-{uuid.uuid4().hex[:24]}",
            supplier_id=supplier_id,
            status=PO_PENDING,
            total_amount_cents=sum(l.quantity * l.unit_price_cents for l in po_lines),
            notes=notes,
            created_by_user_id=actor.user_id,
            lines=po_lines,
        )
        db.session.add(po)
        db.session.flush()
        prefix = current_app.config.get("PO_NUMBER_PREFIX", "PO-")
        po.po_number = f"{prefix}{po.id:06d}"
        db.session.flush()

    current_app.logger.info("Purchase order %s created", po.po_number)
    return po


def update_purchase_order(
    actor: Actor,
    po_id: int,
    *,
    supplier_id: int | None = None,
    lines: list[PurchaseOrderLineInput] | None = None,
    notes: str | None = None,
) -> PurchaseOrder:
    """Edit a pending PO. Lines, when given, replace the existing ones."""
    with atomic():
        po = _lock_purchase_order(po_id)
        if po.status != PO_PENDING:
            raise InvalidStateError("Only pending purchase orders can be edited", details={"status": po.status})
        if supplier_id is not None:
            _require_supplier(supplier_id)
            po.supplier_id = supplier_id
        if lines is not None:
            po.lines = _build_lines(lines)
            po.total_amount_cents = sum(l.quantity * l.unit_price_cents for l in po.lines)
        if notes is not None:
            po.notes = notes
        db.session.flush()
    return po


def delete_purchase_order(actor: Actor, po_id: int) -> None:
    with atomic():
        po = _lock_purchase_order(po_id)
        if po.status != PO_PENDING:
            raise InvalidStateError("Only pending purchase orders can be deleted", details={"status": po.status})
        db.session.delete(po)
    current_app.logger.info("Purchase order %s deleted by user %s", po_id, actor.user_id)


def approve_purchase_order(actor: Actor, po_id: int) -> PurchaseOrder:
    """
    Raises:
        PermissionDeniedError: actor is not an admin
        InvalidStateError: PO is not pending
    """
    require_admin(actor, "approve purchase orders")
    with atomic():
        po = _lock_purchase_order(po_id)
        if po.status != PO_PENDING:
            raise InvalidStateError("Only pending purchase orders can be approved", details={"status": po.status})
        po.status = PO_APPROVED
        po.approved_by_user_id = actor.user_id
        po.approved_at = utcnow()
    current_app.logger.info("Purchase order %s approved by user %s", po.po_number, actor.user_id)
    return po


def receive_purchase_order(actor: Actor, po_id: int, lines: list[ReceiveLine]) -> PurchaseOrder:
    """
    Receive stock against an approved PO.

    For each line the difference between the submitted cumulative quantity
    and what was already received is added to stock, the item cost is
    re-weighted, and a `received` ItemLog is written. Lines with nothing new
    are skipped entirely.

    Raises:
        ValidationError: cumulative quantity above ordered or below already received
        NotFoundError: unknown PO or line not on this PO
        InvalidStateError: PO is pending or already fully received
    """
    if not lines:
        raise ValidationError("Nothing to receive")

    with atomic():
        po = _lock_purchase_order(po_id)
        if po.status not in PO_RECEIVABLE_STATUSES:
            raise InvalidStateError(
                f"Purchase order {po.po_number} cannot be received while {po.status}",
                details={"status": po.status},
            )

        po_lines = {line.id: line for line in po.lines}
        for line in lines:
            if line.po_item_id not in po_lines:
                raise NotFoundError(
                    f"Line {line.po_item_id} is not part of purchase order {po.po_number}",
                    details={"po_item_id": line.po_item_id},
                )

        po_ref = EntityRef.of(po)
        description = f"Received from PO {po.po_number} - {po.supplier.name}"
        for line in lines:
            po_line = po_lines[line.po_item_id]
            item = get_item_for_update(po_line.item_id)
            plan = plan_receipt_line(
                ItemState(id=item.id, name=item.name, stock=item.stock, cost_cents=item.cost_cents),
                ordered_quantity=po_line.quantity,
                previously_received=po_line.received_quantity,
                cumulative_received=line.received_quantity,
                unit_price_cents=po_line.unit_price_cents,
                description=description,
            )
            if plan.is_noop:
                continue

            adjust_stock(item.id, plan.quantity_to_add)
            set_item_cost(item.id, plan.new_cost_cents)
            audit_service.log_stock_movement(plan.movement, user_id=actor.user_id, reference=po_ref)
            po_line.received_quantity = plan.received_quantity

        status = derive_po_status(po.status, [(l.quantity, l.received_quantity) for l in po.lines])
        if status != po.status:
            po.status = status
        if status == PO_RECEIVED and po.received_at is None:
            po.received_at = utcnow()
        db.session.flush()

    current_app.logger.info("Purchase order %s received (status %s)", po.po_number, po.status)
    return po
