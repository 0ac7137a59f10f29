# Overview: Pure costing and state-derivation functions; no database access.

"""
Everything here takes plain values describing current state plus an intent,
and returns the new state together with the StockMovement records the
caller must write. The engines apply the result through ledger_service and
audit_service; tests can exercise the arithmetic without a database.

Money is integer cents. Weighted-average cost is rounded half-up to the
cent (integer form of rounding to 2 decimal places).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Sequence

from ..errors import InsufficientStockError, ValidationError
from ..models.inventory import LOG_ASSEMBLY, LOG_RECEIVED
from ..models.purchasing import PO_PARTIALLY_RECEIVED, PO_RECEIVED
from ..models.sales import PAYMENT_BANK, PAYMENT_CASH, PAYMENT_CREDIT, PAYMENT_METHODS


@dataclass(frozen=True)
class ItemState:
    id: int
    name: str
    stock: int
    cost_cents: int = 0


@dataclass(frozen=True)
class StockMovement:
    item_id: int
    log_type: str
    quantity_change: int
    old_stock: int
    new_stock: int
    description: str


# =============================================================================
# WEIGHTED AVERAGE COST / RECEIVING
# =============================================================================

def weighted_average_cost_cents(
    old_stock: int,
    old_cost_cents: int,
    quantity_added: int,
    unit_price_cents: int,
) -> int:
    """
    Blend on-hand cost with a new batch.

    new = (old_stock*old_cost + qty*unit_price) / (old_stock + qty), or the
    batch price when nothing usable is on hand. Rounded half-up to the cent.
    """
    if quantity_added <= 0:
        raise ValidationError("quantity_added must be > 0")
    if old_stock <= 0:
        return unit_price_cents

    total_cost = old_stock * old_cost_cents + quantity_added * unit_price_cents
    units = old_stock + quantity_added
    return (total_cost + units // 2) // units


@dataclass(frozen=True)
class ReceiptLinePlan:
    quantity_to_add: int
    received_quantity: int
    new_stock: int
    new_cost_cents: int
    movement: StockMovement | None = None

    @property
    def is_noop(self) -> bool:
        return self.quantity_to_add == 0


def plan_receipt_line(
    item: ItemState,
    *,
    ordered_quantity: int,
    previously_received: int,
    cumulative_received: int,
    unit_price_cents: int,
    description: str,
) -> ReceiptLinePlan:
    """
    Work out what receiving a PO line up to `cumulative_received` does.

    Re-submitting the already-received cumulative amount is a no-op: no stock
    change, no cost change, no movement.
    """
    if cumulative_received < 0:
        raise ValidationError("received quantity must be >= 0")
    if cumulative_received > ordered_quantity:
        raise ValidationError(
            f"Received quantity {cumulative_received} exceeds ordered quantity {ordered_quantity}",
            details={"ordered": ordered_quantity, "received": cumulative_received},
        )
    if cumulative_received < previously_received:
        raise ValidationError(
            f"Received quantity cannot drop below the {previously_received} already received",
            details={"previously_received": previously_received, "received": cumulative_received},
        )

    quantity_to_add = max(0, cumulative_received - previously_received)
    if quantity_to_add == 0:
        return ReceiptLinePlan(
            quantity_to_add=0,
            received_quantity=previously_received,
            new_stock=item.stock,
            new_cost_cents=item.cost_cents,
        )

    new_cost = weighted_average_cost_cents(item.stock, item.cost_cents, quantity_to_add, unit_price_cents)
    new_stock = item.stock + quantity_to_add
    return ReceiptLinePlan(
        quantity_to_add=quantity_to_add,
        received_quantity=cumulative_received,
        new_stock=new_stock,
        new_cost_cents=new_cost,
        movement=StockMovement(
            item_id=item.id,
            log_type=LOG_RECEIVED,
            quantity_change=quantity_to_add,
            old_stock=item.stock,
            new_stock=new_stock,
            description=description,
        ),
    )


def derive_po_status(current_status: str, lines: Iterable[tuple[int, int]]) -> str:
    """
    Status of a purchase order from its (quantity, received_quantity) lines.

    received when every line is full, partially_received once anything has
    arrived, otherwise unchanged.
    """
    lines = list(lines)
    if lines and all(received == quantity for quantity, received in lines):
        return PO_RECEIVED
    if any(received > 0 for _, received in lines):
        return PO_PARTIALLY_RECEIVED
    return current_status


# =============================================================================
# ASSEMBLY
# =============================================================================

@dataclass(frozen=True)
class AssemblyPart:
    item: ItemState
    per_unit_quantity: int


@dataclass(frozen=True)
class AssemblyPlan:
    quantity: int
    part_movements: list[StockMovement]
    part_usage: list[tuple[int, int, int]]  # (item_id, per_unit, total_used)
    final_movement: StockMovement
    unit_cost_cents: int
    final_cost_cents: int


def plan_assembly(final_item: ItemState, quantity: int, parts: Sequence[AssemblyPart]) -> AssemblyPlan:
    """
    Plan consuming parts to build `quantity` units of `final_item`.

    Every part is checked before anything is planned, so a shortage on any
    part rejects the whole build.

    Raises:
        ValidationError: bad quantities, no parts, or final item listed as a part
        InsufficientStockError: a part does not have per_unit * quantity on hand
    """
    if quantity <= 0:
        raise ValidationError("Assembly quantity must be > 0")
    if not parts:
        raise ValidationError("Assembly needs at least one part")

    # Merge repeated parts so the stock check sees the full requirement.
    merged: dict[int, list] = {}
    for part in parts:
        if part.per_unit_quantity <= 0:
            raise ValidationError(f"Part quantity for {part.item.name} must be > 0")
        if part.item.id == final_item.id:
            raise ValidationError(f"{final_item.name} cannot be a part of itself")
        if part.item.id in merged:
            merged[part.item.id][1] += part.per_unit_quantity
        else:
            merged[part.item.id] = [part.item, part.per_unit_quantity]

    for item, per_unit in merged.values():
        required = per_unit * quantity
        if item.stock < required:
            raise InsufficientStockError(
                f"Insufficient stock for {item.name}. Required: {required}, Available: {item.stock}",
                item_id=item.id,
                item_name=item.name,
                required=required,
                available=item.stock,
            )

    part_movements = []
    part_usage = []
    unit_cost = 0
    consumed = []
    for item, per_unit in merged.values():
        used = per_unit * quantity
        part_movements.append(StockMovement(
            item_id=item.id,
            log_type=LOG_ASSEMBLY,
            quantity_change=-used,
            old_stock=item.stock,
            new_stock=item.stock - used,
            description=f"Used in assembly of {quantity}x {final_item.name}",
        ))
        part_usage.append((item.id, per_unit, used))
        unit_cost += item.cost_cents * per_unit
        consumed.append(f"{item.name} ({used})")

    final_movement = StockMovement(
        item_id=final_item.id,
        log_type=LOG_ASSEMBLY,
        quantity_change=quantity,
        old_stock=final_item.stock,
        new_stock=final_item.stock + quantity,
        description="Assembled from: " + ", ".join(consumed),
    )
    return AssemblyPlan(
        quantity=quantity,
        part_movements=part_movements,
        part_usage=part_usage,
        final_movement=final_movement,
        unit_cost_cents=unit_cost,
        final_cost_cents=unit_cost if unit_cost > 0 else final_item.cost_cents,
    )


# =============================================================================
# SALES
# =============================================================================

@dataclass(frozen=True)
class SaleTotals:
    subtotal_cents: int
    total_cents: int
    amount_paid_cents: int
    change_given_cents: int


def compute_sale_totals(
    lines: Iterable[tuple[int, int]],
    payment_method: str,
    amount_paid_cents: int | None = None,
) -> SaleTotals:
    """
    Totals for (price_cents, quantity) lines.

    No tax or discount: total == subtotal. Cash sales take the tendered
    amount and give change, never below zero; bank and credit sales are paid exactly.
    """
    if payment_method not in PAYMENT_METHODS:
        raise ValidationError(f"Unknown payment method: {payment_method}")

    subtotal = sum(price * qty for price, qty in lines)
    total = subtotal

    if payment_method == PAYMENT_CASH:
        if amount_paid_cents is None:
            raise ValidationError("amount_paid_cents is required for cash sales")
        if amount_paid_cents < 0:
            raise ValidationError("amount_paid_cents must be >= 0")
        return SaleTotals(subtotal, total, amount_paid_cents, max(0, amount_paid_cents - total))

    if payment_method in (PAYMENT_BANK, PAYMENT_CREDIT):
        return SaleTotals(subtotal, total, total, 0)

    raise ValidationError(f"Unknown payment method: {payment_method}")


def normalize_serials(serials: Iterable[str | None] | None) -> list[str]:
    """Trim serial numbers and drop blanks."""
    cleaned = []
    for serial in serials or []:
        if serial is None:
            continue
        serial = str(serial).strip()
        if serial:
            cleaned.append(serial)
    return cleaned


def find_duplicate_serials(serials: Iterable[str]) -> list[str]:
    """Serials that repeat, compared case-insensitively, in first-seen order."""
    seen: set[str] = set()
    duplicates: list[str] = []
    for serial in serials:
        key = serial.lower()
        if key in seen and serial not in duplicates:
            duplicates.append(serial)
        seen.add(key)
    return duplicates
