"""
Assembly Engine

Builds finished items from parts in one transaction: parts are consumed,
the finished item is produced and re-costed, and every movement is logged.
A shortage on any part rejects the build before anything is touched.
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app

from ..extensions import db
from ..models import Assembly, AssemblyItem
from ..references import EntityRef
from . import audit_service
from .concurrency import atomic
from .costing import AssemblyPart, ItemState, plan_assembly
from .ledger_service import adjust_stock, get_item_for_update, set_item_cost
from .user_service import Actor


@dataclass
class PartInput:
    item_id: int
    quantity: int  # per unit of the finished item


def _state(item) -> ItemState:
    return ItemState(id=item.id, name=item.name, stock=item.stock, cost_cents=item.cost_cents)


def assemble(
    actor: Actor,
    final_item_id: int,
    quantity: int,
    parts: list[PartInput],
    notes: str | None = None,
) -> Assembly:
    """
    Build `quantity` units of the final item.

    The finished item's cost becomes the summed cost of one unit's parts
    when that sum is positive; otherwise its cost is left alone.

    Raises:
        ValidationError: bad quantities, no parts, or item used as its own part
        NotFoundError: unknown final item or part
        InsufficientStockError: a part lacks per-unit * quantity on hand
    """
    with atomic():
        # Lock in id order across the final item and every part
        ids = sorted({final_item_id, *(p.item_id for p in parts)})
        locked = {item_id: get_item_for_update(item_id) for item_id in ids}

        plan = plan_assembly(
            _state(locked[final_item_id]),
            quantity,
            [AssemblyPart(item=_state(locked[p.item_id]), per_unit_quantity=p.quantity) for p in parts],
        )

        assembly = Assembly(
            final_item_id=final_item_id,
            user_id=actor.user_id,
            quantity=quantity,
            unit_cost_cents=plan.unit_cost_cents,
            notes=notes,
        )
        db.session.add(assembly)
        db.session.flush()
        assembly_ref = EntityRef.of(assembly)

        for (item_id, per_unit, used), movement in zip(plan.part_usage, plan.part_movements):
            db.session.add(AssemblyItem(
                assembly_id=assembly.id,
                item_id=item_id,
                quantity_per_unit=per_unit,
                quantity_used=used,
            ))
            adjust_stock(item_id, movement.quantity_change)
            audit_service.log_stock_movement(movement, user_id=actor.user_id, reference=assembly_ref)

        adjust_stock(final_item_id, plan.final_movement.quantity_change)
        if plan.unit_cost_cents > 0:
            set_item_cost(final_item_id, plan.final_cost_cents)
        audit_service.log_stock_movement(plan.final_movement, user_id=actor.user_id, reference=assembly_ref)

    current_app.logger.info(
        "Assembly %s built %s x item %s", assembly.id, quantity, final_item_id
    )
    return assembly


def list_assemblies(limit: int = 50) -> list[Assembly]:
    return db.session.query(Assembly).order_by(Assembly.id.desc()).limit(limit).all()
