"""
Typed polymorphic references from audit rows back to the entity that caused them.

ItemLog and MoneyTransaction store a (reference_type, reference_id) column
pair; in Python the pair is always handled as an EntityRef so every kind is
known up front.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class EntityKind(str, Enum):
    SALE = "sale"
    PURCHASE_ORDER = "purchase_order"
    ASSEMBLY = "assembly"
    STOCK_ADJUSTMENT = "stock_adjustment"
    CUSTOMER = "customer"
    INCOME_EXPENSE = "income_expense"
    CASH_REGISTER_SESSION = "cash_register_session"
    ITEM = "item"


@dataclass(frozen=True)
class EntityRef:
    kind: EntityKind
    id: int

    @classmethod
    def from_columns(cls, reference_type: str | None, reference_id: int | None) -> EntityRef | None:
        if reference_type is None or reference_id is None:
            return None
        return cls(EntityKind(reference_type), reference_id)

    @classmethod
    def of(cls, entity) -> EntityRef:
        """Build a reference for a mapped model instance."""
        for kind, model in _kind_models().items():
            if isinstance(entity, model):
                return cls(kind, entity.id)
        raise TypeError(f"{type(entity).__name__} is not a referenceable entity")


def _kind_models() -> dict:
    from .models import (
        Assembly,
        CashRegisterSession,
        Customer,
        IncomeExpense,
        Item,
        PurchaseOrder,
        Sale,
        StockAdjustment,
    )

    mapping = {
        EntityKind.SALE: Sale,
        EntityKind.PURCHASE_ORDER: PurchaseOrder,
        EntityKind.ASSEMBLY: Assembly,
        EntityKind.STOCK_ADJUSTMENT: StockAdjustment,
        EntityKind.CUSTOMER: Customer,
        EntityKind.INCOME_EXPENSE: IncomeExpense,
        EntityKind.CASH_REGISTER_SESSION: CashRegisterSession,
        EntityKind.ITEM: Item,
    }
    missing = set(EntityKind) - set(mapping)
    if missing:
        raise RuntimeError(f"Unmapped reference kinds: {sorted(k.value for k in missing)}")
    return mapping


def resolve_reference(ref: EntityRef | None):
    """Load the referenced row, or None if the reference is empty or the row is gone."""
    if ref is None:
        return None
    from .extensions import db

    model = _kind_models()[ref.kind]
    return db.session.get(model, ref.id)
