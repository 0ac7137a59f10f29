# Overview: Ledger primitives; the only code that mutates stock, item cost, session totals and customer debt.

from __future__ import annotations

from dataclasses import dataclass

from ..errors import NegativeStockError, NotFoundError, ValidationError
from ..extensions import db
from ..models import CashRegisterSession, Customer, Item
from .concurrency import lock_for_update

"""
Ledger primitive rules

- Every primitive runs inside the caller's transaction: it locks the row,
  mutates it, flushes, and never commits.
- Every primitive returns the before/after values the caller needs for its
  audit record. No primitive writes an audit record itself; pair each call
  with the matching audit_service writer.
"""


@dataclass(frozen=True)
class StockChange:
    item: Item
    old_stock: int
    new_stock: int

    @property
    def delta(self) -> int:
        return self.new_stock - self.old_stock


@dataclass(frozen=True)
class CostChange:
    item: Item
    old_cost_cents: int
    new_cost_cents: int


@dataclass(frozen=True)
class SessionTotalsChange:
    session: CashRegisterSession
    old_cash_sales_cents: int
    new_cash_sales_cents: int
    old_debt_repaid_cents: int
    new_debt_repaid_cents: int
    expected_cash_cents: int


@dataclass(frozen=True)
class DebtChange:
    customer: Customer
    old_balance_cents: int
    new_balance_cents: int


def get_item_for_update(item_id: int) -> Item:
    item = lock_for_update(db.session.query(Item).filter_by(id=item_id)).first()
    if not item:
        raise NotFoundError(f"Item {item_id} not found", details={"item_id": item_id})
    return item


def get_session_for_update(session_id: int) -> CashRegisterSession:
    session = lock_for_update(
        db.session.query(CashRegisterSession).filter_by(id=session_id)
    ).first()
    if not session:
        raise NotFoundError(f"Cash register session {session_id} not found", details={"session_id": session_id})
    return session


def get_customer_for_update(customer_id: int) -> Customer:
    customer = lock_for_update(db.session.query(Customer).filter_by(id=customer_id)).first()
    if not customer:
        raise NotFoundError(f"Customer {customer_id} not found", details={"customer_id": customer_id})
    return customer


def adjust_stock(item_id: int, delta: int) -> StockChange:
    """
    Add `delta` (signed) to an item's on-hand stock.

    Raises:
        NotFoundError: item does not exist
        NegativeStockError: resulting stock would be below zero
    """
    item = get_item_for_update(item_id)
    old_stock = item.stock
    new_stock = old_stock + delta
    if new_stock < 0:
        raise NegativeStockError(
            f"Stock for {item.name} cannot go below zero",
            item_id=item.id,
            item_name=item.name,
            required=-delta,
            available=old_stock,
        )
    item.stock = new_stock
    db.session.flush()
    return StockChange(item=item, old_stock=old_stock, new_stock=new_stock)


def set_item_cost(item_id: int, cost_cents: int) -> CostChange:
    if cost_cents < 0:
        raise ValidationError("cost_cents must be >= 0")
    item = get_item_for_update(item_id)
    old_cost = item.cost_cents
    item.cost_cents = cost_cents
    db.session.flush()
    return CostChange(item=item, old_cost_cents=old_cost, new_cost_cents=cost_cents)


def recompute_expected_cash(session: CashRegisterSession) -> int:
    session.expected_cash_cents = (
        session.opening_balance_cents + session.cash_sales_cents + session.debt_repaid_cents
    )
    return session.expected_cash_cents


def adjust_session_totals(
    session_id: int,
    *,
    cash_sales_delta: int = 0,
    debt_repaid_delta: int = 0,
) -> SessionTotalsChange:
    """
    Move a session's running totals and keep expected cash in step.

    expected_cash = opening_balance + cash_sales + debt_repaid after every call.
    """
    session = get_session_for_update(session_id)
    old_cash = session.cash_sales_cents
    old_debt = session.debt_repaid_cents
    session.cash_sales_cents = old_cash + cash_sales_delta
    session.debt_repaid_cents = old_debt + debt_repaid_delta
    expected = recompute_expected_cash(session)
    db.session.flush()
    return SessionTotalsChange(
        session=session,
        old_cash_sales_cents=old_cash,
        new_cash_sales_cents=session.cash_sales_cents,
        old_debt_repaid_cents=old_debt,
        new_debt_repaid_cents=session.debt_repaid_cents,
        expected_cash_cents=expected,
    )


def adjust_customer_debt(customer_id: int, delta: int) -> DebtChange:
    """
    Add `delta` (signed) to a customer's outstanding balance.

    Callers validate first; the guard here only stops a balance below zero.
    """
    customer = get_customer_for_update(customer_id)
    old_balance = customer.debt_balance_cents
    new_balance = old_balance + delta
    if new_balance < 0:
        raise ValidationError(
            f"Debt balance for {customer.name} cannot go below zero",
            details={"customer_id": customer.id, "debt_balance_cents": old_balance, "delta": delta},
        )
    customer.debt_balance_cents = new_balance
    db.session.flush()
    return DebtChange(customer=customer, old_balance_cents=old_balance, new_balance_cents=new_balance)
