# Overview: Customer master data; debt moves only through sales_service.

from __future__ import annotations

from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Customer
from .concurrency import atomic

CUSTOMER_FIELDS = ("name", "email", "phone", "address", "notes")


def get_customer(customer_id: int) -> Customer:
    customer = db.session.get(Customer, customer_id)
    if not customer:
        raise NotFoundError(f"Customer {customer_id} not found")
    return customer


def list_customers(with_debt_only: bool = False) -> list[Customer]:
    query = db.session.query(Customer)
    if with_debt_only:
        query = query.filter(Customer.debt_balance_cents > 0)
    return query.order_by(Customer.name).all()


def _clean(fields: dict) -> dict:
    unknown = set(fields) - set(CUSTOMER_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown customer fields: {', '.join(sorted(unknown))}")
    cleaned = {}
    for key, value in fields.items():
        cleaned[key] = value.strip() if isinstance(value, str) else value
        if key != "name" and cleaned[key] == "":
            cleaned[key] = None
    return cleaned


def create_customer(name: str, **fields) -> Customer:
    fields = _clean({"name": name, **fields})
    if not fields.get("name"):
        raise ValidationError("Customer name is required")
    customer = Customer(debt_balance_cents=0, **fields)
    with atomic():
        db.session.add(customer)
    return customer


def update_customer(customer_id: int, **fields) -> Customer:
    """Contact details only; debt_balance_cents is not editable."""
    if "debt_balance_cents" in fields:
        raise ValidationError("Debt balance changes only through sales and debt payments")
    fields = _clean(fields)
    if "name" in fields and not fields["name"]:
        raise ValidationError("Customer name cannot be blank")
    customer = get_customer(customer_id)
    with atomic():
        for key, value in fields.items():
            setattr(customer, key, value)
    return customer


def delete_customer(customer_id: int) -> None:
    customer = get_customer(customer_id)
    if customer.debt_balance_cents > 0:
        raise ConflictError(
            f"{customer.name} still owes {customer.debt_balance_cents} cents and cannot be deleted"
        )
    if customer.sales:
        raise ConflictError(f"{customer.name} has sales on record and cannot be deleted")
    with atomic():
        db.session.delete(customer)
