"""
Sale Transaction Engine

WHY: A sale touches stock, warranties, the drawer and customer credit at
once. All of it happens in one transaction or none of it does; a half-posted
cart (stock gone, no sale row) must never be observable.

DESIGN:
- Items are locked in id order before any write
- The whole cart is stock-checked up front; one short line rejects the cart
- Serial numbers are checked for repeats (case-insensitive) within the
  request and against warranties already on file for the item
- Payment side effects: cash -> session cash_sales + cash-in;
  bank -> bank-in tagged with the session; credit -> customer debt only

RETURNS: processed later against closed sessions as child refund sales.
Money for cash/bank refunds moves only when the refund source is chosen.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..errors import (
    DuplicateSerialError,
    InsufficientStockError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from ..extensions import db
from ..models import Item, Sale, SaleItem, Warranty
from ..models.inventory import LOG_REVERSED, LOG_SALE
from ..models.money import CATEGORY_DEBT_PAYMENT, CATEGORY_REFUND, CATEGORY_SALE
from ..models.registers import SESSION_CLOSED
from ..models.sales import (
    PAYMENT_BANK,
    PAYMENT_CASH,
    PAYMENT_CREDIT,
    PAYMENT_METHODS,
    REFUND_SOURCE_BANK,
    REFUND_SOURCE_CASH,
    REFUND_SOURCE_CREDIT,
    SALE_COMPLETED,
    SALE_REFUNDED,
)
from ..references import EntityRef
from ..time_utils import add_months_no_overflow, utcnow
from . import audit_service
from .bank_service import get_bank_account
from .concurrency import atomic, lock_for_update
from .costing import compute_sale_totals, find_duplicate_serials, normalize_serials
from .ledger_service import (
    adjust_customer_debt,
    adjust_session_totals,
    adjust_stock,
    get_customer_for_update,
    get_item_for_update,
)
from .register_service import require_open_session, require_session_access
from .user_service import Actor


@dataclass
class CartLine:
    item_id: int
    quantity: int
    price_cents: int | None = None  # None -> item's list price
    serial_numbers: list[str] = field(default_factory=list)


@dataclass
class ReturnLine:
    sale_item_id: int
    quantity: int


def _validate_cart(lines: list[CartLine], payment_method: str, customer_id, bank_account_id) -> None:
    if not lines:
        raise ValidationError("Cart is empty")
    if payment_method not in PAYMENT_METHODS:
        raise ValidationError(f"Unknown payment method: {payment_method}")
    for line in lines:
        if line.quantity is None or line.quantity <= 0:
            raise ValidationError("Quantity must be > 0", details={"item_id": line.item_id})
        if line.price_cents is not None and line.price_cents < 0:
            raise ValidationError("Price must be >= 0", details={"item_id": line.item_id})
    if payment_method == PAYMENT_CREDIT and not customer_id:
        raise ValidationError("A customer is required for credit sales")
    if payment_method == PAYMENT_BANK and not bank_account_id:
        raise ValidationError("A bank account is required for bank payments")


def _lock_cart_items(lines: list[CartLine]) -> dict[int, Item]:
    # Fixed lock order keeps two concurrent carts from deadlocking.
    return {item_id: get_item_for_update(item_id) for item_id in sorted({l.item_id for l in lines})}


def _validate_on_hand(lines: list[CartLine], items: dict[int, Item]) -> None:
    requested: dict[int, int] = {}
    for line in lines:
        requested[line.item_id] = requested.get(line.item_id, 0) + line.quantity

    insufficient = []
    for item_id, qty in requested.items():
        item = items[item_id]
        if item.stock < qty:
            insufficient.append({
                "item_id": item.id,
                "item_name": item.name,
                "required": qty,
                "available": item.stock,
            })

    if insufficient:
        first = insufficient[0]
        raise InsufficientStockError(
            f"Insufficient stock for {first['item_name']}. "
            f"Required: {first['required']}, Available: {first['available']}",
            item_id=first["item_id"],
            item_name=first["item_name"],
            required=first["required"],
            available=first["available"],
            details={"items": insufficient},
        )


def _validate_serials(lines: list[CartLine], items: dict[int, Item]) -> dict[int, list[str]]:
    """Cleaned serials per cart line index; raises on repeats or already-registered serials."""
    cleaned: dict[int, list[str]] = {}
    per_item: dict[int, list[str]] = {}
    for index, line in enumerate(lines):
        item = items[line.item_id]
        if not item.carries_warranty:
            cleaned[index] = []
            continue
        serials = normalize_serials(line.serial_numbers)
        if len(serials) > line.quantity:
            raise ValidationError(
                f"{item.name}: {len(serials)} serial numbers given for {line.quantity} units",
                details={"item_id": item.id},
            )
        cleaned[index] = serials
        per_item.setdefault(item.id, []).extend(serials)

    for item_id, serials in per_item.items():
        if not serials:
            continue
        item = items[item_id]
        duplicates = find_duplicate_serials(serials)
        if duplicates:
            raise DuplicateSerialError(
                f"Duplicate serial numbers for {item.name}: {', '.join(duplicates)}",
                details={"item_id": item_id, "serial_numbers": duplicates},
            )
        registered = (
            db.session.query(Warranty.serial_number)
            .filter(
                Warranty.item_id == item_id,
                func.lower(Warranty.serial_number).in_([s.lower() for s in serials]),
            )
            .all()
        )
        if registered:
            taken = [row[0] for row in registered]
            raise DuplicateSerialError(
                f"Serial numbers already registered for {item.name}: {', '.join(taken)}",
                details={"item_id": item_id, "serial_numbers": taken},
            )
    return cleaned


def record_sale(
    actor: Actor,
    lines: list[CartLine],
    payment_method: str,
    *,
    customer_id: int | None = None,
    bank_account_id: int | None = None,
    amount_paid_cents: int | None = None,
) -> Sale:
    """
    Post a POS sale.

    Args:
        actor: cashier; must have an open session
        lines: cart lines (price defaults to the item's list price)
        payment_method: cash, bank or credit
        customer_id: required for credit, optional otherwise
        bank_account_id: required for bank
        amount_paid_cents: tendered cash, required for cash

    Raises:
        ValidationError: bad cart or payment input
        NoOpenSessionError: actor has no open session
        NotFoundError: unknown item, customer or bank account
        InsufficientStockError: a cart line exceeds stock (whole cart rejected)
        DuplicateSerialError: repeated or already-registered serial
    """
    _validate_cart(lines, payment_method, customer_id, bank_account_id)

    with atomic():
        session = require_open_session(actor.user_id)
        customer = get_customer_for_update(customer_id) if customer_id else None
        bank_account = get_bank_account(bank_account_id) if payment_method == PAYMENT_BANK else None

        items = _lock_cart_items(lines)
        _validate_on_hand(lines, items)
        serials_by_line = _validate_serials(lines, items)

        prices = [
            line.price_cents if line.price_cents is not None else items[line.item_id].price_cents
            for line in lines
        ]
        totals = compute_sale_totals(
            [(price, line.quantity) for price, line in zip(prices, lines)],
            payment_method,
            amount_paid_cents,
        )

        sold_at = utcnow()
        sale = Sale(
            customer_id=customer.id if customer else None,
            user_id=actor.user_id,
            cash_register_session_id=session.id,
            bank_account_id=bank_account.id if bank_account else None,
            payment_method=payment_method,
            subtotal_cents=totals.subtotal_cents,
            total_cents=totals.total_cents,
            amount_paid_cents=totals.amount_paid_cents,
            change_given_cents=totals.change_given_cents,
            status=SALE_COMPLETED,
            created_at=sold_at,
        )
        db.session.add(sale)
        db.session.flush()
        sale_ref = EntityRef.of(sale)

        for index, (line, price) in enumerate(zip(lines, prices)):
            item = items[line.item_id]
            sale_item = SaleItem(
                sale_id=sale.id,
                item_id=item.id,
                quantity=line.quantity,
                price_cents=price,
                subtotal_cents=price * line.quantity,
            )
            db.session.add(sale_item)
            db.session.flush()

            change = adjust_stock(item.id, -line.quantity)
            audit_service.log_item_change(
                item_id=item.id,
                type=LOG_SALE,
                quantity_change=-line.quantity,
                old_stock=change.old_stock,
                new_stock=change.new_stock,
                description=f"Sold via POS (Sale #{sale.id})",
                user_id=actor.user_id,
                reference=sale_ref,
            )

            if item.carries_warranty:
                _create_warranties(sale, sale_item, item, serials_by_line[index], sold_at)

        if payment_method == PAYMENT_CASH:
            adjust_session_totals(session.id, cash_sales_delta=totals.total_cents)
            if totals.total_cents > 0:
                audit_service.log_cash_in(
                    session.id,
                    totals.total_cents,
                    CATEGORY_SALE,
                    user_id=actor.user_id,
                    description=f"POS sale #{sale.id}",
                    reference=sale_ref,
                )
        elif payment_method == PAYMENT_BANK:
            if totals.total_cents > 0:
                audit_service.log_bank_in(
                    bank_account.id,
                    totals.total_cents,
                    CATEGORY_SALE,
                    user_id=actor.user_id,
                    description=f"POS sale #{sale.id}",
                    session_id=session.id,
                    reference=sale_ref,
                )
        else:
            adjust_customer_debt(customer.id, totals.total_cents)

    current_app.logger.info(
        "Sale %s recorded in session %s (%s, %s cents)",
        sale.id, sale.cash_register_session_id, payment_method, sale.total_cents,
    )
    return sale


def _create_warranties(sale: Sale, sale_item: SaleItem, item: Item, serials: list[str], sold_at) -> None:
    """One warranty per unit; units beyond the supplied serials get no serial."""
    expires_at = add_months_no_overflow(sold_at, item.warranty_months)
    padded = serials + [None] * (sale_item.quantity - len(serials))
    for serial in padded:
        db.session.add(Warranty(
            sale_id=sale.id,
            sale_item_id=sale_item.id,
            item_id=item.id,
            customer_id=sale.customer_id,
            serial_number=serial,
            warranty_months=item.warranty_months,
            sold_at=sold_at,
            expires_at=expires_at,
        ))
    try:
        db.session.flush()
    except IntegrityError as exc:
        # Unique (item_id, serial_number) caught a concurrent registration
        raise DuplicateSerialError(
            f"Serial number already registered for {item.name}",
            details={"item_id": item.id},
        ) from exc


# =============================================================================
# DEBT COLLECTION
# =============================================================================

def collect_debt_payment(
    actor: Actor,
    customer_id: int,
    amount_cents: int,
    method: str,
    *,
    bank_account_id: int | None = None,
):
    """
    Take a payment against a customer's outstanding credit.

    Cash payments count as drawer inflow: they raise both debt_repaid and
    cash_sales on the session, exactly as cash sales raise cash_sales.

    Raises:
        ValidationError: non-positive amount, bad method, amount above the debt
        NoOpenSessionError: no session is open
        NotFoundError: unknown customer or bank account
    """
    if amount_cents is None or amount_cents <= 0:
        raise ValidationError("Payment amount must be > 0")
    if method not in (PAYMENT_CASH, PAYMENT_BANK):
        raise ValidationError("Debt payments are taken in cash or by bank transfer")
    if method == PAYMENT_BANK and not bank_account_id:
        raise ValidationError("A bank account is required for bank payments")

    with atomic():
        customer = get_customer_for_update(customer_id)
        if amount_cents > customer.debt_balance_cents:
            raise ValidationError(
                "Payment amount exceeds the customer's outstanding debt",
                details={"amount_cents": amount_cents, "debt_balance_cents": customer.debt_balance_cents},
            )
        session = require_open_session()
        bank_account = get_bank_account(bank_account_id) if method == PAYMENT_BANK else None

        adjust_customer_debt(customer.id, -amount_cents)
        customer_ref = EntityRef.of(customer)
        description = f"Debt payment from {customer.name}"

        if method == PAYMENT_CASH:
            adjust_session_totals(session.id, cash_sales_delta=amount_cents, debt_repaid_delta=amount_cents)
            tx = audit_service.log_cash_in(
                session.id,
                amount_cents,
                CATEGORY_DEBT_PAYMENT,
                user_id=actor.user_id,
                description=description,
                reference=customer_ref,
            )
        else:
            adjust_session_totals(session.id, debt_repaid_delta=amount_cents)
            tx = audit_service.log_bank_in(
                bank_account.id,
                amount_cents,
                CATEGORY_DEBT_PAYMENT,
                user_id=actor.user_id,
                description=description,
                session_id=session.id,
                reference=customer_ref,
            )

    current_app.logger.info(
        "Debt payment of %s cents from customer %s (%s)", amount_cents, customer_id, method
    )
    return tx


# =============================================================================
# RETURNS
# =============================================================================

def _returned_quantities(sale: Sale) -> dict[int, int]:
    rows = (
        db.session.query(SaleItem.returned_from_sale_item_id, func.sum(SaleItem.quantity))
        .filter(SaleItem.returned_from_sale_item_id.in_([si.id for si in sale.items]))
        .group_by(SaleItem.returned_from_sale_item_id)
        .all()
    )
    # Refund lines are stored negative
    return {sale_item_id: -int(total) for sale_item_id, total in rows}


def return_sale(actor: Actor, sale_id: int, lines: list[ReturnLine], reason: str) -> Sale:
    """
    Take goods back against a sale from a closed session.

    Creates a child refund sale (negative totals, status refunded) and puts
    the stock back. Credit sales have the refund knocked off the customer's
    debt straight away; cash and bank refunds wait for set_refund_source.

    Raises:
        ValidationError: no lines, no reason, or more than remains returnable
        NotFoundError: unknown sale or sale line
        InvalidStateError: sale is a refund, not completed, or its session is open
        PermissionDeniedError: not admin and no approved access request
    """
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("A reason is required for returns")
    if not lines:
        raise ValidationError("Nothing to return")
    for line in lines:
        if line.quantity is None or line.quantity <= 0:
            raise ValidationError("Return quantity must be > 0", details={"sale_item_id": line.sale_item_id})

    with atomic():
        sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
        if not sale:
            raise NotFoundError(f"Sale {sale_id} not found")
        if sale.parent_sale_id is not None:
            raise InvalidStateError("Refund sales cannot be returned")
        if sale.status != SALE_COMPLETED:
            raise InvalidStateError(f"Sale {sale.id} is {sale.status}", details={"status": sale.status})
        if sale.session.status != SESSION_CLOSED:
            raise InvalidStateError("Returns are processed once the sale's session is closed")

        require_session_access(actor, sale.cash_register_session_id)

        sold = {si.id: si for si in sale.items}
        already = _returned_quantities(sale)
        requested: dict[int, int] = {}
        for line in lines:
            if line.sale_item_id not in sold:
                raise NotFoundError(
                    f"Sale line {line.sale_item_id} is not part of sale {sale.id}",
                    details={"sale_item_id": line.sale_item_id},
                )
            requested[line.sale_item_id] = requested.get(line.sale_item_id, 0) + line.quantity

        for sale_item_id, qty in requested.items():
            remaining = sold[sale_item_id].quantity - already.get(sale_item_id, 0)
            if qty > remaining:
                raise ValidationError(
                    f"Cannot return {qty} of {sold[sale_item_id].item.name}; only {remaining} remaining",
                    details={"sale_item_id": sale_item_id, "requested": qty, "remaining": remaining},
                )

        refund_total = sum(sold[sid].price_cents * qty for sid, qty in requested.items())
        refund = Sale(
            customer_id=sale.customer_id,
            user_id=actor.user_id,
            cash_register_session_id=sale.cash_register_session_id,
            bank_account_id=sale.bank_account_id,
            payment_method=sale.payment_method,
            subtotal_cents=-refund_total,
            total_cents=-refund_total,
            amount_paid_cents=-refund_total,
            change_given_cents=0,
            status=SALE_REFUNDED,
            notes=reason,
            parent_sale_id=sale.id,
            created_at=utcnow(),
        )
        db.session.add(refund)
        db.session.flush()
        refund_ref = EntityRef.of(refund)

        for sale_item_id in sorted(requested):
            original = sold[sale_item_id]
            qty = requested[sale_item_id]
            db.session.add(SaleItem(
                sale_id=refund.id,
                item_id=original.item_id,
                returned_from_sale_item_id=original.id,
                quantity=-qty,
                price_cents=original.price_cents,
                subtotal_cents=-qty * original.price_cents,
            ))
            change = adjust_stock(original.item_id, qty)
            audit_service.log_item_change(
                item_id=original.item_id,
                type=LOG_REVERSED,
                quantity_change=qty,
                old_stock=change.old_stock,
                new_stock=change.new_stock,
                description=f"Returned from Sale #{sale.id}",
                user_id=actor.user_id,
                reference=refund_ref,
            )

        if sale.payment_method == PAYMENT_CREDIT and sale.customer_id:
            customer = get_customer_for_update(sale.customer_id)
            credited = min(refund_total, customer.debt_balance_cents)
            if credited > 0:
                adjust_customer_debt(customer.id, -credited)
            uncredited = refund_total - credited
            if uncredited > 0:
                refund.notes = f"{reason}; {uncredited} cents above outstanding debt not credited"
                current_app.logger.warning(
                    "Refund %s: %s cents exceed the debt of customer %s and were not credited",
                    refund.id, uncredited, customer.id,
                )
            refund.refund_source = REFUND_SOURCE_CREDIT

        total_sold = sum(si.quantity for si in sale.items)
        total_returned = sum(already.values()) + sum(requested.values())
        if total_returned >= total_sold:
            sale.status = SALE_REFUNDED
        db.session.flush()

    current_app.logger.info("Return %s recorded against sale %s (%s cents)", refund.id, sale_id, refund_total)
    return refund


def set_refund_source(
    actor: Actor,
    refund_sale_id: int,
    source: str,
    *,
    bank_account_id: int | None = None,
) -> Sale:
    """
    Pay out a cash or bank refund.

    cash: taken from the currently open drawer (its cash_sales drop by the
    refund, a cash-out is logged). bank: a bank-out from the given account.

    Raises:
        ValidationError: bad source or missing bank account
        NotFoundError: unknown refund sale or bank account
        InvalidStateError: not a refund, or source already set
        NoOpenSessionError: cash refund with no open drawer
    """
    if source not in (REFUND_SOURCE_CASH, REFUND_SOURCE_BANK):
        raise ValidationError("Refund source must be cash or bank")
    if source == REFUND_SOURCE_BANK and not bank_account_id:
        raise ValidationError("A bank account is required for bank refunds")

    with atomic():
        refund = lock_for_update(db.session.query(Sale).filter_by(id=refund_sale_id)).first()
        if not refund:
            raise NotFoundError(f"Sale {refund_sale_id} not found")
        if refund.parent_sale_id is None or refund.status != SALE_REFUNDED:
            raise InvalidStateError(f"Sale {refund.id} is not a refund")
        if refund.refund_source is not None:
            raise InvalidStateError(
                f"Refund source already set to {refund.refund_source}",
                details={"refund_source": refund.refund_source},
            )

        amount = -refund.total_cents
        refund_ref = EntityRef.of(refund)
        description = f"Refund for Sale #{refund.parent_sale_id}"

        if source == REFUND_SOURCE_CASH:
            session = require_open_session()
            adjust_session_totals(session.id, cash_sales_delta=-amount)
            if amount > 0:
                audit_service.log_cash_out(
                    session.id,
                    amount,
                    CATEGORY_REFUND,
                    user_id=actor.user_id,
                    description=description,
                    reference=refund_ref,
                )
        else:
            account = get_bank_account(bank_account_id)
            if amount > 0:
                audit_service.log_bank_out(
                    account.id,
                    amount,
                    CATEGORY_REFUND,
                    user_id=actor.user_id,
                    description=description,
                    reference=refund_ref,
                )
            refund.refund_bank_account_id = account.id

        refund.refund_source = source
        db.session.flush()

    current_app.logger.info("Refund %s paid out via %s", refund_sale_id, source)
    return refund
