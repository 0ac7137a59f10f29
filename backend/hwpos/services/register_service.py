"""
Cash Register Session Manager

WHY: Cash accountability. A session brackets one drawer count: it opens with
a float, accumulates cash sales and debt repayments, and closes against a
physical count.

DESIGN PRINCIPLES:
- Only one session open system-wide (partial unique index backs the check)
- expected_cash = opening_balance + cash_sales + debt_repaid at all times
- Closed sessions change only through amend_closed_session, which always
  writes a CashRegisterSessionAudit row
- Non-admins need an approved access request to amend a closed session or
  process returns against it
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..errors import (
    InvalidStateError,
    NoOpenSessionError,
    NotFoundError,
    PermissionDeniedError,
    SessionAlreadyOpenError,
    ValidationError,
)
from ..extensions import db
from ..models import (
    CashRegisterSession,
    CashRegisterSessionAccessRequest,
    CashRegisterSessionAudit,
    IncomeExpense,
    Item,
    MoneyTransaction,
    Sale,
    SaleItem,
)
from ..models.money import (
    CATEGORY_DEBT_PAYMENT,
    CATEGORY_OPENING_BALANCE,
    CATEGORY_SALE,
    DIRECTION_IN,
    ENTRY_INCOME,
    POS_INCOME_CATEGORY,
    SOURCE_BANK_ACCOUNT,
    SOURCE_CASH_REGISTER,
)
from ..models.registers import (
    ACCESS_APPROVED,
    ACCESS_DENIED,
    ACCESS_PENDING,
    ACCESS_USED,
    SESSION_CLOSED,
    SESSION_OPEN,
)
from ..models.sales import PAYMENT_BANK, PAYMENT_CASH, PAYMENT_CREDIT
from ..references import EntityRef
from ..time_utils import utcnow
from . import audit_service
from .concurrency import atomic, lock_for_update
from .ledger_service import get_session_for_update, recompute_expected_cash
from .user_service import Actor, require_admin


# =============================================================================
# LOOKUPS
# =============================================================================

def get_open_session(user_id: int | None = None) -> CashRegisterSession | None:
    """The open session, optionally only if opened by `user_id`."""
    query = db.session.query(CashRegisterSession).filter_by(status=SESSION_OPEN)
    if user_id is not None:
        query = query.filter_by(opened_by_user_id=user_id)
    return query.first()


def require_open_session(user_id: int | None = None) -> CashRegisterSession:
    """
    Lock and return the open session (for `user_id` when given).

    Raises:
        NoOpenSessionError: nothing open for that scope
    """
    query = db.session.query(CashRegisterSession).filter_by(status=SESSION_OPEN)
    if user_id is not None:
        query = query.filter_by(opened_by_user_id=user_id)
    session = lock_for_update(query).first()
    if not session:
        raise NoOpenSessionError(
            "No open cash register session. Open the drawer first.",
            details={"user_id": user_id},
        )
    return session


def list_sessions(status: str | None = None, limit: int = 50) -> list[CashRegisterSession]:
    query = db.session.query(CashRegisterSession)
    if status:
        query = query.filter_by(status=status)
    return query.order_by(CashRegisterSession.id.desc()).limit(limit).all()


def _get_session(session_id: int) -> CashRegisterSession:
    session = db.session.get(CashRegisterSession, session_id)
    if not session:
        raise NotFoundError(f"Cash register session {session_id} not found")
    return session


# =============================================================================
# OPEN / CLOSE
# =============================================================================

def open_session(actor: Actor, opening_balance_cents: int) -> CashRegisterSession:
    """
    Open the cash drawer.

    Args:
        actor: cashier opening the drawer
        opening_balance_cents: float placed in the drawer

    Raises:
        ValidationError: negative opening balance
        SessionAlreadyOpenError: any session is already open
    """
    if opening_balance_cents is None or opening_balance_cents < 0:
        raise ValidationError("opening_balance_cents must be >= 0")

    with atomic():
        existing = lock_for_update(
            db.session.query(CashRegisterSession).filter_by(status=SESSION_OPEN)
        ).first()
        if existing:
            raise SessionAlreadyOpenError(
                f"Cash register session {existing.id} is already open",
                details={"session_id": existing.id, "opened_by_user_id": existing.opened_by_user_id},
            )

        session = CashRegisterSession(
            opened_by_user_id=actor.user_id,
            status=SESSION_OPEN,
            opening_balance_cents=opening_balance_cents,
            cash_sales_cents=0,
            debt_repaid_cents=0,
            expected_cash_cents=opening_balance_cents,
            opened_at=utcnow(),
        )
        db.session.add(session)
        try:
            db.session.flush()
        except IntegrityError as exc:
            # Lost the race to a concurrent open()
            raise SessionAlreadyOpenError("A cash register session is already open") from exc

        if opening_balance_cents > 0:
            audit_service.log_cash_in(
                session.id,
                opening_balance_cents,
                CATEGORY_OPENING_BALANCE,
                user_id=actor.user_id,
                description="Opening balance",
                reference=EntityRef.of(session),
            )

    current_app.logger.info("Cash register session %s opened by user %s", session.id, actor.user_id)
    return session


def close_session(actor: Actor, session_id: int, actual_cash_cents: int) -> CashRegisterSession:
    """
    Close the drawer with the counted cash.

    Only the user who opened the session, or an admin, may close it. Closing
    also books the session's POS takings as a system-generated income entry.

    Raises:
        ValidationError: negative count
        NotFoundError: unknown session
        InvalidStateError: session already closed
        PermissionDeniedError: closer is neither owner nor admin
    """
    if actual_cash_cents is None or actual_cash_cents < 0:
        raise ValidationError("actual_cash_cents must be >= 0")

    with atomic():
        session = get_session_for_update(session_id)
        if session.status != SESSION_OPEN:
            raise InvalidStateError(
                f"Cash register session {session.id} is not open",
                details={"status": session.status},
            )
        if session.opened_by_user_id != actor.user_id and not actor.is_admin:
            raise PermissionDeniedError("Only the cashier who opened this session or an admin can close it")

        session.status = SESSION_CLOSED
        session.closed_by_user_id = actor.user_id
        session.closed_at = utcnow()
        session.actual_cash_cents = actual_cash_cents
        db.session.flush()

        _record_pos_income(session, actor)

    current_app.logger.info(
        "Cash register session %s closed by user %s (expected %s, counted %s)",
        session.id, actor.user_id, session.expected_cash_cents, actual_cash_cents,
    )
    return session


def pos_income_cents(session_id: int) -> int:
    """Money taken in through the POS during a session: sales plus debt payments, cash and bank."""
    total = (
        db.session.query(func.coalesce(func.sum(MoneyTransaction.amount_cents), 0))
        .filter(
            MoneyTransaction.cash_register_session_id == session_id,
            MoneyTransaction.type == DIRECTION_IN,
            MoneyTransaction.category.in_((CATEGORY_SALE, CATEGORY_DEBT_PAYMENT)),
        )
        .scalar()
    )
    return int(total or 0)


def _record_pos_income(session: CashRegisterSession, actor: Actor) -> IncomeExpense | None:
    """At most one system-generated POS income entry per session; none when nothing was taken."""
    existing = db.session.query(IncomeExpense).filter_by(
        cash_register_session_id=session.id,
        is_system_generated=True,
        category=POS_INCOME_CATEGORY,
    ).first()
    if existing:
        return existing

    amount = pos_income_cents(session.id)
    if amount <= 0:
        return None

    entry = IncomeExpense(
        type=ENTRY_INCOME,
        category=POS_INCOME_CATEGORY,
        amount_cents=amount,
        description=f"POS sales for cash register session #{session.id}",
        transaction_date=(session.closed_at or utcnow()).date(),
        cash_register_session_id=session.id,
        is_system_generated=True,
        user_id=actor.user_id,
    )
    db.session.add(entry)
    db.session.flush()
    return entry


# =============================================================================
# SHIFT SUMMARY
# =============================================================================

def _sum_money(session_id: int, *, source_type: str, category: str) -> int:
    total = (
        db.session.query(func.coalesce(func.sum(MoneyTransaction.amount_cents), 0))
        .filter(
            MoneyTransaction.cash_register_session_id == session_id,
            MoneyTransaction.source_type == source_type,
            MoneyTransaction.category == category,
            MoneyTransaction.type == DIRECTION_IN,
        )
        .scalar()
    )
    return int(total or 0)


def get_shift_summary(session_id: int) -> dict:
    """Totals for a session: payment-method breakdown, debt repaid by channel, items sold."""
    session = _get_session(session_id)

    sales_query = db.session.query(Sale).filter(
        Sale.cash_register_session_id == session.id,
        Sale.parent_sale_id.is_(None),
    )
    by_method = dict(
        sales_query.with_entities(Sale.payment_method, func.coalesce(func.sum(Sale.total_cents), 0))
        .group_by(Sale.payment_method)
        .all()
    )

    item_rows = (
        db.session.query(
            Item.id,
            Item.name,
            func.sum(SaleItem.quantity),
            func.sum(SaleItem.subtotal_cents),
        )
        .join(SaleItem, SaleItem.item_id == Item.id)
        .join(Sale, Sale.id == SaleItem.sale_id)
        .filter(Sale.cash_register_session_id == session.id, Sale.parent_sale_id.is_(None))
        .group_by(Item.id, Item.name)
        .order_by(Item.name)
        .all()
    )

    return {
        "session": session.to_dict(),
        "sales_count": sales_query.count(),
        "cash_sales_total_cents": int(by_method.get(PAYMENT_CASH, 0)),
        "bank_sales_cents": int(by_method.get(PAYMENT_BANK, 0)),
        "credit_sales_cents": int(by_method.get(PAYMENT_CREDIT, 0)),
        "cash_debt_repaid_cents": _sum_money(
            session.id, source_type=SOURCE_CASH_REGISTER, category=CATEGORY_DEBT_PAYMENT
        ),
        "bank_debt_repaid_cents": _sum_money(
            session.id, source_type=SOURCE_BANK_ACCOUNT, category=CATEGORY_DEBT_PAYMENT
        ),
        "item_sales": [
            {
                "item_id": item_id,
                "name": name,
                "quantity": int(qty or 0),
                "total_cents": int(total or 0),
            }
            for item_id, name, qty, total in item_rows
        ],
    }


# =============================================================================
# ACCESS REQUESTS (CLOSED SESSIONS)
# =============================================================================

def request_session_access(actor: Actor, session_id: int, reason: str | None = None):
    """
    Ask an admin for permission to change a closed session.

    Admins never need one and get None back. A user with a pending or
    approved request for the session gets that request back instead of a
    new one.
    """
    session = _get_session(session_id)
    if actor.is_admin:
        return None

    existing = (
        db.session.query(CashRegisterSessionAccessRequest)
        .filter(
            CashRegisterSessionAccessRequest.cash_register_session_id == session.id,
            CashRegisterSessionAccessRequest.user_id == actor.user_id,
            CashRegisterSessionAccessRequest.status.in_((ACCESS_PENDING, ACCESS_APPROVED)),
        )
        .order_by(CashRegisterSessionAccessRequest.id.desc())
        .first()
    )
    if existing:
        return existing

    request = CashRegisterSessionAccessRequest(
        cash_register_session_id=session.id,
        user_id=actor.user_id,
        reason=(reason or "").strip() or None,
        status=ACCESS_PENDING,
    )
    with atomic():
        db.session.add(request)
    return request


def _decide_access_request(actor: Actor, request_id: int, status: str) -> CashRegisterSessionAccessRequest:
    require_admin(actor, "decide session access requests")
    with atomic():
        request = lock_for_update(
            db.session.query(CashRegisterSessionAccessRequest).filter_by(id=request_id)
        ).first()
        if not request:
            raise NotFoundError(f"Access request {request_id} not found")
        if request.status != ACCESS_PENDING:
            raise InvalidStateError(
                f"Access request {request.id} is already {request.status}",
                details={"status": request.status},
            )
        request.status = status
        request.approved_by_user_id = actor.user_id
        request.approved_at = utcnow()
    return request


def approve_access_request(actor: Actor, request_id: int) -> CashRegisterSessionAccessRequest:
    return _decide_access_request(actor, request_id, ACCESS_APPROVED)


def deny_access_request(actor: Actor, request_id: int) -> CashRegisterSessionAccessRequest:
    return _decide_access_request(actor, request_id, ACCESS_DENIED)


def find_approved_request(actor: Actor, session_id: int) -> CashRegisterSessionAccessRequest | None:
    return (
        db.session.query(CashRegisterSessionAccessRequest)
        .filter_by(cash_register_session_id=session_id, user_id=actor.user_id, status=ACCESS_APPROVED)
        .order_by(CashRegisterSessionAccessRequest.id.desc())
        .first()
    )


def require_session_access(actor: Actor, session_id: int) -> CashRegisterSessionAccessRequest | None:
    """
    Admins pass straight through (None). Everyone else needs an approved request.

    Raises:
        PermissionDeniedError: no approved request on file
    """
    if actor.is_admin:
        return None
    request = find_approved_request(actor, session_id)
    if not request:
        raise PermissionDeniedError(
            "You need an approved access request to change this session",
            details={"session_id": session_id},
        )
    return request


# =============================================================================
# RETROACTIVE AMENDMENT
# =============================================================================

def _amendable_values(session: CashRegisterSession) -> dict:
    return {
        "opening_balance_cents": session.opening_balance_cents,
        "cash_sales_cents": session.cash_sales_cents,
        "debt_repaid_cents": session.debt_repaid_cents,
        "expected_cash_cents": session.expected_cash_cents,
        "actual_cash_cents": session.actual_cash_cents,
    }


def amend_closed_session(
    actor: Actor,
    session_id: int,
    *,
    opening_balance_cents: int,
    cash_sales_cents: int,
    debt_repaid_cents: int,
    actual_cash_cents: int,
    reason: str,
) -> CashRegisterSessionAudit:
    """
    Correct the totals of a closed session.

    WHY: Miscounts happen. The correction is allowed but never silent: the
    old and new values plus the reason are written to an immutable audit row,
    and a non-admin's approved access request is consumed.

    Raises:
        ValidationError: missing reason or negative opening/actual cash
        NotFoundError: unknown session
        InvalidStateError: session is still open
        PermissionDeniedError: not admin and no approved request
    """
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("A reason is required to amend a closed session")
    for label, value in (
        ("opening_balance_cents", opening_balance_cents),
        ("cash_sales_cents", cash_sales_cents),
        ("debt_repaid_cents", debt_repaid_cents),
        ("actual_cash_cents", actual_cash_cents),
    ):
        if value is None or not isinstance(value, int) or isinstance(value, bool):
            raise ValidationError(f"{label} must be an integer")
    if opening_balance_cents < 0 or actual_cash_cents < 0:
        raise ValidationError("Opening balance and actual cash must be >= 0")

    with atomic():
        session = get_session_for_update(session_id)
        if session.status != SESSION_CLOSED:
            raise InvalidStateError("Only closed sessions can be amended", details={"status": session.status})

        request = require_session_access(actor, session.id)
        old_values = _amendable_values(session)

        session.opening_balance_cents = opening_balance_cents
        session.cash_sales_cents = cash_sales_cents
        session.debt_repaid_cents = debt_repaid_cents
        session.actual_cash_cents = actual_cash_cents
        recompute_expected_cash(session)

        audit = CashRegisterSessionAudit(
            cash_register_session_id=session.id,
            changed_by_user_id=actor.user_id,
            approved_by_user_id=request.approved_by_user_id if request else actor.user_id,
            old_values=old_values,
            new_values=_amendable_values(session),
            reason=reason,
        )
        db.session.add(audit)

        if request:
            request.status = ACCESS_USED
            request.used_at = utcnow()
        db.session.flush()

    current_app.logger.info("Closed session %s amended by user %s", session.id, actor.user_id)
    return audit
