import logging

import pytest

from hwpos.errors import InvalidStateError, NoOpenSessionError, PermissionDeniedError, ValidationError
from hwpos.extensions import db
from hwpos.models import CashRegisterSession, Customer, Item, ItemLog, MoneyTransaction, Sale
from hwpos.models.inventory import LOG_REVERSED
from hwpos.models.money import CATEGORY_REFUND
from hwpos.services import audit_service, register_service, sales_service
from hwpos.services.sales_service import CartLine, ReturnLine


@pytest.fixture()
def drill(make_item):
    return make_item("Drill", stock=10, price_cents=5000)


@pytest.fixture()
def closed_cash_sale(cashier, open_session, drill):
    """3 drills sold for cash in a session that has since been closed."""
    sale = sales_service.record_sale(cashier, [CartLine(drill.id, 3)], "cash", amount_paid_cents=15000)
    register_service.close_session(cashier, open_session.id, 115000)
    return sale


def _line(sale):
    return db.session.get(Sale, sale.id).items[0]


class TestReturnSale:
    def test_partial_return(self, admin, closed_cash_sale, drill):
        refund = sales_service.return_sale(admin, closed_cash_sale.id, [ReturnLine(_line(closed_cash_sale).id, 1)], "Faulty chuck")

        assert refund.parent_sale_id == closed_cash_sale.id
        assert refund.status == "refunded"
        assert refund.total_cents == -5000
        assert refund.notes == "Faulty chuck"
        assert refund.refund_source is None
        assert [(i.quantity, i.subtotal_cents) for i in refund.items] == [(-1, -5000)]
        assert db.session.get(Item, drill.id).stock == 8

        log = db.session.query(ItemLog).filter_by(item_id=drill.id, type=LOG_REVERSED).one()
        assert log.quantity_change == 1
        assert log.description == f"Returned from Sale #{closed_cash_sale.id}"

        assert db.session.get(Sale, closed_cash_sale.id).status == "completed"
        # Closed session totals are untouched
        session = db.session.get(CashRegisterSession, closed_cash_sale.cash_register_session_id)
        assert session.cash_sales_cents == 15000

    def test_full_return_marks_parent_refunded(self, admin, closed_cash_sale):
        line_id = _line(closed_cash_sale).id
        sales_service.return_sale(admin, closed_cash_sale.id, [ReturnLine(line_id, 1)], "Faulty")
        sales_service.return_sale(admin, closed_cash_sale.id, [ReturnLine(line_id, 2)], "Faulty")

        assert db.session.get(Sale, closed_cash_sale.id).status == "refunded"
        with pytest.raises(InvalidStateError):
            sales_service.return_sale(admin, closed_cash_sale.id, [ReturnLine(line_id, 1)], "Again")

    def test_cannot_return_more_than_remaining(self, admin, closed_cash_sale, drill):
        line_id = _line(closed_cash_sale).id
        sales_service.return_sale(admin, closed_cash_sale.id, [ReturnLine(line_id, 2)], "Faulty")
        with pytest.raises(ValidationError):
            sales_service.return_sale(admin, closed_cash_sale.id, [ReturnLine(line_id, 2)], "Faulty")
        assert db.session.get(Item, drill.id).stock == 9

    def test_reason_required(self, admin, closed_cash_sale):
        with pytest.raises(ValidationError):
            sales_service.return_sale(admin, closed_cash_sale.id, [ReturnLine(_line(closed_cash_sale).id, 1)], "")

    def test_open_session_sales_cannot_be_returned(self, admin, cashier, open_session, drill):
        sale = sales_service.record_sale(cashier, [CartLine(drill.id, 1)], "cash", amount_paid_cents=5000)
        with pytest.raises(InvalidStateError):
            sales_service.return_sale(admin, sale.id, [ReturnLine(_line(sale).id, 1)], "Changed mind")

    def test_refunds_cannot_be_returned(self, admin, closed_cash_sale):
        refund = sales_service.return_sale(admin, closed_cash_sale.id, [ReturnLine(_line(closed_cash_sale).id, 1)], "Faulty")
        with pytest.raises(InvalidStateError):
            sales_service.return_sale(admin, refund.id, [ReturnLine(refund.items[0].id, 1)], "Faulty")

    def test_cashier_needs_approved_access(self, admin, cashier, closed_cash_sale):
        line_id = _line(closed_cash_sale).id
        with pytest.raises(PermissionDeniedError):
            sales_service.return_sale(cashier, closed_cash_sale.id, [ReturnLine(line_id, 1)], "Faulty")

        request = register_service.request_session_access(cashier, closed_cash_sale.cash_register_session_id, "Return")
        register_service.approve_access_request(admin, request.id)

        refund = sales_service.return_sale(cashier, closed_cash_sale.id, [ReturnLine(line_id, 1)], "Faulty")
        assert refund.user_id == cashier.user_id


class TestRefundSource:
    def test_cash_refund_comes_out_of_current_drawer(self, admin, closed_cash_sale):
        refund = sales_service.return_sale(admin, closed_cash_sale.id, [ReturnLine(_line(closed_cash_sale).id, 1)], "Faulty")
        drawer = register_service.open_session(admin, 20000)

        refund = sales_service.set_refund_source(admin, refund.id, "cash")

        assert refund.refund_source == "cash"
        session = db.session.get(CashRegisterSession, drawer.id)
        assert session.cash_sales_cents == -5000
        assert session.expected_cash_cents == 15000
        tx = db.session.query(MoneyTransaction).filter_by(category=CATEGORY_REFUND).one()
        assert (tx.type, tx.amount_cents, tx.source_id) == ("out", 5000, drawer.id)

        with pytest.raises(InvalidStateError):
            sales_service.set_refund_source(admin, refund.id, "cash")

    def test_cash_refund_needs_open_drawer(self, admin, closed_cash_sale):
        refund = sales_service.return_sale(admin, closed_cash_sale.id, [ReturnLine(_line(closed_cash_sale).id, 1)], "Faulty")
        with pytest.raises(NoOpenSessionError):
            sales_service.set_refund_source(admin, refund.id, "cash")
        assert db.session.get(Sale, refund.id).refund_source is None

    def test_bank_refund(self, admin, closed_cash_sale, bank_account):
        refund = sales_service.return_sale(admin, closed_cash_sale.id, [ReturnLine(_line(closed_cash_sale).id, 2)], "Faulty")

        refund = sales_service.set_refund_source(admin, refund.id, "bank", bank_account_id=bank_account.id)

        assert refund.refund_source == "bank"
        assert refund.refund_bank_account_id == bank_account.id
        assert audit_service.bank_account_balance(bank_account.id) == -10000

    def test_only_refunds_take_a_source(self, admin, closed_cash_sale):
        with pytest.raises(InvalidStateError):
            sales_service.set_refund_source(admin, closed_cash_sale.id, "cash")

    def test_source_must_be_cash_or_bank(self, admin, closed_cash_sale):
        refund = sales_service.return_sale(admin, closed_cash_sale.id, [ReturnLine(_line(closed_cash_sale).id, 1)], "Faulty")
        with pytest.raises(ValidationError):
            sales_service.set_refund_source(admin, refund.id, "credit")


class TestCreditReturns:
    def test_credit_return_reduces_debt(self, admin, cashier, open_session, drill, customer):
        sale = sales_service.record_sale(cashier, [CartLine(drill.id, 2)], "credit", customer_id=customer.id)
        register_service.close_session(cashier, open_session.id, 100000)

        refund = sales_service.return_sale(admin, sale.id, [ReturnLine(_line(sale).id, 1)], "Wrong size")

        assert refund.refund_source == "credit"
        assert db.session.get(Customer, customer.id).debt_balance_cents == 5000
        with pytest.raises(InvalidStateError):
            sales_service.set_refund_source(admin, refund.id, "cash")

    def test_credit_return_never_makes_debt_negative(self, admin, cashier, open_session, drill, customer, caplog):
        sale = sales_service.record_sale(cashier, [CartLine(drill.id, 2)], "credit", customer_id=customer.id)
        sales_service.collect_debt_payment(cashier, customer.id, 8000, "cash")
        register_service.close_session(cashier, open_session.id, 108000)

        with caplog.at_level(logging.WARNING):
            refund = sales_service.return_sale(admin, sale.id, [ReturnLine(_line(sale).id, 2)], "Wrong size")

        assert db.session.get(Customer, customer.id).debt_balance_cents == 0
        assert refund.notes == "Wrong size; 8000 cents above outstanding debt not credited"
        assert "8000 cents exceed the debt" in caplog.text

    def test_fully_credited_return_keeps_reason(self, admin, cashier, open_session, drill, customer):
        sale = sales_service.record_sale(cashier, [CartLine(drill.id, 2)], "credit", customer_id=customer.id)
        register_service.close_session(cashier, open_session.id, 100000)

        refund = sales_service.return_sale(admin, sale.id, [ReturnLine(_line(sale).id, 2)], "Wrong size")

        assert refund.notes == "Wrong size"
        assert db.session.get(Customer, customer.id).debt_balance_cents == 0
