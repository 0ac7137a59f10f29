import pytest

from hwpos.errors import AppendOnlyViolationError, NegativeStockError, NotFoundError, ValidationError
from hwpos.extensions import db
from hwpos.models import Item, ItemLog, MoneyTransaction
from hwpos.models.inventory import LOG_ADJUSTMENT, LOG_RECEIVED
from hwpos.models.money import CATEGORY_DEPOSIT, CATEGORY_OPENING_BALANCE
from hwpos.references import EntityKind, EntityRef, resolve_reference
from hwpos.services import audit_service, ledger_service
from hwpos.services.concurrency import atomic


class TestStockPrimitive:
    def test_returns_before_and_after(self, make_item):
        item = make_item("Hammer", stock=5)

        change = ledger_service.adjust_stock(item.id, -2)
        db.session.commit()

        assert (change.old_stock, change.new_stock, change.delta) == (5, 3, -2)
        assert db.session.get(Item, item.id).stock == 3

    def test_refuses_negative_stock(self, make_item):
        item = make_item("Hammer", stock=5)

        with pytest.raises(NegativeStockError) as exc_info:
            ledger_service.adjust_stock(item.id, -6)
        db.session.rollback()

        assert exc_info.value.required == 6
        assert exc_info.value.available == 5
        assert db.session.get(Item, item.id).stock == 5

    def test_unknown_item(self, app):
        with pytest.raises(NotFoundError):
            ledger_service.adjust_stock(999, 1)

    def test_primitive_writes_no_log(self, make_item):
        item = make_item("Hammer")
        ledger_service.adjust_stock(item.id, 3)
        db.session.commit()
        assert db.session.query(ItemLog).filter_by(item_id=item.id).count() == 0


class TestSessionAndDebtPrimitives:
    def test_expected_cash_tracks_totals(self, open_session):
        change = ledger_service.adjust_session_totals(open_session.id, cash_sales_delta=500, debt_repaid_delta=200)
        db.session.commit()

        assert change.old_cash_sales_cents == 0
        assert change.new_cash_sales_cents == 500
        assert change.new_debt_repaid_cents == 200
        assert change.expected_cash_cents == 100000 + 500 + 200

    def test_debt_cannot_go_negative(self, customer):
        ledger_service.adjust_customer_debt(customer.id, 1000)
        with pytest.raises(ValidationError):
            ledger_service.adjust_customer_debt(customer.id, -1001)
        change = ledger_service.adjust_customer_debt(customer.id, -1000)
        assert (change.old_balance_cents, change.new_balance_cents) == (1000, 0)

    def test_item_cost(self, make_item):
        item = make_item("Hammer", cost_cents=100)
        change = ledger_service.set_item_cost(item.id, 250)
        assert (change.old_cost_cents, change.new_cost_cents) == (100, 250)
        with pytest.raises(ValidationError):
            ledger_service.set_item_cost(item.id, -1)


class TestAtomic:
    def test_rolls_back_everything_on_error(self, make_item):
        item = make_item("Hammer", stock=5)

        with pytest.raises(RuntimeError):
            with atomic():
                ledger_service.adjust_stock(item.id, -3)
                audit_service.log_item_change(
                    item_id=item.id, type=LOG_ADJUSTMENT, quantity_change=-3, old_stock=5, new_stock=2,
                )
                raise RuntimeError("boom")

        assert db.session.get(Item, item.id).stock == 5
        assert db.session.query(ItemLog).filter_by(type=LOG_ADJUSTMENT).count() == 0


class TestAuditWriter:
    def test_item_log_records_reference(self, make_item):
        item = make_item("Hammer", stock=4)

        log = db.session.query(ItemLog).filter_by(item_id=item.id).one()

        assert log.type == LOG_RECEIVED
        assert log.description == "Initial stock"
        assert log.reference == EntityRef(EntityKind.ITEM, item.id)
        assert resolve_reference(log.reference).id == item.id

    def test_rejects_unknown_log_type(self, make_item):
        item = make_item("Hammer")
        with pytest.raises(ValidationError):
            audit_service.log_item_change(
                item_id=item.id, type="teleported", quantity_change=1, old_stock=0, new_stock=1,
            )

    def test_rejects_non_positive_money(self, open_session):
        with pytest.raises(ValidationError):
            audit_service.log_cash_in(open_session.id, 0, CATEGORY_DEPOSIT)

    def test_cash_and_bank_sums(self, open_session, bank_account):
        audit_service.log_cash_out(open_session.id, 2500, CATEGORY_DEPOSIT)
        audit_service.log_bank_in(bank_account.id, 2500, CATEGORY_DEPOSIT)
        db.session.commit()

        assert audit_service.cash_drawer_net(open_session.id) == 100000 - 2500
        assert audit_service.bank_account_balance(bank_account.id) == 2500
        assert [tx.category for tx in audit_service.session_transactions(open_session.id)] == [
            CATEGORY_OPENING_BALANCE,
            CATEGORY_DEPOSIT,
        ]

    def test_item_history_newest_first(self, make_item):
        item = make_item("Hammer", stock=5)
        ledger_service.adjust_stock(item.id, -1)
        audit_service.log_item_change(
            item_id=item.id, type=LOG_ADJUSTMENT, quantity_change=-1, old_stock=5, new_stock=4,
        )
        db.session.commit()

        history = audit_service.item_history(item.id)
        assert [log.type for log in history] == [LOG_ADJUSTMENT, LOG_RECEIVED]
        assert len(audit_service.item_history(item.id, limit=1)) == 1


class TestAppendOnly:
    def test_item_log_cannot_be_updated(self, make_item):
        item = make_item("Hammer", stock=1)
        log = db.session.query(ItemLog).filter_by(item_id=item.id).one()

        log.description = "rewritten"
        with pytest.raises(AppendOnlyViolationError):
            db.session.commit()
        db.session.rollback()

        assert db.session.query(ItemLog).filter_by(item_id=item.id).one().description == "Initial stock"

    def test_item_log_cannot_be_deleted(self, make_item):
        item = make_item("Hammer", stock=1)
        log = db.session.query(ItemLog).filter_by(item_id=item.id).one()

        db.session.delete(log)
        with pytest.raises(AppendOnlyViolationError):
            db.session.flush()
        db.session.rollback()

    def test_money_transaction_cannot_be_updated(self, open_session):
        tx = db.session.query(MoneyTransaction).filter_by(cash_register_session_id=open_session.id).one()

        tx.amount_cents = 1
        with pytest.raises(AppendOnlyViolationError):
            db.session.flush()
        db.session.rollback()


class TestReferences:
    def test_from_columns(self):
        assert EntityRef.from_columns(None, None) is None
        assert EntityRef.from_columns("sale", 7) == EntityRef(EntityKind.SALE, 7)

    def test_unknown_kind(self):
        with pytest.raises(ValueError):
            EntityRef.from_columns("spaceship", 1)

    def test_of_requires_mapped_entity(self, app):
        with pytest.raises(TypeError):
            EntityRef.of(object())

    def test_resolve_missing_row(self, app):
        assert resolve_reference(EntityRef(EntityKind.SALE, 404)) is None
        assert resolve_reference(None) is None
