import logging

import pytest
from sqlalchemy.orm import Session

from hwpos.errors import ConflictError, NotFoundError, ValidationError
from hwpos.extensions import db
from hwpos.models import Customer
from hwpos.services import customer_service, sales_service
from hwpos.services.sales_service import CartLine


class TestCustomers:
    def test_create_cleans_fields(self, db_session):
        customer = customer_service.create_customer("  Ann Smith ", email="", phone=" 555-0101 ")

        assert customer.name == "Ann Smith"
        assert customer.email is None
        assert customer.phone == "555-0101"
        assert customer.debt_balance_cents == 0

    def test_name_required(self, db_session):
        with pytest.raises(ValidationError):
            customer_service.create_customer(" ")

    def test_debt_is_not_editable(self, customer):
        with pytest.raises(ValidationError):
            customer_service.update_customer(customer.id, debt_balance_cents=0)
        with pytest.raises(ValidationError):
            customer_service.update_customer(customer.id, loyalty_points=5)

        updated = customer_service.update_customer(customer.id, notes="Pays Fridays")
        assert updated.notes == "Pays Fridays"

    def test_delete(self, db_session):
        customer = customer_service.create_customer("Ann Smith")
        customer_id = customer.id
        customer_service.delete_customer(customer_id)
        assert db_session.get(Customer, customer_id) is None
        with pytest.raises(NotFoundError):
            customer_service.get_customer(customer_id)

    def test_debtors_are_kept(self, cashier, open_session, make_item, customer):
        item = make_item("Ladder", stock=1, price_cents=25000)
        sales_service.record_sale(cashier, [CartLine(item.id, 1)], "credit", customer_id=customer.id)

        assert [c.id for c in customer_service.list_customers(with_debt_only=True)] == [customer.id]
        with pytest.raises(ConflictError):
            customer_service.delete_customer(customer.id)

    def test_customers_with_sales_are_kept(self, cashier, open_session, make_item, customer):
        item = make_item("Ladder", stock=1, price_cents=25000)
        sales_service.record_sale(cashier, [CartLine(item.id, 1)], "credit", customer_id=customer.id)
        sales_service.collect_debt_payment(cashier, customer.id, 25000, "cash")

        with pytest.raises(ConflictError):
            customer_service.delete_customer(customer.id)

    def test_failed_update_rolls_back(self, customer, monkeypatch, caplog):
        def refuse(session):
            raise RuntimeError("database is locked")

        monkeypatch.setattr(Session, "commit", refuse)
        with caplog.at_level(logging.WARNING):
            with pytest.raises(RuntimeError):
                customer_service.update_customer(customer.id, notes="Pays Fridays")
        monkeypatch.undo()

        assert db.session.get(Customer, customer.id).notes is None
        assert "Transaction rolled back: RuntimeError: database is locked" in caplog.text
