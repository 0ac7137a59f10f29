"""
Pytest fixtures for hwpos ledger tests.

Every test gets a fresh in-memory database, an admin and a cashier actor,
and factories for items, customers, suppliers and bank accounts.
"""

import pytest

from hwpos import create_app
from hwpos.extensions import db
from hwpos.services import register_service
from hwpos.services.bank_service import create_bank_account
from hwpos.services.customer_service import create_customer
from hwpos.services.inventory_service import create_item, create_supplier
from hwpos.services.user_service import create_user, resolve_actor

TEST_PASSWORD = "Password123!"


@pytest.fixture()
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite://',
        'BCRYPT_LOG_ROUNDS': 4,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def db_session(app):
    """The scoped session bound to the test app."""
    return db.session


@pytest.fixture()
def admin(app):
    """Administrator actor."""
    user = create_user("admin", "Administrator", TEST_PASSWORD, is_admin=True)
    return resolve_actor(user.id)


@pytest.fixture()
def cashier(app):
    """Cashier actor with POS and drawer access."""
    user = create_user(
        "cashier", "Cashier", TEST_PASSWORD,
        capabilities=["ACCESS_POS", "ACCESS_DRAWER", "ACCESS_CUSTOMERS"],
    )
    return resolve_actor(user.id)


@pytest.fixture()
def second_cashier(app):
    user = create_user("cashier2", "Second Cashier", TEST_PASSWORD, capabilities=["ACCESS_POS"])
    return resolve_actor(user.id)


@pytest.fixture()
def open_session(cashier):
    """Drawer opened by the cashier with a 1000.00 float."""
    return register_service.open_session(cashier, 100000)


@pytest.fixture()
def make_item(admin):
    """Factory: make_item("Hammer", stock=10, price_cents=5000)."""
    def _make(name, stock=0, **fields):
        return create_item(admin, name, stock=stock, **fields)
    return _make


@pytest.fixture()
def customer(app):
    return create_customer("Bob Builder", phone="555-0100")


@pytest.fixture()
def bank_account(app):
    return create_bank_account("First Bank", "Store Account", "000123")


@pytest.fixture()
def supplier(app):
    return create_supplier("Acme Tools", contact_person="Wile E.")
