"""
Pytest fixtures for Lustre backend tests.

Provides test database setup, staff accounts with API tokens, catalog
factories and the Flask test client.
"""

import itertools
from decimal import Decimal

import pytest

from lustre import create_app
from lustre.extensions import db
from lustre.models import Product, Supplier
from lustre.services import cash_drawer_service, sales_service, staff_service, stock_service
from lustre.services.sales_service import SaleLineInput, SaleRequest


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'COMMISSION_ENABLED': True,
        'COMMISSION_DEFAULT_RATE': '5',
        'COMMISSION_BASIS': 'revenue',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


def _account(username: str, role: str):
    return staff_service.create_staff(
        username=username,
        role=role,
        full_name=username.title(),
        email=f"{username}@lustre.test",
    )


@pytest.fixture(scope='function')
def cashier_account(db_session):
    """(Staff, token) for a shop-floor staff member."""
    return _account("cashier", "staff")


@pytest.fixture(scope='function')
def manager_account(db_session):
    return _account("manager", "manager")


@pytest.fixture(scope='function')
def owner_account(db_session):
    return _account("owner", "owner")


@pytest.fixture(scope='function')
def cashier(cashier_account):
    return cashier_account[0]


@pytest.fixture(scope='function')
def manager(manager_account):
    return manager_account[0]


@pytest.fixture(scope='function')
def owner(owner_account):
    return owner_account[0]


@pytest.fixture(scope='function')
def supplier(db_session):
    """Consignor supplying consignment pieces."""
    supplier = Supplier(name="Hatton Garden Consignments", contact="consign@example.com")
    db_session.add(supplier)
    db_session.commit()
    return supplier


@pytest.fixture(scope='function')
def location(db_session):
    return cash_drawer_service.create_location("Front counter")


@pytest.fixture(scope='function')
def make_product(db_session):
    """
    Factory for catalog products.

    Stock is booked in through stock_service.receive_stock so the on-hand
    balance always matches the movement ledger.
    """
    counter = itertools.count(1)

    def _make(
        name="Gold ring",
        price="100.00",
        cost="40.00",
        tax_rate="20",
        quantity=5,
        track_stock=True,
        supplier=None,
        reorder_level=None,
    ):
        product = Product(
            sku=f"SKU-{next(counter):04d}",
            name=name,
            unit_price=Decimal(price),
            unit_cost=Decimal(cost),
            tax_rate=Decimal(tax_rate),
            track_stock=track_stock,
            quantity_on_hand=0,
            reorder_level=reorder_level,
            is_consignment=supplier is not None,
            consignment_supplier_id=supplier.id if supplier is not None else None,
            is_active=True,
        )
        db_session.add(product)
        db_session.commit()
        if track_stock and quantity:
            stock_service.receive_stock(product.id, quantity)
        return product

    return _make


def sale_request(*lines, payment="card", **kwargs) -> SaleRequest:
    """Build a SaleRequest from (product, quantity) pairs or SaleLineInput values."""
    inputs = []
    for line in lines:
        if isinstance(line, SaleLineInput):
            inputs.append(line)
        else:
            product, quantity = line
            inputs.append(SaleLineInput(product_id=product.id, quantity=quantity))
    return SaleRequest(lines=tuple(inputs), payment=payment, **kwargs)


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def make_request():
    return sale_request


@pytest.fixture(scope='function')
def sell(db_session):
    """Commit a sale: sell(actor, (product, qty), ..., payment=..., approver=...)."""
    def _sell(actor, *lines, approver=None, **kwargs):
        return sales_service.commit_sale(sale_request(*lines, **kwargs), actor=actor, approver=approver)

    return _sell


@pytest.fixture(scope='function')
def cashier_headers(cashier_account):
    return auth_headers(cashier_account[1])


@pytest.fixture(scope='function')
def manager_headers(manager_account):
    return auth_headers(manager_account[1])


@pytest.fixture(scope='function')
def owner_headers(owner_account):
    return auth_headers(owner_account[1])
