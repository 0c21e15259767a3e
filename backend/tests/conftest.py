"""
Pytest fixtures for the parts ledger backend tests.

Provides test database setup, catalog fixtures, the two-lot FIFO scenario
and the Flask test client.
"""

from datetime import datetime
from types import SimpleNamespace

import pytest
from partsledger import create_app
from partsledger.extensions import db
from partsledger.models import Product, Supplier
from partsledger.services import intake_service


DAY_1 = datetime(2024, 1, 1, 9, 0, 0)
DAY_2 = datetime(2024, 1, 2, 9, 0, 0)


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'LEDGER_RETRY_BACKOFF': 0.0,
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
        db.session.rollback()
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def supplier(db_session):
    """Create an active supplier."""
    s = Supplier(name="Moto Repuestos SAC", code="MOTO")
    db_session.add(s)
    db_session.commit()
    return s


@pytest.fixture(scope='function')
def product(db_session):
    """Create a product with no lots."""
    p = Product(
        sku="BRK-PAD-01",
        name="Brake pads front",
        brand="Brembo",
        sale_price_cents=1500,
        min_sale_price_cents=600,
        reorder_threshold=5,
    )
    db_session.add(p)
    db_session.commit()
    return p


@pytest.fixture(scope='function')
def other_product(db_session):
    p = Product(
        sku="OIL-10W40",
        name="Engine oil 10W-40 1L",
        sale_price_cents=3000,
        min_sale_price_cents=0,
        reorder_threshold=2,
    )
    db_session.add(p)
    db_session.commit()
    return p


def receive(supplier, product, quantity, unit_cost_cents, received_at, lot_number=None):
    """Post a one-line intake and return its lot."""
    intake = intake_service.create_intake(
        supplier_id=supplier.id,
        received_at=received_at,
        lines=[{
            "product_id": product.id,
            "quantity": quantity,
            "unit_cost_cents": unit_cost_cents,
            "lot_number": lot_number,
        }],
    )
    return intake.lots[0]


@pytest.fixture(scope='function')
def two_lots(db_session, supplier, product):
    """
    Product P with L1 (10 @ 500, day 1) and L2 (10 @ 700, day 2).

    Stock 20, effective unit cost 500.
    """
    l1 = receive(supplier, product, 10, 500, DAY_1, "L1")
    l2 = receive(supplier, product, 10, 700, DAY_2, "L2")
    return SimpleNamespace(product=product, l1=l1, l2=l2, supplier=supplier)


@pytest.fixture(scope='function')
def single_lot(db_session, supplier, product):
    """Product P with one lot of 10 units @ 500."""
    lot = receive(supplier, product, 10, 500, DAY_1, "L1")
    return SimpleNamespace(product=product, lot=lot, supplier=supplier)


def operator_headers(name: str = "tester") -> dict:
    """Helper to create operator attribution headers."""
    return {'X-Operator': name}
