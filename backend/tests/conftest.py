"""
Pytest fixtures for fulfillment backend tests.

Provides the test application, per-test database wipe, factories for
branches, products and sales, and helpers that drive a sale through the
coupon gate.
"""

import pytest

from retailops import create_app
from retailops.config import TestConfig
from retailops.extensions import db
from retailops.models import Branch, Product
from retailops.services import coupon_service, lifecycle_service, sales_service


CASHIER_ID = 11
WAREHOUSE_ID = 21
APPROVER_ID = 31


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestConfig)

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    # Clear all data but keep schema
    db.session.rollback()
    meta = db.metadata
    for table in reversed(meta.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()
    db.session.expunge_all()

    yield db.session

    db.session.rollback()


@pytest.fixture(scope='function')
def branch(db_session):
    """Create the main branch."""
    branch = Branch(name="Main Branch", code="MAIN", is_active=True)
    db_session.add(branch)
    db_session.commit()
    return branch


@pytest.fixture(scope='function')
def other_branch(db_session):
    branch = Branch(name="North Branch", code="NORTH", is_active=True)
    db_session.add(branch)
    db_session.commit()
    return branch


@pytest.fixture(scope='function')
def products(db_session, branch):
    """Two products in the main branch."""
    items = [
        Product(branch_id=branch.id, name="Cement 50kg", sku="CEM-50", unit_price_cents=1250, quantity_in_stock=100),
        Product(branch_id=branch.id, name="Rebar 12mm", sku="REB-12", unit_price_cents=890, quantity_in_stock=50),
    ]
    db_session.add_all(items)
    db_session.commit()
    return items


@pytest.fixture(scope='function')
def make_sale(products):
    """Factory: check out a sale, one line per product."""
    def _make(quantities=(2, 3), customer_name="Dana Customer", customer_phone="555-0100"):
        lines = [
            {"product_id": product.id, "quantity": qty}
            for product, qty in zip(products, quantities)
        ]
        return sales_service.create_sale(
            branch_id=products[0].branch_id,
            cashier_id=CASHIER_ID,
            lines=lines,
            customer_name=customer_name,
            customer_phone=customer_phone,
        )
    return _make


@pytest.fixture(scope='function')
def sale(make_sale):
    """A pending sale with two items and an unprinted, unreceived coupon."""
    return make_sale()


def ready_for_picking(sale):
    """Print and receive the active coupon of ``sale``."""
    coupon = coupon_service.get_active_coupon(sale.id)
    coupon_service.mark_printed(coupon.id, CASHIER_ID)
    coupon_service.receive_by_receipt_number(sale.receipt_number, WAREHOUSE_ID)
    return coupon_service.get_active_coupon(sale.id)


def start_picking(sale):
    ready_for_picking(sale)
    result = lifecycle_service.start_picking(sale.id, WAREHOUSE_ID)
    assert result.ok
    return result


def actor_headers(actor_id: int, *roles: str) -> dict:
    """Helper to create gateway identity headers."""
    return {"X-Actor-Id": str(actor_id), "X-Actor-Roles": ",".join(roles)}
