"""
Pytest fixtures for storeledger backend tests.

Provides the test application (in-memory SQLite), a per-test clean
database, a test client and a few ledger fixtures.
"""

import pytest

from storeledger import create_app
from storeledger.extensions import db
from storeledger.services import payable_service
from storeledger.time_utils import business_today


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'LEDGER_RETRY_BACKOFF': 0,
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


@pytest.fixture(scope='function')
def today(app):
    with app.app_context():
        return business_today()


@pytest.fixture(scope='function')
def customer(db_session):
    """Customer with no outstanding balance yet."""
    return payable_service.create_counterparty("customer", "Asha Traders", phone="9845000000")


@pytest.fixture(scope='function')
def supplier(db_session):
    return payable_service.create_counterparty("supplier", "Kaveri Wholesale")


@pytest.fixture(scope='function')
def sales_order(db_session, customer):
    """Sales order SO-1001 for 1000.00 owed by `customer`."""
    return payable_service.create_payable(
        "sales_order", "SO-1001", 100000, counterparty_id=customer.id
    )


@pytest.fixture(scope='function')
def purchase_invoice(db_session, supplier):
    """Purchase invoice PI-2001 for 500.00 owed to `supplier`."""
    return payable_service.create_payable(
        "purchase_invoice", "PI-2001", 50000, counterparty_id=supplier.id
    )
