"""
Pytest fixtures for SareeFlow backend tests.

Provides test database setup, catalog factories, and test client.
"""

import pytest
from sareeflow import create_app
from sareeflow.extensions import db
from sareeflow.models import Product, Customer, Supplier


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
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
def make_product(db_session):
    """Factory: create a product whose stock is also its opening stock."""
    counter = {"n": 0}

    def _make(stock=10, min_stock_level=5, price_cents=10000, **kwargs):
        counter["n"] += 1
        fields = {
            "sku": f"SKU-{counter['n']:03d}",
            "name": f"Saree {counter['n']}",
            "category": "silk",
            "price_cents": price_cents,
            "stock_quantity": stock,
            "opening_stock_quantity": stock,
            "min_stock_level": min_stock_level,
        }
        fields.update(kwargs)
        product = Product(**fields)
        db_session.add(product)
        db_session.commit()
        return product

    return _make


@pytest.fixture(scope='function')
def customer(db_session):
    c = Customer(name="Priya Sharma", phone="9876543210", email="priya@example.com")
    db_session.add(c)
    db_session.commit()
    return c


@pytest.fixture(scope='function')
def supplier(db_session):
    s = Supplier(name="Kanchi Weavers", phone="04427221234")
    db_session.add(s)
    db_session.commit()
    return s
