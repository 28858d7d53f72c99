"""
Pytest fixtures for retailpos backend tests.

Provides an in-memory application, per-test table wipe, test client and
location/item factories.
"""

import pytest

from retailpos import create_app
from retailpos.config import TestConfig
from retailpos.extensions import db
from retailpos.models import Item, Location
from retailpos.services import stock_ledger


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestConfig)

    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.drop_all()


@pytest.fixture(scope='function')
def client(app, db_session):
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
def make_location(db_session):
    counter = {"n": 0}

    def _make(name=None, status="active"):
        counter["n"] += 1
        location = Location(name=name or f"Location {counter['n']}", status=status)
        db_session.add(location)
        db_session.commit()
        return location

    return _make


@pytest.fixture(scope='function')
def make_item(db_session):
    counter = {"n": 0}

    def _make(sku=None, name=None, sell_price_cents=1000, buy_price_cents=400,
              allow_negative_stock=False, status="active", stock=None):
        """Create an item; `stock` maps location_id -> starting quantity."""
        counter["n"] += 1
        item = Item(
            sku=sku or f"SKU-{counter['n']:04d}",
            name=name or f"Item {counter['n']}",
            sell_price_cents=sell_price_cents,
            buy_price_cents=buy_price_cents,
            allow_negative_stock=allow_negative_stock,
            status=status,
            quantity=0,
        )
        db_session.add(item)
        db_session.commit()
        for location_id, quantity in (stock or {}).items():
            stock_ledger.adjust_location_stock(
                item_id=item.id,
                location_id=location_id,
                operation=stock_ledger.OPERATION_SET,
                quantity=quantity,
            )
        return item

    return _make


@pytest.fixture(scope='function')
def store(make_location):
    """Default active location."""
    return make_location("Main Store")
