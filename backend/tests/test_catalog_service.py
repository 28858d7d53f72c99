import pytest

from retailpos.extensions import db
from retailpos.models import Item, Location
from retailpos.services import catalog_service, location_service, sales_service, stock_ledger
from retailpos.services.errors import IntegrityConflict, InvalidItem, InvalidLocation, ValidationError


def test_create_item_seeds_opening_stock_through_ledger(db_session, make_location):
    a = make_location("A")
    b = make_location("B")

    item = catalog_service.create_item(
        sku="OPEN-1",
        name="Opening Stock",
        buy_price_cents=100,
        sell_price_cents=250,
        location_quantities={b.id: 4, a.id: 6},
    )

    assert db.session.get(Item, item.id).quantity == 10
    assert stock_ledger.get_location_stock(item.id, a.id).quantity == 6
    assert stock_ledger.get_location_stock(item.id, b.id).quantity == 4
    assert item.quantity == stock_ledger.sum_location_quantities(item.id)


def test_create_item_without_stock(db_session):
    item = catalog_service.create_item(sku="BARE-1", name="Bare", buy_price_cents=0, sell_price_cents=0)
    assert item.quantity == 0
    assert item.is_active


def test_create_item_rolls_back_on_inactive_location(db_session, make_location):
    a = make_location("A")
    closed = make_location("Closed", status="inactive")

    with pytest.raises(InvalidLocation):
        catalog_service.create_item(
            sku="OPEN-2",
            name="Never",
            buy_price_cents=1,
            sell_price_cents=2,
            location_quantities={a.id: 3, closed.id: 1},
        )

    assert db.session.query(Item).filter_by(sku="OPEN-2").count() == 0


def test_duplicate_sku_is_a_conflict(db_session, make_item):
    make_item(sku="DUP-1")
    with pytest.raises(IntegrityConflict):
        catalog_service.create_item(sku="DUP-1", name="Again", buy_price_cents=1, sell_price_cents=1)


@pytest.mark.parametrize("kwargs", [
    {"sku": ""},
    {"name": None},
    {"sell_price_cents": -1},
    {"buy_price_cents": 10**20},
    {"min_stock": 10, "max_stock": 5},
    {"allow_negative_stock": "yes"},
    {"location_quantities": {1: -2}},
    {"location_quantities": {"1": 2}},
    {"location_quantities": [1, 2]},
])
def test_create_item_validation(db_session, kwargs):
    params = {"sku": "VAL-1", "name": "Valid", "buy_price_cents": 1, "sell_price_cents": 2}
    params.update(kwargs)
    with pytest.raises(ValidationError):
        catalog_service.create_item(**params)
    assert db.session.query(Item).count() == 0


def test_deactivated_item_keeps_stock_and_blocks_sales(db_session, store, make_item):
    item = make_item(stock={store.id: 5})

    catalog_service.deactivate_item(item.id)
    catalog_service.deactivate_item(item.id)

    item = db.session.get(Item, item.id)
    assert item.status == "inactive"
    assert item.quantity == 5
    with pytest.raises(InvalidItem):
        sales_service.create_sale(
            location_id=store.id,
            items=[{"item_id": item.id, "quantity": 1}],
            customer_phone="555-0600",
        )
    with pytest.raises(InvalidItem):
        catalog_service.deactivate_item(999999)


def test_location_lifecycle(db_session, make_item):
    location = location_service.create_location("  Pop-up  ", address="Market square")
    assert location.name == "Pop-up"
    assert location.is_active

    with pytest.raises(IntegrityConflict):
        location_service.create_location("Pop-up")

    other = location_service.create_location("Depot")
    with pytest.raises(IntegrityConflict):
        location_service.update_location(other.id, name="Pop-up")

    location = location_service.update_location(location.id, phone="555-0700")
    assert (location.address, location.phone) == ("Market square", "555-0700")

    item = make_item(stock={location.id: 2})
    location_service.deactivate_location(location.id)
    assert db.session.get(Location, location.id).status == "inactive"
    assert stock_ledger.get_location_stock(item.id, location.id).quantity == 2
    with pytest.raises(InvalidLocation):
        stock_ledger.adjust_location_stock(item_id=item.id, location_id=location.id, operation="add", quantity=1)

    location_service.update_location(location.id, status="active")
    stock_ledger.adjust_location_stock(item_id=item.id, location_id=location.id, operation="add", quantity=1)
    assert stock_ledger.get_location_stock(item.id, location.id).quantity == 3


@pytest.mark.parametrize("call", [
    lambda: location_service.create_location(""),
    lambda: location_service.create_location("Ok", phone=5),
    lambda: location_service.update_location(1, status="closed"),
])
def test_location_validation(db_session, call):
    with pytest.raises(ValidationError):
        call()


def test_update_missing_location(db_session):
    with pytest.raises(InvalidLocation):
        location_service.update_location(999999, name="Ghost")
    with pytest.raises(InvalidLocation):
        location_service.deactivate_location(999999)
