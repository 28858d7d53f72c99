import re

import pytest

from retailpos.extensions import db
from retailpos.models import Customer
from retailpos.services import customer_service, sales_service
from retailpos.services.errors import ValidationError


def test_customer_code_format():
    code = customer_service.generate_customer_code()
    assert re.fullmatch(r"CUST[0-9A-Z]{13,}", code)
    assert code != customer_service.generate_customer_code()


def test_find_or_create_provisions_once(db_session):
    customer, created = customer_service.find_or_create_customer(" 555-0300 ")
    db.session.commit()

    assert created
    assert customer.phone == "555-0300"
    assert customer.name == "Customer"
    assert (customer.loyalty_points, customer.total_spent_cents) == (0, 0)

    again, created_again = customer_service.find_or_create_customer("555-0300", name="Someone Else")
    assert not created_again
    assert again.id == customer.id
    assert again.name == "Customer"


def test_phone_required(db_session):
    with pytest.raises(ValidationError):
        customer_service.find_or_create_customer("  ")


def test_loyalty_points_follow_configured_rate(app, db_session):
    assert customer_service.loyalty_points_for(1999) == 19
    assert customer_service.loyalty_points_for(99) == 0
    assert customer_service.loyalty_points_for(0) == 0

    app.config["LOYALTY_POINTS_PER_UNIT"] = "2.5"
    try:
        assert customer_service.loyalty_points_for(1000) == 25
    finally:
        app.config["LOYALTY_POINTS_PER_UNIT"] = "1"


def test_repeat_customer_accumulates(db_session, store, make_item):
    item = make_item(sell_price_cents=1500, stock={store.id: 10})

    for _ in range(2):
        sales_service.create_sale(
            location_id=store.id,
            items=[{"item_id": item.id, "quantity": 1}],
            customer_phone="555-0301",
        )

    customers = db.session.query(Customer).all()
    assert len(customers) == 1
    assert customers[0].total_spent_cents == 3000
    assert customers[0].loyalty_points == 30


def test_reverse_sale_floors_at_zero(db_session):
    customer, _ = customer_service.find_or_create_customer("555-0302")
    customer_service.accrue_sale(customer, 500)

    customer_service.reverse_sale(customer, 2000)

    assert (customer.total_spent_cents, customer.loyalty_points) == (0, 0)
    db.session.rollback()
