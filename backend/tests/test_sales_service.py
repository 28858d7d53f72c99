from decimal import Decimal

import pytest

from retailpos.extensions import db
from retailpos.models import Customer, Item, Payment, Sale, SaleLineItem
from retailpos.services import sales_service, stock_ledger
from retailpos.services.errors import (
    InsufficientStock,
    InvalidDiscount,
    InvalidItem,
    InvalidLocation,
    InvalidPayment,
    SaleNotFound,
    SaleStateError,
    ValidationError,
)


def _qty(item_id, location_id):
    row = stock_ledger.get_location_stock(item_id, location_id)
    return row.quantity if row else 0


def test_create_sale_commits_everything(db_session, store, make_item):
    coffee = make_item(name="Coffee", sell_price_cents=1250, stock={store.id: 10})
    mug = make_item(name="Mug", sell_price_cents=800, stock={store.id: 5})

    sale = sales_service.create_sale(
        location_id=store.id,
        items=[
            {"item_id": coffee.id, "quantity": 2},
            {"item_id": mug.id, "quantity": 1, "unit_price_cents": 700},
        ],
        customer_phone=" 555-0101 ",
        customer_name="Dana",
        tax_rate=Decimal("10"),
        discount_amount_cents=200,
        paid_amount_cents=3500,
        payment_method="card",
        cashier_id=3,
    )

    assert sale.invoice == f"INV-{store.id}-000001"
    assert sale.subtotal_cents == 3200
    assert sale.tax_amount_cents == 320
    assert sale.discount_amount_cents == 200
    assert sale.total_amount_cents == 3320
    assert sale.status == "paid"
    assert [(line.item_name, line.unit_price_cents, line.line_total_cents) for line in sale.lines] == [
        ("Coffee", 1250, 2500),
        ("Mug", 700, 700),
    ]
    assert [(p.amount_cents, p.status, p.payment_method) for p in sale.payments] == [(3500, "completed", "card")]

    assert _qty(coffee.id, store.id) == 8
    assert _qty(mug.id, store.id) == 4
    assert db.session.get(Item, coffee.id).quantity == 8

    customer = db.session.query(Customer).filter_by(phone="555-0101").one()
    assert sale.customer_id == customer.id
    assert customer.name == "Dana"
    assert customer.total_spent_cents == 3320
    assert customer.loyalty_points == 33


def test_failing_line_rolls_back_previous_lines(db_session, store, make_item):
    first = make_item(stock={store.id: 10})
    second = make_item(stock={store.id: 10})
    third = make_item(stock={store.id: 1})

    with pytest.raises(InsufficientStock) as exc:
        sales_service.create_sale(
            location_id=store.id,
            items=[
                {"item_id": first.id, "quantity": 3},
                {"item_id": second.id, "quantity": 4},
                {"item_id": third.id, "quantity": 2},
            ],
            customer_phone="555-0102",
        )

    assert exc.value.item_id == third.id
    assert _qty(first.id, store.id) == 10
    assert _qty(second.id, store.id) == 10
    assert _qty(third.id, store.id) == 1
    assert db.session.get(Item, first.id).quantity == 10
    assert db.session.query(Sale).count() == 0
    assert db.session.query(SaleLineItem).count() == 0
    assert db.session.query(Customer).count() == 0


def test_duplicate_lines_are_checked_against_combined_quantity(db_session, store, make_item):
    item = make_item(stock={store.id: 5})

    with pytest.raises(InsufficientStock):
        sales_service.create_sale(
            location_id=store.id,
            items=[{"item_id": item.id, "quantity": 3}, {"item_id": item.id, "quantity": 3}],
            customer_phone="555-0103",
        )

    sale = sales_service.create_sale(
        location_id=store.id,
        items=[{"item_id": item.id, "quantity": 2}, {"item_id": item.id, "quantity": 3}],
        customer_phone="555-0103",
    )
    assert len(sale.lines) == 2
    assert _qty(item.id, store.id) == 0


@pytest.mark.parametrize("paid,expected", [(0, "unpaid"), (500, "partial"), (1000, "paid"), (1500, "paid")])
def test_status_derivation(db_session, store, make_item, paid, expected):
    item = make_item(sell_price_cents=1000, stock={store.id: 3})

    sale = sales_service.create_sale(
        location_id=store.id,
        items=[{"item_id": item.id, "quantity": 1}],
        customer_phone="555-0104",
        paid_amount_cents=paid,
    )

    assert sale.status == expected
    assert db.session.query(Payment).count() == (1 if paid else 0)


def test_derive_sale_status_overrides():
    assert sales_service.derive_sale_status(0, 0) == "paid"
    assert sales_service.derive_sale_status(100, 100, cancelled=True) == "cancelled"
    assert sales_service.derive_sale_status(0, 100, refunded=True) == "refunded"


def test_tax_rounds_half_up():
    assert sales_service.compute_tax_cents(105, Decimal("10")) == 11
    assert sales_service.compute_tax_cents(104, Decimal("10")) == 10
    assert sales_service.compute_tax_cents(999, Decimal("0")) == 0


def test_discount_larger_than_payable_rejected(db_session, store, make_item):
    item = make_item(sell_price_cents=1000, stock={store.id: 3})

    with pytest.raises(InvalidDiscount):
        sales_service.create_sale(
            location_id=store.id,
            items=[{"item_id": item.id, "quantity": 1}],
            customer_phone="555-0105",
            tax_rate=5,
            discount_amount_cents=1051,
        )

    assert _qty(item.id, store.id) == 3
    assert db.session.query(Sale).count() == 0

    sale = sales_service.create_sale(
        location_id=store.id,
        items=[{"item_id": item.id, "quantity": 1}],
        customer_phone="555-0105",
        tax_rate=5,
        discount_amount_cents=1050,
    )
    assert sale.total_amount_cents == 0
    assert sale.status == "paid"


@pytest.mark.parametrize("kwargs", [
    {"items": []},
    {"items": [{"item_id": 1, "quantity": 0}]},
    {"items": [{"item_id": 1, "quantity": 1, "unit_price_cents": -5}]},
    {"customer_phone": "   "},
    {"tax_rate": 101},
    {"discount_amount_cents": -1},
    {"paid_amount_cents": -1},
    {"paid_amount_cents": 10**20},
    {"items": [{"item_id": 1, "quantity": 10**20}]},
    {"customer_name": 123},
    {"notes": {"a": 1}},
])
def test_validation_before_any_write(db_session, store, kwargs):
    params = {
        "location_id": store.id,
        "items": [{"item_id": 1, "quantity": 1}],
        "customer_phone": "555-0106",
    }
    params.update(kwargs)
    with pytest.raises(ValidationError):
        sales_service.create_sale(**params)


def test_unknown_payment_method_rejected(db_session, store, make_item):
    item = make_item(stock={store.id: 1})
    with pytest.raises(InvalidPayment):
        sales_service.create_sale(
            location_id=store.id,
            items=[{"item_id": item.id, "quantity": 1}],
            customer_phone="555-0107",
            payment_method="barter",
        )


def test_inactive_location_or_item_rejected(db_session, make_location, make_item):
    open_store = make_location("Open")
    closed = make_location("Closed", status="inactive")
    item = make_item(stock={open_store.id: 5})
    retired = make_item(status="inactive")

    with pytest.raises(InvalidLocation):
        sales_service.create_sale(
            location_id=closed.id, items=[{"item_id": item.id, "quantity": 1}], customer_phone="555-0108"
        )
    with pytest.raises(InvalidItem):
        sales_service.create_sale(
            location_id=open_store.id,
            items=[{"item_id": item.id, "quantity": 1}, {"item_id": retired.id, "quantity": 1}],
            customer_phone="555-0108",
        )
    assert _qty(item.id, open_store.id) == 5


def test_invoice_numbers_are_sequential_per_location(db_session, make_location, make_item):
    a = make_location("A")
    b = make_location("B")
    item = make_item(stock={a.id: 10, b.id: 10})

    invoices = [
        sales_service.create_sale(
            location_id=loc.id, items=[{"item_id": item.id, "quantity": 1}], customer_phone="555-0109"
        ).invoice
        for loc in (a, a, b)
    ]

    assert invoices == [f"INV-{a.id}-000001", f"INV-{a.id}-000002", f"INV-{b.id}-000001"]


def test_update_payment_rederives_status_without_touching_stock(db_session, store, make_item):
    item = make_item(sell_price_cents=1000, stock={store.id: 5})
    sale = sales_service.create_sale(
        location_id=store.id, items=[{"item_id": item.id, "quantity": 2}], customer_phone="555-0110"
    )
    assert sale.status == "unpaid"

    sale = sales_service.update_payment(sale.id, 1500)
    assert (sale.paid_amount_cents, sale.status) == (1500, "partial")

    sale = sales_service.update_payment(sale.id, 2000)
    assert sale.status == "paid"
    assert sale.total_amount_cents == 2000
    assert _qty(item.id, store.id) == 3

    with pytest.raises(ValidationError):
        sales_service.update_payment(sale.id, -1)
    with pytest.raises(SaleNotFound):
        sales_service.update_payment(424242, 10)


def test_void_restocks_and_reverses_customer(db_session, store, make_item):
    a = make_item(sell_price_cents=500, stock={store.id: 10})
    b = make_item(sell_price_cents=250, stock={store.id: 10})
    sale = sales_service.create_sale(
        location_id=store.id,
        items=[{"item_id": b.id, "quantity": 2}, {"item_id": a.id, "quantity": 3}, {"item_id": b.id, "quantity": 1}],
        customer_phone="555-0111",
        paid_amount_cents=2250,
    )
    customer = db.session.get(Customer, sale.customer_id)
    assert customer.loyalty_points == 22

    voided = sales_service.void_sale(sale.id, voided_by=9, reason="customer changed mind")

    assert voided.status == "cancelled"
    assert voided.voided_by == 9
    assert voided.voided_at is not None
    assert _qty(a.id, store.id) == 10
    assert _qty(b.id, store.id) == 10
    assert db.session.get(Item, b.id).quantity == 10
    customer = db.session.get(Customer, sale.customer_id)
    assert (customer.total_spent_cents, customer.loyalty_points) == (0, 0)

    with pytest.raises(SaleStateError):
        sales_service.void_sale(sale.id)
    with pytest.raises(SaleStateError):
        sales_service.update_payment(sale.id, 0)
    assert _qty(a.id, store.id) == 10


def test_get_sale_lookups(db_session, store, make_item):
    item = make_item(stock={store.id: 1})
    sale = sales_service.create_sale(
        location_id=store.id, items=[{"item_id": item.id, "quantity": 1}], customer_phone="555-0112"
    )

    assert sales_service.get_sale(sale.id).invoice == sale.invoice
    assert sales_service.get_sale_by_invoice(sale.invoice).id == sale.id
    with pytest.raises(SaleNotFound):
        sales_service.get_sale_by_invoice("INV-0-000000")
