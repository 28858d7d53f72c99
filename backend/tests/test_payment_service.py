import pytest

from retailpos.extensions import db
from retailpos.models import Payment, Sale
from retailpos.services import payment_service, sales_service
from retailpos.services.errors import InvalidPayment, PaymentNotFound, SaleNotFound, SaleStateError


@pytest.fixture
def open_sale(db_session, store, make_item):
    """A 10.00 sale with nothing paid."""
    item = make_item(sell_price_cents=1000, stock={store.id: 10})
    return sales_service.create_sale(
        location_id=store.id,
        items=[{"item_id": item.id, "quantity": 1}],
        customer_phone="555-0200",
    )


def _sale(sale_id):
    return db.session.get(Sale, sale_id)


def test_split_payments_settle_sale(open_sale):
    payment_service.record_payment(sale_id=open_sale.id, amount_cents=400, payment_method="cash")
    assert (_sale(open_sale.id).paid_amount_cents, _sale(open_sale.id).status) == (400, "partial")

    payment_service.record_payment(
        sale_id=open_sale.id, amount_cents=600, payment_method="card", transaction_reference="AUTH-1"
    )
    sale = _sale(open_sale.id)
    assert (sale.paid_amount_cents, sale.status) == (1000, "paid")
    assert [p.amount_cents for p in payment_service.get_sale_payments(open_sale.id)] == [400, 600]


def test_payment_exceeding_balance_rejected(open_sale):
    payment_service.record_payment(sale_id=open_sale.id, amount_cents=900, payment_method="cash")

    with pytest.raises(InvalidPayment):
        payment_service.record_payment(sale_id=open_sale.id, amount_cents=101, payment_method="cash")

    payment_service.record_payment(sale_id=open_sale.id, amount_cents=100, payment_method="cash")
    with pytest.raises(InvalidPayment):
        payment_service.record_payment(sale_id=open_sale.id, amount_cents=1, payment_method="cash")


def test_bank_transfer_is_pending_until_completed(open_sale):
    payment = payment_service.record_payment(sale_id=open_sale.id, amount_cents=1000, payment_method="bank_transfer")

    assert payment.status == "pending"
    assert _sale(open_sale.id).paid_amount_cents == 0
    with pytest.raises(InvalidPayment):
        payment_service.record_payment(sale_id=open_sale.id, amount_cents=1, payment_method="cash")

    payment_service.complete_pending_payment(payment.id, processed_by=4)

    sale = _sale(open_sale.id)
    assert (sale.paid_amount_cents, sale.status) == (1000, "paid")
    with pytest.raises(SaleStateError):
        payment_service.complete_pending_payment(payment.id)


def test_partial_then_full_refund(open_sale):
    payment = payment_service.record_payment(sale_id=open_sale.id, amount_cents=1000, payment_method="card")

    refund = payment_service.refund_payment(payment.id, amount_cents=300, reason="damaged")
    assert refund.amount_cents == -300
    assert refund.refunded_payment_id == payment.id
    sale = _sale(open_sale.id)
    assert (sale.paid_amount_cents, sale.status) == (700, "partial")

    with pytest.raises(InvalidPayment):
        payment_service.refund_payment(payment.id, amount_cents=701)

    payment_service.refund_payment(payment.id)
    sale = _sale(open_sale.id)
    assert (sale.paid_amount_cents, sale.status) == (0, "refunded")
    assert sale.refunded_at is not None
    assert db.session.get(Payment, payment.id).status == "refunded"

    with pytest.raises(SaleStateError):
        payment_service.refund_payment(payment.id)
    with pytest.raises(SaleStateError):
        payment_service.record_payment(sale_id=open_sale.id, amount_cents=100, payment_method="cash")


def test_refund_rows_cannot_be_refunded(open_sale):
    payment = payment_service.record_payment(sale_id=open_sale.id, amount_cents=500, payment_method="cash")
    refund = payment_service.refund_payment(payment.id, amount_cents=100)

    with pytest.raises(InvalidPayment):
        payment_service.refund_payment(refund.id)


def test_refund_on_voided_sale_keeps_cancelled_status(open_sale):
    payment = payment_service.record_payment(sale_id=open_sale.id, amount_cents=1000, payment_method="cash")
    sales_service.void_sale(open_sale.id)

    payment_service.refund_payment(payment.id)

    sale = _sale(open_sale.id)
    assert (sale.paid_amount_cents, sale.status) == (0, "cancelled")


def test_invalid_inputs(open_sale):
    with pytest.raises(InvalidPayment):
        payment_service.record_payment(sale_id=open_sale.id, amount_cents=100, payment_method="iou")
    with pytest.raises(SaleNotFound):
        payment_service.record_payment(sale_id=987654, amount_cents=100, payment_method="cash")
    with pytest.raises(PaymentNotFound):
        payment_service.refund_payment(987654)
    with pytest.raises(SaleNotFound):
        payment_service.get_sale_payments(987654)
