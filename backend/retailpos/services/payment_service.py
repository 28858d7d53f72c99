# Overview: Service-layer operations for payment; additional payments, pending settlement and refunds.

"""
Payment Processing Service

DESIGN PRINCIPLES:
- Payments are separate rows (many-to-one with the sale); split and partial
  payments are just more rows.
- Refunds are new rows with a negative amount pointing at the refunded
  payment; the refunded payment is only marked refunded once fully refunded.
- Sale.paid_amount_cents moves only for completed payments and refunds.
- Lock order: sale row first, then the payment row.
"""

from __future__ import annotations

import logging

from sqlalchemy import func

from ..extensions import db
from ..models import Payment
from ..models.sales import (
    PAYMENT_STATUS_COMPLETED,
    PAYMENT_STATUS_PENDING,
    PAYMENT_STATUS_REFUNDED,
    SALE_STATUS_CANCELLED,
    SALE_STATUS_REFUNDED,
)
from retailpos.time_utils import utcnow
from .concurrency import begin_write_transaction, lock_for_update, run_with_retry
from ..validation import MAX_AMOUNT_CENTS
from .errors import InvalidPayment, PaymentNotFound, SaleStateError, ValidationError
from .sales_service import (
    PENDING_PAYMENT_METHODS,
    VALID_PAYMENT_METHODS,
    derive_sale_status,
    get_sale,
    lock_sale,
)

logger = logging.getLogger(__name__)


def _positive_int(value, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError(f"{field} must be a positive integer", details={"field": field})
    if value > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{field} must be <= {MAX_AMOUNT_CENTS}", details={"field": field})
    return value


def _pending_total(sale_id: int) -> int:
    return int(
        db.session.query(func.coalesce(func.sum(Payment.amount_cents), 0))
        .filter(Payment.sale_id == sale_id, Payment.status == PAYMENT_STATUS_PENDING)
        .scalar()
        or 0
    )


def _refunded_total(payment_id: int) -> int:
    return -int(
        db.session.query(func.coalesce(func.sum(Payment.amount_cents), 0))
        .filter(Payment.refunded_payment_id == payment_id)
        .scalar()
        or 0
    )


def _lock_payment_with_sale(payment_id: int):
    """Resolve the payment's sale, then lock sale and payment in that order."""
    sale_id = db.session.query(Payment.sale_id).filter_by(id=payment_id).scalar()
    if sale_id is None:
        raise PaymentNotFound(f"Payment {payment_id} not found", details={"payment_id": payment_id})
    sale = lock_sale(sale_id)
    payment = lock_for_update(db.session.query(Payment).filter_by(id=payment_id)).first()
    return sale, payment


def record_payment(
    *,
    sale_id: int,
    amount_cents: int,
    payment_method: str,
    transaction_reference: str | None = None,
    processed_by: int | None = None,
    notes: str | None = None,
) -> Payment:
    """
    Add a payment to a sale.

    Amounts exceeding the remaining balance (net of pending payments) are
    rejected. Bank transfers are recorded as pending and only count toward
    paid_amount_cents once completed.
    """
    _positive_int(amount_cents, "amount_cents")
    for field, value in (("transaction_reference", transaction_reference), ("notes", notes)):
        if value is not None and not isinstance(value, str):
            raise ValidationError(f"{field} must be a string", details={"field": field})
    if payment_method not in VALID_PAYMENT_METHODS:
        raise InvalidPayment(
            f"Invalid payment method: {payment_method}",
            details={"payment_method": payment_method, "valid": VALID_PAYMENT_METHODS},
        )

    def _op() -> Payment:
        begin_write_transaction()
        sale = lock_sale(sale_id)
        if sale.status in (SALE_STATUS_CANCELLED, SALE_STATUS_REFUNDED):
            raise SaleStateError(
                f"Cannot add payment to a {sale.status} sale",
                details={"sale_id": sale_id, "status": sale.status},
            )

        remaining = sale.total_amount_cents - sale.paid_amount_cents - _pending_total(sale_id)
        if remaining <= 0:
            raise InvalidPayment("Sale has no remaining balance due", details={"sale_id": sale_id})
        if amount_cents > remaining:
            raise InvalidPayment(
                "Payment amount exceeds remaining balance",
                details={"remaining_cents": remaining, "amount_cents": amount_cents},
            )

        pending = payment_method in PENDING_PAYMENT_METHODS
        payment = Payment(
            sale_id=sale_id,
            payment_method=payment_method,
            amount_cents=amount_cents,
            status=PAYMENT_STATUS_PENDING if pending else PAYMENT_STATUS_COMPLETED,
            transaction_reference=transaction_reference,
            processed_by=processed_by,
            notes=notes,
        )
        db.session.add(payment)

        if not pending:
            sale.paid_amount_cents += amount_cents
            sale.status = derive_sale_status(sale.paid_amount_cents, sale.total_amount_cents)

        db.session.commit()
        logger.info(
            "Payment %s on sale %s: %s %s (%s), sale status %s",
            payment.id,
            sale.invoice,
            payment_method,
            amount_cents,
            payment.status,
            sale.status,
        )
        return payment

    return run_with_retry(_op)


def complete_pending_payment(payment_id: int, processed_by: int | None = None) -> Payment:
    """Settle a pending payment and credit it to the sale."""
    def _op() -> Payment:
        begin_write_transaction()
        sale, payment = _lock_payment_with_sale(payment_id)
        if payment.status != PAYMENT_STATUS_PENDING:
            raise SaleStateError(
                f"Payment {payment_id} is {payment.status}, not pending",
                details={"payment_id": payment_id, "status": payment.status},
            )
        if sale.status in (SALE_STATUS_CANCELLED, SALE_STATUS_REFUNDED):
            raise SaleStateError(
                f"Cannot complete payment on a {sale.status} sale",
                details={"sale_id": sale.id, "status": sale.status},
            )

        payment.status = PAYMENT_STATUS_COMPLETED
        if processed_by is not None:
            payment.processed_by = processed_by
        sale.paid_amount_cents += payment.amount_cents
        sale.status = derive_sale_status(sale.paid_amount_cents, sale.total_amount_cents)
        db.session.commit()

        logger.info("Pending payment %s completed on sale %s", payment_id, sale.invoice)
        return payment

    return run_with_retry(_op)


def refund_payment(
    payment_id: int,
    amount_cents: int | None = None,
    reason: str | None = None,
    processed_by: int | None = None,
) -> Payment:
    """
    Refund a completed payment, in full by default.

    Never refunds more than the payment's unrefunded remainder. A sale whose
    paid amount drops to zero through refunds becomes refunded (a cancelled
    sale keeps its status). Returns the refund row.
    """
    if amount_cents is not None:
        _positive_int(amount_cents, "amount_cents")
    if reason is not None and not isinstance(reason, str):
        raise ValidationError("reason must be a string", details={"field": "reason"})

    def _op() -> Payment:
        begin_write_transaction()
        sale, payment = _lock_payment_with_sale(payment_id)
        if payment.amount_cents <= 0 or payment.refunded_payment_id is not None:
            raise InvalidPayment("Refund rows cannot be refunded", details={"payment_id": payment_id})
        if payment.status != PAYMENT_STATUS_COMPLETED:
            raise SaleStateError(
                f"Cannot refund a {payment.status} payment",
                details={"payment_id": payment_id, "status": payment.status},
            )

        refundable = payment.amount_cents - _refunded_total(payment_id)
        amount = refundable if amount_cents is None else amount_cents
        if amount <= 0 or amount > refundable:
            raise InvalidPayment(
                "Refund amount exceeds the refundable remainder",
                details={"refundable_cents": refundable, "amount_cents": amount},
            )

        refund = Payment(
            sale_id=sale.id,
            payment_method=payment.payment_method,
            amount_cents=-amount,
            status=PAYMENT_STATUS_COMPLETED,
            refunded_payment_id=payment.id,
            notes=reason,
            processed_by=processed_by,
        )
        db.session.add(refund)
        if amount == refundable:
            payment.status = PAYMENT_STATUS_REFUNDED

        sale.paid_amount_cents = max(sale.paid_amount_cents - amount, 0)
        if sale.status != SALE_STATUS_CANCELLED:
            if sale.paid_amount_cents == 0:
                sale.status = SALE_STATUS_REFUNDED
                sale.refunded_at = utcnow()
            else:
                sale.status = derive_sale_status(sale.paid_amount_cents, sale.total_amount_cents)

        db.session.commit()
        logger.info(
            "Refunded %s of payment %s on sale %s (sale status %s)",
            amount,
            payment_id,
            sale.invoice,
            sale.status,
        )
        return refund

    return run_with_retry(_op)


def get_sale_payments(sale_id: int) -> list[Payment]:
    get_sale(sale_id)
    return (
        db.session.query(Payment)
        .filter_by(sale_id=sale_id)
        .order_by(Payment.created_at.asc(), Payment.id.asc())
        .all()
    )
