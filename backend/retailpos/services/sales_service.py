# Overview: Service-layer operations for sales; atomic checkout, payment updates and voids.

"""
Sale-commit coordinator.

INVARIANTS:
- A sale either commits completely (stock decremented at the sale location,
  invoice + lines + payment inserted, customer aggregates accrued) or leaves
  no trace. Any failure inside the transaction rolls everything back.
- total_amount_cents = subtotal_cents + tax_amount_cents - discount_amount_cents,
  computed once at checkout and never recomputed.
- status is derived from paid vs total; cancelled and refunded override it.

LOCK ORDER:
- create_sale: item rows ascending by item_id (each with its stock row), then
  the customer row.
- void_sale: the sale row, then item rows ascending, then the customer row.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from flask import current_app

from ..extensions import db
from ..models import Customer, Payment, Sale, SaleLineItem
from ..models.sales import (
    PAYMENT_STATUS_COMPLETED,
    SALE_STATUS_CANCELLED,
    SALE_STATUS_PAID,
    SALE_STATUS_PARTIAL,
    SALE_STATUS_REFUNDED,
    SALE_STATUS_UNPAID,
)
from retailpos.time_utils import today, utcnow
from .concurrency import begin_write_transaction, lock_for_update, run_with_retry
from .customer_service import accrue_sale, find_or_create_customer, normalize_phone, reverse_sale
from .document_service import DOCUMENT_TYPE_INVOICE, next_document_number
from ..validation import MAX_AMOUNT_CENTS, MAX_PRICE_CENTS, MAX_QUANTITY
from .errors import InvalidDiscount, InvalidPayment, SaleNotFound, SaleStateError, ValidationError
from .stock_ledger import load_item, release_to_stock, require_location, reserve_and_decrement

logger = logging.getLogger(__name__)


# =============================================================================
# PAYMENT METHODS (CONSTANTS)
# =============================================================================

PAYMENT_METHOD_CASH = "cash"
PAYMENT_METHOD_CARD = "card"
PAYMENT_METHOD_CREDIT_CARD = "credit_card"
PAYMENT_METHOD_DEBIT_CARD = "debit_card"
PAYMENT_METHOD_DIGITAL = "digital"
PAYMENT_METHOD_MOBILE = "mobile_payment"
PAYMENT_METHOD_TRANSFER = "transfer"
PAYMENT_METHOD_BANK_TRANSFER = "bank_transfer"

VALID_PAYMENT_METHODS = [
    PAYMENT_METHOD_CASH,
    PAYMENT_METHOD_CARD,
    PAYMENT_METHOD_CREDIT_CARD,
    PAYMENT_METHOD_DEBIT_CARD,
    PAYMENT_METHOD_DIGITAL,
    PAYMENT_METHOD_MOBILE,
    PAYMENT_METHOD_TRANSFER,
    PAYMENT_METHOD_BANK_TRANSFER,
]

# Settled out of band; recorded as pending and not counted as paid until completed
PENDING_PAYMENT_METHODS = {PAYMENT_METHOD_TRANSFER, PAYMENT_METHOD_BANK_TRANSFER}


@dataclass(frozen=True)
class BasketLine:
    item_id: int
    quantity: int
    unit_price_cents: int | None = None


def derive_sale_status(
    paid_amount_cents: int,
    total_amount_cents: int,
    *,
    cancelled: bool = False,
    refunded: bool = False,
) -> str:
    """
    paid >= total -> paid, paid > 0 -> partial, otherwise unpaid.

    Cancelled and refunded override the amounts. A zero-total sale counts as
    paid.
    """
    if cancelled:
        return SALE_STATUS_CANCELLED
    if refunded:
        return SALE_STATUS_REFUNDED
    if paid_amount_cents >= total_amount_cents:
        return SALE_STATUS_PAID
    if paid_amount_cents > 0:
        return SALE_STATUS_PARTIAL
    return SALE_STATUS_UNPAID


def compute_tax_cents(subtotal_cents: int, tax_rate: Decimal) -> int:
    """Round half up to the cent."""
    tax = Decimal(subtotal_cents) * Decimal(tax_rate) / Decimal(100)
    return int(tax.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def compute_totals(subtotal_cents: int, tax_rate: Decimal, discount_amount_cents: int) -> tuple[int, int]:
    """Return (tax_amount_cents, total_amount_cents); a discount larger than subtotal+tax is rejected."""
    tax_amount_cents = compute_tax_cents(subtotal_cents, tax_rate)
    gross = subtotal_cents + tax_amount_cents
    if discount_amount_cents > gross:
        raise InvalidDiscount(
            "Discount exceeds subtotal plus tax",
            details={
                "discount_amount_cents": discount_amount_cents,
                "subtotal_cents": subtotal_cents,
                "tax_amount_cents": tax_amount_cents,
            },
        )
    return tax_amount_cents, gross - discount_amount_cents


def _non_negative_int(value, field: str, maximum: int = MAX_AMOUNT_CENTS) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationError(f"{field} must be a non-negative integer", details={"field": field})
    if value > maximum:
        raise ValidationError(f"{field} must be <= {maximum}", details={"field": field, "maximum": maximum})
    return value


def _optional_text(value, field: str) -> str | None:
    if value is not None and not isinstance(value, str):
        raise ValidationError(f"{field} must be a string", details={"field": field})
    return value


def _parse_tax_rate(value) -> Decimal:
    try:
        rate = Decimal(str(value if value is not None else 0))
    except (InvalidOperation, ValueError):
        raise ValidationError("tax_rate must be a number", details={"field": "tax_rate"})
    if not rate.is_finite() or rate < 0 or rate > 100:
        raise ValidationError("tax_rate must be between 0 and 100", details={"field": "tax_rate"})
    return rate


def parse_basket(items) -> list[BasketLine]:
    if not items:
        raise ValidationError("Sale must contain at least one item", details={"field": "items"})

    lines = []
    for index, entry in enumerate(items):
        if not isinstance(entry, dict):
            raise ValidationError(f"items[{index}] must be an object", details={"index": index})
        item_id = entry.get("item_id")
        quantity = entry.get("quantity")
        unit_price = entry.get("unit_price_cents")

        if isinstance(item_id, bool) or not isinstance(item_id, int) or item_id <= 0:
            raise ValidationError(f"items[{index}].item_id must be a positive integer", details={"index": index})
        if isinstance(quantity, bool) or not isinstance(quantity, int) or not 0 < quantity <= MAX_QUANTITY:
            raise ValidationError(f"items[{index}].quantity must be between 1 and {MAX_QUANTITY}", details={"index": index})
        if unit_price is not None:
            _non_negative_int(unit_price, f"items[{index}].unit_price_cents", MAX_PRICE_CENTS)

        lines.append(BasketLine(item_id=item_id, quantity=quantity, unit_price_cents=unit_price))
    return lines


def _quantities_by_item(lines) -> "OrderedDict[int, int]":
    needed: dict[int, int] = {}
    for line in lines:
        needed[line.item_id] = needed.get(line.item_id, 0) + line.quantity
    return OrderedDict(sorted(needed.items()))


def lock_sale(sale_id: int) -> Sale:
    sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
    if sale is None:
        raise SaleNotFound(f"Sale {sale_id} not found", details={"sale_id": sale_id})
    return sale


# =============================================================================
# CHECKOUT
# =============================================================================

def create_sale(
    *,
    location_id: int,
    items,
    customer_phone: str,
    customer_name: str | None = None,
    tax_rate=0,
    discount_amount_cents: int = 0,
    paid_amount_cents: int = 0,
    payment_method: str = PAYMENT_METHOD_CASH,
    cashier_id: int | None = None,
    notes: str | None = None,
) -> Sale:
    """
    Commit a sale atomically.

    Stock for every basket line is decremented at `location_id` before the
    invoice is written; if any line cannot be covered, no line is.

    Raises:
        ValidationError: malformed basket or amounts (before any lock)
        InvalidLocation / InvalidItem: missing or inactive location or item
        InsufficientStock: a line exceeds the location's quantity
        InvalidDiscount: discount larger than subtotal plus tax
        ConcurrencyConflict: locks could not be acquired after retries
    """
    lines = parse_basket(items)
    phone = normalize_phone(customer_phone)
    rate = _parse_tax_rate(tax_rate)
    _non_negative_int(discount_amount_cents, "discount_amount_cents")
    _non_negative_int(paid_amount_cents, "paid_amount_cents")
    _optional_text(customer_name, "customer_name")
    _optional_text(notes, "notes")
    if payment_method not in VALID_PAYMENT_METHODS:
        raise InvalidPayment(
            f"Invalid payment method: {payment_method}",
            details={"payment_method": payment_method, "valid": VALID_PAYMENT_METHODS},
        )
    needed = _quantities_by_item(lines)

    def _op() -> Sale:
        begin_write_transaction()
        require_location(location_id)

        items_by_id = {}
        for item_id, quantity in needed.items():
            item = load_item(item_id)
            reserve_and_decrement(item_id=item_id, location_id=location_id, quantity=quantity, item=item)
            items_by_id[item_id] = item

        priced = []
        subtotal_cents = 0
        for line in lines:
            item = items_by_id[line.item_id]
            unit_price = line.unit_price_cents if line.unit_price_cents is not None else item.sell_price_cents
            line_total = unit_price * line.quantity
            subtotal_cents += line_total
            priced.append((line, item, unit_price, line_total))

        tax_amount_cents, total_amount_cents = compute_totals(subtotal_cents, rate, discount_amount_cents)

        customer, created = find_or_create_customer(phone, customer_name)

        invoice = next_document_number(
            location_id=location_id,
            document_type=DOCUMENT_TYPE_INVOICE,
            prefix=current_app.config.get("INVOICE_PREFIX", "INV"),
        )

        sale = Sale(
            invoice=invoice,
            sale_date=today(),
            location_id=location_id,
            customer_id=customer.id,
            customer_name=(customer_name or "").strip() or customer.name,
            customer_phone=phone,
            cashier_id=cashier_id,
            payment_method=payment_method,
            tax_rate=rate,
            subtotal_cents=subtotal_cents,
            tax_amount_cents=tax_amount_cents,
            discount_amount_cents=discount_amount_cents,
            total_amount_cents=total_amount_cents,
            paid_amount_cents=paid_amount_cents,
            status=derive_sale_status(paid_amount_cents, total_amount_cents),
            notes=notes,
        )
        db.session.add(sale)
        db.session.flush()

        for line, item, unit_price, line_total in priced:
            db.session.add(SaleLineItem(
                sale_id=sale.id,
                item_id=item.id,
                item_name=item.name,
                quantity=line.quantity,
                unit_price_cents=unit_price,
                line_total_cents=line_total,
            ))

        if paid_amount_cents > 0:
            db.session.add(Payment(
                sale_id=sale.id,
                payment_method=payment_method,
                amount_cents=paid_amount_cents,
                status=PAYMENT_STATUS_COMPLETED,
                processed_by=cashier_id,
            ))

        points = accrue_sale(customer, total_amount_cents)
        db.session.commit()

        logger.info(
            "Sale %s committed at location %s: %s lines, total=%s paid=%s status=%s customer=%s%s points=%s",
            invoice,
            location_id,
            len(priced),
            total_amount_cents,
            paid_amount_cents,
            sale.status,
            customer.id,
            " (new)" if created else "",
            points,
        )
        return sale

    return run_with_retry(_op)


# =============================================================================
# POST-CHECKOUT CHANGES
# =============================================================================

def update_payment(sale_id: int, new_paid_amount_cents: int) -> Sale:
    """Overwrite the paid amount and re-derive status against the frozen total. Stock is untouched."""
    _non_negative_int(new_paid_amount_cents, "paid_amount_cents")

    def _op() -> Sale:
        begin_write_transaction()
        sale = lock_sale(sale_id)
        if sale.status in (SALE_STATUS_CANCELLED, SALE_STATUS_REFUNDED):
            raise SaleStateError(
                f"Cannot update payment on a {sale.status} sale",
                details={"sale_id": sale_id, "status": sale.status},
            )
        previous = sale.paid_amount_cents
        sale.paid_amount_cents = new_paid_amount_cents
        sale.status = derive_sale_status(new_paid_amount_cents, sale.total_amount_cents)
        db.session.commit()

        logger.info(
            "Sale %s paid amount %s -> %s (status %s)",
            sale.invoice,
            previous,
            new_paid_amount_cents,
            sale.status,
        )
        return sale

    return run_with_retry(_op)


def void_sale(sale_id: int, voided_by: int | None = None, reason: str | None = None) -> Sale:
    """
    Cancel a sale: restock every line at the sale's location and reverse the
    customer's spend and loyalty accrual. Voiding twice is an error.
    """
    _optional_text(reason, "reason")

    def _op() -> Sale:
        begin_write_transaction()
        sale = lock_sale(sale_id)
        if sale.status == SALE_STATUS_CANCELLED:
            raise SaleStateError(
                "Sale is already voided",
                details={"sale_id": sale_id, "status": sale.status},
            )

        for item_id, quantity in _quantities_by_item(sale.lines).items():
            item = load_item(item_id, require_active=False)
            release_to_stock(item=item, location_id=sale.location_id, quantity=quantity)

        if sale.customer_id is not None:
            customer = lock_for_update(db.session.query(Customer).filter_by(id=sale.customer_id)).first()
            if customer is not None:
                reverse_sale(customer, sale.total_amount_cents)

        sale.status = SALE_STATUS_CANCELLED
        sale.voided_at = utcnow()
        sale.voided_by = voided_by
        sale.void_reason = reason
        db.session.commit()

        logger.info("Sale %s voided by %s: %s", sale.invoice, voided_by, reason or "")
        return sale

    return run_with_retry(_op)


# =============================================================================
# QUERIES
# =============================================================================

def get_sale(sale_id: int) -> Sale:
    sale = db.session.get(Sale, sale_id)
    if sale is None:
        raise SaleNotFound(f"Sale {sale_id} not found", details={"sale_id": sale_id})
    return sale


def get_sale_by_invoice(invoice: str) -> Sale:
    sale = db.session.query(Sale).filter_by(invoice=invoice).first()
    if sale is None:
        raise SaleNotFound(f"Sale {invoice} not found", details={"invoice": invoice})
    return sale
