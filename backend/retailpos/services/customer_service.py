# Overview: Service-layer operations for customers; phone lookup, auto-provisioning and loyalty accrual.

from __future__ import annotations

import math
import secrets
import time
from decimal import Decimal

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Customer
from .concurrency import lock_for_update
from .errors import ValidationError

DEFAULT_CUSTOMER_NAME = "Customer"

_BASE36 = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"


def _to_base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, rem = divmod(number, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def generate_customer_code() -> str:
    """CUST + base36 millisecond timestamp + 5 random base36 characters."""
    stamp = _to_base36(int(time.time() * 1000))
    suffix = "".join(secrets.choice(_BASE36) for _ in range(5))
    return f"CUST{stamp}{suffix}"


def normalize_phone(phone) -> str:
    if phone is None:
        raise ValidationError("customer_phone is required", details={"field": "customer_phone"})
    value = str(phone).strip()
    if not value:
        raise ValidationError("customer_phone is required", details={"field": "customer_phone"})
    return value


def find_customer_by_phone(phone: str, *, lock: bool = False) -> Customer | None:
    query = db.session.query(Customer).filter_by(phone=normalize_phone(phone))
    if lock:
        query = lock_for_update(query)
    return query.first()


def find_or_create_customer(phone: str, name: str | None = None) -> tuple[Customer, bool]:
    """
    Return (customer, created) for a phone number, locked for update.

    Runs inside the caller's transaction and never commits. A concurrent
    insert of the same phone is absorbed by a savepoint and the winner's row
    is used instead.
    """
    phone = normalize_phone(phone)
    customer = find_customer_by_phone(phone, lock=True)
    if customer is not None:
        return customer, False

    customer = Customer(
        customer_code=generate_customer_code(),
        name=(name or "").strip() or DEFAULT_CUSTOMER_NAME,
        phone=phone,
        loyalty_points=0,
        total_spent_cents=0,
        discount_percentage=0,
        status="active",
    )
    try:
        with db.session.begin_nested():
            db.session.add(customer)
    except IntegrityError:
        customer = find_customer_by_phone(phone, lock=True)
        if customer is None:
            raise
        return customer, False
    return customer, True


def loyalty_points_for(total_amount_cents: int) -> int:
    """floor(total in currency units * LOYALTY_POINTS_PER_UNIT); never negative."""
    if total_amount_cents <= 0:
        return 0
    rate = Decimal(str(current_app.config.get("LOYALTY_POINTS_PER_UNIT", 1)))
    return int(math.floor(Decimal(total_amount_cents) / Decimal(100) * rate))


def accrue_sale(customer: Customer, total_amount_cents: int) -> int:
    points = loyalty_points_for(total_amount_cents)
    customer.total_spent_cents = (customer.total_spent_cents or 0) + total_amount_cents
    customer.loyalty_points = (customer.loyalty_points or 0) + points
    return points


def reverse_sale(customer: Customer, total_amount_cents: int) -> int:
    """Undo a sale's accrual; both aggregates floor at zero."""
    points = loyalty_points_for(total_amount_cents)
    customer.total_spent_cents = max((customer.total_spent_cents or 0) - total_amount_cents, 0)
    customer.loyalty_points = max((customer.loyalty_points or 0) - points, 0)
    return points
