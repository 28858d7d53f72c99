# Overview: Service-layer operations for item master data; creation with opening stock and soft deactivation.

"""
Item catalog service.

- Items are created with an aggregate of 0; opening stock goes through the
  ledger so Item.quantity equals the sum of the seeded location rows.
- Items are never deleted (sale lines reference them); deactivation sets
  status='inactive', which blocks new sales, adjustments and transfers.
"""

from __future__ import annotations

import logging

from ..extensions import db
from ..models import Item
from ..models.inventory import ITEM_STATUS_ACTIVE, ITEM_STATUS_INACTIVE
from ..validation import MAX_PRICE_CENTS, MAX_QUANTITY
from .concurrency import begin_write_transaction, run_with_retry, stock_lock_order
from .errors import IntegrityConflict, ValidationError
from .stock_ledger import apply_stock_delta, load_item, lock_stock_row, refresh_item_quantity, require_location

logger = logging.getLogger(__name__)


def _text(value, field: str, max_length: int) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required", details={"field": field})
    value = value.strip()
    if len(value) > max_length:
        raise ValidationError(f"{field} must be at most {max_length} characters", details={"field": field})
    return value


def _bounded_int(value, field: str, maximum: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= maximum:
        raise ValidationError(f"{field} must be an integer between 0 and {maximum}", details={"field": field})
    return value


def _opening_stock(location_quantities) -> list[tuple[int, int]]:
    if location_quantities is None:
        return []
    if not isinstance(location_quantities, dict):
        raise ValidationError("location_quantities must map location ids to quantities")
    opening = []
    for location_id, quantity in location_quantities.items():
        if isinstance(location_id, bool) or not isinstance(location_id, int) or location_id <= 0:
            raise ValidationError(
                "location_quantities keys must be location ids",
                details={"location_id": location_id},
            )
        _bounded_int(quantity, f"location_quantities[{location_id}]", MAX_QUANTITY)
        if quantity > 0:
            opening.append((location_id, quantity))
    return opening


def create_item(
    *,
    sku: str,
    name: str,
    buy_price_cents: int,
    sell_price_cents: int,
    min_stock: int = 0,
    max_stock: int = 1000,
    allow_negative_stock: bool = False,
    location_quantities: dict[int, int] | None = None,
) -> Item:
    """
    Create an item and seed its opening stock per location.

    Zero quantities are skipped; every seeded location must exist and be
    active. A duplicate SKU raises IntegrityConflict.
    """
    sku = _text(sku, "sku", 100)
    name = _text(name, "name", 255)
    _bounded_int(buy_price_cents, "buy_price_cents", MAX_PRICE_CENTS)
    _bounded_int(sell_price_cents, "sell_price_cents", MAX_PRICE_CENTS)
    _bounded_int(min_stock, "min_stock", MAX_QUANTITY)
    _bounded_int(max_stock, "max_stock", MAX_QUANTITY)
    if min_stock > max_stock:
        raise ValidationError(
            "min_stock cannot exceed max_stock",
            details={"min_stock": min_stock, "max_stock": max_stock},
        )
    if not isinstance(allow_negative_stock, bool):
        raise ValidationError("allow_negative_stock must be true or false")
    opening = _opening_stock(location_quantities)

    def _op() -> Item:
        begin_write_transaction()
        if db.session.query(Item.id).filter_by(sku=sku).first() is not None:
            raise IntegrityConflict(f"SKU {sku} already exists", details={"sku": sku})

        item = Item(
            sku=sku,
            name=name,
            buy_price_cents=buy_price_cents,
            sell_price_cents=sell_price_cents,
            min_stock=min_stock,
            max_stock=max_stock,
            allow_negative_stock=allow_negative_stock,
            quantity=0,
            status=ITEM_STATUS_ACTIVE,
        )
        db.session.add(item)
        db.session.flush()

        quantities = dict(opening)
        for location_id, _ in stock_lock_order((loc, item.id) for loc in quantities):
            require_location(location_id)
            row = lock_stock_row(item, location_id)
            apply_stock_delta(item, row, quantities[location_id])
        total = refresh_item_quantity(item)
        db.session.commit()

        logger.info(
            "Item %s created (%s) with opening stock %s across %s location(s)",
            item.id,
            sku,
            total,
            len(opening),
        )
        return item

    return run_with_retry(_op)


def deactivate_item(item_id: int) -> Item:
    """Soft-delete: the item keeps its stock rows and sale history. Idempotent."""
    def _op() -> Item:
        begin_write_transaction()
        item = load_item(item_id, require_active=False)
        if item.status != ITEM_STATUS_INACTIVE:
            item.status = ITEM_STATUS_INACTIVE
            logger.info("Item %s (%s) deactivated with %s units on hand", item.id, item.sku, item.quantity)
        db.session.commit()
        return item

    return run_with_retry(_op)
