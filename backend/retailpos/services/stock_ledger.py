# Overview: Service-layer operations for the per-location stock ledger; encapsulates business logic and database work.

"""
Stock ledger invariants (authoritative)

- LocationStock.quantity is the primary mutable state. One row per
  (location, item), created lazily with quantity 0.
- Item.quantity is a cached aggregate: SUM(LocationStock.quantity) over all
  locations for the item, rewritten in the same transaction as every change.
- LocationStock.quantity never goes below zero unless the item sets
  allow_negative_stock.

Lock order:
- Item rows first, ascending by item_id.
- Stock rows ascending by (location_id, item_id), and only while the item
  lock is held. Any two operations that contend on a stock row therefore
  contend on the item row first.
"""

from __future__ import annotations

import logging
from typing import Optional

from flask import current_app
from sqlalchemy import and_, func

from ..extensions import db
from ..models import Item, Location, LocationStock
from ..models.inventory import LOCATION_STATUS_ACTIVE
from .concurrency import begin_write_transaction, lock_for_update, run_with_retry
from ..validation import MAX_QUANTITY
from .errors import InsufficientStock, InvalidItem, InvalidLocation, ValidationError

logger = logging.getLogger(__name__)

OPERATION_ADD = "add"
OPERATION_SUBTRACT = "subtract"
OPERATION_SET = "set"
VALID_OPERATIONS = (OPERATION_ADD, OPERATION_SUBTRACT, OPERATION_SET)


def _require_int(value, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} must be an integer", details={"field": field})
    if abs(value) > MAX_QUANTITY:
        raise ValidationError(
            f"{field} must be between -{MAX_QUANTITY} and {MAX_QUANTITY}",
            details={"field": field, "maximum": MAX_QUANTITY},
        )
    return value


def _require_non_negative_int(value, field: str) -> int:
    value = _require_int(value, field)
    if value < 0:
        raise ValidationError(f"{field} must be non-negative", details={"field": field})
    return value


# =============================================================================
# Locking helpers (run inside the caller's transaction)
# =============================================================================

def load_item(item_id: int, *, lock: bool = True, require_active: bool = True) -> Item:
    query = db.session.query(Item).filter_by(id=item_id)
    item = (lock_for_update(query) if lock else query).first()
    if item is None:
        raise InvalidItem(f"Item {item_id} not found", details={"item_id": item_id})
    if require_active and not item.is_active:
        raise InvalidItem(f"Item {item_id} is inactive", details={"item_id": item_id})
    return item


def require_location(location_id: int, *, require_active: bool = True) -> Location:
    location = db.session.get(Location, location_id)
    if location is None:
        raise InvalidLocation(f"Location {location_id} not found", details={"location_id": location_id})
    if require_active and not location.is_active:
        raise InvalidLocation(f"Location {location_id} is inactive", details={"location_id": location_id})
    return location


def lock_stock_row(item: Item, location_id: int, *, create: bool = True) -> Optional[LocationStock]:
    """
    Lock the (location, item) stock row, creating it with quantity 0 if absent.

    The caller must already hold the lock on `item`.
    """
    query = db.session.query(LocationStock).filter_by(location_id=location_id, item_id=item.id)
    row = lock_for_update(query).first()
    if row is None and create:
        cfg = current_app.config
        row = LocationStock(
            location_id=location_id,
            item_id=item.id,
            quantity=0,
            min_stock=cfg.get("DEFAULT_LOCATION_MIN_STOCK", 5),
            max_stock=cfg.get("DEFAULT_LOCATION_MAX_STOCK", 100),
        )
        db.session.add(row)
        db.session.flush()
    return row


def apply_stock_delta(item: Item, row: LocationStock, delta: int) -> int:
    """Move a locked stock row by delta, enforcing non-negativity."""
    new_quantity = row.quantity + delta
    if new_quantity < 0 and not item.allow_negative_stock:
        raise InsufficientStock(
            item_id=item.id,
            location_id=row.location_id,
            available=row.quantity,
            requested=-delta,
        )
    if abs(new_quantity) > MAX_QUANTITY:
        raise ValidationError(
            f"Location quantity must stay within {MAX_QUANTITY} units",
            details={"item_id": item.id, "location_id": row.location_id, "maximum": MAX_QUANTITY},
        )
    row.quantity = new_quantity
    return new_quantity


def sum_location_quantities(item_id: int) -> int:
    total = (
        db.session.query(func.coalesce(func.sum(LocationStock.quantity), 0))
        .filter(LocationStock.item_id == item_id)
        .scalar()
    )
    return int(total or 0)


def refresh_item_quantity(item: Item) -> int:
    """Rewrite the cached aggregate from the stock rows (pending changes are autoflushed)."""
    db.session.flush()
    total = sum_location_quantities(item.id)
    if item.quantity != total:
        item.quantity = total
    return total


# =============================================================================
# Transaction-participating primitives
# =============================================================================

def reserve_and_decrement(*, item_id: int, location_id: int, quantity: int, item: Item | None = None) -> int:
    """
    Lock, check and decrement one location's stock for a sale line.

    Runs inside the caller's transaction: flushes, never commits. Raises
    InsufficientStock without mutating anything when the location cannot
    cover `quantity`. Returns the new location quantity.
    """
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValidationError("quantity must be a positive integer", details={"quantity": quantity})
    if item is None:
        item = load_item(item_id)
    row = lock_stock_row(item, location_id)
    new_quantity = apply_stock_delta(item, row, -quantity)
    refresh_item_quantity(item)
    return new_quantity


def release_to_stock(*, item: Item, location_id: int, quantity: int) -> int:
    """Put quantity back into a location (void/cancel path). Caller holds the item lock."""
    row = lock_stock_row(item, location_id)
    new_quantity = apply_stock_delta(item, row, quantity)
    refresh_item_quantity(item)
    return new_quantity


# =============================================================================
# Public operations (one transaction each)
# =============================================================================

def adjust_location_stock(
    *,
    item_id: int,
    location_id: int,
    operation: str,
    quantity: int,
    note: str | None = None,
) -> LocationStock:
    """
    Add to, subtract from or set a location's quantity for an item.

    `add` and `subtract` take a non-negative quantity. `set` accepts a
    negative target only for items that allow negative stock. The aggregate
    Item.quantity is rewritten before commit.
    """
    if operation not in VALID_OPERATIONS:
        raise ValidationError(
            f"operation must be one of {', '.join(VALID_OPERATIONS)}",
            details={"operation": operation},
        )
    if operation == OPERATION_SET:
        _require_int(quantity, "quantity")
    else:
        _require_non_negative_int(quantity, "quantity")

    def _op() -> LocationStock:
        begin_write_transaction()
        item = load_item(item_id)
        require_location(location_id)
        row = lock_stock_row(item, location_id)
        before = row.quantity

        if operation == OPERATION_ADD:
            apply_stock_delta(item, row, quantity)
        elif operation == OPERATION_SUBTRACT:
            apply_stock_delta(item, row, -quantity)
        else:
            if quantity < 0 and not item.allow_negative_stock:
                raise ValidationError(
                    "quantity cannot be negative for this item",
                    details={"item_id": item_id, "quantity": quantity},
                )
            row.quantity = quantity

        total = refresh_item_quantity(item)
        after = row.quantity
        db.session.commit()

        logger.info(
            "Stock %s item=%s location=%s qty=%s: %s -> %s (aggregate %s)%s",
            operation,
            item_id,
            location_id,
            quantity,
            before,
            after,
            total,
            f" note={note!r}" if note else "",
        )
        return row

    return run_with_retry(_op)


def set_stock_thresholds(*, item_id: int, location_id: int, min_stock: int, max_stock: int) -> LocationStock:
    _require_non_negative_int(min_stock, "min_stock")
    _require_non_negative_int(max_stock, "max_stock")
    if min_stock > max_stock:
        raise ValidationError(
            "min_stock cannot exceed max_stock",
            details={"min_stock": min_stock, "max_stock": max_stock},
        )

    def _op() -> LocationStock:
        begin_write_transaction()
        item = load_item(item_id)
        require_location(location_id)
        row = lock_stock_row(item, location_id)
        row.min_stock = min_stock
        row.max_stock = max_stock
        db.session.commit()
        return row

    return run_with_retry(_op)


# =============================================================================
# Read-only queries
# =============================================================================

def get_location_stock(item_id: int, location_id: int) -> Optional[LocationStock]:
    return (
        db.session.query(LocationStock)
        .filter_by(item_id=item_id, location_id=location_id)
        .first()
    )


def get_all_locations_for_item(item_id: int) -> list[dict]:
    """Every active location with this item's quantity and thresholds (zeros where never stocked)."""
    load_item(item_id, lock=False, require_active=False)

    rows = (
        db.session.query(Location, LocationStock)
        .outerjoin(
            LocationStock,
            and_(LocationStock.location_id == Location.id, LocationStock.item_id == item_id),
        )
        .filter(Location.status == LOCATION_STATUS_ACTIVE)
        .order_by(Location.name.asc())
        .all()
    )
    return [
        {
            "location_id": location.id,
            "location_name": location.name,
            "item_id": item_id,
            "quantity": stock.quantity if stock else 0,
            "min_stock": stock.min_stock if stock else 0,
            "max_stock": stock.max_stock if stock else 0,
            "is_low": stock.is_low if stock else False,
        }
        for location, stock in rows
    ]


def get_location_inventory(location_id: int) -> list[dict]:
    require_location(location_id, require_active=False)

    rows = (
        db.session.query(LocationStock, Item)
        .join(Item, Item.id == LocationStock.item_id)
        .filter(LocationStock.location_id == location_id)
        .order_by(Item.name.asc())
        .all()
    )
    result = []
    for stock, item in rows:
        data = stock.to_dict()
        data["sku"] = item.sku
        data["item_name"] = item.name
        data["item_status"] = item.status
        result.append(data)
    return result


def list_low_stock(location_id: int | None = None) -> list[LocationStock]:
    """Stock rows at or below their min_stock threshold, at active locations."""
    query = (
        db.session.query(LocationStock)
        .join(Location, Location.id == LocationStock.location_id)
        .filter(Location.status == LOCATION_STATUS_ACTIVE)
        .filter(LocationStock.quantity <= LocationStock.min_stock)
    )
    if location_id is not None:
        query = query.filter(LocationStock.location_id == location_id)
    return query.order_by(LocationStock.location_id.asc(), LocationStock.item_id.asc()).all()
