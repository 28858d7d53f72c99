# backend/retailpos/services/transfer_service.py
"""
Location-to-location stock transfer.

A transfer moves quantity of one item from a source location to a
destination location in a single transaction and appends an immutable
InventoryTransfer record. The item aggregate is unchanged by a transfer but
is rewritten anyway so the ledger invariant is checked on every write.
"""
from __future__ import annotations

import logging

from ..extensions import db
from ..models import InventoryTransfer
from .concurrency import begin_write_transaction, run_with_retry, stock_lock_order
from ..validation import MAX_QUANTITY
from .errors import ValidationError
from .stock_ledger import apply_stock_delta, load_item, lock_stock_row, refresh_item_quantity, require_location

logger = logging.getLogger(__name__)


def transfer_stock(
    *,
    item_id: int,
    from_location_id: int,
    to_location_id: int,
    quantity: int,
    actor_id: int | None = None,
    notes: str | None = None,
) -> InventoryTransfer:
    """
    Move `quantity` units of an item between two locations.

    Raises:
        ValidationError: non-positive quantity or identical locations
        InvalidItem / InvalidLocation: missing or inactive item or location
        InsufficientStock: source cannot cover the quantity (nothing changes)
    """
    if isinstance(quantity, bool) or not isinstance(quantity, int) or not 0 < quantity <= MAX_QUANTITY:
        raise ValidationError(f"Transfer quantity must be between 1 and {MAX_QUANTITY}", details={"quantity": quantity})
    if notes is not None and not isinstance(notes, str):
        raise ValidationError("notes must be a string", details={"field": "notes"})
    if from_location_id == to_location_id:
        raise ValidationError(
            "Cannot transfer to the same location",
            details={"location_id": from_location_id},
        )

    def _op() -> InventoryTransfer:
        begin_write_transaction()
        item = load_item(item_id)
        require_location(from_location_id)
        require_location(to_location_id)

        rows = {}
        for location_id, _ in stock_lock_order([(from_location_id, item_id), (to_location_id, item_id)]):
            rows[location_id] = lock_stock_row(item, location_id)

        apply_stock_delta(item, rows[from_location_id], -quantity)
        apply_stock_delta(item, rows[to_location_id], quantity)
        refresh_item_quantity(item)

        record = InventoryTransfer(
            from_location_id=from_location_id,
            to_location_id=to_location_id,
            item_id=item_id,
            quantity=quantity,
            transferred_by=actor_id,
            notes=notes,
        )
        db.session.add(record)
        db.session.commit()

        logger.info(
            "Transferred %s of item %s from location %s to %s (transfer %s)",
            quantity,
            item_id,
            from_location_id,
            to_location_id,
            record.id,
        )
        return record

    return run_with_retry(_op)


def list_transfers(
    *,
    item_id: int | None = None,
    location_id: int | None = None,
    limit: int = 200,
) -> list[InventoryTransfer]:
    """Transfer audit trail, newest first."""
    query = db.session.query(InventoryTransfer)
    if item_id is not None:
        query = query.filter(InventoryTransfer.item_id == item_id)
    if location_id is not None:
        query = query.filter(
            (InventoryTransfer.from_location_id == location_id)
            | (InventoryTransfer.to_location_id == location_id)
        )
    return (
        query.order_by(InventoryTransfer.created_at.desc(), InventoryTransfer.id.desc())
        .limit(limit)
        .all()
    )
