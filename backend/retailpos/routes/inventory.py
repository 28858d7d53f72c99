# backend/retailpos/routes/inventory.py
"""
Inventory API routes: item creation and deactivation, per-location
quantities and thresholds, transfers and aggregate reconciliation.
"""
from flask import Blueprint, current_app, jsonify, request

from ..extensions import db
from ..models import Item
from ..services import catalog_service, reconciler, stock_ledger, transfer_service
from ..services.errors import LedgerError
from ..validation import (
    MAX_PRICE_CENTS,
    MAX_QUANTITY,
    coerce_bool,
    coerce_int,
    coerce_optional_int,
    coerce_optional_str,
    coerce_str,
    require_fields,
)
from .responses import error_response

inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


def _item_not_found(item_id: int):
    return jsonify({"error": f"Item {item_id} not found", "code": "InvalidItem"}), 404


def _unexpected(message: str):
    db.session.rollback()
    current_app.logger.exception(message)
    return jsonify({"error": "Internal server error"}), 500


def _location_quantities(value) -> dict[int, int] | None:
    # JSON object keys arrive as strings
    if value is None:
        return None
    if not isinstance(value, dict):
        return value
    return {
        coerce_int(location_id, "location_quantities key", minimum=1): coerce_int(
            quantity, f"location_quantities[{location_id}]", minimum=0, maximum=MAX_QUANTITY
        )
        for location_id, quantity in value.items()
    }


@inventory_bp.post("")
def create_item():
    """
    Create an item with optional opening stock per location.

    Request body:
    {
        "sku": str,
        "name": str,
        "buy_price_cents": int,
        "sell_price_cents": int,
        "min_stock": int (optional),
        "max_stock": int (optional),
        "allow_negative_stock": bool (optional),
        "location_quantities": {"<location_id>": int} (optional)
    }

    Returns:
        201: Created item
        400: Invalid request or inactive location
        409: SKU already exists
    """
    try:
        data = require_fields(request.get_json(silent=True), "sku", "name", "buy_price_cents", "sell_price_cents")
        item = catalog_service.create_item(
            sku=coerce_str(data["sku"], "sku", max_length=100),
            name=coerce_str(data["name"], "name", max_length=255),
            buy_price_cents=coerce_int(data["buy_price_cents"], "buy_price_cents", minimum=0, maximum=MAX_PRICE_CENTS),
            sell_price_cents=coerce_int(
                data["sell_price_cents"], "sell_price_cents", minimum=0, maximum=MAX_PRICE_CENTS
            ),
            min_stock=coerce_int(data.get("min_stock", 0), "min_stock", minimum=0, maximum=MAX_QUANTITY),
            max_stock=coerce_int(data.get("max_stock", 1000), "max_stock", minimum=0, maximum=MAX_QUANTITY),
            allow_negative_stock=coerce_bool(data.get("allow_negative_stock"), "allow_negative_stock"),
            location_quantities=_location_quantities(data.get("location_quantities")),
        )
        return jsonify(item.to_dict()), 201
    except LedgerError as e:
        return error_response(e)
    except Exception:
        return _unexpected("Item creation failed")


@inventory_bp.delete("/<int:item_id>")
def deactivate_item(item_id: int):
    """Soft-delete: the item is marked inactive, its history and stock rows stay."""
    if db.session.get(Item, item_id) is None:
        return _item_not_found(item_id)

    try:
        item = catalog_service.deactivate_item(item_id)
        return jsonify(item.to_dict()), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        return _unexpected("Item deactivation failed")


@inventory_bp.get("/<int:item_id>/locations")
def item_locations(item_id: int):
    """
    Quantity and thresholds of an item at every active location.

    Returns:
        200: {"item": {...}, "locations": [...]}
        404: Item not found
    """
    item = db.session.get(Item, item_id)
    if item is None:
        return _item_not_found(item_id)
    try:
        return jsonify({
            "item": item.to_dict(),
            "locations": stock_ledger.get_all_locations_for_item(item_id),
        }), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        return _unexpected("Failed to load item locations")


@inventory_bp.patch("/<int:item_id>/locations/<int:location_id>/quantity")
def update_location_quantity(item_id: int, location_id: int):
    """
    Adjust one location's quantity.

    Request body:
    {
        "operation": "add" | "subtract" | "set" (default "set"),
        "quantity": int,
        "note": str (optional)
    }

    Returns:
        200: Updated stock row with the item's new aggregate
        400: Invalid request, inactive item/location
        404: Item not found
        409: Insufficient stock
        503: Lock contention, retry
    """
    if db.session.get(Item, item_id) is None:
        return _item_not_found(item_id)

    try:
        data = require_fields(request.get_json(silent=True), "quantity")
        row = stock_ledger.adjust_location_stock(
            item_id=item_id,
            location_id=location_id,
            operation=coerce_optional_str(data.get("operation"), "operation") or stock_ledger.OPERATION_SET,
            quantity=coerce_int(data["quantity"], "quantity", minimum=-MAX_QUANTITY, maximum=MAX_QUANTITY),
            note=coerce_optional_str(data.get("note"), "note"),
        )
        item = db.session.get(Item, item_id)
        return jsonify({"stock": row.to_dict(), "item_quantity": item.quantity}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        return _unexpected("Location quantity update failed")


@inventory_bp.patch("/<int:item_id>/locations/<int:location_id>/thresholds")
def update_location_thresholds(item_id: int, location_id: int):
    """
    Request body:
    {
        "min_stock": int,
        "max_stock": int
    }
    """
    if db.session.get(Item, item_id) is None:
        return _item_not_found(item_id)

    try:
        data = require_fields(request.get_json(silent=True), "min_stock", "max_stock")
        row = stock_ledger.set_stock_thresholds(
            item_id=item_id,
            location_id=location_id,
            min_stock=coerce_int(data["min_stock"], "min_stock", minimum=0, maximum=MAX_QUANTITY),
            max_stock=coerce_int(data["max_stock"], "max_stock", minimum=0, maximum=MAX_QUANTITY),
        )
        return jsonify(row.to_dict()), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        return _unexpected("Threshold update failed")


@inventory_bp.post("/<int:item_id>/transfer")
def transfer(item_id: int):
    """
    Move stock of an item between two locations.

    Request body:
    {
        "from_location_id": int,
        "to_location_id": int,
        "quantity": int,
        "transferred_by": int (optional),
        "notes": str (optional)
    }

    Returns:
        201: Transfer record
        400: Invalid request
        404: Item not found
        409: Insufficient stock at the source
    """
    if db.session.get(Item, item_id) is None:
        return _item_not_found(item_id)

    try:
        data = require_fields(request.get_json(silent=True), "from_location_id", "to_location_id", "quantity")
        record = transfer_service.transfer_stock(
            item_id=item_id,
            from_location_id=coerce_int(data["from_location_id"], "from_location_id", minimum=1),
            to_location_id=coerce_int(data["to_location_id"], "to_location_id", minimum=1),
            quantity=coerce_int(data["quantity"], "quantity", minimum=1, maximum=MAX_QUANTITY),
            actor_id=coerce_optional_int(data.get("transferred_by"), "transferred_by"),
            notes=coerce_optional_str(data.get("notes"), "notes"),
        )
        return jsonify(record.to_dict()), 201
    except LedgerError as e:
        return error_response(e)
    except Exception:
        return _unexpected("Stock transfer failed")


@inventory_bp.get("/transfers")
def list_transfers():
    """Transfer audit trail, newest first. Query: item_id, location_id, limit."""
    try:
        records = transfer_service.list_transfers(
            item_id=coerce_optional_int(request.args.get("item_id"), "item_id"),
            location_id=coerce_optional_int(request.args.get("location_id"), "location_id"),
            limit=coerce_int(request.args.get("limit", "200"), "limit", minimum=1, maximum=1000),
        )
        return jsonify({"transfers": [r.to_dict() for r in records]}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        return _unexpected("Failed to list transfers")


@inventory_bp.post("/<int:item_id>/reconcile")
def reconcile_item(item_id: int):
    """
    Recompute the item's aggregate quantity from its location rows.

    Query: dry_run=1 reports drift without writing.
    """
    if db.session.get(Item, item_id) is None:
        return _item_not_found(item_id)

    dry_run = request.args.get("dry_run", "").lower() in ("1", "true", "yes")
    try:
        report = reconciler.check_drift(item_id) if dry_run else reconciler.reconcile(item_id)
        return jsonify(report.to_dict()), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        return _unexpected("Reconciliation failed")


@inventory_bp.get("/low-stock")
def low_stock():
    """Stock rows at or below min_stock. Query: location_id (optional)."""
    try:
        rows = stock_ledger.list_low_stock(
            location_id=coerce_optional_int(request.args.get("location_id"), "location_id"),
        )
        return jsonify({"items": [row.to_dict() for row in rows]}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        return _unexpected("Failed to list low stock")
