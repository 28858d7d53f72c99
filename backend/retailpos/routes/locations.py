# backend/retailpos/routes/locations.py
from flask import Blueprint, current_app, jsonify, request

from ..extensions import db
from ..models import Location
from ..models.inventory import LOCATION_STATUS_ACTIVE
from ..services import location_service, stock_ledger
from ..services.errors import LedgerError
from ..validation import coerce_optional_str, coerce_str, optional_body, require_fields
from .responses import error_response

locations_bp = Blueprint("locations", __name__, url_prefix="/api/locations")


def _location_not_found(location_id: int):
    return jsonify({"error": f"Location {location_id} not found", "code": "InvalidLocation"}), 404


def _unexpected(message: str):
    db.session.rollback()
    current_app.logger.exception(message)
    return jsonify({"error": "Internal server error"}), 500


@locations_bp.get("")
def list_locations():
    """All locations; ?include_inactive=1 to include inactive ones."""
    query = db.session.query(Location)
    if request.args.get("include_inactive", "").lower() not in ("1", "true", "yes"):
        query = query.filter(Location.status == LOCATION_STATUS_ACTIVE)
    locations = query.order_by(Location.name.asc()).all()
    return jsonify({"locations": [loc.to_dict() for loc in locations]}), 200


@locations_bp.post("")
def create_location():
    """
    Request body:
    {
        "name": str,
        "address": str (optional),
        "phone": str (optional)
    }

    Returns:
        201: Created location
        400: Invalid request
        409: Name already taken
    """
    try:
        data = require_fields(request.get_json(silent=True), "name")
        location = location_service.create_location(
            coerce_str(data["name"], "name", max_length=255),
            address=coerce_optional_str(data.get("address"), "address"),
            phone=coerce_optional_str(data.get("phone"), "phone", max_length=50),
        )
        return jsonify(location.to_dict()), 201
    except LedgerError as e:
        return error_response(e)
    except Exception:
        return _unexpected("Location creation failed")


@locations_bp.route("/<int:location_id>", methods=["PUT", "PATCH"])
def update_location(location_id: int):
    """
    Update name, address, phone or status; omitted fields are unchanged.

    Returns:
        200: Updated location
        404: Location not found
        409: Name already taken
    """
    if db.session.get(Location, location_id) is None:
        return _location_not_found(location_id)

    try:
        data = optional_body(request.get_json(silent=True))
        name = data.get("name")
        location = location_service.update_location(
            location_id,
            name=coerce_str(name, "name", max_length=255) if name is not None else None,
            address=coerce_optional_str(data.get("address"), "address"),
            phone=coerce_optional_str(data.get("phone"), "phone", max_length=50),
            status=coerce_optional_str(data.get("status"), "status"),
        )
        return jsonify(location.to_dict()), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        return _unexpected("Location update failed")


@locations_bp.delete("/<int:location_id>")
def deactivate_location(location_id: int):
    """Soft-delete: the location is marked inactive; stock rows and sales stay."""
    if db.session.get(Location, location_id) is None:
        return _location_not_found(location_id)

    try:
        location = location_service.deactivate_location(location_id)
        return jsonify(location.to_dict()), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        return _unexpected("Location deactivation failed")


@locations_bp.get("/<int:location_id>/inventory")
def location_inventory(location_id: int):
    """
    Stock rows held at a location.

    Returns:
        200: {"location": {...}, "inventory": [...]}
        404: Location not found
    """
    location = db.session.get(Location, location_id)
    if location is None:
        return _location_not_found(location_id)

    try:
        return jsonify({
            "location": location.to_dict(),
            "inventory": stock_ledger.get_location_inventory(location_id),
        }), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        return _unexpected("Failed to load location inventory")
