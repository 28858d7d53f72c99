# Overview: Service-layer operations for locations; administrative create, update and soft deactivation.

from __future__ import annotations

import logging

from ..extensions import db
from ..models import Location
from ..models.inventory import LOCATION_STATUS_ACTIVE, LOCATION_STATUS_INACTIVE
from .concurrency import begin_write_transaction, lock_for_update, run_with_retry
from .errors import IntegrityConflict, InvalidLocation, ValidationError

logger = logging.getLogger(__name__)

VALID_LOCATION_STATUSES = (LOCATION_STATUS_ACTIVE, LOCATION_STATUS_INACTIVE)


def _name(value) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("Location name is required", details={"field": "name"})
    if len(value.strip()) > 255:
        raise ValidationError("Location name must be at most 255 characters", details={"field": "name"})
    return value.strip()


def _optional_text(value, field: str) -> str | None:
    if value is not None and not isinstance(value, str):
        raise ValidationError(f"{field} must be a string", details={"field": field})
    return value


def _require_unique_name(name: str, exclude_id: int | None = None) -> None:
    query = db.session.query(Location.id).filter(Location.name == name)
    if exclude_id is not None:
        query = query.filter(Location.id != exclude_id)
    if query.first() is not None:
        raise IntegrityConflict(f"Location {name!r} already exists", details={"name": name})


def _lock_location(location_id: int) -> Location:
    location = lock_for_update(db.session.query(Location).filter_by(id=location_id)).first()
    if location is None:
        raise InvalidLocation(f"Location {location_id} not found", details={"location_id": location_id})
    return location


def create_location(name: str, address: str | None = None, phone: str | None = None) -> Location:
    name = _name(name)
    _optional_text(address, "address")
    _optional_text(phone, "phone")

    def _op() -> Location:
        begin_write_transaction()
        _require_unique_name(name)
        location = Location(name=name, address=address, phone=phone, status=LOCATION_STATUS_ACTIVE)
        db.session.add(location)
        db.session.commit()
        logger.info("Location %s created: %s", location.id, name)
        return location

    return run_with_retry(_op)


def update_location(
    location_id: int,
    *,
    name: str | None = None,
    address: str | None = None,
    phone: str | None = None,
    status: str | None = None,
) -> Location:
    """Patch the given fields; None leaves a field unchanged."""
    if name is not None:
        name = _name(name)
    _optional_text(address, "address")
    _optional_text(phone, "phone")
    if status is not None and status not in VALID_LOCATION_STATUSES:
        raise ValidationError(
            f"status must be one of {', '.join(VALID_LOCATION_STATUSES)}",
            details={"status": status},
        )

    def _op() -> Location:
        begin_write_transaction()
        location = _lock_location(location_id)
        if name is not None and name != location.name:
            _require_unique_name(name, exclude_id=location_id)
            location.name = name
        if address is not None:
            location.address = address
        if phone is not None:
            location.phone = phone
        if status is not None:
            location.status = status
        db.session.commit()
        return location

    return run_with_retry(_op)


def deactivate_location(location_id: int) -> Location:
    """
    Soft-delete a location. Its stock rows and sales are kept; it stops
    accepting sales, adjustments and transfers until reactivated.
    """
    def _op() -> Location:
        begin_write_transaction()
        location = _lock_location(location_id)
        if location.status != LOCATION_STATUS_INACTIVE:
            location.status = LOCATION_STATUS_INACTIVE
            logger.info("Location %s (%s) deactivated", location.id, location.name)
        db.session.commit()
        return location

    return run_with_retry(_op)
