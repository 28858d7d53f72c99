# Overview: Shared JSON error responses for the route layer.

from flask import jsonify

from ..extensions import db
from ..services.errors import (
    ConcurrencyConflict,
    InsufficientStock,
    IntegrityConflict,
    InvalidDiscount,
    LedgerError,
    PaymentNotFound,
    SaleNotFound,
    SaleStateError,
    ValidationError,
)

# Checked in order; first match wins
ERROR_STATUS = (
    (SaleNotFound, 404),
    (PaymentNotFound, 404),
    (ValidationError, 400),
    (InvalidDiscount, 400),
    (InsufficientStock, 409),
    (SaleStateError, 409),
    (IntegrityConflict, 409),
    (ConcurrencyConflict, 503),
)


def error_response(exc: LedgerError, status: int | None = None):
    """Roll back and render a service-layer error as JSON."""
    db.session.rollback()
    if status is None:
        status = next((code for cls, code in ERROR_STATUS if isinstance(exc, cls)), 400)
    payload = exc.to_dict()
    if exc.retryable:
        payload["retryable"] = True
    return jsonify(payload), status
