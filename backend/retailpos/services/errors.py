# Overview: Error taxonomy shared by the ledger, transfer and sale services.

"""
Error classes raised by the service layer.

Validation errors are raised before any lock is taken and are never retried.
Business-rule errors roll the transaction back and are surfaced verbatim.
ConcurrencyConflict is what the caller sees once the bounded retry gives up;
re-invoking the whole operation is safe because nothing partial survives a
rollback. IntegrityConflict wraps unique/foreign-key violations and is fatal
for the request.
"""


class LedgerError(Exception):
    """Base class for service-layer errors."""
    retryable = False

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}

    def to_dict(self) -> dict:
        payload = {"error": str(self), "code": type(self).__name__}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(LedgerError):
    """Malformed or missing input."""


class InvalidLocation(ValidationError):
    """Location missing or inactive."""


class InvalidItem(ValidationError):
    """Item missing or inactive."""


class InvalidPayment(ValidationError):
    """Payment amount or method not acceptable for the sale."""


class InsufficientStock(LedgerError):
    """Requested quantity exceeds what the location holds."""

    def __init__(self, *, item_id: int, location_id: int, available: int, requested: int):
        super().__init__(
            f"Insufficient stock for item {item_id} at location {location_id}. "
            f"Available: {available}, requested: {requested}",
            details={
                "item_id": item_id,
                "location_id": location_id,
                "available": available,
                "requested": requested,
            },
        )
        self.item_id = item_id
        self.location_id = location_id
        self.available = available
        self.requested = requested


class InvalidDiscount(LedgerError):
    """Discount exceeds the payable amount."""


class SaleStateError(LedgerError):
    """Operation not allowed in the sale's current status."""


class SaleNotFound(LedgerError):
    pass


class PaymentNotFound(LedgerError):
    pass


class ConcurrencyConflict(LedgerError):
    """Lock wait or serialization failure survived every retry."""
    retryable = True


class IntegrityConflict(LedgerError):
    """Unique or foreign-key constraint violated."""
