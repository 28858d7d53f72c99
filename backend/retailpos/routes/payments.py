# backend/retailpos/routes/payments.py
"""
Payment API routes: additional payments, settlement of pending transfers and
refunds.
"""
from flask import Blueprint, current_app, jsonify, request

from ..extensions import db
from ..services import payment_service
from ..services.errors import LedgerError
from ..validation import (
    MAX_AMOUNT_CENTS,
    coerce_int,
    coerce_optional_int,
    coerce_optional_str,
    coerce_str,
    optional_body,
    require_fields,
)
from .responses import error_response

payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


def _unexpected(message: str):
    db.session.rollback()
    current_app.logger.exception(message)
    return jsonify({"error": "Internal server error"}), 500


@payments_bp.post("")
def record_payment():
    """
    Add a payment to a sale.

    Request body:
    {
        "sale_id": int,
        "amount_cents": int,
        "payment_method": str,
        "transaction_reference": str (optional),
        "processed_by": int (optional),
        "notes": str (optional)
    }

    Returns:
        201: Payment created
        400: Invalid request or amount exceeds remaining balance
        404: Sale not found
        409: Sale cancelled or refunded
    """
    try:
        data = require_fields(request.get_json(silent=True), "sale_id", "amount_cents", "payment_method")
        payment = payment_service.record_payment(
            sale_id=coerce_int(data["sale_id"], "sale_id", minimum=1),
            amount_cents=coerce_int(data["amount_cents"], "amount_cents", minimum=1, maximum=MAX_AMOUNT_CENTS),
            payment_method=coerce_str(data["payment_method"], "payment_method"),
            transaction_reference=coerce_optional_str(
                data.get("transaction_reference"), "transaction_reference", max_length=128
            ),
            processed_by=coerce_optional_int(data.get("processed_by"), "processed_by"),
            notes=coerce_optional_str(data.get("notes"), "notes"),
        )
        return jsonify(payment.to_dict()), 201
    except LedgerError as e:
        return error_response(e)
    except Exception:
        return _unexpected("Payment recording failed")


@payments_bp.post("/<int:payment_id>/refund")
def refund_payment(payment_id: int):
    """
    Refund a payment (in full unless amount_cents is given).

    Request body (optional):
    {
        "amount_cents": int,
        "reason": str,
        "processed_by": int
    }
    """
    try:
        data = optional_body(request.get_json(silent=True))
        refund = payment_service.refund_payment(
            payment_id,
            amount_cents=coerce_optional_int(
                data.get("amount_cents"), "amount_cents", minimum=1, maximum=MAX_AMOUNT_CENTS
            ),
            reason=coerce_optional_str(data.get("reason"), "reason"),
            processed_by=coerce_optional_int(data.get("processed_by"), "processed_by"),
        )
        return jsonify(refund.to_dict()), 201
    except LedgerError as e:
        return error_response(e)
    except Exception:
        return _unexpected("Refund failed")


@payments_bp.post("/<int:payment_id>/complete")
def complete_payment(payment_id: int):
    try:
        data = optional_body(request.get_json(silent=True))
        payment = payment_service.complete_pending_payment(
            payment_id,
            processed_by=coerce_optional_int(data.get("processed_by"), "processed_by"),
        )
        return jsonify(payment.to_dict()), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        return _unexpected("Payment completion failed")


@payments_bp.get("/sale/<int:sale_id>")
def sale_payments(sale_id: int):
    try:
        payments = payment_service.get_sale_payments(sale_id)
        return jsonify({"payments": [p.to_dict() for p in payments]}), 200
    except LedgerError as e:
        return error_response(e)
