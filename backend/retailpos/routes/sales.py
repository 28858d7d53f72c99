# backend/retailpos/routes/sales.py
"""
Sales API routes: checkout, lookup, payment update and void.
"""
from decimal import Decimal

from flask import Blueprint, current_app, jsonify, request

from ..extensions import db
from ..services import sales_service
from ..services.errors import LedgerError
from ..validation import (
    MAX_AMOUNT_CENTS,
    coerce_basket,
    coerce_decimal,
    coerce_int,
    coerce_optional_int,
    coerce_optional_str,
    coerce_str,
    optional_body,
    require_fields,
)
from .responses import error_response

sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.post("")
def create_sale():
    """
    Commit a sale.

    Request body:
    {
        "location_id": int,
        "customer_phone": str,
        "customer_name": str (optional),
        "items": [{"item_id": int, "quantity": int, "unit_price_cents": int (optional)}],
        "tax_rate": number (percent, optional),
        "discount_amount_cents": int (optional),
        "paid_amount_cents": int (optional),
        "payment_method": str (optional, default "cash"),
        "cashier_id": int (optional),
        "notes": str (optional)
    }

    Returns:
        201: Sale with lines and payments
        400: Invalid request, inactive item/location, discount too large
        409: Insufficient stock
        503: Lock contention, retry
    """
    try:
        data = require_fields(request.get_json(silent=True), "location_id", "customer_phone", "items")
        sale = sales_service.create_sale(
            location_id=coerce_int(data["location_id"], "location_id", minimum=1),
            items=coerce_basket(data["items"]),
            customer_phone=coerce_str(data["customer_phone"], "customer_phone", max_length=50),
            customer_name=coerce_optional_str(data.get("customer_name"), "customer_name", max_length=255),
            tax_rate=coerce_decimal(data.get("tax_rate", 0), "tax_rate", minimum=Decimal(0), maximum=Decimal(100)),
            discount_amount_cents=coerce_int(
                data.get("discount_amount_cents", 0), "discount_amount_cents", minimum=0, maximum=MAX_AMOUNT_CENTS
            ),
            paid_amount_cents=coerce_int(
                data.get("paid_amount_cents", 0), "paid_amount_cents", minimum=0, maximum=MAX_AMOUNT_CENTS
            ),
            payment_method=(
                coerce_optional_str(data.get("payment_method"), "payment_method")
                or sales_service.PAYMENT_METHOD_CASH
            ),
            cashier_id=coerce_optional_int(data.get("cashier_id"), "cashier_id"),
            notes=coerce_optional_str(data.get("notes"), "notes"),
        )
        return jsonify(sale.to_dict(include_lines=True)), 201
    except LedgerError as e:
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Sale commit failed")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/<int:sale_id>")
def get_sale(sale_id: int):
    try:
        sale = sales_service.get_sale(sale_id)
        return jsonify(sale.to_dict(include_lines=True)), 200
    except LedgerError as e:
        return error_response(e)


@sales_bp.get("/invoice/<string:invoice>")
def get_sale_by_invoice(invoice: str):
    try:
        sale = sales_service.get_sale_by_invoice(invoice)
        return jsonify(sale.to_dict(include_lines=True)), 200
    except LedgerError as e:
        return error_response(e)


@sales_bp.patch("/<int:sale_id>/payment")
def update_payment(sale_id: int):
    """
    Overwrite the paid amount of a sale.

    Request body:
    {
        "paid_amount_cents": int
    }

    Returns:
        200: Updated sale
        404: Sale not found
        409: Sale cancelled or refunded
    """
    try:
        data = require_fields(request.get_json(silent=True), "paid_amount_cents")
        sale = sales_service.update_payment(
            sale_id,
            coerce_int(data["paid_amount_cents"], "paid_amount_cents", minimum=0, maximum=MAX_AMOUNT_CENTS),
        )
        return jsonify(sale.to_dict()), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Payment update failed")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.post("/<int:sale_id>/void")
def void_sale(sale_id: int):
    """
    Cancel a sale and restock its lines.

    Request body (optional):
    {
        "voided_by": int,
        "reason": str
    }
    """
    try:
        data = optional_body(request.get_json(silent=True))
        sale = sales_service.void_sale(
            sale_id,
            voided_by=coerce_optional_int(data.get("voided_by"), "voided_by"),
            reason=coerce_optional_str(data.get("reason"), "reason", max_length=255),
        )
        return jsonify(sale.to_dict(include_lines=True)), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Sale void failed")
        return jsonify({"error": "Internal server error"}), 500
