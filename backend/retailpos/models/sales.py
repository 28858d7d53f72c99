from __future__ import annotations

from ..extensions import db
from retailpos.time_utils import to_utc_z

SALE_STATUS_PAID = "paid"
SALE_STATUS_PARTIAL = "partial"
SALE_STATUS_UNPAID = "unpaid"
SALE_STATUS_CANCELLED = "cancelled"
SALE_STATUS_REFUNDED = "refunded"

PAYMENT_STATUS_COMPLETED = "completed"
PAYMENT_STATUS_PENDING = "pending"
PAYMENT_STATUS_FAILED = "failed"
PAYMENT_STATUS_REFUNDED = "refunded"


class Sale(db.Model):
    """
    Invoice header.

    Amounts are computed once by the sale-commit service and frozen; only
    paid_amount_cents and the void/refund fields change afterwards. status is
    derived from paid vs total unless the sale was cancelled or refunded.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.Index("ix_sales_location_date", "location_id", "sale_date"),
        db.Index("ix_sales_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable invoice number (e.g., "INV-1-000042")
    invoice = db.Column(db.String(100), nullable=False, unique=True)
    sale_date = db.Column(db.Date, nullable=False)

    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)

    # Snapshots taken at checkout
    customer_name = db.Column(db.String(255), nullable=True)
    customer_phone = db.Column(db.String(50), nullable=True)

    # External user reference
    cashier_id = db.Column(db.Integer, nullable=True)

    payment_method = db.Column(db.String(50), nullable=False, default="cash")
    tax_rate = db.Column(db.Numeric(5, 2), nullable=False, default=0)

    subtotal_cents = db.Column(db.Integer, nullable=False)
    tax_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_amount_cents = db.Column(db.Integer, nullable=False)
    paid_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(db.String(20), nullable=False, default=SALE_STATUS_UNPAID, index=True)

    # Void audit trail
    voided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    voided_by = db.Column(db.Integer, nullable=True)
    void_reason = db.Column(db.String(255), nullable=True)
    refunded_at = db.Column(db.DateTime(timezone=True), nullable=True)

    notes = db.Column(db.Text, nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    location = db.relationship("Location", backref=db.backref("sales", lazy=True))
    customer = db.relationship("Customer", backref=db.backref("sales", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def balance_due_cents(self) -> int:
        return max(self.total_amount_cents - self.paid_amount_cents, 0)

    def to_dict(self, include_lines: bool = False) -> dict:
        data = {
            "id": self.id,
            "invoice": self.invoice,
            "sale_date": self.sale_date.isoformat() if self.sale_date else None,
            "location_id": self.location_id,
            "customer_id": self.customer_id,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "cashier_id": self.cashier_id,
            "payment_method": self.payment_method,
            "tax_rate": str(self.tax_rate) if self.tax_rate is not None else None,
            "subtotal_cents": self.subtotal_cents,
            "tax_amount_cents": self.tax_amount_cents,
            "discount_amount_cents": self.discount_amount_cents,
            "total_amount_cents": self.total_amount_cents,
            "paid_amount_cents": self.paid_amount_cents,
            "balance_due_cents": self.balance_due_cents,
            "status": self.status,
            "voided_at": to_utc_z(self.voided_at) if self.voided_at else None,
            "voided_by": self.voided_by,
            "void_reason": self.void_reason,
            "refunded_at": to_utc_z(self.refunded_at) if self.refunded_at else None,
            "notes": self.notes,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
        }
        if include_lines:
            data["items"] = [line.to_dict() for line in self.lines]
            data["payments"] = [payment.to_dict() for payment in self.payments]
        return data


class SaleLineItem(db.Model):
    """One product line on a sale. Immutable after the sale commits."""
    __tablename__ = "sales_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False, index=True)
    item_name = db.Column(db.String(255), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sale = db.relationship(
        "Sale",
        backref=db.backref("lines", lazy=True, order_by="SaleLineItem.id"),
    )
    item = db.relationship("Item")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "item_id": self.item_id,
            "item_name": self.item_name,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
        }


class Payment(db.Model):
    """
    One payment event against a sale.

    Refunds are separate rows with a negative amount pointing at the payment
    they refund through refunded_payment_id; payment rows are never mutated
    except for the status of a fully refunded payment.
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.Index("ix_payments_sale_created", "sale_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)

    payment_method = db.Column(db.String(50), nullable=False, index=True)

    # Positive for payments, negative for refunds
    amount_cents = db.Column(db.Integer, nullable=False)

    status = db.Column(db.String(20), nullable=False, default=PAYMENT_STATUS_COMPLETED, index=True)

    # Processor reference (card auth code, transfer reference, ...)
    transaction_reference = db.Column(db.String(128), nullable=True)
    refunded_payment_id = db.Column(db.Integer, db.ForeignKey("payments.id"), nullable=True, index=True)

    notes = db.Column(db.Text, nullable=True)
    processed_by = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sale = db.relationship(
        "Sale",
        backref=db.backref("payments", lazy=True, order_by="Payment.id"),
    )
    refunded_payment = db.relationship("Payment", remote_side=[id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "payment_method": self.payment_method,
            "amount_cents": self.amount_cents,
            "status": self.status,
            "transaction_reference": self.transaction_reference,
            "refunded_payment_id": self.refunded_payment_id,
            "notes": self.notes,
            "processed_by": self.processed_by,
            "created_at": to_utc_z(self.created_at),
        }
