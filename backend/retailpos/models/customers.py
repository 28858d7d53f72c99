from __future__ import annotations

from ..extensions import db
from retailpos.time_utils import to_utc_z


class Customer(db.Model):
    """
    Customer master data for loyalty and lifetime spend.

    Customers are keyed by phone: checkout looks the phone up and
    auto-provisions a customer with zero points/spend when none exists.
    loyalty_points and total_spent_cents are denormalized aggregates updated
    by the sale-commit service inside the sale's transaction.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.Index("ix_customers_status", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_code = db.Column(db.String(32), nullable=False, unique=True)

    name = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(50), nullable=False, unique=True)
    email = db.Column(db.String(255), nullable=True)

    loyalty_points = db.Column(db.Integer, nullable=False, default=0)
    total_spent_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_percentage = db.Column(db.Numeric(5, 2), nullable=False, default=0)

    status = db.Column(db.String(20), nullable=False, default="active")

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_code": self.customer_code,
            "name": self.name,
            "phone": self.phone,
            "email": self.email,
            "loyalty_points": self.loyalty_points,
            "total_spent_cents": self.total_spent_cents,
            "discount_percentage": str(self.discount_percentage) if self.discount_percentage is not None else None,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
