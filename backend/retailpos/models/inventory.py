from __future__ import annotations

from ..extensions import db
from retailpos.time_utils import to_utc_z

ITEM_STATUS_ACTIVE = "active"
ITEM_STATUS_INACTIVE = "inactive"

LOCATION_STATUS_ACTIVE = "active"
LOCATION_STATUS_INACTIVE = "inactive"


class Item(db.Model):
    """
    Sellable product master data.

    QUANTITY DESIGN DECISION:
    Item.quantity is a cached aggregate. The source of truth is the sum of
    LocationStock.quantity over all locations for the item; every ledger
    mutation rewrites it in the same transaction, and the reconciler repairs
    it if something bypassed the ledger.

    Items referenced by sale lines are never deleted; set status='inactive'.
    """
    __tablename__ = "items"
    __table_args__ = (
        db.Index("ix_items_status_name", "status", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(100), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=False)

    # Authoritative storage in cents
    buy_price_cents = db.Column(db.Integer, nullable=False, default=0)
    sell_price_cents = db.Column(db.Integer, nullable=False, default=0)

    quantity = db.Column(db.Integer, nullable=False, default=0)
    min_stock = db.Column(db.Integer, nullable=False, default=0)
    max_stock = db.Column(db.Integer, nullable=False, default=1000)
    allow_negative_stock = db.Column(db.Boolean, nullable=False, default=False)

    status = db.Column(db.String(20), nullable=False, default=ITEM_STATUS_ACTIVE, index=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_active(self) -> bool:
        return self.status == ITEM_STATUS_ACTIVE

    def __repr__(self) -> str:
        return f"<Item id={self.id} sku={self.sku!r} quantity={self.quantity}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "buy_price_cents": self.buy_price_cents,
            "sell_price_cents": self.sell_price_cents,
            "quantity": self.quantity,
            "min_stock": self.min_stock,
            "max_stock": self.max_stock,
            "allow_negative_stock": self.allow_negative_stock,
            "status": self.status,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Location(db.Model):
    """Physical or logical stock-holding site (store, warehouse, van)."""
    __tablename__ = "locations"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False, unique=True)
    address = db.Column(db.Text, nullable=True)
    phone = db.Column(db.String(50), nullable=True)
    status = db.Column(db.String(20), nullable=False, default=LOCATION_STATUS_ACTIVE, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    @property
    def is_active(self) -> bool:
        return self.status == LOCATION_STATUS_ACTIVE

    def __repr__(self) -> str:
        return f"<Location id={self.id} name={self.name!r} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "address": self.address,
            "phone": self.phone,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class LocationStock(db.Model):
    """
    Per-location quantity row: the primary mutable state of the stock ledger.

    One row per (location, item), created lazily with quantity 0 the first
    time the item is stocked at the location. Only the ledger services write
    to it, always under a row lock.
    """
    __tablename__ = "location_inventory"
    __table_args__ = (
        db.UniqueConstraint("location_id", "item_id", name="uq_location_inventory_location_item"),
        db.Index("ix_location_inventory_item", "item_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False, index=True)
    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False, default=0)
    min_stock = db.Column(db.Integer, nullable=False, default=0)
    max_stock = db.Column(db.Integer, nullable=False, default=1000)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    location = db.relationship("Location", backref=db.backref("stock_rows", lazy=True))
    item = db.relationship("Item", backref=db.backref("stock_rows", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_low(self) -> bool:
        return self.quantity <= self.min_stock

    def __repr__(self) -> str:
        return (
            f"<LocationStock location_id={self.location_id} item_id={self.item_id} "
            f"quantity={self.quantity}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "location_id": self.location_id,
            "item_id": self.item_id,
            "quantity": self.quantity,
            "min_stock": self.min_stock,
            "max_stock": self.max_stock,
            "is_low": self.is_low,
            "version_id": self.version_id,
            "updated_at": to_utc_z(self.updated_at),
        }


class InventoryTransfer(db.Model):
    """
    Audit row of a completed location-to-location transfer.

    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "inventory_transfers"
    __table_args__ = (
        db.Index("ix_inventory_transfers_item_created", "item_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    from_location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False, index=True)
    to_location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False, index=True)
    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)

    # External user reference (authentication lives outside this service)
    transferred_by = db.Column(db.Integer, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    item = db.relationship("Item")
    from_location = db.relationship("Location", foreign_keys=[from_location_id])
    to_location = db.relationship("Location", foreign_keys=[to_location_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "from_location_id": self.from_location_id,
            "to_location_id": self.to_location_id,
            "item_id": self.item_id,
            "quantity": self.quantity,
            "transferred_by": self.transferred_by,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }
