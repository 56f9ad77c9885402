from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from ..validation import format_quantity


class StockReturn(db.Model):
    """
    Reversal record: goods brought back into a location.

    SOURCES:
    - Standalone (source_type NULL or free text): an operator returns stock
      that had already been received, with a reason and optional photo.
    - MOVEMENT_REQUEST: reversal of shipped, unreceived quantities of a
      request; items carry out_movement_id.

    IMMUTABLE: never updated or deleted after creation.
    """
    __tablename__ = "stock_returns"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "number", name="uq_stock_returns_tenant_number"),
        db.Index("ix_stock_returns_tenant_created", "tenant_id", "created_at"),
        db.Index("ix_stock_returns_tenant_location", "tenant_id", "to_location_id"),
        db.Index("ix_stock_returns_source", "source_type", "source_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, nullable=False, index=True)
    number = db.Column(db.String(32), nullable=False)

    to_location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False)

    source_type = db.Column(db.String(32), nullable=True)
    source_id = db.Column(db.Integer, nullable=True)

    reason = db.Column(db.Text, nullable=False)
    # Evidence is stored by an external object store; only its key/url lives here
    photo_key = db.Column(db.String(512), nullable=True)
    photo_url = db.Column(db.String(1024), nullable=True)
    note = db.Column(db.Text, nullable=True)

    created_by = db.Column(db.String(128), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    to_location = db.relationship("Location")
    items = db.relationship("StockReturnItem", backref="stock_return", lazy=True, order_by="StockReturnItem.id")

    def __repr__(self) -> str:
        return f"<StockReturn id={self.id} number={self.number!r} to_location_id={self.to_location_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "number": self.number,
            "to_location_id": self.to_location_id,
            "source_type": self.source_type,
            "source_id": self.source_id,
            "reason": self.reason,
            "photo_key": self.photo_key,
            "photo_url": self.photo_url,
            "note": self.note,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "items": [item.to_dict() for item in self.items],
        }


class StockReturnItem(db.Model):
    __tablename__ = "stock_return_items"
    __table_args__ = (
        db.Index("ix_stock_return_items_tenant_product", "tenant_id", "product_id"),
        db.CheckConstraint("quantity > 0", name="ck_stock_return_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, nullable=False, index=True)
    return_id = db.Column(db.Integer, db.ForeignKey("stock_returns.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    batch_id = db.Column(db.Integer, db.ForeignKey("batches.id"), nullable=True)

    quantity = db.Column(db.Numeric(18, 4), nullable=False)
    presentation_id = db.Column(db.Integer, db.ForeignKey("product_presentations.id"), nullable=True)
    presentation_quantity = db.Column(db.Numeric(18, 4), nullable=True)

    # Shipment being reversed (request returns only)
    out_movement_id = db.Column(db.Integer, db.ForeignKey("stock_movements.id"), nullable=True, index=True)
    # Ledger entry created by this return item
    movement_id = db.Column(db.Integer, db.ForeignKey("stock_movements.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "return_id": self.return_id,
            "product_id": self.product_id,
            "batch_id": self.batch_id,
            "quantity": format_quantity(self.quantity),
            "presentation_id": self.presentation_id,
            "presentation_quantity": format_quantity(self.presentation_quantity),
            "out_movement_id": self.out_movement_id,
            "movement_id": self.movement_id,
        }
