from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from ..validation import format_quantity


class MovementRequest(db.Model):
    """
    A destination's ask for stock.

    LIFECYCLE (status):
    1. OPEN: Created; may receive any number of partial shipments
    2. FULFILLED: Every item's remaining_quantity reached zero
    3. CANCELLED: Cancelled while OPEN and before any shipment (terminal)

    CONFIRMATION (confirmation_status), meaningful once FULFILLED:
    - PENDING: Shipped goods still (partly) in transit
    - ACCEPTED: Destination confirmed reception
    - REJECTED: Everything that was pending has been returned to origin

    Terminal once CANCELLED, ACCEPTED or REJECTED.
    """
    __tablename__ = "movement_requests"
    __table_args__ = (
        db.Index("ix_movement_requests_tenant_status", "tenant_id", "status"),
        db.Index("ix_movement_requests_tenant_confirmation", "tenant_id", "confirmation_status"),
        db.Index("ix_movement_requests_tenant_warehouse", "tenant_id", "warehouse_id"),
        db.Index("ix_movement_requests_tenant_city_status", "tenant_id", "requested_city", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default="OPEN")
    confirmation_status = db.Column(db.String(16), nullable=False, default="PENDING")

    # Destination
    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False)
    destination_location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False)
    requested_city = db.Column(db.String(128), nullable=True)

    requested_by_id = db.Column(db.String(128), nullable=True)
    requested_by_name = db.Column(db.String(255), nullable=False)
    note = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    fulfilled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    fulfilled_by = db.Column(db.String(128), nullable=True)

    confirmed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    confirmed_by = db.Column(db.String(128), nullable=True)
    confirmation_note = db.Column(db.Text, nullable=True)

    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by = db.Column(db.String(128), nullable=True)
    cancellation_reason = db.Column(db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    warehouse = db.relationship("Warehouse")
    destination_location = db.relationship("Location")
    items = db.relationship(
        "MovementRequestItem",
        backref="request",
        lazy=True,
        order_by="MovementRequestItem.id",
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return (
            f"<MovementRequest id={self.id} status={self.status} "
            f"confirmation={self.confirmation_status} tenant_id={self.tenant_id}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "status": self.status,
            "confirmation_status": self.confirmation_status,
            "warehouse_id": self.warehouse_id,
            "destination_location_id": self.destination_location_id,
            "requested_city": self.requested_city,
            "requested_by_id": self.requested_by_id,
            "requested_by_name": self.requested_by_name,
            "note": self.note,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "fulfilled_at": to_utc_z(self.fulfilled_at),
            "fulfilled_by": self.fulfilled_by,
            "confirmed_at": to_utc_z(self.confirmed_at),
            "confirmed_by": self.confirmed_by,
            "confirmation_note": self.confirmation_note,
            "cancelled_at": to_utc_z(self.cancelled_at),
            "cancelled_by": self.cancelled_by,
            "cancellation_reason": self.cancellation_reason,
            "version_id": self.version_id,
        }


class MovementRequestItem(db.Model):
    """
    One requested product on a MovementRequest, in base units.

    INVARIANT: 0 <= remaining_quantity <= requested_quantity.
    Items are product-scoped, not batch-scoped: any batch may satisfy them.
    """
    __tablename__ = "movement_request_items"
    __table_args__ = (
        db.Index("ix_request_items_tenant_product_remaining", "tenant_id", "product_id", "remaining_quantity"),
        db.CheckConstraint("requested_quantity > 0", name="ck_request_items_requested_positive"),
        db.CheckConstraint("remaining_quantity >= 0", name="ck_request_items_remaining_nonneg"),
        db.CheckConstraint(
            "remaining_quantity <= requested_quantity",
            name="ck_request_items_remaining_le_requested",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, nullable=False, index=True)
    request_id = db.Column(db.Integer, db.ForeignKey("movement_requests.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    requested_quantity = db.Column(db.Numeric(18, 4), nullable=False)
    remaining_quantity = db.Column(db.Numeric(18, 4), nullable=False)

    presentation_id = db.Column(db.Integer, db.ForeignKey("product_presentations.id"), nullable=True)
    presentation_quantity = db.Column(db.Numeric(18, 4), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    product = db.relationship("Product")
    presentation = db.relationship("ProductPresentation")

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def shipped_quantity(self):
        return self.requested_quantity - self.remaining_quantity

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "request_id": self.request_id,
            "product_id": self.product_id,
            "sku": self.product.sku if self.product else None,
            "product_name": self.product.name if self.product else None,
            "requested_quantity": format_quantity(self.requested_quantity),
            "remaining_quantity": format_quantity(self.remaining_quantity),
            "shipped_quantity": format_quantity(self.shipped_quantity),
            "presentation_id": self.presentation_id,
            "presentation_quantity": format_quantity(self.presentation_quantity),
            "version_id": self.version_id,
        }
