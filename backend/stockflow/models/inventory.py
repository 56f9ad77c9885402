from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from ..validation import format_quantity


class InventoryBalance(db.Model):
    """
    Running on-hand and reserved quantity per (tenant, product, batch, location).

    INVARIANTS:
    - quantity >= 0
    - 0 <= reserved_quantity <= quantity
    - available = quantity - reserved_quantity >= 0

    Only balance_service mutates these rows. Rows are created on the first
    movement into a location and never deleted; zero rows stay for history.

    CONCURRENCY: version_id is SQLAlchemy's optimistic lock column. An UPDATE
    whose version no longer matches raises StaleDataError.
    """
    __tablename__ = "inventory_balances"
    __table_args__ = (
        db.UniqueConstraint(
            "tenant_id", "product_id", "batch_id", "location_id",
            name="uq_balances_tenant_product_batch_location",
        ),
        db.Index("ix_balances_tenant_location", "tenant_id", "location_id"),
        db.Index("ix_balances_tenant_product", "tenant_id", "product_id"),
        db.CheckConstraint("quantity >= 0", name="ck_balances_quantity_nonneg"),
        db.CheckConstraint("reserved_quantity >= 0", name="ck_balances_reserved_nonneg"),
        db.CheckConstraint("reserved_quantity <= quantity", name="ck_balances_reserved_le_quantity"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    batch_id = db.Column(db.Integer, db.ForeignKey("batches.id"), nullable=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False)

    quantity = db.Column(db.Numeric(18, 4), nullable=False, default=0)
    reserved_quantity = db.Column(db.Numeric(18, 4), nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def available_quantity(self):
        return self.quantity - self.reserved_quantity

    def __repr__(self) -> str:
        return (
            f"<InventoryBalance product_id={self.product_id} batch_id={self.batch_id} "
            f"location_id={self.location_id} qty={self.quantity} reserved={self.reserved_quantity}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "product_id": self.product_id,
            "batch_id": self.batch_id,
            "location_id": self.location_id,
            "quantity": format_quantity(self.quantity),
            "reserved_quantity": format_quantity(self.reserved_quantity),
            "available_quantity": format_quantity(self.available_quantity),
            "version_id": self.version_id,
            "updated_at": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """
    Immutable ledger entry: a quantity of (product, batch) moved between locations.

    TYPES:
    - IN: to_location only (returns to stock, receipts)
    - OUT: from_location only
    - TRANSFER: both locations

    pending_quantity tracks the part of an outbound request shipment that the
    destination has not yet received or returned. It starts equal to quantity
    for request shipments and at zero for every other movement.
    It is the only column that changes after creation.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "number", name="uq_movements_tenant_number"),
        db.Index("ix_movements_tenant_reference", "tenant_id", "reference_type", "reference_id"),
        db.Index("ix_movements_request_pending", "movement_request_id", "pending_quantity"),
        db.CheckConstraint("quantity > 0", name="ck_movements_quantity_positive"),
        db.CheckConstraint("pending_quantity >= 0", name="ck_movements_pending_nonneg"),
        db.CheckConstraint("pending_quantity <= quantity", name="ck_movements_pending_le_quantity"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, nullable=False, index=True)

    # Human-readable number (e.g. "MS-2026-000042"), unique per tenant
    number = db.Column(db.String(32), nullable=False)

    movement_type = db.Column(db.String(16), nullable=False, index=True)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    batch_id = db.Column(db.Integer, db.ForeignKey("batches.id"), nullable=True)
    from_location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=True, index=True)
    to_location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=True, index=True)

    quantity = db.Column(db.Numeric(18, 4), nullable=False)
    pending_quantity = db.Column(db.Numeric(18, 4), nullable=False, default=0)

    presentation_id = db.Column(db.Integer, db.ForeignKey("product_presentations.id"), nullable=True)
    presentation_quantity = db.Column(db.Numeric(18, 4), nullable=True)

    # Originating operation: REQUEST_FULFILLMENT, RETURN, RESERVATION, ...
    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.Integer, nullable=True)

    # Stable keys recorded at shipment time for request reconciliation
    movement_request_id = db.Column(db.Integer, db.ForeignKey("movement_requests.id"), nullable=True, index=True)
    movement_request_item_id = db.Column(db.Integer, db.ForeignKey("movement_request_items.id"), nullable=True)

    # Return legs point at the shipment they reverse
    reverses_movement_id = db.Column(db.Integer, db.ForeignKey("stock_movements.id"), nullable=True)

    note = db.Column(db.String(255), nullable=True)
    created_by = db.Column(db.String(128), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    movement_request = db.relationship("MovementRequest", backref=db.backref("movements", lazy=True))
    reverses_movement = db.relationship("StockMovement", remote_side=[id])

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return (
            f"<StockMovement id={self.id} number={self.number!r} type={self.movement_type} "
            f"qty={self.quantity} pending={self.pending_quantity}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "number": self.number,
            "movement_type": self.movement_type,
            "product_id": self.product_id,
            "batch_id": self.batch_id,
            "from_location_id": self.from_location_id,
            "to_location_id": self.to_location_id,
            "quantity": format_quantity(self.quantity),
            "pending_quantity": format_quantity(self.pending_quantity),
            "presentation_id": self.presentation_id,
            "presentation_quantity": format_quantity(self.presentation_quantity),
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "movement_request_id": self.movement_request_id,
            "movement_request_item_id": self.movement_request_item_id,
            "reverses_movement_id": self.reverses_movement_id,
            "note": self.note,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
        }
