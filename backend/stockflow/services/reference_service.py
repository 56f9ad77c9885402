# Overview: Read-only lookups of reference data (products, batches, locations, presentations).

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional

from flask import current_app

from ..errors import BatchExpiredError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Batch, Location, Product, ProductPresentation, Warehouse
from ..time_utils import utc_today
from ..validation import ZERO, optional_int, positive_decimal


@dataclass(frozen=True)
class ResolvedQuantity:
    """A quantity input converted to base units."""
    base_quantity: Decimal
    presentation_id: Optional[int] = None
    presentation_quantity: Optional[Decimal] = None


def get_product(tenant_id: int, product_id: int, *, require_active: bool = True) -> Product:
    product = db.session.query(Product).filter_by(id=product_id, tenant_id=tenant_id).first()
    if product is None or (require_active and not product.is_active):
        raise NotFoundError(f"Product {product_id} not found", product_id=product_id)
    return product


def get_product_by_sku(tenant_id: int, sku: str) -> Product:
    normalized = (sku or "").strip().upper()
    product = (
        db.session.query(Product)
        .filter(Product.tenant_id == tenant_id, db.func.upper(Product.sku) == normalized)
        .first()
    )
    if product is None or not product.is_active:
        raise NotFoundError(f"Product with SKU {sku!r} not found", sku=sku)
    return product


def get_warehouse(tenant_id: int, warehouse_id: int) -> Warehouse:
    warehouse = db.session.query(Warehouse).filter_by(id=warehouse_id, tenant_id=tenant_id).first()
    if warehouse is None or not warehouse.is_active:
        raise NotFoundError(f"Warehouse {warehouse_id} not found", warehouse_id=warehouse_id)
    return warehouse


def get_location(tenant_id: int, location_id: int) -> Location:
    location = db.session.query(Location).filter_by(id=location_id, tenant_id=tenant_id).first()
    if location is None or not location.is_active:
        raise NotFoundError(f"Location {location_id} not found", location_id=location_id)
    return location


def get_batch(tenant_id: int, batch_id: int, product_id: int) -> Batch:
    batch = db.session.query(Batch).filter_by(id=batch_id, tenant_id=tenant_id, product_id=product_id).first()
    if batch is None:
        raise NotFoundError(f"Batch {batch_id} not found for product {product_id}", batch_id=batch_id)
    return batch


def ensure_batch_not_expired(batch: Batch) -> None:
    """Block moving stock out of an expired batch (when enabled in config)."""
    if not current_app.config.get("STOCK_BLOCK_EXPIRED_BATCHES", True):
        return
    if batch.expires_at is not None and batch.expires_at < utc_today():
        raise BatchExpiredError(
            f"Batch {batch.batch_number} expired on {batch.expires_at.isoformat()}",
            batch_id=batch.id,
            batch_number=batch.batch_number,
            expires_at=batch.expires_at.isoformat(),
        )


def get_presentation(tenant_id: int, presentation_id: int, product_id: int) -> ProductPresentation:
    pres = (
        db.session.query(ProductPresentation)
        .filter_by(id=presentation_id, tenant_id=tenant_id, is_active=True)
        .first()
    )
    if pres is None or pres.product_id != product_id:
        raise ValidationError("Invalid presentation_id for this product", presentation_id=presentation_id)
    if pres.units_per_presentation is None or pres.units_per_presentation <= ZERO:
        raise ValidationError("Invalid units_per_presentation", presentation_id=presentation_id)
    return pres


def resolve_quantity(tenant_id: int, product_id: int, data: dict[str, Any], *, field: str = "quantity") -> ResolvedQuantity:
    """
    Convert an item's quantity input to base units.

    Either:
    - presentation_id + presentation_quantity -> presentation_quantity * units_per_presentation
    - field (base units)
    """
    presentation_id = optional_int(data.get("presentation_id"), "presentation_id")
    if presentation_id is not None:
        if data.get("presentation_quantity") is None:
            raise ValidationError("presentation_quantity is required when presentation_id is provided")
        pres_qty = positive_decimal(data.get("presentation_quantity"), "presentation_quantity")
        pres = get_presentation(tenant_id, presentation_id, product_id)
        base = positive_decimal(pres_qty * Decimal(pres.units_per_presentation), field)
        return ResolvedQuantity(base_quantity=base, presentation_id=pres.id, presentation_quantity=pres_qty)

    if data.get(field) is None:
        raise ValidationError(f"{field} is required when presentation_id is not provided")
    return ResolvedQuantity(base_quantity=positive_decimal(data.get(field), field))
