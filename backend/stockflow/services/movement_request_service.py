# backend/stockflow/services/movement_request_service.py
"""
Movement request state machine.

WHY: A destination (branch, pharmacy) asks for stock; warehouses ship it in
one or more picks. The request tracks, per product, how much is still owed.

LIFECYCLE (status):
1. OPEN: Created. Partial shipments only decrement remaining quantities
2. FULFILLED: Every item's remaining_quantity reached zero
3. CANCELLED: Cancelled while OPEN and before any shipment

CONFIRMATION (confirmation_status), driven by reception_service once FULFILLED:
PENDING -> ACCEPTED | REJECTED
"""
from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional

from ..context import ActorContext
from ..errors import InvalidStateError, NotFoundError, OverShipmentError, ValidationError
from ..extensions import db
from ..models import MovementRequest, MovementRequestItem, StockMovement
from ..signals import (
    emit_after_commit,
    movement_request_cancelled,
    movement_request_created,
    movement_request_fulfilled,
)
from ..time_utils import utcnow
from ..validation import ZERO, format_quantity, positive_decimal, require_int
from . import reference_service
from .audit_service import append_audit_event
from .concurrency import lock_for_update, run_in_transaction


# Request status constants
REQUEST_STATUS_OPEN = "OPEN"
REQUEST_STATUS_FULFILLED = "FULFILLED"
REQUEST_STATUS_CANCELLED = "CANCELLED"

# Confirmation status constants
CONFIRMATION_PENDING = "PENDING"
CONFIRMATION_ACCEPTED = "ACCEPTED"
CONFIRMATION_REJECTED = "REJECTED"


@dataclass(frozen=True)
class ShipmentMatch:
    """A shipped quantity applied against one request item."""
    request_item_id: int
    shipped_quantity: Decimal
    source_movement_id: Optional[int] = None


def get_movement_request(tenant_id: int, request_id: int, *, lock: bool = False) -> MovementRequest:
    q = db.session.query(MovementRequest).filter_by(id=request_id, tenant_id=tenant_id)
    if lock:
        q = lock_for_update(q)
    request = q.first()
    if request is None:
        raise NotFoundError(f"Movement request {request_id} not found", request_id=request_id)
    return request


def _lock_items(request: MovementRequest) -> list[MovementRequestItem]:
    return (
        lock_for_update(
            db.session.query(MovementRequestItem).filter_by(request_id=request.id, tenant_id=request.tenant_id)
        )
        .order_by(MovementRequestItem.id)
        .all()
    )


def _has_shipments(request: MovementRequest) -> bool:
    shipped = (
        db.session.query(StockMovement.id)
        .filter_by(tenant_id=request.tenant_id, movement_request_id=request.id)
        .first()
    )
    if shipped is not None:
        return True
    return any(item.remaining_quantity < item.requested_quantity for item in request.items)


# =============================================================================
# CREATION
# =============================================================================

def _create_movement_request_inner(
    *,
    tenant_id: int,
    warehouse_id: int,
    destination_location_id: int,
    requested_by_name: str,
    items: Iterable[dict],
    note: Optional[str] = None,
    actor: Optional[ActorContext] = None,
) -> MovementRequest:
    requested_by_name = (requested_by_name or "").strip()
    if not requested_by_name:
        raise ValidationError("requested_by_name is required")

    items = list(items or [])
    if not items:
        raise ValidationError("A movement request needs at least one item")

    warehouse = reference_service.get_warehouse(tenant_id, warehouse_id)
    location = reference_service.get_location(tenant_id, destination_location_id)
    if location.warehouse_id != warehouse.id:
        raise ValidationError(
            f"Location {destination_location_id} does not belong to warehouse {warehouse_id}"
        )

    request = MovementRequest(
        tenant_id=tenant_id,
        status=REQUEST_STATUS_OPEN,
        confirmation_status=CONFIRMATION_PENDING,
        warehouse_id=warehouse.id,
        destination_location_id=location.id,
        requested_city=warehouse.city,
        requested_by_id=actor.actor_id if actor else None,
        requested_by_name=requested_by_name,
        note=note,
    )
    db.session.add(request)

    for raw in items:
        if not isinstance(raw, dict):
            raise ValidationError("Each item must be an object")
        product_id = require_int(raw.get("product_id"), "product_id")
        reference_service.get_product(tenant_id, product_id)
        resolved = reference_service.resolve_quantity(tenant_id, product_id, raw, field="requested_quantity")

        request.items.append(
            MovementRequestItem(
                tenant_id=tenant_id,
                product_id=product_id,
                requested_quantity=resolved.base_quantity,
                remaining_quantity=resolved.base_quantity,
                presentation_id=resolved.presentation_id,
                presentation_quantity=resolved.presentation_quantity,
            )
        )

    db.session.flush()

    append_audit_event(
        tenant_id=tenant_id,
        action="movement_request.created",
        entity_type="movement_request",
        entity_id=request.id,
        actor=actor,
        payload={"warehouse_id": warehouse.id, "items_count": len(request.items)},
    )
    emit_after_commit(db.session, movement_request_created, request=request.to_dict())
    return request


def create_movement_request(
    *,
    tenant_id: int,
    warehouse_id: int,
    destination_location_id: int,
    requested_by_name: str,
    items: Iterable[dict],
    note: Optional[str] = None,
    actor: Optional[ActorContext] = None,
) -> MovementRequest:
    """
    Create a movement request (status OPEN, confirmation PENDING).

    Args:
        tenant_id: Tenant owning the request
        warehouse_id: Destination warehouse
        destination_location_id: Location in that warehouse receiving the goods
        requested_by_name: Display name of the requester
        items: [{product_id, requested_quantity}] or
               [{product_id, presentation_id, presentation_quantity}]
        note: Optional free text

    Returns:
        MovementRequest with remaining_quantity == requested_quantity per item

    Raises:
        ValidationError: empty items, non-positive quantity, bad presentation
        NotFoundError: unknown warehouse, location or product
    """
    def _op():
        return _create_movement_request_inner(
            tenant_id=tenant_id,
            warehouse_id=warehouse_id,
            destination_location_id=destination_location_id,
            requested_by_name=requested_by_name,
            items=items,
            note=note,
            actor=actor,
        )

    return run_in_transaction(_op)


# =============================================================================
# CANCELLATION
# =============================================================================

def cancel_movement_request(
    *,
    tenant_id: int,
    request_id: int,
    reason: Optional[str] = None,
    actor: Optional[ActorContext] = None,
) -> MovementRequest:
    """
    Cancel a request that is OPEN and has not shipped anything yet.

    Raises:
        InvalidStateError: not OPEN, or shipments already exist
    """
    def _op():
        request = get_movement_request(tenant_id, request_id, lock=True)

        if request.status != REQUEST_STATUS_OPEN:
            raise InvalidStateError(f"Cannot cancel movement request in {request.status} status")

        if _has_shipments(request):
            raise InvalidStateError("Cannot cancel a movement request that already has shipments")

        request.status = REQUEST_STATUS_CANCELLED
        request.cancelled_at = utcnow()
        request.cancelled_by = actor.label if actor else None
        request.cancellation_reason = reason
        db.session.flush()

        append_audit_event(
            tenant_id=tenant_id,
            action="movement_request.cancelled",
            entity_type="movement_request",
            entity_id=request.id,
            actor=actor,
            payload={"reason": reason},
        )
        emit_after_commit(db.session, movement_request_cancelled, request=request.to_dict())
        return request

    return run_in_transaction(_op)


# =============================================================================
# SHIPMENT RECONCILIATION
# =============================================================================

def _record_shipment_inner(
    request: MovementRequest,
    item_matches: Iterable[ShipmentMatch],
    *,
    actor: Optional[ActorContext] = None,
) -> MovementRequest:
    """Apply shipped quantities to a locked request without committing.

    Every match is validated before any item changes, so an over-shipment
    on one item leaves all items untouched.
    """
    if request.status != REQUEST_STATUS_OPEN:
        raise InvalidStateError(f"Cannot record shipments on movement request in {request.status} status")

    items = {item.id: item for item in _lock_items(request)}

    item_matches = list(item_matches)
    shipped_by_item: "OrderedDict[int, Decimal]" = OrderedDict()
    for match in item_matches:
        item = items.get(match.request_item_id)
        if item is None:
            raise NotFoundError(
                f"Item {match.request_item_id} does not belong to movement request {request.id}",
                request_item_id=match.request_item_id,
            )
        qty = positive_decimal(match.shipped_quantity, "shipped_quantity")
        shipped_by_item[item.id] = shipped_by_item.get(item.id, ZERO) + qty

    if not shipped_by_item:
        raise ValidationError("No shipped quantities to record")

    for item_id, shipped in shipped_by_item.items():
        item = items[item_id]
        remaining = Decimal(item.remaining_quantity)
        if shipped > remaining:
            raise OverShipmentError(
                f"Shipping {format_quantity(shipped)} of product {item.product_id} exceeds the "
                f"remaining {format_quantity(remaining)} on request item {item.id}",
                request_item_id=item.id,
                remaining_quantity=format_quantity(remaining),
                shipped_quantity=format_quantity(shipped),
            )

    for item_id, shipped in shipped_by_item.items():
        item = items[item_id]
        item.remaining_quantity = Decimal(item.remaining_quantity) - shipped

    # Touch the request so concurrent shipments serialize on its version too
    request.updated_at = utcnow()

    if all(Decimal(item.remaining_quantity) == ZERO for item in items.values()):
        request.status = REQUEST_STATUS_FULFILLED
        request.fulfilled_at = utcnow()
        request.fulfilled_by = actor.label if actor else None

    db.session.flush()

    append_audit_event(
        tenant_id=request.tenant_id,
        action="movement_request.shipment_recorded",
        entity_type="movement_request",
        entity_id=request.id,
        actor=actor,
        payload={
            "matches": [
                {
                    "request_item_id": m.request_item_id,
                    "shipped_quantity": format_quantity(positive_decimal(m.shipped_quantity, "shipped_quantity")),
                    "source_movement_id": m.source_movement_id,
                }
                for m in item_matches
            ],
        },
    )

    if request.status == REQUEST_STATUS_FULFILLED:
        append_audit_event(
            tenant_id=request.tenant_id,
            action="movement_request.fulfilled",
            entity_type="movement_request",
            entity_id=request.id,
            actor=actor,
        )
        emit_after_commit(db.session, movement_request_fulfilled, request=request.to_dict())

    return request


def record_shipment(
    *,
    tenant_id: int,
    request_id: int,
    item_matches: Iterable[ShipmentMatch],
    actor: Optional[ActorContext] = None,
) -> MovementRequest:
    """
    Decrement remaining quantities for shipped goods.

    Transitions to FULFILLED (stamping fulfilled_at) once every item reaches
    zero. Stock itself is moved by fulfillment_service; this only reconciles
    the request's counters.

    Raises:
        OverShipmentError: a match exceeds its item's remaining quantity
        InvalidStateError: request is not OPEN
    """
    matches = list(item_matches)

    def _op():
        request = get_movement_request(tenant_id, request_id, lock=True)
        return _record_shipment_inner(request, matches, actor=actor)

    return run_in_transaction(_op)


# =============================================================================
# READS
# =============================================================================

def get_movement_request_summary(tenant_id: int, request_id: int) -> dict:
    """Request with its items and the shipment legs created for it."""
    request = get_movement_request(tenant_id, request_id)
    movements = (
        db.session.query(StockMovement)
        .filter_by(tenant_id=tenant_id, movement_request_id=request.id)
        .order_by(StockMovement.id)
        .all()
    )
    shipments = [m for m in movements if m.reverses_movement_id is None]
    returns = [m for m in movements if m.reverses_movement_id is not None]
    pending_total = sum((Decimal(m.pending_quantity) for m in shipments), ZERO)

    return {
        **request.to_dict(),
        "items": [item.to_dict() for item in request.items],
        "shipments": [m.to_dict() for m in shipments],
        "returns": [m.to_dict() for m in returns],
        "pending_quantity": format_quantity(pending_total),
    }


def list_movement_requests(
    *,
    tenant_id: int,
    status: Optional[str] = None,
    confirmation_status: Optional[str] = None,
    warehouse_id: Optional[int] = None,
    city: Optional[str] = None,
    limit: int = 100,
) -> list[MovementRequest]:
    q = db.session.query(MovementRequest).filter_by(tenant_id=tenant_id)
    if status:
        q = q.filter_by(status=status.upper())
    if confirmation_status:
        q = q.filter_by(confirmation_status=confirmation_status.upper())
    if warehouse_id is not None:
        q = q.filter_by(warehouse_id=warehouse_id)
    if city:
        q = q.filter(db.func.upper(MovementRequest.requested_city) == city.strip().upper())
    return q.order_by(MovementRequest.created_at.desc(), MovementRequest.id.desc()).limit(limit).all()
