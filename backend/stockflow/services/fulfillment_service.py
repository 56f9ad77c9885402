# backend/stockflow/services/fulfillment_service.py
"""
Fulfillment & picking reconciler.

WHY: Warehouse staff pick stock (any compliant batch, typically FEFO) from
their own locations to satisfy an OPEN movement request. Each picked line
has to be tied back to the request item it satisfies, shipped through the
balance ledger, and deducted from what the request still needs.

MATCHING:
- request_item_id on the picked line is the stable key and always wins.
- Without it, the line is matched by product identity (product_id, or sku
  when the picking list comes from an external system) and its quantity is
  allocated across the request's open items for that product in item order.

ATOMICITY: The whole picking list is planned and validated before anything
moves. One over-shipped line rejects the entire fulfillment.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, Optional

from ..context import ActorContext
from ..errors import InvalidStateError, OverShipmentError, ValidationError
from ..models import MovementRequest, MovementRequestItem, Product, StockMovement
from ..validation import ZERO, format_quantity, optional_int, require_int
from . import reference_service
from .audit_service import append_audit_event
from .balance_service import _apply_movement_inner
from .concurrency import run_in_transaction
from .movement_request_service import (
    REQUEST_STATUS_OPEN,
    ShipmentMatch,
    _lock_items,
    _record_shipment_inner,
    get_movement_request,
)


REFERENCE_REQUEST_FULFILLMENT = "REQUEST_FULFILLMENT"


@dataclass(frozen=True)
class PickedLine:
    """One line of a picking list, already resolved to base units."""
    product: Product
    from_location_id: int
    quantity: Decimal
    batch_id: Optional[int] = None
    request_item_id: Optional[int] = None
    presentation_id: Optional[int] = None
    presentation_quantity: Optional[Decimal] = None
    note: Optional[str] = None


@dataclass
class FulfillmentResult:
    request: MovementRequest
    movements: list[StockMovement] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "request": self.request.to_dict(),
            "items": [item.to_dict() for item in self.request.items],
            "movements": [m.to_dict() for m in self.movements],
        }


def _parse_picked_line(tenant_id: int, raw: dict) -> PickedLine:
    if not isinstance(raw, dict):
        raise ValidationError("Each picked line must be an object")

    product_id = optional_int(raw.get("product_id"), "product_id")
    if product_id is not None:
        product = reference_service.get_product(tenant_id, product_id)
    elif raw.get("sku"):
        product = reference_service.get_product_by_sku(tenant_id, str(raw["sku"]))
    else:
        raise ValidationError("Each picked line needs product_id or sku")

    resolved = reference_service.resolve_quantity(tenant_id, product.id, raw)
    return PickedLine(
        product=product,
        from_location_id=require_int(raw.get("from_location_id"), "from_location_id"),
        quantity=resolved.base_quantity,
        batch_id=optional_int(raw.get("batch_id"), "batch_id"),
        request_item_id=optional_int(raw.get("request_item_id"), "request_item_id"),
        presentation_id=resolved.presentation_id,
        presentation_quantity=resolved.presentation_quantity,
        note=raw.get("note"),
    )


def _plan_allocations(
    request: MovementRequest,
    items: list[MovementRequestItem],
    lines: list[PickedLine],
) -> list[tuple[PickedLine, MovementRequestItem, Decimal]]:
    """
    Match every picked line to request items.

    Returns (line, item, quantity) legs. A line matched by product may be
    split over several items; a line matched by request_item_id never is.
    """
    by_id = {item.id: item for item in items}
    remaining = {item.id: Decimal(item.remaining_quantity) for item in items}
    legs: list[tuple[PickedLine, MovementRequestItem, Decimal]] = []

    for line in lines:
        if line.request_item_id is not None:
            item = by_id.get(line.request_item_id)
            if item is None:
                raise ValidationError(
                    f"Item {line.request_item_id} does not belong to movement request {request.id}",
                    request_item_id=line.request_item_id,
                )
            if item.product_id != line.product.id:
                raise ValidationError(
                    f"Picked product {line.product.sku} does not match request item {item.id}",
                    request_item_id=item.id,
                )
            if line.quantity > remaining[item.id]:
                raise OverShipmentError(
                    f"Picked {format_quantity(line.quantity)} of {line.product.sku} exceeds the remaining "
                    f"{format_quantity(remaining[item.id])} on request item {item.id}",
                    request_item_id=item.id,
                    remaining_quantity=format_quantity(remaining[item.id]),
                    picked_quantity=format_quantity(line.quantity),
                )
            remaining[item.id] -= line.quantity
            legs.append((line, item, line.quantity))
            continue

        candidates = [i for i in items if i.product_id == line.product.id and remaining[i.id] > ZERO]
        open_total = sum((remaining[i.id] for i in candidates), ZERO)
        if line.quantity > open_total:
            raise OverShipmentError(
                f"Picked {format_quantity(line.quantity)} of {line.product.sku} exceeds the remaining "
                f"{format_quantity(open_total)} requested for that product",
                product_id=line.product.id,
                remaining_quantity=format_quantity(open_total),
                picked_quantity=format_quantity(line.quantity),
            )

        to_apply = line.quantity
        for item in candidates:
            if to_apply <= ZERO:
                break
            applied = min(remaining[item.id], to_apply)
            remaining[item.id] -= applied
            to_apply -= applied
            legs.append((line, item, applied))

    return legs


def fulfill_movement_request(
    *,
    tenant_id: int,
    request_id: int,
    picked_lines: Iterable[dict],
    actor: Optional[ActorContext] = None,
) -> FulfillmentResult:
    """
    Ship picked stock against an OPEN movement request.

    For every matched leg:
    - creates a TRANSFER StockMovement (picked location -> request destination)
      with pending_quantity = quantity
    - moves the stock through the balance ledger
    - decrements the matched item's remaining_quantity

    May be called repeatedly for progressive partial shipment; the request
    becomes FULFILLED when nothing remains.

    Args:
        tenant_id: Tenant scope
        request_id: Movement request to fulfil
        picked_lines: [{from_location_id, product_id | sku, batch_id?,
                        quantity | presentation_id + presentation_quantity,
                        request_item_id?}]

    Returns:
        FulfillmentResult: updated request and the created movements

    Raises:
        OverShipmentError: any line exceeds what is still requested
        InvalidStateError: request is not OPEN
        NotFoundError: request, product or location missing
        InsufficientStockError / InsufficientAvailableError: source short of stock
    """
    raw_lines = list(picked_lines or [])

    def _op():
        if not raw_lines:
            raise ValidationError("picked_lines must not be empty")

        request = get_movement_request(tenant_id, request_id, lock=True)
        if request.status != REQUEST_STATUS_OPEN:
            raise InvalidStateError(f"Cannot fulfil movement request in {request.status} status")

        lines = [_parse_picked_line(tenant_id, raw) for raw in raw_lines]
        items = _lock_items(request)
        legs = _plan_allocations(request, items, lines)

        result = FulfillmentResult(request=request)
        matches: list[ShipmentMatch] = []
        for line, item, qty in legs:
            whole_line = qty == line.quantity
            movement = _apply_movement_inner(
                tenant_id=tenant_id,
                product_id=line.product.id,
                quantity=qty,
                batch_id=line.batch_id,
                from_location_id=line.from_location_id,
                to_location_id=request.destination_location_id,
                pending_quantity=qty,
                reference_type=REFERENCE_REQUEST_FULFILLMENT,
                reference_id=request.id,
                movement_request_id=request.id,
                movement_request_item_id=item.id,
                presentation_id=line.presentation_id if whole_line else None,
                presentation_quantity=line.presentation_quantity if whole_line else None,
                note=line.note,
                actor=actor,
            )
            result.movements.append(movement)
            matches.append(
                ShipmentMatch(request_item_id=item.id, shipped_quantity=qty, source_movement_id=movement.id)
            )

        _record_shipment_inner(request, matches, actor=actor)

        append_audit_event(
            tenant_id=tenant_id,
            action="movement_request.picked",
            entity_type="movement_request",
            entity_id=request.id,
            actor=actor,
            payload={
                "movement_ids": [m.id for m in result.movements],
                "status": request.status,
            },
        )
        return result

    return run_in_transaction(_op)
