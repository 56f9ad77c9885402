# backend/stockflow/services/reception_service.py
"""
Reception & return processor.

WHY: Stock shipped against a movement request lands on the destination's
books immediately (the ledger moves it at pick time) but stays "pending"
until the destination decides. The destination either confirms reception
or sends (part of) it back.

RECEIVE:
- Clears pending_quantity on every outbound leg of the request
- Does not touch balances again
- confirmation_status PENDING -> ACCEPTED

RETURN:
- ALL: reverse the full pending quantity of every outbound leg
- PARTIAL: reverse caller-chosen quantities per outbound leg
- Each reversal is a TRANSFER destination -> origin linked to the leg it
  reverses; confirmation_status becomes REJECTED once nothing is pending

STANDALONE RETURN:
- Stock already received comes back into a location (IN movements), with a
  reason and optional photo evidence. No request bookkeeping.
"""
from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional

from ..context import ActorContext
from ..errors import (
    AlreadyConfirmedError,
    ExcessReturnError,
    NotFoundError,
    NotFulfilledError,
    ValidationError,
)
from ..extensions import db
from ..models import Location, MovementRequest, StockMovement, StockReturn, StockReturnItem
from ..signals import emit_after_commit, movement_request_confirmed, stock_return_created
from ..time_utils import utcnow
from ..validation import ZERO, format_quantity, optional_int, positive_decimal, require_int
from . import reference_service
from .audit_service import append_audit_event
from .balance_service import _apply_movement_inner
from .concurrency import lock_for_update, run_in_transaction
from .document_service import next_document_number
from .movement_request_service import (
    CONFIRMATION_ACCEPTED,
    CONFIRMATION_PENDING,
    CONFIRMATION_REJECTED,
    REQUEST_STATUS_FULFILLED,
    get_movement_request,
)


RETURN_MODE_ALL = "ALL"
RETURN_MODE_PARTIAL = "PARTIAL"

REFERENCE_RETURN = "RETURN"
SOURCE_MOVEMENT_REQUEST = "MOVEMENT_REQUEST"

DEFAULT_REQUEST_RETURN_REASON = "Shipment returned to origin"


@dataclass(frozen=True)
class Evidence:
    """Photo evidence already stored elsewhere; only its key/url are kept."""
    photo_key: Optional[str] = None
    photo_url: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional["Evidence"]:
        if not data:
            return None
        if not isinstance(data, dict):
            raise ValidationError("evidence must be an object")
        return cls(photo_key=data.get("photo_key"), photo_url=data.get("photo_url"))


def _ensure_awaiting_decision(request: MovementRequest) -> None:
    if request.status != REQUEST_STATUS_FULFILLED:
        raise NotFulfilledError(
            f"Movement request {request.id} is {request.status}, not FULFILLED",
            request_id=request.id,
            status=request.status,
        )
    if request.confirmation_status != CONFIRMATION_PENDING:
        raise AlreadyConfirmedError(
            f"Movement request {request.id} is already {request.confirmation_status}",
            request_id=request.id,
            confirmation_status=request.confirmation_status,
        )


def _outbound_movements(request: MovementRequest) -> list[StockMovement]:
    """Locked outbound legs of the request (return legs excluded)."""
    return (
        lock_for_update(
            db.session.query(StockMovement).filter(
                StockMovement.tenant_id == request.tenant_id,
                StockMovement.movement_request_id == request.id,
                StockMovement.reverses_movement_id.is_(None),
            )
        )
        .order_by(StockMovement.id)
        .all()
    )


def _next_return_number(tenant_id: int) -> str:
    return next_document_number(tenant_id=tenant_id, document_type="STOCK_RETURN", prefix="DV")


# =============================================================================
# RECEIVE
# =============================================================================

def confirm_reception(
    *,
    tenant_id: int,
    request_id: int,
    note: Optional[str] = None,
    actor: Optional[ActorContext] = None,
) -> MovementRequest:
    """
    Accept every pending shipped quantity of a FULFILLED request.

    Only clears in-transit flags: the destination balance was already
    incremented when the stock was picked.

    Raises:
        NotFulfilledError: request is not FULFILLED
        AlreadyConfirmedError: confirmation_status is not PENDING
    """
    def _op():
        request = get_movement_request(tenant_id, request_id, lock=True)
        _ensure_awaiting_decision(request)

        accepted = ZERO
        cleared_ids: list[int] = []
        for movement in _outbound_movements(request):
            pending = Decimal(movement.pending_quantity)
            if pending > ZERO:
                accepted += pending
                movement.pending_quantity = ZERO
                cleared_ids.append(movement.id)

        now = utcnow()
        request.confirmation_status = CONFIRMATION_ACCEPTED
        request.confirmed_at = now
        request.confirmed_by = actor.label if actor else None
        request.confirmation_note = note
        request.updated_at = now
        db.session.flush()

        append_audit_event(
            tenant_id=tenant_id,
            action="movement_request.received",
            entity_type="movement_request",
            entity_id=request.id,
            actor=actor,
            payload={"movement_ids": cleared_ids, "accepted_quantity": format_quantity(accepted)},
        )
        emit_after_commit(db.session, movement_request_confirmed, request=request.to_dict())
        return request

    return run_in_transaction(_op)


# =============================================================================
# RETURN AGAINST A REQUEST
# =============================================================================

def _parse_partial_items(items: Optional[Iterable[dict]]) -> "OrderedDict[int, Decimal]":
    raw_items = list(items or [])
    if not raw_items:
        raise ValidationError("items are required for a PARTIAL return")

    by_movement: "OrderedDict[int, Decimal]" = OrderedDict()
    for raw in raw_items:
        if not isinstance(raw, dict):
            raise ValidationError("Each return item must be an object")
        movement_id = require_int(raw.get("out_movement_id"), "out_movement_id")
        qty = positive_decimal(raw.get("quantity"), "quantity")
        by_movement[movement_id] = by_movement.get(movement_id, ZERO) + qty
    return by_movement


def return_shipment(
    *,
    tenant_id: int,
    request_id: int,
    mode: str,
    items: Optional[Iterable[dict]] = None,
    reason: Optional[str] = None,
    note: Optional[str] = None,
    evidence: Optional[Evidence] = None,
    actor: Optional[ActorContext] = None,
) -> MovementRequest:
    """
    Send shipped, unreceived stock back to where it was picked.

    Args:
        mode: "ALL" reverses every leg's full pending quantity;
              "PARTIAL" reverses [{out_movement_id, quantity}]
        reason: Stored on the StockReturn records

    Returns:
        The request; confirmation_status is REJECTED once nothing is pending,
        otherwise still PENDING.

    Raises:
        ExcessReturnError: a quantity exceeds the leg's pending_quantity
        NotFoundError: out_movement_id is not an outbound leg of the request
        NotFulfilledError / AlreadyConfirmedError
    """
    normalized_mode = (mode or "").strip().upper()
    if normalized_mode not in (RETURN_MODE_ALL, RETURN_MODE_PARTIAL):
        raise ValidationError("mode must be ALL or PARTIAL", mode=mode)
    if normalized_mode == RETURN_MODE_ALL and items:
        raise ValidationError("items are only accepted for a PARTIAL return", mode=normalized_mode)
    requested = _parse_partial_items(items) if normalized_mode == RETURN_MODE_PARTIAL else None

    def _op():
        request = get_movement_request(tenant_id, request_id, lock=True)
        _ensure_awaiting_decision(request)

        outbound = _outbound_movements(request)
        by_id = {m.id: m for m in outbound}

        if requested is None:
            plan = [(m, Decimal(m.pending_quantity)) for m in outbound if Decimal(m.pending_quantity) > ZERO]
            if not plan:
                raise ValidationError("Nothing is pending on this movement request")
        else:
            plan = []
            for movement_id, qty in requested.items():
                movement = by_id.get(movement_id)
                if movement is None:
                    raise NotFoundError(
                        f"Movement {movement_id} is not a shipment of movement request {request.id}",
                        out_movement_id=movement_id,
                    )
                pending = Decimal(movement.pending_quantity)
                if qty > pending:
                    raise ExcessReturnError(
                        f"Returning {format_quantity(qty)} exceeds the pending "
                        f"{format_quantity(pending)} on movement {movement.number}",
                        out_movement_id=movement.id,
                        pending_quantity=format_quantity(pending),
                        return_quantity=format_quantity(qty),
                    )
                plan.append((movement, qty))

        # One return document per origin location
        returns: "OrderedDict[int, StockReturn]" = OrderedDict()
        for movement, qty in plan:
            stock_return = returns.get(movement.from_location_id)
            if stock_return is None:
                stock_return = StockReturn(
                    tenant_id=tenant_id,
                    number=_next_return_number(tenant_id),
                    to_location_id=movement.from_location_id,
                    source_type=SOURCE_MOVEMENT_REQUEST,
                    source_id=request.id,
                    reason=(reason or "").strip() or DEFAULT_REQUEST_RETURN_REASON,
                    photo_key=evidence.photo_key if evidence else None,
                    photo_url=evidence.photo_url if evidence else None,
                    note=note,
                    created_by=actor.label if actor else None,
                )
                db.session.add(stock_return)
                returns[movement.from_location_id] = stock_return

            reversal = _apply_movement_inner(
                tenant_id=tenant_id,
                product_id=movement.product_id,
                quantity=qty,
                batch_id=movement.batch_id,
                from_location_id=movement.to_location_id,
                to_location_id=movement.from_location_id,
                reference_type=REFERENCE_RETURN,
                reference_id=request.id,
                movement_request_id=request.id,
                movement_request_item_id=movement.movement_request_item_id,
                reverses_movement_id=movement.id,
                note=note,
                actor=actor,
                allow_expired=True,
            )
            movement.pending_quantity = Decimal(movement.pending_quantity) - qty

            stock_return.items.append(
                StockReturnItem(
                    tenant_id=tenant_id,
                    product_id=movement.product_id,
                    batch_id=movement.batch_id,
                    quantity=qty,
                    out_movement_id=movement.id,
                    movement_id=reversal.id,
                )
            )

        now = utcnow()
        request.updated_at = now
        if all(Decimal(m.pending_quantity) == ZERO for m in outbound):
            request.confirmation_status = CONFIRMATION_REJECTED
            request.confirmed_at = now
            request.confirmed_by = actor.label if actor else None
            request.confirmation_note = note
        db.session.flush()

        append_audit_event(
            tenant_id=tenant_id,
            action="movement_request.returned",
            entity_type="movement_request",
            entity_id=request.id,
            actor=actor,
            payload={
                "mode": normalized_mode,
                "return_ids": [r.id for r in returns.values()],
                "items": [
                    {"out_movement_id": m.id, "quantity": format_quantity(q)} for m, q in plan
                ],
                "confirmation_status": request.confirmation_status,
            },
        )
        for stock_return in returns.values():
            emit_after_commit(db.session, stock_return_created, stock_return=stock_return.to_dict())
        if request.confirmation_status == CONFIRMATION_REJECTED:
            emit_after_commit(db.session, movement_request_confirmed, request=request.to_dict())
        return request

    return run_in_transaction(_op)


# =============================================================================
# STANDALONE RETURN
# =============================================================================

def create_standalone_return(
    *,
    tenant_id: int,
    to_location_id: int,
    reason: str,
    items: Iterable[dict],
    evidence: Optional[Evidence] = None,
    note: Optional[str] = None,
    source_type: Optional[str] = None,
    source_id: Optional[int] = None,
    actor: Optional[ActorContext] = None,
) -> StockReturn:
    """
    Return previously received stock into a location.

    Args:
        items: [{product_id, batch_id?, quantity | presentation_id + presentation_quantity}]

    Returns:
        StockReturn with one IN movement per item
    """
    raw_items = list(items or [])

    def _op():
        clean_reason = (reason or "").strip()
        if not clean_reason:
            raise ValidationError("reason is required")
        if not raw_items:
            raise ValidationError("A return needs at least one item")

        location = reference_service.get_location(tenant_id, to_location_id)

        stock_return = StockReturn(
            tenant_id=tenant_id,
            number=_next_return_number(tenant_id),
            to_location_id=location.id,
            source_type=source_type,
            source_id=source_id,
            reason=clean_reason,
            photo_key=evidence.photo_key if evidence else None,
            photo_url=evidence.photo_url if evidence else None,
            note=note,
            created_by=actor.label if actor else None,
        )
        db.session.add(stock_return)
        db.session.flush()

        for raw in raw_items:
            if not isinstance(raw, dict):
                raise ValidationError("Each return item must be an object")
            product_id = require_int(raw.get("product_id"), "product_id")
            batch_id = optional_int(raw.get("batch_id"), "batch_id")
            resolved = reference_service.resolve_quantity(tenant_id, product_id, raw)

            movement = _apply_movement_inner(
                tenant_id=tenant_id,
                product_id=product_id,
                quantity=resolved.base_quantity,
                batch_id=batch_id,
                to_location_id=location.id,
                reference_type=REFERENCE_RETURN,
                reference_id=stock_return.id,
                presentation_id=resolved.presentation_id,
                presentation_quantity=resolved.presentation_quantity,
                note=note,
                actor=actor,
            )
            stock_return.items.append(
                StockReturnItem(
                    tenant_id=tenant_id,
                    product_id=product_id,
                    batch_id=batch_id,
                    quantity=resolved.base_quantity,
                    presentation_id=resolved.presentation_id,
                    presentation_quantity=resolved.presentation_quantity,
                    movement_id=movement.id,
                )
            )

        db.session.flush()

        append_audit_event(
            tenant_id=tenant_id,
            action="stock.return.created",
            entity_type="stock_return",
            entity_id=stock_return.id,
            actor=actor,
            payload={"to_location_id": location.id, "items_count": len(stock_return.items)},
        )
        emit_after_commit(db.session, stock_return_created, stock_return=stock_return.to_dict())
        return stock_return

    return run_in_transaction(_op)


# =============================================================================
# QUERIES
# =============================================================================

def list_stock_returns(
    *,
    tenant_id: int,
    warehouse_id: Optional[int] = None,
    created_from: Optional[datetime] = None,
    created_to: Optional[datetime] = None,
    limit: int = 50,
) -> list[StockReturn]:
    """
    Returns newest first.

    warehouse_id matches the warehouse of the return's destination location.
    created_from is inclusive, created_to exclusive.
    """
    q = db.session.query(StockReturn).filter(StockReturn.tenant_id == tenant_id)
    if warehouse_id is not None:
        q = q.join(Location, StockReturn.to_location_id == Location.id).filter(Location.warehouse_id == warehouse_id)
    if created_from is not None:
        q = q.filter(StockReturn.created_at >= created_from)
    if created_to is not None:
        q = q.filter(StockReturn.created_at < created_to)
    return q.order_by(StockReturn.created_at.desc(), StockReturn.id.desc()).limit(limit).all()


def get_stock_return(tenant_id: int, return_id: int) -> StockReturn:
    stock_return = db.session.query(StockReturn).filter_by(tenant_id=tenant_id, id=return_id).first()
    if stock_return is None:
        raise NotFoundError(f"Stock return {return_id} not found", return_id=return_id)
    return stock_return
