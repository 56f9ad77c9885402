# Overview: Inventory balance ledger; the only code that mutates on-hand and reserved quantities.

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from ..context import ActorContext
from ..errors import InsufficientAvailableError, InsufficientStockError, ValidationError
from ..extensions import db
from ..models import InventoryBalance, StockMovement
from ..signals import balance_changed, emit_after_commit, movement_created
from ..validation import ZERO, format_quantity, positive_decimal, to_decimal
from . import reference_service
from .audit_service import append_audit_event
from .concurrency import lock_for_update, run_in_transaction
from .document_service import next_document_number
"""
Balance ledger invariants (authoritative)

- Balances are stored per (tenant, product, batch, location); batch may be NULL.
- quantity >= 0 and 0 <= reserved_quantity <= quantity after every change,
  so available = quantity - reserved_quantity is never negative.
- Every quantity change is recorded as exactly one immutable StockMovement,
  written in the same transaction as the balance rows it touches.
- Outbound legs are checked against AVAILABLE stock, not on-hand: reserved
  units cannot ship unless the movement consumes that reservation
  (reserved_delta).
- Rows are locked in ascending location order to avoid lock-order deadlocks
  between opposite transfers.
- release() of more than is reserved clamps to zero and logs a consistency
  warning; every other violation raises.
"""

logger = logging.getLogger(__name__)

MOVEMENT_TYPE_IN = "IN"
MOVEMENT_TYPE_OUT = "OUT"
MOVEMENT_TYPE_TRANSFER = "TRANSFER"


@dataclass(frozen=True)
class BalanceSnapshot:
    product_id: int
    batch_id: Optional[int]
    location_id: int
    quantity: Decimal
    reserved_quantity: Decimal

    @property
    def available_quantity(self) -> Decimal:
        return self.quantity - self.reserved_quantity

    @classmethod
    def of(cls, balance: InventoryBalance | None, *, product_id: int, batch_id: Optional[int], location_id: int) -> "BalanceSnapshot":
        if balance is None:
            return cls(product_id, batch_id, location_id, ZERO, ZERO)
        return cls(
            product_id=balance.product_id,
            batch_id=balance.batch_id,
            location_id=balance.location_id,
            quantity=Decimal(balance.quantity),
            reserved_quantity=Decimal(balance.reserved_quantity),
        )

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "batch_id": self.batch_id,
            "location_id": self.location_id,
            "quantity": format_quantity(self.quantity),
            "reserved_quantity": format_quantity(self.reserved_quantity),
            "available_quantity": format_quantity(self.available_quantity),
        }


def _balance_query(tenant_id: int, product_id: int, batch_id: Optional[int], location_id: int):
    q = db.session.query(InventoryBalance).filter(
        InventoryBalance.tenant_id == tenant_id,
        InventoryBalance.product_id == product_id,
        InventoryBalance.location_id == location_id,
    )
    if batch_id is None:
        return q.filter(InventoryBalance.batch_id.is_(None))
    return q.filter(InventoryBalance.batch_id == batch_id)


def _load_balance(
    tenant_id: int, product_id: int, batch_id: Optional[int], location_id: int, *, lock: bool = True
) -> InventoryBalance | None:
    q = _balance_query(tenant_id, product_id, batch_id, location_id)
    if lock:
        q = lock_for_update(q)
    return q.first()


def _get_or_create_balance(tenant_id: int, product_id: int, batch_id: Optional[int], location_id: int) -> InventoryBalance:
    balance = _load_balance(tenant_id, product_id, batch_id, location_id)
    if balance is None:
        balance = InventoryBalance(
            tenant_id=tenant_id,
            product_id=product_id,
            batch_id=batch_id,
            location_id=location_id,
            quantity=ZERO,
            reserved_quantity=ZERO,
        )
        db.session.add(balance)
    return balance


def _movement_type(from_location_id: Optional[int], to_location_id: Optional[int]) -> str:
    if from_location_id and to_location_id:
        return MOVEMENT_TYPE_TRANSFER
    if from_location_id:
        return MOVEMENT_TYPE_OUT
    return MOVEMENT_TYPE_IN


def _queue_balance_changed(balance: InventoryBalance) -> None:
    emit_after_commit(db.session, balance_changed, balance=balance.to_dict())


# =============================================================================
# MOVEMENTS
# =============================================================================

def _apply_movement_inner(
    *,
    tenant_id: int,
    product_id: int,
    quantity,
    batch_id: Optional[int] = None,
    from_location_id: Optional[int] = None,
    to_location_id: Optional[int] = None,
    reserved_delta=None,
    pending_quantity=None,
    reference_type: Optional[str] = None,
    reference_id: Optional[int] = None,
    movement_request_id: Optional[int] = None,
    movement_request_item_id: Optional[int] = None,
    reverses_movement_id: Optional[int] = None,
    presentation_id: Optional[int] = None,
    presentation_quantity=None,
    note: Optional[str] = None,
    actor: Optional[ActorContext] = None,
    allow_expired: bool = False,
) -> StockMovement:
    """Core movement logic without retry or commit.

    Called by apply_movement() and by the fulfillment/reception services so
    balance changes share the caller's transaction.
    """
    qty = positive_decimal(quantity)
    if not from_location_id and not to_location_id:
        raise ValidationError("from_location_id or to_location_id is required")
    if from_location_id and from_location_id == to_location_id:
        raise ValidationError("from_location_id and to_location_id must differ")

    consume_reserved = ZERO
    if reserved_delta is not None:
        consume_reserved = to_decimal(reserved_delta, "reserved_delta")
        if consume_reserved < ZERO:
            raise ValidationError("reserved_delta cannot be negative")
        if consume_reserved > ZERO and not from_location_id:
            raise ValidationError("reserved_delta requires from_location_id")
        if consume_reserved > qty:
            raise ValidationError("reserved_delta cannot exceed quantity")

    pending = ZERO if pending_quantity is None else to_decimal(pending_quantity, "pending_quantity")
    if pending < ZERO or pending > qty:
        raise ValidationError("pending_quantity must be between 0 and quantity")

    reference_service.get_product(tenant_id, product_id)
    for location_id in (from_location_id, to_location_id):
        if location_id:
            reference_service.get_location(tenant_id, location_id)
    if batch_id is not None:
        batch = reference_service.get_batch(tenant_id, batch_id, product_id)
        if from_location_id and not allow_expired:
            reference_service.ensure_batch_not_expired(batch)

    touched: dict[int, InventoryBalance] = {}
    for location_id in sorted(loc for loc in (from_location_id, to_location_id) if loc):
        if location_id == to_location_id:
            touched[location_id] = _get_or_create_balance(tenant_id, product_id, batch_id, location_id)
        else:
            touched[location_id] = _load_balance(tenant_id, product_id, batch_id, location_id)

    if from_location_id:
        source = touched.get(from_location_id)
        on_hand = Decimal(source.quantity) if source is not None else ZERO
        reserved = Decimal(source.reserved_quantity) if source is not None else ZERO

        next_quantity = on_hand - qty
        if next_quantity < ZERO:
            raise InsufficientStockError(
                f"Insufficient stock for product {product_id} at location {from_location_id}. "
                f"On-hand: {format_quantity(on_hand)}, required: {format_quantity(qty)}",
                product_id=product_id,
                batch_id=batch_id,
                location_id=from_location_id,
            )
        if consume_reserved > reserved:
            raise ValidationError(
                f"reserved_delta {format_quantity(consume_reserved)} exceeds reserved "
                f"quantity {format_quantity(reserved)}"
            )
        next_reserved = reserved - consume_reserved
        if next_quantity - next_reserved < ZERO:
            raise InsufficientAvailableError(
                f"Insufficient available stock for product {product_id} at location {from_location_id}. "
                f"Available: {format_quantity(on_hand - reserved)}, required: {format_quantity(qty - consume_reserved)}",
                product_id=product_id,
                batch_id=batch_id,
                location_id=from_location_id,
            )

        source.quantity = next_quantity
        source.reserved_quantity = next_reserved

    if to_location_id:
        destination = touched[to_location_id]
        destination.quantity = Decimal(destination.quantity) + qty

    movement = StockMovement(
        tenant_id=tenant_id,
        number=next_document_number(tenant_id=tenant_id, document_type="STOCK_MOVEMENT", prefix="MS"),
        movement_type=_movement_type(from_location_id, to_location_id),
        product_id=product_id,
        batch_id=batch_id,
        from_location_id=from_location_id,
        to_location_id=to_location_id,
        quantity=qty,
        pending_quantity=pending,
        presentation_id=presentation_id,
        presentation_quantity=presentation_quantity,
        reference_type=reference_type,
        reference_id=reference_id,
        movement_request_id=movement_request_id,
        movement_request_item_id=movement_request_item_id,
        reverses_movement_id=reverses_movement_id,
        note=note,
        created_by=actor.label if actor else None,
    )
    db.session.add(movement)
    db.session.flush()

    emit_after_commit(db.session, movement_created, movement=movement.to_dict())
    for balance in touched.values():
        if balance is not None:
            _queue_balance_changed(balance)

    return movement


def apply_movement(
    *,
    tenant_id: int,
    product_id: int,
    quantity,
    batch_id: Optional[int] = None,
    from_location_id: Optional[int] = None,
    to_location_id: Optional[int] = None,
    reserved_delta=None,
    reference_type: Optional[str] = None,
    reference_id: Optional[int] = None,
    note: Optional[str] = None,
    movement_type: Optional[str] = None,
    presentation_id: Optional[int] = None,
    presentation_quantity=None,
    actor: Optional[ActorContext] = None,
) -> StockMovement:
    """
    Move stock between locations atomically and record the movement.

    - from_location_id only: OUT (stock leaves the tenant's books)
    - to_location_id only: IN
    - both: TRANSFER; the sum of the two balances is unchanged

    movement_type, when given, must agree with the locations supplied.
    presentation_id + presentation_quantity replace quantity and are
    converted to base units.

    Raises:
        InsufficientStockError: on-hand at the source would go negative
        InsufficientAvailableError: the unreserved part at the source is too small
        ValidationError / NotFoundError / BatchExpiredError
    """
    if movement_type is not None:
        expected = _movement_type(from_location_id, to_location_id)
        if str(movement_type).strip().upper() != expected:
            raise ValidationError(
                f"movement_type {movement_type} does not match the locations given ({expected})",
                movement_type=movement_type,
            )

    def _op():
        qty, pres_id, pres_qty = quantity, None, None
        if presentation_id is not None:
            resolved = reference_service.resolve_quantity(
                tenant_id,
                product_id,
                {"presentation_id": presentation_id, "presentation_quantity": presentation_quantity},
            )
            qty, pres_id, pres_qty = resolved.base_quantity, resolved.presentation_id, resolved.presentation_quantity

        return _apply_movement_inner(
            tenant_id=tenant_id,
            product_id=product_id,
            quantity=qty,
            batch_id=batch_id,
            from_location_id=from_location_id,
            to_location_id=to_location_id,
            reserved_delta=reserved_delta,
            reference_type=reference_type,
            reference_id=reference_id,
            note=note,
            presentation_id=pres_id,
            presentation_quantity=pres_qty,
            actor=actor,
        )

    return run_in_transaction(_op)


# =============================================================================
# RESERVATIONS
# =============================================================================

def _reserve_inner(
    *,
    tenant_id: int,
    product_id: int,
    batch_id: Optional[int],
    location_id: int,
    amount,
    actor: Optional[ActorContext] = None,
) -> BalanceSnapshot:
    qty = positive_decimal(amount, "amount")
    reference_service.get_product(tenant_id, product_id)
    reference_service.get_location(tenant_id, location_id)

    balance = _load_balance(tenant_id, product_id, batch_id, location_id)
    snapshot = BalanceSnapshot.of(balance, product_id=product_id, batch_id=batch_id, location_id=location_id)
    if qty > snapshot.available_quantity:
        raise InsufficientAvailableError(
            f"Cannot reserve {format_quantity(qty)} of product {product_id} at location {location_id}. "
            f"Available: {format_quantity(snapshot.available_quantity)}",
            product_id=product_id,
            batch_id=batch_id,
            location_id=location_id,
        )

    balance.reserved_quantity = Decimal(balance.reserved_quantity) + qty
    db.session.flush()

    append_audit_event(
        tenant_id=tenant_id,
        action="stock.reserved",
        entity_type="inventory_balance",
        entity_id=balance.id,
        actor=actor,
        payload={"amount": format_quantity(qty)},
    )
    _queue_balance_changed(balance)
    return BalanceSnapshot.of(balance, product_id=product_id, batch_id=batch_id, location_id=location_id)


def reserve(
    *,
    tenant_id: int,
    product_id: int,
    batch_id: Optional[int],
    location_id: int,
    amount,
    actor: Optional[ActorContext] = None,
) -> BalanceSnapshot:
    """
    Earmark part of the available stock without changing on-hand.

    Raises:
        InsufficientAvailableError: amount exceeds available quantity
    """
    def _op():
        return _reserve_inner(
            tenant_id=tenant_id,
            product_id=product_id,
            batch_id=batch_id,
            location_id=location_id,
            amount=amount,
            actor=actor,
        )

    return run_in_transaction(_op)


def _release_inner(
    *,
    tenant_id: int,
    product_id: int,
    batch_id: Optional[int],
    location_id: int,
    amount,
    actor: Optional[ActorContext] = None,
) -> BalanceSnapshot:
    qty = positive_decimal(amount, "amount")

    balance = _load_balance(tenant_id, product_id, batch_id, location_id)
    if balance is None:
        logger.warning(
            "Release of %s for tenant=%s product=%s batch=%s location=%s found no balance row",
            format_quantity(qty), tenant_id, product_id, batch_id, location_id,
        )
        return BalanceSnapshot.of(None, product_id=product_id, batch_id=batch_id, location_id=location_id)

    reserved = Decimal(balance.reserved_quantity)
    if qty > reserved:
        logger.warning(
            "Reserved quantity would go negative for balance %s (reserved=%s, release=%s); clamping to zero",
            balance.id, format_quantity(reserved), format_quantity(qty),
        )
        released = reserved
    else:
        released = qty

    balance.reserved_quantity = reserved - released
    db.session.flush()

    append_audit_event(
        tenant_id=tenant_id,
        action="stock.released",
        entity_type="inventory_balance",
        entity_id=balance.id,
        actor=actor,
        payload={"requested": format_quantity(qty), "released": format_quantity(released)},
    )
    _queue_balance_changed(balance)
    return BalanceSnapshot.of(balance, product_id=product_id, batch_id=batch_id, location_id=location_id)


def release(
    *,
    tenant_id: int,
    product_id: int,
    batch_id: Optional[int],
    location_id: int,
    amount,
    actor: Optional[ActorContext] = None,
) -> BalanceSnapshot:
    """
    Give back previously reserved stock.

    Never raises for over-release: the reservation is clamped to zero and a
    consistency warning is logged.
    """
    def _op():
        return _release_inner(
            tenant_id=tenant_id,
            product_id=product_id,
            batch_id=batch_id,
            location_id=location_id,
            amount=amount,
            actor=actor,
        )

    return run_in_transaction(_op)


# =============================================================================
# READS
# =============================================================================

def get_balance(*, tenant_id: int, product_id: int, batch_id: Optional[int] = None, location_id: int) -> BalanceSnapshot:
    """Current balance; zeros when nothing has ever moved into the location."""
    reference_service.get_product(tenant_id, product_id, require_active=False)
    reference_service.get_location(tenant_id, location_id)
    balance = _load_balance(tenant_id, product_id, batch_id, location_id, lock=False)
    return BalanceSnapshot.of(balance, product_id=product_id, batch_id=batch_id, location_id=location_id)


def list_balances(
    *,
    tenant_id: int,
    location_id: Optional[int] = None,
    product_id: Optional[int] = None,
    include_zero: bool = False,
    reserved_only: bool = False,
    limit: int = 500,
) -> list[InventoryBalance]:
    """reserved_only keeps rows holding a reservation (reserved_quantity > 0)."""
    q = db.session.query(InventoryBalance).filter_by(tenant_id=tenant_id)
    if location_id is not None:
        q = q.filter_by(location_id=location_id)
    if product_id is not None:
        q = q.filter_by(product_id=product_id)
    if not include_zero:
        q = q.filter(InventoryBalance.quantity > 0)
    if reserved_only:
        q = q.filter(InventoryBalance.reserved_quantity > 0)
    return q.order_by(InventoryBalance.location_id, InventoryBalance.product_id, InventoryBalance.id).limit(limit).all()


def list_movements(
    *,
    tenant_id: int,
    location_id: Optional[int] = None,
    product_id: Optional[int] = None,
    movement_type: Optional[str] = None,
    limit: int = 200,
) -> list[StockMovement]:
    """Ledger entries newest first; location_id matches either side of a movement."""
    q = db.session.query(StockMovement).filter_by(tenant_id=tenant_id)
    if location_id is not None:
        q = q.filter(
            db.or_(StockMovement.from_location_id == location_id, StockMovement.to_location_id == location_id)
        )
    if product_id is not None:
        q = q.filter_by(product_id=product_id)
    if movement_type:
        q = q.filter_by(movement_type=movement_type.strip().upper())
    return q.order_by(StockMovement.id.desc()).limit(limit).all()
