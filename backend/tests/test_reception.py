# Overview: Pytest coverage for reception confirmation and returns.

"""
Reception & Return Tests

1. confirm_reception clears pending without moving stock again
2. Returns (ALL / PARTIAL) move pending stock back to its origin
3. confirmation_status: PENDING -> ACCEPTED | REJECTED, each terminal
4. Standalone returns only touch the ledger
"""

from decimal import Decimal

import pytest

from stockflow.errors import (
    AlreadyConfirmedError,
    ExcessReturnError,
    NotFoundError,
    NotFulfilledError,
    ValidationError,
)
from stockflow.extensions import db
from stockflow.models import StockMovement, StockReturn
from stockflow.services import movement_request_service as mrs
from stockflow.services import reception_service
from stockflow.services.audit_service import list_audit_events
from stockflow.services.fulfillment_service import fulfill_movement_request
from stockflow.services.reception_service import Evidence
from stockflow.time_utils import utcnow

from conftest import TENANT_ID


@pytest.fixture
def open_request(db_session, actor, branch, dock, product):
    return mrs.create_movement_request(
        tenant_id=TENANT_ID,
        warehouse_id=branch.id,
        destination_location_id=dock.id,
        requested_by_name="Luis Branch",
        items=[{"product_id": product.id, "requested_quantity": 10}],
        actor=actor,
    )


@pytest.fixture
def fulfilled_request(open_request, actor, shelf, product, stock_in):
    """FULFILLED request with one shipped leg of 10 units, all pending."""
    stock_in(shelf, product, 25)
    fulfill_movement_request(
        tenant_id=TENANT_ID,
        request_id=open_request.id,
        picked_lines=[{"from_location_id": shelf.id, "product_id": product.id, "quantity": 10}],
        actor=actor,
    )
    return mrs.get_movement_request(TENANT_ID, open_request.id)


@pytest.fixture
def split_request(open_request, actor, shelf, shelf_b, product, stock_in):
    """FULFILLED request shipped from two locations (6 + 4)."""
    stock_in(shelf, product, 6)
    stock_in(shelf_b, product, 4)
    fulfill_movement_request(
        tenant_id=TENANT_ID,
        request_id=open_request.id,
        picked_lines=[
            {"from_location_id": shelf.id, "product_id": product.id, "quantity": 6},
            {"from_location_id": shelf_b.id, "product_id": product.id, "quantity": 4},
        ],
        actor=actor,
    )
    return mrs.get_movement_request(TENANT_ID, open_request.id)


def _shipments(request):
    return (
        db.session.query(StockMovement)
        .filter_by(movement_request_id=request.id, reverses_movement_id=None)
        .order_by(StockMovement.id)
        .all()
    )


class TestConfirmReception:

    def test_clears_pending_without_moving_stock(self, fulfilled_request, actor, shelf, dock, product, balance_of):
        before_dock = balance_of(dock, product).quantity
        before_shelf = balance_of(shelf, product).quantity

        request = reception_service.confirm_reception(
            tenant_id=TENANT_ID, request_id=fulfilled_request.id, note="All boxes intact", actor=actor
        )

        assert request.confirmation_status == mrs.CONFIRMATION_ACCEPTED
        assert request.confirmed_at is not None
        assert request.confirmed_by == "Ana Picker"
        assert request.confirmation_note == "All boxes intact"
        assert all(m.pending_quantity == Decimal("0") for m in _shipments(request))
        assert balance_of(dock, product).quantity == before_dock == Decimal("10")
        assert balance_of(shelf, product).quantity == before_shelf

    def test_confirm_twice_fails(self, fulfilled_request, actor):
        reception_service.confirm_reception(tenant_id=TENANT_ID, request_id=fulfilled_request.id, actor=actor)

        with pytest.raises(AlreadyConfirmedError):
            reception_service.confirm_reception(tenant_id=TENANT_ID, request_id=fulfilled_request.id, actor=actor)

    def test_open_request_cannot_be_confirmed(self, open_request, actor):
        with pytest.raises(NotFulfilledError):
            reception_service.confirm_reception(tenant_id=TENANT_ID, request_id=open_request.id, actor=actor)

    def test_confirmation_is_audited(self, fulfilled_request, actor):
        reception_service.confirm_reception(tenant_id=TENANT_ID, request_id=fulfilled_request.id, actor=actor)

        latest = list_audit_events(tenant_id=TENANT_ID, entity_type="movement_request", entity_id=fulfilled_request.id)[0]
        assert latest.action == "movement_request.received"
        assert latest.payload["accepted_quantity"] == "10"


class TestScenarioC:
    """Partial returns keep the request PENDING until nothing is in transit."""

    def test_four_then_six(self, fulfilled_request, actor, shelf, dock, product, balance_of):
        leg = _shipments(fulfilled_request)[0]

        request = reception_service.return_shipment(
            tenant_id=TENANT_ID,
            request_id=fulfilled_request.id,
            mode="PARTIAL",
            items=[{"out_movement_id": leg.id, "quantity": 4}],
            actor=actor,
        )

        assert _shipments(request)[0].pending_quantity == Decimal("6")
        assert request.confirmation_status == mrs.CONFIRMATION_PENDING
        assert balance_of(dock, product).quantity == Decimal("6")
        assert balance_of(shelf, product).quantity == Decimal("19")

        request = reception_service.return_shipment(
            tenant_id=TENANT_ID,
            request_id=fulfilled_request.id,
            mode="PARTIAL",
            items=[{"out_movement_id": leg.id, "quantity": 6}],
            actor=actor,
        )

        assert _shipments(request)[0].pending_quantity == Decimal("0")
        assert request.confirmation_status == mrs.CONFIRMATION_REJECTED
        assert balance_of(dock, product).quantity == Decimal("0")
        assert balance_of(shelf, product).quantity == Decimal("25")

    def test_return_more_than_pending(self, fulfilled_request, actor, dock, product, balance_of):
        leg = _shipments(fulfilled_request)[0]

        with pytest.raises(ExcessReturnError):
            reception_service.return_shipment(
                tenant_id=TENANT_ID,
                request_id=fulfilled_request.id,
                mode="PARTIAL",
                items=[{"out_movement_id": leg.id, "quantity": 11}],
                actor=actor,
            )

        assert _shipments(fulfilled_request)[0].pending_quantity == Decimal("10")
        assert balance_of(dock, product).quantity == Decimal("10")

    def test_repeated_lines_are_summed(self, fulfilled_request, actor):
        leg = _shipments(fulfilled_request)[0]

        with pytest.raises(ExcessReturnError):
            reception_service.return_shipment(
                tenant_id=TENANT_ID,
                request_id=fulfilled_request.id,
                mode="PARTIAL",
                items=[
                    {"out_movement_id": leg.id, "quantity": 6},
                    {"out_movement_id": leg.id, "quantity": 6},
                ],
                actor=actor,
            )

    def test_movement_of_another_request(self, fulfilled_request, actor, shelf, product, stock_in):
        stray = stock_in(shelf, product, 1)

        with pytest.raises(NotFoundError):
            reception_service.return_shipment(
                tenant_id=TENANT_ID,
                request_id=fulfilled_request.id,
                mode="PARTIAL",
                items=[{"out_movement_id": stray.id, "quantity": 1}],
                actor=actor,
            )

    def test_partial_requires_items(self, fulfilled_request, actor):
        with pytest.raises(ValidationError):
            reception_service.return_shipment(
                tenant_id=TENANT_ID, request_id=fulfilled_request.id, mode="PARTIAL", items=[], actor=actor
            )

    def test_unknown_mode(self, fulfilled_request, actor):
        with pytest.raises(ValidationError):
            reception_service.return_shipment(
                tenant_id=TENANT_ID, request_id=fulfilled_request.id, mode="SOME", actor=actor
            )

    def test_all_rejects_items(self, fulfilled_request, actor):
        leg = _shipments(fulfilled_request)[0]

        with pytest.raises(ValidationError, match="PARTIAL"):
            reception_service.return_shipment(
                tenant_id=TENANT_ID,
                request_id=fulfilled_request.id,
                mode="ALL",
                items=[{"out_movement_id": leg.id, "quantity": 2}],
                actor=actor,
            )
        assert leg.pending_quantity == Decimal("10")


class TestReturnAll:

    def test_reverses_every_leg_to_its_origin(self, split_request, actor, shelf, shelf_b, dock, product, balance_of):
        request = reception_service.return_shipment(
            tenant_id=TENANT_ID,
            request_id=split_request.id,
            mode="all",
            reason="Wrong destination",
            evidence=Evidence(photo_key="returns/rq.jpg", photo_url="https://files.example/returns/rq.jpg"),
            actor=actor,
        )

        assert request.confirmation_status == mrs.CONFIRMATION_REJECTED
        assert all(m.pending_quantity == Decimal("0") for m in _shipments(request))
        assert balance_of(shelf, product).quantity == Decimal("6")
        assert balance_of(shelf_b, product).quantity == Decimal("4")
        assert balance_of(dock, product).quantity == Decimal("0")

    def test_one_return_document_per_origin(self, split_request, actor, shelf, shelf_b):
        reception_service.return_shipment(
            tenant_id=TENANT_ID, request_id=split_request.id, mode="ALL", reason="Damaged", actor=actor
        )

        returns = db.session.query(StockReturn).order_by(StockReturn.id).all()
        year = utcnow().year
        assert [r.to_location_id for r in returns] == [shelf.id, shelf_b.id]
        assert [r.number for r in returns] == [f"DV-{year}-000001", f"DV-{year}-000002"]
        assert all(r.source_type == reception_service.SOURCE_MOVEMENT_REQUEST for r in returns)
        assert all(r.reason == "Damaged" for r in returns)

        legs = {m.id: m for m in _shipments(split_request)}
        for stock_return in returns:
            item = stock_return.items[0]
            reversal = db.session.get(StockMovement, item.movement_id)
            assert reversal.reverses_movement_id == item.out_movement_id
            assert reversal.from_location_id == legs[item.out_movement_id].to_location_id
            assert reversal.to_location_id == stock_return.to_location_id
            assert reversal.pending_quantity == Decimal("0")

    def test_returns_do_not_reopen_request(self, fulfilled_request, actor):
        request = reception_service.return_shipment(
            tenant_id=TENANT_ID, request_id=fulfilled_request.id, mode="ALL", actor=actor
        )

        assert request.status == mrs.REQUEST_STATUS_FULFILLED
        assert request.items[0].remaining_quantity == Decimal("0")

    def test_after_rejection_nothing_more(self, fulfilled_request, actor):
        reception_service.return_shipment(tenant_id=TENANT_ID, request_id=fulfilled_request.id, mode="ALL", actor=actor)

        with pytest.raises(AlreadyConfirmedError):
            reception_service.return_shipment(
                tenant_id=TENANT_ID, request_id=fulfilled_request.id, mode="ALL", actor=actor
            )
        with pytest.raises(AlreadyConfirmedError):
            reception_service.confirm_reception(tenant_id=TENANT_ID, request_id=fulfilled_request.id, actor=actor)

    def test_return_requires_fulfilled(self, open_request, actor):
        with pytest.raises(NotFulfilledError):
            reception_service.return_shipment(tenant_id=TENANT_ID, request_id=open_request.id, mode="ALL", actor=actor)

    def test_summary_lists_returns(self, fulfilled_request, actor):
        leg = _shipments(fulfilled_request)[0]
        reception_service.return_shipment(
            tenant_id=TENANT_ID,
            request_id=fulfilled_request.id,
            mode="PARTIAL",
            items=[{"out_movement_id": leg.id, "quantity": 3}],
            actor=actor,
        )

        summary = mrs.get_movement_request_summary(TENANT_ID, fulfilled_request.id)
        assert summary["pending_quantity"] == "7"
        assert [r["quantity"] for r in summary["returns"]] == ["3"]
        assert summary["returns"][0]["reverses_movement_id"] == leg.id


class TestStandaloneReturn:

    def test_creates_in_movements(self, db_session, actor, dock, product, other_product, batch, box12, balance_of):
        stock_return = reception_service.create_standalone_return(
            tenant_id=TENANT_ID,
            to_location_id=dock.id,
            reason="Customer returned unopened boxes",
            items=[
                {"product_id": product.id, "batch_id": batch.id, "presentation_id": box12.id, "presentation_quantity": 2},
                {"product_id": other_product.id, "quantity": "3.5"},
            ],
            evidence=Evidence(photo_key="returns/42.jpg"),
            actor=actor,
        )

        assert stock_return.number.startswith("DV-")
        assert stock_return.photo_key == "returns/42.jpg"
        assert stock_return.source_type is None
        assert [i.quantity for i in stock_return.items] == [Decimal("24"), Decimal("3.5")]
        assert balance_of(dock, product, batch).quantity == Decimal("24")
        assert balance_of(dock, other_product).quantity == Decimal("3.5")

        movement = db.session.get(StockMovement, stock_return.items[0].movement_id)
        assert movement.movement_type == "IN"
        assert movement.reference_type == reception_service.REFERENCE_RETURN
        assert movement.reference_id == stock_return.id
        assert movement.pending_quantity == Decimal("0")

    def test_reason_required(self, db_session, actor, dock, product):
        with pytest.raises(ValidationError):
            reception_service.create_standalone_return(
                tenant_id=TENANT_ID,
                to_location_id=dock.id,
                reason=" ",
                items=[{"product_id": product.id, "quantity": 1}],
                actor=actor,
            )

    def test_bad_item_rolls_back_everything(self, db_session, actor, dock, product, balance_of):
        with pytest.raises(ValidationError):
            reception_service.create_standalone_return(
                tenant_id=TENANT_ID,
                to_location_id=dock.id,
                reason="Recount",
                items=[
                    {"product_id": product.id, "quantity": 2},
                    {"product_id": product.id, "quantity": 0},
                ],
                actor=actor,
            )

        assert balance_of(dock, product).quantity == Decimal("0")
        assert db.session.query(StockReturn).count() == 0

    def test_unknown_location(self, db_session, actor, product):
        with pytest.raises(NotFoundError):
            reception_service.create_standalone_return(
                tenant_id=TENANT_ID,
                to_location_id=99999,
                reason="Recount",
                items=[{"product_id": product.id, "quantity": 1}],
                actor=actor,
            )


class TestReturnQueries:

    def _standalone(self, actor, location, product, quantity):
        return reception_service.create_standalone_return(
            tenant_id=TENANT_ID,
            to_location_id=location.id,
            reason="Recount",
            items=[{"product_id": product.id, "quantity": quantity}],
            actor=actor,
        )

    def test_newest_first_and_by_warehouse(self, db_session, actor, branch, shelf, dock, product):
        first = self._standalone(actor, shelf, product, 1)
        second = self._standalone(actor, dock, product, 2)

        assert [r.id for r in reception_service.list_stock_returns(tenant_id=TENANT_ID)] == [second.id, first.id]
        assert [r.id for r in reception_service.list_stock_returns(tenant_id=TENANT_ID, warehouse_id=branch.id)] == [
            second.id
        ]

    def test_request_returns_are_listed(self, fulfilled_request, actor, shelf):
        reception_service.return_shipment(
            tenant_id=TENANT_ID, request_id=fulfilled_request.id, mode="ALL", actor=actor
        )

        returns = reception_service.list_stock_returns(tenant_id=TENANT_ID)
        assert [(r.source_type, r.source_id) for r in returns] == [
            (reception_service.SOURCE_MOVEMENT_REQUEST, fulfilled_request.id)
        ]

    def test_get_missing(self, db_session):
        with pytest.raises(NotFoundError):
            reception_service.get_stock_return(TENANT_ID, 4242)
