# Overview: Pytest coverage for fulfillment and picking reconciliation.

"""
Fulfillment Tests

1. Picked lines ship through the ledger and decrement request items
2. Matching by request_item_id, product_id or SKU
3. One over-shipped line rejects the whole picking list
4. Progressive partial shipment (Scenario A) and competing pickers (Scenario D)
"""

from decimal import Decimal

import pytest
from sqlalchemy.orm.exc import StaleDataError

from stockflow.errors import (
    ConcurrentModificationError,
    InsufficientAvailableError,
    InvalidStateError,
    NotFoundError,
    OverShipmentError,
    ValidationError,
)
from stockflow.extensions import db
from stockflow.models import StockMovement
from stockflow.services import balance_service, fulfillment_service
from stockflow.services import movement_request_service as mrs
from stockflow.services.fulfillment_service import fulfill_movement_request

from conftest import TENANT_ID


@pytest.fixture
def make_request(db_session, actor, branch, dock):
    def _make(items):
        return mrs.create_movement_request(
            tenant_id=TENANT_ID,
            warehouse_id=branch.id,
            destination_location_id=dock.id,
            requested_by_name="Luis Branch",
            items=items,
            actor=actor,
        )

    return _make


def _fulfill(request, lines, actor):
    return fulfill_movement_request(tenant_id=TENANT_ID, request_id=request.id, picked_lines=lines, actor=actor)


class TestFulfillMovementRequest:

    def test_ships_stock_and_sets_pending(self, make_request, actor, shelf, dock, product, batch, stock_in, balance_of):
        stock_in(shelf, product, 50, batch=batch)
        request = make_request([{"product_id": product.id, "requested_quantity": 20}])

        result = _fulfill(
            request,
            [{"from_location_id": shelf.id, "product_id": product.id, "batch_id": batch.id, "quantity": 20}],
            actor,
        )

        movement = result.movements[0]
        assert movement.movement_type == balance_service.MOVEMENT_TYPE_TRANSFER
        assert movement.from_location_id == shelf.id
        assert movement.to_location_id == dock.id
        assert movement.quantity == Decimal("20")
        assert movement.pending_quantity == Decimal("20")
        assert movement.movement_request_id == request.id
        assert movement.movement_request_item_id == request.items[0].id
        assert movement.reference_type == fulfillment_service.REFERENCE_REQUEST_FULFILLMENT

        assert balance_of(shelf, product, batch).quantity == Decimal("30")
        assert balance_of(dock, product, batch).quantity == Decimal("20")
        assert result.request.status == mrs.REQUEST_STATUS_FULFILLED

    def test_result_to_dict(self, make_request, actor, shelf, product, stock_in):
        stock_in(shelf, product, 5)
        request = make_request([{"product_id": product.id, "requested_quantity": 5}])

        body = _fulfill(request, [{"from_location_id": shelf.id, "product_id": product.id, "quantity": 2}], actor).to_dict()

        assert body["request"]["status"] == mrs.REQUEST_STATUS_OPEN
        assert body["items"][0]["remaining_quantity"] == "3"
        assert body["movements"][0]["pending_quantity"] == "2"

    def test_empty_picking_list(self, make_request, actor, product):
        request = make_request([{"product_id": product.id, "requested_quantity": 5}])
        with pytest.raises(ValidationError):
            _fulfill(request, [], actor)

    def test_unknown_request(self, db_session, actor, shelf, product):
        with pytest.raises(NotFoundError):
            fulfill_movement_request(
                tenant_id=TENANT_ID,
                request_id=99999,
                picked_lines=[{"from_location_id": shelf.id, "product_id": product.id, "quantity": 1}],
                actor=actor,
            )

    def test_cancelled_request(self, make_request, actor, shelf, product, stock_in):
        stock_in(shelf, product, 5)
        request = make_request([{"product_id": product.id, "requested_quantity": 5}])
        mrs.cancel_movement_request(tenant_id=TENANT_ID, request_id=request.id, actor=actor)

        with pytest.raises(InvalidStateError):
            _fulfill(request, [{"from_location_id": shelf.id, "product_id": product.id, "quantity": 1}], actor)

    def test_source_short_of_available_stock(self, make_request, actor, shelf, dock, product, stock_in, balance_of):
        stock_in(shelf, product, 10)
        balance_service.reserve(
            tenant_id=TENANT_ID, product_id=product.id, batch_id=None, location_id=shelf.id, amount=8, actor=actor
        )
        request = make_request([{"product_id": product.id, "requested_quantity": 5}])

        with pytest.raises(InsufficientAvailableError):
            _fulfill(request, [{"from_location_id": shelf.id, "product_id": product.id, "quantity": 5}], actor)

        request = mrs.get_movement_request(TENANT_ID, request.id)
        assert request.items[0].remaining_quantity == Decimal("5")
        assert balance_of(dock, product).quantity == Decimal("0")


class TestPickedLineMatching:

    def test_match_by_sku_case_insensitive(self, make_request, actor, shelf, product, stock_in):
        stock_in(shelf, product, 10)
        request = make_request([{"product_id": product.id, "requested_quantity": 4}])

        result = _fulfill(request, [{"from_location_id": shelf.id, "sku": "amx-500", "quantity": 4}], actor)

        assert result.movements[0].product_id == product.id
        assert result.request.status == mrs.REQUEST_STATUS_FULFILLED

    def test_line_without_product_identity(self, make_request, actor, shelf, product):
        request = make_request([{"product_id": product.id, "requested_quantity": 4}])
        with pytest.raises(ValidationError):
            _fulfill(request, [{"from_location_id": shelf.id, "quantity": 4}], actor)

    def test_explicit_item_id_wins(self, make_request, actor, shelf, product, stock_in):
        """Two items of the same product; the stable key picks the second."""
        stock_in(shelf, product, 20)
        request = make_request(
            [
                {"product_id": product.id, "requested_quantity": 5},
                {"product_id": product.id, "requested_quantity": 5},
            ]
        )
        first, second = request.items

        result = _fulfill(
            request,
            [{"from_location_id": shelf.id, "product_id": product.id, "quantity": 3, "request_item_id": second.id}],
            actor,
        )

        items = {i.id: i for i in result.request.items}
        assert items[first.id].remaining_quantity == Decimal("5")
        assert items[second.id].remaining_quantity == Decimal("2")
        assert result.movements[0].movement_request_item_id == second.id

    def test_explicit_item_of_other_product(self, make_request, actor, shelf, product, other_product, stock_in):
        stock_in(shelf, other_product, 5)
        request = make_request([{"product_id": product.id, "requested_quantity": 5}])

        with pytest.raises(ValidationError):
            _fulfill(
                request,
                [{
                    "from_location_id": shelf.id,
                    "product_id": other_product.id,
                    "quantity": 1,
                    "request_item_id": request.items[0].id,
                }],
                actor,
            )

    def test_fallback_allocates_in_item_order(self, make_request, actor, shelf, product, stock_in):
        """Product match fills the earliest open item first and splits the line."""
        stock_in(shelf, product, 20)
        request = make_request(
            [
                {"product_id": product.id, "requested_quantity": 4},
                {"product_id": product.id, "requested_quantity": 6},
            ]
        )
        first, second = request.items

        result = _fulfill(request, [{"from_location_id": shelf.id, "product_id": product.id, "quantity": 7}], actor)

        items = {i.id: i for i in result.request.items}
        assert items[first.id].remaining_quantity == Decimal("0")
        assert items[second.id].remaining_quantity == Decimal("3")
        assert [(m.movement_request_item_id, m.quantity) for m in result.movements] == [
            (first.id, Decimal("4")),
            (second.id, Decimal("3")),
        ]

    def test_product_not_on_request(self, make_request, actor, shelf, product, other_product, stock_in):
        stock_in(shelf, other_product, 5)
        request = make_request([{"product_id": product.id, "requested_quantity": 5}])

        with pytest.raises(OverShipmentError):
            _fulfill(request, [{"from_location_id": shelf.id, "product_id": other_product.id, "quantity": 1}], actor)

    def test_presentation_quantity_converted(self, make_request, actor, shelf, product, box12, stock_in):
        stock_in(shelf, product, 48)
        request = make_request([{"product_id": product.id, "requested_quantity": 36}])

        result = _fulfill(
            request,
            [{"from_location_id": shelf.id, "product_id": product.id, "presentation_id": box12.id, "presentation_quantity": 2}],
            actor,
        )

        movement = result.movements[0]
        assert movement.quantity == Decimal("24")
        assert movement.presentation_id == box12.id
        assert movement.presentation_quantity == Decimal("2")
        assert result.request.items[0].remaining_quantity == Decimal("12")


class TestOverShipmentAtomicity:

    def test_one_bad_line_rejects_all(self, make_request, actor, shelf, dock, product, other_product, stock_in, balance_of):
        stock_in(shelf, product, 50)
        stock_in(shelf, other_product, 50)
        request = make_request(
            [
                {"product_id": product.id, "requested_quantity": 10},
                {"product_id": other_product.id, "requested_quantity": 10},
            ]
        )
        movements_before = db.session.query(StockMovement).count()

        with pytest.raises(OverShipmentError):
            _fulfill(
                request,
                [
                    {"from_location_id": shelf.id, "product_id": product.id, "quantity": 5},
                    {"from_location_id": shelf.id, "product_id": other_product.id, "quantity": 11},
                ],
                actor,
            )

        request = mrs.get_movement_request(TENANT_ID, request.id)
        assert [i.remaining_quantity for i in request.items] == [Decimal("10"), Decimal("10")]
        assert balance_of(shelf, product).quantity == Decimal("50")
        assert balance_of(dock, product).quantity == Decimal("0")
        assert db.session.query(StockMovement).count() == movements_before

    def test_lines_are_summed_per_item(self, make_request, actor, shelf, product, stock_in):
        stock_in(shelf, product, 50)
        request = make_request([{"product_id": product.id, "requested_quantity": 10}])
        item_id = request.items[0].id

        with pytest.raises(OverShipmentError):
            _fulfill(
                request,
                [
                    {"from_location_id": shelf.id, "product_id": product.id, "quantity": 6, "request_item_id": item_id},
                    {"from_location_id": shelf.id, "product_id": product.id, "quantity": 6, "request_item_id": item_id},
                ],
                actor,
            )


class TestScenarioA:
    """Progressive partial shipment."""

    def test_sixty_then_forty(self, make_request, actor, shelf, shelf_b, product, stock_in):
        stock_in(shelf, product, 60)
        stock_in(shelf_b, product, 40)
        request = make_request([{"product_id": product.id, "requested_quantity": 100}])

        first = _fulfill(request, [{"from_location_id": shelf.id, "product_id": product.id, "quantity": 60}], actor)
        assert first.request.status == mrs.REQUEST_STATUS_OPEN
        assert first.request.items[0].remaining_quantity == Decimal("40")

        second = _fulfill(request, [{"from_location_id": shelf_b.id, "product_id": product.id, "quantity": 40}], actor)
        assert second.request.status == mrs.REQUEST_STATUS_FULFILLED
        assert second.request.items[0].remaining_quantity == Decimal("0")

        summary = mrs.get_movement_request_summary(TENANT_ID, request.id)
        assert [s["quantity"] for s in summary["shipments"]] == ["60", "40"]
        assert summary["pending_quantity"] == "100"

    def test_fulfilled_request_rejects_more(self, make_request, actor, shelf, product, stock_in):
        stock_in(shelf, product, 20)
        request = make_request([{"product_id": product.id, "requested_quantity": 5}])
        _fulfill(request, [{"from_location_id": shelf.id, "product_id": product.id, "quantity": 5}], actor)

        with pytest.raises(InvalidStateError):
            _fulfill(request, [{"from_location_id": shelf.id, "product_id": product.id, "quantity": 1}], actor)


class TestScenarioD:
    """Two pickers shipping 6 each against an item with 10 remaining."""

    def test_second_picker_is_rejected(self, make_request, actor, shelf, shelf_b, dock, product, stock_in, balance_of):
        stock_in(shelf, product, 10)
        stock_in(shelf_b, product, 10)
        request = make_request([{"product_id": product.id, "requested_quantity": 10}])
        item_id = request.items[0].id

        _fulfill(
            request,
            [{"from_location_id": shelf.id, "product_id": product.id, "quantity": 6, "request_item_id": item_id}],
            actor,
        )
        with pytest.raises(OverShipmentError):
            _fulfill(
                request,
                [{"from_location_id": shelf_b.id, "product_id": product.id, "quantity": 6, "request_item_id": item_id}],
                actor,
            )

        request = mrs.get_movement_request(TENANT_ID, request.id)
        assert request.items[0].remaining_quantity == Decimal("4")
        assert balance_of(dock, product).quantity == Decimal("6")
        assert balance_of(shelf_b, product).quantity == Decimal("10")

    def test_persistent_conflict_surfaces_and_rolls_back(
        self, make_request, actor, shelf, dock, product, stock_in, balance_of, monkeypatch
    ):
        """A version conflict on every attempt surfaces ConcurrentModificationError."""
        stock_in(shelf, product, 10)
        request = make_request([{"product_id": product.id, "requested_quantity": 10}])
        calls = []

        def _conflicting_writer(*args, **kwargs):
            calls.append(1)
            raise StaleDataError("UPDATE statement on table 'movement_request_items' expected to update 1 row(s); 0 were matched.")

        monkeypatch.setattr(fulfillment_service, "_record_shipment_inner", _conflicting_writer)

        with pytest.raises(ConcurrentModificationError):
            _fulfill(request, [{"from_location_id": shelf.id, "product_id": product.id, "quantity": 6}], actor)

        assert len(calls) == 3
        assert balance_of(shelf, product).quantity == Decimal("10")
        assert balance_of(dock, product).quantity == Decimal("0")
        request = mrs.get_movement_request(TENANT_ID, request.id)
        assert request.items[0].remaining_quantity == Decimal("10")
