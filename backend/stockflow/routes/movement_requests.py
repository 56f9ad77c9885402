# backend/stockflow/routes/movement_requests.py
"""
Movement request API routes: create, list, cancel, fulfil, receive, return.
"""
from flask import Blueprint, current_app, g, jsonify, request

from ..context import require_tenant
from ..errors import StockError
from ..extensions import db
from ..services import fulfillment_service, movement_request_service, reception_service
from ..validation import optional_int, require_fields, require_int, require_list


movement_requests_bp = Blueprint("movement_requests", __name__, url_prefix="/api/stock/movement-requests")


def _stock_error(e: StockError):
    db.session.rollback()
    return jsonify(e.to_dict()), e.status_code


def _internal_error(message: str):
    db.session.rollback()
    current_app.logger.exception(message)
    return jsonify({"error": "Internal server error", "code": "INTERNAL_ERROR"}), 500


@movement_requests_bp.route("", methods=["POST"])
@require_tenant
def create_movement_request():
    """
    Create a movement request.

    Request body:
    {
        "warehouse_id": int,
        "destination_location_id": int,
        "requested_by_name": str,
        "note": str (optional),
        "items": [{"product_id": int, "requested_quantity": number}
                  | {"product_id": int, "presentation_id": int, "presentation_quantity": number}]
    }

    Returns:
        201: Request created (status OPEN)
        400: Invalid request
        404: Warehouse, location or product not found
    """
    try:
        data = require_fields(request.get_json(silent=True), ["warehouse_id", "destination_location_id", "requested_by_name"])
        movement_request = movement_request_service.create_movement_request(
            tenant_id=g.tenant_id,
            warehouse_id=require_int(data["warehouse_id"], "warehouse_id"),
            destination_location_id=require_int(data["destination_location_id"], "destination_location_id"),
            requested_by_name=data["requested_by_name"],
            items=require_list(data, "items"),
            note=data.get("note"),
            actor=g.actor,
        )
        return jsonify(
            {**movement_request.to_dict(), "items": [item.to_dict() for item in movement_request.items]}
        ), 201

    except StockError as e:
        return _stock_error(e)
    except Exception:
        return _internal_error("Failed to create movement request")


@movement_requests_bp.route("", methods=["GET"])
@require_tenant
def list_movement_requests():
    """
    List movement requests, newest first.

    Query params: status, confirmation_status, warehouse_id, city, limit
    """
    try:
        limit = optional_int(request.args.get("limit"), "limit") or 100
        requests_ = movement_request_service.list_movement_requests(
            tenant_id=g.tenant_id,
            status=request.args.get("status"),
            confirmation_status=request.args.get("confirmation_status"),
            warehouse_id=optional_int(request.args.get("warehouse_id"), "warehouse_id"),
            city=request.args.get("city"),
            limit=min(limit, 500),
        )
        return jsonify({"movement_requests": [r.to_dict() for r in requests_]}), 200

    except StockError as e:
        return _stock_error(e)
    except Exception:
        return _internal_error("Failed to list movement requests")


@movement_requests_bp.route("/<int:request_id>", methods=["GET"])
@require_tenant
def get_movement_request(request_id: int):
    """Request with items, shipped legs, returns and total pending quantity."""
    try:
        summary = movement_request_service.get_movement_request_summary(g.tenant_id, request_id)
        return jsonify(summary), 200

    except StockError as e:
        return _stock_error(e)
    except Exception:
        return _internal_error("Failed to load movement request")


@movement_requests_bp.route("/<int:request_id>/cancel", methods=["POST"])
@require_tenant
def cancel_movement_request(request_id: int):
    """
    Cancel an OPEN request with no shipments.

    Request body: {"reason": str (optional)}

    Returns:
        200: Cancelled
        409: Not OPEN or already shipped
    """
    data = request.get_json(silent=True) or {}

    try:
        movement_request = movement_request_service.cancel_movement_request(
            tenant_id=g.tenant_id,
            request_id=request_id,
            reason=data.get("reason"),
            actor=g.actor,
        )
        return jsonify(movement_request.to_dict()), 200

    except StockError as e:
        return _stock_error(e)
    except Exception:
        return _internal_error("Failed to cancel movement request")


@movement_requests_bp.route("/<int:request_id>/fulfill", methods=["POST"])
@require_tenant
def fulfill_movement_request(request_id: int):
    """
    Ship a picking list against the request.

    Request body:
    {
        "picked_lines": [{
            "from_location_id": int,
            "product_id": int | "sku": str,
            "batch_id": int (optional),
            "request_item_id": int (optional),
            "quantity": number | "presentation_id": int + "presentation_quantity": number
        }]
    }

    Returns:
        200: Shipment recorded
        400: Over-shipment or invalid line
        409: Request not OPEN, insufficient stock, expired batch, conflict
    """
    try:
        data = require_fields(request.get_json(silent=True), [])
        result = fulfillment_service.fulfill_movement_request(
            tenant_id=g.tenant_id,
            request_id=request_id,
            picked_lines=require_list(data, "picked_lines"),
            actor=g.actor,
        )
        return jsonify(result.to_dict()), 200

    except StockError as e:
        return _stock_error(e)
    except Exception:
        return _internal_error("Failed to fulfil movement request")


@movement_requests_bp.route("/<int:request_id>/confirm", methods=["POST"])
@require_tenant
def confirm_reception(request_id: int):
    """
    Confirm reception of everything shipped.

    Request body: {"note": str (optional)}

    Returns:
        200: confirmation_status ACCEPTED
        409: Not FULFILLED or already decided
    """
    data = request.get_json(silent=True) or {}

    try:
        movement_request = reception_service.confirm_reception(
            tenant_id=g.tenant_id,
            request_id=request_id,
            note=data.get("note"),
            actor=g.actor,
        )
        return jsonify(movement_request.to_dict()), 200

    except StockError as e:
        return _stock_error(e)
    except Exception:
        return _internal_error("Failed to confirm reception")


@movement_requests_bp.route("/<int:request_id>/return", methods=["POST"])
@require_tenant
def return_shipment(request_id: int):
    """
    Return shipped, unreceived stock to its origin.

    Request body:
    {
        "mode": "ALL" | "PARTIAL",
        "items": [{"out_movement_id": int, "quantity": number}] (PARTIAL only),
        "reason": str (optional),
        "note": str (optional),
        "evidence": {"photo_key": str, "photo_url": str} (optional)
    }

    Returns:
        200: Updated request (REJECTED once nothing is pending)
        400: Quantity exceeds pending
        404: Movement not part of this request
    """
    try:
        data = require_fields(request.get_json(silent=True), ["mode"])
        movement_request = reception_service.return_shipment(
            tenant_id=g.tenant_id,
            request_id=request_id,
            mode=data["mode"],
            items=data.get("items"),
            reason=data.get("reason"),
            note=data.get("note"),
            evidence=reception_service.Evidence.from_dict(data.get("evidence")),
            actor=g.actor,
        )
        summary = movement_request_service.get_movement_request_summary(g.tenant_id, movement_request.id)
        return jsonify(summary), 200

    except StockError as e:
        return _stock_error(e)
    except Exception:
        return _internal_error("Failed to return shipment")
