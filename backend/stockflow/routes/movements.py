# backend/stockflow/routes/movements.py
"""
Manual stock movement API routes: receive, issue or transfer stock through the ledger.
"""
from flask import Blueprint, current_app, g, jsonify, request

from ..context import require_tenant
from ..errors import StockError
from ..extensions import db
from ..services import balance_service
from ..validation import optional_int, require_fields, require_int


movements_bp = Blueprint("stock_movements", __name__, url_prefix="/api/stock/movements")


def _stock_error(e: StockError):
    db.session.rollback()
    return jsonify(e.to_dict()), e.status_code


def _internal_error(message: str):
    db.session.rollback()
    current_app.logger.exception(message)
    return jsonify({"error": "Internal server error", "code": "INTERNAL_ERROR"}), 500


@movements_bp.route("", methods=["POST"])
@require_tenant
def create_movement():
    """
    Record a manual movement.

    Request body:
    {
        "movement_type": "IN" | "OUT" | "TRANSFER" (optional, checked against the locations),
        "product_id": int,
        "batch_id": int (optional),
        "from_location_id": int (OUT, TRANSFER),
        "to_location_id": int (IN, TRANSFER),
        "quantity": number | "presentation_id": int + "presentation_quantity": number,
        "reference_type": str (optional),
        "reference_id": int (optional),
        "note": str (optional)
    }

    Returns:
        201: StockMovement created
        400: Invalid request
        404: Product, batch or location not found
        409: Insufficient stock or expired batch
    """
    try:
        data = require_fields(request.get_json(silent=True), ["product_id"])
        presentation_id = optional_int(data.get("presentation_id"), "presentation_id")
        movement = balance_service.apply_movement(
            tenant_id=g.tenant_id,
            product_id=require_int(data["product_id"], "product_id"),
            quantity=data.get("quantity"),
            batch_id=optional_int(data.get("batch_id"), "batch_id"),
            from_location_id=optional_int(data.get("from_location_id"), "from_location_id"),
            to_location_id=optional_int(data.get("to_location_id"), "to_location_id"),
            reference_type=data.get("reference_type"),
            reference_id=optional_int(data.get("reference_id"), "reference_id"),
            note=data.get("note"),
            movement_type=data.get("movement_type"),
            presentation_id=presentation_id,
            presentation_quantity=data.get("presentation_quantity"),
            actor=g.actor,
        )
        return jsonify(movement.to_dict()), 201

    except StockError as e:
        return _stock_error(e)
    except Exception:
        return _internal_error("Failed to record stock movement")


@movements_bp.route("", methods=["GET"])
@require_tenant
def list_movements():
    """
    List ledger entries, newest first.

    Query params: location_id (either side), product_id, movement_type, limit
    """
    try:
        limit = optional_int(request.args.get("limit"), "limit") or 200
        movements = balance_service.list_movements(
            tenant_id=g.tenant_id,
            location_id=optional_int(request.args.get("location_id"), "location_id"),
            product_id=optional_int(request.args.get("product_id"), "product_id"),
            movement_type=request.args.get("movement_type"),
            limit=min(limit, 1000),
        )
        return jsonify({"movements": [m.to_dict() for m in movements]}), 200

    except StockError as e:
        return _stock_error(e)
    except Exception:
        return _internal_error("Failed to list stock movements")
