# backend/stockflow/routes/returns.py
"""
Stock return API routes: standalone returns and return history.
"""
from flask import Blueprint, current_app, g, jsonify, request

from ..context import require_tenant
from ..errors import StockError
from ..extensions import db
from ..services import reception_service
from ..validation import optional_datetime, optional_int, require_fields, require_int, require_list


returns_bp = Blueprint("stock_returns", __name__, url_prefix="/api/stock/returns")


@returns_bp.route("", methods=["POST"])
@require_tenant
def create_return():
    """
    Return previously received stock into a location.

    Request body:
    {
        "to_location_id": int,
        "reason": str,
        "items": [{"product_id": int, "batch_id": int (optional),
                   "quantity": number | "presentation_id": int + "presentation_quantity": number}],
        "evidence": {"photo_key": str, "photo_url": str} (optional),
        "note": str (optional),
        "source_type": str (optional),
        "source_id": int (optional)
    }

    Returns:
        201: StockReturn created
        400: Invalid request
        404: Location or product not found
    """
    try:
        data = require_fields(request.get_json(silent=True), ["to_location_id", "reason"])
        stock_return = reception_service.create_standalone_return(
            tenant_id=g.tenant_id,
            to_location_id=require_int(data["to_location_id"], "to_location_id"),
            reason=data["reason"],
            items=require_list(data, "items"),
            evidence=reception_service.Evidence.from_dict(data.get("evidence")),
            note=data.get("note"),
            source_type=data.get("source_type"),
            source_id=optional_int(data.get("source_id"), "source_id"),
            actor=g.actor,
        )
        return jsonify(stock_return.to_dict()), 201

    except StockError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create stock return")
        return jsonify({"error": "Internal server error", "code": "INTERNAL_ERROR"}), 500


@returns_bp.route("", methods=["GET"])
@require_tenant
def list_returns():
    """
    List stock returns, newest first.

    Query params:
        warehouse_id: warehouse of the destination location
        from / to: ISO-8601 bounds on created_at (from inclusive, to exclusive)
        limit: max rows (default 50, max 200)
    """
    try:
        limit = optional_int(request.args.get("limit"), "limit") or 50
        returns = reception_service.list_stock_returns(
            tenant_id=g.tenant_id,
            warehouse_id=optional_int(request.args.get("warehouse_id"), "warehouse_id"),
            created_from=optional_datetime(request.args.get("from"), "from"),
            created_to=optional_datetime(request.args.get("to"), "to"),
            limit=min(limit, 200),
        )
        return jsonify({"returns": [r.to_dict() for r in returns]}), 200

    except StockError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to list stock returns")
        return jsonify({"error": "Internal server error", "code": "INTERNAL_ERROR"}), 500


@returns_bp.route("/<int:return_id>", methods=["GET"])
@require_tenant
def get_return(return_id: int):
    """
    Get one stock return with its items.

    Returns:
        200: StockReturn
        404: Not found for this tenant
    """
    try:
        stock_return = reception_service.get_stock_return(g.tenant_id, return_id)
        return jsonify(stock_return.to_dict()), 200

    except StockError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to load stock return")
        return jsonify({"error": "Internal server error", "code": "INTERNAL_ERROR"}), 500
