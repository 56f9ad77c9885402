# backend/stockflow/routes/balances.py
"""
Inventory balance API routes: read balances, reserve and release stock.
"""
from flask import Blueprint, current_app, g, jsonify, request

from ..context import require_tenant
from ..errors import StockError
from ..extensions import db
from ..services import balance_service
from ..validation import optional_int, require_fields, require_int


balances_bp = Blueprint("balances", __name__, url_prefix="/api/stock/balances")


def _stock_error(e: StockError):
    db.session.rollback()
    return jsonify(e.to_dict()), e.status_code


def _internal_error(message: str):
    db.session.rollback()
    current_app.logger.exception(message)
    return jsonify({"error": "Internal server error", "code": "INTERNAL_ERROR"}), 500


@balances_bp.route("", methods=["GET"])
@require_tenant
def list_balances():
    """
    List balance rows.

    Query params: location_id, product_id, include_zero (true/false),
    reserved_only (true/false: rows holding a reservation), limit
    """
    try:
        include_zero = (request.args.get("include_zero") or "").lower() in {"1", "true", "yes"}
        reserved_only = (request.args.get("reserved_only") or "").lower() in {"1", "true", "yes"}
        limit = optional_int(request.args.get("limit"), "limit") or 500
        balances = balance_service.list_balances(
            tenant_id=g.tenant_id,
            location_id=optional_int(request.args.get("location_id"), "location_id"),
            product_id=optional_int(request.args.get("product_id"), "product_id"),
            include_zero=include_zero,
            reserved_only=reserved_only,
            limit=min(limit, 1000),
        )
        return jsonify({"balances": [b.to_dict() for b in balances]}), 200

    except StockError as e:
        return _stock_error(e)
    except Exception:
        return _internal_error("Failed to list balances")


@balances_bp.route("/lookup", methods=["GET"])
@require_tenant
def get_balance():
    """
    Single balance for (product, batch, location).

    Query params: product_id (required), location_id (required), batch_id (optional)

    Returns:
        200: {quantity, reserved_quantity, available_quantity, ...}; zeros if
             nothing has moved into the location yet
    """
    try:
        snapshot = balance_service.get_balance(
            tenant_id=g.tenant_id,
            product_id=require_int(request.args.get("product_id"), "product_id"),
            batch_id=optional_int(request.args.get("batch_id"), "batch_id"),
            location_id=require_int(request.args.get("location_id"), "location_id"),
        )
        return jsonify(snapshot.to_dict()), 200

    except StockError as e:
        return _stock_error(e)
    except Exception:
        return _internal_error("Failed to load balance")


@balances_bp.route("/reserve", methods=["POST"])
@require_tenant
def reserve():
    """
    Reserve available stock.

    Request body: {"product_id": int, "location_id": int, "batch_id": int (optional), "amount": number}

    Returns:
        200: Updated balance
        409: Amount exceeds available stock
    """
    try:
        data = require_fields(request.get_json(silent=True), ["product_id", "location_id", "amount"])
        snapshot = balance_service.reserve(
            tenant_id=g.tenant_id,
            product_id=require_int(data["product_id"], "product_id"),
            batch_id=optional_int(data.get("batch_id"), "batch_id"),
            location_id=require_int(data["location_id"], "location_id"),
            amount=data["amount"],
            actor=g.actor,
        )
        return jsonify(snapshot.to_dict()), 200

    except StockError as e:
        return _stock_error(e)
    except Exception:
        return _internal_error("Failed to reserve stock")


@balances_bp.route("/release", methods=["POST"])
@require_tenant
def release():
    """
    Release reserved stock. Over-release clamps to zero.

    Request body: {"product_id": int, "location_id": int, "batch_id": int (optional), "amount": number}
    """
    try:
        data = require_fields(request.get_json(silent=True), ["product_id", "location_id", "amount"])
        snapshot = balance_service.release(
            tenant_id=g.tenant_id,
            product_id=require_int(data["product_id"], "product_id"),
            batch_id=optional_int(data.get("batch_id"), "batch_id"),
            location_id=require_int(data["location_id"], "location_id"),
            amount=data["amount"],
            actor=g.actor,
        )
        return jsonify(snapshot.to_dict()), 200

    except StockError as e:
        return _stock_error(e)
    except Exception:
        return _internal_error("Failed to release stock")
