# backend/sareeflow/routes/inventory.py
"""
Inventory (stock ledger) routes.

Every stock change goes through the ledger and returns the movement it
wrote. An idempotency key may be sent in the body or as the
Idempotency-Key header; replays return the original movement with 200.
"""
from flask import Blueprint, request, current_app, jsonify

from ..services import stock_service
from ..validation import ValidationError
from .errors import DOMAIN_ERRORS, error_response


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


def _idempotency_key(payload: dict) -> str | None:
    key = payload.get("idempotency_key") or request.headers.get("Idempotency-Key")
    if key is None:
        return None
    key = str(key).strip()
    if not key or len(key) > 128:
        raise ValidationError("idempotency_key must be 1-128 characters")
    stock_service.validate_client_key(key)
    return key


def _product_id(payload: dict) -> int:
    product_id = payload.get("product_id")
    if isinstance(product_id, bool) or not isinstance(product_id, int):
        raise ValidationError("product_id must be an integer")
    return product_id


def _movement_response(movement, replayed: bool):
    return {
        "movement": movement.to_dict(),
        "product": movement.product.to_dict(),
        "replayed": replayed,
    }, 200 if replayed else 201


@inventory_bp.post("/adjust")
def adjust_inventory_route():
    """
    Add or subtract stock.

    Body: {"product_id", "quantity", "direction": "add"|"subtract",
           "reference"?, "notes"?, "idempotency_key"?}

    Subtractions below zero are clamped; the movement shows what was applied.
    """
    payload = request.get_json(silent=True) or {}
    try:
        key = _idempotency_key(payload)
        product_id = _product_id(payload)
        replayed = bool(key) and stock_service.find_replay(key, product_id) is not None
        movement = stock_service.adjust_stock(
            product_id,
            payload.get("quantity"),
            payload.get("direction"),
            reference=payload.get("reference"),
            notes=payload.get("notes"),
            idempotency_key=key,
        )
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to adjust stock")
        return jsonify({"error": "Internal server error"}), 500

    return _movement_response(movement, replayed)


@inventory_bp.get("/movements")
def list_movements_route():
    """
    Query params:
    - product_id: int (optional)
    - limit: int (optional, default 200, max 1000)
    """
    limit = min(max(request.args.get("limit", 200, type=int), 1), 1000)
    try:
        movements = stock_service.list_movements(
            product_id=request.args.get("product_id", type=int),
            limit=limit,
        )
    except DOMAIN_ERRORS as e:
        return error_response(e)
    return {"items": [m.to_dict() for m in movements], "count": len(movements)}


@inventory_bp.post("/movements")
def record_movement_route():
    """
    Record a manual movement with a signed quantity.

    Body: {"product_id", "type": "in"|"out"|"adjustment", "quantity",
           "reference"?, "notes"?, "idempotency_key"?}
    """
    payload = request.get_json(silent=True) or {}
    try:
        key = _idempotency_key(payload)
        product_id = _product_id(payload)
        replayed = bool(key) and stock_service.find_replay(key, product_id) is not None
        movement = stock_service.record_movement(
            product_id=product_id,
            movement_type=payload.get("type"),
            quantity=payload.get("quantity"),
            reference=payload.get("reference"),
            notes=payload.get("notes"),
            idempotency_key=key,
        )
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record movement")
        return jsonify({"error": "Internal server error"}), 500

    return _movement_response(movement, replayed)


@inventory_bp.get("/reconcile")
def reconcile_route():
    """
    Compare cached stock against opening stock plus the movement sum.

    Query params:
    - product_id: int (optional) - single product
    - only_drift: bool (optional)
    """
    product_id = request.args.get("product_id", type=int)
    try:
        if product_id is not None:
            return stock_service.reconcile_product(product_id)
        only_drift = request.args.get("only_drift", "").lower() in {"1", "true", "yes"}
        rows = stock_service.reconcile_all(only_drift=only_drift)
    except DOMAIN_ERRORS as e:
        return error_response(e)
    return {"items": rows, "count": len(rows)}
