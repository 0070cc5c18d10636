# Overview: Flask API routes for orders; parses input and returns JSON responses.

# backend/sareeflow/routes/orders.py
"""
Order API routes.

POST /api/orders takes {"order": {...}, "items": [...]} and places the
whole order (items, stock, customer totals) atomically.
"""

from flask import Blueprint, request, jsonify, current_app

from ..models import Order
from ..services import order_service
from ..validation import ModelValidationPolicy, validate_payload
from .errors import DOMAIN_ERRORS, error_response


ORDER_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields=set(order_service.UPDATABLE_FIELDS),
)

orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


@orders_bp.get("")
def list_orders_route():
    """
    List orders, newest first.

    Query params:
    - status: str (optional)
    - customer_id: int (optional)
    """
    try:
        orders = order_service.list_orders(
            status=request.args.get("status"),
            customer_id=request.args.get("customer_id", type=int),
        )
    except DOMAIN_ERRORS as e:
        return error_response(e)
    return {"items": [o.to_dict(include_customer=True) for o in orders], "count": len(orders)}


@orders_bp.get("/<int:order_id>")
def get_order_route(order_id: int):
    try:
        order = order_service.get_order(order_id)
    except DOMAIN_ERRORS as e:
        return error_response(e)
    return order.to_dict(details=True)


@orders_bp.post("")
def place_order_route():
    """
    Place an order.

    Returns:
    - 201: order with items
    - 400: invalid order/items or totals that do not add up
    - 404: unknown customer or product
    - 409: insufficient stock (details lists each short product) or conflict
    - 503: deadline exceeded; nothing was written
    """
    data = request.get_json(silent=True) or {}
    try:
        order = order_service.place_order(data.get("order"), data.get("items"))
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to place order")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify(order.to_dict(details=True)), 201


@orders_bp.put("/<int:order_id>")
def update_order_route(order_id: int):
    """Update notes, addresses or delivery_date."""
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Order, payload=payload, policy=ORDER_UPDATE_POLICY, partial=True)
        order = order_service.update_order(order_id, patch)
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update order")
        return jsonify({"error": "Internal server error"}), 500

    return order.to_dict(details=True), 200


@orders_bp.patch("/<int:order_id>/status")
def update_order_status_route(order_id: int):
    """
    Change status or payment_status.

    Body: {"field": "status" | "payment_status", "value": "..."}
    field defaults to "status". Illegal transitions return 409.
    """
    data = request.get_json(silent=True) or {}
    try:
        order = order_service.update_order_status(
            order_id,
            data.get("field", "status"),
            data.get("value"),
        )
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update order status")
        return jsonify({"error": "Internal server error"}), 500

    return order.to_dict(details=True), 200
