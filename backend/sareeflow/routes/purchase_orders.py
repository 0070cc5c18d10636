# Overview: Flask API routes for purchase orders; parses input and returns JSON responses.

"""
Purchase order routes.

Receiving (PATCH status to "received") posts every line to stock.
"""

from flask import Blueprint, request, jsonify, current_app

from ..services import purchase_order_service
from ..validation import ValidationError
from .errors import DOMAIN_ERRORS, error_response


purchase_orders_bp = Blueprint("purchase_orders", __name__, url_prefix="/api/purchase-orders")


@purchase_orders_bp.get("")
def list_purchase_orders_route():
    try:
        pos = purchase_order_service.list_purchase_orders(
            status=request.args.get("status"),
            supplier_id=request.args.get("supplier_id", type=int),
        )
    except DOMAIN_ERRORS as e:
        return error_response(e)
    return {"items": [po.to_dict() for po in pos], "count": len(pos)}


@purchase_orders_bp.get("/<int:purchase_order_id>")
def get_purchase_order_route(purchase_order_id: int):
    try:
        po = purchase_order_service.get_purchase_order(purchase_order_id)
    except DOMAIN_ERRORS as e:
        return error_response(e)
    return po.to_dict(details=True)


@purchase_orders_bp.post("")
def create_purchase_order_route():
    """
    Body: {"supplier_id", "items": [{"product_id", "quantity", "price"?, "total"?}],
           "tax"?, "total"?, "notes"?, "expected_date"?, "po_number"?}
    """
    data = request.get_json(silent=True) or {}
    try:
        supplier_id = data.get("supplier_id")
        if isinstance(supplier_id, bool) or not isinstance(supplier_id, int):
            raise ValidationError("supplier_id must be an integer")
        po = purchase_order_service.create_purchase_order(
            supplier_id=supplier_id,
            items=data.get("items"),
            tax=data.get("tax"),
            total=data.get("total"),
            notes=data.get("notes"),
            expected_date=data.get("expected_date"),
            po_number=data.get("po_number"),
        )
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create purchase order")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify(po.to_dict(details=True)), 201


@purchase_orders_bp.patch("/<int:purchase_order_id>/status")
def update_purchase_order_status_route(purchase_order_id: int):
    """Body: {"status": "sent" | "received" | "cancelled"}"""
    data = request.get_json(silent=True) or {}
    try:
        po = purchase_order_service.update_purchase_order_status(purchase_order_id, data.get("status"))
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update purchase order status")
        return jsonify({"error": "Internal server error"}), 500

    return po.to_dict(details=True), 200
