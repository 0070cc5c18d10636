# Overview: Flask API routes for products operations; parses input and returns JSON responses.

# backend/sareeflow/routes/products.py
"""
Product catalog routes.

stock_quantity is accepted on create only (opening stock). Later stock
changes go through /api/inventory.
"""
from flask import Blueprint, request, current_app, jsonify

from ..services import products_service
from ..services.stock_service import get_product
from ..models import Product
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_product,
)
from .errors import DOMAIN_ERRORS, error_response

_CATALOG_FIELDS = {
    "sku", "name", "description", "category", "price", "cost_price",
    "min_stock_level", "color", "size", "fabric", "image_url", "is_active",
}
_MONEY_FIELDS = {"price": "price_cents", "cost_price": "cost_price_cents"}

PRODUCT_CREATE_POLICY = ModelValidationPolicy(
    writable_fields=_CATALOG_FIELDS | {"stock_quantity"},
    required_on_create={"sku", "name", "category", "price"},
    money_fields=_MONEY_FIELDS,
)

PRODUCT_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields=_CATALOG_FIELDS,
    money_fields=_MONEY_FIELDS,
)

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


def _flag(name: str) -> bool:
    return request.args.get(name, "").lower() in {"1", "true", "yes"}


@products_bp.get("")
def list_products():
    """
    List products.

    Query params:
    - category: str (optional)
    - search: str (optional) - matches name, SKU, color, fabric
    - include_inactive: bool (optional)
    """
    try:
        return products_service.list_products(
            category=request.args.get("category"),
            search=request.args.get("search"),
            include_inactive=_flag("include_inactive"),
        )
    except Exception:
        current_app.logger.exception("Failed to list products")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.get("/<int:product_id>")
def get_product_route(product_id: int):
    try:
        return get_product(product_id).to_dict()
    except DOMAIN_ERRORS as e:
        return error_response(e)


@products_bp.post("")
def create_product_route():
    """Create a new product."""
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_CREATE_POLICY, partial=False)
        enforce_rules_product(patch)
        created = products_service.create_product(patch=patch)
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": "Internal server error"}), 500

    return created, 201


@products_bp.put("/<int:product_id>")
def update_product_route(product_id: int):
    """Update catalog fields of a product (not stock)."""
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_UPDATE_POLICY, partial=True)
        enforce_rules_product(patch)
        updated = products_service.update_product(product_id=product_id, patch=patch)
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update product")
        return jsonify({"error": "Internal server error"}), 500

    return updated, 200


@products_bp.delete("/<int:product_id>")
def delete_product_route(product_id: int):
    """Deactivate a product."""
    try:
        products_service.delete_product(product_id=product_id)
    except DOMAIN_ERRORS as e:
        return error_response(e)

    return {"ok": True}, 200
