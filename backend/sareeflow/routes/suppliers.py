# Overview: Flask API routes for suppliers; parses input and returns JSON responses.

from flask import Blueprint, request, current_app, jsonify

from ..models import Supplier
from ..services import supplier_service
from ..validation import ModelValidationPolicy, validate_payload, enforce_rules_contact
from .errors import DOMAIN_ERRORS, error_response

SUPPLIER_POLICY = ModelValidationPolicy(
    writable_fields={
        "name", "phone", "email", "address", "city", "state", "pincode",
        "gst_number", "bank_details", "payment_terms", "is_active",
    },
    required_on_create={"name", "phone"},
)

suppliers_bp = Blueprint("suppliers", __name__, url_prefix="/api/suppliers")


@suppliers_bp.get("")
def list_suppliers_route():
    include_inactive = request.args.get("include_inactive", "").lower() in {"1", "true", "yes"}
    suppliers = supplier_service.list_suppliers(include_inactive=include_inactive)
    return {"items": [s.to_dict() for s in suppliers], "count": len(suppliers)}


@suppliers_bp.get("/<int:supplier_id>")
def get_supplier_route(supplier_id: int):
    try:
        return supplier_service.get_supplier(supplier_id).to_dict()
    except DOMAIN_ERRORS as e:
        return error_response(e)


@suppliers_bp.post("")
def create_supplier_route():
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Supplier, payload=payload, policy=SUPPLIER_POLICY, partial=False)
        enforce_rules_contact(patch)
        supplier = supplier_service.create_supplier(patch=patch)
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create supplier")
        return jsonify({"error": "Internal server error"}), 500
    return supplier.to_dict(), 201


@suppliers_bp.put("/<int:supplier_id>")
def update_supplier_route(supplier_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Supplier, payload=payload, policy=SUPPLIER_POLICY, partial=True)
        enforce_rules_contact(patch)
        supplier = supplier_service.update_supplier(supplier_id=supplier_id, patch=patch)
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update supplier")
        return jsonify({"error": "Internal server error"}), 500
    return supplier.to_dict(), 200


@suppliers_bp.delete("/<int:supplier_id>")
def delete_supplier_route(supplier_id: int):
    try:
        supplier_service.delete_supplier(supplier_id=supplier_id)
    except DOMAIN_ERRORS as e:
        return error_response(e)
    return {"ok": True}, 200
