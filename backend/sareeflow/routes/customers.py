# Overview: Flask API routes for customers; parses input and returns JSON responses.

from flask import Blueprint, request, current_app, jsonify

from ..models import Customer
from ..services import customer_service
from ..validation import ModelValidationPolicy, validate_payload, enforce_rules_contact
from .errors import DOMAIN_ERRORS, error_response

CUSTOMER_POLICY = ModelValidationPolicy(
    writable_fields={
        "name", "phone", "email", "address", "city", "state",
        "pincode", "gst_number", "preferences", "notes",
    },
    required_on_create={"name", "phone"},
)

customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


@customers_bp.get("")
def list_customers_route():
    customers = customer_service.list_customers(search=request.args.get("search"))
    return {"items": [c.to_dict() for c in customers], "count": len(customers)}


@customers_bp.get("/<int:customer_id>")
def get_customer_route(customer_id: int):
    try:
        return customer_service.get_customer(customer_id).to_dict()
    except DOMAIN_ERRORS as e:
        return error_response(e)


@customers_bp.post("")
def create_customer_route():
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Customer, payload=payload, policy=CUSTOMER_POLICY, partial=False)
        enforce_rules_contact(patch)
        customer = customer_service.create_customer(patch=patch)
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create customer")
        return jsonify({"error": "Internal server error"}), 500
    return customer.to_dict(), 201


@customers_bp.put("/<int:customer_id>")
def update_customer_route(customer_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Customer, payload=payload, policy=CUSTOMER_POLICY, partial=True)
        enforce_rules_contact(patch)
        customer = customer_service.update_customer(customer_id=customer_id, patch=patch)
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update customer")
        return jsonify({"error": "Internal server error"}), 500
    return customer.to_dict(), 200


@customers_bp.delete("/<int:customer_id>")
def delete_customer_route(customer_id: int):
    """Delete a customer without orders (409 otherwise)."""
    try:
        customer_service.delete_customer(customer_id=customer_id)
    except DOMAIN_ERRORS as e:
        return error_response(e)
    return {"ok": True}, 200
