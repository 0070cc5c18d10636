# Overview: Service-layer operations for customers; encapsulates business logic and database work.

"""
Customer Service

Customers are referenced by orders. total_orders and total_spent_cents are
owned by order_service and never written from here.
"""

from __future__ import annotations

from sqlalchemy import or_

from ..extensions import db
from ..models import Customer, Order
from ..validation import ConflictError, NotFoundError, ValidationError

CUSTOMER_MUTABLE_FIELDS = {
    "name",
    "phone",
    "email",
    "address",
    "city",
    "state",
    "pincode",
    "gst_number",
    "preferences",
    "notes",
}


def _apply_patch(customer: Customer, patch: dict) -> None:
    extra = set(patch) - CUSTOMER_MUTABLE_FIELDS
    if extra:
        raise ValidationError(f"Field not allowed: {', '.join(sorted(extra))}")
    for k, v in patch.items():
        setattr(customer, k, v)


def get_customer(customer_id: int) -> Customer:
    customer = db.session.get(Customer, customer_id)
    if customer is None:
        raise NotFoundError(f"customer {customer_id} not found")
    return customer


def list_customers(*, search: str | None = None) -> list[Customer]:
    """Customers ordered by name; search matches name, phone or email."""
    q = db.session.query(Customer)
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(or_(
            Customer.name.ilike(like),
            Customer.phone.ilike(like),
            Customer.email.ilike(like),
        ))
    return q.order_by(Customer.name.asc(), Customer.id.asc()).all()


def create_customer(*, patch: dict) -> Customer:
    customer = Customer(total_orders=0, total_spent_cents=0)
    _apply_patch(customer, patch)
    db.session.add(customer)
    db.session.commit()
    return customer


def update_customer(*, customer_id: int, patch: dict) -> Customer:
    customer = get_customer(customer_id)
    _apply_patch(customer, patch)
    db.session.commit()
    return customer


def delete_customer(*, customer_id: int) -> None:
    """
    Delete a customer that has never ordered.

    Raises:
        NotFoundError: customer does not exist
        ConflictError: customer has orders (order history must stay intact)
    """
    customer = get_customer(customer_id)
    has_orders = db.session.query(Order.id).filter(Order.customer_id == customer.id).first()
    if has_orders:
        raise ConflictError("customer has orders and cannot be deleted")
    db.session.delete(customer)
    db.session.commit()
