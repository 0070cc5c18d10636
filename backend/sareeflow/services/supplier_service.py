# Overview: Service-layer operations for suppliers; encapsulates business logic and database work.

"""
Supplier Service

WHY: Suppliers are required on every purchase order. They are never
hard-deleted once a purchase order references them, so receive history
keeps pointing at a real row.
"""

from __future__ import annotations

from ..extensions import db
from ..models import Supplier, PurchaseOrder
from ..validation import ConflictError, NotFoundError, ValidationError

SUPPLIER_MUTABLE_FIELDS = {
    "name",
    "phone",
    "email",
    "address",
    "city",
    "state",
    "pincode",
    "gst_number",
    "bank_details",
    "payment_terms",
    "is_active",
}


def get_supplier(supplier_id: int) -> Supplier:
    supplier = db.session.get(Supplier, supplier_id)
    if supplier is None:
        raise NotFoundError(f"supplier {supplier_id} not found")
    return supplier


def list_suppliers(*, include_inactive: bool = False) -> list[Supplier]:
    q = db.session.query(Supplier)
    if not include_inactive:
        q = q.filter(Supplier.is_active.is_(True))
    return q.order_by(Supplier.name.asc(), Supplier.id.asc()).all()


def create_supplier(*, patch: dict) -> Supplier:
    extra = set(patch) - SUPPLIER_MUTABLE_FIELDS
    if extra:
        raise ValidationError(f"Field not allowed: {', '.join(sorted(extra))}")
    supplier = Supplier(is_active=True)
    for k, v in patch.items():
        setattr(supplier, k, v)
    db.session.add(supplier)
    db.session.commit()
    return supplier


def update_supplier(*, supplier_id: int, patch: dict) -> Supplier:
    supplier = get_supplier(supplier_id)
    extra = set(patch) - SUPPLIER_MUTABLE_FIELDS
    if extra:
        raise ValidationError(f"Field not allowed: {', '.join(sorted(extra))}")
    for k, v in patch.items():
        setattr(supplier, k, v)
    db.session.commit()
    return supplier


def require_active_supplier(supplier_id: int) -> Supplier:
    """Validate a supplier can be used on a new purchase order."""
    supplier = get_supplier(supplier_id)
    if not supplier.is_active:
        raise ConflictError(f"supplier {supplier_id} is inactive")
    return supplier


def delete_supplier(*, supplier_id: int) -> None:
    """
    Delete a supplier with no purchase orders.

    Raises:
        NotFoundError: supplier does not exist
        ConflictError: purchase orders reference the supplier (deactivate instead)
    """
    supplier = get_supplier(supplier_id)
    referenced = db.session.query(PurchaseOrder.id).filter(PurchaseOrder.supplier_id == supplier.id).first()
    if referenced:
        raise ConflictError("supplier has purchase orders; deactivate it instead")
    db.session.delete(supplier)
    db.session.commit()
