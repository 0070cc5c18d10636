# backend/sareeflow/services/products_service.py
"""
Products Service

Catalog maintenance only. Stock fields are owned by the stock ledger:
stock_quantity can be set once, when the product is created (it becomes the
opening quantity), and afterwards only changes through stock_service.
"""
from __future__ import annotations

from sqlalchemy import or_

from ..extensions import db
from ..models import Product
from ..validation import ConflictError, ValidationError
from .stock_service import get_product

PRODUCT_MUTABLE_FIELDS = {
    "sku",
    "name",
    "description",
    "category",
    "price_cents",
    "cost_price_cents",
    "min_stock_level",
    "color",
    "size",
    "fabric",
    "image_url",
    "is_active",
}


def apply_product_patch(p: Product, patch: dict) -> None:
    for k, v in patch.items():
        if k not in PRODUCT_MUTABLE_FIELDS:
            continue
        setattr(p, k, v)


def _ensure_unique_sku(sku: str, *, exclude_id: int | None = None) -> None:
    q = db.session.query(Product.id).filter(Product.sku == sku)
    if exclude_id is not None:
        q = q.filter(Product.id != exclude_id)
    if q.first():
        raise ConflictError(f"SKU {sku} already exists")


def list_products(
    *,
    category: str | None = None,
    search: str | None = None,
    include_inactive: bool = False,
) -> dict:
    """
    Product listing ordered by name.

    search matches name, SKU, color or fabric (case-insensitive).
    """
    q = db.session.query(Product)
    if not include_inactive:
        q = q.filter(Product.is_active.is_(True))
    if category:
        q = q.filter(Product.category == category)
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(or_(
            Product.name.ilike(like),
            Product.sku.ilike(like),
            Product.color.ilike(like),
            Product.fabric.ilike(like),
        ))

    products = q.order_by(Product.name.asc(), Product.id.asc()).all()
    return {
        "items": [p.to_dict() for p in products],
        "count": len(products),
    }


def create_product(*, patch: dict) -> dict:
    """
    Create a product from a validated patch dict.

    The optional stock_quantity becomes both the current and the opening
    quantity; no movement is written for it.
    """
    sku = patch.get("sku")
    if not sku:
        raise ValidationError("sku is required")
    _ensure_unique_sku(sku)

    opening = patch.get("stock_quantity") or 0
    p = Product(stock_quantity=opening, opening_stock_quantity=opening)
    apply_product_patch(p, patch)

    db.session.add(p)
    db.session.commit()
    return p.to_dict()


def update_product(*, product_id: int, patch: dict) -> dict:
    """
    Update catalog fields of a product.

    Raises:
        NotFoundError: product does not exist
        ValidationError: patch tries to set stock_quantity
        ConflictError: new SKU already exists
    """
    if "stock_quantity" in patch:
        raise ValidationError("stock_quantity can only be changed through inventory adjustments")

    p = get_product(product_id)

    if "sku" in patch and patch["sku"] != p.sku:
        _ensure_unique_sku(patch["sku"], exclude_id=p.id)

    apply_product_patch(p, patch)
    db.session.commit()
    return p.to_dict()


def delete_product(*, product_id: int) -> dict:
    """
    Soft-delete a product.

    Order items and movements keep referencing it, so the row stays and is
    only deactivated.
    """
    p = get_product(product_id)
    if p.is_active:
        p.is_active = False
        db.session.commit()
    return p.to_dict()
