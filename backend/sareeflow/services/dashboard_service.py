# Overview: Read-only dashboard views computed on demand from current state.

from __future__ import annotations

from decimal import Decimal

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import Product, Order, Customer
from ..validation import ValidationError, format_cents

STOCK_STATUS_CRITICAL = "critical"
STOCK_STATUS_LOW = "low"


def _critical_ratio(critical_ratio) -> Decimal:
    if critical_ratio is None:
        critical_ratio = current_app.config.get("LOW_STOCK_CRITICAL_RATIO", 0.5)
    try:
        ratio = Decimal(str(critical_ratio))
    except ArithmeticError:
        raise ValidationError("critical_ratio must be a number")
    if not ratio.is_finite() or ratio < 0 or ratio > 1:
        raise ValidationError("critical_ratio must be between 0 and 1")
    return ratio


def classify_stock(stock_quantity: int, min_stock_level: int, ratio: Decimal) -> str | None:
    """Return 'critical', 'low', or None when the product is not low on stock."""
    if stock_quantity > min_stock_level:
        return None
    if stock_quantity == 0 or Decimal(stock_quantity) <= Decimal(min_stock_level) * ratio:
        return STOCK_STATUS_CRITICAL
    return STOCK_STATUS_LOW


def _low_stock_query():
    return db.session.query(Product).filter(
        Product.is_active.is_(True),
        Product.stock_quantity <= Product.min_stock_level,
    )


def low_stock_products(critical_ratio=None) -> list[dict]:
    """
    Active products at or below their min_stock_level, most urgent first.

    A product is critical when it is out of stock or at or below
    min_stock_level * LOW_STOCK_CRITICAL_RATIO; otherwise it is low.
    """
    ratio = _critical_ratio(critical_ratio)

    results = []
    for product in _low_stock_query().all():
        data = product.to_dict()
        data["is_low_stock"] = True
        data["stock_status"] = classify_stock(product.stock_quantity, product.min_stock_level, ratio)
        results.append(data)

    results.sort(key=lambda r: (
        r["stock_status"] != STOCK_STATUS_CRITICAL,
        r["stock_quantity"],
        r["name"],
    ))
    return results


def dashboard_stats() -> dict:
    order_count, revenue_cents = db.session.query(
        func.count(Order.id),
        func.coalesce(func.sum(Order.total_cents), 0),
    ).one()

    low_stock_count = _low_stock_query().count()
    customer_count = db.session.query(func.count(Customer.id)).scalar()

    return {
        "total_orders": int(order_count or 0),
        "revenue": format_cents(int(revenue_cents or 0)),
        "low_stock_count": int(low_stock_count),
        "total_customers": int(customer_count or 0),
    }
