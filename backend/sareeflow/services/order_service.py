"""
Order Service - order placement and fulfilment status

WHY: Placing an order touches four things at once: the order row, its
items, the stock of every referenced product and the customer's running
totals. All of it happens in one unit of work; either everything is
committed or nothing is.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Order, OrderItem, Product, Customer
from ..models.orders import ORDER_STATUSES, PAYMENT_STATUSES
from sareeflow.time_utils import utcnow, parse_iso_datetime, normalize_datetime
from ..validation import (
    ValidationError,
    NotFoundError,
    ConflictError,
    parse_money,
    parse_quantity,
    format_cents,
)
from .stock_service import apply_stock_change, get_product, system_key, DIRECTION_ADD, DIRECTION_SUBTRACT
from .document_service import next_unused_document_number
from .concurrency import begin_write, lock_for_update, run_with_retry, deadline_after, check_deadline


STATUS_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"confirmed", "cancelled"}),
    "confirmed": frozenset({"packed", "cancelled"}),
    "packed": frozenset({"shipped", "cancelled"}),
    "shipped": frozenset({"delivered"}),
    "delivered": frozenset(),
    "cancelled": frozenset(),
}

UPDATABLE_FIELDS = {"notes", "shipping_address", "billing_address", "delivery_date"}


class IllegalTransitionError(ConflictError):
    """Raised when an order status change is not in the transition table."""


def can_transition(current: str, new: str) -> bool:
    return new in STATUS_TRANSITIONS.get(current, frozenset())


# =============================================================================
# Input normalization
# =============================================================================

def _optional_money(data: dict, key: str) -> int | None:
    value = data.get(key)
    if value is None or value == "":
        return None
    return parse_money(value, key)


def _optional_datetime(data: dict, key: str):
    value = data.get(key)
    if value is None or value == "":
        return None
    if isinstance(value, str):
        try:
            return parse_iso_datetime(value)
        except ValueError:
            raise ValidationError(f"{key} must be an ISO-8601 datetime")
    try:
        return normalize_datetime(value)
    except AttributeError:
        raise ValidationError(f"{key} must be an ISO-8601 datetime")


def _normalize_draft(order_data: dict) -> dict:
    if not isinstance(order_data, dict):
        raise ValidationError("order must be an object")

    customer_id = order_data.get("customer_id")
    if isinstance(customer_id, bool) or not isinstance(customer_id, int) or customer_id <= 0:
        raise ValidationError("customer_id must be a positive integer")

    status = order_data.get("status") or "pending"
    if status not in ORDER_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(ORDER_STATUSES)}")
    if status == "cancelled":
        raise ValidationError("cannot place an order as cancelled")

    payment_status = order_data.get("payment_status") or "pending"
    if payment_status not in PAYMENT_STATUSES:
        raise ValidationError(f"payment_status must be one of: {', '.join(PAYMENT_STATUSES)}")

    order_number = order_data.get("order_number")
    if order_number is not None:
        order_number = str(order_number).strip()
        if not order_number or len(order_number) > 64:
            raise ValidationError("order_number must be 1-64 characters")

    return {
        "customer_id": customer_id,
        "order_number": order_number,
        "status": status,
        "payment_status": payment_status,
        "subtotal_cents": _optional_money(order_data, "subtotal"),
        "discount_cents": _optional_money(order_data, "discount") or 0,
        "tax_cents": _optional_money(order_data, "tax") or 0,
        "total_cents": _optional_money(order_data, "total"),
        "notes": order_data.get("notes"),
        "shipping_address": order_data.get("shipping_address"),
        "billing_address": order_data.get("billing_address"),
        "order_date": _optional_datetime(order_data, "order_date"),
        "delivery_date": _optional_datetime(order_data, "delivery_date"),
    }


def _normalize_items(items) -> list[dict]:
    if not isinstance(items, list) or not items:
        raise ValidationError("order must have at least one item")

    lines = []
    for i, raw in enumerate(items, start=1):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{i}] must be an object")
        product_id = raw.get("product_id")
        if isinstance(product_id, bool) or not isinstance(product_id, int) or product_id <= 0:
            raise ValidationError(f"items[{i}].product_id must be a positive integer")
        lines.append({
            "line": i,
            "product_id": product_id,
            "quantity": parse_quantity(raw.get("quantity"), f"items[{i}].quantity"),
            "price_cents": _optional_money(raw, "price"),
            "total_cents": _optional_money(raw, "total"),
        })
    return lines


def _price_lines(lines: list[dict], products: dict[int, Product]) -> None:
    """Snapshot unit prices and verify caller-supplied line totals."""
    for line in lines:
        unit = line["price_cents"]
        if unit is None:
            unit = products[line["product_id"]].price_cents
        line_total = unit * line["quantity"]
        if line["total_cents"] is not None and line["total_cents"] != line_total:
            raise ValidationError(
                f"items[{line['line']}].total {format_cents(line['total_cents'])} "
                f"does not match price x quantity {format_cents(line_total)}"
            )
        line["price_cents"] = unit
        line["total_cents"] = line_total


def _compute_totals(draft: dict, lines: list[dict]) -> tuple[int, int]:
    subtotal = sum(line["total_cents"] for line in lines)
    if draft["subtotal_cents"] is not None and draft["subtotal_cents"] != subtotal:
        raise ValidationError(
            f"subtotal {format_cents(draft['subtotal_cents'])} does not match items {format_cents(subtotal)}"
        )
    if draft["discount_cents"] > subtotal:
        raise ValidationError("discount cannot exceed subtotal")

    total = subtotal - draft["discount_cents"] + draft["tax_cents"]
    if draft["total_cents"] is not None and draft["total_cents"] != total:
        raise ValidationError(
            f"total {format_cents(draft['total_cents'])} does not match subtotal - discount + tax {format_cents(total)}"
        )
    return subtotal, total


def _validate_on_hand(lines: list[dict], products: dict[int, Product]) -> None:
    requested: dict[int, int] = {}
    for line in lines:
        requested[line["product_id"]] = requested.get(line["product_id"], 0) + line["quantity"]

    insufficient = []
    for product_id, qty in requested.items():
        on_hand = products[product_id].stock_quantity
        if on_hand < qty:
            insufficient.append({
                "product_id": product_id,
                "requested_quantity": qty,
                "on_hand": on_hand,
            })

    if insufficient:
        raise ConflictError("Insufficient stock to place order", details={"items": insufficient})


def _load_products(product_ids: set[int]) -> dict[int, Product]:
    # Lock in id order so concurrent placements cannot deadlock each other
    rows = lock_for_update(
        db.session.query(Product).filter(Product.id.in_(product_ids)).order_by(Product.id.asc())
    ).all()
    products = {p.id: p for p in rows}

    missing = sorted(product_ids - products.keys())
    if missing:
        raise NotFoundError(f"product(s) not found: {', '.join(str(m) for m in missing)}")
    inactive = sorted(p.id for p in rows if not p.is_active)
    if inactive:
        raise ConflictError(
            f"product(s) inactive: {', '.join(str(p) for p in inactive)}",
            details={"product_ids": inactive},
        )
    return products


def _get_customer(customer_id: int, *, lock: bool = False) -> Customer:
    query = db.session.query(Customer).filter_by(id=customer_id)
    if lock:
        query = lock_for_update(query)
    customer = query.first()
    if customer is None:
        raise NotFoundError(f"customer {customer_id} not found")
    return customer


# =============================================================================
# Placement
# =============================================================================

def place_order(order_data: dict, items: list, *, timeout: float | None = None) -> Order:
    """
    Place an order: persist order + items, decrement stock, update customer totals.

    All four steps share one transaction. Stock is checked under lock before
    any write, so concurrent placements cannot oversell. On any failure the
    whole unit of work is rolled back.

    Raises:
        ValidationError: malformed draft/items, or totals that do not add up
        NotFoundError: unknown customer or product
        ConflictError: insufficient stock, inactive product, duplicate order number,
                       or concurrent modification after retries
        DeadlineExceededError: not finished within timeout / ORDER_TIMEOUT_SECONDS
    """
    draft = _normalize_draft(order_data)
    items_in = _normalize_items(items)
    deadline = deadline_after(timeout)

    def _op():
        begin_write()
        customer = _get_customer(draft["customer_id"], lock=True)
        products = _load_products({line["product_id"] for line in items_in})

        # Priced per attempt; a retry takes a fresh snapshot
        lines = [dict(line) for line in items_in]
        _price_lines(lines, products)
        subtotal, total = _compute_totals(draft, lines)
        _validate_on_hand(lines, products)

        order_number = draft["order_number"]
        if order_number is None:
            order_number = next_unused_document_number(
                document_type="ORDER", prefix="ORD", column=Order.order_number,
            )
        elif db.session.query(Order.id).filter_by(order_number=order_number).first():
            raise ConflictError(f"order number {order_number} already exists")

        order = Order(
            order_number=order_number,
            customer_id=customer.id,
            status=draft["status"],
            payment_status=draft["payment_status"],
            subtotal_cents=subtotal,
            discount_cents=draft["discount_cents"],
            tax_cents=draft["tax_cents"],
            total_cents=total,
            notes=draft["notes"],
            shipping_address=draft["shipping_address"],
            billing_address=draft["billing_address"],
            order_date=draft["order_date"] or utcnow(),
            delivery_date=draft["delivery_date"],
        )
        db.session.add(order)
        try:
            db.session.flush()
        except IntegrityError as exc:
            raise ConflictError(f"order number {order_number} already exists") from exc

        for line in lines:
            item = OrderItem(
                order_id=order.id,
                product_id=line["product_id"],
                quantity=line["quantity"],
                unit_price_cents=line["price_cents"],
                line_total_cents=line["total_cents"],
            )
            db.session.add(item)
            movement = apply_stock_change(
                products[line["product_id"]],
                line["quantity"],
                DIRECTION_SUBTRACT,
                reference=order_number,
                notes=f"Order {order_number} line {line['line']}",
                idempotency_key=system_key("order", order_number, line["line"]),
            )
            item.inventory_movement_id = movement.id

        customer.total_orders = (customer.total_orders or 0) + 1
        customer.total_spent_cents = (customer.total_spent_cents or 0) + total

        check_deadline(deadline)
        db.session.commit()
        current_app.logger.info(
            "Placed order %s for customer %s: %d item(s), total %s",
            order_number, customer.id, len(lines), format_cents(total),
        )
        return order

    return run_with_retry(_op, deadline=deadline)


# =============================================================================
# Status updates
# =============================================================================

def _restock_cancelled(order: Order) -> None:
    for i, item in enumerate(order.items, start=1):
        product = get_product(item.product_id, lock=True)
        apply_stock_change(
            product,
            item.quantity,
            DIRECTION_ADD,
            reference=order.order_number,
            notes=f"Order {order.order_number} cancelled",
            idempotency_key=system_key("order", order.order_number, i, "cancel"),
        )


def _recompute_customer_totals(customer: Customer) -> Customer:
    count, spent = db.session.query(
        func.count(Order.id),
        func.coalesce(func.sum(Order.total_cents), 0),
    ).filter(
        Order.customer_id == customer.id,
        Order.status != "cancelled",
    ).one()
    customer.total_orders = int(count or 0)
    customer.total_spent_cents = int(spent or 0)
    return customer


def recompute_customer_totals(customer_id: int) -> Customer:
    """Rebuild a customer's aggregates from non-cancelled order history."""
    def _op():
        begin_write()
        customer = _get_customer(customer_id, lock=True)
        _recompute_customer_totals(customer)
        db.session.commit()
        return customer

    return run_with_retry(_op)


def update_order_status(order_id: int, field: str, value: str, *, timeout: float | None = None) -> Order:
    """
    Change an order's status or payment_status.

    status follows STATUS_TRANSITIONS; setting the current value again is a
    no-op. Cancelling restocks every item and rebuilds the customer's totals
    in the same transaction. payment_status may move freely between its values.
    """
    if field == "status":
        if value not in ORDER_STATUSES:
            raise ValidationError(f"status must be one of: {', '.join(ORDER_STATUSES)}")
    elif field == "payment_status":
        if value not in PAYMENT_STATUSES:
            raise ValidationError(f"payment_status must be one of: {', '.join(PAYMENT_STATUSES)}")
    else:
        raise ValidationError("field must be 'status' or 'payment_status'")

    deadline = deadline_after(timeout)

    def _op():
        begin_write()
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if order is None:
            raise NotFoundError(f"order {order_id} not found")

        if field == "payment_status":
            order.payment_status = value
        elif value != order.status:
            if not can_transition(order.status, value):
                allowed = sorted(STATUS_TRANSITIONS.get(order.status, ()))
                raise IllegalTransitionError(
                    f"cannot change status from {order.status} to {value}",
                    details={"from": order.status, "to": value, "allowed": allowed},
                )
            previous = order.status
            order.status = value
            if value == "cancelled":
                _restock_cancelled(order)
                _recompute_customer_totals(_get_customer(order.customer_id, lock=True))
            elif value == "delivered" and order.delivery_date is None:
                order.delivery_date = utcnow()
            current_app.logger.info("Order %s status %s -> %s", order.order_number, previous, value)

        check_deadline(deadline)
        db.session.commit()
        return order

    return run_with_retry(_op, deadline=deadline)


def update_order(order_id: int, patch: dict) -> Order:
    """Update the editable, non-financial fields of an order."""
    extra = set(patch) - UPDATABLE_FIELDS
    if extra:
        raise ValidationError(f"Field not allowed: {', '.join(sorted(extra))}")

    def _op():
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if order is None:
            raise NotFoundError(f"order {order_id} not found")
        for key, value in patch.items():
            setattr(order, key, value)
        db.session.commit()
        return order

    return run_with_retry(_op)


# =============================================================================
# Reads
# =============================================================================

def get_order(order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFoundError(f"order {order_id} not found")
    return order


def list_orders(*, status: str | None = None, customer_id: int | None = None, limit: int | None = None) -> list[Order]:
    q = db.session.query(Order)
    if status is not None:
        if status not in ORDER_STATUSES:
            raise ValidationError(f"status must be one of: {', '.join(ORDER_STATUSES)}")
        q = q.filter(Order.status == status)
    if customer_id is not None:
        q = q.filter(Order.customer_id == customer_id)
    q = q.order_by(Order.created_at.desc(), Order.id.desc())
    if limit is not None:
        q = q.limit(limit)
    return q.all()


def recent_orders(limit: int | None = None) -> list[Order]:
    if limit is None:
        limit = current_app.config.get("RECENT_ORDERS_LIMIT", 5)
    return list_orders(limit=limit)
