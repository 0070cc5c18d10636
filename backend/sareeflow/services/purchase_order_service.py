# Overview: Service-layer operations for purchase orders; encapsulates business logic.

"""
Purchase Order Service

WHY: Stock coming in from suppliers is documented before it is counted.
A purchase order only touches stock when it is received, and receiving
adds every line to stock through the stock ledger in one transaction.

LIFECYCLE:
1. pending: created, lines fixed
2. sent: sent to the supplier
3. received: every line posted to stock (terminal)
4. cancelled: cancelled before receiving (terminal)

IMMUTABLE: Lines and amounts never change after creation.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import PurchaseOrder, PurchaseOrderItem, Product
from ..validation import (
    ValidationError,
    NotFoundError,
    ConflictError,
    parse_money,
    parse_quantity,
    format_cents,
)
from sareeflow.time_utils import utcnow, parse_iso_datetime
from .supplier_service import require_active_supplier
from .stock_service import apply_stock_change, get_product, system_key, DIRECTION_ADD
from .document_service import next_unused_document_number
from .concurrency import begin_write, lock_for_update, run_with_retry, deadline_after, check_deadline

STATUS_PENDING = "pending"
STATUS_SENT = "sent"
STATUS_RECEIVED = "received"
STATUS_CANCELLED = "cancelled"

PO_STATUSES = (STATUS_PENDING, STATUS_SENT, STATUS_RECEIVED, STATUS_CANCELLED)

PO_TRANSITIONS = {
    STATUS_PENDING: {STATUS_SENT, STATUS_RECEIVED, STATUS_CANCELLED},
    STATUS_SENT: {STATUS_RECEIVED, STATUS_CANCELLED},
    STATUS_RECEIVED: set(),
    STATUS_CANCELLED: set(),
}


def _normalize_lines(items) -> list[dict]:
    if not isinstance(items, list) or not items:
        raise ValidationError("purchase order must have at least one item")

    lines = []
    for i, raw in enumerate(items, start=1):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{i}] must be an object")
        product_id = raw.get("product_id")
        if isinstance(product_id, bool) or not isinstance(product_id, int) or product_id <= 0:
            raise ValidationError(f"items[{i}].product_id must be a positive integer")
        price = raw.get("price")
        total = raw.get("total")
        lines.append({
            "line": i,
            "product_id": product_id,
            "quantity": parse_quantity(raw.get("quantity"), f"items[{i}].quantity"),
            "price_cents": None if price is None else parse_money(price, f"items[{i}].price"),
            "total_cents": None if total is None else parse_money(total, f"items[{i}].total"),
        })
    return lines


def get_purchase_order(purchase_order_id: int) -> PurchaseOrder:
    po = db.session.get(PurchaseOrder, purchase_order_id)
    if po is None:
        raise NotFoundError(f"purchase order {purchase_order_id} not found")
    return po


def list_purchase_orders(*, status: str | None = None, supplier_id: int | None = None) -> list[PurchaseOrder]:
    q = db.session.query(PurchaseOrder)
    if status is not None:
        if status not in PO_STATUSES:
            raise ValidationError(f"status must be one of: {', '.join(PO_STATUSES)}")
        q = q.filter(PurchaseOrder.status == status)
    if supplier_id is not None:
        q = q.filter(PurchaseOrder.supplier_id == supplier_id)
    return q.order_by(PurchaseOrder.created_at.desc(), PurchaseOrder.id.desc()).all()


def create_purchase_order(
    *,
    supplier_id: int,
    items: list,
    tax=None,
    total=None,
    notes: str | None = None,
    expected_date: str | None = None,
    po_number: str | None = None,
) -> PurchaseOrder:
    """
    Create a pending purchase order.

    Line price defaults to the product's cost price; a line without either
    is rejected. Caller-supplied line totals and total are verified.

    Raises:
        ValidationError: malformed lines or totals that do not add up
        NotFoundError: unknown supplier or product
        ConflictError: inactive supplier, duplicate po_number
    """
    items_in = _normalize_lines(items)
    tax_cents = 0 if tax is None else parse_money(tax, "tax")
    total_cents = None if total is None else parse_money(total, "total")
    expected_dt = None
    if expected_date:
        try:
            expected_dt = parse_iso_datetime(expected_date)
        except ValueError:
            raise ValidationError("expected_date must be an ISO-8601 datetime")

    def _op():
        begin_write()
        require_active_supplier(supplier_id)

        # Priced per attempt; a retry takes a fresh snapshot
        lines = [dict(line) for line in items_in]
        subtotal = 0
        for line in lines:
            product = get_product(line["product_id"])
            unit = line["price_cents"]
            if unit is None:
                unit = product.cost_price_cents
            if unit is None:
                raise ValidationError(f"items[{line['line']}].price is required (product has no cost price)")
            line_total = unit * line["quantity"]
            if line["total_cents"] is not None and line["total_cents"] != line_total:
                raise ValidationError(f"items[{line['line']}].total does not match price x quantity")
            line["price_cents"] = unit
            line["total_cents"] = line_total
            subtotal += line_total

        grand_total = subtotal + tax_cents
        if total_cents is not None and total_cents != grand_total:
            raise ValidationError(f"total does not match subtotal + tax {format_cents(grand_total)}")

        number = po_number
        if number is None:
            number = next_unused_document_number(
                document_type="PURCHASE_ORDER", prefix="PO", column=PurchaseOrder.po_number,
            )
        elif db.session.query(PurchaseOrder.id).filter_by(po_number=number).first():
            raise ConflictError(f"purchase order number {number} already exists")

        po = PurchaseOrder(
            po_number=number,
            supplier_id=supplier_id,
            status=STATUS_PENDING,
            subtotal_cents=subtotal,
            tax_cents=tax_cents,
            total_cents=grand_total,
            notes=notes,
            expected_date=expected_dt,
        )
        db.session.add(po)
        try:
            db.session.flush()
        except IntegrityError as exc:
            raise ConflictError(f"purchase order number {number} already exists") from exc

        for line in lines:
            db.session.add(PurchaseOrderItem(
                purchase_order_id=po.id,
                product_id=line["product_id"],
                quantity=line["quantity"],
                unit_price_cents=line["price_cents"],
                line_total_cents=line["total_cents"],
            ))

        db.session.commit()
        return po

    return run_with_retry(_op)


def _receive_lines(po: PurchaseOrder) -> None:
    # Lock products in id order, then post each line
    product_ids = sorted({item.product_id for item in po.items})
    products = {
        p.id: p
        for p in lock_for_update(
            db.session.query(Product).filter(Product.id.in_(product_ids)).order_by(Product.id.asc())
        ).all()
    }
    for i, item in enumerate(po.items, start=1):
        movement = apply_stock_change(
            products[item.product_id],
            item.quantity,
            DIRECTION_ADD,
            reference=po.po_number,
            notes=f"Received {po.po_number} line {i}",
            idempotency_key=system_key("po", po.po_number, i, "receive"),
        )
        item.inventory_movement_id = movement.id


def update_purchase_order_status(
    purchase_order_id: int,
    status: str,
    *,
    timeout: float | None = None,
) -> PurchaseOrder:
    """
    Move a purchase order along its lifecycle.

    Receiving adds every line to stock and stamps received_date, all in the
    same transaction as the status change.
    """
    if status not in PO_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(PO_STATUSES)}")

    deadline = deadline_after(timeout)

    def _op():
        begin_write()
        po = lock_for_update(db.session.query(PurchaseOrder).filter_by(id=purchase_order_id)).first()
        if po is None:
            raise NotFoundError(f"purchase order {purchase_order_id} not found")

        if po.status != status:
            if status not in PO_TRANSITIONS[po.status]:
                raise ConflictError(
                    f"cannot change purchase order status from {po.status} to {status}",
                    details={"from": po.status, "to": status, "allowed": sorted(PO_TRANSITIONS[po.status])},
                )
            if status == STATUS_RECEIVED:
                _receive_lines(po)
                po.received_date = utcnow()
            po.status = status
            current_app.logger.info("Purchase order %s status -> %s", po.po_number, status)

        check_deadline(deadline)
        db.session.commit()
        return po

    return run_with_retry(_op, deadline=deadline)
