# Overview: Stock ledger; the single point through which product quantities change.

# backend/sareeflow/services/stock_service.py

from __future__ import annotations

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import Product, InventoryMovement
from ..models.inventory import MOVEMENT_IN, MOVEMENT_OUT, MOVEMENT_TYPES
from ..validation import ValidationError, NotFoundError, ConflictError, parse_quantity
from .concurrency import begin_write, lock_for_update, run_with_retry
"""
SareeFlow Stock Invariants (authoritative)

Stock model:
- Product.stock_quantity is the cached on-hand quantity; it is never negative.
- Every change to stock_quantity appends exactly one InventoryMovement in the
  same DB transaction. Movements are append-only.
- quantity_delta on a movement is the delta actually applied. A subtract that
  would go below zero is clamped to zero and recorded with the clamped delta
  (requested_quantity keeps what the caller asked for).
- Therefore: stock_quantity - opening_stock_quantity == SUM(quantity_delta).

Idempotency:
- A movement may carry an idempotency_key. Replaying a key for the same
  product returns the original movement without touching stock; reusing it
  for another product is a conflict.
- Keys written by orders, cancellations and purchase order receipts start
  with SYSTEM_KEY_PREFIX. Callers of adjust_stock() may not use that prefix.

Locking:
- Public entry points lock the product row (FOR UPDATE / BEGIN IMMEDIATE on
  SQLite) and rely on Product.version_id for optimistic detection; transient
  conflicts are retried by run_with_retry.
"""

DIRECTION_ADD = "add"
DIRECTION_SUBTRACT = "subtract"
DIRECTIONS = (DIRECTION_ADD, DIRECTION_SUBTRACT)

SYSTEM_KEY_PREFIX = "sys:"


def system_key(*parts) -> str:
    """Idempotency key for a movement written by another document, e.g. sys:order:ORD-000001:1."""
    return SYSTEM_KEY_PREFIX + ":".join(str(p) for p in parts)


def validate_client_key(idempotency_key: str | None) -> None:
    if idempotency_key and idempotency_key.startswith(SYSTEM_KEY_PREFIX):
        raise ValidationError(f"idempotency_key may not start with '{SYSTEM_KEY_PREFIX}'")


def get_product(product_id: int, *, lock: bool = False, require_active: bool = False) -> Product:
    query = db.session.query(Product).filter_by(id=product_id)
    if lock:
        query = lock_for_update(query)
    product = query.first()
    if product is None:
        raise NotFoundError(f"product {product_id} not found")
    if require_active and not product.is_active:
        raise ConflictError(f"product {product_id} is inactive")
    return product


def _validate_adjustment(quantity, direction: str, movement_type: str | None) -> None:
    parse_quantity(quantity, allow_zero=True)
    if direction not in DIRECTIONS:
        raise ValidationError("direction must be 'add' or 'subtract'")
    if movement_type is not None and movement_type not in MOVEMENT_TYPES:
        raise ValidationError(f"type must be one of: {', '.join(MOVEMENT_TYPES)}")


def find_replay(idempotency_key: str, product_id: int) -> InventoryMovement | None:
    """Return the movement already recorded under this key, if any."""
    existing = db.session.query(InventoryMovement).filter_by(idempotency_key=idempotency_key).first()
    if existing is None:
        return None
    if existing.product_id != product_id:
        raise ConflictError("idempotency_key already used for a different product")
    current_app.logger.info("Idempotent replay of stock movement %r (movement %s)", idempotency_key, existing.id)
    return existing


def apply_stock_change(
    product: Product,
    quantity: int,
    direction: str,
    *,
    reference: str | None = None,
    notes: str | None = None,
    movement_type: str | None = None,
    idempotency_key: str | None = None,
) -> InventoryMovement:
    """Core stock change without locking, retry, or commit.

    Called by adjust_stock() and by composite operations (order placement,
    purchase order receiving, order cancellation) inside their own unit of work.
    The caller is responsible for having loaded (and locked) the product.
    """
    _validate_adjustment(quantity, direction, movement_type)

    if idempotency_key:
        replay = find_replay(idempotency_key, product.id)
        if replay is not None:
            return replay

    requested = quantity if direction == DIRECTION_ADD else -quantity
    before = product.stock_quantity
    after = max(0, before + requested)
    applied = after - before

    if applied != requested:
        current_app.logger.warning(
            "Stock for product %s clamped at zero: requested %d, applied %d",
            product.id, requested, applied,
        )

    if notes is None:
        verb = "addition" if direction == DIRECTION_ADD else "reduction"
        notes = f"Stock {verb} of {quantity}"
        if applied != requested:
            notes += f" (clamped to {abs(applied)})"

    product.stock_quantity = after

    movement = InventoryMovement(
        product_id=product.id,
        type=movement_type or (MOVEMENT_IN if direction == DIRECTION_ADD else MOVEMENT_OUT),
        quantity_delta=applied,
        requested_quantity=requested,
        stock_after=after,
        reference=reference,
        notes=notes,
        idempotency_key=idempotency_key,
    )
    db.session.add(movement)
    db.session.flush()
    return movement


def adjust_stock(
    product_id: int,
    quantity: int,
    direction: str,
    *,
    reference: str | None = None,
    notes: str | None = None,
    movement_type: str | None = None,
    idempotency_key: str | None = None,
) -> InventoryMovement:
    """
    Add or subtract stock for a product and record the movement.

    Raises:
        ValidationError: quantity is not a non-negative integer, or direction/type is unknown
        NotFoundError: product does not exist
        ConflictError: idempotency_key reused for another product, or retries exhausted
    """
    _validate_adjustment(quantity, direction, movement_type)
    validate_client_key(idempotency_key)

    def _op():
        begin_write()
        product = get_product(product_id, lock=True)
        movement = apply_stock_change(
            product,
            quantity,
            direction,
            reference=reference,
            notes=notes,
            movement_type=movement_type,
            idempotency_key=idempotency_key,
        )
        db.session.commit()
        return movement

    return run_with_retry(_op)


def record_movement(
    *,
    product_id: int,
    movement_type: str,
    quantity: int,
    reference: str | None = None,
    notes: str | None = None,
    idempotency_key: str | None = None,
) -> InventoryMovement:
    """
    Record a manual movement with a signed quantity.

    'in' must be positive, 'out' negative, 'adjustment' either sign. The
    movement always goes through adjust_stock, so stock follows the ledger.
    """
    if movement_type not in MOVEMENT_TYPES:
        raise ValidationError(f"type must be one of: {', '.join(MOVEMENT_TYPES)}")
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity == 0:
        raise ValidationError("quantity must be a non-zero integer")
    if movement_type == MOVEMENT_IN and quantity < 0:
        raise ValidationError("quantity must be positive for 'in' movements")
    if movement_type == MOVEMENT_OUT and quantity > 0:
        raise ValidationError("quantity must be negative for 'out' movements")

    return adjust_stock(
        product_id,
        abs(quantity),
        DIRECTION_ADD if quantity > 0 else DIRECTION_SUBTRACT,
        reference=reference,
        notes=notes,
        movement_type=movement_type,
        idempotency_key=idempotency_key,
    )


def list_movements(*, product_id: int | None = None, limit: int = 200) -> list[InventoryMovement]:
    q = db.session.query(InventoryMovement)
    if product_id is not None:
        get_product(product_id)
        q = q.filter(InventoryMovement.product_id == product_id)
    return q.order_by(InventoryMovement.id.desc()).limit(limit).all()


def movement_total(product_id: int) -> int:
    """Sum of applied deltas for a product."""
    total = db.session.query(
        func.coalesce(func.sum(InventoryMovement.quantity_delta), 0)
    ).filter(InventoryMovement.product_id == product_id).scalar()
    return int(total or 0)


def _reconcile_row(product: Product, total: int) -> dict:
    expected = product.opening_stock_quantity + total
    return {
        "product_id": product.id,
        "sku": product.sku,
        "stock_quantity": product.stock_quantity,
        "opening_stock_quantity": product.opening_stock_quantity,
        "movement_total": total,
        "expected_quantity": expected,
        "drift": product.stock_quantity - expected,
        "consistent": product.stock_quantity == expected,
    }


def reconcile_product(product_id: int) -> dict:
    """Compare cached stock with opening quantity plus the movement sum."""
    product = get_product(product_id)
    return _reconcile_row(product, movement_total(product_id))


def reconcile_all(*, only_drift: bool = False) -> list[dict]:
    totals = dict(
        db.session.query(
            InventoryMovement.product_id,
            func.sum(InventoryMovement.quantity_delta),
        ).group_by(InventoryMovement.product_id).all()
    )
    rows = []
    for product in db.session.query(Product).order_by(Product.id.asc()).all():
        row = _reconcile_row(product, int(totals.get(product.id) or 0))
        if only_drift and row["consistent"]:
            continue
        rows.append(row)
    return rows
