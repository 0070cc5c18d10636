"""Stock ledger: clamping, movement history, idempotency and reconciliation."""

import pytest

from sareeflow.extensions import db
from sareeflow.models import InventoryMovement
from sareeflow.services import stock_service
from sareeflow.validation import ValidationError, NotFoundError, ConflictError


def _movements(product_id):
    return (
        db.session.query(InventoryMovement)
        .filter_by(product_id=product_id)
        .order_by(InventoryMovement.id.asc())
        .all()
    )


def test_add_and_subtract_record_one_movement_each(make_product):
    product = make_product(stock=10)

    stock_service.adjust_stock(product.id, 4, "add", reference="restock")
    stock_service.adjust_stock(product.id, 3, "subtract")

    db.session.refresh(product)
    assert product.stock_quantity == 11

    movements = _movements(product.id)
    assert [m.quantity_delta for m in movements] == [4, -3]
    assert [m.type for m in movements] == ["in", "out"]
    assert [m.stock_after for m in movements] == [14, 11]
    assert movements[0].reference == "restock"


def test_subtract_below_zero_clamps_and_records_applied_delta(make_product):
    product = make_product(stock=3)

    movement = stock_service.adjust_stock(product.id, 5, "subtract")

    db.session.refresh(product)
    assert product.stock_quantity == 0
    assert movement.quantity_delta == -3
    assert movement.requested_quantity == -5
    assert movement.was_clamped
    assert "clamped" in movement.notes


def test_stock_never_negative_over_mixed_sequence(make_product):
    product = make_product(stock=2)
    steps = [("subtract", 5), ("add", 1), ("subtract", 1), ("subtract", 4), ("add", 7), ("subtract", 2)]

    for direction, qty in steps:
        stock_service.adjust_stock(product.id, qty, direction)
        db.session.refresh(product)
        assert product.stock_quantity >= 0

    assert product.stock_quantity == 5
    assert stock_service.movement_total(product.id) == product.stock_quantity - product.opening_stock_quantity
    assert stock_service.reconcile_product(product.id)["consistent"] is True


def test_missing_product_raises_not_found(db_session):
    with pytest.raises(NotFoundError):
        stock_service.adjust_stock(9999, 1, "add")
    assert db.session.query(InventoryMovement).count() == 0


@pytest.mark.parametrize("quantity, direction", [
    (-1, "add"),
    (1.5, "add"),
    ("3", "subtract"),
    (True, "add"),
    (2, "sideways"),
])
def test_invalid_adjustments_rejected(make_product, quantity, direction):
    product = make_product(stock=10)
    with pytest.raises(ValidationError):
        stock_service.adjust_stock(product.id, quantity, direction)
    db.session.refresh(product)
    assert product.stock_quantity == 10
    assert _movements(product.id) == []


def test_idempotency_key_replay_returns_original_movement(make_product):
    product = make_product(stock=10)

    first = stock_service.adjust_stock(product.id, 2, "subtract", idempotency_key="adj-1")
    again = stock_service.adjust_stock(product.id, 2, "subtract", idempotency_key="adj-1")

    db.session.refresh(product)
    assert again.id == first.id
    assert product.stock_quantity == 8
    assert len(_movements(product.id)) == 1


def test_idempotency_key_reused_for_other_product_conflicts(make_product):
    a = make_product(stock=10)
    b = make_product(stock=10)

    stock_service.adjust_stock(a.id, 1, "add", idempotency_key="shared-key")
    with pytest.raises(ConflictError):
        stock_service.adjust_stock(b.id, 1, "add", idempotency_key="shared-key")

    db.session.refresh(b)
    assert b.stock_quantity == 10


def test_system_key_prefix_is_reserved(make_product):
    product = make_product(stock=10)

    with pytest.raises(ValidationError):
        stock_service.adjust_stock(product.id, 1, "subtract", idempotency_key="sys:order:ORD-000001:1")
    with pytest.raises(ValidationError):
        stock_service.record_movement(
            product_id=product.id, movement_type="in", quantity=2,
            idempotency_key=stock_service.system_key("po", "PO-000001", 1, "receive"),
        )

    db.session.refresh(product)
    assert product.stock_quantity == 10
    assert _movements(product.id) == []


def test_record_movement_sign_rules(make_product):
    product = make_product(stock=10)

    stock_service.record_movement(product_id=product.id, movement_type="adjustment", quantity=-4, notes="damaged")
    stock_service.record_movement(product_id=product.id, movement_type="in", quantity=6)

    with pytest.raises(ValidationError):
        stock_service.record_movement(product_id=product.id, movement_type="in", quantity=-1)
    with pytest.raises(ValidationError):
        stock_service.record_movement(product_id=product.id, movement_type="out", quantity=2)
    with pytest.raises(ValidationError):
        stock_service.record_movement(product_id=product.id, movement_type="adjustment", quantity=0)

    db.session.refresh(product)
    assert product.stock_quantity == 12
    assert [m.type for m in _movements(product.id)] == ["adjustment", "in"]


def test_list_movements_newest_first(make_product):
    product = make_product(stock=10)
    for qty in (1, 2, 3):
        stock_service.adjust_stock(product.id, qty, "add")

    movements = stock_service.list_movements(product_id=product.id)
    assert [m.quantity_delta for m in movements] == [3, 2, 1]

    with pytest.raises(NotFoundError):
        stock_service.list_movements(product_id=9999)


def test_reconcile_all_flags_drift(make_product):
    good = make_product(stock=5)
    bad = make_product(stock=5)
    stock_service.adjust_stock(good.id, 2, "add")

    # Simulate an out-of-band write that bypassed the ledger
    bad.stock_quantity = 9
    db.session.commit()

    rows = {r["product_id"]: r for r in stock_service.reconcile_all()}
    assert rows[good.id]["consistent"] is True
    assert rows[bad.id]["consistent"] is False
    assert rows[bad.id]["drift"] == 4

    drift_only = stock_service.reconcile_all(only_drift=True)
    assert [r["product_id"] for r in drift_only] == [bad.id]
