"""Order placement and fulfilment status."""

import pytest
from sqlalchemy.exc import OperationalError

from sareeflow.extensions import db
from sareeflow.models import Order, OrderItem, InventoryMovement
from sareeflow.services import order_service, stock_service
from sareeflow.services.order_service import IllegalTransitionError
from sareeflow.validation import (
    ValidationError,
    NotFoundError,
    ConflictError,
    DeadlineExceededError,
)


def _place(customer, lines, **order_fields):
    data = {"customer_id": customer.id}
    data.update(order_fields)
    return order_service.place_order(data, lines)


def test_place_order_updates_stock_items_and_customer(make_product, customer):
    p1 = make_product(stock=10, price_cents=10000)
    p2 = make_product(stock=5, price_cents=5000)

    order = _place(customer, [
        {"product_id": p1.id, "quantity": 2, "price": "100.00", "total": "200.00"},
        {"product_id": p2.id, "quantity": 1, "price": "50.00", "total": "50.00"},
    ], subtotal="250.00", total="250.00")

    db.session.refresh(p1)
    db.session.refresh(p2)
    db.session.refresh(customer)
    assert p1.stock_quantity == 8
    assert p2.stock_quantity == 4
    assert customer.total_orders == 1
    assert customer.to_dict()["total_spent"] == "250.00"

    assert order.status == "pending"
    assert order.payment_status == "pending"
    assert order.order_number == "ORD-000001"
    assert order.to_dict()["total"] == "250.00"
    assert len(order.items) == 2
    assert all(item.inventory_movement_id is not None for item in order.items)

    keys = sorted(m.idempotency_key for m in db.session.query(InventoryMovement).all())
    assert keys == ["sys:order:ORD-000001:1", "sys:order:ORD-000001:2"]


def test_price_defaults_to_product_price(make_product, customer):
    product = make_product(stock=5, price_cents=12345)

    order = _place(customer, [{"product_id": product.id, "quantity": 2}])

    assert order.items[0].unit_price_cents == 12345
    assert order.total_cents == 24690


def test_order_numbers_are_sequential(make_product, customer):
    product = make_product(stock=10)
    first = _place(customer, [{"product_id": product.id, "quantity": 1}])
    second = _place(customer, [{"product_id": product.id, "quantity": 1}])
    assert (first.order_number, second.order_number) == ("ORD-000001", "ORD-000002")


def test_duplicate_order_number_conflicts(make_product, customer):
    product = make_product(stock=10)
    _place(customer, [{"product_id": product.id, "quantity": 1}], order_number="WEB-42")

    with pytest.raises(ConflictError):
        _place(customer, [{"product_id": product.id, "quantity": 1}], order_number="WEB-42")

    db.session.refresh(product)
    assert product.stock_quantity == 9


def test_generated_number_skips_hand_picked_one(make_product, customer):
    product = make_product(stock=10)
    _place(customer, [{"product_id": product.id, "quantity": 1}], order_number="ORD-000001")

    second = _place(customer, [{"product_id": product.id, "quantity": 1}])
    third = _place(customer, [{"product_id": product.id, "quantity": 1}])

    assert (second.order_number, third.order_number) == ("ORD-000002", "ORD-000003")
    db.session.refresh(product)
    assert product.stock_quantity == 7


def test_manual_movement_key_does_not_satisfy_order_line(make_product, customer):
    product = make_product(stock=10)
    stock_service.record_movement(
        product_id=product.id, movement_type="in", quantity=1, idempotency_key="ORD-000001:1",
    )

    order = _place(customer, [{"product_id": product.id, "quantity": 3}])

    assert order.order_number == "ORD-000001"
    db.session.refresh(product)
    assert product.stock_quantity == 8
    movement = db.session.get(InventoryMovement, order.items[0].inventory_movement_id)
    assert movement.quantity_delta == -3
    assert movement.reference == order.order_number


def test_discount_and_tax_in_total(make_product, customer):
    product = make_product(stock=10, price_cents=10000)
    order = _place(customer, [{"product_id": product.id, "quantity": 3}], discount="20.00", tax="5.50")
    assert order.to_dict()["total"] == "285.50"


@pytest.mark.parametrize("lines, fields", [
    ([], {}),
    ([{"product_id": 1, "quantity": 0}], {}),
    ([{"product_id": 1, "quantity": 1, "price": "-5"}], {}),
    ([{"product_id": 1, "quantity": 1, "price": "1.005"}], {}),
])
def test_malformed_items_rejected(make_product, customer, lines, fields):
    make_product(stock=10)
    with pytest.raises(ValidationError):
        _place(customer, lines, **fields)
    assert db.session.query(Order).count() == 0


def test_mismatched_totals_rejected_without_writes(make_product, customer):
    product = make_product(stock=10, price_cents=10000)

    with pytest.raises(ValidationError):
        _place(customer, [{"product_id": product.id, "quantity": 2, "price": "100.00", "total": "150.00"}])
    with pytest.raises(ValidationError):
        _place(customer, [{"product_id": product.id, "quantity": 2}], total="10.00")

    db.session.refresh(product)
    assert product.stock_quantity == 10
    assert db.session.query(Order).count() == 0


def test_unknown_customer_or_product(make_product, customer):
    product = make_product(stock=10)
    with pytest.raises(NotFoundError):
        order_service.place_order({"customer_id": 9999}, [{"product_id": product.id, "quantity": 1}])
    with pytest.raises(NotFoundError):
        _place(customer, [{"product_id": 9999, "quantity": 1}])


def test_insufficient_stock_is_rejected_with_details(make_product, customer):
    p1 = make_product(stock=10)
    p2 = make_product(stock=1)

    with pytest.raises(ConflictError) as exc:
        _place(customer, [
            {"product_id": p1.id, "quantity": 2},
            {"product_id": p2.id, "quantity": 1},
            {"product_id": p2.id, "quantity": 1},
        ])

    assert exc.value.details["items"] == [{"product_id": p2.id, "requested_quantity": 2, "on_hand": 1}]
    db.session.refresh(p1)
    db.session.refresh(p2)
    db.session.refresh(customer)
    assert (p1.stock_quantity, p2.stock_quantity) == (10, 1)
    assert customer.total_orders == 0
    assert db.session.query(InventoryMovement).count() == 0


def test_inactive_product_cannot_be_ordered(make_product, customer):
    product = make_product(stock=10, is_active=False)
    with pytest.raises(ConflictError):
        _place(customer, [{"product_id": product.id, "quantity": 1}])


def test_failure_midway_rolls_back_everything(make_product, customer, monkeypatch):
    p1 = make_product(stock=10)
    p2 = make_product(stock=10)

    real_apply = order_service.apply_stock_change
    calls = {"n": 0}

    def flaky_apply(*args, **kwargs):
        calls["n"] += 1
        if calls["n"] == 2:
            raise RuntimeError("disk on fire")
        return real_apply(*args, **kwargs)

    monkeypatch.setattr(order_service, "apply_stock_change", flaky_apply)

    with pytest.raises(RuntimeError):
        _place(customer, [
            {"product_id": p1.id, "quantity": 3},
            {"product_id": p2.id, "quantity": 3},
        ])

    db.session.refresh(p1)
    db.session.refresh(p2)
    db.session.refresh(customer)
    assert (p1.stock_quantity, p2.stock_quantity) == (10, 10)
    assert customer.total_orders == 0
    assert customer.total_spent_cents == 0
    assert db.session.query(Order).count() == 0
    assert db.session.query(OrderItem).count() == 0
    assert db.session.query(InventoryMovement).count() == 0


def test_zero_timeout_fails_before_any_write(make_product, customer):
    product = make_product(stock=10)
    with pytest.raises(DeadlineExceededError):
        order_service.place_order(
            {"customer_id": customer.id},
            [{"product_id": product.id, "quantity": 1}],
            timeout=0,
        )
    db.session.refresh(product)
    assert product.stock_quantity == 10
    assert db.session.query(Order).count() == 0


def test_deadline_hit_before_commit_rolls_back(make_product, customer, monkeypatch):
    product = make_product(stock=10)

    def expired(deadline):
        raise DeadlineExceededError("operation exceeded its deadline")

    monkeypatch.setattr(order_service, "check_deadline", expired)

    with pytest.raises(DeadlineExceededError):
        _place(customer, [{"product_id": product.id, "quantity": 4}])

    db.session.refresh(product)
    db.session.refresh(customer)
    assert product.stock_quantity == 10
    assert customer.total_orders == 0
    assert db.session.query(Order).count() == 0


def test_status_follows_fulfilment_flow(make_product, customer):
    product = make_product(stock=10)
    order = _place(customer, [{"product_id": product.id, "quantity": 1}])

    for status in ("confirmed", "packed", "shipped", "delivered"):
        order = order_service.update_order_status(order.id, "status", status)
        assert order.status == status
    assert order.delivery_date is not None


def test_delivered_order_cannot_go_back_to_pending(make_product, customer):
    product = make_product(stock=10)
    order = _place(customer, [{"product_id": product.id, "quantity": 1}], status="delivered")

    order_service.update_order_status(order.id, "status", "delivered")
    with pytest.raises(IllegalTransitionError) as exc:
        order_service.update_order_status(order.id, "status", "pending")

    assert exc.value.details["from"] == "delivered"
    assert db.session.get(Order, order.id).status == "delivered"


def test_skipping_states_is_illegal(make_product, customer):
    product = make_product(stock=10)
    order = _place(customer, [{"product_id": product.id, "quantity": 1}])
    with pytest.raises(IllegalTransitionError):
        order_service.update_order_status(order.id, "status", "shipped")


def test_cancel_restocks_and_recomputes_customer(make_product, customer):
    p1 = make_product(stock=10, price_cents=10000)
    p2 = make_product(stock=5, price_cents=5000)
    keep = _place(customer, [{"product_id": p1.id, "quantity": 1}])
    cancel = _place(customer, [
        {"product_id": p1.id, "quantity": 2},
        {"product_id": p2.id, "quantity": 1},
    ])

    order_service.update_order_status(cancel.id, "status", "confirmed")
    order_service.update_order_status(cancel.id, "status", "cancelled")

    db.session.refresh(p1)
    db.session.refresh(p2)
    db.session.refresh(customer)
    assert (p1.stock_quantity, p2.stock_quantity) == (9, 5)
    assert customer.total_orders == 1
    assert customer.total_spent_cents == keep.total_cents

    restock_keys = sorted(
        m.idempotency_key
        for m in db.session.query(InventoryMovement).filter(InventoryMovement.quantity_delta > 0)
    )
    assert restock_keys == [
        f"sys:order:{cancel.order_number}:1:cancel",
        f"sys:order:{cancel.order_number}:2:cancel",
    ]

    with pytest.raises(IllegalTransitionError):
        order_service.update_order_status(cancel.id, "status", "confirmed")


def test_payment_status_and_bad_fields(make_product, customer):
    product = make_product(stock=10)
    order = _place(customer, [{"product_id": product.id, "quantity": 1}])

    order = order_service.update_order_status(order.id, "payment_status", "paid")
    assert order.payment_status == "paid"

    with pytest.raises(ValidationError):
        order_service.update_order_status(order.id, "payment_status", "refunded")
    with pytest.raises(ValidationError):
        order_service.update_order_status(order.id, "total", "1.00")
    with pytest.raises(NotFoundError):
        order_service.update_order_status(9999, "status", "confirmed")


def test_update_order_only_touches_editable_fields(make_product, customer):
    product = make_product(stock=10)
    order = _place(customer, [{"product_id": product.id, "quantity": 1}])

    order = order_service.update_order(order.id, {"notes": "gift wrap", "shipping_address": "12 Anna Salai"})
    assert order.notes == "gift wrap"

    with pytest.raises(ValidationError):
        order_service.update_order(order.id, {"total_cents": 1})


def test_list_and_recent_orders(make_product, customer):
    product = make_product(stock=20)
    orders = [_place(customer, [{"product_id": product.id, "quantity": 1}]) for _ in range(3)]
    order_service.update_order_status(orders[0].id, "status", "confirmed")

    assert [o.id for o in order_service.list_orders(status="confirmed")] == [orders[0].id]
    assert [o.id for o in order_service.recent_orders(2)] == [orders[2].id, orders[1].id]
    assert len(order_service.list_orders(customer_id=customer.id)) == 3


def test_recompute_customer_totals_repairs_drift(make_product, customer):
    product = make_product(stock=10, price_cents=10000)
    _place(customer, [{"product_id": product.id, "quantity": 2}])

    customer.total_orders = 7
    customer.total_spent_cents = 1
    db.session.commit()

    repaired = order_service.recompute_customer_totals(customer.id)
    assert repaired.total_orders == 1
    assert repaired.total_spent_cents == 20000


def test_retry_takes_fresh_price_snapshot(make_product, customer, monkeypatch):
    product = make_product(stock=10, price_cents=10000)

    real_load = order_service._load_products
    attempts = {"n": 0}

    def load(product_ids):
        products = real_load(product_ids)
        attempts["n"] += 1
        if attempts["n"] == 2:
            products[product.id].price_cents = 12000
        return products

    def locked_once(deadline):
        if attempts["n"] == 1:
            raise OperationalError("COMMIT", {}, Exception("database is locked"))

    monkeypatch.setattr(order_service, "_load_products", load)
    monkeypatch.setattr(order_service, "check_deadline", locked_once)

    order = _place(customer, [{"product_id": product.id, "quantity": 2}])

    assert attempts["n"] == 2
    assert order.items[0].unit_price_cents == 12000
    assert order.total_cents == 24000
    db.session.refresh(product)
    assert product.stock_quantity == 8
    assert db.session.query(Order).count() == 1
