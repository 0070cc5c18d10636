"""HTTP layer: payload shapes and error status mapping."""

from sareeflow.extensions import db
from sareeflow.models import Order


def test_health(client, db_session):
    resp = client.get("/api/health")
    assert resp.status_code == 200
    assert resp.get_json()["status"] == "healthy"


def test_product_create_and_update(client, db_session):
    resp = client.post("/api/products", json={
        "sku": "slk-9", "name": "Mysore Silk", "category": "silk",
        "price": "4500.50", "stock_quantity": 6, "min_stock_level": 2,
    })
    assert resp.status_code == 201
    body = resp.get_json()
    assert body["sku"] == "SLK-9"
    assert body["price"] == "4500.50"

    resp = client.put(f"/api/products/{body['id']}", json={"stock_quantity": 50})
    assert resp.status_code == 400

    resp = client.put(f"/api/products/{body['id']}", json={"price": "4600"})
    assert resp.status_code == 200
    assert resp.get_json()["price"] == "4600.00"

    assert client.get("/api/products/9999").status_code == 404


def test_product_create_validation(client, db_session):
    assert client.post("/api/products", json={"sku": "X"}).status_code == 400
    assert client.post("/api/products", json={
        "sku": "X", "name": "n", "category": "c", "price": "1.234",
    }).status_code == 400


def test_place_order_route(client, make_product, customer):
    p1 = make_product(stock=10, price_cents=10000)
    p2 = make_product(stock=5, price_cents=5000)

    resp = client.post("/api/orders", json={
        "order": {"customer_id": customer.id, "subtotal": "250.00", "total": "250.00"},
        "items": [
            {"product_id": p1.id, "quantity": 2, "price": "100.00", "total": "200.00"},
            {"product_id": p2.id, "quantity": 1, "price": "50.00", "total": "50.00"},
        ],
    })
    assert resp.status_code == 201
    body = resp.get_json()
    assert body["total"] == "250.00"
    assert len(body["items"]) == 2
    assert body["customer"]["total_spent"] == "250.00"

    resp = client.get(f"/api/orders/{body['id']}")
    assert resp.status_code == 200
    assert resp.get_json()["order_number"] == body["order_number"]


def test_place_order_error_statuses(client, make_product, customer):
    product = make_product(stock=1)

    resp = client.post("/api/orders", json={"order": {"customer_id": customer.id}, "items": []})
    assert resp.status_code == 400

    resp = client.post("/api/orders", json={
        "order": {"customer_id": customer.id},
        "items": [{"product_id": 9999, "quantity": 1}],
    })
    assert resp.status_code == 404

    resp = client.post("/api/orders", json={
        "order": {"customer_id": customer.id},
        "items": [{"product_id": product.id, "quantity": 3}],
    })
    assert resp.status_code == 409
    assert resp.get_json()["details"]["items"][0]["on_hand"] == 1

    assert db.session.query(Order).count() == 0


def test_order_status_route(client, make_product, customer):
    product = make_product(stock=3)
    resp = client.post("/api/orders", json={
        "order": {"customer_id": customer.id},
        "items": [{"product_id": product.id, "quantity": 1}],
    })
    order_id = resp.get_json()["id"]

    resp = client.patch(f"/api/orders/{order_id}/status", json={"field": "status", "value": "confirmed"})
    assert resp.status_code == 200
    assert resp.get_json()["status"] == "confirmed"

    resp = client.patch(f"/api/orders/{order_id}/status", json={"value": "pending"})
    assert resp.status_code == 409
    assert resp.get_json()["details"]["allowed"] == ["cancelled", "packed"]

    resp = client.patch(f"/api/orders/{order_id}/status", json={"field": "payment_status", "value": "cod"})
    assert resp.get_json()["payment_status"] == "cod"

    resp = client.put(f"/api/orders/{order_id}", json={"notes": "Call before delivery"})
    assert resp.status_code == 200
    resp = client.put(f"/api/orders/{order_id}", json={"status": "delivered"})
    assert resp.status_code == 400


def test_inventory_adjust_with_idempotency_header(client, make_product):
    product = make_product(stock=5)

    first = client.post(
        "/api/inventory/adjust",
        json={"product_id": product.id, "quantity": 8, "direction": "subtract"},
        headers={"Idempotency-Key": "count-17"},
    )
    assert first.status_code == 201
    movement = first.get_json()["movement"]
    assert movement["quantity"] == -5
    assert movement["requested_quantity"] == -8
    assert first.get_json()["product"]["stock_quantity"] == 0

    replay = client.post(
        "/api/inventory/adjust",
        json={"product_id": product.id, "quantity": 8, "direction": "subtract"},
        headers={"Idempotency-Key": "count-17"},
    )
    assert replay.status_code == 200
    assert replay.get_json()["replayed"] is True
    assert replay.get_json()["movement"]["id"] == movement["id"]

    resp = client.post("/api/inventory/adjust", json={"product_id": 9999, "quantity": 1, "direction": "add"})
    assert resp.status_code == 404

    resp = client.post(
        "/api/inventory/adjust",
        json={"product_id": product.id, "quantity": 1, "direction": "add"},
        headers={"Idempotency-Key": "sys:order:ORD-000001:1"},
    )
    assert resp.status_code == 400


def test_inventory_movements_and_reconcile(client, make_product):
    product = make_product(stock=5)
    resp = client.post("/api/inventory/movements", json={
        "product_id": product.id, "type": "adjustment", "quantity": -2, "notes": "damaged in transit",
    })
    assert resp.status_code == 201

    resp = client.get(f"/api/inventory/movements?product_id={product.id}")
    assert resp.get_json()["count"] == 1

    resp = client.get("/api/inventory/reconcile?only_drift=true")
    assert resp.get_json() == {"items": [], "count": 0}


def test_dashboard_routes(client, make_product, customer):
    product = make_product(stock=3, min_stock_level=5)
    client.post("/api/orders", json={
        "order": {"customer_id": customer.id},
        "items": [{"product_id": product.id, "quantity": 2}],
    })

    stats = client.get("/api/dashboard/stats").get_json()
    assert stats == {"total_orders": 1, "revenue": "200.00", "low_stock_count": 1, "total_customers": 1}

    alerts = client.get("/api/dashboard/stock-alerts").get_json()
    assert alerts["items"][0]["stock_status"] == "critical"

    recent = client.get("/api/dashboard/recent-orders").get_json()
    assert recent["count"] == 1
    assert recent["items"][0]["customer"]["name"] == customer.name


def test_customer_delete_conflict_route(client, make_product, customer):
    product = make_product(stock=3)
    client.post("/api/orders", json={
        "order": {"customer_id": customer.id},
        "items": [{"product_id": product.id, "quantity": 1}],
    })
    assert client.delete(f"/api/customers/{customer.id}").status_code == 409
    assert client.post("/api/customers", json={"name": "No Phone", "phone": "123"}).status_code == 400
