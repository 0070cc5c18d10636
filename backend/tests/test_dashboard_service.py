from decimal import Decimal

import pytest

from sareeflow.services import dashboard_service, stock_service, order_service
from sareeflow.services.dashboard_service import classify_stock
from sareeflow.validation import ValidationError


def test_product_moves_from_low_to_critical(make_product):
    product = make_product(stock=5, min_stock_level=5)

    alerts = dashboard_service.low_stock_products()
    assert [(a["id"], a["stock_status"]) for a in alerts] == [(product.id, "low")]

    stock_service.adjust_stock(product.id, 3, "subtract")

    alerts = dashboard_service.low_stock_products()
    assert [(a["id"], a["stock_status"]) for a in alerts] == [(product.id, "critical")]
    assert alerts[0]["is_low_stock"] is True


def test_stock_above_minimum_is_not_listed(make_product):
    product = make_product(stock=10, min_stock_level=5)
    assert dashboard_service.low_stock_products() == []

    stock_service.adjust_stock(product.id, 6, "subtract")
    alerts = dashboard_service.low_stock_products()
    assert alerts[0]["stock_quantity"] == 4
    assert alerts[0]["stock_status"] == "low"


@pytest.mark.parametrize("stock, minimum, expected", [
    (0, 0, "critical"),
    (0, 5, "critical"),
    (2, 5, "critical"),
    (3, 6, "critical"),
    (3, 5, "low"),
    (5, 5, "low"),
    (6, 5, None),
    (1, 0, None),
])
def test_classification_boundaries(stock, minimum, expected):
    assert classify_stock(stock, minimum, Decimal("0.5")) == expected


def test_most_urgent_first_and_inactive_skipped(make_product):
    low = make_product(stock=4, min_stock_level=5, name="B low")
    out = make_product(stock=0, min_stock_level=3, name="A out")
    crit = make_product(stock=1, min_stock_level=4, name="C crit")
    make_product(stock=0, min_stock_level=3, is_active=False)

    alerts = dashboard_service.low_stock_products()
    assert [a["id"] for a in alerts] == [out.id, crit.id, low.id]


def test_critical_ratio_override(make_product, app):
    product = make_product(stock=4, min_stock_level=5)

    assert dashboard_service.low_stock_products()[0]["stock_status"] == "low"
    assert dashboard_service.low_stock_products(critical_ratio="0.8")[0]["stock_status"] == "critical"

    with pytest.raises(ValidationError):
        dashboard_service.low_stock_products(critical_ratio="lots")
    with pytest.raises(ValidationError):
        dashboard_service.low_stock_products(critical_ratio=2)


def test_dashboard_stats(make_product, customer):
    p1 = make_product(stock=10, min_stock_level=2, price_cents=10000)
    make_product(stock=1, min_stock_level=3)

    assert dashboard_service.dashboard_stats() == {
        "total_orders": 0,
        "revenue": "0.00",
        "low_stock_count": 1,
        "total_customers": 1,
    }

    order_service.place_order({"customer_id": customer.id}, [{"product_id": p1.id, "quantity": 2}])
    order_service.place_order({"customer_id": customer.id}, [{"product_id": p1.id, "quantity": 1, "price": "50.25"}])

    stats = dashboard_service.dashboard_stats()
    assert stats["total_orders"] == 2
    assert stats["revenue"] == "250.25"
    assert stats["low_stock_count"] == 1
