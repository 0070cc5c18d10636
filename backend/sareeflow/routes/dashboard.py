# Overview: Flask API routes for the dashboard; read-only views over current state.

from flask import Blueprint, request

from ..services import dashboard_service, order_service
from .errors import DOMAIN_ERRORS, error_response

dashboard_bp = Blueprint("dashboard", __name__, url_prefix="/api/dashboard")


@dashboard_bp.get("/stats")
def stats_route():
    """{"total_orders", "revenue", "low_stock_count", "total_customers"}"""
    return dashboard_service.dashboard_stats()


@dashboard_bp.get("/recent-orders")
def recent_orders_route():
    limit = request.args.get("limit", type=int)
    if limit is not None:
        limit = min(max(limit, 1), 100)
    orders = order_service.recent_orders(limit)
    return {"items": [o.to_dict(include_customer=True) for o in orders], "count": len(orders)}


@dashboard_bp.get("/stock-alerts")
def stock_alerts_route():
    """Low-stock products, most urgent first. Optional ?critical_ratio= override."""
    try:
        items = dashboard_service.low_stock_products(request.args.get("critical_ratio"))
    except DOMAIN_ERRORS as e:
        return error_response(e)
    return {"items": items, "count": len(items)}
