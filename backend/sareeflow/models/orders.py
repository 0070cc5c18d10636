from __future__ import annotations

from ..extensions import db
from sareeflow.time_utils import to_utc_z
from sareeflow.validation import format_cents

ORDER_STATUSES = ("pending", "confirmed", "packed", "shipped", "delivered", "cancelled")
PAYMENT_STATUSES = ("pending", "partial", "paid", "cod")


class Order(db.Model):
    """
    Customer order.

    WHY: An order, its items, the stock decrements and the customer's
    aggregates are written together in one transaction (see order_service).

    After placement only status, payment_status, notes, addresses and
    delivery_date change; items and money are immutable.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("order_number", name="uq_orders_order_number"),
        db.Index("ix_orders_status_created", "status", "created_at"),
        db.Index("ix_orders_customer_created", "customer_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable order number (e.g., "ORD-000042")
    order_number = db.Column(db.String(64), nullable=False)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    payment_status = db.Column(db.String(16), nullable=False, default="pending", index=True)

    # All amounts in cents
    subtotal_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)

    notes = db.Column(db.Text, nullable=True)
    shipping_address = db.Column(db.Text, nullable=True)
    billing_address = db.Column(db.Text, nullable=True)

    order_date = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    delivery_date = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer", backref=db.backref("orders", lazy=True))
    items = db.relationship("OrderItem", backref="order", lazy=True, order_by="OrderItem.id")

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Order id={self.id} order_number={self.order_number!r} status={self.status}>"

    def to_dict(self, details: bool = False, include_customer: bool = False) -> dict:
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "customer_id": self.customer_id,
            "status": self.status,
            "payment_status": self.payment_status,
            "subtotal": format_cents(self.subtotal_cents),
            "discount": format_cents(self.discount_cents),
            "tax": format_cents(self.tax_cents),
            "total": format_cents(self.total_cents),
            "notes": self.notes,
            "shipping_address": self.shipping_address,
            "billing_address": self.billing_address,
            "order_date": to_utc_z(self.order_date),
            "delivery_date": to_utc_z(self.delivery_date),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
        if details or include_customer:
            data["customer"] = self.customer.to_dict()
        if details:
            data["items"] = [item.to_dict(include_product=True) for item in self.items]
        return data


class OrderItem(db.Model):
    """
    Individual line items on an order.

    unit_price_cents / line_total_cents are snapshots taken at placement and
    are never resynchronized with later product price changes.
    """
    __tablename__ = "order_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    # Links to the stock-out movement written at placement
    inventory_movement_id = db.Column(db.Integer, db.ForeignKey("inventory_movements.id"), nullable=True)

    product = db.relationship("Product")

    def to_dict(self, include_product: bool = False) -> dict:
        data = {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "price": format_cents(self.unit_price_cents),
            "total": format_cents(self.line_total_cents),
            "inventory_movement_id": self.inventory_movement_id,
        }
        if include_product:
            data["product"] = self.product.to_dict()
        return data
