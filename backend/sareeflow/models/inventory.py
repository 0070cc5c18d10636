from __future__ import annotations

from ..extensions import db
from sareeflow.time_utils import to_utc_z
from sareeflow.validation import format_cents

MOVEMENT_IN = "in"
MOVEMENT_OUT = "out"
MOVEMENT_ADJUSTMENT = "adjustment"
MOVEMENT_TYPES = (MOVEMENT_IN, MOVEMENT_OUT, MOVEMENT_ADJUSTMENT)


class Product(db.Model):
    """
    Product master data.

    STOCK DESIGN DECISION:
    Product.stock_quantity is a cached on-hand figure. It is written ONLY by
    the stock ledger (services/stock_service.py), which appends one
    InventoryMovement per change in the same transaction.

    - stock_quantity >= 0 (CHECK constraint; the ledger clamps at zero)
    - opening_stock_quantity is the quantity the product was created with;
      stock_quantity - opening_stock_quantity == SUM(movements.quantity_delta)

    Money is stored in cents; the API renders decimal strings.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("sku", name="uq_products_sku"),
        db.CheckConstraint("stock_quantity >= 0", name="stock_non_negative"),
        db.CheckConstraint("min_stock_level >= 0", name="min_stock_non_negative"),
        db.Index("ix_products_category_name", "category", "name"),
        db.Index("ix_products_active", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    category = db.Column(db.String(64), nullable=False)

    price_cents = db.Column(db.Integer, nullable=False)
    cost_price_cents = db.Column(db.Integer, nullable=True)

    stock_quantity = db.Column(db.Integer, nullable=False, default=0)
    opening_stock_quantity = db.Column(db.Integer, nullable=False, default=0)
    min_stock_level = db.Column(db.Integer, nullable=False, default=0)

    # Saree attributes
    color = db.Column(db.String(64), nullable=True)
    size = db.Column(db.String(32), nullable=True)
    fabric = db.Column(db.String(64), nullable=True)
    image_url = db.Column(db.String(512), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} stock={self.stock_quantity}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "price": format_cents(self.price_cents),
            "cost_price": format_cents(self.cost_price_cents),
            "stock_quantity": self.stock_quantity,
            "min_stock_level": self.min_stock_level,
            "color": self.color,
            "size": self.size,
            "fabric": self.fabric,
            "image_url": self.image_url,
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class InventoryMovement(db.Model):
    """
    Append-only stock ledger row.

    IMMUTABLE: Rows are never updated or deleted.

    - quantity_delta: signed change actually applied to stock_quantity
    - requested_quantity: signed change the caller asked for (differs from
      quantity_delta only when the ledger clamped at zero)
    - stock_after: stock_quantity right after this movement
    - idempotency_key: client/caller supplied; a replay returns the original row
    """
    __tablename__ = "inventory_movements"
    __table_args__ = (
        db.UniqueConstraint("idempotency_key", name="uq_inventory_movements_idempotency_key"),
        db.Index("ix_movements_product_created", "product_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    type = db.Column(db.String(16), nullable=False, index=True)

    quantity_delta = db.Column(db.Integer, nullable=False)
    requested_quantity = db.Column(db.Integer, nullable=False)
    stock_after = db.Column(db.Integer, nullable=False)

    reference = db.Column(db.String(128), nullable=True)
    notes = db.Column(db.String(255), nullable=True)

    idempotency_key = db.Column(db.String(128), nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )

    product = db.relationship("Product", backref=db.backref("movements", lazy=True))

    @property
    def was_clamped(self) -> bool:
        return self.quantity_delta != self.requested_quantity

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "type": self.type,
            "quantity": self.quantity_delta,
            "requested_quantity": self.requested_quantity,
            "stock_after": self.stock_after,
            "was_clamped": self.was_clamped,
            "reference": self.reference,
            "notes": self.notes,
            "idempotency_key": self.idempotency_key,
            "created_at": to_utc_z(self.created_at),
        }


class Supplier(db.Model):
    """
    Supplier master data.

    Products may be sourced from multiple suppliers (no required join);
    the relationship is implicit via PurchaseOrder history.
    """
    __tablename__ = "suppliers"
    __table_args__ = (
        db.Index("ix_suppliers_active_name", "is_active", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(32), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    address = db.Column(db.Text, nullable=True)
    city = db.Column(db.String(128), nullable=True)
    state = db.Column(db.String(128), nullable=True)
    pincode = db.Column(db.String(16), nullable=True)
    gst_number = db.Column(db.String(32), nullable=True)
    bank_details = db.Column(db.Text, nullable=True)
    payment_terms = db.Column(db.String(255), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def __repr__(self) -> str:
        return f"<Supplier id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "phone": self.phone,
            "email": self.email,
            "address": self.address,
            "city": self.city,
            "state": self.state,
            "pincode": self.pincode,
            "gst_number": self.gst_number,
            "bank_details": self.bank_details,
            "payment_terms": self.payment_terms,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


# =============================================================================
# PURCHASE ORDERS (stock coming in from suppliers)
# =============================================================================

class PurchaseOrder(db.Model):
    """
    Purchase order placed with a supplier.

    LIFECYCLE:
    1. pending: created, not yet sent
    2. sent: sent to the supplier
    3. received: goods received; every line was added to stock
    4. cancelled: cancelled before receiving

    received and cancelled are terminal.
    """
    __tablename__ = "purchase_orders"
    __table_args__ = (
        db.UniqueConstraint("po_number", name="uq_purchase_orders_po_number"),
        db.Index("ix_purchase_orders_supplier_status", "supplier_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    po_number = db.Column(db.String(64), nullable=False)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default="pending", index=True)

    subtotal_cents = db.Column(db.Integer, nullable=False)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)

    notes = db.Column(db.Text, nullable=True)
    expected_date = db.Column(db.DateTime(timezone=True), nullable=True)
    received_date = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    supplier = db.relationship("Supplier", backref=db.backref("purchase_orders", lazy=True))
    items = db.relationship(
        "PurchaseOrderItem",
        backref="purchase_order",
        lazy=True,
        order_by="PurchaseOrderItem.id",
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<PurchaseOrder id={self.id} po_number={self.po_number!r} status={self.status}>"

    def to_dict(self, details: bool = False) -> dict:
        data = {
            "id": self.id,
            "po_number": self.po_number,
            "supplier_id": self.supplier_id,
            "status": self.status,
            "subtotal": format_cents(self.subtotal_cents),
            "tax": format_cents(self.tax_cents),
            "total": format_cents(self.total_cents),
            "notes": self.notes,
            "expected_date": to_utc_z(self.expected_date),
            "received_date": to_utc_z(self.received_date),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
        if details:
            data["supplier"] = self.supplier.to_dict()
            data["items"] = [item.to_dict(include_product=True) for item in self.items]
        return data


class PurchaseOrderItem(db.Model):
    """Individual line items on a purchase order."""
    __tablename__ = "purchase_order_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    purchase_order_id = db.Column(db.Integer, db.ForeignKey("purchase_orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    # Set when the purchase order is received
    inventory_movement_id = db.Column(db.Integer, db.ForeignKey("inventory_movements.id"), nullable=True)

    product = db.relationship("Product")

    def to_dict(self, include_product: bool = False) -> dict:
        data = {
            "id": self.id,
            "purchase_order_id": self.purchase_order_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "price": format_cents(self.unit_price_cents),
            "total": format_cents(self.line_total_cents),
            "inventory_movement_id": self.inventory_movement_id,
        }
        if include_product:
            data["product"] = self.product.to_dict()
        return data
