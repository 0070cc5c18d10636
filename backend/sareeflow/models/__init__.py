from .inventory import Product, InventoryMovement, Supplier, PurchaseOrder, PurchaseOrderItem
from .customers import Customer
from .orders import Order, OrderItem
from .sequences import DocumentSequence

__all__ = [
    'Product', 'InventoryMovement', 'Supplier', 'PurchaseOrder', 'PurchaseOrderItem',
    'Customer',
    'Order', 'OrderItem',
    'DocumentSequence',
]
