from .catalog import Branch, Product
from .auth import User, SessionToken
from .purchasing import PurchaseOrder, PurchaseOrderItem, PurchaseHistory, PurchaseOrderStatus, ItemStage
from .stock import Stock, StockMovement, MovementKind

__all__ = [
    'Branch', 'Product',
    'User', 'SessionToken',
    'PurchaseOrder', 'PurchaseOrderItem', 'PurchaseHistory', 'PurchaseOrderStatus', 'ItemStage',
    'Stock', 'StockMovement', 'MovementKind',
]
