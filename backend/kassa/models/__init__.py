from .auth import User, SessionToken
from .customers import Customer
from .inventory import Product, StockMovement
from .receipts import Receipt, ReceiptLine

__all__ = [
    'User', 'SessionToken',
    'Customer',
    'Product', 'StockMovement',
    'Receipt', 'ReceiptLine',
]
