from .auth import User, SessionToken
from .inventory import Product
from .carts import Cart, CartItem, CART_ACTIVE, CART_CONVERTED
from .sales import Sale, SaleItem, InvoiceSequence, PAYMENT_METHODS
from .reports import Report, ReportItem

__all__ = [
    'User', 'SessionToken',
    'Product',
    'Cart', 'CartItem', 'CART_ACTIVE', 'CART_CONVERTED',
    'Sale', 'SaleItem', 'InvoiceSequence', 'PAYMENT_METHODS',
    'Report', 'ReportItem',
]
