from .inventory import Product, Inventory, InventoryTransaction
from .sales import Sale, SaleItem
from .customers import Customer
from .auth import User, SessionToken, LoginHistory
from .notifications import Notification
from .settings import StoreSettings

__all__ = [
    'Product', 'Inventory', 'InventoryTransaction',
    'Sale', 'SaleItem',
    'Customer',
    'User', 'SessionToken', 'LoginHistory',
    'Notification',
    'StoreSettings',
]
