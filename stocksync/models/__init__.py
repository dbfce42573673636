from .product import Product
from .store import Store, StoreLocation
from .product_mapping import ProductStoreMapping
from .inventory import InventoryLocation, InventoryAggregate
from .sync_operation import SyncOperation
from .conflict import Conflict
from .webhook import WebhookEvent

# This ensures all models are registered with SQLAlchemy
__all__ = [
    'Product',
    'Store',
    'StoreLocation',
    'ProductStoreMapping',
    'InventoryLocation',
    'InventoryAggregate',
    'SyncOperation',
    'Conflict',
    'WebhookEvent',
]
