"""
Shared enums and constants used across the application.
"""

from enum import Enum


class SyncStatus(str, Enum):
    """Lifecycle of a sync operation or mapping"""
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    RETRYING = "RETRYING"
    CANCELLED = "CANCELLED"


class OperationType(str, Enum):
    INVENTORY_UPDATE = "INVENTORY_UPDATE"
    PRODUCT_CREATE = "PRODUCT_CREATE"
    PRODUCT_UPDATE = "PRODUCT_UPDATE"
    PRODUCT_DELETE = "PRODUCT_DELETE"
    PRICE_UPDATE = "PRICE_UPDATE"
    VARIANT_UPDATE = "VARIANT_UPDATE"
    BULK_SYNC = "BULK_SYNC"
    INITIAL_SYNC = "INITIAL_SYNC"


class SyncDirection(str, Enum):
    CENTRAL_TO_STORE = "CENTRAL_TO_STORE"
    STORE_TO_CENTRAL = "STORE_TO_CENTRAL"
    BIDIRECTIONAL = "BIDIRECTIONAL"


class ConflictType(str, Enum):
    INVENTORY_MISMATCH = "INVENTORY_MISMATCH"
    SYNC_COLLISION = "SYNC_COLLISION"
    PRICE_MISMATCH = "PRICE_MISMATCH"
    PRODUCT_DATA_MISMATCH = "PRODUCT_DATA_MISMATCH"
    VARIANT_MISSING = "VARIANT_MISSING"
    SKU_DUPLICATE = "SKU_DUPLICATE"


class ResolutionStrategy(str, Enum):
    USE_LOWEST = "USE_LOWEST"
    USE_HIGHEST = "USE_HIGHEST"
    USE_DATABASE = "USE_DATABASE"
    USE_STORE = "USE_STORE"
    MANUAL = "MANUAL"
    AVERAGE = "AVERAGE"


class InventoryPolicy(str, Enum):
    """What the storefront does when stock runs out"""
    DENY = "DENY"
    CONTINUE = "CONTINUE"


class WebhookTopic(str, Enum):
    ORDERS_CREATE = "orders/create"
    ORDERS_CANCELLED = "orders/cancelled"
    REFUNDS_CREATE = "refunds/create"
    INVENTORY_LEVELS_UPDATE = "inventory_levels/update"
    PRODUCTS_CREATE = "products/create"
    PRODUCTS_UPDATE = "products/update"
    PRODUCTS_DELETE = "products/delete"
    APP_UNINSTALLED = "app/uninstalled"


class ChangeCause(str, Enum):
    """Why an inventory change reached the engine"""
    ORDER_CREATED = "ORDER_CREATED"
    ORDER_CANCELLED = "ORDER_CANCELLED"
    REFUND_CREATED = "REFUND_CREATED"
    MANUAL_ADJUSTMENT = "MANUAL_ADJUSTMENT"
    CATALOG_SYNC = "CATALOG_SYNC"
    CONFLICT_RESOLUTION = "CONFLICT_RESOLUTION"


class DetectionOutcome(str, Enum):
    NONE = "NONE"
    MISMATCH = "MISMATCH"
    COLLISION = "COLLISION"
