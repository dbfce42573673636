from datetime import datetime
from typing import List, Optional

from stocksync.schemas.base import BaseSchema


class StoreSyncState(BaseSchema):
    shop_domain: str
    store_id: int
    is_active: bool
    sync_enabled: bool
    last_synced: Optional[datetime] = None
    sync_status: Optional[str] = None


class InventoryStatus(BaseSchema):
    sku: str
    central_quantity: int
    committed_quantity: int
    incoming_quantity: int
    last_updated: Optional[datetime] = None
    stores: List[StoreSyncState]
    has_pending_conflicts: bool
