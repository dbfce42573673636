import asyncio
from datetime import datetime
from typing import Any, Dict, List, Optional

from stocksync.core.exceptions import ShopifyAPIError
from stocksync.integrations.base import (
    LocationQuantity,
    PlatformInterface,
    PlatformLocation,
    PlatformVariant,
    QuantityChange,
)


class MockPlatform(PlatformInterface):
    def __init__(self, shop_domain: str, api_credentials: Dict[str, str] = None):
        super().__init__(shop_domain, api_credentials or {})
        self.stock_levels: Dict[str, int] = {}  # inventory item gid -> quantity
        self.update_calls: list = []  # Track calls for testing
        self.should_fail = False  # Toggle to test error scenarios
        self.should_hang = False  # Toggle to test push timeouts
        self.hold: Optional[asyncio.Event] = None  # Pushes wait until the test sets it
        self.locations_fail = False
        self.locations: List[PlatformLocation] = []
        self.variants: Dict[str, PlatformVariant] = {}  # sku -> variant
        self.inventory_items: Dict[str, str] = {}  # raw inventory item id -> sku
        self.pages: List[Dict[str, Any]] = []

    async def read_location_quantities(self, inventory_item_id: str) -> List[LocationQuantity]:
        quantity = self.stock_levels.get(inventory_item_id)
        if quantity is None:
            return []
        return [LocationQuantity(location_id=self.locations[0].id if self.locations else "1", available=quantity)]

    async def set_quantities(self, changes: List[QuantityChange], reason: str = "correction") -> bool:
        if self.should_hang:
            await asyncio.sleep(3600)
        if self.hold is not None:
            await self.hold.wait()
        if self.should_fail:
            raise ShopifyAPIError("Simulated platform failure", status_code=500)

        for change in changes:
            self.update_calls.append({
                'inventory_item_id': change.inventory_item_id,
                'location_id': change.location_id,
                'quantity': change.quantity,
                'reason': reason,
                'timestamp': datetime.now()
            })
            self.stock_levels[change.inventory_item_id] = change.quantity
        self._last_sync = datetime.now()
        return True

    async def list_locations(self) -> List[PlatformLocation]:
        if self.locations_fail:
            raise ShopifyAPIError("Simulated locations failure", status_code=500)
        return list(self.locations)

    async def find_variant_by_sku(self, sku: str) -> Optional[PlatformVariant]:
        return self.variants.get(sku)

    async def get_inventory_item_sku(self, inventory_item_id: str) -> Optional[str]:
        return self.inventory_items.get(str(inventory_item_id))

    async def get_products_page(self, first: int, after: Optional[str] = None) -> Dict[str, Any]:
        index = int(after) if after else 0
        if index >= len(self.pages):
            return {"products": [], "has_next_page": False, "end_cursor": None}
        page = dict(self.pages[index])
        page.setdefault("has_next_page", index + 1 < len(self.pages))
        page.setdefault("end_cursor", str(index + 1))
        return page

    def clear_history(self):
        """Clear test history"""
        self.update_calls = []
        self.stock_levels = {}


class MockPlatformFactory:
    """Stands in for shopify_platform_factory: one MockPlatform per shop domain"""

    def __init__(self):
        self.platforms: Dict[str, MockPlatform] = {}

    def get(self, shop_domain: str) -> MockPlatform:
        if shop_domain not in self.platforms:
            self.platforms[shop_domain] = MockPlatform(shop_domain)
        return self.platforms[shop_domain]

    def __call__(self, store) -> MockPlatform:
        return self.get(store.shop_domain)

    def pushed_quantities(self, shop_domain: str) -> List[int]:
        return [call['quantity'] for call in self.get(shop_domain).update_calls]
