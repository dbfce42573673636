import logging
from datetime import datetime
from typing import Optional, Dict, Any, List

from stocksync.integrations.base import (
    PlatformInterface,
    LocationQuantity,
    QuantityChange,
    PlatformLocation,
    PlatformVariant,
)
from stocksync.services.shopify.client import ShopifyClient

logger = logging.getLogger(__name__)


class ShopifyPlatform(PlatformInterface):
    """PlatformInterface backed by the Shopify Admin GraphQL API"""

    def __init__(self, shop_domain: str, api_credentials: Dict[str, str], client: Optional[ShopifyClient] = None):
        super().__init__(shop_domain, api_credentials)
        self.client = client or ShopifyClient(shop_domain, api_credentials["access_token"])

    async def read_location_quantities(self, inventory_item_id: str) -> List[LocationQuantity]:
        levels = await self.client.get_inventory_levels(inventory_item_id)
        return [LocationQuantity(**level) for level in levels]

    async def set_quantities(self, changes: List[QuantityChange], reason: str = "correction") -> bool:
        await self.client.set_quantities_batched([c.model_dump() for c in changes], reason=reason)
        self._last_sync = datetime.now()
        return True

    async def list_locations(self) -> List[PlatformLocation]:
        locations = await self.client.list_locations()
        return [PlatformLocation(**loc) for loc in locations]

    async def find_variant_by_sku(self, sku: str) -> Optional[PlatformVariant]:
        variant = await self.client.find_variant_by_sku(sku)
        if not variant:
            return None
        return PlatformVariant(**variant)

    async def get_inventory_item_sku(self, inventory_item_id: str) -> Optional[str]:
        return await self.client.get_inventory_item_sku(inventory_item_id)

    async def get_products_page(self, first: int, after: Optional[str] = None) -> Dict[str, Any]:
        return await self.client.get_products_page(first=first, after=after)


def shopify_platform_factory(store) -> ShopifyPlatform:
    """Default factory: build a ShopifyPlatform from a Store row's credentials"""
    if not store.access_token:
        raise ValueError(f"Store {store.shop_domain} has no access token")
    return ShopifyPlatform(store.shop_domain, {"access_token": store.access_token})
