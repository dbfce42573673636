from abc import ABC, abstractmethod
from typing import Optional, Dict, Any, List
from datetime import datetime
from pydantic import BaseModel


class LocationQuantity(BaseModel):
    """Quantities for one inventory item at one store location"""
    location_id: str
    location_name: Optional[str] = None
    available: int = 0
    committed: int = 0
    incoming: int = 0


class QuantityChange(BaseModel):
    """One absolute quantity to set at a location"""
    inventory_item_id: str
    location_id: str
    quantity: int


class PlatformLocation(BaseModel):
    id: str
    name: Optional[str] = None
    is_active: bool = True


class PlatformVariant(BaseModel):
    variant_id: str
    sku: str
    title: Optional[str] = None
    product_id: Optional[str] = None
    inventory_item_id: Optional[str] = None
    tracked: bool = True
    inventory_quantity: Optional[int] = None
    inventory_policy: Optional[str] = None


class PlatformInterface(ABC):
    """
    What the sync engine needs from a store's commerce platform.
    One instance per store; construct through a platform factory.
    """

    def __init__(self, shop_domain: str, api_credentials: Dict[str, str]):
        self.shop_domain = shop_domain
        self.api_credentials = api_credentials
        self._last_sync: Optional[datetime] = None

    @abstractmethod
    async def read_location_quantities(self, inventory_item_id: str) -> List[LocationQuantity]:
        """Current per-location quantities for an inventory item"""
        pass

    @abstractmethod
    async def set_quantities(self, changes: List[QuantityChange], reason: str = "correction") -> bool:
        """Set absolute available quantities; raises on user errors"""
        pass

    @abstractmethod
    async def list_locations(self) -> List[PlatformLocation]:
        """Active locations for the store"""
        pass

    @abstractmethod
    async def find_variant_by_sku(self, sku: str) -> Optional[PlatformVariant]:
        """Variant with exactly this SKU, or None"""
        pass

    @abstractmethod
    async def get_inventory_item_sku(self, inventory_item_id: str) -> Optional[str]:
        """SKU of the variant behind an inventory item, or None"""
        pass

    @abstractmethod
    async def get_products_page(self, first: int, after: Optional[str] = None) -> Dict[str, Any]:
        """One page of the store's catalog (see ShopifyClient.get_products_page)"""
        pass
