"""
Purpose: Typed shapes for inbound webhook payloads and the normalized change
the sync engine consumes.

Webhook bodies are validated into one model per topic at the intake boundary.
Everything past the webhook processor only sees InventoryChange.
"""

from typing import List, Optional, Any
from pydantic import BaseModel, ConfigDict, Field

from stocksync.core.enums import ChangeCause


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class LineItem(_Payload):
    id: Optional[Any] = None
    sku: Optional[str] = None
    quantity: int = 0
    variant_id: Optional[Any] = None
    product_id: Optional[Any] = None


class OrderPayload(_Payload):
    """orders/create and orders/cancelled"""
    id: Any
    name: Optional[str] = None
    line_items: List[LineItem] = Field(default_factory=list)


class RefundLineItem(_Payload):
    line_item_id: Optional[Any] = None
    quantity: int = 0
    restock_type: Optional[str] = None
    line_item: Optional[LineItem] = None

    @property
    def sku(self) -> Optional[str]:
        return self.line_item.sku if self.line_item else None

    @property
    def restocks(self) -> bool:
        return self.restock_type != "no_restock"


class RefundPayload(_Payload):
    id: Any
    order_id: Optional[Any] = None
    refund_line_items: List[RefundLineItem] = Field(default_factory=list)


class InventoryLevelPayload(_Payload):
    inventory_item_id: Any
    location_id: Any
    available: Optional[int] = None
    updated_at: Optional[str] = None


class VariantPayload(_Payload):
    id: Any
    sku: Optional[str] = None
    title: Optional[str] = None
    inventory_item_id: Optional[Any] = None
    inventory_quantity: Optional[int] = None
    inventory_management: Optional[str] = None
    inventory_policy: Optional[str] = None
    admin_graphql_api_id: Optional[str] = None


class ProductPayload(_Payload):
    """products/create, products/update and products/delete (id only)"""
    id: Any
    title: Optional[str] = None
    admin_graphql_api_id: Optional[str] = None
    variants: List[VariantPayload] = Field(default_factory=list)


class InventoryChange(BaseModel):
    """
    A normalized inventory change from one store.

    Either a delta (available_delta / committed_delta, from orders, cancels and
    refunds) or an absolute available value at a location (manual adjustments).
    """
    shop_domain: str
    sku: str
    cause: ChangeCause
    available_delta: int = 0
    committed_delta: int = 0
    absolute_available: Optional[int] = None
    location_id: Optional[str] = None   # Shopify location GID, absolute changes only
    event_id: Optional[str] = None
    triggered_by: Optional[str] = None

    @property
    def is_absolute(self) -> bool:
        return self.absolute_available is not None
