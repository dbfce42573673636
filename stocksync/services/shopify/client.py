import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

import httpx
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from stocksync.core.config import get_settings
from stocksync.core.exceptions import (
    ShopifyAPIError,
    ShopifyGraphQLError,
    ShopifyTransientError,
    ShopifyUserError,
)
from stocksync.services.shopify import queries

logger = logging.getLogger(__name__)

TRANSIENT_STATUS_CODES = (409, 429, 502, 503, 504)


def to_gid(resource: str, resource_id: Any) -> str:
    """Build a Shopify global id, e.g. to_gid("Location", 123) -> gid://shopify/Location/123"""
    value = str(resource_id)
    if value.startswith("gid://"):
        return value
    return f"gid://shopify/{resource}/{value}"


def from_gid(gid: Optional[str]) -> Optional[str]:
    """Extract the trailing numeric id from a GID, or return a raw id unchanged"""
    if gid is None:
        return None
    return str(gid).rsplit("/", 1)[-1]


def _quantities_by_name(quantities: List[Dict[str, Any]]) -> Dict[str, int]:
    return {q.get("name"): int(q.get("quantity") or 0) for q in quantities or []}


class ShopifyClient:
    """
    Async client for the Shopify Admin GraphQL API, one instance per store.

    Only the inventory surface the sync engine needs is implemented:
    - locations (list_locations)
    - variant lookup by SKU (find_variant_by_sku)
    - per-location quantities (get_inventory_levels)
    - setting quantities (set_quantities / set_quantities_batched)
    - paginated product listing for catalog sync (get_products_page)

    Transient failures (throttling, 5xx, network) are retried with exponential
    backoff. GraphQL errors and mutation userErrors are raised immediately.
    """

    def __init__(self, shop_domain: str, access_token: str, api_version: Optional[str] = None,
                 timeout: Optional[float] = None):
        settings = get_settings()
        if not shop_domain or not access_token:
            raise ValueError("shop_domain and access_token are required for ShopifyClient")

        self.shop_domain = shop_domain
        self.access_token = access_token
        self.api_version = api_version or settings.SHOPIFY_API_VERSION
        self.timeout = timeout or settings.SHOPIFY_REQUEST_TIMEOUT
        self.batch_size = settings.SHOPIFY_BATCH_SIZE
        self.batch_pause = settings.SHOPIFY_BATCH_PAUSE
        self.graphql_url = f"https://{self.shop_domain}/admin/api/{self.api_version}/graphql.json"

    def _get_headers(self) -> Dict[str, str]:
        return {
            "X-Shopify-Access-Token": self.access_token,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    @retry(
        reraise=True,
        stop=stop_after_attempt(4),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=8),
        retry=retry_if_exception_type(ShopifyTransientError),
    )
    async def execute(self, query: str, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Run a GraphQL document and return its `data` payload.

        Raises:
            ShopifyTransientError: throttled, 5xx or network failure (retried first)
            ShopifyAPIError: any other non-2xx response
            ShopifyGraphQLError: the response carried top-level errors
        """
        payload: Dict[str, Any] = {"query": query}
        if variables:
            payload["variables"] = variables

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.graphql_url, headers=self._get_headers(), json=payload)
        except (httpx.TimeoutException, httpx.TransportError) as e:
            logger.warning(f"Network error talking to {self.shop_domain}: {e}")
            raise ShopifyTransientError(f"Network error: {e}")

        if response.status_code in TRANSIENT_STATUS_CODES or response.status_code >= 500:
            logger.warning(f"Shopify {self.shop_domain} returned {response.status_code}, will retry")
            raise ShopifyTransientError(f"Request failed: {response.text}", status_code=response.status_code)

        if response.status_code != 200:
            logger.error(f"Shopify API error for {self.shop_domain}: {response.status_code} {response.text}")
            raise ShopifyAPIError(f"Request failed: {response.text}", status_code=response.status_code)

        try:
            body = response.json()
        except json.JSONDecodeError:
            raise ShopifyGraphQLError([{"message": "Failed to decode JSON response"}])

        if body.get("errors"):
            errors = body["errors"]
            if any((e.get("extensions") or {}).get("code") == "THROTTLED" for e in errors):
                raise ShopifyTransientError("Throttled by Shopify", status_code=429)
            raise ShopifyGraphQLError(errors)

        return body.get("data") or {}

    # --- Locations ---

    async def list_locations(self, first: int = 50) -> List[Dict[str, Any]]:
        """Active locations for the store"""
        data = await self.execute(queries.LOCATIONS_QUERY, {"first": first})
        edges = (data.get("locations") or {}).get("edges", [])
        return [
            {"id": edge["node"]["id"], "name": edge["node"].get("name"), "is_active": edge["node"].get("isActive", True)}
            for edge in edges
            if edge["node"].get("isActive", True)
        ]

    # --- Variants ---

    async def find_variant_by_sku(self, sku: str) -> Optional[Dict[str, Any]]:
        """Return the variant whose SKU matches exactly, or None"""
        data = await self.execute(queries.PRODUCT_VARIANTS_BY_SKU_QUERY, {"query": f"sku:{sku}"})
        for edge in (data.get("productVariants") or {}).get("edges", []):
            node = edge["node"]
            if node.get("sku") == sku:
                return {
                    "variant_id": node["id"],
                    "sku": node["sku"],
                    "title": (node.get("product") or {}).get("title") or node.get("title"),
                    "product_id": (node.get("product") or {}).get("id"),
                    "inventory_item_id": (node.get("inventoryItem") or {}).get("id"),
                    "tracked": (node.get("inventoryItem") or {}).get("tracked", True),
                    "inventory_quantity": node.get("inventoryQuantity"),
                    "inventory_policy": node.get("inventoryPolicy"),
                }
        return None

    async def get_inventory_item_sku(self, inventory_item_id: str) -> Optional[str]:
        data = await self.execute(queries.INVENTORY_ITEM_SKU_QUERY, {"id": to_gid("InventoryItem", inventory_item_id)})
        item = data.get("inventoryItem") or {}
        return item.get("sku") or None

    # --- Inventory ---

    async def get_inventory_levels(self, inventory_item_id: str) -> List[Dict[str, Any]]:
        """Per-location available/committed/incoming for one inventory item"""
        data = await self.execute(
            queries.INVENTORY_LEVELS_QUERY,
            {"inventoryItemId": to_gid("InventoryItem", inventory_item_id)},
        )
        item = data.get("inventoryItem")
        if not item:
            return []
        levels = []
        for edge in (item.get("inventoryLevels") or {}).get("edges", []):
            node = edge["node"]
            q = _quantities_by_name(node.get("quantities"))
            levels.append({
                "location_id": node["location"]["id"],
                "location_name": node["location"].get("name"),
                "available": q.get("available", 0),
                "committed": q.get("committed", 0),
                "incoming": q.get("incoming", 0),
            })
        return levels

    async def set_quantities(self, changes: List[Dict[str, Any]], reason: str = "correction") -> Dict[str, Any]:
        """
        Set absolute available quantities.

        Args:
            changes: [{"inventory_item_id": gid, "location_id": gid, "quantity": int}, ...]
                     at most SHOPIFY_BATCH_SIZE entries
            reason: Shopify adjustment reason

        Raises:
            ShopifyUserError: the mutation returned userErrors
        """
        if len(changes) > self.batch_size:
            raise ValueError(f"set_quantities accepts at most {self.batch_size} changes, got {len(changes)}")

        variables = {
            "input": {
                "name": "available",
                "reason": reason,
                "ignoreCompareQuantity": True,
                "quantities": [
                    {
                        "inventoryItemId": to_gid("InventoryItem", c["inventory_item_id"]),
                        "locationId": to_gid("Location", c["location_id"]),
                        "quantity": int(c["quantity"]),
                    }
                    for c in changes
                ],
            }
        }
        data = await self.execute(queries.INVENTORY_SET_QUANTITIES_MUTATION, variables)
        result = data.get("inventorySetQuantities") or {}
        user_errors = result.get("userErrors") or []
        if user_errors:
            raise ShopifyUserError(user_errors)
        return result.get("inventoryAdjustmentGroup") or {}

    async def set_quantities_batched(self, changes: List[Dict[str, Any]], reason: str = "correction") -> int:
        """Split into batches of SHOPIFY_BATCH_SIZE, pausing between calls. Returns number of batches sent."""
        batches = 0
        for start in range(0, len(changes), self.batch_size):
            if batches:
                await asyncio.sleep(self.batch_pause)
            await self.set_quantities(changes[start:start + self.batch_size], reason=reason)
            batches += 1
        return batches

    # --- Catalog ---

    async def get_products_page(self, first: int = 25, after: Optional[str] = None) -> Dict[str, Any]:
        """
        One page of products with their variants and inventory levels.

        Returns:
            {"products": [...], "has_next_page": bool, "end_cursor": str | None}
        """
        variables: Dict[str, Any] = {"first": first}
        if after:
            variables["after"] = after
        data = await self.execute(queries.PRODUCTS_QUERY, variables)
        connection = data.get("products") or {}

        products = []
        for edge in connection.get("edges", []):
            node = edge["node"]
            variants = []
            for v_edge in (node.get("variants") or {}).get("edges", []):
                v = v_edge["node"]
                item = v.get("inventoryItem") or {}
                levels = []
                for l_edge in (item.get("inventoryLevels") or {}).get("edges", []):
                    level = l_edge["node"]
                    q = _quantities_by_name(level.get("quantities"))
                    levels.append({
                        "location_id": level["location"]["id"],
                        "location_name": level["location"].get("name"),
                        "available": q.get("available", 0),
                        "committed": q.get("committed", 0),
                        "incoming": q.get("incoming", 0),
                    })
                variants.append({
                    "variant_id": v["id"],
                    "sku": v.get("sku"),
                    "title": v.get("title"),
                    "inventory_item_id": item.get("id"),
                    "tracked": item.get("tracked", True),
                    "inventory_quantity": v.get("inventoryQuantity"),
                    "inventory_policy": v.get("inventoryPolicy"),
                    "levels": levels,
                })
            products.append({"id": node["id"], "title": node.get("title"), "variants": variants})

        page_info = connection.get("pageInfo") or {}
        return {
            "products": products,
            "has_next_page": bool(page_info.get("hasNextPage")),
            "end_cursor": page_info.get("endCursor"),
        }
