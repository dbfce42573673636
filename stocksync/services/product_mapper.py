"""
Product/store mapping registry.

Maps a central SKU to each store's product, variant and inventory item GIDs,
and resolves store locations. Mappings come from catalog sync or are
discovered on demand the first time a webhook references an unmapped item.
"""
import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from stocksync.core.config import get_settings
from stocksync.core.enums import InventoryPolicy, OperationType, SyncDirection, SyncStatus
from stocksync.core.exceptions import PlatformServiceError
from stocksync.core.utils import utc_now
from stocksync.integrations.base import PlatformInterface
from stocksync.integrations.platforms.shopify import shopify_platform_factory
from stocksync.models.product import Product
from stocksync.models.product_mapping import ProductStoreMapping
from stocksync.models.store import Store, StoreLocation
from stocksync.services.inventory_store import InventoryStore
from stocksync.services.shopify.client import from_gid, to_gid
from stocksync.services.sync_log import SyncOperationLog

logger = logging.getLogger(__name__)

PlatformFactory = Callable[[Store], PlatformInterface]


def _policy(value: Optional[str]) -> Optional[InventoryPolicy]:
    if not value:
        return None
    try:
        return InventoryPolicy(str(value).upper())
    except ValueError:
        return None


class ProductMapper:
    def __init__(self, db: AsyncSession, platform_factory: Optional[PlatformFactory] = None):
        self.db = db
        self.platform_factory = platform_factory or shopify_platform_factory
        self.inventory = InventoryStore(db)
        self.sync_log = SyncOperationLog(db)
        self.settings = get_settings()

    def get_platform(self, store: Store) -> PlatformInterface:
        return self.platform_factory(store)

    # --- Lookups ---

    async def get_store(self, shop_domain: str) -> Optional[Store]:
        stmt = select(Store).where(Store.shop_domain == shop_domain)
        return (await self.db.execute(stmt)).scalar_one_or_none()

    async def get_product_by_sku(self, sku: str) -> Optional[Product]:
        stmt = select(Product).where(Product.sku == sku)
        return (await self.db.execute(stmt)).scalar_one_or_none()

    async def get_mapping(self, product_id: int, store_id: int) -> Optional[ProductStoreMapping]:
        stmt = select(ProductStoreMapping).where(
            ProductStoreMapping.product_id == product_id,
            ProductStoreMapping.store_id == store_id,
        )
        return (await self.db.execute(stmt)).scalar_one_or_none()

    async def get_mappings_for_product(self, product_id: int) -> List[ProductStoreMapping]:
        stmt = (
            select(ProductStoreMapping)
            .where(ProductStoreMapping.product_id == product_id)
            .options(selectinload(ProductStoreMapping.store))
            .order_by(ProductStoreMapping.id)
        )
        return list((await self.db.execute(stmt)).scalars().all())

    async def get_all_mappings(self, sku: str) -> List[ProductStoreMapping]:
        product = await self.get_product_by_sku(sku)
        if not product:
            return []
        return await self.get_mappings_for_product(product.id)

    # --- Upserts ---

    async def upsert_product(self, sku: str, title: Optional[str] = None, tracks_inventory: Optional[bool] = None,
                             inventory_policy: Optional[str] = None) -> Tuple[Product, bool]:
        """Create or refresh a product by SKU. Returns (product, created)."""
        product = await self.get_product_by_sku(sku)
        created = product is None
        if created:
            product = Product(
                sku=sku,
                title=title or f"Product {sku}",
                tracks_inventory=True if tracks_inventory is None else tracks_inventory,
                inventory_policy=_policy(inventory_policy) or InventoryPolicy.DENY,
            )
            self.db.add(product)
            await self.db.flush()
            # Every product gets its aggregate row up front
            await self.inventory.lock_aggregate(product.id)
            logger.info(f"Created product {sku} (id={product.id})")
        else:
            if title:
                product.title = title
            if tracks_inventory is not None:
                product.tracks_inventory = tracks_inventory
            if _policy(inventory_policy):
                product.inventory_policy = _policy(inventory_policy)
            product.updated_at = utc_now()
            await self.db.flush()
        return product, created

    async def upsert_mapping(self, product: Product, store: Store, product_gid: Optional[str],
                             variant_gid: Optional[str], inventory_item_gid: Optional[str]) -> ProductStoreMapping:
        mapping = await self.get_mapping(product.id, store.id)
        if mapping is None:
            mapping = ProductStoreMapping(product_id=product.id, store_id=store.id)
            self.db.add(mapping)

        if product_gid:
            mapping.shopify_product_id = to_gid("Product", product_gid)
        if variant_gid:
            mapping.shopify_variant_id = to_gid("ProductVariant", variant_gid)
        if inventory_item_gid:
            mapping.shopify_inventory_item_id = to_gid("InventoryItem", inventory_item_gid)
        mapping.sync_status = SyncStatus.COMPLETED.value
        mapping.last_synced_at = utc_now()
        await self.db.flush()
        return mapping

    async def upsert_product_from_variant(self, store: Store, product_gid: Optional[str], product_title: Optional[str],
                                          variant: Dict[str, Any]) -> Tuple[Product, ProductStoreMapping, bool]:
        product, created = await self.upsert_product(
            sku=variant["sku"],
            title=product_title or variant.get("title"),
            tracks_inventory=variant.get("tracked"),
            inventory_policy=variant.get("inventory_policy"),
        )
        mapping = await self.upsert_mapping(
            product,
            store,
            product_gid=product_gid,
            variant_gid=variant.get("variant_id"),
            inventory_item_gid=variant.get("inventory_item_id"),
        )
        return product, mapping, created

    async def delete_mappings_for_product(self, store: Store, product_gid: Any) -> int:
        candidates = [to_gid("Product", product_gid), str(from_gid(str(product_gid)))]
        stmt = delete(ProductStoreMapping).where(
            ProductStoreMapping.store_id == store.id,
            ProductStoreMapping.shopify_product_id.in_(candidates),
        )
        result = await self.db.execute(stmt)
        await self.db.flush()
        return result.rowcount or 0

    # --- Mapping resolution ---

    async def _find_by_inventory_item(self, store_id: int, value: str) -> Optional[ProductStoreMapping]:
        stmt = (
            select(ProductStoreMapping)
            .where(
                ProductStoreMapping.store_id == store_id,
                ProductStoreMapping.shopify_inventory_item_id == value,
            )
            .options(selectinload(ProductStoreMapping.product))
        )
        return (await self.db.execute(stmt)).scalars().first()

    async def resolve_mapping(self, store: Store, inventory_item_id: Any) -> Optional[ProductStoreMapping]:
        """
        Resolve a store's inventory item to its mapping.

        Fallback order:
        1. GID form (gid://shopify/InventoryItem/N)
        2. raw numeric id, for rows stored before GIDs were normalized
        3. on-demand discovery: ask the store for the item's SKU and map it
        """
        raw_id = from_gid(str(inventory_item_id))

        mapping = await self._find_by_inventory_item(store.id, to_gid("InventoryItem", raw_id))
        if mapping:
            return mapping

        mapping = await self._find_by_inventory_item(store.id, raw_id)
        if mapping:
            logger.debug(f"Resolved inventory item {raw_id} on {store.shop_domain} via raw id")
            return mapping

        try:
            sku = await self.get_platform(store).get_inventory_item_sku(raw_id)
        except (PlatformServiceError, ValueError) as e:
            logger.warning(f"Could not look up inventory item {raw_id} on {store.shop_domain}: {e}")
            return None
        if not sku:
            logger.warning(f"Inventory item {raw_id} on {store.shop_domain} has no SKU, cannot map")
            return None
        return await self.discover_on_demand(store, sku)

    async def discover_on_demand(self, store: Store, sku: str) -> Optional[ProductStoreMapping]:
        """
        Find the SKU's variant in the store and create the product and mapping.
        A newly created product's aggregate is seeded from the store's quantity.
        Returns None (never raises) when the store does not know the SKU.
        """
        try:
            variant = await self.get_platform(store).find_variant_by_sku(sku)
        except (PlatformServiceError, ValueError) as e:
            logger.warning(f"Discovery of {sku} on {store.shop_domain} failed: {e}")
            return None

        if variant is None:
            logger.warning(f"No variant found for SKU {sku} in {store.shop_domain}")
            return None

        product, mapping, created = await self.upsert_product_from_variant(
            store, variant.product_id, variant.title, variant.model_dump()
        )
        if created and variant.inventory_quantity is not None:
            await self.inventory.set_aggregate_direct(
                product.id, {"available": variant.inventory_quantity}, actor=f"discovery:{store.shop_domain}"
            )

        logger.info(f"Discovered and mapped {sku} in {store.shop_domain} (product {product.id})")
        mapping.product = product
        return mapping

    # --- Locations ---

    async def _get_location(self, store_id: int, location_gid: str) -> Optional[StoreLocation]:
        stmt = select(StoreLocation).where(
            StoreLocation.store_id == store_id,
            StoreLocation.shopify_location_id == location_gid,
        )
        return (await self.db.execute(stmt)).scalar_one_or_none()

    async def sync_store_locations(self, store: Store) -> List[StoreLocation]:
        """Upsert the store's active locations from the platform"""
        platform_locations = await self.get_platform(store).list_locations()
        synced = []
        for loc in platform_locations:
            gid = to_gid("Location", loc.id)
            row = await self._get_location(store.id, gid)
            if row is None:
                row = StoreLocation(store_id=store.id, shopify_location_id=gid)
                self.db.add(row)
            row.name = loc.name
            row.is_active = loc.is_active
            synced.append(row)
        await self.db.flush()
        logger.info(f"Synced {len(synced)} locations for {store.shop_domain}")
        return synced

    async def get_or_create_location(self, store: Store, location_id: Any) -> StoreLocation:
        """
        Database first, then a refresh of the store's locations, then a
        placeholder row named after the id.
        """
        gid = to_gid("Location", location_id)
        location = await self._get_location(store.id, gid)
        if location:
            return location

        try:
            await self.sync_store_locations(store)
            location = await self._get_location(store.id, gid)
            if location:
                return location
        except (PlatformServiceError, ValueError) as e:
            logger.warning(f"Could not sync locations for {store.shop_domain}: {e}")

        location = StoreLocation(
            store_id=store.id,
            shopify_location_id=gid,
            name=f"Location {from_gid(gid)}",
            is_active=True,
        )
        self.db.add(location)
        await self.db.flush()
        logger.info(f"Created placeholder location {gid} for {store.shop_domain}")
        return location

    async def get_primary_location(self, store: Store) -> Optional[StoreLocation]:
        """First active stored location, else the first one the platform reports"""
        stmt = (
            select(StoreLocation)
            .where(StoreLocation.store_id == store.id, StoreLocation.is_active.is_(True))
            .order_by(StoreLocation.created_at.asc(), StoreLocation.id.asc())
            .limit(1)
        )
        location = (await self.db.execute(stmt)).scalar_one_or_none()
        if location:
            return location

        synced = await self.sync_store_locations(store)
        return synced[0] if synced else None

    # --- Catalog ---

    async def sync_product_catalog(self, store: Store) -> Dict[str, int]:
        """
        Page through the store's catalog, upserting products, mappings and
        per-location inventory. Location rows are written with skip_recalc and
        the aggregate is recalculated once per product.
        """
        stats = {"total": 0, "created": 0, "updated": 0, "errors": 0}
        shop_domain = store.shop_domain
        platform = self.get_platform(store)
        actor = f"catalog-sync:{store.shop_domain}"

        operation = await self.sync_log.record(
            OperationType.BULK_SYNC,
            SyncDirection.STORE_TO_CENTRAL,
            product_id=None,
            store_id=store.id,
            status=SyncStatus.PENDING,
            triggered_by=actor,
        )
        await self.sync_log.mark_in_progress(operation)
        await self.db.commit()

        try:
            await self.sync_store_locations(store)
            await self.db.commit()
            await self._sync_catalog_pages(store, platform, actor, stats)
        except Exception as e:
            await self.db.rollback()
            await self.db.refresh(operation)
            await self.sync_log.mark_failed(operation, f"{e.__class__.__name__}: {e}")
            await self.db.commit()
            logger.error(f"Catalog sync for {shop_domain} aborted: {e}")
            raise

        await self.db.refresh(operation)
        await self.sync_log.mark_completed(operation, new_value=stats)
        await self.db.commit()
        logger.info(f"Catalog sync for {shop_domain} finished: {stats}")
        return stats

    async def _sync_catalog_pages(self, store: Store, platform: PlatformInterface, actor: str,
                                  stats: Dict[str, int]) -> None:
        page_size = self.settings.CATALOG_PAGE_SIZE

        cursor = None
        pages = 0
        while True:
            if pages:
                await asyncio.sleep(self.settings.CATALOG_PAGE_PAUSE)
            page = await platform.get_products_page(first=page_size, after=cursor)
            pages += 1

            for product_data in page["products"]:
                for variant in product_data["variants"]:
                    if not variant.get("sku"):
                        continue
                    stats["total"] += 1
                    try:
                        product, _, created = await self.upsert_product_from_variant(
                            store, product_data["id"], product_data.get("title"), variant
                        )
                        levels = variant.get("levels") or []
                        if levels:
                            for level in levels:
                                location = await self.get_or_create_location(store, level["location_id"])
                                await self.inventory.upsert_location(
                                    product.id, location.id, level, actor=actor, skip_recalc=True
                                )
                            await self.inventory.recalculate_aggregate(product.id, actor=actor)
                        elif variant.get("inventory_quantity") is not None:
                            await self.inventory.set_aggregate_direct(
                                product.id, {"available": variant["inventory_quantity"]}, actor=actor
                            )
                        await self.db.commit()
                        stats["created" if created else "updated"] += 1
                    except Exception as e:
                        await self.db.rollback()
                        await self.db.refresh(store)
                        stats["errors"] += 1
                        logger.error(f"Catalog sync failed for {variant.get('sku')} on {store.shop_domain}: {e}")

            if not page.get("has_next_page"):
                break
            cursor = page.get("end_cursor")
