"""
Sync engine: applies a store's inventory change to the central aggregate and
propagates the result to every other active, sync-enabled store.

Per change:  received -> central updated -> propagating -> completed | partially failed

The central update is a locked read-modify-write on the product's aggregate
row (SELECT ... FOR UPDATE), committed before any platform call is made.
Propagation is best effort per store. A failed or timed-out push is recorded
as a FAILED operation and never rolls back the central update or other pushes.
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from stocksync.core.config import get_settings
from stocksync.core.enums import (
    ChangeCause,
    ConflictType,
    DetectionOutcome,
    OperationType,
    ResolutionStrategy,
    SyncDirection,
    SyncStatus,
)
from stocksync.core.exceptions import PlatformServiceError, ProductNotFoundError, StoreNotFoundError
from stocksync.core.utils import utc_now
from stocksync.integrations.base import QuantityChange
from stocksync.integrations.events import InventoryChange
from stocksync.models.conflict import Conflict
from stocksync.models.inventory import InventoryAggregate
from stocksync.models.product import Product
from stocksync.models.product_mapping import ProductStoreMapping
from stocksync.models.store import Store, StoreLocation
from stocksync.services.conflict_resolver import ConflictResolver
from stocksync.services.inventory_store import InventoryStore
from stocksync.services.product_mapper import PlatformFactory, ProductMapper
from stocksync.services.sync_log import SyncOperationLog

logger = logging.getLogger(__name__)


class SyncResult:
    """Result of processing one inventory change"""
    def __init__(self):
        self.success: bool = False
        self.message: str = ""
        self.product_id: Optional[int] = None
        self.sku: Optional[str] = None
        self.previous_value: Optional[Dict[str, int]] = None
        self.new_value: Optional[Dict[str, int]] = None
        self.source_operation_id: Optional[int] = None
        self.conflict_id: Optional[int] = None
        self.stores_synced: List[str] = []
        self.stores_failed: List[str] = []
        self.errors: List[str] = []
        self.details: Dict[str, Any] = {}

    @property
    def failed_count(self) -> int:
        return len(self.stores_failed)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "product_id": self.product_id,
            "sku": self.sku,
            "previous_value": self.previous_value,
            "new_value": self.new_value,
            "source_operation_id": self.source_operation_id,
            "conflict_id": self.conflict_id,
            "stores_synced": self.stores_synced,
            "stores_failed": self.stores_failed,
            "errors": self.errors,
            "details": self.details,
        }


class _PushTarget:
    """A resolved propagation target: everything a push needs, gathered before any I/O"""
    def __init__(self, mapping: ProductStoreMapping, store: Store, location: Optional[StoreLocation] = None,
                 error: Optional[str] = None):
        self.mapping = mapping
        self.store = store
        self.shop_domain = store.shop_domain
        self.location = location
        self.error = error
        self.platform = None


class SyncEngine:
    def __init__(self, db: AsyncSession, platform_factory: Optional[PlatformFactory] = None):
        self.db = db
        self.settings = get_settings()
        self.mapper = ProductMapper(db, platform_factory)
        self.inventory = InventoryStore(db)
        self.sync_log = SyncOperationLog(db)
        self.resolver = ConflictResolver(db)

    # --- Entry point ---

    async def process_change(self, change: InventoryChange) -> SyncResult:
        """
        Apply one store's change centrally, then propagate.

        Unknown stores and SKUs that cannot be discovered return a failed
        result. Errors in the central update are raised after rolling back.
        """
        result = SyncResult()
        result.sku = change.sku
        actor = change.triggered_by or f"{change.cause.value.lower()}:{change.shop_domain}"

        store = await self.mapper.get_store(change.shop_domain)
        if store is None:
            result.message = f"Unknown store {change.shop_domain}"
            logger.warning(result.message)
            return result

        product = await self.mapper.get_product_by_sku(change.sku)
        discovered = False
        if product is None:
            mapping = await self.mapper.discover_on_demand(store, change.sku)
            if mapping is None:
                result.message = f"SKU {change.sku} not found centrally or in {change.shop_domain}"
                logger.warning(result.message)
                return result
            product = mapping.product
            discovered = True
        result.product_id = product.id

        # Resolve the location before taking the row lock: it may call the platform
        location = None
        per_location = False
        if change.is_absolute and change.location_id:
            location = await self.mapper.get_or_create_location(store, change.location_id)
        elif not change.is_absolute and not discovered and await self.inventory.has_location_rows(product.id):
            # Deltas land on the source store's primary location so the aggregate stays a sum of rows
            per_location = True
            try:
                location = await self.mapper.get_primary_location(store)
            except PlatformServiceError as e:
                logger.warning(f"No primary location for {store.shop_domain}, using first stored row: {e}")

        try:
            if change.is_absolute:
                previous, aggregate, conflict, held = await self._apply_absolute(store, product, change, location, actor)
            else:
                previous, aggregate = await self._apply_delta(product, change, actor, discovered, per_location, location)
                conflict, held = None, False

            new_value = aggregate.as_dict()
            source_op = await self.sync_log.record(
                OperationType.INVENTORY_UPDATE,
                SyncDirection.STORE_TO_CENTRAL,
                product_id=product.id,
                store_id=store.id,
                status=SyncStatus.COMPLETED,
                previous_value=previous,
                new_value=new_value,
                triggered_by=change.triggered_by or (f"webhook-{change.event_id}" if change.event_id else actor),
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            logger.exception(f"Central inventory update failed for {change.sku} from {change.shop_domain}")
            raise

        result.previous_value = previous
        result.new_value = new_value
        result.source_operation_id = source_op.id
        result.conflict_id = conflict.id if conflict else None
        logger.info(
            f"Central inventory for {change.sku} updated from {change.shop_domain} ({change.cause.value}): "
            f"available {previous['available']} -> {new_value['available']}"
        )

        if held:
            result.success = True
            result.message = f"Conflict {conflict.id} awaits manual resolution, propagation held"
            result.details = {"stores_synced": 0, "stores_failed": 0, "held": True}
            return result

        propagation = await self.propagate(
            product.id,
            new_value["available"],
            source_store_id=store.id,
            triggered_by=str(source_op.id),
        )
        result.stores_synced = propagation.stores_synced
        result.stores_failed = propagation.stores_failed
        result.errors = propagation.errors
        result.details = propagation.details
        result.success = propagation.success
        result.message = propagation.message
        return result

    # --- Central update ---

    async def _apply_delta(self, product: Product, change: InventoryChange, actor: str, discovered: bool,
                           per_location: bool, location: Optional[StoreLocation]
                           ) -> Tuple[Dict[str, int], InventoryAggregate]:
        if discovered:
            # A freshly discovered product is seeded from the store's current
            # quantity, which already includes this change.
            aggregate = await self.inventory.lock_aggregate(product.id)
            logger.info(f"{product.sku} discovered during {change.cause.value}, delta already reflected in seed")
            return aggregate.as_dict(), aggregate

        if per_location:
            return await self.inventory.apply_location_delta(
                product.id,
                location.id if location is not None else None,
                available_delta=change.available_delta,
                committed_delta=change.committed_delta,
                actor=actor,
            )

        return await self.inventory.apply_delta(
            product.id,
            available_delta=change.available_delta,
            committed_delta=change.committed_delta,
            actor=actor,
        )

    async def _apply_absolute(self, store: Store, product: Product, change: InventoryChange,
                              location: Optional[StoreLocation], actor: str
                              ) -> Tuple[Dict[str, int], InventoryAggregate, Optional[Conflict], bool]:
        aggregate = await self.inventory.lock_aggregate(product.id)
        previous = aggregate.as_dict()
        observed = max(0, change.absolute_available)

        expected = await self._expected_value(product.id, location, previous)
        conflict = None
        value = observed

        if change.cause == ChangeCause.MANUAL_ADJUSTMENT and expected is not None:
            detection = await self.resolver.detect(product.id, store.id, expected, observed)

            if detection.outcome == DetectionOutcome.COLLISION:
                conflict = await self.resolver.create_conflict(
                    ConflictType.SYNC_COLLISION,
                    product.id,
                    store.id,
                    central_value={"available": expected},
                    store_value={"available": observed},
                    resolution_strategy=ResolutionStrategy.USE_LOWEST,
                    notes=f"{detection.recent_operations} concurrent change(s) from other stores",
                )
                if not self.settings.AUTO_RESOLVE_COLLISIONS:
                    return previous, aggregate, conflict, True
                await self.resolver.auto_resolve(conflict, apply_to_inventory=False)
                value = conflict.resolved_value["available"]

            elif detection.outcome == DetectionOutcome.MISMATCH:
                # The merchant edited stock by hand: record it, let the store value win
                conflict = await self.resolver.create_conflict(
                    ConflictType.INVENTORY_MISMATCH,
                    product.id,
                    store.id,
                    central_value={"available": expected},
                    store_value={"available": observed},
                    resolution_strategy=ResolutionStrategy.USE_STORE,
                )
                await self.resolver.resolve(conflict, ResolutionStrategy.USE_STORE, apply_to_inventory=False)

        if location is not None:
            await self.inventory.upsert_location(product.id, location.id, {"available": value}, actor=actor)
        else:
            await self.inventory.set_aggregate_direct(product.id, {"available": value}, actor=actor)

        aggregate = await self.inventory.get_aggregate(product.id)
        return previous, aggregate, conflict, False

    async def _expected_value(self, product_id: int, location: Optional[StoreLocation],
                              previous: Dict[str, int]) -> Optional[int]:
        """What central believes the store holds at this location, if it can tell"""
        if location is not None:
            row = await self.inventory.get_location_row(product_id, location.id)
            if row is not None:
                return row.available_quantity
            if await self.inventory.has_location_rows(product_id):
                return None
        return previous["available"]

    # --- Propagation ---

    async def propagate(self, product_id: int, quantity: int, source_store_id: Optional[int] = None,
                        triggered_by: Optional[str] = None, only_store_id: Optional[int] = None) -> SyncResult:
        """
        Push `quantity` to every active, sync-enabled store mapped to the
        product except the source store.

        Targets are resolved first, one at a time on this session. Pushes then
        run concurrently, each bounded by SYNC_PUSH_TIMEOUT, and each target's
        CENTRAL_TO_STORE operation is committed as soon as its push settles.
        """
        result = SyncResult()
        result.product_id = product_id
        result.new_value = {"available": quantity}

        mappings = await self.mapper.get_mappings_for_product(product_id)
        targets: List[_PushTarget] = []
        for mapping in mappings:
            store = mapping.store
            if store.id == source_store_id:
                continue
            if only_store_id is not None and store.id != only_store_id:
                continue
            if not store.accepts_sync:
                logger.debug(f"Skipping {store.shop_domain}: inactive or sync disabled")
                continue
            targets.append(await self._resolve_target(mapping, store))

        if not targets:
            await self.db.commit()

        pushes = [asyncio.ensure_future(self._push(target, quantity)) for target in targets]
        try:
            # Each hop is recorded as soon as its push settles, so a slow store
            # never delays the push record the echo filter reads for the others
            for settled in asyncio.as_completed(pushes):
                target, error = await settled
                await self._record_push(result, product_id, target, quantity, error, triggered_by)
        finally:
            for push in pushes:
                if not push.done():
                    push.cancel()

        result.success = not result.stores_failed
        result.details = {
            "stores_synced": len(result.stores_synced),
            "stores_failed": len(result.stores_failed),
        }
        if result.success:
            result.message = f"Synced to {len(result.stores_synced)} store(s)"
        else:
            result.message = (f"Synced to {len(result.stores_synced)} store(s), "
                              f"{len(result.stores_failed)} failed")
        return result

    async def _resolve_target(self, mapping: ProductStoreMapping, store: Store) -> _PushTarget:
        target = _PushTarget(mapping, store)
        if not mapping.shopify_inventory_item_id:
            target.error = "Mapping has no inventory item id"
            return target
        try:
            target.platform = self.mapper.get_platform(store)
            target.location = await self.mapper.get_primary_location(store)
            if target.location is None:
                target.error = "No location available"
        except Exception as e:
            target.error = f"Could not resolve target: {e}"
        return target

    async def _push(self, target: _PushTarget, quantity: int) -> Tuple[_PushTarget, Optional[str]]:
        """Run one push. Returns (target, error message or None), never raises."""
        if target.error:
            return target, target.error
        change = QuantityChange(
            inventory_item_id=target.mapping.shopify_inventory_item_id,
            location_id=target.location.shopify_location_id,
            quantity=quantity,
        )
        try:
            await asyncio.wait_for(
                target.platform.set_quantities([change], reason="correction"),
                timeout=self.settings.SYNC_PUSH_TIMEOUT,
            )
        except asyncio.TimeoutError:
            return target, f"Push timed out after {self.settings.SYNC_PUSH_TIMEOUT}s"
        except Exception as e:
            return target, str(e) or e.__class__.__name__
        return target, None

    async def _record_push(self, result: SyncResult, product_id: int, target: _PushTarget, quantity: int,
                           error: Optional[str], triggered_by: Optional[str]):
        await self.sync_log.record(
            OperationType.INVENTORY_UPDATE,
            SyncDirection.CENTRAL_TO_STORE,
            product_id=product_id,
            store_id=target.store.id,
            status=SyncStatus.FAILED if error else SyncStatus.COMPLETED,
            new_value={"available": quantity},
            triggered_by=triggered_by,
            error_message=error,
        )
        if error:
            target.mapping.sync_status = SyncStatus.FAILED.value
            result.stores_failed.append(target.shop_domain)
            result.errors.append(f"{target.shop_domain}: {error}")
            logger.error(f"Push of product {product_id} to {target.shop_domain} failed: {error}")
        else:
            target.mapping.sync_status = SyncStatus.COMPLETED.value
            target.mapping.last_synced_at = utc_now()
            result.stores_synced.append(target.shop_domain)
        await self.db.commit()

    # --- Queries and one-off syncs ---

    async def get_inventory_status(self, sku: str) -> Dict[str, Any]:
        product = await self.mapper.get_product_by_sku(sku)
        if product is None:
            raise ProductNotFoundError(f"Product not found: {sku}")
        aggregate = await self.inventory.get_aggregate(product.id)
        if aggregate is None:
            raise ProductNotFoundError(f"Product has no inventory: {sku}")

        mappings = await self.mapper.get_mappings_for_product(product.id)
        return {
            "sku": sku,
            "central_quantity": aggregate.available_quantity,
            "committed_quantity": aggregate.committed_quantity,
            "incoming_quantity": aggregate.incoming_quantity,
            "last_updated": aggregate.last_adjusted_at,
            "stores": [
                {
                    "shop_domain": m.store.shop_domain,
                    "store_id": m.store_id,
                    "is_active": m.store.is_active,
                    "sync_enabled": m.store.sync_enabled,
                    "last_synced": m.last_synced_at,
                    "sync_status": m.sync_status,
                }
                for m in mappings
            ],
            "has_pending_conflicts": await self.resolver.has_pending_conflicts(product.id),
        }

    async def sync_product_to_store(self, sku: str, shop_domain: str) -> SyncResult:
        """Push the current central quantity for one SKU to one store"""
        product = await self.mapper.get_product_by_sku(sku)
        if product is None:
            raise ProductNotFoundError(f"Product not found: {sku}")
        store = await self.mapper.get_store(shop_domain)
        if store is None:
            raise StoreNotFoundError(f"Store not found: {shop_domain}")

        mapping = await self.mapper.get_mapping(product.id, store.id)
        if mapping is None:
            mapping = await self.mapper.discover_on_demand(store, sku)
            if mapping is None:
                result = SyncResult()
                result.product_id = product.id
                result.sku = sku
                result.message = f"{sku} is not mapped to {shop_domain}"
                return result
            await self.db.commit()

        aggregate = await self.inventory.get_aggregate(product.id)
        quantity = aggregate.available_quantity if aggregate else 0
        result = await self.propagate(product.id, quantity, only_store_id=store.id, triggered_by="manual")
        result.sku = sku
        return result
