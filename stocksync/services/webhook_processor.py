"""
Webhook processor: turns one Shopify webhook into ledger-safe state changes.

Order, cancel and refund webhooks become per-line-item InventoryChange deltas.
Inventory level webhooks become absolute changes after passing the echo filter.
Product and uninstall webhooks maintain the registry directly.

The engine never sees raw webhook JSON. Payloads are validated into the
typed models in stocksync.integrations.events first.
"""
import logging
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from stocksync.core.config import get_settings
from stocksync.core.enums import (
    ChangeCause,
    OperationType,
    SyncDirection,
    SyncStatus,
    WebhookTopic,
)
from stocksync.core.exceptions import PlatformServiceError, WebhookValidationError
from stocksync.core.utils import quantity_value, utc_now
from stocksync.integrations.events import (
    InventoryChange,
    InventoryLevelPayload,
    OrderPayload,
    ProductPayload,
    RefundPayload,
)
from stocksync.services.product_mapper import PlatformFactory
from stocksync.services.shopify.client import to_gid
from stocksync.services.sync_engine import SyncEngine

logger = logging.getLogger(__name__)


class EventProcessingResult:
    """Result of processing a webhook event"""
    def __init__(self):
        self.success: bool = False
        self.message: str = ""
        self.skipped: bool = False
        self.product_ids: List[int] = []
        self.errors: List[str] = []
        self.details: Dict[str, Any] = {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "skipped": self.skipped,
            "product_ids": self.product_ids,
            "errors": self.errors,
            "details": self.details,
        }


def _parse(model, payload: Dict[str, Any]):
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        raise WebhookValidationError(f"Invalid {model.__name__}: {e}")


class WebhookProcessor:
    def __init__(self, db: AsyncSession, platform_factory: Optional[PlatformFactory] = None):
        self.db = db
        self.settings = get_settings()
        self.engine = SyncEngine(db, platform_factory)
        self.mapper = self.engine.mapper
        self.sync_log = self.engine.sync_log

        self._handlers: Dict[str, Callable] = {
            WebhookTopic.ORDERS_CREATE.value: self.handle_order_created,
            WebhookTopic.ORDERS_CANCELLED.value: self.handle_order_cancelled,
            WebhookTopic.REFUNDS_CREATE.value: self.handle_refund_created,
            WebhookTopic.INVENTORY_LEVELS_UPDATE.value: self.handle_inventory_level_update,
            WebhookTopic.PRODUCTS_CREATE.value: self.handle_product_upsert,
            WebhookTopic.PRODUCTS_UPDATE.value: self.handle_product_upsert,
            WebhookTopic.PRODUCTS_DELETE.value: self.handle_product_delete,
            WebhookTopic.APP_UNINSTALLED.value: self.handle_app_uninstalled,
        }

    async def process(self, topic: str, shop_domain: str, event_id: str, payload: Dict[str, Any]) -> EventProcessingResult:
        """
        Route a webhook to its handler.

        Raises:
            WebhookValidationError: payload does not match the topic's shape (not retryable)
            Exception: anything from the central update, so the job can be retried
        """
        handler = self._handlers.get(topic)
        if handler is None:
            result = EventProcessingResult()
            result.success = True
            result.skipped = True
            result.message = f"Unhandled topic {topic}"
            logger.warning(f"{result.message} from {shop_domain} (event {event_id})")
            return result

        logger.info(f"Processing {topic} webhook {event_id} from {shop_domain}")
        return await handler(shop_domain, event_id, payload, topic=topic)

    # --- Orders, cancellations, refunds ---

    async def _apply_line_items(self, shop_domain: str, event_id: str, items: List[Dict[str, Any]],
                                cause: ChangeCause, sign: int) -> EventProcessingResult:
        """
        Apply each line item on its own. An unknown SKU or a platform error
        is logged and skipped without affecting its siblings. Persistence
        errors propagate so the job is retried.

        Items an earlier attempt of the same event already applied centrally
        are not applied again; their propagation is re-run instead.
        sign=-1 sells (available down, committed up); sign=+1 restocks.
        """
        result = EventProcessingResult()
        triggered_by = f"webhook-{event_id}"
        processed = 0
        resumed = 0
        occurrences: Dict[str, int] = {}

        for item in items:
            sku, quantity = item["sku"], item["quantity"]
            if not sku or quantity <= 0:
                logger.debug(f"Skipping line item without SKU or quantity in event {event_id}")
                continue

            # The same SKU can appear on several lines of one order
            occurrence = occurrences.get(sku, 0)
            occurrences[sku] = occurrence + 1

            product = await self.mapper.get_product_by_sku(sku)
            if product is not None:
                applied = await self.sync_log.find_inbound_for_trigger(product.id, triggered_by)
                if len(applied) > occurrence:
                    logger.info(f"{sku} from event {event_id} already applied, resuming propagation only")
                    await self._resume_propagation(shop_domain, product.id, str(applied[occurrence].id), result)
                    processed += 1
                    resumed += 1
                    result.product_ids.append(product.id)
                    continue

            change = InventoryChange(
                shop_domain=shop_domain,
                sku=sku,
                cause=cause,
                available_delta=sign * quantity,
                committed_delta=-sign * quantity,
                event_id=event_id,
                triggered_by=triggered_by,
            )
            try:
                sync_result = await self.engine.process_change(change)
            except PlatformServiceError as e:
                result.errors.append(f"{sku}: {e}")
                logger.error(f"Line item {sku} in event {event_id} failed: {e}")
                continue

            if sync_result.product_id is None:
                result.errors.append(f"{sku}: {sync_result.message}")
                continue

            processed += 1
            result.product_ids.append(sync_result.product_id)
            if sync_result.stores_failed:
                result.errors.extend(sync_result.errors)

        result.success = True
        result.message = f"Applied {processed} of {len(items)} line item(s)"
        result.details = {"line_items": len(items), "applied": processed, "resumed": resumed}
        return result

    async def _resume_propagation(self, shop_domain: str, product_id: int, source_operation_id: str,
                                  result: EventProcessingResult):
        store = await self.mapper.get_store(shop_domain)
        aggregate = await self.engine.inventory.get_aggregate(product_id)
        if aggregate is None:
            return
        propagation = await self.engine.propagate(
            product_id,
            aggregate.available_quantity,
            source_store_id=store.id if store else None,
            triggered_by=source_operation_id,
        )
        if propagation.stores_failed:
            result.errors.extend(propagation.errors)

    async def handle_order_created(self, shop_domain: str, event_id: str, payload: Dict[str, Any],
                                   topic: str = None) -> EventProcessingResult:
        order = _parse(OrderPayload, payload)
        items = [{"sku": li.sku, "quantity": li.quantity} for li in order.line_items]
        return await self._apply_line_items(shop_domain, event_id, items, ChangeCause.ORDER_CREATED, sign=-1)

    async def handle_order_cancelled(self, shop_domain: str, event_id: str, payload: Dict[str, Any],
                                     topic: str = None) -> EventProcessingResult:
        order = _parse(OrderPayload, payload)
        items = [{"sku": li.sku, "quantity": li.quantity} for li in order.line_items]
        return await self._apply_line_items(shop_domain, event_id, items, ChangeCause.ORDER_CANCELLED, sign=1)

    async def handle_refund_created(self, shop_domain: str, event_id: str, payload: Dict[str, Any],
                                    topic: str = None) -> EventProcessingResult:
        refund = _parse(RefundPayload, payload)
        items = []
        for rli in refund.refund_line_items:
            if not rli.restocks:
                logger.info(f"Refund {refund.id}: {rli.sku} not restocked, skipping")
                continue
            items.append({"sku": rli.sku, "quantity": rli.quantity})
        return await self._apply_line_items(shop_domain, event_id, items, ChangeCause.REFUND_CREATED, sign=1)

    # --- Inventory levels ---

    async def is_echo(self, product_id: int, store_id: int, observed: int) -> bool:
        """
        True when this store recently received a push of exactly `observed`
        for the product, meaning the webhook reflects our own write.
        """
        push = await self.sync_log.find_recent_push(product_id, store_id, self.settings.ECHO_WINDOW_SECONDS)
        if push is None:
            return False
        return quantity_value(push.new_value) == observed

    async def handle_inventory_level_update(self, shop_domain: str, event_id: str, payload: Dict[str, Any],
                                            topic: str = None) -> EventProcessingResult:
        level = _parse(InventoryLevelPayload, payload)
        result = EventProcessingResult()

        if level.available is None:
            result.success = True
            result.skipped = True
            result.message = "No available quantity in payload"
            return result

        store = await self.mapper.get_store(shop_domain)
        if store is None:
            result.message = f"Unknown store {shop_domain}"
            logger.warning(result.message)
            return result

        mapping = await self.mapper.resolve_mapping(store, level.inventory_item_id)
        if mapping is None:
            result.success = True
            result.skipped = True
            result.message = f"No mapping for inventory item {level.inventory_item_id} in {shop_domain}"
            logger.warning(result.message)
            return result
        product = mapping.product

        if await self.is_echo(product.id, store.id, level.available):
            result.success = True
            result.skipped = True
            result.product_ids.append(product.id)
            result.message = f"Echo of our own push ({level.available}) for {product.sku}, discarded"
            result.details = {"echo": True}
            logger.info(f"{result.message} from {shop_domain}")
            await self.db.commit()
            return result

        change = InventoryChange(
            shop_domain=shop_domain,
            sku=product.sku,
            cause=ChangeCause.MANUAL_ADJUSTMENT,
            absolute_available=level.available,
            location_id=to_gid("Location", level.location_id) if level.location_id is not None else None,
            event_id=event_id,
            triggered_by=f"webhook-{event_id}",
        )
        sync_result = await self.engine.process_change(change)

        result.success = sync_result.product_id is not None
        result.product_ids.append(product.id)
        result.message = sync_result.message
        result.errors = sync_result.errors
        result.details = sync_result.to_dict()
        return result

    # --- Products ---

    async def handle_product_upsert(self, shop_domain: str, event_id: str, payload: Dict[str, Any],
                                    topic: str = None) -> EventProcessingResult:
        product_payload = _parse(ProductPayload, payload)
        result = EventProcessingResult()
        store = await self.mapper.get_store(shop_domain)
        if store is None:
            result.message = f"Unknown store {shop_domain}"
            return result

        operation_type = (OperationType.PRODUCT_CREATE if topic == WebhookTopic.PRODUCTS_CREATE.value
                          else OperationType.PRODUCT_UPDATE)
        product_gid = product_payload.admin_graphql_api_id or to_gid("Product", product_payload.id)
        actor = f"webhook-{event_id}"

        for variant in product_payload.variants:
            if not variant.sku:
                continue
            product, _, created = await self.mapper.upsert_product_from_variant(
                store,
                product_gid,
                product_payload.title,
                {
                    "sku": variant.sku,
                    "variant_id": variant.admin_graphql_api_id or to_gid("ProductVariant", variant.id),
                    "inventory_item_id": (to_gid("InventoryItem", variant.inventory_item_id)
                                          if variant.inventory_item_id is not None else None),
                    "tracked": variant.inventory_management == "shopify",
                    "inventory_policy": variant.inventory_policy,
                },
            )
            if variant.inventory_management == "shopify" and variant.inventory_quantity is not None:
                await self.engine.inventory.set_aggregate_direct(
                    product.id, {"available": variant.inventory_quantity}, actor=actor
                )

            await self.sync_log.record(
                operation_type,
                SyncDirection.STORE_TO_CENTRAL,
                product_id=product.id,
                store_id=store.id,
                status=SyncStatus.COMPLETED,
                new_value={"sku": variant.sku, "created": created},
                triggered_by=actor,
            )
            result.product_ids.append(product.id)

        await self.db.commit()
        result.success = True
        result.message = f"Upserted {len(result.product_ids)} variant(s) from {shop_domain}"
        return result

    async def handle_product_delete(self, shop_domain: str, event_id: str, payload: Dict[str, Any],
                                    topic: str = None) -> EventProcessingResult:
        product_payload = _parse(ProductPayload, payload)
        result = EventProcessingResult()
        store = await self.mapper.get_store(shop_domain)
        if store is None:
            result.message = f"Unknown store {shop_domain}"
            return result

        removed = await self.mapper.delete_mappings_for_product(store, product_payload.id)
        await self.sync_log.record(
            OperationType.PRODUCT_DELETE,
            SyncDirection.STORE_TO_CENTRAL,
            product_id=None,
            store_id=store.id,
            status=SyncStatus.COMPLETED,
            new_value={"shopify_product_id": to_gid("Product", product_payload.id), "mappings_removed": removed},
            triggered_by=f"webhook-{event_id}",
        )
        await self.db.commit()

        result.success = True
        result.message = f"Removed {removed} mapping(s) for product {product_payload.id} in {shop_domain}"
        result.details = {"mappings_removed": removed}
        return result

    # --- App lifecycle ---

    async def handle_app_uninstalled(self, shop_domain: str, event_id: str, payload: Dict[str, Any],
                                     topic: str = None) -> EventProcessingResult:
        """Deactivate the store. Mappings and history are kept."""
        result = EventProcessingResult()
        store = await self.mapper.get_store(shop_domain)
        if store is None:
            result.success = True
            result.skipped = True
            result.message = f"Unknown store {shop_domain}"
            return result

        store.is_active = False
        store.sync_enabled = False
        store.uninstalled_at = utc_now()
        await self.db.commit()

        result.success = True
        result.message = f"Store {shop_domain} deactivated"
        logger.info(result.message)
        return result
