import pytest
from sqlalchemy import select

from stocksync.core.enums import OperationType, SyncStatus
from stocksync.core.exceptions import ShopifyAPIError
from stocksync.integrations.base import PlatformLocation, PlatformVariant
from stocksync.models.product_mapping import ProductStoreMapping
from stocksync.models.store import StoreLocation
from stocksync.models.sync_operation import SyncOperation
from stocksync.services.inventory_store import InventoryStore
from stocksync.services.product_mapper import ProductMapper
from tests.conftest import inventory_item_id


def _variant(sku: str, item: str = "777", quantity: int = 7) -> PlatformVariant:
    return PlatformVariant(
        variant_id=f"gid://shopify/ProductVariant/{item}1",
        sku=sku,
        title="Discovered Widget",
        product_id=f"gid://shopify/Product/{item}2",
        inventory_item_id=f"gid://shopify/InventoryItem/{item}",
        inventory_quantity=quantity,
    )


"""
1. Mapping resolution fallback order
"""

@pytest.mark.asyncio
async def test_resolve_mapping_by_gid(db_session, three_stores, seed, platform_factory):
    store_a, _, _ = three_stores
    product = await seed.product("SKU-1", stores=three_stores)
    mapper = ProductMapper(db_session, platform_factory)

    raw = inventory_item_id(product, store_a)
    by_raw = await mapper.resolve_mapping(store_a, raw)
    by_gid = await mapper.resolve_mapping(store_a, f"gid://shopify/InventoryItem/{raw}")

    assert by_raw.product_id == product.id
    assert by_gid.id == by_raw.id
    assert by_raw.store_id == store_a.id


@pytest.mark.asyncio
async def test_resolve_mapping_falls_back_to_raw_id(db_session, three_stores, seed, platform_factory):
    store_a, _, _ = three_stores
    product = await seed.product("SKU-1")
    db_session.add(ProductStoreMapping(product_id=product.id, store_id=store_a.id, shopify_inventory_item_id="4242"))
    await db_session.commit()

    mapping = await ProductMapper(db_session, platform_factory).resolve_mapping(store_a, "gid://shopify/InventoryItem/4242")

    assert mapping is not None
    assert mapping.product.sku == "SKU-1"


@pytest.mark.asyncio
async def test_resolve_mapping_discovers_unmapped_item(db_session, three_stores, platform_factory):
    store_a, _, _ = three_stores
    platform = platform_factory.get(store_a.shop_domain)
    platform.inventory_items["777"] = "SKU-NEW"
    platform.variants["SKU-NEW"] = _variant("SKU-NEW", quantity=7)

    mapping = await ProductMapper(db_session, platform_factory).resolve_mapping(store_a, 777)

    assert mapping.product.sku == "SKU-NEW"
    assert mapping.shopify_inventory_item_id == "gid://shopify/InventoryItem/777"
    aggregate = await InventoryStore(db_session).get_aggregate(mapping.product_id)
    assert aggregate.available_quantity == 7


@pytest.mark.asyncio
async def test_resolve_mapping_unknown_item_returns_none(db_session, three_stores, platform_factory):
    store_a, _, _ = three_stores

    assert await ProductMapper(db_session, platform_factory).resolve_mapping(store_a, 31337) is None


@pytest.mark.asyncio
async def test_discover_on_demand_does_not_reseed_existing_product(db_session, three_stores, seed, platform_factory):
    store_a, _, _ = three_stores
    product = await seed.product("SKU-1", available=50)
    platform_factory.get(store_a.shop_domain).variants["SKU-1"] = _variant("SKU-1", quantity=3)

    mapping = await ProductMapper(db_session, platform_factory).discover_on_demand(store_a, "SKU-1")

    assert mapping.product_id == product.id
    assert (await InventoryStore(db_session).get_aggregate(product.id)).available_quantity == 50


@pytest.mark.asyncio
async def test_discover_on_demand_swallows_platform_errors(db_session, three_stores, mocker, platform_factory):
    store_a, _, _ = three_stores
    mocker.patch.object(platform_factory.get(store_a.shop_domain), "find_variant_by_sku",
                        side_effect=ShopifyAPIError("boom", status_code=500))

    assert await ProductMapper(db_session, platform_factory).discover_on_demand(store_a, "SKU-X") is None


"""
2. Locations
"""

@pytest.mark.asyncio
async def test_get_or_create_location_syncs_from_platform(db_session, seed, platform_factory):
    store = await seed.store("store-a.myshopify.com")
    platform_factory.get(store.shop_domain).locations = [
        PlatformLocation(id="gid://shopify/Location/555", name="Warehouse")
    ]

    location = await ProductMapper(db_session, platform_factory).get_or_create_location(store, 555)

    assert location.shopify_location_id == "gid://shopify/Location/555"
    assert location.name == "Warehouse"


@pytest.mark.asyncio
async def test_get_or_create_location_falls_back_to_placeholder(db_session, seed, platform_factory):
    store = await seed.store("store-a.myshopify.com")
    platform_factory.get(store.shop_domain).locations_fail = True
    mapper = ProductMapper(db_session, platform_factory)

    location = await mapper.get_or_create_location(store, "gid://shopify/Location/999")
    again = await mapper.get_or_create_location(store, 999)

    assert location.name == "Location 999"
    assert again.id == location.id
    rows = (await db_session.execute(
        select(StoreLocation).where(StoreLocation.store_id == store.id)
    )).scalars().all()
    assert len(rows) == 2  # seeded main location plus the placeholder


"""
3. Catalog sync
"""

@pytest.mark.asyncio
async def test_sync_product_catalog(db_session, seed, platform_factory):
    store = await seed.store("store-a.myshopify.com")
    platform = platform_factory.get(store.shop_domain)
    platform.locations = [PlatformLocation(id="gid://shopify/Location/1", name="Main")]
    platform.pages = [
        {"products": [{
            "id": "gid://shopify/Product/1",
            "title": "Guitar",
            "variants": [
                {"variant_id": "gid://shopify/ProductVariant/11", "sku": "GTR-1",
                 "inventory_item_id": "gid://shopify/InventoryItem/111", "inventory_quantity": 9,
                 "levels": [
                     {"location_id": "gid://shopify/Location/1", "available": 4, "committed": 1, "incoming": 0},
                     {"location_id": "gid://shopify/Location/2", "available": 5, "committed": 0, "incoming": 2},
                 ]},
                {"variant_id": "gid://shopify/ProductVariant/12", "sku": None,
                 "inventory_item_id": "gid://shopify/InventoryItem/112", "levels": []},
            ],
        }]},
        {"products": [{
            "id": "gid://shopify/Product/2",
            "title": "Amp",
            "variants": [
                {"variant_id": "gid://shopify/ProductVariant/21", "sku": "AMP-1",
                 "inventory_item_id": "gid://shopify/InventoryItem/211", "inventory_quantity": 3, "levels": []},
            ],
        }]},
    ]
    mapper = ProductMapper(db_session, platform_factory)

    stats = await mapper.sync_product_catalog(store)

    assert stats == {"total": 2, "created": 2, "updated": 0, "errors": 0}

    guitar = await mapper.get_product_by_sku("GTR-1")
    aggregate = await InventoryStore(db_session).get_aggregate(guitar.id)
    assert aggregate.as_dict() == {"available": 9, "committed": 1, "incoming": 2}

    amp = await mapper.get_product_by_sku("AMP-1")
    assert (await InventoryStore(db_session).get_aggregate(amp.id)).available_quantity == 3

    bulk = (await db_session.execute(
        select(SyncOperation).where(SyncOperation.operation_type == OperationType.BULK_SYNC.value)
    )).scalars().all()
    assert len(bulk) == 1
    assert bulk[0].product_id is None
    assert bulk[0].status == SyncStatus.COMPLETED.value
    assert bulk[0].started_at is not None
    assert bulk[0].new_value["created"] == 2


@pytest.mark.asyncio
async def test_sync_product_catalog_records_failed_operation(db_session, seed, platform_factory, mocker):
    store = await seed.store("store-a.myshopify.com")
    store_id = store.id
    platform = platform_factory.get(store.shop_domain)
    mocker.patch.object(platform, "get_products_page", side_effect=ShopifyAPIError("boom", status_code=500))
    mapper = ProductMapper(db_session, platform_factory)

    with pytest.raises(ShopifyAPIError):
        await mapper.sync_product_catalog(store)

    bulk = (await db_session.execute(
        select(SyncOperation).where(
            SyncOperation.operation_type == OperationType.BULK_SYNC.value,
            SyncOperation.store_id == store_id,
        )
    )).scalar_one()
    assert bulk.status == SyncStatus.FAILED.value
    assert "boom" in bulk.error_message


@pytest.mark.asyncio
async def test_get_all_mappings_lists_every_store(db_session, three_stores, seed, platform_factory):
    await seed.product("SKU-ALL", stores=three_stores)
    mapper = ProductMapper(db_session, platform_factory)

    mappings = await mapper.get_all_mappings("SKU-ALL")

    assert sorted(m.store.shop_domain for m in mappings) == [s.shop_domain for s in three_stores]
    assert await mapper.get_all_mappings("UNKNOWN") == []
