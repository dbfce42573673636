import pytest
from sqlalchemy import func, select

from stocksync.models.inventory import InventoryAggregate
from stocksync.models.store import StoreLocation
from stocksync.services.inventory_store import InventoryStore


async def _second_location(db_session, store) -> StoreLocation:
    location = StoreLocation(store_id=store.id, shopify_location_id="gid://shopify/Location/9999", name="Backroom")
    db_session.add(location)
    await db_session.flush()
    return location


async def _main_location(db_session, store) -> StoreLocation:
    stmt = select(StoreLocation).where(StoreLocation.store_id == store.id).order_by(StoreLocation.id)
    return (await db_session.execute(stmt)).scalars().first()


@pytest.mark.asyncio
async def test_apply_delta_returns_previous_and_updates(db_session, seed):
    product = await seed.product("SKU-1", available=100, committed=0)
    store = InventoryStore(db_session)

    previous, aggregate = await store.apply_delta(product.id, available_delta=-2, committed_delta=2, actor="test")

    assert previous == {"available": 100, "committed": 0, "incoming": 0}
    assert aggregate.available_quantity == 98
    assert aggregate.committed_quantity == 2
    assert aggregate.last_adjusted_by == "test"


@pytest.mark.asyncio
async def test_apply_delta_never_goes_negative(db_session, seed):
    product = await seed.product("SKU-1", available=100, committed=1)
    store = InventoryStore(db_session)

    _, aggregate = await store.apply_delta(product.id, available_delta=-200, committed_delta=-5, actor="test")

    assert aggregate.available_quantity == 0
    assert aggregate.committed_quantity == 0


@pytest.mark.asyncio
async def test_lock_aggregate_creates_missing_row_once(db_session, seed):
    product = await seed.product("SKU-1")
    await db_session.delete(await InventoryStore(db_session).get_aggregate(product.id))
    await db_session.commit()

    store = InventoryStore(db_session)
    first = await store.lock_aggregate(product.id)
    second = await store.lock_aggregate(product.id)

    assert first.id == second.id
    assert first.available_quantity == 0
    count = (await db_session.execute(
        select(func.count(InventoryAggregate.id)).where(InventoryAggregate.product_id == product.id)
    )).scalar()
    assert count == 1


@pytest.mark.asyncio
async def test_aggregate_is_sum_of_location_rows(db_session, seed):
    shop = await seed.store("store-a.myshopify.com")
    product = await seed.product("SKU-1", available=500)
    main = await _main_location(db_session, shop)
    backroom = await _second_location(db_session, shop)
    store = InventoryStore(db_session)

    await store.upsert_location(product.id, main.id, {"available": 30, "committed": 2}, actor="test")
    await store.upsert_location(product.id, backroom.id, {"available": 20, "incoming": 5}, actor="test")

    aggregate = await store.get_aggregate(product.id)
    assert aggregate.as_dict() == {"available": 50, "committed": 2, "incoming": 5}

    # Recalculating again changes nothing
    again = await store.recalculate_aggregate(product.id, actor="test")
    assert again.as_dict() == {"available": 50, "committed": 2, "incoming": 5}


@pytest.mark.asyncio
async def test_upsert_location_keeps_fields_not_provided(db_session, seed):
    shop = await seed.store("store-a.myshopify.com")
    product = await seed.product("SKU-1")
    main = await _main_location(db_session, shop)
    store = InventoryStore(db_session)

    await store.upsert_location(product.id, main.id, {"available": 10, "committed": 3}, actor="test")
    row = await store.upsert_location(product.id, main.id, {"available": -4}, actor="test")

    assert row.available_quantity == 0
    assert row.committed_quantity == 3


@pytest.mark.asyncio
async def test_skip_recalc_defers_aggregate_update(db_session, seed):
    shop = await seed.store("store-a.myshopify.com")
    product = await seed.product("SKU-1", available=7)
    main = await _main_location(db_session, shop)
    store = InventoryStore(db_session)

    await store.upsert_location(product.id, main.id, {"available": 40}, actor="test", skip_recalc=True)
    assert (await store.get_aggregate(product.id)).available_quantity == 7

    await store.recalculate_aggregate(product.id)
    assert (await store.get_aggregate(product.id)).available_quantity == 40


@pytest.mark.asyncio
async def test_recalculate_without_location_rows_leaves_aggregate(db_session, seed):
    product = await seed.product("SKU-1", available=12)

    aggregate = await InventoryStore(db_session).recalculate_aggregate(product.id)

    assert aggregate.available_quantity == 12


@pytest.mark.asyncio
async def test_set_aggregate_direct_without_location_rows(db_session, seed):
    product = await seed.product("SKU-1", available=12)

    aggregate = await InventoryStore(db_session).set_aggregate_direct(product.id, {"available": 33}, actor="test")

    assert aggregate.available_quantity == 33


@pytest.mark.asyncio
async def test_set_aggregate_direct_recalculates_when_location_rows_exist(db_session, seed):
    shop = await seed.store("store-a.myshopify.com")
    product = await seed.product("SKU-1")
    main = await _main_location(db_session, shop)
    store = InventoryStore(db_session)
    await store.upsert_location(product.id, main.id, {"available": 15}, actor="test")

    aggregate = await store.set_aggregate_direct(product.id, {"available": 99}, actor="test")
    assert aggregate.available_quantity == 15

    forced = await store.set_aggregate_direct(product.id, {"available": 99}, actor="test", force=True)
    assert forced.available_quantity == 99


@pytest.mark.asyncio
async def test_location_delta_keeps_aggregate_a_sum_of_rows(db_session, seed):
    shop = await seed.store("store-a.myshopify.com")
    product = await seed.product("SKU-1")
    main = await _main_location(db_session, shop)
    backroom = await _second_location(db_session, shop)
    store = InventoryStore(db_session)
    await store.upsert_location(product.id, main.id, {"available": 60}, actor="test", skip_recalc=True)
    await store.upsert_location(product.id, backroom.id, {"available": 40}, actor="test")

    previous, aggregate = await store.apply_location_delta(
        product.id, main.id, available_delta=-2, committed_delta=2, actor="order"
    )

    assert previous["available"] == 100
    assert aggregate.available_quantity == 98
    assert aggregate.committed_quantity == 2
    assert (await store.get_location_row(product.id, main.id)).available_quantity == 58

    recalculated = await store.recalculate_aggregate(product.id, actor="test")
    assert recalculated.as_dict() == {"available": 98, "committed": 2, "incoming": 0}


@pytest.mark.asyncio
async def test_location_delta_larger_than_row_takes_from_other_rows(db_session, seed):
    shop = await seed.store("store-a.myshopify.com")
    product = await seed.product("SKU-1")
    main = await _main_location(db_session, shop)
    backroom = await _second_location(db_session, shop)
    store = InventoryStore(db_session)
    await store.upsert_location(product.id, main.id, {"available": 10}, actor="test", skip_recalc=True)
    await store.upsert_location(product.id, backroom.id, {"available": 40}, actor="test")

    _, aggregate = await store.apply_location_delta(product.id, main.id, available_delta=-25, actor="order")

    assert aggregate.available_quantity == 25
    assert (await store.get_location_row(product.id, main.id)).available_quantity == 0
    assert (await store.get_location_row(product.id, backroom.id)).available_quantity == 25

    _, emptied = await store.apply_location_delta(product.id, main.id, available_delta=-200, actor="order")
    assert emptied.available_quantity == 0
