import pytest

from stocksync.core.enums import (
    ConflictType,
    DetectionOutcome,
    OperationType,
    ResolutionStrategy,
    SyncDirection,
    SyncStatus,
)
from stocksync.core.exceptions import ConflictResolutionError
from stocksync.services.conflict_resolver import ConflictResolver, compute_resolution
from stocksync.services.inventory_store import InventoryStore
from stocksync.services.sync_log import SyncOperationLog

"""
1. Strategy arithmetic
"""

@pytest.mark.parametrize("strategy, expected", [
    (ResolutionStrategy.USE_LOWEST, 95),
    (ResolutionStrategy.USE_HIGHEST, 100),
    (ResolutionStrategy.USE_DATABASE, 100),
    (ResolutionStrategy.USE_STORE, 95),
    (ResolutionStrategy.AVERAGE, 98),
])
def test_compute_resolution(strategy, expected):
    assert compute_resolution(strategy, central=100, store=95) == expected


def test_average_rounds_half_up():
    assert compute_resolution(ResolutionStrategy.AVERAGE, central=3, store=4) == 4
    assert compute_resolution(ResolutionStrategy.AVERAGE, central=0, store=1) == 1


def test_manual_strategy_refuses_to_compute():
    with pytest.raises(ConflictResolutionError):
        compute_resolution(ResolutionStrategy.MANUAL, central=100, store=95)


"""
2. Detection
"""

@pytest.mark.asyncio
async def test_detect_equal_values_is_not_a_conflict(db_session, three_stores, seed):
    store_a, _, _ = three_stores
    product = await seed.product("SKU-1", available=10, stores=three_stores)

    detection = await ConflictResolver(db_session).detect(product.id, store_a.id, expected=10, actual=10)

    assert detection.outcome == DetectionOutcome.NONE
    assert detection.has_conflict is False
    assert detection.conflict_type is None


@pytest.mark.asyncio
async def test_detect_mismatch_without_recent_activity(db_session, three_stores, seed):
    store_a, _, _ = three_stores
    product = await seed.product("SKU-1", available=10, stores=three_stores)

    detection = await ConflictResolver(db_session).detect(product.id, store_a.id, expected=10, actual=7)

    assert detection.outcome == DetectionOutcome.MISMATCH
    assert detection.conflict_type == ConflictType.INVENTORY_MISMATCH


@pytest.mark.asyncio
async def test_detect_collision_when_other_store_changed_recently(db_session, three_stores, seed):
    store_a, store_b, _ = three_stores
    product = await seed.product("SKU-1", available=10, stores=three_stores)
    await SyncOperationLog(db_session).record(
        OperationType.INVENTORY_UPDATE,
        SyncDirection.STORE_TO_CENTRAL,
        product_id=product.id,
        store_id=store_b.id,
        status=SyncStatus.COMPLETED,
        new_value={"available": 9},
    )

    detection = await ConflictResolver(db_session).detect(product.id, store_a.id, expected=9, actual=7)

    assert detection.outcome == DetectionOutcome.COLLISION
    assert detection.recent_operations == 1
    assert detection.conflict_type == ConflictType.SYNC_COLLISION


@pytest.mark.asyncio
async def test_own_store_activity_is_not_a_collision(db_session, three_stores, seed):
    store_a, _, _ = three_stores
    product = await seed.product("SKU-1", available=10, stores=three_stores)
    await SyncOperationLog(db_session).record(
        OperationType.INVENTORY_UPDATE,
        SyncDirection.STORE_TO_CENTRAL,
        product_id=product.id,
        store_id=store_a.id,
        status=SyncStatus.COMPLETED,
    )

    detection = await ConflictResolver(db_session).detect(product.id, store_a.id, expected=10, actual=7)

    assert detection.outcome == DetectionOutcome.MISMATCH


"""
3. Resolution
"""

async def _conflict(db_session, product, store, central=100, store_value=95,
                    strategy=ResolutionStrategy.USE_DATABASE):
    resolver = ConflictResolver(db_session)
    conflict = await resolver.create_conflict(
        ConflictType.INVENTORY_MISMATCH,
        product.id,
        store.id,
        central_value={"available": central},
        store_value={"available": store_value},
        resolution_strategy=strategy,
    )
    await db_session.commit()
    return conflict


@pytest.mark.asyncio
async def test_resolve_writes_aggregate(db_session, three_stores, seed):
    store_a, _, _ = three_stores
    product = await seed.product("SKU-1", available=100, stores=three_stores)
    conflict = await _conflict(db_session, product, store_a)

    resolved = await ConflictResolver(db_session).resolve(conflict.id, ResolutionStrategy.AVERAGE, actor="tester")

    assert resolved.resolved is True
    assert resolved.resolved_value == {"available": 98}
    assert resolved.resolved_by == "tester"
    assert resolved.resolution_strategy == ResolutionStrategy.AVERAGE.value
    assert resolved.resolved_at is not None
    aggregate = await InventoryStore(db_session).get_aggregate(product.id)
    assert aggregate.available_quantity == 98


@pytest.mark.asyncio
async def test_resolve_uses_conflict_default_strategy(db_session, three_stores, seed):
    store_a, _, _ = three_stores
    product = await seed.product("SKU-1", available=100, stores=three_stores)
    conflict = await _conflict(db_session, product, store_a, strategy=ResolutionStrategy.USE_STORE)

    resolved = await ConflictResolver(db_session).resolve(conflict)

    assert resolved.resolved_value == {"available": 95}


@pytest.mark.asyncio
async def test_resolving_twice_keeps_first_resolution(db_session, three_stores, seed):
    store_a, _, _ = three_stores
    product = await seed.product("SKU-1", available=100, stores=three_stores)
    conflict = await _conflict(db_session, product, store_a)
    resolver = ConflictResolver(db_session)

    await resolver.resolve(conflict, ResolutionStrategy.USE_LOWEST)
    again = await resolver.resolve(conflict, ResolutionStrategy.USE_HIGHEST)

    assert again.resolved_value == {"available": 95}
    assert again.resolution_strategy == ResolutionStrategy.USE_LOWEST.value


@pytest.mark.asyncio
async def test_manual_resolution_is_refused(db_session, three_stores, seed):
    store_a, _, _ = three_stores
    product = await seed.product("SKU-1", available=100, stores=three_stores)
    conflict = await _conflict(db_session, product, store_a, strategy=ResolutionStrategy.MANUAL)

    with pytest.raises(ConflictResolutionError):
        await ConflictResolver(db_session).resolve(conflict)
    assert conflict.resolved is False


@pytest.mark.asyncio
async def test_resolve_unknown_conflict_raises(db_session):
    with pytest.raises(ConflictResolutionError):
        await ConflictResolver(db_session).resolve(12345, ResolutionStrategy.USE_LOWEST)


@pytest.mark.asyncio
async def test_auto_resolve_uses_lowest(db_session, three_stores, seed):
    store_a, _, _ = three_stores
    product = await seed.product("SKU-1", available=100, stores=three_stores)
    conflict = await _conflict(db_session, product, store_a, central=40, store_value=45)

    resolved = await ConflictResolver(db_session).auto_resolve(conflict)

    assert resolved.resolved_value == {"available": 40}
    assert resolved.resolved_by == "system"


@pytest.mark.asyncio
async def test_pending_conflicts_stats_and_batch_resolve(db_session, three_stores, seed):
    store_a, store_b, _ = three_stores
    product = await seed.product("SKU-1", available=100, stores=three_stores)
    product_id = product.id
    first = await _conflict(db_session, product, store_a)
    second = await _conflict(db_session, product, store_b)
    resolver = ConflictResolver(db_session)

    pending = await resolver.get_pending_conflicts(product_id=product_id)
    conflict_ids = [first.id, second.id]
    assert [c.id for c in pending] == conflict_ids
    assert await resolver.has_pending_conflicts(product_id) is True

    results = await resolver.batch_resolve(conflict_ids + [999], ResolutionStrategy.USE_HIGHEST)
    assert results["resolved"] == 2
    assert results["failed"] == 1
    assert len(results["errors"]) == 1

    stats = await resolver.get_conflict_stats()
    assert stats["total"] == 2
    assert stats["resolved"] == 2
    assert stats["pending"] == 0
    assert stats["by_type"] == {ConflictType.INVENTORY_MISMATCH.value: 2}
    assert await resolver.has_pending_conflicts(product_id) is False
