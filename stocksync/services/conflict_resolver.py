"""
Conflict detection and resolution.

detect() classifies a divergence between what central expects a store to hold
and what the store reports:
- equal values: no conflict
- unequal, and another store changed the product within the conflict window:
  SYNC_COLLISION
- unequal, nothing recent to explain it: INVENTORY_MISMATCH (usually a manual edit)

Conflicts are never raised as exceptions. They are stored as Conflict rows and
resolved by strategy. MANUAL always refuses to auto-resolve.
"""
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from stocksync.core.config import get_settings
from stocksync.core.enums import ConflictType, DetectionOutcome, ResolutionStrategy
from stocksync.core.exceptions import ConflictResolutionError
from stocksync.core.utils import quantity_value, utc_now
from stocksync.models.conflict import Conflict
from stocksync.services.inventory_store import InventoryStore
from stocksync.services.sync_log import SyncOperationLog

logger = logging.getLogger(__name__)

DEFAULT_AUTO_STRATEGY = ResolutionStrategy.USE_LOWEST


class DetectionResult:
    """Outcome of a conflict check"""
    def __init__(self, outcome: DetectionOutcome, recent_operations: int = 0):
        self.outcome = outcome
        self.recent_operations = recent_operations

    @property
    def has_conflict(self) -> bool:
        return self.outcome != DetectionOutcome.NONE

    @property
    def conflict_type(self) -> Optional[ConflictType]:
        if self.outcome == DetectionOutcome.COLLISION:
            return ConflictType.SYNC_COLLISION
        if self.outcome == DetectionOutcome.MISMATCH:
            return ConflictType.INVENTORY_MISMATCH
        return None


def compute_resolution(strategy: ResolutionStrategy, central: int, store: int) -> int:
    """
    Resolved quantity for a strategy.
    AVERAGE rounds half up to the nearest integer: (100, 95) -> 98.
    """
    strategy = ResolutionStrategy(strategy)
    if strategy == ResolutionStrategy.USE_LOWEST:
        return min(central, store)
    if strategy == ResolutionStrategy.USE_HIGHEST:
        return max(central, store)
    if strategy == ResolutionStrategy.USE_DATABASE:
        return central
    if strategy == ResolutionStrategy.USE_STORE:
        return store
    if strategy == ResolutionStrategy.AVERAGE:
        midpoint = (Decimal(central) + Decimal(store)) / 2
        return int(midpoint.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    raise ConflictResolutionError(f"Strategy {strategy.value} requires manual resolution")


class ConflictResolver:
    def __init__(self, db: AsyncSession, window_seconds: Optional[int] = None):
        self.db = db
        self.window_seconds = window_seconds if window_seconds is not None else get_settings().CONFLICT_WINDOW_SECONDS
        self.sync_log = SyncOperationLog(db)
        self.inventory = InventoryStore(db)

    async def detect(self, product_id: int, store_id: int, expected: int, actual: int) -> DetectionResult:
        if expected == actual:
            return DetectionResult(DetectionOutcome.NONE)

        recent = await self.sync_log.count_recent_from_other_stores(product_id, store_id, self.window_seconds)
        if recent:
            logger.warning(
                f"Sync collision on product {product_id} from store {store_id}: expected {expected}, "
                f"got {actual}, {recent} recent change(s) from other stores"
            )
            return DetectionResult(DetectionOutcome.COLLISION, recent_operations=recent)

        logger.warning(
            f"Inventory mismatch on product {product_id} from store {store_id}: expected {expected}, got {actual}"
        )
        return DetectionResult(DetectionOutcome.MISMATCH)

    async def create_conflict(
        self,
        conflict_type: ConflictType,
        product_id: int,
        store_id: int,
        central_value: Optional[Dict[str, Any]],
        store_value: Optional[Dict[str, Any]],
        resolution_strategy: ResolutionStrategy = ResolutionStrategy.USE_DATABASE,
        notes: Optional[str] = None,
    ) -> Conflict:
        conflict = Conflict(
            conflict_type=ConflictType(conflict_type).value,
            product_id=product_id,
            store_id=store_id,
            central_value=central_value,
            store_value=store_value,
            resolution_strategy=ResolutionStrategy(resolution_strategy).value,
            resolved=False,
            notes=notes,
            created_at=utc_now(),
        )
        self.db.add(conflict)
        await self.db.flush()
        logger.info(f"Created {conflict.conflict_type} conflict {conflict.id} for product {product_id} / store {store_id}")
        return conflict

    async def get_conflict(self, conflict_id: int) -> Optional[Conflict]:
        return await self.db.get(Conflict, conflict_id)

    async def resolve(
        self,
        conflict: Union[Conflict, int],
        strategy: Optional[ResolutionStrategy] = None,
        actor: str = "system",
        apply_to_inventory: bool = True,
    ) -> Conflict:
        """
        Resolve a conflict and, by default, write the resolved quantity to the
        product's aggregate. Resolving an already resolved conflict returns it
        unchanged.

        Raises:
            ConflictResolutionError: unknown conflict, MANUAL strategy, or the
                conflict is missing one of its values
        """
        if not isinstance(conflict, Conflict):
            conflict_id = conflict
            conflict = await self.get_conflict(conflict_id)
            if conflict is None:
                raise ConflictResolutionError(f"Conflict {conflict_id} not found")

        if conflict.resolved:
            logger.debug(f"Conflict {conflict.id} already resolved, returning existing resolution")
            return conflict

        strategy = ResolutionStrategy(strategy or conflict.resolution_strategy)
        if strategy == ResolutionStrategy.MANUAL:
            raise ConflictResolutionError(f"Conflict {conflict.id} requires manual resolution")

        central = quantity_value(conflict.central_value)
        store = quantity_value(conflict.store_value)
        if central is None or store is None:
            raise ConflictResolutionError(f"Conflict {conflict.id} is missing central or store value")

        resolved_quantity = compute_resolution(strategy, central, store)

        if apply_to_inventory:
            await self.inventory.set_aggregate_direct(
                conflict.product_id,
                {"available": resolved_quantity},
                actor=f"conflict-{conflict.id}:{actor}",
                force=True,
            )

        conflict.resolution_strategy = strategy.value
        conflict.resolved = True
        conflict.resolved_value = {"available": resolved_quantity}
        conflict.resolved_by = actor
        conflict.resolved_at = utc_now()
        await self.db.flush()

        logger.info(f"Resolved conflict {conflict.id} with {strategy.value}: {central} vs {store} -> {resolved_quantity}")
        return conflict

    async def auto_resolve(self, conflict: Union[Conflict, int], apply_to_inventory: bool = True) -> Conflict:
        """Resolve with USE_LOWEST, which never oversells when the right value is unknown"""
        return await self.resolve(conflict, DEFAULT_AUTO_STRATEGY, actor="system", apply_to_inventory=apply_to_inventory)

    async def get_pending_conflicts(self, product_id: Optional[int] = None, store_id: Optional[int] = None,
                                    conflict_type: Optional[ConflictType] = None, limit: int = 100) -> List[Conflict]:
        stmt = select(Conflict).where(Conflict.resolved.is_(False))
        if product_id is not None:
            stmt = stmt.where(Conflict.product_id == product_id)
        if store_id is not None:
            stmt = stmt.where(Conflict.store_id == store_id)
        if conflict_type is not None:
            stmt = stmt.where(Conflict.conflict_type == ConflictType(conflict_type).value)
        stmt = stmt.order_by(Conflict.created_at.asc(), Conflict.id.asc()).limit(limit)
        return list((await self.db.execute(stmt)).scalars().all())

    async def batch_resolve(self, conflict_ids: List[int], strategy: ResolutionStrategy,
                            actor: str = "system") -> Dict[str, Any]:
        """Resolve each conflict in its own transaction. One failure does not stop the rest."""
        results = {"resolved": 0, "failed": 0, "errors": []}
        for conflict_id in conflict_ids:
            try:
                await self.resolve(conflict_id, strategy, actor=actor)
                await self.db.commit()
                results["resolved"] += 1
            except ConflictResolutionError as e:
                await self.db.rollback()
                results["failed"] += 1
                results["errors"].append(f"Conflict {conflict_id}: {e}")
                logger.warning(f"Batch resolve skipped conflict {conflict_id}: {e}")
        return results

    async def get_conflict_stats(self) -> Dict[str, Any]:
        stmt = select(Conflict.conflict_type, Conflict.resolved, func.count(Conflict.id)).group_by(
            Conflict.conflict_type, Conflict.resolved
        )
        rows = (await self.db.execute(stmt)).all()

        stats: Dict[str, Any] = {"total": 0, "pending": 0, "resolved": 0, "by_type": {}}
        for conflict_type, resolved, count in rows:
            stats["total"] += count
            stats["resolved" if resolved else "pending"] += count
            stats["by_type"][conflict_type] = stats["by_type"].get(conflict_type, 0) + count
        return stats

    async def has_pending_conflicts(self, product_id: int) -> bool:
        stmt = select(func.count(Conflict.id)).where(
            Conflict.product_id == product_id,
            Conflict.resolved.is_(False),
        )
        return ((await self.db.execute(stmt)).scalar() or 0) > 0
