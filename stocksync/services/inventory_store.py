"""
Per-location inventory rows and the per-product aggregate.

The aggregate equals the field-wise sum of a product's location rows whenever
any exist. Without location data it is written directly (legacy path).
Available and committed quantities never go below zero.

Methods flush but do not commit. The caller owns the transaction, which keeps
the locked read-modify-write in one unit.
"""
import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from stocksync.core.utils import utc_now
from stocksync.models.inventory import InventoryAggregate, InventoryLocation

logger = logging.getLogger(__name__)

QUANTITY_FIELDS = ("available", "committed", "incoming")


def _clamp(value: Optional[int]) -> int:
    return max(0, int(value or 0))


class InventoryStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_aggregate(self, product_id: int) -> Optional[InventoryAggregate]:
        stmt = select(InventoryAggregate).where(InventoryAggregate.product_id == product_id)
        return (await self.db.execute(stmt)).scalar_one_or_none()

    async def lock_aggregate(self, product_id: int) -> InventoryAggregate:
        """
        Fetch the aggregate row with a row lock (SELECT ... FOR UPDATE),
        creating a zeroed row first if the product has none.
        The lock is held until the caller commits.
        """
        stmt = (
            select(InventoryAggregate)
            .where(InventoryAggregate.product_id == product_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        aggregate = (await self.db.execute(stmt)).scalar_one_or_none()
        if aggregate is not None:
            return aggregate

        try:
            async with self.db.begin_nested():
                self.db.add(InventoryAggregate(
                    product_id=product_id,
                    available_quantity=0,
                    committed_quantity=0,
                    incoming_quantity=0,
                ))
        except IntegrityError:
            logger.debug(f"Aggregate for product {product_id} created concurrently")
        return (await self.db.execute(stmt)).scalar_one()

    async def has_location_rows(self, product_id: int) -> bool:
        stmt = select(func.count(InventoryLocation.id)).where(InventoryLocation.product_id == product_id)
        return ((await self.db.execute(stmt)).scalar() or 0) > 0

    async def get_location_row(self, product_id: int, location_id: int) -> Optional[InventoryLocation]:
        stmt = select(InventoryLocation).where(
            InventoryLocation.product_id == product_id,
            InventoryLocation.location_id == location_id,
        )
        return (await self.db.execute(stmt)).scalar_one_or_none()

    async def upsert_location(self, product_id: int, location_id: int, quantities: Dict[str, Any],
                              actor: str, skip_recalc: bool = False) -> InventoryLocation:
        """
        Write one location row. Fields missing from `quantities` keep their value.
        With skip_recalc the caller must run recalculate_aggregate later.
        """
        row = await self.get_location_row(product_id, location_id)
        if row is None:
            row = InventoryLocation(
                product_id=product_id,
                location_id=location_id,
                available_quantity=0,
                committed_quantity=0,
                incoming_quantity=0,
            )
            self.db.add(row)

        if quantities.get("available") is not None:
            row.available_quantity = _clamp(quantities["available"])
        if quantities.get("committed") is not None:
            row.committed_quantity = _clamp(quantities["committed"])
        if quantities.get("incoming") is not None:
            row.incoming_quantity = _clamp(quantities["incoming"])
        row.last_adjusted_at = utc_now()
        row.last_adjusted_by = actor
        await self.db.flush()

        if not skip_recalc:
            await self.recalculate_aggregate(product_id, actor=actor)
        return row

    async def recalculate_aggregate(self, product_id: int, actor: Optional[str] = None) -> Optional[InventoryAggregate]:
        """
        Set the aggregate to the sum of the product's location rows.
        Idempotent. Leaves the aggregate untouched when no location rows exist.
        """
        stmt = select(
            func.count(InventoryLocation.id),
            func.coalesce(func.sum(InventoryLocation.available_quantity), 0),
            func.coalesce(func.sum(InventoryLocation.committed_quantity), 0),
            func.coalesce(func.sum(InventoryLocation.incoming_quantity), 0),
        ).where(InventoryLocation.product_id == product_id)
        count, available, committed, incoming = (await self.db.execute(stmt)).one()

        if not count:
            logger.debug(f"No location rows for product {product_id}, aggregate left as is")
            return await self.get_aggregate(product_id)

        aggregate = await self.lock_aggregate(product_id)
        aggregate.available_quantity = int(available)
        aggregate.committed_quantity = int(committed)
        aggregate.incoming_quantity = int(incoming)
        aggregate.last_adjusted_at = utc_now()
        if actor:
            aggregate.last_adjusted_by = actor
        await self.db.flush()
        return aggregate

    async def set_aggregate_direct(self, product_id: int, quantities: Dict[str, Any], actor: str,
                                   force: bool = False) -> InventoryAggregate:
        """
        Legacy path for when no location can be resolved.
        Once location rows exist the aggregate is recomputed instead, unless
        force is set (central decisions such as conflict resolutions).
        """
        if not force and await self.has_location_rows(product_id):
            logger.info(f"Product {product_id} has location rows, recalculating instead of direct set")
            return await self.recalculate_aggregate(product_id, actor=actor)

        aggregate = await self.lock_aggregate(product_id)
        if quantities.get("available") is not None:
            aggregate.available_quantity = _clamp(quantities["available"])
        if quantities.get("committed") is not None:
            aggregate.committed_quantity = _clamp(quantities["committed"])
        if quantities.get("incoming") is not None:
            aggregate.incoming_quantity = _clamp(quantities["incoming"])
        aggregate.last_adjusted_at = utc_now()
        aggregate.last_adjusted_by = actor
        await self.db.flush()
        return aggregate

    async def apply_delta(self, product_id: int, available_delta: int = 0, committed_delta: int = 0,
                          actor: Optional[str] = None) -> Tuple[Dict[str, int], InventoryAggregate]:
        """
        Locked read-modify-write of the aggregate, for products without
        location rows (see apply_location_delta otherwise).
        Returns (previous quantities, updated aggregate). Results are floored at zero.
        """
        aggregate = await self.lock_aggregate(product_id)
        previous = aggregate.as_dict()

        aggregate.available_quantity = _clamp(aggregate.available_quantity + available_delta)
        aggregate.committed_quantity = _clamp(aggregate.committed_quantity + committed_delta)
        aggregate.last_adjusted_at = utc_now()
        aggregate.last_adjusted_by = actor
        await self.db.flush()
        return previous, aggregate

    async def apply_location_delta(self, product_id: int, location_id: Optional[int], available_delta: int = 0,
                                   committed_delta: int = 0, actor: Optional[str] = None
                                   ) -> Tuple[Dict[str, int], InventoryAggregate]:
        """
        Delta for a product tracked per location. The change lands on
        `location_id` (the product's first row when None) and the aggregate
        is recalculated. A decrement larger than that row is taken from the
        product's other rows in id order, so the total still floors at zero.

        Returns (previous quantities, recalculated aggregate).
        """
        aggregate = await self.lock_aggregate(product_id)
        previous = aggregate.as_dict()

        stmt = (
            select(InventoryLocation)
            .where(InventoryLocation.product_id == product_id)
            .order_by(InventoryLocation.id)
        )
        rows = list((await self.db.execute(stmt)).scalars().all())
        target = next((r for r in rows if r.location_id == location_id), None)
        if target is None and location_id is not None:
            target = InventoryLocation(
                product_id=product_id,
                location_id=location_id,
                available_quantity=0,
                committed_quantity=0,
                incoming_quantity=0,
            )
            self.db.add(target)
            rows.append(target)
        elif target is None:
            target = rows[0]
        ordered = [target] + [r for r in rows if r is not target]

        touched = _spread(ordered, "available_quantity", available_delta)
        touched += _spread(ordered, "committed_quantity", committed_delta)
        now = utc_now()
        for row in set(touched) | {target}:
            row.last_adjusted_at = now
            row.last_adjusted_by = actor
        await self.db.flush()

        aggregate = await self.recalculate_aggregate(product_id, actor=actor)
        return previous, aggregate


def _spread(rows: List[InventoryLocation], field: str, delta: int) -> List[InventoryLocation]:
    """Add delta to the first row. A decrement it cannot cover continues into the next rows."""
    if delta >= 0:
        first = rows[0]
        setattr(first, field, (getattr(first, field) or 0) + delta)
        return [first] if delta else []

    remaining = -delta
    touched = []
    for row in rows:
        if not remaining:
            break
        current = getattr(row, field) or 0
        taken = min(current, remaining)
        if taken:
            setattr(row, field, current - taken)
            remaining -= taken
            touched.append(row)
    return touched
