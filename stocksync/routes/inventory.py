import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from stocksync.core.enums import ConflictType
from stocksync.core.exceptions import ConflictResolutionError, ProductNotFoundError, StoreNotFoundError
from stocksync.dependencies import get_db, get_platform_factory
from stocksync.schemas.conflict import BatchResolveRequest, ConflictRead, ResolveConflictRequest
from stocksync.schemas.inventory import InventoryStatus
from stocksync.services.conflict_resolver import ConflictResolver
from stocksync.services.sync_engine import SyncEngine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["inventory"])


@router.get("/inventory/{sku}", response_model=InventoryStatus)
async def inventory_status(sku: str, db: AsyncSession = Depends(get_db),
                           platform_factory=Depends(get_platform_factory)):
    engine = SyncEngine(db, platform_factory)
    try:
        return await engine.get_inventory_status(sku)
    except ProductNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/inventory/{sku}/sync/{shop_domain}")
async def sync_to_store(sku: str, shop_domain: str, db: AsyncSession = Depends(get_db),
                        platform_factory=Depends(get_platform_factory)):
    engine = SyncEngine(db, platform_factory)
    try:
        result = await engine.sync_product_to_store(sku, shop_domain)
    except (ProductNotFoundError, StoreNotFoundError) as e:
        raise HTTPException(status_code=404, detail=str(e))
    return result.to_dict()


@router.get("/conflicts", response_model=List[ConflictRead])
async def pending_conflicts(product_id: Optional[int] = None, store_id: Optional[int] = None,
                            conflict_type: Optional[ConflictType] = None, limit: int = 100,
                            db: AsyncSession = Depends(get_db)):
    resolver = ConflictResolver(db)
    return await resolver.get_pending_conflicts(product_id, store_id, conflict_type, limit=limit)


@router.get("/conflicts/stats")
async def conflict_stats(db: AsyncSession = Depends(get_db)):
    return await ConflictResolver(db).get_conflict_stats()


@router.post("/conflicts/batch-resolve")
async def batch_resolve(request: BatchResolveRequest, db: AsyncSession = Depends(get_db)):
    return await ConflictResolver(db).batch_resolve(request.conflict_ids, request.strategy, actor=request.actor)


@router.post("/conflicts/{conflict_id}/resolve", response_model=ConflictRead)
async def resolve_conflict(conflict_id: int, request: ResolveConflictRequest, db: AsyncSession = Depends(get_db),
                           platform_factory=Depends(get_platform_factory)):
    """Resolve one conflict and push the resolved value to every active store"""
    engine = SyncEngine(db, platform_factory)
    try:
        conflict = await engine.resolver.resolve(conflict_id, request.strategy, actor=request.actor)
    except ConflictResolutionError as e:
        await db.rollback()
        raise HTTPException(status_code=409, detail=str(e))
    await db.commit()

    if request.propagate and conflict.resolved_value:
        await engine.propagate(
            conflict.product_id,
            conflict.resolved_value["available"],
            triggered_by=f"conflict-{conflict.id}",
        )
    return conflict
