# stocksync/services/sync_log.py
import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from stocksync.core.enums import OperationType, SyncDirection, SyncStatus
from stocksync.core.utils import utc_now
from stocksync.models.sync_operation import SyncOperation

logger = logging.getLogger(__name__)


class SyncOperationLog:
    """
    Writes and queries the sync_operations audit log.

    Rows are append-only. After insert only the status moves
    (PENDING -> IN_PROGRESS -> COMPLETED/FAILED) along with its timestamps
    and error message.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def record(
        self,
        operation_type: OperationType,
        direction: SyncDirection,
        product_id: Optional[int],
        store_id: Optional[int],
        status: SyncStatus = SyncStatus.COMPLETED,
        previous_value: Optional[Dict[str, Any]] = None,
        new_value: Optional[Dict[str, Any]] = None,
        triggered_by: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> SyncOperation:
        """
        Add an operation row and flush to get its id (no commit).
        Terminal statuses get their completed_at stamped immediately.
        """
        now = utc_now()
        operation = SyncOperation(
            operation_type=operation_type.value,
            direction=direction.value,
            product_id=product_id,
            store_id=store_id,
            status=status.value,
            previous_value=previous_value,
            new_value=new_value,
            triggered_by=triggered_by,
            error_message=error_message[:2000] if error_message else None,
            created_at=now,
            started_at=now if status != SyncStatus.PENDING else None,
            completed_at=now if status in (SyncStatus.COMPLETED, SyncStatus.FAILED) else None,
        )
        self.db.add(operation)
        await self.db.flush()

        logger.debug(
            f"Sync operation recorded: {operation_type.value} {direction.value} "
            f"product={product_id} store={store_id} status={status.value}"
        )
        return operation

    async def mark_in_progress(self, operation: SyncOperation) -> None:
        operation.status = SyncStatus.IN_PROGRESS.value
        operation.started_at = utc_now()
        await self.db.flush()

    async def mark_completed(self, operation: SyncOperation, new_value: Optional[Dict[str, Any]] = None) -> None:
        operation.status = SyncStatus.COMPLETED.value
        if new_value is not None:
            operation.new_value = new_value
        operation.error_message = None
        operation.completed_at = utc_now()
        await self.db.flush()

    async def mark_failed(self, operation: SyncOperation, error_message: str) -> None:
        operation.status = SyncStatus.FAILED.value
        operation.error_message = (error_message or "")[:2000]
        operation.completed_at = utc_now()
        await self.db.flush()

    async def find_recent_push(self, product_id: int, store_id: int, window_seconds: int) -> Optional[SyncOperation]:
        """Most recent completed central->store push to this store within the window"""
        cutoff = utc_now() - timedelta(seconds=window_seconds)
        stmt = (
            select(SyncOperation)
            .where(
                SyncOperation.product_id == product_id,
                SyncOperation.store_id == store_id,
                SyncOperation.direction == SyncDirection.CENTRAL_TO_STORE.value,
                SyncOperation.status == SyncStatus.COMPLETED.value,
                SyncOperation.completed_at >= cutoff,
            )
            .order_by(SyncOperation.completed_at.desc(), SyncOperation.id.desc())
            .limit(1)
        )
        return (await self.db.execute(stmt)).scalar_one_or_none()

    async def count_recent_from_other_stores(self, product_id: int, store_id: int, window_seconds: int) -> int:
        """Completed inbound inventory updates for the product from any other store within the window"""
        cutoff = utc_now() - timedelta(seconds=window_seconds)
        stmt = select(SyncOperation.id).where(
            SyncOperation.product_id == product_id,
            SyncOperation.store_id != store_id,
            SyncOperation.operation_type == OperationType.INVENTORY_UPDATE.value,
            SyncOperation.direction == SyncDirection.STORE_TO_CENTRAL.value,
            SyncOperation.status == SyncStatus.COMPLETED.value,
            SyncOperation.completed_at >= cutoff,
        )
        return len((await self.db.execute(stmt)).scalars().all())

    async def find_inbound_for_trigger(self, product_id: int, triggered_by: str) -> List[SyncOperation]:
        """Inbound inventory updates already recorded for the product by one trigger, oldest first"""
        stmt = (
            select(SyncOperation)
            .where(
                SyncOperation.product_id == product_id,
                SyncOperation.triggered_by == triggered_by,
                SyncOperation.operation_type == OperationType.INVENTORY_UPDATE.value,
                SyncOperation.direction == SyncDirection.STORE_TO_CENTRAL.value,
            )
            .order_by(SyncOperation.id)
        )
        return list((await self.db.execute(stmt)).scalars().all())
