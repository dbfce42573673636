"""
Idempotency ledger for inbound webhooks.

Every webhook is recorded by its externally assigned id. A second delivery of
the same id is detected with is_processed() and dropped by the caller, which is
what makes at-least-once delivery from the platform safe.
"""
import logging
from datetime import timedelta
from typing import Any, Dict, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from stocksync.core.config import get_settings
from stocksync.core.utils import utc_now
from stocksync.models.webhook import WebhookEvent

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 2000


class IdempotencyLedger:
    def __init__(self, db: AsyncSession, max_retries: Optional[int] = None):
        self.db = db
        self.max_retries = max_retries if max_retries is not None else get_settings().LEDGER_MAX_RETRIES

    async def _get(self, event_id: str) -> Optional[WebhookEvent]:
        stmt = select(WebhookEvent).where(WebhookEvent.event_id == event_id)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def is_processed(self, event_id: str) -> bool:
        """
        True only if an entry exists with processed=True.
        Lookup errors fail open (False) so an event is never silently dropped.
        """
        try:
            entry = await self._get(event_id)
        except SQLAlchemyError as e:
            logger.error(f"Ledger lookup failed for {event_id}, treating as unprocessed: {e}")
            return False
        return bool(entry and entry.processed)

    async def create(self, event_id: str, topic: str, shop_domain: str, payload: Dict[str, Any]) -> Optional[WebhookEvent]:
        """Insert an unprocessed entry. A duplicate event id is a no-op."""
        existing = await self._get(event_id)
        if existing:
            logger.debug(f"Ledger entry {event_id} already exists, skipping create")
            return existing

        entry = WebhookEvent(
            event_id=event_id,
            topic=topic,
            shop_domain=shop_domain,
            payload=payload,
            processed=False,
            retry_count=0,
            max_retries=self.max_retries,
        )
        try:
            async with self.db.begin_nested():
                self.db.add(entry)
            await self.db.commit()
        except IntegrityError:
            # Lost a race with a concurrent delivery of the same id
            logger.debug(f"Ledger entry {event_id} created concurrently")
            return await self._get(event_id)
        return entry

    async def mark_processed(self, event_id: str, topic: str, shop_domain: str,
                             payload: Optional[Dict[str, Any]] = None) -> WebhookEvent:
        """Upsert the entry as processed. Works even when create() never ran."""
        entry = await self._get(event_id)
        if entry is None:
            entry = WebhookEvent(
                event_id=event_id,
                topic=topic,
                shop_domain=shop_domain,
                payload=payload,
                max_retries=self.max_retries,
            )
            try:
                async with self.db.begin_nested():
                    self.db.add(entry)
            except IntegrityError:
                # A concurrent create() inserted the id after our lookup
                logger.debug(f"Ledger entry {event_id} created concurrently, updating it")
                entry = await self._get(event_id)

        entry.processed = True
        entry.processed_at = utc_now()
        await self.db.commit()
        logger.info(f"Webhook {event_id} ({topic}) marked processed")
        return entry

    async def mark_failed(self, event_id: str, message: str, terminal: bool = False) -> Optional[WebhookEvent]:
        """
        Count a failed attempt. Once retry_count reaches max_retries (or the
        failure is terminal, e.g. an unparseable payload) the entry is marked
        processed so it stops being retried, keeping the last error.
        """
        entry = await self._get(event_id)
        if entry is None:
            logger.warning(f"Cannot mark unknown webhook {event_id} as failed")
            return None

        entry.retry_count = (entry.retry_count or 0) + 1
        entry.error_message = (message or "")[:MAX_ERROR_LENGTH]

        if terminal or entry.retry_count >= entry.max_retries:
            entry.processed = True
            entry.processed_at = utc_now()
            logger.error(f"Webhook {event_id} given up after {entry.retry_count} attempt(s): {entry.error_message}")
        else:
            logger.warning(f"Webhook {event_id} failed (attempt {entry.retry_count}/{entry.max_retries}): {entry.error_message}")

        await self.db.commit()
        return entry

    async def get_retry_count(self, event_id: str) -> int:
        entry = await self._get(event_id)
        return entry.retry_count if entry else 0

    async def should_retry(self, event_id: str) -> bool:
        entry = await self._get(event_id)
        if entry is None:
            return True
        return not entry.processed and entry.retry_count < entry.max_retries

    async def cleanup(self, older_than_days: int = 7) -> int:
        """Delete processed entries received before the cutoff. Unprocessed entries are kept."""
        cutoff = utc_now() - timedelta(days=older_than_days)
        stmt = delete(WebhookEvent).where(
            WebhookEvent.processed.is_(True),
            WebhookEvent.received_at < cutoff,
        )
        result = await self.db.execute(stmt)
        await self.db.commit()
        deleted = result.rowcount or 0
        logger.info(f"Ledger cleanup removed {deleted} entries older than {older_than_days} days")
        return deleted

    async def get_stats(self) -> Dict[str, int]:
        async def _count(*conditions) -> int:
            stmt = select(func.count(WebhookEvent.id))
            if conditions:
                stmt = stmt.where(*conditions)
            return (await self.db.execute(stmt)).scalar() or 0

        total = await _count()
        processed = await _count(WebhookEvent.processed.is_(True))
        failed = await _count(WebhookEvent.retry_count > 0)
        exhausted = await _count(
            WebhookEvent.processed.is_(True),
            WebhookEvent.retry_count >= WebhookEvent.max_retries,
        )
        return {
            "total": total,
            "processed": processed,
            "pending": total - processed,
            "failed": failed,
            "exhausted": exhausted,
        }
