"""
Event intake: the front door for inbound webhooks.

Checks the idempotency ledger, records the event, then hands it to the job
queue. Without a running queue the same processing runs inline and the ledger
is updated before returning.
"""
import logging
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from stocksync.services.idempotency import IdempotencyLedger
from stocksync.services.job_queue import JobQueue, WebhookJob, process_webhook_job
from stocksync.services.product_mapper import PlatformFactory

logger = logging.getLogger(__name__)


class WebhookIntake:
    def __init__(self, db: AsyncSession, queue: Optional[JobQueue] = None,
                 platform_factory: Optional[PlatformFactory] = None):
        self.db = db
        self.queue = queue
        self.platform_factory = platform_factory
        self.ledger = IdempotencyLedger(db)

    async def receive(self, topic: str, shop_domain: str, event_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Returns {"status": ...} with one of:
        duplicate, queued, already_queued, processed, failed
        """
        if await self.ledger.is_processed(event_id):
            logger.info(f"Duplicate webhook {event_id} ({topic}) from {shop_domain}, ignoring")
            return {"status": "duplicate", "event_id": event_id}

        await self.ledger.create(event_id, topic, shop_domain, payload)
        job = WebhookJob(event_id=event_id, topic=topic, shop_domain=shop_domain, payload=payload)

        if self.queue is not None and self.queue.is_running:
            queued = await self.queue.enqueue(job)
            return {"status": "queued" if queued else "already_queued", "event_id": event_id}

        logger.warning(f"Job queue unavailable, processing webhook {event_id} inline")
        try:
            result = await process_webhook_job(self.db, job, self.platform_factory)
        except Exception as e:
            logger.error(f"Inline processing of webhook {event_id} failed: {e}")
            return {"status": "failed", "event_id": event_id, "error": str(e)}

        return {"status": "processed", "event_id": event_id, "result": result.to_dict()}
