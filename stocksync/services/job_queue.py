"""
In-process job queue for webhook processing.

A pool of asyncio workers pulls WebhookJobs off an asyncio.Queue. Each job is
keyed by its webhook id, so an id already queued or running is not enqueued
twice. Failed attempts are retried by tenacity with exponential backoff
(5s, 10s, ...) up to QUEUE_MAX_ATTEMPTS, each attempt bounded by
QUEUE_JOB_TIMEOUT. The idempotency ledger records every attempt.

The queue is constructed and started explicitly (application lifespan) and
stopped on shutdown. When it is not running the intake runs jobs inline.
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional, Set

from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from tenacity import AsyncRetrying, retry_if_not_exception_type, stop_after_attempt, wait_exponential

from stocksync.core.config import get_settings
from stocksync.core.exceptions import WebhookValidationError
from stocksync.services.idempotency import IdempotencyLedger
from stocksync.services.product_mapper import PlatformFactory
from stocksync.services.webhook_processor import EventProcessingResult, WebhookProcessor

logger = logging.getLogger(__name__)


class WebhookJob(BaseModel):
    event_id: str
    topic: str
    shop_domain: str
    payload: Dict[str, Any]


async def process_webhook_job(session: AsyncSession, job: WebhookJob,
                              platform_factory: Optional[PlatformFactory] = None) -> EventProcessingResult:
    """
    Process one job on the given session and update the ledger.
    Failures are recorded with mark_failed and re-raised for the retry policy.
    """
    ledger = IdempotencyLedger(session)
    if await ledger.is_processed(job.event_id):
        result = EventProcessingResult()
        result.success = True
        result.skipped = True
        result.message = f"Webhook {job.event_id} already processed"
        return result

    processor = WebhookProcessor(session, platform_factory)
    try:
        result = await processor.process(job.topic, job.shop_domain, job.event_id, job.payload)
    except WebhookValidationError as e:
        await session.rollback()
        await ledger.mark_failed(job.event_id, str(e), terminal=True)
        raise
    except Exception as e:
        await session.rollback()
        await ledger.mark_failed(job.event_id, f"{e.__class__.__name__}: {e}")
        raise

    await ledger.mark_processed(job.event_id, job.topic, job.shop_domain, job.payload)
    return result


class JobQueue:
    def __init__(
        self,
        session_factory: async_sessionmaker,
        platform_factory: Optional[PlatformFactory] = None,
        concurrency: Optional[int] = None,
        max_attempts: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
        job_timeout: Optional[float] = None,
    ):
        settings = get_settings()
        self.session_factory = session_factory
        self.platform_factory = platform_factory
        self.concurrency = concurrency or settings.QUEUE_CONCURRENCY
        self.max_attempts = max_attempts or settings.QUEUE_MAX_ATTEMPTS
        self.backoff_seconds = backoff_seconds if backoff_seconds is not None else settings.QUEUE_BACKOFF_SECONDS
        self.job_timeout = job_timeout or settings.QUEUE_JOB_TIMEOUT

        self.queue: asyncio.Queue = asyncio.Queue()
        self._workers: List[asyncio.Task] = []
        self._active_ids: Set[str] = set()
        self.completed = 0
        self.failed = 0

    @property
    def is_running(self) -> bool:
        return any(not w.done() for w in self._workers)

    async def start(self):
        if self.is_running:
            return
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"webhook-worker-{i}")
            for i in range(self.concurrency)
        ]
        logger.info(f"Job queue started with {self.concurrency} workers")

    async def stop(self):
        for worker in self._workers:
            worker.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.info("Job queue stopped")

    async def enqueue(self, job: WebhookJob) -> bool:
        """Queue a job. Returns False if a job with the same id is already queued or running."""
        if job.event_id in self._active_ids:
            logger.debug(f"Job {job.event_id} already queued")
            return False
        self._active_ids.add(job.event_id)
        await self.queue.put(job)
        return True

    async def join(self):
        await self.queue.join()

    def stats(self) -> Dict[str, int]:
        return {
            "queued": self.queue.qsize(),
            "active": len(self._active_ids),
            "completed": self.completed,
            "failed": self.failed,
            "workers": len([w for w in self._workers if not w.done()]),
        }

    async def _attempt(self, job: WebhookJob) -> EventProcessingResult:
        try:
            async with self.session_factory() as session:
                return await asyncio.wait_for(
                    process_webhook_job(session, job, self.platform_factory),
                    timeout=self.job_timeout,
                )
        except asyncio.TimeoutError:
            async with self.session_factory() as session:
                await IdempotencyLedger(session).mark_failed(
                    job.event_id, f"Timed out after {self.job_timeout}s"
                )
            raise

    async def run_with_retry(self, job: WebhookJob) -> EventProcessingResult:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.backoff_seconds, min=self.backoff_seconds),
            retry=retry_if_not_exception_type(WebhookValidationError),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.info(f"Retrying job {job.event_id} (attempt {attempt.retry_state.attempt_number})")
                return await self._attempt(job)

    async def _worker(self, index: int):
        while True:
            job = await self.queue.get()
            try:
                result = await self.run_with_retry(job)
                self.completed += 1
                logger.info(f"Job {job.event_id} ({job.topic}) done: {result.message}")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.failed += 1
                logger.error(f"Job {job.event_id} ({job.topic}) failed permanently: {e}")
            finally:
                self._active_ids.discard(job.event_id)
                self.queue.task_done()
