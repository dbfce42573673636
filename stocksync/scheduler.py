"""
Periodic maintenance for the sync service.

One AsyncIOScheduler lives alongside the FastAPI app: the lifespan starts it
after the job queue and stops it before the queue. Its only job today is
pruning processed entries from the webhook ledger once a day.
"""

import logging
from typing import Any, Dict, Optional
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.events import EVENT_JOB_EXECUTED, EVENT_JOB_ERROR, JobExecutionEvent

from stocksync.core.config import get_settings
from stocksync.database import async_session
from stocksync.services.idempotency import IdempotencyLedger

logger = logging.getLogger(__name__)

LEDGER_CLEANUP_JOB_ID = "cleanup_ledger"

scheduler: Optional[AsyncIOScheduler] = None


async def cleanup_ledger_task(older_than_days: Optional[int] = None) -> int:
    """Prune processed ledger entries. Returns the number deleted, 0 on error."""
    days = older_than_days or get_settings().LEDGER_RETENTION_DAYS
    try:
        async with async_session() as db:
            deleted = await IdempotencyLedger(db).cleanup(older_than_days=days)
    except Exception as e:
        logger.exception(f"Ledger cleanup failed: {e}")
        return 0
    logger.info(f"Ledger cleanup removed {deleted} entries older than {days} days")
    return deleted


def job_listener(event: JobExecutionEvent):
    if event.exception:
        logger.error(f"Scheduled job {event.job_id} raised: {event.exception}")
    else:
        logger.debug(f"Scheduled job {event.job_id} finished")


def create_scheduler() -> AsyncIOScheduler:
    """Build the module scheduler once and register the maintenance jobs"""
    global scheduler
    if scheduler is not None:
        return scheduler

    settings = get_settings()
    scheduler = AsyncIOScheduler()
    scheduler.add_listener(job_listener, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR)

    if not settings.LEDGER_CLEANUP_ENABLED:
        logger.info("Ledger cleanup disabled (LEDGER_CLEANUP_ENABLED=false)")
        return scheduler

    scheduler.add_job(
        cleanup_ledger_task,
        CronTrigger(hour=settings.LEDGER_CLEANUP_HOUR, minute=0),
        id=LEDGER_CLEANUP_JOB_ID,
        name="Cleanup Webhook Ledger",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    logger.info(f"Ledger cleanup scheduled daily at {settings.LEDGER_CLEANUP_HOUR:02d}:00")
    return scheduler


async def start_scheduler():
    sched = create_scheduler()
    if sched.running:
        return
    sched.start()
    names = ", ".join(job.name for job in sched.get_jobs()) or "none"
    logger.info(f"Scheduler started, jobs: {names}")


async def stop_scheduler():
    global scheduler
    if scheduler is not None and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
    scheduler = None


def get_scheduler_status() -> Dict[str, Any]:
    """Scheduler state and its jobs, for the health endpoint"""
    if scheduler is None:
        return {"status": "not_initialized", "jobs": []}

    jobs = []
    for job in scheduler.get_jobs():
        # Jobs added before start() have no next_run_time yet
        next_run = getattr(job, "next_run_time", None)
        jobs.append({
            "id": job.id,
            "name": job.name,
            "trigger": str(job.trigger),
            "next_run": next_run.isoformat() if next_run else None,
        })
    return {"status": "running" if scheduler.running else "stopped", "jobs": jobs}
