from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from stocksync.dependencies import get_db
from stocksync.scheduler import get_scheduler_status

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(request: Request):
    """Basic health check"""
    queue = getattr(request.app.state, "job_queue", None)
    return {
        "status": "healthy",
        "service": "StockSync",
        "queue": queue.stats() if queue is not None else None,
        "scheduler": get_scheduler_status()["status"],
    }


@router.get("/health/db")
async def database_health(db: AsyncSession = Depends(get_db)):
    """Check database connectivity"""
    try:
        await db.execute(text("SELECT 1"))
        return {"status": "healthy", "database": "connected"}
    except Exception as e:
        return {"status": "unhealthy", "database": "error", "error": str(e)}
