# stocksync/main.py

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from stocksync.core.config import get_settings
from stocksync.core.logging_config import configure_logging
from stocksync.database import async_session
from stocksync.integrations.platforms.shopify import shopify_platform_factory
from stocksync.routes import health, inventory, webhooks
from stocksync.scheduler import start_scheduler, stop_scheduler
from stocksync.services.job_queue import JobQueue

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    settings = get_settings()

    app.state.job_queue = None
    if settings.QUEUE_ENABLED:
        app.state.job_queue = JobQueue(async_session, shopify_platform_factory)
        await app.state.job_queue.start()
    else:
        logger.info("Job queue disabled, webhooks will be processed inline")

    await start_scheduler()
    try:
        yield
    finally:
        await stop_scheduler()
        if app.state.job_queue is not None:
            await app.state.job_queue.stop()


app = FastAPI(
    title="StockSync",
    lifespan=lifespan
)


# Add middleware to handle HTTPS behind proxy
@app.middleware("http")
async def proxy_headers_middleware(request: Request, call_next):
    forwarded_proto = request.headers.get("x-forwarded-proto")
    if forwarded_proto == "https":
        request.scope["scheme"] = "https"
    response = await call_next(request)
    return response


app.include_router(health.router)
app.include_router(webhooks.router)
app.include_router(inventory.router)


@app.get("/")
async def root():
    return {"service": "StockSync", "docs": "/docs"}
