from typing import AsyncGenerator, Optional
from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from stocksync.database import async_session
from stocksync.integrations.platforms.shopify import shopify_platform_factory
from stocksync.services.job_queue import JobQueue
from stocksync.services.product_mapper import PlatformFactory


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency for getting async database sessions."""
    async with async_session() as session:
        try:
            yield session
        finally:
            await session.close()


def get_job_queue(request: Request) -> Optional[JobQueue]:
    """The running job queue, or None to process webhooks inline"""
    return getattr(request.app.state, "job_queue", None)


def get_platform_factory() -> PlatformFactory:
    return shopify_platform_factory
