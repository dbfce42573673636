import base64
import hashlib
import hmac
import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from stocksync.core.config import get_webhook_secret
from stocksync.dependencies import get_db, get_job_queue, get_platform_factory
from stocksync.services.job_queue import JobQueue
from stocksync.services.webhook_intake import WebhookIntake

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhooks"])


def compute_hmac(body: bytes, secret: str) -> str:
    digest = hmac.new(secret.encode(), body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode()


async def verify_webhook_signature(request: Request, webhook_secret: str = Depends(get_webhook_secret)):
    """Verify the X-Shopify-Hmac-Sha256 header against the raw body"""
    signature = request.headers.get("X-Shopify-Hmac-Sha256")
    if not signature:
        raise HTTPException(status_code=401, detail="No signature provided")
    if not webhook_secret:
        raise HTTPException(status_code=500, detail="Webhook secret not configured")

    body = await request.body()
    if not hmac.compare_digest(signature, compute_hmac(body, webhook_secret)):
        raise HTTPException(status_code=401, detail="Invalid signature")


@router.post("/webhooks/shopify")
async def shopify_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    queue: Optional[JobQueue] = Depends(get_job_queue),
    platform_factory=Depends(get_platform_factory),
    _: None = Depends(verify_webhook_signature),
):
    """Receive any subscribed Shopify webhook topic"""
    topic = request.headers.get("X-Shopify-Topic")
    shop_domain = request.headers.get("X-Shopify-Shop-Domain")
    event_id = request.headers.get("X-Shopify-Webhook-Id")
    if not topic or not shop_domain or not event_id:
        raise HTTPException(status_code=400, detail="Missing Shopify webhook headers")

    try:
        payload = json.loads(await request.body() or b"{}")
    except json.JSONDecodeError:
        raise HTTPException(status_code=400, detail="Body is not valid JSON")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Body must be a JSON object")

    intake = WebhookIntake(db, queue=queue, platform_factory=platform_factory)
    outcome = await intake.receive(topic, shop_domain, event_id, payload)
    logger.info(f"Webhook {event_id} ({topic}) from {shop_domain}: {outcome['status']}")

    # Always acknowledge: failures are tracked in the ledger and retried there
    return {"status": outcome["status"], "event_id": event_id}
