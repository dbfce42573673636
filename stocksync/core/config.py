# stocksync/core/config.py

import os
from functools import lru_cache
from typing import Optional
from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Application settings.
    Loads values from environment variables (.env file)
    """
    # Database settings
    DATABASE_URL: str = ""
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20

    # Shopify API
    SHOPIFY_API_VERSION: str = "2024-10"
    SHOPIFY_API_KEY: Optional[str] = None
    SHOPIFY_API_SECRET: str = ""  # Also the webhook HMAC key
    SHOPIFY_REQUEST_TIMEOUT: float = 30.0
    SHOPIFY_BATCH_SIZE: int = 100       # Max items per inventorySetQuantities call
    SHOPIFY_BATCH_PAUSE: float = 0.5    # Seconds between batches

    # Sync engine tuning
    SYNC_PUSH_TIMEOUT: float = 15.0
    ECHO_WINDOW_SECONDS: int = 10
    CONFLICT_WINDOW_SECONDS: int = 5
    AUTO_RESOLVE_COLLISIONS: bool = True

    # Catalog sync
    CATALOG_PAGE_SIZE: int = 25
    CATALOG_PAGE_PAUSE: float = 0.2

    # Job queue
    QUEUE_ENABLED: bool = True
    QUEUE_CONCURRENCY: int = 5
    QUEUE_MAX_ATTEMPTS: int = 3
    QUEUE_BACKOFF_SECONDS: float = 5.0
    QUEUE_JOB_TIMEOUT: float = 60.0

    # Idempotency ledger
    LEDGER_MAX_RETRIES: int = 3
    LEDGER_RETENTION_DAYS: int = 7
    LEDGER_CLEANUP_ENABLED: bool = True
    LEDGER_CLEANUP_HOUR: int = 3

    # Environment
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"
    DEBUG: bool = False

    model_config = ConfigDict(
        env_file=os.environ.get('ENV_FILE', '.env') if os.path.exists('.env') else None,
        case_sensitive=True,
        extra="ignore",
    )


@lru_cache()
def get_settings():
    """Cached settings to avoid loading .env file for every request"""
    return Settings()


def clear_settings_cache():
    """Clear the settings cache - useful when switching between environments"""
    get_settings.cache_clear()


def get_webhook_secret():
    """Get the secret used to verify inbound webhook signatures"""
    return get_settings().SHOPIFY_API_SECRET
