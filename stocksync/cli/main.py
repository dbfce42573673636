# stocksync/cli/main.py
import asyncio
import json

import click

from stocksync.core.config import get_settings
from stocksync.core.exceptions import ProductNotFoundError
from stocksync.core.logging_config import configure_logging
from stocksync.database import async_session
from stocksync.integrations.platforms.shopify import shopify_platform_factory
from stocksync.services.conflict_resolver import ConflictResolver
from stocksync.services.idempotency import IdempotencyLedger
from stocksync.services.product_mapper import ProductMapper
from stocksync.services.sync_engine import SyncEngine


def _echo_json(data):
    click.echo(json.dumps(data, indent=2, default=str))


@click.group()
def cli():
    """StockSync maintenance commands"""
    configure_logging()


@cli.command("cleanup-ledger")
@click.option("--days", type=int, default=None, help="Retention in days (defaults to LEDGER_RETENTION_DAYS)")
def cleanup_ledger(days):
    """Delete processed webhook ledger entries older than the retention period"""
    days = days or get_settings().LEDGER_RETENTION_DAYS

    async def _run():
        async with async_session() as session:
            return await IdempotencyLedger(session).cleanup(older_than_days=days)

    deleted = asyncio.run(_run())
    click.echo(f"Deleted {deleted} ledger entries older than {days} days")


@cli.command("ledger-stats")
def ledger_stats():
    """Show webhook ledger counts"""
    async def _run():
        async with async_session() as session:
            return await IdempotencyLedger(session).get_stats()

    _echo_json(asyncio.run(_run()))


@cli.command("sync-catalog")
@click.option("--shop", "shop_domain", required=True, help="Store domain, e.g. my-shop.myshopify.com")
def sync_catalog(shop_domain):
    """Pull a store's product catalog and refresh mappings and locations"""
    async def _run():
        async with async_session() as session:
            mapper = ProductMapper(session, shopify_platform_factory)
            store = await mapper.get_store(shop_domain)
            if store is None:
                raise click.ClickException(f"Store not found: {shop_domain}")
            return await mapper.sync_product_catalog(store)

    _echo_json(asyncio.run(_run()))


@cli.command("conflict-stats")
def conflict_stats():
    """Show conflict counts by type and resolution state"""
    async def _run():
        async with async_session() as session:
            return await ConflictResolver(session).get_conflict_stats()

    _echo_json(asyncio.run(_run()))


@cli.command("inventory-status")
@click.option("--sku", required=True)
def inventory_status(sku):
    """Show central inventory and per-store sync state for a SKU"""
    async def _run():
        async with async_session() as session:
            try:
                return await SyncEngine(session, shopify_platform_factory).get_inventory_status(sku)
            except ProductNotFoundError as e:
                raise click.ClickException(str(e))

    _echo_json(asyncio.run(_run()))


if __name__ == "__main__":
    cli()
