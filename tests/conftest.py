# tests/conftest.py
import os

# Settings and the engine are built at import time, so configure them first
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SHOPIFY_API_SECRET", "test_secret")
os.environ.setdefault("QUEUE_ENABLED", "false")
os.environ.setdefault("LEDGER_CLEANUP_ENABLED", "false")

import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from stocksync.core.config import get_settings
from stocksync.database import Base
from stocksync.models.inventory import InventoryAggregate
from stocksync.models.product import Product
from stocksync.models.product_mapping import ProductStoreMapping
from stocksync.models.store import Store, StoreLocation
from tests.mocks.mock_platform import MockPlatformFactory

# Postgres can be used by pointing TEST_DATABASE_URL at a throwaway database
TEST_DATABASE_URL = os.environ.get("TEST_DATABASE_URL", "sqlite+aiosqlite:///:memory:")


@pytest.fixture
def settings():
    """Provide the cached application settings"""
    return get_settings()


@pytest.fixture(scope="function")
async def test_engine():
    """Create and configure the test database engine (function-scoped)."""
    if TEST_DATABASE_URL.startswith("sqlite"):
        engine = create_async_engine(
            TEST_DATABASE_URL,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )

        # pysqlite's own transaction handling breaks SAVEPOINT; let SQLAlchemy emit BEGIN
        @event.listens_for(engine.sync_engine, "connect")
        def _do_connect(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(engine.sync_engine, "begin")
        def _do_begin(conn):
            conn.exec_driver_sql("BEGIN")
    else:
        engine = create_async_engine(TEST_DATABASE_URL)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory):
    """Provide a database session for tests"""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def platform_factory():
    """Per-shop MockPlatforms in place of the Shopify API"""
    return MockPlatformFactory()


def location_gid(store: Store) -> str:
    return f"gid://shopify/Location/{1000 + store.id}"


def inventory_item_id(product: Product, store: Store) -> str:
    """Raw (numeric) inventory item id of a seeded mapping"""
    return str(product.id * 100 + store.id)


class Seeder:
    """Builds stores, locations, products and mappings directly in the database"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def store(self, shop_domain: str, **kwargs) -> Store:
        store = Store(shop_domain=shop_domain, access_token="test-token", **kwargs)
        self.session.add(store)
        await self.session.flush()
        self.session.add(StoreLocation(store_id=store.id, shopify_location_id=location_gid(store), name="Main"))
        await self.session.commit()
        return store

    async def product(self, sku: str, available: int = 0, committed: int = 0, stores=()) -> Product:
        product = Product(sku=sku, title=f"Test {sku}")
        self.session.add(product)
        await self.session.flush()
        self.session.add(InventoryAggregate(
            product_id=product.id,
            available_quantity=available,
            committed_quantity=committed,
            incoming_quantity=0,
        ))
        for store in stores:
            self.session.add(ProductStoreMapping(
                product_id=product.id,
                store_id=store.id,
                shopify_product_id=f"gid://shopify/Product/{product.id}",
                shopify_variant_id=f"gid://shopify/ProductVariant/{product.id * 100 + store.id}",
                shopify_inventory_item_id=f"gid://shopify/InventoryItem/{inventory_item_id(product, store)}",
            ))
        await self.session.commit()
        return product


@pytest.fixture
def seed(db_session):
    return Seeder(db_session)


@pytest.fixture
async def three_stores(seed):
    """Stores A, B and C, each with one location"""
    return (
        await seed.store("store-a.myshopify.com"),
        await seed.store("store-b.myshopify.com"),
        await seed.store("store-c.myshopify.com"),
    )


@pytest.fixture
def fast_settings(monkeypatch, settings):
    """Short timeouts so failure paths finish quickly"""
    monkeypatch.setattr(settings, "SYNC_PUSH_TIMEOUT", 0.2)
    monkeypatch.setattr(settings, "QUEUE_BACKOFF_SECONDS", 0.0)
    return settings
