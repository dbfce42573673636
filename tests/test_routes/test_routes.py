import json
import pytest
import httpx

from stocksync.core.enums import ConflictType, ResolutionStrategy
from stocksync.dependencies import get_db, get_platform_factory
from stocksync.main import app
from stocksync.routes.webhooks import compute_hmac
from stocksync.services.conflict_resolver import ConflictResolver
from stocksync.services.inventory_store import InventoryStore

SECRET = "test_secret"


@pytest.fixture
async def client(session_factory, platform_factory):
    """HTTP client bound to the app with the test database and mock platforms"""
    async def _get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_platform_factory] = lambda: platform_factory
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client
    app.dependency_overrides.clear()


def _webhook_headers(body: bytes, topic="orders/create", shop="store-a.myshopify.com", event_id="evt-http",
                     signature=None):
    return {
        "Content-Type": "application/json",
        "X-Shopify-Topic": topic,
        "X-Shopify-Shop-Domain": shop,
        "X-Shopify-Webhook-Id": event_id,
        "X-Shopify-Hmac-Sha256": signature if signature is not None else compute_hmac(body, SECRET),
    }


"""
1. Webhook endpoint
"""

@pytest.mark.asyncio
async def test_webhook_with_valid_signature_is_processed(client, db_session, three_stores, seed):
    store_a, _, _ = three_stores
    product = await seed.product("SKU-A", available=100, stores=three_stores)
    product_id = product.id
    await db_session.close()
    body = json.dumps({"id": 1, "line_items": [{"id": 1, "sku": "SKU-A", "quantity": 2}]}).encode()

    response = await client.post("/webhooks/shopify", content=body, headers=_webhook_headers(body))

    assert response.status_code == 200
    assert response.json() == {"status": "processed", "event_id": "evt-http"}
    assert (await InventoryStore(db_session).get_aggregate(product_id)).available_quantity == 98

    repeat = await client.post("/webhooks/shopify", content=body, headers=_webhook_headers(body))
    assert repeat.json()["status"] == "duplicate"


@pytest.mark.asyncio
async def test_webhook_with_bad_signature_is_rejected(client):
    body = b'{"id": 1}'

    response = await client.post("/webhooks/shopify", content=body, headers=_webhook_headers(body, signature="bogus"))

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_webhook_without_signature_is_rejected(client):
    body = b'{"id": 1}'
    headers = _webhook_headers(body)
    del headers["X-Shopify-Hmac-Sha256"]

    response = await client.post("/webhooks/shopify", content=body, headers=headers)

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_webhook_missing_headers_or_bad_json(client):
    body = b'{"id": 1}'
    headers = _webhook_headers(body)
    del headers["X-Shopify-Webhook-Id"]
    assert (await client.post("/webhooks/shopify", content=body, headers=headers)).status_code == 400

    garbage = b"not json"
    response = await client.post("/webhooks/shopify", content=garbage, headers=_webhook_headers(garbage))
    assert response.status_code == 400


"""
2. Inventory and conflict endpoints
"""

@pytest.mark.asyncio
async def test_inventory_status_endpoint(client, db_session, three_stores, seed):
    await seed.product("SKU-A", available=12, stores=three_stores)
    await db_session.close()

    response = await client.get("/api/inventory/SKU-A")
    assert response.status_code == 200
    data = response.json()
    assert data["central_quantity"] == 12
    assert len(data["stores"]) == 3

    assert (await client.get("/api/inventory/NOPE")).status_code == 404


@pytest.mark.asyncio
async def test_sync_to_store_endpoint(client, db_session, three_stores, seed, platform_factory):
    _, store_b, _ = three_stores
    shop_b = store_b.shop_domain
    await seed.product("SKU-A", available=12, stores=three_stores)
    await db_session.close()

    response = await client.post(f"/api/inventory/SKU-A/sync/{shop_b}")

    assert response.status_code == 200
    assert response.json()["stores_synced"] == [shop_b]
    assert platform_factory.pushed_quantities(shop_b) == [12]
    assert (await client.post("/api/inventory/SKU-A/sync/nobody.myshopify.com")).status_code == 404


@pytest.mark.asyncio
async def test_resolve_conflict_endpoint_propagates(client, db_session, three_stores, seed, platform_factory):
    store_a, store_b, store_c = three_stores
    shops = [store_a.shop_domain, store_b.shop_domain, store_c.shop_domain]
    product = await seed.product("SKU-A", available=100, stores=three_stores)
    product_id = product.id
    conflict = await ConflictResolver(db_session).create_conflict(
        ConflictType.SYNC_COLLISION, product.id, store_b.id,
        central_value={"available": 100}, store_value={"available": 95},
        resolution_strategy=ResolutionStrategy.MANUAL,
    )
    conflict_id = conflict.id
    await db_session.commit()
    await db_session.close()

    listing = await client.get("/api/conflicts")
    assert [c["id"] for c in listing.json()] == [conflict_id]

    response = await client.post(f"/api/conflicts/{conflict_id}/resolve",
                                 json={"strategy": "AVERAGE", "actor": "ops"})

    assert response.status_code == 200
    data = response.json()
    assert data["resolved"] is True
    assert data["resolved_value"] == {"available": 98}
    assert data["resolved_by"] == "ops"
    for shop in shops:
        assert platform_factory.pushed_quantities(shop) == [98]
    assert (await InventoryStore(db_session).get_aggregate(product_id)).available_quantity == 98

    stats = (await client.get("/api/conflicts/stats")).json()
    assert stats["resolved"] == 1


@pytest.mark.asyncio
async def test_resolve_conflict_endpoint_rejects_manual(client, db_session, three_stores, seed):
    _, store_b, _ = three_stores
    product = await seed.product("SKU-A", available=100, stores=three_stores)
    conflict = await ConflictResolver(db_session).create_conflict(
        ConflictType.INVENTORY_MISMATCH, product.id, store_b.id,
        central_value={"available": 100}, store_value={"available": 95},
    )
    conflict_id = conflict.id
    await db_session.commit()
    await db_session.close()

    response = await client.post(f"/api/conflicts/{conflict_id}/resolve", json={"strategy": "MANUAL"})

    assert response.status_code == 409


"""
3. Health
"""

@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert (await client.get("/health/db")).json()["database"] == "connected"
