"""
Idempotency-Key replay on order commands, backed by fakeredis.
"""
import fakeredis.aioredis
import httpx
import pytest
import pytest_asyncio

from conftest import OTHER_RESTAURANT_ID, auth_headers, make_token, seed_table_session
from order_service.db.database import get_session_factory
from order_service.main import app
from order_service.middleware import idempotency

BASE = "/api/v1/orders"


@pytest_asyncio.fixture
async def redis(monkeypatch):
    fake = fakeredis.aioredis.FakeRedis(decode_responses=True)
    monkeypatch.setattr(idempotency, "get_redis", lambda: fake)
    yield fake
    await fake.aclose()


@pytest_asyncio.fixture
async def client(session_factory, hub, redis):
    previous_hub = app.state.hub
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.state.hub = hub
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()
    app.state.hub = previous_hub


@pytest.mark.asyncio
async def test_retried_create_is_replayed(client, redis, table_session_id):
    headers = {**auth_headers("WAITER"), "Idempotency-Key": "create-1"}
    first = await client.post(BASE, json={"tableSessionId": table_session_id}, headers=headers)
    second = await client.post(BASE, json={"tableSessionId": table_session_id}, headers=headers)

    assert first.status_code == second.status_code == 201
    assert second.headers.get("X-Idempotency-Replay") == "true"
    assert second.json()["id"] == first.json()["id"]

    active = await client.get(f"{BASE}/active", headers=auth_headers("WAITER"))
    assert len(active.json()) == 1
    assert await redis.ttl("idempotent:rest-1:user-1:create-1") > 0


@pytest.mark.asyncio
async def test_retried_confirm_emits_once(client, hub, table_session_id):
    waiter = auth_headers("WAITER")
    order = (await client.post(BASE, json={"tableSessionId": table_session_id}, headers=waiter)).json()
    await client.post(f"{BASE}/{order['id']}/items", json={"name": "Tea", "qty": 1}, headers=waiter)

    headers = {**waiter, "Idempotency-Key": f"confirm-{order['id']}"}
    first = await client.post(f"{BASE}/{order['id']}/confirm", headers=headers)
    second = await client.post(f"{BASE}/{order['id']}/confirm", headers=headers)

    assert first.status_code == second.status_code == 200
    assert second.headers.get("X-Idempotency-Replay") == "true"
    assert len(hub.published) == 2


@pytest.mark.asyncio
async def test_keys_are_scoped_per_restaurant(client, session_factory, table_session_id):
    foreign_session = await seed_table_session(session_factory, restaurant_id=OTHER_RESTAURANT_ID)

    mine = await client.post(
        BASE,
        json={"tableSessionId": table_session_id},
        headers={**auth_headers("WAITER"), "Idempotency-Key": "shared"},
    )
    theirs = await client.post(
        BASE,
        json={"tableSessionId": foreign_session},
        headers={**auth_headers("WAITER", OTHER_RESTAURANT_ID), "Idempotency-Key": "shared"},
    )
    assert theirs.headers.get("X-Idempotency-Replay") is None
    assert theirs.json()["id"] != mine.json()["id"]
    assert theirs.json()["restaurantId"] == OTHER_RESTAURANT_ID


@pytest.mark.asyncio
async def test_redis_outage_fails_open(client, monkeypatch, table_session_id):
    class _DownRedis:
        async def get(self, key):
            raise ConnectionError("redis down")

    monkeypatch.setattr(idempotency, "get_redis", lambda: _DownRedis())
    r = await client.post(
        BASE,
        json={"tableSessionId": table_session_id},
        headers={**auth_headers("WAITER"), "Idempotency-Key": "k-1"},
    )
    assert r.status_code == 201


@pytest.mark.asyncio
async def test_key_reused_for_another_command_is_refused(client, hub, table_session_id):
    waiter = auth_headers("WAITER")
    order = (await client.post(BASE, json={"tableSessionId": table_session_id}, headers=waiter)).json()
    headers = {**waiter, "Idempotency-Key": "k1"}

    added = await client.post(f"{BASE}/{order['id']}/items", json={"name": "Tea", "qty": 1}, headers=headers)
    assert added.status_code == 201
    published = len(hub.published)

    r = await client.post(f"{BASE}/{order['id']}/confirm", headers=headers)
    assert r.status_code == 422
    assert r.headers.get("X-Idempotency-Replay") is None
    assert len(hub.published) == published
    assert (await client.get(f"{BASE}/{order['id']}", headers=waiter)).json()["status"] == "DRAFT"

    r = await client.post(f"{BASE}/{order['id']}/confirm", headers={**waiter, "Idempotency-Key": "k2"})
    assert r.status_code == 200
    assert r.json()["status"] == "CONFIRMED"


@pytest.mark.asyncio
async def test_keys_are_scoped_per_user(client, table_session_id):
    first = await client.post(
        BASE,
        json={"tableSessionId": table_session_id},
        headers={**auth_headers("WAITER"), "Idempotency-Key": "shared"},
    )
    second = await client.post(
        BASE,
        json={"tableSessionId": table_session_id},
        headers={"Authorization": f"Bearer {make_token('WAITER', user_id='user-2')}", "Idempotency-Key": "shared"},
    )
    assert second.headers.get("X-Idempotency-Replay") is None
    assert second.json()["id"] != first.json()["id"]
    assert second.json()["createdByUserId"] == "user-2"
