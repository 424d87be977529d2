"""RedisSessionStore tests. Skipped when no Redis server is reachable."""

import asyncio

import pytest
import redis.asyncio as aioredis
from redis.exceptions import ConnectionError as RedisConnectionError

from rh_checkout.errors import SessionLockedError
from rh_checkout.services.session_store import (
    IntentStatus,
    PaymentIntentRecord,
    RedisSessionStore,
)
from tests.config import test_config


@pytest.fixture
async def redis_client():
    client = aioredis.from_url(
        test_config["redis_url"], decode_responses=True, socket_connect_timeout=1
    )
    try:
        await client.ping()
    except (RedisConnectionError, OSError):
        await client.aclose()
        pytest.skip("Redis not available")
    await client.flushdb()
    yield client
    await client.flushdb()
    await client.aclose()


def make_store(redis_client, clock, **kwargs):
    options = {"ttl_seconds": 900, "lock_wait_seconds": 1.0, "clock": clock}
    options.update(kwargs)
    return RedisSessionStore(redis_client, **options)


class TestRedisSessionStore:
    async def test_round_trip(self, redis_client, clock):
        store = make_store(redis_client, clock)
        session = store.new_session("abc")
        session.locked = True
        session.intent = PaymentIntentRecord(
            external_intent_id="pi_1",
            client_secret="pi_1_secret",
            amount=24900,
            created_at=clock(),
        )

        await store.save(session)
        restored = await store.get("abc")

        assert restored == session
        assert restored.intent.status == IntentStatus.CREATED
        assert 0 < await redis_client.ttl("checkout_session:abc") <= 900

    async def test_expired_session_is_dropped(self, redis_client, clock):
        store = make_store(redis_client, clock)
        await store.save(store.new_session("abc"))

        clock.advance(901)

        assert await store.get("abc") is None
        assert await redis_client.exists("checkout_session:abc") == 0

    async def test_corrupted_document_is_discarded(self, redis_client, clock):
        store = make_store(redis_client, clock)
        await redis_client.set("checkout_session:abc", "{not json")

        assert await store.get("abc") is None
        assert await redis_client.exists("checkout_session:abc") == 0

    async def test_two_instances_lock_once(self, redis_client, clock):
        first = make_store(redis_client, clock)
        second = make_store(redis_client, clock)

        results = await asyncio.gather(
            *[store.try_lock("abc") for store in (first, second, first, second)]
        )

        assert results.count(True) == 1
        assert (await second.get("abc")).locked

    async def test_guard_times_out(self, redis_client, clock):
        store = make_store(redis_client, clock, lock_wait_seconds=0.1)

        async with store.guard("abc"):
            with pytest.raises(SessionLockedError):
                async with store.guard("abc"):
                    pass

    async def test_stats(self, redis_client, clock):
        store = make_store(redis_client, clock)
        await store.save(store.new_session("a"))
        await store.try_lock("b")

        stats = await store.stats()

        assert stats["backend"] == "redis"
        assert stats["activeSessions"] == 2
        assert stats["lockedSessions"] == 1
        assert stats["paymentIntents"] == 0
