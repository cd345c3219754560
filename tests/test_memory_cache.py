"""Tests for the in-process key-value store used in dev mode and tests."""

import asyncio

import pytest

from contactdesk.storage.errors import StoreError, StoreErrorKind
from contactdesk.storage.memory import MemoryCache


class TestMemoryCacheExpiry:
    """Keys disappear once their TTL has elapsed on the injected clock."""

    async def test_set_get_and_expire(self, store, clock):
        await store.set("k", "v", 10)
        assert await store.get("k") == "v"
        assert await store.exists("k") is True

        clock.advance(9)
        assert await store.get("k") == "v"

        clock.advance(1)
        assert await store.get("k") is None
        assert await store.exists("k") is False

    async def test_ttl_reports_remaining_seconds(self, store, clock):
        await store.set("k", "v", 60)
        clock.advance(15)
        assert await store.ttl("k") == 45
        assert await store.ttl("missing") is None

    async def test_expire_rearms_existing_key_only(self, store, clock):
        await store.set("k", "v", 10)
        clock.advance(8)
        assert await store.expire("k", 10) is True
        clock.advance(8)
        assert await store.get("k") == "v"
        assert await store.expire("missing", 10) is False

    async def test_replace_rewrites_only_live_keys(self, store, clock):
        assert await store.replace("k", "v", 10) is False
        assert await store.get("k") is None

        await store.set("k", "v", 10)
        clock.advance(8)
        assert await store.replace("k", "w", 10) is True
        clock.advance(8)
        assert await store.get("k") == "w"

        clock.advance(2)
        assert await store.replace("k", "x", 10) is False
        assert await store.get("k") is None


class TestMemoryCacheCounters:
    async def test_increment_starts_at_one_and_resets_ttl(self, store, clock):
        assert await store.increment("c", 100) == 1
        clock.advance(90)
        assert await store.increment("c", 100) == 2
        clock.advance(90)
        # Second increment pushed expiry out to t=190
        assert await store.get("c") == "2"
        clock.advance(20)
        assert await store.get("c") is None
        assert await store.increment("c", 100) == 1

    async def test_increment_on_non_integer_is_serialization_error(self, store):
        await store.set("c", "not-a-number", 100)
        with pytest.raises(StoreError) as excinfo:
            await store.increment("c", 100)
        assert excinfo.value.kind is StoreErrorKind.SERIALIZATION
        assert await store.get("c") == "not-a-number"


class TestMemoryCacheDeletion:
    async def test_delete_counts_only_live_keys(self, store, clock):
        await store.set("a", "1", 10)
        await store.set("b", "1", 1)
        clock.advance(2)
        assert await store.delete("a", "b", "c") == 1
        assert await store.delete() == 0

    async def test_consume_succeeds_once(self, store):
        await store.set("token", "1", 60)
        assert await store.consume("token") is True
        assert await store.consume("token") is False

    async def test_concurrent_consume_has_single_winner(self):
        cache = MemoryCache()
        await cache.set("token", "1", 60)
        results = await asyncio.gather(*(cache.consume("token") for _ in range(10)))
        assert results.count(True) == 1

    async def test_close_drops_everything(self, store):
        await store.set("a", "1", 10)
        await store.close()
        assert await store.get("a") is None

    def test_verify_connection_is_a_no_op(self, store):
        assert store.verify_connection() is None
