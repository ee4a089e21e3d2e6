"""
Unit Tests for InMemoryStore

Covers the SharedStore contract the coordinating components rely on:
counter TTLs, set-if-absent, compare-and-set, hashes and the due-member
pop of sorted sets, all with lazy expiry against an injected clock.
"""

import asyncio

import pytest

from enhance_gateway.core.interfaces import SharedStore


@pytest.mark.unit
class TestCounters:
    def test_satisfies_protocol(self, store):
        assert isinstance(store, SharedStore)

    async def test_incr_creates_and_counts(self, store):
        assert await store.incr("c") == 1
        assert await store.incr("c") == 2
        assert await store.get("c") == "2"

    async def test_ttl_set_on_creation_only(self, store, clock):
        await store.incr("c", ttl_ms=1000)
        clock.advance(600)
        await store.incr("c", ttl_ms=1000)
        clock.advance(400)

        assert await store.get("c") is None

    async def test_incr_after_expiry_restarts(self, store, clock):
        await store.incr("c", ttl_ms=1000)
        clock.advance(1000)

        assert await store.incr("c", ttl_ms=1000) == 1

    async def test_decr_missing_key_is_zero(self, store):
        assert await store.decr("missing") == 0
        assert await store.get("missing") is None

    async def test_concurrent_increments_are_atomic(self, store):
        results = await asyncio.gather(*(store.incr("c") for _ in range(50)))
        assert sorted(results) == list(range(1, 51))


@pytest.mark.unit
class TestStrings:
    async def test_set_nx(self, store):
        assert await store.set("k", "a", nx=True) is True
        assert await store.set("k", "b", nx=True) is False
        assert await store.get("k") == "a"

    async def test_set_nx_after_expiry(self, store, clock):
        await store.set("k", "a", ttl_ms=10, nx=True)
        clock.advance(10)
        assert await store.set("k", "b", nx=True) is True

    async def test_delete_reports_existence(self, store):
        await store.set("k", "v")
        assert await store.delete("k") is True
        assert await store.delete("k") is False

    async def test_expire_missing_key(self, store):
        assert await store.expire("missing", 100) is False

    async def test_compare_and_set(self, store):
        assert await store.compare_and_set("k", None, "v1") is True
        assert await store.compare_and_set("k", None, "v2") is False
        assert await store.compare_and_set("k", "other", "v2") is False
        assert await store.compare_and_set("k", "v1", "v2") is True
        assert await store.get("k") == "v2"


@pytest.mark.unit
class TestHashes:
    async def test_hash_roundtrip(self, store):
        await store.hset("h", "a", "1")
        await store.hset("h", "b", "2")

        assert await store.hget("h", "a") == "1"
        assert await store.hgetall("h") == {"a": "1", "b": "2"}
        assert await store.hlen("h") == 2
        assert await store.hdel("h", "a") is True
        assert await store.hdel("h", "a") is False
        assert await store.hlen("h") == 1
        assert await store.hlen("missing") == 0

    async def test_hash_expires(self, store, clock):
        await store.hset("h", "a", "1")
        await store.expire("h", 50)
        clock.advance(50)

        assert await store.hgetall("h") == {}


@pytest.mark.unit
class TestSortedSets:
    async def test_zpop_due_returns_due_members_in_score_order(self, store):
        await store.zadd("z", "late", 300)
        await store.zadd("z", "early", 100)
        await store.zadd("z", "mid", 200)

        assert await store.zpop_due("z", 250) == ["early", "mid"]
        assert await store.zpop_due("z", 250) == []
        assert await store.zpop_due("z", 300) == ["late"]

    async def test_zpop_due_respects_limit(self, store):
        for i in range(5):
            await store.zadd("z", f"m{i}", i)

        assert await store.zpop_due("z", 10, limit=2) == ["m0", "m1"]

    async def test_zadd_updates_score(self, store):
        await store.zadd("z", "m", 100)
        await store.zadd("z", "m", 500)

        assert await store.zpop_due("z", 200) == []

    async def test_close_clears_everything(self, store):
        await store.set("k", "v")
        await store.close()
        assert await store.get("k") is None
