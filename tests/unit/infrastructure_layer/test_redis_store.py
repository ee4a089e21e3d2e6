"""
Unit Tests for RedisStore

Uses a mocked redis client: verifies that each operation maps to the right
command or Lua script and that redis-py errors become store errors.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError, ResponseError

from enhance_gateway.core.config.settings import RedisSettings
from enhance_gateway.core.exceptions import StoreConnectionError, StoreError
from enhance_gateway.infrastructure.store import RedisStore


@pytest.fixture
def scripts():
    return {name: AsyncMock() for name in ("incr", "decr", "cas", "zpop_due")}


@pytest.fixture
def mock_client(scripts):
    client = MagicMock()
    client.register_script.side_effect = [scripts["incr"], scripts["decr"], scripts["cas"], scripts["zpop_due"]]
    client.get = AsyncMock(return_value="v")
    client.set = AsyncMock(return_value=True)
    client.ping = AsyncMock(return_value=True)
    client.zadd = AsyncMock()
    client.hgetall = AsyncMock(return_value={"a": "1"})
    client.hlen = AsyncMock(return_value=3)
    client.aclose = AsyncMock()
    return client


@pytest.fixture
def redis_store(mock_client):
    return RedisStore(RedisSettings(), client=mock_client)


@pytest.mark.unit
class TestRedisStore:
    async def test_incr_passes_ttl_to_script(self, redis_store, scripts):
        scripts["incr"].return_value = 4

        assert await redis_store.incr("ratelimit:user:u1:1", ttl_ms=60_000) == 4
        scripts["incr"].assert_awaited_once_with(keys=["ratelimit:user:u1:1"], args=[60_000])

    async def test_incr_without_ttl(self, redis_store, scripts):
        scripts["incr"].return_value = 1
        await redis_store.incr("k")
        scripts["incr"].assert_awaited_once_with(keys=["k"], args=[0])

    async def test_set_nx_with_ttl(self, redis_store, mock_client):
        mock_client.set.return_value = None

        assert await redis_store.set("k", "v", ttl_ms=500, nx=True) is False
        mock_client.set.assert_awaited_once_with("k", "v", px=500, nx=True)

    async def test_compare_and_set_expecting_absent(self, redis_store, scripts):
        scripts["cas"].return_value = 1

        assert await redis_store.compare_and_set("circuit:enhance", None, "{}") is True
        scripts["cas"].assert_awaited_once_with(keys=["circuit:enhance"], args=["", "{}", 0, "1"])

    async def test_compare_and_set_expecting_value(self, redis_store, scripts):
        scripts["cas"].return_value = 0

        assert await redis_store.compare_and_set("k", "old", "new", ttl_ms=10) is False
        scripts["cas"].assert_awaited_once_with(keys=["k"], args=["old", "new", 10, "0"])

    async def test_zadd_and_zpop_due(self, redis_store, mock_client, scripts):
        scripts["zpop_due"].return_value = ["d1", "d2"]

        await redis_store.zadd("webhook:retry_schedule", "d1", 1000.0)
        popped = await redis_store.zpop_due("webhook:retry_schedule", 2000.0, limit=10)

        mock_client.zadd.assert_awaited_once_with("webhook:retry_schedule", {"d1": 1000.0})
        assert popped == ["d1", "d2"]

    async def test_hlen(self, redis_store, mock_client):
        assert await redis_store.hlen("h") == 3
        mock_client.hlen.assert_awaited_once_with("h")

    async def test_connection_error_translated(self, redis_store, mock_client):
        mock_client.get.side_effect = ConnectionError("refused")

        with pytest.raises(StoreConnectionError) as exc_info:
            await redis_store.get("k")
        assert exc_info.value.details["command"] == "GET"

    async def test_command_error_translated(self, redis_store, mock_client):
        mock_client.hgetall.side_effect = ResponseError("WRONGTYPE")

        with pytest.raises(StoreError):
            await redis_store.hgetall("k")

    async def test_not_connected(self):
        store = RedisStore(RedisSettings())

        assert await store.ping() is False
        with pytest.raises(StoreConnectionError):
            await store.get("k")

    async def test_ping_failure_reports_false(self, redis_store, mock_client):
        mock_client.ping.side_effect = ConnectionError("down")
        assert await redis_store.ping() is False

    async def test_close_releases_client(self, redis_store, mock_client):
        await redis_store.close()

        mock_client.aclose.assert_awaited_once()
        assert redis_store.client is None
