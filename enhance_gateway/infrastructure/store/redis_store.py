#!/usr/bin/env python3
"""
Redis Shared Store with Connection Pooling

Async Redis-backed implementation of the SharedStore protocol. Every
read-modify-write is a single server-side operation: native atomic commands
(INCR, SET NX, HSET, ZADD) or a registered Lua script, so counters and
circuit state stay consistent across every gateway instance.

Author: Senior Solution Architect
Date: 2025-12-05
"""

import logging
from contextlib import asynccontextmanager

import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool
from redis.exceptions import ConnectionError, RedisError, TimeoutError
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from enhance_gateway.core.config.settings import RedisSettings
from enhance_gateway.core.exceptions import StoreConnectionError, StoreError
from enhance_gateway.core.logging import get_logger

logger = get_logger(__name__)
# tenacity logs through the standard library
_std_logger = logging.getLogger(__name__)


# INCR and set the expiry only on the increment that created the key.
_INCR_WITH_TTL = """
local value = redis.call('INCR', KEYS[1])
if value == 1 and tonumber(ARGV[1]) > 0 then
    redis.call('PEXPIRE', KEYS[1], ARGV[1])
end
return value
"""

# DECR only an existing key so an expired window is never resurrected without a TTL.
_DECR_IF_EXISTS = """
if redis.call('EXISTS', KEYS[1]) == 1 then
    return redis.call('DECR', KEYS[1])
end
return 0
"""

# ARGV: expected, new, ttl_ms, expect_absent
_COMPARE_AND_SET = """
local current = redis.call('GET', KEYS[1])
if ARGV[4] == '1' then
    if current then return 0 end
elseif current ~= ARGV[1] then
    return 0
end
if tonumber(ARGV[3]) > 0 then
    redis.call('SET', KEYS[1], ARGV[2], 'PX', ARGV[3])
else
    redis.call('SET', KEYS[1], ARGV[2])
end
return 1
"""

_ZPOP_DUE = """
local members = redis.call('ZRANGEBYSCORE', KEYS[1], '-inf', ARGV[1], 'LIMIT', 0, ARGV[2])
if #members > 0 then
    redis.call('ZREM', KEYS[1], unpack(members))
end
return members
"""


class RedisStore:
    """
    Redis implementation of SharedStore.

    Usage:
        store = RedisStore(settings.redis)
        await store.connect()
        count = await store.incr("ratelimit:user:u1:28000", ttl_ms=60000)
        await store.close()
    """

    def __init__(self, settings: RedisSettings, client: redis.Redis | None = None):
        self.settings = settings
        self.pool: ConnectionPool | None = None
        self.client: redis.Redis | None = client
        self._scripts: dict = {}
        if client is not None:
            self._register_scripts()

    def _register_scripts(self) -> None:
        self._scripts = {
            "incr": self.client.register_script(_INCR_WITH_TTL),
            "decr": self.client.register_script(_DECR_IF_EXISTS),
            "cas": self.client.register_script(_COMPARE_AND_SET),
            "zpop_due": self.client.register_script(_ZPOP_DUE),
        }

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential_jitter(initial=0.5, max=5),
        retry=retry_if_exception_type(StoreConnectionError),
        before_sleep=before_sleep_log(_std_logger, logging.WARNING),
        reraise=True,
    )
    async def connect(self) -> None:
        """
        Create the connection pool and verify it with PING.

        Raises:
            StoreConnectionError: If Redis is unreachable after retries
        """
        if self.client is not None:
            return

        self.pool = ConnectionPool(
            host=self.settings.REDIS_HOST,
            port=self.settings.REDIS_PORT,
            db=self.settings.REDIS_DB,
            password=self.settings.REDIS_PASSWORD,
            max_connections=self.settings.REDIS_MAX_CONNECTIONS,
            socket_connect_timeout=self.settings.REDIS_SOCKET_CONNECT_TIMEOUT,
            socket_timeout=self.settings.REDIS_SOCKET_TIMEOUT,
            retry_on_timeout=True,
            health_check_interval=self.settings.REDIS_HEALTH_CHECK_INTERVAL,
            decode_responses=True,
        )
        client = redis.Redis(connection_pool=self.pool)

        try:
            await client.ping()
        except (ConnectionError, TimeoutError) as e:
            await self.pool.disconnect()
            self.pool = None
            logger.error("Failed to connect to Redis", host=self.settings.REDIS_HOST, error=str(e))
            raise StoreConnectionError.from_exception(
                e,
                message=f"Failed to connect to Redis: {e}",
                host=self.settings.REDIS_HOST,
                port=self.settings.REDIS_PORT,
            )

        self.client = client
        self._register_scripts()
        logger.info(
            "Redis connected",
            host=self.settings.REDIS_HOST,
            port=self.settings.REDIS_PORT,
            max_connections=self.settings.REDIS_MAX_CONNECTIONS,
        )

    async def close(self) -> None:
        if self.client is not None:
            await self.client.aclose()
            self.client = None
        if self.pool is not None:
            await self.pool.disconnect()
            self.pool = None
        logger.info("Redis disconnected")

    async def ping(self) -> bool:
        if self.client is None:
            return False
        try:
            return bool(await self.client.ping())
        except (ConnectionError, TimeoutError):
            return False

    @asynccontextmanager
    async def _command(self, name: str, key: str):
        """Translate redis-py errors into store errors."""
        if self.client is None:
            raise StoreConnectionError("Redis store is not connected", details={"command": name})
        try:
            yield
        except (ConnectionError, TimeoutError) as e:
            logger.error("Redis unreachable", command=name, key=key, error=str(e))
            raise StoreConnectionError.from_exception(e, command=name, key=key)
        except RedisError as e:
            logger.error("Redis command failed", command=name, key=key, error=str(e))
            raise StoreError.from_exception(e, message=f"Redis {name} failed: {e}", key=key)

    # =========================================================================
    # Counters
    # =========================================================================

    async def incr(self, key: str, ttl_ms: int | None = None) -> int:
        async with self._command("INCR", key):
            return int(await self._scripts["incr"](keys=[key], args=[ttl_ms or 0]))

    async def decr(self, key: str) -> int:
        async with self._command("DECR", key):
            return int(await self._scripts["decr"](keys=[key]))

    # =========================================================================
    # Strings
    # =========================================================================

    async def get(self, key: str) -> str | None:
        async with self._command("GET", key):
            return await self.client.get(key)

    async def set(self, key: str, value: str, ttl_ms: int | None = None, nx: bool = False) -> bool:
        async with self._command("SET", key):
            result = await self.client.set(key, value, px=ttl_ms, nx=nx)
            return bool(result)

    async def delete(self, key: str) -> bool:
        async with self._command("DEL", key):
            return bool(await self.client.delete(key))

    async def expire(self, key: str, ttl_ms: int) -> bool:
        async with self._command("PEXPIRE", key):
            return bool(await self.client.pexpire(key, ttl_ms))

    async def compare_and_set(
        self, key: str, expected: str | None, new: str, ttl_ms: int | None = None
    ) -> bool:
        async with self._command("CAS", key):
            result = await self._scripts["cas"](
                keys=[key],
                args=[expected or "", new, ttl_ms or 0, "1" if expected is None else "0"],
            )
            return bool(result)

    # =========================================================================
    # Hashes
    # =========================================================================

    async def hset(self, key: str, field: str, value: str) -> None:
        async with self._command("HSET", key):
            await self.client.hset(key, field, value)

    async def hget(self, key: str, field: str) -> str | None:
        async with self._command("HGET", key):
            return await self.client.hget(key, field)

    async def hgetall(self, key: str) -> dict[str, str]:
        async with self._command("HGETALL", key):
            return dict(await self.client.hgetall(key))

    async def hdel(self, key: str, field: str) -> bool:
        async with self._command("HDEL", key):
            return bool(await self.client.hdel(key, field))

    async def hlen(self, key: str) -> int:
        async with self._command("HLEN", key):
            return int(await self.client.hlen(key))

    # =========================================================================
    # Sorted sets
    # =========================================================================

    async def zadd(self, key: str, member: str, score: float) -> None:
        async with self._command("ZADD", key):
            await self.client.zadd(key, {member: score})

    async def zpop_due(self, key: str, max_score: float, limit: int = 100) -> list[str]:
        async with self._command("ZPOP_DUE", key):
            return list(await self._scripts["zpop_due"](keys=[key], args=[max_score, limit]))
