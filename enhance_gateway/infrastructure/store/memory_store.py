"""
In-Memory Shared Store

Single-process implementation of the SharedStore protocol for tests and
local development. One asyncio.Lock serialises every operation, which gives
the same atomicity the Redis backend gets from single-threaded command
execution. Expiry is evaluated lazily against an injectable millisecond clock.

Author: System Architect
Date: 2025-12-08
"""

import asyncio
import time
from collections.abc import Callable
from typing import Any


def _wall_clock_ms() -> float:
    return time.time() * 1000


class InMemoryStore:
    """In-process SharedStore."""

    def __init__(self, clock: Callable[[], float] = _wall_clock_ms):
        self._clock = clock
        self._data: dict[str, Any] = {}
        self._expires_at: dict[str, float] = {}
        self._lock = asyncio.Lock()

    def _alive(self, key: str) -> bool:
        """Drop the key if its TTL elapsed. Caller holds the lock."""
        expires_at = self._expires_at.get(key)
        if expires_at is not None and self._clock() >= expires_at:
            self._data.pop(key, None)
            self._expires_at.pop(key, None)
        return key in self._data

    def _set_ttl(self, key: str, ttl_ms: int | None) -> None:
        if ttl_ms:
            self._expires_at[key] = self._clock() + ttl_ms
        else:
            self._expires_at.pop(key, None)

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        async with self._lock:
            self._data.clear()
            self._expires_at.clear()

    async def incr(self, key: str, ttl_ms: int | None = None) -> int:
        async with self._lock:
            if not self._alive(key):
                self._data[key] = 0
                self._set_ttl(key, ttl_ms)
            self._data[key] = int(self._data[key]) + 1
            return self._data[key]

    async def decr(self, key: str) -> int:
        async with self._lock:
            if not self._alive(key):
                return 0
            self._data[key] = int(self._data[key]) - 1
            return self._data[key]

    async def get(self, key: str) -> str | None:
        async with self._lock:
            if not self._alive(key):
                return None
            value = self._data[key]
            return str(value) if isinstance(value, int) else value

    async def set(self, key: str, value: str, ttl_ms: int | None = None, nx: bool = False) -> bool:
        async with self._lock:
            if nx and self._alive(key):
                return False
            self._data[key] = value
            self._set_ttl(key, ttl_ms)
            return True

    async def delete(self, key: str) -> bool:
        async with self._lock:
            existed = self._alive(key)
            self._data.pop(key, None)
            self._expires_at.pop(key, None)
            return existed

    async def expire(self, key: str, ttl_ms: int) -> bool:
        async with self._lock:
            if not self._alive(key):
                return False
            self._set_ttl(key, ttl_ms)
            return True

    async def compare_and_set(
        self, key: str, expected: str | None, new: str, ttl_ms: int | None = None
    ) -> bool:
        async with self._lock:
            current = self._data[key] if self._alive(key) else None
            if current != expected:
                return False
            self._data[key] = new
            self._set_ttl(key, ttl_ms)
            return True

    async def hset(self, key: str, field: str, value: str) -> None:
        async with self._lock:
            if not self._alive(key):
                self._data[key] = {}
            self._data[key][field] = value

    async def hget(self, key: str, field: str) -> str | None:
        async with self._lock:
            if not self._alive(key):
                return None
            return self._data[key].get(field)

    async def hgetall(self, key: str) -> dict[str, str]:
        async with self._lock:
            if not self._alive(key):
                return {}
            return dict(self._data[key])

    async def hdel(self, key: str, field: str) -> bool:
        async with self._lock:
            if not self._alive(key):
                return False
            return self._data[key].pop(field, None) is not None

    async def hlen(self, key: str) -> int:
        async with self._lock:
            if not self._alive(key):
                return 0
            return len(self._data[key])

    async def zadd(self, key: str, member: str, score: float) -> None:
        async with self._lock:
            if not self._alive(key):
                self._data[key] = {}
            self._data[key][member] = score

    async def zpop_due(self, key: str, max_score: float, limit: int = 100) -> list[str]:
        async with self._lock:
            if not self._alive(key):
                return []
            members = self._data[key]
            due = sorted((score, member) for member, score in members.items() if score <= max_score)
            popped = [member for _, member in due[:limit]]
            for member in popped:
                del members[member]
            return popped
