"""
Shared Store Protocol

Abstract protocol for the shared counter/state store every coordinating
component (rate limiter, circuit breaker, document cache, webhook registry)
is built on.

Every read-modify-write operation here is atomic across concurrent callers
and, for the Redis backend, across process instances. Components never
implement read-then-write on top of get/set.

Implementations:
- RedisStore: production backend (native commands + Lua scripts)
- InMemoryStore: single-process backend for tests and local development

Author: System Architect
Date: 2025-12-08
"""

from typing import Protocol, runtime_checkable


@runtime_checkable
class SharedStore(Protocol):
    """Protocol defining the shared store interface."""

    async def ping(self) -> bool:
        """Return True if the backend is reachable."""
        ...

    async def close(self) -> None:
        ...

    async def incr(self, key: str, ttl_ms: int | None = None) -> int:
        """
        Atomically increment a counter and return the new value.

        When ``ttl_ms`` is given, the expiry is set when the key is created
        and left untouched by later increments.
        """
        ...

    async def decr(self, key: str) -> int:
        """Atomically decrement a counter and return the new value."""
        ...

    async def get(self, key: str) -> str | None:
        ...

    async def set(self, key: str, value: str, ttl_ms: int | None = None, nx: bool = False) -> bool:
        """
        Set a value.

        Args:
            nx: Only set if the key does not exist

        Returns:
            bool: True if the value was written
        """
        ...

    async def delete(self, key: str) -> bool:
        ...

    async def expire(self, key: str, ttl_ms: int) -> bool:
        ...

    async def compare_and_set(
        self, key: str, expected: str | None, new: str, ttl_ms: int | None = None
    ) -> bool:
        """
        Atomically replace ``expected`` with ``new``.

        ``expected=None`` means the key must be absent. Returns False when
        the current value differs, leaving it untouched.
        """
        ...

    async def hset(self, key: str, field: str, value: str) -> None:
        ...

    async def hget(self, key: str, field: str) -> str | None:
        ...

    async def hgetall(self, key: str) -> dict[str, str]:
        ...

    async def hdel(self, key: str, field: str) -> bool:
        ...

    async def hlen(self, key: str) -> int:
        ...

    async def zadd(self, key: str, member: str, score: float) -> None:
        ...

    async def zpop_due(self, key: str, max_score: float, limit: int = 100) -> list[str]:
        """Atomically remove and return up to ``limit`` members with score <= max_score."""
        ...
