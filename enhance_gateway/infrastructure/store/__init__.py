"""Shared store backends."""

from enhance_gateway.infrastructure.store.factory import create_store
from enhance_gateway.infrastructure.store.memory_store import InMemoryStore
from enhance_gateway.infrastructure.store.redis_store import RedisStore

__all__ = ["InMemoryStore", "RedisStore", "create_store"]
