"""
Shared Store Factory

Selects the store backend from configuration.
"""

from enhance_gateway.core.config.settings import Settings
from enhance_gateway.core.exceptions import ConfigurationError
from enhance_gateway.core.interfaces import SharedStore
from enhance_gateway.core.logging import get_logger
from enhance_gateway.infrastructure.store.memory_store import InMemoryStore
from enhance_gateway.infrastructure.store.redis_store import RedisStore

logger = get_logger(__name__)


async def create_store(settings: Settings) -> SharedStore:
    """
    Build and connect the configured store.

    Raises:
        ConfigurationError: Unknown backend
        StoreConnectionError: Redis unreachable
    """
    backend = settings.app.STORE_BACKEND

    if backend == "redis":
        store = RedisStore(settings.redis)
        await store.connect()
    elif backend == "memory":
        if settings.is_production:
            logger.warning("In-memory store in production: limits are not shared across instances")
        store = InMemoryStore()
    else:
        raise ConfigurationError(f"Unsupported store backend: {backend}")

    logger.info("Shared store ready", backend=backend)
    return store
