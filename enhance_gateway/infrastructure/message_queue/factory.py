"""
Job Queue Factory

Selects the queue backend from configuration. The Redis queue shares the
connection pool of the Redis store.
"""

from enhance_gateway.core.config.settings import QueueSettings
from enhance_gateway.core.exceptions import ConfigurationError
from enhance_gateway.core.interfaces import JobQueue, SharedStore
from enhance_gateway.core.logging import get_logger
from enhance_gateway.infrastructure.message_queue.memory_queue import InMemoryJobQueue
from enhance_gateway.infrastructure.message_queue.redis_queue import RedisJobQueue
from enhance_gateway.infrastructure.store.redis_store import RedisStore

logger = get_logger(__name__)


def create_job_queue(settings: QueueSettings, store: SharedStore) -> JobQueue:
    """
    Build the configured job queue.

    Raises:
        ConfigurationError: Redis queue requested without a Redis store
    """
    backend = settings.QUEUE_BACKEND

    if backend == "redis":
        if not isinstance(store, RedisStore) or store.client is None:
            raise ConfigurationError(
                "QUEUE_BACKEND=redis requires STORE_BACKEND=redis",
                details={"queue_backend": backend},
            )
        queue = RedisJobQueue(store.client, lease_ms=settings.QUEUE_JOB_LEASE_MS)
    elif backend == "memory":
        queue = InMemoryJobQueue(lease_ms=settings.QUEUE_JOB_LEASE_MS)
    else:
        raise ConfigurationError(f"Unknown queue backend: {backend}")

    logger.info("Job queue ready", backend=backend)
    return queue
