"""Job queue backends."""

from enhance_gateway.infrastructure.message_queue.factory import create_job_queue
from enhance_gateway.infrastructure.message_queue.memory_queue import InMemoryJobQueue
from enhance_gateway.infrastructure.message_queue.redis_queue import RedisJobQueue

__all__ = ["InMemoryJobQueue", "RedisJobQueue", "create_job_queue"]
