"""
Redis Priority Job Queue

Architecture:
    RedisJobQueue (Public API)
        ├── JobSerializer (orjson encoding of job records)
        └── Lua reservation script (lease reclaim, promotion, atomic pop)

Layout per queue ``q``:
    queue:{q}:ready       sorted set of due jobs, member = job id,
                          score = priority * 10^13 + available_at_ms
    queue:{q}:delayed     sorted set of jobs waiting out a retry backoff,
                          score = available_at_ms
    queue:{q}:active      sorted set of reserved jobs, score = lease expiry ms
    queue:{q}:priorities  hash of job id -> priority for live jobs
    job:{id}              JSON job record

The ready score orders by priority first, then by the time the job became
available, so FIFO holds within a priority. Each reservation first moves
expired leases and due delayed jobs into the ready set, then pops its head.
A job whose lease ran out keeps its ACTIVE record until it is reserved
again; at that point it either runs again or, with no attempts left, is
marked FAILED.

Author: System Architect
Date: 2025-12-13
"""

import time
import uuid
from collections.abc import Callable
from typing import Any

import orjson
import redis.asyncio as redis
from redis.exceptions import ConnectionError, RedisError, TimeoutError

from enhance_gateway.core.config.constants import JOB_KEY_PREFIX, JOB_LEASE_MS, QUEUE_KEY_PREFIX
from enhance_gateway.core.exceptions import QueueConnectionError, QueueError
from enhance_gateway.core.interfaces import Job, JobOptions, JobPriority, JobState
from enhance_gateway.core.logging import get_logger

logger = get_logger(__name__)

PRIORITY_SCORE_FACTOR = 10**13
# Upper bound on expired leases and due delayed jobs moved per reservation
PROMOTE_BATCH_LIMIT = 100
# Terminal jobs stay queryable for a week
TERMINAL_JOB_TTL_MS = 7 * 24 * 60 * 60 * 1000
LEASE_EXPIRED_ERROR = "lease expired"

# KEYS: ready, delayed, active, priorities
# ARGV: now, lease_ms, priority factor, batch limit, default priority
_RESERVE = """
local now = tonumber(ARGV[1])
local factor = tonumber(ARGV[3])
local limit = tonumber(ARGV[4])

local function priority_of(id)
    return tonumber(redis.call('HGET', KEYS[4], id) or ARGV[5])
end

local expired = redis.call('ZRANGEBYSCORE', KEYS[3], '-inf', now, 'LIMIT', 0, limit)
for _, id in ipairs(expired) do
    redis.call('ZREM', KEYS[3], id)
    redis.call('ZADD', KEYS[1], priority_of(id) * factor + now, id)
end

local due = redis.call('ZRANGEBYSCORE', KEYS[2], '-inf', now, 'WITHSCORES', 'LIMIT', 0, limit)
for i = 1, #due, 2 do
    local id = due[i]
    redis.call('ZREM', KEYS[2], id)
    redis.call('ZADD', KEYS[1], priority_of(id) * factor + tonumber(due[i + 1]), id)
end

local head = redis.call('ZRANGE', KEYS[1], 0, 0)
if #head == 0 then
    return false
end
redis.call('ZREM', KEYS[1], head[1])
redis.call('ZADD', KEYS[3], now + tonumber(ARGV[2]), head[1])
return head[1]
"""


def _wall_clock_ms() -> float:
    return time.time() * 1000


# =============================================================================
# LAYER 1: SERIALIZATION
# =============================================================================


class JobSerializer:
    """orjson encoding of job records."""

    @staticmethod
    def serialize(job: Job) -> str:
        return orjson.dumps(job.to_dict()).decode()

    @staticmethod
    def deserialize(raw: str) -> Job:
        return Job.from_dict(orjson.loads(raw))


# =============================================================================
# LAYER 2: PUBLIC API
# =============================================================================


class RedisJobQueue:
    """
    Durable JobQueue on Redis.

    Usage:
        queue = RedisJobQueue(store.client, lease_ms=300_000)
        job = await queue.add("enhancement", {"document_id": "d1"}, JobOptions())
        reserved = await queue.reserve("enhancement")
    """

    def __init__(
        self,
        client: redis.Redis,
        clock: Callable[[], float] = _wall_clock_ms,
        lease_ms: int = JOB_LEASE_MS,
    ):
        self._client = client
        self._clock = clock
        self._lease_ms = lease_ms
        self._reserve = client.register_script(_RESERVE)

    @staticmethod
    def _queue_key(queue_name: str, part: str) -> str:
        return f"{QUEUE_KEY_PREFIX}:{queue_name}:{part}"

    @staticmethod
    def _job_key(job_id: str) -> str:
        return f"{JOB_KEY_PREFIX}:{job_id}"

    @staticmethod
    def _score(job: Job) -> int:
        return int(job.priority) * PRIORITY_SCORE_FACTOR + job.available_at

    async def _call(self, operation: str, coro):
        try:
            return await coro
        except (ConnectionError, TimeoutError) as e:
            logger.error("Job queue unreachable", operation=operation, error=str(e))
            raise QueueConnectionError.from_exception(e, operation=operation)
        except RedisError as e:
            logger.error("Job queue command failed", operation=operation, error=str(e))
            raise QueueError.from_exception(e, operation=operation)

    async def _save(self, job: Job, requeue: bool = False) -> None:
        queue_name = job.queue_name
        pipe = self._client.pipeline(transaction=True)
        ttl = TERMINAL_JOB_TTL_MS if job.is_terminal else None
        pipe.set(self._job_key(job.id), JobSerializer.serialize(job), px=ttl)
        if job.state != JobState.ACTIVE:
            pipe.zrem(self._queue_key(queue_name, "active"), job.id)
        if requeue:
            pipe.zadd(self._queue_key(queue_name, "delayed"), {job.id: job.available_at})
        if job.is_terminal:
            pipe.hdel(self._queue_key(queue_name, "priorities"), job.id)
        await self._call("save", pipe.execute())

    async def add(self, queue_name: str, payload: dict[str, Any], options: JobOptions) -> Job:
        now = int(self._clock())
        job = Job(
            id=uuid.uuid4().hex,
            queue_name=queue_name,
            payload=dict(payload),
            priority=options.priority,
            max_attempts=options.attempts,
            backoff=options.backoff,
            created_at=now,
            updated_at=now,
            available_at=now,
        )
        pipe = self._client.pipeline(transaction=True)
        pipe.set(self._job_key(job.id), JobSerializer.serialize(job))
        pipe.hset(self._queue_key(queue_name, "priorities"), job.id, int(job.priority))
        pipe.zadd(self._queue_key(queue_name, "ready"), {job.id: self._score(job)})
        await self._call("add", pipe.execute())
        return job

    async def get_job(self, job_id: str) -> Job | None:
        raw = await self._call("get", self._client.get(self._job_key(job_id)))
        return JobSerializer.deserialize(raw) if raw else None

    async def get_state(self, job_id: str) -> JobState | None:
        job = await self.get_job(job_id)
        return job.state if job else None

    async def reserve(self, queue_name: str) -> Job | None:
        keys = [
            self._queue_key(queue_name, "ready"),
            self._queue_key(queue_name, "delayed"),
            self._queue_key(queue_name, "active"),
            self._queue_key(queue_name, "priorities"),
        ]
        while True:
            now = int(self._clock())
            job_id = await self._call(
                "reserve",
                self._reserve(
                    keys=keys,
                    args=[now, self._lease_ms, PRIORITY_SCORE_FACTOR, PROMOTE_BATCH_LIMIT, int(JobPriority.NORMAL)],
                ),
            )
            if not job_id:
                return None

            job = await self.get_job(job_id)
            if job is None:
                logger.warning("Reserved job record missing", job_id=job_id, queue=queue_name)
                await self._call("reserve", self._client.zrem(keys[2], job_id))
                return None

            # Finished by a holder whose lease had already run out
            if job.is_terminal:
                await self._call("reserve", self._client.zrem(keys[2], job_id))
                continue

            # An ACTIVE record here means the previous holder's lease ran out
            if job.state == JobState.ACTIVE:
                logger.warning("Job lease expired", job_id=job.id, queue=queue_name, attempt=job.attempt)
                job.last_error = LEASE_EXPIRED_ERROR
                if job.attempt >= job.max_attempts:
                    job.state = JobState.FAILED
                    job.updated_at = now
                    job.lease_expires_at = None
                    await self._save(job)
                    continue

            job.state = JobState.ACTIVE
            job.attempt += 1
            job.updated_at = now
            job.lease_expires_at = now + self._lease_ms
            await self._save(job)
            return job

    async def complete(self, job: Job, result: dict[str, Any] | None = None) -> Job:
        job.state = JobState.COMPLETED
        job.result = result
        job.updated_at = int(self._clock())
        job.lease_expires_at = None
        await self._save(job)
        return job

    async def fail(self, job: Job, error: str) -> Job:
        now = int(self._clock())
        job.last_error = error
        job.updated_at = now
        job.lease_expires_at = None
        if job.attempt < job.max_attempts:
            job.state = JobState.WAITING
            job.available_at = now + job.backoff.delay_for(job.attempt)
            await self._save(job, requeue=True)
        else:
            job.state = JobState.FAILED
            await self._save(job)
        return job

    async def depth(self, queue_name: str) -> int:
        pipe = self._client.pipeline(transaction=False)
        pipe.zcard(self._queue_key(queue_name, "ready"))
        pipe.zcard(self._queue_key(queue_name, "delayed"))
        return sum(int(count) for count in await self._call("depth", pipe.execute()))

    async def close(self) -> None:
        # The client belongs to the store; nothing to release here
        return None
