"""
In-Memory Priority Job Queue

Single-process JobQueue for tests and local development. Jobs are ordered
by (priority, available_at, sequence): lowest priority number first, then
oldest, so FIFO holds within a priority and retried jobs wait out their
backoff.

Reserved jobs are held under a lease. A lease that runs out before the job
is completed or failed puts the job back in line, or fails it when no
attempts remain.

Author: System Architect
Date: 2025-12-08
"""

import asyncio
import itertools
import time
import uuid
from collections.abc import Callable
from typing import Any

from enhance_gateway.core.config.constants import JOB_LEASE_MS
from enhance_gateway.core.interfaces import Job, JobOptions, JobState
from enhance_gateway.core.logging import get_logger

logger = get_logger(__name__)

LEASE_EXPIRED_ERROR = "lease expired"


def _wall_clock_ms() -> float:
    return time.time() * 1000


class InMemoryJobQueue:
    """In-process JobQueue backed by per-queue sorted waiting lists."""

    def __init__(self, clock: Callable[[], float] = _wall_clock_ms, lease_ms: int = JOB_LEASE_MS):
        self._clock = clock
        self._lease_ms = lease_ms
        self._jobs: dict[str, Job] = {}
        self._waiting: dict[str, list[tuple[int, int, int, str]]] = {}
        self._leases: dict[str, int] = {}
        self._sequence = itertools.count()
        self._lock = asyncio.Lock()

    def _push(self, job: Job) -> None:
        entry = (int(job.priority), job.available_at, next(self._sequence), job.id)
        waiting = self._waiting.setdefault(job.queue_name, [])
        if any(queued_id == job.id for *_, queued_id in waiting):
            return
        waiting.append(entry)
        waiting.sort()

    def _release(self, job: Job) -> None:
        self._leases.pop(job.id, None)
        job.lease_expires_at = None

    def _reclaim_expired(self, queue_name: str, now: int) -> None:
        for job_id, expires_at in list(self._leases.items()):
            job = self._jobs[job_id]
            if job.queue_name != queue_name or expires_at > now:
                continue

            self._release(job)
            job.last_error = LEASE_EXPIRED_ERROR
            job.updated_at = now
            requeued = job.attempt < job.max_attempts
            if requeued:
                job.state = JobState.WAITING
                job.available_at = now
                self._push(job)
            else:
                job.state = JobState.FAILED
            logger.warning(
                "Job lease expired",
                job_id=job_id,
                queue=queue_name,
                attempt=job.attempt,
                requeued=requeued,
            )

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
        async with self._lock:
            self._jobs[job.id] = job
            self._push(job)
        return job

    async def get_job(self, job_id: str) -> Job | None:
        return self._jobs.get(job_id)

    async def get_state(self, job_id: str) -> JobState | None:
        job = self._jobs.get(job_id)
        return job.state if job else None

    async def reserve(self, queue_name: str) -> Job | None:
        now = int(self._clock())
        async with self._lock:
            self._reclaim_expired(queue_name, now)
            waiting = self._waiting.get(queue_name, [])
            # Entries of jobs finished by a holder whose lease had already run out
            waiting[:] = [entry for entry in waiting if not self._jobs[entry[3]].is_terminal]
            for index, (_, available_at, _, job_id) in enumerate(waiting):
                if available_at <= now:
                    del waiting[index]
                    job = self._jobs[job_id]
                    job.state = JobState.ACTIVE
                    job.attempt += 1
                    job.updated_at = now
                    job.lease_expires_at = now + self._lease_ms
                    self._leases[job.id] = job.lease_expires_at
                    return job
        return None

    async def complete(self, job: Job, result: dict[str, Any] | None = None) -> Job:
        async with self._lock:
            self._release(job)
            job.state = JobState.COMPLETED
            job.result = result
            job.updated_at = int(self._clock())
            self._jobs[job.id] = job
        return job

    async def fail(self, job: Job, error: str) -> Job:
        now = int(self._clock())
        async with self._lock:
            self._release(job)
            job.last_error = error
            job.updated_at = now
            if job.attempt < job.max_attempts:
                job.state = JobState.WAITING
                job.available_at = now + job.backoff.delay_for(job.attempt)
                self._push(job)
            else:
                job.state = JobState.FAILED
            self._jobs[job.id] = job
        return job

    async def depth(self, queue_name: str) -> int:
        return len(self._waiting.get(queue_name, []))

    async def close(self) -> None:
        async with self._lock:
            self._waiting.clear()
            self._leases.clear()
