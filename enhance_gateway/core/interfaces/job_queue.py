"""
Job Queue Protocol

Abstract protocol for the durable, at-least-once job queue the dispatcher
hands enhancement work to, plus the job record types shared by every
implementation.

Author: System Architect
Date: 2025-12-08
"""

from dataclasses import asdict, dataclass, field
from enum import Enum, IntEnum
from typing import Any, Protocol, runtime_checkable


class JobPriority(IntEnum):
    """Lower number is dequeued first."""
    HIGH = 1
    NORMAL = 2
    LOW = 3

    @classmethod
    def parse(cls, value: "JobPriority | int | str") -> "JobPriority":
        """Accept a member, its numeric value or its (case-insensitive) name."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls[value.upper()]
            except KeyError:
                raise ValueError(f"Unknown priority '{value}'") from None
        return cls(value)


class JobState(str, Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


class BackoffType(str, Enum):
    EXPONENTIAL = "exponential"


@dataclass(frozen=True)
class BackoffPolicy:
    type: BackoffType = BackoffType.EXPONENTIAL
    delay_ms: int = 2000

    def delay_for(self, attempt: int) -> int:
        """Delay before re-running a job that just failed its ``attempt``-th run (1-based)."""
        return self.delay_ms * (2 ** max(attempt - 1, 0))


@dataclass(frozen=True)
class JobOptions:
    priority: JobPriority = JobPriority.NORMAL
    attempts: int = 3
    backoff: BackoffPolicy = field(default_factory=BackoffPolicy)


@dataclass
class Job:
    """A unit of queued work and its lifecycle state."""

    id: str
    queue_name: str
    payload: dict[str, Any]
    priority: JobPriority
    max_attempts: int
    backoff: BackoffPolicy
    state: JobState = JobState.WAITING
    attempt: int = 0
    created_at: int = 0
    updated_at: int = 0
    available_at: int = 0
    result: dict[str, Any] | None = None
    last_error: str | None = None
    lease_expires_at: int | None = None

    @property
    def is_terminal(self) -> bool:
        return self.state in (JobState.COMPLETED, JobState.FAILED)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["priority"] = int(self.priority)
        data["state"] = self.state.value
        data["backoff"] = {"type": self.backoff.type.value, "delay_ms": self.backoff.delay_ms}
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Job":
        backoff = data.get("backoff") or {}
        return cls(
            id=data["id"],
            queue_name=data["queue_name"],
            payload=data.get("payload") or {},
            priority=JobPriority(int(data["priority"])),
            max_attempts=int(data["max_attempts"]),
            backoff=BackoffPolicy(
                type=BackoffType(backoff.get("type", BackoffType.EXPONENTIAL.value)),
                delay_ms=int(backoff.get("delay_ms", 2000)),
            ),
            state=JobState(data["state"]),
            attempt=int(data.get("attempt", 0)),
            created_at=int(data.get("created_at", 0)),
            updated_at=int(data.get("updated_at", 0)),
            available_at=int(data.get("available_at", 0)),
            result=data.get("result"),
            last_error=data.get("last_error"),
            lease_expires_at=data.get("lease_expires_at"),
        )


@runtime_checkable
class JobQueue(Protocol):
    """
    Protocol for job queue backends.

    Implementations:
    - RedisJobQueue: durable production queue
    - InMemoryJobQueue: single-process queue for tests and development
    """

    async def add(self, queue_name: str, payload: dict[str, Any], options: JobOptions) -> Job:
        """
        Enqueue a job in WAITING state.

        Raises:
            QueueError: If the backend rejects the job
        """
        ...

    async def get_job(self, job_id: str) -> Job | None:
        ...

    async def get_state(self, job_id: str) -> JobState | None:
        ...

    async def reserve(self, queue_name: str) -> Job | None:
        """
        Take the next available job and mark it ACTIVE under a lease.

        Lowest priority number first, FIFO within a priority. Jobs whose
        retry backoff has not elapsed are skipped. A job whose lease ran
        out before complete() or fail() is taken back first: it runs again
        while attempts remain, otherwise it becomes FAILED.
        """
        ...

    async def complete(self, job: Job, result: dict[str, Any] | None = None) -> Job:
        ...

    async def fail(self, job: Job, error: str) -> Job:
        """
        Record a failed run.

        The job is re-queued with exponential backoff while attempts remain,
        otherwise it becomes FAILED. Returns the updated job.
        """
        ...

    async def close(self) -> None:
        ...
