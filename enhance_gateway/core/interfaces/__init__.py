"""Protocols for external collaborators."""

from enhance_gateway.core.interfaces.job_queue import (
    BackoffPolicy,
    BackoffType,
    Job,
    JobOptions,
    JobPriority,
    JobQueue,
    JobState,
)
from enhance_gateway.core.interfaces.store import SharedStore

__all__ = [
    "BackoffPolicy",
    "BackoffType",
    "Job",
    "JobOptions",
    "JobPriority",
    "JobQueue",
    "JobState",
    "SharedStore",
]
