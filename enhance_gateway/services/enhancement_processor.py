"""
Enhancement Processors

The document enhancement itself is opaque to the gateway: a processor takes
a reserved job and returns where the enhanced result lives.
"""

import asyncio
import random
import uuid
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from enhance_gateway.core.exceptions import JobProcessingError
from enhance_gateway.core.interfaces import Job
from enhance_gateway.core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class EnhancementResult:
    enhancement_id: str
    result_url: str
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "enhancement_id": self.enhancement_id,
            "result_url": self.result_url,
            "metadata": self.metadata,
        }


@runtime_checkable
class EnhancementProcessor(Protocol):
    async def process(self, job: Job) -> EnhancementResult:
        """
        Raises:
            Exception: Any failure; the worker records it against the job
        """
        ...


class FakeEnhancementProcessor:
    """
    A stand-in processor for development and tests.

    Results are deterministic per document, so the same document always
    yields the same enhancement ID and result URL.
    """

    def __init__(self, result_base_url: str, latency_seconds: float = 0.0, failure_rate: float = 0.0):
        self.result_base_url = result_base_url.rstrip("/")
        self.latency_seconds = latency_seconds
        self.failure_rate = failure_rate

    async def process(self, job: Job) -> EnhancementResult:
        if self.latency_seconds:
            await asyncio.sleep(self.latency_seconds)

        if self.failure_rate > 0 and random.random() < self.failure_rate:
            raise JobProcessingError("Simulated enhancement failure", details={"job_id": job.id})

        document_id = job.payload.get("document_id", job.id)
        enhancement_id = uuid.uuid5(uuid.NAMESPACE_URL, f"enhancement:{document_id}").hex
        logger.debug("Fake enhancement complete", job_id=job.id, document_id=document_id)
        return EnhancementResult(
            enhancement_id=enhancement_id,
            result_url=f"{self.result_base_url}/{enhancement_id}",
            metadata={"processor": "fake", "file_name": job.payload.get("file_name")},
        )
