"""
Job Dispatcher

Hands enhancement work to the job queue with a priority and retry policy,
short-circuiting duplicate work through the DocumentCache.

Single item pipeline (``submit``):
    validate -> cache lookup -> enqueue
    outcome: QUEUED (job id) | CACHED (prior result) | FAILED (error code)

Batch (``enqueue_batch``):
    - default: items run concurrently, at most min(len(items), 10) at a time;
      failures are captured per item and never raised
    - stop_on_error: items run one at a time in submission order; the first
      failure aborts the batch and later items are never touched
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from enhance_gateway.core.config.constants import MAX_BATCH_FAN_OUT
from enhance_gateway.core.exceptions import GatewayError, JobEnqueueError, ValidationError
from enhance_gateway.core.interfaces import BackoffPolicy, JobOptions, JobPriority, JobQueue
from enhance_gateway.core.logging import get_logger
from enhance_gateway.core.resilience.circuit_breaker import (
    DistributedCircuitBreaker,
    ResilientCall,
    create_retry_decorator,
)
from enhance_gateway.infrastructure.monitoring import MetricsCollector, get_metrics_collector
from enhance_gateway.services.document_cache import DocumentCache
from enhance_gateway.services.upload_validator import UploadValidator

logger = get_logger(__name__)


class ItemStatus(str, Enum):
    QUEUED = "queued"
    CACHED = "cached"
    FAILED = "failed"


@dataclass(frozen=True)
class JobRetryPolicy:
    max_attempts: int = 3
    backoff_delay_ms: int = 2000


@dataclass
class EnhancementItem:
    """One document to enhance."""

    owner_id: str
    file_name: str
    content: bytes
    content_type: str | None = None
    priority: JobPriority = JobPriority.NORMAL
    options: dict[str, Any] = field(default_factory=dict)
    document_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    batch_id: str | None = None


@dataclass
class ItemOutcome:
    index: int
    file_name: str
    document_id: str
    status: ItemStatus
    job_id: str | None = None
    enhancement_id: str | None = None
    result_url: str | None = None
    cache_match: str | None = None
    error_code: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "file_name": self.file_name,
            "document_id": self.document_id,
            "status": self.status.value,
            "job_id": self.job_id,
            "enhancement_id": self.enhancement_id,
            "result_url": self.result_url,
            "cache_match": self.cache_match,
            "error_code": self.error_code,
            "error": self.error,
        }


@dataclass
class BatchResult:
    """Per-item outcomes of one batch request."""

    batch_id: str
    total_files: int
    results: list[ItemOutcome] = field(default_factory=list)
    aborted: bool = False

    def _count(self, status: ItemStatus) -> int:
        return sum(1 for outcome in self.results if outcome.status == status)

    @property
    def queued_files(self) -> int:
        return self._count(ItemStatus.QUEUED)

    @property
    def cached_files(self) -> int:
        return self._count(ItemStatus.CACHED)

    @property
    def failed_files(self) -> int:
        return self._count(ItemStatus.FAILED)

    @property
    def all_failed(self) -> bool:
        return self.total_files > 0 and self.failed_files == self.total_files

    @property
    def status(self) -> str:
        if self.all_failed:
            return "failed"
        if self.aborted:
            return "aborted"
        if self.failed_files:
            return "partial"
        return "accepted"

    def to_dict(self) -> dict[str, Any]:
        return {
            "batch_id": self.batch_id,
            "status": self.status,
            "aborted": self.aborted,
            "total_files": self.total_files,
            "queued_files": self.queued_files,
            "cached_files": self.cached_files,
            "failed_files": self.failed_files,
            "results": [outcome.to_dict() for outcome in self.results],
        }


class JobDispatcher:
    """
    Priority job dispatch with cache short-circuiting.

    Usage:
        dispatcher = JobDispatcher(queue, cache, queue_name="enhancement")
        job_id = await dispatcher.enqueue("enhancement", {"document_id": "d1"}, priority="high")
        batch = await dispatcher.enqueue_batch(items, stop_on_error=False)
    """

    def __init__(
        self,
        queue: JobQueue,
        cache: DocumentCache,
        validator: UploadValidator | None = None,
        queue_name: str = "enhancement",
        default_max_attempts: int = 3,
        default_backoff_ms: int = 2000,
        max_batch_size: int = 10,
        max_fan_out: int = MAX_BATCH_FAN_OUT,
        breaker: DistributedCircuitBreaker | None = None,
        enqueue_retries: int = 3,
        enqueue_retry_delay: float = 0.1,
        metrics: MetricsCollector | None = None,
    ):
        self._queue = queue
        self._cache = cache
        self._validator = validator or UploadValidator()
        self.queue_name = queue_name
        self.default_retry_policy = JobRetryPolicy(default_max_attempts, default_backoff_ms)
        self.max_batch_size = max_batch_size
        self._max_fan_out = max_fan_out
        self._resilient_call = (
            ResilientCall(breaker, max_retries=enqueue_retries, base_delay=enqueue_retry_delay)
            if breaker is not None
            else None
        )
        self._retry = create_retry_decorator(max_attempts=enqueue_retries, base_delay=enqueue_retry_delay)
        self._metrics = metrics or get_metrics_collector()

    # =========================================================================
    # Single enqueue
    # =========================================================================

    async def enqueue(
        self,
        queue_name: str,
        payload: dict[str, Any],
        priority: JobPriority | int | str = JobPriority.NORMAL,
        retry_policy: JobRetryPolicy | None = None,
    ) -> str:
        """
        Enqueue one job.

        Returns:
            str: Job ID

        Raises:
            ValidationError: Unknown priority
            JobEnqueueError: Queue unavailable after retries
        """
        try:
            resolved_priority = JobPriority.parse(priority)
        except ValueError as e:
            raise ValidationError(str(e), details={"field": "priority", "value": str(priority)}) from e

        policy = retry_policy or self.default_retry_policy
        options = JobOptions(
            priority=resolved_priority,
            attempts=policy.max_attempts,
            backoff=BackoffPolicy(delay_ms=policy.backoff_delay_ms),
        )

        try:
            if self._resilient_call is not None:
                job = await self._resilient_call.call(self._queue.add, queue_name, payload, options)
            else:
                job = await self._retry(self._queue.add)(queue_name, payload, options)
        except (GatewayError, ConnectionError, TimeoutError) as e:
            cause = getattr(e, "code", e.__class__.__name__)
            self._metrics.record_job_enqueue_failure(queue_name)
            logger.error("Job enqueue failed", queue=queue_name, error=str(e), error_code=cause)
            raise JobEnqueueError(
                f"Failed to enqueue job on '{queue_name}'",
                details={"queue": queue_name, "cause": cause, "reason": str(e)},
            ) from e

        self._metrics.record_job_enqueued(queue_name, resolved_priority.name.lower())
        logger.info(
            "Job enqueued",
            job_id=job.id,
            queue=queue_name,
            priority=resolved_priority.name,
            max_attempts=options.attempts,
        )
        return job.id

    # =========================================================================
    # Per-item pipeline
    # =========================================================================

    async def submit(self, item: EnhancementItem, index: int = 0) -> ItemOutcome:
        """
        Validate, check the cache, and enqueue one document.

        Raises:
            ValidationError / JobEnqueueError / StoreError: for the caller to
            report; batches convert them into FAILED outcomes.
        """
        self._validator.validate(item.file_name, item.content, item.content_type)

        fp = await self._cache.fingerprint(item.content)
        match = await self._cache.lookup_fingerprint(item.owner_id, fp)
        if match is not None:
            return ItemOutcome(
                index=index,
                file_name=item.file_name,
                document_id=match.entry.document_id,
                status=ItemStatus.CACHED,
                enhancement_id=match.entry.enhancement_id,
                result_url=match.entry.result_url,
                cache_match=match.match,
            )

        payload = {
            "owner_id": item.owner_id,
            "document_id": item.document_id,
            "file_name": item.file_name,
            "content_type": item.content_type,
            "size": len(item.content),
            "fingerprint": fp.digest,
            "simhash": fp.simhash_hex,
            "options": item.options,
            "batch_id": item.batch_id,
        }
        job_id = await self.enqueue(self.queue_name, payload, item.priority)
        return ItemOutcome(
            index=index,
            file_name=item.file_name,
            document_id=item.document_id,
            status=ItemStatus.QUEUED,
            job_id=job_id,
        )

    async def _run_item(self, index: int, item: EnhancementItem) -> ItemOutcome:
        try:
            outcome = await self.submit(item, index)
        except GatewayError as e:
            logger.info(
                "Batch item failed",
                batch_id=item.batch_id,
                index=index,
                file_name=item.file_name,
                error_code=e.code,
                error=e.message,
            )
            outcome = ItemOutcome(
                index=index,
                file_name=item.file_name,
                document_id=item.document_id,
                status=ItemStatus.FAILED,
                error_code=e.code,
                error=e.message,
            )
        except Exception as e:
            logger.exception("Batch item raised unexpectedly", batch_id=item.batch_id, index=index)
            outcome = ItemOutcome(
                index=index,
                file_name=item.file_name,
                document_id=item.document_id,
                status=ItemStatus.FAILED,
                error_code="INTERNAL_ERROR",
                error=str(e),
            )

        self._metrics.record_batch_item(outcome.status.value)
        return outcome

    # =========================================================================
    # Batch enqueue
    # =========================================================================

    async def enqueue_batch(
        self,
        items: list[EnhancementItem],
        stop_on_error: bool = False,
        batch_id: str | None = None,
    ) -> BatchResult:
        """
        Run the per-item pipeline over a batch.

        Raises:
            ValidationError: Empty batch or more than ``max_batch_size`` items
        """
        if not items:
            raise ValidationError("Batch must contain at least one file", details={"field": "files"})
        if len(items) > self.max_batch_size:
            raise ValidationError(
                f"Batch size exceeds limit (max: {self.max_batch_size})",
                details={"field": "files", "count": len(items), "max": self.max_batch_size},
            )

        batch_id = batch_id or uuid.uuid4().hex
        for item in items:
            item.batch_id = batch_id

        result = BatchResult(batch_id=batch_id, total_files=len(items))

        if stop_on_error:
            for index, item in enumerate(items):
                outcome = await self._run_item(index, item)
                result.results.append(outcome)
                if outcome.status == ItemStatus.FAILED:
                    result.aborted = True
                    break
        else:
            semaphore = asyncio.Semaphore(min(len(items), self._max_fan_out))

            async def bounded(index: int, item: EnhancementItem) -> ItemOutcome:
                async with semaphore:
                    return await self._run_item(index, item)

            result.results = list(
                await asyncio.gather(*(bounded(index, item) for index, item in enumerate(items)))
            )

        logger.info(
            "Batch dispatched",
            batch_id=batch_id,
            status=result.status,
            total=result.total_files,
            queued=result.queued_files,
            cached=result.cached_files,
            failed=result.failed_files,
            stop_on_error=stop_on_error,
        )
        return result
