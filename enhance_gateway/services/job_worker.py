"""
Job Worker

Background consumer of the enhancement queue.

Flow per job:
    1. Reserve the highest priority due job
    2. Run the enhancement processor
    3. Success: complete the job, record the result in the DocumentCache,
       trigger ``enhancement.completed``
    4. Failure: ``queue.fail`` (re-queued with backoff while attempts remain);
       a terminal failure triggers ``enhancement.failed``
"""

import asyncio

from enhance_gateway.core.interfaces import Job, JobQueue, JobState
from enhance_gateway.core.logging import get_logger
from enhance_gateway.infrastructure.monitoring import MetricsCollector, get_metrics_collector
from enhance_gateway.services.document_cache import CacheEntry, ContentFingerprint, DocumentCache
from enhance_gateway.services.enhancement_processor import EnhancementProcessor
from enhance_gateway.services.webhook_manager import WebhookManager, notify_webhooks
from enhance_gateway.services.webhook_models import WebhookEvent

logger = get_logger(__name__)


class JobWorker:
    """
    Pool of consumer tasks over one queue.

    Usage:
        worker = JobWorker(queue, processor, cache, webhooks, concurrency=4)
        await worker.start()
        ...
        await worker.shutdown()
    """

    def __init__(
        self,
        queue: JobQueue,
        processor: EnhancementProcessor,
        cache: DocumentCache,
        webhooks: WebhookManager | None = None,
        queue_name: str = "enhancement",
        concurrency: int = 4,
        poll_interval_ms: int = 500,
        error_backoff_seconds: float = 1.0,
        metrics: MetricsCollector | None = None,
    ):
        self._queue = queue
        self._processor = processor
        self._cache = cache
        self._webhooks = webhooks
        self.queue_name = queue_name
        self._concurrency = concurrency
        self._poll_interval = poll_interval_ms / 1000
        self._error_backoff_seconds = error_backoff_seconds
        self._metrics = metrics or get_metrics_collector()

        self._running = False
        self._shutdown_event = asyncio.Event()
        self._tasks: list[asyncio.Task] = []
        self._in_flight = 0
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def is_running(self) -> bool:
        return self._running

    # =========================================================================
    # Processing
    # =========================================================================

    async def process_next(self) -> Job | None:
        """
        Reserve and process one job.

        Returns:
            The job after processing, or None if nothing was due
        """
        job = await self._queue.reserve(self.queue_name)
        if job is None:
            return None

        self._in_flight += 1
        self._idle.clear()
        try:
            return await self._process(job)
        finally:
            self._in_flight -= 1
            if self._in_flight == 0:
                self._idle.set()

    async def _process(self, job: Job) -> Job:
        owner_id = job.payload.get("owner_id")
        logger.info("Processing job", job_id=job.id, attempt=job.attempt, max_attempts=job.max_attempts)

        try:
            result = await self._processor.process(job)
        except Exception as e:
            job = await self._queue.fail(job, str(e))
            terminal = job.state == JobState.FAILED
            self._metrics.record_job_finished(self.queue_name, "failed" if terminal else "retried")
            logger.warning(
                "Job attempt failed",
                job_id=job.id,
                attempt=job.attempt,
                max_attempts=job.max_attempts,
                terminal=terminal,
                error=str(e),
                error_type=type(e).__name__,
            )
            if terminal and owner_id:
                await notify_webhooks(
                    self._webhooks,
                    owner_id,
                    WebhookEvent.ENHANCEMENT_FAILED,
                    {
                        "job_id": job.id,
                        "document_id": job.payload.get("document_id"),
                        "batch_id": job.payload.get("batch_id"),
                        "attempts": job.attempt,
                        "error": str(e),
                    },
                    event_id=f"{job.id}:failed",
                )
            return job

        job = await self._queue.complete(job, result.to_dict())
        self._metrics.record_job_finished(self.queue_name, "completed")

        if owner_id and job.payload.get("fingerprint"):
            fp = ContentFingerprint(
                digest=job.payload["fingerprint"],
                simhash=int(job.payload.get("simhash") or "0", 16),
            )
            await self._cache.store_fingerprint(
                owner_id,
                fp,
                CacheEntry(
                    document_id=job.payload.get("document_id", job.id),
                    enhancement_id=result.enhancement_id,
                    result_url=result.result_url,
                    metadata=result.metadata,
                ),
            )

        if owner_id:
            await notify_webhooks(
                self._webhooks,
                owner_id,
                WebhookEvent.ENHANCEMENT_COMPLETED,
                {
                    "job_id": job.id,
                    "document_id": job.payload.get("document_id"),
                    "batch_id": job.payload.get("batch_id"),
                    "enhancement_id": result.enhancement_id,
                    "result_url": result.result_url,
                },
                event_id=f"{job.id}:completed",
            )

        logger.info("Job completed", job_id=job.id, enhancement_id=result.enhancement_id)
        return job

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def _run(self, worker_id: int) -> None:
        while self._running and not self._shutdown_event.is_set():
            try:
                job = await self.process_next()
            except asyncio.CancelledError:
                logger.info("Job worker cancelled", worker=worker_id)
                raise
            except Exception as e:
                logger.error(
                    "Job worker error, backing off",
                    worker=worker_id,
                    error=str(e),
                    error_type=type(e).__name__,
                    exc_info=True,
                )
                await asyncio.sleep(self._error_backoff_seconds)
                continue

            if job is None:
                try:
                    await asyncio.wait_for(self._shutdown_event.wait(), timeout=self._poll_interval)
                except asyncio.TimeoutError:
                    pass

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._shutdown_event.clear()
        self._tasks = [asyncio.create_task(self._run(i)) for i in range(self._concurrency)]
        logger.info("Job worker started", queue=self.queue_name, concurrency=self._concurrency)

    async def drain(self, timeout: float = 10.0) -> None:
        """Wait for in-flight jobs to finish."""
        await asyncio.wait_for(self._idle.wait(), timeout=timeout)

    async def shutdown(self, timeout: float = 10.0) -> None:
        """
        Stop reserving new jobs and give in-flight ones ``timeout`` seconds.
        Jobs cut off mid-run are reserved again once their lease runs out.
        """
        if not self._running:
            return
        self._running = False
        self._shutdown_event.set()

        _, pending = await asyncio.wait(self._tasks, timeout=timeout)
        if pending:
            logger.warning("Job worker shutdown timeout, cancelling tasks", pending=len(pending))
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
        self._tasks = []
        logger.info("Job worker stopped", queue=self.queue_name)
