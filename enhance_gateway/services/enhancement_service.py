"""
Enhancement Service

Route-facing orchestration of single and batch enhancement requests:
dispatch, batch bookkeeping, job polling and batch-level webhook events.

Author: System Architect
Date: 2025-12-08
"""

import time
from collections.abc import Callable
from typing import Any

import orjson

from enhance_gateway.core.config.constants import BATCH_KEY_PREFIX, BATCH_RECORD_TTL_MS
from enhance_gateway.core.exceptions import JobNotFoundError, NotFoundError
from enhance_gateway.core.interfaces import JobQueue, SharedStore
from enhance_gateway.core.logging import get_logger
from enhance_gateway.services.document_cache import CacheMatch, DocumentCache
from enhance_gateway.services.job_dispatcher import (
    BatchResult,
    EnhancementItem,
    ItemOutcome,
    JobDispatcher,
)
from enhance_gateway.services.webhook_manager import WebhookManager, notify_webhooks
from enhance_gateway.services.webhook_models import WebhookEvent

logger = get_logger(__name__)


def _wall_clock_ms() -> float:
    return time.time() * 1000


class EnhancementService:
    def __init__(
        self,
        dispatcher: JobDispatcher,
        cache: DocumentCache,
        queue: JobQueue,
        store: SharedStore,
        webhooks: WebhookManager | None = None,
        batch_ttl_ms: int = BATCH_RECORD_TTL_MS,
        clock: Callable[[], float] = _wall_clock_ms,
    ):
        self._dispatcher = dispatcher
        self._cache = cache
        self._queue = queue
        self._store = store
        self._webhooks = webhooks
        self._batch_ttl_ms = batch_ttl_ms
        self._clock = clock

    @staticmethod
    def _batch_key(batch_id: str) -> str:
        return f"{BATCH_KEY_PREFIX}:{batch_id}"

    async def enhance_single(self, item: EnhancementItem) -> ItemOutcome:
        """
        Returns:
            ItemOutcome: CACHED with the prior result, or QUEUED with a job ID

        Raises:
            ValidationError / JobEnqueueError
        """
        outcome = await self._dispatcher.submit(item)
        logger.info(
            "Enhancement requested",
            owner_id=item.owner_id,
            document_id=outcome.document_id,
            status=outcome.status.value,
            job_id=outcome.job_id,
        )
        return outcome

    async def cached_result(self, owner_id: str, content: bytes) -> CacheMatch | None:
        """Best available cached result for ``content``; serves the open-circuit fallback."""
        fp = await self._cache.fingerprint(content)
        return await self._cache.lookup_fingerprint(owner_id, fp)

    async def enhance_batch(
        self,
        owner_id: str,
        items: list[EnhancementItem],
        stop_on_error: bool = False,
    ) -> BatchResult:
        """
        Dispatch a batch and record its summary for later polling.

        ``batch.started`` fires for an accepted batch; ``batch.failed`` only
        when every item failed. Partial batches emit no batch-level
        completion event. Webhook faults are logged and never fail the batch.
        """
        result = await self._dispatcher.enqueue_batch(items, stop_on_error=stop_on_error)

        record = {
            **result.to_dict(),
            "owner_id": owner_id,
            "stop_on_error": stop_on_error,
            "created_at": int(self._clock()),
        }
        await self._store.set(
            self._batch_key(result.batch_id), orjson.dumps(record).decode(), ttl_ms=self._batch_ttl_ms
        )

        event = WebhookEvent.BATCH_FAILED if result.all_failed else WebhookEvent.BATCH_STARTED
        await notify_webhooks(
            self._webhooks,
            owner_id,
            event,
            {
                "batch_id": result.batch_id,
                "status": result.status,
                "total_files": result.total_files,
                "queued_files": result.queued_files,
                "cached_files": result.cached_files,
                "failed_files": result.failed_files,
            },
            event_id=f"{result.batch_id}:{event.value}",
        )
        return result

    async def get_batch(self, owner_id: str, batch_id: str) -> dict[str, Any]:
        raw = await self._store.get(self._batch_key(batch_id))
        record = orjson.loads(raw) if raw else None
        if record is None or record.get("owner_id") != owner_id:
            raise NotFoundError("Batch not found", details={"batch_id": batch_id})
        return record

    async def get_job_status(self, owner_id: str, job_id: str) -> dict[str, Any]:
        job = await self._queue.get_job(job_id)
        if job is None or job.payload.get("owner_id") != owner_id:
            raise JobNotFoundError("Job not found", details={"job_id": job_id})
        return {
            "job_id": job.id,
            "state": job.state.value,
            "priority": job.priority.name.lower(),
            "attempt": job.attempt,
            "max_attempts": job.max_attempts,
            "document_id": job.payload.get("document_id"),
            "batch_id": job.payload.get("batch_id"),
            "result": job.result,
            "last_error": job.last_error,
            "created_at": job.created_at,
            "updated_at": job.updated_at,
        }
