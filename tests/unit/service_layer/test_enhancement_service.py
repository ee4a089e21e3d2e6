"""
Unit Tests for EnhancementService

Single requests, batch bookkeeping and batch-level webhook events, and
owner-scoped job and batch polling.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from enhance_gateway.core.exceptions import JobNotFoundError, NotFoundError
from enhance_gateway.core.interfaces import JobState
from enhance_gateway.services.document_cache import CacheEntry, DocumentCache
from enhance_gateway.services.enhancement_service import EnhancementService
from enhance_gateway.services.job_dispatcher import EnhancementItem, ItemStatus, JobDispatcher
from enhance_gateway.services.webhook_models import WebhookEvent


def _item(content: bytes, owner="u1") -> EnhancementItem:
    return EnhancementItem(owner_id=owner, file_name="doc.txt", content=content, content_type="text/plain")


@pytest.fixture
def cache(store, clock, mock_metrics):
    return DocumentCache(store, clock=clock, metrics=mock_metrics)


@pytest.fixture
def webhooks():
    manager = MagicMock()
    manager.trigger = AsyncMock(return_value=[])
    return manager


@pytest.fixture
def service(job_queue, cache, store, webhooks, clock, mock_metrics):
    dispatcher = JobDispatcher(job_queue, cache, metrics=mock_metrics)
    return EnhancementService(dispatcher, cache, job_queue, store, webhooks=webhooks, batch_ttl_ms=60_000, clock=clock)


@pytest.mark.unit
class TestEnhanceSingle:
    async def test_queues_new_document(self, service, job_queue):
        outcome = await service.enhance_single(_item(b"fresh document"))

        assert outcome.status == ItemStatus.QUEUED
        assert await job_queue.get_state(outcome.job_id) == JobState.WAITING

    async def test_cached_result_for_fallback(self, service, cache):
        await cache.store("u1", b"seen before", CacheEntry("d1", "e1", "https://r/e1"))

        match = await service.cached_result("u1", b"seen before")

        assert match.entry.enhancement_id == "e1"
        assert await service.cached_result("u1", b"never seen") is None


@pytest.mark.unit
class TestEnhanceBatch:
    async def test_batch_record_is_stored(self, service):
        result = await service.enhance_batch("u1", [_item(b"one"), _item(b""), _item(b"three")])

        record = await service.get_batch("u1", result.batch_id)
        assert record["status"] == "partial"
        assert (record["queued_files"], record["failed_files"]) == (2, 1)
        assert record["owner_id"] == "u1"
        assert record["stop_on_error"] is False
        assert len(record["results"]) == 3

    async def test_accepted_batch_triggers_started(self, service, webhooks):
        result = await service.enhance_batch("u1", [_item(b"one"), _item(b"")])

        owner, event, data = webhooks.trigger.await_args.args
        assert (owner, event) == ("u1", WebhookEvent.BATCH_STARTED)
        assert data["batch_id"] == result.batch_id
        assert data["failed_files"] == 1
        assert webhooks.trigger.await_args.kwargs["event_id"] == f"{result.batch_id}:batch.started"

    async def test_all_failed_triggers_failed(self, service, webhooks):
        result = await service.enhance_batch("u1", [_item(b""), _item(b"")])

        _, event, data = webhooks.trigger.await_args.args
        assert event == WebhookEvent.BATCH_FAILED
        assert data["status"] == "failed"
        assert result.all_failed

    async def test_webhook_fault_does_not_fail_batch(self, service, webhooks):
        webhooks.trigger.side_effect = RuntimeError("webhook store unavailable")

        result = await service.enhance_batch("u1", [_item(b"one"), _item(b"two")])

        assert result.queued_files == 2
        record = await service.get_batch("u1", result.batch_id)
        assert record["queued_files"] == 2
        webhooks.trigger.assert_awaited_once()

    async def test_stop_on_error_is_recorded(self, service):
        result = await service.enhance_batch("u1", [_item(b""), _item(b"two")], stop_on_error=True)

        record = await service.get_batch("u1", result.batch_id)
        assert record["aborted"] is True
        assert record["stop_on_error"] is True
        assert len(record["results"]) == 1

    async def test_without_webhooks(self, job_queue, cache, store, clock, mock_metrics):
        dispatcher = JobDispatcher(job_queue, cache, metrics=mock_metrics)
        service = EnhancementService(dispatcher, cache, job_queue, store, clock=clock)

        result = await service.enhance_batch("u1", [_item(b"one")])
        assert result.queued_files == 1


@pytest.mark.unit
class TestPolling:
    async def test_batch_owner_scoped(self, service):
        result = await service.enhance_batch("u1", [_item(b"one")])

        with pytest.raises(NotFoundError):
            await service.get_batch("u2", result.batch_id)

    async def test_batch_record_expires(self, service, clock):
        result = await service.enhance_batch("u1", [_item(b"one")])
        clock.advance(60_000)

        with pytest.raises(NotFoundError):
            await service.get_batch("u1", result.batch_id)

    async def test_job_status(self, service):
        outcome = await service.enhance_single(_item(b"fresh document"))

        status = await service.get_job_status("u1", outcome.job_id)

        assert status["state"] == "waiting"
        assert status["priority"] == "normal"
        assert status["document_id"] == outcome.document_id
        assert status["result"] is None

    async def test_job_status_owner_scoped(self, service):
        outcome = await service.enhance_single(_item(b"fresh document"))

        with pytest.raises(JobNotFoundError):
            await service.get_job_status("u2", outcome.job_id)
        with pytest.raises(JobNotFoundError):
            await service.get_job_status("u1", "missing")
