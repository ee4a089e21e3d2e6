"""
Webhook Delivery Service

Signs and posts webhook deliveries, retrying failures on the webhook's own
retry policy.

Flow:
    1. ``enqueue`` records a PENDING delivery and schedules it for now
    2. The scheduler pops due deliveries off ``webhook:retry_schedule``
       and hands them to the worker pool
    3. A worker signs and posts the body (one delivery per webhook at a time)
    4. 2xx -> DELIVERED
       failure -> attempt + 1; RETRYING and rescheduled, or EXHAUSTED once
       attempt reaches the policy's max_attempts

The schedule lives in the shared store, so pending retries survive a
restart and are picked up by whichever instance polls first.
"""

import asyncio
import time
import uuid
from collections import Counter, defaultdict
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

import orjson

from enhance_gateway.core.config.constants import (
    HEADER_EVENT_ID,
    HEADER_SIGNATURE,
    HEADER_WEBHOOK_EVENT,
    HEADER_WEBHOOK_TIMESTAMP,
    WEBHOOK_RETRY_SCHEDULE_KEY,
)
from enhance_gateway.core.exceptions import ConflictError, WebhookDeliveryExhaustedError
from enhance_gateway.core.interfaces import SharedStore
from enhance_gateway.core.logging import get_logger
from enhance_gateway.infrastructure.monitoring import MetricsCollector, get_metrics_collector
from enhance_gateway.infrastructure.webhook import WebhookSender, build_signature_header
from enhance_gateway.services.webhook_models import (
    DeliveryStatus,
    Webhook,
    WebhookDelivery,
    WebhookEvent,
    compute_retry_delay_ms,
)
from enhance_gateway.services.webhook_repository import WebhookRepository

logger = get_logger(__name__)

SCHEDULE_BATCH_SIZE = 100


def _wall_clock_ms() -> float:
    return time.time() * 1000


class WebhookDeliveryService:
    """
    Background webhook delivery with durable retry scheduling.

    Usage:
        service = WebhookDeliveryService(repository, store, sender, concurrency=10)
        await service.start()
        await service.enqueue(webhook, WebhookEvent.ENHANCEMENT_COMPLETED, {"job_id": "j1"})
        ...
        await service.shutdown()
    """

    def __init__(
        self,
        repository: WebhookRepository,
        store: SharedStore,
        sender: WebhookSender,
        concurrency: int = 10,
        retry_poll_interval_ms: int = 1000,
        error_backoff_seconds: float = 1.0,
        clock: Callable[[], float] = _wall_clock_ms,
        metrics: MetricsCollector | None = None,
    ):
        self._repository = repository
        self._store = store
        self._sender = sender
        self._concurrency = concurrency
        self._poll_interval = retry_poll_interval_ms / 1000
        self._error_backoff_seconds = error_backoff_seconds
        self._clock = clock
        self._metrics = metrics or get_metrics_collector()

        self._work: asyncio.Queue[str] = asyncio.Queue()
        self._wakeup = asyncio.Event()
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._lock_holders: Counter[str] = Counter()
        self._in_flight: set[str] = set()
        self._tasks: list[asyncio.Task] = []
        self._running = False

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._clock() / 1000, tz=timezone.utc)

    @property
    def is_running(self) -> bool:
        return self._running

    # =========================================================================
    # Scheduling
    # =========================================================================

    async def _schedule(self, delivery_id: str, at_ms: float) -> None:
        await self._store.zadd(WEBHOOK_RETRY_SCHEDULE_KEY, delivery_id, at_ms)
        self._wakeup.set()

    async def enqueue(
        self,
        webhook: Webhook,
        event: WebhookEvent,
        data: dict[str, Any],
        event_id: str | None = None,
    ) -> WebhookDelivery:
        """
        Record and schedule one delivery of ``event`` to ``webhook``.

        At most one delivery exists per (webhook, event_id); queueing the same
        event instance again returns the existing delivery.
        """
        event_id = event_id or uuid.uuid4().hex
        now = self._now()
        delivery = WebhookDelivery(
            id=uuid.uuid4().hex,
            webhook_id=webhook.id,
            owner_id=webhook.owner_id,
            event=event,
            event_id=event_id,
            payload=data,
            created_at=now,
            updated_at=now,
        )

        existing_id = await self._repository.claim_event(webhook.id, event_id, delivery.id)
        if existing_id is not None:
            existing = await self._repository.get_delivery(existing_id)
            if existing is not None:
                logger.debug(
                    "Webhook event already queued",
                    webhook_id=webhook.id,
                    event_id=event_id,
                    delivery_id=existing_id,
                )
                return existing

        await self._repository.save_delivery(delivery)
        await self._schedule(delivery.id, self._clock())
        self._metrics.record_webhook_status(DeliveryStatus.PENDING.value)

        logger.info(
            "Webhook delivery queued",
            delivery_id=delivery.id,
            webhook_id=webhook.id,
            event_name=event.value,
            event_id=event_id,
        )
        return delivery

    async def retry(self, delivery: WebhookDelivery) -> WebhookDelivery:
        """
        Manually re-queue a delivery. An exhausted delivery gets a fresh
        attempt budget.

        Raises:
            ConflictError: Delivery already succeeded
        """
        if delivery.status == DeliveryStatus.DELIVERED:
            raise ConflictError(
                "Delivery already succeeded",
                details={"delivery_id": delivery.id, "status": delivery.status.value},
            )

        if delivery.status == DeliveryStatus.EXHAUSTED:
            delivery.attempt = 0
        delivery.status = DeliveryStatus.PENDING
        delivery.next_retry_at = None
        delivery.updated_at = self._now()

        await self._repository.save_delivery(delivery)
        await self._schedule(delivery.id, self._clock())
        logger.info("Webhook delivery manually retried", delivery_id=delivery.id, webhook_id=delivery.webhook_id)
        return delivery

    async def dispatch_due(self) -> int:
        """Move due deliveries from the schedule onto the worker queue."""
        due = await self._store.zpop_due(WEBHOOK_RETRY_SCHEDULE_KEY, self._clock(), SCHEDULE_BATCH_SIZE)
        for delivery_id in due:
            self._work.put_nowait(delivery_id)
        return len(due)

    # =========================================================================
    # Delivery attempt
    # =========================================================================

    def _build_request(self, webhook: Webhook, delivery: WebhookDelivery) -> tuple[str, dict[str, str]]:
        now = self._now()
        timestamp = int(now.timestamp())
        body = orjson.dumps(
            {
                "event": delivery.event.value,
                "data": delivery.payload,
                "timestamp": now.isoformat(),
            }
        ).decode()
        headers = {
            **webhook.headers,
            HEADER_SIGNATURE: build_signature_header(webhook.signing_secrets(now), timestamp, body),
            HEADER_EVENT_ID: delivery.event_id,
            HEADER_WEBHOOK_EVENT: delivery.event.value,
            HEADER_WEBHOOK_TIMESTAMP: str(timestamp),
        }
        return body, headers

    async def attempt_delivery(self, delivery_id: str) -> WebhookDelivery | None:
        """
        Make one delivery attempt, serialized per webhook.

        Returns:
            The updated delivery, or None if its record no longer exists
        """
        delivery = await self._repository.get_delivery(delivery_id)
        if delivery is None:
            logger.warning("Webhook delivery record missing", delivery_id=delivery_id)
            return None

        webhook_id = delivery.webhook_id
        self._lock_holders[webhook_id] += 1
        try:
            async with self._locks[webhook_id]:
                # Another worker may have finished it while we waited
                delivery = await self._repository.get_delivery(delivery_id)
                if delivery is None or delivery.status.is_terminal:
                    return delivery
                return await self._attempt(delivery)
        finally:
            self._lock_holders[webhook_id] -= 1
            if self._lock_holders[webhook_id] <= 0:
                del self._lock_holders[webhook_id]
                self._locks.pop(webhook_id, None)

    async def _attempt(self, delivery: WebhookDelivery) -> WebhookDelivery:
        webhook = await self._repository.get(delivery.webhook_id)
        if webhook is None:
            delivery.status = DeliveryStatus.EXHAUSTED
            delivery.last_error = "webhook deleted"
            delivery.next_retry_at = None
            delivery.updated_at = self._now()
            await self._repository.save_delivery(delivery)
            self._metrics.record_webhook_status(delivery.status.value)
            logger.warning(
                "Webhook deleted before delivery",
                delivery_id=delivery.id,
                webhook_id=delivery.webhook_id,
                error_code=WebhookDeliveryExhaustedError.code,
            )
            return delivery

        body, headers = self._build_request(webhook, delivery)
        result = await self._sender.send(webhook.url, body, headers)
        self._metrics.record_webhook_attempt(result.success, result.duration_ms / 1000)

        now = self._now()
        delivery.updated_at = now
        delivery.last_status_code = result.status_code

        if result.success:
            delivery.attempt += 1
            delivery.status = DeliveryStatus.DELIVERED
            delivery.delivered_at = now
            delivery.next_retry_at = None
            delivery.last_error = None
            await self._repository.save_delivery(delivery)
            self._metrics.record_webhook_status(delivery.status.value)
            return delivery

        policy = webhook.retry_policy
        delay_ms = compute_retry_delay_ms(policy, delivery.attempt)
        delivery.attempt += 1
        delivery.last_error = result.error

        if delivery.attempt >= policy.max_attempts:
            delivery.status = DeliveryStatus.EXHAUSTED
            delivery.next_retry_at = None
            await self._repository.save_delivery(delivery)
            self._metrics.record_webhook_status(delivery.status.value)

            error = WebhookDeliveryExhaustedError(
                "Webhook delivery exhausted its retry policy",
                details={
                    "delivery_id": delivery.id,
                    "webhook_id": webhook.id,
                    "event_name": delivery.event.value,
                    "attempts": delivery.attempt,
                    "last_error": result.error,
                },
            )
            logger.error(error.message, error_code=error.code, **error.details)
            return delivery

        retry_at_ms = self._clock() + delay_ms
        delivery.status = DeliveryStatus.RETRYING
        delivery.next_retry_at = datetime.fromtimestamp(retry_at_ms / 1000, tz=timezone.utc)
        await self._repository.save_delivery(delivery)
        await self._schedule(delivery.id, retry_at_ms)
        self._metrics.record_webhook_status(delivery.status.value)

        logger.info(
            "Webhook delivery scheduled for retry",
            delivery_id=delivery.id,
            webhook_id=webhook.id,
            attempt=delivery.attempt,
            max_attempts=policy.max_attempts,
            delay_ms=delay_ms,
            error=result.error,
        )
        return delivery

    # =========================================================================
    # Background loops
    # =========================================================================

    async def _worker(self, worker_id: int) -> None:
        while True:
            delivery_id = await self._work.get()
            # Off the schedule but not yet recorded; put back if cancelled
            self._in_flight.add(delivery_id)
            try:
                await self.attempt_delivery(delivery_id)
            except Exception as e:
                logger.error(
                    "Webhook delivery worker error",
                    worker=worker_id,
                    delivery_id=delivery_id,
                    error=str(e),
                    error_type=type(e).__name__,
                    exc_info=True,
                )
                await self._reschedule_after_error(delivery_id)
            finally:
                self._work.task_done()
            self._in_flight.discard(delivery_id)

    async def _reschedule_after_error(self, delivery_id: str) -> None:
        try:
            await self._schedule(delivery_id, self._clock() + self._error_backoff_seconds * 1000)
        except Exception as e:
            logger.error(
                "Failed to reschedule webhook delivery",
                delivery_id=delivery_id,
                error=str(e),
                error_type=type(e).__name__,
            )

    async def _scheduler(self) -> None:
        while self._running:
            try:
                await self.dispatch_due()
            except Exception as e:
                logger.error(
                    "Webhook scheduler error, backing off",
                    error=str(e),
                    error_type=type(e).__name__,
                    exc_info=True,
                )
                await asyncio.sleep(self._error_backoff_seconds)
                continue

            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=self._poll_interval)
            except asyncio.TimeoutError:
                pass
            self._wakeup.clear()

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._tasks = [asyncio.create_task(self._worker(i)) for i in range(self._concurrency)]
        self._tasks.append(asyncio.create_task(self._scheduler()))
        logger.info("Webhook delivery service started", concurrency=self._concurrency)

    async def drain(self, timeout: float = 10.0) -> None:
        """Wait until everything currently due has been attempted."""
        await self.dispatch_due()
        await asyncio.wait_for(self._work.join(), timeout=timeout)

    async def shutdown(self, timeout: float = 10.0) -> None:
        """
        Stop accepting scheduled work, give in-flight attempts ``timeout``
        seconds, then cancel. Undelivered work stays in the durable schedule.
        """
        if not self._running:
            return
        self._running = False
        self._wakeup.set()

        try:
            await asyncio.wait_for(self._work.join(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Webhook delivery shutdown timeout, cancelling workers", timeout_seconds=timeout)

        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

        # Popped from the schedule but never attempted, or cut off mid-attempt
        unfinished = set(self._in_flight)
        while not self._work.empty():
            unfinished.add(self._work.get_nowait())
            self._work.task_done()
        for delivery_id in unfinished:
            await self._store.zadd(WEBHOOK_RETRY_SCHEDULE_KEY, delivery_id, self._clock())
        self._in_flight.clear()
        if unfinished:
            logger.info("Unfinished webhook deliveries rescheduled", count=len(unfinished))
        logger.info("Webhook delivery service stopped")
