"""
Service Container

Builds every long-lived component once, wires them together, and owns
their lifecycle. The app lifespan creates one container and stores it on
``app.state``; tests build one from in-memory backends.

Author: System Architect
Date: 2025-12-08
"""

from dataclasses import dataclass

import httpx

from enhance_gateway.core.config.constants import OPERATION_BATCH_ENHANCE, OPERATION_ENHANCE, OPERATION_WEBHOOKS
from enhance_gateway.core.config.settings import Settings
from enhance_gateway.core.interfaces import JobQueue, SharedStore
from enhance_gateway.core.logging import get_logger
from enhance_gateway.core.resilience import CircuitBreakerManager, RateLimiter, RateLimitRule
from enhance_gateway.infrastructure.message_queue import create_job_queue
from enhance_gateway.infrastructure.monitoring import MetricsCollector, get_metrics_collector
from enhance_gateway.infrastructure.store import create_store
from enhance_gateway.infrastructure.webhook import WebhookSender
from enhance_gateway.services.document_cache import DocumentCache
from enhance_gateway.services.enhancement_processor import EnhancementProcessor, FakeEnhancementProcessor
from enhance_gateway.services.enhancement_service import EnhancementService
from enhance_gateway.services.job_dispatcher import JobDispatcher
from enhance_gateway.services.job_worker import JobWorker
from enhance_gateway.services.upload_validator import UploadValidator
from enhance_gateway.services.webhook_delivery import WebhookDeliveryService
from enhance_gateway.services.webhook_manager import WebhookManager
from enhance_gateway.services.webhook_repository import WebhookRepository

logger = get_logger(__name__)

# Breaker guarding the job queue itself, below the per-endpoint breakers
QUEUE_BREAKER = "job_queue"


@dataclass
class ServiceContainer:
    settings: Settings
    store: SharedStore
    queue: JobQueue
    metrics: MetricsCollector
    breakers: CircuitBreakerManager
    limiter: RateLimiter
    cache: DocumentCache
    dispatcher: JobDispatcher
    enhancement: EnhancementService
    http_client: httpx.AsyncClient
    webhook_delivery: WebhookDeliveryService
    webhooks: WebhookManager
    worker: JobWorker

    @classmethod
    async def build(
        cls,
        settings: Settings,
        store: SharedStore | None = None,
        queue: JobQueue | None = None,
        http_client: httpx.AsyncClient | None = None,
        processor: EnhancementProcessor | None = None,
    ) -> "ServiceContainer":
        """Create every component; collaborators passed in are used as-is."""
        metrics = get_metrics_collector()
        store = store or await create_store(settings)
        queue = queue or create_job_queue(settings.queue, store)
        http_client = http_client or httpx.AsyncClient()

        breakers = CircuitBreakerManager(
            store,
            failure_threshold=settings.circuit_breaker.CB_FAILURE_THRESHOLD,
            reset_timeout_ms=settings.circuit_breaker.CB_RESET_TIMEOUT_MS,
            metrics=metrics,
        )
        for operation in (OPERATION_ENHANCE, OPERATION_BATCH_ENHANCE, OPERATION_WEBHOOKS):
            breakers.get_breaker(operation)

        cache = DocumentCache(
            store,
            similarity_threshold=settings.cache.CACHE_SIMILARITY_THRESHOLD,
            entry_ttl_ms=settings.cache.CACHE_ENTRY_TTL_SECONDS * 1000,
            max_entries=settings.cache.CACHE_MAX_ENTRIES_PER_OWNER,
            metrics=metrics,
        )
        validator = UploadValidator(
            max_file_bytes=settings.upload.UPLOAD_MAX_FILE_BYTES,
            allowed_content_types=settings.upload.UPLOAD_ALLOWED_CONTENT_TYPES,
        )
        dispatcher = JobDispatcher(
            queue,
            cache,
            validator=validator,
            queue_name=settings.queue.QUEUE_NAME,
            default_max_attempts=settings.queue.QUEUE_DEFAULT_MAX_ATTEMPTS,
            default_backoff_ms=settings.queue.QUEUE_DEFAULT_BACKOFF_MS,
            max_batch_size=settings.queue.BATCH_MAX_FILES,
            breaker=breakers.get_breaker(QUEUE_BREAKER),
            metrics=metrics,
        )

        repository = WebhookRepository(store)
        webhook_delivery = WebhookDeliveryService(
            repository,
            store,
            WebhookSender(
                http_client,
                timeout_seconds=settings.webhook.WEBHOOK_TIMEOUT_SECONDS,
                user_agent=settings.webhook.WEBHOOK_USER_AGENT,
            ),
            concurrency=settings.webhook.WEBHOOK_WORKER_CONCURRENCY,
            retry_poll_interval_ms=settings.webhook.WEBHOOK_RETRY_POLL_INTERVAL_MS,
            metrics=metrics,
        )
        webhooks = WebhookManager(
            repository,
            webhook_delivery,
            require_https=settings.webhook.WEBHOOK_REQUIRE_HTTPS,
            max_per_owner=settings.webhook.WEBHOOK_MAX_PER_OWNER,
            secret_grace_period_ms=settings.webhook.WEBHOOK_SECRET_GRACE_PERIOD_SECONDS * 1000,
        )

        enhancement = EnhancementService(dispatcher, cache, queue, store, webhooks=webhooks)
        worker = JobWorker(
            queue,
            processor or FakeEnhancementProcessor(settings.app.ENHANCEMENT_RESULT_BASE_URL),
            cache,
            webhooks=webhooks,
            queue_name=settings.queue.QUEUE_NAME,
            concurrency=settings.queue.QUEUE_WORKER_CONCURRENCY,
            poll_interval_ms=settings.queue.QUEUE_POLL_INTERVAL_MS,
            metrics=metrics,
        )

        return cls(
            settings=settings,
            store=store,
            queue=queue,
            metrics=metrics,
            breakers=breakers,
            limiter=RateLimiter(store, metrics=metrics),
            cache=cache,
            dispatcher=dispatcher,
            enhancement=enhancement,
            http_client=http_client,
            webhook_delivery=webhook_delivery,
            webhooks=webhooks,
            worker=worker,
        )

    def rate_limit_rules(self, endpoint: str) -> list[RateLimitRule]:
        """User scope first, then the per-endpoint scope."""
        rl = self.settings.rate_limit
        return [
            RateLimitRule("user", rl.RATE_LIMIT_USER_LIMIT, rl.RATE_LIMIT_USER_WINDOW_MS),
            RateLimitRule(f"endpoint:{endpoint}", rl.RATE_LIMIT_ENDPOINT_LIMIT, rl.RATE_LIMIT_ENDPOINT_WINDOW_MS),
        ]

    async def start(self) -> None:
        await self.webhook_delivery.start()
        await self.worker.start()
        logger.info("Background workers started")

    async def stop(self) -> None:
        await self.worker.shutdown()
        await self.webhook_delivery.shutdown()
        await self.queue.close()
        await self.http_client.aclose()
        await self.store.close()
        logger.info("Service container stopped")
