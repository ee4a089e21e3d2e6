"""
Webhook Manager

Owner-scoped webhook registration and event fan-out.

Every read and write is scoped to the calling owner: another owner's
webhook is indistinguishable from a missing one (404). Secrets are
returned exactly once, at creation or rotation.

Author: System Architect
Date: 2025-12-08
"""

import secrets
import time
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any
from urllib.parse import urlsplit

from pydantic import ValidationError as PydanticValidationError

from enhance_gateway.core.config.constants import WEBHOOK_DELIVERY_LOG_LIMIT
from enhance_gateway.core.exceptions import NotFoundError, ValidationError, WebhookTriggerError
from enhance_gateway.core.logging import get_logger
from enhance_gateway.services.webhook_delivery import WebhookDeliveryService
from enhance_gateway.services.webhook_models import (
    DeliveryStatus,
    Webhook,
    WebhookDelivery,
    WebhookEvent,
    WebhookRetryPolicy,
    WebhookUpdate,
    validate_custom_headers,
)
from enhance_gateway.services.webhook_repository import WebhookRepository

logger = get_logger(__name__)


def _wall_clock_ms() -> float:
    return time.time() * 1000


def generate_secret() -> str:
    return secrets.token_hex(32)


async def notify_webhooks(
    webhooks: "WebhookManager | None",
    owner_id: str,
    event: WebhookEvent,
    data: dict[str, Any],
    event_id: str | None = None,
) -> list[str]:
    """
    Trigger ``event`` for ``owner_id`` without letting webhook faults escape.

    Callers are request handlers and job workers whose own outcome is
    already decided; a failed fan-out is logged with WEBHOOK_TRIGGER_FAILED
    and reported as no deliveries.
    """
    if webhooks is None:
        return []
    try:
        return await webhooks.trigger(owner_id, event, data, event_id=event_id)
    except Exception as e:
        error = WebhookTriggerError(
            "Webhook event could not be triggered",
            details={"owner_id": owner_id, "event_name": event.value, "event_id": event_id},
        )
        logger.error(
            error.message,
            error_code=error.code,
            error=str(e),
            error_type=type(e).__name__,
            exc_info=True,
            **error.details,
        )
        return []


class WebhookManager:
    """
    Webhook CRUD, secret rotation and event triggering.

    Usage:
        manager = WebhookManager(repository, delivery)
        webhook, secret = await manager.create_webhook("user-1", "https://example.com/hook", ["batch.completed"])
        delivery_ids = await manager.trigger("user-1", WebhookEvent.BATCH_COMPLETED, {"batch_id": "b1"})
    """

    def __init__(
        self,
        repository: WebhookRepository,
        delivery: WebhookDeliveryService,
        require_https: bool = False,
        max_per_owner: int = 25,
        secret_grace_period_ms: int = 24 * 60 * 60 * 1000,
        clock: Callable[[], float] = _wall_clock_ms,
    ):
        self._repository = repository
        self._delivery = delivery
        self.require_https = require_https
        self.max_per_owner = max_per_owner
        self._grace_period = timedelta(milliseconds=secret_grace_period_ms)
        self._clock = clock

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._clock() / 1000, tz=timezone.utc)

    # =========================================================================
    # Validation
    # =========================================================================

    def _validate_url(self, url: str) -> str:
        parts = urlsplit(url)
        allowed = ("https",) if self.require_https else ("http", "https")
        if parts.scheme not in allowed or not parts.netloc:
            raise ValidationError(
                "Webhook URL must be an absolute " + (" or ".join(allowed)) + " URL",
                details={"field": "url", "url": url},
            )
        return url

    @staticmethod
    def _parse_events(events: list[WebhookEvent | str]) -> list[WebhookEvent]:
        if not events:
            raise ValidationError("At least one event is required", details={"field": "events"})
        parsed = []
        for event in events:
            try:
                value = WebhookEvent(event)
            except ValueError as e:
                raise ValidationError(
                    f"Unknown webhook event: {event}",
                    details={"field": "events", "allowed": [member.value for member in WebhookEvent]},
                ) from e
            if value not in parsed:
                parsed.append(value)
        return parsed

    @staticmethod
    def _validate_headers(headers: dict[str, str] | None) -> dict[str, str]:
        try:
            return validate_custom_headers(dict(headers or {}))
        except ValueError as e:
            raise ValidationError(str(e), details={"field": "headers"}) from e

    # =========================================================================
    # CRUD
    # =========================================================================

    async def create_webhook(
        self,
        owner_id: str,
        url: str,
        events: list[WebhookEvent | str],
        retry_policy: WebhookRetryPolicy | dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        description: str | None = None,
    ) -> tuple[Webhook, str]:
        """
        Register a webhook.

        Returns:
            (webhook, secret): the secret is not retrievable again

        Raises:
            ValidationError: Bad URL, events, headers or retry policy, or the
                owner already has ``max_per_owner`` webhooks
        """
        url = self._validate_url(url)
        parsed_events = self._parse_events(events)
        custom_headers = self._validate_headers(headers)
        policy = self._parse_retry_policy(retry_policy)

        if not await self._repository.reserve_slot(owner_id, self.max_per_owner):
            raise ValidationError(
                f"Webhook limit reached (max: {self.max_per_owner})",
                details={"owner_id": owner_id, "max": self.max_per_owner},
            )

        now = self._now()
        secret = generate_secret()
        webhook = Webhook(
            id=uuid.uuid4().hex,
            owner_id=owner_id,
            url=url,
            events=parsed_events,
            secret=secret,
            headers=custom_headers,
            retry_policy=policy,
            description=description,
            created_at=now,
            updated_at=now,
        )
        try:
            await self._repository.save(webhook)
        except Exception:
            await self._repository.release_slot(owner_id)
            raise

        logger.info(
            "Webhook created",
            webhook_id=webhook.id,
            owner_id=owner_id,
            events=[e.value for e in parsed_events],
        )
        return webhook, secret

    @staticmethod
    def _parse_retry_policy(retry_policy: WebhookRetryPolicy | dict[str, Any] | None) -> WebhookRetryPolicy:
        if retry_policy is None:
            return WebhookRetryPolicy()
        if isinstance(retry_policy, WebhookRetryPolicy):
            return retry_policy
        try:
            return WebhookRetryPolicy(**retry_policy)
        except PydanticValidationError as e:
            raise ValidationError(
                "Invalid retry policy",
                details={"field": "retry_policy", "errors": e.errors(include_url=False)},
            ) from e

    async def list_webhooks(self, owner_id: str) -> list[Webhook]:
        return await self._repository.list_for_owner(owner_id)

    async def get_webhook(self, owner_id: str, webhook_id: str) -> Webhook:
        """
        Raises:
            NotFoundError: Unknown webhook, or one that belongs to another owner
        """
        webhook = await self._repository.get(webhook_id)
        if webhook is None or webhook.owner_id != owner_id:
            raise NotFoundError("Webhook not found", details={"webhook_id": webhook_id})
        return webhook

    async def update_webhook(self, owner_id: str, webhook_id: str, update: WebhookUpdate) -> Webhook:
        webhook = await self.get_webhook(owner_id, webhook_id)

        changes: dict[str, Any] = {}
        if update.url is not None:
            changes["url"] = self._validate_url(update.url)
        if update.events is not None:
            changes["events"] = self._parse_events(update.events)
        if update.is_active is not None:
            changes["is_active"] = update.is_active
        if update.headers is not None:
            changes["headers"] = self._validate_headers(update.headers)
        if update.retry_policy is not None:
            changes["retry_policy"] = update.retry_policy
        if update.description is not None:
            changes["description"] = update.description

        if not changes:
            return webhook

        changes["updated_at"] = self._now()
        updated = webhook.model_copy(update=changes)
        await self._repository.save(updated)

        logger.info("Webhook updated", webhook_id=webhook_id, owner_id=owner_id, fields=sorted(changes))
        return updated

    async def delete_webhook(self, owner_id: str, webhook_id: str) -> None:
        """Hard delete. Queued deliveries end EXHAUSTED at their next attempt."""
        webhook = await self.get_webhook(owner_id, webhook_id)
        await self._repository.delete(webhook)
        logger.info("Webhook deleted", webhook_id=webhook_id, owner_id=owner_id)

    async def rotate_secret(self, owner_id: str, webhook_id: str) -> str:
        """
        Issue a new signing secret.

        The previous secret keeps signing deliveries (alongside the new one)
        until the grace period ends, so receivers can switch over.
        """
        webhook = await self.get_webhook(owner_id, webhook_id)
        now = self._now()
        new_secret = generate_secret()

        rotated = webhook.model_copy(
            update={
                "secret": new_secret,
                "previous_secret": webhook.secret,
                "previous_secret_expires_at": now + self._grace_period,
                "updated_at": now,
            }
        )
        await self._repository.save(rotated)

        logger.info(
            "Webhook secret rotated",
            webhook_id=webhook_id,
            owner_id=owner_id,
            grace_period_seconds=int(self._grace_period.total_seconds()),
        )
        return new_secret

    # =========================================================================
    # Events
    # =========================================================================

    async def queue_delivery(
        self,
        webhook: Webhook,
        event: WebhookEvent,
        data: dict[str, Any],
        event_id: str | None = None,
    ) -> WebhookDelivery | None:
        """Queue one delivery; None if the webhook is inactive or not subscribed."""
        if not webhook.is_active or not webhook.subscribes_to(event):
            return None
        return await self._delivery.enqueue(webhook, event, data, event_id)

    async def trigger(
        self,
        owner_id: str,
        event: WebhookEvent,
        data: dict[str, Any],
        event_id: str | None = None,
    ) -> list[str]:
        """
        Fan ``event`` out to every active, subscribed webhook of ``owner_id``.

        All deliveries share one event ID so receivers can deduplicate.

        Returns:
            list[str]: IDs of the deliveries queued
        """
        event_id = event_id or uuid.uuid4().hex
        delivery_ids = []
        for webhook in await self._repository.list_for_owner(owner_id):
            delivery = await self.queue_delivery(webhook, event, data, event_id)
            if delivery is not None:
                delivery_ids.append(delivery.id)

        if delivery_ids:
            logger.info(
                "Webhook event triggered",
                owner_id=owner_id,
                event_name=event.value,
                event_id=event_id,
                deliveries=len(delivery_ids),
            )
        return delivery_ids

    # =========================================================================
    # Deliveries
    # =========================================================================

    async def list_deliveries(
        self, owner_id: str, webhook_id: str, limit: int = WEBHOOK_DELIVERY_LOG_LIMIT
    ) -> list[WebhookDelivery]:
        await self.get_webhook(owner_id, webhook_id)
        return await self._repository.list_deliveries(webhook_id, limit=limit)

    async def get_delivery(self, owner_id: str, webhook_id: str, delivery_id: str) -> WebhookDelivery:
        await self.get_webhook(owner_id, webhook_id)
        delivery = await self._repository.get_delivery(delivery_id)
        if delivery is None or delivery.webhook_id != webhook_id:
            raise NotFoundError("Delivery not found", details={"delivery_id": delivery_id})
        return delivery

    async def retry_delivery(self, owner_id: str, webhook_id: str, delivery_id: str) -> WebhookDelivery:
        delivery = await self.get_delivery(owner_id, webhook_id, delivery_id)
        return await self._delivery.retry(delivery)

    async def get_delivery_stats(self, owner_id: str, webhook_id: str) -> dict[str, Any]:
        await self.get_webhook(owner_id, webhook_id)
        deliveries = await self._repository.list_deliveries(webhook_id)

        counts = {status.value: 0 for status in DeliveryStatus}
        for delivery in deliveries:
            counts[delivery.status.value] += 1

        finished = counts[DeliveryStatus.DELIVERED.value] + counts[DeliveryStatus.EXHAUSTED.value]
        last = max((d.updated_at for d in deliveries), default=None)
        return {
            "webhook_id": webhook_id,
            "total": len(deliveries),
            **counts,
            "success_rate": round(counts[DeliveryStatus.DELIVERED.value] / finished, 4) if finished else None,
            "last_delivery_at": last.isoformat() if last else None,
        }
