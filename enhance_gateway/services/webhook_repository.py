"""
Webhook Repository

Store-backed persistence of webhooks and their delivery records.

Layout:
    webhook:{id}                       Webhook JSON
    webhooks:owner:{owner}             hash webhook id -> created_at
    webhooks:owner:{owner}:slots       counter of webhook slots the owner holds
    webhook_delivery:{id}              WebhookDelivery JSON (30 day TTL)
    webhook:{id}:deliveries            hash delivery id -> created_at ms
    webhook_delivery:dedupe:{wh}:{ev}  delivery id, set-if-absent per event instance
"""

from enhance_gateway.core.config.constants import (
    WEBHOOK_DELIVERY_KEY_PREFIX,
    WEBHOOK_DELIVERY_TTL_MS,
    WEBHOOK_KEY_PREFIX,
    WEBHOOK_OWNER_INDEX_PREFIX,
)
from enhance_gateway.core.interfaces import SharedStore
from enhance_gateway.services.webhook_models import Webhook, WebhookDelivery


class WebhookRepository:
    def __init__(self, store: SharedStore, delivery_ttl_ms: int = WEBHOOK_DELIVERY_TTL_MS):
        self._store = store
        self._delivery_ttl_ms = delivery_ttl_ms

    # ---- webhooks ----------------------------------------------------------

    @staticmethod
    def _webhook_key(webhook_id: str) -> str:
        return f"{WEBHOOK_KEY_PREFIX}:{webhook_id}"

    @staticmethod
    def _owner_key(owner_id: str) -> str:
        return f"{WEBHOOK_OWNER_INDEX_PREFIX}:{owner_id}"

    async def save(self, webhook: Webhook) -> None:
        await self._store.set(self._webhook_key(webhook.id), webhook.model_dump_json())
        await self._store.hset(self._owner_key(webhook.owner_id), webhook.id, webhook.created_at.isoformat())

    async def get(self, webhook_id: str) -> Webhook | None:
        raw = await self._store.get(self._webhook_key(webhook_id))
        return Webhook.model_validate_json(raw) if raw else None

    async def delete(self, webhook: Webhook) -> None:
        await self._store.delete(self._webhook_key(webhook.id))
        if await self._store.hdel(self._owner_key(webhook.owner_id), webhook.id):
            await self.release_slot(webhook.owner_id)

    async def list_for_owner(self, owner_id: str) -> list[Webhook]:
        index = await self._store.hgetall(self._owner_key(owner_id))
        webhooks = []
        for webhook_id in index:
            webhook = await self.get(webhook_id)
            if webhook is not None:
                webhooks.append(webhook)
        return sorted(webhooks, key=lambda w: w.created_at)

    @staticmethod
    def _slots_key(owner_id: str) -> str:
        return f"{WEBHOOK_OWNER_INDEX_PREFIX}:{owner_id}:slots"

    async def reserve_slot(self, owner_id: str, limit: int) -> bool:
        """Atomically take one of the owner's ``limit`` webhook slots."""
        taken = await self._store.incr(self._slots_key(owner_id))
        if taken > limit:
            await self._store.decr(self._slots_key(owner_id))
            return False
        return True

    async def release_slot(self, owner_id: str) -> None:
        await self._store.decr(self._slots_key(owner_id))

    # ---- deliveries --------------------------------------------------------

    @staticmethod
    def _delivery_key(delivery_id: str) -> str:
        return f"{WEBHOOK_DELIVERY_KEY_PREFIX}:{delivery_id}"

    @staticmethod
    def _delivery_index_key(webhook_id: str) -> str:
        return f"{WEBHOOK_KEY_PREFIX}:{webhook_id}:deliveries"

    @staticmethod
    def _dedupe_key(webhook_id: str, event_id: str) -> str:
        return f"{WEBHOOK_DELIVERY_KEY_PREFIX}:dedupe:{webhook_id}:{event_id}"

    async def claim_event(self, webhook_id: str, event_id: str, delivery_id: str) -> str | None:
        """
        Reserve ``(webhook, event instance)`` for ``delivery_id``.

        Returns:
            None if the claim succeeded, else the ID of the delivery that already holds it
        """
        key = self._dedupe_key(webhook_id, event_id)
        if await self._store.set(key, delivery_id, ttl_ms=self._delivery_ttl_ms, nx=True):
            return None
        return await self._store.get(key)

    async def save_delivery(self, delivery: WebhookDelivery) -> None:
        await self._store.set(
            self._delivery_key(delivery.id), delivery.model_dump_json(), ttl_ms=self._delivery_ttl_ms
        )
        await self._store.hset(
            self._delivery_index_key(delivery.webhook_id),
            delivery.id,
            str(int(delivery.created_at.timestamp() * 1000)),
        )

    async def get_delivery(self, delivery_id: str) -> WebhookDelivery | None:
        raw = await self._store.get(self._delivery_key(delivery_id))
        return WebhookDelivery.model_validate_json(raw) if raw else None

    async def list_deliveries(self, webhook_id: str, limit: int | None = None) -> list[WebhookDelivery]:
        """Newest first. Index entries whose record expired are pruned."""
        index_key = self._delivery_index_key(webhook_id)
        index = await self._store.hgetall(index_key)
        ordered = sorted(index.items(), key=lambda item: int(item[1]), reverse=True)

        deliveries = []
        for delivery_id, _ in ordered:
            if limit is not None and len(deliveries) >= limit:
                break
            delivery = await self.get_delivery(delivery_id)
            if delivery is None:
                await self._store.hdel(index_key, delivery_id)
                continue
            deliveries.append(delivery)
        return deliveries
