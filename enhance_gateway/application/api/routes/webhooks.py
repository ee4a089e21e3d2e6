"""
Webhook Routes

Owner-scoped webhook management and delivery inspection. Mutations run
through the ``webhooks`` admission pipeline; reads do not.
"""

from fastapi import APIRouter, Query, Response, status

from enhance_gateway.application.api.dependencies import (
    ClientIpDep,
    ContainerDep,
    UserIdDep,
    build_context,
    build_pipeline,
)
from enhance_gateway.application.api.models import (
    DeliveryListResponse,
    DeliveryStatsResponse,
    DeliveryView,
    WebhookCreateRequest,
    WebhookListResponse,
    WebhookSecretResponse,
    WebhookView,
)
from enhance_gateway.application.container import ServiceContainer
from enhance_gateway.core.config.constants import OPERATION_WEBHOOKS, WEBHOOK_DELIVERY_LOG_LIMIT
from enhance_gateway.services.request_pipeline import Handler
from enhance_gateway.services.webhook_models import Webhook, WebhookDelivery, WebhookUpdate

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


def _view(webhook: Webhook) -> WebhookView:
    return WebhookView(**webhook.public_view())


def _delivery_view(delivery: WebhookDelivery) -> DeliveryView:
    return DeliveryView(**delivery.model_dump(mode="json", exclude={"payload", "owner_id"}))


async def _guarded(
    container: ServiceContainer, user_id: str, client_ip: str | None, response: Response, handler: Handler
):
    ctx = build_context(OPERATION_WEBHOOKS, user_id, client_ip)
    result = await build_pipeline(container, OPERATION_WEBHOOKS, handler).execute(ctx)
    response.headers.update(ctx.response_headers)
    return result


@router.post("", response_model=WebhookSecretResponse, status_code=status.HTTP_201_CREATED)
async def create_webhook(
    body: WebhookCreateRequest,
    response: Response,
    container: ContainerDep,
    user_id: UserIdDep,
    client_ip: ClientIpDep,
):
    async def handler(ctx):
        return await container.webhooks.create_webhook(
            ctx.user_id,
            body.url,
            body.events,
            retry_policy=body.retry_policy,
            headers=body.headers,
            description=body.description,
        )

    webhook, secret = await _guarded(container, user_id, client_ip, response, handler)
    return WebhookSecretResponse(webhook=_view(webhook), secret=secret)


@router.get("", response_model=WebhookListResponse)
async def list_webhooks(container: ContainerDep, user_id: UserIdDep):
    webhooks = await container.webhooks.list_webhooks(user_id)
    return WebhookListResponse(webhooks=[_view(w) for w in webhooks], total=len(webhooks))


@router.get("/{webhook_id}", response_model=WebhookView)
async def get_webhook(webhook_id: str, container: ContainerDep, user_id: UserIdDep):
    return _view(await container.webhooks.get_webhook(user_id, webhook_id))


@router.put("/{webhook_id}", response_model=WebhookView)
async def update_webhook(
    webhook_id: str,
    body: WebhookUpdate,
    response: Response,
    container: ContainerDep,
    user_id: UserIdDep,
    client_ip: ClientIpDep,
):
    async def handler(ctx):
        return await container.webhooks.update_webhook(ctx.user_id, webhook_id, body)

    return _view(await _guarded(container, user_id, client_ip, response, handler))


@router.delete("/{webhook_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_webhook(
    webhook_id: str,
    response: Response,
    container: ContainerDep,
    user_id: UserIdDep,
    client_ip: ClientIpDep,
):
    async def handler(ctx):
        await container.webhooks.delete_webhook(ctx.user_id, webhook_id)

    await _guarded(container, user_id, client_ip, response, handler)


@router.post("/{webhook_id}/rotate-secret", response_model=WebhookSecretResponse)
async def rotate_secret(
    webhook_id: str,
    response: Response,
    container: ContainerDep,
    user_id: UserIdDep,
    client_ip: ClientIpDep,
):
    async def handler(ctx):
        secret = await container.webhooks.rotate_secret(ctx.user_id, webhook_id)
        return await container.webhooks.get_webhook(ctx.user_id, webhook_id), secret

    webhook, secret = await _guarded(container, user_id, client_ip, response, handler)
    return WebhookSecretResponse(webhook=_view(webhook), secret=secret)


@router.get("/{webhook_id}/deliveries", response_model=DeliveryListResponse)
async def list_deliveries(
    webhook_id: str,
    container: ContainerDep,
    user_id: UserIdDep,
    limit: int = Query(default=50, ge=1, le=WEBHOOK_DELIVERY_LOG_LIMIT),
):
    deliveries = await container.webhooks.list_deliveries(user_id, webhook_id, limit=limit)
    return DeliveryListResponse(deliveries=[_delivery_view(d) for d in deliveries], total=len(deliveries))


@router.post("/{webhook_id}/deliveries/{delivery_id}/retry", response_model=DeliveryView)
async def retry_delivery(
    webhook_id: str,
    delivery_id: str,
    response: Response,
    container: ContainerDep,
    user_id: UserIdDep,
    client_ip: ClientIpDep,
):
    async def handler(ctx):
        return await container.webhooks.retry_delivery(ctx.user_id, webhook_id, delivery_id)

    return _delivery_view(await _guarded(container, user_id, client_ip, response, handler))


@router.get("/{webhook_id}/stats", response_model=DeliveryStatsResponse)
async def delivery_stats(webhook_id: str, container: ContainerDep, user_id: UserIdDep):
    return await container.webhooks.get_delivery_stats(user_id, webhook_id)
