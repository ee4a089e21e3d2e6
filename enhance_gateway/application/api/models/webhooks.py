"""
Webhook API Models

Secrets appear only in ``WebhookSecretResponse``, returned by create and
rotate-secret; every other response uses the public view.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from enhance_gateway.services.webhook_models import WebhookEvent, WebhookRetryPolicy


class WebhookCreateRequest(BaseModel):
    url: str = Field(..., description="Endpoint receiving signed POSTs")
    events: list[WebhookEvent] = Field(..., min_length=1)
    retry_policy: WebhookRetryPolicy | None = None
    headers: dict[str, str] | None = None
    description: str | None = Field(default=None, max_length=500)


class WebhookView(BaseModel):
    id: str
    owner_id: str
    url: str
    events: list[WebhookEvent]
    is_active: bool
    headers: dict[str, str]
    retry_policy: WebhookRetryPolicy
    description: str | None = None
    previous_secret_expires_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class WebhookSecretResponse(BaseModel):
    webhook: WebhookView
    secret: str = Field(description="HMAC signing secret; shown once")


class WebhookListResponse(BaseModel):
    webhooks: list[WebhookView]
    total: int


class DeliveryView(BaseModel):
    id: str
    webhook_id: str
    event: WebhookEvent
    event_id: str
    status: str
    attempt: int
    next_retry_at: datetime | None = None
    last_error: str | None = None
    last_status_code: int | None = None
    created_at: datetime
    updated_at: datetime
    delivered_at: datetime | None = None


class DeliveryListResponse(BaseModel):
    deliveries: list[DeliveryView]
    total: int


class DeliveryStatsResponse(BaseModel):
    webhook_id: str
    total: int
    pending: int
    delivered: int
    retrying: int
    exhausted: int
    success_rate: float | None = None
    last_delivery_at: str | None = None


class ErrorResponse(BaseModel):
    code: str
    error_type: str
    message: str
    request_id: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)
