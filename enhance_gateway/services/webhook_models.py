"""
Webhook Domain Models

Validated, strongly-typed webhook configuration and delivery records.
Retry policies and event lists are validated once, here, at the boundary;
everything downstream trusts them.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from enhance_gateway.core.config.constants import (
    HEADER_EVENT_ID,
    HEADER_SIGNATURE,
    HEADER_WEBHOOK_EVENT,
    HEADER_WEBHOOK_TIMESTAMP,
)

RESERVED_HEADERS = {
    header.lower()
    for header in (
        HEADER_SIGNATURE,
        HEADER_EVENT_ID,
        HEADER_WEBHOOK_EVENT,
        HEADER_WEBHOOK_TIMESTAMP,
        "Content-Type",
        "Content-Length",
        "Host",
        "User-Agent",
    )
}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class WebhookEvent(str, Enum):
    ENHANCEMENT_STARTED = "enhancement.started"
    ENHANCEMENT_PROGRESS = "enhancement.progress"
    ENHANCEMENT_COMPLETED = "enhancement.completed"
    ENHANCEMENT_FAILED = "enhancement.failed"
    DOCUMENT_UPLOADED = "document.uploaded"
    DOCUMENT_ANALYZED = "document.analyzed"
    EXPORT_COMPLETED = "export.completed"
    BATCH_STARTED = "batch.started"
    BATCH_PROGRESS = "batch.progress"
    BATCH_COMPLETED = "batch.completed"
    BATCH_FAILED = "batch.failed"


class DeliveryStatus(str, Enum):
    PENDING = "pending"
    DELIVERED = "delivered"
    RETRYING = "retrying"
    EXHAUSTED = "exhausted"

    @property
    def is_terminal(self) -> bool:
        return self in (DeliveryStatus.DELIVERED, DeliveryStatus.EXHAUSTED)


class WebhookRetryPolicy(BaseModel):
    """Client-configurable retry policy for one webhook."""

    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(default=3, ge=1, le=10, description="Attempts before a delivery is exhausted")
    initial_delay_ms: int = Field(default=1000, ge=100, le=10_000, description="Delay after the first failure")
    backoff_multiplier: float = Field(default=2.0, ge=1.0, le=5.0, description="Growth factor per attempt")
    max_delay_ms: int = Field(default=30_000, ge=1000, le=60_000, description="Upper bound on any delay")


def compute_retry_delay_ms(policy: WebhookRetryPolicy, attempt: int) -> int:
    """
    Delay after a failed delivery, given the number of attempts made before it.

    ``min(initial_delay_ms * backoff_multiplier ** attempt, max_delay_ms)``
    """
    return int(min(policy.initial_delay_ms * policy.backoff_multiplier ** attempt, policy.max_delay_ms))


def validate_custom_headers(headers: dict[str, str]) -> dict[str, str]:
    for name in headers:
        if name.lower() in RESERVED_HEADERS:
            raise ValueError(f"Header '{name}' is reserved")
    return headers


class Webhook(BaseModel):
    """A registered webhook. Secrets never leave through ``public_view``."""

    id: str
    owner_id: str
    url: str
    events: list[WebhookEvent]
    secret: str
    previous_secret: str | None = None
    previous_secret_expires_at: datetime | None = None
    is_active: bool = True
    headers: dict[str, str] = Field(default_factory=dict)
    retry_policy: WebhookRetryPolicy = Field(default_factory=WebhookRetryPolicy)
    description: str | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def subscribes_to(self, event: WebhookEvent) -> bool:
        return event in self.events

    def signing_secrets(self, now: datetime) -> list[str]:
        """Current secret, plus the previous one while its grace period lasts."""
        secrets = [self.secret]
        if (
            self.previous_secret
            and self.previous_secret_expires_at is not None
            and now < self.previous_secret_expires_at
        ):
            secrets.append(self.previous_secret)
        return secrets

    def public_view(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude={"secret", "previous_secret"})


class WebhookDelivery(BaseModel):
    """One delivery of one event instance to one webhook."""

    id: str
    webhook_id: str
    owner_id: str
    event: WebhookEvent
    event_id: str
    payload: dict[str, Any] = Field(default_factory=dict)
    attempt: int = 0
    status: DeliveryStatus = DeliveryStatus.PENDING
    next_retry_at: datetime | None = None
    last_error: str | None = None
    last_status_code: int | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    delivered_at: datetime | None = None


class WebhookUpdate(BaseModel):
    """Partial update; ``None`` leaves a field unchanged."""

    url: str | None = None
    events: list[WebhookEvent] | None = None
    is_active: bool | None = None
    headers: dict[str, str] | None = None
    retry_policy: WebhookRetryPolicy | None = None
    description: str | None = None

    @field_validator("headers")
    @classmethod
    def check_headers(cls, v):
        return validate_custom_headers(v) if v is not None else v
