"""API request and response models."""

from enhance_gateway.application.api.models.enhance import (
    BatchItemResponse,
    BatchRecordResponse,
    BatchResponse,
    EnhanceResponse,
    JobStatusResponse,
)
from enhance_gateway.application.api.models.webhooks import (
    DeliveryListResponse,
    DeliveryStatsResponse,
    DeliveryView,
    ErrorResponse,
    WebhookCreateRequest,
    WebhookListResponse,
    WebhookSecretResponse,
    WebhookView,
)

__all__ = [
    "BatchItemResponse",
    "BatchRecordResponse",
    "BatchResponse",
    "DeliveryListResponse",
    "DeliveryStatsResponse",
    "DeliveryView",
    "EnhanceResponse",
    "ErrorResponse",
    "JobStatusResponse",
    "WebhookCreateRequest",
    "WebhookListResponse",
    "WebhookSecretResponse",
    "WebhookView",
]
