"""Outbound webhook transport and signing."""

from enhance_gateway.infrastructure.webhook.sender import DeliveryAttemptResult, WebhookSender
from enhance_gateway.infrastructure.webhook.signature import (
    build_signature_header,
    parse_signature_header,
    sign_payload,
    verify_signature,
)

__all__ = [
    "DeliveryAttemptResult",
    "WebhookSender",
    "build_signature_header",
    "parse_signature_header",
    "sign_payload",
    "verify_signature",
]
