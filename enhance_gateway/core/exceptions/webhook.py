"""
Webhook Exceptions

Author: System Architect
Date: 2025-12-08
"""

from enhance_gateway.core.exceptions.base import GatewayError


class WebhookError(GatewayError):
    """Base exception for webhook errors."""
    code = "WEBHOOK_ERROR"
    status_code = 500


class WebhookDeliveryExhaustedError(WebhookError):
    """
    Recorded when a delivery used up its retry policy.

    Never raised to an API caller: delivery is fire-and-forget relative to
    the request that caused the event. The delivery worker builds one of
    these to log the terminal failure with a stable code.
    """
    code = "WEBHOOK_DELIVERY_EXHAUSTED"


class WebhookTriggerError(WebhookError):
    """
    Recorded when an event could not be fanned out to an owner's webhooks.

    Like exhaustion, this is logged and never raised: the request or job
    that produced the event has already succeeded on its own terms.
    """
    code = "WEBHOOK_TRIGGER_FAILED"
