"""
Exception Module

Structured exception hierarchy for the enhancement gateway, organized by theme.

Module Structure:
-----------------
- **base.py**: GatewayError base class + ConfigurationError
- **rate_limit.py**: admission control rejections (RATE_LIMITED)
- **circuit_breaker.py**: open circuit rejections (CIRCUIT_OPEN)
- **validation.py**: caller input errors (VALIDATION_ERROR), 401/404/409
- **queue.py**: job queue errors (JOB_ENQUEUE_FAILED)
- **store.py**: shared store errors
- **webhook.py**: webhook delivery errors (WEBHOOK_DELIVERY_EXHAUSTED, WEBHOOK_TRIGGER_FAILED)

Usage:
------
```python
from enhance_gateway.core.exceptions import RateLimitExceededError, ValidationError
```

Author: System Architect
Date: 2025-12-08
"""

from enhance_gateway.core.exceptions.base import ConfigurationError, GatewayError
from enhance_gateway.core.exceptions.circuit_breaker import (
    CircuitBreakerError,
    CircuitBreakerOpenError,
)
from enhance_gateway.core.exceptions.queue import (
    JobEnqueueError,
    JobNotFoundError,
    JobProcessingError,
    QueueConnectionError,
    QueueError,
)
from enhance_gateway.core.exceptions.rate_limit import RateLimitError, RateLimitExceededError
from enhance_gateway.core.exceptions.store import StoreConnectionError, StoreError
from enhance_gateway.core.exceptions.validation import (
    AuthenticationRequiredError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from enhance_gateway.core.exceptions.webhook import (
    WebhookDeliveryExhaustedError,
    WebhookError,
    WebhookTriggerError,
)

__all__ = [
    "AuthenticationRequiredError",
    "CircuitBreakerError",
    "CircuitBreakerOpenError",
    "ConfigurationError",
    "ConflictError",
    "GatewayError",
    "JobEnqueueError",
    "JobNotFoundError",
    "JobProcessingError",
    "NotFoundError",
    "QueueConnectionError",
    "QueueError",
    "RateLimitError",
    "RateLimitExceededError",
    "StoreConnectionError",
    "StoreError",
    "ValidationError",
    "WebhookDeliveryExhaustedError",
    "WebhookError",
    "WebhookTriggerError",
]
