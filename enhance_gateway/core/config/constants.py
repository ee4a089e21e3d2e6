#!/usr/bin/env python3
"""
System Constants

Store key prefixes, HTTP header names and fixed limits shared across the
gateway. Enumerations that belong to one component live with it.

Author: System Architect
Date: 2025-12-05
"""

# ============================================================================
# Shared store key prefixes
# ============================================================================

RATE_LIMIT_KEY_PREFIX = "ratelimit"
CIRCUIT_KEY_PREFIX = "circuit"
DOC_CACHE_KEY_PREFIX = "doccache"
WEBHOOK_KEY_PREFIX = "webhook"
WEBHOOK_OWNER_INDEX_PREFIX = "webhooks:owner"
WEBHOOK_DELIVERY_KEY_PREFIX = "webhook_delivery"
WEBHOOK_RETRY_SCHEDULE_KEY = "webhook:retry_schedule"
BATCH_KEY_PREFIX = "batch"
JOB_KEY_PREFIX = "job"
QUEUE_KEY_PREFIX = "queue"


# ============================================================================
# HTTP headers
# ============================================================================

HEADER_REQUEST_ID = "X-Request-ID"
HEADER_USER_ID = "X-User-ID"
HEADER_RETRY_AFTER = "Retry-After"
HEADER_RATE_LIMIT_LIMIT = "X-RateLimit-Limit"
HEADER_RATE_LIMIT_REMAINING = "X-RateLimit-Remaining"
HEADER_RATE_LIMIT_RESET = "X-RateLimit-Reset"
HEADER_FALLBACK_RESPONSE = "X-Fallback-Response"

HEADER_SIGNATURE = "X-Signature"
HEADER_EVENT_ID = "X-Event-Id"
HEADER_WEBHOOK_EVENT = "X-Webhook-Event"
HEADER_WEBHOOK_TIMESTAMP = "X-Webhook-Timestamp"


# ============================================================================
# Limits
# ============================================================================

MAX_BATCH_FAN_OUT = 10
BATCH_RECORD_TTL_MS = 24 * 60 * 60 * 1000
WEBHOOK_DELIVERY_TTL_MS = 30 * 24 * 60 * 60 * 1000
WEBHOOK_DELIVERY_LOG_LIMIT = 100
SIGNATURE_TOLERANCE_SECONDS = 300
# A reserved job not completed or failed within this window is run again
JOB_LEASE_MS = 5 * 60 * 1000

# Operation names guarded by circuit breakers
OPERATION_ENHANCE = "enhance"
OPERATION_BATCH_ENHANCE = "batch_enhance"
OPERATION_WEBHOOKS = "webhooks"
