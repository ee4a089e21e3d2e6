#!/usr/bin/env python3
"""
Metrics Collector with Prometheus Integration

Prometheus metrics for the resilience and delivery layer:
- Admission decisions and rejections by scope
- Circuit breaker state and rejections by operation
- Document cache hits (exact / near) and misses
- Job enqueue outcomes and batch outcomes
- Webhook delivery attempts and terminal statuses

Author: Senior Solution Architect
Date: 2025-12-05
"""

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest

from enhance_gateway.core.logging import get_logger

logger = get_logger(__name__)


# ============================================================================
# Metric Definitions
# ============================================================================

RATE_LIMIT_DECISIONS = Counter(
    'gateway_rate_limit_decisions_total',
    'Admission decisions',
    ['scope', 'outcome']  # allowed, rejected
)

RATE_LIMIT_RELEASES = Counter(
    'gateway_rate_limit_releases_total',
    'Provisional admissions reversed after a failed handler',
    ['scope']
)

CIRCUIT_BREAKER_STATE = Gauge(
    'gateway_circuit_breaker_state',
    'Circuit breaker state (0=closed, 1=half_open, 2=open)',
    ['operation']
)

CIRCUIT_BREAKER_REJECTIONS = Counter(
    'gateway_circuit_breaker_rejections_total',
    'Calls rejected without invoking the operation',
    ['operation', 'state']
)

CIRCUIT_BREAKER_FAILURES = Counter(
    'gateway_circuit_breaker_failures_total',
    'Failures recorded by circuit breakers',
    ['operation']
)

CIRCUIT_BREAKER_FALLBACKS = Counter(
    'gateway_circuit_breaker_fallbacks_total',
    'Responses served by a fallback while the circuit was open',
    ['operation']
)

CACHE_HITS = Counter(
    'gateway_document_cache_hits_total',
    'Document cache hits',
    ['match']  # exact or near
)

CACHE_MISSES = Counter(
    'gateway_document_cache_misses_total',
    'Document cache misses'
)

JOBS_ENQUEUED = Counter(
    'gateway_jobs_enqueued_total',
    'Jobs handed to the queue',
    ['queue', 'priority']
)

JOB_ENQUEUE_FAILURES = Counter(
    'gateway_job_enqueue_failures_total',
    'Jobs that could not be enqueued',
    ['queue']
)

JOBS_FINISHED = Counter(
    'gateway_jobs_finished_total',
    'Jobs reaching a terminal or retry state in the worker',
    ['queue', 'outcome']  # completed, retrying, failed
)

BATCH_ITEMS = Counter(
    'gateway_batch_items_total',
    'Batch item outcomes',
    ['status']  # queued, cached, failed
)

WEBHOOK_DELIVERY_ATTEMPTS = Counter(
    'gateway_webhook_delivery_attempts_total',
    'Outbound webhook attempts',
    ['outcome']  # success, failure
)

WEBHOOK_DELIVERY_STATUS = Counter(
    'gateway_webhook_delivery_status_total',
    'Webhook deliveries reaching a status',
    ['status']
)

WEBHOOK_DELIVERY_LATENCY = Histogram(
    'gateway_webhook_delivery_latency_seconds',
    'Outbound webhook attempt latency',
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0)
)

_CIRCUIT_STATE_VALUES = {"closed": 0, "half_open": 1, "open": 2}


class MetricsCollector:
    """
    Thin recording facade over the module-level Prometheus metrics.

    Components call ``record_*`` methods instead of touching metric objects
    so tests can swap in a MagicMock.
    """

    def record_rate_limit_decision(self, scope: str, allowed: bool) -> None:
        RATE_LIMIT_DECISIONS.labels(scope=scope, outcome="allowed" if allowed else "rejected").inc()

    def record_rate_limit_release(self, scope: str) -> None:
        RATE_LIMIT_RELEASES.labels(scope=scope).inc()

    def set_circuit_state(self, operation: str, state: str) -> None:
        CIRCUIT_BREAKER_STATE.labels(operation=operation).set(_CIRCUIT_STATE_VALUES.get(state, 0))

    def record_circuit_rejection(self, operation: str, state: str) -> None:
        CIRCUIT_BREAKER_REJECTIONS.labels(operation=operation, state=state).inc()

    def record_circuit_failure(self, operation: str) -> None:
        CIRCUIT_BREAKER_FAILURES.labels(operation=operation).inc()

    def record_circuit_fallback(self, operation: str) -> None:
        CIRCUIT_BREAKER_FALLBACKS.labels(operation=operation).inc()

    def record_cache_hit(self, match: str) -> None:
        CACHE_HITS.labels(match=match).inc()

    def record_cache_miss(self) -> None:
        CACHE_MISSES.inc()

    def record_job_enqueued(self, queue: str, priority: str) -> None:
        JOBS_ENQUEUED.labels(queue=queue, priority=priority).inc()

    def record_job_enqueue_failure(self, queue: str) -> None:
        JOB_ENQUEUE_FAILURES.labels(queue=queue).inc()

    def record_job_finished(self, queue: str, outcome: str) -> None:
        JOBS_FINISHED.labels(queue=queue, outcome=outcome).inc()

    def record_batch_item(self, status: str) -> None:
        BATCH_ITEMS.labels(status=status).inc()

    def record_webhook_attempt(self, success: bool, duration_seconds: float) -> None:
        WEBHOOK_DELIVERY_ATTEMPTS.labels(outcome="success" if success else "failure").inc()
        WEBHOOK_DELIVERY_LATENCY.observe(duration_seconds)

    def record_webhook_status(self, status: str) -> None:
        WEBHOOK_DELIVERY_STATUS.labels(status=status).inc()

    def get_prometheus_metrics(self) -> bytes:
        """Render every registered metric in the Prometheus text format."""
        return generate_latest()

    def get_content_type(self) -> str:
        return CONTENT_TYPE_LATEST


_metrics: MetricsCollector | None = None


def get_metrics_collector() -> MetricsCollector:
    """Get global metrics collector."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics
