"""
Pytest Configuration and Shared Test Fixtures

This module provides reusable fixtures for all tests. Every fixture runs
against the in-memory backends, so no Redis or network is needed.
All fixtures defined here are automatically available to all test files.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from enhance_gateway.core.config.settings import (
    ApplicationSettings,
    QueueSettings,
    RateLimitSettings,
    Settings,
)
from enhance_gateway.infrastructure.message_queue import InMemoryJobQueue
from enhance_gateway.infrastructure.monitoring import MetricsCollector
from enhance_gateway.infrastructure.store import InMemoryStore
from enhance_gateway.infrastructure.webhook import DeliveryAttemptResult


# ============================================================================
# Clock
# ============================================================================


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start_ms: float = 1_760_000_000_000):
        self.now = start_ms

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


@pytest.fixture
def clock():
    return FakeClock()


# ============================================================================
# Mock Configuration Fixtures
# ============================================================================


@pytest.fixture
def test_settings():
    """
    Real settings wired for in-memory backends.

    Rate limits are small so tests can exhaust them quickly.
    """
    return Settings(
        app=ApplicationSettings(STORE_BACKEND="memory", ENVIRONMENT="development"),
        queue=QueueSettings(QUEUE_BACKEND="memory"),
        rate_limit=RateLimitSettings(
            RATE_LIMIT_USER_LIMIT=100,
            RATE_LIMIT_ENDPOINT_LIMIT=3,
        ),
    )


@pytest.fixture
def mock_metrics():
    """Metrics collector double; records calls without touching Prometheus."""
    return MagicMock(spec=MetricsCollector)


# ============================================================================
# Backend Fixtures
# ============================================================================


@pytest.fixture
def store(clock):
    return InMemoryStore(clock=clock)


@pytest.fixture
def job_queue(clock):
    return InMemoryJobQueue(clock=clock)


@pytest.fixture
def mock_sender():
    """
    Webhook sender double.

    Succeeds with 200 by default; set ``side_effect`` or ``return_value``
    to script failures.
    """
    sender = AsyncMock()
    sender.send.return_value = DeliveryAttemptResult(success=True, status_code=200, response_body="ok")
    return sender
