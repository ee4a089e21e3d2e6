"""
Fixed-Window Rate Limiter

Distributed admission control backed by the shared store.

MECHANISM OF ACTION:
-------------------
1.  **Window key**: every (scope, identity) pair gets one counter per window,
    keyed ``ratelimit:{scope}:{identity}:{floor(now / window_ms)}``. The
    counter expires with its window, so nothing needs cleaning up.

2.  **Admission**: the counter is incremented atomically (INCR, with the TTL
    set on creation) and the request is admitted iff the post-increment
    count is <= limit. A rejected request still counts; the window simply
    stays exhausted until it rolls over.

3.  **Retry hint**: a rejection carries
    ``retry_after_ms = window_start + window_ms - now``, always in
    (0, window_ms].

4.  **Dual limiting**: a request may be checked against several scopes
    (per-user and per-endpoint). Scopes are checked in order and checking
    stops at the first rejection, which supplies the retry hint.

5.  **Provisional admission**: with skip-failed-requests, the pipeline calls
    ``release()`` when the handler fails, decrementing every counter the
    admission incremented.

Fixed windows accept a burst of up to 2x limit straddling a window boundary.
That is the cost of O(1) accounting with a single counter per window.
"""

import math
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from enhance_gateway.core.config.constants import (
    HEADER_RATE_LIMIT_LIMIT,
    HEADER_RATE_LIMIT_REMAINING,
    HEADER_RATE_LIMIT_RESET,
    HEADER_RETRY_AFTER,
    RATE_LIMIT_KEY_PREFIX,
)
from enhance_gateway.core.exceptions import ConfigurationError
from enhance_gateway.core.interfaces import SharedStore
from enhance_gateway.core.logging import get_logger
from enhance_gateway.infrastructure.monitoring import MetricsCollector, get_metrics_collector

logger = get_logger(__name__)


def _wall_clock_ms() -> float:
    return time.time() * 1000


@dataclass(frozen=True)
class RateLimitRule:
    """A named limit: at most ``limit`` requests per ``window_ms``."""

    scope: str
    limit: int
    window_ms: int

    def __post_init__(self):
        if self.limit < 1:
            raise ConfigurationError(f"Rate limit for '{self.scope}' must be >= 1", details={"limit": self.limit})
        if self.window_ms < 1:
            raise ConfigurationError(
                f"Rate limit window for '{self.scope}' must be >= 1ms", details={"window_ms": self.window_ms}
            )


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of one admission against one scope."""

    allowed: bool
    scope: str
    identity: str
    limit: int
    count: int
    window_ms: int
    reset_at_ms: int
    retry_after_ms: int
    key: str

    @property
    def remaining(self) -> int:
        return max(self.limit - self.count, 0)


@dataclass
class RateLimitResult:
    """Outcome of checking a request against every configured scope."""

    decisions: list[RateLimitDecision] = field(default_factory=list)
    released: bool = False

    @property
    def allowed(self) -> bool:
        return all(decision.allowed for decision in self.decisions)

    @property
    def rejected(self) -> RateLimitDecision | None:
        """The first failing scope, if any."""
        return next((decision for decision in self.decisions if not decision.allowed), None)

    @property
    def retry_after_ms(self) -> int:
        rejected = self.rejected
        return rejected.retry_after_ms if rejected else 0

    @property
    def most_restrictive(self) -> RateLimitDecision | None:
        if not self.decisions:
            return None
        return self.rejected or min(self.decisions, key=lambda decision: decision.remaining)


class RateLimiter:
    """
    Fixed-window counter limiter.

    Usage:
        limiter = RateLimiter(store)
        decision = await limiter.admit("user", "u-123", limit=10, window_ms=60_000)
        if not decision.allowed:
            ...  # reject with decision.retry_after_ms
    """

    def __init__(
        self,
        store: SharedStore,
        clock: Callable[[], float] = _wall_clock_ms,
        metrics: MetricsCollector | None = None,
    ):
        self._store = store
        self._clock = clock
        self._metrics = metrics or get_metrics_collector()

    @staticmethod
    def window_key(scope: str, identity: str, window_index: int) -> str:
        return f"{RATE_LIMIT_KEY_PREFIX}:{scope}:{identity}:{window_index}"

    async def admit(self, scope: str, identity: str, limit: int, window_ms: int) -> RateLimitDecision:
        """
        Count one request against ``(scope, identity)`` in the current window.

        Returns:
            RateLimitDecision: allowed, or rejected with retry_after_ms in (0, window_ms]
        """
        now = self._clock()
        window_index = math.floor(now / window_ms)
        window_start = window_index * window_ms
        reset_at = window_start + window_ms
        key = self.window_key(scope, identity, window_index)

        count = await self._store.incr(key, ttl_ms=window_ms)
        allowed = count <= limit
        retry_after_ms = 0 if allowed else max(math.ceil(reset_at - now), 1)

        self._metrics.record_rate_limit_decision(scope, allowed)
        if not allowed:
            logger.info(
                "Rate limit exceeded",
                scope=scope,
                identity=identity,
                count=count,
                limit=limit,
                retry_after_ms=retry_after_ms,
            )

        return RateLimitDecision(
            allowed=allowed,
            scope=scope,
            identity=identity,
            limit=limit,
            count=count,
            window_ms=window_ms,
            reset_at_ms=int(reset_at),
            retry_after_ms=retry_after_ms,
            key=key,
        )

    async def admit_all(self, checks: list[tuple[RateLimitRule, str]]) -> RateLimitResult:
        """
        Check a request against several scopes in order.

        Stops at the first rejection. Counters already incremented on
        earlier scopes are kept.

        Args:
            checks: (rule, identity) pairs
        """
        result = RateLimitResult()
        for rule, identity in checks:
            decision = await self.admit(rule.scope, identity, rule.limit, rule.window_ms)
            result.decisions.append(decision)
            if not decision.allowed:
                break
        return result

    async def release(self, result: RateLimitResult) -> None:
        """
        Reverse a provisional admission.

        Decrements every counter the admission incremented. Safe to call
        twice; the second call is a no-op.
        """
        if result.released:
            return
        result.released = True
        for decision in result.decisions:
            await self._store.decr(decision.key)
            self._metrics.record_rate_limit_release(decision.scope)
        logger.debug("Provisional admission released", scopes=[d.scope for d in result.decisions])

    @staticmethod
    def headers(result: RateLimitResult) -> dict[str, str]:
        """X-RateLimit-* headers for the most restrictive scope, plus Retry-After on rejection."""
        decision = result.most_restrictive
        if decision is None:
            return {}

        headers = {
            HEADER_RATE_LIMIT_LIMIT: str(decision.limit),
            HEADER_RATE_LIMIT_REMAINING: str(decision.remaining),
            HEADER_RATE_LIMIT_RESET: str(math.ceil(decision.reset_at_ms / 1000)),
        }
        if not decision.allowed:
            headers[HEADER_RETRY_AFTER] = str(math.ceil(decision.retry_after_ms / 1000))
        return headers
