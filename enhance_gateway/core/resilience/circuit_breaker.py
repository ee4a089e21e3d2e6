"""
Distributed Circuit Breaker and Resilient Call Wrapper.

A store-backed circuit breaker guarding named operations (API endpoints and
infrastructure calls such as job enqueueing).

MECHANISM OF ACTION:
-------------------
1.  **Distributed State**:
    Each operation's state lives in one JSON record (``circuit:{name}``) in
    the shared store, so every gateway instance sees the same circuit. Every
    transition is a compare-and-set of the whole record: read, compute the
    next record, CAS; on a lost race, re-read and recompute. There is no
    separate read-then-write anywhere.

2.  **State Transitions**:
    - **CLOSED**: calls pass. A failure increments ``consecutive_failures``;
      a success resets it. Reaching ``failure_threshold`` opens the circuit
      with ``opened_at = now``.

    - **OPEN**: calls are rejected without invoking the operation
      (``CircuitBreakerOpenError``, HTTP 503), or answered by the fallback
      when one is configured. Once ``reset_timeout_ms`` has elapsed since
      ``opened_at``, the next caller moves the circuit to HALF_OPEN.

    - **HALF_OPEN**: exactly one trial call is let through. The caller whose
      CAS claims the trial gets a TRIAL permit; every other caller is rejected
      until the trial resolves. Trial success closes the circuit; trial
      failure reopens it and restarts the timeout. A trial lease older than
      ``reset_timeout_ms`` may be re-claimed so a crashed trial holder cannot
      wedge the circuit.

3.  **Neutral outcomes**:
    Errors in ``excluded_exceptions`` (caller mistakes, rate limiting) say
    nothing about the operation's health. They release a trial without
    resolving it and never count as failures.

4.  **ResilientCall**:
    Circuit check -> tenacity retry of transient errors -> record outcome.
"""

import logging
import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass, replace
from enum import Enum
from typing import Any

import orjson
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from enhance_gateway.core.config.constants import CIRCUIT_KEY_PREFIX
from enhance_gateway.core.exceptions import (
    CircuitBreakerOpenError,
    QueueConnectionError,
    RateLimitExceededError,
    StoreConnectionError,
    StoreError,
    ValidationError,
)
from enhance_gateway.core.interfaces import SharedStore
from enhance_gateway.core.logging import get_logger
from enhance_gateway.infrastructure.monitoring import MetricsCollector, get_metrics_collector

logger = get_logger(__name__)

# Bound on CAS retries for a single transition under contention
MAX_CAS_ATTEMPTS = 100


def _wall_clock_ms() -> float:
    return time.time() * 1000


class CircuitState(str, Enum):
    """Enumeration of possible circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class PermitKind(str, Enum):
    NORMAL = "normal"
    TRIAL = "trial"


@dataclass(frozen=True)
class Permit:
    """Proof that a caller was let through; handed back when recording the outcome."""

    operation: str
    kind: PermitKind
    token: str | None = None

    @property
    def is_trial(self) -> bool:
        return self.kind == PermitKind.TRIAL


@dataclass(frozen=True)
class CircuitSnapshot:
    """The stored state of one circuit."""

    failure_threshold: int
    reset_timeout_ms: int
    state: CircuitState = CircuitState.CLOSED
    consecutive_failures: int = 0
    last_failure_at: float | None = None
    opened_at: float | None = None
    trial_token: str | None = None
    trial_started_at: float | None = None

    def to_json(self) -> str:
        data = asdict(self)
        data["state"] = self.state.value
        return orjson.dumps(data).decode()

    @classmethod
    def from_json(cls, raw: str) -> "CircuitSnapshot":
        data = orjson.loads(raw)
        data["state"] = CircuitState(data["state"])
        return cls(**data)


@dataclass(frozen=True)
class _Rejection:
    state: CircuitState
    retry_after_ms: int


class DistributedCircuitBreaker:
    """
    Store-backed circuit breaker for one named operation.

    Usage:
        breaker = DistributedCircuitBreaker("enhance", store, failure_threshold=3, reset_timeout_ms=30_000)
        result = await breaker.call(do_work, payload)

    Or, when the call and its outcome are split across pipeline stages:
        permit = await breaker.acquire()
        try:
            result = await do_work()
        except Exception:
            await breaker.record_failure(permit)
            raise
        await breaker.record_success(permit)
    """

    def __init__(
        self,
        name: str,
        store: SharedStore,
        failure_threshold: int = 5,
        reset_timeout_ms: int = 60_000,
        fallback: Callable[..., Awaitable[Any]] | None = None,
        excluded_exceptions: tuple[type[BaseException], ...] = (ValidationError, RateLimitExceededError),
        clock: Callable[[], float] = _wall_clock_ms,
        metrics: MetricsCollector | None = None,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout_ms = reset_timeout_ms
        self.fallback = fallback
        self.excluded_exceptions = excluded_exceptions
        self._store = store
        self._clock = clock
        self._metrics = metrics or get_metrics_collector()
        self._key = f"{CIRCUIT_KEY_PREFIX}:{name}"

    # =========================================================================
    # State storage
    # =========================================================================

    def _fresh(self) -> CircuitSnapshot:
        return CircuitSnapshot(failure_threshold=self.failure_threshold, reset_timeout_ms=self.reset_timeout_ms)

    def _decode(self, raw: str | None) -> CircuitSnapshot:
        if raw is None:
            return self._fresh()
        snapshot = CircuitSnapshot.from_json(raw)
        # Thresholds follow this instance's configuration
        return replace(snapshot, failure_threshold=self.failure_threshold, reset_timeout_ms=self.reset_timeout_ms)

    async def _transition(
        self, step: Callable[[CircuitSnapshot, float], tuple[CircuitSnapshot | None, Any]]
    ) -> tuple[CircuitSnapshot, Any]:
        """
        Apply ``step`` atomically.

        ``step`` returns (next snapshot or None for no change, outcome). The
        write is a CAS against the exact record ``step`` saw; a lost race
        re-reads and re-runs ``step``.
        """
        for _ in range(MAX_CAS_ATTEMPTS):
            raw = await self._store.get(self._key)
            current = self._decode(raw)
            updated, outcome = step(current, self._clock())
            if updated is None:
                return current, outcome
            if await self._store.compare_and_set(self._key, raw, updated.to_json()):
                if updated.state != current.state:
                    self._on_state_change(current, updated)
                return updated, outcome

        raise StoreError(
            f"Circuit '{self.name}' state contention",
            details={"operation": self.name, "attempts": MAX_CAS_ATTEMPTS},
        )

    def _on_state_change(self, before: CircuitSnapshot, after: CircuitSnapshot) -> None:
        self._metrics.set_circuit_state(self.name, after.state.value)
        log = logger.warning if after.state == CircuitState.OPEN else logger.info
        log(
            "Circuit state changed",
            operation=self.name,
            from_state=before.state.value,
            to_state=after.state.value,
            consecutive_failures=after.consecutive_failures,
        )

    async def get_snapshot(self) -> CircuitSnapshot:
        return self._decode(await self._store.get(self._key))

    async def get_state(self) -> CircuitState:
        """
        Current state, with an elapsed OPEN timeout reported as HALF_OPEN.

        Read-only: the transition itself happens on the next ``acquire``.
        """
        snapshot = await self.get_snapshot()
        if snapshot.state == CircuitState.OPEN and self._timeout_elapsed(snapshot.opened_at, self._clock()):
            return CircuitState.HALF_OPEN
        return snapshot.state

    def _timeout_elapsed(self, since: float | None, now: float) -> bool:
        return since is None or now - since >= self.reset_timeout_ms

    # =========================================================================
    # Permits
    # =========================================================================

    async def acquire(self) -> Permit:
        """
        Ask to invoke the operation.

        Raises:
            CircuitBreakerOpenError: OPEN, or HALF_OPEN with the trial taken
        """
        token = uuid.uuid4().hex

        def step(snapshot: CircuitSnapshot, now: float):
            if snapshot.state == CircuitState.CLOSED:
                return None, Permit(self.name, PermitKind.NORMAL)

            if snapshot.state == CircuitState.OPEN:
                if self._timeout_elapsed(snapshot.opened_at, now):
                    claimed = replace(
                        snapshot, state=CircuitState.HALF_OPEN, trial_token=token, trial_started_at=now
                    )
                    return claimed, Permit(self.name, PermitKind.TRIAL, token)
                retry_after = snapshot.opened_at + self.reset_timeout_ms - now
                return None, _Rejection(CircuitState.OPEN, max(int(retry_after), 1))

            # HALF_OPEN
            if snapshot.trial_token is None or self._timeout_elapsed(snapshot.trial_started_at, now):
                claimed = replace(snapshot, trial_token=token, trial_started_at=now)
                return claimed, Permit(self.name, PermitKind.TRIAL, token)
            retry_after = snapshot.trial_started_at + self.reset_timeout_ms - now
            return None, _Rejection(CircuitState.HALF_OPEN, max(int(retry_after), 1))

        _, outcome = await self._transition(step)

        if isinstance(outcome, _Rejection):
            self._metrics.record_circuit_rejection(self.name, outcome.state.value)
            raise CircuitBreakerOpenError(
                f"Circuit open for '{self.name}'",
                operation=self.name,
                state=outcome.state.value,
                retry_after_ms=outcome.retry_after_ms,
            )

        if outcome.is_trial:
            logger.info("Circuit trial call admitted", operation=self.name)
        return outcome

    async def record_success(self, permit: Permit) -> None:
        """A normal success resets the failure count; a trial success closes the circuit."""

        def step(snapshot: CircuitSnapshot, now: float):
            if permit.is_trial:
                if snapshot.state != CircuitState.HALF_OPEN or snapshot.trial_token != permit.token:
                    # Lease was re-claimed by another caller
                    return None, None
                return self._fresh(), None
            if snapshot.state == CircuitState.CLOSED and snapshot.consecutive_failures:
                return replace(snapshot, consecutive_failures=0), None
            return None, None

        await self._transition(step)

    async def record_failure(self, permit: Permit) -> None:
        """Count a failure; trip the circuit at the threshold or on a failed trial."""
        self._metrics.record_circuit_failure(self.name)

        def step(snapshot: CircuitSnapshot, now: float):
            if permit.is_trial:
                if snapshot.state != CircuitState.HALF_OPEN or snapshot.trial_token != permit.token:
                    return None, None
                return replace(
                    snapshot,
                    state=CircuitState.OPEN,
                    consecutive_failures=snapshot.consecutive_failures + 1,
                    last_failure_at=now,
                    opened_at=now,
                    trial_token=None,
                    trial_started_at=None,
                ), None

            if snapshot.state != CircuitState.CLOSED:
                # Stale permit from before the circuit opened
                return None, None

            failures = snapshot.consecutive_failures + 1
            if failures >= self.failure_threshold:
                return replace(
                    snapshot,
                    state=CircuitState.OPEN,
                    consecutive_failures=failures,
                    last_failure_at=now,
                    opened_at=now,
                ), None
            return replace(snapshot, consecutive_failures=failures, last_failure_at=now), None

        snapshot, _ = await self._transition(step)
        logger.debug(
            "Circuit failure recorded",
            operation=self.name,
            failures=snapshot.consecutive_failures,
            threshold=self.failure_threshold,
        )

    async def release(self, permit: Permit) -> None:
        """Hand back a permit without an outcome. A released trial frees the slot for the next caller."""
        if not permit.is_trial:
            return

        def step(snapshot: CircuitSnapshot, now: float):
            if snapshot.state != CircuitState.HALF_OPEN or snapshot.trial_token != permit.token:
                return None, None
            return replace(snapshot, trial_token=None, trial_started_at=None), None

        await self._transition(step)

    # =========================================================================
    # Call wrapper
    # =========================================================================

    async def call(
        self,
        func: Callable[..., Awaitable[Any]],
        *args,
        fallback: Callable[..., Awaitable[Any]] | None = None,
        **kwargs,
    ) -> Any:
        """
        Invoke ``func`` through the circuit.

        When the circuit rejects the call and a fallback is available (the
        ``fallback`` argument, else the breaker's own), the fallback receives
        the same arguments and its result is returned.
        """
        fallback = fallback or self.fallback
        try:
            permit = await self.acquire()
        except CircuitBreakerOpenError:
            if fallback is None:
                raise
            self._metrics.record_circuit_fallback(self.name)
            logger.info("Serving fallback for open circuit", operation=self.name)
            return await fallback(*args, **kwargs)

        try:
            result = await func(*args, **kwargs)
        except self.excluded_exceptions:
            await self.release(permit)
            raise
        except Exception:
            await self.record_failure(permit)
            raise

        await self.record_success(permit)
        return result

    async def reset(self) -> None:
        """Force the circuit CLOSED (admin/test helper)."""
        await self._store.set(self._key, self._fresh().to_json())

    async def get_stats(self) -> dict[str, Any]:
        snapshot = await self.get_snapshot()
        return {
            "state": (await self.get_state()).value,
            "consecutive_failures": snapshot.consecutive_failures,
            "failure_threshold": self.failure_threshold,
            "reset_timeout_ms": self.reset_timeout_ms,
            "opened_at": snapshot.opened_at,
            "last_failure_at": snapshot.last_failure_at,
            "trial_in_flight": snapshot.trial_token is not None,
        }


# ============================================================================
# Manager & Factory
# ============================================================================


class CircuitBreakerManager:
    """
    Owns one breaker per operation name.

    Per-operation thresholds override the defaults:
        manager = CircuitBreakerManager(store, overrides={"enhance": (3, 30_000)})
    """

    def __init__(
        self,
        store: SharedStore,
        failure_threshold: int = 5,
        reset_timeout_ms: int = 60_000,
        overrides: dict[str, tuple[int, int]] | None = None,
        clock: Callable[[], float] = _wall_clock_ms,
        metrics: MetricsCollector | None = None,
    ):
        self._store = store
        self._defaults = (failure_threshold, reset_timeout_ms)
        self._overrides = dict(overrides or {})
        self._clock = clock
        self._metrics = metrics
        self._breakers: dict[str, DistributedCircuitBreaker] = {}

    def get_breaker(
        self, name: str, fallback: Callable[..., Awaitable[Any]] | None = None
    ) -> DistributedCircuitBreaker:
        if name not in self._breakers:
            threshold, timeout = self._overrides.get(name, self._defaults)
            self._breakers[name] = DistributedCircuitBreaker(
                name,
                self._store,
                failure_threshold=threshold,
                reset_timeout_ms=timeout,
                fallback=fallback,
                clock=self._clock,
                metrics=self._metrics,
            )
        return self._breakers[name]

    async def get_all_stats(self) -> dict[str, dict[str, Any]]:
        return {name: await breaker.get_stats() for name, breaker in self._breakers.items()}

    async def reset_all(self) -> None:
        for breaker in self._breakers.values():
            await breaker.reset()


# ============================================================================
# Resilient Call Wrapper
# ============================================================================

TRANSIENT_ERRORS: tuple[type[Exception], ...] = (
    QueueConnectionError,
    StoreConnectionError,
    ConnectionError,
    TimeoutError,
)


def create_retry_decorator(
    max_attempts: int = 3,
    base_delay: float = 0.1,
    max_delay: float = 2.0,
    retry_exceptions: tuple[type[Exception], ...] = TRANSIENT_ERRORS,
):
    std_logger = logging.getLogger(__name__)  # Tenacity needs std lib logger

    return retry(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential_jitter(initial=base_delay, max=max_delay),
        retry=retry_if_exception_type(retry_exceptions),
        before_sleep=before_sleep_log(std_logger, logging.WARNING),
        reraise=True,
    )


class ResilientCall:
    """
    Circuit Breaker Check -> Retry Logic -> Execution -> State Update.

    Transient errors are retried inside one permit, so the breaker only
    sees a failure once every retry is used up.
    """

    def __init__(
        self,
        breaker: DistributedCircuitBreaker,
        max_retries: int = 3,
        base_delay: float = 0.1,
        max_delay: float = 2.0,
    ):
        self.breaker = breaker
        self.retry_decorator = create_retry_decorator(
            max_attempts=max_retries, base_delay=base_delay, max_delay=max_delay
        )

    async def call(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        @self.retry_decorator
        async def execute_with_retry():
            return await func(*args, **kwargs)

        start_time = time.perf_counter()
        result = await self.breaker.call(execute_with_retry)
        logger.debug(
            "Resilient call succeeded",
            operation=self.breaker.name,
            duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
        )
        return result
