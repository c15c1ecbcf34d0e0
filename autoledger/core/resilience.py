"""
Fault-tolerance helpers shared by the repositories and services.

1. **Circuit breaker** around every database round trip.  After
   ``CB_FAILURE_THRESHOLD`` consecutive connection-level failures the
   breaker opens and calls fail immediately with :class:`CircuitBreakerError`
   (mapped to HTTP 503).  Once ``CB_RECOVERY_TIMEOUT`` has elapsed exactly one
   probe call is let through; its outcome closes or re-opens the circuit.

   States:
   - CLOSED    → normal operation, failures are counted.
   - OPEN      → every call fails fast.
   - HALF_OPEN → one probe in flight, other callers still fail fast.

2. **Retry with exponential backoff** for operations that may succeed when
   simply re-run: transient connection errors, and the optimistic-concurrency
   conflicts raised while recording approvals.

Domain errors (``AppException`` subclasses) never count as breaker failures
and are never retried.
"""

import asyncio
import functools
import logging
import random
import time
from enum import Enum
from typing import Any, Callable, Optional, Tuple, Type

from sqlalchemy.exc import InterfaceError, OperationalError

from autoledger.core.config import settings

logger = logging.getLogger(__name__)

# Connection-level failures.  Constraint violations and domain errors pass
# through the breaker untouched.
TRANSIENT_DB_ERRORS: Tuple[Type[Exception], ...] = (
    ConnectionError,
    OSError,
    TimeoutError,
    OperationalError,
    InterfaceError,
)


# ────────────────────────────────────────────────────────────────────────────
# Circuit Breaker
# ────────────────────────────────────────────────────────────────────────────


class CircuitState(str, Enum):
    """Possible states of a circuit breaker."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerError(Exception):
    """Raised when a call is rejected because the circuit is open."""

    def __init__(self, name: str, retry_after: float):
        self.name = name
        self.retry_after = retry_after
        super().__init__(
            f"Circuit breaker '{name}' is OPEN, failing fast. "
            f"Retry after {retry_after:.1f}s."
        )


class CircuitBreaker:
    """
    Async circuit breaker.

    Parameters
    ----------
    name : str
        Identifier used in logs and in the 503 response (e.g. ``"database"``).
    failure_threshold : int
        Consecutive failures that open the circuit.
    recovery_timeout : float
        Seconds spent OPEN before a probe is allowed.
    expected_exceptions : tuple
        Exception types that count as failures.  Anything else propagates
        without touching the breaker state.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
        expected_exceptions: Tuple[Type[Exception], ...] = (Exception,),
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.expected_exceptions = expected_exceptions

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: float = 0.0
        self._success_count = 0
        self._probe_in_flight = False

    @property
    def state(self) -> CircuitState:
        """Current circuit state, with automatic OPEN → HALF_OPEN transition."""
        if self._state == CircuitState.OPEN:
            elapsed = time.monotonic() - self._last_failure_time
            if elapsed >= self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
                logger.info(
                    "Circuit '%s' → HALF_OPEN after %.1fs", self.name, elapsed
                )
        return self._state

    def _retry_after(self) -> float:
        return max(
            self.recovery_timeout - (time.monotonic() - self._last_failure_time), 0
        )

    def _record_success(self) -> None:
        if self._state != CircuitState.CLOSED:
            logger.info(
                "Circuit '%s' → CLOSED (probe succeeded after %d failures)",
                self.name,
                self._failure_count,
            )
        self._failure_count = 0
        self._success_count += 1
        self._state = CircuitState.CLOSED

    def _record_failure(self) -> None:
        self._failure_count += 1
        self._last_failure_time = time.monotonic()

        if (
            self._state == CircuitState.HALF_OPEN
            or self._failure_count >= self.failure_threshold
        ):
            self._state = CircuitState.OPEN
            logger.error(
                "Circuit '%s' → OPEN (failure #%d, threshold %d); "
                "fast-failing for %.1fs",
                self.name,
                self._failure_count,
                self.failure_threshold,
                self.recovery_timeout,
            )
        else:
            logger.warning(
                "Circuit '%s' failure #%d/%d",
                self.name,
                self._failure_count,
                self.failure_threshold,
            )

    async def call(self, func: Callable, *args: Any, **kwargs: Any) -> Any:
        """
        Await ``func(*args, **kwargs)`` through the breaker.

        Raises :class:`CircuitBreakerError` while OPEN, and while HALF_OPEN
        for every caller except the single probe.
        """
        state = self.state
        if state == CircuitState.OPEN:
            raise CircuitBreakerError(self.name, self._retry_after())

        is_probe = state == CircuitState.HALF_OPEN
        if is_probe:
            if self._probe_in_flight:
                raise CircuitBreakerError(self.name, self.recovery_timeout)
            self._probe_in_flight = True

        try:
            result = await func(*args, **kwargs)
        except self.expected_exceptions:
            self._record_failure()
            raise
        finally:
            if is_probe:
                self._probe_in_flight = False
        self._record_success()
        return result

    def get_status(self) -> dict:
        """Return a dict suitable for the health-check endpoint."""
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self._failure_count,
            "failure_threshold": self.failure_threshold,
            "success_count": self._success_count,
            "recovery_timeout_s": self.recovery_timeout,
        }


# ── Global circuit breaker instance for database operations ──
db_circuit_breaker = CircuitBreaker(
    name="database",
    failure_threshold=settings.CB_FAILURE_THRESHOLD,
    recovery_timeout=settings.CB_RECOVERY_TIMEOUT,
    expected_exceptions=TRANSIENT_DB_ERRORS,
)


# ────────────────────────────────────────────────────────────────────────────
# Retry with Exponential Backoff
# ────────────────────────────────────────────────────────────────────────────


def retry_with_backoff(
    max_retries: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 10.0,
    jitter: bool = True,
    retryable_exceptions: Tuple[Type[Exception], ...] = TRANSIENT_DB_ERRORS,
) -> Callable:
    """
    Decorator: re-run an async function with exponential backoff.

    Parameters
    ----------
    max_retries : int
        Retries after the initial call (0 = call once).
    base_delay : float
        Delay before the first retry; doubles on every further attempt.
    max_delay : float
        Upper bound for a single delay.
    jitter : bool
        Add 0–50% random jitter so competing callers do not retry in lockstep.
    retryable_exceptions : tuple
        Only these exception types trigger a retry.

    Example::

        @retry_with_backoff(max_retries=3, retryable_exceptions=(StaleCommitmentError,))
        async def _record(self, ...):
            ...
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            last_exception: Optional[Exception] = None
            delay = base_delay

            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)
                except retryable_exceptions as exc:
                    last_exception = exc
                    if attempt == max_retries:
                        logger.error(
                            "All %d retries exhausted for %s: %s: %s",
                            max_retries,
                            func.__qualname__,
                            type(exc).__name__,
                            exc,
                        )
                        break
                    actual_delay = min(delay, max_delay)
                    if jitter:
                        actual_delay += random.uniform(0, actual_delay * 0.5)
                    logger.warning(
                        "Retry %d/%d for %s after %.2fs: %s: %s",
                        attempt + 1,
                        max_retries,
                        func.__qualname__,
                        actual_delay,
                        type(exc).__name__,
                        exc,
                    )
                    await asyncio.sleep(actual_delay)
                    delay *= 2

            raise last_exception  # type: ignore[misc]

        return wrapper

    return decorator
