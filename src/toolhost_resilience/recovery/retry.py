"""
Exponential backoff and circuit breaking for embedded service calls.

RetryLogic.get_next_delay is a pure function of the attempt number and the
configuration, so it can be shared by every component without coordination.
execute_with_retry and the circuit breaker wrap arbitrary awaitables for
callers that want the engine to drive the retries themselves.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, TypeVar

from toolhost_resilience.exceptions import ResilienceError

logger = logging.getLogger("toolhost-resilience.retry")

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]

_RETRYABLE_PATTERNS = [
    re.compile(r"network.*error", re.IGNORECASE),
    re.compile(r"timeout", re.IGNORECASE),
    re.compile(r"connection.*reset", re.IGNORECASE),
    re.compile(r"service.*unavailable", re.IGNORECASE),
    re.compile(r"rate.*limit", re.IGNORECASE),
    re.compile(r"too.*many.*requests", re.IGNORECASE),
    re.compile(r"temporary.*failure", re.IGNORECASE),
    re.compile(r"502|503|504"),
    re.compile(r"ECONNRESET|ENOTFOUND|ETIMEDOUT"),
]


@dataclass
class RetryConfig:
    """Backoff configuration.

    Attributes:
        max_attempts: Attempts made by execute_with_retry, including the first
        base_delay_ms: Delay before the first retry
        max_delay_ms: Ceiling applied to every computed delay
        backoff_multiplier: Growth factor per attempt
        timeout_ms: Total time budget for execute_with_retry
        retryable_errors: Exception class names always considered retryable
    """

    max_attempts: int = 3
    base_delay_ms: int = 1000
    max_delay_ms: int = 30_000
    backoff_multiplier: float = 2.0
    timeout_ms: int = 60_000
    retryable_errors: list[str] = field(default_factory=lambda: [
        "NetworkError",
        "TimeoutError",
        "ServiceUnavailable",
        "RateLimited",
        "TemporaryFailure",
        "ConnectError",
        "ConnectionError",
        "MessageTimeoutError",
    ])


@dataclass
class RetryOutcome(Generic[T]):
    """Result of execute_with_retry."""

    success: bool
    attempts: int
    total_time_ms: int
    result: T | None = None
    error: BaseException | None = None


class RetryLogic:
    """Exponential backoff calculator and retry driver.

    Attributes:
        config: Backoff configuration
    """

    def __init__(self, config: RetryConfig | None = None, sleep: Sleep | None = None, **overrides: Any):
        """
        Args:
            config: Base configuration (defaults to RetryConfig())
            sleep: Coroutine used to wait, in seconds (defaults to asyncio.sleep)
            **overrides: Individual RetryConfig fields to override
        """
        config = config or RetryConfig()
        if overrides:
            config = RetryConfig(**{**config.__dict__, **overrides})
        self.config = config
        self._sleep = sleep or asyncio.sleep
        self._circuit_breakers: dict[str, CircuitBreaker] = {}

    def get_next_delay(self, attempt: int) -> int:
        """Return the backoff delay in milliseconds for ``attempt``.

        ``base_delay_ms * multiplier ** attempt``, capped at ``max_delay_ms``.
        Negative attempts are treated as zero.
        """
        attempt = max(0, int(attempt))
        cfg = self.config
        # Avoid float overflow on absurd attempt numbers
        if attempt > 64:
            return cfg.max_delay_ms
        delay = cfg.base_delay_ms * (cfg.backoff_multiplier ** attempt)
        return int(min(delay, cfg.max_delay_ms))

    def is_retryable(self, error: BaseException) -> bool:
        """Decide whether ``error`` is worth retrying.

        Matches on the exception class name first, then on common transient
        failure patterns in the class name or message.
        """
        if isinstance(error, asyncio.TimeoutError):
            return True
        name = type(error).__name__
        if name in self.config.retryable_errors:
            return True
        message = str(error)
        return any(p.search(message) or p.search(name) for p in _RETRYABLE_PATTERNS)

    async def execute_with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        max_attempts: int | None = None,
    ) -> RetryOutcome[T]:
        """Run ``operation`` until it succeeds or the retry budget is spent.

        Non-retryable errors stop immediately. No delay follows the final
        attempt.

        Args:
            operation: Zero-argument coroutine factory
            max_attempts: Override for config.max_attempts

        Returns:
            RetryOutcome describing the last attempt
        """
        attempts_allowed = max_attempts or self.config.max_attempts
        start = time.monotonic()
        last_error: BaseException | None = None
        attempts = 0

        for attempt in range(1, attempts_allowed + 1):
            elapsed_ms = int((time.monotonic() - start) * 1000)
            if elapsed_ms > self.config.timeout_ms:
                last_error = ResilienceError(
                    "Total retry timeout exceeded",
                    details={"elapsed_ms": elapsed_ms, "timeout_ms": self.config.timeout_ms},
                )
                break

            attempts = attempt
            try:
                result = await operation()
                return RetryOutcome(
                    success=True,
                    attempts=attempt,
                    total_time_ms=int((time.monotonic() - start) * 1000),
                    result=result,
                )
            except Exception as e:
                last_error = e
                if not self.is_retryable(e):
                    logger.info(f"Not retrying non-retryable error: {e}")
                    break
                if attempt < attempts_allowed:
                    delay = self.get_next_delay(attempt - 1)
                    logger.info(f"Attempt {attempt} failed ({e}), retrying in {delay}ms")
                    await self._sleep(delay / 1000)

        return RetryOutcome(
            success=False,
            attempts=attempts,
            total_time_ms=int((time.monotonic() - start) * 1000),
            error=last_error,
        )

    async def execute_with_circuit_breaker(
        self,
        key: str,
        operation: Callable[[], Awaitable[T]],
        failure_threshold: int = 5,
        reset_timeout_ms: int = 60_000,
    ) -> T:
        """Run ``operation`` through the circuit breaker registered under ``key``."""
        breaker = self._circuit_breakers.get(key)
        if breaker is None:
            breaker = CircuitBreaker(failure_threshold=failure_threshold, reset_timeout_ms=reset_timeout_ms)
            self._circuit_breakers[key] = breaker
        return await breaker.execute(operation)

    def get_circuit_breaker(self, key: str) -> CircuitBreaker | None:
        return self._circuit_breakers.get(key)


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitOpenError(ResilienceError):
    """Raised when a call is attempted while the circuit is open."""

    def __init__(self, message: str = "Circuit breaker is OPEN - operation not allowed"):
        super().__init__(message)


class CircuitBreaker:
    """Stops calling a failing operation until a reset timeout has passed.

    After ``failure_threshold`` consecutive failures the circuit opens. Once
    ``reset_timeout_ms`` has elapsed the next call is let through in
    half-open state; ``successes_to_close`` successes close it again.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        reset_timeout_ms: int = 60_000,
        successes_to_close: int = 3,
        clock: Callable[[], float] | None = None,
    ):
        self.failure_threshold = failure_threshold
        self.reset_timeout_ms = reset_timeout_ms
        self.successes_to_close = successes_to_close
        self._clock = clock or time.monotonic
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time: float = 0.0

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        if self.state == CircuitState.OPEN:
            if (self._clock() - self.last_failure_time) * 1000 > self.reset_timeout_ms:
                logger.info("Circuit breaker half-open, allowing trial call")
                self.state = CircuitState.HALF_OPEN
                self.success_count = 0
            else:
                raise CircuitOpenError()

        try:
            result = await operation()
        except Exception:
            self._on_failure()
            raise
        self._on_success()
        return result

    def _on_success(self) -> None:
        self.failure_count = 0
        if self.state == CircuitState.HALF_OPEN:
            self.success_count += 1
            if self.success_count >= self.successes_to_close:
                logger.info("Circuit breaker closed")
                self.state = CircuitState.CLOSED

    def _on_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = self._clock()
        if self.state == CircuitState.HALF_OPEN or self.failure_count >= self.failure_threshold:
            if self.state != CircuitState.OPEN:
                logger.warning(f"Circuit breaker opened after {self.failure_count} failures")
            self.state = CircuitState.OPEN

    def get_stats(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "failure_count": self.failure_count,
            "success_count": self.success_count,
            "last_failure_time": self.last_failure_time,
        }


class RetryPresets:
    """Ready-made RetryLogic instances for common call types."""

    NETWORK_REQUEST = RetryLogic(max_attempts=3, base_delay_ms=1000, backoff_multiplier=2.0)
    API_CALL = RetryLogic(max_attempts=5, base_delay_ms=500, max_delay_ms=10_000, backoff_multiplier=1.5)
    FILE_OPERATION = RetryLogic(max_attempts=2, base_delay_ms=2000, backoff_multiplier=2.0)
    TOOL_COMMUNICATION = RetryLogic(max_attempts=4, base_delay_ms=800, max_delay_ms=8000, backoff_multiplier=2.0)


__all__ = [
    "RetryConfig",
    "RetryOutcome",
    "RetryLogic",
    "CircuitState",
    "CircuitOpenError",
    "CircuitBreaker",
    "RetryPresets",
]
