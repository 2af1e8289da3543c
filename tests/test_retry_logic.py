"""
Tests for RetryLogic, CircuitBreaker and RetryPresets.

Tests cover:
- Exponential backoff and the delay ceiling
- Retryable error detection
- execute_with_retry success, exhaustion and non-retryable short-circuit
- Circuit breaker state transitions
"""

from unittest.mock import AsyncMock

import pytest

from toolhost_resilience.exceptions import MessageTimeoutError
from toolhost_resilience.recovery.retry import (
    CircuitBreaker,
    CircuitOpenError,
    CircuitState,
    RetryConfig,
    RetryLogic,
    RetryPresets,
)


class TestGetNextDelay:
    """Tests for the backoff calculation."""

    def test_doubles_from_base(self) -> None:
        logic = RetryLogic(base_delay_ms=1000, max_delay_ms=30_000)
        assert [logic.get_next_delay(a) for a in range(5)] == [1000, 2000, 4000, 8000, 16000]

    def test_capped_at_max(self) -> None:
        logic = RetryLogic(base_delay_ms=1000, max_delay_ms=30_000)
        assert logic.get_next_delay(5) == 30_000
        assert logic.get_next_delay(500) == 30_000

    def test_negative_attempt_treated_as_zero(self) -> None:
        logic = RetryLogic(base_delay_ms=250)
        assert logic.get_next_delay(-3) == 250

    def test_custom_multiplier(self) -> None:
        logic = RetryLogic(base_delay_ms=500, backoff_multiplier=1.5, max_delay_ms=10_000)
        assert logic.get_next_delay(2) == 1125

    def test_overrides_keep_config_defaults(self) -> None:
        logic = RetryLogic(RetryConfig(max_attempts=7), base_delay_ms=10)
        assert logic.config.max_attempts == 7
        assert logic.config.base_delay_ms == 10


class TestIsRetryable:

    @pytest.mark.parametrize("error", [
        ConnectionError("connection reset by peer"),
        RuntimeError("503 Service Unavailable"),
        RuntimeError("Request timeout"),
        MessageTimeoutError(),
        TimeoutError(),
    ])
    def test_transient_errors(self, error: Exception) -> None:
        assert RetryLogic().is_retryable(error)

    def test_plain_value_error_not_retryable(self) -> None:
        assert not RetryLogic().is_retryable(ValueError("bad input"))


class TestExecuteWithRetry:

    @pytest.mark.anyio
    async def test_success_after_transient_failures(self) -> None:
        sleep = AsyncMock()
        logic = RetryLogic(max_attempts=3, base_delay_ms=100, sleep=sleep)
        operation = AsyncMock(side_effect=[ConnectionError("network error"), "ok"])

        outcome = await logic.execute_with_retry(operation)

        assert outcome.success is True
        assert outcome.result == "ok"
        assert outcome.attempts == 2
        sleep.assert_awaited_once_with(0.1)

    @pytest.mark.anyio
    async def test_exhausts_attempts_without_trailing_sleep(self) -> None:
        sleep = AsyncMock()
        logic = RetryLogic(max_attempts=3, base_delay_ms=100, sleep=sleep)
        operation = AsyncMock(side_effect=ConnectionError("network error"))

        outcome = await logic.execute_with_retry(operation)

        assert outcome.success is False
        assert outcome.attempts == 3
        assert isinstance(outcome.error, ConnectionError)
        assert operation.await_count == 3
        assert [c.args[0] for c in sleep.await_args_list] == [0.1, 0.2]

    @pytest.mark.anyio
    async def test_non_retryable_stops_immediately(self) -> None:
        sleep = AsyncMock()
        logic = RetryLogic(max_attempts=5, sleep=sleep)
        operation = AsyncMock(side_effect=ValueError("bad input"))

        outcome = await logic.execute_with_retry(operation)

        assert outcome.success is False
        assert outcome.attempts == 1
        sleep.assert_not_awaited()


class TestCircuitBreaker:

    @pytest.mark.anyio
    async def test_opens_after_threshold(self) -> None:
        breaker = CircuitBreaker(failure_threshold=2, reset_timeout_ms=1000, clock=lambda: 0.0)
        failing = AsyncMock(side_effect=RuntimeError("boom"))

        for _ in range(2):
            with pytest.raises(RuntimeError):
                await breaker.execute(failing)

        assert breaker.state == CircuitState.OPEN
        with pytest.raises(CircuitOpenError):
            await breaker.execute(AsyncMock(return_value="ok"))

    @pytest.mark.anyio
    async def test_half_open_then_closes(self) -> None:
        now = [0.0]
        breaker = CircuitBreaker(failure_threshold=1, reset_timeout_ms=1000, successes_to_close=2, clock=lambda: now[0])
        with pytest.raises(RuntimeError):
            await breaker.execute(AsyncMock(side_effect=RuntimeError("boom")))
        assert breaker.state == CircuitState.OPEN

        now[0] = 2.0
        assert await breaker.execute(AsyncMock(return_value=1)) == 1
        assert breaker.state == CircuitState.HALF_OPEN
        await breaker.execute(AsyncMock(return_value=2))
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.anyio
    async def test_failure_in_half_open_reopens(self) -> None:
        now = [0.0]
        breaker = CircuitBreaker(failure_threshold=1, reset_timeout_ms=1000, clock=lambda: now[0])
        with pytest.raises(RuntimeError):
            await breaker.execute(AsyncMock(side_effect=RuntimeError("boom")))
        now[0] = 5.0
        with pytest.raises(RuntimeError):
            await breaker.execute(AsyncMock(side_effect=RuntimeError("again")))
        assert breaker.state == CircuitState.OPEN

    @pytest.mark.anyio
    async def test_breakers_are_keyed(self) -> None:
        logic = RetryLogic()
        assert await logic.execute_with_circuit_breaker("photopea", AsyncMock(return_value="ok")) == "ok"
        assert logic.get_circuit_breaker("photopea") is not None
        assert logic.get_circuit_breaker("pixlr") is None
        assert logic.get_circuit_breaker("photopea").get_stats()["state"] == "closed"


def test_presets() -> None:
    assert RetryPresets.API_CALL.config.max_attempts == 5
    assert RetryPresets.TOOL_COMMUNICATION.get_next_delay(10) == 8000
