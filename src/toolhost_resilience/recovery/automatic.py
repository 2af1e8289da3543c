"""
Automatic recovery orchestrator.

AutomaticRecovery receives every normalized ServiceError, enforces the
per-service retry ceiling, runs the registered strategies in descending
priority and tracks per-service history, attempt counters and scheduled
retries from which the service health is derived.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Optional, Union

from toolhost_resilience.config import RecoveryPreferences, ResilienceConfig
from toolhost_resilience.connectivity import ConnectivityMonitor
from toolhost_resilience.exceptions import InstanceDestroyedError, RecoveryError
from toolhost_resilience.integrity.manager import DataIntegrityManager
from toolhost_resilience.models import (
    Clock,
    RecoveryResult,
    ServiceError,
    ServiceHealthState,
    now_ms,
)
from toolhost_resilience.notifications import NotificationCenter, Notifier
from toolhost_resilience.offline.capabilities import OfflineCapabilities
from toolhost_resilience.recovery.error_handler import ServiceErrorHandler
from toolhost_resilience.recovery.retry import RetryLogic, Sleep
from toolhost_resilience.recovery.strategies import RecoveryStrategy, builtin_strategies

logger = logging.getLogger("toolhost-resilience.recovery")

RetryHandler = Callable[[ServiceError], Union[Any, Awaitable[Any]]]


class ScheduledRetry:
    """A retry waiting for its backoff delay to elapse.

    Attributes:
        service_id: Service the retry belongs to
        retry_after: Delay in milliseconds before the retry runs
        scheduled_at: Epoch milliseconds when it was scheduled
    """

    def __init__(self, service_id: str, retry_after: int, scheduled_at: int, task: asyncio.Task):
        self.service_id = service_id
        self.retry_after = retry_after
        self.scheduled_at = scheduled_at
        self._task = task
        self._destroyed = False

    @property
    def task(self) -> asyncio.Task:
        return self._task

    @property
    def done(self) -> bool:
        return self._task.done()

    def cancel(self, destroyed: bool = False) -> None:
        self._destroyed = self._destroyed or destroyed
        self._task.cancel()

    async def wait(self) -> Any:
        """Wait for the retry to run and return the retry handler's result.

        Raises:
            InstanceDestroyedError: If the owning engine was destroyed first
        """
        try:
            return await asyncio.shield(self._task)
        except asyncio.CancelledError:
            if self._task.cancelled() and self._destroyed:
                raise InstanceDestroyedError() from None
            raise


class AutomaticRecovery:
    """Runs recovery strategies against reported faults.

    Collaborators are injected; any that are omitted get a default instance
    sharing the same connectivity monitor. The default OfflineCapabilities has
    no executors, so queued operations stay pending until the host registers
    one per operation type or injects its own instance.

    Attributes:
        error_handler: Fault classification and alternatives lookup
        integrity: Checkpoint access for data-loss recovery
        notifier: User-facing notifications
        offline: Offline queue and local storage
        connectivity: Current online state
        retry_logic: Backoff calculator for scheduled retries
        preferences: Current recovery preferences
    """

    def __init__(
        self,
        error_handler: ServiceErrorHandler | None = None,
        integrity: DataIntegrityManager | None = None,
        notifier: Notifier | None = None,
        offline: OfflineCapabilities | None = None,
        connectivity: ConnectivityMonitor | None = None,
        retry_logic: RetryLogic | None = None,
        preferences: RecoveryPreferences | None = None,
        config: ResilienceConfig | None = None,
        clock: Clock | None = None,
        sleep: Sleep | None = None,
        retry_handler: RetryHandler | None = None,
    ):
        self.config = config or (error_handler.config if error_handler else ResilienceConfig())
        self._clock = clock or now_ms
        self.connectivity = (
            connectivity
            or (error_handler.connectivity if error_handler else None)
            or (offline.connectivity if offline else None)
            or ConnectivityMonitor()
        )
        self.retry_logic = retry_logic or RetryLogic(
            base_delay_ms=self.config.base_delay_ms,
            max_delay_ms=self.config.max_delay_ms,
            backoff_multiplier=self.config.backoff_multiplier,
        )
        self.error_handler = error_handler or ServiceErrorHandler(
            config=self.config,
            connectivity=self.connectivity,
            retry_logic=self.retry_logic,
            clock=self._clock,
        )
        self.integrity = integrity or DataIntegrityManager(config=self.config, clock=self._clock)
        self.notifier: Notifier = notifier or NotificationCenter(clock=self._clock)
        self._owns_offline = offline is None
        self.offline = offline or OfflineCapabilities(connectivity=self.connectivity, clock=self._clock)
        self.preferences = preferences or RecoveryPreferences()
        self.retry_handler = retry_handler
        self._sleep = sleep or asyncio.sleep

        self._strategies: dict[str, RecoveryStrategy] = {}
        for strategy in builtin_strategies(self):
            self.add_recovery_strategy(strategy)

        self._history: dict[str, list[ServiceError]] = {}
        self._handled: list[ServiceError] = []
        self._attempts: dict[str, int] = {}
        self._retries: dict[str, ScheduledRetry] = {}
        self._destroyed = False

    # ------------------------------------------------------------------
    # Error handling
    # ------------------------------------------------------------------

    async def handle_error(self, error: ServiceError) -> RecoveryResult:
        """Recover from ``error`` using the first strategy that succeeds.

        Args:
            error: The normalized fault

        Returns:
            The winning strategy's result, or a ``success=False`` result when
            the retry ceiling is exceeded or no strategy recovers

        Raises:
            InstanceDestroyedError: If the engine has been destroyed
        """
        if self._destroyed:
            raise InstanceDestroyedError()

        service_id = error.service_id
        # Only consecutive faults inside the health window count toward the ceiling
        if not self._recent_errors(service_id):
            self._attempts[service_id] = 0
        # History and counter change together, before the first await
        self._history.setdefault(service_id, []).append(error)
        self._handled.append(error)
        attempts = self._attempts.get(service_id, 0) + 1
        self._attempts[service_id] = attempts
        self.error_handler.handle_service_error(error)

        if attempts > self.preferences.max_retries:
            return self._handle_retry_ceiling(error, attempts)

        for strategy in self._snapshot():
            try:
                if not strategy.can_recover(error):
                    continue
            except Exception as e:
                logger.warning(f"Strategy {strategy.id} failed its applicability check: {e}")
                continue

            try:
                result = await strategy.recover(error)
            except RecoveryError as e:
                logger.info(f"Strategy {strategy.id} declined {service_id}: {e.message}")
                continue
            except Exception as e:
                logger.warning(f"Recovery strategy {strategy.name} failed: {e}")
                continue

            if result.success:
                if result.strategy_id is None:
                    result = result.model_copy(update={"strategy_id": strategy.id})
                self._on_recovery_success(error, strategy, result)
                return result
            logger.info(f"Strategy {strategy.id} declined {service_id}: {result.message}")

        return self._handle_unrecoverable(error)

    def _snapshot(self) -> list[RecoveryStrategy]:
        return sorted(self._strategies.values(), key=lambda s: s.priority, reverse=True)

    def _on_recovery_success(self, error: ServiceError, strategy: RecoveryStrategy, result: RecoveryResult) -> None:
        logger.info(f"Recovered {error.service_id} using strategy: {strategy.name}")
        if self.preferences.show_recovery_notifications and result.fallback_used:
            self.notifier.info(
                "Service Recovered",
                f"{strategy.name} was used to recover from the error.",
                duration=3000,
            )

    def _handle_retry_ceiling(self, error: ServiceError, attempts: int) -> RecoveryResult:
        logger.error(f"Giving up on {error.service_id} after {attempts} attempts")
        if self.preferences.show_recovery_notifications:
            self.notifier.error(
                "Recovery Failed",
                f"Unable to recover from {error.service_id} error after {attempts} attempts.",
                persistent=True,
                actions=[{
                    "id": "reset",
                    "label": "Reset Service",
                    "action": lambda: self.reset_service(error.service_id),
                }],
            )
        return RecoveryResult(
            success=False,
            message=f"Unable to recover {error.service_id} after {attempts} attempts",
        )

    def _handle_unrecoverable(self, error: ServiceError) -> RecoveryResult:
        logger.error(f"No recovery strategy succeeded for {error.service_id}: {error.message}")
        if self.preferences.show_recovery_notifications:
            detail = f"{error.message}. " if error.message else ""
            self.notifier.error(
                "Service Error",
                f"{detail}Please try again later.",
                persistent=True,
                actions=[{
                    "id": "retry",
                    "label": "Retry",
                    "action": lambda: self.retry_operation(error),
                }],
            )
        return RecoveryResult(success=False, message="Unable to recover from this error")

    # ------------------------------------------------------------------
    # Scheduled retries
    # ------------------------------------------------------------------

    def schedule_retry(self, error: ServiceError, attempt: int) -> ScheduledRetry:
        """Schedule ``retry_handler(error)`` after the backoff delay for ``attempt``.

        A service has at most one scheduled retry; while it is pending further
        requests return the existing one.
        """
        existing = self._retries.get(error.service_id)
        if existing is not None and not existing.done:
            return existing

        delay = self.retry_logic.get_next_delay(attempt)
        task = asyncio.get_running_loop().create_task(self._run_retry(error, delay))
        scheduled = ScheduledRetry(error.service_id, delay, self._clock(), task)
        self._retries[error.service_id] = scheduled
        task.add_done_callback(lambda _t: self._forget_retry(scheduled))
        logger.info(f"Retry for {error.service_id} scheduled in {delay}ms")
        return scheduled

    async def _run_retry(self, error: ServiceError, delay_ms: int) -> Any:
        await self._sleep(delay_ms / 1000)
        if self.retry_handler is None:
            return None
        try:
            result = self.retry_handler(error)
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            logger.warning(f"Scheduled retry for {error.service_id} failed: {e}")
            return False
        if result is not False:
            self.record_success(error.service_id)
        return result

    def _forget_retry(self, scheduled: ScheduledRetry) -> None:
        if self._retries.get(scheduled.service_id) is scheduled:
            del self._retries[scheduled.service_id]

    def get_scheduled_retry(self, service_id: str) -> Optional[ScheduledRetry]:
        return self._retries.get(service_id)

    # ------------------------------------------------------------------
    # Service state
    # ------------------------------------------------------------------

    def get_attempt_count(self, service_id: str) -> int:
        return self._attempts.get(service_id, 0)

    def record_success(self, service_id: str) -> None:
        """Reset the consecutive-failure counter after a successful call."""
        if self._attempts.get(service_id):
            logger.info(f"Service {service_id} succeeded, resetting attempt counter")
        self._attempts[service_id] = 0

    def reset_service(self, service_id: str) -> None:
        """Forget all recovery state of ``service_id``."""
        self.clear_recovery_history(service_id)
        scheduled = self._retries.pop(service_id, None)
        if scheduled is not None:
            scheduled.cancel()
        if self.preferences.show_recovery_notifications:
            self.notifier.info(
                "Service Reset",
                f"{service_id} has been reset. You can try using it again.",
            )

    async def retry_operation(self, error: ServiceError) -> RecoveryResult:
        """Reset the counter of the failed service and handle ``error`` again."""
        self._attempts[error.service_id] = 0
        return await self.handle_error(error)

    def get_service_health(self) -> dict[str, ServiceHealthState]:
        """Derive the health of every service with recovery state."""
        health: dict[str, ServiceHealthState] = {}
        for service_id in set(self._history) | set(self._attempts):
            recent = self._recent_errors(service_id)
            scheduled = self._retries.get(service_id)
            if not recent:
                health[service_id] = ServiceHealthState.HEALTHY
            elif self._attempts.get(service_id, 0) > self.preferences.max_retries:
                health[service_id] = ServiceHealthState.FAILED
            elif scheduled is not None and not scheduled.done:
                health[service_id] = ServiceHealthState.RECOVERING
            else:
                health[service_id] = ServiceHealthState.DEGRADED
        return health

    def _recent_errors(self, service_id: str) -> list[ServiceError]:
        cutoff = self._clock() - self.config.health_window_ms
        return [e for e in self._history.get(service_id, []) if e.timestamp > cutoff]

    def get_recovery_history(self, service_id: str | None = None) -> list[ServiceError]:
        """Handled errors in the order handled, for one service or all of them."""
        if service_id is None:
            return list(self._handled)
        return list(self._history.get(service_id, []))

    def clear_recovery_history(self, service_id: str | None = None) -> None:
        if service_id is None:
            self._history.clear()
            self._handled.clear()
            self._attempts.clear()
            return
        self._history.pop(service_id, None)
        self._attempts.pop(service_id, None)
        self._handled = [e for e in self._handled if e.service_id != service_id]

    # ------------------------------------------------------------------
    # Strategies and preferences
    # ------------------------------------------------------------------

    def add_recovery_strategy(self, strategy: RecoveryStrategy) -> None:
        """Register ``strategy``, replacing any strategy with the same id."""
        self._strategies[strategy.id] = strategy

    def remove_recovery_strategy(self, strategy_id: str) -> bool:
        return self._strategies.pop(strategy_id, None) is not None

    def get_recovery_strategies(self) -> list[RecoveryStrategy]:
        """Registered strategies in the order they are tried."""
        return self._snapshot()

    def set_preferences(self, **updates: Any) -> RecoveryPreferences:
        self.preferences = self.preferences.merged(**updates)
        return self.get_preferences()

    def get_preferences(self) -> RecoveryPreferences:
        return self.preferences.model_copy()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def destroy(self) -> None:
        """Cancel scheduled retries; waiters get InstanceDestroyedError."""
        if self._destroyed:
            return
        self._destroyed = True
        pending = list(self._retries.values())
        for scheduled in pending:
            scheduled.cancel(destroyed=True)
        if pending:
            await asyncio.gather(*(s.task for s in pending), return_exceptions=True)
        self._retries.clear()
        if self._owns_offline:
            self.offline.destroy()
        logger.info("Automatic recovery destroyed")


__all__ = ["AutomaticRecovery", "ScheduledRetry", "RetryHandler"]
