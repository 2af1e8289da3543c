"""
Fault classification for embedded services.

ServiceErrorHandler maps a ServiceError to the immediate Resolution the host
should apply (retry elsewhere, go offline, queue, or show the error) and keeps
a bounded history used for count-based health reporting.
"""

from __future__ import annotations

import logging
from collections import deque

from toolhost_resilience.config import ResilienceConfig
from toolhost_resilience.connectivity import ConnectivityMonitor
from toolhost_resilience.models import (
    Clock,
    ErrorHandlerHealth,
    Resolution,
    ResolutionAction,
    ServiceError,
    ServiceErrorType,
    now_ms,
)
from toolhost_resilience.recovery.retry import RetryLogic

logger = logging.getLogger("toolhost-resilience.errors")


class ServiceErrorHandler:
    """Classifies service faults and tracks a capped error history.

    Attributes:
        config: Lookup tables and limits
        connectivity: Source of the current online state
        retry_logic: Backoff calculator for queued retries
    """

    def __init__(
        self,
        config: ResilienceConfig | None = None,
        connectivity: ConnectivityMonitor | None = None,
        retry_logic: RetryLogic | None = None,
        clock: Clock | None = None,
    ):
        self.config = config or ResilienceConfig()
        self.connectivity = connectivity or ConnectivityMonitor()
        self.retry_logic = retry_logic or RetryLogic(
            base_delay_ms=self.config.base_delay_ms,
            max_delay_ms=self.config.max_delay_ms,
            backoff_multiplier=self.config.backoff_multiplier,
        )
        self._clock = clock or now_ms
        self._history: deque[ServiceError] = deque(maxlen=self.config.error_history_limit)

    def handle_service_error(self, error: ServiceError) -> Resolution:
        """Record ``error`` and return the recommended resolution."""
        self._log_error(error)
        return self.classify(error)

    def classify(self, error: ServiceError) -> Resolution:
        """Return the recommended resolution without recording ``error``."""
        handlers = {
            ServiceErrorType.NETWORK_ERROR: self._handle_network_error,
            ServiceErrorType.SERVICE_UNAVAILABLE: self._handle_service_unavailable,
            ServiceErrorType.RATE_LIMITED: self._handle_rate_limit,
            ServiceErrorType.TIMEOUT: self._handle_timeout,
            ServiceErrorType.VALIDATION_ERROR: self._handle_validation_error,
        }
        handler = handlers.get(error.type, self._handle_generic_error)
        return handler(error)

    # ------------------------------------------------------------------
    # Per-type classification
    # ------------------------------------------------------------------

    def _handle_network_error(self, error: ServiceError) -> Resolution:
        if not self.connectivity.is_online:
            if self.has_offline_capability(error.service_id):
                return Resolution(
                    action=ResolutionAction.SWITCH_TO_OFFLINE,
                    message="Working offline - some features may be limited",
                )
            return Resolution(
                action=ResolutionAction.QUEUE_FOR_RETRY,
                retry_after=self.config.offline_retry_after_ms,
                message="No internet connection. Will retry when connection is restored.",
            )

        alternatives = self.find_alternative_services(error.service_id)
        if alternatives:
            return Resolution(
                action=ResolutionAction.RETRY_WITH_ALTERNATIVE,
                alternatives=alternatives,
                message="Trying alternative service...",
            )

        delay = self._backoff_delay(error.service_id)
        return Resolution(
            action=ResolutionAction.QUEUE_FOR_RETRY,
            retry_after=delay,
            message=f"Network error. Retrying in {round(delay / 1000)} seconds...",
        )

    def _handle_service_unavailable(self, error: ServiceError) -> Resolution:
        alternatives = self.find_alternative_services(error.service_id)
        if alternatives:
            return Resolution(
                action=ResolutionAction.RETRY_WITH_ALTERNATIVE,
                alternatives=alternatives,
                message="Service unavailable. Trying alternative...",
            )

        if self.has_offline_capability(error.service_id):
            return Resolution(
                action=ResolutionAction.SWITCH_TO_OFFLINE,
                message="Service unavailable. Working offline with limited features.",
            )

        return Resolution(
            action=ResolutionAction.QUEUE_FOR_RETRY,
            retry_after=self.config.unavailable_retry_after_ms,
            message="Service temporarily unavailable. Will retry automatically.",
        )

    def _handle_rate_limit(self, error: ServiceError) -> Resolution:
        retry_after = error.retry_after
        if retry_after is None:
            retry_after = self.config.rate_limit_retry_after_ms
        wait_seconds = round(retry_after / 1000)

        alternatives = self.find_alternative_services(error.service_id)
        if alternatives:
            return Resolution(
                action=ResolutionAction.RETRY_WITH_ALTERNATIVE,
                alternatives=alternatives,
                retry_after=retry_after,
                message=f"Rate limit reached (retry in {wait_seconds} seconds). Trying alternative service...",
            )

        return Resolution(
            action=ResolutionAction.QUEUE_FOR_RETRY,
            retry_after=retry_after,
            message=f"Rate limit reached. Retrying in {wait_seconds} seconds...",
        )

    def _handle_timeout(self, error: ServiceError) -> Resolution:
        alternatives = self.find_alternative_services(error.service_id)
        if alternatives:
            return Resolution(
                action=ResolutionAction.RETRY_WITH_ALTERNATIVE,
                alternatives=alternatives,
                message="Service timeout. Trying faster alternative...",
            )

        delay = self._backoff_delay(error.service_id)
        return Resolution(
            action=ResolutionAction.QUEUE_FOR_RETRY,
            retry_after=delay,
            message=f"Request timeout. Retrying in {round(delay / 1000)} seconds...",
        )

    def _handle_validation_error(self, error: ServiceError) -> Resolution:
        return Resolution(
            action=ResolutionAction.SHOW_ERROR,
            retryable=False,
            message=f"Invalid data: {error.message}. Please check your input and try again.",
        )

    def _handle_generic_error(self, error: ServiceError) -> Resolution:
        if error.retryable:
            delay = self._backoff_delay(error.service_id)
            return Resolution(
                action=ResolutionAction.QUEUE_FOR_RETRY,
                retry_after=delay,
                message=f"An error occurred. Retrying in {round(delay / 1000)} seconds...",
            )

        return Resolution(
            action=ResolutionAction.SHOW_ERROR,
            retryable=False,
            message=error.message or "An unexpected error occurred. Please try again.",
        )

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def find_alternative_services(self, service_id: str) -> list[str]:
        return list(self.config.alternatives.get(service_id, []))

    def has_offline_capability(self, service_id: str) -> bool:
        return service_id in self.config.offline_capable_services

    def _backoff_delay(self, service_id: str) -> int:
        # Attempt index grows with the errors already seen in the window
        return self.retry_logic.get_next_delay(max(0, self._recent_error_count(service_id) - 1))

    # ------------------------------------------------------------------
    # History and health
    # ------------------------------------------------------------------

    def _log_error(self, error: ServiceError) -> None:
        # deque(maxlen) evicts the oldest entry once the cap is reached
        self._history.append(error)
        logger.error(f"Service error [{error.type.value}] {error.service_id}: {error.message}")

    def _recent_error_count(self, service_id: str) -> int:
        cutoff = self._clock() - self.config.health_window_ms
        return sum(
            1 for e in self._history
            if e.service_id == service_id and e.timestamp > cutoff
        )

    def get_error_history(self) -> list[ServiceError]:
        return list(self._history)

    def clear_error_history(self) -> None:
        self._history.clear()

    def get_service_health(self, service_id: str) -> ErrorHandlerHealth:
        """Classify a service from its error count in the observation window.

        0 errors is healthy, fewer than ``unavailable_threshold`` is degraded,
        anything above is unavailable. Entries older than the window are
        ignored but stay in the history.
        """
        recent = self._recent_error_count(service_id)
        if recent == 0:
            return ErrorHandlerHealth.HEALTHY
        if recent < self.config.unavailable_threshold:
            return ErrorHandlerHealth.DEGRADED
        return ErrorHandlerHealth.UNAVAILABLE


__all__ = ["ServiceErrorHandler"]
