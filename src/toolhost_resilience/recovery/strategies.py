"""
Recovery strategies for AutomaticRecovery.

Each strategy answers two questions about a ServiceError: can it help
(``can_recover``) and what happens when it tries (``recover``). The engine
tries them in descending priority; the first success wins and a failure
falls through to the next applicable strategy.
"""

from __future__ import annotations

import inspect
import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Awaitable, Callable, Union

from toolhost_resilience.exceptions import RecoveryError, ResilienceError
from toolhost_resilience.models import (
    RecoveryResult,
    ResolutionAction,
    ServiceError,
    ServiceErrorType,
)

if TYPE_CHECKING:
    from toolhost_resilience.recovery.automatic import AutomaticRecovery

logger = logging.getLogger("toolhost-resilience.recovery.strategies")


class RecoveryStrategy(ABC):
    """A pluggable unit of recovery logic.

    Attributes:
        id: Unique registry key
        name: Display name used in notifications
        priority: Higher values are tried first
    """

    id: str = ""
    name: str = ""
    priority: int = 0

    @abstractmethod
    def can_recover(self, error: ServiceError) -> bool:
        """Return True when this strategy applies to ``error``."""

    @abstractmethod
    async def recover(self, error: ServiceError) -> RecoveryResult:
        """Attempt recovery.

        Returning ``success=False`` or raising (``RecoveryError`` for expected
        failures) falls through to the next strategy.
        """

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.id!r}, priority={self.priority})"


class CallbackStrategy(RecoveryStrategy):
    """Strategy assembled from two callables, for ad-hoc registration.

    ``recover`` may be a plain function or a coroutine function.
    """

    def __init__(
        self,
        id: str,
        name: str,
        priority: int,
        can_recover: Callable[[ServiceError], bool],
        recover: Callable[[ServiceError], Union[RecoveryResult, Awaitable[RecoveryResult]]],
    ):
        self.id = id
        self.name = name
        self.priority = priority
        self._can_recover = can_recover
        self._recover = recover

    def can_recover(self, error: ServiceError) -> bool:
        return bool(self._can_recover(error))

    async def recover(self, error: ServiceError) -> RecoveryResult:
        result = self._recover(error)
        if inspect.isawaitable(result):
            result = await result
        return result


class EngineStrategy(RecoveryStrategy):
    """Base for built-ins that read the engine's collaborators and preferences."""

    def __init__(self, engine: AutomaticRecovery):
        self.engine = engine


class NetworkRestoreStrategy(EngineStrategy):
    id = "network-restore"
    name = "Network Recovery"
    priority = 100

    def can_recover(self, error: ServiceError) -> bool:
        return error.type == ServiceErrorType.NETWORK_ERROR and self.engine.connectivity.is_online

    async def recover(self, error: ServiceError) -> RecoveryResult:
        return RecoveryResult(success=True, message="Network connection restored")


class OfflineFallbackStrategy(EngineStrategy):
    id = "offline-fallback"
    name = "Offline Mode"
    priority = 95

    def can_recover(self, error: ServiceError) -> bool:
        return (
            error.type == ServiceErrorType.NETWORK_ERROR
            and not self.engine.connectivity.is_online
            and self.engine.preferences.enable_offline_mode
        )

    async def recover(self, error: ServiceError) -> RecoveryResult:
        return RecoveryResult(
            success=True,
            message="Switched to offline mode",
            fallback_used=True,
            data={
                "offline_mode": True,
                "service_id": error.service_id,
                "offline_capable": self.engine.error_handler.has_offline_capability(error.service_id),
            },
        )


class CheckpointRestoreStrategy(EngineStrategy):
    id = "checkpoint-restore"
    name = "Data Recovery"
    priority = 90

    def can_recover(self, error: ServiceError) -> bool:
        if not error.has_data_loss or not error.workspace_id:
            return False
        return self.engine.integrity.get_latest_checkpoint(error.workspace_id) is not None

    async def recover(self, error: ServiceError) -> RecoveryResult:
        checkpoint = self.engine.integrity.get_latest_checkpoint(error.workspace_id)
        if checkpoint is None:
            raise RecoveryError("No recovery data available", {"workspace_id": error.workspace_id})
        try:
            restored = await self.engine.integrity.restore_checkpoint(checkpoint.id)
        except ResilienceError as e:
            logger.warning(f"Checkpoint restore for {error.workspace_id} failed: {e.message}")
            raise RecoveryError(
                f"Data recovery failed: {e.message}",
                {"workspace_id": error.workspace_id, "checkpoint_id": checkpoint.id},
            ) from e
        return RecoveryResult(success=True, message="Data restored from checkpoint", data=restored)


class CachedDataStrategy(EngineStrategy):
    id = "cached-data"
    name = "Cache Recovery"
    priority = 85

    def can_recover(self, error: ServiceError) -> bool:
        return error.has_cached_data

    async def recover(self, error: ServiceError) -> RecoveryResult:
        if error.cached_data is None:
            raise RecoveryError("No cached data available", {"service_id": error.service_id})
        return RecoveryResult(
            success=True,
            message="Using cached data",
            fallback_used=True,
            data=error.cached_data,
        )


class AlternativeServiceStrategy(EngineStrategy):
    id = "alternative-service"
    name = "Alternative Service"
    priority = 80

    def can_recover(self, error: ServiceError) -> bool:
        if not self.engine.preferences.use_alternative_services:
            return False
        resolution = self.engine.error_handler.classify(error)
        return resolution.action == ResolutionAction.RETRY_WITH_ALTERNATIVE and bool(resolution.alternatives)

    async def recover(self, error: ServiceError) -> RecoveryResult:
        resolution = self.engine.error_handler.classify(error)
        if not resolution.alternatives:
            return RecoveryResult(success=False, message="No alternative services available")
        alternative = resolution.alternatives[0]
        logger.info(f"Switching {error.service_id} to alternative service {alternative}")
        return RecoveryResult(
            success=True,
            message="Switched to alternative service",
            fallback_used=True,
            data={"alternative_service": alternative, "alternatives": resolution.alternatives},
            retry_after=resolution.retry_after,
        )


class RetryWithBackoffStrategy(EngineStrategy):
    id = "retry-with-backoff"
    name = "Automatic Retry"
    priority = 70

    def can_recover(self, error: ServiceError) -> bool:
        return self.engine.preferences.auto_retry and error.retryable

    async def recover(self, error: ServiceError) -> RecoveryResult:
        attempt = self.engine.get_attempt_count(error.service_id)
        scheduled = self.engine.schedule_retry(error, max(0, attempt - 1))
        return RecoveryResult(
            success=True,
            message="Retrying operation",
            retry_after=scheduled.retry_after,
        )


class GracefulDegradationStrategy(EngineStrategy):
    """Catch-all: keep the host usable without the failed service."""

    id = "graceful-degradation"
    name = "Graceful Degradation"
    priority = 10

    def can_recover(self, error: ServiceError) -> bool:
        return True

    async def recover(self, error: ServiceError) -> RecoveryResult:
        return RecoveryResult(
            success=True,
            message="Switched to basic functionality mode",
            fallback_used=True,
            data={"degraded_mode": True},
        )


BUILTIN_STRATEGIES: tuple[type[EngineStrategy], ...] = (
    NetworkRestoreStrategy,
    OfflineFallbackStrategy,
    CheckpointRestoreStrategy,
    CachedDataStrategy,
    AlternativeServiceStrategy,
    RetryWithBackoffStrategy,
    GracefulDegradationStrategy,
)


def builtin_strategies(engine: AutomaticRecovery) -> list[RecoveryStrategy]:
    return [cls(engine) for cls in BUILTIN_STRATEGIES]


__all__ = [
    "RecoveryStrategy",
    "CallbackStrategy",
    "EngineStrategy",
    "NetworkRestoreStrategy",
    "OfflineFallbackStrategy",
    "CheckpointRestoreStrategy",
    "CachedDataStrategy",
    "AlternativeServiceStrategy",
    "RetryWithBackoffStrategy",
    "GracefulDegradationStrategy",
    "BUILTIN_STRATEGIES",
    "builtin_strategies",
]
