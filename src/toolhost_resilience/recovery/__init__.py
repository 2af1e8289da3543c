"""
Recovery subsystem for embedded toolhost services.

This package provides:
- Fault classification into immediate resolutions (ServiceErrorHandler)
- Exponential backoff, retry driving and circuit breaking (RetryLogic)
- Pluggable, prioritized recovery strategies
- The AutomaticRecovery orchestrator with per-service health tracking
"""

from __future__ import annotations

from .automatic import AutomaticRecovery, ScheduledRetry
from .error_handler import ServiceErrorHandler
from .retry import CircuitBreaker, CircuitOpenError, CircuitState, RetryConfig, RetryLogic, RetryOutcome, RetryPresets
from .strategies import (
    AlternativeServiceStrategy,
    CachedDataStrategy,
    CallbackStrategy,
    CheckpointRestoreStrategy,
    GracefulDegradationStrategy,
    NetworkRestoreStrategy,
    OfflineFallbackStrategy,
    RecoveryStrategy,
    RetryWithBackoffStrategy,
)

__all__ = [
    "AutomaticRecovery",
    "ScheduledRetry",
    "ServiceErrorHandler",
    "CircuitBreaker",
    "CircuitOpenError",
    "CircuitState",
    "RetryConfig",
    "RetryLogic",
    "RetryOutcome",
    "RetryPresets",
    "RecoveryStrategy",
    "CallbackStrategy",
    "NetworkRestoreStrategy",
    "OfflineFallbackStrategy",
    "CheckpointRestoreStrategy",
    "CachedDataStrategy",
    "AlternativeServiceStrategy",
    "RetryWithBackoffStrategy",
    "GracefulDegradationStrategy",
]
