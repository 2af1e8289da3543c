"""
Data models for the toolhost resilience engine.

Faults reported by embedded tools are normalized into ServiceError, the
error handler answers with a Resolution, and recovery strategies produce a
RecoveryResult. Workspace and FileReference describe the state protected by
checkpoints and replayed by the offline queue.
"""

from __future__ import annotations

import time
from datetime import datetime
from enum import Enum
from typing import Any, Callable

from pydantic import BaseModel, ConfigDict, Field

Clock = Callable[[], int]


def now_ms() -> int:
    """Return the current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class ServiceErrorType(str, Enum):
    """Classification of a reported fault."""

    NETWORK_ERROR = "NETWORK_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    RATE_LIMITED = "RATE_LIMITED"
    TIMEOUT = "TIMEOUT"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    UNKNOWN = "UNKNOWN"


class ServiceError(BaseModel):
    """A fault reported by any collaborator, immutable once created.

    The context map is opaque to the engine except for a few well-known keys
    read by the built-in strategies: ``hasDataLoss``/``has_data_loss``,
    ``workspaceId``/``workspace_id``, ``hasCachedData``/``has_cached_data``,
    ``cachedData``/``cached_data`` and ``retryAfter``/``retry_after``.
    """

    model_config = ConfigDict(frozen=True)

    type: ServiceErrorType = Field(description="Fault classification")
    service_id: str = Field(description="Embedded service that failed")
    message: str = Field(default="", description="Human-readable fault description")
    timestamp: int = Field(default_factory=now_ms, description="Epoch milliseconds when the fault occurred")
    retryable: bool = Field(default=True, description="Whether retrying the same call may succeed")
    code: str | None = Field(default=None, description="Optional transport or HTTP code")
    context: dict[str, Any] = Field(default_factory=dict, description="Opaque fault context")

    def context_value(self, *keys: str, default: Any = None) -> Any:
        """Return the first context value present under any of ``keys``."""
        for key in keys:
            if key in self.context and self.context[key] is not None:
                return self.context[key]
        return default

    @property
    def has_data_loss(self) -> bool:
        return self.context_value("hasDataLoss", "has_data_loss", default=False) is True

    @property
    def has_cached_data(self) -> bool:
        return self.context_value("hasCachedData", "has_cached_data", default=False) is True

    @property
    def cached_data(self) -> Any:
        return self.context_value("cachedData", "cached_data")

    @property
    def workspace_id(self) -> str | None:
        return self.context_value("workspaceId", "workspace_id")

    @property
    def retry_after(self) -> int | None:
        value = self.context_value("retryAfter", "retry_after")
        return int(value) if value is not None else None


class ResolutionAction(str, Enum):
    """Immediate action recommended by the error handler."""

    QUEUE_FOR_RETRY = "QUEUE_FOR_RETRY"
    RETRY_WITH_ALTERNATIVE = "RETRY_WITH_ALTERNATIVE"
    SWITCH_TO_OFFLINE = "SWITCH_TO_OFFLINE"
    SHOW_ERROR = "SHOW_ERROR"


class Resolution(BaseModel):
    """Output of fault classification, computed before any strategy runs."""

    action: ResolutionAction
    message: str
    retry_after: int | None = Field(default=None, description="Milliseconds to wait before retrying")
    alternatives: list[str] = Field(default_factory=list, description="Alternative service ids in preference order")
    retryable: bool = True


class RecoveryResult(BaseModel):
    """Outcome of a recovery attempt."""

    success: bool
    message: str
    fallback_used: bool | None = None
    data: Any = None
    retry_after: int | None = None
    strategy_id: str | None = None


class ServiceHealthState(str, Enum):
    """Derived health of a service as tracked by the recovery orchestrator."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    RECOVERING = "recovering"
    FAILED = "failed"


class ErrorHandlerHealth(str, Enum):
    """Count-based health reported by the error handler."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNAVAILABLE = "unavailable"


class FileReference(BaseModel):
    """A file attached to a workspace."""

    id: str
    name: str
    type: str = Field(description="MIME type, e.g. image/png")
    size: int = Field(default=0, description="Size in bytes")
    url: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class Workspace(BaseModel):
    """A user workspace combining files and the embedded tools working on them."""

    id: str
    name: str
    type: str = "general"
    files: list[FileReference] = Field(default_factory=list)
    tools: list[str] = Field(default_factory=list)
    settings: dict[str, Any] = Field(default_factory=dict)
    created: datetime = Field(default_factory=datetime.now)
    last_modified: datetime = Field(default_factory=datetime.now)


__all__ = [
    "Clock",
    "now_ms",
    "ServiceErrorType",
    "ServiceError",
    "ResolutionAction",
    "Resolution",
    "RecoveryResult",
    "ServiceHealthState",
    "ErrorHandlerHealth",
    "FileReference",
    "Workspace",
]
