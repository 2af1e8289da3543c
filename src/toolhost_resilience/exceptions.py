"""
Exception hierarchy for the toolhost resilience engine.

Every error raised by the engine derives from ResilienceError so callers can
catch the whole family at once, while recovery strategies can match on the
specific subclasses (checksum failures, destroyed instances, message
timeouts) to decide whether to fall through to the next strategy.
"""

from __future__ import annotations

from typing import Any


class ResilienceError(Exception):
    """Base exception for all resilience engine errors.

    Attributes:
        message: Human-readable error message
        details: Optional dictionary of additional error context
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        """Initialize the error.

        Args:
            message: Human-readable error message
            details: Optional dictionary of additional error context
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}


class RecoveryError(ResilienceError):
    """A recovery operation itself failed.

    Raised by strategies when their recovery attempt cannot complete; the
    orchestrator treats it as "this strategy declined" and moves on.
    """
    pass


class InstanceDestroyedError(ResilienceError):
    """The owning session object was destroyed.

    Outstanding waits (scheduled retries, bridge requests, queue drains) are
    rejected with this error instead of being left unresolved.
    """

    def __init__(self, message: str = "Instance destroyed", details: dict[str, Any] | None = None):
        super().__init__(message, details)


class CheckpointError(ResilienceError):
    """A checkpoint could not be created or located."""
    pass


class CheckpointNotFoundError(CheckpointError):
    """The requested checkpoint does not exist.

    Attributes:
        checkpoint_id: ID of the missing checkpoint
    """

    def __init__(self, checkpoint_id: str, details: dict[str, Any] | None = None):
        super().__init__(f"Checkpoint {checkpoint_id} not found", details)
        self.checkpoint_id = checkpoint_id


class DataIntegrityError(ResilienceError):
    """Stored data failed its integrity check.

    Raised when a checkpoint's recomputed checksum differs from the checksum
    recorded at creation time. The checkpoint is never applied.

    Attributes:
        expected_checksum: Checksum recorded in the checkpoint metadata
        actual_checksum: Checksum recomputed from the stored payload
    """

    def __init__(
        self,
        message: str,
        expected_checksum: str | None = None,
        actual_checksum: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        self.expected_checksum = expected_checksum
        self.actual_checksum = actual_checksum


class OfflineSyncError(ResilienceError):
    """Replaying a queued operation failed.

    Attributes:
        operation_id: ID of the operation that could not be replayed
    """

    def __init__(self, message: str, operation_id: str | None = None, details: dict[str, Any] | None = None):
        super().__init__(message, details)
        self.operation_id = operation_id


class MessageTimeoutError(ResilienceError):
    """A bridged request to an embedded tool did not answer in time.

    Uses a custom name to avoid shadowing Python's builtin TimeoutError.

    Attributes:
        instance_id: Embedded tool instance the request was sent to
        timeout_seconds: The timeout threshold that was exceeded
    """

    def __init__(
        self,
        message: str = "Message timeout",
        instance_id: str | None = None,
        timeout_seconds: float | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        self.instance_id = instance_id
        self.timeout_seconds = timeout_seconds


__all__ = [
    "ResilienceError",
    "RecoveryError",
    "InstanceDestroyedError",
    "CheckpointError",
    "CheckpointNotFoundError",
    "DataIntegrityError",
    "OfflineSyncError",
    "MessageTimeoutError",
]
