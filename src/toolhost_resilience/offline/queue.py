"""
Pending operation queue with JSONL persistence.

Mutating calls made while the host cannot reach a service are recorded here
and replayed in FIFO order once connectivity returns. The JSONL file is
append-only; every state change writes a new line and the latest line per
operation id wins on restore.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field, ValidationError
from shortuuid import random as shortuuid_random

from toolhost_resilience.models import Clock, now_ms

logger = logging.getLogger("toolhost-resilience.offline.queue")


class OperationType(str, Enum):
    WORKSPACE_SAVE = "workspace-save"
    FILE_UPLOAD = "file-upload"
    FILE_PROCESS = "file-process"
    TOOL_OPERATION = "tool-operation"


class OperationStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class PendingOperation(BaseModel):
    """A mutating call waiting to be replayed."""

    id: str = Field(description="Operation identifier")
    type: OperationType = Field(description="Kind of operation, selects the executor")
    payload: Any = Field(default=None, description="JSON-serializable operation data")
    queued_at: int = Field(description="Epoch milliseconds when the operation was queued")
    retry_count: int = Field(default=0, ge=0, description="Failed replay attempts so far")
    max_retries: int = Field(default=3, ge=1, description="Failed replays after which the operation is marked failed")
    status: OperationStatus = Field(default=OperationStatus.PENDING)


class OperationQueue:
    """
    FIFO queue of PendingOperation with JSONL persistence.

    Operations move through pending -> processing -> completed, or back to
    pending at the front of the queue when a replay fails, and to failed once
    their retry budget is spent.

    Attributes:
        _operations: Ordered dict of operation_id -> PendingOperation
        _pending: Deque of operation ids waiting to be replayed
        _lock: Threading lock for safe concurrent access
        _jsonl_path: Path to the JSONL persistence file, or None when in memory
    """

    def __init__(self, data_dir: Optional[Path] = None, clock: Clock | None = None) -> None:
        """
        Initialize the OperationQueue.

        Args:
            data_dir: Data directory; JSONL stored at
                      {data_dir}/offline/operations.jsonl. None keeps the
                      queue in memory only.
            clock: Millisecond clock used for queued_at
        """
        self._operations: dict[str, PendingOperation] = {}
        self._pending: deque[str] = deque()
        self._lock = threading.Lock()
        self._clock = clock or now_ms

        self._jsonl_path: Optional[Path] = None
        if data_dir is not None:
            offline_dir = Path(data_dir) / "offline"
            offline_dir.mkdir(parents=True, exist_ok=True)
            self._jsonl_path = offline_dir / "operations.jsonl"
            self._restore_from_jsonl()

    def _restore_from_jsonl(self) -> None:
        """Rebuild in-memory state from the JSONL file.

        The same operation id may appear many times; only its latest state
        is kept. Operations interrupted mid-replay go back to pending.
        """
        if self._jsonl_path is None or not self._jsonl_path.exists():
            return

        try:
            with open(self._jsonl_path, "r", encoding="utf-8") as f:
                for line in f:
                    line = line.strip()
                    if not line:
                        continue
                    operation = PendingOperation.model_validate_json(line)
                    self._operations[operation.id] = operation
        except (ValidationError, ValueError) as e:
            logger.warning(f"Error restoring operations from JSONL: {e}")

        for operation_id, operation in self._operations.items():
            if operation.status in (OperationStatus.PENDING, OperationStatus.PROCESSING):
                operation.status = OperationStatus.PENDING
                self._pending.append(operation_id)

        if self._operations:
            logger.info(f"Restored {len(self._operations)} operations, {len(self._pending)} pending")

    def _append_jsonl(self, operation: PendingOperation) -> None:
        if self._jsonl_path is None:
            return
        try:
            with open(self._jsonl_path, "a", encoding="utf-8") as f:
                f.write(operation.model_dump_json() + "\n")
        except OSError as e:
            logger.error(f"Failed to write operation to JSONL: {e}")

    def push(self, type: OperationType | str, payload: Any, max_retries: int = 3) -> PendingOperation:
        """Append a new operation to the back of the queue."""
        with self._lock:
            operation = PendingOperation(
                id=f"op_{shortuuid_random(length=12)}",
                type=OperationType(type),
                payload=payload,
                queued_at=self._clock(),
                max_retries=max_retries,
            )
            self._operations[operation.id] = operation
            self._pending.append(operation.id)
            self._append_jsonl(operation)

        logger.info(f"Operation queued: {operation.id} ({operation.type.value})")
        return operation.model_copy()

    def pop(self) -> Optional[PendingOperation]:
        """Take the front pending operation and mark it processing."""
        with self._lock:
            while self._pending:
                operation_id = self._pending.popleft()
                operation = self._operations.get(operation_id)
                if operation and operation.status == OperationStatus.PENDING:
                    operation.status = OperationStatus.PROCESSING
                    self._append_jsonl(operation)
                    return operation.model_copy()
            return None

    def complete(self, operation_id: str) -> None:
        """Mark a replayed operation as completed.

        Raises:
            KeyError: If operation_id not found
        """
        with self._lock:
            operation = self._get(operation_id)
            operation.status = OperationStatus.COMPLETED
            self._append_jsonl(operation)
        logger.info(f"Operation completed: {operation_id}")

    def requeue_front(self, operation_id: str) -> PendingOperation:
        """Record a failed replay.

        The retry count is incremented; the operation goes back to the front
        of the queue, or is marked failed once ``max_retries`` is reached.

        Raises:
            KeyError: If operation_id not found
        """
        with self._lock:
            operation = self._get(operation_id)
            operation.retry_count += 1
            if operation.retry_count >= operation.max_retries:
                operation.status = OperationStatus.FAILED
                if operation_id in self._pending:
                    self._pending.remove(operation_id)
                logger.warning(f"Operation {operation_id} failed after {operation.retry_count} attempts")
            else:
                operation.status = OperationStatus.PENDING
                if operation_id not in self._pending:
                    self._pending.appendleft(operation_id)
                logger.info(f"Operation {operation_id} re-queued at front (attempt {operation.retry_count})")
            self._append_jsonl(operation)
            return operation.model_copy()

    def release(self, operation_id: str) -> None:
        """Return an interrupted operation to the front without counting a failure."""
        with self._lock:
            operation = self._get(operation_id)
            if operation.status == OperationStatus.PROCESSING:
                operation.status = OperationStatus.PENDING
                self._pending.appendleft(operation_id)
                self._append_jsonl(operation)

    def reset_failed(self) -> list[PendingOperation]:
        """Move every failed operation back to the end of the queue with a fresh retry budget."""
        with self._lock:
            reset = []
            for operation in self._operations.values():
                if operation.status == OperationStatus.FAILED:
                    operation.status = OperationStatus.PENDING
                    operation.retry_count = 0
                    self._pending.append(operation.id)
                    self._append_jsonl(operation)
                    reset.append(operation.model_copy())
            return reset

    def clear_completed(self) -> int:
        """Forget completed operations and compact the JSONL file."""
        with self._lock:
            completed = [
                op_id for op_id, op in self._operations.items()
                if op.status == OperationStatus.COMPLETED
            ]
            for op_id in completed:
                del self._operations[op_id]
            self._rewrite_jsonl()
        return len(completed)

    def clear(self) -> None:
        with self._lock:
            self._operations.clear()
            self._pending.clear()
            self._rewrite_jsonl()

    def _rewrite_jsonl(self) -> None:
        if self._jsonl_path is None:
            return
        try:
            with open(self._jsonl_path, "w", encoding="utf-8") as f:
                for operation in self._operations.values():
                    f.write(operation.model_dump_json() + "\n")
        except OSError as e:
            logger.error(f"Failed to compact operations JSONL: {e}")

    def _get(self, operation_id: str) -> PendingOperation:
        if operation_id not in self._operations:
            raise KeyError(f"Operation {operation_id} not found")
        return self._operations[operation_id]

    def get(self, operation_id: str) -> Optional[PendingOperation]:
        with self._lock:
            operation = self._operations.get(operation_id)
            return operation.model_copy() if operation else None

    def get_pending(self) -> list[PendingOperation]:
        """Pending operations in replay order."""
        with self._lock:
            return [self._operations[op_id].model_copy() for op_id in self._pending]

    def get_by_status(self, status: OperationStatus) -> list[PendingOperation]:
        with self._lock:
            return [op.model_copy() for op in self._operations.values() if op.status == status]

    def get_pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def __len__(self) -> int:
        return len(self._operations)


__all__ = [
    "OperationType",
    "OperationStatus",
    "PendingOperation",
    "OperationQueue",
]
