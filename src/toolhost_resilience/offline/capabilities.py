"""
Offline mode: local workspace copies and replay of queued operations.

OfflineCapabilities keeps a local copy of every saved workspace, records
mutating operations in the OperationQueue and drains that queue through
per-type executors whenever the connectivity monitor reports ``online``.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable

from toolhost_resilience.connectivity import ConnectivityMonitor
from toolhost_resilience.exceptions import InstanceDestroyedError, OfflineSyncError
from toolhost_resilience.models import Clock, Workspace, now_ms
from toolhost_resilience.offline.queue import (
    OperationQueue,
    OperationStatus,
    OperationType,
    PendingOperation,
)

logger = logging.getLogger("toolhost-resilience.offline")

OperationExecutor = Callable[[Any], Awaitable[Any]]
EventListener = Callable[[dict[str, Any]], None]


@dataclass
class SyncStatus:
    is_online: bool
    pending_operations: int
    last_sync: int
    sync_in_progress: bool

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class OfflineCapabilities:
    """Offline storage and queued replay.

    Events emitted through ``on``/``off`` listeners: ``operation-queued``,
    ``sync-started``, ``sync-completed``, ``network-status-changed`` and
    ``workspace-saved-offline``.

    Attributes:
        connectivity: Source of online/offline transitions
        queue: Persistent FIFO of pending operations
    """

    def __init__(
        self,
        connectivity: ConnectivityMonitor | None = None,
        data_dir: Path | None = None,
        executors: dict[OperationType | str, OperationExecutor] | None = None,
        queue: OperationQueue | None = None,
        clock: Clock | None = None,
    ):
        self.connectivity = connectivity or ConnectivityMonitor()
        self._clock = clock or now_ms
        self.queue = queue if queue is not None else OperationQueue(data_dir, clock=self._clock)
        self._executors: dict[OperationType, OperationExecutor] = {}
        for op_type, executor in (executors or {}).items():
            self.register_executor(op_type, executor)

        self._workspace_dir = Path(data_dir) / "offline" / "workspaces" if data_dir is not None else None
        self._workspaces: dict[str, dict[str, Any]] = {}
        self._load_workspaces()

        self._listeners: dict[str, list[EventListener]] = {}
        self._last_sync = 0
        self._sync_in_progress = False
        self._sync_task: asyncio.Task | None = None
        self._destroyed = False
        self._unsubscribe = self.connectivity.subscribe(self._on_connectivity_change)

    # ------------------------------------------------------------------
    # Workspaces
    # ------------------------------------------------------------------

    def _load_workspaces(self) -> None:
        if self._workspace_dir is None or not self._workspace_dir.exists():
            return
        for path in sorted(self._workspace_dir.glob("*.json")):
            try:
                with open(path, "r", encoding="utf-8") as f:
                    data = json.load(f)
            except (json.JSONDecodeError, OSError) as e:
                logger.warning(f"Skipping unreadable offline workspace {path}: {e}")
                continue
            if isinstance(data, dict) and data.get("id"):
                self._workspaces[data["id"]] = data
        if self._workspaces:
            logger.info(f"Loaded {len(self._workspaces)} offline workspaces")

    async def save_workspace_offline(self, workspace: Workspace | dict[str, Any]) -> PendingOperation:
        """Store ``workspace`` locally and queue a ``workspace-save``.

        When the host is online the queue is flushed immediately.
        """
        self._check_destroyed()
        data = workspace.model_dump(mode="json") if isinstance(workspace, Workspace) else dict(workspace)
        workspace_id = data.get("id")
        if not workspace_id:
            raise ValueError("Workspace ID is required to save offline")

        self._workspaces[workspace_id] = data
        if self._workspace_dir is not None:
            self._workspace_dir.mkdir(parents=True, exist_ok=True)
            with open(self._workspace_dir / f"{workspace_id}.json", "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)

        operation = self.queue_operation(OperationType.WORKSPACE_SAVE, data)
        self._emit("workspace-saved-offline", {"workspace_id": workspace_id})

        if self.connectivity.is_online:
            await self.sync_pending_operations()
        return operation

    def get_workspace_offline(self, workspace_id: str) -> dict[str, Any] | None:
        return self._workspaces.get(workspace_id)

    def get_all_workspaces_offline(self) -> list[dict[str, Any]]:
        return list(self._workspaces.values())

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def register_executor(self, op_type: OperationType | str, executor: OperationExecutor) -> None:
        self._executors[OperationType(op_type)] = executor

    def queue_operation(
        self,
        op_type: OperationType | str,
        payload: Any,
        max_retries: int = 3,
    ) -> PendingOperation:
        self._check_destroyed()
        operation = self.queue.push(op_type, payload, max_retries=max_retries)
        self._emit("operation-queued", {"operation_id": operation.id, "type": operation.type.value})
        return operation

    async def sync_pending_operations(self) -> tuple[int, int]:
        """Replay pending operations front to back.

        A failing operation is put back at the front (or marked failed when
        its retry budget is spent) and the drain stops there. An operation
        whose type has no registered executor stays pending and stops the
        drain without spending its retry budget.

        Returns:
            (synced_count, failed_count) for this drain
        """
        self._check_destroyed()
        if self._sync_in_progress or not self.connectivity.is_online:
            return 0, 0

        self._sync_in_progress = True
        self._emit("sync-started", {"pending_operations": self.queue.get_pending_count()})
        synced = failed = 0
        try:
            while self.connectivity.is_online:
                operation = self.queue.pop()
                if operation is None:
                    break
                if operation.type not in self._executors:
                    self.queue.release(operation.id)
                    logger.warning(
                        f"No executor registered for {operation.type.value}; "
                        f"leaving operation {operation.id} pending"
                    )
                    break
                try:
                    await self._execute(operation)
                except asyncio.CancelledError:
                    self.queue.release(operation.id)
                    raise
                except Exception as e:
                    logger.warning(f"Replay of operation {operation.id} failed: {e}")
                    updated = self.queue.requeue_front(operation.id)
                    if updated.status == OperationStatus.FAILED:
                        failed += 1
                    break
                self.queue.complete(operation.id)
                synced += 1
        finally:
            self._sync_in_progress = False
            self._last_sync = self._clock()

        logger.info(f"Sync completed: {synced} synced, {failed} failed")
        self._emit("sync-completed", {"synced_count": synced, "failed_count": failed})
        return synced, failed

    async def _execute(self, operation: PendingOperation) -> None:
        executor = self._executors.get(operation.type)
        if executor is None:
            raise OfflineSyncError(
                f"No executor registered for {operation.type.value}",
                operation_id=operation.id,
            )
        await executor(operation.payload)

    def get_pending_operations(self) -> list[PendingOperation]:
        return self.queue.get_pending()

    def get_failed_operations(self) -> list[PendingOperation]:
        return self.queue.get_by_status(OperationStatus.FAILED)

    async def retry_failed_operations(self) -> int:
        reset = self.queue.reset_failed()
        if reset and self.connectivity.is_online:
            await self.sync_pending_operations()
        return len(reset)

    def clear_completed_operations(self) -> int:
        return self.queue.clear_completed()

    def get_storage_usage(self) -> dict[str, int]:
        return {
            "workspaces": len(self._workspaces),
            "operations": len(self.queue),
        }

    def get_sync_status(self) -> SyncStatus:
        return SyncStatus(
            is_online=self.connectivity.is_online,
            pending_operations=self.queue.get_pending_count(),
            last_sync=self._last_sync,
            sync_in_progress=self._sync_in_progress,
        )

    # ------------------------------------------------------------------
    # Connectivity and events
    # ------------------------------------------------------------------

    def _on_connectivity_change(self, event: str) -> None:
        is_online = event == "online"
        self._emit("network-status-changed", {"is_online": is_online})
        if not is_online:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("Back online outside an event loop, drain deferred to next sync")
            return
        self._sync_task = loop.create_task(self.sync_pending_operations())

    async def wait_for_sync(self) -> None:
        """Wait for the drain started by the last ``online`` transition.

        Raises:
            InstanceDestroyedError: If the instance is destroyed while waiting
        """
        task = self._sync_task
        if task is None:
            return
        try:
            await task
        except asyncio.CancelledError:
            if self._destroyed:
                raise InstanceDestroyedError()
            raise

    def on(self, event: str, listener: EventListener) -> None:
        self._listeners.setdefault(event, []).append(listener)

    def off(self, event: str, listener: EventListener) -> None:
        listeners = self._listeners.get(event, [])
        if listener in listeners:
            listeners.remove(listener)

    def _emit(self, event: str, data: dict[str, Any]) -> None:
        for listener in list(self._listeners.get(event, [])):
            try:
                listener(data)
            except Exception as e:
                logger.error(f"Error in event listener for {event}: {e}")

    def _check_destroyed(self) -> None:
        if self._destroyed:
            raise InstanceDestroyedError()

    def destroy(self) -> None:
        """Detach from connectivity, cancel any running drain and drop listeners."""
        self._destroyed = True
        self._unsubscribe()
        if self._sync_task is not None and not self._sync_task.done():
            self._sync_task.cancel()
        self._listeners.clear()
        logger.debug("Offline capabilities destroyed")


__all__ = ["OfflineCapabilities", "SyncStatus", "OperationExecutor"]
