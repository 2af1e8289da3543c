"""
Toolhost Resilience MCP Server
Exposes the recovery engine (fault reporting, health, checkpoints and the
offline queue) as FastMCP tools.
"""

import json
import logging
import os
from pathlib import Path
from typing import Annotated, Any

from dotenv import load_dotenv
from fastmcp import FastMCP
from pydantic import Field

from .config import load_resilience_config
from .connectivity import ConnectivityMonitor
from .exceptions import ResilienceError
from .integrity import CheckpointStore, DataIntegrityManager
from .models import ServiceError, ServiceErrorType, Workspace
from .notifications import NotificationCenter
from .offline import OfflineCapabilities, OperationType
from .recovery import AutomaticRecovery, ServiceErrorHandler
from .storage import WorkspaceStore

logger = logging.getLogger("toolhost-resilience")

logging.basicConfig(
    level=logging.DEBUG,
    )

if not load_dotenv():
    logger.warning("❌ .env file invalid or not found! Using the current directory for data.")

data_path = Path(os.getenv("TOOLHOST_STORAGE_DIR", "")).resolve()
logger.debug(f"📂 Data path: {data_path}")

config = load_resilience_config(data_path / "resilience.yaml")
storage = WorkspaceStore(data_dir=data_path)
connectivity = ConnectivityMonitor()
notifications = NotificationCenter()


async def _sync_workspace(payload: Any) -> None:
    storage.save_workspace(Workspace.model_validate(payload))


offline = OfflineCapabilities(
    connectivity=connectivity,
    data_dir=data_path,
    executors={OperationType.WORKSPACE_SAVE: _sync_workspace},
)
integrity = DataIntegrityManager(
    get_workspace=storage.get_workspace,
    store=CheckpointStore(data_path),
    config=config,
)
error_handler = ServiceErrorHandler(config=config, connectivity=connectivity)
recovery = AutomaticRecovery(
    error_handler=error_handler,
    integrity=integrity,
    notifier=notifications,
    offline=offline,
    connectivity=connectivity,
    config=config,
)
logger.debug("✅ Recovery engine initialized")

mcp = FastMCP(
    name="toolhost-resilience"
)


def _dump(data: Any) -> str:
    return json.dumps(data, indent=2, default=str)


# ----------------------------------------------------------------------
# Tools
# ----------------------------------------------------------------------

# Fault reporting and health
@mcp.tool
async def report_service_error(
    service_id: Annotated[str, Field(description="Embedded service that failed, e.g. 'photopea'")],
    error_type: Annotated[ServiceErrorType, Field(description="Fault classification")],
    message: Annotated[str, Field(description="What went wrong")] = "",
    retryable: Annotated[bool, Field(description="Whether retrying the same call may succeed")] = True,
    context: Annotated[dict[str, Any] | None, Field(description="""
        Optional fault context. Recognised keys: has_data_loss, workspace_id,
        has_cached_data, cached_data, retry_after (milliseconds).
        """)] = None,
) -> str:
    """Report a service fault and run automatic recovery on it."""
    error = ServiceError(
        type=error_type,
        service_id=service_id,
        message=message,
        retryable=retryable,
        context=context or {},
    )
    result = await recovery.handle_error(error)
    icon = "✅" if result.success else "❌"
    return f"{icon} {result.message}\n{_dump(result.model_dump(mode='json'))}"


@mcp.tool
def get_service_health() -> str:
    """Get the health of every service known to the recovery engine."""
    health = {sid: state.value for sid, state in recovery.get_service_health().items()}
    if not health:
        return "All services healthy. No faults recorded."
    return _dump(health)


@mcp.tool
def get_recovery_history(
    service_id: Annotated[str | None, Field(description="Limit history to this service")] = None,
) -> str:
    """List the faults handled by the recovery engine, oldest first."""
    history = recovery.get_recovery_history(service_id)
    if not history:
        return "No recovery history."
    return _dump([e.model_dump(mode="json") for e in history])


@mcp.tool
def clear_recovery_history(
    service_id: Annotated[str | None, Field(description="Service to clear; all services when omitted")] = None,
) -> str:
    """Clear recovery history and attempt counters."""
    recovery.clear_recovery_history(service_id)
    return f"🧹 Cleared recovery history for {service_id or 'all services'}"


@mcp.tool
def set_recovery_preferences(
    auto_retry: Annotated[bool | None, Field(description="Schedule automatic retries")] = None,
    max_retries: Annotated[int | None, Field(description="Consecutive faults tolerated per service", ge=0)] = None,
    use_alternative_services: Annotated[bool | None, Field(description="Allow alternative services")] = None,
    enable_offline_mode: Annotated[bool | None, Field(description="Allow offline mode")] = None,
    show_recovery_notifications: Annotated[bool | None, Field(description="Surface recovery outcomes")] = None,
) -> str:
    """Update recovery preferences. Omitted values keep their current setting."""
    preferences = recovery.set_preferences(
        auto_retry=auto_retry,
        max_retries=max_retries,
        use_alternative_services=use_alternative_services,
        enable_offline_mode=enable_offline_mode,
        show_recovery_notifications=show_recovery_notifications,
    )
    return f"⚙️ Recovery preferences updated\n{_dump(preferences.model_dump())}"


# Workspaces and checkpoints
@mcp.tool
def create_workspace(
    name: Annotated[str, Field(description="Workspace name")],
    type: Annotated[str, Field(description="Workspace type, e.g. 'creative' or 'developer'")] = "general",
) -> str:
    """Create an empty workspace."""
    workspace = storage.create_workspace(name=name, type=type)
    return f"🗂️ Created workspace '{workspace.name}' (ID: {workspace.id})"


@mcp.tool
async def create_checkpoint(
    workspace_id: Annotated[str, Field(description="Workspace to snapshot")],
    description: Annotated[str, Field(description="Why the checkpoint is taken")] = "Auto checkpoint",
) -> str:
    """Create a checksummed checkpoint of a workspace."""
    try:
        checkpoint = await integrity.create_checkpoint(workspace_id, description)
    except ResilienceError as e:
        return f"❌ {e.message}"
    return f"💾 Created checkpoint {checkpoint.id} ({checkpoint.metadata.file_count} files)"


@mcp.tool
def list_checkpoints(
    workspace_id: Annotated[str, Field(description="Workspace whose checkpoints to list")],
) -> str:
    """List the checkpoints of a workspace, oldest first."""
    checkpoints = integrity.get_checkpoints(workspace_id)
    if not checkpoints:
        return f"No checkpoints for workspace {workspace_id}."
    return _dump([
        {"id": c.id, "timestamp": c.timestamp, **c.metadata.model_dump()}
        for c in checkpoints
    ])


@mcp.tool
async def restore_checkpoint(
    checkpoint_id: Annotated[str, Field(description="Checkpoint to restore")],
) -> str:
    """Verify a checkpoint and write its workspace back to storage."""
    try:
        data = await integrity.restore_checkpoint(checkpoint_id)
    except ResilienceError as e:
        return f"❌ {e.message}"
    workspace = storage.save_workspace(Workspace.model_validate(data))
    return f"♻️ Restored workspace '{workspace.name}' from checkpoint {checkpoint_id}"


# Offline mode
@mcp.tool
async def save_workspace(
    workspace_id: Annotated[str, Field(description="Workspace to save")],
) -> str:
    """Save a workspace through the offline queue (flushed immediately when online)."""
    workspace = storage.get(workspace_id)
    if workspace is None:
        return f"❌ Workspace {workspace_id} not found"
    operation = await offline.save_workspace_offline(workspace)
    status = offline.get_sync_status()
    return f"📥 Queued {operation.type.value} {operation.id} ({status.pending_operations} pending)"


@mcp.tool
def get_sync_status() -> str:
    """Get connectivity and offline queue status."""
    return _dump(offline.get_sync_status().to_dict())


@mcp.tool
async def set_online(
    online: Annotated[bool, Field(description="Whether the host currently has connectivity")],
) -> str:
    """Report a connectivity change. Going online replays the offline queue."""
    changed = connectivity.set_online(online)
    if changed and online:
        await offline.wait_for_sync()
    state = "online" if online else "offline"
    return f"🌐 Host is {state}\n{_dump(offline.get_sync_status().to_dict())}"


logger.debug("✅ All tools successfully registered. Toolhost resilience server running!")

def main() -> None:
    """Main entry point for the Toolhost Resilience MCP Server."""
    mcp.run()

if __name__ == "__main__":
    main()
