"""
Workspace storage for the toolhost resilience server.
Handles persistence of workspaces to JSON files and feeds the checkpoint
manager's workspace fetch.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path

import shortuuid
from pydantic import ValidationError

from .models import FileReference, Workspace

logger = logging.getLogger("toolhost-resilience.storage")


def new_uuid() -> str:
    """Generate a new random 8-character UUID."""
    return shortuuid.random(length=8)


class WorkspaceStore:
    """Handles storage and retrieval of workspaces.

    Workspaces live at ``{data_dir}/workspaces/{workspace_id}.json``.
    """

    def __init__(self, data_dir: str | Path = "toolhost_data"):
        self.data_dir = Path(data_dir)
        self._workspace_dir = self.data_dir / "workspaces"
        self._workspace_dir.mkdir(parents=True, exist_ok=True)
        logger.debug(f"📂 Initializing WorkspaceStore with data_dir: {self.data_dir.resolve()}")

        self._workspaces: dict[str, Workspace] = {}
        self._load_all()

    def _workspace_file(self, workspace_id: str) -> Path:
        return self._workspace_dir / f"{workspace_id}.json"

    def _load_all(self) -> None:
        for path in sorted(self._workspace_dir.glob("*.json")):
            try:
                with open(path, "r", encoding="utf-8") as f:
                    workspace = Workspace.model_validate(json.load(f))
            except (json.JSONDecodeError, ValidationError) as e:
                logger.warning(f"Skipping invalid workspace file {path}: {e}")
                continue
            self._workspaces[workspace.id] = workspace
        logger.debug(f"📂 Loaded {len(self._workspaces)} workspaces")

    def _save(self, workspace: Workspace) -> None:
        with open(self._workspace_file(workspace.id), "w", encoding="utf-8") as f:
            json.dump(workspace.model_dump(mode="json"), f, indent=2, ensure_ascii=False)

    def create_workspace(self, name: str, type: str = "general", tools: list[str] | None = None) -> Workspace:
        workspace = Workspace(id=new_uuid(), name=name, type=type, tools=tools or [])
        self._workspaces[workspace.id] = workspace
        self._save(workspace)
        logger.info(f"Created workspace {workspace.id} ({name})")
        return workspace

    def save_workspace(self, workspace: Workspace) -> Workspace:
        """Store ``workspace``, stamping ``last_modified``."""
        workspace = workspace.model_copy(update={"last_modified": datetime.now()})
        self._workspaces[workspace.id] = workspace
        self._save(workspace)
        return workspace

    def add_file(self, workspace_id: str, file: FileReference) -> Workspace:
        """Attach a file reference to a workspace.

        Raises:
            KeyError: If the workspace does not exist
        """
        workspace = self._workspaces.get(workspace_id)
        if workspace is None:
            raise KeyError(f"Workspace {workspace_id} not found")
        updated = workspace.model_copy(update={"files": [*workspace.files, file]})
        return self.save_workspace(updated)

    def get(self, workspace_id: str) -> Workspace | None:
        return self._workspaces.get(workspace_id)

    async def get_workspace(self, workspace_id: str) -> Workspace | None:
        """Async accessor used as the checkpoint manager's workspace fetch."""
        return self.get(workspace_id)

    def list_workspaces(self) -> list[Workspace]:
        return list(self._workspaces.values())

    def delete_workspace(self, workspace_id: str) -> bool:
        if self._workspaces.pop(workspace_id, None) is None:
            return False
        path = self._workspace_file(workspace_id)
        if path.exists():
            path.unlink()
        return True


__all__ = ["WorkspaceStore", "new_uuid"]
