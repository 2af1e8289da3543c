"""
Checkpoint records and their on-disk store.

Checkpoints are saved as one JSON file each under the data directory:
{data_dir}/checkpoints/{workspace_id}/{checkpoint_id}.json

The checksum is SHA-256 over the canonical JSON form of the snapshot (sorted
keys, compact separators), so it is stable across save and load.
"""

from __future__ import annotations

import copy
import hashlib
import json
import logging
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger("toolhost-resilience.integrity.checkpoints")


def canonical_json(data: Any) -> str:
    """Serialize ``data`` deterministically."""
    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def compute_checksum(data: Any) -> str:
    """Return the hex SHA-256 of the canonical JSON form of ``data``."""
    return hashlib.sha256(canonical_json(data).encode("utf-8")).hexdigest()


class CheckpointMetadata(BaseModel):
    """Descriptive data stored alongside a checkpoint snapshot."""

    model_config = ConfigDict(frozen=True)

    version: str = Field(default="1.0", description="Checkpoint format version")
    description: str = Field(default="Auto checkpoint", description="Why the checkpoint was taken")
    file_count: int = Field(default=0, description="Files in the workspace at snapshot time")
    data_size: int = Field(default=0, description="Size in bytes of the canonical snapshot")
    checksum: str = Field(description="SHA-256 of the canonical snapshot")


class Checkpoint(BaseModel):
    """A restorable snapshot of a workspace. Immutable after creation."""

    model_config = ConfigDict(frozen=True)

    id: str
    workspace_id: str
    timestamp: int = Field(description="Epoch milliseconds at creation")
    sequence: int = Field(default=0, description="Creation order within the workspace, breaks timestamp ties")
    data: dict[str, Any] = Field(description="Deep snapshot of the workspace")
    metadata: CheckpointMetadata

    def snapshot(self) -> dict[str, Any]:
        """Return a deep copy of the stored workspace data."""
        return copy.deepcopy(self.data)


class CheckpointStore:
    """
    Persists checkpoints as JSON files and keeps an in-memory index.

    The index is rebuilt from disk on construction so checkpoints survive a
    process restart. Files that cannot be parsed are skipped with a warning.
    """

    VERSION = "1.0"

    def __init__(self, data_dir: Path | None = None) -> None:
        """
        Args:
            data_dir: Root data directory; ``None`` keeps checkpoints in memory only
        """
        self.data_dir = Path(data_dir) if data_dir is not None else None
        self._checkpoints: dict[str, Checkpoint] = {}
        if self.data_dir is not None:
            self._load_all()

    @property
    def _root(self) -> Path | None:
        return self.data_dir / "checkpoints" if self.data_dir is not None else None

    def _path(self, checkpoint: Checkpoint) -> Path | None:
        if self._root is None:
            return None
        return self._root / checkpoint.workspace_id / f"{checkpoint.id}.json"

    def _load_all(self) -> None:
        root = self._root
        if root is None or not root.exists():
            return
        for path in sorted(root.glob("*/*.json")):
            try:
                with open(path, "r", encoding="utf-8") as f:
                    raw = json.load(f)
                raw.pop("version", None)
                checkpoint = Checkpoint(**raw)
            except (json.JSONDecodeError, TypeError, ValueError) as e:
                logger.warning(f"Skipping unreadable checkpoint {path}: {e}")
                continue
            self._checkpoints[checkpoint.id] = checkpoint
        if self._checkpoints:
            logger.info(f"Loaded {len(self._checkpoints)} checkpoints from {root}")

    def save(self, checkpoint: Checkpoint) -> None:
        path = self._path(checkpoint)
        if path is not None:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "w", encoding="utf-8") as f:
                json.dump(
                    {"version": self.VERSION, **checkpoint.model_dump(mode="json")},
                    f,
                    indent=2,
                    ensure_ascii=False,
                )
        self._checkpoints[checkpoint.id] = checkpoint
        logger.debug(f"Saved checkpoint {checkpoint.id} for workspace {checkpoint.workspace_id}")

    def get(self, checkpoint_id: str) -> Checkpoint | None:
        return self._checkpoints.get(checkpoint_id)

    def delete(self, checkpoint_id: str) -> bool:
        checkpoint = self._checkpoints.pop(checkpoint_id, None)
        if checkpoint is None:
            return False
        path = self._path(checkpoint)
        if path is not None and path.exists():
            path.unlink()
        logger.debug(f"Deleted checkpoint {checkpoint_id}")
        return True

    def list_for_workspace(self, workspace_id: str) -> list[Checkpoint]:
        """Checkpoints of ``workspace_id``, oldest first by timestamp then sequence."""
        return sorted(
            (c for c in self._checkpoints.values() if c.workspace_id == workspace_id),
            key=lambda c: (c.timestamp, c.sequence),
        )

    def __len__(self) -> int:
        return len(self._checkpoints)


__all__ = [
    "canonical_json",
    "compute_checksum",
    "CheckpointMetadata",
    "Checkpoint",
    "CheckpointStore",
]
