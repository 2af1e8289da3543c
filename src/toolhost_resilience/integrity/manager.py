"""
Workspace data integrity: structural validation, checkpoints and
transformation checks.

DataIntegrityManager is the single entry point used by the recovery engine.
It fetches workspaces through an injected callable, snapshots them into
checksummed checkpoints and refuses to hand back a snapshot whose checksum no
longer matches.
"""

from __future__ import annotations

import inspect
import json
import logging
from collections.abc import Mapping
from typing import Any, Awaitable, Callable, Union

from pydantic import BaseModel
from shortuuid import random as shortuuid_random

from toolhost_resilience.config import ResilienceConfig
from toolhost_resilience.exceptions import (
    CheckpointError,
    CheckpointNotFoundError,
    DataIntegrityError,
)
from toolhost_resilience.integrity.checkpoints import (
    Checkpoint,
    CheckpointMetadata,
    CheckpointStore,
    canonical_json,
    compute_checksum,
)
from toolhost_resilience.integrity.validation import (
    DataSchema,
    ValidationIssue,
    ValidationResult,
    ValidationWarning,
    as_mapping,
    default_schemas,
    is_correct_type,
    is_valid_url,
    validate_against_schema,
)
from toolhost_resilience.models import Clock, now_ms

logger = logging.getLogger("toolhost-resilience.integrity")

WorkspaceFetcher = Callable[[str], Union[Any, Awaitable[Any]]]


class DataIntegrityManager:
    """Validates workspace data and manages checkpoints.

    Attributes:
        store: Checkpoint persistence
        config: Limits (checkpoint cap, file size warning, compatibility matrix)
        schemas: Registered data schemas keyed by tool or data type
    """

    def __init__(
        self,
        get_workspace: WorkspaceFetcher | None = None,
        store: CheckpointStore | None = None,
        config: ResilienceConfig | None = None,
        clock: Clock | None = None,
    ):
        """
        Args:
            get_workspace: Sync or async callable returning the workspace (model
                or mapping) for an id, or None when it does not exist
            store: Checkpoint store (defaults to an in-memory store)
            config: Engine configuration
            clock: Millisecond clock used for checkpoint timestamps
        """
        self._get_workspace = get_workspace
        self.store = store if store is not None else CheckpointStore()
        self.config = config or ResilienceConfig()
        self._clock = clock or now_ms
        self.schemas: dict[str, DataSchema] = default_schemas()

    # ------------------------------------------------------------------
    # Structural validation
    # ------------------------------------------------------------------

    def validate_workspace_data(self, workspace: Any) -> ValidationResult:
        """Check workspace fields, every file reference and file id uniqueness."""
        data = as_mapping(workspace)
        result = ValidationResult()

        if not data.get("id"):
            result.errors.append(ValidationIssue("id", "Workspace ID is required", "MISSING_ID"))

        name = data.get("name")
        if not isinstance(name, str) or not name.strip():
            result.errors.append(ValidationIssue("name", "Workspace name is required", "MISSING_NAME"))

        files = data.get("files")
        if files is None:
            files = []
        if not isinstance(files, (list, tuple)):
            result.errors.append(ValidationIssue("files", "Workspace files must be a list", "INVALID_FILES"))
            return result

        seen: set[str] = set()
        for index, file in enumerate(files):
            if not isinstance(file, (Mapping, BaseModel)):
                result.errors.append(ValidationIssue(
                    f"files[{index}]",
                    f"File reference must be an object, got {type(file).__name__}",
                    "INVALID_FILE_REFERENCE",
                ))
                continue
            result.extend(self.validate_file_reference(file))

            # repr keeps unhashable ids comparable
            file_id = as_mapping(file).get("id")
            key = repr(file_id)
            if file_id and key in seen:
                result.errors.append(ValidationIssue(
                    "files", f"Duplicate file ID: {file_id}", "DUPLICATE_FILE_ID"
                ))
            seen.add(key)

        return result

    def validate_file_reference(self, file: Any) -> ValidationResult:
        """Check a single file reference, including type-specific metadata."""
        data = as_mapping(file)
        result = ValidationResult()

        file_id = data.get("id")
        if not file_id:
            result.errors.append(ValidationIssue("id", "File ID is required", "MISSING_FILE_ID"))
        elif not isinstance(file_id, str):
            result.errors.append(ValidationIssue("id", "File ID must be a string", "INVALID_FILE_ID"))
        if not data.get("name"):
            result.errors.append(ValidationIssue("name", "File name is required", "MISSING_FILE_NAME"))
        if not data.get("type"):
            result.errors.append(ValidationIssue("type", "File type is required", "MISSING_FILE_TYPE"))

        size = data.get("size", 0)
        if is_correct_type(size, "number"):
            if size < 0:
                result.errors.append(ValidationIssue(
                    "size", "File size cannot be negative", "INVALID_FILE_SIZE"
                ))
            elif size > self.config.file_size_warning_bytes:
                limit_mb = self.config.file_size_warning_bytes // (1024 * 1024)
                result.warnings.append(ValidationWarning(
                    "size",
                    f"File size exceeds recommended limit of {limit_mb}MB",
                    "Consider compressing the file or using a different format",
                ))
        elif size is not None:
            result.errors.append(ValidationIssue("size", "File size must be a number", "INVALID_FILE_SIZE"))

        url = data.get("url")
        if url and not is_valid_url(url):
            result.errors.append(ValidationIssue("url", "Invalid file URL format", "INVALID_URL"))

        metadata = data.get("metadata")
        if isinstance(metadata, dict) and isinstance(data.get("type"), str):
            result.extend(self._validate_metadata(metadata, data["type"]))

        return result

    def _validate_metadata(self, metadata: dict[str, Any], file_type: str) -> ValidationResult:
        result = ValidationResult()

        if file_type.startswith("image/"):
            dimensions = metadata.get("dimensions")
            if isinstance(dimensions, dict) and not (dimensions.get("width") and dimensions.get("height")):
                result.warnings.append(ValidationWarning(
                    "metadata.dimensions",
                    "Image dimensions are incomplete",
                    "Ensure both width and height are specified",
                ))

        if file_type.startswith(("video/", "audio/")):
            duration = metadata.get("duration")
            if is_correct_type(duration, "number") and duration < 0:
                result.errors.append(ValidationIssue(
                    "metadata.duration", "Media duration cannot be negative", "INVALID_DURATION"
                ))

        return result

    # ------------------------------------------------------------------
    # Checkpoints
    # ------------------------------------------------------------------

    async def fetch_workspace(self, workspace_id: str) -> Any:
        """Return the workspace from the injected fetcher, awaiting it if needed."""
        if self._get_workspace is None:
            return None
        workspace = self._get_workspace(workspace_id)
        if inspect.isawaitable(workspace):
            workspace = await workspace
        return workspace

    async def create_checkpoint(self, workspace_id: str, description: str = "Auto checkpoint") -> Checkpoint:
        """Snapshot the current workspace into a new checkpoint.

        Raises:
            CheckpointError: If the workspace does not exist or is structurally invalid
        """
        workspace = await self.fetch_workspace(workspace_id)
        if workspace is None:
            raise CheckpointError(f"Workspace {workspace_id} not found", {"workspace_id": workspace_id})

        validation = self.validate_workspace_data(workspace)
        if not validation.is_valid:
            raise CheckpointError(
                f"Workspace {workspace_id} failed validation",
                {"workspace_id": workspace_id, "errors": validation.error_codes},
            )

        # Round-trip through JSON so the snapshot shares nothing with the live object
        snapshot = json.loads(json.dumps(as_mapping(workspace), default=str))
        timestamp = self._clock()
        sequence = max((c.sequence for c in self.store.list_for_workspace(workspace_id)), default=0) + 1
        checkpoint = Checkpoint(
            id=f"checkpoint_{timestamp}_{shortuuid_random(length=9)}",
            workspace_id=workspace_id,
            timestamp=timestamp,
            sequence=sequence,
            data=snapshot,
            metadata=CheckpointMetadata(
                description=description,
                file_count=len(snapshot.get("files") or []),
                data_size=len(canonical_json(snapshot).encode("utf-8")),
                checksum=compute_checksum(snapshot),
            ),
        )
        self.store.save(checkpoint)

        existing = self.store.list_for_workspace(workspace_id)
        for evicted in existing[: max(0, len(existing) - self.config.max_checkpoints)]:
            self.store.delete(evicted.id)
            logger.debug(f"Evicted checkpoint {evicted.id} for workspace {workspace_id}")

        logger.info(f"Created checkpoint {checkpoint.id} for workspace {workspace_id}: {description}")
        return checkpoint

    async def restore_checkpoint(self, checkpoint_id: str) -> dict[str, Any]:
        """Verify and return the workspace stored in a checkpoint.

        Raises:
            CheckpointNotFoundError: If no checkpoint has this id
            DataIntegrityError: If the stored data no longer matches its checksum
        """
        checkpoint = self.store.get(checkpoint_id)
        if checkpoint is None:
            raise CheckpointNotFoundError(checkpoint_id)

        actual = compute_checksum(checkpoint.data)
        if actual != checkpoint.metadata.checksum:
            logger.error(f"Checkpoint {checkpoint_id} failed integrity check")
            raise DataIntegrityError(
                "Checkpoint data integrity check failed",
                expected_checksum=checkpoint.metadata.checksum,
                actual_checksum=actual,
                details={"checkpoint_id": checkpoint_id},
            )

        logger.info(f"Restored checkpoint {checkpoint_id} for workspace {checkpoint.workspace_id}")
        return checkpoint.snapshot()

    def get_checkpoints(self, workspace_id: str) -> list[Checkpoint]:
        return self.store.list_for_workspace(workspace_id)

    def get_latest_checkpoint(self, workspace_id: str) -> Checkpoint | None:
        checkpoints = self.store.list_for_workspace(workspace_id)
        return checkpoints[-1] if checkpoints else None

    def delete_checkpoint(self, checkpoint_id: str) -> bool:
        return self.store.delete(checkpoint_id)

    # ------------------------------------------------------------------
    # Transformations
    # ------------------------------------------------------------------

    def register_schema(self, key: str, schema: DataSchema) -> None:
        self.schemas[key] = schema

    def get_data_schema(self, tool: Any) -> DataSchema:
        """Schema registered for a tool id (or object with ``id``), else the generic object schema."""
        key = tool if isinstance(tool, str) else getattr(tool, "id", None)
        return self.schemas.get(key) or DataSchema(type="object")

    def is_transformation_compatible(self, source: DataSchema, target: DataSchema) -> bool:
        return target.type in self.config.transformation_compatibility.get(source.type, [])

    def validate_transformation(self, data: Any, source_schema: DataSchema, target_schema: DataSchema) -> ValidationResult:
        """Check that ``data`` can move from ``source_schema`` to ``target_schema``."""
        result = ValidationResult()

        if not self.is_transformation_compatible(source_schema, target_schema):
            result.errors.append(ValidationIssue(
                "schema",
                f"Cannot transform from {source_schema.type} to {target_schema.type}",
                "INCOMPATIBLE_TRANSFORMATION",
            ))

        result.errors.extend(validate_against_schema(data, source_schema).errors)

        target_fields = set(target_schema.properties) | set(target_schema.required)
        for prop in source_schema.properties:
            if prop not in target_fields:
                result.warnings.append(ValidationWarning(
                    prop,
                    f"Property '{prop}' will be lost in transformation",
                    "Consider using a different target format or manually preserve this data",
                ))

        return result

    def validate_data_transfer(self, source_tool: Any, target_tool: Any, data: Any) -> ValidationResult:
        return self.validate_transformation(
            data,
            self.get_data_schema(source_tool),
            self.get_data_schema(target_tool),
        )


__all__ = ["DataIntegrityManager", "WorkspaceFetcher"]
