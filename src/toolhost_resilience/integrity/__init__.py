"""
Data integrity for toolhost workspaces.

Structural validation, checksummed checkpoints and transformation checks.
"""

from .checkpoints import Checkpoint, CheckpointMetadata, CheckpointStore, compute_checksum
from .manager import DataIntegrityManager
from .validation import (
    DataSchema,
    SchemaProperty,
    ValidationIssue,
    ValidationResult,
    ValidationRule,
    ValidationWarning,
)

__all__ = [
    "Checkpoint",
    "CheckpointMetadata",
    "CheckpointStore",
    "compute_checksum",
    "DataIntegrityManager",
    "DataSchema",
    "SchemaProperty",
    "ValidationIssue",
    "ValidationResult",
    "ValidationRule",
    "ValidationWarning",
]
