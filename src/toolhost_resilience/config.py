"""
Configuration models for the toolhost resilience engine.

RecoveryPreferences holds the user-facing switches of the recovery
orchestrator. ResilienceConfig holds the product data (alternative services,
offline-capable services, retry-after defaults, limits) that the engine
consults as lookups rather than hard-coding them.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, ValidationInfo, field_validator

logger = logging.getLogger("toolhost-resilience.config")

_SCHEMA_VERSION = 1


class RecoveryPreferences(BaseModel):
    """User preferences controlling automatic recovery.

    Partial updates merge with the current values; unspecified fields keep
    their previous value (see ``merged``).
    """

    auto_retry: bool = Field(
        default=True,
        description="Schedule automatic retries for retryable faults"
    )
    max_retries: int = Field(
        default=3,
        ge=0,
        description="Consecutive faults tolerated per service before it is marked failed"
    )
    use_alternative_services: bool = Field(
        default=True,
        description="Allow switching to an alternative embedded service"
    )
    enable_offline_mode: bool = Field(
        default=True,
        description="Allow switching to offline mode when the host is disconnected"
    )
    show_recovery_notifications: bool = Field(
        default=True,
        description="Surface recovery outcomes to the user"
    )

    def merged(self, **updates: Any) -> RecoveryPreferences:
        """Return a validated copy with ``updates`` applied.

        Unknown keys raise ``ValueError`` so typos do not silently disappear.
        ``None`` values are ignored.
        """
        unknown = set(updates) - set(type(self).model_fields)
        if unknown:
            raise ValueError(f"Unknown recovery preferences: {', '.join(sorted(unknown))}")
        data = self.model_dump()
        data.update({k: v for k, v in updates.items() if v is not None})
        return RecoveryPreferences(**data)


def _default_alternatives() -> dict[str, list[str]]:
    return {
        "photopea": ["pixlr"],
        "svg-edit": ["method-draw"],
        "replit": ["codepen", "jsbin"],
        "gtmetrix": ["pingdom"],
        "cloud-convert": ["pandoc"],
        "twistedweb": ["filelab-audio"],
    }


def _default_offline_services() -> list[str]:
    return [
        "canvas-manager",
        "layer-manager",
        "code-editor",
        "document-editor",
        "file-validator",
        "data-transformer",
    ]


def _default_compatibility() -> dict[str, list[str]]:
    return {
        "image": ["image", "document"],
        "document": ["document", "text"],
        "code": ["code", "text", "document"],
        "audio": ["audio", "media"],
        "video": ["video", "media", "audio"],
    }


class ResilienceConfig(BaseModel):
    """Limits, timings and lookup tables used across the engine."""

    # Error handler
    error_history_limit: int = Field(default=100, ge=1, description="Maximum entries kept in the error history")
    health_window_ms: int = Field(default=300_000, gt=0, description="Observation window for health classification")
    unavailable_threshold: int = Field(
        default=3,
        ge=1,
        description="Recent errors at which the error handler reports a service unavailable"
    )

    # Retry timings (milliseconds)
    base_delay_ms: int = Field(default=1000, ge=0, description="Backoff base delay")
    max_delay_ms: int = Field(default=30_000, ge=0, description="Backoff ceiling")
    backoff_multiplier: float = Field(default=2.0, ge=1.0, description="Backoff growth factor")
    offline_retry_after_ms: int = Field(default=5000, ge=0, description="Retry delay when offline and not offline-capable")
    unavailable_retry_after_ms: int = Field(default=300_000, ge=0, description="Retry delay for unavailable services without alternatives")
    rate_limit_retry_after_ms: int = Field(default=60_000, ge=0, description="Retry delay when a rate limit gives no hint")

    # Data integrity
    max_checkpoints: int = Field(default=10, ge=1, description="Checkpoints retained per workspace")
    file_size_warning_bytes: int = Field(default=100 * 1024 * 1024, gt=0, description="File size above which validation warns")

    # Lookup tables
    alternatives: dict[str, list[str]] = Field(
        default_factory=_default_alternatives,
        description="Alternative services per service id, in preference order"
    )
    offline_capable_services: list[str] = Field(
        default_factory=_default_offline_services,
        description="Services that keep working locally while offline"
    )
    transformation_compatibility: dict[str, list[str]] = Field(
        default_factory=_default_compatibility,
        description="Target schema types each source schema type may be transformed into"
    )

    @field_validator("max_delay_ms")
    @classmethod
    def validate_max_delay(cls, v: int, info: ValidationInfo) -> int:
        """Ensure the backoff ceiling is not below the base delay."""
        base = info.data.get("base_delay_ms", 0)
        if v < base:
            raise ValueError("max_delay_ms must be greater than or equal to base_delay_ms")
        return v

    @field_validator("alternatives")
    @classmethod
    def validate_alternatives(cls, v: dict[str, list[str]]) -> dict[str, list[str]]:
        """Drop self references so a service is never its own alternative."""
        return {service: [alt for alt in alts if alt != service] for service, alts in v.items()}


def load_resilience_config(path: Path) -> ResilienceConfig:
    """Load a ResilienceConfig from YAML, writing the defaults when absent.

    Invalid files are logged and replaced by the defaults in memory; the file
    on disk is left untouched so the user can fix it.

    Args:
        path: Location of the ``resilience.yaml`` file

    Returns:
        The loaded (or default) configuration
    """
    path = Path(path)
    if not path.exists():
        config = ResilienceConfig()
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as fh:
            yaml.dump(
                {"version": _SCHEMA_VERSION, **config.model_dump()},
                fh,
                default_flow_style=False,
                sort_keys=False,
            )
        logger.info(f"Wrote default resilience config to {path}")
        return config

    try:
        with open(path, encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
    except yaml.YAMLError as e:
        logger.warning(f"Invalid resilience config {path}, using defaults: {e}")
        return ResilienceConfig()

    if not isinstance(data, dict):
        logger.warning(f"Resilience config {path} is not a mapping, using defaults")
        return ResilienceConfig()

    data.pop("version", None)
    try:
        return ResilienceConfig(**data)
    except ValidationError as e:
        logger.warning(f"Resilience config {path} failed validation, using defaults: {e}")
        return ResilienceConfig()


__all__ = [
    "RecoveryPreferences",
    "ResilienceConfig",
    "load_resilience_config",
]
