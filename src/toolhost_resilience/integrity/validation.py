"""
Structural validation for workspaces, file references and tool data.

Validation works on plain mappings (or pydantic models, which are dumped
first) so malformed data coming back from an embedded tool is reported
issue by issue instead of failing at construction time.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Literal
from urllib.parse import urlparse

from pydantic import BaseModel, Field


@dataclass
class ValidationIssue:
    """A validation error."""

    field: str
    message: str
    code: str
    severity: Literal["error", "warning"] = "error"


@dataclass
class ValidationWarning:
    """A non-fatal finding with an optional suggestion."""

    field: str
    message: str
    suggestion: str | None = None


@dataclass
class ValidationResult:
    errors: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ValidationWarning] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    @property
    def error_codes(self) -> list[str]:
        return [e.code for e in self.errors]

    def extend(self, other: ValidationResult) -> ValidationResult:
        self.errors.extend(other.errors)
        self.warnings.extend(other.warnings)
        return self


class ValidationRule(BaseModel):
    """A rule applied to a single schema property."""

    type: Literal["required", "minLength", "maxLength", "pattern", "range"]
    value: Any = None
    message: str


class SchemaProperty(BaseModel):
    type: Literal["string", "number", "boolean", "object", "array"]
    format: str | None = None
    validation: list[ValidationRule] = Field(default_factory=list)


class DataSchema(BaseModel):
    """Shape of the data a tool produces or consumes."""

    type: str
    properties: dict[str, SchemaProperty] = Field(default_factory=dict)
    required: list[str] = Field(default_factory=list)
    version: str = "1.0"


def as_mapping(data: Any) -> dict[str, Any]:
    """Return ``data`` as a plain dict (dumping pydantic models)."""
    if isinstance(data, BaseModel):
        return data.model_dump(mode="json")
    if isinstance(data, Mapping):
        return dict(data)
    raise TypeError(f"Expected a mapping or model, got {type(data).__name__}")


def is_valid_url(url: str) -> bool:
    """True for absolute URLs with a scheme and a location (or data/blob URIs)."""
    if not isinstance(url, str) or not url or any(c.isspace() for c in url):
        return False
    parsed = urlparse(url)
    if parsed.scheme in ("data", "blob"):
        return bool(parsed.path)
    return bool(parsed.scheme) and bool(parsed.netloc or parsed.path and parsed.scheme == "file")


def is_correct_type(value: Any, expected: str) -> bool:
    if expected == "string":
        return isinstance(value, str)
    if expected == "number":
        return isinstance(value, (int, float)) and not isinstance(value, bool) and value == value
    if expected == "boolean":
        return isinstance(value, bool)
    if expected == "object":
        return isinstance(value, Mapping)
    if expected == "array":
        return isinstance(value, (list, tuple))
    return True


def apply_rule(value: Any, rule: ValidationRule, field_name: str) -> ValidationIssue | None:
    """Apply one rule; return the issue it raises, if any."""
    if rule.type == "required":
        if value is None or value == "":
            return ValidationIssue(field_name, rule.message, "VALIDATION_FAILED")
    elif rule.type == "minLength":
        if isinstance(value, str) and len(value) < rule.value:
            return ValidationIssue(field_name, rule.message, "MIN_LENGTH_VIOLATION")
    elif rule.type == "maxLength":
        if isinstance(value, str) and len(value) > rule.value:
            return ValidationIssue(field_name, rule.message, "MAX_LENGTH_VIOLATION")
    elif rule.type == "pattern":
        if isinstance(value, str) and not re.search(rule.value, value):
            return ValidationIssue(field_name, rule.message, "PATTERN_MISMATCH")
    elif rule.type == "range":
        if is_correct_type(value, "number") and not (rule.value["min"] <= value <= rule.value["max"]):
            return ValidationIssue(field_name, rule.message, "RANGE_VIOLATION")
    return None


def validate_against_schema(data: Any, schema: DataSchema) -> ValidationResult:
    """Check required fields, property types and property rules."""
    result = ValidationResult()
    payload = as_mapping(data)

    for required in schema.required:
        if payload.get(required) is None:
            result.errors.append(ValidationIssue(
                required,
                f"Required field '{required}' is missing",
                "MISSING_REQUIRED_FIELD",
            ))

    for name, prop in schema.properties.items():
        if name not in payload:
            continue
        value = payload[name]
        if not is_correct_type(value, prop.type):
            result.errors.append(ValidationIssue(
                name,
                f"Expected {prop.type}, got {type(value).__name__}",
                "TYPE_MISMATCH",
            ))
            continue
        for rule in prop.validation:
            issue = apply_rule(value, rule, name)
            if issue:
                result.errors.append(issue)

    return result


def default_schemas() -> dict[str, DataSchema]:
    """Schemas of the data exchanged by the built-in tool categories."""
    return {
        "image": DataSchema(
            type="image",
            properties={
                "data": SchemaProperty(type="string", validation=[
                    ValidationRule(type="required", message="Image data is required")]),
                "format": SchemaProperty(type="string", validation=[
                    ValidationRule(type="required", message="Image format is required")]),
                "dimensions": SchemaProperty(type="object"),
                "colorProfile": SchemaProperty(type="string"),
            },
            required=["data", "format"],
        ),
        "document": DataSchema(
            type="document",
            properties={
                "content": SchemaProperty(type="string", validation=[
                    ValidationRule(type="required", message="Document content is required")]),
                "format": SchemaProperty(type="string", validation=[
                    ValidationRule(type="required", message="Document format is required")]),
                "metadata": SchemaProperty(type="object"),
            },
            required=["content", "format"],
        ),
        "code": DataSchema(
            type="code",
            properties={
                "source": SchemaProperty(type="string", validation=[
                    ValidationRule(type="required", message="Source code is required")]),
                "language": SchemaProperty(type="string", validation=[
                    ValidationRule(type="required", message="Programming language is required")]),
                "dependencies": SchemaProperty(type="array"),
            },
            required=["source", "language"],
        ),
    }


__all__ = [
    "ValidationIssue",
    "ValidationWarning",
    "ValidationResult",
    "ValidationRule",
    "SchemaProperty",
    "DataSchema",
    "as_mapping",
    "is_valid_url",
    "is_correct_type",
    "apply_rule",
    "validate_against_schema",
    "default_schemas",
]
