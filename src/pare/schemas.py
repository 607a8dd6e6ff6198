"""
Input limits and shared input fields for tool schemas.

Every string, array and path a tool accepts is bounded, so a caller cannot
push megabytes of input into an argv. Tools declare their inputs either
as a RawShape (field name -> type and Field) or as a CompiledSchema
wrapping a ready pydantic model. Which one is decided by whoever builds
the schema; compile_input_schema never has to guess from the object's
structure.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, create_model
from pydantic.fields import FieldInfo


@dataclass(frozen=True)
class InputLimits:
    STRING_MAX: int = 65_536
    ARRAY_MAX: int = 1_000
    PATH_MAX: int = 4_096
    MESSAGE_MAX: int = 72_000
    SHORT_STRING_MAX: int = 255


INPUT_LIMITS = InputLimits()


# ---------------------------------------------------------------------------
# Shared input fields
# ---------------------------------------------------------------------------


def compact_input() -> Any:
    return Field(default=True, description="Prefer compact output")


def _optional_path(description: str) -> Any:
    return Field(default=None, max_length=INPUT_LIMITS.PATH_MAX, description=description)


def project_path_input() -> Any:
    return _optional_path("Project root path")


def repo_path_input() -> Any:
    return _optional_path("Repository path")


def cwd_path_input() -> Any:
    return _optional_path("Working directory")


def path_input(description: str = "Path") -> Any:
    return _optional_path(description)


def config_input() -> Any:
    return _optional_path("Path to config file")


def fix_input() -> Any:
    return Field(default=False, description="Apply fixes automatically")


def file_patterns_input() -> Any:
    return Field(
        default=None,
        max_length=INPUT_LIMITS.ARRAY_MAX,
        description="File patterns to include",
    )


# ---------------------------------------------------------------------------
# Schema variants
# ---------------------------------------------------------------------------


class ToolInput(BaseModel):
    """Base for tool inputs: unknown arguments are rejected."""
    model_config = ConfigDict(extra="forbid")


@dataclass(frozen=True)
class RawShape:
    """Field definitions in create_model form: name -> (type, FieldInfo)."""
    fields: Mapping[str, tuple[Any, FieldInfo | Any]] = field(default_factory=dict)


@dataclass(frozen=True)
class CompiledSchema:
    """An existing pydantic model used as-is."""
    model: type[BaseModel]


InputSchema = RawShape | CompiledSchema


def compile_input_schema(schema: InputSchema, name: str) -> type[BaseModel]:
    """Return the pydantic model that validates a tool's arguments."""
    if isinstance(schema, CompiledSchema):
        return schema.model
    if isinstance(schema, RawShape):
        model_name = "".join(part.capitalize() for part in name.replace("-", "_").split("_"))
        return create_model(f"{model_name}Input", __base__=ToolInput, **dict(schema.fields))
    raise TypeError(f"Unsupported input schema for {name!r}: {type(schema).__name__}")
