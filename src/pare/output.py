"""
Dual-representation tool output.

Every tool returns a human-readable text block and a structured payload
in one CallToolResult. Structured JSON is often larger than the raw CLI
output it was parsed from, which wastes an agent's context, so
compact_dual_output compares the two by estimated token cost and falls
back to a compact projection when the structured form is not cheaper.
"""

import dataclasses
import json
import math
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, TypeVar

from mcp.types import CallToolResult, TextContent
from pydantic import BaseModel

T = TypeVar("T")
C = TypeVar("C")
S = TypeVar("S")

CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    """Approximate token count at ~4 characters per token, rounded up."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def to_jsonable(data: Any) -> Any:
    """Convert pydantic models and dataclasses into plain JSON values."""
    if isinstance(data, BaseModel):
        return data.model_dump(mode="json", by_alias=True, exclude_none=True)
    if dataclasses.is_dataclass(data) and not isinstance(data, type):
        return dataclasses.asdict(data)
    return data


def serialize(data: Any) -> str:
    """Compact JSON, the form whose size is compared against raw output."""
    return json.dumps(to_jsonable(data), separators=(",", ":"), ensure_ascii=False, default=str)


def _structured(data: Any) -> dict[str, Any]:
    payload = to_jsonable(data)
    if not isinstance(payload, dict):
        # structuredContent must be a JSON object.
        return {"result": payload}
    return payload


def dual_output(data: T, human_format: Callable[[T], str]) -> CallToolResult:
    """Build the text + structured response every tool returns."""
    return CallToolResult(
        content=[TextContent(type="text", text=human_format(data))],
        structuredContent=_structured(data),
    )


def stripped_dual_output(
    data: T,
    human_format: Callable[[T], str],
    schema_map: Callable[[T], S],
) -> CallToolResult:
    """
    Like dual_output, but structuredContent gets schema_map(data).

    Use it when the parsed data carries internal-only fields that the
    formatter needs but the output schema does not declare.
    """
    return CallToolResult(
        content=[TextContent(type="text", text=human_format(data))],
        structuredContent=_structured(schema_map(data)),
    )


class ShapeKind(str, Enum):
    FULL = "full"
    COMPACT = "compact"


@dataclass(frozen=True)
class ShapedOutput(Generic[T]):
    """The representation chosen for one tool call, with its summary text."""
    kind: ShapeKind
    data: T
    text: str

    @property
    def is_compact(self) -> bool:
        return self.kind is ShapeKind.COMPACT

    def to_tool_output(self) -> CallToolResult:
        return CallToolResult(
            content=[TextContent(type="text", text=self.text)],
            structuredContent=_structured(self.data),
        )


def prefers_compact(data: Any, raw_reference: str) -> bool:
    """
    True when the structured form costs at least as many tokens as raw.

    Ties go to compact.
    """
    return estimate_tokens(serialize(data)) >= estimate_tokens(raw_reference)


def shape(
    data: T,
    raw_reference: str,
    human_format: Callable[[T], str],
    compact_map: Callable[[T], C],
    compact_format: Callable[[C], str],
    force_full_schema: bool = False,
) -> ShapedOutput[T] | ShapedOutput[C]:
    """
    Choose between the full and the compact representation.

    Args:
        data: Full structured data parsed from CLI output.
        raw_reference: The sanitized CLI output the data was parsed from.
        human_format: Formatter for the full data.
        compact_map: Projects the full data to its compact shape. It should
            drop only verbose or derivable detail and keep counts and the
            identifiers needed to act on the result.
        compact_format: Formatter for the compact data.
        force_full_schema: Always return the full data.
    """
    if not force_full_schema and prefers_compact(data, raw_reference):
        compact = compact_map(data)
        return ShapedOutput(ShapeKind.COMPACT, compact, compact_format(compact))
    return ShapedOutput(ShapeKind.FULL, data, human_format(data))


def compact_dual_output(
    data: T,
    raw_reference: str,
    human_format: Callable[[T], str],
    compact_map: Callable[[T], C],
    compact_format: Callable[[C], str],
    force_full_schema: bool = False,
) -> CallToolResult:
    """Dual output with automatic compact mode. See shape()."""
    return shape(
        data, raw_reference, human_format, compact_map, compact_format, force_full_schema
    ).to_tool_output()


def stripped_compact_dual_output(
    data: T,
    raw_reference: str,
    human_format: Callable[[T], str],
    schema_map: Callable[[T], S],
    compact_map: Callable[[T], C],
    compact_format: Callable[[C], str],
    force_full_schema: bool = False,
) -> CallToolResult:
    """
    compact_dual_output for data with internal-only fields.

    The full path formats the internal data and publishes schema_map(data);
    the compact path is the same as in compact_dual_output.
    """
    if not force_full_schema and prefers_compact(data, raw_reference):
        compact = compact_map(data)
        return dual_output(compact, compact_format)
    return stripped_dual_output(data, human_format, schema_map)
