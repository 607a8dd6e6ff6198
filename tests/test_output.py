"""
Tests for the adaptive output shaper.
"""

from dataclasses import dataclass

import pytest
from pydantic import BaseModel

from pare.output import (
    ShapeKind,
    compact_dual_output,
    dual_output,
    estimate_tokens,
    prefers_compact,
    serialize,
    shape,
    stripped_compact_dual_output,
    stripped_dual_output,
)


def _status() -> dict:
    return {
        "branch": "main",
        "files": [
            {"path": "src/app.py", "status": "modified", "staged": False},
            {"path": "README.md", "status": "added", "staged": True},
        ],
    }


def _human(data: dict) -> str:
    return f"On {data['branch']}: {len(data['files'])} changed"


def _compact(data: dict) -> dict:
    return {"branch": data["branch"], "paths": [f["path"] for f in data["files"]]}


def _compact_human(data: dict) -> str:
    return f"{data['branch']}: " + ", ".join(data["paths"])


class TestEstimateTokens:
    """Tests for the token estimate."""

    @pytest.mark.parametrize("text,tokens", [("", 0), ("abc", 1), ("abcd", 1), ("abcde", 2)])
    def test_four_chars_per_token(self, text: str, tokens: int) -> None:
        """Length over four, rounded up."""
        assert estimate_tokens(text) == tokens


class TestDualOutput:
    """Tests for the plain dual output."""

    def test_text_and_structured(self) -> None:
        """Both representations are present."""
        result = dual_output(_status(), _human)

        assert result.content[0].text == "On main: 2 changed"
        assert result.structuredContent == _status()
        assert not result.isError

    def test_pydantic_model_dumped(self) -> None:
        """Models are dumped by alias with unset optionals dropped."""
        class Entry(BaseModel):
            name: str
            exit_code: int | None = None

        result = dual_output(Entry(name="lint"), lambda e: e.name)
        assert result.structuredContent == {"name": "lint"}

    def test_dataclass_converted(self) -> None:
        """Dataclasses are converted to dicts."""
        @dataclass
        class Count:
            total: int

        assert dual_output(Count(3), lambda c: str(c.total)).structuredContent == {"total": 3}

    def test_non_object_wrapped(self) -> None:
        """Structured content must be an object, so lists are wrapped."""
        result = dual_output([1, 2], lambda items: "two items")
        assert result.structuredContent == {"result": [1, 2]}

    def test_stripped_dual_output(self) -> None:
        """Internal fields reach the formatter but not the structured output."""
        data = {"count": 2, "_raw_lines": ["a", "b"]}
        result = stripped_dual_output(
            data,
            lambda d: "\n".join(d["_raw_lines"]),
            lambda d: {"count": d["count"]},
        )

        assert result.content[0].text == "a\nb"
        assert result.structuredContent == {"count": 2}


class TestShape:
    """Tests for the full/compact decision."""

    def test_compact_when_structured_is_larger(self) -> None:
        """Short raw output makes the compact form win."""
        shaped = shape(_status(), "M src/app.py\nA README.md", _human, _compact, _compact_human)

        assert shaped.kind is ShapeKind.COMPACT
        assert shaped.is_compact
        assert shaped.data == {"branch": "main", "paths": ["src/app.py", "README.md"]}
        assert shaped.text == "main: src/app.py, README.md"

    def test_full_when_structured_is_smaller(self) -> None:
        """Verbose raw output keeps the full form."""
        raw = "x" * 2_000
        shaped = shape(_status(), raw, _human, _compact, _compact_human)

        assert shaped.kind is ShapeKind.FULL
        assert shaped.data == _status()
        assert shaped.text == "On main: 2 changed"

    def test_force_full_schema(self) -> None:
        """Forcing the full schema bypasses the comparison."""
        shaped = shape(_status(), "", _human, _compact, _compact_human, force_full_schema=True)
        assert shaped.kind is ShapeKind.FULL

    def test_tie_goes_to_compact(self) -> None:
        """Equal estimates choose compact."""
        data = {"a": 1}
        raw = "12345678"
        assert estimate_tokens(serialize(data)) == estimate_tokens(raw)

        assert prefers_compact(data, raw)
        assert shape(data, raw, str, lambda d: {"n": 1}, str).is_compact

    def test_compact_dual_output(self) -> None:
        """The chosen representation becomes the tool result."""
        result = compact_dual_output(_status(), "M a", _human, _compact, _compact_human)

        assert result.structuredContent == {"branch": "main", "paths": ["src/app.py", "README.md"]}
        assert result.content[0].text == "main: src/app.py, README.md"

    def test_compact_dual_output_forced_full(self) -> None:
        """Forced full output publishes the full data."""
        result = compact_dual_output(
            _status(), "M a", _human, _compact, _compact_human, force_full_schema=True
        )
        assert result.structuredContent == _status()


class TestStrippedCompactDualOutput:
    """Tests for compact output with internal-only fields."""

    @staticmethod
    def _data() -> dict:
        return {"count": 1, "items": ["only"], "_raw": "only"}

    @staticmethod
    def _schema(d: dict) -> dict:
        return {"count": d["count"], "items": d["items"]}

    def test_full_path_strips_internal_fields(self) -> None:
        """Full output formats the internal data but publishes the schema view."""
        result = stripped_compact_dual_output(
            self._data(),
            "",
            lambda d: f"raw: {d['_raw']}",
            self._schema,
            lambda d: {"count": d["count"]},
            lambda c: f"{c['count']} item",
            force_full_schema=True,
        )

        assert result.content[0].text == "raw: only"
        assert result.structuredContent == {"count": 1, "items": ["only"]}

    def test_compact_path(self) -> None:
        """Compact output ignores the schema map."""
        result = stripped_compact_dual_output(
            self._data(),
            "",
            lambda d: f"raw: {d['_raw']}",
            self._schema,
            lambda d: {"count": d["count"]},
            lambda c: f"{c['count']} item",
        )

        assert result.content[0].text == "1 item"
        assert result.structuredContent == {"count": 1}
