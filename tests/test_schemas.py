"""Tests for input limits and schema compilation."""

import pytest
from pydantic import BaseModel, Field, ValidationError

from pare.schemas import (
    INPUT_LIMITS,
    CompiledSchema,
    RawShape,
    ToolInput,
    compact_input,
    compile_input_schema,
    file_patterns_input,
    path_input,
    repo_path_input,
)


def _status_shape() -> RawShape:
    return RawShape({
        "path": (str | None, repo_path_input()),
        "files": (list[str] | None, file_patterns_input()),
        "compact": (bool, compact_input()),
    })


class TestInputLimits:
    """Tests for the shared limits."""

    def test_values(self) -> None:
        """Limits are fixed."""
        assert INPUT_LIMITS.STRING_MAX == 65_536
        assert INPUT_LIMITS.ARRAY_MAX == 1_000
        assert INPUT_LIMITS.PATH_MAX == 4_096
        assert INPUT_LIMITS.MESSAGE_MAX == 72_000
        assert INPUT_LIMITS.SHORT_STRING_MAX == 255


class TestCompileRawShape:
    """Tests for compiling a RawShape."""

    def test_model_name_and_defaults(self) -> None:
        """The model is named after the tool and applies field defaults."""
        model = compile_input_schema(_status_shape(), "git_status")

        assert model.__name__ == "GitStatusInput"
        assert issubclass(model, ToolInput)
        params = model.model_validate({})
        assert params.path is None
        assert params.files is None
        assert params.compact is True

    def test_hyphenated_name(self) -> None:
        """Hyphens split words like underscores."""
        assert compile_input_schema(RawShape({}), "run-tests").__name__ == "RunTestsInput"

    def test_unknown_arguments_rejected(self) -> None:
        """Extra arguments are an error, not silently dropped."""
        model = compile_input_schema(_status_shape(), "git_status")
        with pytest.raises(ValidationError):
            model.model_validate({"path": ".", "force": True})

    def test_path_limit(self) -> None:
        """Paths longer than PATH_MAX are rejected."""
        model = compile_input_schema(_status_shape(), "git_status")

        model.model_validate({"path": "a" * INPUT_LIMITS.PATH_MAX})
        with pytest.raises(ValidationError):
            model.model_validate({"path": "a" * (INPUT_LIMITS.PATH_MAX + 1)})

    def test_array_limit(self) -> None:
        """Arrays longer than ARRAY_MAX are rejected."""
        model = compile_input_schema(_status_shape(), "git_status")
        with pytest.raises(ValidationError):
            model.model_validate({"files": ["a.py"] * (INPUT_LIMITS.ARRAY_MAX + 1)})

    def test_json_schema_descriptions(self) -> None:
        """Field descriptions reach the published JSON schema."""
        schema = compile_input_schema(
            RawShape({"target": (str | None, path_input("Build target"))}), "build"
        ).model_json_schema()

        assert schema["properties"]["target"]["description"] == "Build target"
        assert schema["additionalProperties"] is False


class TestCompiledSchema:
    """Tests for pre-built models."""

    def test_model_used_as_is(self) -> None:
        """A CompiledSchema is returned unchanged."""
        class LogInput(BaseModel):
            max_count: int = Field(default=10, ge=1)

        assert compile_input_schema(CompiledSchema(LogInput), "git_log") is LogInput

    def test_unsupported_schema(self) -> None:
        """Anything else is a programming error."""
        with pytest.raises(TypeError, match="git_log"):
            compile_input_schema({"type": "object"}, "git_log")
