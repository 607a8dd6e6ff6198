"""
Pare - process execution and result normalization for CLI-wrapping tools.

Tool handlers that wrap developer CLIs (git, npm, cargo, linters) share
one runtime:

1. Argument shield: positional values cannot smuggle in flags, build
   commands come from an allowlist, and opt-in policies restrict commands
   and directories
2. Process runner: spawns without a shell, kills the whole process group
   on timeout or output overflow, and never leaves zombies behind
3. Output sanitizer: terminal control sequences are stripped and home
   paths redacted before output leaves the runtime
4. Error classifier: every failure lands in one closed set of categories
   with a recovery suggestion
5. Output shaper: each result carries text and structured data, and
   falls back to a compact form when the structured one costs more
   tokens than the raw output
"""

__version__ = "0.1.0"

from pare.config import PareConfig, PolicyConfig, RunnerConfig, SanitizeConfig
from pare.errors import (
    ClassifiedError,
    CommandFailedError,
    CommandNotFoundError,
    CommandPermissionError,
    CommandTimeoutError,
    ErrorCategory,
    InvalidInputError,
    MaxBufferExceededError,
    SpawnError,
    ToolError,
    classify_error,
    classify_exception,
    error_output,
    format_error,
    invalid_input_error,
)
from pare.output import (
    compact_dual_output,
    dual_output,
    estimate_tokens,
    shape,
    stripped_compact_dual_output,
    stripped_dual_output,
)
from pare.policy import (
    assert_allowed_by_policy,
    assert_allowed_root,
    assert_no_path_qualified_command,
)
from pare.runner import run, run_request
from pare.sanitize import sanitize, sanitize_error_output, strip_ansi
from pare.schemas import INPUT_LIMITS, CompiledSchema, RawShape, compile_input_schema
from pare.tools import Tool, ToolContext, ToolRegistry
from pare.types import EnvMode, ResourceUsage, RunRequest, RunResult
from pare.validation import (
    ALLOWED_BUILD_COMMANDS,
    assert_allowed_command,
    assert_no_flag_injection,
    assert_no_flag_injection_all,
    escape_cmd_arg,
)

__all__ = [
    "PareConfig",
    "RunnerConfig",
    "SanitizeConfig",
    "PolicyConfig",
    "RunRequest",
    "RunResult",
    "ResourceUsage",
    "EnvMode",
    "run",
    "run_request",
    "strip_ansi",
    "sanitize",
    "sanitize_error_output",
    "ALLOWED_BUILD_COMMANDS",
    "assert_no_flag_injection",
    "assert_no_flag_injection_all",
    "assert_allowed_command",
    "escape_cmd_arg",
    "assert_allowed_by_policy",
    "assert_allowed_root",
    "assert_no_path_qualified_command",
    "ErrorCategory",
    "ClassifiedError",
    "ToolError",
    "InvalidInputError",
    "SpawnError",
    "CommandNotFoundError",
    "CommandPermissionError",
    "CommandTimeoutError",
    "MaxBufferExceededError",
    "CommandFailedError",
    "classify_error",
    "classify_exception",
    "format_error",
    "error_output",
    "invalid_input_error",
    "estimate_tokens",
    "dual_output",
    "stripped_dual_output",
    "shape",
    "compact_dual_output",
    "stripped_compact_dual_output",
    "INPUT_LIMITS",
    "RawShape",
    "CompiledSchema",
    "compile_input_schema",
    "Tool",
    "ToolContext",
    "ToolRegistry",
]
