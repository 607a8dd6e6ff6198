"""
Error taxonomy and classification.

Every failure a tool reports falls into one ErrorCategory, so an agent can
branch on the category instead of parsing free text. Two kinds of failure
feed into it:

- a command that ran and exited non-zero: its RunResult goes through
  classify_error, which matches the captured text against ordered patterns
- the runtime failing to complete the run at all (spawn failure, timeout,
  output overflow) or input rejected before spawning: these are raised as
  ToolError subclasses, which carry their own category and go through
  classify_exception

Either way the result is a ClassifiedError, rendered for the protocol layer
by error_output.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from mcp.types import CallToolResult, TextContent

from pare.sanitize import sanitize
from pare.types import RunResult

TIMEOUT_EXIT_CODE = 124  # exit status of timeout(1)


class ErrorCategory(str, Enum):
    """Closed set of failure categories. Extend by adding, never by reusing."""

    COMMAND_NOT_FOUND = "command-not-found"  # CLI not installed or not on PATH
    PERMISSION_DENIED = "permission-denied"  # OS/filesystem permissions
    TIMEOUT = "timeout"  # exceeded its time limit
    INVALID_INPUT = "invalid-input"  # rejected before spawning
    NOT_FOUND = "not-found"  # requested resource does not exist
    NETWORK_ERROR = "network-error"  # connectivity / DNS
    AUTHENTICATION_ERROR = "authentication-error"  # credentials
    CONFLICT = "conflict"  # merge conflict, lock contention
    CONFIGURATION_ERROR = "configuration-error"  # missing or invalid config
    ALREADY_EXISTS = "already-exists"
    COMMAND_FAILED = "command-failed"  # catch-all


# ---------------------------------------------------------------------------
# Raised runtime errors
# ---------------------------------------------------------------------------


class ToolError(Exception):
    """Base class for failures raised instead of returning a RunResult."""

    category: ErrorCategory = ErrorCategory.COMMAND_FAILED

    def __init__(self, message: str, command: str | None = None):
        super().__init__(message)
        self.message = message
        self.command = command


class InvalidInputError(ToolError, ValueError):
    """Input rejected before any process was spawned."""

    category = ErrorCategory.INVALID_INPUT


class SpawnError(ToolError, OSError):
    """The operating system could not start the command."""


class CommandNotFoundError(SpawnError):
    category = ErrorCategory.COMMAND_NOT_FOUND


class CommandPermissionError(SpawnError):
    category = ErrorCategory.PERMISSION_DENIED


class CommandTimeoutError(ToolError, TimeoutError):
    """The command outlived its timeout and its process group was killed."""

    category = ErrorCategory.TIMEOUT

    def __init__(
        self,
        message: str,
        command: str | None = None,
        timeout: float = 0.0,
        elapsed: float = 0.0,
        signal_name: str = "",
    ):
        super().__init__(message, command)
        self.timeout = timeout
        self.elapsed = elapsed
        self.signal_name = signal_name


class MaxBufferExceededError(ToolError):
    """Captured output grew past max_buffer and the process group was killed."""

    def __init__(
        self,
        message: str,
        command: str | None = None,
        max_buffer: int = 0,
        signal_name: str = "",
    ):
        super().__init__(message, command)
        self.max_buffer = max_buffer
        self.signal_name = signal_name


class CommandFailedError(ToolError):
    """
    A command ran to completion but exited non-zero.

    Raised by ToolContext.run_checked so a handler can stop at the first
    failed command; the classification is done once, at raise time.
    """

    def __init__(self, error: ClassifiedError):
        super().__init__(error.message, error.command)
        self.error = error
        self.category = error.category


# ---------------------------------------------------------------------------
# Structured error object
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ClassifiedError:
    """A normalized failure, derived once from a RunResult or a raised error."""

    category: ErrorCategory
    message: str
    command: str | None = None
    exit_code: int | None = None
    suggestion: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Wire form for structured tool output."""
        data: dict[str, Any] = {
            "isError": True,
            "category": self.category.value,
            "message": self.message,
        }
        if self.command is not None:
            data["command"] = self.command
        if self.exit_code is not None:
            data["exitCode"] = self.exit_code
        if self.suggestion is not None:
            data["suggestion"] = self.suggestion
        return data


# ---------------------------------------------------------------------------
# Pattern matchers
# ---------------------------------------------------------------------------


def _contains_any(text: str, needles: tuple[str, ...]) -> bool:
    lower = text.lower()
    return any(needle in lower for needle in needles)


def is_timeout(text: str) -> bool:
    return _contains_any(text, ("timed out", "timeout"))


def is_command_not_found(text: str) -> bool:
    return _contains_any(text, (
        "command not found",
        "not recognized",
        "enoent",
        "no such file or directory",
    ))


_HTTP_AUTH_STATUS = re.compile(r" 40[13][ :]")


def is_auth_error(text: str) -> bool:
    if _HTTP_AUTH_STATUS.search(text):
        return True
    return _contains_any(text, (
        "authentication",
        "authenticated",
        "credential",
        "unauthorized",
        "permission denied (publickey",
        "invalid credentials",
        "bad credentials",
        "login required",
    ))


def is_permission_denied(text: str) -> bool:
    return _contains_any(text, (
        "permission denied",
        "eacces",
        "eperm",
        "access denied",
        "operation not permitted",
    ))


def is_network_error(text: str) -> bool:
    return _contains_any(text, (
        "connection refused",
        "econnrefused",
        "etimedout",
        "econnreset",
        "enetunreach",
        "could not resolve host",
        "network is unreachable",
        "dns resolution failed",
    ))


def is_already_exists(text: str) -> bool:
    return _contains_any(text, ("already exists", "already exist"))


def is_configuration_error(text: str) -> bool:
    return _contains_any(text, (
        "missing config",
        "configuration error",
        "config file not found",
        "invalid configuration",
        "no configuration",
        ".eslintrc",
        "tsconfig",
        "could not read config",
    ))


def is_conflict(text: str) -> bool:
    return _contains_any(text, ("conflict", "lock file", "locked"))


_HTTP_NOT_FOUND = re.compile(r" 404[ :]")


def is_not_found(text: str) -> bool:
    if _HTTP_NOT_FOUND.search(text):
        return True
    return _contains_any(text, (
        "not found",
        "does not exist",
        "no such",
        "unknown revision",
        "pathspec",
    ))


# Most specific first. Auth precedes permission because ssh reports
# "Permission denied (publickey)"; conflict precedes not-found because
# conflict messages often name missing paths.
_CLASSIFIERS: tuple[tuple[Callable[[str], bool], ErrorCategory], ...] = (
    (is_command_not_found, ErrorCategory.COMMAND_NOT_FOUND),
    (is_auth_error, ErrorCategory.AUTHENTICATION_ERROR),
    (is_permission_denied, ErrorCategory.PERMISSION_DENIED),
    (is_network_error, ErrorCategory.NETWORK_ERROR),
    (is_already_exists, ErrorCategory.ALREADY_EXISTS),
    (is_configuration_error, ErrorCategory.CONFIGURATION_ERROR),
    (is_conflict, ErrorCategory.CONFLICT),
    (is_not_found, ErrorCategory.NOT_FOUND),
)


def classify_text(text: str, exit_code: int) -> ErrorCategory:
    """Pick the first matching category for failure text and exit code."""
    if exit_code == TIMEOUT_EXIT_CODE or is_timeout(text):
        return ErrorCategory.TIMEOUT
    for matches, category in _CLASSIFIERS:
        if matches(text):
            return category
    return ErrorCategory.COMMAND_FAILED


# ---------------------------------------------------------------------------
# Suggestions
# ---------------------------------------------------------------------------

_SUGGESTIONS: dict[ErrorCategory, Callable[[str], str]] = {
    ErrorCategory.COMMAND_NOT_FOUND:
        lambda cmd: f'Ensure "{cmd}" is installed and available in your PATH.',
    ErrorCategory.PERMISSION_DENIED:
        lambda cmd: "Check file/directory permissions or run with elevated privileges.",
    ErrorCategory.TIMEOUT:
        lambda cmd: "The command took too long. Retry with a longer timeout or a smaller scope.",
    ErrorCategory.INVALID_INPUT:
        lambda cmd: "Check the input parameters and try again.",
    ErrorCategory.NOT_FOUND:
        lambda cmd: "Verify the resource (file, branch, ref, etc.) exists.",
    ErrorCategory.NETWORK_ERROR:
        lambda cmd: "Check your network connection and try again.",
    ErrorCategory.AUTHENTICATION_ERROR:
        lambda cmd: "Verify your credentials or tokens are valid and not expired.",
    ErrorCategory.CONFLICT:
        lambda cmd: "Resolve the conflict or release the lock and retry.",
    ErrorCategory.CONFIGURATION_ERROR:
        lambda cmd: "Check that all required config files exist and are valid.",
    ErrorCategory.ALREADY_EXISTS:
        lambda cmd: "The resource already exists. Use a different name or remove it first.",
    ErrorCategory.COMMAND_FAILED:
        lambda cmd: f'Inspect the error message from "{cmd}" for more details.',
}


def suggest_recovery(category: ErrorCategory, command: str) -> str:
    return _SUGGESTIONS[category](command)


# ---------------------------------------------------------------------------
# Classifiers
# ---------------------------------------------------------------------------


def classify_error(result: RunResult, command: str) -> ClassifiedError:
    """
    Classify a failed RunResult.

    stderr is inspected, falling back to stdout when stderr is empty. When
    both are empty the message is synthesized from the exit code so that a
    failure is never reported with a blank message.

    Args:
        result: The RunResult returned by the runner.
        command: Human-readable label for the command, e.g. "git tag".
    """
    text = result.stderr or result.stdout
    category = classify_text(text, result.exit_code)
    return ClassifiedError(
        category=category,
        message=text.strip() or f"{command} failed with exit code {result.exit_code}",
        command=command,
        exit_code=result.exit_code,
        suggestion=suggest_recovery(category, command),
    )


def classify_exception(
    exc: BaseException,
    command: str,
    redact_all_paths: bool = False,
) -> ClassifiedError:
    """
    Classify an exception raised while running a command.

    ToolError subclasses carry their category. Anything else is classified
    from its text. The message is sanitized either way, so internal paths
    and terminal noise from the exception never reach the caller.
    """
    if isinstance(exc, CommandFailedError):
        return exc.error
    message = sanitize(str(exc), redact_all_paths).strip() or type(exc).__name__
    if isinstance(exc, ToolError):
        category = exc.category
    else:
        category = classify_text(message, 1)
    exit_code = TIMEOUT_EXIT_CODE if category is ErrorCategory.TIMEOUT else None
    return ClassifiedError(
        category=category,
        message=message,
        command=command,
        exit_code=exit_code,
        suggestion=suggest_recovery(category, command),
    )


# ---------------------------------------------------------------------------
# Protocol output
# ---------------------------------------------------------------------------


def format_error(error: ClassifiedError) -> str:
    """Human-readable rendering of a ClassifiedError."""
    lines = [f"Error [{error.category.value}]: {error.message}"]
    if error.command:
        lines.append(f"Command: {error.command}")
    if error.exit_code is not None:
        lines.append(f"Exit code: {error.exit_code}")
    if error.suggestion:
        lines.append(f"Suggestion: {error.suggestion}")
    return "\n".join(lines)


def error_output(error: ClassifiedError) -> CallToolResult:
    """Dual text/structured tool result flagged as an error."""
    return CallToolResult(
        content=[TextContent(type="text", text=format_error(error))],
        structuredContent=error.to_dict(),
        isError=True,
    )


def invalid_input_error(message: str) -> CallToolResult:
    """Error result for input rejected before the command was invoked."""
    return error_output(ClassifiedError(
        category=ErrorCategory.INVALID_INPUT,
        message=message,
        suggestion=suggest_recovery(ErrorCategory.INVALID_INPUT, ""),
    ))
