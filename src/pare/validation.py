"""
Argument validation and shell escaping.

Tools forward user-supplied values as positional CLI arguments. A value
such as "--output=/etc/passwd" would be read by the wrapped tool as an
option, so every positional value is checked before the command runs.
Commands for "run an arbitrary build tool" operations are restricted to
a fixed allowlist.

escape_cmd_arg prepares arguments for cmd.exe, which re-interprets
`% & | < > ^ !` in the command line it is given.
"""

import logging
import re
from collections.abc import Iterable

from pare.errors import InvalidInputError

logger = logging.getLogger(__name__)

ALLOWED_BUILD_COMMANDS = frozenset({
    "npm", "npx", "pnpm", "yarn", "bun", "bunx",
    "make", "cmake",
    "gradle", "gradlew", "mvn", "ant",
    "cargo", "go",
    "dotnet", "msbuild",
    "tsc", "esbuild", "vite", "webpack", "rollup", "turbo", "nx", "bazel",
})

_EXECUTABLE_SUFFIX = re.compile(r"\.(cmd|exe|bat|sh)$", re.IGNORECASE)


def assert_no_flag_injection(value: str, param_name: str) -> None:
    """
    Reject a positional value that the wrapped tool would parse as a flag.

    Leading whitespace is ignored when checking, since many tools trim it
    before parsing. A '-' anywhere else in the value is fine.

    Raises:
        InvalidInputError: If the value starts with '-'.
    """
    if value.lstrip().startswith("-"):
        raise InvalidInputError(
            f'Invalid {param_name}: "{value}". '
            'Values must not start with "-" to prevent argument injection.'
        )


def assert_no_flag_injection_all(values: Iterable[str], param_name: str) -> None:
    """Apply assert_no_flag_injection to every element of an array parameter."""
    for value in values:
        assert_no_flag_injection(value, param_name)


def command_basename(command: str) -> str:
    """Final path segment of a command, without executable suffix."""
    base = command.replace("\\", "/").rsplit("/", 1)[-1]
    return _EXECUTABLE_SUFFIX.sub("", base)


def is_path_qualified(command: str) -> bool:
    return "/" in command or "\\" in command


def assert_allowed_command(
    command: str,
    allowed: frozenset[str] = ALLOWED_BUILD_COMMANDS,
) -> None:
    """
    Ensure a command names one of the allowed build tools.

    Only the name is checked, so "/tmp/evil/npm" passes. A path-qualified
    command therefore logs a security warning.

    Raises:
        InvalidInputError: If the command is not in the allowlist.
    """
    base = command_basename(command).lower()
    if base not in allowed:
        raise InvalidInputError(
            f'Command "{command}" is not allowed. '
            f"Allowed: {', '.join(sorted(allowed))}"
        )
    if is_path_qualified(command):
        logger.warning(
            f"[pare:security] Command uses a full path ({command}). The allowlist only "
            f"checks the name {base!r}, not where the binary comes from."
        )


_CARET_ESCAPES = ("^", "&", "|", "<", ">", "!")
_NEEDS_QUOTES = re.compile(r'[ \t"]')
_NEWLINE = re.compile(r"\r?\n")


def escape_cmd_arg(arg: str, escape_percent: bool = True) -> str:
    """
    Escape one argument for a cmd.exe command line.

    Arguments containing spaces, tabs or double quotes are wrapped in
    double quotes (inside which cmd.exe treats `& | < > ^` literally):
    internal quotes are doubled and newlines collapse to a single space,
    since cmd.exe ends the command at a raw newline even inside quotes.
    Other arguments get a caret before each metacharacter.

    `%` is doubled only when escape_percent is set. Call sites that pass
    format strings to tools with their own `%` syntax (git log
    --format=%H) must pass False, or the format string reaches the tool
    as `%%H`.
    """
    escaped = arg.replace("%", "%%") if escape_percent else arg

    if _NEEDS_QUOTES.search(arg):
        escaped = _NEWLINE.sub(" ", escaped)
        escaped = escaped.replace('"', '""')
        return f'"{escaped}"'

    # Caret first, so inserted carets are not escaped again.
    for char in _CARET_ESCAPES:
        escaped = escaped.replace(char, "^" + char)
    return escaped
