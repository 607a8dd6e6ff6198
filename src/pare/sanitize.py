"""
Output sanitization.

Two pure text transforms applied to everything captured from a child
process before any other component sees it:

- strip_ansi removes terminal control sequences (colour, cursor
  movement, OSC hyperlinks and titles)
- sanitize_error_output replaces home-directory paths with `~` so that
  local usernames do not reach an external caller

Always strip first: an escape sequence in the middle of a path hides the
path from the redaction patterns.
"""

import re

# OSC: ESC ] ... terminated by BEL or ST (ESC \). Covers hyperlinks and titles.
_OSC = r"\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)"
# CSI: ESC [ (or the 8-bit \x9b) params, intermediates, final byte.
_CSI = r"(?:\x1b\[|\x9b)[0-?]*[ -/]*[@-~]"
# Character set designation, e.g. ESC ( B.
_CHARSET = r"\x1b[()*+][0-9A-Za-z]"
# Remaining two-byte escapes (Fe and Fp/Fs), e.g. ESC 7, ESC M, ESC =.
_TWO_BYTE = r"\x1b[0-9=>@-Z\\^_`a-z{|}~]"

ANSI_PATTERN = re.compile("|".join((_OSC, _CSI, _CHARSET, _TWO_BYTE)))

HOME_MARKER = "~"
REDACTED_PATH = "<redacted-path>"

# Web URLs are matched first and kept, so https://host/home/x/ is not a
# home directory. Only a preceding . or ~ marks a path as relative; a flag
# (-I/home/x/), a list separator (a:/home/x/) or file:// does not.
_WEB_URL = r"(https?://[^\s'\"<>]*)"
_HOME_START = r"(?<![.~])"

_UNIX_HOME = re.compile(
    _WEB_URL + r"|" + _HOME_START + r"(?:/(?:home|Users)/[^/\s]+|/root)/"
)
# The username runs to the next backslash and may contain spaces.
_WINDOWS_HOME = re.compile(r"(?<![\w])[A-Za-z]:\\Users\\[^\\/:*?\"<>|\r\n]+\\")

# System paths are only rewritten at a clear path start.
_PATH_START = r"(?<![\w.~/\\:-])"

_UNIX_SYSTEM_PREFIXES = (
    "etc", "var", "opt", "usr", "tmp", "srv", "snap", "nix", "bin", "sbin",
    "lib", "lib64", "mnt", "media", "run", "proc", "sys", "dev", "boot",
    "private", "Library", "System", "Applications", "Volumes",
)
_UNIX_SYSTEM_PATH = re.compile(
    _PATH_START
    + r"/(?:" + "|".join(_UNIX_SYSTEM_PREFIXES) + r")"
    + r"(?:/[^/\s:'\"]+)*/([^/\s:'\"]+)"
)
_WINDOWS_SYSTEM_PATH = re.compile(
    r"(?<![\w])[A-Za-z]:\\(?:[^\\:'\"\r\n]+\\)*([^\\\s:'\"]+)"
)


def strip_ansi(text: str) -> str:
    """
    Remove terminal control sequences from text.

    Everything that is not part of an escape sequence is kept as-is,
    including non-ASCII characters and whitespace. Removal is repeated
    until nothing changes, so the result is stable under re-application
    even when stripping one sequence would join the halves of another.
    """
    if "\x1b" not in text and "\x9b" not in text:
        return text
    while True:
        stripped = ANSI_PATTERN.sub("", text)
        if stripped == text:
            return stripped
        text = stripped


def redact_home_paths(text: str) -> str:
    """Replace per-user home directory prefixes with `~`."""
    text = _UNIX_HOME.sub(lambda m: m.group(1) or HOME_MARKER + "/", text)
    return _WINDOWS_HOME.sub(HOME_MARKER + "\\\\", text)


def redact_system_paths(text: str) -> str:
    """Replace other absolute paths with a marker, keeping the last segment."""
    text = _UNIX_SYSTEM_PATH.sub(REDACTED_PATH + r"/\1", text)
    return _WINDOWS_SYSTEM_PATH.sub(REDACTED_PATH + r"\\\1", text)


def sanitize_error_output(text: str, redact_all_paths: bool = False) -> str:
    """
    Redact user-identifying paths from captured text.

    Home directories under /home, /Users, /root and C:\\Users lose their
    username segment. With redact_all_paths, remaining absolute paths are
    collapsed to `<redacted-path>/<last segment>`. Relative paths are
    never touched.
    """
    if not text:
        return text
    text = redact_home_paths(text)
    if redact_all_paths:
        text = redact_system_paths(text)
    return text


def sanitize(text: str, redact_all_paths: bool = False) -> str:
    """Strip control sequences, then redact paths."""
    return sanitize_error_output(strip_ansi(text), redact_all_paths)
