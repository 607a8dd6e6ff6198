"""
Opt-in security policy controls.

Settings follow a global/per-server precedence:

1. PARE_<SETTING>: global, applies to all servers
2. PARE_<SERVER>_<SETTING>: per-server override
3. neither set: no restriction

Global wins over per-server when both are set.

PARE_ALLOWED_COMMANDS / PARE_<SERVER>_ALLOWED_COMMANDS
    Comma-separated command names that may be executed.
PARE_ALLOWED_ROOTS / PARE_<SERVER>_ALLOWED_ROOTS
    Comma-separated directories; path and cwd parameters must be inside one.
PARE_BUILD_STRICT_PATH
    "true" rejects path-qualified commands such as /tmp/evil/npm.
"""

import logging
import os

from pare.config import PolicyConfig
from pare.errors import InvalidInputError
from pare.validation import command_basename, is_path_qualified

logger = logging.getLogger(__name__)


def _parse_list(raw: str | None) -> list[str] | None:
    if raw is None or not raw.strip():
        return None
    items = [item.strip() for item in raw.split(",")]
    return [item for item in items if item]


def assert_allowed_by_policy(
    command: str,
    server_name: str,
    config: PolicyConfig | None = None,
) -> None:
    """
    Ensure a command passes the ALLOWED_COMMANDS policy.

    Matches either the bare name (with .cmd/.exe/.bat/.sh stripped) or the
    command exactly as given. No-op when no policy is configured.
    """
    config = config or PolicyConfig.from_env()
    allowed = _parse_list(config.lookup(server_name, "ALLOWED_COMMANDS"))
    if allowed is None:
        return
    if command_basename(command) in allowed or command in allowed:
        return
    raise InvalidInputError(
        f'Command "{command}" is not allowed by ALLOWED_COMMANDS policy. '
        f"Allowed: {', '.join(sorted(set(allowed)))}"
    )


def _is_within(target: str, root: str) -> bool:
    return target == root or target.startswith(root.rstrip(os.sep) + os.sep)


def assert_allowed_root(
    target_path: str,
    server_name: str,
    config: PolicyConfig | None = None,
) -> None:
    """
    Ensure a path or working directory lies under an allowed root.

    Both sides are made absolute and normalized first, so `..` segments
    cannot climb out of a root. No-op when no policy is configured.
    """
    config = config or PolicyConfig.from_env()
    roots = _parse_list(config.lookup(server_name, "ALLOWED_ROOTS"))
    if roots is None:
        return
    target = os.path.normpath(os.path.abspath(target_path))
    for root in roots:
        if _is_within(target, os.path.normpath(os.path.abspath(root))):
            return
    logger.debug(f"Rejected path {target} for server {server_name}")
    raise InvalidInputError(
        f'Path "{target_path}" is outside allowed roots. '
        f"Allowed roots: {', '.join(roots)}"
    )


def assert_no_path_qualified_command(
    command: str,
    config: PolicyConfig | None = None,
) -> None:
    """Reject commands containing a path separator when strict path mode is on."""
    config = config or PolicyConfig.from_env()
    if config.build_strict_path and is_path_qualified(command):
        raise InvalidInputError(
            "Path-qualified commands are not allowed when PARE_BUILD_STRICT_PATH "
            f'is enabled. Use a bare command name (e.g., "npm" not "{command}") '
            "that resolves via PATH."
        )
