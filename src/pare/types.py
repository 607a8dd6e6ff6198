"""
Core types for the process runtime.

These are the values that cross component boundaries: a RunRequest goes
into the runner, a RunResult comes out. Both are immutable so that a
request can be shared across tasks and a result handed to the caller
without defensive copies.
"""

import sys
from dataclasses import dataclass, field
from enum import Enum

DEFAULT_TIMEOUT = 60.0
DEFAULT_MAX_BUFFER = 10 * 1024 * 1024


class EnvMode(str, Enum):
    """How environment overrides combine with the parent environment."""
    MERGE = "merge"
    REPLACE = "replace"


@dataclass(frozen=True)
class RunRequest:
    """
    A single invocation of an external command.

    `timeout` is in seconds and `max_buffer` counts the combined bytes of
    stdout and stderr. `shell` selects the platform shell layer, which is
    only needed on Windows to launch .cmd/.bat wrappers; when it is on,
    every argument is escaped for cmd.exe. `escape_percent` controls
    whether `%` is doubled during that escaping.
    """
    command: str
    args: tuple[str, ...] = ()
    cwd: str | None = None
    env: dict[str, str] | None = None
    env_mode: EnvMode = EnvMode.MERGE
    stdin: str | None = None
    timeout: float = DEFAULT_TIMEOUT
    max_buffer: int = DEFAULT_MAX_BUFFER
    shell: bool = field(default_factory=lambda: sys.platform == "win32")
    escape_percent: bool = True

    def __post_init__(self) -> None:
        if not self.command:
            raise ValueError("command must be a non-empty string")
        if self.timeout <= 0:
            raise ValueError(f"timeout must be positive, got {self.timeout}")
        if self.max_buffer <= 0:
            raise ValueError(f"max_buffer must be positive, got {self.max_buffer}")
        # Accept any sequence but store a tuple so the request stays hashable.
        object.__setattr__(self, "args", tuple(self.args))


@dataclass(frozen=True)
class ResourceUsage:
    """CPU time consumed by the child, in seconds."""
    user_time: float
    system_time: float

    def to_dict(self) -> dict[str, float]:
        return {"userTime": self.user_time, "systemTime": self.system_time}


@dataclass(frozen=True)
class RunResult:
    """
    Normalized outcome of a command that ran to completion.

    stdout has terminal control sequences stripped; stderr additionally
    has home-directory paths redacted. A non-zero exit_code is ordinary
    data here, not an error.
    """
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    usage: ResourceUsage | None = None
    duration: float = 0.0

    @property
    def ok(self) -> bool:
        return self.exit_code == 0
