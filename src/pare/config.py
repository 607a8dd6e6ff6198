"""
Configuration for the process runtime.

All configuration is loaded from environment variables. The combined
PareConfig is built once when a server starts and is passed explicitly
to the components that need it (usually through a ToolContext). Nothing
here is cached at module level: to pick up changed variables, build a
new config, or call ToolContext.reload_config().
"""

import os
from collections.abc import Mapping
from dataclasses import dataclass, field

from pare.types import DEFAULT_MAX_BUFFER, DEFAULT_TIMEOUT


def _env_flag(environ: Mapping[str, str], name: str) -> bool:
    return environ.get(name, "").strip().lower() == "true"


@dataclass(frozen=True)
class RunnerConfig:
    """Process-wide defaults for the runner, overridable per call."""
    default_timeout: float = DEFAULT_TIMEOUT
    max_buffer: int = DEFAULT_MAX_BUFFER
    # How long to wait for pipes to drain after the process group is killed.
    kill_drain_timeout: float = 5.0

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "RunnerConfig":
        """Load configuration from environment variables."""
        environ = os.environ if environ is None else environ
        return cls(
            default_timeout=float(environ.get("PARE_RUN_TIMEOUT", str(DEFAULT_TIMEOUT))),
            max_buffer=int(environ.get("PARE_MAX_BUFFER", str(DEFAULT_MAX_BUFFER))),
            kill_drain_timeout=float(environ.get("PARE_KILL_DRAIN_TIMEOUT", "5.0")),
        )


@dataclass(frozen=True)
class SanitizeConfig:
    """
    Configuration for output sanitization.

    Home directories are always redacted. redact_all_paths additionally
    replaces other absolute system paths, keeping only the last segment.
    """
    redact_all_paths: bool = False

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "SanitizeConfig":
        """Load configuration from environment variables."""
        environ = os.environ if environ is None else environ
        return cls(redact_all_paths=_env_flag(environ, "PARE_SANITIZE_ALL_PATHS"))


@dataclass(frozen=True)
class PolicyConfig:
    """
    Snapshot of the security policy variables.

    Policy settings follow a global/per-server precedence:
    PARE_<SETTING> applies to every server and wins over
    PARE_<SERVER>_<SETTING>. An unset variable means no restriction.
    """
    values: Mapping[str, str] = field(default_factory=dict)
    build_strict_path: bool = False

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "PolicyConfig":
        """Load configuration from environment variables."""
        environ = os.environ if environ is None else environ
        return cls(
            values={k: v for k, v in environ.items() if k.startswith("PARE_")},
            build_strict_path=_env_flag(environ, "PARE_BUILD_STRICT_PATH"),
        )

    def lookup(self, server_name: str, setting: str) -> str | None:
        """Read a policy setting, global first, then per-server."""
        global_value = self.values.get(f"PARE_{setting}")
        if global_value is not None:
            return global_value
        server_key = server_name.upper().replace("-", "_")
        return self.values.get(f"PARE_{server_key}_{setting}")


@dataclass(frozen=True)
class PareConfig:
    """Combined configuration for the whole runtime."""
    runner: RunnerConfig = field(default_factory=RunnerConfig)
    sanitize: SanitizeConfig = field(default_factory=SanitizeConfig)
    policy: PolicyConfig = field(default_factory=PolicyConfig)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "PareConfig":
        """Load all configuration from environment variables."""
        return cls(
            runner=RunnerConfig.from_env(environ),
            sanitize=SanitizeConfig.from_env(environ),
            policy=PolicyConfig.from_env(environ),
        )
