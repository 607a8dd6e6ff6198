"""
Process Runner - executes external commands for tool handlers.

Every wrapped CLI invocation goes through run()/run_request(). The runner:

- spawns the command without a shell (except on Windows, where .cmd/.bat
  wrappers need cmd.exe and every argument is escaped for it)
- makes the child the leader of its own process group, so a kill reaches
  grandchildren too
- feeds optional stdin and closes it; without stdin the child reads
  /dev/null and can never block on interactive input
- captures stdout/stderr incrementally, bounded by max_buffer
- arms one timer per run and kills the whole group when it fires
- returns only once both pipes are drained and the process is reaped

Timeouts, overflows and spawn failures are raised as ToolError subclasses.
A non-zero exit from a command that ran to completion is returned as data.

Lifecycle of one run:

    SPAWNING -> RUNNING -> CLOSED        (pipes drained, process reaped)
                        -> KILLED        (timeout, max_buffer, aborted)
             -> SPAWN_FAILED

The terminal Outcome is assigned once. Whichever event gets there first
wins; later events from the dead process are ignored.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import shlex
import signal
import subprocess
import sys
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

from pare.config import PareConfig
from pare.errors import (
    CommandNotFoundError,
    CommandPermissionError,
    CommandTimeoutError,
    MaxBufferExceededError,
    SpawnError,
    ToolError,
)
from pare.sanitize import sanitize_error_output, strip_ansi
from pare.types import EnvMode, ResourceUsage, RunRequest, RunResult
from pare.validation import escape_cmd_arg

IS_WINDOWS = sys.platform == "win32"

if not IS_WINDOWS:
    import resource

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 64 * 1024
KILL_SIGNAL_NAME = "taskkill /T /F" if IS_WINDOWS else "SIGKILL"


class ProcessState(Enum):
    """Lifecycle states of a single run."""
    SPAWNING = "spawning"
    RUNNING = "running"
    CLOSED = "closed"
    KILLED = "killed"
    SPAWN_FAILED = "spawn_failed"


class KillReason(Enum):
    TIMEOUT = "timeout"
    MAX_BUFFER = "max_buffer"
    # Cancellation of the awaiting task or an internal failure while waiting.
    ABORTED = "aborted"


@dataclass(frozen=True)
class Completed:
    exit_code: int


@dataclass(frozen=True)
class Killed:
    reason: KillReason
    signal_name: str
    elapsed: float


@dataclass(frozen=True)
class SpawnFailed:
    error: ToolError


Outcome = Completed | Killed | SpawnFailed

_TERMINAL_STATES = {
    Completed: ProcessState.CLOSED,
    Killed: ProcessState.KILLED,
    SpawnFailed: ProcessState.SPAWN_FAILED,
}


def _format_seconds(seconds: float) -> str:
    return f"{seconds:g}s"


def _children_cpu_times() -> tuple[float, float] | None:
    if IS_WINDOWS:
        return None
    usage = resource.getrusage(resource.RUSAGE_CHILDREN)
    return usage.ru_utime, usage.ru_stime


def kill_process_group(process: asyncio.subprocess.Process) -> None:
    """
    Kill a child and every process in its group.

    POSIX uses killpg on the group the child leads. Windows has no group
    kill primitive, so `taskkill /T /F` is started and left to run.
    """
    if IS_WINDOWS:
        try:
            subprocess.Popen(
                ["taskkill", "/pid", str(process.pid), "/T", "/F"],
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
        except OSError as e:
            logger.warning(f"taskkill unavailable ({e}), killing pid {process.pid} only")
            with contextlib.suppress(ProcessLookupError):
                process.kill()
        return

    try:
        os.killpg(process.pid, signal.SIGKILL)
    except ProcessLookupError:
        # Group already gone.
        pass
    except PermissionError:
        # macOS reports EPERM for a group made only of zombies.
        with contextlib.suppress(ProcessLookupError):
            process.kill()


class _Execution:
    """One run of one RunRequest. Not reusable."""

    def __init__(self, request: RunRequest, config: PareConfig):
        self.request = request
        self.config = config
        self.state = ProcessState.SPAWNING
        self._outcome: Outcome | None = None
        self._process: asyncio.subprocess.Process | None = None
        self._stdout = bytearray()
        self._stderr = bytearray()
        self._captured = 0
        self._started = 0.0
        self._killed = asyncio.Event()

    # -- state machine -----------------------------------------------------

    @property
    def outcome(self) -> Outcome | None:
        return self._outcome

    def settle(self, outcome: Outcome) -> bool:
        """Record the terminal outcome. Returns False if one was already set."""
        if self._outcome is not None:
            logger.debug(
                f"{self.request.command}: ignoring {type(outcome).__name__} "
                f"after {self.state.value}"
            )
            return False
        self._outcome = outcome
        self._transition(_TERMINAL_STATES[type(outcome)])
        return True

    def _transition(self, state: ProcessState) -> None:
        logger.debug(f"{self.request.command}: {self.state.value} -> {state.value}")
        self.state = state

    # -- helpers -------------------------------------------------------------

    def _clean(self, message: str) -> str:
        return sanitize_error_output(message, self.config.sanitize.redact_all_paths)

    def _build_env(self) -> dict[str, str] | None:
        overrides = self.request.env
        if self.request.env_mode is EnvMode.REPLACE:
            return dict(overrides or {})
        if not overrides:
            return None
        return {**os.environ, **overrides}

    def _group_kwargs(self) -> dict[str, Any]:
        if IS_WINDOWS:
            return {"creationflags": subprocess.CREATE_NEW_PROCESS_GROUP}
        return {"start_new_session": True}

    def _command_line(self) -> str:
        request = self.request
        if IS_WINDOWS:
            args = [escape_cmd_arg(a, request.escape_percent) for a in request.args]
            return " ".join([request.command, *args])
        return shlex.join([request.command, *request.args])

    def _spawn_error(self, exc: OSError) -> ToolError:
        command = self.request.command
        cwd = self.request.cwd
        if isinstance(exc, (FileNotFoundError, NotADirectoryError)):
            if cwd is not None and not os.path.isdir(cwd):
                return SpawnError(
                    self._clean(f'Working directory does not exist: "{cwd}"'), command
                )
            return CommandNotFoundError(
                self._clean(
                    f'Command not found: "{command}". '
                    "Ensure it is installed and available in your PATH."
                ),
                command,
            )
        if isinstance(exc, PermissionError):
            return CommandPermissionError(
                self._clean(f'Permission denied executing "{command}": {exc.strerror or exc}'),
                command,
            )
        return SpawnError(self._clean(f'Failed to start "{command}": {exc}'), command)

    # -- lifecycle -----------------------------------------------------------

    async def _spawn(self) -> asyncio.subprocess.Process:
        request = self.request
        common: dict[str, Any] = {
            "stdin": asyncio.subprocess.PIPE if request.stdin is not None else asyncio.subprocess.DEVNULL,
            "stdout": asyncio.subprocess.PIPE,
            "stderr": asyncio.subprocess.PIPE,
            "cwd": request.cwd,
            "env": self._build_env(),
            **self._group_kwargs(),
        }
        try:
            if request.shell:
                process = await asyncio.create_subprocess_shell(self._command_line(), **common)
            else:
                process = await asyncio.create_subprocess_exec(
                    request.command, *request.args, **common
                )
        except OSError as exc:
            error = self._spawn_error(exc)
            self.settle(SpawnFailed(error))
            raise error from exc

        self._process = process
        self._started = time.monotonic()
        self._transition(ProcessState.RUNNING)
        logger.debug(f"Spawned {request.command} (pid {process.pid})")
        return process

    def _kill(self, reason: KillReason) -> None:
        elapsed = time.monotonic() - self._started
        if not self.settle(Killed(reason, KILL_SIGNAL_NAME, elapsed)):
            return
        pid = self._process.pid if self._process else None
        logger.warning(
            f"Killing process group of {self.request.command} (pid {pid}) "
            f"after {_format_seconds(round(elapsed, 3))}: {reason.value}"
        )
        self._killed.set()
        if self._process is not None:
            kill_process_group(self._process)

    def _on_timeout(self) -> None:
        self._kill(KillReason.TIMEOUT)

    async def _pump(self, stream: asyncio.StreamReader, sink: bytearray) -> None:
        while True:
            chunk = await stream.read(READ_CHUNK_SIZE)
            if not chunk:
                return
            if self._outcome is not None:
                # Killed: keep draining so the pipe closes, but keep nothing.
                continue
            self._captured += len(chunk)
            if self._captured > self.request.max_buffer:
                self._kill(KillReason.MAX_BUFFER)
                continue
            sink.extend(chunk)

    async def _feed_stdin(self, stream: asyncio.StreamWriter, data: str) -> None:
        try:
            stream.write(data.encode("utf-8"))
            await stream.drain()
        except (BrokenPipeError, ConnectionResetError):
            # The child exited without reading all of its input.
            logger.debug(f"{self.request.command} closed stdin early")
        finally:
            stream.close()

    async def _drain(self, pumps: asyncio.Future) -> None:
        """Wait for both pipes to close, bounded once the group was killed."""
        killed = asyncio.ensure_future(self._killed.wait())
        try:
            await asyncio.wait({pumps, killed}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            killed.cancel()
        if pumps.done():
            pumps.result()
            return
        try:
            await asyncio.wait_for(pumps, self.config.runner.kill_drain_timeout)
        except TimeoutError:
            # A descendant left the process group and still holds the pipe.
            logger.warning(
                f"{self.request.command}: output pipes still open "
                f"{_format_seconds(self.config.runner.kill_drain_timeout)} after kill, abandoning them"
            )

    async def execute(self) -> RunResult:
        request = self.request
        cpu_before = _children_cpu_times()
        loop = asyncio.get_running_loop()
        timer = pumps = writer = None

        # A cancellation at any await once the child exists kills its group.
        try:
            process = await self._spawn()
            timer = loop.call_later(request.timeout, self._on_timeout)
            pumps = asyncio.gather(
                self._pump(process.stdout, self._stdout),
                self._pump(process.stderr, self._stderr),
            )
            if request.stdin is not None:
                writer = asyncio.ensure_future(self._feed_stdin(process.stdin, request.stdin))

            await self._drain(pumps)
            returncode = await process.wait()
        except BaseException:
            if self._process is not None:
                self._kill(KillReason.ABORTED)
            if pumps is not None:
                pumps.cancel()
            raise
        finally:
            if timer is not None:
                timer.cancel()
            if writer is not None and not writer.done():
                writer.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await writer

        duration = time.monotonic() - self._started
        # Signal deaths are reported the way a shell would: 128 + signum.
        exit_code = returncode if returncode >= 0 else 128 - returncode
        self.settle(Completed(exit_code))

        outcome = self._outcome
        if isinstance(outcome, Killed):
            raise self._killed_error(outcome)
        return self._build_result(exit_code, duration, cpu_before)

    # -- results -------------------------------------------------------------

    def _killed_error(self, outcome: Killed) -> ToolError:
        request = self.request
        if outcome.reason is KillReason.MAX_BUFFER:
            return MaxBufferExceededError(
                self._clean(
                    f'Command "{request.command}" exceeded max_buffer of '
                    f"{request.max_buffer} bytes and was killed ({outcome.signal_name})."
                ),
                request.command,
                max_buffer=request.max_buffer,
                signal_name=outcome.signal_name,
            )
        return CommandTimeoutError(
            self._clean(
                f'Command "{request.command}" timed out after '
                f"{_format_seconds(request.timeout)} "
                f"(elapsed {_format_seconds(round(outcome.elapsed, 3))}) "
                f"and was killed ({outcome.signal_name})."
            ),
            request.command,
            timeout=request.timeout,
            elapsed=outcome.elapsed,
            signal_name=outcome.signal_name,
        )

    def _build_result(
        self,
        exit_code: int,
        duration: float,
        cpu_before: tuple[float, float] | None,
    ) -> RunResult:
        redact_all = self.config.sanitize.redact_all_paths
        stdout = strip_ansi(self._stdout.decode("utf-8", errors="replace"))
        stderr = sanitize_error_output(
            strip_ansi(self._stderr.decode("utf-8", errors="replace")), redact_all
        )

        # cmd.exe masks a missing binary as an ordinary failure.
        if self.request.shell and IS_WINDOWS and exit_code != 0 and "is not recognized" in stderr:
            raise CommandNotFoundError(
                self._clean(
                    f'Command not found: "{self.request.command}". '
                    "Ensure it is installed and available in your PATH."
                ),
                self.request.command,
            )

        usage = None
        cpu_after = _children_cpu_times()
        if cpu_before is not None and cpu_after is not None:
            # RUSAGE_CHILDREN is process-wide: overlapping runs share the delta.
            user = cpu_after[0] - cpu_before[0]
            system = cpu_after[1] - cpu_before[1]
            if user >= 0 and system >= 0:
                usage = ResourceUsage(user_time=user, system_time=system)

        return RunResult(
            exit_code=exit_code,
            stdout=stdout,
            stderr=stderr,
            usage=usage,
            duration=duration,
        )


async def run_request(request: RunRequest, config: PareConfig | None = None) -> RunResult:
    """
    Execute a RunRequest.

    Raises:
        CommandNotFoundError: The binary does not exist.
        CommandPermissionError: The binary is not executable.
        SpawnError: Any other failure to start, e.g. a missing cwd.
        CommandTimeoutError: The timeout fired; the process group was killed.
        MaxBufferExceededError: Output exceeded max_buffer; the group was killed.
    """
    return await _Execution(request, config or PareConfig.from_env()).execute()


async def run(
    command: str,
    args: Sequence[str] = (),
    *,
    cwd: str | os.PathLike[str] | None = None,
    env: Mapping[str, str] | None = None,
    env_mode: EnvMode = EnvMode.MERGE,
    stdin: str | None = None,
    timeout: float | None = None,
    max_buffer: int | None = None,
    shell: bool | None = None,
    escape_percent: bool = True,
    config: PareConfig | None = None,
) -> RunResult:
    """
    Run a command and return its sanitized output.

    Args:
        command: Executable name or path.
        args: Arguments, passed as an argv list (never through a shell on POSIX).
        cwd: Working directory.
        env: Environment overrides, merged into or replacing os.environ per env_mode.
        stdin: Text written to the child's stdin, which is then closed.
        timeout: Seconds before the process group is killed (config default).
        max_buffer: Max combined stdout+stderr bytes (config default).
        shell: Use the platform shell; defaults to True on Windows only.
        escape_percent: Double `%` when escaping for cmd.exe.
        config: Runtime configuration; read from the environment if omitted.

    Returns:
        RunResult. A non-zero exit code is returned, not raised.
    """
    config = config or PareConfig.from_env()
    request = RunRequest(
        command=command,
        args=tuple(args),
        cwd=os.fspath(cwd) if cwd is not None else None,
        env=dict(env) if env is not None else None,
        env_mode=env_mode,
        stdin=stdin,
        timeout=timeout if timeout is not None else config.runner.default_timeout,
        max_buffer=max_buffer if max_buffer is not None else config.runner.max_buffer,
        shell=IS_WINDOWS if shell is None else shell,
        escape_percent=escape_percent,
    )
    return await run_request(request, config)
