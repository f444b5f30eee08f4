"""External command execution for pipeline stages.

This module handles:
- Executing tool invocations (apt, git, cmake, make, cpack) with subprocess
- Capturing stdout/stderr to per-stage log files
- Enforcing per-command timeouts bounded by the run's wall-clock deadline

Commands receive an explicit environment built per invocation; the
process environment is never modified.
"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
import time
from collections import deque
from collections.abc import Mapping, Sequence
from datetime import datetime, timezone
from pathlib import Path

from nvim_crossbuild.errors import PipelineError, PipelineTimeoutError
from nvim_crossbuild.types import CommandResult

logger = logging.getLogger(__name__)

# Number of log lines attached to errors as diagnostics
DIAGNOSTIC_TAIL_LINES = 40


class CommandExecutionError(PipelineError):
    """Raised when a command cannot be started at all."""

    default_code = "execution_error"


class Deadline:
    """Wall-clock budget for a whole pipeline run.

    Uses the monotonic clock; a budget of None never expires.
    """

    def __init__(self, seconds: float | None, clock=time.monotonic) -> None:
        self._clock = clock
        self.seconds = seconds
        self._started = clock()

    def remaining(self) -> float | None:
        """Seconds left, or None for an unbounded deadline."""
        if self.seconds is None:
            return None
        return max(0.0, self.seconds - (self._clock() - self._started))

    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0

    def check(self, what: str = "run") -> None:
        """Raise PipelineTimeoutError if the budget is exhausted."""
        if self.expired():
            raise PipelineTimeoutError(
                f"Pipeline deadline of {self.seconds:.0f}s exceeded before {what}"
            )

    def timeout_for(self, limit: float | None) -> float | None:
        """Effective timeout for one command given its own limit."""
        remaining = self.remaining()
        if remaining is None:
            return limit
        if limit is None:
            return remaining
        return min(limit, remaining)


def tail_file(path: Path, lines: int = DIAGNOSTIC_TAIL_LINES) -> str:
    """Return the last lines of a log file (empty if missing)."""
    if not path.exists():
        return ""
    with path.open(encoding="utf-8", errors="replace") as f:
        return "".join(deque(f, maxlen=lines)).rstrip()


def merge_env(overrides: Mapping[str, str] | None) -> dict[str, str] | None:
    """Build a child environment from the current one plus overrides."""
    if not overrides:
        return None
    env = dict(os.environ)
    env.update(overrides)
    return env


class CommandRunner:
    """Runs external commands for one pipeline run.

    Attributes:
        log_dir: Directory receiving one log file per named step.
        deadline: Run-wide deadline bounding every command.
        command_timeout: Upper bound for a single command in seconds.
    """

    def __init__(
        self,
        log_dir: Path,
        deadline: Deadline | None = None,
        command_timeout: float | None = None,
    ) -> None:
        self.log_dir = log_dir
        self.deadline = deadline or Deadline(None)
        self.command_timeout = command_timeout

    def log_path(self, log_name: str) -> Path:
        return self.log_dir / f"{log_name}.log"

    def run(
        self,
        cmd: Sequence[str | os.PathLike[str]],
        log_name: str,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
    ) -> CommandResult:
        """Run a command, appending its output to a named log file.

        Args:
            cmd: Command as list of arguments.
            log_name: Log file stem under log_dir.
            cwd: Working directory.
            env: Environment overrides for this command only.

        Returns:
            CommandResult; non-zero exit codes are returned, not raised.

        Raises:
            PipelineTimeoutError: If the command or run deadline expires.
            CommandExecutionError: If the command cannot be started.
        """
        self.deadline.check(log_name)
        args = [str(c) for c in cmd]
        cmd_str = shlex.join(args)
        log_path = self.log_path(log_name)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        timeout = self.deadline.timeout_for(self.command_timeout)

        logger.info("Executing: %s", cmd_str)
        if cwd is not None:
            logger.debug("Working directory: %s", cwd)

        started_at = datetime.now(timezone.utc)
        start = time.monotonic()

        try:
            with log_path.open("a", encoding="utf-8") as log_file:
                log_file.write(f"# Command: {cmd_str}\n")
                log_file.write(f"# Started: {started_at.isoformat()}\n")
                log_file.write(f"# CWD: {cwd or Path.cwd()}\n")
                if env:
                    for key in sorted(env):
                        log_file.write(f"# ENV {key}={env[key]}\n")
                log_file.write("# " + "=" * 70 + "\n\n")
                log_file.flush()

                result = subprocess.run(
                    args,
                    cwd=cwd,
                    stdout=log_file,
                    stderr=subprocess.STDOUT,
                    timeout=timeout,
                    env=merge_env(env),
                    check=False,
                )
        except subprocess.TimeoutExpired as e:
            with log_path.open("a", encoding="utf-8") as log_file:
                log_file.write(f"\n# TIMEOUT after {timeout} seconds\n")
            logger.error("Command timed out after %ss: %s", timeout, cmd_str)
            raise PipelineTimeoutError(
                f"Command timed out after {timeout:.0f}s: {cmd_str}",
                diagnostics=tail_file(log_path),
                log_path=log_path,
            ) from e
        except OSError as e:
            logger.error("Failed to execute %s: %s", cmd_str, e)
            raise CommandExecutionError(
                f"Failed to execute {args[0]}: {e}",
                log_path=log_path,
            ) from e

        duration = time.monotonic() - start
        with log_path.open("a", encoding="utf-8") as log_file:
            log_file.write(f"\n# Finished: {datetime.now(timezone.utc).isoformat()}\n")
            log_file.write(f"# Exit code: {result.returncode}\n")
            log_file.write(f"# Duration: {duration:.1f}s\n\n")

        if result.returncode != 0:
            logger.error(
                "Command failed with exit code %d. See log: %s",
                result.returncode,
                log_path,
            )

        return CommandResult(
            command=cmd_str,
            exit_code=result.returncode,
            log_path=log_path,
            duration=duration,
        )

    def capture(
        self,
        cmd: Sequence[str | os.PathLike[str]],
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        timeout: float | None = 60,
    ) -> CommandResult:
        """Run a short query command and capture its output.

        Raises:
            PipelineTimeoutError: If the command times out.
            CommandExecutionError: If the command cannot be started.
        """
        args = [str(c) for c in cmd]
        cmd_str = shlex.join(args)
        effective_timeout = self.deadline.timeout_for(timeout)
        logger.debug("Querying: %s", cmd_str)

        start = time.monotonic()
        try:
            result = subprocess.run(
                args,
                cwd=cwd,
                capture_output=True,
                text=True,
                timeout=effective_timeout,
                env=merge_env(env),
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            raise PipelineTimeoutError(
                f"Command timed out after {effective_timeout}s: {cmd_str}"
            ) from e
        except OSError as e:
            raise CommandExecutionError(f"Failed to execute {args[0]}: {e}") from e

        return CommandResult(
            command=cmd_str,
            exit_code=result.returncode,
            output=result.stdout or "",
            stderr=result.stderr or "",
            duration=time.monotonic() - start,
        )


__all__ = [
    "DIAGNOSTIC_TAIL_LINES",
    "CommandExecutionError",
    "CommandRunner",
    "Deadline",
    "merge_env",
    "tail_file",
]
