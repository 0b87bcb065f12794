"""Subprocess execution with Result-based error handling.

Three entry points:

- ``run``: capture stdout, return ``Err(ProcessError)`` on non-zero exit.
- ``run_silent``: inherit the terminal (used for the prepublish script so the
  operator sees test output live).
- ``run_with_dry_run``: the single gate for commands that mutate the
  repository or the remote. With ``dry_run=True`` it only echoes the command.
"""

from __future__ import annotations

import shlex
import subprocess
from dataclasses import dataclass
from pathlib import Path

from rollout.core.result import Err, Ok, Result
from rollout.output.console import ConsoleProtocol, Style

__all__ = ["ProcessError", "run", "run_silent", "run_with_dry_run"]


@dataclass(frozen=True, slots=True)
class ProcessError:
    """Error from a failed subprocess execution.

    Attributes:
        command: The command that was executed.
        returncode: Exit code (-1 when the process never ran or timed out).
        stdout: Standard output (may be empty).
        stderr: Standard error (contains error details).
    """

    command: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    def __str__(self) -> str:
        cmd_str = " ".join(self.command[:3])
        if len(self.command) > 3:
            cmd_str += " ..."
        return f"{cmd_str} failed (exit {self.returncode})"

    @property
    def output(self) -> str:
        """stderr and stdout combined, for message matching."""
        return f"{self.stderr}\n{self.stdout}".strip()


def run(
    cmd: list[str],
    cwd: Path,
    env: dict[str, str] | None = None,
    *,
    timeout: float | None = None,
) -> Result[str, ProcessError]:
    """Execute a command and return stdout or error.

    Args:
        cmd: Command and arguments to execute.
        cwd: Working directory for the command.
        env: Environment variables (uses current env if None).
        timeout: Maximum seconds to wait (None for no limit).

    Returns:
        Ok(stdout) on success, Err(ProcessError) on failure.
    """
    try:
        proc = subprocess.run(
            cmd,
            cwd=str(cwd),
            env=env,
            capture_output=True,
            text=True,
            timeout=timeout,
            check=False,
        )
    except subprocess.TimeoutExpired as e:
        return Err(
            ProcessError(
                command=tuple(cmd),
                returncode=-1,
                stdout=e.stdout if isinstance(e.stdout, str) else "",
                stderr=f"Command timed out after {timeout}s",
            )
        )
    except OSError as e:
        return Err(ProcessError(command=tuple(cmd), returncode=-1, stdout="", stderr=str(e)))

    if proc.returncode != 0:
        return Err(
            ProcessError(
                command=tuple(cmd),
                returncode=proc.returncode,
                stdout=proc.stdout,
                stderr=proc.stderr,
            )
        )

    return Ok(proc.stdout)


def run_silent(
    cmd: list[str],
    cwd: Path,
    env: dict[str, str] | None = None,
) -> Result[None, ProcessError]:
    """Execute a command with output streaming to the terminal.

    Returns:
        Ok(None) on success, Err(ProcessError) on failure (no captured output).
    """
    try:
        proc = subprocess.run(cmd, cwd=str(cwd), env=env, check=False)
    except OSError as e:
        return Err(ProcessError(command=tuple(cmd), returncode=-1, stdout="", stderr=str(e)))

    if proc.returncode != 0:
        return Err(
            ProcessError(
                command=tuple(cmd),
                returncode=proc.returncode,
                stdout="",
                stderr=f"{shlex.join(cmd)} exited with code {proc.returncode}",
            )
        )

    return Ok(None)


def run_with_dry_run(
    cmd: list[str],
    cwd: Path,
    *,
    dry_run: bool,
    console: ConsoleProtocol,
    inherit_output: bool = False,
    timeout: float | None = None,
) -> Result[str, ProcessError]:
    """Execute a mutating command unless ``dry_run`` is set.

    In dry-run mode the command is echoed and ``Ok("")`` is returned.
    With ``inherit_output`` the command streams to the terminal and the
    returned stdout is always empty.
    """
    if dry_run:
        console.print(f"DRY RUN: would run: {shlex.join(cmd)}", Style.DIM)
        return Ok("")

    if inherit_output:
        streamed = run_silent(cmd, cwd)
        if isinstance(streamed, Err):
            return streamed
        return Ok("")

    return run(cmd, cwd, timeout=timeout)
