"""Shell utilities.

Provides simple wrappers around subprocess calls for running git and other
command-line tools, plus the step header used for phase output.
"""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path

from .errors import ExternalCommandError


def run(
    *args: str, cwd: Path | None = None, check: bool = True, env: dict[str, str] | None = None
) -> subprocess.CompletedProcess[str]:
    """Run a command and capture its output.

    Args:
        *args: Command and arguments (e.g., "uv", "build", "pkg/").
        cwd: Working directory; defaults to the current directory.
        check: If True (default), raise on non-zero exit. Set to False
               for commands that may legitimately fail (e.g., tag lookup).
        env: Full environment for the child process, if not inherited.

    Raises:
        ExternalCommandError: If the command is missing, or exits non-zero
            while `check` is set.
    """
    try:
        result = subprocess.run(
            list(args), cwd=cwd, capture_output=True, text=True, check=False, env=env
        )
    except FileNotFoundError as exc:
        raise ExternalCommandError(f"{args[0]} not found on PATH", command=list(args)) from exc
    if check and result.returncode != 0:
        raise ExternalCommandError(
            f"Command failed with exit code {result.returncode}: {' '.join(args)}",
            command=list(args),
            returncode=result.returncode,
            stderr=result.stderr,
        )
    return result


def git(*args: str, cwd: Path | None = None, check: bool = True) -> str:
    """Run a git command and return stdout.

    Args:
        *args: Arguments to pass to git (e.g., "status", "--short").
        cwd: Repository directory.
        check: If True (default), raise on non-zero exit.

    Returns:
        Stdout with trailing whitespace removed. Leading whitespace is kept
        because porcelain formats are column-sensitive.
    """
    return run("git", *args, cwd=cwd, check=check).stdout.rstrip()


def step(log: logging.Logger, msg: str) -> None:
    """Log a visually distinct step header.

    Used to separate major phases of the release pipeline in terminal output.
    """
    log.info("\n%s\n%s\n%s", "─" * 60, msg, "─" * 60)
