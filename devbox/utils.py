"""Utility functions for devbox."""

from __future__ import annotations

import os
import subprocess
import sys
import time
from pathlib import Path
from typing import Callable, Dict, List, Optional

from devbox.constants import _LOG_VERBOSE, EXIT_NOT_FOUND, EXIT_TIMEOUT
from devbox.models import CommandResult


def log(level: str, message: str) -> None:
    """Lightweight structured logging compatible with existing colour expectation."""
    if level == "DEBUG" and not _LOG_VERBOSE:
        return
    colours = {
        "INFO": "\033[0;34m",
        "WARN": "\033[1;33m",
        "ERROR": "\033[0;31m",
        "SUCCESS": "\033[0;32m",
        "DEBUG": "\033[0;90m",
    }
    colour = colours.get(level, "")
    reset = "\033[0m" if colour else ""
    print(f"{colour}[{level}]{reset} {message}", flush=True)


def has_controlling_tty() -> bool:
    """Return True if both stdin and stdout are attached to a TTY."""
    for stream in (sys.stdin, sys.stdout):
        try:
            if not stream.isatty():
                return False
        except (AttributeError, ValueError):
            return False
    return True


def ensure_directory(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def wait_until(
    predicate: Callable[[], bool],
    attempts: int,
    interval: float,
    label: str = "condition",
) -> bool:
    """Evaluate ``predicate`` up to ``attempts`` times, sleeping ``interval`` between tries."""
    for attempt in range(1, attempts + 1):
        if predicate():
            if attempt > 1:
                log("DEBUG", f"{label} satisfied after {attempt} attempts")
            return True
        if attempt < attempts:
            time.sleep(interval)
    log("DEBUG", f"{label} not satisfied after {attempts} attempts")
    return False


def normalize_newlines(text: str) -> str:
    return text.replace("\r\n", "\n").replace("\r", "\n")


def shell_single_quote(value: str) -> str:
    """Escape ``value`` for use inside a single-quoted POSIX shell string.

    The result is meant to be wrapped in ``'...'``: each embedded quote closes
    the string, emits an escaped quote and reopens it.
    """
    return value.replace("'", "'\\''")


def ruby_single_quote(value: str) -> str:
    """Escape ``value`` for a single-quoted Ruby string literal."""
    return value.replace("\\", "\\\\").replace("'", "\\'")


def tail(text: str, lines: int) -> str:
    return "\n".join(text.splitlines()[-lines:])


def run(
    cmd: List[str],
    cwd: Optional[Path] = None,
    env: Optional[Dict[str, str]] = None,
    timeout: Optional[float] = None,
) -> CommandResult:
    """Run a command, capturing output; never raises on non-zero exit."""
    log("DEBUG", f"Running: {' '.join(cmd)}")
    merged_env = None
    if env:
        merged_env = dict(os.environ)
        merged_env.update(env)
    try:
        proc = subprocess.run(
            cmd,
            cwd=str(cwd) if cwd else None,
            env=merged_env,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except FileNotFoundError as exc:
        return CommandResult(args=cmd, exit_code=EXIT_NOT_FOUND, stderr=str(exc))
    except subprocess.TimeoutExpired as exc:
        stdout = exc.stdout or ""
        stderr = exc.stderr or ""
        if isinstance(stdout, bytes):
            stdout = stdout.decode("utf-8", errors="replace")
        if isinstance(stderr, bytes):
            stderr = stderr.decode("utf-8", errors="replace")
        return CommandResult(args=cmd, exit_code=EXIT_TIMEOUT, stdout=stdout, stderr=stderr, timed_out=True)
    return CommandResult(args=cmd, exit_code=proc.returncode, stdout=proc.stdout or "", stderr=proc.stderr or "")
