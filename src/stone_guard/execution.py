from __future__ import annotations

import logging
import os
import signal
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

TIMEOUT_EXIT_CODE = 124


@dataclass(frozen=True)
class CommandResult:
    stdout: str
    stderr: str
    exit_code: int
    timed_out: bool
    duration: float

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out


def substitute_placeholders(template: str, *, stone: str, route: str, hash: str, output: str) -> str:
    """Replace ``$stone``, ``$route``, ``$hash`` and ``$output`` verbatim (no shell escaping)."""
    return (
        template.replace("$stone", stone)
        .replace("$route", route)
        .replace("$hash", hash)
        .replace("$output", output)
    )


def _decode(value: str | bytes | None) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


def run_command(command: str, *, cwd: Path, timeout: float, shell: str = "/bin/sh") -> CommandResult:
    """Run a shell command and capture its output.

    Never raises for a non-zero exit. A timeout kills the child and is reported
    as exit code 124 with whatever output had been buffered.
    """
    started = time.monotonic()
    # A fresh session lets a timeout kill the whole process group, not just the shell.
    with subprocess.Popen(
        [shell, "-c", command],
        cwd=cwd,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        start_new_session=True,
    ) as process:
        try:
            stdout, stderr = process.communicate(timeout=timeout)
        except subprocess.TimeoutExpired:
            _kill_group(process)
            stdout, stderr = process.communicate()
            duration = time.monotonic() - started
            logger.warning("command timed out after %.1fs: %s", duration, command)
            return CommandResult(
                stdout=_decode(stdout),
                stderr=_decode(stderr),
                exit_code=TIMEOUT_EXIT_CODE,
                timed_out=True,
                duration=duration,
            )

    duration = time.monotonic() - started
    if process.returncode != 0:
        logger.warning("command exited %d after %.1fs: %s", process.returncode, duration, command)
    return CommandResult(
        stdout=_decode(stdout),
        stderr=_decode(stderr),
        exit_code=process.returncode,
        timed_out=False,
        duration=duration,
    )


def _kill_group(process: subprocess.Popen[bytes]) -> None:
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass
