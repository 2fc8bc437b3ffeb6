"""
Command runner — execute external programs and capture their output.

This is the most fundamental adapter: every other component forks
processes through it. It runs one program (never through a shell),
waits for it, and returns a Receipt. No retry happens here; retry
policy belongs to callers.
"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
import sys
import time
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import TextIO

from provisioner.core.models.receipt import Receipt

logger = logging.getLogger(__name__)


def merge_env(overlay: Sequence[str] | None) -> dict[str, str] | None:
    """Apply ``KEY=VALUE`` overlays on top of the current environment.

    Returns None when there is no overlay, meaning "inherit unchanged".
    Later entries win over earlier ones, as with execve.
    """
    if overlay is None:
        return None
    env = dict(os.environ)
    for item in overlay:
        key, sep, value = item.partition("=")
        if not sep:
            raise ValueError(f"Environment entry is not KEY=VALUE: {item!r}")
        env[key] = value
    return env


class CommandRunner:
    """Run external commands and capture combined stdout/stderr.

    Args:
        stdout: Sink for output that should reach the operator
            (``stream_output=True``). Defaults to ``sys.stdout``.
    """

    def __init__(self, stdout: TextIO | None = None):
        self._stdout = stdout

    @property
    def stdout(self) -> TextIO:
        return self._stdout if self._stdout is not None else sys.stdout

    def run(
        self,
        argv: Sequence[str],
        cwd: str | None = None,
        env: Sequence[str] | None = None,
        stream_output: bool = False,
    ) -> Receipt:
        """Execute ``argv`` and return a receipt. Never raises for a failing command.

        Args:
            argv: Program and arguments.
            cwd: Working directory (default: inherit).
            env: ``KEY=VALUE`` entries layered over the current environment.
            stream_output: Copy the captured output to the operator's stdout.
        """
        command = [str(arg) for arg in argv]
        if not command:
            raise ValueError("Cannot run an empty command")

        logger.debug("Executing: %s (cwd=%s)", shlex.join(command), cwd or ".")
        started_at = datetime.now(UTC).isoformat()
        start = time.monotonic()

        try:
            result = subprocess.run(
                command,
                cwd=cwd,
                env=merge_env(env),
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                errors="replace",
            )
        except OSError as e:
            receipt = Receipt.failure(
                command=command,
                error=f"Command execution error: {e}",
                started_at=started_at,
                duration_ms=int((time.monotonic() - start) * 1000),
            )
            logger.debug("%s", receipt.describe())
            return receipt

        elapsed_ms = int((time.monotonic() - start) * 1000)
        output = result.stdout or ""

        if stream_output and output:
            self.stdout.write(output)
            self.stdout.flush()

        if result.returncode == 0:
            receipt = Receipt.success(
                command=command,
                output=output.strip(),
                started_at=started_at,
                duration_ms=elapsed_ms,
            )
        else:
            receipt = Receipt.failure(
                command=command,
                error=f"Command exited with code {result.returncode}",
                return_code=result.returncode,
                output=output.strip(),
                started_at=started_at,
                duration_ms=elapsed_ms,
            )

        logger.debug("%s → %s (%dms)", shlex.join(command), receipt.status, elapsed_ms)
        return receipt

    def check(
        self,
        argv: Sequence[str],
        cwd: str | None = None,
        env: Sequence[str] | None = None,
        stream_output: bool = False,
    ) -> Receipt:
        """Like ``run`` but raise CommandError when the command fails."""
        return self.run(argv, cwd=cwd, env=env, stream_output=stream_output).raise_for_status()

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}>"
