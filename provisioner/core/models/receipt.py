"""
Receipt model — the outcome of one external command.

The command runner never raises for a failing command; it returns a
Receipt. Callers that want exception semantics call
``raise_for_status()`` (or ``CommandRunner.check``).
"""

from __future__ import annotations

import shlex
from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from provisioner.core.errors import CommandError


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class Receipt(BaseModel):
    """Result of running an external command."""

    command: list[str]
    status: Literal["ok", "failed"] = "ok"
    return_code: int | None = None   # None when the process never started

    started_at: str = Field(default_factory=_now_iso)
    ended_at: str = Field(default_factory=_now_iso)
    duration_ms: int = 0

    output: str = ""                 # combined stdout + stderr
    error: str | None = None

    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        """Whether the command succeeded."""
        return self.status == "ok"

    @property
    def failed(self) -> bool:
        """Whether the command failed."""
        return self.status == "failed"

    @property
    def command_line(self) -> str:
        return shlex.join(self.command)

    def describe(self) -> str:
        """One-line summary for logs and error messages."""
        if self.ok:
            return f"{self.command_line}: ok"
        text = f"{self.command_line}: {self.error or 'failed'}"
        if self.output:
            text += f"\n{self.output}"
        return text

    def raise_for_status(self) -> Receipt:
        """Raise CommandError if the command failed, else return self."""
        if self.failed:
            raise CommandError(self)
        return self

    @classmethod
    def success(cls, command: list[str], output: str = "", **kwargs: Any) -> Receipt:
        """Create a success receipt."""
        return cls(command=command, status="ok", return_code=0, output=output, **kwargs)

    @classmethod
    def failure(cls, command: list[str], error: str, **kwargs: Any) -> Receipt:
        """Create a failure receipt."""
        return cls(command=command, status="failed", error=error, **kwargs)
