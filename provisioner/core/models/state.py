"""
ProvisionState — the reboot-surviving record of provisioning progress.

Serialized to ``<state-dir>/state.json`` and loaded at the start of
every pass. Only the engine persists it; steps receive it through
their StepContext and may read or mutate their own ``data``.

A step is ``ok`` only after it returned successfully. A crash while a
step is ``running`` leaves it incomplete, so the next pass re-runs it.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

StepStatus = Literal["pending", "running", "ok", "failed"]


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class StepRecord(BaseModel):
    """Progress of one configured step."""

    index: int
    type: str
    status: StepStatus = "pending"
    attempts: int = 0
    started_at: str | None = None
    ended_at: str | None = None
    error: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)

    @property
    def complete(self) -> bool:
        return self.status == "ok"


class RunRecord(BaseModel):
    """Summary of the last provisioning pass."""

    started_at: str = ""
    ended_at: str = ""
    status: str = ""  # ok, failed
    steps_run: int = 0
    steps_skipped: int = 0


class ProvisionState(BaseModel):
    """Root state model — serialized to ``state.json``."""

    # ── Schema ───────────────────────────────────────────────────
    schema_version: int = 1

    # ── Timestamps ───────────────────────────────────────────────
    created_at: str = Field(default_factory=_now_iso)
    updated_at: str = Field(default_factory=_now_iso)

    # ── Progress ─────────────────────────────────────────────────
    config_digest: str = ""
    steps: list[StepRecord] = Field(default_factory=list)
    last_run: RunRecord = Field(default_factory=RunRecord)

    # ── Extensible metadata ──────────────────────────────────────
    metadata: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def fresh(cls, config_digest: str, step_types: list[str]) -> ProvisionState:
        """A new state with one pending record per step."""
        return cls(
            config_digest=config_digest,
            steps=[StepRecord(index=i, type=t) for i, t in enumerate(step_types)],
        )

    def touch(self) -> None:
        """Update the updated_at timestamp."""
        self.updated_at = _now_iso()

    @property
    def done(self) -> bool:
        return all(record.complete for record in self.steps)

    @property
    def completed_count(self) -> int:
        return sum(1 for record in self.steps if record.complete)

    def first_incomplete(self) -> int | None:
        """Index of the first step not yet ``ok``; None when all are."""
        for record in self.steps:
            if not record.complete:
                return record.index
        return None

    def mark_running(self, index: int) -> None:
        record = self.steps[index]
        record.status = "running"
        record.attempts += 1
        record.started_at = _now_iso()
        record.ended_at = None
        record.error = None

    def mark_complete(self, index: int) -> None:
        record = self.steps[index]
        record.status = "ok"
        record.ended_at = _now_iso()
        record.error = None

    def mark_failed(self, index: int, error: str) -> None:
        record = self.steps[index]
        record.status = "failed"
        record.ended_at = _now_iso()
        record.error = error
