"""
Status use case — summarize persisted provisioning progress.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from provisioner.core.models.state import ProvisionState
from provisioner.core.persistence.audit import AuditEntry, AuditWriter
from provisioner.core.persistence.state_file import StateStore


@dataclass
class StatusResult:
    """Provisioning progress as recorded in the state directory."""

    state_dir: Path
    state: ProvisionState | None = None
    recent: list[AuditEntry] | None = None

    @property
    def started(self) -> bool:
        return self.state is not None

    @property
    def next_step(self) -> int | None:
        return self.state.first_incomplete() if self.state else None

    def to_dict(self) -> dict:
        result: dict = {"state_dir": str(self.state_dir), "started": self.started}
        if self.state is None:
            return result

        result["done"] = self.state.done
        result["next_step"] = self.next_step
        result["updated_at"] = self.state.updated_at
        result["last_run"] = self.state.last_run.model_dump(mode="json")
        result["steps"] = [
            {
                "index": r.index,
                "type": r.type,
                "status": r.status,
                "attempts": r.attempts,
                "error": r.error,
            }
            for r in self.state.steps
        ]
        if self.recent:
            result["recent"] = [e.model_dump(mode="json") for e in self.recent]
        return result


def get_status(state_dir: Path, recent: int = 10) -> StatusResult:
    """Read progress from ``state_dir`` without modifying it."""
    store = StateStore(state_dir)
    result = StatusResult(state_dir=state_dir)
    if not store.exists():
        return result

    result.state = store.load()
    result.recent = AuditWriter(store.audit_path).read_recent(recent)
    return result


def reset_state(state_dir: Path) -> bool:
    """Forget recorded progress so the next pass starts from step 0."""
    return StateStore(state_dir).reset()


def step_history(state_dir: Path, index: int) -> list[AuditEntry]:
    """Every recorded attempt of step ``index``, oldest first."""
    return AuditWriter(StateStore(state_dir).audit_path).for_step(index)
