"""
State file persistence — atomic read/write for ProvisionState.

Layout of the state directory:

    state.json      progress record (ProvisionState)
    audit.ndjson    append-only step ledger
    work/<index>/   per-step working data

Writes are atomic (write to temp file, fsync, then rename) so a crash
or power loss mid-write leaves the previous state intact.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import tempfile
from pathlib import Path

from provisioner.core.errors import StateError
from provisioner.core.models.state import ProvisionState

logger = logging.getLogger(__name__)

DEFAULT_STATE_DIR = Path("/var/lib/.cos-customizer")
STATE_FILE = "state.json"
AUDIT_FILE = "audit.ndjson"
WORK_DIR = "work"


def load_state(path: Path) -> ProvisionState:
    """Load provisioning state from a JSON file.

    Returns:
        ProvisionState model. If the file doesn't exist or is corrupt,
        returns an empty state, which makes the engine start over.
    """
    if not path.is_file():
        logger.info("No state file at %s — starting fresh", path)
        return ProvisionState()

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        state = ProvisionState.model_validate(data)
        logger.debug("Loaded state from %s (updated_at=%s)", path, state.updated_at)
        return state
    except json.JSONDecodeError as e:
        logger.warning("Corrupt state file %s: %s — starting fresh", path, e)
        return ProvisionState()
    except Exception as e:
        logger.warning("Cannot load state from %s: %s — starting fresh", path, e)
        return ProvisionState()


def save_state(state: ProvisionState, path: Path) -> None:
    """Save provisioning state to a JSON file (atomic, durable write).

    Raises:
        StateError: the file could not be written.
    """
    state.touch()
    content = json.dumps(state.model_dump(mode="json"), indent=2, ensure_ascii=False) + "\n"

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=".state_", suffix=".tmp")
        tmp = Path(tmp_path)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, path)
        except Exception:
            tmp.unlink(missing_ok=True)
            raise
    except OSError as e:
        logger.error("Failed to save state to %s: %s", path, e)
        raise StateError(f"cannot save state to {path}: {e}") from e

    logger.debug("State saved to %s", path)


class StateStore:
    """The state directory: progress record, ledger, and work dirs."""

    def __init__(self, state_dir: Path = DEFAULT_STATE_DIR):
        self.state_dir = Path(state_dir)

    @property
    def state_path(self) -> Path:
        return self.state_dir / STATE_FILE

    @property
    def audit_path(self) -> Path:
        return self.state_dir / AUDIT_FILE

    def exists(self) -> bool:
        return self.state_path.is_file()

    def load(self) -> ProvisionState:
        return load_state(self.state_path)

    def save(self, state: ProvisionState) -> None:
        save_state(state, self.state_path)

    def work_dir(self, index: int) -> Path:
        """Working directory for step ``index`` (created if absent)."""
        path = self.state_dir / WORK_DIR / str(index)
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StateError(f"cannot create work dir {path}: {e}") from e
        return path

    def reset(self) -> bool:
        """Forget all progress. The audit ledger is kept.

        Returns:
            True if there was anything to remove.
        """
        removed = False
        if self.state_path.is_file():
            self.state_path.unlink()
            removed = True
        work = self.state_dir / WORK_DIR
        if work.is_dir():
            shutil.rmtree(work)
            removed = True
        if removed:
            logger.info("Reset provisioning state in %s", self.state_dir)
        return removed

    def __repr__(self) -> str:
        return f"<StateStore {self.state_dir}>"
