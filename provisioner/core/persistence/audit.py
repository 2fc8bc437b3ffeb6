"""
Audit ledger — append-only record of step executions.

Every step the engine runs (or skips) appends one NDJSON line to
``<state-dir>/audit.ndjson``. Progress lives in state.json; the ledger
is the history across reboots, useful to see which attempt failed at
which stage without re-running anything.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from datetime import UTC, datetime
from pathlib import Path

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class AuditEntry(BaseModel):
    """A single ledger entry."""

    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    run_id: str = ""

    step_index: int = 0
    step_type: str = ""
    attempt: int = 0

    status: str = ""           # ok, failed, skipped
    duration_ms: int = 0
    error: str | None = None


class AuditWriter:
    """Append-only ledger writer.

    A ledger write failure is logged, never raised: the ledger is a
    diagnostic aid and must not fail a provisioning pass.
    """

    def __init__(self, path: Path):
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def write(self, entry: AuditEntry) -> None:
        """Append one line. Failures are logged, not raised."""
        record = json.dumps(entry.model_dump(mode="json"), ensure_ascii=False)
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("a", encoding="utf-8") as ledger:
                ledger.write(record + "\n")
        except OSError as e:
            logger.error("Cannot append to audit ledger %s: %s", self._path, e)
            return
        logger.debug("Ledger: step %d %s (attempt %d)", entry.step_index, entry.status, entry.attempt)

    def read_all(self) -> list[AuditEntry]:
        """All entries, oldest first. Corrupt lines are skipped."""
        return list(self._iter_entries())

    def read_recent(self, n: int = 20) -> list[AuditEntry]:
        """The most recent ``n`` entries."""
        return self.read_all()[-n:] if n > 0 else []

    def for_step(self, index: int) -> list[AuditEntry]:
        """Every executed attempt of step ``index``, across passes (skips excluded)."""
        return [e for e in self._iter_entries() if e.step_index == index and e.status != "skipped"]

    def _iter_entries(self) -> Iterator[AuditEntry]:
        try:
            text = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return
        except OSError as e:
            logger.error("Cannot read audit ledger %s: %s", self._path, e)
            return

        # A power loss can truncate the last line; skip anything unparsable.
        for number, raw in enumerate(text.splitlines(), start=1):
            if not raw.strip():
                continue
            try:
                yield AuditEntry.model_validate_json(raw)
            except ValueError as e:
                logger.warning("Skipping corrupt ledger line %d: %s", number, e)
