"""
Step engine — the central provisioning loop.

The engine takes the configured steps, loads persisted progress,
and runs every step that has not completed yet, in order. Progress is
written back after each step so a reboot mid-sequence resumes at the
first incomplete step instead of starting over.

Flow:
    validate all → load state → skip completed → (default → run → persist)*
"""

from __future__ import annotations

import hashlib
import json
import logging
import time
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime

from provisioner.adapters.shell.command import CommandRunner
from provisioner.core.errors import ConfigError, ProvisionerError, StepFailedError
from provisioner.core.models.deps import Dependencies
from provisioner.core.models.state import ProvisionState, RunRecord
from provisioner.core.models.step import Step, StepContext
from provisioner.core.persistence.audit import AuditEntry, AuditWriter
from provisioner.core.persistence.state_file import StateStore

logger = logging.getLogger(__name__)


@dataclass
class StepOutcome:
    """What happened to one step during a pass."""

    index: int
    type: str
    status: str  # ok, failed, skipped
    duration_ms: int = 0
    error: str | None = None

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "type": self.type,
            "status": self.status,
            "duration_ms": self.duration_ms,
            "error": self.error,
        }


@dataclass
class ExecutionReport:
    """Result of one provisioning pass."""

    run_id: str = ""
    outcomes: list[StepOutcome] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.outcomes)

    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes if o.status == "ok")

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if o.status == "failed")

    @property
    def skipped(self) -> int:
        return sum(1 for o in self.outcomes if o.status == "skipped")

    @property
    def status(self) -> str:
        return "failed" if self.failed else "ok"

    def to_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "status": self.status,
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "steps": [o.to_dict() for o in self.outcomes],
        }


def config_digest(steps: Sequence[Step]) -> str:
    """Stable fingerprint of the configured step list."""
    payload = json.dumps([s.to_config() for s in steps], sort_keys=True)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def generate_run_id() -> str:
    """Generate a unique run ID."""
    now = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
    return f"run-{now}-{uuid.uuid4().hex[:6]}"


class StepEngine:
    """Run configured steps with reboot-resilient progress tracking.

    Args:
        steps: Configured steps, in execution order.
        deps: Resolved tool paths shared by every step.
        store: State directory.
        runner: Command runner handed to steps (default: real runner).
    """

    def __init__(
        self,
        steps: Sequence[Step],
        deps: Dependencies,
        store: StateStore,
        runner: CommandRunner | None = None,
    ):
        self.steps = list(steps)
        self.deps = deps
        self.store = store
        self.runner = runner or CommandRunner()
        self.audit = AuditWriter(store.audit_path)
        self.report = ExecutionReport()

    def load_state(self) -> ProvisionState:
        """Persisted state for this configuration, or a fresh one.

        State recorded for a different step list is discarded; steps are
        idempotent, so starting over is safe.
        """
        digest = config_digest(self.steps)
        state = self.store.load()
        if state.config_digest == digest and len(state.steps) == len(self.steps):
            return state
        if state.steps:
            logger.warning(
                "Configuration changed since the last pass (%d steps recorded) — starting over",
                len(state.steps),
            )
        return ProvisionState.fresh(digest, [s.type for s in self.steps])

    def run(self) -> ExecutionReport:
        """Run every incomplete step.

        Returns:
            The report of this pass (also kept in ``self.report``).

        Raises:
            StepFailedError: a step failed validation or execution. Later
                steps are not run.
            StateError: progress could not be persisted.
        """
        self.report = ExecutionReport(run_id=generate_run_id())

        # Configuration errors fail before anything touches the host.
        for index, step in enumerate(self.steps):
            try:
                step.validate_config()
            except ConfigError as e:
                logger.error("Step %d (%s) is misconfigured: %s", index, step.type, e)
                raise StepFailedError(index, step.type, e) from e

        state = self.load_state()
        state.last_run = RunRecord(started_at=datetime.now(UTC).isoformat())
        resume_at = state.first_incomplete()

        if resume_at is None:
            logger.info("All %d steps already complete", len(self.steps))
        elif resume_at > 0:
            logger.info("Resuming at step %d of %d", resume_at + 1, len(self.steps))

        for index, step in enumerate(self.steps):
            if resume_at is None or index < resume_at:
                self._record(StepOutcome(index=index, type=step.type, status="skipped"), state)
                continue
            self._run_step(index, step, state)

        state.last_run.status = "ok"
        self._finish(state)
        return self.report

    def _run_step(self, index: int, step: Step, state: ProvisionState) -> None:
        step = step.apply_defaults()
        state.mark_running(index)
        self.store.save(state)

        ctx = StepContext(
            state=state,
            index=index,
            work_dir=self.store.work_dir(index),
            runner=self.runner,
        )
        logger.info("→ step %d/%d: %s", index + 1, len(self.steps), step.type)
        start = time.monotonic()

        try:
            step.run(ctx, self.deps)
        except (ProvisionerError, OSError) as e:
            elapsed_ms = int((time.monotonic() - start) * 1000)
            logger.error("✗ step %d (%s) failed: %s", index, step.type, e)
            state.mark_failed(index, str(e))
            self._record(
                StepOutcome(index=index, type=step.type, status="failed", duration_ms=elapsed_ms, error=str(e)),
                state,
            )
            state.last_run.status = "failed"
            self._finish(state)
            raise StepFailedError(index, step.type, e) from e

        elapsed_ms = int((time.monotonic() - start) * 1000)
        state.mark_complete(index)
        self.store.save(state)
        self._record(StepOutcome(index=index, type=step.type, status="ok", duration_ms=elapsed_ms), state)
        logger.info("✓ step %d (%s) complete (%dms)", index, step.type, elapsed_ms)

    def _record(self, outcome: StepOutcome, state: ProvisionState) -> None:
        self.report.outcomes.append(outcome)
        self.audit.write(
            AuditEntry(
                run_id=self.report.run_id,
                step_index=outcome.index,
                step_type=outcome.type,
                attempt=state.steps[outcome.index].attempts,
                status=outcome.status,
                duration_ms=outcome.duration_ms,
                error=outcome.error,
            )
        )

    def _finish(self, state: ProvisionState) -> None:
        state.last_run.ended_at = datetime.now(UTC).isoformat()
        state.last_run.steps_run = self.report.succeeded + self.report.failed
        state.last_run.steps_skipped = self.report.skipped
        self.store.save(state)


def run_steps(
    steps: Sequence[Step],
    deps: Dependencies,
    store: StateStore,
    runner: CommandRunner | None = None,
) -> ExecutionReport:
    """Convenience wrapper: build a StepEngine and run it."""
    return StepEngine(steps, deps, store, runner=runner).run()
