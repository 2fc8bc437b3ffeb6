"""
Run use case — one provisioning pass from config file to persisted state.

Loads the config, resolves dependencies, and runs the step engine
against the state directory. Errors are captured in the result rather
than raised, so the CLI can render them and pick an exit code.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from provisioner.adapters.shell.command import CommandRunner
from provisioner.core.config.loader import load_config
from provisioner.core.engine.executor import ExecutionReport, StepEngine
from provisioner.core.errors import ProvisionerError, StepFailedError
from provisioner.core.models.deps import Dependencies
from provisioner.core.persistence.state_file import StateStore

logger = logging.getLogger(__name__)


@dataclass
class RunResult:
    """Result of a provisioning pass."""

    report: ExecutionReport | None = None
    state_dir: Path | None = None
    steps_configured: int = 0
    failed_step: int | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict:
        result: dict = {
            "state_dir": str(self.state_dir) if self.state_dir else None,
            "steps_configured": self.steps_configured,
        }
        if self.error:
            result["error"] = self.error
            result["failed_step"] = self.failed_step
        if self.report:
            result["report"] = self.report.to_dict()
        return result


def run_provisioning(
    config_path: Path,
    state_dir: Path,
    deps: Dependencies | None = None,
    runner: CommandRunner | None = None,
) -> RunResult:
    """Run every incomplete configured step.

    Args:
        config_path: Provisioning config (YAML or JSON).
        state_dir: Directory holding persisted progress.
        deps: Resolved tool paths (default: looked up on PATH).
        runner: Command runner (default: real subprocess runner).

    Returns:
        RunResult; ``error`` is set when the pass did not complete.
    """
    result = RunResult(state_dir=state_dir)

    try:
        config = load_config(config_path)
    except ProvisionerError as e:
        result.error = str(e)
        return result

    result.steps_configured = len(config.steps)
    engine = StepEngine(
        config.steps,
        deps or Dependencies.resolve(),
        StateStore(state_dir),
        runner=runner,
    )

    try:
        result.report = engine.run()
    except StepFailedError as e:
        result.report = engine.report
        result.failed_step = e.index
        result.error = str(e)
    except ProvisionerError as e:
        result.report = engine.report
        result.error = str(e)

    return result
