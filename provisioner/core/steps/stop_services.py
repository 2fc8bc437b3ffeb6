"""
StopServices step — stop systemd units that must not run on the image.
"""

from __future__ import annotations

import logging
from typing import ClassVar

from provisioner.adapters.services.systemd import SystemdClient
from provisioner.core.errors import ConfigError
from provisioner.core.models.deps import Dependencies
from provisioner.core.models.step import Step, StepContext, stage

logger = logging.getLogger(__name__)


class StopServicesStep(Step):
    """Stop each unit in ``units``, in order. Already-stopped units are skipped."""

    type: ClassVar[str] = "StopServices"

    units: list[str] = []

    def validate_config(self) -> None:
        if not self.units:
            raise ConfigError("invalid args: units is required in StopServices")
        for unit in self.units:
            if not unit.strip():
                raise ConfigError("invalid args: empty unit name in StopServices")

    def run(self, ctx: StepContext, deps: Dependencies) -> None:
        self.validate_config()
        systemd = SystemdClient(ctx.runner, systemctl_cmd=deps.systemctl_cmd)
        stopped = ctx.data.setdefault("stopped", [])
        for unit in self.units:
            with stage(f"stop {unit}"):
                systemd.stop(unit)
            if unit not in stopped:
                stopped.append(unit)
