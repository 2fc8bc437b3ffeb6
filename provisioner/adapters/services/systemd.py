"""
Systemd client — query and idempotently stop service units.
"""

from __future__ import annotations

import logging

from provisioner.adapters.shell.command import CommandRunner

logger = logging.getLogger(__name__)


class SystemdClient:
    """Thin wrapper over ``systemctl``."""

    def __init__(self, runner: CommandRunner, systemctl_cmd: str = "systemctl"):
        self._runner = runner
        self.systemctl_cmd = systemctl_cmd

    def is_active(self, unit: str) -> bool:
        """Whether ``systemctl is-active`` exits zero for ``unit``.

        A failed query counts as inactive: "unit not found" and
        "unit stopped" are not distinguished.
        """
        return self._runner.run([self.systemctl_cmd, "is-active", unit]).ok

    def stop(self, unit: str) -> None:
        """Stop ``unit`` if it is active. Safe to call any number of times.

        Raises:
            CommandError: ``systemctl stop`` failed.
        """
        if not self.is_active(unit):
            logger.info("%r is not active, ignoring", unit)
            return
        logger.info("%r is active, stopping...", unit)
        self._runner.check([self.systemctl_cmd, "stop", unit])
        logger.info("%r stopped", unit)
