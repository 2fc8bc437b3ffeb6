"""
Error taxonomy — every failure the provisioner raises.

Lower layers raise raw failures with command context (CommandError,
ProcessTableError). Steps wrap them in StepError naming the stage
that failed. The engine wraps that in StepFailedError naming the step.
Configuration problems (ConfigError) fail before any side effect.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from provisioner.core.models.receipt import Receipt


class ProvisionerError(Exception):
    """Base class for all provisioner failures."""


class ConfigError(ProvisionerError):
    """Configuration is missing, malformed, or rejected by a step."""


class CommandError(ProvisionerError):
    """An external command exited non-zero or could not be started."""

    def __init__(self, receipt: Receipt):
        self.receipt = receipt
        super().__init__(receipt.describe())


class ProcessTableError(ProvisionerError):
    """The process table could not be read."""


class StateError(ProvisionerError):
    """Persisted state could not be written."""


class StepError(ProvisionerError):
    """A stage of a step failed."""

    def __init__(self, stage: str, message: str):
        self.stage = stage
        super().__init__(f"{stage}: {message}")


class StepFailedError(ProvisionerError):
    """The engine stopped because a step failed."""

    def __init__(self, index: int, step_type: str, cause: Exception):
        self.index = index
        self.step_type = step_type
        self.cause = cause
        super().__init__(f"step {index} ({step_type}) failed: {cause}")
