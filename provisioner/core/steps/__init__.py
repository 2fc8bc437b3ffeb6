"""
Step registry — map configuration type names to step models.

    parse_step({"type": "InstallGPU", "args": {...}})
"""

from __future__ import annotations

from typing import Any

from pydantic import ValidationError

from provisioner.core.errors import ConfigError
from provisioner.core.models.step import Step
from provisioner.core.steps.install_gpu import InstallGPUStep
from provisioner.core.steps.stop_services import StopServicesStep

STEP_TYPES: dict[str, type[Step]] = {
    InstallGPUStep.type: InstallGPUStep,
    StopServicesStep.type: StopServicesStep,
}


def parse_step(raw: Any, index: int = 0) -> Step:
    """Build a step from its configuration form.

    Raises:
        ConfigError: unknown type, wrong shape, or invalid args.
    """
    if not isinstance(raw, dict):
        raise ConfigError(f"step {index}: expected a mapping, got {type(raw).__name__}")

    step_type = raw.get("type")
    if step_type not in STEP_TYPES:
        known = ", ".join(sorted(STEP_TYPES))
        raise ConfigError(f"step {index}: unknown step type {step_type!r} (known: {known})")

    args = raw.get("args") or {}
    if not isinstance(args, dict):
        raise ConfigError(f"step {index}: args must be a mapping")

    try:
        return STEP_TYPES[step_type].model_validate(args)
    except ValidationError as e:
        raise ConfigError(f"step {index} ({step_type}): invalid args: {e}") from e


__all__ = [
    "STEP_TYPES",
    "InstallGPUStep",
    "StopServicesStep",
    "parse_step",
]
