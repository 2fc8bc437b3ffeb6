"""
Configuration loader — reads the provisioning config into step models.

The config is YAML (JSON is accepted too, being a YAML subset):

    steps:
      - type: InstallGPU
        args:
          nvidia_driver_version: "450.51.06"
          nvidia_installer_container: gcr.io/example/gpu-installer:latest
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from provisioner.core.errors import ConfigError
from provisioner.core.models.step import Step
from provisioner.core.steps import parse_step

logger = logging.getLogger(__name__)


@dataclass
class ProvisionConfig:
    """Validated provisioning configuration."""

    steps: list[Step] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Any) -> ProvisionConfig:
        """Build a config from parsed YAML/JSON data.

        Raises:
            ConfigError: wrong shape, unknown step type, or invalid args.
        """
        if not isinstance(data, dict):
            raise ConfigError(f"Expected a mapping at the top level, got {type(data).__name__}")

        raw_steps = data.get("steps")
        if raw_steps is None:
            raise ConfigError("Missing required key: 'steps'")
        if not isinstance(raw_steps, list):
            raise ConfigError("'steps' must be a list")

        return cls(steps=[parse_step(raw, index) for index, raw in enumerate(raw_steps)])


def load_config(path: Path) -> ProvisionConfig:
    """Load and validate a provisioning config file.

    Raises:
        ConfigError: if the file is missing or invalid.
    """
    if not path.is_file():
        raise ConfigError(f"Config file not found: {path}")

    logger.debug("Loading provisioning config from %s", path)

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    config = ProvisionConfig.from_dict(data)
    logger.info("Loaded %d steps from %s", len(config.steps), path)
    return config
