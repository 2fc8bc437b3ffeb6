"""
Step contract — configuration values with validate/default/run phases.

A step is data: a frozen pydantic model built from configuration.
``validate_config`` and ``apply_defaults`` are pure; only ``run``
touches the host. Re-running a step after a crash must be safe, so
every side effect in ``run`` has to be idempotent.
"""

from __future__ import annotations

import logging
from abc import abstractmethod
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, ClassVar

from pydantic import BaseModel, ConfigDict

from provisioner.core.errors import ConfigError, ProvisionerError, StepError
from provisioner.core.models.deps import Dependencies
from provisioner.core.models.state import ProvisionState

if TYPE_CHECKING:
    from provisioner.adapters.shell.command import CommandRunner

logger = logging.getLogger(__name__)


@dataclass
class StepContext:
    """A step's view of the world while it runs.

    The state handle is shared with the engine, which persists it
    after the step returns. ``work_dir`` is this step's private
    directory inside the state directory.
    """

    state: ProvisionState
    index: int
    work_dir: Path
    runner: CommandRunner

    @property
    def data(self) -> dict[str, Any]:
        """This step's persisted working data."""
        return self.state.steps[self.index].data


class Step(BaseModel):
    """Base class for provisioning steps.

    Subclasses set ``type`` (the name used in configuration) and
    implement ``run``.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: ClassVar[str] = ""

    def validate_config(self) -> None:
        """Reject missing required fields. No side effects.

        Raises:
            ConfigError: a required field is missing or malformed.
        """

    def apply_defaults(self) -> Step:
        """Return a copy with optional fields filled in."""
        return self

    @abstractmethod
    def run(self, ctx: StepContext, deps: Dependencies) -> None:
        """Perform the step.

        Raises:
            ProvisionerError: the step failed; the message names the stage.
        """

    def to_config(self) -> dict[str, Any]:
        """Configuration form: ``{"type": ..., "args": {...}}``."""
        return {"type": self.type, "args": self.model_dump(mode="json")}


@contextmanager
def stage(name: str) -> Iterator[None]:
    """Attribute any failure inside the block to stage ``name``.

    Command, process-table and filesystem errors become StepError.
    ConfigError and StepError pass through untouched.
    """
    logger.debug("Stage: %s", name)
    try:
        yield
    except (ConfigError, StepError):
        raise
    except (ProvisionerError, OSError) as e:
        logger.error("Stage %r failed: %s", name, e)
        raise StepError(name, str(e)) from e


def host_path(deps: Dependencies, path: str | Path) -> Path:
    """Where an absolute host path lives under ``deps.root_dir``.

    Steps use it for every host path they touch or hand to a command,
    so directories they create are the ones later commands act on.
    """
    return Path(deps.root_dir) / str(path).lstrip("/")
