"""
Docker client — run and pull container images.

Uses the docker CLI, never the Docker API directly. ``run`` fails
fast; ``pull`` is retried because pulls flake while the instance's
network is still initializing during boot.
"""

from __future__ import annotations

import logging
import shlex
from collections.abc import Sequence

from provisioner.adapters.shell.command import CommandRunner
from provisioner.core.models.receipt import Receipt
from provisioner.core.reliability.retry import RetryPolicy

logger = logging.getLogger(__name__)

PULL_ATTEMPTS = 10
DOCKER_UNIT = "docker.service"


class DockerClient:
    """Container runtime operations.

    Args:
        runner: Command runner used for every invocation.
        docker_cmd: Path to the docker binary.
        journalctl_cmd: Path to journalctl, used to dump the docker
            service's journal when pulls keep failing.
        pull_policy: Retry policy for pulls (default: 10 immediate attempts).
    """

    def __init__(
        self,
        runner: CommandRunner,
        docker_cmd: str = "docker",
        journalctl_cmd: str = "journalctl",
        pull_policy: RetryPolicy | None = None,
    ):
        self._runner = runner
        self.docker_cmd = docker_cmd
        self.journalctl_cmd = journalctl_cmd
        self.pull_policy = pull_policy or RetryPolicy(max_attempts=PULL_ATTEMPTS)

    def run(self, args: Sequence[str], env: Sequence[str] | None = None) -> Receipt:
        """``docker run <args>`` with ``env`` layered over our environment.

        Raises:
            CommandError: the container exited non-zero. Not retried.
        """
        cmd = [self.docker_cmd, "run", *args]
        return self._runner.check(cmd, env=list(env or []))

    def pull(self, args: Sequence[str]) -> Receipt:
        """``docker pull <args>``, retried up to ``pull_policy.max_attempts`` times.

        Raises:
            CommandError: the last failed attempt, after the docker
                journal has been dumped to stdout.
        """
        cmd = [self.docker_cmd, "pull", *args]
        total = self.pull_policy.max_attempts

        def attempt(i: int) -> Receipt:
            logger.info("Running command %s... [%d/%d]", shlex.join(cmd), i, total)
            return self._runner.run(cmd)

        outcome = self.pull_policy.run(
            attempt,
            succeeded=lambda receipt: receipt.ok,
            on_exhausted=lambda receipt: self._dump_journal(cmd),
        )
        if outcome.succeeded:
            logger.info("Successfully ran command %s", shlex.join(cmd))
        return outcome.result.raise_for_status()

    def _dump_journal(self, cmd: list[str]) -> None:
        """Best-effort: stream the docker service journal to stdout."""
        logger.warning("Command %s failed. See stdout for journal logs.", shlex.join(cmd))
        receipt = self._runner.run(
            [self.journalctl_cmd, "-u", DOCKER_UNIT, "--no-pager"],
            stream_output=True,
        )
        if receipt.failed:
            logger.warning("Cannot read %s journal: %s", DOCKER_UNIT, receipt.describe())
