"""
Shared test fixtures and configuration.
"""

import io
from pathlib import Path

import pytest

from provisioner.adapters.mock import MockCommandRunner
from provisioner.core.models.deps import Dependencies
from provisioner.core.models.state import ProvisionState
from provisioner.core.models.step import StepContext
from provisioner.core.persistence.state_file import StateStore


def write_cmdline(root: Path, pid: int, *argv: str) -> Path:
    """Add a fake process to ``<root>/proc/<pid>/cmdline``."""
    path = root / "proc" / str(pid) / "cmdline"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"\x00".join(a.encode() for a in argv) + b"\x00")
    return path


@pytest.fixture
def fake_root(tmp_path: Path) -> Path:
    """A root filesystem with a minimal /proc tree."""
    root = tmp_path / "root"
    tunable = root / "proc" / "sys" / "kernel" / "softlockup_panic"
    tunable.parent.mkdir(parents=True)
    tunable.write_text("0")
    write_cmdline(root, 1, "/sbin/init")
    write_cmdline(root, 42, "/usr/bin/dockerd", "--registry-mirror=https://mirror.gcr.io")
    return root


@pytest.fixture
def add_process(fake_root: Path):
    """Add a fake process to the fake root's process table."""

    def _add(pid: int, *argv: str) -> Path:
        return write_cmdline(fake_root, pid, *argv)

    return _add


@pytest.fixture
def deps(fake_root: Path) -> Dependencies:
    return Dependencies(
        docker_cmd="/usr/bin/docker",
        journalctl_cmd="/bin/journalctl",
        mount_cmd="/bin/mount",
        systemctl_cmd="/bin/systemctl",
        root_dir=str(fake_root),
    )


@pytest.fixture
def stdout() -> io.StringIO:
    return io.StringIO()


@pytest.fixture
def runner(stdout: io.StringIO) -> MockCommandRunner:
    return MockCommandRunner(stdout=stdout)


@pytest.fixture
def store(tmp_path: Path) -> StateStore:
    return StateStore(tmp_path / "state")


@pytest.fixture
def make_ctx(store: StateStore, runner: MockCommandRunner):
    """Build a StepContext for a single step of the given type."""

    def _make(step_type: str = "InstallGPU") -> StepContext:
        state = ProvisionState.fresh("test", [step_type])
        return StepContext(state=state, index=0, work_dir=store.work_dir(0), runner=runner)

    return _make
