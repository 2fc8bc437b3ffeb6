"""
Dependencies — resolved external tools and the root filesystem path.

Built once per provisioning pass and shared read-only by every step.
"""

from __future__ import annotations

import shutil

from pydantic import BaseModel, ConfigDict


def _which(name: str) -> str:
    return shutil.which(name) or name


class Dependencies(BaseModel):
    """Paths to the tools steps shell out to."""

    model_config = ConfigDict(frozen=True)

    docker_cmd: str = "docker"
    journalctl_cmd: str = "journalctl"
    mount_cmd: str = "mount"
    systemctl_cmd: str = "systemctl"
    root_dir: str = "/"

    @classmethod
    def resolve(
        cls,
        docker_cmd: str | None = None,
        journalctl_cmd: str | None = None,
        mount_cmd: str | None = None,
        systemctl_cmd: str | None = None,
        root_dir: str | None = None,
    ) -> Dependencies:
        """Resolve each tool to an absolute path via PATH.

        Explicit arguments win. A tool not found on PATH keeps its bare
        name; the failure surfaces when a step actually runs it.
        """
        return cls(
            docker_cmd=docker_cmd or _which("docker"),
            journalctl_cmd=journalctl_cmd or _which("journalctl"),
            mount_cmd=mount_cmd or _which("mount"),
            systemctl_cmd=systemctl_cmd or _which("systemctl"),
            root_dir=root_dir or "/",
        )
