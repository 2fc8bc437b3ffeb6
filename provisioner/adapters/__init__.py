"""Adapters — bindings for the external tools steps shell out to.

Public re-exports for convenient access.
"""

from provisioner.adapters.containers.docker import DockerClient
from provisioner.adapters.mock import MockCommandRunner
from provisioner.adapters.services.systemd import SystemdClient
from provisioner.adapters.shell.command import CommandRunner

__all__ = [
    "CommandRunner",
    "DockerClient",
    "MockCommandRunner",
    "SystemdClient",
]
