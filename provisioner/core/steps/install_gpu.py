"""
InstallGPU step — install, verify, and activate NVIDIA drivers.

The drivers are installed by a privileged installer container into a
host directory, which is bind-mounted onto itself and remounted
``exec`` first because the backing filesystem may be mounted noexec.

Stages, in order; the first failure stops the step:

    derive version → setup install dir → pull installer → run installer
    → nvidia-smi sanity check → nvidia-persistenced → softlockup_panic

Nothing is rolled back on failure. Every stage is idempotent, so the
next pass simply runs the whole step again.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import ClassVar, TextIO

from pydantic import AliasChoices, Field

from provisioner.adapters.containers.docker import DockerClient
from provisioner.adapters.shell.procfs import process_exists, write_kernel_tunable
from provisioner.core.errors import CommandError, ConfigError, ProcessTableError, StepError
from provisioner.core.models.deps import Dependencies
from provisioner.core.models.step import Step, StepContext, host_path, stage

logger = logging.getLogger(__name__)

INSTALLER_SUFFIX = ".run"
DEFAULT_INSTALL_DIR = "/var/lib/nvidia"
INSTALL_DIR_CONTAINER = "/usr/local/nvidia"
ROOT_MOUNT_DIR = "/root"
INSTALLER_LOG = "nvidia-installer.log"
PERSISTENCED = "nvidia-persistenced"
GCS_PREFIX = "gs://"
GCS_PUBLIC_URL = "https://storage.googleapis.com/"

# Variables handed to the installer container, in the order they are passed.
INSTALLER_ENV_VARS = (
    "NVIDIA_DRIVER_VERSION",
    "NVIDIA_DRIVER_MD5SUM",
    "NVIDIA_INSTALL_DIR_HOST",
    "COS_NVIDIA_INSTALLER_CONTAINER",
    "NVIDIA_INSTALL_DIR_CONTAINER",
    "ROOT_MOUNT_DIR",
    "COS_DOWNLOAD_GCS",
    "GPU_INSTALLER_DOWNLOAD_URL",
)


def derive_driver_version(version: str) -> str:
    """Bare driver version from a version token or installer file name.

    ``NVIDIA-Linux-x86_64-450.51.06.run`` → ``450.51.06``;
    ``450.51.06`` → ``450.51.06``.

    Raises:
        ConfigError: an installer name with fewer than four dash fields.
    """
    if not version.endswith(INSTALLER_SUFFIX):
        return version
    fields = [f for f in version.removesuffix(INSTALLER_SUFFIX).split("-") if f]
    if len(fields) < 4:
        raise ConfigError(f"Malformed nvidia installer: {version!r}")
    return fields[3]


class InstallGPUStep(Step):
    """Install GPU drivers with the COS NVIDIA installer container."""

    type: ClassVar[str] = "InstallGPU"

    # Each field also accepts its CamelCase name from existing COS customizer configs.
    nvidia_driver_version: str = Field("", validation_alias=AliasChoices("nvidia_driver_version", "NvidiaDriverVersion"))
    nvidia_driver_md5sum: str = Field("", validation_alias=AliasChoices("nvidia_driver_md5sum", "NvidiaDriverMD5Sum"))
    nvidia_install_dir_host: str = Field(
        "", validation_alias=AliasChoices("nvidia_install_dir_host", "NvidiaInstallDirHost")
    )
    nvidia_installer_container: str = Field(
        "", validation_alias=AliasChoices("nvidia_installer_container", "NvidiaInstallerContainer")
    )
    gcs_deps_prefix: str = Field("", validation_alias=AliasChoices("gcs_deps_prefix", "GCSDepsPrefix"))

    # ── Pure phases ─────────────────────────────────────────────

    def validate_config(self) -> None:
        if not self.nvidia_driver_version:
            raise ConfigError("invalid args: nvidia_driver_version is required in InstallGPU")
        if not self.nvidia_installer_container:
            raise ConfigError("invalid args: nvidia_installer_container is required in InstallGPU")
        derive_driver_version(self.nvidia_driver_version)

    def apply_defaults(self) -> InstallGPUStep:
        if self.nvidia_install_dir_host:
            return self
        return self.model_copy(update={"nvidia_install_dir_host": DEFAULT_INSTALL_DIR})

    @property
    def download_url(self) -> str:
        """HTTPS base for dependency downloads; empty without a GCS prefix."""
        if not self.gcs_deps_prefix:
            return ""
        return GCS_PUBLIC_URL + self.gcs_deps_prefix.removeprefix(GCS_PREFIX)

    @property
    def installer_download_url(self) -> str:
        """Direct URL of the installer archive, when one is configured."""
        base = self.download_url
        if not base or not self.nvidia_driver_version.endswith(INSTALLER_SUFFIX):
            return ""
        return f"{base}/{self.nvidia_driver_version}"

    def installer_env(self, driver_version: str) -> list[str]:
        """``KEY=VALUE`` entries for the installer container."""
        values = (
            driver_version,
            self.nvidia_driver_md5sum,
            self.nvidia_install_dir_host,
            self.nvidia_installer_container,
            INSTALL_DIR_CONTAINER,
            ROOT_MOUNT_DIR,
            self.download_url,
            self.installer_download_url,
        )
        return [f"{name}={value}" for name, value in zip(INSTALLER_ENV_VARS, values, strict=True)]

    def installer_args(self, deps: Dependencies | None = None) -> list[str]:
        """Arguments to ``docker run`` for the installer container.

        Volume sources are resolved under ``deps.root_dir``, the same
        location the install dir is created and mounted at.
        """
        deps = deps or Dependencies()
        args = [
            "--rm",
            "--privileged",
            "--net=host",
            "--pid=host",
            "--volume", f"{host_path(deps, self.nvidia_install_dir_host)}:{INSTALL_DIR_CONTAINER}",
            "--volume", "/dev:/dev",
            "--volume", f"{deps.root_dir}:{ROOT_MOUNT_DIR}",
        ]
        for name in INSTALLER_ENV_VARS:
            args += ["-e", name]
        args.append(self.nvidia_installer_container)
        return args

    # ── Impure phase ────────────────────────────────────────────

    def run(self, ctx: StepContext, deps: Dependencies) -> None:
        self.validate_config()
        step = self.apply_defaults()
        driver_version = derive_driver_version(step.nvidia_driver_version)
        ctx.data["driver_version"] = driver_version
        ctx.data["install_dir"] = step.nvidia_install_dir_host

        docker = DockerClient(
            ctx.runner,
            docker_cmd=deps.docker_cmd,
            journalctl_cmd=deps.journalctl_cmd,
        )
        # Every filesystem path this process touches lives under root_dir.
        install_dir = host_path(deps, step.nvidia_install_dir_host)
        bin_dir = install_dir / "bin"

        logger.info("Installing GPU drivers...")

        with stage("setup install dir"):
            step._setup_install_dir(ctx, deps, install_dir)

        with stage("pull installer"):
            docker.pull([step.nvidia_installer_container])

        with stage("run installer"):
            step._run_installer(ctx, deps, docker, driver_version, install_dir)

        # Sanity check the installation.
        with stage("sanity check"):
            ctx.runner.check([str(bin_dir / "nvidia-smi")])

        with stage("start nvidia-persistenced"):
            try:
                running = process_exists(deps.root_dir, PERSISTENCED)
            except ProcessTableError as e:
                raise StepError(
                    "start nvidia-persistenced",
                    f"error searching for process {PERSISTENCED!r}: {e}",
                ) from e
            if running:
                logger.info("%s is already running", PERSISTENCED)
            else:
                logger.info("%s is not running: starting %s", PERSISTENCED, PERSISTENCED)
                ctx.runner.check([str(bin_dir / PERSISTENCED), "--verbose"])

        with stage("set softlockup_panic"):
            write_kernel_tunable(deps.root_dir, "kernel/softlockup_panic", "1")

        logger.info("Done installing GPU drivers")

    def _setup_install_dir(self, ctx: StepContext, deps: Dependencies, install_dir: Path) -> None:
        install_dir.mkdir(mode=0o755, parents=True, exist_ok=True)
        target = str(install_dir)
        try:
            ctx.runner.check([deps.mount_cmd, "--bind", target, target])
        except CommandError as e:
            raise StepError("setup install dir", f"error bind mounting {target!r}: {e}") from e
        try:
            ctx.runner.check([deps.mount_cmd, "-o", "remount,exec", target])
        except CommandError as e:
            raise StepError("setup install dir", f"error remounting {target!r} as executable: {e}") from e

    def _run_installer(
        self,
        ctx: StepContext,
        deps: Dependencies,
        docker: DockerClient,
        driver_version: str,
        install_dir: Path,
    ) -> None:
        logger.info("Running GPU installer...")
        try:
            docker.run(self.installer_args(deps), self.installer_env(driver_version))
        except CommandError:
            logger.error("GPU install failed.")
            self._dump_installer_log(install_dir, ctx.runner.stdout)
            raise
        logger.info("Done running GPU installer")

    @staticmethod
    def _dump_installer_log(install_dir: Path, sink: TextIO) -> None:
        """Best-effort: copy the installer's own log to stdout."""
        try:
            log_file = (install_dir / INSTALLER_LOG).open(encoding="utf-8", errors="replace")
        except OSError as e:
            logger.warning("Cannot open GPU installer log file: %s", e)
            return
        with log_file:
            logger.info("Dumping GPU installer logs to stdout")
            try:
                shutil.copyfileobj(log_file, sink)
            except OSError as e:
                logger.warning("Cannot dump GPU installer logs: %s", e)
