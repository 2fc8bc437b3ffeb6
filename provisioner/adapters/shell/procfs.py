"""
Procfs helpers — process lookup and kernel tunables.

Everything is relative to a root directory so tests can point it at
a fake tree instead of the live ``/proc``.
"""

from __future__ import annotations

import logging
from pathlib import Path

from provisioner.core.errors import ProcessTableError

logger = logging.getLogger(__name__)


def process_exists(root_dir: str | Path, name: str) -> bool:
    """Whether any ``<root_dir>/proc/*/cmdline`` contains ``name``.

    NUL argument separators are read as spaces, so ``name`` may span
    arguments (e.g. ``"nvidia-persistenced --verbose"``).

    Raises:
        ProcessTableError: a cmdline file could not be read.
    """
    proc = Path(root_dir) / "proc"
    for cmdline in proc.glob("*/cmdline"):
        try:
            data = cmdline.read_bytes()
        except FileNotFoundError:
            # Process exited between listing and reading.
            continue
        except OSError as e:
            raise ProcessTableError(f"cannot read {cmdline}: {e}") from e

        if name in data.replace(b"\x00", b" ").decode("utf-8", errors="replace"):
            logger.debug("Found %r in %s", name, cmdline)
            return True
    return False


def write_kernel_tunable(root_dir: str | Path, name: str, value: str) -> Path:
    """Write ``value`` to ``<root_dir>/proc/sys/<name>``.

    ``name`` uses slashes, e.g. ``kernel/softlockup_panic``.
    """
    target = Path(root_dir) / "proc" / "sys" / name
    target.write_text(value, encoding="ascii")
    logger.info("Set %s = %s", name, value)
    return target
