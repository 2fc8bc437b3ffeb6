"""
Logging configuration for the provisioner CLI.

``setup_logging()`` runs once at startup in main.py; every module logs
through ``logger = logging.getLogger(__name__)``.

Console level precedence:
    --debug / --verbose / --quiet  >  PROVISIONER_LOG_LEVEL  >  INFO

INFO is the default because passes run unattended at boot, where the
console log is the only record of what happened. A second, file-backed
copy is enabled with PROVISIONER_LOG_FILE (level: PROVISIONER_LOG_FILE_LEVEL).
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Mapping
from pathlib import Path

LOG_LEVEL_ENV = "PROVISIONER_LOG_LEVEL"
LOG_FILE_ENV = "PROVISIONER_LOG_FILE"
LOG_FILE_LEVEL_ENV = "PROVISIONER_LOG_FILE_LEVEL"

_DEFAULT_LEVEL = logging.INFO

# (format, datefmt) per console level band
_CONSOLE_FORMATS = {
    logging.DEBUG: ("%(asctime)s %(levelname)-5s %(name)s:%(lineno)d — %(message)s", "%H:%M:%S"),
    logging.INFO: ("%(asctime)s [%(name)s] %(message)s", "%Y-%m-%d %H:%M:%S"),
    logging.WARNING: ("%(levelname)s: %(message)s", None),
}

_FILE_FORMAT = ("%(asctime)s %(levelname)-5s %(name)s:%(lineno)d — %(message)s", "%Y-%m-%dT%H:%M:%S%z")


def resolve_level(
    debug: bool = False,
    verbose: bool = False,
    quiet: bool = False,
    environ: Mapping[str, str] | None = None,
) -> str:
    """Pick the console level name from CLI flags, then the environment."""
    if debug:
        return "DEBUG"
    if verbose:
        return "INFO"
    if quiet:
        return "ERROR"
    env = os.environ if environ is None else environ
    return env.get(LOG_LEVEL_ENV) or logging.getLevelName(_DEFAULT_LEVEL)


def setup_logging(
    level: str = "INFO",
    log_file: str | None = None,
    log_file_level: str | None = None,
) -> None:
    """Configure the root logger for the whole process.

    Args:
        level: Console level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
            Unknown names fall back to INFO.
        log_file: Optional path of an additional log file. Its parent
            directory is created if missing.
        log_file_level: Level for the file; defaults to ``level``.
    """
    console_level = _parse_level(level)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.setFormatter(_console_formatter(console_level))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(console)
    root_level = console_level

    if log_file:
        file_level = _parse_level(log_file_level) if log_file_level else console_level
        root.addHandler(_file_handler(Path(log_file), file_level))
        root_level = min(root_level, file_level)

    root.setLevel(root_level)

    # A broken console or log file must not fail a provisioning pass.
    logging.raiseExceptions = False


def _console_formatter(level: int) -> logging.Formatter:
    if level <= logging.DEBUG:
        fmt, datefmt = _CONSOLE_FORMATS[logging.DEBUG]
    elif level <= logging.INFO:
        fmt, datefmt = _CONSOLE_FORMATS[logging.INFO]
    else:
        fmt, datefmt = _CONSOLE_FORMATS[logging.WARNING]
    return logging.Formatter(fmt, datefmt=datefmt)


def _file_handler(path: Path, level: int) -> logging.Handler:
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(level)
    fmt, datefmt = _FILE_FORMAT
    handler.setFormatter(logging.Formatter(fmt, datefmt=datefmt))
    return handler


def _parse_level(level: str | None) -> int:
    """Level name to its numeric value; INFO when missing or unknown."""
    if not level:
        return _DEFAULT_LEVEL
    numeric = logging.getLevelName(level.strip().upper())
    return numeric if isinstance(numeric, int) else _DEFAULT_LEVEL
