"""
Tests for observability — logging setup and level resolution.
"""

import logging
from pathlib import Path

import pytest

from provisioner.core.observability.logging_config import resolve_level, setup_logging


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    raise_exceptions = logging.raiseExceptions
    yield root
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)
    logging.raiseExceptions = raise_exceptions


class TestResolveLevel:
    def test_default_is_info(self):
        assert resolve_level(environ={}) == "INFO"

    def test_env_var(self):
        assert resolve_level(environ={"PROVISIONER_LOG_LEVEL": "WARNING"}) == "WARNING"

    def test_flags_beat_env(self):
        env = {"PROVISIONER_LOG_LEVEL": "WARNING"}
        assert resolve_level(debug=True, environ=env) == "DEBUG"
        assert resolve_level(verbose=True, environ=env) == "INFO"
        assert resolve_level(quiet=True, environ=env) == "ERROR"

    def test_debug_beats_quiet(self):
        assert resolve_level(debug=True, quiet=True, environ={}) == "DEBUG"


class TestSetupLogging:
    def test_console_level(self, restore_root_logger):
        setup_logging(level="ERROR")
        [console] = restore_root_logger.handlers
        assert console.level == logging.ERROR
        assert restore_root_logger.level == logging.ERROR

    def test_unknown_level_falls_back_to_info(self, restore_root_logger):
        setup_logging(level="LOUD")
        assert restore_root_logger.level == logging.INFO

    def test_file_handler(self, restore_root_logger, tmp_path: Path):
        log_file = tmp_path / "logs" / "provisioner.log"
        setup_logging(level="WARNING", log_file=str(log_file), log_file_level="DEBUG")

        assert restore_root_logger.level == logging.DEBUG
        logging.getLogger("provisioner.test").debug("file only")
        for handler in restore_root_logger.handlers:
            handler.flush()
        assert "file only" in log_file.read_text()

    def test_file_level_defaults_to_console(self, restore_root_logger, tmp_path: Path):
        setup_logging(level="WARNING", log_file=str(tmp_path / "p.log"))
        assert {h.level for h in restore_root_logger.handlers} == {logging.WARNING}
