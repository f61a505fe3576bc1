"""Tests for logging setup."""

import logging

import pytest

from termdeck.logging_config import (
    FlushingStreamHandler,
    get_logger,
    resolve_level,
    setup_process_logging,
)
from tests.conftest import write_settings


@pytest.fixture
def root_logger():
    root = logging.getLogger()
    saved_handlers = list(root.handlers)
    saved_level = root.level
    yield root
    for handler in root.handlers:
        if handler not in saved_handlers:
            handler.close()
    root.handlers[:] = saved_handlers
    root.setLevel(saved_level)


class TestResolveLevel:
    def test_explicit_values(self):
        assert resolve_level(logging.DEBUG) == logging.DEBUG
        assert resolve_level("warning") == logging.WARNING

    def test_unknown_name_falls_back_to_info(self):
        assert resolve_level("chatty") == logging.INFO

    def test_reads_setting(self, data_dir):
        write_settings(data_dir, log_level="DEBUG")
        assert resolve_level() == logging.DEBUG


class TestSetupProcessLogging:
    def test_file_only(self, data_dir, root_logger):
        setup_process_logging("run", console=False)

        assert not any(isinstance(h, FlushingStreamHandler) for h in root_logger.handlers)
        get_logger("termdeck.test").info("session started")
        for handler in root_logger.handlers:
            handler.flush()

        daily = data_dir / "logs" / "run.log"
        current = data_dir / "logs" / "run-current.log"
        assert "[run] [INFO] termdeck.test: session started" in daily.read_text()
        assert "session started" in current.read_text()

    def test_console_and_level(self, data_dir, root_logger):
        setup_process_logging("agents", level="WARNING", file=False)

        assert root_logger.level == logging.WARNING
        assert len(root_logger.handlers) == 1
        assert isinstance(root_logger.handlers[0], FlushingStreamHandler)
        assert not (data_dir / "logs" / "agents.log").exists()

    def test_quiets_watcher_logs(self, data_dir, root_logger):
        setup_process_logging("agents", level=logging.DEBUG, file=False)
        assert logging.getLogger("watchfiles").level == logging.WARNING

    def test_repeat_setup_replaces_handlers(self, data_dir, root_logger):
        setup_process_logging("run", console=True, file=False)
        setup_process_logging("run", console=True, file=False)
        assert len(root_logger.handlers) == 1
