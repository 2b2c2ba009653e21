"""Tests for :mod:`agentbridge.utils.logging`."""

from __future__ import annotations

import io
import logging
from pathlib import Path

import pytest

from agentbridge.utils import logging as logging_utils


class TestParseLevel:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [("debug", logging.DEBUG), ("WARNING", logging.WARNING), ("20", 20), (logging.ERROR, logging.ERROR)],
    )
    def test_known_levels(self, value: str | int, expected: int) -> None:
        assert logging_utils.parse_level(value) == expected

    def test_unknown_level_raises(self) -> None:
        with pytest.raises(ValueError):
            logging_utils.parse_level("chatty")

class TestSetupLogging:
    """Handlers are owned by the package logger."""

    def test_rotating_file_receives_engine_records(self, tmp_path: Path, restore_package_logging) -> None:
        log_file = tmp_path / "logs" / "engine.log"

        logging_utils.setup_logging(logging.INFO, log_file=log_file, console=False)
        logging.getLogger("agentbridge.engine.lifecycle").info("Logging smoke test")
        for handler in logging.getLogger(logging_utils.PACKAGE_LOGGER).handlers:
            handler.flush()

        assert logging_utils.get_log_path() == log_file
        assert "Logging smoke test" in log_file.read_text(encoding="utf-8")

    def test_repeated_setup_replaces_handlers(self, restore_package_logging) -> None:
        package_logger = logging.getLogger(logging_utils.PACKAGE_LOGGER)
        before = len(package_logger.handlers)

        logging_utils.setup_logging(logging.DEBUG, stream=io.StringIO())
        logging_utils.setup_logging(logging.DEBUG, stream=io.StringIO())

        assert len(package_logger.handlers) == before + 1
        assert logging_utils.get_log_path() is None

    def test_console_stream_and_quiet_transport(self, restore_package_logging) -> None:
        stream = io.StringIO()
        logging_utils.setup_logging(logging.DEBUG, stream=stream)

        logging.getLogger("agentbridge.backend.client").debug("Backend request %s", "thread/read")

        assert "Backend request thread/read" in stream.getvalue()
        assert logging.getLogger("httpx").level == logging.WARNING
        assert logging.getLogger("httpcore").level == logging.WARNING
