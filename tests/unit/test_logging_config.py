"""Unit tests for logging configuration."""

from __future__ import annotations

import json
import logging
import sys

import pytest

from anonfetch.logging_config import JsonFormatter, configure_logging


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)


class TestConfigureLogging:
    def test_installs_single_json_handler(self, restore_root_logger) -> None:
        configure_logging("debug")
        configure_logging("debug")

        root = restore_root_logger
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, JsonFormatter)

    def test_unknown_level_falls_back_to_info(self, restore_root_logger) -> None:
        configure_logging("chatty")
        assert restore_root_logger.level == logging.INFO


class TestJsonFormatter:
    def test_exception_is_included(self) -> None:
        try:
            raise RuntimeError("token=abc123 leaked")
        except RuntimeError:
            record = logging.LogRecord(
                "anonfetch", logging.ERROR, "x.py", 1, "boom", (), exc_info=True
            )
            record.exc_info = sys.exc_info()

        parsed = json.loads(JsonFormatter().format(record))
        assert "RuntimeError" in parsed["exception"]
        assert "abc123" not in parsed["exception"]

    def test_unrelated_extras_are_dropped(self) -> None:
        record = logging.LogRecord("anonfetch", logging.INFO, "x.py", 1, "ok", (), None)
        record.cookies = {"sid": "1"}
        record.unrelated = "x"
        parsed = json.loads(JsonFormatter().format(record))
        assert parsed["cookies"] == {"sid": "1"}
        assert "unrelated" not in parsed
