"""Tests for the loguru filter and sink setup."""

from pathlib import Path

import pytest
from loguru import logger

from elizalink.config.schema import LoggingConfig
from elizalink.utils.logging import LogFilter, setup_logging


def _record(name: str, level: str, message: str) -> dict:
    return {"name": name, "level": logger.level(level), "message": message}


class TestLogFilter:
    def test_default_level(self) -> None:
        log_filter = LogFilter("INFO")

        assert log_filter(_record("elizalink.session.client", "INFO", "connected"))
        assert not log_filter(_record("elizalink.session.client", "DEBUG", "details"))

    def test_category_overrides_default(self) -> None:
        log_filter = LogFilter("INFO", {"elizalink.transport": "WARNING", "elizalink": "DEBUG"})

        assert not log_filter(_record("elizalink.transport.sio", "INFO", "socket connected"))
        assert log_filter(_record("elizalink.transport.sio", "ERROR", "socket failed"))
        assert log_filter(_record("elizalink.session.client", "DEBUG", "inbound"))
        assert not log_filter(_record("httpx", "DEBUG", "request"))

    def test_category_prefix_must_match_whole_segment(self) -> None:
        log_filter = LogFilter("DEBUG", {"elizalink.tools": "ERROR"})

        assert log_filter(_record("elizalink.toolsx", "INFO", "other module"))
        assert not log_filter(_record("elizalink.tools.bridge", "INFO", "tool call"))

    def test_suppressed_substrings_are_dropped(self) -> None:
        log_filter = LogFilter("DEBUG", suppress=["could not infer client capabilities"])

        assert not log_filter(_record("elizalink", "WARNING", "Warning: could not infer client capabilities"))
        assert log_filter(_record("elizalink", "WARNING", "something else"))

    def test_unknown_level_raises(self) -> None:
        with pytest.raises(ValueError):
            LogFilter("LOUD")


class TestSetupLogging:
    def test_file_sink_receives_filtered_messages(self, tmp_path: Path) -> None:
        log_file = tmp_path / "elizalink.log"
        config = LoggingConfig(level="INFO", log_file=str(log_file), suppress=["secret"])

        setup_logging(config, stderr=False)
        logger.info("visible message")
        logger.info("secret message")
        logger.debug("debug message")
        logger.complete()
        logger.remove()

        content = log_file.read_text()
        assert "visible message" in content
        assert "secret message" not in content
        assert "debug message" not in content
