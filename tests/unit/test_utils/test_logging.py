"""Tests for logging setup."""

from __future__ import annotations

import logging
from pathlib import Path

from dbgateway.config.settings import LoggingConfig
from dbgateway.utils.logging import setup_logging, uvicorn_log_config


class TestSetupLogging:
    def test_level_and_single_console_handler(self) -> None:
        setup_logging(LoggingConfig(level="debug"))
        setup_logging(LoggingConfig(level="warning"))
        logger = logging.getLogger("dbgateway")
        assert logger.level == logging.WARNING
        assert len(logger.handlers) == 1

    def test_file_handler(self, tmp_path: Path) -> None:
        log_file = tmp_path / "gateway.log"
        setup_logging(LoggingConfig(file=str(log_file)))
        logging.getLogger("dbgateway.gateway.server").info("hello from test")
        for handler in logging.getLogger("dbgateway").handlers:
            handler.flush()
        assert "hello from test" in log_file.read_text()
        setup_logging()

    def test_unknown_level_falls_back_to_info(self) -> None:
        setup_logging(LoggingConfig(level="chatty"))
        assert logging.getLogger("dbgateway").level == logging.INFO


class TestUvicornLogConfig:
    def test_shares_format(self) -> None:
        config = uvicorn_log_config(LoggingConfig(format="%(message)s", level="warning"))
        assert config["formatters"]["default"]["format"] == "%(message)s"
        assert config["loggers"]["uvicorn"]["level"] == "WARNING"
        assert config["loggers"]["uvicorn.access"]["handlers"] == ["console"]

    def test_file_handler_added(self) -> None:
        config = uvicorn_log_config(LoggingConfig(file="/var/log/dbgateway.log"))
        assert config["handlers"]["file"]["filename"] == "/var/log/dbgateway.log"
        assert config["loggers"]["uvicorn"]["handlers"] == ["console", "file"]
