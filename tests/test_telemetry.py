"""Tests for structlog configuration."""

import pytest
import structlog

from replaycache.telemetry import configure_logging


@pytest.fixture(autouse=True)
def _reset_structlog():
    yield
    structlog.reset_defaults()


def test_json_logs_use_json_renderer():
    configure_logging(json_logs=True, log_level="debug")
    processors = structlog.get_config()["processors"]
    assert isinstance(processors[-1], structlog.processors.JSONRenderer)


def test_dev_logs_use_console_renderer():
    configure_logging(json_logs=False)
    config = structlog.get_config()
    assert isinstance(config["processors"][-1], structlog.dev.ConsoleRenderer)
    assert config["wrapper_class"] is structlog.stdlib.BoundLogger
