"""Tests for logging setup."""
import json
import logging

import pytest
import structlog

from ragprep.logging_config import configure_logging


@pytest.fixture(autouse=True)
def restore_logging():
    """Undo global logging configuration after each test."""
    root = logging.getLogger()
    previous_level = root.level
    yield
    root.setLevel(previous_level)
    structlog.reset_defaults()


def test_sets_root_level():
    configure_logging("debug")
    assert logging.getLogger().level == logging.DEBUG


def test_events_rendered_as_json(caplog):
    configure_logging("INFO")

    with caplog.at_level(logging.INFO):
        structlog.get_logger("ragprep.test").info("segment_ranked", returned=3)

    record = json.loads(caplog.records[-1].getMessage())
    assert record["event"] == "segment_ranked"
    assert record["returned"] == 3
    assert record["level"] == "info"
    assert "timestamp" in record
