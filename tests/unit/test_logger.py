"""
tests/unit/test_logger.py — structlog setup and automation context binding
"""

from __future__ import annotations

import json
import logging

import pytest
import structlog

from cronpilot.observability.logger import (
    bind_automation,
    clear_automation,
    get_logger,
    setup_logging,
)


@pytest.fixture
def log_dir(tmp_path):
    yield tmp_path
    root = logging.getLogger()
    for handler in list(root.handlers):
        handler.close()
        root.removeHandler(handler)
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()


def _read_events(log_dir):
    for handler in logging.getLogger().handlers:
        handler.flush()
    lines = (log_dir / "cronpilot.log").read_text(encoding="utf-8").splitlines()
    return [json.loads(line) for line in lines if line.strip()]


class TestSetupLogging:

    def test_file_output_is_json(self, log_dir):
        setup_logging(level="DEBUG", log_dir=log_dir, json_format=True, console_output=False)
        get_logger("cronpilot.test_logger.json").info("test.event", answer=42)

        events = _read_events(log_dir)
        event = next(e for e in events if e["event"] == "test.event")
        assert event["answer"] == 42
        assert event["level"] == "info"
        assert event["logger"] == "cronpilot.test_logger.json"
        assert "timestamp" in event

    def test_level_filters(self, log_dir):
        setup_logging(level="WARNING", log_dir=log_dir, json_format=True, console_output=False)
        log = get_logger("cronpilot.test_logger.level")
        log.info("test.quiet")
        log.warning("test.loud")

        names = [e["event"] for e in _read_events(log_dir)]
        assert "test.loud" in names
        assert "test.quiet" not in names

    def test_automation_context(self, log_dir):
        setup_logging(level="INFO", log_dir=log_dir, json_format=True, console_output=False)
        log = get_logger("cronpilot.test_logger.ctx", component="tracker")

        bind_automation("auto_1")
        log.info("test.bound")
        clear_automation()
        log.info("test.unbound")

        events = {e["event"]: e for e in _read_events(log_dir)}
        assert events["test.bound"]["automation_id"] == "auto_1"
        assert events["test.bound"]["component"] == "tracker"
        assert "automation_id" not in events["test.unbound"]
