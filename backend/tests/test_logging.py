"""Structured logging setup."""

from __future__ import annotations

import io
import json
import logging

import pytest
import structlog

from trackerhub.core.logging import bind_request_context, clear_request_context, get_logger, setup_logging


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    clear_request_context()
    structlog.reset_defaults()
    root.handlers[:] = handlers
    root.setLevel(level)


def test_json_lines_carry_context_and_service(restore_logging) -> None:
    stream = io.StringIO()
    setup_logging("info", stream=stream)

    bind_request_context(user_id="user-1")
    get_logger("trackerhub.tests").info("rows.added", tracker_id="t1")
    clear_request_context()
    get_logger("trackerhub.tests").debug("rows.ignored")

    [line] = stream.getvalue().splitlines()
    entry = json.loads(line)
    assert entry["event"] == "rows.added"
    assert entry["tracker_id"] == "t1"
    assert entry["user_id"] == "user-1"
    assert entry["service"] == "trackerhub"
    assert entry["level"] == "info"


def test_console_renderer_and_quiet_sql_logger(restore_logging) -> None:
    stream = io.StringIO()
    setup_logging(logging.DEBUG, renderer="console", stream=stream)

    get_logger("trackerhub.tests").info("ledger.cleanup.completed", deleted=3)

    output = stream.getvalue()
    assert "ledger.cleanup.completed" in output
    assert "deleted=3" in output
    assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING
