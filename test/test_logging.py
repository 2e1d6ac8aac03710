"""
Tests for structured event logging.
"""

import json
import logging

from keeper.engine.logging_config import JsonLineFormatter, clear_log_context, log_event, set_log_context
from keeper.engine.models import SkipReason


def _record(fields, exc_info=None):
    record = logging.LogRecord("keeper.events", logging.WARNING, __file__, 1, "job_skip", None, exc_info)
    record.fields = fields
    return record


def test_event_line_includes_context():
    set_log_context(run_id="run-1", network="mezo-testnet")
    try:
        line = JsonLineFormatter().format(_record({"reason": SkipReason.SPEND_CAP, "cap": "100"}))
    finally:
        clear_log_context()

    payload = json.loads(line)
    assert payload["event"] == "job_skip"
    assert payload["level"] == "warning"
    assert payload["run_id"] == "run-1"
    assert payload["reason"] == "SPEND_CAP"
    assert payload["cap"] == "100"


def test_event_line_includes_error():
    try:
        raise ValueError("boom")
    except ValueError as e:
        exc_info = (type(e), e, e.__traceback__)

    payload = json.loads(JsonLineFormatter().format(_record({}, exc_info)))

    assert payload["error"] == {"name": "ValueError", "message": "boom"}


def test_log_event_fields(events):
    log_event("job_plan", component="executor", working_count=3)

    assert events.find("job_plan") == [{"component": "executor", "working_count": 3}]
