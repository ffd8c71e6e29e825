"""Unit tests for structured and security logging."""

import json
import logging

from coach_engine.logging_config import (
    SECURITY_LOGGER_NAME,
    JsonFormatter,
    log_security_event,
    request_id_var,
)


def make_record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("coach_engine.test", logging.INFO, __file__, 1, "Turn %s", ("done",), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJsonFormatter:
    def test_extra_fields_and_request_id(self):
        record = make_record(request_id="req-1", session_id="s-1", tokens=42)
        data = json.loads(JsonFormatter().format(record))
        assert data["message"] == "Turn done"
        assert data["request_id"] == "req-1"
        assert data["session_id"] == "s-1"
        assert data["tokens"] == 42

    def test_unserializable_extra_is_stringified(self):
        data = json.loads(JsonFormatter().format(make_record(when=object())))
        assert data["when"].startswith("<object object")


class TestSecurityEvents:
    def test_event_fields_and_level(self, caplog):
        with caplog.at_level(logging.INFO, logger=SECURITY_LOGGER_NAME):
            log_security_event("crisis_detected", severity="high", risk_score=0.95, message_id=None)

        record = caplog.records[-1]
        assert record.name == SECURITY_LOGGER_NAME
        assert record.levelno == logging.ERROR
        assert record.security_event == "crisis_detected"
        assert record.severity == "high"
        assert record.risk_score == 0.95

    def test_request_id_context(self):
        token = request_id_var.set("abc")
        try:
            assert request_id_var.get() == "abc"
        finally:
            request_id_var.reset(token)
        assert request_id_var.get() is None
