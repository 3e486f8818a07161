import json
import logging
import sys

from botlocal.logging_config import ConsoleFormatter, JSONFormatter, get_logger


def _record(message, context=None, exc_info=None):
    record = logging.LogRecord("botlocal.pipeline_service", logging.INFO, __file__, 1, message, None, exc_info)
    if context is not None:
        record.context = context
    return record


class TestJSONFormatter:
    def test_basic_fields(self):
        entry = json.loads(JSONFormatter().format(_record("Turn completed")))

        assert entry["level"] == "INFO"
        assert entry["logger"] == "botlocal.pipeline_service"
        assert entry["message"] == "Turn completed"
        assert "context" not in entry

    def test_context_with_non_json_values(self):
        import uuid

        business_id = uuid.uuid4()
        entry = json.loads(JSONFormatter().format(_record("x", {"business_id": business_id, "delivered": True})))

        assert entry["context"] == {"business_id": str(business_id), "delivered": True}

    def test_exception_is_included(self):
        try:
            raise RuntimeError("db down")
        except RuntimeError:
            record = _record("Turn persistence failed", exc_info=sys.exc_info())

        entry = json.loads(JSONFormatter().format(record))
        assert "RuntimeError: db down" in entry["exception"]

    def test_non_ascii_is_kept(self):
        line = JSONFormatter().format(_record("¿abren hoy?"))
        assert "¿abren hoy?" in line


class TestConsoleFormatter:
    def test_context_is_appended(self):
        line = ConsoleFormatter().format(_record("Plan limit reached", {"event_key": "whatsapp:SM1"}))
        assert line.endswith("Plan limit reached event_key=whatsapp:SM1")


def test_get_logger_namespace():
    assert get_logger("billing_service").name == "botlocal.billing_service"
