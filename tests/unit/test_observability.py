import json
import logging
import sys

from rebalancer.infrastructure.observability import JsonFormatter, configure_logging


def _record(message="assessment %s", args=("done",)):
    return logging.LogRecord(
        "rebalancer.core.engine", logging.INFO, __file__, 10, message, args, None
    )


def test_json_formatter_includes_service_context_and_extra_fields(monkeypatch):
    monkeypatch.setenv("SERVICE_NAME", "rebalancer-test")
    record = _record()
    record.extra_fields = {"plans": 3}

    payload = json.loads(JsonFormatter().format(record))

    assert payload["message"] == "assessment done"
    assert payload["level"] == "INFO"
    assert payload["service"] == "rebalancer-test"
    assert payload["environment"] == "local"
    assert payload["logger"] == "rebalancer.core.engine"
    assert payload["plans"] == 3
    assert "exception" not in payload


def test_json_formatter_renders_exceptions():
    try:
        raise ValueError("boom")
    except ValueError:
        record = _record()
        record.exc_info = sys.exc_info()

    payload = json.loads(JsonFormatter().format(record))

    assert payload["service"] == "portfolio-layer-rebalancer"
    assert "ValueError: boom" in payload["exception"]


def test_configure_logging_installs_single_json_handler():
    root = logging.getLogger()
    saved_handlers = list(root.handlers)
    saved_level = root.level
    try:
        configured = configure_logging("debug")

        assert configured is root
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, JsonFormatter)
    finally:
        root.handlers.clear()
        root.handlers.extend(saved_handlers)
        root.setLevel(saved_level)
