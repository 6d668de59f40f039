from __future__ import annotations

import json
import logging

import structlog

from scanner_lookup.observability import build_formatter


def _record() -> logging.LogRecord:
    record = logging.LogRecord(
        "scanner_lookup.services.product_lookup.service",
        logging.WARNING,
        __file__,
        1,
        "Slow product %s",
        ("lookup",),
        None,
    )
    record.outcome = "hit"
    record.key = "690********92"
    return record


def test_json_formatter_renders_extra_and_bound_operation():
    with structlog.contextvars.bound_contextvars(operation="lookup"):
        rendered = build_formatter(json_logs=True).format(_record())

    payload = json.loads(rendered)
    assert payload["event"] == "Slow product lookup"
    assert payload["operation"] == "lookup"
    assert payload["outcome"] == "hit"
    assert payload["key"] == "690********92"
    assert payload["level"] == "warning"
    assert payload["logger"] == "scanner_lookup.services.product_lookup.service"


def test_console_formatter_includes_extra_fields():
    rendered = build_formatter(json_logs=False).format(_record())

    assert "Slow product lookup" in rendered
    assert "outcome=hit" in rendered
