"""Tests for structured logging helpers."""

from __future__ import annotations

import json
import logging

import pytest

from jskos_common.logging import (
    CorrelationContext,
    JsonFormatter,
    get_correlation_id,
    get_logger,
    with_fields,
)


def _record(msg: str = "hello", level: int = logging.INFO, **fields: object) -> logging.LogRecord:
    record = logging.LogRecord("jskos.test", level, __file__, 1, msg, None, None)
    for key, value in fields.items():
        setattr(record, key, value)
    return record


class TestJsonFormatter:
    """Tests for JsonFormatter."""

    def test_structured_fields(self) -> None:
        """Structured and JSON-compatible extra fields are emitted."""
        record = _record(operation="infer_mappings", status="success", hop=2, skip_me=object())

        payload = json.loads(JsonFormatter().format(record))

        assert payload["message"] == "hello"
        assert payload["level"] == "INFO"
        assert payload["operation"] == "infer_mappings"
        assert payload["status"] == "success"
        assert payload["hop"] == 2
        assert "skip_me" not in payload
        assert payload["ts"].endswith("Z")

    def test_correlation_id_from_context(self) -> None:
        """The active correlation ID is used when the record has none."""
        with CorrelationContext("req-7"):
            payload = json.loads(JsonFormatter().format(_record()))

        assert payload["correlation_id"] == "req-7"


class TestCorrelationContext:
    """Tests for CorrelationContext."""

    def test_restores_previous_id(self) -> None:
        """The previous correlation ID is restored on exit."""
        before = get_correlation_id()
        with CorrelationContext("outer"):
            with CorrelationContext("inner"):
                assert get_correlation_id() == "inner"
            assert get_correlation_id() == "outer"
        assert get_correlation_id() == before


class TestLoggerAdapter:
    """Tests for the adapter returned by get_logger and with_fields."""

    def test_bound_fields_and_status(self, caplog: pytest.LogCaptureFixture) -> None:
        """Bound fields reach the record; status follows the level."""
        caplog.set_level(logging.DEBUG, logger="jskos.test.adapter")
        logger = get_logger("jskos.test.adapter")

        with with_fields(logger, operation="query_mappings", concept=None, scheme="urn:s") as log:
            log.info("queried")
            log.error("failed", extra={"scheme": "urn:t"})

        info, error = caplog.records[-2:]
        assert info.operation == "query_mappings"  # type: ignore[attr-defined]
        assert info.scheme == "urn:s"  # type: ignore[attr-defined]
        assert info.status == "success"  # type: ignore[attr-defined]
        assert not hasattr(info, "concept")
        assert error.status == "error"  # type: ignore[attr-defined]
        assert error.scheme == "urn:t"  # type: ignore[attr-defined]

    def test_default_operation(self, caplog: pytest.LogCaptureFixture) -> None:
        """Records without an operation are tagged ``unknown``."""
        caplog.set_level(logging.INFO, logger="jskos.test.default")

        get_logger("jskos.test.default").warning("careful")

        record = caplog.records[-1]
        assert record.operation == "unknown"  # type: ignore[attr-defined]
        assert record.status == "warning"  # type: ignore[attr-defined]

    def test_with_fields_scopes_correlation_id(self) -> None:
        """A correlation_id field is active only inside the block."""
        before = get_correlation_id()
        with with_fields(get_logger("jskos.test.scope"), correlation_id="req-9"):
            assert get_correlation_id() == "req-9"
        assert get_correlation_id() == before
