"""Tests for the structured logging system (lifecycle_kernel/logging_config.py)."""

import json
import logging
from io import StringIO
from uuid import uuid4

import pytest

from lifecycle_kernel.exceptions import IllegalTransitionError
from lifecycle_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state between tests, then restore the session setup."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()
    configure_logging(level=logging.DEBUG)


def _json_handler() -> tuple[logging.Handler, StringIO]:
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    return handler, stream


def _json_lines(stream: StringIO) -> list[dict]:
    lines = stream.getvalue().strip().split("\n")
    return [json.loads(line) for line in lines if line]


class TestStructuredFormatter:
    """Tests for JSON log output format."""

    def test_basic_json_output(self):
        handler, stream = _json_handler()
        configure_logging(handler=handler)
        get_logger("test").info("hello")

        record = _json_lines(stream)[0]
        assert record["level"] == "INFO"
        assert record["message"] == "hello"
        assert record["logger"] == "lifecycle_kernel.test"
        assert "ts" in record

    def test_extra_and_context_fields(self):
        handler, stream = _json_handler()
        configure_logging(handler=handler)
        entity_id = uuid4()
        with LogContext.bind(entity_id=str(entity_id), domain="order"):
            get_logger("test").info("transition_committed", extra={"to_state": "confirmed"})

        record = _json_lines(stream)[0]
        assert record["entity_id"] == str(entity_id)
        assert record["domain"] == "order"
        assert record["to_state"] == "confirmed"

    def test_kernel_exception_fields_extracted(self):
        handler, stream = _json_handler()
        configure_logging(handler=handler)
        try:
            raise IllegalTransitionError(
                "order", "confirmed", "shipped", [{"state": "processing", "display_name": "Processing"}]
            )
        except IllegalTransitionError:
            get_logger("test").error("transition_error", exc_info=True)

        record = _json_lines(stream)[0]
        assert record["exc_code"] == "ILLEGAL_TRANSITION"
        assert record["exc_type"] == "IllegalTransitionError"
        assert record["exc_from_state"] == "confirmed"
        assert record["exc_to_state"] == "shipped"
        assert "traceback" in record

    def test_default_level_hides_debug(self):
        handler, stream = _json_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.info("first")
        logger.debug("second")

        assert [r["message"] for r in _json_lines(stream)] == ["first"]

    def test_configure_is_idempotent(self):
        first, first_stream = _json_handler()
        second, second_stream = _json_handler()
        configure_logging(handler=first)
        configure_logging(handler=second)
        get_logger("test").info("once")

        assert len(_json_lines(first_stream)) == 1
        assert second_stream.getvalue() == ""


class TestLogContext:
    """Tests for context propagation."""

    def test_bind_restores_previous_value(self):
        LogContext.set(correlation_id="outer")
        with LogContext.bind(correlation_id="inner", actor_id="admin-1"):
            assert LogContext.get_all() == {"correlation_id": "inner", "actor_id": "admin-1"}
        assert LogContext.get_all() == {"correlation_id": "outer"}

    def test_clear(self):
        LogContext.set(entity_id="x", domain="shipment")
        LogContext.clear()
        assert LogContext.get_all() == {}
