"""Tests for the structured logging system (billing_kernel/logging_config.py)."""

import json
import logging
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from billing_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state between tests."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()


def _make_handler() -> tuple[logging.Handler, StringIO]:
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    return handler, stream


def _parse_log(stream: StringIO) -> dict:
    line = stream.getvalue().strip().split("\n")[0]
    return json.loads(line)


def _parse_all_logs(stream: StringIO) -> list[dict]:
    lines = stream.getvalue().strip().split("\n")
    return [json.loads(line) for line in lines if line]


class TestStructuredFormatter:
    """JSON log output format."""

    def test_basic_json_output(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("hello")

        record = _parse_log(stream)
        assert record["level"] == "INFO"
        assert record["message"] == "hello"
        assert record["logger"] == "billing_kernel.test"
        assert "ts" in record

    def test_extra_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("ledger_generated", extra={"line_count": 2, "summary": "2 of 2"})

        record = _parse_log(stream)
        assert record["line_count"] == 2
        assert record["summary"] == "2 of 2"

    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        LogContext.set(correlation_id="abc-123", invoice_id="inv-456")
        get_logger("test").info("test_msg")

        record = _parse_log(stream)
        assert record["correlation_id"] == "abc-123"
        assert record["invoice_id"] == "inv-456"

    def test_kernel_exception_fields_extracted(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        from billing_kernel.exceptions import LedgerLockedError

        try:
            raise LedgerLockedError("inv-1", "regenerate ledger")
        except LedgerLockedError:
            get_logger("test").error("ledger_error", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_code"] == "LEDGER_LOCKED"
        assert record["exc_type"] == "LedgerLockedError"
        assert record["exc_invoice_id"] == "inv-1"
        assert record["exc_operation"] == "regenerate ledger"
        assert "traceback" in record

    def test_decimal_and_uuid_serialized_as_strings(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        uid = uuid4()
        get_logger("test").info("amounts", extra={"net_amount": Decimal("40.00"), "invoice": uid})

        record = _parse_log(stream)
        assert record["net_amount"] == "40.00"
        assert record["invoice"] == str(uid)

    def test_debug_suppressed_at_info(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.info("first")
        logger.warning("second", extra={"k": "v"})
        logger.debug("third")

        logs = _parse_all_logs(stream)
        assert [r["message"] for r in logs] == ["first", "second"]


class TestLogContext:
    """Context propagation."""

    def test_set_and_get(self):
        LogContext.set(correlation_id="x", actor_id="y")
        assert LogContext.get_all() == {"correlation_id": "x", "actor_id": "y"}

    def test_clear(self):
        LogContext.set(correlation_id="x")
        LogContext.clear()
        assert LogContext.get_all() == {}

    def test_bind_restores_previous_value(self):
        LogContext.set(invoice_id="outer")
        with LogContext.bind(invoice_id="inner"):
            assert LogContext.get_all()["invoice_id"] == "inner"
        assert LogContext.get_all()["invoice_id"] == "outer"

    def test_bind_converts_uuid_to_str(self):
        uid = uuid4()
        with LogContext.bind(actor_id=uid):
            assert LogContext.get_all()["actor_id"] == str(uid)
        assert "actor_id" not in LogContext.get_all()

    def test_unknown_field_rejected(self):
        with pytest.raises(TypeError, match="visit_ref"):
            LogContext.set(visit_ref="V-1")

    def test_context_visible_in_copied_context(self):
        import contextvars
        from concurrent.futures import ThreadPoolExecutor

        with LogContext.bind(invoice_id="inv-1", branch_id="north"):
            ctx = contextvars.copy_context()
        with ThreadPoolExecutor(max_workers=1) as pool:
            seen = pool.submit(ctx.run, LogContext.get_all).result()
        assert seen == {"invoice_id": "inv-1", "branch_id": "north"}


class TestConfigureLogging:

    def test_idempotent(self):
        h1, _ = _make_handler()
        configure_logging(handler=h1)
        h2, _ = _make_handler()
        configure_logging(handler=h2)
        assert len(logging.getLogger("billing_kernel").handlers) == 1

    def test_get_logger_returns_child(self):
        assert get_logger("services.ledger").name == "billing_kernel.services.ledger"

    def test_engine_tracer_shares_root(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler, level=logging.DEBUG)
        logging.getLogger("billing_kernel.engines.tracer").debug("BILLING_ENGINE_TRACE")

        record = _parse_log(stream)
        assert record["message"] == "BILLING_ENGINE_TRACE"

    def test_level_by_name(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler, level="warning")
        logger = get_logger("test")
        logger.info("dropped")
        logger.warning("kept")
        assert [r["message"] for r in _parse_all_logs(stream)] == ["kept"]

    def test_unknown_level_name(self):
        with pytest.raises(ValueError):
            configure_logging(level="chatty")
