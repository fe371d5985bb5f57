"""Tests for BILLING_ENGINE_TRACE records and input fingerprints."""

import logging
from datetime import date
from decimal import Decimal

from billing_engines.ledger_generator import generate_ledger_lines
from billing_engines.line_calculator import calculate_line_item
from billing_engines.tracer import compute_input_fingerprint, traced_engine
from billing_kernel.domain.rates import DayType
from tests.factories import hours_block, make_visit


def _traces(captured_logs, engine_name):
    return [
        r for r in captured_logs()
        if r["message"] == "BILLING_ENGINE_TRACE" and r["engine_name"] == engine_name
    ]


class TestFingerprint:

    def test_equal_inputs_equal_fingerprints(self):
        a = compute_input_fingerprint({"visit": make_visit(), "block": hours_block()})
        b = compute_input_fingerprint({"block": hours_block(), "visit": make_visit()})
        assert a == b
        assert len(a) == 16

    def test_rate_change_changes_fingerprint(self):
        a = compute_input_fingerprint({"block": hours_block(rate="10.00")})
        b = compute_input_fingerprint({"block": hours_block(rate="10.01")})
        assert a != b

    def test_sets_and_enums_canonical(self):
        a = compute_input_fingerprint({"days": frozenset({DayType.MONDAY, DayType.TUESDAY})})
        b = compute_input_fingerprint({"days": {DayType.TUESDAY, DayType.MONDAY}})
        assert a == b
        assert compute_input_fingerprint({"d": date(2024, 3, 4)}) != compute_input_fingerprint(
            {"d": date(2024, 3, 5)}
        )


class TestTracedEngine:

    def test_line_trace_carries_summary(self, captured_logs):
        visit = make_visit("V-TRACE")
        calculate_line_item(visit, hours_block(), vat_rate=Decimal("0.2"))
        calculate_line_item(visit, hours_block(), vat_rate=Decimal("0.2"))

        first, second = _traces(captured_logs, "line_calculator")
        assert first["visit_ref"] == "V-TRACE"
        assert first["rate_block_id"] == "std-weekday"
        assert first["line_total"] == "20.00"
        assert first["input_fingerprint"] == second["input_fingerprint"]

    def test_worker_count_excluded_from_fingerprint(self, captured_logs):
        visits = [make_visit("V-1"), make_visit("V-2", start=(13, 0), end=(14, 0))]
        generate_ledger_lines(visits, [hours_block()])
        generate_ledger_lines(visits, [hours_block()], max_workers=2)

        first, second = _traces(captured_logs, "ledger_generator")
        assert first["input_fingerprint"] == second["input_fingerprint"]
        assert first["line_count"] == 2
        assert first["flagged_count"] == 0
        assert first["net_amount"] == "30.00"

    def test_silent_above_debug(self, captured_logs):
        calls = []

        @traced_engine("doubler", "1", summarize=lambda r: calls.append(r) or {})
        def double(x):
            return x * 2

        tracer_logger = logging.getLogger("billing_kernel.engines.tracer")
        tracer_logger.setLevel(logging.INFO)
        try:
            assert double(21) == 42
        finally:
            tracer_logger.setLevel(logging.NOTSET)

        assert calls == []
        assert _traces(captured_logs, "doubler") == []
