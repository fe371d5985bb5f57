"""
Tests for ledger generation (``billing_engines.ledger_generator``).

Every visit yields exactly one line, unpriceable visits are flagged rather
than dropped, and output order and totals do not depend on input order or
on the number of workers.
"""

from decimal import Decimal

from billing_engines.ledger_generator import generate_ledger_lines
from billing_kernel.domain.dtos import LineFlag
from billing_kernel.domain.visits import BankHolidayCalendar
from billing_kernel.logging_config import LogContext
from tests.factories import (
    GOOD_FRIDAY,
    MONDAY,
    SATURDAY,
    bank_holiday_block,
    hours_block,
    make_visit,
)


def _blocks():
    return [hours_block(), bank_holiday_block()]


def _two_visits():
    return [
        make_visit("V-MON", visit_date=MONDAY, start=(9, 0), end=(11, 0)),
        make_visit(
            "V-BH", visit_date=GOOD_FRIDAY, start=(14, 0), end=(15, 0), is_bank_holiday=True
        ),
    ]


class TestGenerateLedgerLines:

    def test_weekday_plus_bank_holiday(self):
        result = generate_ledger_lines(_two_visits(), _blocks())

        assert [line.line_total for line in result.lines] == [Decimal("20.00"), Decimal("20.00")]
        assert result.totals.net_amount == Decimal("40.00")
        assert result.totals.total_invoiced_minutes == 180
        assert result.warnings == ()
        assert str(result.summary) == "2 of 2 visits priced, 0 flagged"

    def test_calendar_flags_bank_holidays(self):
        visits = [
            make_visit("V-MON", visit_date=MONDAY, start=(9, 0), end=(11, 0)),
            make_visit("V-BH", visit_date=GOOD_FRIDAY, start=(14, 0), end=(15, 0)),
        ]
        result = generate_ledger_lines(
            visits, _blocks(), calendar=BankHolidayCalendar.of([GOOD_FRIDAY])
        )
        assert result.lines[1].rate_block_id == "std-bank-holiday"
        assert result.totals.net_amount == Decimal("40.00")

    def test_unpriceable_visit_is_flagged_not_dropped(self):
        visits = _two_visits() + [make_visit("V-SAT", visit_date=SATURDAY)]
        result = generate_ledger_lines(visits, _blocks())

        assert len(result.lines) == 3
        assert [line.visit_ref for line in result.flagged_lines] == ["V-SAT"]
        assert result.flagged_lines[0].flag == LineFlag.NO_RATE_RULE
        assert result.totals.net_amount == Decimal("40.00")
        assert result.totals.total_invoiced_minutes == 300
        assert len(result.warnings) == 1
        assert result.warnings[0].visit_ref == "V-SAT"
        assert str(result.summary) == "2 of 3 visits priced, 1 flagged"

    def test_ambiguous_visit_lists_blocks(self):
        blocks = [hours_block("a"), hours_block("b")]
        result = generate_ledger_lines([make_visit()], blocks)

        assert result.lines[0].flag == LineFlag.AMBIGUOUS_RATE_RULE
        assert result.warnings[0].block_ids == ("a", "b")

    def test_lines_ordered_by_date_then_start_time(self):
        visits = [
            make_visit("V-3", start=(15, 0), end=(16, 0)),
            make_visit("V-1", visit_date=MONDAY.replace(day=1), start=(9, 0), end=(10, 0)),
            make_visit("V-2", start=(8, 0), end=(9, 0)),
        ]
        result = generate_ledger_lines(visits, [hours_block()])
        assert [line.visit_ref for line in result.lines] == ["V-1", "V-2", "V-3"]

    def test_idempotent_and_order_independent(self):
        visits = _two_visits()
        first = generate_ledger_lines(visits, _blocks())
        second = generate_ledger_lines(list(reversed(visits)), _blocks())
        assert first.content() == second.content()
        assert first.totals == second.totals

    def test_parallel_matches_sequential(self):
        visits = [
            make_visit(f"V-{i:02d}", start=(8 + i % 10, 0), end=(9 + i % 10, 30))
            for i in range(20)
        ]
        sequential = generate_ledger_lines(visits, [hours_block()])
        parallel = generate_ledger_lines(visits, [hours_block()], max_workers=4)
        assert sequential.content() == parallel.content()
        assert sequential.totals == parallel.totals

    def test_vat_totals(self):
        blocks = [hours_block(is_vatable=True)]
        result = generate_ledger_lines([make_visit()], blocks, vat_rate=Decimal("0.2"))
        assert result.totals.vat_amount == Decimal("4.00")
        assert result.totals.total_amount == Decimal("24.00")

    def test_no_visits(self):
        result = generate_ledger_lines([], _blocks())
        assert result.lines == ()
        assert result.totals.net_amount == Decimal("0.00")
        assert str(result.summary) == "0 of 0 visits priced, 0 flagged"

    def test_logs_flagged_completion_as_warning(self, captured_logs):
        generate_ledger_lines([make_visit(visit_date=SATURDAY, start=(9, 0))], _blocks())

        completed = [r for r in captured_logs() if r["message"] == "ledger_generation_completed"]
        assert completed[0]["level"] == "WARNING"
        assert completed[0]["flagged_count"] == 1

    def test_worker_logs_keep_caller_context(self, captured_logs):
        visits = [
            make_visit(f"V-{i:02d}", start=(8 + i, 0), end=(9 + i, 0)) for i in range(6)
        ]
        visits.append(make_visit("V-SAT", visit_date=SATURDAY))

        with LogContext.bind(invoice_id="inv-7", actor_id="actor-1"):
            generate_ledger_lines(visits, _blocks(), max_workers=3)

        records = [
            r for r in captured_logs()
            if r["message"] in ("line_item_calculated", "rate_rule_not_found")
        ]
        assert len(records) == 7
        assert all(r["invoice_id"] == "inv-7" for r in records)
        assert all(r["actor_id"] == "actor-1" for r in records)
