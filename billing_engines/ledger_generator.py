"""
Ledger Generator -- prices a billing period's visits into ledger lines.

Pure functions with deterministic behavior. No I/O.

Every visit yields exactly one line.  Visits the resolver cannot price
(no rule, or several overlapping rules) yield a zero-priced line carrying
a flag plus a PricingWarning; they are never dropped.  Lines are ordered
by (visit date, start time, visit ref) regardless of input order or of
how many workers priced them, so identical inputs always produce
identical output.

Usage:
    from billing_engines.ledger_generator import generate_ledger_lines

    result = generate_ledger_lines(visits, blocks, vat_rate=Decimal("0.2"))
    print(result.summary)   # "2 of 3 visits priced, 1 flagged"
"""

from __future__ import annotations

import contextvars
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from decimal import Decimal
from typing import Sequence

from billing_engines.line_calculator import calculate_line_item, flagged_line_item
from billing_engines.rate_resolver import resolve_rate_block
from billing_engines.tracer import traced_engine
from billing_kernel.domain.dtos import (
    ZERO,
    GenerationSummary,
    LedgerTotals,
    LineFlag,
    PricedLine,
    PricingWarning,
)
from billing_kernel.domain.rates import RateBlock
from billing_kernel.domain.totals import summarize
from billing_kernel.domain.visits import BankHolidayCalendar, Visit
from billing_kernel.exceptions import AmbiguousRateRuleError, NoRateRuleFoundError
from billing_kernel.logging_config import get_logger

logger = get_logger("engines.ledger_generator")


@dataclass(frozen=True)
class LedgerResult:
    """Ordered lines, their totals and the generation diagnostics."""

    lines: tuple[PricedLine, ...]
    totals: LedgerTotals
    warnings: tuple[PricingWarning, ...]
    summary: GenerationSummary

    @property
    def flagged_lines(self) -> tuple[PricedLine, ...]:
        return tuple(line for line in self.lines if line.is_flagged)

    def content(self) -> tuple[tuple, ...]:
        return tuple(line.content_key() for line in self.lines)


def price_visit(
    visit: Visit,
    blocks: Sequence[RateBlock],
    vat_rate: Decimal = ZERO,
    use_actual_time: bool = False,
) -> tuple[PricedLine, PricingWarning | None]:
    """Price one visit, turning per-visit rate errors into a flagged line."""
    try:
        block = resolve_rate_block(visit, blocks)
    except NoRateRuleFoundError as e:
        line = flagged_line_item(visit, LineFlag.NO_RATE_RULE, use_actual_time=use_actual_time)
        return line, PricingWarning(
            visit_ref=visit.visit_ref,
            flag=LineFlag.NO_RATE_RULE,
            message=str(e),
        )
    except AmbiguousRateRuleError as e:
        line = flagged_line_item(
            visit, LineFlag.AMBIGUOUS_RATE_RULE, use_actual_time=use_actual_time
        )
        return line, PricingWarning(
            visit_ref=visit.visit_ref,
            flag=LineFlag.AMBIGUOUS_RATE_RULE,
            message=str(e),
            block_ids=e.block_ids,
        )

    line = calculate_line_item(
        visit, block, vat_rate=vat_rate, use_actual_time=use_actual_time
    )
    return line, None


@traced_engine(
    "ledger_generator",
    "1.1",
    exclude=("max_workers",),
    summarize=lambda result: {
        "line_count": len(result.lines),
        "flagged_count": result.summary.flagged_visits,
        "net_amount": result.totals.net_amount,
    },
)
def generate_ledger_lines(
    visits: Sequence[Visit],
    blocks: Sequence[RateBlock],
    *,
    vat_rate: Decimal = ZERO,
    use_actual_time: bool = False,
    calendar: BankHolidayCalendar | None = None,
    max_workers: int | None = None,
) -> LedgerResult:
    """
    Price every visit and aggregate the ledger.

    Args:
        visits: Visits of the billing period, in any order.
        blocks: Candidate rate blocks.
        vat_rate: Rate applied to VAT-able lines.
        use_actual_time: Bill actual rather than planned times when recorded.
        calendar: Optional bank-holiday calendar used to flag visit dates.
        max_workers: Price visits on a thread pool of this size (> 1).

    Returns:
        LedgerResult with one line per visit.
    """
    t0 = time.monotonic()
    blocks = tuple(blocks)
    ordered = sorted(
        (calendar.classify(v) if calendar is not None else v for v in visits),
        key=lambda v: v.sort_key,
    )

    logger.info("ledger_generation_started", extra={
        "visit_count": len(ordered),
        "rate_block_count": len(blocks),
        "vat_rate": str(vat_rate),
        "use_actual_time": use_actual_time,
        "max_workers": max_workers,
    })

    def _price(visit: Visit) -> tuple[PricedLine, PricingWarning | None]:
        return price_visit(visit, blocks, vat_rate, use_actual_time)

    if max_workers is not None and max_workers > 1 and len(ordered) > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            # one context copy per task carries the caller's LogContext
            futures = [
                pool.submit(contextvars.copy_context().run, _price, visit)
                for visit in ordered
            ]
            priced = [future.result() for future in futures]
    else:
        priced = [_price(visit) for visit in ordered]

    lines = tuple(line for line, _ in priced)
    warnings = tuple(warning for _, warning in priced if warning is not None)
    flagged = sum(1 for line in lines if line.is_flagged)
    summary = GenerationSummary(
        total_visits=len(lines),
        priced_visits=len(lines) - flagged,
        flagged_visits=flagged,
    )
    totals = summarize(lines)

    duration_ms = round((time.monotonic() - t0) * 1000, 2)
    log = logger.warning if flagged else logger.info
    log("ledger_generation_completed", extra={
        "summary": str(summary),
        "line_count": len(lines),
        "flagged_count": flagged,
        "net_amount": str(totals.net_amount),
        "vat_amount": str(totals.vat_amount),
        "total_invoiced_minutes": totals.total_invoiced_minutes,
        "duration_ms": duration_ms,
    })

    return LedgerResult(
        lines=lines,
        totals=totals,
        warnings=warnings,
        summary=summary,
    )
