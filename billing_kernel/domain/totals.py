"""
Totals -- invoice aggregation over rounded line amounts.

Invoice totals are plain sums of line values that were rounded once at the
line level; they are never re-rounded, so ``net_amount`` always reconciles
with the sum of the displayed line totals.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Iterable, Protocol

from billing_kernel.db.types import round_money
from billing_kernel.domain.dtos import ZERO, LedgerTotals


class _Line(Protocol):
    line_total: Decimal
    vat_amount: Decimal
    duration_minutes: int


def line_vat(line_total: Decimal, vat_rate: Decimal, is_vatable: bool) -> Decimal:
    """VAT for one line; zero for lines that are not VAT-able."""
    if not is_vatable:
        return round_money(ZERO)
    return round_money(line_total * vat_rate)


def summarize(lines: Iterable[_Line]) -> LedgerTotals:
    net = ZERO
    vat = ZERO
    minutes = 0
    for line in lines:
        net += line.line_total
        vat += line.vat_amount
        minutes += line.duration_minutes
    return LedgerTotals(
        net_amount=round_money(net),
        vat_amount=round_money(vat),
        total_amount=round_money(net + vat),
        total_invoiced_minutes=minutes,
    )
