"""
Line Item Calculator -- prices one visit against its rate block.

Pure functions with deterministic behavior. No I/O.

Calculation methods:
- rate_per_hour / hourly: quantity = minutes / 60, unit price = rate.
- rate_per_minute_prorated: quantity = minutes, unit price = rate / 60.
  With a consecutive-hours threshold T, minutes beyond T hours are charged
  per started hour at the full rate.
- rate_per_minute_flat: every started block of ``block_minutes`` is charged
  the full rate; quantity = number of blocks.
- flat: quantity = 1, unit price = rate.
- pro_rata: charge of the largest 15/30/45/60 break point <= duration, the
  15-minute rate being a minimum charge.  Beyond 60 minutes the 60-minute
  rate caps the charge unless a threshold is set, in which case every whole
  hour is charged at the 60-minute rate plus the remainder by break point.

Rounding:
    Quantity is rounded to 4 dp and unit price to 6 dp first; the line total
    is then round(quantity x unit price x multiplier), ROUND_HALF_UP to 2 dp,
    so a stored line always reproduces from its own columns.

Usage:
    from billing_engines.line_calculator import calculate_line_item

    line = calculate_line_item(visit, block, vat_rate=Decimal("0.2"))
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from decimal import Decimal

from billing_engines.tracer import traced_engine
from billing_kernel.db.types import round_money, round_quantity, round_unit_price
from billing_kernel.domain.dtos import ZERO, LineFlag, PricedLine
from billing_kernel.domain.rates import (
    ONE,
    HoursMinutesCalculation,
    HoursMinutesMethod,
    RateBlock,
    ServiceCalculation,
    ServiceMethod,
)
from billing_kernel.domain.totals import line_vat
from billing_kernel.domain.visits import Visit
from billing_kernel.logging_config import get_logger

logger = get_logger("engines.line_calculator")

_SIXTY = Decimal("60")
_PRO_RATA_MIN_BREAK_POINT = 15


@dataclass(frozen=True)
class Charge:
    """Unrounded quantity and unit price for a duration."""

    quantity: Decimal
    unit_price: Decimal


def _hours(minutes: int) -> Decimal:
    return Decimal(minutes) / _SIXTY


def _hours_minutes_charge(minutes: int, calc: HoursMinutesCalculation) -> Charge:
    rate = calc.rate

    if calc.method == HoursMinutesMethod.RATE_PER_HOUR:
        return Charge(_hours(minutes), rate)

    if calc.method == HoursMinutesMethod.RATE_PER_MINUTE_PRORATED:
        billed = minutes
        threshold = calc.consecutive_hours_threshold
        if threshold is not None:
            threshold_minutes = int(threshold * 60)
            if minutes > threshold_minutes:
                extra_hours = math.ceil((minutes - threshold_minutes) / 60)
                billed = threshold_minutes + extra_hours * 60
        return Charge(Decimal(billed), rate / _SIXTY)

    if calc.method == HoursMinutesMethod.RATE_PER_MINUTE_FLAT:
        blocks = math.ceil(minutes / calc.block_minutes)
        return Charge(Decimal(blocks), rate)

    raise ValueError(f"Unsupported hours/minutes method: {calc.method}")


def pro_rata_charge(minutes: int, calc: ServiceCalculation) -> Decimal:
    points = calc.break_points
    if minutes <= 60:
        return points.rate_for(minutes)
    if calc.consecutive_hours_threshold is None:
        return points.rate_60
    whole_hours, remainder = divmod(minutes, 60)
    charge = points.rate_60 * whole_hours
    if remainder >= _PRO_RATA_MIN_BREAK_POINT:
        charge += points.rate_for(remainder)
    return charge


def _service_charge(minutes: int, calc: ServiceCalculation) -> Charge:
    if calc.method == ServiceMethod.FLAT:
        return Charge(ONE, calc.rate)

    if calc.method == ServiceMethod.HOURLY:
        return Charge(_hours(minutes), calc.rate)

    if calc.method == ServiceMethod.PRO_RATA:
        charge = pro_rata_charge(minutes, calc)
        return Charge(ONE, charge)

    raise ValueError(f"Unsupported service method: {calc.method}")


def compute_charge(minutes: int, block: RateBlock) -> Charge:
    """Quantity and unit price for ``minutes`` under ``block``, unrounded."""
    if minutes <= 0:
        return Charge(ZERO, ZERO)
    if isinstance(block.calculation, HoursMinutesCalculation):
        return _hours_minutes_charge(minutes, block.calculation)
    return _service_charge(minutes, block.calculation)


def _format_multiplier(multiplier: Decimal) -> str:
    return format(multiplier.normalize(), "f")


def describe_visit(
    visit: Visit,
    minutes: int,
    use_actual_time: bool,
    multiplier: Decimal | None = None,
) -> str:
    start, end = visit.billable_times(use_actual_time)
    basis = "actual" if use_actual_time and visit.has_actual_times else "planned"
    description = (
        f"Service on {visit.visit_date.isoformat()} "
        f"{start:%H:%M} - {end:%H:%M} ({minutes} mins {basis})"
    )
    if multiplier is not None:
        description += f" - Bank Holiday ({_format_multiplier(multiplier)}x)"
    return description


@traced_engine(
    "line_calculator",
    "1.1",
    summarize=lambda line: {
        "visit_ref": line.visit_ref,
        "rate_block_id": line.rate_block_id,
        "line_total": line.line_total,
    },
)
def calculate_line_item(
    visit: Visit,
    block: RateBlock,
    *,
    vat_rate: Decimal = ZERO,
    use_actual_time: bool = False,
) -> PricedLine:
    """
    Price ``visit`` with ``block``.

    Pure function - no side effects, no I/O, deterministic output.

    Zero or negative durations give a zero-priced line with 0 minutes.
    The bank-holiday multiplier applies only when the visit falls on a
    bank holiday, and only to the line total.
    """
    minutes = max(visit.billable_minutes(use_actual_time), 0)
    charge = compute_charge(minutes, block)

    multiplier = block.holiday_multiplier if visit.is_bank_holiday else ONE
    quantity = round_quantity(charge.quantity)
    unit_price = round_unit_price(charge.unit_price)
    line_total = round_money(quantity * unit_price * multiplier)

    line = PricedLine(
        visit_ref=visit.visit_ref,
        visit_date=visit.visit_date,
        start_time=visit.start_time,
        description=describe_visit(
            visit,
            minutes,
            use_actual_time,
            multiplier if visit.is_bank_holiday else None,
        ),
        rate_type_applied=block.rate_type,
        day_type=visit.day_type,
        duration_minutes=minutes,
        quantity=quantity,
        unit_price=unit_price,
        bank_holiday_multiplier_applied=multiplier,
        line_total=line_total,
        is_vatable=block.is_vatable,
        vat_amount=line_vat(line_total, vat_rate, block.is_vatable),
        rate_block_id=block.block_id,
    )

    logger.debug("line_item_calculated", extra={
        "visit_ref": visit.visit_ref,
        "rate_block_id": block.block_id,
        "method": block.method_name,
        "duration_minutes": minutes,
        "quantity": str(line.quantity),
        "unit_price": str(line.unit_price),
        "multiplier": str(multiplier),
        "line_total": str(line_total),
    })
    return line


def flagged_line_item(
    visit: Visit,
    flag: LineFlag,
    *,
    use_actual_time: bool = False,
) -> PricedLine:
    """Zero-priced placeholder for a visit no single rate block could price."""
    minutes = max(visit.billable_minutes(use_actual_time), 0)
    reason = "no matching rate rule" if flag == LineFlag.NO_RATE_RULE else "ambiguous rate rule"
    return PricedLine(
        visit_ref=visit.visit_ref,
        visit_date=visit.visit_date,
        start_time=visit.start_time,
        description=f"{describe_visit(visit, minutes, use_actual_time)} - unpriced: {reason}",
        rate_type_applied=visit.client_category,
        day_type=visit.day_type,
        duration_minutes=minutes,
        quantity=round_quantity(ZERO),
        unit_price=round_unit_price(ZERO),
        bank_holiday_multiplier_applied=ONE,
        line_total=round_money(ZERO),
        is_vatable=False,
        vat_amount=round_money(ZERO),
        rate_block_id=None,
        flag=flag,
    )
