"""
Rates -- Closed, strongly-typed rate rules.

Responsibility:
    Defines the RateBlock pricing rule and its calculation-method tagged
    union.  A block is scoped by client category (rate type), applicable day
    types, an optional time-of-day window, an optional validity date range
    and, for service-based charging, the linked services.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - applicable_days is non-empty.
    - The calculation variant agrees with charge_basis: hours_minutes blocks
      carry a HoursMinutesCalculation, services/fixed_flat blocks carry a
      ServiceCalculation.  Exactly one rate configuration is populated:
      break points for pro_rata, a single rate for every other method.
    - Service-based blocks link at least one service.
    - bank_holiday_multiplier, when set, is >= 1.
    - Time windows are half-open [from, until); from > until wraps midnight.

Failure modes:
    - ValueError on construction of any invalid rate value object.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, time
from decimal import Decimal
from enum import Enum
from itertools import combinations
from typing import Iterable, Union

ONE = Decimal("1")
_MINUTES_PER_DAY = 24 * 60


class DayType(str, Enum):
    """Classification of a visit date used to select rate blocks."""

    MONDAY = "monday"
    TUESDAY = "tuesday"
    WEDNESDAY = "wednesday"
    THURSDAY = "thursday"
    FRIDAY = "friday"
    SATURDAY = "saturday"
    SUNDAY = "sunday"
    BANK_HOLIDAY = "bank_holiday"

    @classmethod
    def for_date(cls, visit_date: date, is_bank_holiday: bool = False) -> DayType:
        """Bank holidays win over the weekday name."""
        if is_bank_holiday:
            return cls.BANK_HOLIDAY
        return _WEEKDAYS[visit_date.weekday()]

    @classmethod
    def parse(cls, value: str) -> DayType:
        """Accept full ('monday') or abbreviated ('mon') day names."""
        normalized = value.strip().lower()
        for member in cls:
            if member.value == normalized:
                return member
            if member is not cls.BANK_HOLIDAY and member.value[:3] == normalized:
                return member
        raise ValueError(f"Unknown day type: {value!r}")


_WEEKDAYS = (
    DayType.MONDAY,
    DayType.TUESDAY,
    DayType.WEDNESDAY,
    DayType.THURSDAY,
    DayType.FRIDAY,
    DayType.SATURDAY,
    DayType.SUNDAY,
)


class RateType(str, Enum):
    """Client category a rate block is scoped to."""

    STANDARD = "standard"
    ADULT = "adult"
    CYP = "cyp"  # Children and young people


class ChargeBasis(str, Enum):
    HOURS_MINUTES = "hours_minutes"
    SERVICES = "services"
    FIXED_FLAT = "fixed_flat"


class HoursMinutesMethod(str, Enum):
    RATE_PER_HOUR = "rate_per_hour"
    RATE_PER_MINUTE_PRORATED = "rate_per_minute_prorated"
    RATE_PER_MINUTE_FLAT = "rate_per_minute_flat"


class ServiceMethod(str, Enum):
    FLAT = "flat"
    PRO_RATA = "pro_rata"
    HOURLY = "hourly"


def _check_non_negative(name: str, value: Decimal | None) -> None:
    if value is None:
        return
    if not isinstance(value, Decimal):
        raise ValueError(f"{name} must be a Decimal, got {type(value).__name__}")
    if value < 0:
        raise ValueError(f"{name} must be non-negative")


def _check_threshold(value: Decimal | None) -> None:
    if value is None:
        return
    if not isinstance(value, Decimal):
        raise ValueError("consecutive_hours_threshold must be a Decimal")
    if value <= 0:
        raise ValueError("consecutive_hours_threshold must be positive")


@dataclass(frozen=True)
class TimeWindow:
    """Half-open time-of-day window; wraps midnight when from_time > until_time."""

    from_time: time
    until_time: time

    def __post_init__(self) -> None:
        if self.from_time == self.until_time:
            raise ValueError(
                "effective window must not be empty; omit it for all-day blocks"
            )

    @property
    def wraps_midnight(self) -> bool:
        return self.from_time > self.until_time

    def contains(self, moment: time) -> bool:
        if self.wraps_midnight:
            return moment >= self.from_time or moment < self.until_time
        return self.from_time <= moment < self.until_time

    def _intervals(self) -> tuple[tuple[int, int], ...]:
        start = _minute_of_day(self.from_time)
        end = _minute_of_day(self.until_time)
        if self.wraps_midnight:
            return ((start, _MINUTES_PER_DAY), (0, end))
        return ((start, end),)

    def overlaps(self, other: TimeWindow) -> bool:
        return any(
            a_start < b_end and b_start < a_end
            for a_start, a_end in self._intervals()
            for b_start, b_end in other._intervals()
        )

    def __str__(self) -> str:
        return f"{self.from_time:%H:%M}-{self.until_time:%H:%M}"


def _minute_of_day(moment: time) -> int:
    return moment.hour * 60 + moment.minute


@dataclass(frozen=True)
class ProRataBreakPoints:
    """Charges at the 15/30/45/60 minute break points."""

    rate_15: Decimal
    rate_30: Decimal
    rate_45: Decimal
    rate_60: Decimal

    def __post_init__(self) -> None:
        for attr in ("rate_15", "rate_30", "rate_45", "rate_60"):
            _check_non_negative(attr, getattr(self, attr))

    def rate_for(self, minutes: int) -> Decimal:
        """
        Rate of the largest break point that does not exceed ``minutes``.

        Durations shorter than the first break point are charged the
        15-minute rate (minimum charge).
        """
        if minutes >= 60:
            return self.rate_60
        if minutes >= 45:
            return self.rate_45
        if minutes >= 30:
            return self.rate_30
        return self.rate_15

    def break_point_for(self, minutes: int) -> int:
        for point in (60, 45, 30):
            if minutes >= point:
                return point
        return 15


@dataclass(frozen=True)
class HoursMinutesCalculation:
    """
    Time-based pricing for hours_minutes blocks.

    Attributes:
        method: How time is converted into a charge.
        rate: Hourly rate (per block for rate_per_minute_flat).
        consecutive_hours_threshold: Hours after which the prorated method
            switches to charging whole hours.
        block_minutes: Length of a charge block for rate_per_minute_flat.
    """

    method: HoursMinutesMethod
    rate: Decimal
    consecutive_hours_threshold: Decimal | None = None
    block_minutes: int = 60

    def __post_init__(self) -> None:
        if not isinstance(self.method, HoursMinutesMethod):
            raise ValueError(f"Invalid hours/minutes method: {self.method!r}")
        if self.rate is None:
            raise ValueError("rate is required for hours/minutes charging")
        _check_non_negative("rate", self.rate)
        _check_threshold(self.consecutive_hours_threshold)
        if self.block_minutes <= 0:
            raise ValueError("block_minutes must be positive")


@dataclass(frozen=True)
class ServiceCalculation:
    """
    Service-based pricing for services and fixed_flat blocks.

    pro_rata uses break points; flat and hourly use a single rate.
    """

    method: ServiceMethod
    rate: Decimal | None = None
    break_points: ProRataBreakPoints | None = None
    consecutive_hours_threshold: Decimal | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.method, ServiceMethod):
            raise ValueError(f"Invalid service method: {self.method!r}")
        if self.method == ServiceMethod.PRO_RATA:
            if self.break_points is None:
                raise ValueError("pro_rata requires 15/30/45/60 minute break points")
            if self.rate is not None:
                raise ValueError("pro_rata must not also define a single rate")
        else:
            if self.rate is None:
                raise ValueError(f"{self.method.value} requires a single rate")
            if self.break_points is not None:
                raise ValueError(
                    f"break points are only valid for pro_rata, not {self.method.value}"
                )
        _check_non_negative("rate", self.rate)
        _check_threshold(self.consecutive_hours_threshold)


CalculationMethod = Union[HoursMinutesCalculation, ServiceCalculation]


@dataclass(frozen=True)
class RateBlock:
    """
    A configured pricing rule.

    A block matches a visit when it is active and valid on the visit date,
    its rate type equals the client category, the day type is applicable,
    the service is linked (service-based blocks) and the visit starts inside
    the effective window (when one is set).
    """

    block_id: str
    applicable_days: frozenset[DayType]
    rate_type: RateType
    charge_basis: ChargeBasis
    calculation: CalculationMethod
    effective_window: TimeWindow | None = None
    linked_services: frozenset[str] = field(default_factory=frozenset)
    is_vatable: bool = False
    bank_holiday_multiplier: Decimal | None = None
    branch_id: str | None = None
    valid_from: date | None = None
    valid_until: date | None = None
    is_active: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "applicable_days", frozenset(self.applicable_days))
        object.__setattr__(self, "linked_services", frozenset(self.linked_services))

        if not self.block_id:
            raise ValueError("block_id is required")
        if not self.applicable_days:
            raise ValueError(f"Rate block {self.block_id}: applicable_days must not be empty")
        if self.charge_basis == ChargeBasis.HOURS_MINUTES:
            if not isinstance(self.calculation, HoursMinutesCalculation):
                raise ValueError(
                    f"Rate block {self.block_id}: hours_minutes requires an hours/minutes calculation"
                )
        elif not isinstance(self.calculation, ServiceCalculation):
            raise ValueError(
                f"Rate block {self.block_id}: {self.charge_basis.value} requires a service calculation"
            )
        if self.is_service_based and not self.linked_services:
            raise ValueError(
                f"Rate block {self.block_id}: linked_services is required for "
                f"{self.charge_basis.value} charging"
            )
        if self.bank_holiday_multiplier is not None:
            if not isinstance(self.bank_holiday_multiplier, Decimal):
                raise ValueError("bank_holiday_multiplier must be a Decimal")
            if self.bank_holiday_multiplier < ONE:
                raise ValueError(
                    f"Rate block {self.block_id}: bank_holiday_multiplier must be >= 1"
                )
        if (
            self.valid_from is not None
            and self.valid_until is not None
            and self.valid_from > self.valid_until
        ):
            raise ValueError(
                f"Rate block {self.block_id}: valid_from is after valid_until"
            )

    @property
    def is_service_based(self) -> bool:
        return self.charge_basis in (ChargeBasis.SERVICES, ChargeBasis.FIXED_FLAT)

    @property
    def method_name(self) -> str:
        return self.calculation.method.value

    @property
    def holiday_multiplier(self) -> Decimal:
        return self.bank_holiday_multiplier or ONE

    def is_valid_on(self, on_date: date) -> bool:
        if not self.is_active:
            return False
        if self.valid_from is not None and on_date < self.valid_from:
            return False
        if self.valid_until is not None and on_date > self.valid_until:
            return False
        return True

    def covers_service(self, service_id: str | None) -> bool:
        if self.is_service_based:
            return service_id is not None and service_id in self.linked_services
        # hours/minutes blocks only filter on services when some are linked
        return not self.linked_services or service_id in self.linked_services

    def could_overlap(self, other: RateBlock) -> bool:
        """True when some visit could be matched by both blocks."""
        if not (self.is_active and other.is_active):
            return False
        if self.rate_type != other.rate_type:
            return False
        if self.branch_id and other.branch_id and self.branch_id != other.branch_id:
            return False
        if not self.applicable_days & other.applicable_days:
            return False
        if not _date_ranges_overlap(self, other):
            return False
        if not _service_scopes_overlap(self, other):
            return False
        if self.effective_window is None or other.effective_window is None:
            return True
        return self.effective_window.overlaps(other.effective_window)


def _date_ranges_overlap(a: RateBlock, b: RateBlock) -> bool:
    a_start = a.valid_from or date.min
    a_end = a.valid_until or date.max
    b_start = b.valid_from or date.min
    b_end = b.valid_until or date.max
    return a_start <= b_end and b_start <= a_end


def _service_scopes_overlap(a: RateBlock, b: RateBlock) -> bool:
    # An empty set on an hours/minutes block means "any service".
    if not a.linked_services:
        return True if not b.is_service_based else bool(b.linked_services)
    if not b.linked_services:
        return True
    return bool(a.linked_services & b.linked_services)


def find_overlapping_blocks(
    blocks: Iterable[RateBlock],
) -> list[tuple[str, str]]:
    """
    Return every pair of block ids that could both match one visit.

    Overlaps are configuration errors; the resolver reports them per visit
    and rate card validation reports them up front.
    """
    return [
        (a.block_id, b.block_id)
        for a, b in combinations(blocks, 2)
        if a.could_overlap(b)
    ]
