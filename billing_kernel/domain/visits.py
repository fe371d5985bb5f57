"""
Visits -- service-delivery records priced by the ledger generator.

Architecture position:
    Kernel > Domain -- pure value objects, zero I/O.

A visit crosses midnight when its end time is earlier than its start time.
Equal start and end times yield a zero-minute visit.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Iterable

from billing_kernel.domain.rates import DayType, RateType

_MINUTES_PER_DAY = 24 * 60


def minutes_between(start: time, end: time) -> int:
    """Whole minutes from ``start`` to ``end``, wrapping past midnight."""
    start_minutes = start.hour * 60 + start.minute
    end_minutes = end.hour * 60 + end.minute
    if end_minutes < start_minutes:
        end_minutes += _MINUTES_PER_DAY
    return end_minutes - start_minutes


@dataclass(frozen=True)
class Visit:
    """A delivered (or planned) care visit for one client."""

    visit_ref: str
    client_id: str
    visit_date: date
    start_time: time
    end_time: time
    service_id: str | None
    client_category: RateType
    is_bank_holiday: bool = False
    actual_start: time | None = None
    actual_end: time | None = None
    branch_id: str | None = None

    def __post_init__(self) -> None:
        if not self.visit_ref:
            raise ValueError("visit_ref is required")
        if not isinstance(self.client_category, RateType):
            object.__setattr__(self, "client_category", RateType(self.client_category))

    @property
    def day_type(self) -> DayType:
        return DayType.for_date(self.visit_date, self.is_bank_holiday)

    @property
    def planned_minutes(self) -> int:
        return minutes_between(self.start_time, self.end_time)

    @property
    def has_actual_times(self) -> bool:
        return self.actual_start is not None and self.actual_end is not None

    def billable_minutes(self, use_actual_time: bool = False) -> int:
        """Planned minutes, or actual minutes when requested and recorded."""
        if use_actual_time and self.has_actual_times:
            return minutes_between(self.actual_start, self.actual_end)
        return self.planned_minutes

    def billable_times(self, use_actual_time: bool = False) -> tuple[time, time]:
        if use_actual_time and self.has_actual_times:
            return self.actual_start, self.actual_end
        return self.start_time, self.end_time

    @property
    def sort_key(self) -> tuple[date, time, str]:
        return (self.visit_date, self.start_time, self.visit_ref)

    @property
    def starts_at(self) -> datetime:
        return datetime.combine(self.visit_date, self.start_time)

    @property
    def ends_at(self) -> datetime:
        return self.starts_at + timedelta(minutes=self.planned_minutes)


@dataclass(frozen=True)
class BankHolidayCalendar:
    """A fixed set of bank-holiday dates."""

    dates: frozenset[date] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        object.__setattr__(self, "dates", frozenset(self.dates))

    @classmethod
    def of(cls, dates: Iterable[date]) -> BankHolidayCalendar:
        return cls(frozenset(dates))

    def is_bank_holiday(self, on_date: date) -> bool:
        return on_date in self.dates

    def classify(self, visit: Visit) -> Visit:
        """Return ``visit`` flagged as a bank holiday when its date is one."""
        if visit.is_bank_holiday or not self.is_bank_holiday(visit.visit_date):
            return visit
        return Visit(
            visit_ref=visit.visit_ref,
            client_id=visit.client_id,
            visit_date=visit.visit_date,
            start_time=visit.start_time,
            end_time=visit.end_time,
            service_id=visit.service_id,
            client_category=visit.client_category,
            is_bank_holiday=True,
            actual_start=visit.actual_start,
            actual_end=visit.actual_end,
            branch_id=visit.branch_id,
        )
