"""
DTOs -- Pure domain data transfer objects for the billing ledger.

Responsibility:
    Defines the immutable structures that cross the persistence boundary:
    PricedLine (calculator output), PricingWarning and GenerationSummary
    (generation diagnostics), LedgerTotals, and the read projections
    InvoiceInfo, LineItemInfo and LockEventInfo.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    Free of ORM dependencies; services convert ORM rows with ``_to_dto``.

Invariants enforced:
    - Monetary fields are Decimal, never float.
    - A PricedLine's multiplier is >= 1.
    - A LineItemPatch changes at least one field.

Failure modes:
    - ValueError on invalid PricedLine or LineItemPatch construction.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from uuid import UUID

from billing_kernel.domain.rates import DayType, RateType

ZERO = Decimal("0")


class LineFlag(str, Enum):
    """Why a line was priced at zero instead of from a rate block."""

    NO_RATE_RULE = "no_rate_rule"
    AMBIGUOUS_RATE_RULE = "ambiguous_rate_rule"


class LockState(str, Enum):
    UNLOCKED = "unlocked"
    LOCKED = "locked"


class LockAction(str, Enum):
    LOCK = "lock"
    UNLOCK = "unlock"


@dataclass(frozen=True)
class PricedLine:
    """
    A priced (or flagged) line draft produced for one visit.

    ``line_total`` already includes the bank-holiday multiplier and is
    rounded to 2 dp.  ``vat_amount`` is zero unless the line is VAT-able.
    """

    visit_ref: str
    visit_date: date
    start_time: time
    description: str
    rate_type_applied: RateType
    day_type: DayType
    duration_minutes: int
    quantity: Decimal
    unit_price: Decimal
    bank_holiday_multiplier_applied: Decimal
    line_total: Decimal
    is_vatable: bool = False
    vat_amount: Decimal = ZERO
    rate_block_id: str | None = None
    flag: LineFlag | None = None

    def __post_init__(self) -> None:
        for attr in ("quantity", "unit_price", "line_total", "vat_amount",
                     "bank_holiday_multiplier_applied"):
            if not isinstance(getattr(self, attr), Decimal):
                raise ValueError(f"{attr} must be a Decimal")
        if self.bank_holiday_multiplier_applied < 1:
            raise ValueError("bank_holiday_multiplier_applied must be >= 1")
        if self.duration_minutes < 0:
            raise ValueError("duration_minutes must be non-negative")

    @property
    def is_flagged(self) -> bool:
        return self.flag is not None

    def content_key(self) -> tuple:
        """Everything that defines the line's content, for comparisons."""
        return (
            self.visit_ref,
            self.visit_date,
            self.start_time,
            self.description,
            self.rate_type_applied,
            self.day_type,
            self.duration_minutes,
            self.quantity,
            self.unit_price,
            self.bank_holiday_multiplier_applied,
            self.line_total,
            self.is_vatable,
            self.vat_amount,
            self.rate_block_id,
            self.flag,
        )


@dataclass(frozen=True)
class PricingWarning:
    """A visit that could not be priced from the rate card."""

    visit_ref: str
    flag: LineFlag
    message: str
    block_ids: tuple[str, ...] = ()

    def __str__(self) -> str:
        return f"{self.visit_ref}: {self.message}"


@dataclass(frozen=True)
class GenerationSummary:
    total_visits: int
    priced_visits: int
    flagged_visits: int

    def __str__(self) -> str:
        return (
            f"{self.priced_visits} of {self.total_visits} visits priced, "
            f"{self.flagged_visits} flagged"
        )


@dataclass(frozen=True)
class LedgerTotals:
    net_amount: Decimal
    vat_amount: Decimal
    total_amount: Decimal
    total_invoiced_minutes: int

    @classmethod
    def empty(cls) -> LedgerTotals:
        return cls(ZERO, ZERO, ZERO, 0)


@dataclass(frozen=True)
class LineItemPatch:
    """Fields a user may change when editing a line by hand."""

    description: str | None = None
    quantity: Decimal | None = None
    unit_price: Decimal | None = None

    def __post_init__(self) -> None:
        if self.description is None and self.quantity is None and self.unit_price is None:
            raise ValueError("LineItemPatch must change at least one field")
        for attr in ("quantity", "unit_price"):
            value = getattr(self, attr)
            if value is None:
                continue
            if not isinstance(value, Decimal):
                raise ValueError(f"{attr} must be a Decimal, got {type(value).__name__}")
            if value < 0:
                raise ValueError(f"{attr} must be non-negative")


@dataclass(frozen=True)
class LineItemInfo:
    """Read projection of a persisted ledger line."""

    id: UUID
    invoice_id: UUID
    sort_order: int
    visit_ref: str
    visit_date: date
    description: str
    rate_type_applied: RateType
    day_type: DayType
    duration_minutes: int
    quantity: Decimal
    unit_price: Decimal
    bank_holiday_multiplier_applied: Decimal
    line_total: Decimal
    is_vatable: bool
    vat_amount: Decimal
    rate_block_id: str | None
    flag: LineFlag | None
    is_manually_edited: bool


@dataclass(frozen=True)
class InvoiceInfo:
    """
    Read projection of an invoice and its ledger.

    Contract:
        Immutable snapshot; monetary values at 2 dp, lines in ledger order.
    """

    id: UUID
    invoice_number: str
    client_id: str
    branch_id: str | None
    period_start: date
    period_end: date
    currency: str
    vat_rate: Decimal
    net_amount: Decimal
    vat_amount: Decimal
    total_amount: Decimal
    total_invoiced_minutes: int
    lock_state: LockState
    locked_at: datetime | None
    locked_by_id: UUID | None
    version: int
    generated_at: datetime | None
    generation_warnings: tuple[str, ...]
    line_items: tuple[LineItemInfo, ...]

    @property
    def is_locked(self) -> bool:
        return self.lock_state == LockState.LOCKED

    @property
    def totals(self) -> LedgerTotals:
        return LedgerTotals(
            net_amount=self.net_amount,
            vat_amount=self.vat_amount,
            total_amount=self.total_amount,
            total_invoiced_minutes=self.total_invoiced_minutes,
        )

    def contains_date(self, check_date: date) -> bool:
        return self.period_start <= check_date <= self.period_end


@dataclass(frozen=True)
class LockEventInfo:
    id: UUID
    invoice_id: UUID
    sequence: int
    action: LockAction
    actor_id: UUID
    occurred_at: datetime
    previous_state: LockState
    new_state: LockState
