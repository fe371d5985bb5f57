"""
Rate card schema.

Defines the human-authored, reviewable rate card.  YAML files are parsed
into these types by the loader and checked by the validator before
``get_active_config()`` hands a card out.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from billing_kernel.domain.rates import RateBlock
from billing_kernel.domain.visits import BankHolidayCalendar

# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BillingSettings:
    """Invoice-wide settings that accompany a rate card."""

    currency: str = "GBP"
    vat_rate: Decimal = Decimal("0.2")
    use_actual_time: bool = False
    max_workers: int | None = None  # None prices visits sequentially
    guard_timeout_seconds: float = 30.0


# ---------------------------------------------------------------------------
# Rate card
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RateCard:
    """A branch's rate blocks, settings and bank-holiday calendar."""

    card_id: str
    branch_id: str | None
    settings: BillingSettings
    blocks: tuple[RateBlock, ...] = ()
    bank_holidays: BankHolidayCalendar = field(default_factory=BankHolidayCalendar)
    checksum: str = ""

    def blocks_for_branch(self, branch_id: str | None) -> tuple[RateBlock, ...]:
        """Blocks that apply to ``branch_id``; unscoped blocks apply everywhere."""
        return tuple(
            block
            for block in self.blocks
            if block.branch_id is None or branch_id is None or block.branch_id == branch_id
        )
