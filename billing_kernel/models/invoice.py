"""
Module: billing_kernel.models.invoice
Responsibility: ORM persistence for invoices and their ledger line items.
Architecture position: Kernel > Models.  May import from db/ and domain
    enums only.

Invariants enforced:
    - net_amount equals the sum of line_total over the invoice's lines and
      vat_amount the sum of line vat_amount (maintained by the services;
      rows are never patched individually).
    - Lines are owned exclusively by their invoice (delete-orphan cascade).
    - ``version`` is the optimistic-concurrency counter; a stale write
      raises StaleDataError at flush.
    - A locked invoice's billing fields and lines are frozen (ORM listeners
      in db/immutability.py).

Failure modes:
    - ValueError from lock()/unlock() on an invalid transition.
    - StaleDataError when another transaction updated the row first.

Audit relevance:
    Lock transitions record locked_at/locked_by_id and are mirrored by an
    append-only InvoiceLockEvent row.  Invoices hold the warnings from the
    last generation so flagged visits remain visible after the fact.
"""

from datetime import date, datetime, time
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Time,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from billing_kernel.db.base import TrackedBase, UUIDString
from billing_kernel.domain.dtos import LockState


class InvoiceModel(TrackedBase):
    """
    An invoice for one client and billing period.

    Contract:
        Created unlocked with no lines.  Regenerated any number of times
        while unlocked; lock() freezes it, unlock() reopens it.

    Non-goals:
        - Does NOT check unlock authority; LedgerLockService does that.
    """

    __tablename__ = "invoices"

    __table_args__ = (
        UniqueConstraint("invoice_number", name="uq_invoice_number"),
        Index("idx_invoice_client_period", "client_id", "period_start", "period_end"),
        Index("idx_invoice_branch", "branch_id"),
    )

    # Human-facing number, e.g. INV-2024-03-0001
    invoice_number: Mapped[str] = mapped_column(String(32), nullable=False)

    client_id: Mapped[str] = mapped_column(String(64), nullable=False)

    branch_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # Billing period (inclusive)
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)

    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    vat_rate: Mapped[Decimal] = mapped_column(nullable=False)

    net_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)
    vat_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)

    total_invoiced_minutes: Mapped[int] = mapped_column(
        BigInteger, default=0, nullable=False
    )

    lock_state: Mapped[LockState] = mapped_column(
        String(20),
        default=LockState.UNLOCKED.value,
        nullable=False,
    )

    locked_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    locked_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    generated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Messages from the last generation, e.g. "V-17: no rate rule ..."
    generation_warnings: Mapped[list | None] = mapped_column(JSON, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    line_items: Mapped[list["LedgerLineItemModel"]] = relationship(
        back_populates="invoice",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="LedgerLineItemModel.sort_order",
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<Invoice {self.invoice_number}: {self.state.value}>"

    @property
    def state(self) -> LockState:
        return LockState(self.lock_state)

    @property
    def is_locked(self) -> bool:
        return self.state == LockState.LOCKED

    def lock(self, actor_id: UUID, locked_at: datetime) -> None:
        """Freeze the invoice.

        Note: Requires locked_at from the injected clock.
        """
        if self.is_locked:
            raise ValueError(f"Invoice {self.invoice_number} is already locked")
        self.lock_state = LockState.LOCKED.value
        self.locked_at = locked_at
        self.locked_by_id = actor_id

    def unlock(self) -> None:
        if not self.is_locked:
            raise ValueError(f"Invoice {self.invoice_number} is not locked")
        self.lock_state = LockState.UNLOCKED.value
        self.locked_at = None
        self.locked_by_id = None


class LedgerLineItemModel(TrackedBase):
    """One priced visit on an invoice."""

    __tablename__ = "invoice_line_items"

    __table_args__ = (
        Index("idx_line_item_invoice", "invoice_id", "sort_order"),
    )

    invoice_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("invoices.id"),
        nullable=False,
    )

    sort_order: Mapped[int] = mapped_column(Integer, nullable=False)

    visit_ref: Mapped[str] = mapped_column(String(64), nullable=False)
    visit_date: Mapped[date] = mapped_column(Date, nullable=False)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)

    description: Mapped[str] = mapped_column(String(500), nullable=False)

    rate_type_applied: Mapped[str] = mapped_column(String(20), nullable=False)
    day_type: Mapped[str] = mapped_column(String(20), nullable=False)

    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)

    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(nullable=False)

    bank_holiday_multiplier_applied: Mapped[Decimal] = mapped_column(
        default=Decimal("1"), nullable=False
    )

    line_total: Mapped[Decimal] = mapped_column(nullable=False)

    is_vatable: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    vat_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)

    # Block that priced the line; None for flagged lines
    rate_block_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    flag: Mapped[str | None] = mapped_column(String(32), nullable=True)

    is_manually_edited: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )

    invoice: Mapped[InvoiceModel] = relationship(back_populates="line_items")

    def __repr__(self) -> str:
        return f"<LedgerLineItem {self.visit_ref}: {self.line_total}>"
