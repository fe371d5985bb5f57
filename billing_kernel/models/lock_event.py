"""
Module: billing_kernel.models.lock_event
Responsibility: Append-only audit trail of invoice lock transitions.
Architecture position: Kernel > Models.

Invariants enforced:
    - Rows are never updated or deleted (db/immutability.py).
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from billing_kernel.db.base import Base, UUIDString
from billing_kernel.domain.dtos import LockAction, LockState


class InvoiceLockEvent(Base):
    """One lock or unlock of an invoice, with who and when."""

    __tablename__ = "invoice_lock_events"

    __table_args__ = (
        UniqueConstraint("invoice_id", "sequence", name="uq_lock_event_sequence"),
        Index("idx_lock_event_invoice", "invoice_id", "occurred_at"),
    )

    invoice_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("invoices.id"),
        nullable=False,
    )

    # 1-based position in the invoice's lock history
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)

    action: Mapped[LockAction] = mapped_column(String(10), nullable=False)

    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )

    previous_state: Mapped[LockState] = mapped_column(String(20), nullable=False)
    new_state: Mapped[LockState] = mapped_column(String(20), nullable=False)

    def __repr__(self) -> str:
        return f"<InvoiceLockEvent {self.invoice_id} {self.action}>"
