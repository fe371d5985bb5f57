"""
LedgerLockService -- invoice lock/unlock lifecycle.

Responsibility:
    Moves an invoice between unlocked and locked, records who did it and
    when (injected Clock), and appends an InvoiceLockEvent for every real
    transition.  Unlocking is a privileged action approved by a
    LockAuthority.

Architecture position:
    Kernel > Services -- imperative shell.
    Called by LedgerOrchestrator.lock_ledger().  Relies on the caller to
    hold the per-invoice guard so a lock waits for in-flight regeneration.

Invariants enforced:
    - Locking an already-locked invoice is a no-op; the original locked_at
      and locked_by_id are kept and no event is written.
    - Unlocking an unlocked invoice is likewise a no-op.
    - No automatic or timed locks: state only changes on explicit request.
    - Flush-only: never commits or rolls back the session.

Failure modes:
    - InvoiceNotFoundError: unknown invoice id.
    - UnauthorizedLedgerActionError: the LockAuthority refused the unlock.

Audit relevance:
    Every transition is logged (ledger_locked / ledger_unlocked) and
    persisted as an append-only lock event.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import func, select

from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.domain.dtos import LockAction, LockState
from billing_kernel.domain.ports import LockAuthority
from billing_kernel.exceptions import UnauthorizedLedgerActionError
from billing_kernel.logging_config import get_logger
from billing_kernel.models.invoice import InvoiceModel
from billing_kernel.models.lock_event import InvoiceLockEvent
from billing_kernel.selectors.invoice_selector import invoice_to_dto
from billing_kernel.services.base import BaseService
from billing_kernel.services.invoice_service import InvoiceService

logger = get_logger("services.lock")


class AllowAllLockAuthority:
    """Default: every actor may unlock (unrestricted)."""

    def can_unlock(self, actor_id: UUID, invoice) -> bool:
        return True


class DenyAllLockAuthority:
    """No actor may unlock; finalized invoices stay final."""

    def can_unlock(self, actor_id: UUID, invoice) -> bool:
        return False


class LedgerLockService(BaseService[InvoiceModel]):
    """
    Service for the invoice lock state.

    Contract:
        ``set_locked`` is the single entry point; ``lock`` and ``unlock``
        are conveniences.  All return the ORM invoice for the caller to
        project.
    """

    def __init__(
        self,
        session,
        clock: Clock | None = None,
        authority: LockAuthority | None = None,
        invoices: InvoiceService | None = None,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._authority = authority or AllowAllLockAuthority()
        self._invoices = invoices or InvoiceService(session, self._clock)

    def lock(self, invoice_id: UUID, actor_id: UUID) -> InvoiceModel:
        return self.set_locked(invoice_id, True, actor_id)

    def unlock(self, invoice_id: UUID, actor_id: UUID) -> InvoiceModel:
        return self.set_locked(invoice_id, False, actor_id)

    def set_locked(self, invoice_id: UUID, locked: bool, actor_id: UUID) -> InvoiceModel:
        invoice = self._invoices.load_for_update(invoice_id)

        if invoice.is_locked == locked:
            logger.info(
                "ledger_lock_unchanged",
                extra={
                    "invoice_id": str(invoice.id),
                    "lock_state": invoice.state.value,
                    "actor_id": str(actor_id),
                },
            )
            return invoice

        previous = invoice.state
        now = self._clock.now()

        if locked:
            invoice.lock(actor_id, now)
            action = LockAction.LOCK
        else:
            if not self._authority.can_unlock(actor_id, invoice_to_dto(invoice)):
                logger.warning(
                    "ledger_unlock_denied",
                    extra={
                        "invoice_id": str(invoice.id),
                        "invoice_number": invoice.invoice_number,
                        "actor_id": str(actor_id),
                    },
                )
                raise UnauthorizedLedgerActionError(
                    str(invoice.id), str(actor_id), "unlock"
                )
            invoice.unlock()
            action = LockAction.UNLOCK

        invoice.updated_by_id = actor_id
        self.session.add(
            InvoiceLockEvent(
                invoice_id=invoice.id,
                sequence=self._next_event_sequence(invoice.id),
                action=action.value,
                actor_id=actor_id,
                occurred_at=now,
                previous_state=previous.value,
                new_state=invoice.state.value,
            )
        )
        self.session.flush()

        logger.info(
            "ledger_locked" if locked else "ledger_unlocked",
            extra={
                "invoice_id": str(invoice.id),
                "invoice_number": invoice.invoice_number,
                "actor_id": str(actor_id),
                "net_amount": str(invoice.net_amount),
            },
        )
        return invoice

    def _next_event_sequence(self, invoice_id: UUID) -> int:
        current = self.session.execute(
            select(func.max(InvoiceLockEvent.sequence)).where(
                InvoiceLockEvent.invoice_id == invoice_id
            )
        ).scalar()
        return (current or 0) + 1
