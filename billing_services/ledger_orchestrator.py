"""
LedgerOrchestrator -- transactional API over the billing ledger.

Responsibility:
    The entry point callers use to create invoices, generate and edit their
    ledgers, and lock or unlock them.  Each operation runs in its own
    transaction while holding the invoice's in-process guard, and returns
    a frozen InvoiceInfo projection.

Architecture position:
    Services -- outermost imperative shell.  Owns the transaction boundary
    (``session_scope``) that the kernel services leave to their caller.

Invariants enforced:
    - One writer per invoice per process: generate, edit, delete, lock and
      unlock hold InvoiceGuard, so a lock request waits for an in-flight
      regeneration and then observes its result.
    - Atomic regeneration: a failure anywhere (visit fetch, pricing, flush)
      rolls back the whole transaction and the previous ledger stands.
    - Stale writes from another process surface as
      ConcurrentModificationError, never as a silent overwrite.

Failure modes:
    - LedgerLockedError: mutation of a locked ledger.
    - UnauthorizedLedgerActionError: unlock refused by the LockAuthority.
    - ConcurrentModificationError: guard timeout or stale invoice version.
    - InvoiceNotFoundError / LineItemNotFoundError: unknown ids.

Audit relevance:
    Every operation binds invoice_id and actor_id into LogContext so the
    service-level log records of one operation can be correlated.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import TypeVar
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from billing_config.schema import BillingSettings
from billing_kernel.db.engine import session_scope
from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.domain.dtos import (
    GenerationSummary,
    InvoiceInfo,
    LineItemPatch,
    LockEventInfo,
    PricingWarning,
)
from billing_kernel.domain.ports import LockAuthority, RateBlockSource, VisitStore
from billing_kernel.domain.visits import BankHolidayCalendar
from billing_kernel.exceptions import ConcurrentModificationError
from billing_kernel.logging_config import LogContext, get_logger
from billing_kernel.selectors.invoice_selector import InvoiceSelector, invoice_to_dto
from billing_kernel.services.invoice_guard import InvoiceGuard
from billing_kernel.services.invoice_service import InvoiceService
from billing_kernel.services.lock_service import (
    AllowAllLockAuthority,
    LedgerLockService,
)
from billing_services.ledger_service import LedgerService

logger = get_logger("services.ledger_orchestrator")

T = TypeVar("T")


@dataclass(frozen=True)
class GenerationOutcome:
    """The regenerated invoice plus what happened while pricing it."""

    invoice: InvoiceInfo
    summary: GenerationSummary
    warnings: tuple[PricingWarning, ...] = ()


class LedgerOrchestrator:
    """
    Transactional facade over invoice creation, generation, edits and locks.

    Contract:
        Receives its collaborators by constructor injection.  Holds no
        session between calls; every public method opens, commits and
        closes its own.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        visit_store: VisitStore,
        rate_source: RateBlockSource,
        clock: Clock | None = None,
        lock_authority: LockAuthority | None = None,
        guard: InvoiceGuard | None = None,
        settings: BillingSettings | None = None,
        calendar: BankHolidayCalendar | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._visit_store = visit_store
        self._rate_source = rate_source
        self._clock = clock or SystemClock()
        self._authority: LockAuthority = lock_authority or AllowAllLockAuthority()
        self._settings = settings or BillingSettings()
        self._guard = guard or InvoiceGuard(timeout=self._settings.guard_timeout_seconds)
        self._calendar = calendar

    @property
    def guard(self) -> InvoiceGuard:
        return self._guard

    # ------------------------------------------------------------------
    # Transaction plumbing
    # ------------------------------------------------------------------

    @contextmanager
    def _transaction(self, invoice_id: UUID, operation: str) -> Iterator[Session]:
        try:
            with session_scope(self._session_factory) as session:
                yield session
        except StaleDataError as e:
            logger.warning(
                "invoice_version_conflict",
                extra={"invoice_id": str(invoice_id), "operation": operation},
            )
            raise ConcurrentModificationError(
                str(invoice_id), "invoice was updated by another transaction"
            ) from e

    def _guarded(
        self,
        invoice_id: UUID,
        actor_id: UUID,
        operation: str,
        work: Callable[[Session], T],
    ) -> T:
        with LogContext.bind(invoice_id=str(invoice_id), actor_id=str(actor_id)):
            with self._guard.hold(invoice_id, operation):
                with self._transaction(invoice_id, operation) as session:
                    return work(session)

    def _ledger_service(self, session: Session) -> LedgerService:
        return LedgerService(
            session,
            self._visit_store,
            self._rate_source,
            clock=self._clock,
            settings=self._settings,
            calendar=self._calendar,
        )

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def create_invoice(
        self,
        client_id: str,
        period_start: date,
        period_end: date,
        actor_id: UUID,
        branch_id: str | None = None,
        currency: str | None = None,
        vat_rate: Decimal | None = None,
    ) -> InvoiceInfo:
        with LogContext.bind(actor_id=str(actor_id), client_id=client_id, branch_id=branch_id):
            with session_scope(self._session_factory) as session:
                invoice = InvoiceService(session, self._clock).create_invoice(
                    client_id=client_id,
                    period_start=period_start,
                    period_end=period_end,
                    actor_id=actor_id,
                    branch_id=branch_id,
                    currency=currency or self._settings.currency,
                    vat_rate=vat_rate if vat_rate is not None else self._settings.vat_rate,
                )
                return invoice_to_dto(invoice)

    def generate_ledger(self, invoice_id: UUID, actor_id: UUID) -> GenerationOutcome:
        """
        Regenerate the invoice's ledger from the visits of its period.

        Raises:
            LedgerLockedError: The invoice is locked; nothing changes.
        """

        def work(session: Session) -> GenerationOutcome:
            invoice, result = self._ledger_service(session).generate_ledger(
                invoice_id, actor_id
            )
            return GenerationOutcome(
                invoice=invoice_to_dto(invoice),
                summary=result.summary,
                warnings=result.warnings,
            )

        return self._guarded(invoice_id, actor_id, "regenerate ledger", work)

    def lock_ledger(self, invoice_id: UUID, locked: bool, actor_id: UUID) -> InvoiceInfo:
        def work(session: Session) -> InvoiceInfo:
            service = LedgerLockService(session, clock=self._clock, authority=self._authority)
            return invoice_to_dto(service.set_locked(invoice_id, locked, actor_id))

        return self._guarded(
            invoice_id, actor_id, "lock ledger" if locked else "unlock ledger", work
        )

    def edit_line_item(
        self,
        invoice_id: UUID,
        line_item_id: UUID,
        patch: LineItemPatch,
        actor_id: UUID,
    ) -> InvoiceInfo:
        def work(session: Session) -> InvoiceInfo:
            invoice = self._ledger_service(session).edit_line_item(
                invoice_id, line_item_id, patch, actor_id
            )
            return invoice_to_dto(invoice)

        return self._guarded(invoice_id, actor_id, "edit line item", work)

    def delete_line_item(
        self, invoice_id: UUID, line_item_id: UUID, actor_id: UUID
    ) -> InvoiceInfo:
        def work(session: Session) -> InvoiceInfo:
            invoice = self._ledger_service(session).delete_line_item(
                invoice_id, line_item_id, actor_id
            )
            return invoice_to_dto(invoice)

        return self._guarded(invoice_id, actor_id, "delete line item", work)

    def get_invoice(self, invoice_id: UUID) -> InvoiceInfo:
        """Read-only projection; does not take the guard."""
        with session_scope(self._session_factory) as session:
            return InvoiceSelector(session).get(invoice_id)

    def lock_history(self, invoice_id: UUID) -> list[LockEventInfo]:
        with session_scope(self._session_factory) as session:
            selector = InvoiceSelector(session)
            selector.get(invoice_id)
            return selector.lock_history(invoice_id)
