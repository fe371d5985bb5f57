"""
LedgerService -- persistent ledger generation and manual line edits.

Responsibility:
    Bridges the pure ledger generator and the invoice aggregate: fetches
    the period's visits and the branch's rate blocks, prices them, and
    replaces the invoice's lines wholesale.  Also applies manual line
    edits and deletions, keeping the invoice totals reconciled.

Architecture position:
    Services -- imperative shell over billing_engines and billing_kernel.
    Flush-only; LedgerOrchestrator owns the transaction and the
    per-invoice guard.

Invariants enforced:
    - A locked invoice is never regenerated or edited (LedgerLockedError
      before any visit is fetched or line touched).
    - Regeneration is idempotent: identical visits and rate blocks give
      identical line content and totals.
    - Manual edits recompute line_total = round(quantity x unit_price)
      without reapplying the bank-holiday multiplier, recompute the line
      VAT and mark the line as manually edited.
    - After every operation net_amount equals the sum of line totals.

Failure modes:
    - InvoiceNotFoundError / LineItemNotFoundError: unknown ids.
    - LedgerLockedError: the invoice is locked.
    - Any exception from the VisitStore propagates; the caller's rollback
      leaves the previous ledger intact.
"""

from __future__ import annotations

from datetime import date
from uuid import UUID

from sqlalchemy.orm import Session

from billing_config.schema import BillingSettings
from billing_engines.ledger_generator import LedgerResult, generate_ledger_lines
from billing_kernel.db.types import round_money, round_quantity, round_unit_price
from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.domain.dtos import LineItemPatch
from billing_kernel.domain.ports import RateBlockSource, VisitStore
from billing_kernel.domain.totals import line_vat
from billing_kernel.domain.visits import BankHolidayCalendar
from billing_kernel.exceptions import LineItemNotFoundError
from billing_kernel.logging_config import get_logger
from billing_kernel.models.invoice import InvoiceModel, LedgerLineItemModel
from billing_kernel.services.invoice_service import InvoiceService

logger = get_logger("services.ledger")


class LedgerService:
    """
    Ledger generation and manual edits for one session.

    Contract:
        Every public method loads the invoice under a row lock, checks it
        is mutable, mutates and flushes.  Returns ORM instances; the
        orchestrator projects them to DTOs.
    """

    def __init__(
        self,
        session: Session,
        visit_store: VisitStore,
        rate_source: RateBlockSource,
        clock: Clock | None = None,
        settings: BillingSettings | None = None,
        calendar: BankHolidayCalendar | None = None,
    ):
        self.session = session
        self._visits = visit_store
        self._rates = rate_source
        self._clock = clock or SystemClock()
        self._settings = settings or BillingSettings()
        self._calendar = calendar
        self._invoices = InvoiceService(session, self._clock)

    def generate_ledger(
        self, invoice_id: UUID, actor_id: UUID
    ) -> tuple[InvoiceModel, LedgerResult]:
        """Regenerate the invoice's ledger from its period's visits."""
        invoice = self._invoices.load_for_update(invoice_id)
        self._invoices.assert_mutable(invoice, "regenerate ledger")

        visits = [
            v
            for v in self._visits.list_visits(
                invoice.client_id, invoice.period_start, invoice.period_end
            )
            if _in_period(v.visit_date, invoice.period_start, invoice.period_end)
        ]
        blocks = self._rates.list_rate_blocks(invoice.branch_id)

        result = generate_ledger_lines(
            visits,
            blocks,
            vat_rate=invoice.vat_rate,
            use_actual_time=self._settings.use_actual_time,
            calendar=self._calendar,
            max_workers=self._settings.max_workers,
        )

        self._invoices.replace_lines(
            invoice,
            result.lines,
            [str(w) for w in result.warnings],
            actor_id,
            generated_at=self._clock.now(),
        )

        logger.info(
            "ledger_generated",
            extra={
                "invoice_id": str(invoice.id),
                "invoice_number": invoice.invoice_number,
                "summary": str(result.summary),
                "net_amount": str(result.totals.net_amount),
                "vat_amount": str(result.totals.vat_amount),
                "total_invoiced_minutes": result.totals.total_invoiced_minutes,
            },
        )
        return invoice, result

    def edit_line_item(
        self,
        invoice_id: UUID,
        line_item_id: UUID,
        patch: LineItemPatch,
        actor_id: UUID,
    ) -> InvoiceModel:
        invoice = self._invoices.load_for_update(invoice_id)
        self._invoices.assert_mutable(invoice, "edit line item")
        line = self._find_line(invoice, line_item_id)

        before = line.line_total
        if patch.description is not None:
            line.description = patch.description
        if patch.quantity is not None:
            line.quantity = round_quantity(patch.quantity)
        if patch.unit_price is not None:
            line.unit_price = round_unit_price(patch.unit_price)

        if patch.quantity is not None or patch.unit_price is not None:
            line.line_total = round_money(line.quantity * line.unit_price)
            line.vat_amount = line_vat(
                line.line_total, invoice.vat_rate, line.is_vatable
            )
        line.is_manually_edited = True
        line.updated_by_id = actor_id

        totals = self._invoices.recompute_totals(invoice, actor_id)

        logger.info(
            "line_item_edited",
            extra={
                "invoice_id": str(invoice.id),
                "line_item_id": str(line.id),
                "visit_ref": line.visit_ref,
                "line_total_before": str(round_money(before)),
                "line_total_after": str(line.line_total),
                "net_amount": str(totals.net_amount),
            },
        )
        return invoice

    def delete_line_item(
        self, invoice_id: UUID, line_item_id: UUID, actor_id: UUID
    ) -> InvoiceModel:
        invoice = self._invoices.load_for_update(invoice_id)
        self._invoices.assert_mutable(invoice, "delete line item")
        line = self._find_line(invoice, line_item_id)

        invoice.line_items.remove(line)
        self.session.flush()
        totals = self._invoices.recompute_totals(invoice, actor_id)

        logger.info(
            "line_item_deleted",
            extra={
                "invoice_id": str(invoice.id),
                "line_item_id": str(line_item_id),
                "visit_ref": line.visit_ref,
                "net_amount": str(totals.net_amount),
            },
        )
        return invoice

    @staticmethod
    def _find_line(invoice: InvoiceModel, line_item_id: UUID) -> LedgerLineItemModel:
        for line in invoice.line_items:
            if line.id == line_item_id:
                return line
        raise LineItemNotFoundError(str(invoice.id), str(line_item_id))


def _in_period(visit_date: date, start: date, end: date) -> bool:
    return start <= visit_date <= end
