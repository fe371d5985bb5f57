"""
InvoiceService -- invoice aggregate persistence.

Responsibility:
    Creates invoices (with their INV-YYYY-MM-NNNN numbers), loads them for
    update under a row lock, replaces their ledger lines wholesale and
    keeps the stored totals reconciled with the lines.

Architecture position:
    Kernel > Services -- imperative shell.
    Called by LedgerService, LedgerLockService and the orchestrator.  It
    does not price anything; priced lines arrive as PricedLine drafts.

Invariants enforced:
    - net_amount == sum(line_total), vat_amount == sum(line vat_amount),
      total_amount == net + vat, total_invoiced_minutes == sum(minutes),
      after every write made through this service.
    - Line replacement deletes every old line before inserting the new
      set, within the caller's transaction.
    - assert_mutable() guards every ledger mutation.
    - Flush-only: never commits or rolls back the session.

Failure modes:
    - InvoiceNotFoundError: unknown invoice id.
    - LedgerLockedError: ledger mutation on a locked invoice.
    - ValueError: invalid period, currency or VAT rate on creation.

Audit relevance:
    Creation and ledger replacement are logged with invoice id, number,
    line count and totals.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Sequence
from uuid import UUID

from sqlalchemy import func, select

from billing_kernel.db.types import (
    round_money,
    round_quantity,
    round_unit_price,
    validate_currency,
)
from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.domain.dtos import LedgerTotals, LockState, PricedLine
from billing_kernel.domain.totals import summarize
from billing_kernel.exceptions import InvoiceNotFoundError, LedgerLockedError
from billing_kernel.logging_config import get_logger
from billing_kernel.models.invoice import InvoiceModel, LedgerLineItemModel
from billing_kernel.services.base import BaseService

logger = get_logger("services.invoice")

DEFAULT_CURRENCY = "GBP"
DEFAULT_VAT_RATE = Decimal("0.2")
INVOICE_NUMBER_PREFIX = "INV"


def invoice_number_prefix(period_start: date) -> str:
    return f"{INVOICE_NUMBER_PREFIX}-{period_start:%Y-%m}-"


def format_invoice_number(period_start: date, sequence: int) -> str:
    return f"{invoice_number_prefix(period_start)}{sequence:04d}"


class InvoiceService(BaseService[InvoiceModel]):
    """
    Service for the invoice aggregate.

    Contract:
        Returns ORM InvoiceModel instances to other kernel services and the
        orchestrator, which project them with ``invoice_to_dto`` before
        handing them out.
    """

    def __init__(self, session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()

    def create_invoice(
        self,
        client_id: str,
        period_start: date,
        period_end: date,
        actor_id: UUID,
        branch_id: str | None = None,
        currency: str = DEFAULT_CURRENCY,
        vat_rate: Decimal = DEFAULT_VAT_RATE,
        invoice_number: str | None = None,
    ) -> InvoiceModel:
        """
        Create an unlocked invoice with no lines.

        Raises:
            ValueError: If period_start > period_end, the currency is not an
                ISO 4217 code, or vat_rate is outside [0, 1].
        """
        if period_start > period_end:
            raise ValueError(
                f"period_start ({period_start}) cannot be after period_end ({period_end})"
            )
        if not client_id:
            raise ValueError("client_id is required")
        if not isinstance(vat_rate, Decimal) or not (0 <= vat_rate <= 1):
            raise ValueError(f"vat_rate must be a Decimal between 0 and 1, got {vat_rate!r}")
        currency = validate_currency(currency)

        invoice = InvoiceModel(
            invoice_number=invoice_number or self.next_invoice_number(period_start),
            client_id=client_id,
            branch_id=branch_id,
            period_start=period_start,
            period_end=period_end,
            currency=currency,
            vat_rate=vat_rate,
            net_amount=Decimal("0"),
            vat_amount=Decimal("0"),
            total_amount=Decimal("0"),
            total_invoiced_minutes=0,
            lock_state=LockState.UNLOCKED.value,
            generation_warnings=[],
            created_by_id=actor_id,
        )
        self.session.add(invoice)
        self.session.flush()

        logger.info(
            "invoice_created",
            extra={
                "invoice_id": str(invoice.id),
                "invoice_number": invoice.invoice_number,
                "client_id": client_id,
                "branch_id": branch_id,
                "period_start": str(period_start),
                "period_end": str(period_end),
            },
        )
        return invoice

    def next_invoice_number(self, period_start: date) -> str:
        """Next free INV-YYYY-MM-NNNN number for the period's month."""
        prefix = invoice_number_prefix(period_start)
        latest = self.session.execute(
            select(func.max(InvoiceModel.invoice_number)).where(
                InvoiceModel.invoice_number.like(f"{prefix}%")
            )
        ).scalar()
        sequence = 1
        if latest:
            suffix = latest[len(prefix):]
            if suffix.isdigit():
                sequence = int(suffix) + 1
        return format_invoice_number(period_start, sequence)

    def get(self, invoice_id: UUID) -> InvoiceModel:
        invoice = self.session.get(InvoiceModel, invoice_id)
        if invoice is None:
            raise InvoiceNotFoundError(str(invoice_id))
        return invoice

    def load_for_update(self, invoice_id: UUID) -> InvoiceModel:
        """Load the invoice under a row lock, refreshing any cached state."""
        invoice = self.session.execute(
            select(InvoiceModel)
            .where(InvoiceModel.id == invoice_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if invoice is None:
            raise InvoiceNotFoundError(str(invoice_id))
        return invoice

    @staticmethod
    def assert_mutable(invoice: InvoiceModel, operation: str) -> None:
        if invoice.is_locked:
            logger.warning(
                "ledger_mutation_rejected_locked",
                extra={
                    "invoice_id": str(invoice.id),
                    "invoice_number": invoice.invoice_number,
                    "operation": operation,
                },
            )
            raise LedgerLockedError(str(invoice.id), operation)

    def replace_lines(
        self,
        invoice: InvoiceModel,
        lines: Sequence[PricedLine],
        warnings: Sequence[str],
        actor_id: UUID,
        generated_at: datetime | None = None,
    ) -> LedgerTotals:
        """
        Replace the invoice's ledger with ``lines`` and recompute totals.

        Old lines are deleted and flushed before the new set is inserted.
        """
        self.assert_mutable(invoice, "regenerate ledger")

        removed = len(invoice.line_items)
        invoice.line_items.clear()
        self.session.flush()

        for sort_order, line in enumerate(lines):
            invoice.line_items.append(
                LedgerLineItemModel(
                    sort_order=sort_order,
                    visit_ref=line.visit_ref,
                    visit_date=line.visit_date,
                    start_time=line.start_time,
                    description=line.description,
                    rate_type_applied=line.rate_type_applied.value,
                    day_type=line.day_type.value,
                    duration_minutes=line.duration_minutes,
                    quantity=round_quantity(line.quantity),
                    unit_price=round_unit_price(line.unit_price),
                    bank_holiday_multiplier_applied=line.bank_holiday_multiplier_applied,
                    line_total=round_money(line.line_total),
                    is_vatable=line.is_vatable,
                    vat_amount=round_money(line.vat_amount),
                    rate_block_id=line.rate_block_id,
                    flag=line.flag.value if line.flag else None,
                    is_manually_edited=False,
                    created_by_id=actor_id,
                )
            )

        invoice.generation_warnings = list(warnings)
        invoice.generated_at = generated_at or self._clock.now()
        totals = self.recompute_totals(invoice, actor_id)

        logger.info(
            "invoice_ledger_replaced",
            extra={
                "invoice_id": str(invoice.id),
                "invoice_number": invoice.invoice_number,
                "lines_removed": removed,
                "lines_written": len(lines),
                "net_amount": str(totals.net_amount),
                "total_invoiced_minutes": totals.total_invoiced_minutes,
            },
        )
        return totals

    def recompute_totals(self, invoice: InvoiceModel, actor_id: UUID) -> LedgerTotals:
        """Store totals derived from the invoice's current lines and flush."""
        totals = summarize(invoice.line_items)
        invoice.net_amount = totals.net_amount
        invoice.vat_amount = totals.vat_amount
        invoice.total_amount = totals.total_amount
        invoice.total_invoiced_minutes = totals.total_invoiced_minutes
        invoice.updated_by_id = actor_id
        self.session.flush()
        return totals
