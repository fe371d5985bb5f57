"""
Module: billing_kernel.selectors.invoice_selector
Responsibility: Read projections of invoices, their ledger lines and their
    lock history.
Architecture position: Kernel > Selectors.  Used by the services to build
    return values and by the orchestrator's ``get_invoice``.

Invariants enforced:
    - Monetary values are projected at 2 dp; quantities at 4 dp and unit
      prices at 6 dp, matching how they were rounded when written.
    - Lines are returned in ledger order (sort_order).

Failure modes:
    - InvoiceNotFoundError when the invoice id is unknown.
"""

from __future__ import annotations

from datetime import date
from uuid import UUID

from sqlalchemy import select

from billing_kernel.db.types import round_money, round_quantity, round_unit_price
from billing_kernel.domain.dtos import (
    InvoiceInfo,
    LineFlag,
    LineItemInfo,
    LockAction,
    LockEventInfo,
    LockState,
)
from billing_kernel.domain.rates import DayType, RateType
from billing_kernel.exceptions import InvoiceNotFoundError
from billing_kernel.models.invoice import InvoiceModel, LedgerLineItemModel
from billing_kernel.models.lock_event import InvoiceLockEvent
from billing_kernel.selectors.base import BaseSelector


def line_to_dto(line: LedgerLineItemModel) -> LineItemInfo:
    return LineItemInfo(
        id=line.id,
        invoice_id=line.invoice_id,
        sort_order=line.sort_order,
        visit_ref=line.visit_ref,
        visit_date=line.visit_date,
        description=line.description,
        rate_type_applied=RateType(line.rate_type_applied),
        day_type=DayType(line.day_type),
        duration_minutes=line.duration_minutes,
        quantity=round_quantity(line.quantity),
        unit_price=round_unit_price(line.unit_price),
        bank_holiday_multiplier_applied=round_quantity(line.bank_holiday_multiplier_applied),
        line_total=round_money(line.line_total),
        is_vatable=line.is_vatable,
        vat_amount=round_money(line.vat_amount),
        rate_block_id=line.rate_block_id,
        flag=LineFlag(line.flag) if line.flag else None,
        is_manually_edited=line.is_manually_edited,
    )


def invoice_to_dto(invoice: InvoiceModel) -> InvoiceInfo:
    """Project an invoice row (and its loaded lines) to an InvoiceInfo."""
    return InvoiceInfo(
        id=invoice.id,
        invoice_number=invoice.invoice_number,
        client_id=invoice.client_id,
        branch_id=invoice.branch_id,
        period_start=invoice.period_start,
        period_end=invoice.period_end,
        currency=invoice.currency,
        vat_rate=round_quantity(invoice.vat_rate),
        net_amount=round_money(invoice.net_amount),
        vat_amount=round_money(invoice.vat_amount),
        total_amount=round_money(invoice.total_amount),
        total_invoiced_minutes=invoice.total_invoiced_minutes,
        lock_state=invoice.state,
        locked_at=invoice.locked_at,
        locked_by_id=invoice.locked_by_id,
        version=invoice.version,
        generated_at=invoice.generated_at,
        generation_warnings=tuple(invoice.generation_warnings or ()),
        line_items=tuple(
            line_to_dto(line)
            for line in sorted(invoice.line_items, key=lambda item: item.sort_order)
        ),
    )


class InvoiceSelector(BaseSelector[InvoiceModel]):
    """Read-only queries over invoices."""

    def get(self, invoice_id: UUID) -> InvoiceInfo:
        invoice = self.session.get(InvoiceModel, invoice_id)
        if invoice is None:
            raise InvoiceNotFoundError(str(invoice_id))
        return invoice_to_dto(invoice)

    def find(self, invoice_id: UUID) -> InvoiceInfo | None:
        invoice = self.session.get(InvoiceModel, invoice_id)
        return invoice_to_dto(invoice) if invoice is not None else None

    def list_for_client(
        self,
        client_id: str,
        period_start: date | None = None,
        period_end: date | None = None,
    ) -> list[InvoiceInfo]:
        stmt = select(InvoiceModel).where(InvoiceModel.client_id == client_id)
        if period_start is not None:
            stmt = stmt.where(InvoiceModel.period_end >= period_start)
        if period_end is not None:
            stmt = stmt.where(InvoiceModel.period_start <= period_end)
        stmt = stmt.order_by(InvoiceModel.period_start, InvoiceModel.invoice_number)
        return [invoice_to_dto(row) for row in self.session.scalars(stmt)]

    def list_for_branch(self, branch_id: str) -> list[InvoiceInfo]:
        stmt = (
            select(InvoiceModel)
            .where(InvoiceModel.branch_id == branch_id)
            .order_by(InvoiceModel.invoice_number)
        )
        return [invoice_to_dto(row) for row in self.session.scalars(stmt)]

    def lock_history(self, invoice_id: UUID) -> list[LockEventInfo]:
        stmt = (
            select(InvoiceLockEvent)
            .where(InvoiceLockEvent.invoice_id == invoice_id)
            .order_by(InvoiceLockEvent.sequence)
        )
        return [
            LockEventInfo(
                id=row.id,
                invoice_id=row.invoice_id,
                sequence=row.sequence,
                action=LockAction(row.action),
                actor_id=row.actor_id,
                occurred_at=row.occurred_at,
                previous_state=LockState(row.previous_state),
                new_state=LockState(row.new_state),
            )
            for row in self.session.scalars(stmt)
        ]
