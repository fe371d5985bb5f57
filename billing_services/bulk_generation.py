"""
BulkInvoiceGenerator -- one invoice per client for a branch and period.

Responsibility:
    Groups a branch's visits in the period by client, then creates and
    generates one invoice per client through the LedgerOrchestrator.
    A failure for one client is recorded and does not stop the others.

Architecture position:
    Services -- batch driver above LedgerOrchestrator.

Failure modes:
    - Per-client BillingKernelError and ValueError are collected into
      ``BulkGenerationResult.errors``; anything else propagates.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from uuid import UUID

from billing_kernel.domain.dtos import GenerationSummary
from billing_kernel.domain.ports import BranchVisitStore, RateBlockSource
from billing_kernel.domain.visits import Visit
from billing_kernel.exceptions import BillingKernelError
from billing_kernel.logging_config import get_logger
from billing_services.ledger_orchestrator import LedgerOrchestrator

logger = get_logger("services.bulk_generation")


@dataclass(frozen=True)
class BulkClientError:
    client_id: str
    reason: str
    visit_count: int
    invoice_id: UUID | None = None


@dataclass(frozen=True)
class BulkInvoiceSummary:
    client_id: str
    invoice_id: UUID
    invoice_number: str
    total_amount: Decimal
    line_count: int
    summary: GenerationSummary


@dataclass(frozen=True)
class BulkGenerationResult:
    branch_id: str
    period_start: date
    period_end: date
    invoices: tuple[BulkInvoiceSummary, ...] = ()
    errors: tuple[BulkClientError, ...] = ()
    total_amount: Decimal = field(default=Decimal("0.00"))

    @property
    def success_count(self) -> int:
        return len(self.invoices)

    @property
    def error_count(self) -> int:
        return len(self.errors)


class BulkInvoiceGenerator:
    """Drives per-client invoice generation for a whole branch."""

    def __init__(
        self,
        orchestrator: LedgerOrchestrator,
        visit_store: BranchVisitStore,
        rate_source: RateBlockSource,
    ):
        self._orchestrator = orchestrator
        self._visits = visit_store
        self._rates = rate_source

    def generate_for_branch(
        self,
        branch_id: str,
        period_start: date,
        period_end: date,
        actor_id: UUID,
    ) -> BulkGenerationResult:
        if period_start > period_end:
            raise ValueError(
                f"period_start ({period_start}) cannot be after period_end ({period_end})"
            )

        by_client: dict[str, list[Visit]] = defaultdict(list)
        for visit in self._visits.list_branch_visits(branch_id, period_start, period_end):
            by_client[visit.client_id].append(visit)

        logger.info(
            "bulk_generation_started",
            extra={
                "branch_id": branch_id,
                "period_start": str(period_start),
                "period_end": str(period_end),
                "client_count": len(by_client),
            },
        )

        invoices: list[BulkInvoiceSummary] = []
        errors: list[BulkClientError] = []

        has_blocks = bool(self._rates.list_rate_blocks(branch_id))

        for client_id in sorted(by_client):
            visit_count = len(by_client[client_id])
            if not has_blocks:
                errors.append(
                    BulkClientError(client_id, "No rate blocks configured for branch", visit_count)
                )
                continue

            invoice_id = None
            try:
                invoice = self._orchestrator.create_invoice(
                    client_id=client_id,
                    period_start=period_start,
                    period_end=period_end,
                    actor_id=actor_id,
                    branch_id=branch_id,
                )
                invoice_id = invoice.id
                outcome = self._orchestrator.generate_ledger(invoice.id, actor_id)
            except (BillingKernelError, ValueError) as e:
                logger.warning(
                    "bulk_generation_client_failed",
                    extra={
                        "branch_id": branch_id,
                        "client_id": client_id,
                        "error": str(e),
                        "error_code": getattr(e, "code", None),
                    },
                )
                errors.append(BulkClientError(client_id, str(e), visit_count, invoice_id))
                continue

            invoices.append(
                BulkInvoiceSummary(
                    client_id=client_id,
                    invoice_id=outcome.invoice.id,
                    invoice_number=outcome.invoice.invoice_number,
                    total_amount=outcome.invoice.total_amount,
                    line_count=len(outcome.invoice.line_items),
                    summary=outcome.summary,
                )
            )

        total = sum((inv.total_amount for inv in invoices), Decimal("0.00"))
        result = BulkGenerationResult(
            branch_id=branch_id,
            period_start=period_start,
            period_end=period_end,
            invoices=tuple(invoices),
            errors=tuple(errors),
            total_amount=total,
        )

        logger.info(
            "bulk_generation_completed",
            extra={
                "branch_id": branch_id,
                "success_count": result.success_count,
                "error_count": result.error_count,
                "total_amount": str(total),
            },
        )
        return result
