"""Read-only selectors over the billing ledger."""

from billing_kernel.selectors.invoice_selector import (
    InvoiceSelector,
    invoice_to_dto,
    line_to_dto,
)

__all__ = ["InvoiceSelector", "invoice_to_dto", "line_to_dto"]
