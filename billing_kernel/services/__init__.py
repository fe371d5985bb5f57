"""Kernel write services.  Flush-only; callers own the transaction."""

from billing_kernel.services.invoice_guard import InvoiceGuard
from billing_kernel.services.invoice_service import InvoiceService
from billing_kernel.services.lock_service import (
    AllowAllLockAuthority,
    DenyAllLockAuthority,
    LedgerLockService,
)

__all__ = [
    "AllowAllLockAuthority",
    "DenyAllLockAuthority",
    "InvoiceGuard",
    "InvoiceService",
    "LedgerLockService",
]
