"""
billing_services -- transactional shell over the billing ledger.

Wires the pure engines (billing_engines) to persistence (billing_kernel)
and exposes LedgerOrchestrator as the public API.
"""

from billing_services.adapters import (
    ActorListLockAuthority,
    InMemoryVisitStore,
    StaticRateBlockSource,
)
from billing_services.bulk_generation import (
    BulkClientError,
    BulkGenerationResult,
    BulkInvoiceGenerator,
    BulkInvoiceSummary,
)
from billing_services.ledger_orchestrator import GenerationOutcome, LedgerOrchestrator
from billing_services.ledger_service import LedgerService

__all__ = [
    "ActorListLockAuthority",
    "BulkClientError",
    "BulkGenerationResult",
    "BulkInvoiceGenerator",
    "BulkInvoiceSummary",
    "GenerationOutcome",
    "InMemoryVisitStore",
    "LedgerOrchestrator",
    "LedgerService",
    "StaticRateBlockSource",
]
