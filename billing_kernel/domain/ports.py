"""
Ports -- protocols for the collaborators the ledger consumes.

Architecture position:
    Kernel > Domain -- interfaces only.  Concrete adapters live in
    ``billing_services.adapters`` or in the embedding application.
"""

from __future__ import annotations

from datetime import date
from typing import Protocol, Sequence
from uuid import UUID

from billing_kernel.domain.dtos import InvoiceInfo
from billing_kernel.domain.rates import RateBlock
from billing_kernel.domain.visits import Visit


class VisitStore(Protocol):
    """Source of visits for a client and an inclusive date range."""

    def list_visits(
        self, client_id: str, start_date: date, end_date: date
    ) -> Sequence[Visit]: ...


class RateBlockSource(Protocol):
    """Source of the rate blocks configured for a branch."""

    def list_rate_blocks(self, branch_id: str | None) -> Sequence[RateBlock]: ...


class LockAuthority(Protocol):
    """Decides whether an actor may unlock a finalized invoice."""

    def can_unlock(self, actor_id: UUID, invoice: InvoiceInfo) -> bool: ...


class BranchVisitStore(VisitStore, Protocol):
    """A visit store that can also list every visit of a branch."""

    def list_branch_visits(
        self, branch_id: str, start_date: date, end_date: date
    ) -> Sequence[Visit]: ...
