"""
Module: billing_engines
Responsibility:
    Re-exports the pure pricing engines: rate resolution, line calculation
    and ledger generation.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May import billing_kernel domain types, exceptions and logging.
    MUST NOT import billing_services or billing_config.

Invariants enforced:
    - Engines never read the clock; timestamps are supplied by services.
    - Decimal-only arithmetic; floats are rejected at the domain boundary.
    - Identical inputs always produce identical outputs.
"""

from billing_engines.ledger_generator import (
    LedgerResult,
    generate_ledger_lines,
    price_visit,
)
from billing_engines.line_calculator import (
    Charge,
    calculate_line_item,
    compute_charge,
    flagged_line_item,
)
from billing_engines.rate_resolver import (
    block_matches,
    find_overlapping_blocks,
    matching_blocks,
    resolve_rate_block,
)

__all__ = [
    "Charge",
    "LedgerResult",
    "block_matches",
    "calculate_line_item",
    "compute_charge",
    "find_overlapping_blocks",
    "flagged_line_item",
    "generate_ledger_lines",
    "matching_blocks",
    "price_visit",
    "resolve_rate_block",
]
