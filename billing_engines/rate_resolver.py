"""
Rate Resolver -- selects the single rate block that prices a visit.

Pure functions with deterministic behavior. No I/O.

A block matches a visit when all of these hold:
    - the block is active and valid on the visit date,
    - its rate type equals the client category,
    - the visit's service is linked (service-based blocks; hours/minutes
      blocks only filter when they link services),
    - the visit's day type is applicable (a bank holiday is its own day
      type, never also the weekday),
    - the visit starts inside the effective window, when one is set.

Exactly one match is required.  None raises NoRateRuleFoundError; several
raise AmbiguousRateRuleError listing every matching block.  Overlaps are
never broken by ordering or priority.

Usage:
    from billing_engines.rate_resolver import resolve_rate_block

    block = resolve_rate_block(visit, blocks)
"""

from __future__ import annotations

from typing import Iterable, Sequence

from billing_kernel.domain.rates import RateBlock, find_overlapping_blocks
from billing_kernel.domain.visits import Visit
from billing_kernel.exceptions import AmbiguousRateRuleError, NoRateRuleFoundError
from billing_kernel.logging_config import get_logger

logger = get_logger("engines.rate_resolver")

__all__ = [
    "block_matches",
    "find_overlapping_blocks",
    "matching_blocks",
    "resolve_rate_block",
]


def block_matches(block: RateBlock, visit: Visit) -> bool:
    if not block.is_valid_on(visit.visit_date):
        return False
    if block.rate_type != visit.client_category:
        return False
    if not block.covers_service(visit.service_id):
        return False
    if visit.day_type not in block.applicable_days:
        return False
    if block.effective_window is not None:
        return block.effective_window.contains(visit.start_time)
    return True


def matching_blocks(visit: Visit, blocks: Iterable[RateBlock]) -> list[RateBlock]:
    return [block for block in blocks if block_matches(block, visit)]


def resolve_rate_block(visit: Visit, blocks: Sequence[RateBlock]) -> RateBlock:
    """
    Return the one block that prices ``visit``.

    Raises:
        NoRateRuleFoundError: No block matches.
        AmbiguousRateRuleError: More than one block matches.
    """
    matches = matching_blocks(visit, blocks)

    if not matches:
        logger.warning("rate_rule_not_found", extra={
            "visit_ref": visit.visit_ref,
            "client_category": visit.client_category.value,
            "day_type": visit.day_type.value,
            "start_time": visit.start_time.isoformat(),
            "service_id": visit.service_id,
            "candidate_blocks": len(blocks),
        })
        raise NoRateRuleFoundError(
            visit.visit_ref,
            visit.day_type.value,
            visit.start_time.strftime("%H:%M"),
        )

    if len(matches) > 1:
        block_ids = tuple(sorted(block.block_id for block in matches))
        logger.warning("rate_rule_ambiguous", extra={
            "visit_ref": visit.visit_ref,
            "day_type": visit.day_type.value,
            "start_time": visit.start_time.isoformat(),
            "block_ids": list(block_ids),
        })
        raise AmbiguousRateRuleError(visit.visit_ref, block_ids)

    return matches[0]
