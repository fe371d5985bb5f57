"""
Rate card validation (``billing_config.validator``).

Responsibility
--------------
Collects every problem in a rate card instead of stopping at the first:
unparseable blocks, duplicate block ids, and pairs of blocks that could
both match one visit.  Overlaps are errors; they are never resolved by
ordering.

Failure modes
-------------
Never raises for content problems; they are reported on the returned
``ConfigValidationResult``.  ``get_active_config()`` turns an invalid
result into ``RateConfigurationError``.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Iterable

from billing_config.loader import parse_rate_block, parse_settings
from billing_config.schema import RateCard
from billing_kernel.domain.rates import RateBlock, RateType, find_overlapping_blocks


@dataclass
class ConfigValidationResult:
    """
    Result of rate card validation.

    ``is_valid`` is True only when ``errors`` is empty; warnings should be
    reviewed but do not block loading.
    """

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)

    def merge(self, other: ConfigValidationResult) -> None:
        self.errors.extend(other.errors)
        self.warnings.extend(other.warnings)


def validate_blocks(blocks: Iterable[RateBlock]) -> ConfigValidationResult:
    result = ConfigValidationResult()
    blocks = tuple(blocks)

    counts = Counter(block.block_id for block in blocks)
    for block_id, count in sorted(counts.items()):
        if count > 1:
            result.add_error(f"Duplicate rate block id '{block_id}' ({count} blocks)")

    for first, second in find_overlapping_blocks(blocks):
        result.add_error(
            f"Rate blocks '{first}' and '{second}' overlap: "
            "a visit could match both"
        )

    active = [block for block in blocks if block.is_active]
    if not active:
        result.add_warning("Rate card has no active rate blocks")
    covered = {block.rate_type for block in active}
    for rate_type in RateType:
        if active and rate_type not in covered:
            result.add_warning(f"No active rate blocks for rate type '{rate_type.value}'")

    return result


def validate_rate_card(card: RateCard) -> ConfigValidationResult:
    """Validate an already-parsed rate card."""
    result = validate_blocks(card.blocks)
    if card.settings.vat_rate < 0 or card.settings.vat_rate > 1:
        result.add_error(f"vat_rate must be between 0 and 1, got {card.settings.vat_rate}")
    if card.settings.max_workers is not None and card.settings.max_workers < 1:
        result.add_error("max_workers must be at least 1")
    if card.settings.guard_timeout_seconds <= 0:
        result.add_error("guard_timeout_seconds must be positive")
    if card.settings.vat_rate == 0 and any(b.is_vatable for b in card.blocks):
        result.add_warning("Some rate blocks are VAT-able but vat_rate is 0")
    return result


def validate_rate_card_data(data: dict[str, Any]) -> ConfigValidationResult:
    """Validate raw YAML data, reporting every unparseable block."""
    result = ConfigValidationResult()

    try:
        settings = parse_settings(data.get("settings", {}) or {})
    except (KeyError, TypeError, ValueError) as e:
        result.add_error(f"Invalid settings: {e}")
        settings = None

    blocks: list[RateBlock] = []
    for raw in data.get("rate_blocks", []) or []:
        if not isinstance(raw, dict):
            result.add_error(f"Rate block entries must be mappings, got {raw!r}")
            continue
        try:
            blocks.append(parse_rate_block(raw))
        except ValueError as e:
            result.add_error(str(e))

    if settings is not None:
        result.merge(
            validate_rate_card(
                RateCard(card_id="<validation>", branch_id=None, settings=settings,
                         blocks=tuple(blocks))
            )
        )
    else:
        result.merge(validate_blocks(blocks))
    return result
