"""
billing_config -- public entrypoint for rate card configuration.

Responsibility:
    ``get_active_config()`` is the way to obtain a validated RateCard at
    runtime.  YAML parsing lives in the loader; callers never read rate
    card files themselves.

Architecture position:
    Configuration -- sits above ``billing_kernel`` and below
    ``billing_services``.  The kernel never imports from here.

Invariants enforced:
    - A card is only returned after validation found no errors (no
      overlapping or unparseable blocks).
    - Same YAML, same checksum.

Failure modes:
    - ``FileNotFoundError`` -- the rate card file does not exist.
    - ``RateConfigurationError`` -- validation failed; ``errors`` lists
      every problem found.

Audit relevance:
    Every successful load emits ``billing_config_loaded`` with the card id,
    branch, block count and SHA-256 checksum, tying generated invoices back
    to the exact rate card that priced them.
"""

from __future__ import annotations

from pathlib import Path

from billing_config.loader import compute_checksum, load_yaml_file, parse_rate_card
from billing_config.schema import BillingSettings, RateCard
from billing_config.validator import (
    ConfigValidationResult,
    validate_rate_card,
    validate_rate_card_data,
)
from billing_kernel.exceptions import RateConfigurationError
from billing_kernel.logging_config import get_logger

logger = get_logger("config")

DEFAULT_RATE_CARD = Path(__file__).parent / "sets" / "default.yaml"

__all__ = [
    "BillingSettings",
    "ConfigValidationResult",
    "DEFAULT_RATE_CARD",
    "RateCard",
    "get_active_config",
    "validate_rate_card",
]


def get_active_config(path: Path | str | None = None) -> RateCard:
    """
    Load, validate and return the rate card at ``path``.

    Defaults to the bundled ``sets/default.yaml``.

    Raises:
        FileNotFoundError: If the file does not exist.
        RateConfigurationError: If validation reports any error.
    """
    source = Path(path) if path is not None else DEFAULT_RATE_CARD
    data = load_yaml_file(source)

    validation = validate_rate_card_data(data)
    for warning in validation.warnings:
        logger.warning("rate_card_warning", extra={"source": str(source), "warning": warning})
    if not validation.is_valid:
        logger.error(
            "rate_card_invalid",
            extra={"source": str(source), "errors": validation.errors},
        )
        raise RateConfigurationError(str(source), validation.errors)

    card = parse_rate_card(data, checksum=compute_checksum(data))

    logger.info(
        "billing_config_loaded",
        extra={
            "source": str(source),
            "card_id": card.card_id,
            "branch_id": card.branch_id,
            "block_count": len(card.blocks),
            "bank_holiday_count": len(card.bank_holidays.dates),
            "checksum": card.checksum,
        },
    )
    return card
