"""
Module: billing_kernel.db.types
Responsibility: Annotated column types and the sanctioned rounding helpers for
    billing amounts.  Centralizes precision so that every model, engine and
    service rounds the same way.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/ and billing_engines.  MUST NOT import from any of those layers.

Invariants enforced:
    - No floats.  All monetary amounts, quantities and rates are Decimal.
    - round_money() is the ONLY rounding function for currency values:
      ROUND_HALF_UP to 2 decimal places, applied at line-item level.
    - Quantities are stored at 4 dp, unit prices at 6 dp (per-minute prices
      need more precision than currency).
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Annotated

from sqlalchemy import Numeric, String

# Monetary amount, 38 digits with 9 decimal places
Money = Annotated[Decimal, Numeric(38, 9)]

# Rates and multipliers
Rate = Annotated[Decimal, Numeric(38, 18)]

# ISO 4217 currency code (e.g., "GBP")
Currency = Annotated[str, String(3)]

ShortCode = Annotated[str, String(50)]
LongText = Annotated[str, String(4000)]

MONEY_DECIMAL_PLACES = 2
QUANTITY_DECIMAL_PLACES = 4
UNIT_PRICE_DECIMAL_PLACES = 6
DEFAULT_ROUNDING = ROUND_HALF_UP

ZERO = Decimal("0")


def round_money(
    value: Decimal,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value to the specified decimal places.

    This is the only sanctioned rounding function for currency values.
    Line totals are rounded once here; invoice totals are plain sums of
    already-rounded lines and are never re-rounded.
    """
    quantize_str = "0." + "0" * decimal_places
    return value.quantize(Decimal(quantize_str), rounding=rounding)


def round_quantity(value: Decimal) -> Decimal:
    """Round a quantity (hours, minutes or units) for storage and display."""
    return round_money(value, QUANTITY_DECIMAL_PLACES)


def round_unit_price(value: Decimal) -> Decimal:
    """Round a unit price for storage and display."""
    return round_money(value, UNIT_PRICE_DECIMAL_PLACES)


def to_decimal(value: Decimal | str | int) -> Decimal:
    """
    Coerce a config or API value to Decimal.

    Raises:
        TypeError: If value is a float (floats never enter the kernel).
    """
    if isinstance(value, float):
        raise TypeError(f"float values are not accepted for amounts: {value!r}")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def validate_currency(currency: str) -> str:
    """
    Normalize and validate a three-letter currency code.

    Raises:
        ValueError: If the code is not three ASCII letters.
    """
    if not currency or not isinstance(currency, str):
        raise ValueError(f"Invalid currency code: {currency!r}")
    normalized = currency.strip().upper()
    if len(normalized) != 3 or not normalized.isascii() or not normalized.isalpha():
        raise ValueError(f"Invalid currency code: {currency!r}")
    return normalized
