"""
Rate card loader (``billing_config.loader``).

Responsibility
--------------
Loads YAML rate card files and parses them into the frozen dataclasses of
``billing_config.schema`` and ``billing_kernel.domain.rates``.  Runtime
callers use ``billing_config.get_active_config()`` instead.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Invalid values  -> ``ValueError`` naming the offending block.

YAML shape::

    rate_card:
      id: north-branch
      branch_id: north
    settings:
      currency: GBP
      vat_rate: "0.2"
    bank_holidays: ["2024-12-25"]
    rate_blocks:
      - id: weekday-days
        rate_type: standard
        days: [mon, tue, wed, thu, fri]
        window: {from: "08:00", until: "20:00"}
        charge_basis: hours_minutes
        method: rate_per_hour
        rate: "18.50"
"""

from __future__ import annotations

import hashlib
import json
from datetime import date, time
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from billing_config.schema import BillingSettings, RateCard
from billing_kernel.db.types import validate_currency
from billing_kernel.domain.rates import (
    ChargeBasis,
    DayType,
    HoursMinutesCalculation,
    HoursMinutesMethod,
    ProRataBreakPoints,
    RateBlock,
    RateType,
    ServiceCalculation,
    ServiceMethod,
    TimeWindow,
)
from billing_kernel.domain.visits import BankHolidayCalendar


def load_yaml_file(path: Path) -> dict[str, Any]:
    with open(path) as f:
        data = yaml.safe_load(f)
    return data or {}


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON form; identical data, identical checksum."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def parse_date(value: Any) -> date:
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return date.fromisoformat(value)
    raise ValueError(f"Cannot parse date from {value!r}")


def parse_time(value: Any) -> time:
    """
    Parse "HH:MM" (or "HH:MM:SS").

    YAML 1.1 reads an unquoted 20:00 as the base-60 integer 1200, which is
    the minute of the day, so integers are accepted as minutes.
    """
    if isinstance(value, time):
        return value
    if isinstance(value, int) and not isinstance(value, bool):
        if not 0 <= value < 24 * 60:
            raise ValueError(f"Cannot parse time from {value!r}")
        return time(value // 60, value % 60)
    if isinstance(value, str):
        return time.fromisoformat(value)
    raise ValueError(f"Cannot parse time from {value!r}")


def parse_decimal(value: Any, name: str = "value") -> Decimal:
    if isinstance(value, bool):
        raise ValueError(f"{name} must be a number, got {value!r}")
    if isinstance(value, (int, str, Decimal)):
        source = value
    elif isinstance(value, float):
        # YAML has no decimal type; go through repr to avoid binary noise
        source = repr(value)
    else:
        raise ValueError(f"{name} must be a number, got {value!r}")
    try:
        return Decimal(source)
    except InvalidOperation as e:
        raise ValueError(f"{name} is not a valid number: {value!r}") from e


def _optional_decimal(data: dict[str, Any], key: str) -> Decimal | None:
    value = data.get(key)
    return None if value is None else parse_decimal(value, key)


def parse_settings(data: dict[str, Any]) -> BillingSettings:
    defaults = BillingSettings()
    max_workers = data.get("max_workers")
    return BillingSettings(
        currency=validate_currency(data.get("currency", defaults.currency)),
        vat_rate=parse_decimal(data.get("vat_rate", defaults.vat_rate), "vat_rate"),
        use_actual_time=bool(data.get("use_actual_time", defaults.use_actual_time)),
        max_workers=int(max_workers) if max_workers is not None else None,
        guard_timeout_seconds=float(
            data.get("guard_timeout_seconds", defaults.guard_timeout_seconds)
        ),
    )


def parse_break_points(data: dict[Any, Any]) -> ProRataBreakPoints:
    # Keys may be ints (15) or strings ("15", "rate_15").
    normalized = {str(k).removeprefix("rate_"): v for k, v in data.items()}
    return ProRataBreakPoints(
        rate_15=parse_decimal(normalized["15"], "rate_15"),
        rate_30=parse_decimal(normalized["30"], "rate_30"),
        rate_45=parse_decimal(normalized["45"], "rate_45"),
        rate_60=parse_decimal(normalized["60"], "rate_60"),
    )


def parse_rate_block(data: dict[str, Any]) -> RateBlock:
    """Parse one rate block, raising ValueError that names the block."""
    block_id = str(data.get("id", "<unnamed>"))
    try:
        charge_basis = ChargeBasis(data["charge_basis"])
        threshold = _optional_decimal(data, "consecutive_hours_threshold")

        if charge_basis == ChargeBasis.HOURS_MINUTES:
            calculation = HoursMinutesCalculation(
                method=HoursMinutesMethod(data["method"]),
                rate=parse_decimal(data["rate"], "rate") if "rate" in data else None,
                consecutive_hours_threshold=threshold,
                block_minutes=int(data.get("block_minutes", 60)),
            )
        else:
            break_points = data.get("break_points")
            calculation = ServiceCalculation(
                method=ServiceMethod(data["method"]),
                rate=_optional_decimal(data, "rate"),
                break_points=parse_break_points(break_points) if break_points else None,
                consecutive_hours_threshold=threshold,
            )

        window_data = data.get("window")
        window = None
        if window_data:
            window = TimeWindow(
                from_time=parse_time(window_data["from"]),
                until_time=parse_time(window_data["until"]),
            )

        return RateBlock(
            block_id=block_id,
            applicable_days=frozenset(DayType.parse(d) for d in data.get("days", [])),
            rate_type=RateType(data.get("rate_type", RateType.STANDARD.value)),
            charge_basis=charge_basis,
            calculation=calculation,
            effective_window=window,
            linked_services=frozenset(str(s) for s in data.get("services", []) or []),
            is_vatable=bool(data.get("vatable", False)),
            bank_holiday_multiplier=_optional_decimal(data, "bank_holiday_multiplier"),
            branch_id=data.get("branch_id"),
            valid_from=parse_date(data["valid_from"]) if data.get("valid_from") else None,
            valid_until=parse_date(data["valid_until"]) if data.get("valid_until") else None,
            is_active=bool(data.get("active", True)),
        )
    except KeyError as e:
        raise ValueError(f"Rate block {block_id}: missing required key {e}") from e
    except ValueError as e:
        message = str(e)
        if block_id in message:
            raise
        raise ValueError(f"Rate block {block_id}: {message}") from e


def parse_rate_card(data: dict[str, Any], checksum: str | None = None) -> RateCard:
    """Parse a complete rate card; the first invalid block raises ValueError."""
    header = data.get("rate_card", {}) or {}
    return RateCard(
        card_id=str(header.get("id", "default")),
        branch_id=header.get("branch_id"),
        settings=parse_settings(data.get("settings", {}) or {}),
        blocks=tuple(parse_rate_block(b) for b in data.get("rate_blocks", []) or []),
        bank_holidays=BankHolidayCalendar.of(
            parse_date(d) for d in data.get("bank_holidays", []) or []
        ),
        checksum=checksum or compute_checksum(data),
    )


def load_rate_card(path: Path) -> RateCard:
    return parse_rate_card(load_yaml_file(path))
