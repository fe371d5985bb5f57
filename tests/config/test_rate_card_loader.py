"""
Tests for rate card loading and validation (``billing_config``).
"""

from datetime import date, time
from decimal import Decimal

import pytest
import yaml

from billing_config import DEFAULT_RATE_CARD, get_active_config
from billing_config.loader import parse_decimal, parse_rate_block, parse_time
from billing_config.validator import validate_rate_card, validate_rate_card_data
from billing_kernel.domain.rates import (
    ChargeBasis,
    DayType,
    HoursMinutesMethod,
    RateType,
    ServiceMethod,
)
from billing_kernel.exceptions import RateConfigurationError


def _write_card(tmp_path, data) -> str:
    path = tmp_path / "card.yaml"
    path.write_text(yaml.safe_dump(data))
    return str(path)


def _block(block_id, **overrides):
    data = {
        "id": block_id,
        "rate_type": "standard",
        "days": ["mon", "tue", "wed", "thu", "fri"],
        "charge_basis": "hours_minutes",
        "method": "rate_per_hour",
        "rate": "10.00",
    }
    data.update(overrides)
    return data


class TestDefaultRateCard:

    def test_loads_and_validates(self):
        card = get_active_config()
        assert card.card_id == "default"
        assert len(card.blocks) == 7
        assert card.settings.currency == "GBP"
        assert card.settings.vat_rate == Decimal("0.2")
        assert card.bank_holidays.is_bank_holiday(date(2024, 12, 25))
        assert len(card.checksum) == 64

    def test_checksum_is_stable(self):
        assert get_active_config().checksum == get_active_config(DEFAULT_RATE_CARD).checksum

    def test_night_window_wraps_midnight(self):
        card = get_active_config()
        night = next(b for b in card.blocks if b.block_id == "standard-weekday-night")
        assert night.effective_window.wraps_midnight
        assert night.effective_window.from_time == time(20, 0)

    def test_service_blocks(self):
        card = get_active_config()
        care = next(b for b in card.blocks if b.block_id == "adult-personal-care")
        assert care.charge_basis == ChargeBasis.SERVICES
        assert care.calculation.method == ServiceMethod.PRO_RATA
        assert care.calculation.break_points.rate_30 == Decimal("11.00")
        assert care.bank_holiday_multiplier == Decimal("1.5")

        meds = next(b for b in card.blocks if b.block_id == "adult-medication-check")
        assert meds.is_vatable

    def test_logs_checksum(self, captured_logs):
        card = get_active_config()
        loaded = [r for r in captured_logs() if r["message"] == "billing_config_loaded"]
        assert loaded[0]["checksum"] == card.checksum
        assert loaded[0]["block_count"] == 7


class TestInvalidRateCards:

    def test_overlapping_blocks_rejected(self, tmp_path):
        path = _write_card(tmp_path, {
            "rate_blocks": [
                _block("day", window={"from": "07:00", "until": "20:00"}),
                _block("evening", window={"from": "18:00", "until": "22:00"}),
            ],
        })
        with pytest.raises(RateConfigurationError) as exc_info:
            get_active_config(path)
        assert any("'day' and 'evening' overlap" in e for e in exc_info.value.errors)

    def test_every_problem_reported(self, tmp_path):
        path = _write_card(tmp_path, {
            "settings": {"vat_rate": "2"},
            "rate_blocks": [
                _block("dup"),
                _block("dup", days=["sat"]),
                _block("broken", method="per_fortnight"),
                _block("no-days", days=[]),
            ],
        })
        with pytest.raises(RateConfigurationError) as exc_info:
            get_active_config(path)
        errors = exc_info.value.errors
        assert any("Duplicate rate block id 'dup'" in e for e in errors)
        assert any(e.startswith("Rate block broken:") for e in errors)
        assert any("no-days" in e and "applicable_days" in e for e in errors)
        assert any("vat_rate must be between 0 and 1" in e for e in errors)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_config(tmp_path / "missing.yaml")

    def test_warnings_do_not_block_loading(self, tmp_path, captured_logs):
        path = _write_card(tmp_path, {"rate_blocks": [_block("only-standard")]})
        card = get_active_config(path)
        assert len(card.blocks) == 1
        warnings = [r["warning"] for r in captured_logs() if r["message"] == "rate_card_warning"]
        assert "No active rate blocks for rate type 'cyp'" in warnings


class TestParsing:

    def test_unquoted_time_read_as_sexagesimal(self):
        """YAML 1.1 turns an unquoted 20:00 into 1200."""
        raw = yaml.safe_load("window: {from: 20:00, until: 07:00}")["window"]
        assert parse_time(raw["from"]) == time(20, 0)
        assert parse_time(raw["until"]) == time(7, 0)

    def test_parse_time_strings(self):
        assert parse_time("09:30") == time(9, 30)
        with pytest.raises(ValueError):
            parse_time(24 * 60)

    def test_parse_decimal_avoids_float_noise(self):
        assert parse_decimal(18.1) == Decimal("18.1")
        assert parse_decimal("0.2") == Decimal("0.2")
        with pytest.raises(ValueError):
            parse_decimal(True)

    def test_parse_pro_rata_block(self):
        block = parse_rate_block({
            "id": "care",
            "rate_type": "adult",
            "days": ["mon", "bank_holiday"],
            "charge_basis": "services",
            "method": "pro_rata",
            "services": ["personal_care"],
            "break_points": {"rate_15": "6", "rate_30": "11", "rate_45": "15.5", "rate_60": "19.5"},
            "consecutive_hours_threshold": 2,
        })
        assert block.rate_type == RateType.ADULT
        assert block.applicable_days == frozenset({DayType.MONDAY, DayType.BANK_HOLIDAY})
        assert block.calculation.break_points.rate_60 == Decimal("19.5")
        assert block.calculation.consecutive_hours_threshold == Decimal("2")

    def test_parse_flat_per_minute_block(self):
        block = parse_rate_block(_block("flat", method="rate_per_minute_flat", block_minutes=15))
        assert block.calculation.method == HoursMinutesMethod.RATE_PER_MINUTE_FLAT
        assert block.calculation.block_minutes == 15

    def test_missing_key_names_block(self):
        data = _block("no-basis")
        del data["charge_basis"]
        with pytest.raises(ValueError, match="Rate block no-basis: missing required key"):
            parse_rate_block(data)


class TestValidateRateCard:

    def test_default_card_is_valid(self):
        result = validate_rate_card(get_active_config())
        assert result.is_valid
        assert result.warnings == []

    def test_validate_raw_data(self):
        result = validate_rate_card_data({"rate_blocks": ["not a mapping"]})
        assert not result.is_valid
        assert "must be mappings" in result.errors[0]
