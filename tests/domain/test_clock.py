"""Tests for the injectable clocks."""

from datetime import datetime, timedelta, timezone

import pytest

from billing_kernel.domain.clock import DEFAULT_TEST_TIME, DeterministicClock, SystemClock


def test_system_clock_is_utc_aware():
    assert SystemClock().now().tzinfo is timezone.utc


def test_deterministic_clock_stands_still():
    clock = DeterministicClock()
    assert clock.now() == clock.now() == DEFAULT_TEST_TIME


def test_advance():
    clock = DeterministicClock()
    clock.advance(30)
    clock.advance(minutes=2, seconds=0)
    assert clock.now() - DEFAULT_TEST_TIME == timedelta(minutes=2, seconds=30)


def test_cannot_move_backwards():
    with pytest.raises(ValueError):
        DeterministicClock().advance(-1)


def test_naive_times_rejected():
    with pytest.raises(ValueError, match="timezone-aware"):
        DeterministicClock(datetime(2024, 4, 1, 9, 0))
    with pytest.raises(ValueError):
        DeterministicClock().set_time(datetime(2024, 5, 1))
