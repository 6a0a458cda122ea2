"""Tests for core/safe_math.py — floor and clamp helpers."""

import math

import pytest

from core.safe_math import (
    FLOOR_DB,
    amplitude_to_db,
    db_to_amplitude,
    finite_or,
    power_to_db,
    round_to,
    safe_div,
)


class TestFiniteOr:
    def test_passes_finite_value(self) -> None:
        assert finite_or(1.5, 0.0) == 1.5

    @pytest.mark.parametrize("value", [math.nan, math.inf, -math.inf, "abc", None])
    def test_replaces_non_finite(self, value: object) -> None:
        assert finite_or(value, -1.0) == -1.0  # type: ignore[arg-type]


class TestSafeDiv:
    def test_normal_division(self) -> None:
        assert safe_div(1.0, 4.0) == 0.25

    def test_zero_denominator_returns_default(self) -> None:
        assert safe_div(1.0, 0.0) == 0.0
        assert safe_div(1.0, 0.0, default=7.0) == 7.0


class TestDecibels:
    def test_amplitude_one_is_zero_db(self) -> None:
        assert amplitude_to_db(1.0) == pytest.approx(0.0)

    def test_half_amplitude(self) -> None:
        assert amplitude_to_db(0.5) == pytest.approx(-6.0206, abs=1e-3)

    def test_silence_hits_floor(self) -> None:
        assert amplitude_to_db(0.0) == FLOOR_DB
        assert power_to_db(0.0) == FLOOR_DB

    def test_tiny_value_clamped_to_floor(self) -> None:
        assert amplitude_to_db(1e-12) == FLOOR_DB

    def test_power_to_db(self) -> None:
        assert power_to_db(0.1) == pytest.approx(-10.0)

    def test_db_to_amplitude_round_trip(self) -> None:
        assert db_to_amplitude(-6.0206) == pytest.approx(0.5, abs=1e-4)


class TestRoundTo:
    def test_rounds(self) -> None:
        assert round_to(1.23456, 2) == 1.23

    def test_nan_becomes_default(self) -> None:
        assert round_to(math.nan, 2, FLOOR_DB) == FLOOR_DB
