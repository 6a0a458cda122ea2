"""
core/safe_math.py — Floor/clamp policy for every numeric summary.

Signal metrics must never hand NaN or ±inf to a caller. Instead of
scattering ``isfinite`` checks through each metric, all conversions that
can blow up (log of zero, division by zero) go through these helpers.

Design:
    - Every function returns a plain Python float that is finite.
    - FLOOR_DB is the single documented floor for decibel values.
"""

from __future__ import annotations

import math

FLOOR_DB: float = -70.0
"""Decibel floor returned for silent, empty, or too-short input."""


def finite_or(value: float, default: float) -> float:
    """Return ``value`` as float if it is finite, otherwise ``default``."""
    try:
        f = float(value)
    except (TypeError, ValueError):
        return default
    return f if math.isfinite(f) else default


def safe_div(numerator: float, denominator: float, default: float = 0.0) -> float:
    """Divide, returning ``default`` on zero or non-finite results."""
    if denominator == 0:
        return default
    return finite_or(numerator / denominator, default)


def power_to_db(power: float, floor: float = FLOOR_DB) -> float:
    """Convert a power ratio to dB (``10·log10``), clamped to ``floor``."""
    if not power > 0:
        return floor
    return max(finite_or(10.0 * math.log10(power), floor), floor)


def amplitude_to_db(amplitude: float, floor: float = FLOOR_DB) -> float:
    """Convert an amplitude ratio to dB (``20·log10``), clamped to ``floor``."""
    if not amplitude > 0:
        return floor
    return max(finite_or(20.0 * math.log10(amplitude), floor), floor)


def db_to_amplitude(db: float) -> float:
    """Convert decibels to a linear amplitude factor."""
    return finite_or(10.0 ** (float(db) / 20.0), 0.0)


def round_to(value: float, places: int, default: float = 0.0) -> float:
    """Round to ``places`` decimals; non-finite input becomes ``default``."""
    return round(finite_or(value, default), places)
