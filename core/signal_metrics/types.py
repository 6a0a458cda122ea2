"""
core/signal_metrics/types.py — Frozen result types for signal metrics.

All types are frozen dataclasses — immutable value objects that are safe
to pass between layers, cache, and serialise into job results.

Rounding precision (applied at creation sites in metrics.py):
    - decibel values, dynamic range, crest factor, clipping %: 2 decimals
    - linear peak and RMS amplitude:                            4 decimals
    - stereo correlation, balance, width:                       3 decimals
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any


@dataclass(frozen=True)
class ClippingReport:
    """Count of samples at or above the clipping threshold."""

    has_clipping: bool
    clipped_sample_count: int
    clipping_percentage: float
    """Share of all samples (all channels) in percent, 0–100."""


@dataclass(frozen=True)
class StereoImage:
    """Stereo properties of a left/right pair.

    Invariants:
        -1.0 <= correlation <= 1.0
        -1.0 <= balance <= 1.0   (positive = right-heavy)
        0.0 <= width <= 1.0
    """

    correlation: float
    balance: float
    width: float


@dataclass(frozen=True)
class DynamicRange:
    """Peak-to-RMS relationship of a buffer."""

    peak: float
    """Linear peak amplitude."""

    rms: float
    """Linear RMS amplitude."""

    dynamic_range_db: float
    """20·log10(peak / rms). 0.0 for empty or silent input."""

    crest_factor: float
    """peak / rms (linear). 0.0 for empty or silent input."""


@dataclass(frozen=True)
class AnalysisResult:
    """Full metric summary of one buffer. Derived only, never persisted here."""

    lufs: float
    peak_db: float
    rms: float
    rms_db: float
    dynamic_range: float
    crest_factor: float
    clipping: ClippingReport
    stereo_image: StereoImage | None
    sample_count: int
    duration: float

    def as_dict(self) -> dict[str, Any]:
        """Plain-data form (nested dataclasses become dicts)."""
        return asdict(self)
