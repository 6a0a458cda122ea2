"""
core/signal_metrics — Loudness, dynamics, clipping and stereo measurements.

All functions are pure: numpy arrays (or SampleBuffer) in → plain floats or
frozen dataclasses out. None of them raise; degenerate input (empty, silent,
single-sample, non-finite) degrades to the documented floor/zero values.

Public API:
    Types:    AnalysisResult, ClippingReport, DynamicRange, StereoImage
    Metrics:  loudness, peak_db, rms, rms_db, dynamic_range,
              detect_clipping, stereo_image, analyze
"""

from core.signal_metrics.metrics import (
    DEFAULT_CLIP_THRESHOLD,
    analyze,
    detect_clipping,
    dynamic_range,
    loudness,
    peak_db,
    rms,
    rms_db,
    stereo_image,
)
from core.signal_metrics.types import (
    AnalysisResult,
    ClippingReport,
    DynamicRange,
    StereoImage,
)

__all__ = [
    # Types
    "AnalysisResult",
    "ClippingReport",
    "DynamicRange",
    "StereoImage",
    # Metrics
    "loudness",
    "peak_db",
    "rms",
    "rms_db",
    "dynamic_range",
    "detect_clipping",
    "stereo_image",
    "analyze",
    "DEFAULT_CLIP_THRESHOLD",
]
