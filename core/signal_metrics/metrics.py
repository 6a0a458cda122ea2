"""
core/signal_metrics/metrics.py — Loudness, peak, RMS, dynamics, clipping, stereo.

Implements:
    - Block loudness: 400 ms blocks, 50% overlap, -0.691 + 10·log10(mean power)
    - Sample peak and RMS in linear and dBFS form
    - Dynamic range (peak-to-RMS in dB) and crest factor
    - Clipping detection against a linear threshold
    - Stereo correlation, power balance and width

Design:
    - Pure: numpy arrays (or SampleBuffer) in, plain floats / frozen types out.
    - Never raises and never returns NaN or ±inf. Every conversion that can
      blow up goes through core.safe_math, so the floor policy lives there.
    - Accepts mono (N,) or multi-channel (C, N) arrays. Peak, RMS, dynamics
      and clipping are computed over all samples of all channels.
    - The loudness value is a relative, unweighted block measure. It is NOT
      a K-weighted BS.1770 integrated loudness.
"""

from __future__ import annotations

import numpy as np

from core.buffer import SampleBuffer
from core.safe_math import (
    FLOOR_DB,
    amplitude_to_db,
    finite_or,
    power_to_db,
    round_to,
    safe_div,
)
from core.signal_metrics.types import (
    AnalysisResult,
    ClippingReport,
    DynamicRange,
    StereoImage,
)

_BLOCK_SEC = 0.400
_LOUDNESS_OFFSET_DB = -0.691
DEFAULT_CLIP_THRESHOLD = 0.99


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _to_channels(y: np.ndarray | SampleBuffer) -> np.ndarray:
    """Return a finite float64 array of shape (channels, n)."""
    if isinstance(y, SampleBuffer):
        arr = y.samples
    else:
        arr = np.asarray(y, dtype=np.float64)
        if arr.ndim == 1:
            arr = arr[None, :]
        elif arr.ndim != 2:
            arr = arr.reshape(1, -1)
    if not np.all(np.isfinite(arr)):
        arr = np.nan_to_num(arr, nan=0.0, posinf=0.0, neginf=0.0)
    return arr


def _peak(arr: np.ndarray) -> float:
    return float(np.max(np.abs(arr))) if arr.size else 0.0


def _scaled(arr: np.ndarray) -> tuple[np.ndarray, float]:
    """arr / peak and the peak, so squaring cannot overflow for huge samples."""
    peak = _peak(arr)
    if peak <= 0.0:
        return arr, 0.0
    return arr / peak, peak


def _rms(arr: np.ndarray) -> float:
    if not arr.size:
        return 0.0
    scaled, peak = _scaled(arr)
    return peak * float(np.sqrt(np.mean(scaled**2)))


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def loudness(y: np.ndarray | SampleBuffer, sr: int | None = None) -> float:
    """Block loudness in a LUFS-like dB scale.

    Algorithm:
        1. Split into 400 ms blocks with a 200 ms hop (50% overlap).
        2. Mean-square power per block, over every channel in the block.
        3. Average the block powers.
        4. loudness = -0.691 + 10 × log10(mean power).

    Args:
        y:  Audio array (mono or (C, N)) or SampleBuffer.
        sr: Sample rate in Hz. Taken from the buffer when y is a SampleBuffer.

    Returns:
        Loudness rounded to 2 decimals. FLOOR_DB (-70.0) when the input is
        shorter than one block, silent, or sr is not positive.
    """
    if isinstance(y, SampleBuffer):
        sr = y.sample_rate
    if not sr or sr <= 0:
        return FLOOR_DB
    arr = _to_channels(y)
    block = int(_BLOCK_SEC * sr)
    hop = block // 2
    n = arr.shape[1]
    if block <= 0 or hop <= 0 or n < block:
        return FLOOR_DB

    scaled, peak = _scaled(arr)
    if peak <= 0.0:
        return FLOOR_DB
    powers = [
        float(np.mean(scaled[:, start : start + block] ** 2))
        for start in range(0, n - block + 1, hop)
    ]
    mean_power = float(np.mean(powers)) if powers else 0.0
    if not mean_power > 0:
        return FLOOR_DB
    value = (
        _LOUDNESS_OFFSET_DB
        + power_to_db(mean_power, floor=-np.inf)
        + amplitude_to_db(peak, floor=-np.inf)
    )
    return round_to(max(finite_or(value, FLOOR_DB), FLOOR_DB), 2, FLOOR_DB)


def peak_db(y: np.ndarray | SampleBuffer) -> float:
    """Sample peak in dBFS, 2 decimals. FLOOR_DB for empty or silent input."""
    return round_to(amplitude_to_db(_peak(_to_channels(y))), 2, FLOOR_DB)


def rms(y: np.ndarray | SampleBuffer) -> float:
    """Root-mean-square amplitude, 4 decimals. 0.0 for empty input."""
    return round_to(_rms(_to_channels(y)), 4)


def rms_db(y: np.ndarray | SampleBuffer) -> float:
    """RMS level in dBFS, 2 decimals. FLOOR_DB for empty or silent input."""
    return round_to(amplitude_to_db(_rms(_to_channels(y))), 2, FLOOR_DB)


def dynamic_range(y: np.ndarray | SampleBuffer) -> DynamicRange:
    """Peak-to-RMS ratio in dB plus linear crest factor.

    Returns:
        DynamicRange. All fields are 0.0 for empty or silent input rather
        than dividing by zero.
    """
    arr = _to_channels(y)
    peak = _peak(arr)
    level = _rms(arr)
    if arr.size == 0 or level <= 0.0:
        return DynamicRange(peak=round_to(peak, 4), rms=0.0, dynamic_range_db=0.0, crest_factor=0.0)
    crest = safe_div(peak, level)
    return DynamicRange(
        peak=round_to(peak, 4),
        rms=round_to(level, 4),
        dynamic_range_db=round_to(amplitude_to_db(crest, floor=0.0), 2),
        crest_factor=round_to(crest, 2),
    )


def detect_clipping(
    y: np.ndarray | SampleBuffer, threshold: float = DEFAULT_CLIP_THRESHOLD
) -> ClippingReport:
    """Count samples whose magnitude meets or exceeds ``threshold``.

    Args:
        y:         Audio array or SampleBuffer.
        threshold: Linear clipping threshold (default 0.99).

    Returns:
        ClippingReport with the percentage over all samples (2 decimals).
    """
    arr = _to_channels(y)
    total = int(arr.size)
    clipped = int(np.count_nonzero(np.abs(arr) >= threshold)) if total else 0
    return ClippingReport(
        has_clipping=clipped > 0,
        clipped_sample_count=clipped,
        clipping_percentage=round_to(safe_div(clipped * 100.0, total), 2),
    )


def stereo_image(left: np.ndarray, right: np.ndarray) -> StereoImage:
    """Correlation, balance and width of a left/right channel pair.

    Formulas (over the common length of both channels):
        correlation = Σ L·R / sqrt(ΣL² · ΣR²)
        balance     = (ΣR² − ΣL²) / (ΣL² + ΣR²)
        width       = 1 − |correlation|

    Returns:
        StereoImage rounded to 3 decimals. All zeros when either channel is
        empty.
    """
    left_arr = _to_channels(left)[0]
    right_arr = _to_channels(right)[0]
    length = min(left_arr.size, right_arr.size)
    if length == 0:
        return StereoImage(correlation=0.0, balance=0.0, width=0.0)
    # common scale keeps the sums finite and leaves every ratio unchanged
    scale = max(_peak(left_arr[:length]), _peak(right_arr[:length]))
    if scale <= 0.0:
        return StereoImage(correlation=0.0, balance=0.0, width=0.0)
    left_arr = left_arr[:length] / scale
    right_arr = right_arr[:length] / scale

    cross = float(np.dot(left_arr, right_arr))
    left_power = float(np.dot(left_arr, left_arr))
    right_power = float(np.dot(right_arr, right_arr))

    norm = float(np.sqrt(left_power * right_power))
    correlation = float(np.clip(safe_div(cross, norm), -1.0, 1.0))
    balance = safe_div(right_power - left_power, left_power + right_power)
    width = 1.0 - abs(correlation)
    return StereoImage(
        correlation=round_to(correlation, 3),
        balance=round_to(balance, 3),
        width=round_to(width, 3),
    )


def analyze(y: np.ndarray | SampleBuffer, sr: int | None = None) -> AnalysisResult:
    """Compute every metric for one buffer.

    Args:
        y:  Audio array (mono (N,) or (C, N)) or SampleBuffer.
        sr: Sample rate; taken from the buffer when y is a SampleBuffer.

    Returns:
        AnalysisResult. ``stereo_image`` is None for mono input.
    """
    if isinstance(y, SampleBuffer):
        sr = y.sample_rate
    arr = _to_channels(y)
    dyn = dynamic_range(arr)
    level_db = rms_db(arr)
    stereo = stereo_image(arr[0], arr[1]) if arr.shape[0] == 2 else None
    frames = arr.shape[1]
    return AnalysisResult(
        lufs=loudness(arr, sr),
        peak_db=peak_db(arr),
        rms=dyn.rms,
        rms_db=level_db,
        dynamic_range=dyn.dynamic_range_db,
        crest_factor=dyn.crest_factor,
        clipping=detect_clipping(arr),
        stereo_image=stereo,
        sample_count=int(arr.size),
        duration=round_to(safe_div(float(frames), float(sr or 0)), 4),
    )
