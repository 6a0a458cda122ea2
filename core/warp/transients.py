"""
core/warp/transients.py — Onset detection and tempo estimation.

Implements:
    - Half-wave rectified spectral flux over Hann-windowed frames
    - Adaptive threshold: local mean of the flux, scaled by sensitivity, with
      an absolute floor so near-silent wiggles never count as onsets
    - Minimum-gap suppression, strongest onset first
    - Tempo estimate from the median inter-onset interval

Design:
    - Pure: numpy array (or SampleBuffer) + sr → tuple[Onset, ...].
    - Stereo input is mixed to mono before analysis.
    - Flux is normalised to a maximum of 1, so onset strength is relative to
      the strongest attack in the buffer.
    - A silent frame is assumed before the first frame, so material that
      starts at sample 0 still produces an onset.
"""

from __future__ import annotations

import bisect
import math
from collections.abc import Sequence

import numpy as np

from core.buffer import SampleBuffer
from core.config import DEFAULT_TRANSIENT_SETTINGS, TransientSettings
from core.errors import ValidationError
from core.warp.types import Onset, TransientAnalysis

_EPS = 1e-10

# Tempo estimates are folded into this range by octave steps.
TEMPO_MIN_BPM = 60.0
TEMPO_MAX_BPM = 200.0

# Fraction of a beat an onset may sit away from the grid and still be
# reported as on that beat.
_BEAT_TOLERANCE = 0.2


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _as_mono(y: np.ndarray | SampleBuffer, sr: int | None) -> tuple[np.ndarray, int]:
    if isinstance(y, SampleBuffer):
        return y.mono(), y.sample_rate
    if sr is None or sr <= 0:
        raise ValidationError(f"Sample rate must be positive, got {sr}")
    arr = np.nan_to_num(np.asarray(y, dtype=np.float64))
    if arr.ndim == 2:
        arr = np.mean(arr, axis=0)
    return arr, int(sr)


def _validate(sensitivity: float, min_gap_sec: float) -> None:
    if not (math.isfinite(sensitivity) and 0.0 <= sensitivity <= 1.0):
        raise ValidationError(f"sensitivity must be in [0, 1], got {sensitivity}")
    if not (math.isfinite(min_gap_sec) and min_gap_sec >= 0.0):
        raise ValidationError(f"min_gap_sec must be non-negative, got {min_gap_sec}")


def _spectral_flux(mono: np.ndarray, settings: TransientSettings) -> np.ndarray:
    """Positive magnitude increase per frame, frame 0 measured against silence."""
    n_frames = 1 + (mono.size - settings.frame_size) // settings.hop
    window = np.hanning(settings.frame_size)
    idx = (
        np.arange(settings.frame_size)[None, :]
        + settings.hop * np.arange(n_frames)[:, None]
    )
    mag = np.abs(np.fft.rfft(mono[idx] * window, axis=1))  # (n_frames, bins)
    previous = np.vstack([np.zeros((1, mag.shape[1])), mag[:-1]])
    return np.sum(np.maximum(mag - previous, 0.0), axis=1)


def _suppress_close(candidates: list[tuple[float, float]], min_gap_sec: float) -> list[Onset]:
    """Keep the strongest candidates at least ``min_gap_sec`` apart."""
    kept_times: list[float] = []
    kept: list[Onset] = []
    for time, strength in sorted(candidates, key=lambda c: (-c[1], c[0])):
        pos = bisect.bisect_left(kept_times, time)
        if pos > 0 and time - kept_times[pos - 1] < min_gap_sec:
            continue
        if pos < len(kept_times) and kept_times[pos] - time < min_gap_sec:
            continue
        kept_times.insert(pos, time)
        kept.insert(pos, Onset(time=time, strength=strength))
    return kept


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def detect_onsets(
    y: np.ndarray | SampleBuffer,
    sr: int | None = None,
    sensitivity: float = 0.5,
    min_gap_sec: float = 0.05,
    settings: TransientSettings = DEFAULT_TRANSIENT_SETTINGS,
) -> tuple[Onset, ...]:
    """Find note onsets / percussive attacks.

    Args:
        y:           Audio array, mono (N,) or (C, N), or a SampleBuffer.
        sr:          Sample rate; taken from the buffer when y is a SampleBuffer.
        sensitivity: 0..1. Higher values lower the threshold and find more onsets.
        min_gap_sec: Two onsets closer than this never both survive; the
                     stronger one is kept.
        settings:    Frame geometry.

    Returns:
        Onsets sorted by time. Empty for silence or input shorter than one frame.

    Raises:
        ValidationError: If sensitivity is outside [0, 1], min_gap_sec is
            negative, or the sample rate is not positive.
    """
    _validate(sensitivity, min_gap_sec)
    mono, rate = _as_mono(y, sr)
    if mono.size < settings.frame_size:
        return ()

    flux = _spectral_flux(mono, settings)
    peak = float(np.max(flux)) if flux.size else 0.0
    if peak < _EPS:
        return ()
    flux = flux / peak

    win_frames = max(1, int(round(settings.mean_window_sec * rate / settings.hop)))
    local_mean = np.convolve(flux, np.ones(win_frames) / win_frames, mode="same")
    slack = 1.0 - sensitivity
    threshold = np.maximum(local_mean * (1.0 + 2.0 * slack), 0.02 + 0.3 * slack)

    left = np.concatenate([[0.0], flux[:-1]])
    right = np.concatenate([flux[1:], [0.0]])
    is_peak = (flux > threshold) & (flux > left) & (flux >= right)

    half_frame = settings.frame_size / 2.0
    candidates = [
        ((int(i) * settings.hop + half_frame) / rate, float(flux[i]))
        for i in np.flatnonzero(is_peak)
    ]
    return tuple(_suppress_close(candidates, min_gap_sec))


def onset_times(onsets: Sequence[Onset]) -> np.ndarray:
    """Onset times in seconds as a float array."""
    return np.array([o.time for o in onsets], dtype=np.float64)


def estimate_tempo(onsets: Sequence[Onset]) -> float | None:
    """Estimate BPM from the median inter-onset interval.

    The raw estimate is halved or doubled until it falls in
    [TEMPO_MIN_BPM, TEMPO_MAX_BPM].

    Returns:
        BPM rounded to 2 decimals, or None with fewer than 4 onsets.
    """
    if len(onsets) < 4:
        return None
    intervals = np.diff(onset_times(onsets))
    intervals = intervals[intervals > _EPS]
    if intervals.size == 0:
        return None
    bpm = 60.0 / float(np.median(intervals))
    while bpm < TEMPO_MIN_BPM:
        bpm *= 2.0
    while bpm > TEMPO_MAX_BPM:
        bpm /= 2.0
    return round(bpm, 2)


def suggested_beats(onsets: Sequence[Onset], bpm: float | None) -> tuple[int | None, ...]:
    """Nearest beat index of each onset, or None when it sits between beats."""
    if not bpm or bpm <= 0:
        return tuple(None for _ in onsets)
    beat_interval = 60.0 / bpm
    beats: list[int | None] = []
    for onset in onsets:
        position = onset.time / beat_interval
        nearest = round(position)
        beats.append(int(nearest) if abs(position - nearest) < _BEAT_TOLERANCE else None)
    return tuple(beats)


def analyze_transients(
    y: np.ndarray | SampleBuffer,
    sr: int | None = None,
    sensitivity: float = 0.5,
    min_gap_sec: float = 0.05,
    detect_beats: bool = True,
    settings: TransientSettings = DEFAULT_TRANSIENT_SETTINGS,
) -> TransientAnalysis:
    """Onsets plus the tempo and beat positions they imply.

    Raises:
        ValidationError: Same conditions as detect_onsets().
    """
    onsets = detect_onsets(y, sr, sensitivity, min_gap_sec, settings)
    mono, rate = _as_mono(y, sr)
    bpm = estimate_tempo(onsets) if detect_beats else None
    return TransientAnalysis(
        onsets=onsets,
        detected_bpm=bpm,
        duration=mono.size / float(rate),
        suggested_beats=suggested_beats(onsets, bpm),
    )
