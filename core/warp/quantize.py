"""
core/warp/quantize.py — Snap detected onsets toward a tempo grid.

Implements:
    - Grid: spacing = 60 / bpm / subdivision seconds, shifted by grid_offset
    - Per onset: nearest grid point g, target = source + strength × (g − source)
    - Conflict resolution: when two onsets land on the same (or a crossing)
      grid slot, the weaker onset is dropped instead of failing the request
    - Tempo mapping: target-tempo beat grid and bar lines for a clip of known
      source tempo

Design:
    - grid_markers_from_onsets() is the pure core; quantize() adds detection.
    - The returned markers always pass WarpMap.build for the clip, which is
      re-checked before returning.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence

import numpy as np

from core.buffer import SampleBuffer
from core.config import DEFAULT_TRANSIENT_SETTINGS, TransientSettings
from core.errors import ValidationError
from core.warp.transients import detect_onsets
from core.warp.types import MarkerType, Onset, TempoMapping, WarpMarker
from core.warp.warp_map import WarpMap

logger = logging.getLogger(__name__)

MIN_BPM = 20.0
MAX_BPM = 300.0

_TIME_EPS = 1e-6


def _validate_bpm(bpm: float, label: str = "target_bpm") -> None:
    if not (math.isfinite(bpm) and MIN_BPM <= bpm <= MAX_BPM):
        raise ValidationError(f"{label} must be in [{MIN_BPM:g}, {MAX_BPM:g}], got {bpm}")


def _validate_grid(
    target_bpm: float, strength: float, subdivision: int, grid_offset: float
) -> None:
    _validate_bpm(target_bpm)
    if not (math.isfinite(strength) and 0.0 <= strength <= 1.0):
        raise ValidationError(f"strength must be in [0, 1], got {strength}")
    if int(subdivision) != subdivision or subdivision < 1:
        raise ValidationError(f"subdivision must be an integer >= 1, got {subdivision}")
    if not (math.isfinite(grid_offset) and grid_offset >= 0.0):
        raise ValidationError(f"grid_offset must be non-negative, got {grid_offset}")


def _nearest_grid_point(time: float, spacing: float, offset: float) -> float:
    point = offset + round((time - offset) / spacing) * spacing
    if point < 0.0:
        point += spacing * math.ceil(-point / spacing)
    return point


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def grid_markers_from_onsets(
    onsets: Sequence[Onset],
    target_bpm: float,
    strength: float = 1.0,
    subdivision: int = 1,
    grid_offset: float = 0.0,
    clip_duration: float | None = None,
) -> tuple[WarpMarker, ...]:
    """Turn onsets into tempo markers pulled toward the grid.

    Args:
        onsets:        Detected onsets, any order.
        target_bpm:    Grid tempo, 20..300.
        strength:      0 leaves every onset where it is, 1 snaps it onto the grid.
        subdivision:   Grid points per beat (2 = eighth notes at 4/4).
        grid_offset:   Time of the first grid point in seconds.
        clip_duration: Clip length used for the final WarpMap check; defaults
                       to the last onset time.

    Returns:
        TEMPO markers sorted by source time with strictly increasing targets.

    Raises:
        ValidationError: If a parameter is out of range.
    """
    _validate_grid(target_bpm, strength, subdivision, grid_offset)
    spacing = 60.0 / target_bpm / subdivision

    kept: list[tuple[Onset, float]] = []
    for onset in sorted(onsets, key=lambda o: o.time):
        grid = _nearest_grid_point(onset.time, spacing, grid_offset)
        target = onset.time + strength * (grid - onset.time)

        if target <= _TIME_EPS and onset.time > _TIME_EPS:
            logger.warning(
                "Dropping onset at %.3fs: it would collapse onto the clip origin", onset.time
            )
            continue

        while kept and target <= kept[-1][1] + _TIME_EPS:
            previous, _ = kept[-1]
            if onset.strength > previous.strength:
                logger.warning(
                    "Grid conflict at %.3fs: dropping weaker onset at %.3fs",
                    target,
                    previous.time,
                )
                kept.pop()
                continue
            logger.warning(
                "Grid conflict at %.3fs: dropping weaker onset at %.3fs", target, onset.time
            )
            break
        else:
            kept.append((onset, target))

    markers = tuple(
        WarpMarker.create(
            onset.time,
            target,
            marker_type=MarkerType.TEMPO,
            transient_strength=onset.strength,
        )
        for onset, target in kept
    )
    last_source = kept[-1][0].time if kept else 0.0
    duration = last_source if clip_duration is None else max(clip_duration, last_source)
    WarpMap.build(markers, duration)
    return markers


def quantize(
    y: np.ndarray | SampleBuffer,
    sr: int | None = None,
    target_bpm: float = 120.0,
    strength: float = 1.0,
    sensitivity: float = 0.5,
    min_gap_sec: float = 0.05,
    subdivision: int = 1,
    grid_offset: float = 0.0,
    settings: TransientSettings = DEFAULT_TRANSIENT_SETTINGS,
) -> tuple[WarpMarker, ...]:
    """Detect onsets in ``y`` and return grid-aligned tempo markers.

    Raises:
        ValidationError: If bpm, strength, sensitivity, subdivision or the
            gap is out of range.
    """
    _validate_grid(target_bpm, strength, subdivision, grid_offset)
    onsets = detect_onsets(y, sr, sensitivity, min_gap_sec, settings)
    if isinstance(y, SampleBuffer):
        duration = y.duration
    else:
        duration = np.asarray(y).shape[-1] / float(sr)
    markers = grid_markers_from_onsets(
        onsets,
        target_bpm,
        strength=strength,
        subdivision=subdivision,
        grid_offset=grid_offset,
        clip_duration=duration,
    )
    logger.debug(
        "Quantized %d onsets to %d markers at %.1f BPM", len(onsets), len(markers), target_bpm
    )
    return markers


def tempo_mapping(
    source_bpm: float,
    target_bpm: float,
    duration: float,
    beats_per_bar: int = 4,
) -> TempoMapping:
    """Beat grid and bar lines at ``target_bpm`` for a clip played at ``source_bpm``.

    One grid entry per source beat in ``duration`` (inclusive of beat 0).

    Raises:
        ValidationError: If a tempo is out of range, duration is negative or
            beats_per_bar < 1.
    """
    _validate_bpm(source_bpm, "source_bpm")
    _validate_bpm(target_bpm)
    if not (math.isfinite(duration) and duration >= 0.0):
        raise ValidationError(f"duration must be non-negative, got {duration}")
    if beats_per_bar < 1:
        raise ValidationError(f"beats_per_bar must be >= 1, got {beats_per_bar}")

    n_beats = math.floor(duration / (60.0 / source_bpm) + 1e-9)
    target_interval = 60.0 / target_bpm
    beat_grid = tuple(i * target_interval for i in range(n_beats + 1))
    bar_positions = beat_grid[::beats_per_bar]
    return TempoMapping(
        source_bpm=float(source_bpm),
        target_bpm=float(target_bpm),
        beat_grid=beat_grid,
        bar_positions=bar_positions,
    )


def tempo_markers(mapping: TempoMapping) -> tuple[WarpMarker, ...]:
    """Anchor markers pinning each source bar line to its target bar line."""
    source_interval = 60.0 / mapping.source_bpm
    target_interval = 60.0 / mapping.target_bpm
    return tuple(
        WarpMarker.create(
            (t / target_interval) * source_interval,
            t,
            marker_type=MarkerType.ANCHOR,
            is_anchor=True,
        )
        for t in mapping.bar_positions
    )
