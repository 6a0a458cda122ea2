"""
core/warp/render.py — Render a warped (and optionally pitch-shifted) buffer.

Preview and commit are the same operation with different defaults:
RenderRequest.preview() and RenderRequest.commit() only build requests, and
both are executed by the single render() function below.

Pipeline:
    1. Validate the request (pitch range, algorithm × quality).
    2. WarpMap.build(markers, clip duration).
    3. Resolve the requested target-time range to source time.
    4. Reject buffers shorter than one processing frame.
    5. Reject local stretch ratios beyond EngineConfig.max_stretch_ratio.
    6. Identity map → exact copy of the range; otherwise one continuous
       stretcher pass reading the source at to_source(output time).
    7. Pitch shift (separate stage), with optional formant correction.
    8. Dynamics post-processing.
    9. Reject non-finite output.

Cancellation is checked between frame blocks and between stages; a
cancelled render raises RenderCancelledError and never returns audio.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

import numpy as np

from core.buffer import SampleBuffer
from core.config import (
    ALGORITHMS,
    DEFAULT_ENGINE_CONFIG,
    QUALITIES,
    EngineConfig,
    StretchSettings,
    stretch_settings,
)
from core.dynamics.chain import DynamicsStage, apply_chain
from core.errors import AlgorithmError, InsufficientDataError, ValidationError
from core.warp.pitch import pitch_shift
from core.warp.stretch import check_cancelled, make_stretcher, synthesis_frame_count
from core.warp.types import WarpMarker
from core.warp.warp_map import WarpMap

logger = logging.getLogger(__name__)

MAX_PITCH_SEMITONES = 24.0

_RANGE_EPS = 1e-9


# ---------------------------------------------------------------------------
# Request / result
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RenderRequest:
    """Everything needed to render one clip.

    Attributes:
        markers:               Clip markers, sorted by source time.
        time_range:            (start, end) in target (timeline) seconds, or
                               None for the whole clip.
        pitch_shift_semitones: -24..24.
        preserve_formants:     Apply envelope correction when pitch shifting.
        algorithm:             phase_vocoder | wsola | high_quality.
        quality:               fast | normal | high.
        replace_original:      Whether the caller should store the result as
                               the clip's new source. render() never writes.
        post_processing:       Dynamics stages applied after warping.
    """

    markers: tuple[WarpMarker, ...] = ()
    time_range: tuple[float, float] | None = None
    pitch_shift_semitones: float = 0.0
    preserve_formants: bool = True
    algorithm: str = "phase_vocoder"
    quality: str = "normal"
    replace_original: bool = False
    post_processing: tuple[DynamicsStage, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "markers", tuple(self.markers))
        object.__setattr__(self, "post_processing", tuple(self.post_processing))
        if self.time_range is not None:
            start, end = self.time_range
            object.__setattr__(self, "time_range", (float(start), float(end)))

    @classmethod
    def preview(
        cls,
        markers: Sequence[WarpMarker],
        start: float,
        end: float,
        *,
        pitch_shift_semitones: float = 0.0,
        preserve_formants: bool = True,
        algorithm: str = "phase_vocoder",
        quality: str = "normal",
        post_processing: Sequence[DynamicsStage] = (),
    ) -> RenderRequest:
        """A disposable render of a bounded range."""
        return cls(
            markers=tuple(markers),
            time_range=(start, end),
            pitch_shift_semitones=pitch_shift_semitones,
            preserve_formants=preserve_formants,
            algorithm=algorithm,
            quality=quality,
            replace_original=False,
            post_processing=tuple(post_processing),
        )

    @classmethod
    def commit(
        cls,
        markers: Sequence[WarpMarker],
        *,
        pitch_shift_semitones: float = 0.0,
        preserve_formants: bool = True,
        algorithm: str = "phase_vocoder",
        quality: str = "high",
        replace_original: bool = True,
        post_processing: Sequence[DynamicsStage] = (),
    ) -> RenderRequest:
        """A whole-clip render meant to replace (or sit beside) the source."""
        return cls(
            markers=tuple(markers),
            time_range=None,
            pitch_shift_semitones=pitch_shift_semitones,
            preserve_formants=preserve_formants,
            algorithm=algorithm,
            quality=quality,
            replace_original=replace_original,
            post_processing=tuple(post_processing),
        )

    def validate(self) -> StretchSettings:
        """Check scalar options and return the frame geometry to use.

        Raises:
            ValidationError: Out-of-range pitch, unknown algorithm or quality,
                or a whole-clip commit that has nothing to apply.
            UnsupportedConfigurationError: Algorithm and quality exist but
                are not available together.
        """
        pitch = self.pitch_shift_semitones
        if not (math.isfinite(pitch) and -MAX_PITCH_SEMITONES <= pitch <= MAX_PITCH_SEMITONES):
            raise ValidationError(
                f"pitch_shift_semitones must be in [-{MAX_PITCH_SEMITONES:g}, "
                f"{MAX_PITCH_SEMITONES:g}], got {pitch}"
            )
        if self.algorithm not in ALGORITHMS:
            raise ValidationError(
                f"Unknown algorithm {self.algorithm!r}, valid options: {list(ALGORITHMS)}"
            )
        if self.quality not in QUALITIES:
            raise ValidationError(
                f"Unknown quality {self.quality!r}, valid options: {list(QUALITIES)}"
            )
        if (
            self.replace_original
            and not self.markers
            and pitch == 0
            and not self.post_processing
        ):
            raise ValidationError("Cannot commit a clip with an empty marker set")
        return stretch_settings(self.algorithm, self.quality)

    def cache_parts(self) -> tuple[Any, ...]:
        """Stable values identifying the request, for cache keys."""
        return (
            tuple((m.source_time, m.target_time) for m in self.markers),
            self.time_range,
            self.pitch_shift_semitones,
            self.preserve_formants,
            self.algorithm,
            self.quality,
            self.replace_original,
            tuple(repr(stage) for stage in self.post_processing),
        )


@dataclass(frozen=True)
class RenderResult:
    """Rendered audio plus what was done to produce it."""

    buffer: SampleBuffer
    source_range: tuple[float, float]
    target_range: tuple[float, float]
    algorithm: str
    quality: str
    pitch_shift_semitones: float
    preserve_formants: bool
    replace_original: bool
    marker_count: int
    stretch_ratio_range: tuple[float, float]
    processing_time_ms: float
    cache_hit: bool = False

    def metadata(self) -> dict[str, Any]:
        """Plain-data description of the render, without the samples."""
        return {
            "source_range": list(self.source_range),
            "target_range": list(self.target_range),
            "algorithm": self.algorithm,
            "quality": self.quality,
            "pitch_shift_semitones": self.pitch_shift_semitones,
            "preserve_formants": self.preserve_formants,
            "replace_original": self.replace_original,
            "marker_count": self.marker_count,
            "stretch_ratio_range": list(self.stretch_ratio_range),
            "processing_time_ms": self.processing_time_ms,
            "cache_hit": self.cache_hit,
            "channels": self.buffer.channels,
            "sample_rate": self.buffer.sample_rate,
            "n_frames": self.buffer.n_frames,
            "duration": self.buffer.duration,
        }


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _resolve_range(
    warp_map: WarpMap, time_range: tuple[float, float] | None
) -> tuple[float, float]:
    lo, hi = warp_map.target_range
    if time_range is None:
        return lo, hi
    start, end = time_range
    if not (math.isfinite(start) and math.isfinite(end)):
        raise ValidationError(f"Render range must be finite, got {time_range}")
    if end <= start:
        raise ValidationError(f"Render range end must be after start, got {time_range}")
    if start < lo - _RANGE_EPS or end > hi + _RANGE_EPS:
        raise ValidationError(
            f"Render range {time_range} is outside the clip's timeline span "
            f"[{lo:.6f}, {hi:.6f}]"
        )
    return max(start, lo), min(end, hi)


def _check_ratios(
    warp_map: WarpMap, source_range: tuple[float, float], max_ratio: float
) -> tuple[float, float]:
    s0, s1 = source_range
    ratios = [
        slope
        for seg_start, seg_end, slope in warp_map.segments()
        if seg_end > s0 + _RANGE_EPS and seg_start < s1 - _RANGE_EPS
    ]
    if not ratios:
        ratios = [warp_map.stretch_ratio_at(s0)]
    for ratio in ratios:
        if not (1.0 / max_ratio <= ratio <= max_ratio):
            raise ValidationError(
                f"Local stretch ratio {ratio:.4f} is outside the supported range "
                f"[{1.0 / max_ratio:.4f}, {max_ratio:.4f}]"
            )
    return min(ratios), max(ratios)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def render(
    buffer: SampleBuffer,
    request: RenderRequest,
    config: EngineConfig = DEFAULT_ENGINE_CONFIG,
    cancel: threading.Event | None = None,
) -> RenderResult:
    """Render ``buffer`` through the request's markers, pitch and dynamics.

    Args:
        buffer:  Source audio of the clip.
        request: What to render.
        config:  Engine limits (max stretch ratio, cancellation granularity).
        cancel:  Optional flag; when set, the render stops at the next check.

    Returns:
        RenderResult holding a new SampleBuffer.

    Raises:
        ValidationError:               Invalid markers, range or options.
        UnsupportedConfigurationError: Algorithm/quality combination unavailable.
        InsufficientDataError:         Buffer shorter than one processing frame.
        AlgorithmError:                Non-finite output.
        RenderCancelledError:          ``cancel`` was set.
    """
    started = time.perf_counter()
    settings = request.validate()
    check_cancelled(cancel)

    warp_map = WarpMap.build(request.markers, buffer.duration)
    target_range = _resolve_range(warp_map, request.time_range)
    source_range = (warp_map.to_source(target_range[0]), warp_map.to_source(target_range[1]))

    if buffer.n_frames < settings.frame_size:
        raise InsufficientDataError(
            f"Buffer has {buffer.n_frames} frames; {request.algorithm}/{request.quality} "
            f"needs at least {settings.frame_size}"
        )
    ratio_range = _check_ratios(warp_map, source_range, config.max_stretch_ratio)

    sr = buffer.sample_rate
    stretcher = make_stretcher(request.algorithm, settings, buffer.channels)
    if warp_map.is_identity():
        first = int(round(source_range[0] * sr))
        last = int(round(source_range[1] * sr))
        out = np.array(buffer.samples[:, first:last], copy=True)
    else:
        n_out = int(round((target_range[1] - target_range[0]) * sr))
        n_frames = synthesis_frame_count(n_out, stretcher.hop)
        times = target_range[0] + np.arange(n_frames) * stretcher.hop / sr
        centers = np.round(warp_map.to_source_array(times) * sr).astype(np.int64)
        out = stretcher.process(
            buffer.samples, centers, n_out, cancel, config.frames_per_block
        )

    if request.pitch_shift_semitones != 0:
        check_cancelled(cancel)
        out = pitch_shift(
            out,
            sr,
            request.pitch_shift_semitones,
            stretcher,
            preserve_formants=request.preserve_formants,
            cancel=cancel,
            frames_per_block=config.frames_per_block,
        )

    if request.post_processing:
        check_cancelled(cancel)
        out = apply_chain(out, request.post_processing, sr)

    if not np.all(np.isfinite(out)):
        raise AlgorithmError(f"{request.algorithm} produced non-finite samples")
    check_cancelled(cancel)

    elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
    logger.debug(
        "Rendered %.3fs of target time with %s/%s in %.1f ms",
        target_range[1] - target_range[0],
        request.algorithm,
        request.quality,
        elapsed_ms,
    )
    return RenderResult(
        buffer=SampleBuffer(out, sr),
        source_range=source_range,
        target_range=target_range,
        algorithm=request.algorithm,
        quality=request.quality,
        pitch_shift_semitones=request.pitch_shift_semitones,
        preserve_formants=request.preserve_formants,
        replace_original=request.replace_original,
        marker_count=len(request.markers),
        stretch_ratio_range=ratio_range,
        processing_time_ms=elapsed_ms,
    )
