"""
core/warp/warp_map.py — Monotonic piecewise-linear source ↔ target time map.

A WarpMap is derived from a clip's ordered marker list plus two implicit
endpoints and is rebuilt whenever the markers change.

Breakpoints:
    1. (0, 0) unless a marker already sits at source time 0.
    2. Every marker, in input order (exact duplicates collapsed).
    3. (clip_duration, …) when the clip extends past the last marker, placed
       by extending the last segment's slope (slope 1 if there is no segment).

Consequences:
    - No markers → identity map.
    - One marker → affine map (a single slope through the origin, or a pure
      offset when the marker is at source 0).
    - Outside the breakpoint range the map extrapolates at the boundary
      segment's slope.

Validation is strict: a marker list that is out of order, non-monotonic,
negative, or ambiguous raises ValidationError. The list is never re-sorted,
because re-sorting would silently change the musical intent of the edit.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass, field

import numpy as np

from core.errors import ValidationError
from core.warp.types import WarpMarker

_TIME_EPS = 1e-9


def _check_time(value: float, label: str) -> float:
    v = float(value)
    if not math.isfinite(v):
        raise ValidationError(f"{label} must be finite, got {value!r}")
    if v < 0:
        raise ValidationError(f"{label} must be non-negative, got {v}")
    return v


@dataclass(frozen=True)
class WarpMap:
    """Strictly increasing piecewise-linear map ``target = f(source)``.

    Build instances with :meth:`build`; the constructor does not validate.
    """

    source_points: tuple[float, ...]
    target_points: tuple[float, ...]
    clip_duration: float
    _src: np.ndarray = field(init=False, repr=False, compare=False)
    _tgt: np.ndarray = field(init=False, repr=False, compare=False)
    _slopes: np.ndarray = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        src = np.asarray(self.source_points, dtype=np.float64)
        tgt = np.asarray(self.target_points, dtype=np.float64)
        slopes = np.diff(tgt) / np.diff(src) if src.size > 1 else np.ones(1)
        object.__setattr__(self, "_src", src)
        object.__setattr__(self, "_tgt", tgt)
        object.__setattr__(self, "_slopes", slopes)

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def identity(cls, clip_duration: float) -> WarpMap:
        return cls.build((), clip_duration)

    @classmethod
    def build(cls, markers: Sequence[WarpMarker], clip_duration: float) -> WarpMap:
        """Validate ``markers`` and build the map.

        Args:
            markers:       Markers in the caller's order, expected sorted by
                           source time.
            clip_duration: Natural length of the clip in source seconds.

        Raises:
            ValidationError: On negative or non-finite times, out-of-order
                source or target times, two markers at the same source time
                with different targets, or two different source times pinned
                to the same target time.
        """
        duration = _check_time(clip_duration, "clip_duration")

        points: list[tuple[float, float]] = []
        for index, marker in enumerate(markers):
            s = _check_time(marker.source_time, f"marker[{index}].source_time")
            t = _check_time(marker.target_time, f"marker[{index}].target_time")
            if points:
                prev_s, prev_t = points[-1]
                if s < prev_s - _TIME_EPS:
                    raise ValidationError(
                        f"Markers are not sorted by source time: marker[{index}] "
                        f"({s}) comes after {prev_s}"
                    )
                if t < prev_t - _TIME_EPS:
                    raise ValidationError(
                        f"Marker target times are not monotonic: marker[{index}] "
                        f"({t}) comes after {prev_t}"
                    )
                if abs(s - prev_s) <= _TIME_EPS:
                    if abs(t - prev_t) > _TIME_EPS:
                        raise ValidationError(
                            f"Ambiguous mapping: source time {s} is pinned to both "
                            f"{prev_t} and {t}"
                        )
                    continue
                if abs(t - prev_t) <= _TIME_EPS:
                    raise ValidationError(
                        f"Source times {prev_s} and {s} collapse onto target time {t}"
                    )
            points.append((s, t))

        if not points:
            points.append((0.0, 0.0))
        elif points[0][0] > _TIME_EPS:
            if points[0][1] <= _TIME_EPS:
                raise ValidationError(
                    f"Marker at source {points[0][0]} collapses onto the clip origin"
                )
            points.insert(0, (0.0, 0.0))

        last_s, last_t = points[-1]
        if duration > last_s + _TIME_EPS:
            if len(points) > 1:
                prev_s, prev_t = points[-2]
                slope = (last_t - prev_t) / (last_s - prev_s)
            else:
                slope = 1.0
            points.append((duration, last_t + (duration - last_s) * slope))

        return cls(
            source_points=tuple(p[0] for p in points),
            target_points=tuple(p[1] for p in points),
            clip_duration=duration,
        )

    # ------------------------------------------------------------------
    # Mapping
    # ------------------------------------------------------------------

    @staticmethod
    def _interp(x: np.ndarray, xs: np.ndarray, ys: np.ndarray, slopes: np.ndarray) -> np.ndarray:
        if xs.size == 1:
            return ys[0] + (x - xs[0]) * slopes[0]
        out = np.interp(x, xs, ys)
        below = x < xs[0]
        above = x > xs[-1]
        if np.any(below):
            out[below] = ys[0] + (x[below] - xs[0]) * slopes[0]
        if np.any(above):
            out[above] = ys[-1] + (x[above] - xs[-1]) * slopes[-1]
        return out

    def to_target_array(self, source_times: np.ndarray) -> np.ndarray:
        x = np.atleast_1d(np.asarray(source_times, dtype=np.float64))
        return self._interp(x, self._src, self._tgt, self._slopes)

    def to_source_array(self, target_times: np.ndarray) -> np.ndarray:
        x = np.atleast_1d(np.asarray(target_times, dtype=np.float64))
        return self._interp(x, self._tgt, self._src, 1.0 / self._slopes)

    def to_target(self, source_time: float) -> float:
        """Timeline position of a source instant."""
        return float(self.to_target_array(np.array([source_time]))[0])

    def to_source(self, target_time: float) -> float:
        """Source instant played at a timeline position."""
        return float(self.to_source_array(np.array([target_time]))[0])

    def stretch_ratio_at(self, source_time: float) -> float:
        """Local derivative d(target)/d(source) of the segment containing the time.

        A ratio of 0.5 means that part of the clip plays twice as fast.
        At a breakpoint the segment starting there is used.
        """
        if self._src.size == 1:
            return float(self._slopes[0])
        idx = int(np.searchsorted(self._src, source_time, side="right")) - 1
        idx = min(max(idx, 0), self._slopes.size - 1)
        return float(self._slopes[idx])

    def stretch_ratios_at(self, source_times: np.ndarray) -> np.ndarray:
        x = np.atleast_1d(np.asarray(source_times, dtype=np.float64))
        if self._src.size == 1:
            return np.full(x.shape, float(self._slopes[0]))
        idx = np.searchsorted(self._src, x, side="right") - 1
        return self._slopes[np.clip(idx, 0, self._slopes.size - 1)]

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def target_range(self) -> tuple[float, float]:
        """Timeline span covered by the whole clip."""
        return self.to_target(0.0), self.to_target(self.clip_duration)

    @property
    def target_duration(self) -> float:
        start, end = self.target_range
        return end - start

    @property
    def breakpoints(self) -> tuple[tuple[float, float], ...]:
        return tuple(zip(self.source_points, self.target_points))

    def segments(self) -> list[tuple[float, float, float]]:
        """``(source_start, source_end, slope)`` for every segment."""
        return [
            (self.source_points[i], self.source_points[i + 1], float(self._slopes[i]))
            for i in range(len(self.source_points) - 1)
        ]

    def ratio_range(self) -> tuple[float, float]:
        """Smallest and largest segment slope."""
        return float(np.min(self._slopes)), float(np.max(self._slopes))

    def is_identity(self, tol: float = 1e-9) -> bool:
        """True when every breakpoint lies on target == source and slopes are 1."""
        return bool(
            np.all(np.abs(self._tgt - self._src) <= tol)
            and np.all(np.abs(self._slopes - 1.0) <= tol)
        )
