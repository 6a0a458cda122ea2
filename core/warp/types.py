"""
core/warp/types.py — Frozen data types for warping and tempo analysis.

All types are frozen dataclasses — immutable value objects that can be
safely passed between layers and cached.

Design principles:
    - No I/O, no state, no side effects.
    - Marker invariants that involve a whole marker list (ordering,
      monotonicity) are enforced by WarpMap.build, not here.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any


class MarkerType(str, Enum):
    """Origin/role of a warp marker."""

    NORMAL = "normal"
    ANCHOR = "anchor"
    TEMPO = "tempo"


@dataclass(frozen=True)
class WarpMarker:
    """A point pinning a moment of the source audio to a moment in the timeline.

    Invariants (checked by WarpMap.build):
        source_time >= 0
        target_time >= 0
    """

    id: str
    """Stable identifier assigned by whoever created the marker."""

    source_time: float
    """Position in the original recording, seconds."""

    target_time: float
    """Position in the edited timeline, seconds."""

    marker_type: MarkerType = MarkerType.NORMAL

    is_anchor: bool = False

    transient_strength: float | None = None
    """Normalised onset strength when the marker came from onset detection."""

    @classmethod
    def create(
        cls,
        source_time: float,
        target_time: float,
        *,
        marker_type: MarkerType = MarkerType.NORMAL,
        is_anchor: bool = False,
        transient_strength: float | None = None,
    ) -> WarpMarker:
        """Build a marker with a fresh uuid4 id."""
        return cls(
            id=uuid.uuid4().hex,
            source_time=float(source_time),
            target_time=float(target_time),
            marker_type=MarkerType(marker_type),
            is_anchor=is_anchor,
            transient_strength=transient_strength,
        )

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "source_time": self.source_time,
            "target_time": self.target_time,
            "marker_type": self.marker_type.value,
            "is_anchor": self.is_anchor,
            "transient_strength": self.transient_strength,
        }


@dataclass(frozen=True)
class Onset:
    """A detected transient.

    Invariants:
        time >= 0
        0.0 <= strength <= 1.0
    """

    time: float
    """Onset time in seconds from the start of the buffer."""

    strength: float
    """Novelty peak height, normalised to the strongest peak in the buffer."""


@dataclass(frozen=True)
class TempoMapping:
    """Beat and bar grid for re-timing material from one tempo to another."""

    source_bpm: float
    target_bpm: float
    beat_grid: tuple[float, ...]
    """Beat times at the target tempo, seconds, starting at 0."""

    bar_positions: tuple[float, ...]
    """Downbeat times (every ``beats_per_bar`` beats), seconds."""


@dataclass(frozen=True)
class TransientAnalysis:
    """Onsets of a buffer together with the tempo they imply."""

    onsets: tuple[Onset, ...]
    detected_bpm: float | None
    """Tempo estimated from inter-onset intervals, None with fewer than 4 onsets."""

    duration: float
    """Analysed length in seconds."""

    suggested_beats: tuple[int | None, ...] = ()
    """Nearest beat index per onset at detected_bpm, None when the onset is off-beat."""

    def as_dict(self) -> dict[str, Any]:
        return {
            "transients": [
                {"time": o.time, "strength": o.strength, "suggested_beat": beat}
                for o, beat in zip(self.onsets, self.suggested_beats or (None,) * len(self.onsets))
            ],
            "detected_bpm": self.detected_bpm,
            "duration": self.duration,
        }
