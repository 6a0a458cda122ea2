"""
core/dynamics/chain.py — Gain, compressor and limiter stages applied in sequence.

Implements:
    - Gain:       multiply by 10^(dB/20), hard clamp to [-1, 1]
    - Compressor: per-sample envelope follower with attack/release, gain
                  reduction of (over-threshold dB) × (1 - 1/ratio)
    - Limiter:    hard ceiling, sign preserved
    - Passthrough: placeholder for stage types that are not implemented
                  (eq, reverb, ...) so a chain never fails on them

Design:
    - Pure: (array, stages, sr) in → new array out. Input is never mutated.
    - Stages are frozen dataclasses; order is the caller's order.
    - Stereo compression uses linked detection: one envelope driven by the
      louder channel, the same gain applied to every channel.
    - stage_from_dict() accepts the wire format
      {"type": "compressor", "parameters": {...}} used by job payloads.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Union

import numpy as np

from core.buffer import SampleBuffer
from core.errors import ValidationError
from core.safe_math import db_to_amplitude

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Stage types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GainStage:
    """Static gain in dB followed by a hard clamp to [-1, 1]."""

    gain_db: float = 0.0


@dataclass(frozen=True)
class CompressorStage:
    """Feed-forward compressor.

    Attributes:
        threshold_db: Level above which gain reduction starts (dBFS).
        ratio:        Compression ratio, >= 1. 1 means no compression.
        attack:       Attack time in seconds.
        release:      Release time in seconds.
    """

    threshold_db: float = -24.0
    ratio: float = 4.0
    attack: float = 0.003
    release: float = 0.1

    def __post_init__(self) -> None:
        if not self.ratio >= 1.0:
            raise ValidationError(f"Compressor ratio must be >= 1, got {self.ratio}")
        if self.attack < 0 or self.release < 0:
            raise ValidationError("Compressor attack and release must be non-negative")


@dataclass(frozen=True)
class LimiterStage:
    """Brick-wall ceiling in dBFS."""

    ceiling_db: float = -0.3


@dataclass(frozen=True)
class PassthroughStage:
    """A stage type that is accepted but not processed (eq, reverb, ...)."""

    kind: str
    parameters: Mapping[str, Any] = field(default_factory=dict)


DynamicsStage = Union[GainStage, CompressorStage, LimiterStage, PassthroughStage]


# ---------------------------------------------------------------------------
# Stage implementations
# ---------------------------------------------------------------------------


def apply_gain(y: np.ndarray, gain_db: float) -> np.ndarray:
    """Scale by ``gain_db`` and clamp to [-1, 1]."""
    return np.clip(y * db_to_amplitude(gain_db), -1.0, 1.0)


def apply_compressor(
    y: np.ndarray,
    sr: int,
    threshold_db: float = -24.0,
    ratio: float = 4.0,
    attack: float = 0.003,
    release: float = 0.1,
) -> np.ndarray:
    """Compress a (C, N) or (N,) array.

    The envelope moves toward the rectified input by 1/attack_samples when
    rising and 1/release_samples when falling. Both sample counts are
    clamped to at least 1, so zero attack/release is an instant follower.
    """
    arr = np.asarray(y, dtype=np.float64)
    squeeze = arr.ndim == 1
    if squeeze:
        arr = arr[None, :]
    if arr.shape[1] == 0:
        return arr[0].copy() if squeeze else arr.copy()

    threshold = db_to_amplitude(threshold_db)
    attack_coeff = 1.0 / max(1, math.floor(attack * sr))
    release_coeff = 1.0 / max(1, math.floor(release * sr))
    slope = 1.0 / ratio - 1.0

    level = np.max(np.abs(arr), axis=0).tolist()
    gains = np.ones(len(level), dtype=np.float64)
    envelope = 0.0
    for i, x in enumerate(level):
        if x > envelope:
            envelope += (x - envelope) * attack_coeff
        else:
            envelope += (x - envelope) * release_coeff
        if envelope > threshold:
            over_db = 20.0 * math.log10(envelope / threshold)
            gains[i] = 10.0 ** (over_db * slope / 20.0)

    out = arr * gains[None, :]
    return out[0] if squeeze else out


def apply_limiter(y: np.ndarray, ceiling_db: float = -0.3) -> np.ndarray:
    """Clamp any sample above the ceiling to ±ceiling."""
    ceiling = db_to_amplitude(ceiling_db)
    return np.clip(y, -ceiling, ceiling)


# ---------------------------------------------------------------------------
# Wire format
# ---------------------------------------------------------------------------


def stage_from_dict(data: Mapping[str, Any]) -> DynamicsStage:
    """Build a stage from ``{"type": ..., "parameters": {...}}``.

    Parameter names and defaults follow the processing-chain payload:
    gain → ``gain``; compressor → ``threshold``, ``ratio``, ``attack``,
    ``release``; limiter → ``ceiling``. Any other type becomes a
    PassthroughStage.

    Raises:
        ValidationError: If ``type`` is missing or a parameter is invalid.
    """
    kind = str(data.get("type", "")).lower().strip()
    if not kind:
        raise ValidationError("Processing stage is missing its 'type'")
    params: Mapping[str, Any] = data.get("parameters") or {}
    try:
        if kind == "gain":
            return GainStage(gain_db=float(params.get("gain", 0.0)))
        if kind == "compressor":
            return CompressorStage(
                threshold_db=float(params.get("threshold", -24.0)),
                ratio=float(params.get("ratio", 4.0)),
                attack=float(params.get("attack", 0.003)),
                release=float(params.get("release", 0.1)),
            )
        if kind == "limiter":
            return LimiterStage(ceiling_db=float(params.get("ceiling", -0.3)))
    except ValidationError:
        raise
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Invalid parameters for {kind!r} stage: {exc}") from exc
    return PassthroughStage(kind=kind, parameters=dict(params))


def stages_from_dicts(items: Sequence[Mapping[str, Any]]) -> tuple[DynamicsStage, ...]:
    return tuple(stage_from_dict(item) for item in items)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def apply_stage(y: np.ndarray, stage: DynamicsStage, sr: int) -> np.ndarray:
    """Apply one stage and return a new array."""
    if isinstance(stage, GainStage):
        return apply_gain(y, stage.gain_db)
    if isinstance(stage, CompressorStage):
        return apply_compressor(
            y,
            sr,
            threshold_db=stage.threshold_db,
            ratio=stage.ratio,
            attack=stage.attack,
            release=stage.release,
        )
    if isinstance(stage, LimiterStage):
        return apply_limiter(y, stage.ceiling_db)
    logger.warning("Dynamics stage %r is not implemented, passing signal through", stage.kind)
    return np.array(y, dtype=np.float64, copy=True)


def apply_chain(
    y: np.ndarray | SampleBuffer,
    stages: Sequence[DynamicsStage],
    sr: int | None = None,
) -> np.ndarray | SampleBuffer:
    """Run ``stages`` over ``y`` in order.

    Args:
        y:      Audio array (mono or (C, N)) or SampleBuffer.
        stages: Ordered stages; order matters (gain→limiter ≠ limiter→gain).
        sr:     Sample rate; taken from the buffer when y is a SampleBuffer.

    Returns:
        Same kind as the input: a new array, or a new SampleBuffer.

    Raises:
        ValidationError: If no positive sample rate is available.
    """
    if isinstance(y, SampleBuffer):
        out = np.array(y.samples, dtype=np.float64, copy=True)
        for stage in stages:
            out = apply_stage(out, stage, y.sample_rate)
        return SampleBuffer(out, y.sample_rate)

    if sr is None or sr <= 0:
        raise ValidationError(f"Sample rate must be positive, got {sr}")
    out = np.array(y, dtype=np.float64, copy=True)
    for stage in stages:
        out = apply_stage(out, stage, sr)
    return out
