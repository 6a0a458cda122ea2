"""
Configuration dataclasses for the warp engine.

These immutable config objects decouple parameter passing from function signatures,
making it easier to define standard configurations and reuse them across renders.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from core.errors import UnsupportedConfigurationError

# Algorithm and quality labels accepted by the render pipeline.
ALGORITHMS: tuple[str, ...] = ("phase_vocoder", "wsola", "high_quality")
QUALITIES: tuple[str, ...] = ("fast", "normal", "high")


@dataclass(frozen=True)
class StretchSettings:
    """
    Frame geometry for one stretch algorithm at one quality level.

    Attributes:
        frame_size: Analysis/synthesis frame length in samples. Power of two.
        overlap: Frames per frame length; synthesis hop = frame_size // overlap.
        search_fraction: WSOLA similarity search radius as a fraction of
            frame_size. Ignored by the vocoders.

    Example:
        >>> settings = StretchSettings(frame_size=2048, overlap=4)
        >>> settings.hop
        512
    """

    frame_size: int = 2048
    overlap: int = 4
    search_fraction: float = 0.25

    def __post_init__(self) -> None:
        """Validate configuration parameters."""
        if self.frame_size < 256 or self.frame_size & (self.frame_size - 1):
            raise ValueError(
                f"frame_size must be a power of two >= 256, got {self.frame_size}"
            )
        if self.overlap < 2:
            raise ValueError(f"overlap must be at least 2, got {self.overlap}")
        if not 0.0 <= self.search_fraction <= 0.5:
            raise ValueError(
                f"search_fraction must be in [0, 0.5], got {self.search_fraction}"
            )

    @property
    def hop(self) -> int:
        """Synthesis hop in samples."""
        return self.frame_size // self.overlap


# high_quality has no "fast" entry on purpose: asking for it is an
# unsupported configuration, not a silent downgrade.
QUALITY_PRESETS: dict[str, dict[str, StretchSettings]] = {
    "phase_vocoder": {
        "fast": StretchSettings(frame_size=1024, overlap=4),
        "normal": StretchSettings(frame_size=2048, overlap=4),
        "high": StretchSettings(frame_size=4096, overlap=8),
    },
    "wsola": {
        "fast": StretchSettings(frame_size=512, overlap=2, search_fraction=0.25),
        "normal": StretchSettings(frame_size=1024, overlap=2, search_fraction=0.25),
        "high": StretchSettings(frame_size=2048, overlap=4, search_fraction=0.25),
    },
    "high_quality": {
        "normal": StretchSettings(frame_size=4096, overlap=4),
        "high": StretchSettings(frame_size=4096, overlap=8),
    },
}


def stretch_settings(algorithm: str, quality: str) -> StretchSettings:
    """Look up the frame geometry for an algorithm/quality pair.

    Raises:
        UnsupportedConfigurationError: Unknown algorithm, unknown quality, or
            a combination with no preset.
    """
    if algorithm not in QUALITY_PRESETS:
        raise UnsupportedConfigurationError(
            f"Unknown algorithm {algorithm!r}, valid options: {list(ALGORITHMS)}"
        )
    presets = QUALITY_PRESETS[algorithm]
    if quality not in presets:
        raise UnsupportedConfigurationError(
            f"Quality {quality!r} is not available for {algorithm!r}, "
            f"valid options: {sorted(presets)}"
        )
    return presets[quality]


@dataclass(frozen=True)
class TransientSettings:
    """
    Analysis geometry for the spectral-flux onset detector.

    Attributes:
        frame_size: STFT frame length in samples.
        hop: Hop between frames in samples.
        mean_window_sec: Width of the moving-average window used for the
            adaptive threshold.
    """

    frame_size: int = 1024
    hop: int = 256
    mean_window_sec: float = 0.2

    def __post_init__(self) -> None:
        """Validate configuration parameters."""
        if self.frame_size <= 0:
            raise ValueError(f"frame_size must be positive, got {self.frame_size}")
        if not 0 < self.hop <= self.frame_size:
            raise ValueError(f"hop must be in (0, frame_size], got {self.hop}")
        if self.mean_window_sec <= 0:
            raise ValueError(
                f"mean_window_sec must be positive, got {self.mean_window_sec}"
            )


@dataclass(frozen=True)
class EngineConfig:
    """
    Process-level settings for a WarpEngine instance.

    Attributes:
        cache_max_size: Maximum number of cached render/analysis results.
        cache_ttl_seconds: Time-to-live of a cached result.
        frames_per_block: Synthesis frames processed between two checks of
            the cancellation flag.
        max_stretch_ratio: Largest local stretch (and 1/x the smallest) a
            render accepts.
    """

    cache_max_size: int = 128
    cache_ttl_seconds: float = 3600.0
    frames_per_block: int = 64
    max_stretch_ratio: float = 8.0

    def __post_init__(self) -> None:
        """Validate configuration parameters."""
        if self.cache_max_size <= 0:
            raise ValueError(f"cache_max_size must be positive, got {self.cache_max_size}")
        if self.cache_ttl_seconds <= 0:
            raise ValueError(
                f"cache_ttl_seconds must be positive, got {self.cache_ttl_seconds}"
            )
        if self.frames_per_block <= 0:
            raise ValueError(
                f"frames_per_block must be positive, got {self.frames_per_block}"
            )
        if self.max_stretch_ratio < 1.0:
            raise ValueError(
                f"max_stretch_ratio must be >= 1.0, got {self.max_stretch_ratio}"
            )

    @classmethod
    def from_env(cls) -> EngineConfig:
        """Build a config from ``WARP_*`` environment variables.

        Unset variables keep their defaults.
        """
        defaults = cls()
        return cls(
            cache_max_size=int(os.environ.get("WARP_CACHE_MAX_SIZE", defaults.cache_max_size)),
            cache_ttl_seconds=float(
                os.environ.get("WARP_CACHE_TTL_SECONDS", defaults.cache_ttl_seconds)
            ),
            frames_per_block=int(
                os.environ.get("WARP_FRAMES_PER_BLOCK", defaults.frames_per_block)
            ),
            max_stretch_ratio=float(
                os.environ.get("WARP_MAX_STRETCH_RATIO", defaults.max_stretch_ratio)
            ),
        )


# Pre-defined configurations for common use cases

DEFAULT_ENGINE_CONFIG = EngineConfig()
"""Default configuration: 128 cached results, 1 h TTL, 64-frame blocks."""

DEFAULT_TRANSIENT_SETTINGS = TransientSettings()
"""Default onset analysis: 1024-sample frames, 256-sample hop."""
