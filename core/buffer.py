"""
core/buffer.py — Immutable multi-channel sample buffer.

A SampleBuffer is the unit handed between pipeline stages. Samples are held
as a read-only float64 array of shape (channels, frames), so a stage can pass
its buffer on without any risk of a later stage mutating it in place.

Design:
    - Channel count is 1 or 2; sample rate is a positive integer.
    - Construction copies the input and clears the array's writeable flag.
    - content_hash() is the cache identity used by the engine.
"""

from __future__ import annotations

import hashlib
from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np

from core.errors import ValidationError


@dataclass(frozen=True, eq=False)
class SampleBuffer:
    """Immutable PCM samples with a fixed sample rate.

    Invariants:
        samples.ndim == 2 and samples.shape[0] in {1, 2}
        sample_rate > 0
        samples is read-only
    """

    samples: np.ndarray
    """Float64 array of shape (channels, frames)."""

    sample_rate: int
    """Sample rate in Hz."""

    def __post_init__(self) -> None:
        arr = np.array(self.samples, dtype=np.float64, copy=True)
        if arr.ndim == 1:
            arr = arr[None, :]
        if arr.ndim != 2 or arr.shape[0] not in (1, 2):
            raise ValidationError(
                f"SampleBuffer must have 1 or 2 channels, got shape {np.shape(self.samples)}"
            )
        if int(self.sample_rate) <= 0:
            raise ValidationError(f"Sample rate must be positive, got {self.sample_rate}")
        arr.setflags(write=False)
        object.__setattr__(self, "samples", arr)
        object.__setattr__(self, "sample_rate", int(self.sample_rate))

    # ------------------------------------------------------------------
    # Constructors
    # ------------------------------------------------------------------

    @classmethod
    def from_mono(cls, samples: Sequence[float] | np.ndarray, sample_rate: int) -> SampleBuffer:
        return cls(np.asarray(samples, dtype=np.float64)[None, :], sample_rate)

    @classmethod
    def from_channels(
        cls, channels: Sequence[Sequence[float] | np.ndarray], sample_rate: int
    ) -> SampleBuffer:
        """Build from a list of per-channel sample sequences of equal length."""
        arrays = [np.asarray(ch, dtype=np.float64) for ch in channels]
        if not arrays or len({a.size for a in arrays}) != 1:
            raise ValidationError("All channels must be non-missing and of equal length")
        return cls(np.stack(arrays, axis=0), sample_rate)

    @classmethod
    def from_interleaved(
        cls, samples: Sequence[float] | np.ndarray, channels: int, sample_rate: int
    ) -> SampleBuffer:
        """Build from interleaved frames (L, R, L, R, ...)."""
        flat = np.asarray(samples, dtype=np.float64).ravel()
        if channels not in (1, 2):
            raise ValidationError(f"channels must be 1 or 2, got {channels}")
        if flat.size % channels:
            raise ValidationError(
                f"Interleaved length {flat.size} is not a multiple of {channels} channels"
            )
        return cls(flat.reshape(-1, channels).T, sample_rate)

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def channels(self) -> int:
        return int(self.samples.shape[0])

    @property
    def n_frames(self) -> int:
        return int(self.samples.shape[1])

    @property
    def duration(self) -> float:
        """Length in seconds."""
        return self.n_frames / float(self.sample_rate)

    # ------------------------------------------------------------------
    # Views and derived buffers
    # ------------------------------------------------------------------

    def channel(self, index: int) -> np.ndarray:
        return self.samples[index]

    def mono(self) -> np.ndarray:
        """Mono mixdown as a 1-D array."""
        if self.channels == 1:
            return self.samples[0]
        return np.mean(self.samples, axis=0)

    def slice_frames(self, start: int, stop: int) -> SampleBuffer:
        """Frames [start, stop) as a new buffer; positions past the end are silence."""
        start = max(0, int(start))
        stop = max(start, int(stop))
        out = np.zeros((self.channels, stop - start), dtype=np.float64)
        avail = max(0, min(stop, self.n_frames) - start)
        if avail:
            out[:, :avail] = self.samples[:, start : start + avail]
        return SampleBuffer(out, self.sample_rate)

    def interleaved(self) -> np.ndarray:
        """Frames interleaved across channels as a 1-D array."""
        return self.samples.T.reshape(-1)

    def content_hash(self) -> str:
        """SHA-256 over sample rate, channel count and raw samples."""
        h = hashlib.sha256()
        h.update(f"{self.sample_rate}|{self.channels}|".encode())
        h.update(np.ascontiguousarray(self.samples).tobytes())
        return h.hexdigest()
