"""
core/warp/stretch.py — Frame-based time-stretch algorithms.

Every stretcher follows the same contract: synthesis frame k is centred on
output sample k × hop and reads the source around ``centers[k]``. The caller
computes the centres from a WarpMap, so one continuous pass handles any
number of marker segments. Phase / overlap state is carried from frame to
frame across segment boundaries, which keeps marker joins free of clicks.

Implements:
    - PhaseVocoderStretcher: per-bin instantaneous frequency from the phase
      difference over the actual analysis hop, integrated over the synthesis
      hop. A constant ratio of 1 reconstructs the input.
    - PhaseLockedVocoderStretcher: identity phase locking — bins follow the
      phase of the spectral peak that dominates them, which reduces the
      "phasiness" of the plain vocoder.
    - WsolaStretcher: waveform-similarity overlap-add. Each frame may move by
      up to ±search_fraction × frame_size to best continue the previous one.

Design:
    - Hann analysis/synthesis windows (periodic), output normalised by the
      accumulated window weight (w² for vocoders, w for WSOLA).
    - Frames that reach outside the source read zeros.
    - Cancellation is checked once per block of frames.
"""

from __future__ import annotations

import math
import threading

import numpy as np
from scipy import signal

from core.config import StretchSettings
from core.errors import RenderCancelledError, UnsupportedConfigurationError

_EPS = 1e-12
_TIE_TOLERANCE = 1e-9


def princarg(phase: np.ndarray) -> np.ndarray:
    """Wrap phase values into [-π, π)."""
    return np.mod(phase + np.pi, 2.0 * np.pi) - np.pi


def check_cancelled(cancel: threading.Event | None) -> None:
    if cancel is not None and cancel.is_set():
        raise RenderCancelledError("Render was cancelled")


def synthesis_frame_count(n_out: int, hop: int) -> int:
    """Frames needed so that frame centres cover every output sample."""
    return math.ceil(n_out / hop) + 1 if n_out > 0 else 0


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------


class FrameStretcher:
    """Overlap-add driver shared by all algorithms.

    Subclasses implement :meth:`_synthesize_block`, which returns windowed
    output frames of shape (B, C, frame_size) for frames ``start..stop``.
    """

    name = "base"
    weight_power = 2

    def __init__(self, settings: StretchSettings, channels: int) -> None:
        self.settings = settings
        self.channels = channels
        self.frame_size = settings.frame_size
        self.hop = settings.hop
        self.window = signal.get_window("hann", self.frame_size)
        self._weight = self.window**self.weight_power

    @property
    def search_radius(self) -> int:
        return 0

    def reset(self) -> None:
        """Forget inter-frame state before a new pass."""

    def process(
        self,
        source: np.ndarray,
        centers: np.ndarray,
        n_out: int,
        cancel: threading.Event | None = None,
        frames_per_block: int = 64,
    ) -> np.ndarray:
        """Render ``n_out`` output samples.

        Args:
            source:           (C, N) source samples.
            centers:          Source sample index read by each synthesis frame.
            n_out:            Output length in samples.
            cancel:           Optional flag checked between blocks.
            frames_per_block: Frames synthesised between cancellation checks.

        Returns:
            (C, n_out) float64 array.

        Raises:
            RenderCancelledError: If ``cancel`` is set during processing.
        """
        src = np.atleast_2d(np.asarray(source, dtype=np.float64))
        n_channels, n_src = src.shape
        n_frames = len(centers)
        if n_out <= 0 or n_frames == 0:
            return np.zeros((n_channels, max(n_out, 0)))

        N, hs = self.frame_size, self.hop
        half = N // 2
        pad = N + self.search_radius
        padded = np.pad(src, ((0, 0), (pad, pad)))
        clipped = np.clip(np.asarray(centers, dtype=np.int64), -half, n_src + half)

        total = (n_frames - 1) * hs + N
        out = np.zeros((n_channels, total))
        weight = np.zeros(total)

        self.reset()
        for start in range(0, n_frames, frames_per_block):
            check_cancelled(cancel)
            stop = min(n_frames, start + frames_per_block)
            frames = self._synthesize_block(padded, pad, clipped, start, stop)
            for j, k in enumerate(range(start, stop)):
                out[:, k * hs : k * hs + N] += frames[j]
                weight[k * hs : k * hs + N] += self._weight

        out = out[:, half : half + n_out]
        weight = weight[half : half + n_out]
        return out / np.maximum(weight, _EPS)

    def _grab(self, padded: np.ndarray, pad: int, centers: np.ndarray) -> np.ndarray:
        """Source frames around ``centers`` as (B, C, N)."""
        starts = centers + pad - self.frame_size // 2
        idx = starts[:, None] + np.arange(self.frame_size)[None, :]
        return np.transpose(padded[:, idx], (1, 0, 2))

    def _synthesize_block(
        self, padded: np.ndarray, pad: int, centers: np.ndarray, start: int, stop: int
    ) -> np.ndarray:
        raise NotImplementedError


# ---------------------------------------------------------------------------
# Phase vocoder
# ---------------------------------------------------------------------------


class PhaseVocoderStretcher(FrameStretcher):
    """Standard phase vocoder with a variable analysis hop."""

    name = "phase_vocoder"

    def __init__(self, settings: StretchSettings, channels: int) -> None:
        super().__init__(settings, channels)
        self._omega = 2.0 * np.pi * np.arange(self.frame_size // 2 + 1) / self.frame_size
        self.reset()

    def reset(self) -> None:
        self._prev_center: int | None = None
        self._prev_phase: np.ndarray | None = None
        self._out_phase: np.ndarray | None = None

    def _instantaneous_frequency(self, phase: np.ndarray, center: int) -> np.ndarray:
        ha = center - self._prev_center
        if ha == 0:
            return np.broadcast_to(self._omega, phase.shape)
        deviation = princarg(phase - self._prev_phase - self._omega * ha)
        return self._omega + deviation / ha

    def _advance(self, mag: np.ndarray, phase: np.ndarray, center: int) -> np.ndarray:
        """Output phase for one frame of shape (C, bins)."""
        freq = self._instantaneous_frequency(phase, center)
        return princarg(self._out_phase + freq * self.hop)

    def _synthesize_block(
        self, padded: np.ndarray, pad: int, centers: np.ndarray, start: int, stop: int
    ) -> np.ndarray:
        frames = self._grab(padded, pad, centers[start:stop])
        spectra = np.fft.rfft(frames * self.window, axis=-1)
        mag = np.abs(spectra)
        phase = np.angle(spectra)

        out_spec = np.empty_like(spectra)
        for j, k in enumerate(range(start, stop)):
            center = int(centers[k])
            if self._prev_center is None:
                out_phase = phase[j]
            else:
                out_phase = self._advance(mag[j], phase[j], center)
            out_spec[j] = mag[j] * np.exp(1j * out_phase)
            self._prev_center = center
            self._prev_phase = phase[j]
            self._out_phase = out_phase

        return np.fft.irfft(out_spec, n=self.frame_size, axis=-1) * self.window


class PhaseLockedVocoderStretcher(PhaseVocoderStretcher):
    """Phase vocoder with identity phase locking around spectral peaks."""

    name = "high_quality"

    def _advance(self, mag: np.ndarray, phase: np.ndarray, center: int) -> np.ndarray:
        free = super()._advance(mag, phase, center)
        locked = np.empty_like(free)
        bins = np.arange(mag.shape[-1])
        for ch in range(mag.shape[0]):
            peaks, _ = signal.find_peaks(mag[ch])
            if peaks.size == 0:
                locked[ch] = free[ch]
                continue
            boundaries = (peaks[:-1] + peaks[1:]) / 2.0
            owner = peaks[np.searchsorted(boundaries, bins, side="right")]
            locked[ch] = free[ch][owner] + phase[ch] - phase[ch][owner]
        return princarg(locked)


# ---------------------------------------------------------------------------
# WSOLA
# ---------------------------------------------------------------------------


class WsolaStretcher(FrameStretcher):
    """Waveform-similarity overlap-add.

    The frame offset is chosen by normalised cross-correlation between each
    candidate position and the natural continuation of the previous frame.
    All channels share one offset so the stereo image stays intact.
    """

    name = "wsola"
    weight_power = 1

    def __init__(self, settings: StretchSettings, channels: int) -> None:
        super().__init__(settings, channels)
        self.reset()

    @property
    def search_radius(self) -> int:
        return int(self.settings.search_fraction * self.frame_size)

    def reset(self) -> None:
        self._prev_used: int | None = None
        self._mono: np.ndarray | None = None
        self._mono_of: np.ndarray | None = None

    def _best_offset(self, mono: np.ndarray, pad: int, center: int, natural: int) -> int:
        N, R = self.frame_size, self.search_radius
        if R == 0:
            return 0
        half = N // 2
        lo = center + pad - half - R
        region = mono[lo : lo + N + 2 * R]
        reference = mono[natural + pad - half : natural + pad + half]

        ref_energy = float(np.dot(reference, reference))
        cumulative = np.concatenate([[0.0], np.cumsum(region * region)])
        cand_energy = cumulative[N:] - cumulative[:-N]
        if ref_energy < _EPS or float(np.max(cand_energy)) < _EPS:
            return 0

        corr = signal.correlate(region, reference, mode="valid")
        score = corr / np.sqrt(np.maximum(cand_energy, _EPS) * ref_energy)
        best = float(np.max(score))
        ties = np.flatnonzero(score >= best - _TIE_TOLERANCE) - R
        return int(ties[np.argmin(np.abs(ties))])

    def _synthesize_block(
        self, padded: np.ndarray, pad: int, centers: np.ndarray, start: int, stop: int
    ) -> np.ndarray:
        if self._mono_of is not padded:
            self._mono = np.sum(padded, axis=0)
            self._mono_of = padded
        mono = self._mono
        n_src = padded.shape[1] - 2 * pad
        half = self.frame_size // 2
        used = np.empty(stop - start, dtype=np.int64)
        for j, k in enumerate(range(start, stop)):
            center = int(centers[k])
            if self._prev_used is None:
                offset = 0
            else:
                natural = min(max(self._prev_used + self.hop, -half), n_src + half)
                offset = self._best_offset(mono, pad, center, natural)
            used[j] = center + offset
            self._prev_used = int(used[j])
        return self._grab(padded, pad, used) * self.window


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

_STRETCHERS: dict[str, type[FrameStretcher]] = {
    "phase_vocoder": PhaseVocoderStretcher,
    "wsola": WsolaStretcher,
    "high_quality": PhaseLockedVocoderStretcher,
}


def make_stretcher(algorithm: str, settings: StretchSettings, channels: int) -> FrameStretcher:
    """Instantiate the stretcher registered for ``algorithm``.

    Raises:
        UnsupportedConfigurationError: If the algorithm name is unknown.
    """
    cls = _STRETCHERS.get(algorithm)
    if cls is None:
        raise UnsupportedConfigurationError(
            f"Unknown algorithm {algorithm!r}, valid options: {sorted(_STRETCHERS)}"
        )
    return cls(settings, channels)
