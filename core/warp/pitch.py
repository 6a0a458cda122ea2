"""
core/warp/pitch.py — Pitch shifting as a stage separate from time-stretch.

Implements:
    - Shift by n semitones: time-stretch by p = 2^(n/12) with the request's
      stretcher, then FFT-resample back to exactly the original length, so the
      effective shift is n_stretched / n even for cent-sized detuning
    - Formant preservation: cepstral spectral envelopes of the input and the
      shifted signal; each STFT frame of the shifted signal is multiplied by
      envelope_in / envelope_shifted so vocal resonances stay in place

Design:
    - Pure: (C, N) array in → new (C, N) array out.
    - Output length always equals input length.
    - Envelope correction gain is clipped to [0.1, 10] so near-silent
      frames cannot blow up.
"""

from __future__ import annotations

import threading

import numpy as np
from scipy import signal

from core.warp.stretch import FrameStretcher, check_cancelled, synthesis_frame_count

_EPS = 1e-10

# Cepstral lifter cutoff in seconds; below the period of any sung pitch.
_LIFTER_SEC = 0.001

_MIN_FORMANT_GAIN = 0.1
_MAX_FORMANT_GAIN = 10.0
_MIN_FORMANT_SAMPLES = 64


def pitch_ratio(semitones: float) -> float:
    """Frequency ratio for a shift in semitones."""
    return float(2.0 ** (semitones / 12.0))


def fit_length(y: np.ndarray, n: int) -> np.ndarray:
    """Truncate or zero-pad the last axis to ``n`` samples."""
    if y.shape[-1] >= n:
        return y[..., :n]
    pad = [(0, 0)] * (y.ndim - 1) + [(0, n - y.shape[-1])]
    return np.pad(y, pad)


# ---------------------------------------------------------------------------
# Formant correction
# ---------------------------------------------------------------------------


def spectral_envelope(mag: np.ndarray, n_lifter: int) -> np.ndarray:
    """Smooth envelope of magnitude spectra (..., bins) via cepstral liftering."""
    cepstrum = np.fft.irfft(np.log(np.maximum(mag, _EPS)), axis=-1)
    n = cepstrum.shape[-1]
    keep = max(1, min(n_lifter, n // 2))
    cepstrum[..., keep : n - keep + 1] = 0.0
    return np.exp(np.fft.rfft(cepstrum, axis=-1).real)


def correct_formants(
    reference: np.ndarray, shifted: np.ndarray, sr: int, frame_size: int
) -> np.ndarray:
    """Move the spectral envelope of ``shifted`` back onto that of ``reference``."""
    n = shifted.shape[-1]
    if n < _MIN_FORMANT_SAMPLES:
        return shifted.copy()
    nperseg = min(frame_size, n)
    noverlap = nperseg - nperseg // 4
    params = dict(fs=sr, window="hann", nperseg=nperseg, noverlap=noverlap)

    _, _, ref_spec = signal.stft(reference, axis=-1, **params)
    _, _, shift_spec = signal.stft(shifted, axis=-1, **params)

    n_lifter = int(sr * _LIFTER_SEC)
    # stft returns (..., bins, frames); envelopes are taken along bins
    env_ref = spectral_envelope(np.abs(np.swapaxes(ref_spec, -1, -2)), n_lifter)
    env_shift = spectral_envelope(np.abs(np.swapaxes(shift_spec, -1, -2)), n_lifter)
    gain = np.clip(env_ref / env_shift, _MIN_FORMANT_GAIN, _MAX_FORMANT_GAIN)

    corrected = shift_spec * np.swapaxes(gain, -1, -2)
    _, y = signal.istft(corrected, **params)
    return fit_length(np.asarray(y, dtype=np.float64), n)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def pitch_shift(
    samples: np.ndarray,
    sr: int,
    semitones: float,
    stretcher: FrameStretcher,
    preserve_formants: bool = True,
    cancel: threading.Event | None = None,
    frames_per_block: int = 64,
) -> np.ndarray:
    """Shift ``samples`` (C, N) by ``semitones`` without changing duration.

    Args:
        samples:           Input audio, (C, N).
        sr:                Sample rate in Hz.
        semitones:         Shift amount; positive raises pitch.
        stretcher:         Time-stretch algorithm used for the duration change.
        preserve_formants: Apply cepstral envelope correction afterwards.
        cancel:            Optional flag checked between stages.
        frames_per_block:  Frames between cancellation checks inside the stretch.

    Returns:
        New (C, N) array.

    Raises:
        RenderCancelledError: If ``cancel`` is set.
    """
    x = np.atleast_2d(np.asarray(samples, dtype=np.float64))
    n = x.shape[-1]
    if semitones == 0 or n == 0:
        return x.copy()

    n_stretched = max(1, int(round(n * pitch_ratio(semitones))))
    if n_stretched == n:
        return x.copy()
    # the frequency change is n_stretched / n, so stretch by exactly that
    ratio = n_stretched / n
    n_frames = synthesis_frame_count(n_stretched, stretcher.hop)
    centers = np.round(np.arange(n_frames) * stretcher.hop / ratio).astype(np.int64)
    stretched = stretcher.process(x, centers, n_stretched, cancel, frames_per_block)

    check_cancelled(cancel)
    shifted = np.asarray(signal.resample(stretched, n, axis=-1), dtype=np.float64)

    if preserve_formants:
        check_cancelled(cancel)
        shifted = correct_formants(x, shifted, sr, stretcher.frame_size)
    return shifted
