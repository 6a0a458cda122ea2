"""
worker/pcm.py — Raw PCM bytes ↔ SampleBuffer conversion.

This is the byte boundary of the engine: storage collaborators hand over raw
interleaved PCM, and everything downstream works on SampleBuffer. No codec
decoding happens here (WAV/MP3 containers are the storage layer's concern).

Usage:
    from worker.pcm import decode_pcm, encode_pcm
    buffer = decode_pcm(data, channels=2, sample_rate=44100, fmt="int16")
    data = encode_pcm(buffer, fmt="float32")
"""

from __future__ import annotations

import numpy as np

from core.buffer import SampleBuffer
from core.errors import ValidationError

# Supported sample formats, all little-endian and interleaved
PCM_FORMATS: dict[str, np.dtype] = {
    "float32": np.dtype("<f4"),
    "int16": np.dtype("<i2"),
}

_INT16_SCALE = 32768.0


def _dtype(fmt: str) -> np.dtype:
    dtype = PCM_FORMATS.get(fmt)
    if dtype is None:
        raise ValidationError(f"Unsupported PCM format {fmt!r}. Supported: {sorted(PCM_FORMATS)}")
    return dtype


def decode_pcm(
    data: bytes,
    channels: int,
    sample_rate: int,
    fmt: str = "float32",
) -> SampleBuffer:
    """Decode interleaved little-endian PCM into a SampleBuffer.

    Args:
        data:        Raw bytes (L, R, L, R, ... for stereo).
        channels:    1 or 2.
        sample_rate: Sample rate in Hz.
        fmt:         "float32" or "int16".

    Returns:
        SampleBuffer with float64 samples; int16 is scaled to [-1, 1).

    Raises:
        ValidationError: Unknown format, bad channel count, or a byte length
            that is not a whole number of frames.
    """
    dtype = _dtype(fmt)
    if channels not in (1, 2):
        raise ValidationError(f"channels must be 1 or 2, got {channels}")
    frame_bytes = dtype.itemsize * channels
    if len(data) % frame_bytes:
        raise ValidationError(
            f"PCM length {len(data)} is not a multiple of the {frame_bytes}-byte frame size"
        )

    samples = np.frombuffer(data, dtype=dtype).astype(np.float64)
    if fmt == "int16":
        samples /= _INT16_SCALE
    return SampleBuffer.from_interleaved(samples, channels, sample_rate)


def encode_pcm(buffer: SampleBuffer, fmt: str = "float32") -> bytes:
    """Encode a SampleBuffer as interleaved little-endian PCM.

    int16 output is clipped to [-1, 1] before scaling.
    """
    dtype = _dtype(fmt)
    interleaved = buffer.interleaved()
    if fmt == "int16":
        scaled = np.round(np.clip(interleaved, -1.0, 1.0) * (_INT16_SCALE - 1.0))
        return scaled.astype(dtype).tobytes()
    return interleaved.astype(dtype).tobytes()
