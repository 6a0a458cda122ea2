"""
Shared fixtures for the test suite.

Centralizes synthetic audio and a fresh engine per test so individual test
files don't need to repeat buffer-building boilerplate.
"""

from __future__ import annotations

import numpy as np
import pytest

from core.buffer import SampleBuffer
from infrastructure.cache import ResultCache
from worker.engine import WarpEngine

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

SR = 44100
"""Sample rate used by every synthetic fixture."""


# ---------------------------------------------------------------------------
# Signal builders
# ---------------------------------------------------------------------------


def make_sine(freq: float = 440.0, duration: float = 1.0, amp: float = 0.5) -> np.ndarray:
    t = np.arange(int(SR * duration)) / SR
    return amp * np.sin(2.0 * np.pi * freq * t)


def make_clicks(
    times: list[float], duration: float, amp: float | list[float] = 0.9
) -> np.ndarray:
    """Single-sample clicks at ``times`` seconds."""
    y = np.zeros(int(SR * duration))
    amps = amp if isinstance(amp, list) else [amp] * len(times)
    for t, a in zip(times, amps):
        y[int(round(t * SR))] = a
    return y


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def sine_buffer() -> SampleBuffer:
    """One second of mono 440 Hz at half scale."""
    return SampleBuffer.from_mono(make_sine(), SR)


@pytest.fixture()
def stereo_buffer() -> SampleBuffer:
    """One second of stereo: 440 Hz left, 660 Hz right."""
    return SampleBuffer.from_channels([make_sine(440.0), make_sine(660.0, amp=0.3)], SR)


@pytest.fixture()
def click_buffer() -> SampleBuffer:
    """Four seconds of clicks every 0.5 s (120 BPM), first click at 0.25 s."""
    times = [0.25 + 0.5 * i for i in range(8)]
    return SampleBuffer.from_mono(make_clicks(times, 4.0), SR)


@pytest.fixture()
def engine() -> WarpEngine:
    """A fresh engine with its own empty cache."""
    return WarpEngine(cache=ResultCache(max_size=16, ttl_seconds=60))
