"""
Tests for core/signal_metrics — loudness, peak, RMS, dynamics, clipping, stereo.

All tests use synthetic numpy signals; no files on disk.

Coverage:
    - loudness: sine reference value, silence/short input floor
    - peak / RMS in linear and dB form
    - dynamic_range / crest factor
    - detect_clipping threshold behaviour
    - stereo_image: identical, inverted, independent channels, balance
    - analyze: mono vs stereo, never NaN
"""

from __future__ import annotations

import math

import numpy as np
import pytest

from core.buffer import SampleBuffer
from core.safe_math import FLOOR_DB
from core.signal_metrics import (
    analyze,
    detect_clipping,
    dynamic_range,
    loudness,
    peak_db,
    rms,
    rms_db,
    stereo_image,
)

SR = 44100
DURATION = 2.0
N = int(SR * DURATION)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _sine(freq: float = 1000.0, amp: float = 0.5, n: int = N) -> np.ndarray:
    t = np.arange(n) / SR
    return amp * np.sin(2.0 * np.pi * freq * t)


def _white_noise(amp: float = 0.3, seed: int = 0, n: int = N) -> np.ndarray:
    rng = np.random.default_rng(seed)
    return amp * rng.standard_normal(n)


# ---------------------------------------------------------------------------
# Loudness
# ---------------------------------------------------------------------------


class TestLoudness:
    def test_sine_reference_level(self) -> None:
        """Mean power of a 0.5 sine is 0.125 → -0.691 + 10·log10(0.125) ≈ -9.72."""
        expected = -0.691 + 10.0 * math.log10(0.125)
        assert loudness(_sine(), SR) == pytest.approx(expected, abs=0.05)

    def test_silence_returns_floor(self) -> None:
        assert loudness(np.zeros(N), SR) == FLOOR_DB

    def test_shorter_than_one_block_returns_floor(self) -> None:
        assert loudness(_sine(n=int(0.3 * SR)), SR) == FLOOR_DB

    def test_invalid_sample_rate_returns_floor(self) -> None:
        assert loudness(_sine(), 0) == FLOOR_DB

    def test_sample_buffer_supplies_rate(self) -> None:
        buf = SampleBuffer.from_mono(_sine(), SR)
        assert loudness(buf) == loudness(_sine(), SR)

    def test_louder_signal_reads_higher(self) -> None:
        assert loudness(_sine(amp=0.8), SR) > loudness(_sine(amp=0.2), SR)

    def test_nan_samples_never_leak(self) -> None:
        y = _sine()
        y[100] = np.nan
        assert math.isfinite(loudness(y, SR))

    @pytest.mark.parametrize("y", [np.zeros(N), np.array([0.7]), np.array([0.0])])
    def test_level_readings_always_finite(self, y: np.ndarray) -> None:
        assert math.isfinite(loudness(y, SR))
        assert math.isfinite(peak_db(y))
        assert math.isfinite(rms(y))
        assert math.isfinite(rms_db(y))


# ---------------------------------------------------------------------------
# Peak / RMS
# ---------------------------------------------------------------------------


class TestPeakAndRms:
    def test_peak_db_of_half_scale(self) -> None:
        assert peak_db(_sine(amp=0.5)) == pytest.approx(-6.02, abs=0.02)

    def test_peak_db_silence(self) -> None:
        assert peak_db(np.zeros(100)) == FLOOR_DB

    def test_rms_of_sine(self) -> None:
        assert rms(_sine(amp=1.0)) == pytest.approx(1.0 / math.sqrt(2.0), abs=1e-3)

    def test_rms_db_of_sine(self) -> None:
        assert rms_db(_sine(amp=1.0)) == pytest.approx(-3.01, abs=0.02)

    def test_huge_finite_samples_do_not_read_as_silence(self) -> None:
        y = _sine(amp=1e200)
        assert rms(y) == pytest.approx(1e200 / math.sqrt(2.0), rel=1e-3)
        assert rms_db(y) == pytest.approx(20.0 * 200 - 3.01, abs=0.05)
        assert loudness(y, SR) == pytest.approx(-0.691 + 20.0 * 200 - 3.01, abs=0.05)
        assert dynamic_range(y).crest_factor == pytest.approx(math.sqrt(2.0), abs=0.01)
        assert stereo_image(y, y).correlation == pytest.approx(1.0)

    def test_empty_input(self) -> None:
        assert rms(np.array([])) == 0.0
        assert rms_db(np.array([])) == FLOOR_DB
        assert peak_db(np.array([])) == FLOOR_DB


# ---------------------------------------------------------------------------
# Dynamics
# ---------------------------------------------------------------------------


class TestDynamicRange:
    def test_sine_crest_factor_is_sqrt_two(self) -> None:
        result = dynamic_range(_sine(amp=0.5))
        assert result.crest_factor == pytest.approx(math.sqrt(2.0), abs=0.01)
        assert result.dynamic_range_db == pytest.approx(3.01, abs=0.02)

    def test_noise_has_higher_crest_than_sine(self) -> None:
        assert dynamic_range(_white_noise()).crest_factor > dynamic_range(_sine()).crest_factor

    def test_silence_is_all_zero(self) -> None:
        result = dynamic_range(np.zeros(1000))
        assert result.dynamic_range_db == 0.0
        assert result.crest_factor == 0.0


# ---------------------------------------------------------------------------
# Clipping
# ---------------------------------------------------------------------------


class TestClipping:
    def test_clean_signal(self) -> None:
        report = detect_clipping(_sine(amp=0.5))
        assert report.has_clipping is False
        assert report.clipped_sample_count == 0
        assert report.clipping_percentage == 0.0

    def test_counts_samples_at_threshold(self) -> None:
        y = np.zeros(1000)
        y[:10] = 1.0
        y[10:20] = -0.995
        report = detect_clipping(y)
        assert report.has_clipping is True
        assert report.clipped_sample_count == 20
        assert report.clipping_percentage == pytest.approx(2.0)

    def test_full_scale_is_fully_clipped(self) -> None:
        report = detect_clipping(np.ones(500))
        assert report.clipping_percentage == pytest.approx(100.0)

    def test_silence_is_not_clipped(self) -> None:
        assert detect_clipping(np.zeros(500)).clipping_percentage == 0.0

    def test_custom_threshold(self) -> None:
        y = np.full(100, 0.6)
        assert detect_clipping(y, threshold=0.5).clipped_sample_count == 100

    def test_empty_input(self) -> None:
        report = detect_clipping(np.array([]))
        assert report.has_clipping is False
        assert report.clipping_percentage == 0.0


# ---------------------------------------------------------------------------
# Stereo
# ---------------------------------------------------------------------------


class TestStereoImage:
    def test_identical_channels(self) -> None:
        y = _sine()
        image = stereo_image(y, y)
        assert image.correlation == pytest.approx(1.0)
        assert image.width == pytest.approx(0.0)
        assert image.balance == pytest.approx(0.0)

    def test_inverted_channels(self) -> None:
        y = _sine()
        image = stereo_image(y, -y)
        assert image.correlation == pytest.approx(-1.0)
        assert image.width == pytest.approx(0.0)

    def test_independent_noise_is_wide(self) -> None:
        image = stereo_image(_white_noise(seed=1), _white_noise(seed=2))
        assert abs(image.correlation) < 0.05
        assert image.width > 0.95

    def test_right_heavy_balance_is_positive(self) -> None:
        image = stereo_image(_sine(amp=0.1), _sine(amp=0.5))
        assert image.balance > 0.5

    def test_silent_channel(self) -> None:
        image = stereo_image(np.zeros(N), _sine())
        assert image.correlation == 0.0
        assert image.balance == pytest.approx(1.0)

    def test_empty_channels(self) -> None:
        image = stereo_image(np.array([]), np.array([]))
        assert (image.correlation, image.balance, image.width) == (0.0, 0.0, 0.0)


# ---------------------------------------------------------------------------
# analyze()
# ---------------------------------------------------------------------------


class TestAnalyze:
    def test_mono_has_no_stereo_image(self) -> None:
        result = analyze(SampleBuffer.from_mono(_sine(), SR))
        assert result.stereo_image is None
        assert result.sample_count == N
        assert result.duration == pytest.approx(DURATION)

    def test_stereo_buffer(self) -> None:
        buf = SampleBuffer.from_channels([_sine(), _sine()], SR)
        result = analyze(buf)
        assert result.stereo_image is not None
        assert result.stereo_image.correlation == pytest.approx(1.0)
        assert result.sample_count == 2 * N

    def test_silence_is_finite(self) -> None:
        result = analyze(np.zeros(N), SR)
        assert result.lufs == FLOOR_DB
        assert result.peak_db == FLOOR_DB
        assert result.rms == 0.0
        assert result.clipping.has_clipping is False

    def test_as_dict_is_plain_data(self) -> None:
        data = analyze(SampleBuffer.from_mono(_sine(), SR)).as_dict()
        assert isinstance(data["lufs"], float)
        assert data["stereo_image"] is None
        assert set(data["clipping"]) == {
            "has_clipping",
            "clipped_sample_count",
            "clipping_percentage",
        }
