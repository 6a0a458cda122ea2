"""
Tests for core/warp/render.py — preview / commit rendering.

Coverage:
    - Identity map renders an exact copy
    - Output length follows the warp map's target span
    - Preview range resolution and range errors
    - Commit defaults and the empty-marker commit rule
    - Pitch shift keeps duration; post-processing runs after warping
    - Cancellation, insufficient data and unsupported configurations
"""

from __future__ import annotations

import threading

import numpy as np
import pytest

from core.buffer import SampleBuffer
from core.config import EngineConfig
from core.dynamics import LimiterStage
from core.errors import (
    InsufficientDataError,
    RenderCancelledError,
    UnsupportedConfigurationError,
    ValidationError,
)
from core.warp import RenderRequest, WarpMarker, render

SR = 44100


def _sine(freq: float = 440.0, duration: float = 1.0, amp: float = 0.5) -> np.ndarray:
    t = np.arange(int(SR * duration)) / SR
    return amp * np.sin(2.0 * np.pi * freq * t)


def _buffer(duration: float = 1.0, stereo: bool = False) -> SampleBuffer:
    if stereo:
        return SampleBuffer.from_channels(
            [_sine(440.0, duration), _sine(550.0, duration, amp=0.3)], SR
        )
    return SampleBuffer.from_mono(_sine(440.0, duration), SR)


def _m(source: float, target: float) -> WarpMarker:
    return WarpMarker.create(source, target)


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------


class TestIdentity:
    @pytest.mark.parametrize("algorithm", ["phase_vocoder", "wsola", "high_quality"])
    def test_no_markers_is_exact_copy(self, algorithm: str) -> None:
        buf = _buffer(stereo=True)
        result = render(buf, RenderRequest(algorithm=algorithm, quality="normal"))
        np.testing.assert_array_equal(result.buffer.samples, buf.samples)
        assert result.stretch_ratio_range == (1.0, 1.0)

    def test_identity_markers_are_exact_copy(self) -> None:
        buf = _buffer()
        result = render(buf, RenderRequest(markers=(_m(0.0, 0.0), _m(0.5, 0.5))))
        np.testing.assert_array_equal(result.buffer.samples, buf.samples)

    def test_identity_preview_slices_range(self) -> None:
        buf = _buffer()
        result = render(buf, RenderRequest.preview([], 0.25, 0.5))
        np.testing.assert_array_equal(
            result.buffer.samples, buf.samples[:, int(0.25 * SR) : int(0.5 * SR)]
        )


# ---------------------------------------------------------------------------
# Warped output
# ---------------------------------------------------------------------------


class TestWarped:
    def test_double_length(self) -> None:
        buf = _buffer()
        result = render(buf, RenderRequest(markers=(_m(1.0, 2.0),)))
        assert result.buffer.n_frames == 2 * SR
        assert result.target_range == pytest.approx((0.0, 2.0))
        assert result.stretch_ratio_range == pytest.approx((2.0, 2.0))

    def test_halving_example(self) -> None:
        buf = _buffer(duration=2.0)
        result = render(buf, RenderRequest(markers=(_m(0.0, 0.0), _m(2.0, 1.0))))
        assert result.buffer.n_frames == SR
        assert np.all(np.isfinite(result.buffer.samples))

    @pytest.mark.parametrize("algorithm", ["phase_vocoder", "wsola", "high_quality"])
    def test_multi_segment_stereo(self, algorithm: str) -> None:
        buf = _buffer(duration=2.0, stereo=True)
        markers = (_m(0.5, 0.75), _m(1.5, 1.5), _m(2.0, 2.0))
        result = render(buf, RenderRequest(markers=markers, algorithm=algorithm))
        assert result.buffer.channels == 2
        assert result.buffer.n_frames == 2 * SR
        assert result.marker_count == 3
        assert result.stretch_ratio_range == pytest.approx((0.75, 1.5))
        assert np.max(np.abs(result.buffer.samples)) < 1.5

    def test_preview_range_length(self) -> None:
        buf = _buffer()
        result = render(buf, RenderRequest.preview([_m(1.0, 2.0)], 0.5, 1.5))
        assert result.buffer.n_frames == SR
        assert result.source_range == pytest.approx((0.25, 0.75))
        assert result.replace_original is False

    def test_stretch_ratio_limit(self) -> None:
        buf = _buffer()
        with pytest.raises(ValidationError, match="stretch ratio"):
            render(
                buf,
                RenderRequest(markers=(_m(1.0, 3.0),)),
                config=EngineConfig(max_stretch_ratio=2.0),
            )


# ---------------------------------------------------------------------------
# Request validation
# ---------------------------------------------------------------------------


class TestRequestValidation:
    def test_commit_defaults(self) -> None:
        request = RenderRequest.commit([_m(1.0, 2.0)])
        assert request.quality == "high"
        assert request.replace_original is True
        assert request.time_range is None

    def test_empty_commit_rejected(self) -> None:
        with pytest.raises(ValidationError, match="empty marker set"):
            render(_buffer(), RenderRequest.commit([]))

    def test_empty_commit_with_pitch_is_allowed(self) -> None:
        result = render(_buffer(), RenderRequest.commit([], pitch_shift_semitones=2.0))
        assert result.buffer.n_frames == SR

    def test_pitch_out_of_range(self) -> None:
        with pytest.raises(ValidationError, match="pitch_shift_semitones"):
            render(_buffer(), RenderRequest(pitch_shift_semitones=25.0))

    def test_unknown_algorithm(self) -> None:
        with pytest.raises(ValidationError, match="Unknown algorithm"):
            render(_buffer(), RenderRequest(algorithm="granular"))

    def test_unknown_quality(self) -> None:
        with pytest.raises(ValidationError, match="Unknown quality"):
            render(_buffer(), RenderRequest(quality="ultra"))

    def test_high_quality_fast_unsupported(self) -> None:
        with pytest.raises(UnsupportedConfigurationError):
            render(_buffer(), RenderRequest(algorithm="high_quality", quality="fast"))

    def test_range_outside_clip(self) -> None:
        with pytest.raises(ValidationError, match="outside"):
            render(_buffer(), RenderRequest.preview([], 0.5, 1.5))

    def test_empty_range(self) -> None:
        with pytest.raises(ValidationError, match="after start"):
            render(_buffer(), RenderRequest.preview([], 0.5, 0.5))

    def test_invalid_markers(self) -> None:
        with pytest.raises(ValidationError, match="not sorted"):
            render(_buffer(), RenderRequest(markers=(_m(0.8, 1.0), _m(0.2, 1.2))))

    def test_buffer_shorter_than_frame(self) -> None:
        short = SampleBuffer.from_mono(np.zeros(1000), SR)
        with pytest.raises(InsufficientDataError):
            render(short, RenderRequest())


# ---------------------------------------------------------------------------
# Pitch and post-processing
# ---------------------------------------------------------------------------


class TestStages:
    def test_pitch_shift_keeps_duration(self) -> None:
        buf = _buffer(stereo=True)
        result = render(buf, RenderRequest(pitch_shift_semitones=-7.0))
        assert result.buffer.n_frames == buf.n_frames
        assert result.buffer.channels == 2

    def test_pitch_shift_combined_with_stretch(self) -> None:
        result = render(
            _buffer(),
            RenderRequest(markers=(_m(1.0, 1.5),), pitch_shift_semitones=3.0),
        )
        assert result.buffer.n_frames == int(1.5 * SR)

    def test_post_processing_applied(self) -> None:
        result = render(
            _buffer(), RenderRequest(post_processing=(LimiterStage(ceiling_db=-12.0),))
        )
        assert np.max(np.abs(result.buffer.samples)) <= 10 ** (-12.0 / 20.0) + 1e-12

    def test_source_buffer_untouched(self) -> None:
        buf = _buffer()
        before = buf.samples.copy()
        render(buf, RenderRequest(markers=(_m(1.0, 2.0),), pitch_shift_semitones=2.0))
        np.testing.assert_array_equal(buf.samples, before)


# ---------------------------------------------------------------------------
# Cancellation and metadata
# ---------------------------------------------------------------------------


class TestCancellation:
    def test_pre_cancelled_render_raises(self) -> None:
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(RenderCancelledError):
            render(_buffer(), RenderRequest(markers=(_m(1.0, 2.0),)), cancel=cancel)

    def test_metadata_is_plain_data(self) -> None:
        result = render(_buffer(), RenderRequest.preview([_m(1.0, 2.0)], 0.0, 1.0))
        meta = result.metadata()
        assert meta["n_frames"] == SR
        assert meta["sample_rate"] == SR
        assert meta["cache_hit"] is False
        assert meta["target_range"] == pytest.approx([0.0, 1.0])
