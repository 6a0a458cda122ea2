"""
Tests for core/warp/warp_map.py — marker validation and time mapping.

Coverage:
    - Implicit endpoints (identity, single marker, trailing extrapolation)
    - Forward / inverse mapping and round trips
    - Local stretch ratio per segment
    - Validation errors for malformed marker lists
"""

from __future__ import annotations

import numpy as np
import pytest

from core.errors import ValidationError
from core.warp import MarkerType, WarpMap, WarpMarker


def _m(source: float, target: float) -> WarpMarker:
    return WarpMarker.create(source, target)


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------


class TestBuild:
    def test_no_markers_is_identity(self) -> None:
        wm = WarpMap.build([], 4.0)
        assert wm.is_identity()
        assert wm.breakpoints == ((0.0, 0.0), (4.0, 4.0))
        assert wm.to_target(2.5) == pytest.approx(2.5)

    def test_identity_constructor(self) -> None:
        assert WarpMap.identity(3.0).target_range == (0.0, 3.0)

    def test_single_marker_scales_from_origin(self) -> None:
        wm = WarpMap.build([_m(2.0, 4.0)], 3.0)
        assert wm.to_target(1.0) == pytest.approx(2.0)
        assert wm.to_target(3.0) == pytest.approx(6.0)
        assert wm.stretch_ratio_at(2.5) == pytest.approx(2.0)

    def test_single_marker_at_origin_is_offset(self) -> None:
        wm = WarpMap.build([_m(0.0, 1.0)], 2.0)
        assert wm.to_target(0.0) == pytest.approx(1.0)
        assert wm.to_target(2.0) == pytest.approx(3.0)
        assert wm.target_range == pytest.approx((1.0, 3.0))

    def test_trailing_segment_extends_last_slope(self) -> None:
        wm = WarpMap.build([_m(0.0, 0.0), _m(1.0, 2.0)], 2.0)
        assert wm.breakpoints[-1] == pytest.approx((2.0, 4.0))

    def test_marker_at_clip_end_adds_no_breakpoint(self) -> None:
        wm = WarpMap.build([_m(1.0, 2.0)], 1.0)
        assert wm.breakpoints == ((0.0, 0.0), (1.0, 2.0))

    def test_exact_duplicates_collapse(self) -> None:
        wm = WarpMap.build([_m(1.0, 1.5), _m(1.0, 1.5)], 2.0)
        assert len(wm.breakpoints) == 3

    def test_halving_example(self) -> None:
        """Markers (0,0) and (10,5): the clip plays twice as fast."""
        wm = WarpMap.build([_m(0.0, 0.0), _m(10.0, 5.0)], 10.0)
        assert wm.to_target(4.0) == pytest.approx(2.0)
        assert wm.to_source(2.5) == pytest.approx(5.0)
        assert wm.stretch_ratio_at(3.0) == pytest.approx(0.5)
        assert wm.target_duration == pytest.approx(5.0)


# ---------------------------------------------------------------------------
# Mapping
# ---------------------------------------------------------------------------


class TestMapping:
    @pytest.fixture()
    def wm(self) -> WarpMap:
        return WarpMap.build([_m(0.0, 0.0), _m(1.0, 2.0), _m(3.0, 3.0)], 4.0)

    def test_piecewise_values(self, wm: WarpMap) -> None:
        assert wm.to_target(0.5) == pytest.approx(1.0)
        assert wm.to_target(2.0) == pytest.approx(2.5)
        assert wm.to_target(3.5) == pytest.approx(3.25)

    def test_round_trip(self, wm: WarpMap) -> None:
        sources = np.linspace(0.0, 4.0, 41)
        back = wm.to_source_array(wm.to_target_array(sources))
        np.testing.assert_allclose(back, sources, atol=1e-12)

    def test_monotonic(self, wm: WarpMap) -> None:
        targets = wm.to_target_array(np.linspace(0.0, 4.0, 200))
        assert np.all(np.diff(targets) > 0)

    def test_segment_ratios(self, wm: WarpMap) -> None:
        assert wm.stretch_ratio_at(0.5) == pytest.approx(2.0)
        assert wm.stretch_ratio_at(2.0) == pytest.approx(0.5)
        assert wm.ratio_range() == pytest.approx((0.5, 2.0))

    def test_ratio_at_breakpoint_uses_following_segment(self, wm: WarpMap) -> None:
        assert wm.stretch_ratio_at(1.0) == pytest.approx(0.5)

    def test_vectorised_ratios(self, wm: WarpMap) -> None:
        ratios = wm.stretch_ratios_at(np.array([0.5, 2.0, 3.5]))
        np.testing.assert_allclose(ratios, [2.0, 0.5, 0.5])

    def test_extrapolates_past_clip_end(self, wm: WarpMap) -> None:
        assert wm.to_target(5.0) == pytest.approx(4.0)

    def test_segments(self, wm: WarpMap) -> None:
        assert [s[:2] for s in wm.segments()] == [(0.0, 1.0), (1.0, 3.0), (3.0, 4.0)]


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class TestValidation:
    def test_out_of_order_sources_rejected(self) -> None:
        with pytest.raises(ValidationError, match="not sorted"):
            WarpMap.build([_m(2.0, 2.0), _m(1.0, 3.0)], 4.0)

    def test_non_monotonic_targets_rejected(self) -> None:
        with pytest.raises(ValidationError, match="not monotonic"):
            WarpMap.build([_m(1.0, 2.0), _m(2.0, 1.5)], 4.0)

    def test_same_source_different_target_rejected(self) -> None:
        with pytest.raises(ValidationError, match="Ambiguous"):
            WarpMap.build([_m(1.0, 1.0), _m(1.0, 2.0)], 4.0)

    def test_flat_segment_rejected(self) -> None:
        with pytest.raises(ValidationError, match="collapse"):
            WarpMap.build([_m(1.0, 2.0), _m(2.0, 2.0)], 4.0)

    def test_marker_collapsing_onto_origin_rejected(self) -> None:
        with pytest.raises(ValidationError, match="origin"):
            WarpMap.build([_m(1.0, 0.0)], 4.0)

    def test_negative_time_rejected(self) -> None:
        with pytest.raises(ValidationError, match="non-negative"):
            WarpMap.build([_m(-0.5, 1.0)], 4.0)

    def test_nan_rejected(self) -> None:
        with pytest.raises(ValidationError, match="finite"):
            WarpMap.build([_m(1.0, float("nan"))], 4.0)

    def test_marker_type_does_not_affect_mapping(self) -> None:
        anchor = WarpMarker.create(1.0, 2.0, marker_type=MarkerType.ANCHOR, is_anchor=True)
        assert WarpMap.build([anchor], 2.0) == WarpMap.build([_m(1.0, 2.0)], 2.0)
