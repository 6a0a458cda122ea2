"""
core/warp — Clip warping: marker maps, onset detection, quantisation, rendering.

All functions are pure: numpy arrays / SampleBuffer in → frozen results out.
The only optional shared input is a threading.Event used to cancel a render.

Public API:
    Types:       WarpMarker, MarkerType, Onset, TempoMapping, TransientAnalysis
    Map:         WarpMap
    Onsets:      detect_onsets, analyze_transients, onset_times, estimate_tempo
    Quantise:    quantize, grid_markers_from_onsets, tempo_mapping, tempo_markers
    Render:      RenderRequest, RenderResult, render
    Algorithms:  make_stretcher, pitch_shift
"""

from core.warp.pitch import pitch_shift
from core.warp.quantize import grid_markers_from_onsets, quantize, tempo_mapping, tempo_markers
from core.warp.render import RenderRequest, RenderResult, render
from core.warp.stretch import (
    PhaseLockedVocoderStretcher,
    PhaseVocoderStretcher,
    WsolaStretcher,
    make_stretcher,
)
from core.warp.transients import analyze_transients, detect_onsets, estimate_tempo, onset_times
from core.warp.types import MarkerType, Onset, TempoMapping, TransientAnalysis, WarpMarker
from core.warp.warp_map import WarpMap

__all__ = [
    "MarkerType",
    "Onset",
    "TempoMapping",
    "TransientAnalysis",
    "WarpMarker",
    "WarpMap",
    "analyze_transients",
    "detect_onsets",
    "estimate_tempo",
    "onset_times",
    "grid_markers_from_onsets",
    "quantize",
    "tempo_mapping",
    "tempo_markers",
    "RenderRequest",
    "RenderResult",
    "render",
    "PhaseLockedVocoderStretcher",
    "PhaseVocoderStretcher",
    "WsolaStretcher",
    "make_stretcher",
    "pitch_shift",
]
