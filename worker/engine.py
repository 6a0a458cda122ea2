"""
worker/engine.py — WarpEngine: explicit entry point over the pure core.

WarpEngine wires the core modules together behind one object:

    SampleBuffer (+ markers / options)
        │
        ├─ WarpMap.build()          [core/warp/warp_map.py]
        ├─ detect_onsets()          [core/warp/transients.py]
        ├─ quantize()               [core/warp/quantize.py]
        ├─ render()                 [core/warp/render.py]
        │       ├─ stretchers        [core/warp/stretch.py]
        │       ├─ pitch_shift()     [core/warp/pitch.py]
        │       └─ apply_chain()     [core/dynamics/chain.py]
        ├─ analyze()                [core/signal_metrics/metrics.py]
        │
        └─ ResultCache              [infrastructure/cache.py]

Design:
    - No module-level singleton: callers construct an engine (tests build a
      fresh one per case) and pass it where it is needed.
    - The cache is an internal field; it only short-circuits identical
      requests on identical audio and never changes a result.
    - Every core error propagates unchanged; the job layer decides status.
"""

from __future__ import annotations

import dataclasses
import logging
import threading
from collections.abc import Sequence

from core.buffer import SampleBuffer
from core.config import DEFAULT_TRANSIENT_SETTINGS, EngineConfig, TransientSettings
from core.dynamics.chain import DynamicsStage, apply_chain
from core.errors import EngineError, RenderCancelledError
from core.signal_metrics import AnalysisResult, analyze
from core.warp.quantize import quantize
from core.warp.render import RenderRequest, RenderResult, render
from core.warp.transients import analyze_transients, detect_onsets
from core.warp.types import Onset, TransientAnalysis, WarpMarker
from core.warp.warp_map import WarpMap
from infrastructure.cache import ResultCache
from infrastructure.metrics import LatencyTimer, record_render

logger = logging.getLogger(__name__)


class WarpEngine:
    """Render, analysis and quantisation for one process or one test.

    Args:
        config: Engine limits and cache sizing; defaults to EngineConfig().
        cache:  Result cache to use; a new one sized from ``config`` if None.
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        cache: ResultCache | None = None,
    ) -> None:
        self.config = config or EngineConfig()
        self.cache = cache or ResultCache(
            max_size=self.config.cache_max_size,
            ttl_seconds=self.config.cache_ttl_seconds,
        )
        logger.info(
            "WarpEngine ready (cache max_size=%d ttl=%.0fs, max_stretch_ratio=%.1f)",
            self.cache.max_size,
            self.cache.ttl_seconds,
            self.config.max_stretch_ratio,
        )

    # ------------------------------------------------------------------
    # Warping
    # ------------------------------------------------------------------

    def warp_map(self, markers: Sequence[WarpMarker], clip_duration: float) -> WarpMap:
        """Validate markers and build the clip's map."""
        return WarpMap.build(markers, clip_duration)

    def render(
        self,
        buffer: SampleBuffer,
        request: RenderRequest,
        cancel: threading.Event | None = None,
    ) -> RenderResult:
        """Render with result caching keyed by buffer content and request.

        Raises:
            EngineError: Any core failure, unchanged.
        """
        key = self.cache.make_key(buffer.content_hash(), "render", request.cache_parts())
        cached = self.cache.get(key)
        if cached is not None:
            record_render(algorithm=request.algorithm, status="cache_hit", latency_seconds=0.0)
            return dataclasses.replace(cached, cache_hit=True)

        with LatencyTimer() as timer:
            try:
                result = render(buffer, request, self.config, cancel)
            except RenderCancelledError:
                record_render(
                    algorithm=request.algorithm, status="cancelled", latency_seconds=0.0
                )
                raise
            except EngineError:
                record_render(algorithm=request.algorithm, status="error", latency_seconds=0.0)
                raise

        record_render(algorithm=request.algorithm, status="ok", latency_seconds=timer.elapsed)
        self.cache.put(key, result)
        return result

    def preview(
        self,
        buffer: SampleBuffer,
        markers: Sequence[WarpMarker],
        start: float,
        end: float,
        cancel: threading.Event | None = None,
        **options: object,
    ) -> RenderResult:
        """Render a bounded range with preview defaults."""
        return self.render(buffer, RenderRequest.preview(markers, start, end, **options), cancel)

    def commit(
        self,
        buffer: SampleBuffer,
        markers: Sequence[WarpMarker],
        cancel: threading.Event | None = None,
        **options: object,
    ) -> RenderResult:
        """Render the whole clip with commit defaults."""
        return self.render(buffer, RenderRequest.commit(markers, **options), cancel)

    # ------------------------------------------------------------------
    # Onsets and tempo
    # ------------------------------------------------------------------

    def detect_transients(
        self,
        buffer: SampleBuffer,
        sensitivity: float = 0.5,
        min_gap_sec: float = 0.05,
        settings: TransientSettings = DEFAULT_TRANSIENT_SETTINGS,
    ) -> tuple[Onset, ...]:
        return detect_onsets(buffer, None, sensitivity, min_gap_sec, settings)

    def analyze_transients(
        self,
        buffer: SampleBuffer,
        sensitivity: float = 0.5,
        min_gap_sec: float = 0.05,
        detect_beats: bool = True,
    ) -> TransientAnalysis:
        return analyze_transients(buffer, None, sensitivity, min_gap_sec, detect_beats)

    def quantize(
        self,
        buffer: SampleBuffer,
        target_bpm: float,
        strength: float = 1.0,
        sensitivity: float = 0.5,
        min_gap_sec: float = 0.05,
        subdivision: int = 1,
        grid_offset: float = 0.0,
    ) -> tuple[WarpMarker, ...]:
        return quantize(
            buffer,
            None,
            target_bpm=target_bpm,
            strength=strength,
            sensitivity=sensitivity,
            min_gap_sec=min_gap_sec,
            subdivision=subdivision,
            grid_offset=grid_offset,
        )

    # ------------------------------------------------------------------
    # Metrics and dynamics
    # ------------------------------------------------------------------

    def analyze(self, buffer: SampleBuffer) -> AnalysisResult:
        """Signal metrics, cached by buffer content."""
        key = self.cache.make_key(buffer.content_hash(), "analyze")
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        result = analyze(buffer)
        self.cache.put(key, result)
        return result

    def process_chain(
        self, buffer: SampleBuffer, stages: Sequence[DynamicsStage]
    ) -> SampleBuffer:
        """Apply dynamics stages in order and return a new buffer."""
        return apply_chain(buffer, stages)
