"""Prometheus metrics for the warp engine.

Labels carry the stretch algorithm and job kind so dashboards show which
parts of the render workload are slow or failing, not just totals.

Metrics:
    warp_render_requests_total     Counter by algorithm and status (ok/error/cancelled)
    warp_render_latency_seconds    Histogram of render wall-clock time by algorithm
    warp_cache_hits_total          Counter of result cache hits
    warp_cache_misses_total        Counter of result cache misses
    warp_jobs_total                Counter of finished jobs by kind and status

Usage::

    from infrastructure.metrics import LatencyTimer, record_render

    with LatencyTimer() as t:
        result = engine.render(buffer, request)
    record_render(algorithm="wsola", status="ok", latency_seconds=t.elapsed)
"""

from __future__ import annotations

import logging
import time

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

logger = logging.getLogger(__name__)

_REGISTRY = CollectorRegistry()

render_requests_total = Counter(
    "warp_render_requests_total",
    "Total renders by algorithm and outcome",
    ["algorithm", "status"],
    registry=_REGISTRY,
)

render_latency_seconds = Histogram(
    "warp_render_latency_seconds",
    "Render wall-clock time in seconds",
    ["algorithm"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
    registry=_REGISTRY,
)

cache_hits_total = Counter(
    "warp_cache_hits_total",
    "Result cache hits (in-memory)",
    registry=_REGISTRY,
)

cache_misses_total = Counter(
    "warp_cache_misses_total",
    "Result cache misses (in-memory)",
    registry=_REGISTRY,
)

jobs_total = Counter(
    "warp_jobs_total",
    "Finished jobs by kind and final status",
    ["kind", "status"],
    registry=_REGISTRY,
)


# ---------------------------------------------------------------------------
# Public helpers
# ---------------------------------------------------------------------------


def record_render(*, algorithm: str, status: str, latency_seconds: float) -> None:
    """Record a finished render attempt.

    Args:
        algorithm: Stretch algorithm label.
        status: One of "ok", "cache_hit", "error", "cancelled".
        latency_seconds: Wall-clock time in seconds.
    """
    render_requests_total.labels(algorithm=algorithm, status=status).inc()
    render_latency_seconds.labels(algorithm=algorithm).observe(latency_seconds)


def record_cache_hit() -> None:
    """Increment result cache hit counter."""
    cache_hits_total.inc()


def record_cache_miss() -> None:
    """Increment result cache miss counter."""
    cache_misses_total.inc()


def record_job(*, kind: str, status: str) -> None:
    """Increment the job counter.

    Args:
        kind: Job payload kind (preview, commit, quantize, ...).
        status: Final job status (completed or failed).
    """
    jobs_total.labels(kind=kind, status=status).inc()


def get_metrics_response() -> tuple[bytes, str]:
    """Generate Prometheus text exposition format.

    Returns:
        Tuple of (body_bytes, content_type_string).
    """
    return generate_latest(_REGISTRY), CONTENT_TYPE_LATEST


class LatencyTimer:
    """Context manager for measuring latency.

    Usage::

        with LatencyTimer() as t:
            result = run_render()
        record_render(algorithm="wsola", status="ok", latency_seconds=t.elapsed)
    """

    def __init__(self) -> None:
        """Initialize timer."""
        self._start: float = 0.0
        self.elapsed: float = 0.0

    def __enter__(self) -> LatencyTimer:
        """Start timing."""
        self._start = time.perf_counter()
        return self

    def __exit__(self, *_: object) -> None:
        """Stop timing and record elapsed."""
        self.elapsed = time.perf_counter() - self._start
