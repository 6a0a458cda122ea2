"""
core/errors.py — Typed error hierarchy for the warp engine.

Every failure that leaves the core is an EngineError subclass carrying a
stable ``kind`` string, so the job worker can record it without inspecting
exception types.

Propagation:
    - Signal metrics never raise (they degrade to floor/zero values).
    - Warp map, quantizer, render and payload parsing raise these errors.
    - Nothing here is retried: a deterministic input that failed once will
      fail identically again.
"""

from __future__ import annotations


class EngineError(Exception):
    """Base class for all warp engine failures."""

    kind: str = "engine"

    def to_dict(self) -> dict[str, str]:
        """Plain-data form used as a job failure payload."""
        return {"kind": self.kind, "message": str(self)}


class ValidationError(EngineError, ValueError):
    """Malformed marker set, out-of-range parameter, or illegal request."""

    kind = "validation"


class InsufficientDataError(EngineError):
    """Buffer too short for the requested operation."""

    kind = "insufficient_data"


class AlgorithmError(EngineError):
    """Internal numerical failure that cannot be clamped meaningfully."""

    kind = "algorithm"


class UnsupportedConfigurationError(EngineError):
    """Algorithm/quality combination that is not implemented."""

    kind = "unsupported_configuration"


class RenderCancelledError(EngineError):
    """Render aborted between blocks because the caller set its cancel flag."""

    kind = "cancelled"
