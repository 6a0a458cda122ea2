"""
core/dynamics — Sequential gain / compressor / limiter processing.

All functions are pure: numpy arrays (or SampleBuffer) in → new arrays out.
Stage types that are not implemented (eq, reverb) pass the signal through.

Public API:
    Stages:   GainStage, CompressorStage, LimiterStage, PassthroughStage
    Chain:    apply_chain, apply_stage, stage_from_dict, stages_from_dicts
    Presets:  Preset, load_presets, get_preset, preset_chain, available_categories
"""

from core.dynamics.chain import (
    CompressorStage,
    DynamicsStage,
    GainStage,
    LimiterStage,
    PassthroughStage,
    apply_chain,
    apply_compressor,
    apply_gain,
    apply_limiter,
    apply_stage,
    stage_from_dict,
    stages_from_dicts,
)
from core.dynamics.presets import (
    Preset,
    available_categories,
    get_preset,
    load_presets,
    preset_chain,
)

__all__ = [
    "CompressorStage",
    "DynamicsStage",
    "GainStage",
    "LimiterStage",
    "PassthroughStage",
    "apply_chain",
    "apply_compressor",
    "apply_gain",
    "apply_limiter",
    "apply_stage",
    "stage_from_dict",
    "stages_from_dicts",
    "Preset",
    "available_categories",
    "get_preset",
    "load_presets",
    "preset_chain",
]
