"""
core/dynamics/presets.py — Named processing-chain presets.

Presets are bundled as YAML files in core/dynamics/preset_data/ and read with
importlib.resources. Results are cached in a module-level dict so each file
is parsed once per process (the data is static and read-only).
"""

from __future__ import annotations

import importlib.resources
from dataclasses import dataclass
from typing import Any

import yaml

from core.dynamics.chain import DynamicsStage, stage_from_dict
from core.errors import ValidationError

_CATEGORY_FILES: dict[str, str] = {
    "mixing": "mixing.yaml",
    "mastering": "mastering.yaml",
}

_CACHE: dict[str, tuple[Preset, ...]] = {}


@dataclass(frozen=True)
class Preset:
    """A named, ordered processing chain."""

    id: str
    name: str
    description: str
    category: str
    stages: tuple[DynamicsStage, ...]
    target_lufs: float | None = None


def available_categories() -> list[str]:
    return sorted(_CATEGORY_FILES)


def load_presets(category: str) -> tuple[Preset, ...]:
    """Return every preset in a category.

    Raises:
        ValidationError: If the category is unknown.
    """
    key = category.lower().strip()
    if key in _CACHE:
        return _CACHE[key]

    filename = _CATEGORY_FILES.get(key)
    if filename is None:
        raise ValidationError(
            f"Unknown preset category {category!r}. Available: {available_categories()}"
        )

    pkg = importlib.resources.files("core.dynamics.preset_data")
    data: dict[str, Any] = yaml.safe_load((pkg / filename).read_text(encoding="utf-8"))
    presets = tuple(_parse_preset(item, key) for item in data.get("presets", []))
    _CACHE[key] = presets
    return presets


def get_preset(preset_id: str) -> Preset:
    """Find a preset by id across all categories.

    Raises:
        ValidationError: If no preset has that id.
    """
    for category in available_categories():
        for preset in load_presets(category):
            if preset.id == preset_id:
                return preset
    raise ValidationError(f"Unknown preset {preset_id!r}")


def _parse_preset(data: dict[str, Any], category: str) -> Preset:
    target = data.get("target_lufs")
    return Preset(
        id=data["id"],
        name=data["name"],
        description=data.get("description", ""),
        category=category,
        stages=tuple(stage_from_dict(stage) for stage in data.get("chain", [])),
        target_lufs=float(target) if target is not None else None,
    )


def preset_chain(preset_id: str) -> tuple[DynamicsStage, ...]:
    """Stages of a preset, ready for apply_chain()."""
    return get_preset(preset_id).stages
