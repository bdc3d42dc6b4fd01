"""Load declarative dimension content from bundled JSON resources."""

from __future__ import annotations

import json
from importlib import resources
from pathlib import Path
from typing import Any

from .compound import DIMENSION_FIELDS
from .dimensions import Dimension, DimensionRegistry, LadderDimension, RhythmDimension, TieredDimension
from .models import DimensionValue

CONTENT_PACKAGE = "chopstrainer.content.dimensions"
DIMENSION_KINDS = {"ladder", "rhythm", "tiered"}


def _value_from_dict(dimension: str, raw: dict[str, Any]) -> DimensionValue:
    """Build one dimension value from raw JSON content."""
    value_id = str(raw.get("id", "")).strip()
    if not value_id:
        raise ValueError(f"Dimension '{dimension}' has a value without an id.")
    tier_raw = raw.get("tier")
    notes_raw = raw.get("notes_per_beat")
    return DimensionValue(
        id=value_id,
        next=tuple(str(item).strip() for item in raw.get("next", []) if str(item).strip()),
        tier=int(tier_raw) if tier_raw is not None else None,
        description=str(raw.get("description", "")),
        notes_per_beat=int(notes_raw) if notes_raw is not None else None,
    )


def _dimension_from_dict(raw: dict[str, Any]) -> Dimension:
    """Build a dimension from raw JSON content."""
    name = str(raw["name"])
    if name not in DIMENSION_FIELDS:
        raise ValueError(f"Unknown dimension name: {name}")
    kind = str(raw.get("kind", "ladder"))
    if kind not in DIMENSION_KINDS:
        raise ValueError(f"Dimension '{name}' has unknown kind '{kind}'.")
    values = [_value_from_dict(name, item) for item in raw.get("values", [])]
    if not values:
        raise ValueError(f"Dimension '{name}' has no values.")
    entry_point = str(raw.get("entry_point", values[0].id))
    gateway = bool(raw.get("gateway", False))

    if kind == "rhythm":
        for value in values:
            if value.notes_per_beat is None or value.notes_per_beat < 1:
                raise ValueError(f"Rhythm '{value.id}' needs a positive notes_per_beat.")
        dimension: Dimension = RhythmDimension(name, entry_point, values, gateway=gateway)
    elif kind == "tiered":
        dimension = TieredDimension(name, entry_point, values, gateway=gateway)
    else:
        dimension = LadderDimension(name, entry_point, values, gateway=gateway)
    _validate_next_links(dimension, values)
    return dimension


def load_dimensions() -> DimensionRegistry:
    """Load bundled dimensions."""
    raw_items = [
        json.loads(entry.read_text(encoding="utf-8-sig"))
        for entry in sorted(resources.files(CONTENT_PACKAGE).iterdir(), key=lambda item: item.name)
        if entry.name.endswith(".json")
    ]
    return _registry_from_raw(raw_items)


def load_dimensions_from_dir(path: Path) -> DimensionRegistry:
    """Load dimensions from directory for tests/tools."""
    raw_items = [json.loads(file_path.read_text(encoding="utf-8-sig")) for file_path in sorted(path.glob("*.json"))]
    return _registry_from_raw(raw_items)


def _registry_from_raw(raw_items: list[dict[str, Any]]) -> DimensionRegistry:
    """Build and validate a registry from parsed JSON documents."""
    registry = DimensionRegistry()
    for raw in raw_items:
        dimension = _dimension_from_dict(raw)
        if registry.has(dimension.name):
            raise ValueError(f"Duplicate dimension: {dimension.name}")
        registry.register(dimension)
    for required in ("scale", "position", "rhythm"):
        if not registry.has(required):
            raise ValueError(f"Missing required dimension: {required}")
    if not isinstance(registry.get("rhythm"), RhythmDimension):
        raise ValueError("Dimension 'rhythm' must use kind 'rhythm'.")
    return registry


def _validate_next_links(dimension: Dimension, values: list[DimensionValue]) -> None:
    """Validate that every `next` link points at a known value."""
    for value in values:
        for target in value.next:
            if not dimension.contains(target):
                raise ValueError(f"Dimension '{dimension.name}' value '{value.id}' links to unknown '{target}'.")
            if target == value.id:
                raise ValueError(f"Dimension '{dimension.name}' value '{value.id}' links to itself.")
