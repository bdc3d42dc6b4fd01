"""Canonical identity and comparison helpers for compounds."""

from __future__ import annotations

from .models import Compound, CompoundStats

# Dimension name -> Compound fields that carry its value. Order is canonical.
DIMENSION_FIELDS: dict[str, tuple[str, ...]] = {
    "scale": ("scale",),
    "position": ("position",),
    "rhythm": ("rhythm", "rhythm_pattern"),
    "note-pattern": ("note_pattern",),
    "articulation": ("articulation",),
}

DIMENSION_NAMES: tuple[str, ...] = tuple(DIMENSION_FIELDS)


def compound_id(compound: Compound) -> str:
    """Return the stable string identity of a compound.

    Format is ``scale+position+rhythm:pattern`` followed by ``+note_pattern``
    and ``+articulation`` when those dimensions are present.
    """
    parts = [compound.scale, compound.position, f"{compound.rhythm}:{compound.rhythm_pattern}"]
    if compound.note_pattern is not None:
        parts.append(compound.note_pattern)
    if compound.articulation is not None:
        parts.append(compound.articulation)
    return "+".join(parts)


def parse_compound_id(identifier: str) -> Compound:
    """Parse a canonical compound id back into a compound."""
    parts = identifier.split("+")
    if len(parts) < 3 or len(parts) > 5:
        raise ValueError(f"Invalid compound id: {identifier!r}")
    rhythm, sep, pattern = parts[2].partition(":")
    if not sep:
        raise ValueError(f"Invalid compound id (rhythm has no pattern): {identifier!r}")
    return Compound(
        scale=parts[0],
        position=parts[1],
        rhythm=rhythm,
        rhythm_pattern=pattern,
        note_pattern=parts[3] if len(parts) > 3 else None,
        articulation=parts[4] if len(parts) > 4 else None,
    )


def compounds_equal(a: Compound, b: Compound) -> bool:
    """Return whether every dimension value matches."""
    return a == b


def differing_dimensions(a: Compound, b: Compound) -> list[str]:
    """Return dimension names whose values differ, in canonical order."""
    return [
        name
        for name, fields in DIMENSION_FIELDS.items()
        if any(getattr(a, item) != getattr(b, item) for item in fields)
    ]


def changed_dimension(a: Compound, b: Compound) -> str | None:
    """Return the single differing dimension, or None for zero or several changes."""
    changes = differing_dimensions(a, b)
    return changes[0] if len(changes) == 1 else None


def dimension_distance(a: Compound, b: Compound) -> int:
    """Count dimensions that differ between two compounds."""
    return len(differing_dimensions(a, b))


def stats_to_compound(stats: CompoundStats) -> Compound:
    """Return the compound a statistics row is keyed by."""
    return stats.compound
