"""Dimension capabilities: legal values, entry points and neighbor relations."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from dataclasses import replace

from .compound import DIMENSION_FIELDS
from .models import Compound, DimensionValue


class Dimension(ABC):
    """Abstract axis of variation with an ordered value list.

    Subclasses define the neighbor relation and the prerequisite walk.
    """

    def __init__(self, name: str, entry_point: str, values: Iterable[DimensionValue]) -> None:
        """Initialize dimension and index its values."""
        if name not in DIMENSION_FIELDS:
            raise ValueError(f"Unknown dimension name: {name}")
        self.name = name
        self._values = list(values)
        self._by_id = {value.id: value for value in self._values}
        if len(self._by_id) != len(self._values):
            raise ValueError(f"Dimension '{name}' has duplicate value ids.")
        if entry_point not in self._by_id:
            raise ValueError(f"Dimension '{name}' entry point '{entry_point}' is not a known value.")
        self._entry_point = entry_point

    @property
    def field(self) -> str:
        """Compound attribute that stores this dimension's value."""
        return DIMENSION_FIELDS[self.name][0]

    def entry_point(self) -> str:
        """Return the beginner value."""
        return self._entry_point

    def all_values(self) -> list[str]:
        """Return all legal value ids in declared order."""
        return [value.id for value in self._values]

    def contains(self, value: str) -> bool:
        """Return whether a value id is legal on this axis."""
        return value in self._by_id

    def get(self, value: str) -> DimensionValue:
        """Return value metadata."""
        try:
            return self._by_id[value]
        except KeyError:
            raise KeyError(f"Unknown {self.name} value: {value}") from None

    @abstractmethod
    def neighbors(self, value: str) -> list[str]:
        """Return values one step away from `value`."""
        ...

    @abstractmethod
    def prerequisites(self, value: str) -> list[str]:
        """Return simpler values that precede `value` in the progression."""
        ...

    def describe(self, value: str) -> str:
        """Return a display label for a value."""
        return value.replace("_", " ")

    def value_of(self, compound: Compound) -> str | None:
        """Return this dimension's value on a compound."""
        result: str | None = getattr(compound, self.field)
        return result

    def apply(self, compound: Compound, value: str) -> Compound:
        """Return a copy of `compound` with this dimension set to `value`."""
        return replace(compound, **{self.field: value})


class LadderDimension(Dimension):
    """Dimension whose values form a directed ladder via `next` links.

    With ``gateway=True`` only the first `next` entry is offered as a forward
    step, so a learner climbs one rung at a time.
    """

    def __init__(
        self, name: str, entry_point: str, values: Iterable[DimensionValue], *, gateway: bool = False
    ) -> None:
        """Initialize ladder dimension."""
        super().__init__(name, entry_point, values)
        self.gateway = gateway

    def neighbors(self, value: str) -> list[str]:
        """Return forward rungs followed by reverse rungs."""
        current = self._by_id.get(value)
        if current is None:
            return []
        forward = list(current.next[:1] if self.gateway else current.next)
        reverse = [item.id for item in self._values if value in item.next]
        return _unique(item for item in forward + reverse if item in self._by_id and item != value)

    def prerequisites(self, value: str) -> list[str]:
        """Walk the ladder backwards breadth-first."""
        result: list[str] = []
        visited: set[str] = set()
        queue = [item.id for item in self._values if value in item.next]
        while queue:
            current = queue.pop(0)
            if current in visited:
                continue
            visited.add(current)
            result.append(current)
            queue.extend(item.id for item in self._values if current in item.next and item.id not in visited)
        return result


class RhythmDimension(LadderDimension):
    """Rhythm ladder where each value also carries a note sub-pattern."""

    def notes_per_beat(self, value: str) -> int:
        """Return notes per beat, defaulting to 2 for unknown rhythms."""
        current = self._by_id.get(value)
        if current is None or current.notes_per_beat is None:
            return 2
        return current.notes_per_beat

    def continuous_pattern(self, value: str) -> str:
        """Return the all-notes pattern for a rhythm (e.g. ``xxx`` for triplets)."""
        return "x" * self.notes_per_beat(value)

    def apply(self, compound: Compound, value: str) -> Compound:
        """Set rhythm and reset its pattern to the continuous one."""
        return replace(compound, rhythm=value, rhythm_pattern=self.continuous_pattern(value))


class TieredDimension(Dimension):
    """Dimension grouped into difficulty tiers.

    Lateral moves within a tier and moves down a tier are always allowed.
    Moving up reaches either the first value of the next tier (``gateway``)
    or the `next` entries that sit in the next tier.
    """

    def __init__(
        self, name: str, entry_point: str, values: Iterable[DimensionValue], *, gateway: bool = False
    ) -> None:
        """Initialize tiered dimension and build tier lookups."""
        super().__init__(name, entry_point, values)
        self.gateway = gateway
        self._tiers: dict[int, list[str]] = {}
        for item in self._values:
            if item.tier is None:
                raise ValueError(f"Tiered dimension '{name}' value '{item.id}' has no tier.")
            self._tiers.setdefault(item.tier, []).append(item.id)

    def tier_of(self, value: str) -> int | None:
        """Return the difficulty tier of a value."""
        current = self._by_id.get(value)
        return current.tier if current is not None else None

    def neighbors(self, value: str) -> list[str]:
        """Return same-tier, lower-tier, then next-tier values."""
        tier = self.tier_of(value)
        if tier is None:
            return []
        result = [item for item in self._tiers.get(tier, []) if item != value]
        result.extend(self._tiers.get(tier - 1, []))
        higher = self._tiers.get(tier + 1, [])
        if self.gateway:
            result.extend(higher[:1])
        else:
            result.extend(item for item in self._by_id[value].next if self.tier_of(item) == tier + 1)
        return _unique(result)

    def prerequisites(self, value: str) -> list[str]:
        """Return all values in lower tiers."""
        tier = self.tier_of(value)
        if tier is None:
            return []
        return [item for lower in sorted(self._tiers) if lower < tier for item in self._tiers[lower]]


class DimensionRegistry:
    """Central lookup for every configured dimension."""

    def __init__(self, dimensions: Iterable[Dimension] = ()) -> None:
        """Initialize registry."""
        self._dimensions: dict[str, Dimension] = {}
        for dimension in dimensions:
            self.register(dimension)

    def register(self, dimension: Dimension) -> None:
        """Add or replace a dimension by name."""
        self._dimensions[dimension.name] = dimension

    def get(self, name: str) -> Dimension:
        """Return dimension by name."""
        try:
            return self._dimensions[name]
        except KeyError:
            raise KeyError(f"Dimension not found: {name}") from None

    def has(self, name: str) -> bool:
        """Return whether a dimension is registered."""
        return name in self._dimensions

    def names(self) -> list[str]:
        """Return registered dimension names in canonical order."""
        return [name for name in DIMENSION_FIELDS if name in self._dimensions]

    @property
    def rhythm(self) -> RhythmDimension:
        """Typed accessor for the rhythm dimension."""
        dimension = self.get("rhythm")
        if not isinstance(dimension, RhythmDimension):
            raise TypeError("Registered rhythm dimension does not carry note sub-patterns.")
        return dimension

    def entry_compound(self) -> Compound:
        """Return the all-entry-point compound across every registered dimension."""
        return self.build_compound({name: self.get(name).entry_point() for name in self.names()})

    def build_compound(self, values: Mapping[str, str], rhythm_pattern: str | None = None) -> Compound:
        """Build a validated compound from dimension name -> value.

        Every registered tier-0 style dimension (scale, position, rhythm) is
        required; note-pattern and articulation are optional. Unknown
        dimension names or values raise ``ValueError``.
        """
        unknown = [name for name in values if name not in self._dimensions]
        if unknown:
            raise ValueError(f"Unknown dimension(s): {', '.join(sorted(unknown))}")
        for required in ("scale", "position", "rhythm"):
            if required not in values:
                raise ValueError(f"Missing value for dimension '{required}'.")
        for name, value in values.items():
            if not self.get(name).contains(value):
                raise ValueError(f"Unknown {name} value: {value}")
        rhythm = values["rhythm"]
        pattern = rhythm_pattern or self.rhythm.continuous_pattern(rhythm)
        if not set(pattern) <= {"x", "-"} or "x" not in pattern:
            raise ValueError(f"Invalid rhythm pattern: {pattern}")
        if len(pattern) != self.rhythm.notes_per_beat(rhythm):
            raise ValueError(f"Rhythm pattern '{pattern}' does not match {rhythm}.")
        return Compound(
            scale=values["scale"],
            position=values["position"],
            rhythm=rhythm,
            rhythm_pattern=pattern,
            note_pattern=values.get("note-pattern"),
            articulation=values.get("articulation"),
        )

    def validate_compound(self, compound: Compound) -> Compound:
        """Raise ``ValueError`` if a compound uses values unknown to the registry."""
        values = {name: value for name in self.names() if (value := self.get(name).value_of(compound)) is not None}
        self.build_compound(values, compound.rhythm_pattern)
        return compound


def _unique(items: Iterable[str]) -> list[str]:
    """De-duplicate while preserving order."""
    seen: set[str] = set()
    result: list[str] = []
    for item in items:
        if item not in seen:
            seen.add(item)
            result.append(item)
    return result
