"""Configuration dataclasses for progression thresholds and scoring weights.

Every config is a frozen ``dataclass`` with a ``validate()`` method that
raises ``ValueError`` on out-of-range values. Settings are loaded once per
process (defaults, optionally overridden by a JSON file) and never mutated
during a run.
"""

from __future__ import annotations

import json
import logging
import math
from collections.abc import Mapping
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from types import MappingProxyType
from typing import Any

from .compound import DIMENSION_FIELDS

logger = logging.getLogger(__name__)

DEFAULT_TRANSFER_COEFFICIENT = 0.5


@dataclass(frozen=True)
class ProgressionConfig:
    """Speed thresholds (notes per minute) driving the compound state machine.

    Attributes
    ----------
    expansion_npm:
        First attempt at or above this speed marks the compound expanded and
        lets the recommender branch out to its neighbors.
    mastery_npm:
        Attempts at or above this speed extend the mastery streak.
    mastery_streak:
        Consecutive attempts at mastery speed needed to master a compound.
    """

    expansion_npm: float = 400.0
    mastery_npm: float = 480.0
    mastery_streak: int = 3

    def validate(self) -> None:
        """Raise ``ValueError`` if any field is out of valid range."""
        if self.expansion_npm <= 0:
            raise ValueError(f"expansion_npm must be > 0, got {self.expansion_npm}")
        if self.mastery_npm < self.expansion_npm:
            raise ValueError(
                f"mastery_npm ({self.mastery_npm}) must be >= expansion_npm ({self.expansion_npm})"
            )
        if self.mastery_streak < 1:
            raise ValueError(f"mastery_streak must be >= 1, got {self.mastery_streak}")


@dataclass(frozen=True)
class ScoringConfig:
    """Weights and windows for the four candidate scorers.

    Attributes
    ----------
    consolidation_weight, staleness_weight, readiness_weight, diversity_weight:
        Linear weights applied to each raw factor.
    staleness_sessions:
        Sessions without practice after which raw staleness saturates at 1.
    transfer_coefficients:
        Per-dimension discount used when estimating readiness of an untried
        compound from practiced neighbors.
    diversity_lookback:
        Number of recent attempts inspected for recently changed dimensions.
    """

    consolidation_weight: float = 1.0
    staleness_weight: float = 0.5
    readiness_weight: float = 0.8
    diversity_weight: float = 0.2
    staleness_sessions: int = 10
    transfer_coefficients: Mapping[str, float] = field(
        default_factory=lambda: {
            "scale": 0.5,
            "rhythm": 0.6,
            "note-pattern": 0.5,
            "position": 0.5,
            "articulation": 0.7,
        }
    )
    diversity_lookback: int = 3

    def __post_init__(self) -> None:
        # Read-only view so a shared config cannot be changed after construction.
        object.__setattr__(self, "transfer_coefficients", MappingProxyType(dict(self.transfer_coefficients)))

    def transfer_coefficient(self, dimension: str | None) -> float:
        """Return the coefficient for a dimension, or the default one."""
        if dimension is None:
            return DEFAULT_TRANSFER_COEFFICIENT
        return self.transfer_coefficients.get(dimension, DEFAULT_TRANSFER_COEFFICIENT)

    def validate(self) -> None:
        """Raise ``ValueError`` if any field is out of valid range."""
        for name in ("consolidation_weight", "staleness_weight", "readiness_weight", "diversity_weight"):
            value = getattr(self, name)
            if value < 0:
                raise ValueError(f"{name} must be >= 0, got {value}")
        if self.staleness_sessions < 1:
            raise ValueError(f"staleness_sessions must be >= 1, got {self.staleness_sessions}")
        if self.diversity_lookback < 0:
            raise ValueError(f"diversity_lookback must be >= 0, got {self.diversity_lookback}")
        for dimension, value in self.transfer_coefficients.items():
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"transfer coefficient for {dimension} must be in [0, 1], got {value}")


@dataclass(frozen=True)
class SpeedTiers:
    """Upper bounds (exclusive) of the named speed bands, in NPM."""

    struggling: float = 200.0
    developing: float = 280.0
    progressing: float = 400.0
    fast: float = 440.0
    very_fast: float = 480.0
    super_fast: float = 560.0

    def validate(self) -> None:
        """Raise ``ValueError`` unless bands are strictly increasing."""
        bounds = [getattr(self, item.name) for item in fields(self)]
        if any(lower >= upper for lower, upper in zip(bounds, bounds[1:], strict=False)):
            raise ValueError(f"speed tiers must be strictly increasing, got {bounds}")
        if bounds[0] <= 0:
            raise ValueError(f"struggling bound must be > 0, got {bounds[0]}")


@dataclass(frozen=True)
class StrugglingConfig:
    """Consecutive below-threshold attempts before a compound is reported as struggling."""

    streak_threshold: int = 1

    def validate(self) -> None:
        """Raise ``ValueError`` if any field is out of valid range."""
        if self.streak_threshold < 1:
            raise ValueError(f"streak_threshold must be >= 1, got {self.streak_threshold}")


@dataclass(frozen=True)
class DimensionTier:
    """Unlock rank of one dimension."""

    name: str
    tier: int
    unlock_requirement: int = 5

    def validate(self) -> None:
        """Raise ``ValueError`` if any field is out of valid range."""
        if self.tier < 0:
            raise ValueError(f"tier for {self.name} must be >= 0, got {self.tier}")
        if self.tier > 0 and self.unlock_requirement < 1:
            raise ValueError(f"unlock_requirement for {self.name} must be >= 1, got {self.unlock_requirement}")


def _default_tiers() -> tuple[DimensionTier, ...]:
    return (
        DimensionTier(name="scale", tier=0),
        DimensionTier(name="position", tier=0),
        DimensionTier(name="rhythm", tier=0),
        DimensionTier(name="note-pattern", tier=1, unlock_requirement=1),
        DimensionTier(name="articulation", tier=2, unlock_requirement=1),
    )


@dataclass(frozen=True)
class Settings:
    """Top-level configuration aggregating every section."""

    ema_alpha: float = 0.3
    progression: ProgressionConfig = field(default_factory=ProgressionConfig)
    scoring: ScoringConfig = field(default_factory=ScoringConfig)
    speed_tiers: SpeedTiers = field(default_factory=SpeedTiers)
    struggling: StrugglingConfig = field(default_factory=StrugglingConfig)
    dimension_tiers: tuple[DimensionTier, ...] = field(default_factory=_default_tiers)
    keys: tuple[str, ...] = ("C", "Db", "D", "Eb", "E", "F", "Gb", "G", "Ab", "A", "Bb", "B")

    @property
    def struggling_npm(self) -> float:
        """Speed below which an attempt counts as struggling."""
        return self.speed_tiers.struggling

    def tier_of(self, dimension: str) -> int:
        """Return configured tier for a dimension (unconfigured dimensions are tier 0)."""
        for item in self.dimension_tiers:
            if item.name == dimension:
                return item.tier
        return 0

    def validate(self) -> None:
        """Validate every section; raise ``ValueError`` on the first problem."""
        if not 0.0 < self.ema_alpha <= 1.0:
            raise ValueError(f"ema_alpha must be in (0, 1], got {self.ema_alpha}")
        self.progression.validate()
        self.scoring.validate()
        self.speed_tiers.validate()
        self.struggling.validate()
        names = [item.name for item in self.dimension_tiers]
        if len(set(names)) != len(names):
            raise ValueError(f"dimension tiers contain duplicates: {names}")
        unknown = sorted(set(names) - set(DIMENSION_FIELDS))
        if unknown:
            raise ValueError(f"dimension tiers name unknown dimension(s): {', '.join(unknown)}")
        for item in self.dimension_tiers:
            item.validate()
        if not any(item.tier == 0 for item in self.dimension_tiers):
            raise ValueError("at least one dimension must be tier 0")
        if not self.keys:
            raise ValueError("keys must not be empty")


DEFAULT_SETTINGS = Settings()


def settings_from_dict(raw: dict[str, Any]) -> Settings:
    """Build settings from a (partial) JSON-like mapping merged onto defaults.

    Values are coerced to the type of the field they override; anything that
    cannot be coerced raises ``ValueError``.
    """
    known = {item.name for item in fields(Settings)}
    unknown = sorted(set(raw) - known)
    if unknown:
        raise ValueError(f"Unknown settings key(s): {', '.join(unknown)}")

    settings = DEFAULT_SETTINGS
    if "ema_alpha" in raw:
        settings = replace(settings, ema_alpha=_number(raw["ema_alpha"], "ema_alpha"))
    for section in ("progression", "scoring", "speed_tiers", "struggling"):
        if section in raw:
            settings = replace(settings, **{section: _merge_section(getattr(settings, section), raw[section], section)})
    if "dimension_tiers" in raw:
        settings = replace(settings, dimension_tiers=_parse_tiers(raw["dimension_tiers"]))
    if "keys" in raw:
        keys = raw["keys"]
        if not isinstance(keys, list) or not all(isinstance(key, str) and key.strip() for key in keys):
            raise ValueError("keys must be a list of non-empty strings.")
        settings = replace(settings, keys=tuple(key.strip() for key in keys))

    settings.validate()
    return settings


def _number(value: object, name: str, *, integer: bool = False) -> Any:
    """Coerce a JSON scalar to a finite float (or int), raising ``ValueError`` otherwise."""
    if isinstance(value, bool) or not isinstance(value, int | float | str):
        raise ValueError(f"{name} must be a number, got {value!r}")
    try:
        number = float(value)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {value!r}") from None
    if not math.isfinite(number):
        raise ValueError(f"{name} must be finite, got {value!r}")
    if integer:
        if not number.is_integer():
            raise ValueError(f"{name} must be an integer, got {value!r}")
        return int(number)
    return number


def _merge_section(current: Any, overrides: object, section: str) -> Any:
    """Return a copy of a config section with coerced overrides applied."""
    if not isinstance(overrides, dict):
        raise ValueError(f"Settings section '{section}' must be an object.")
    allowed = {item.name for item in fields(current)}
    unknown = sorted(set(overrides) - allowed)
    if unknown:
        raise ValueError(f"Unknown key(s) in settings section '{section}': {', '.join(unknown)}")
    coerced: dict[str, Any] = {}
    for name, value in overrides.items():
        label = f"{section}.{name}"
        if name == "transfer_coefficients":
            if not isinstance(value, dict):
                raise ValueError(f"{label} must be an object.")
            merged = dict(current.transfer_coefficients)
            merged.update({str(key): _number(item, f"{label}.{key}") for key, item in value.items()})
            coerced[name] = merged
        else:
            coerced[name] = _number(value, label, integer=isinstance(getattr(current, name), int))
    return replace(current, **coerced)


def _parse_tiers(raw: object) -> tuple[DimensionTier, ...]:
    """Parse the ``dimension_tiers`` list."""
    if not isinstance(raw, list):
        raise ValueError("dimension_tiers must be a list.")
    allowed = {item.name for item in fields(DimensionTier)}
    tiers: list[DimensionTier] = []
    for index, item in enumerate(raw):
        if not isinstance(item, dict):
            raise ValueError(f"dimension_tiers[{index}] must be an object.")
        unknown = sorted(set(item) - allowed)
        if unknown:
            raise ValueError(f"Unknown key(s) in dimension_tiers[{index}]: {', '.join(unknown)}")
        name = item.get("name")
        if not isinstance(name, str) or not name:
            raise ValueError(f"dimension_tiers[{index}] needs a 'name'.")
        if "tier" not in item:
            raise ValueError(f"dimension_tiers[{index}] needs a 'tier'.")
        tiers.append(
            DimensionTier(
                name=name,
                tier=_number(item["tier"], f"{name}.tier", integer=True),
                unlock_requirement=_number(
                    item.get("unlock_requirement", 5), f"{name}.unlock_requirement", integer=True
                ),
            )
        )
    return tuple(tiers)


def load_settings(path: Path | str | None = None) -> Settings:
    """Load settings from a JSON file, falling back to defaults when absent."""
    if path is None:
        return DEFAULT_SETTINGS
    target = Path(path)
    if not target.exists():
        logger.debug("Settings file %s not found, using defaults", target)
        return DEFAULT_SETTINGS
    raw: object = json.loads(target.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValueError("Settings file root must be a JSON object.")
    logger.info("Loaded settings overrides from %s", target)
    return settings_from_dict(raw)
