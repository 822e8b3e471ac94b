"""Immutable configuration shared by the Echo Score scorers and the selector."""

from __future__ import annotations

import json
import math
import os
from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

from difficulty_levels import DEFAULT_LEVEL_IDS, DifficultyLevelRegistry


@dataclass(frozen=True)
class ScoreWeights:
    """Aggregation weights for the five sub-scores; must sum to 1.0."""

    diversity: float = 0.25
    accuracy: float = 0.25
    switch_speed: float = 0.20
    consistency: float = 0.15
    improvement: float = 0.15

    def __post_init__(self) -> None:
        values = self.as_dict()
        for name, value in values.items():
            if not math.isfinite(value) or value < 0:
                raise ValueError(f"weight '{name}' must be a non-negative number")
        if not math.isclose(sum(values.values()), 1.0, abs_tol=1e-6):
            raise ValueError(f"weights must sum to 1.0 (got {sum(values.values()):.6f})")

    def as_dict(self) -> Dict[str, float]:
        return {f.name: float(getattr(self, f.name)) for f in fields(self)}

    @classmethod
    def from_value(cls, raw: Any) -> "ScoreWeights":
        """Build weights from a mapping or a five-item sequence."""

        if isinstance(raw, ScoreWeights):
            return raw
        if isinstance(raw, str):
            text = raw.strip()
            raw = json.loads(text) if text.startswith(("{", "[")) else text.split(",")
        if isinstance(raw, Mapping):
            aliases = {"switchSpeed": "switch_speed", "speed": "switch_speed"}
            kwargs = {aliases.get(str(key), str(key)): float(value) for key, value in raw.items()}
            unknown = set(kwargs) - {f.name for f in fields(cls)}
            if unknown:
                raise ValueError(f"unknown weight names: {', '.join(sorted(unknown))}")
            return cls(**kwargs)
        values = [float(value) for value in raw]
        if len(values) != 5:
            raise ValueError("weights sequence must contain exactly five values")
        return cls(*values)


@dataclass(frozen=True)
class EchoScoreConfig:
    """Tunable constants for scoring and challenge selection.

    One instance is built at start-up and injected into every scorer; the
    dataclass is frozen so a running computation never sees it change.
    """

    window_days: int = 30
    streak_cap_days: int = 30
    weights: ScoreWeights = field(default_factory=ScoreWeights)
    difficulty_levels: Tuple[str, ...] = tuple(DEFAULT_LEVEL_IDS)

    # diversity
    diversity_cap_score: float = 40.0
    diversity_min_buckets: int = 3

    # accuracy
    recent_accuracy_window: int = 10
    overall_accuracy_weight: float = 0.6

    # speed
    speed_ratio_cap: float = 1.5

    # trend / improvement
    trend_history_limit: int = 14
    trend_min_points: int = 3
    improvement_k: float = 0.5

    # challenge selection
    weak_area_min_attempts: int = 3
    weak_area_max_accuracy: float = 0.6
    recent_selections_considered: int = 3
    adaptive_accuracy_threshold: float = 0.85
    adaptive_window: int = 5
    adaptive_min_submissions: int = 3
    repeat_prevention_days: int = 14

    # batch runs
    max_workers: int = 10

    def __post_init__(self) -> None:
        if self.window_days <= 0:
            raise ValueError("window_days must be positive")
        if self.streak_cap_days <= 0:
            raise ValueError("streak_cap_days must be positive")
        if not self.difficulty_levels:
            raise ValueError("difficulty_levels may not be empty")
        if len(set(self.difficulty_levels)) != len(self.difficulty_levels):
            raise ValueError("difficulty_levels must be unique")
        if not 0.0 <= self.overall_accuracy_weight <= 1.0:
            raise ValueError("overall_accuracy_weight must be in [0, 1]")
        if not 0.0 <= self.diversity_cap_score <= 100.0:
            raise ValueError("diversity_cap_score must be in [0, 100]")
        if self.speed_ratio_cap <= 0:
            raise ValueError("speed_ratio_cap must be positive")
        if self.recent_accuracy_window <= 0 or self.adaptive_window <= 0:
            raise ValueError("accuracy windows must be positive")
        if self.trend_history_limit < self.trend_min_points:
            raise ValueError("trend_history_limit must be >= trend_min_points")
        if self.max_workers <= 0:
            raise ValueError("max_workers must be positive")

    # ------------------------------------------------------------------
    @property
    def lowest_difficulty(self) -> str:
        return self.difficulty_levels[0]

    @property
    def highest_difficulty(self) -> str:
        return self.difficulty_levels[-1]

    def difficulty_index(self, level: Optional[str]) -> int:
        """Return the position of ``level``; unknown levels map to the lowest."""

        try:
            return self.difficulty_levels.index(level)  # type: ignore[arg-type]
        except ValueError:
            return 0

    def shift_difficulty(self, level: Optional[str], steps: int) -> str:
        idx = self.difficulty_index(level) + steps
        idx = max(0, min(len(self.difficulty_levels) - 1, idx))
        return self.difficulty_levels[idx]

    # ------------------------------------------------------------------
    @classmethod
    def from_options(cls, options: Mapping[str, Any], base: Optional["EchoScoreConfig"] = None) -> "EchoScoreConfig":
        """Apply the recognised camelCase options on top of ``base``.

        Recognised keys: ``windowDays``, ``streakCapDays``, ``weights`` and
        ``difficultyLevels``. Snake-case field names are accepted as well.
        """

        config = base or cls()
        aliases = {
            "windowDays": "window_days",
            "streakCapDays": "streak_cap_days",
            "difficultyLevels": "difficulty_levels",
            "improvementK": "improvement_k",
        }
        known = {f.name for f in fields(cls)}
        changes: Dict[str, Any] = {}
        for key, value in options.items():
            name = aliases.get(key, key)
            if name not in known:
                raise ValueError(f"unknown configuration option: {key}")
            if name == "weights":
                value = ScoreWeights.from_value(value)
            elif name == "difficulty_levels":
                value = _parse_levels(value)
            changes[name] = value
        return replace(config, **changes)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "EchoScoreConfig":
        """Build the configuration from ``ECHO_*`` environment variables."""

        env = os.environ if environ is None else environ
        options: Dict[str, Any] = {}
        if env.get("ECHO_WINDOW_DAYS"):
            options["windowDays"] = int(env["ECHO_WINDOW_DAYS"])
        if env.get("ECHO_STREAK_CAP_DAYS"):
            options["streakCapDays"] = int(env["ECHO_STREAK_CAP_DAYS"])
        if env.get("ECHO_WEIGHTS"):
            options["weights"] = env["ECHO_WEIGHTS"]
        if env.get("ECHO_IMPROVEMENT_K"):
            options["improvementK"] = float(env["ECHO_IMPROVEMENT_K"])
        if env.get("ECHO_MAX_WORKERS"):
            options["max_workers"] = int(env["ECHO_MAX_WORKERS"])
        if env.get("ECHO_DIFFICULTY_LEVELS"):
            options["difficultyLevels"] = env["ECHO_DIFFICULTY_LEVELS"]
        else:
            registry = DifficultyLevelRegistry(env.get("ECHO_DIFFICULTY_LEVELS_FILE") or None)
            options["difficultyLevels"] = registry.sequence()
        return cls.from_options(options)


def _parse_levels(value: Any) -> Tuple[str, ...]:
    if isinstance(value, str):
        value = value.split(",")
    levels: Sequence[str] = [str(item).strip() for item in value if str(item).strip()]
    return tuple(levels)
