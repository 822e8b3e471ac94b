"""Challenge difficulty level configuration loader."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import List, Sequence


class DifficultyLevelConfigError(ValueError):
    """Raised when ``difficulty_levels.json`` contains invalid data."""


@dataclass(frozen=True)
class DifficultyLevel:
    """Immutable representation of one difficulty level."""

    id: str
    label: str
    description: str


DEFAULT_LEVEL_IDS: Sequence[str] = ("beginner", "intermediate", "advanced")


class DifficultyLevelRegistry:
    """Load the ordered difficulty levels from ``difficulty_levels.json``.

    The file holds a JSON list; the list order is the difficulty order,
    easiest first.
    """

    def __init__(self, path: str | Path | None = None) -> None:
        base_path = Path(__file__).resolve().parent
        self.path = Path(path) if path is not None else base_path / "difficulty_levels.json"
        self._levels: List[DifficultyLevel] = []
        self.reload()

    # ------------------------------------------------------------------
    def reload(self) -> None:
        """Reload the levels from disk and validate the structure."""

        if not self.path.exists():
            raise FileNotFoundError(f"Difficulty levels file not found: {self.path}")

        with self.path.open("r", encoding="utf-8") as fh:
            raw = json.load(fh)

        if not isinstance(raw, list):
            raise DifficultyLevelConfigError("Difficulty levels file must contain a JSON list")

        levels: List[DifficultyLevel] = []
        seen: set[str] = set()
        for idx, entry in enumerate(raw, start=1):
            if not isinstance(entry, dict):
                raise DifficultyLevelConfigError(f"Entry #{idx} must be a JSON object")
            if "id" not in entry or not str(entry["id"]).strip():
                raise DifficultyLevelConfigError(f"Entry #{idx} is missing a non-empty 'id'")

            level_id = str(entry["id"]).strip()
            if level_id in seen:
                raise DifficultyLevelConfigError(f"Duplicate difficulty level id detected: {level_id}")
            seen.add(level_id)

            label = str(entry.get("label") or level_id.title()).strip()
            description = str(entry.get("description", "")).strip()
            levels.append(DifficultyLevel(level_id, label, description))

        if not levels:
            raise DifficultyLevelConfigError("Difficulty levels file may not be empty")

        self._levels = levels

    # ------------------------------------------------------------------
    def sequence(self) -> Sequence[str]:
        """Return the level identifiers, easiest first."""

        return tuple(level.id for level in self._levels)
