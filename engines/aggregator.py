"""Weighted composition of the five sub-scores into the Echo Score."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, Mapping, Optional, Protocol

from engines.config import EchoScoreConfig
from engines.errors import InvalidInputError
from schemas import EchoScoreHistory


class ScoreHistoryStore(Protocol):
    def append_score_history(self, row: EchoScoreHistory) -> EchoScoreHistory: ...


@dataclass(frozen=True)
class SubScores:
    diversity: float
    accuracy: float
    switch_speed: float
    consistency: float
    improvement: float

    def as_dict(self) -> Dict[str, float]:
        return {
            "diversity": self.diversity,
            "accuracy": self.accuracy,
            "switch_speed": self.switch_speed,
            "consistency": self.consistency,
            "improvement": self.improvement,
        }


EMPTY_SUB_SCORES = SubScores(diversity=0.0, accuracy=0.0, switch_speed=0.0, consistency=0.0, improvement=50.0)


class ScoreAggregator:
    def __init__(self, config: EchoScoreConfig) -> None:
        self.config = config

    @staticmethod
    def validate(scores: SubScores) -> None:
        """Raise :class:`InvalidInputError` for any sub-score outside [0, 100]."""

        for name, value in scores.as_dict().items():
            if value is None or not isinstance(value, (int, float)) or not math.isfinite(value):
                raise InvalidInputError(f"{name}_score", value)
            if not 0.0 <= value <= 100.0:
                raise InvalidInputError(f"{name}_score", value)

    def total(self, scores: SubScores) -> float:
        self.validate(scores)
        weights = self.config.weights
        value = (
            scores.diversity * weights.diversity
            + scores.accuracy * weights.accuracy
            + scores.switch_speed * weights.switch_speed
            + scores.consistency * weights.consistency
            + scores.improvement * weights.improvement
        )
        return round(max(0.0, min(100.0, value)), 2)

    def aggregate(
        self,
        user_id: str,
        score_date: date,
        scores: SubScores,
        calculation_details: Optional[Mapping[str, Any]] = None,
    ) -> EchoScoreHistory:
        """Build a new history row; nothing is written."""

        total = self.total(scores)
        details = dict(calculation_details or {})
        details.setdefault("weights", self.config.weights.as_dict())
        return EchoScoreHistory(
            user_id=user_id,
            score_date=score_date,
            total_score=total,
            diversity_score=round(scores.diversity, 2),
            accuracy_score=round(scores.accuracy, 2),
            switch_speed_score=round(scores.switch_speed, 2),
            consistency_score=round(scores.consistency, 2),
            improvement_score=round(scores.improvement, 2),
            calculation_details=details,
        )

    def aggregate_and_save(
        self,
        store: ScoreHistoryStore,
        user_id: str,
        score_date: date,
        scores: SubScores,
        calculation_details: Optional[Mapping[str, Any]] = None,
    ) -> EchoScoreHistory:
        """Append exactly one row to ``store`` and return it as stored."""

        row = self.aggregate(user_id, score_date, scores, calculation_details)
        return store.append_score_history(row)

    def empty(self, user_id: str, score_date: date, reason: str = "insufficient_data") -> EchoScoreHistory:
        """Row for a user without activity: defaults (0, 0, 0, 0, 50), total 0."""

        scores = EMPTY_SUB_SCORES
        return EchoScoreHistory(
            user_id=user_id,
            score_date=score_date,
            total_score=0.0,
            diversity_score=scores.diversity,
            accuracy_score=scores.accuracy,
            switch_speed_score=scores.switch_speed,
            consistency_score=scores.consistency,
            improvement_score=scores.improvement,
            calculation_details={"status": reason, "weights": self.config.weights.as_dict()},
        )
