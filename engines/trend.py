"""Trend analysis over Echo Score history for the improvement sub-score."""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from typing import Dict, Iterable, List, Sequence, Tuple

from engines.config import EchoScoreConfig
from schemas import EchoScoreHistory


def ols_slope(points: Sequence[Tuple[float, float]]) -> float:
    """Ordinary least-squares slope of ``(x, y)`` points.

    Fewer than two points, or points that all share one ``x``, give 0.0.
    """

    n = len(points)
    if n < 2:
        return 0.0
    sum_x = sum(x for x, _ in points)
    sum_y = sum(y for _, y in points)
    sum_xy = sum(x * y for x, y in points)
    sum_xx = sum(x * x for x, _ in points)
    denominator = n * sum_xx - sum_x * sum_x
    if denominator == 0:
        return 0.0
    return (n * sum_xy - sum_x * sum_y) / denominator


def index_slope(values: Iterable[float]) -> float:
    """Slope of ``values`` against their position in the sequence."""

    return ols_slope([(float(i), float(v)) for i, v in enumerate(values)])


def sigmoid(x: float) -> float:
    if x >= 0:
        return 1.0 / (1.0 + math.exp(-x))
    z = math.exp(x)
    return z / (1.0 + z)


@dataclass
class TrendResult:
    accuracy_slope: float
    speed_slope: float
    diversity_slope: float
    points_used: int
    improvement_score: float

    @property
    def average_slope(self) -> float:
        return (self.accuracy_slope + self.speed_slope + self.diversity_slope) / 3.0

    def details(self) -> Dict[str, float]:
        data = asdict(self)
        data.pop("improvement_score")
        return {key: round(value, 4) if isinstance(value, float) else value for key, value in data.items()}


class TrendAnalyzer:
    """Fit per-day slopes of the accuracy, speed and diversity sub-scores.

    Uses at most ``trend_history_limit`` of the latest rows; with fewer than
    ``trend_min_points`` rows every slope is 0 and the improvement score is the
    neutral 50.
    """

    def __init__(self, config: EchoScoreConfig) -> None:
        self.config = config

    def recent_rows(self, history: Sequence[EchoScoreHistory]) -> List[EchoScoreHistory]:
        ordered = sorted(history, key=lambda row: row.score_date)
        return ordered[-self.config.trend_history_limit :]

    def improvement_score(self, average_slope: float) -> float:
        return max(0.0, min(100.0, 100.0 * sigmoid(self.config.improvement_k * average_slope)))

    def analyze(self, history: Sequence[EchoScoreHistory]) -> TrendResult:
        rows = self.recent_rows(history)
        if len(rows) < self.config.trend_min_points:
            return TrendResult(0.0, 0.0, 0.0, len(rows), 50.0)

        def slope(attr: str) -> float:
            return ols_slope([(float(row.score_date.toordinal()), float(getattr(row, attr))) for row in rows])

        accuracy = slope("accuracy_score")
        speed = slope("switch_speed_score")
        diversity = slope("diversity_score")
        average = (accuracy + speed + diversity) / 3.0
        return TrendResult(accuracy, speed, diversity, len(rows), self.improvement_score(average))
