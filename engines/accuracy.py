"""Correctness score with recency weighting."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Sequence

from engines.config import EchoScoreConfig
from engines.metrics import as_utc
from schemas import ChallengeSubmission


def ratio_correct(submissions: Sequence[ChallengeSubmission]) -> float:
    """Share of correct submissions; 0.0 for an empty sequence."""

    if not submissions:
        return 0.0
    return sum(1 for s in submissions if s.is_correct) / len(submissions)


def most_recent(submissions: Sequence[ChallengeSubmission], limit: int) -> list[ChallengeSubmission]:
    """Return up to ``limit`` submissions, newest first."""

    ordered = sorted(submissions, key=lambda s: as_utc(s.created_at), reverse=True)
    return ordered[:limit]


@dataclass
class AccuracyResult:
    score: float
    overall_accuracy: float
    recent_accuracy: float
    details: Dict[str, Any] = field(default_factory=dict)


class AccuracyScorer:
    def __init__(self, config: EchoScoreConfig) -> None:
        self.config = config

    def score(self, submissions: Sequence[ChallengeSubmission]) -> AccuracyResult:
        """Blend overall accuracy with accuracy over the most recent attempts."""

        recent = most_recent(submissions, self.config.recent_accuracy_window)
        overall = ratio_correct(submissions)
        recent_accuracy = ratio_correct(recent)
        weight = self.config.overall_accuracy_weight

        value = 100.0 * (weight * overall + (1.0 - weight) * recent_accuracy) if submissions else 0.0
        details = {
            "correct_answers": sum(1 for s in submissions if s.is_correct),
            "total_answers": len(submissions),
            "overall_accuracy": round(overall, 4),
            "recent_accuracy": round(recent_accuracy, 4),
            "recent_window": len(recent),
        }
        return AccuracyResult(max(0.0, min(100.0, value)), overall, recent_accuracy, details)
