"""Response-speed score against per-type reference medians."""

from __future__ import annotations

import statistics
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

from engines.config import EchoScoreConfig
from engines.metrics import as_utc
from schemas import ChallengeSubmission, ChallengeType


def _type_key(value: ChallengeType | str) -> str:
    return value.value if isinstance(value, ChallengeType) else str(value)


def improvement_trend(times: Sequence[float]) -> float:
    """Percentage drop of the newer half's median time versus the older half.

    ``times`` must be chronological. Positive values mean the user got faster.
    """

    if len(times) < 2:
        return 0.0
    # an odd middle sample belongs to the older half
    split = len(times) - len(times) // 2
    older = statistics.median(times[:split])
    newer = statistics.median(times[split:])
    if older <= 0:
        return 0.0
    return (older - newer) / older * 100.0


@dataclass
class SpeedResult:
    score: float
    improvement_trend: float
    comparable: bool
    details: Dict[str, Any] = field(default_factory=dict)


class SpeedScorer:
    """Compare a user's per-type median response time with reference medians.

    Reference medians are a precomputed cross-user aggregate supplied by the
    caller; this scorer only ever looks at one user's submissions.
    """

    def __init__(self, config: EchoScoreConfig) -> None:
        self.config = config

    def type_score(self, reference_median: float, user_median: float) -> float:
        cap = self.config.speed_ratio_cap
        if user_median <= 0:
            ratio = cap
        else:
            ratio = max(0.0, min(cap, reference_median / user_median))
        return 100.0 * ratio / cap

    def score(
        self,
        submissions: Sequence[ChallengeSubmission],
        reference_medians: Optional[Mapping[Any, float]] = None,
    ) -> SpeedResult:
        references = {_type_key(k): float(v) for k, v in (reference_medians or {}).items()}
        ordered = sorted(submissions, key=lambda s: as_utc(s.created_at))

        by_type: Dict[str, List[float]] = defaultdict(list)
        for submission in ordered:
            by_type[submission.challenge_type.value].append(float(submission.time_spent_seconds))

        per_type: Dict[str, Dict[str, Any]] = {}
        weighted_sum = 0.0
        weight_total = 0
        for type_key, times in sorted(by_type.items()):
            user_median = statistics.median(times)
            entry: Dict[str, Any] = {
                "submissions": len(times),
                "median_time": round(user_median, 2),
                "reference_median": references.get(type_key),
            }
            reference = references.get(type_key)
            if reference is not None and reference > 0:
                type_score = self.type_score(reference, user_median)
                entry["score"] = round(type_score, 2)
                weighted_sum += type_score * len(times)
                weight_total += len(times)
            per_type[type_key] = entry

        all_times = [float(s.time_spent_seconds) for s in ordered]
        trend = improvement_trend(all_times)
        comparable = weight_total > 0
        value = weighted_sum / weight_total if comparable else 0.0
        details = {
            "median_response_time": round(statistics.median(all_times), 2) if all_times else 0.0,
            "improvement_trend": round(trend, 2),
            "per_type": per_type,
            "comparable": comparable,
        }
        return SpeedResult(max(0.0, min(100.0, value)), trend, comparable, details)
