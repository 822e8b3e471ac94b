"""Reading diversity across the media bias spectrum."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Sequence

from engines.config import EchoScoreConfig
from schemas import BiasCategory, ReadingEvent


def gini_index(values: Iterable[float]) -> float:
    """Normalised Gini concentration of non-negative ``values``.

    Returns 0 for a perfectly even distribution and 1 when everything sits in
    a single entry. The raw coefficient is rescaled by ``n / (n - 1)`` so the
    single-entry maximum is exactly 1 for any ``n``.
    """

    data = sorted(float(v) for v in values if v > 0)
    n = len(data)
    if n == 0:
        return 0.0
    if n == 1:
        return 1.0
    total = sum(data)
    weighted = sum((2 * (i + 1) - n - 1) * x for i, x in enumerate(data))
    raw = weighted / (n * total)
    return max(0.0, min(1.0, raw * n / (n - 1)))


@dataclass
class DiversityResult:
    score: float
    details: Dict[str, Any] = field(default_factory=dict)


class DiversityScorer:
    """Score how evenly a user's reading spreads across bias buckets.

    The concentration index is taken over the buckets the user actually read
    from; touching fewer than ``diversity_min_buckets`` buckets caps the score
    at ``diversity_cap_score``.
    """

    def __init__(self, config: EchoScoreConfig) -> None:
        self.config = config

    def score(self, events: Sequence[ReadingEvent]) -> DiversityResult:
        counts = Counter(event.source_bias_category for event in events)
        bucket_counts = {category.value: counts.get(category, 0) for category in BiasCategory}
        touched = [category for category in BiasCategory if counts.get(category)]
        positions = [category.position for category in touched]
        sources = sorted({event.source for event in events if event.source})
        topics = sorted({topic for event in events for topic in event.topics})

        details: Dict[str, Any] = {
            "articles_read": len(events),
            "bucket_counts": bucket_counts,
            "buckets_touched": len(touched),
            "bias_range": (max(positions) - min(positions)) if positions else 0,
            "sources_read": sources,
            "topics_covered": len(topics),
        }

        if len(events) <= 1:
            details.update(gini_index=1.0 if events else 0.0, capped=False)
            return DiversityResult(0.0, details)

        gini = gini_index(counts.values())
        raw = 100.0 * (1.0 - gini)
        capped = len(touched) < self.config.diversity_min_buckets and raw > self.config.diversity_cap_score
        score = min(raw, self.config.diversity_cap_score) if len(touched) < self.config.diversity_min_buckets else raw
        details.update(gini_index=round(gini, 4), raw_score=round(raw, 2), capped=capped)
        return DiversityResult(max(0.0, min(100.0, score)), details)
