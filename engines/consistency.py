"""Consistency score from active days and the current streak."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Iterable, Set

from engines.config import EchoScoreConfig
from engines.metrics import ActivityWindow, as_utc


def active_days(window: ActivityWindow) -> Set[date]:
    """Distinct UTC calendar days with a submission or a reading event."""

    days = {as_utc(event.timestamp).date() for event in window.reading_events}
    days.update(as_utc(submission.created_at).date() for submission in window.submissions)
    return days


@dataclass
class ConsistencyResult:
    score: float
    details: Dict[str, Any] = field(default_factory=dict)


class ConsistencyScorer:
    def __init__(self, config: EchoScoreConfig) -> None:
        self.config = config

    def compute(self, active_day_count: int, total_days: int, current_streak: int) -> float:
        total = max(1, int(total_days))
        ratio = min(1.0, max(0, active_day_count) / total)
        cap = self.config.streak_cap_days
        streak_part = min(max(0, current_streak), cap) / cap
        return max(0.0, min(100.0, 100.0 * (0.5 * ratio + 0.5 * streak_part)))

    def score(self, window: ActivityWindow, current_streak: int) -> ConsistencyResult:
        days = active_days(window)
        value = self.compute(len(days), window.window_days, current_streak)
        details = {
            "active_days": len(days),
            "total_days": window.window_days,
            "streak_length": max(0, current_streak),
            "streak_cap": self.config.streak_cap_days,
            "sessions": len(window.sessions),
            "session_minutes": round(_session_minutes(window.sessions), 1),
        }
        return ConsistencyResult(value, details)


def _session_minutes(sessions: Iterable[Any]) -> float:
    total = 0.0
    for session in sessions:
        if session.session_end is None:
            continue
        delta = as_utc(session.session_end) - as_utc(session.session_start)
        total += max(0.0, delta.total_seconds() / 60.0)
    return total
