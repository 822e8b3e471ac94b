"""Record builders and an in-memory repository shared by the engine tests."""

from __future__ import annotations

import statistics
import threading
from collections import defaultdict
from datetime import date, datetime, timedelta, timezone
from typing import Dict, List, Optional

from engines.errors import ConcurrentSelectionRaceError
from schemas import (
    BiasCategory,
    Challenge,
    ChallengeSubmission,
    ChallengeType,
    DailyChallengeSelection,
    EchoScoreHistory,
    ReadingEvent,
    SessionRecord,
    UserChallengeStats,
)

NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)
TODAY = NOW.date()


def reading(
    user_id: str = "u1",
    bias: BiasCategory | str = BiasCategory.CENTER,
    when: datetime = NOW,
    content_id: str = "article",
    source: Optional[str] = None,
    topics: Optional[List[str]] = None,
) -> ReadingEvent:
    return ReadingEvent(
        user_id=user_id,
        content_id=content_id,
        source_bias_category=bias,
        source=source,
        topics=topics or [],
        time_spent=120.0,
        completion_pct=100.0,
        timestamp=when,
    )


def submission(
    user_id: str = "u1",
    challenge_id: str = "c1",
    challenge_type: ChallengeType | str = ChallengeType.LOGIC_PUZZLE,
    difficulty: str = "beginner",
    is_correct: bool = True,
    seconds: float = 60.0,
    when: datetime = NOW,
) -> ChallengeSubmission:
    return ChallengeSubmission(
        user_id=user_id,
        challenge_id=challenge_id,
        challenge_type=challenge_type,
        difficulty=difficulty,
        is_correct=is_correct,
        time_spent_seconds=seconds,
        created_at=when,
    )


def challenge(
    challenge_id: str,
    challenge_type: ChallengeType | str = ChallengeType.LOGIC_PUZZLE,
    difficulty: str = "beginner",
    is_active: bool = True,
) -> Challenge:
    return Challenge(id=challenge_id, challenge_type=challenge_type, difficulty=difficulty, is_active=is_active)


def catalogue() -> List[Challenge]:
    """One challenge per (type, difficulty) pair."""

    items = []
    for challenge_type in ChallengeType:
        for difficulty in ("beginner", "intermediate", "advanced"):
            items.append(challenge(f"{challenge_type.value}-{difficulty}", challenge_type, difficulty))
    return items


def history_row(
    user_id: str,
    score_date: date,
    accuracy: float = 50.0,
    speed: float = 50.0,
    diversity: float = 50.0,
    total: float = 50.0,
) -> EchoScoreHistory:
    return EchoScoreHistory(
        user_id=user_id,
        score_date=score_date,
        total_score=total,
        diversity_score=diversity,
        accuracy_score=accuracy,
        switch_speed_score=speed,
        consistency_score=50.0,
        improvement_score=50.0,
    )


class InMemoryRepository:
    """Dictionary-backed stand-in for the ``db`` module."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.reading_events: List[ReadingEvent] = []
        self.submissions: List[ChallengeSubmission] = []
        self.sessions: List[SessionRecord] = []
        self.challenges: Dict[str, Challenge] = {}
        self.stats: Dict[str, UserChallengeStats] = {}
        self.history: List[EchoScoreHistory] = []
        self.selections: Dict[tuple, DailyChallengeSelection] = {}
        self.insert_attempts = 0

    # activity
    def add_reading_event(self, event: ReadingEvent) -> int:
        with self._lock:
            self.reading_events.append(event)
            return len(self.reading_events)

    def add_submission(self, item: ChallengeSubmission) -> int:
        with self._lock:
            self.submissions.append(item)
            return len(self.submissions)

    def add_session(self, session: SessionRecord) -> int:
        with self._lock:
            self.sessions.append(session)
            return len(self.sessions)

    def list_reading_events(self, user_id: str, since: datetime) -> List[ReadingEvent]:
        return [e for e in self.reading_events if e.user_id == user_id and e.timestamp >= since]

    def list_submissions(self, user_id: str, since: Optional[datetime] = None) -> List[ChallengeSubmission]:
        return [
            s for s in self.submissions if s.user_id == user_id and (since is None or s.created_at >= since)
        ]

    def list_sessions(self, user_id: str, since: datetime) -> List[SessionRecord]:
        return [s for s in self.sessions if s.user_id == user_id and s.session_start >= since]

    def reference_median_times(self, since: datetime) -> Dict[str, float]:
        times: Dict[str, List[float]] = defaultdict(list)
        for item in self.submissions:
            if item.created_at >= since:
                times[item.challenge_type.value].append(item.time_spent_seconds)
        return {key: statistics.median(values) for key, values in times.items()}

    # challenges and stats
    def list_active_challenges(self) -> List[Challenge]:
        return [c for c in self.challenges.values() if c.is_active]

    def get_user_stats(self, user_id: str) -> Optional[UserChallengeStats]:
        return self.stats.get(user_id)

    def save_user_stats(self, stats: UserChallengeStats) -> None:
        with self._lock:
            self.stats[stats.user_id] = stats

    # history
    def append_score_history(self, row: EchoScoreHistory) -> EchoScoreHistory:
        with self._lock:
            stored = row.model_copy(update={"id": len(self.history) + 1})
            self.history.append(stored)
            return stored

    def list_score_history(
        self,
        user_id: str,
        since: Optional[date] = None,
        limit: Optional[int] = None,
        until: Optional[date] = None,
    ) -> List[EchoScoreHistory]:
        rows = [
            r
            for r in self.history
            if r.user_id == user_id
            and (since is None or r.score_date >= since)
            and (until is None or r.score_date <= until)
        ]
        rows.sort(key=lambda r: (r.score_date, r.id or 0), reverse=True)
        return rows[:limit] if limit is not None else rows

    def get_latest_score(self, user_id: str) -> Optional[EchoScoreHistory]:
        rows = self.list_score_history(user_id, limit=1)
        return rows[0] if rows else None

    # selections
    def get_daily_selection(self, user_id: str, selection_date: date) -> Optional[DailyChallengeSelection]:
        return self.selections.get((user_id, selection_date))

    def insert_daily_selection(self, selection: DailyChallengeSelection) -> DailyChallengeSelection:
        with self._lock:
            self.insert_attempts += 1
            key = (selection.user_id, selection.selection_date)
            if key in self.selections:
                raise ConcurrentSelectionRaceError(selection.user_id, selection.selection_date)
            stored = selection.model_copy(update={"id": len(self.selections) + 1})
            self.selections[key] = stored
            return stored

    def list_recent_selections(self, user_id: str, before: date, limit: int = 3) -> List[DailyChallengeSelection]:
        rows = [s for (uid, day), s in self.selections.items() if uid == user_id and day < before]
        rows.sort(key=lambda s: s.selection_date, reverse=True)
        return rows[:limit]


def days_ago(days: int, hours: int = 0) -> datetime:
    return NOW - timedelta(days=days, hours=hours)
