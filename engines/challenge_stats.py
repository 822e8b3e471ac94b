"""Pure reducer and read helpers for :class:`schemas.UserChallengeStats`.

Stats are never edited in place: :func:`apply_submission` returns a new
snapshot, and the caller persists it while holding the user's lock.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Dict, List, Mapping, Optional, Sequence

from engines.accuracy import most_recent, ratio_correct
from engines.metrics import as_utc
from schemas import ChallengeSubmission, PerformanceBucket, UserChallengeStats


def empty_stats(user_id: str) -> UserChallengeStats:
    return UserChallengeStats(user_id=user_id)


def _bump(bucket: Optional[PerformanceBucket], submission: ChallengeSubmission) -> PerformanceBucket:
    bucket = bucket or PerformanceBucket()
    completed = bucket.completed + 1
    avg_time = bucket.avg_time + (float(submission.time_spent_seconds) - bucket.avg_time) / completed
    return PerformanceBucket(
        completed=completed,
        correct=bucket.correct + (1 if submission.is_correct else 0),
        avg_time=round(avg_time, 3),
    )


def next_streak(current: int, last_day: Optional[date], submission_day: date) -> int:
    """Streak after a submission on ``submission_day``.

    Same day keeps the streak, the next day extends it, any gap restarts it
    at 1 (the new submission's own day).
    """

    current = max(0, current)
    if last_day is None:
        return 1
    if submission_day <= last_day:
        return max(current, 1)
    if submission_day == last_day + timedelta(days=1):
        return current + 1
    return 1


def apply_submission(stats: UserChallengeStats, submission: ChallengeSubmission) -> UserChallengeStats:
    """Return ``stats`` updated with one new submission."""

    if submission.user_id != stats.user_id:
        raise ValueError(f"submission for {submission.user_id} applied to stats of {stats.user_id}")

    day = as_utc(submission.created_at).date()
    streak = next_streak(stats.current_streak, stats.last_challenge_date, day)
    last_day = day if stats.last_challenge_date is None else max(stats.last_challenge_date, day)

    type_key = submission.challenge_type.value
    type_perf = dict(stats.type_performance)
    type_perf[type_key] = _bump(type_perf.get(type_key), submission)
    difficulty_perf = dict(stats.difficulty_performance)
    difficulty_perf[submission.difficulty] = _bump(difficulty_perf.get(submission.difficulty), submission)

    return stats.model_copy(
        update={
            "total_completed": stats.total_completed + 1,
            "total_correct": stats.total_correct + (1 if submission.is_correct else 0),
            "current_streak": streak,
            "longest_streak": max(stats.longest_streak, streak),
            "last_challenge_date": last_day,
            "type_performance": type_perf,
            "difficulty_performance": difficulty_perf,
        }
    )


def rebuild_stats(user_id: str, submissions: Sequence[ChallengeSubmission]) -> UserChallengeStats:
    """Fold a full submission history into a fresh snapshot."""

    stats = empty_stats(user_id)
    for submission in sorted(submissions, key=lambda s: as_utc(s.created_at)):
        stats = apply_submission(stats, submission)
    return stats


def effective_streak(stats: UserChallengeStats, as_of: date) -> int:
    """Streak as seen on ``as_of``; lapsed streaks read as 0."""

    if stats.last_challenge_date is None:
        return max(0, stats.current_streak)
    if stats.last_challenge_date in (as_of, as_of - timedelta(days=1)):
        return max(0, stats.current_streak)
    return 0


@dataclass(frozen=True)
class WeakArea:
    challenge_type: str
    accuracy: float
    attempts: int
    weakest_difficulty: Optional[str] = None


def _weakest(
    performance: Mapping[str, PerformanceBucket],
    min_attempts: int,
    max_accuracy: float,
) -> Optional[tuple[str, PerformanceBucket]]:
    eligible = [
        (key, bucket)
        for key, bucket in performance.items()
        if bucket.completed >= min_attempts and bucket.accuracy < max_accuracy
    ]
    if not eligible:
        return None
    return min(eligible, key=lambda item: (item[1].accuracy, -item[1].completed, item[0]))


def find_weak_area(
    stats: UserChallengeStats,
    min_attempts: int = 3,
    max_accuracy: float = 0.6,
) -> Optional[WeakArea]:
    """Lowest-accuracy challenge type among types attempted ``min_attempts`` times."""

    weakest_type = _weakest(stats.type_performance, min_attempts, max_accuracy)
    if weakest_type is None:
        return None
    weakest_difficulty = _weakest(stats.difficulty_performance, min_attempts, max_accuracy)
    type_key, bucket = weakest_type
    return WeakArea(
        challenge_type=type_key,
        accuracy=bucket.accuracy,
        attempts=bucket.completed,
        weakest_difficulty=weakest_difficulty[0] if weakest_difficulty else None,
    )


def _percent(bucket: PerformanceBucket) -> Dict[str, Any]:
    return {
        "completed": bucket.completed,
        "correct": bucket.correct,
        "accuracy": round(bucket.accuracy * 100),
        "average_time_seconds": round(bucket.avg_time),
    }


def detailed_stats(stats: UserChallengeStats) -> Dict[str, Any]:
    """Overall, per-difficulty and per-type breakdown with accuracy percentages."""

    completed = stats.total_completed
    total_time = sum(b.avg_time * b.completed for b in stats.type_performance.values())
    return {
        "overall": {
            "total_completed": completed,
            "total_correct": stats.total_correct,
            "accuracy": round(stats.total_correct / completed * 100) if completed else 0,
            "average_time_seconds": round(total_time / completed) if completed else 0,
            "current_streak": stats.current_streak,
            "longest_streak": stats.longest_streak,
        },
        "by_difficulty": {key: _percent(b) for key, b in sorted(stats.difficulty_performance.items())},
        "by_type": {key: _percent(b) for key, b in sorted(stats.type_performance.items())},
    }


def analyze_progress(
    stats: UserChallengeStats,
    recent_submissions: Sequence[ChallengeSubmission],
    recent_limit: int = 10,
) -> Dict[str, Any]:
    """Strengths, weaknesses, recommended focus and the direction of recent accuracy."""

    strengths: List[str] = []
    weaknesses: List[str] = []
    for type_key, bucket in sorted(stats.type_performance.items()):
        if not bucket.completed:
            continue
        if bucket.accuracy >= 0.8:
            strengths.append(type_key)
        elif bucket.accuracy < 0.5:
            weaknesses.append(type_key)

    recent = most_recent(recent_submissions, recent_limit)
    last_types = [s.challenge_type.value for s in recent[:5]]
    overall = stats.total_correct / stats.total_completed if stats.total_completed else 0.0
    recent_rate = ratio_correct(recent) if recent else overall
    diff = recent_rate - overall
    if diff > 0.1:
        trend = "improving"
    elif diff < -0.1:
        trend = "declining"
    else:
        trend = "stable"

    return {
        "strengths": strengths,
        "weaknesses": weaknesses,
        "recommended_focus": [w for w in weaknesses if last_types.count(w) < 2],
        "progress_trend": trend,
    }
