"""Echo Score orchestration: extraction, scoring, persistence and selection.

:class:`EchoScoreService` wires the scorers together around a repository (by
default the ``db`` module) and serialises every read-modify-write per user.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional

from engines.accuracy import AccuracyScorer
from engines.aggregator import ScoreAggregator, SubScores
from engines.challenge_selector import ChallengeSelector
from engines.challenge_stats import (
    analyze_progress,
    apply_submission,
    detailed_stats,
    effective_streak,
    empty_stats,
    rebuild_stats,
)
from engines.config import EchoScoreConfig
from engines.consistency import ConsistencyScorer
from engines.diversity import DiversityScorer
from engines.errors import InsufficientDataError, NoEligibleChallengeError
from engines.metrics import MetricExtractor, as_utc
from engines.speed import SpeedScorer
from engines.trend import TrendAnalyzer, index_slope
from engines.user_locks import UserLockRegistry
from schemas import (
    ChallengeSubmission,
    DailyChallengeSelection,
    EchoScoreHistory,
    UserChallengeStats,
)

logger = logging.getLogger(__name__)

PROGRESS_PERIOD_DAYS = {"daily": 7, "weekly": 28}

_COMPONENTS = ("total", "diversity", "accuracy", "switch_speed", "consistency", "improvement")


@dataclass
class BatchResult:
    score_date: date
    processed: int = 0
    failed: int = 0
    failed_users: List[str] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "score_date": self.score_date.isoformat(),
            "processed": self.processed,
            "failed": self.failed,
            "failed_users": list(self.failed_users),
        }


class EchoScoreService:
    def __init__(
        self,
        config: Optional[EchoScoreConfig] = None,
        repository: Any = None,
        selector: Optional[ChallengeSelector] = None,
        locks: Optional[UserLockRegistry] = None,
    ) -> None:
        if repository is None:
            import db as repository  # type: ignore[no-redef]
        self.config = config or EchoScoreConfig()
        self.repository = repository
        self.locks = locks or UserLockRegistry()
        self.extractor = MetricExtractor(self.config, repository)
        self.diversity = DiversityScorer(self.config)
        self.accuracy = AccuracyScorer(self.config)
        self.speed = SpeedScorer(self.config)
        self.consistency = ConsistencyScorer(self.config)
        self.trend = TrendAnalyzer(self.config)
        self.aggregator = ScoreAggregator(self.config)
        self.selector = selector or ChallengeSelector(self.config, repository)

    # ------------------------------------------------------------------
    # Submissions
    # ------------------------------------------------------------------
    def record_submission(self, submission: ChallengeSubmission) -> UserChallengeStats:
        """Store ``submission`` and fold it into the user's stats."""

        with self.locks.hold(submission.user_id):
            self.repository.add_submission(submission)
            current = self.repository.get_user_stats(submission.user_id) or empty_stats(submission.user_id)
            updated = apply_submission(current, submission)
            self.repository.save_user_stats(updated)
        logger.debug(
            "Recorded %s submission for %s (streak %d)",
            submission.challenge_type.value,
            submission.user_id,
            updated.current_streak,
        )
        return updated

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------
    def calculate(
        self,
        user_id: str,
        as_of: Optional[datetime] = None,
        reference_medians: Optional[Mapping[Any, float]] = None,
    ) -> EchoScoreHistory:
        """Compute the user's Echo Score without storing it."""

        moment = as_utc(as_of) if as_of is not None else datetime.now(timezone.utc)
        score_date = moment.date()
        try:
            window = self.extractor.extract(user_id, as_of=moment)
        except InsufficientDataError as exc:
            logger.info("Using default Echo Score for %s: %s", user_id, exc)
            return self.aggregator.empty(user_id, score_date)

        diversity = self.diversity.score(window.reading_events)
        accuracy = self.accuracy.score(window.submissions)
        speed = self.speed.score(window.submissions, reference_medians)

        streak = effective_streak(self._stats_as_of(user_id, moment), score_date)
        consistency = self.consistency.score(window, streak)

        history = self.repository.list_score_history(
            user_id, until=score_date, limit=self.config.trend_history_limit
        )
        trend = self.trend.analyze(history)

        scores = SubScores(
            diversity=diversity.score,
            accuracy=accuracy.score,
            switch_speed=speed.score,
            consistency=consistency.score,
            improvement=trend.improvement_score,
        )
        details = {
            "status": "calculated",
            "window": window.summary(),
            "diversity_metrics": diversity.details,
            "accuracy_metrics": accuracy.details,
            "speed_metrics": speed.details,
            "consistency_metrics": consistency.details,
            "improvement_metrics": trend.details(),
        }
        return self.aggregator.aggregate(user_id, score_date, scores, details)

    def _stats_as_of(self, user_id: str, moment: datetime) -> UserChallengeStats:
        """Stored stats, or a replay of recent submissions when scoring a past day."""

        stats = self.repository.get_user_stats(user_id) or empty_stats(user_id)
        if stats.last_challenge_date is None or stats.last_challenge_date <= moment.date():
            return stats
        since = moment - timedelta(days=self.config.streak_cap_days + 1)
        replay = [s for s in self.repository.list_submissions(user_id, since) if as_utc(s.created_at) <= moment]
        return rebuild_stats(user_id, replay)

    def reference_medians(self, as_of: Optional[datetime] = None) -> Dict[str, float]:
        """Cross-user median response time per challenge type over the window."""

        moment = as_utc(as_of) if as_of is not None else datetime.now(timezone.utc)
        since = moment - timedelta(days=self.config.window_days)
        return dict(self.repository.reference_median_times(since))

    def calculate_and_save(
        self,
        user_id: str,
        as_of: Optional[datetime] = None,
        reference_medians: Optional[Mapping[Any, float]] = None,
    ) -> EchoScoreHistory:
        with self.locks.hold(user_id):
            row = self.calculate(user_id, as_of=as_of, reference_medians=reference_medians)
            stored = self.repository.append_score_history(row)
        logger.info("Echo Score for %s on %s: %.2f", user_id, stored.score_date, stored.total_score)
        return stored

    def calculate_daily_scores(
        self,
        user_ids: Iterable[str],
        as_of: Optional[datetime] = None,
        reference_medians: Optional[Mapping[Any, float]] = None,
        max_workers: Optional[int] = None,
    ) -> BatchResult:
        """Score every user in ``user_ids``; one user's failure never stops the rest."""

        moment = as_utc(as_of) if as_of is not None else datetime.now(timezone.utc)
        users = list(dict.fromkeys(user_ids))
        result = BatchResult(score_date=moment.date())
        if not users:
            return result

        workers = max(1, min(max_workers or self.config.max_workers, len(users)))
        logger.info("Calculating Echo Scores for %d users with %d workers", len(users), workers)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="echo-score") as pool:
            futures = {
                pool.submit(self.calculate_and_save, user_id, moment, reference_medians): user_id
                for user_id in users
            }
            for future in as_completed(futures):
                user_id = futures[future]
                try:
                    future.result()
                except Exception:
                    logger.exception("Echo Score calculation failed for %s", user_id)
                    result.failed += 1
                    result.failed_users.append(user_id)
                else:
                    result.processed += 1

        result.failed_users.sort()
        logger.info(
            "Echo Score batch for %s finished: %d processed, %d failed",
            result.score_date,
            result.processed,
            result.failed,
        )
        return result

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def latest_or_default(self, user_id: str, as_of: Optional[date] = None) -> EchoScoreHistory:
        """Last stored row, or an all-default row for a user never scored."""

        latest = self.repository.get_latest_score(user_id)
        if latest is not None:
            return latest
        day = as_of or datetime.now(timezone.utc).date()
        return self.aggregator.empty(user_id, day, reason="no_history")

    def history(self, user_id: str, days: int = 30, as_of: Optional[date] = None) -> List[EchoScoreHistory]:
        if days <= 0:
            raise ValueError("days must be positive")
        day = as_of or datetime.now(timezone.utc).date()
        since = day - timedelta(days=days)
        rows = self.repository.list_score_history(user_id, since=since, until=day)
        return sorted(rows, key=lambda row: (row.score_date, row.created_at))

    def progress(self, user_id: str, period: str = "daily", as_of: Optional[date] = None) -> Dict[str, Any]:
        """Scores over the last 7 (daily) or 28 (weekly) days with per-component slopes."""

        if period not in PROGRESS_PERIOD_DAYS:
            raise ValueError(f"period must be one of {', '.join(PROGRESS_PERIOD_DAYS)}")
        rows = self.history(user_id, PROGRESS_PERIOD_DAYS[period], as_of=as_of)
        series = {name: [_component(row, name) for row in rows] for name in _COMPONENTS}
        return {
            "period": period,
            "days": PROGRESS_PERIOD_DAYS[period],
            "scores": [
                {
                    "date": row.score_date.isoformat(),
                    "total": row.total_score,
                    "components": {name: _component(row, name) for name in _COMPONENTS[1:]},
                }
                for row in rows
            ],
            "trends": {name: round(index_slope(values), 4) for name, values in series.items()},
        }

    def challenge_overview(self, user_id: str, as_of: Optional[datetime] = None) -> Dict[str, Any]:
        """Challenge breakdown plus strengths, weaknesses and recent direction."""

        moment = as_utc(as_of) if as_of is not None else datetime.now(timezone.utc)
        stats = self.repository.get_user_stats(user_id) or empty_stats(user_id)
        since = moment - timedelta(days=self.config.window_days)
        recent = [s for s in self.repository.list_submissions(user_id, since) if as_utc(s.created_at) <= moment]
        overview = detailed_stats(stats)
        overview["overall"]["current_streak"] = effective_streak(stats, moment.date())
        overview["progress"] = analyze_progress(stats, recent, self.config.recent_accuracy_window)
        return overview

    # ------------------------------------------------------------------
    # Daily challenge
    # ------------------------------------------------------------------
    def select_daily_challenge(self, user_id: str, selection_date: Optional[date] = None) -> DailyChallengeSelection:
        day = selection_date or datetime.now(timezone.utc).date()
        with self.locks.hold(user_id):
            try:
                return self.selector.select(user_id, day)
            except NoEligibleChallengeError as exc:
                logger.warning("%s; allowing repeats", exc)
                return self.selector.select(user_id, day, allow_repeats=True)


def _component(row: EchoScoreHistory, name: str) -> float:
    return float(getattr(row, f"{name}_score"))
