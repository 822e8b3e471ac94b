"""Adaptive selection of the daily challenge.

One selection exists per user and calendar day. The first call of the day
runs the decision rules below and stores the result; every later call that
day returns the stored row unchanged.

Rules, first match wins:

1. ``streak_recovery`` - the streak has lapsed: easiest level.
2. ``weak_skill_area`` - the weakest sufficiently attempted type, unless one
   of the last selections already targeted it.
3. ``adaptive_difficulty`` - high recent accuracy: one level up.
4. ``random`` - any active challenge not attempted in the repeat window.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable, List, Optional, Protocol, Sequence, Set, Tuple

from engines.accuracy import most_recent, ratio_correct
from engines.challenge_stats import WeakArea, effective_streak, empty_stats, find_weak_area
from engines.config import EchoScoreConfig
from engines.errors import ConcurrentSelectionRaceError, NoEligibleChallengeError
from engines.metrics import as_utc
from schemas import (
    Challenge,
    ChallengeSubmission,
    DailyChallengeSelection,
    SelectionReason,
    UserChallengeStats,
)

logger = logging.getLogger(__name__)


class SelectionRepository(Protocol):
    def get_daily_selection(self, user_id: str, selection_date: date) -> Optional[DailyChallengeSelection]: ...

    def insert_daily_selection(self, selection: DailyChallengeSelection) -> DailyChallengeSelection: ...

    def list_recent_selections(self, user_id: str, before: date, limit: int) -> Sequence[DailyChallengeSelection]: ...

    def list_active_challenges(self) -> Sequence[Challenge]: ...

    def get_user_stats(self, user_id: str) -> Optional[UserChallengeStats]: ...

    def list_submissions(self, user_id: str, since: datetime) -> Sequence[ChallengeSubmission]: ...


def _bounded(delta: int) -> int:
    return max(-1, min(1, delta))


def _start_of_day(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


@dataclass
class SelectionContext:
    """Everything the decision rules look at for one (user, day)."""

    user_id: str
    selection_date: date
    stats: UserChallengeStats
    submissions: Sequence[ChallengeSubmission]
    recent_selections: Sequence[DailyChallengeSelection]
    challenges: Sequence[Challenge]


class ChallengeSelector:
    def __init__(
        self,
        config: EchoScoreConfig,
        repository: Optional[SelectionRepository] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        if repository is None:
            import db as repository  # type: ignore[no-redef]
        self.config = config
        self.repository = repository
        self._rng = rng

    # ----- public API --------------------------------------------------
    def select(
        self,
        user_id: str,
        selection_date: Optional[date] = None,
        *,
        allow_repeats: bool = False,
    ) -> DailyChallengeSelection:
        """Return the user's challenge for ``selection_date``, creating it once."""

        day = selection_date or datetime.now(timezone.utc).date()
        existing = self.repository.get_daily_selection(user_id, day)
        if existing is not None:
            return existing

        context = self.load_context(user_id, day)
        decision = self.decide(context, allow_repeats=allow_repeats)
        try:
            stored = self.repository.insert_daily_selection(decision)
        except ConcurrentSelectionRaceError:
            logger.info("Selection for %s on %s was created concurrently; re-reading", user_id, day)
            stored = self.repository.get_daily_selection(user_id, day)
            if stored is None:
                raise
            return stored

        logger.info(
            "Selected challenge %s for %s on %s (%s, adjustment %+d)",
            stored.selected_challenge_id,
            user_id,
            day,
            stored.selection_reason,
            stored.difficulty_adjustment,
        )
        return stored

    def load_context(self, user_id: str, selection_date: date) -> SelectionContext:
        lookback = max(self.config.repeat_prevention_days, self.config.window_days)
        since = _start_of_day(selection_date - timedelta(days=lookback))
        end = _start_of_day(selection_date + timedelta(days=1))
        submissions = [
            s for s in self.repository.list_submissions(user_id, since) if as_utc(s.created_at) < end
        ]
        return SelectionContext(
            user_id=user_id,
            selection_date=selection_date,
            stats=self.repository.get_user_stats(user_id) or empty_stats(user_id),
            submissions=submissions,
            recent_selections=list(
                self.repository.list_recent_selections(
                    user_id, selection_date, self.config.recent_selections_considered
                )
            ),
            challenges=[c for c in self.repository.list_active_challenges() if c.is_active],
        )

    def decide(self, context: SelectionContext, *, allow_repeats: bool = False) -> DailyChallengeSelection:
        """Apply the decision rules to ``context``; nothing is stored.

        Raises :class:`NoEligibleChallengeError` when the random fallback has
        no candidate left.
        """

        rng = self._rng or random.Random(f"{context.user_id}:{context.selection_date.isoformat()}")
        recent_ids = self.recently_attempted(context.submissions, context.selection_date)
        current = self.current_difficulty(context)
        current_idx = self.config.difficulty_index(current)

        # 1. streak recovery
        if effective_streak(context.stats, context.selection_date) == 0:
            target = self.config.lowest_difficulty
            picked = self._pick(context.challenges, rng, recent_ids, difficulty=target, allow_repeats=allow_repeats)
            if picked is not None:
                delta = self.config.difficulty_index(target) - current_idx
                return self._selection(context, picked, "streak_recovery", _bounded(delta))

        # 2. weak skill area
        weak = self.weak_area(context.stats)
        if weak is not None and not self._recently_targeted(weak, context.recent_selections):
            picked = self._pick(
                context.challenges,
                rng,
                recent_ids,
                difficulty=current,
                challenge_type=weak.challenge_type,
                allow_repeats=allow_repeats,
                relax_type=False,
            )
            if picked is not None:
                return self._selection(context, picked, "weak_skill_area", 0)

        # 3. adaptive difficulty
        window = most_recent(context.submissions, self.config.adaptive_window)
        if (
            len(window) >= self.config.adaptive_min_submissions
            and ratio_correct(window) >= self.config.adaptive_accuracy_threshold
        ):
            target = self.config.shift_difficulty(current, 1)
            picked = self._pick(context.challenges, rng, recent_ids, difficulty=target, allow_repeats=allow_repeats)
            if picked is not None:
                delta = self.config.difficulty_index(target) - current_idx
                return self._selection(context, picked, "adaptive_difficulty", _bounded(delta))

        # 4. random
        candidates = [c for c in context.challenges if allow_repeats or c.id not in recent_ids]
        if not candidates:
            raise NoEligibleChallengeError(context.user_id, self.config.repeat_prevention_days)
        picked = rng.choice(sorted(candidates, key=lambda c: c.id))
        return self._selection(context, picked, "random", 0)

    # ----- helpers -----------------------------------------------------
    def weak_area(self, stats: UserChallengeStats) -> Optional[WeakArea]:
        return find_weak_area(
            stats,
            min_attempts=self.config.weak_area_min_attempts,
            max_accuracy=self.config.weak_area_max_accuracy,
        )

    def current_difficulty(self, context: SelectionContext) -> str:
        """Difficulty of the latest submission, else of the latest selection."""

        latest = most_recent(context.submissions, 1)
        if latest and latest[0].difficulty in self.config.difficulty_levels:
            return latest[0].difficulty
        for selection in context.recent_selections:
            if selection.difficulty in self.config.difficulty_levels:
                return selection.difficulty  # type: ignore[return-value]
        return self.config.lowest_difficulty

    def recently_attempted(self, submissions: Iterable[ChallengeSubmission], selection_date: date) -> Set[str]:
        cutoff = selection_date - timedelta(days=self.config.repeat_prevention_days)
        return {s.challenge_id for s in submissions if as_utc(s.created_at).date() >= cutoff}

    def _recently_targeted(self, weak: WeakArea, selections: Sequence[DailyChallengeSelection]) -> bool:
        limit = self.config.recent_selections_considered
        for selection in list(selections)[:limit]:
            if selection.challenge_type is not None and selection.challenge_type.value == weak.challenge_type:
                return True
        return False

    def _pick(
        self,
        challenges: Sequence[Challenge],
        rng: random.Random,
        recent_ids: Set[str],
        *,
        difficulty: str,
        challenge_type: Optional[str] = None,
        allow_repeats: bool = False,
        relax_type: bool = True,
    ) -> Optional[Challenge]:
        """Choose a challenge at ``difficulty``, preferring fresh type matches.

        Preference order: type and difficulty not attempted recently, then
        difficulty only (when ``relax_type``), then the same two again with
        recently attempted challenges allowed.
        """

        def matches(challenge: Challenge, with_type: bool) -> bool:
            if challenge.difficulty != difficulty:
                return False
            return not with_type or challenge.challenge_type.value == challenge_type

        # (match type, skip recent ids)
        tiers: List[Tuple[bool, bool]] = []
        for fresh_only in (True, False):
            if challenge_type is not None:
                tiers.append((True, fresh_only))
            if challenge_type is None or relax_type:
                tiers.append((False, fresh_only))

        for with_type, fresh_only in tiers:
            skip_recent = fresh_only and not allow_repeats
            pool = [
                c for c in challenges if matches(c, with_type) and not (skip_recent and c.id in recent_ids)
            ]
            if pool:
                return rng.choice(sorted(pool, key=lambda c: c.id))
        return None

    def _selection(
        self,
        context: SelectionContext,
        challenge: Challenge,
        reason: SelectionReason,
        adjustment: int,
    ) -> DailyChallengeSelection:
        return DailyChallengeSelection(
            user_id=context.user_id,
            selected_challenge_id=challenge.id,
            selection_date=context.selection_date,
            selection_reason=reason,
            difficulty_adjustment=_bounded(adjustment),
            challenge_type=challenge.challenge_type,
            difficulty=challenge.difficulty,
        )
