from datetime import date, timedelta

import pytest

from engines.challenge_stats import (
    analyze_progress,
    apply_submission,
    detailed_stats,
    effective_streak,
    empty_stats,
    find_weak_area,
    next_streak,
    rebuild_stats,
)
from factories import TODAY, days_ago, submission
from schemas import ChallengeType


def test_next_streak_transitions():
    day = date(2026, 3, 10)
    assert next_streak(0, None, day) == 1
    assert next_streak(3, day, day) == 3
    assert next_streak(0, day, day) == 1
    assert next_streak(3, day, day + timedelta(days=1)) == 4
    assert next_streak(3, day, day + timedelta(days=2)) == 1
    assert next_streak(3, day, day - timedelta(days=4)) == 3


def test_apply_submission_tracks_streaks_and_buckets():
    stats = empty_stats("u1")
    sequence = [
        submission(is_correct=True, seconds=30, when=days_ago(4)),
        submission(is_correct=False, seconds=60, when=days_ago(3)),
        submission(is_correct=True, seconds=90, when=days_ago(3, hours=-2)),
        submission(is_correct=True, seconds=20, when=days_ago(1), challenge_type=ChallengeType.SYNTHESIS),
    ]
    streaks = []
    for item in sequence:
        stats = apply_submission(stats, item)
        streaks.append(stats.current_streak)

    assert streaks == [1, 2, 2, 1]
    assert stats.longest_streak == 2
    assert stats.total_completed == 4
    assert stats.total_correct == 3
    assert stats.last_challenge_date == days_ago(1).date()

    logic = stats.type_performance["logic_puzzle"]
    assert (logic.completed, logic.correct) == (3, 2)
    assert logic.avg_time == pytest.approx(60.0)
    assert stats.difficulty_performance["beginner"].completed == 4


def test_apply_submission_returns_a_new_snapshot():
    stats = empty_stats("u1")
    updated = apply_submission(stats, submission())
    assert stats.total_completed == 0
    assert updated.total_completed == 1


def test_apply_submission_rejects_other_users():
    with pytest.raises(ValueError):
        apply_submission(empty_stats("u1"), submission(user_id="u2"))


def test_late_submission_does_not_rewind_last_date():
    stats = rebuild_stats("u1", [submission(when=days_ago(1))])
    stats = apply_submission(stats, submission(when=days_ago(6)))
    assert stats.last_challenge_date == days_ago(1).date()
    assert stats.current_streak == 1


def test_effective_streak_lapses_after_a_missed_day():
    stats = rebuild_stats("u1", [submission(when=days_ago(i)) for i in (3, 2, 1)])
    assert stats.current_streak == 3
    assert effective_streak(stats, TODAY) == 3
    assert effective_streak(stats, TODAY + timedelta(days=1)) == 0
    assert effective_streak(empty_stats("u1"), TODAY) == 0


def _stats_with(results):
    items = []
    offset = 0
    for challenge_type, flags in results.items():
        for flag in flags:
            items.append(submission(challenge_type=challenge_type, is_correct=flag, when=days_ago(0, hours=offset)))
            offset += 1
    return rebuild_stats("u1", items)


def test_find_weak_area_picks_lowest_accuracy_with_enough_attempts():
    stats = _stats_with(
        {
            ChallengeType.LOGIC_PUZZLE: [True, False, False],
            ChallengeType.DATA_LITERACY: [True, True, False, False],
            ChallengeType.SYNTHESIS: [False, False],
        }
    )

    weak = find_weak_area(stats)

    assert weak is not None
    assert weak.challenge_type == "logic_puzzle"
    assert weak.attempts == 3
    assert weak.accuracy == pytest.approx(1 / 3)
    assert weak.weakest_difficulty == "beginner"


def test_find_weak_area_ignores_strong_types():
    stats = _stats_with({ChallengeType.LOGIC_PUZZLE: [True] * 5, ChallengeType.BIAS_SWAP: [True, True, True]})
    assert find_weak_area(stats) is None


def test_find_weak_area_requires_accuracy_below_sixty_percent():
    passing = _stats_with({ChallengeType.LOGIC_PUZZLE: [False, False, False] + [True] * 7})
    failing = _stats_with({ChallengeType.LOGIC_PUZZLE: [False, True, False, True, False]})

    assert find_weak_area(passing) is None
    assert find_weak_area(failing).accuracy == pytest.approx(0.4)


def test_detailed_stats_reports_percentages():
    stats = _stats_with({ChallengeType.LOGIC_PUZZLE: [True, False, True, False]})

    report = detailed_stats(stats)

    assert report["overall"]["total_completed"] == 4
    assert report["overall"]["accuracy"] == 50
    assert report["overall"]["average_time_seconds"] == 60
    assert report["by_type"]["logic_puzzle"]["accuracy"] == 50
    assert report["by_difficulty"]["beginner"]["completed"] == 4


def test_analyze_progress_lists_strengths_and_weaknesses():
    stats = _stats_with(
        {
            ChallengeType.LOGIC_PUZZLE: [True, True, True, True, False],
            ChallengeType.DATA_LITERACY: [True, False, False, False],
        }
    )
    recent = [
        submission(challenge_type=ChallengeType.LOGIC_PUZZLE, is_correct=True, when=days_ago(0, hours=-i))
        for i in range(1, 4)
    ]

    progress = analyze_progress(stats, recent)

    assert progress["strengths"] == ["logic_puzzle"]
    assert progress["weaknesses"] == ["data_literacy"]
    assert progress["recommended_focus"] == ["data_literacy"]
    assert progress["progress_trend"] == "improving"
