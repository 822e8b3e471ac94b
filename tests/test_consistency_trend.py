from datetime import timedelta

import pytest

from engines.aggregator import ScoreAggregator, SubScores
from engines.consistency import ConsistencyScorer, active_days
from engines.metrics import ActivityWindow
from engines.trend import TrendAnalyzer, index_slope, ols_slope, sigmoid
from factories import NOW, TODAY, days_ago, history_row, reading, submission
from schemas import SessionRecord


def _window(**kwargs) -> ActivityWindow:
    return ActivityWindow(user_id="u1", start=NOW - timedelta(days=30), end=NOW, window_days=30, **kwargs)


# ---------------------------------------------------------------------------
# Consistency
# ---------------------------------------------------------------------------


def test_consistency_formula(config):
    scorer = ConsistencyScorer(config)
    assert scorer.compute(15, 30, 15) == pytest.approx(50.0)
    assert scorer.compute(30, 30, 45) == pytest.approx(100.0)
    assert scorer.compute(0, 30, 0) == 0.0


def test_streak_strictly_increases_consistency(config):
    scorer = ConsistencyScorer(config)
    values = [scorer.compute(5, 30, streak) for streak in range(11)]
    assert all(later > earlier for earlier, later in zip(values, values[1:]))


def test_active_days_count_submissions_and_reading_but_not_sessions():
    window = _window(
        reading_events=[reading(when=days_ago(1)), reading(when=days_ago(1, hours=3))],
        submissions=[submission(when=days_ago(2)), submission(when=days_ago(1))],
        sessions=[SessionRecord(user_id="u1", session_start=days_ago(5), session_end=days_ago(5) + timedelta(minutes=20))],
    )

    assert active_days(window) == {days_ago(1).date(), days_ago(2).date()}


def test_consistency_details_include_sessions(config):
    window = _window(
        submissions=[submission(when=days_ago(0))],
        sessions=[
            SessionRecord(user_id="u1", session_start=days_ago(3), session_end=days_ago(3) + timedelta(minutes=30)),
            SessionRecord(user_id="u1", session_start=days_ago(2)),
        ],
    )

    result = ConsistencyScorer(config).score(window, current_streak=3)

    assert result.details["active_days"] == 1
    assert result.details["sessions"] == 2
    assert result.details["session_minutes"] == pytest.approx(30.0)
    assert result.score == pytest.approx(100.0 * (0.5 / 30 + 0.5 * 3 / 30))


# ---------------------------------------------------------------------------
# Trend
# ---------------------------------------------------------------------------


def test_ols_slope_basics():
    assert ols_slope([]) == 0.0
    assert ols_slope([(1.0, 5.0)]) == 0.0
    assert ols_slope([(2.0, 1.0), (2.0, 9.0)]) == 0.0
    assert ols_slope([(x, 2 * x + 1) for x in range(5)]) == pytest.approx(2.0)
    assert index_slope([10, 8, 6]) == pytest.approx(-2.0)
    assert sigmoid(0) == pytest.approx(0.5)
    assert 0.0 < sigmoid(-5) < 0.5
    assert sigmoid(800) == pytest.approx(1.0)


def test_short_history_is_neutral(config):
    analyzer = TrendAnalyzer(config)
    rows = [history_row("u1", TODAY - timedelta(days=1), accuracy=10), history_row("u1", TODAY, accuracy=90)]

    result = analyzer.analyze(rows)

    assert result.improvement_score == 50.0
    assert result.accuracy_slope == 0.0
    assert result.points_used == 2


def test_rising_scores_raise_improvement(config):
    rows = [history_row("u1", TODAY - timedelta(days=4 - i), accuracy=10.0 * (i + 1)) for i in range(5)]

    result = TrendAnalyzer(config).analyze(list(reversed(rows)))

    assert result.accuracy_slope == pytest.approx(10.0)
    assert result.speed_slope == pytest.approx(0.0)
    assert result.improvement_score > 50.0


def test_falling_scores_lower_improvement(config):
    rows = [history_row("u1", TODAY - timedelta(days=4 - i), diversity=80.0 - 15.0 * i) for i in range(5)]

    result = TrendAnalyzer(config).analyze(rows)

    assert result.diversity_slope == pytest.approx(-15.0)
    assert result.improvement_score < 50.0


def test_trend_uses_only_the_latest_rows(config):
    rows = [history_row("u1", TODAY - timedelta(days=i)) for i in range(20)]
    result = TrendAnalyzer(config).analyze(rows)
    assert result.points_used == 14


def test_single_aggregated_row_yields_flat_trend(config):
    row = ScoreAggregator(config).aggregate("u1", TODAY, SubScores(70, 60, 50, 40, 50))

    result = TrendAnalyzer(config).analyze([row])

    assert result.average_slope == 0.0
    assert result.improvement_score == 50.0
    assert result.details()["points_used"] == 1
