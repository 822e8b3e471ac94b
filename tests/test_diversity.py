import pytest

from engines.diversity import DiversityScorer, gini_index
from factories import reading
from schemas import BiasCategory


def test_gini_index_bounds():
    assert gini_index([]) == 0.0
    assert gini_index([5]) == 1.0
    assert gini_index([3, 3, 3]) == pytest.approx(0.0)
    # zero buckets are ignored, so one non-empty bucket is maximal concentration
    assert gini_index([4, 0, 0]) == 1.0
    assert gini_index([1, 3]) == pytest.approx(0.5)


def test_even_spread_across_all_buckets_scores_full_marks(config):
    events = [reading(bias=category, content_id=f"a-{i}") for i, category in enumerate(BiasCategory)] * 2

    result = DiversityScorer(config).score(events)

    assert result.score == pytest.approx(100.0)
    assert result.details["buckets_touched"] == 7
    assert result.details["bias_range"] == 6
    assert result.details["capped"] is False


def test_single_bucket_scores_zero(config):
    events = [reading(bias=BiasCategory.LEFT, content_id=f"a-{i}") for i in range(6)]

    result = DiversityScorer(config).score(events)

    assert result.score == 0.0
    assert result.details["gini_index"] == 1.0
    assert result.details["bias_range"] == 0


def test_two_adjacent_buckets_are_capped(config):
    events = [reading(bias=BiasCategory.LEFT_CENTER, content_id=f"l-{i}") for i in range(10)]
    events += [reading(bias=BiasCategory.CENTER, content_id=f"c-{i}") for i in range(10)]

    result = DiversityScorer(config).score(events)

    assert result.score == pytest.approx(40.0)
    assert result.details["raw_score"] == pytest.approx(100.0)
    assert result.details["capped"] is True
    assert result.details["buckets_touched"] == 2
    assert result.details["bias_range"] == 1


def test_three_buckets_lift_the_cap(config):
    events = [
        reading(bias=BiasCategory.LEFT),
        reading(bias=BiasCategory.CENTER),
        reading(bias=BiasCategory.RIGHT),
    ]

    result = DiversityScorer(config).score(events)

    assert result.score == pytest.approx(100.0)
    assert result.details["capped"] is False


def test_sources_and_topics_are_reported(config):
    events = [
        reading(bias=BiasCategory.LEFT, source="outlet-b", topics=["economy"]),
        reading(bias=BiasCategory.RIGHT, source="outlet-a", topics=["economy", "climate"]),
        reading(bias=BiasCategory.CENTER, source="outlet-a"),
    ]

    details = DiversityScorer(config).score(events).details

    assert details["sources_read"] == ["outlet-a", "outlet-b"]
    assert details["topics_covered"] == 2
    assert details["articles_read"] == 3
    assert details["bucket_counts"]["center"] == 1
    assert details["bucket_counts"]["far_left"] == 0


def test_no_or_single_event_scores_zero(config):
    scorer = DiversityScorer(config)
    assert scorer.score([]).score == 0.0
    assert scorer.score([reading()]).score == 0.0
