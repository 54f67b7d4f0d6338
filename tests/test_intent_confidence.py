"""Tests for intent confidence scoring."""

import pytest

from intent.confidence import (
    combine,
    confidence_level,
    context_availability,
    historical_match,
    query_specificity,
    rescore_with_search_quality,
    score_analysis,
)
from intent.schema import ConfidenceReport, IntentAnalysisResult


def test_context_availability_bounds():
    assert context_availability(0, 0) == pytest.approx(0.2)
    assert context_availability(10, 3) == pytest.approx(1.0)
    assert context_availability(100, 50) == pytest.approx(1.0)


def test_query_specificity_rewards_concrete_questions():
    vague = query_specificity("ok", [])
    specific = query_specificity("What did we decide about telescopes yesterday?", ["telescopes", "mounts"])
    assert vague == pytest.approx(0.3)
    assert specific > vague
    assert specific <= 1.0


def test_historical_match_prior():
    assert historical_match("recall") > historical_match("continuation") > historical_match("new_topic")
    assert historical_match("unknown") == pytest.approx(0.4)


@pytest.mark.parametrize("score,expected", [(0.8, "high"), (0.75, "high"), (0.6, "medium"), (0.49, "low")])
def test_confidence_level(score, expected):
    assert confidence_level(score, 0.75, 0.5) == expected


def test_combine_ignores_factors_without_weight():
    weights = {"a": 1.0, "b": 1.0}
    assert combine({"a": 1.0, "b": 0.0, "c": 5.0}, weights) == pytest.approx(0.5)
    assert combine({}, weights) == 0.0


def test_score_analysis_uses_search_prior():
    result = IntentAnalysisResult(
        current_intent="Recall telescope advice",
        contextual_relevance="high",
        relationship_to_history="recall",
        context_retrieval_strategy="semantic_search",
        key_topics=["telescopes"],
    )
    report = score_analysis(result, "Do you remember the telescope?", message_count=6, summary_count=1)

    assert report.factors["search_result_quality"] == pytest.approx(0.5)
    assert set(report.factors) == {
        "search_result_quality", "context_availability", "query_specificity", "historical_match",
    }
    assert 0.0 <= report.score <= 1.0
    assert report.level in ("high", "medium", "low")


def test_rescore_is_monotonic_in_search_quality():
    report = ConfidenceReport(score=0.5, level="medium", factors={
        "search_result_quality": 0.5,
        "context_availability": 0.5,
        "query_specificity": 0.5,
        "historical_match": 0.5,
    })
    scores = [rescore_with_search_quality(report, q).score for q in (0.0, 0.3, 0.6, 1.0)]
    assert scores == sorted(scores)
    assert scores[0] < scores[-1]


def test_rescore_uses_lower_thresholds():
    factors = dict.fromkeys(
        ("search_result_quality", "context_availability", "query_specificity", "historical_match"), 0.72
    )
    report = ConfidenceReport(score=0.72, level="medium", factors=factors)

    updated = rescore_with_search_quality(report, 0.72)

    assert updated.score == pytest.approx(0.72)
    assert updated.level == "high"
    assert report.factors["search_result_quality"] == 0.72


def test_rescore_clamps_quality():
    report = ConfidenceReport(score=0.5, level="medium", factors={"search_result_quality": 0.5})
    assert rescore_with_search_quality(report, 3.0).factors["search_result_quality"] == 1.0
