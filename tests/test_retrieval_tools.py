"""Tests for retrieval tools and retrieval confidence."""

from datetime import datetime, timedelta

import pytest

from conftest import axis_vector, make_summary
from models import MessageRange, Summary, new_id, now
from retrieval.confidence import (
    coverage_confidence,
    date_confidence,
    merge_confidence,
    recent_confidence,
    semantic_confidence,
)
from retrieval.tools import MAX_DATE_RESULTS, RetrievalTools, build_retrieval_registry, time_match
from utils.time_query import parse_time_query


@pytest.fixture
def registry(store, topic_index):
    return build_retrieval_registry(RetrievalTools(store, topic_index))


class TestDateBasedTopicSearch:

    @pytest.mark.asyncio
    async def test_reports_overflow(self, store, conversation, registry):
        yesterday = now() - timedelta(days=1)
        for level in range(1, 5):
            await make_summary(store, conversation.id, f"topic {level}", level, yesterday.replace(hour=8 + level))

        result = await registry.invoke("date_based_topic_search", {
            "conversation_id": conversation.id, "date_query": "yesterday", "limit": 2,
        })

        assert result.success
        assert [s.topic_name for s in result.data["summaries"]] == ["topic 4", "topic 3"]
        assert result.data["totalFound"] == 4
        assert result.data["hasMoreTopics"] is True
        assert result.data["remainingCount"] == 2
        assert result.data["warning"] is None

    @pytest.mark.asyncio
    async def test_unparseable_date_has_suggestions(self, conversation, registry):
        result = await registry.invoke("date_based_topic_search", {
            "conversation_id": conversation.id, "date_query": "the blue moon",
        })

        assert result.success is False
        assert "the blue moon" in result.error
        assert "yesterday" in result.data["suggestions"]

    @pytest.mark.asyncio
    async def test_limit_capped(self, store, conversation, registry):
        for level in range(1, MAX_DATE_RESULTS + 3):
            await make_summary(store, conversation.id, f"topic {level}", level, now() - timedelta(seconds=level))

        result = await registry.invoke("date_based_topic_search", {
            "conversation_id": conversation.id, "date_query": "last 2 days", "limit": 50,
        })

        assert len(result.data["summaries"]) == MAX_DATE_RESULTS


class TestSemanticTopicSearch:

    @pytest.mark.asyncio
    async def test_threshold_passed_through(self, store, conversation):
        from conftest import FakeEmbeddings
        from embeddings.topic_index import TopicEmbeddingIndex

        await make_summary(store, conversation.id, "close", 1, now(), vector=axis_vector(0.8))
        await make_summary(store, conversation.id, "loose", 2, now(), vector=axis_vector(0.4))
        index = TopicEmbeddingIndex(store, provider=FakeEmbeddings({"stars": axis_vector(1.0)}))
        tools = RetrievalTools(store, index)

        strict = await tools.semantic_topic_search(conversation.id, "stars", threshold=0.7)
        loose = await tools.semantic_topic_search(conversation.id, "stars", threshold=0.3)

        assert strict["totalFound"] == 1
        assert [s.topic_name for s in loose["summaries"]] == ["close", "loose"]


class TestCountTopics:

    @pytest.mark.asyncio
    async def test_counts_with_sample(self, store, conversation, registry):
        for level in range(1, 4):
            await make_summary(store, conversation.id, f"topic {level}", level, now() - timedelta(seconds=level))

        result = await registry.invoke("count_topics", {"conversation_id": conversation.id, "date_query": "today"})

        assert result.data["count"] == 3
        assert result.data["sampleTopics"] == ["topic 1", "topic 2", "topic 3"]
        assert result.data["overflow"] is False

    @pytest.mark.asyncio
    async def test_overflow_recommendation(self, store, conversation, registry):
        for level in range(1, MAX_DATE_RESULTS + 3):
            await make_summary(store, conversation.id, f"topic {level}", level, now() - timedelta(seconds=level))

        result = await registry.invoke("count_topics", {"conversation_id": conversation.id})

        assert result.data["overflow"] is True
        assert result.data["recommendations"]

    @pytest.mark.asyncio
    async def test_empty_recommendation(self, conversation, registry):
        result = await registry.invoke("count_topics", {"conversation_id": conversation.id})

        assert result.data["count"] == 0
        assert "wider date range" in result.data["recommendations"][0]


def test_time_match_labels():
    reference = datetime(2025, 10, 15, 14, 30)
    assert time_match(parse_time_query("yesterday", reference)) == "exact"
    assert time_match(parse_time_query("last 3 days", reference)) == "within_range"
    assert time_match(parse_time_query("last 30 days", reference)) == "partial"


def scored(similarity):
    return Summary(
        id=new_id(), conversation_id="c", topic_name=f"t{similarity}", summary_text="",
        message_range=MessageRange(new_id(), new_id(), 1), summary_level=1, similarity=similarity,
    )


class TestRetrievalConfidence:

    def test_adding_a_strong_match_never_lowers_quality(self):
        base = [scored(0.4), scored(0.5)]
        before = semantic_confidence(base, 5, 1, 1)
        after = semantic_confidence(base + [scored(0.95)], 5, 1, 1)
        assert after.quality >= before.quality
        assert after.has_strong_matches and not before.has_strong_matches

    def test_semantic_empty(self):
        report = semantic_confidence([], 5, 0, 2)
        assert report.quality == 0.0
        assert report.average_similarity is None

    def test_query_match_rate_raises_quality(self):
        hits = [scored(0.8)]
        assert semantic_confidence(hits, 5, 2, 2).quality > semantic_confidence(hits, 5, 1, 2).quality

    def test_recent_filter_bonus(self):
        hits = [scored(None)]
        assert recent_confidence(hits, 3, True).quality > recent_confidence(hits, 3, False).quality
        assert recent_confidence([], 3, True).quality == pytest.approx(0.1)

    def test_clamped_date_window_penalized(self):
        hits = [scored(None)]
        exact = date_confidence(hits, 5, exact_window=True)
        clamped = date_confidence(hits, 5, exact_window=False)
        assert clamped.quality < exact.quality
        assert not clamped.has_strong_matches

    def test_coverage(self):
        assert coverage_confidence([scored(None)] * 2, 2).quality == pytest.approx(0.9)
        assert coverage_confidence([], 0).quality == pytest.approx(0.1)

    def test_merge_takes_best(self):
        a = date_confidence([scored(None)], 5, True)
        b = semantic_confidence([scored(0.9)], 5, 1, 1)
        merged = merge_confidence(a, b, 2)
        assert merged.quality == max(a.quality, b.quality)
        assert merged.average_similarity == b.average_similarity
        assert merged.result_count == 2
