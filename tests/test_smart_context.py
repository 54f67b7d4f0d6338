"""Tests for strategy-driven context retrieval."""

import sqlite3
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import FakeEmbeddings, axis_vector, make_summary
from embeddings.topic_index import TopicEmbeddingIndex
from intent.schema import ExecutionPlan, ExecutionStep, IntentAnalysisResult
from models import MessageRange, Summary, new_id, now
from retrieval.smart_context import SmartContextRetriever, order_by_recency_then_relevance, topic_terms


def intent(strategy, **kwargs):
    kwargs.setdefault("max_context_items", 5)
    return IntentAnalysisResult(
        current_intent="test",
        contextual_relevance="high",
        relationship_to_history="recall",
        context_retrieval_strategy=strategy,
        **kwargs,
    )


def summary(topic, created_at, similarity=None, relevance=0.5):
    return Summary(
        id=new_id(),
        conversation_id="conv",
        topic_name=topic,
        summary_text=f"About {topic}",
        message_range=MessageRange(new_id(), new_id(), 2),
        summary_level=1,
        topic_relevance=relevance,
        created_at=created_at,
        similarity=similarity,
    )


def retriever_with(store, vectors=None, fail=False):
    index = TopicEmbeddingIndex(store, provider=FakeEmbeddings(vectors, fail=fail))
    return SmartContextRetriever(store, index)


class TestOrdering:

    def test_older_strong_match_comes_after_recent_weaker_one(self):
        base = datetime(2025, 10, 15, 12)
        strong_old = summary("strong", base - timedelta(hours=3), similarity=0.9)
        weak_new = summary("weak", base - timedelta(minutes=10), similarity=0.5)

        ordered = order_by_recency_then_relevance([strong_old, weak_new], window_seconds=3600)

        assert [s.topic_name for s in ordered] == ["weak", "strong"]

    def test_same_minute_orders_by_relevance(self):
        base = datetime(2025, 10, 15, 12)
        weak = summary("weak", base + timedelta(seconds=30), similarity=0.5)
        strong = summary("strong", base, similarity=0.9)

        ordered = order_by_recency_then_relevance([weak, strong], window_seconds=3600)

        assert [s.topic_name for s in ordered] == ["strong", "weak"]

    def test_topic_relevance_used_without_similarity(self):
        base = datetime(2025, 10, 15, 12)
        low = summary("low", base, relevance=0.2)
        high = summary("high", base, relevance=0.8)

        assert [s.topic_name for s in order_by_recency_then_relevance([low, high], 60)] == ["high", "low"]


def test_topic_terms():
    assert topic_terms(["Telescope mounts", "AI", "telescope"]) == [
        "telescope mounts", "telescope", "mounts", "ai",
    ]


class TestSimpleStrategies:

    @pytest.mark.asyncio
    async def test_none_returns_nothing(self, store, conversation):
        await make_summary(store, conversation.id, "anything", 1, now())
        retriever = retriever_with(store)

        result = await retriever.retrieve(conversation.id, intent("none"))

        assert result.success
        assert result.summaries == []
        assert result.retrieval_method == "none"
        assert result.total_available == 1

    @pytest.mark.asyncio
    async def test_recent_with_topic_filter(self, store, conversation):
        base = now()
        await make_summary(store, conversation.id, "Telescope mounts", 1, base - timedelta(hours=1))
        await make_summary(store, conversation.id, "Sourdough bread", 2, base)
        retriever = retriever_with(store)

        result = await retriever.retrieve(conversation.id, intent("recent_only", key_topics=["telescope"]))

        assert [s.topic_name for s in result.summaries] == ["Telescope mounts"]
        assert result.metadata["topicFilterMatched"] is True
        assert result.confidence.has_strong_matches

    @pytest.mark.asyncio
    async def test_recent_unmatched_filter_returns_latest(self, store, conversation):
        base = now()
        await make_summary(store, conversation.id, "Telescope mounts", 1, base - timedelta(hours=1))
        await make_summary(store, conversation.id, "Sourdough bread", 2, base)
        retriever = retriever_with(store)

        result = await retriever.retrieve(conversation.id, intent("recent_only", key_topics=["gardening"]))

        assert [s.topic_name for s in result.summaries] == ["Sourdough bread", "Telescope mounts"]
        assert result.metadata["topicFilterMatched"] is False

    @pytest.mark.asyncio
    async def test_all_available_foundational_first(self, store, conversation):
        base = now()
        for level in (3, 1, 2):
            await make_summary(store, conversation.id, f"level {level}", level, base - timedelta(days=4 - level))
        retriever = retriever_with(store)

        result = await retriever.retrieve(conversation.id, intent("all_available", max_context_items=2))

        assert [s.summary_level for s in result.summaries] == [1, 2]
        assert result.total_available == 3
        assert result.retrieval_method == "all_available"

    @pytest.mark.asyncio
    async def test_unknown_strategy_uses_recent(self, store, conversation):
        await make_summary(store, conversation.id, "anything", 1, now())
        retriever = retriever_with(store)

        result = await retriever.retrieve(conversation.id, intent("psychic_search"))

        assert result.success
        assert result.retrieval_method == "recent_only"
        assert result.metadata["fallbackFrom"] == "psychic_search"
        assert len(result.summaries) == 1


class TestSemanticStrategy:

    @pytest.mark.asyncio
    async def test_exact_matches_ordered_by_recency(self, store, conversation):
        base = now()
        await make_summary(store, conversation.id, "Dobsonian", 1, base - timedelta(hours=3), vector=axis_vector(0.95))
        await make_summary(store, conversation.id, "Refractor", 2, base - timedelta(minutes=10), vector=axis_vector(0.75))
        await make_summary(store, conversation.id, "Sourdough", 3, base, vector=axis_vector(0.1))
        retriever = retriever_with(store, {"telescopes": axis_vector(1.0)})

        result = await retriever.retrieve(
            conversation.id, intent("semantic_search", semantic_search_queries=["telescopes"])
        )

        assert [s.topic_name for s in result.summaries] == ["Refractor", "Dobsonian"]
        assert result.metadata["hasExactMatches"] is True
        assert result.metadata["suggestRelatedTopics"] is False
        assert result.confidence.has_strong_matches

    @pytest.mark.asyncio
    async def test_related_matches_when_nothing_exact(self, store, conversation):
        await make_summary(store, conversation.id, "Binoculars", 1, now(), vector=axis_vector(0.5))
        retriever = retriever_with(store, {"telescopes": axis_vector(1.0)})

        result = await retriever.retrieve(
            conversation.id, intent("semantic_search", semantic_search_queries=["telescopes"])
        )

        assert [s.topic_name for s in result.summaries] == ["Binoculars"]
        assert result.metadata["hasExactMatches"] is False
        assert result.metadata["suggestRelatedTopics"] is True
        assert not result.confidence.has_strong_matches

    @pytest.mark.asyncio
    async def test_multiple_queries_deduplicated(self, store, conversation):
        await make_summary(store, conversation.id, "Dobsonian", 1, now(), vector=axis_vector(0.9))
        retriever = retriever_with(store, {"telescopes": axis_vector(1.0), "dobsonian": axis_vector(1.0)})

        result = await retriever.retrieve(
            conversation.id, intent("semantic_search", semantic_search_queries=["telescopes", "dobsonian"])
        )

        assert [s.topic_name for s in result.summaries] == ["Dobsonian"]
        assert result.confidence.query_match_rate == 1.0

    @pytest.mark.asyncio
    async def test_embedding_failure_falls_back_to_recent(self, store, conversation):
        await make_summary(store, conversation.id, "Dobsonian", 1, now())
        retriever = retriever_with(store, fail=True)

        result = await retriever.retrieve(
            conversation.id, intent("semantic_search", semantic_search_queries=["telescopes"])
        )

        assert result.success
        assert result.retrieval_method == "recent_only"
        assert result.metadata["fallbackFrom"] == "semantic_search"
        assert result.metadata["failedQueries"] == ["telescopes"]
        assert [s.topic_name for s in result.summaries] == ["Dobsonian"]


class TestDateStrategy:

    @pytest.mark.asyncio
    async def test_yesterday_window(self, store, conversation):
        base = now()
        await make_summary(store, conversation.id, "Yesterday's topic", 1, base - timedelta(days=1))
        await make_summary(store, conversation.id, "Old topic", 2, base - timedelta(days=5))
        retriever = retriever_with(store)

        result = await retriever.retrieve(conversation.id, intent("date_based_search", date_query="yesterday"))

        assert [s.topic_name for s in result.summaries] == ["Yesterday's topic"]
        assert result.summaries[0].time_match == "exact"
        assert result.metadata["dateQuery"] == "yesterday"
        assert result.metadata["warning"] is None
        assert result.confidence.has_strong_matches

    @pytest.mark.asyncio
    async def test_topic_mentions_sorted_first(self, store, conversation):
        yesterday = now() - timedelta(days=1)
        await make_summary(store, conversation.id, "API design", 1, yesterday.replace(hour=9))
        await make_summary(store, conversation.id, "Lunch plans", 2, yesterday.replace(hour=15))
        retriever = retriever_with(store)

        result = await retriever.retrieve(
            conversation.id, intent("date_based_search", date_query="yesterday", key_topics=["API"])
        )

        assert [s.topic_name for s in result.summaries] == ["API design", "Lunch plans"]

    @pytest.mark.asyncio
    async def test_clamped_window_warns(self, store, conversation):
        await make_summary(store, conversation.id, "Recent", 1, now() - timedelta(days=2))
        retriever = retriever_with(store)

        result = await retriever.retrieve(conversation.id, intent("date_based_search", date_query="last 30 days"))

        assert [s.topic_name for s in result.summaries] == ["Recent"]
        assert result.metadata["warning"]
        assert not result.confidence.has_strong_matches

    @pytest.mark.asyncio
    async def test_unparseable_date_falls_back_to_recent(self, store, conversation):
        await make_summary(store, conversation.id, "Anything", 1, now())
        retriever = retriever_with(store)

        result = await retriever.retrieve(
            conversation.id, intent("date_based_search", date_query="when the moon was blue")
        )

        assert result.success
        assert result.retrieval_method == "recent_only"
        assert result.metadata["fallbackFrom"] == "date_based_search"
        assert "when the moon was blue" in result.metadata["error"]

    @pytest.mark.asyncio
    async def test_hybrid_merges_date_results_first(self, store, conversation):
        base = now()
        await make_summary(store, conversation.id, "API design", 1, base - timedelta(days=1))
        await make_summary(store, conversation.id, "API auth", 2, base - timedelta(days=5), vector=axis_vector(0.9))
        retriever = retriever_with(store, {"APIs": axis_vector(1.0)})
        plan = ExecutionPlan(steps=[
            ExecutionStep("date_based_topic_search", {"date_query": "yesterday", "include_hours": False}),
            ExecutionStep("semantic_topic_search", {"queries": ["APIs"]}),
        ])

        result = await retriever.retrieve(
            conversation.id,
            intent("date_based_search", date_query="yesterday", key_topics=["APIs"], execution_plan=plan),
        )

        assert result.retrieval_method == "hybrid"
        assert [s.topic_name for s in result.summaries] == ["API design", "API auth"]
        assert result.metadata["dateResults"] == 1
        assert result.metadata["semanticResults"] == 1
        assert result.metadata["hasExactMatches"] is True
        assert result.metadata["merge"] == "date_first"

    @pytest.mark.asyncio
    async def test_hybrid_bad_date_keeps_semantic(self, store, conversation):
        await make_summary(store, conversation.id, "API auth", 1, now(), vector=axis_vector(0.9))
        retriever = retriever_with(store, {"APIs": axis_vector(1.0)})
        plan = ExecutionPlan(steps=[ExecutionStep("semantic_topic_search", {"queries": ["APIs"]})])

        result = await retriever.retrieve(
            conversation.id,
            intent("date_based_search", date_query="someday maybe", execution_plan=plan),
        )

        assert result.retrieval_method == "semantic_search"
        assert result.metadata["fallbackFrom"] == "hybrid"
        assert [s.topic_name for s in result.summaries] == ["API auth"]


@pytest.mark.asyncio
async def test_storage_failure_reported():
    store = MagicMock()
    store.count_summaries = AsyncMock(side_effect=sqlite3.OperationalError("disk I/O error"))
    retriever = SmartContextRetriever(store, MagicMock())

    result = await retriever.retrieve("conv", intent("recent_only"))

    assert result.success is False
    assert "disk I/O error" in result.error
    assert result.to_dict()["error"] == result.error


@pytest.mark.asyncio
async def test_context_stats(store, conversation):
    base = now()
    await make_summary(store, conversation.id, "today", 1, base)
    await make_summary(store, conversation.id, "earlier", 2, base - timedelta(days=3))
    retriever = retriever_with(store)

    stats = await retriever.get_context_stats(conversation.id)

    assert stats == {"totalSummaries": 2, "summaryLevels": {1: 1, 2: 1}, "recentSummaries": 1}


@pytest.mark.asyncio
async def test_result_to_dict(store, conversation):
    await make_summary(store, conversation.id, "anything", 1, now())
    retriever = retriever_with(store)

    data = (await retriever.retrieve(conversation.id, intent("recent_only"))).to_dict()

    assert data["retrievalMethod"] == "recent_only"
    assert data["retrieved"] == 1
    assert data["totalAvailable"] == 1
    assert data["confidence"]["resultCount"] == 1
    assert "error" not in data
