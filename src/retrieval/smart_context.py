"""Strategy-driven retrieval of earlier conversation context.

The intent decision names a strategy; SmartContextRetriever turns it into a
list of summaries plus a confidence report. Searches go through the tool
registry so each carries its own timeout, and every failed search degrades
to recent summaries instead of surfacing an error.
"""

import asyncio
import math
import sqlite3
from dataclasses import dataclass, field
from datetime import timedelta
from functools import cmp_to_key
from typing import Any, Optional

from config import get_config, logger
from db.store import ConversationStore
from embeddings.topic_index import TopicEmbeddingIndex
from errors import ContextRecallError
from intent.schema import (
    ALL_AVAILABLE,
    DATE_BASED_SEARCH,
    NONE,
    RECENT_ONLY,
    SEMANTIC_SEARCH,
    ExecutionPlan,
    IntentAnalysisResult,
)
from llm.tool_registry import ToolRegistry, ToolResult
from models import Summary, now
from retrieval.confidence import (
    RetrievalConfidence,
    coverage_confidence,
    date_confidence,
    merge_confidence,
    recent_confidence,
    semantic_confidence,
)
from retrieval.tools import RetrievalTools, build_retrieval_registry


@dataclass
class RetrievalResult:
    """Summaries chosen for one turn and how they were found.

    Attributes:
        retrieval_method: none, recent_only, semantic_search,
            date_based_search, hybrid or all_available
        total_available: Summaries stored for the conversation
        metadata: Strategy details (search queries, date window, fallbacks)
    """
    summaries: list[Summary] = field(default_factory=list)
    retrieval_method: str = NONE
    total_available: int = 0
    confidence: Optional[RetrievalConfidence] = None
    metadata: dict[str, Any] = field(default_factory=dict)
    success: bool = True
    error: Optional[str] = None

    @property
    def retrieved(self) -> int:
        return len(self.summaries)

    def to_dict(self) -> dict:
        data = {
            "summaries": [s.to_dict() for s in self.summaries],
            "retrievalMethod": self.retrieval_method,
            "totalAvailable": self.total_available,
            "retrieved": self.retrieved,
            "confidence": self.confidence.to_dict() if self.confidence else None,
            "metadata": self.metadata,
            "success": self.success,
        }
        if self.error:
            data["error"] = self.error
        return data


def _relevance(summary: Summary) -> float:
    return summary.similarity if summary.similarity is not None else summary.topic_relevance


def order_by_recency_then_relevance(summaries: list[Summary], window_seconds: Optional[float] = None) -> list[Summary]:
    """Newest first, except near-simultaneous summaries go by relevance.

    Two summaries created more than ``window_seconds`` apart are ordered by
    creation time; closer than that, the more relevant one wins.
    """
    window = get_config().recency_window_seconds if window_seconds is None else window_seconds

    def compare(a: Summary, b: Summary) -> int:
        gap = (b.created_at - a.created_at).total_seconds()
        if abs(gap) > window:
            return 1 if gap > 0 else -1
        diff = _relevance(b) - _relevance(a)
        if diff > 0:
            return 1
        if diff < 0:
            return -1
        return 0

    return sorted(summaries, key=cmp_to_key(compare))


def _dedupe_by_topic(summaries: list[Summary]) -> list[Summary]:
    """Keep one summary per topic name, the more similar one."""
    best: dict[str, Summary] = {}
    for s in summaries:
        key = s.topic_name.strip().lower()
        current = best.get(key)
        if current is None or _relevance(s) > _relevance(current):
            best[key] = s
    return list(best.values())


def topic_terms(key_topics: list[str]) -> list[str]:
    """Whole phrases plus their individual words longer than two letters."""
    terms: list[str] = []
    for topic in key_topics:
        phrase = topic.strip().lower()
        if phrase:
            terms.append(phrase)
        terms.extend(word for word in phrase.split() if len(word) > 2)

    seen = set()
    unique = []
    for term in terms:
        if term not in seen:
            seen.add(term)
            unique.append(term)
    return unique


class SmartContextRetriever:
    """Fetches the history an intent decision asks for.

    Args:
        store: Conversation store
        topic_index: Embedding index for semantic search
        registry: Tool registry; built from the store and index if omitted
    """

    def __init__(
        self,
        store: ConversationStore,
        topic_index: TopicEmbeddingIndex,
        registry: Optional[ToolRegistry] = None
    ):
        self.store = store
        self.topic_index = topic_index
        self.registry = registry or build_retrieval_registry(RetrievalTools(store, topic_index))
        self.config = get_config()

    async def retrieve(self, conversation_id: str, intent: IntentAnalysisResult) -> RetrievalResult:
        """Run the intent's strategy. Never raises for search failures."""
        strategy = intent.context_retrieval_strategy
        limit = intent.max_context_items

        try:
            total = await self.store.count_summaries(conversation_id)
        except (ContextRecallError, sqlite3.Error) as e:
            logger.error(f"Could not count summaries for {conversation_id}: {e}")
            return RetrievalResult(retrieval_method=strategy, success=False, error=str(e))

        try:
            if strategy == NONE:
                result = RetrievalResult(retrieval_method=NONE)
            elif strategy == RECENT_ONLY:
                result = await self._recent(conversation_id, limit, intent.key_topics)
            elif strategy == SEMANTIC_SEARCH:
                queries = intent.semantic_search_queries or intent.key_topics
                result = await self._semantic(conversation_id, queries, limit)
            elif strategy == DATE_BASED_SEARCH:
                if intent.execution_plan is not None and intent.execution_plan.steps:
                    result = await self._hybrid(conversation_id, intent, limit)
                else:
                    result = await self._date_based(
                        conversation_id, intent.date_query, limit, intent.include_hours, intent.key_topics
                    )
            elif strategy == ALL_AVAILABLE:
                result = await self._all_available(conversation_id, limit, total)
            else:
                logger.warning(f"Unknown context retrieval strategy: {strategy}")
                result = await self._recent(conversation_id, self.config.recent_limit, intent.key_topics)
                result.metadata["fallbackFrom"] = strategy
        except (ContextRecallError, sqlite3.Error) as e:
            logger.error(f"Context retrieval failed for {conversation_id} ({strategy}): {e}")
            return RetrievalResult(
                retrieval_method=strategy, total_available=total, success=False, error=str(e)
            )

        result.total_available = total
        logger.info(
            f"Retrieved {result.retrieved}/{total} summaries for {conversation_id} "
            f"via {result.retrieval_method}"
        )
        return result

    async def _recent(self, conversation_id: str, limit: int, key_topics: Optional[list[str]] = None) -> RetrievalResult:
        terms = topic_terms(key_topics or [])
        summaries = await self.store.get_recent_summaries(conversation_id, limit, terms or None)
        filtered = bool(terms) and bool(summaries)
        if terms and not summaries:
            summaries = await self.store.get_recent_summaries(conversation_id, limit)

        return RetrievalResult(
            summaries=summaries,
            retrieval_method=RECENT_ONLY,
            confidence=recent_confidence(summaries, limit, filtered),
            metadata={"topicFilter": terms, "topicFilterMatched": filtered},
        )

    async def _search_query(self, conversation_id: str, query: str, per_query: int) -> tuple[list[Summary], bool, bool]:
        """One query: exact threshold first, related threshold if that is empty.

        Returns (summaries, exact, failed).
        """
        args = {"conversation_id": conversation_id, "query": query, "limit": per_query}
        exact = await self.registry.invoke(
            "semantic_topic_search", {**args, "threshold": self.config.exact_match_threshold}
        )
        if exact.success and exact.data["summaries"]:
            return exact.data["summaries"], True, False

        related = await self.registry.invoke(
            "semantic_topic_search", {**args, "threshold": self.config.related_match_threshold}
        )
        if related.success:
            return related.data["summaries"], False, False

        logger.warning(f"Semantic search failed for query '{query}': {related.error}")
        return [], False, True

    async def _semantic(self, conversation_id: str, queries: list[str], limit: int) -> RetrievalResult:
        queries = [q for q in queries if q and q.strip()]
        if not queries:
            logger.warning(f"Semantic search without queries for {conversation_id}, using recent summaries")
            result = await self._recent(conversation_id, limit)
            result.metadata["fallbackFrom"] = SEMANTIC_SEARCH
            return result

        per_query = math.ceil(limit / len(queries))
        outcomes = await asyncio.gather(
            *(self._search_query(conversation_id, q, per_query) for q in queries)
        )

        failed = [q for q, (_, _, err) in zip(queries, outcomes) if err]
        if len(failed) == len(queries):
            logger.warning(f"All semantic searches failed for {conversation_id}, using recent summaries")
            result = await self._recent(conversation_id, limit)
            result.metadata.update({"fallbackFrom": SEMANTIC_SEARCH, "failedQueries": failed})
            return result

        has_exact = any(exact for _, exact, _ in outcomes)
        matched = sum(1 for found, _, _ in outcomes if found)
        merged = _dedupe_by_topic([s for found, _, _ in outcomes for s in found])
        summaries = order_by_recency_then_relevance(merged)[:limit]

        return RetrievalResult(
            summaries=summaries,
            retrieval_method=SEMANTIC_SEARCH,
            confidence=semantic_confidence(
                summaries, limit, matched, len(queries), self.config.exact_match_threshold
            ),
            metadata={
                "hasExactMatches": has_exact,
                "searchQueries": queries,
                "suggestRelatedTopics": not has_exact and bool(summaries),
                "failedQueries": failed,
            },
        )

    async def _invoke_date_search(
        self,
        conversation_id: str,
        date_query: Optional[str],
        limit: int,
        include_hours: bool
    ) -> ToolResult:
        if not date_query:
            return ToolResult(success=False, error="No date expression to search")
        return await self.registry.invoke(
            "date_based_topic_search",
            {
                "conversation_id": conversation_id,
                "date_query": date_query,
                "include_hours": include_hours,
                "limit": limit,
            },
        )

    def _date_result(self, tool_result: ToolResult, limit: int, key_topics: Optional[list[str]]) -> RetrievalResult:
        data = tool_result.data
        summaries = list(data["summaries"])
        if key_topics:
            terms = topic_terms(key_topics)

            def mentions_topic(s: Summary) -> bool:
                text = " ".join([s.topic_name, s.summary_text, *s.related_topics]).lower()
                return any(t in text for t in terms)

            # Stable: topic mentions first, otherwise window order
            summaries.sort(key=lambda s: not mentions_topic(s))

        exact_window = data["warning"] is None
        return RetrievalResult(
            summaries=summaries,
            retrieval_method=DATE_BASED_SEARCH,
            confidence=date_confidence(summaries, limit, exact_window),
            metadata={
                "dateQuery": data["dateQuery"],
                "includeHours": data["includeHours"],
                "parsedTime": data["parsedTime"],
                "totalFound": data["totalFound"],
                "hasMoreTopics": data["hasMoreTopics"],
                "remainingCount": data["remainingCount"],
                "warning": data["warning"],
            },
        )

    async def _date_based(
        self,
        conversation_id: str,
        date_query: Optional[str],
        limit: int,
        include_hours: bool,
        key_topics: Optional[list[str]] = None
    ) -> RetrievalResult:
        tool_result = await self._invoke_date_search(conversation_id, date_query, limit, include_hours)
        if not tool_result.success:
            logger.warning(f"Date-based search failed for '{date_query}': {tool_result.error}")
            result = await self._recent(conversation_id, limit)
            result.metadata.update({"fallbackFrom": DATE_BASED_SEARCH, "error": tool_result.error})
            return result
        return self._date_result(tool_result, limit, key_topics)

    async def _hybrid(self, conversation_id: str, intent: IntentAnalysisResult, limit: int) -> RetrievalResult:
        """Date and topic searches together; date-window hits come first."""
        plan: ExecutionPlan = intent.execution_plan
        queries = []
        for step in plan.steps:
            if step.tool == "semantic_topic_search":
                queries.extend(step.arguments.get("queries", []))
        queries = queries or intent.semantic_search_queries or intent.key_topics

        date_tool, semantic = await asyncio.gather(
            self._invoke_date_search(conversation_id, intent.date_query, limit, intent.include_hours),
            self._semantic(conversation_id, queries, limit) if queries else self._no_semantic(),
        )
        semantic_ok = semantic is not None and semantic.retrieval_method == SEMANTIC_SEARCH

        if not date_tool.success:
            logger.warning(f"Hybrid date search failed for '{intent.date_query}': {date_tool.error}")
            if semantic_ok:
                semantic.metadata.update({"fallbackFrom": "hybrid", "error": date_tool.error})
                return semantic
            result = await self._recent(conversation_id, limit)
            result.metadata.update({"fallbackFrom": "hybrid", "error": date_tool.error})
            return result

        dated = self._date_result(date_tool, limit, intent.key_topics)
        if not semantic_ok:
            dated.metadata["semanticSearch"] = "unavailable"
            return dated

        summaries = list(dated.summaries)
        seen = {s.topic_name.strip().lower() for s in summaries}
        for s in semantic.summaries:
            key = s.topic_name.strip().lower()
            if key not in seen:
                seen.add(key)
                summaries.append(s)
        summaries = summaries[:limit]

        return RetrievalResult(
            summaries=summaries,
            retrieval_method="hybrid",
            confidence=merge_confidence(dated.confidence, semantic.confidence, len(summaries)),
            metadata={
                **dated.metadata,
                "hasExactMatches": semantic.metadata.get("hasExactMatches", False),
                "searchQueries": semantic.metadata.get("searchQueries", []),
                "merge": plan.merge,
                "dateResults": dated.retrieved,
                "semanticResults": semantic.retrieved,
            },
        )

    async def _no_semantic(self) -> None:
        return None

    async def _all_available(self, conversation_id: str, limit: int, total: int) -> RetrievalResult:
        summaries = await self.store.get_summaries_by_level(conversation_id, limit)
        return RetrievalResult(
            summaries=summaries,
            retrieval_method=ALL_AVAILABLE,
            confidence=coverage_confidence(summaries, total),
        )

    async def get_context_stats(self, conversation_id: str) -> dict[str, Any]:
        """Totals for a conversation's summaries."""
        total = await self.store.count_summaries(conversation_id)
        levels = await self.store.summary_level_counts(conversation_id)
        recent = await self.store.count_summaries(conversation_id, start=now() - timedelta(hours=24))
        return {
            "totalSummaries": total,
            "summaryLevels": levels,
            "recentSummaries": recent,
        }


__all__ = [
    "RetrievalResult",
    "SmartContextRetriever",
    "order_by_recency_then_relevance",
    "topic_terms",
]
