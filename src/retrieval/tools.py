"""Retrieval tools over topic summaries.

Each tool is a plain async method returning a data dict, registered in a
ToolRegistry with its own timeout. Expected failures (an unparseable date)
raise ToolError with suggestions attached.
"""

from typing import Any, Optional

from config import get_config, logger
from db.store import ConversationStore
from embeddings.topic_index import TopicEmbeddingIndex
from llm.tool_registry import ToolError, ToolRegistry
from llm.tool_schema import ToolDefinition, ToolParameter
from utils.time_query import DATE_RANGE, RELATIVE_TIME, TimeQuery, resolve_window


MAX_DATE_RESULTS = 10

DATE_QUERY_SUGGESTIONS = [
    "yesterday",
    "today",
    "last 3 days",
    "last week",
    "2025-10-05",
    "10/05/2025",
    "October 1 to October 5",
]

EXACT = "exact"
WITHIN_RANGE = "within_range"
PARTIAL = "partial"


def time_match(parsed: TimeQuery) -> str:
    """Label how well a window answers the time expression."""
    if not parsed.valid:
        return PARTIAL
    if parsed.kind in (DATE_RANGE, RELATIVE_TIME) and (parsed.day_count or 1) > 1:
        return WITHIN_RANGE
    return EXACT


class RetrievalTools:
    """Summary search tools bound to one store and embedding index."""

    def __init__(self, store: ConversationStore, topic_index: TopicEmbeddingIndex):
        self.store = store
        self.topic_index = topic_index

    async def semantic_topic_search(
        self,
        conversation_id: str,
        query: str,
        limit: int = 5,
        threshold: float = 0.7,
        date_filter: Optional[str] = None,
        include_hours: bool = False,
        broader_topics: Optional[list[str]] = None
    ) -> dict[str, Any]:
        """Summaries whose topic embedding is close to the query."""
        vector = await self.topic_index.embed_query(query)
        summaries = await self.topic_index.nearest_neighbors(
            conversation_id,
            vector,
            limit=limit,
            similarity_threshold=threshold,
            date_filter=date_filter,
            include_hours=include_hours,
            broader_topics=broader_topics,
        )
        return {
            "summaries": summaries,
            "query": query,
            "threshold": threshold,
            "totalFound": len(summaries),
        }

    async def date_based_topic_search(
        self,
        conversation_id: str,
        date_query: str,
        include_hours: bool = False,
        limit: int = 5
    ) -> dict[str, Any]:
        """Summaries created inside the window a time expression names.

        Over-long windows are searched in clamped form and flagged with a
        warning; unparseable expressions raise ToolError.
        """
        parsed = resolve_window(date_query, include_hours=include_hours)
        if not parsed.usable:
            raise ToolError(
                f"Could not understand date '{date_query}': {parsed.error}",
                data={"parsedTime": parsed.to_dict(), "suggestions": DATE_QUERY_SUGGESTIONS},
            )

        limit = max(1, min(limit, MAX_DATE_RESULTS))
        total = await self.store.count_summaries(conversation_id, parsed.start_date, parsed.end_date)
        summaries = await self.store.get_summaries_in_window(
            conversation_id, parsed.start_date, parsed.end_date, limit
        )
        match = time_match(parsed)
        for s in summaries:
            s.time_match = match

        warning = None if parsed.valid else parsed.error
        if warning:
            logger.info(f"Date search for '{date_query}' clamped: {warning}")

        return {
            "summaries": summaries,
            "dateQuery": date_query,
            "includeHours": include_hours,
            "parsedTime": parsed.to_dict(),
            "totalFound": total,
            "hasMoreTopics": total > len(summaries),
            "remainingCount": max(0, total - len(summaries)),
            "warning": warning,
        }

    async def count_topics(
        self,
        conversation_id: str,
        date_query: Optional[str] = None
    ) -> dict[str, Any]:
        """Count summaries, optionally in a window, with a small sample."""
        start = end = None
        if date_query:
            parsed = resolve_window(date_query)
            if not parsed.usable:
                raise ToolError(
                    f"Could not understand date '{date_query}': {parsed.error}",
                    data={"suggestions": DATE_QUERY_SUGGESTIONS},
                )
            start, end = parsed.start_date, parsed.end_date

        count = await self.store.count_summaries(conversation_id, start, end)
        if start is not None:
            sample = await self.store.get_summaries_in_window(conversation_id, start, end, 3)
        else:
            sample = await self.store.get_recent_summaries(conversation_id, 3)

        overflow = count > MAX_DATE_RESULTS
        recommendations = []
        if overflow:
            recommendations.append(
                f"{count} topics found; retrieve at most {MAX_DATE_RESULTS} or narrow the date range"
            )
        elif count == 0:
            recommendations.append("No topics found; try a wider date range or a topic search")

        return {
            "count": count,
            "sampleTopics": [s.topic_name for s in sample],
            "maxRecommendedLimit": MAX_DATE_RESULTS,
            "overflow": overflow,
            "recommendations": recommendations,
        }


def build_retrieval_registry(tools: RetrievalTools) -> ToolRegistry:
    """Register the retrieval tools with their configured timeouts."""
    cfg = get_config()
    registry = ToolRegistry()

    registry.register(
        ToolDefinition(
            name="semantic_topic_search",
            description="Find earlier conversation topics semantically similar to a query.",
            parameters={
                "conversation_id": ToolParameter(type="string", description="Conversation to search"),
                "query": ToolParameter(type="string", description="What to look for"),
                "limit": ToolParameter(type="integer", description="Maximum topics", required=False, default=5),
                "threshold": ToolParameter(type="number", description="Minimum similarity 0-1", required=False, default=0.7),
                "date_filter": ToolParameter(type="string", description="Only topics from this time, e.g. 'yesterday'", required=False),
                "include_hours": ToolParameter(type="boolean", description="Narrow a dated filter to its hour", required=False, default=False),
                "broader_topics": ToolParameter(type="array", description="Only these categories", required=False, items_type="string"),
            },
            timeout=cfg.semantic_search_timeout,
        ),
        tools.semantic_topic_search
    )

    registry.register(
        ToolDefinition(
            name="date_based_topic_search",
            description="Find topics discussed at a given time, e.g. 'yesterday' or '2025-10-05'.",
            parameters={
                "conversation_id": ToolParameter(type="string", description="Conversation to search"),
                "date_query": ToolParameter(type="string", description="Time expression"),
                "include_hours": ToolParameter(type="boolean", description="Hour granularity", required=False, default=False),
                "limit": ToolParameter(type="integer", description="Maximum topics (max 10)", required=False, default=5),
            },
            timeout=cfg.date_search_timeout,
        ),
        tools.date_based_topic_search
    )

    registry.register(
        ToolDefinition(
            name="count_topics",
            description="Count topics, optionally within a time window, before retrieving them.",
            parameters={
                "conversation_id": ToolParameter(type="string", description="Conversation to count"),
                "date_query": ToolParameter(type="string", description="Optional time expression", required=False),
            },
            timeout=cfg.count_topics_timeout,
        ),
        tools.count_topics
    )

    return registry
