"""Deterministic classification rules applied on top of the LLM decision.

These rules are product requirements: recall phrasing always searches
history, temporal references always search by date, and a recall query is
never answered without context.
"""

import re
from dataclasses import replace
from typing import Optional

from intent.schema import (
    DATE_BASED_SEARCH,
    NONE,
    RECALL,
    RECENT_ONLY,
    SEMANTIC_SEARCH,
    ExecutionPlan,
    ExecutionStep,
    IntentAnalysisResult,
    MAX_CONTEXT_ITEMS,
)
from utils.time_query import find_temporal_reference, parse_time_query


_RECALL_PATTERNS = [
    re.compile(p, re.IGNORECASE) for p in (
        r"\bwe\s+(?:talked|spoke|chatted)\s+about\b",
        r"\bwe(?:'ve|\s+have)?\s+(?:discussed|covered|went\s+over)\b",
        r"\btell\s+me\s+about\b",
        r"\bwhat\s+did\s+we\s+(?:say|decide|conclude|discuss|talk\s+about|agree)\b",
        r"\bwhat\s+were\s+the\b.*\bwe\b",
        r"\bremind\s+me\b",
        r"\bdo\s+you\s+remember\b",
        r"\byou\s+(?:told|said|mentioned)\b",
        r"\bi\s+(?:told|mentioned\s+to)\s+you\b",
    )
]

_EVERYTHING = re.compile(r"\b(?:everything|all\s+(?:of\s+)?(?:the|our|we)|entire|whole\s+conversation)\b", re.IGNORECASE)
_DETAILED = re.compile(r"\b(?:detailed|details|comprehensive|in\s+depth|thorough|full)\b", re.IGNORECASE)


def has_recall_reference(message: str) -> bool:
    return any(p.search(message or "") for p in _RECALL_PATTERNS)


def recommended_max_items(message: str, suggested: int) -> int:
    """Scale the item budget to how much the user asked for."""
    if _EVERYTHING.search(message or ""):
        return MAX_CONTEXT_ITEMS
    if _DETAILED.search(message or ""):
        return min(8, max(5, suggested))
    return min(MAX_CONTEXT_ITEMS, max(1, suggested))


def _topic_queries(result: IntentAnalysisResult, message: str) -> list[str]:
    if result.semantic_search_queries:
        return list(result.semantic_search_queries)
    if result.key_topics:
        return list(result.key_topics)
    text = (message or "").strip()
    return [text[:200]] if text else []


def _date_query(result: IntentAnalysisResult, temporal: str) -> str:
    """Prefer the model's date expression when it parses to a window."""
    if result.date_query and parse_time_query(result.date_query).usable:
        return result.date_query
    return temporal


def apply_classification_rules(
    result: IntentAnalysisResult,
    message: str,
    hybrid: bool = True,
    temporal: Optional[str] = None
) -> IntentAnalysisResult:
    """Enforce the recall and temporal rules on an analysis result.

    Args:
        result: Validated LLM decision
        message: The user's message
        hybrid: Attach a date + semantic plan when both references occur
        temporal: Pre-extracted temporal reference (found from message if None)

    Returns:
        A new result; the input is not modified
    """
    temporal = temporal or find_temporal_reference(message)
    recall = has_recall_reference(message)
    updated = replace(
        result,
        max_context_items=recommended_max_items(message, result.max_context_items),
    )

    if temporal:
        updated = replace(
            updated,
            context_retrieval_strategy=DATE_BASED_SEARCH,
            date_query=_date_query(result, temporal),
            needs_historical_context=True,
            execution_plan=None,
        )
        topic_reference = recall or bool(result.semantic_search_queries) or bool(result.key_topics)
        if hybrid and topic_reference:
            queries = _topic_queries(result, message)
            if queries:
                updated.semantic_search_queries = queries
                updated.execution_plan = ExecutionPlan(steps=[
                    ExecutionStep(
                        tool="date_based_topic_search",
                        arguments={"date_query": updated.date_query, "include_hours": updated.include_hours},
                    ),
                    ExecutionStep(
                        tool="semantic_topic_search",
                        arguments={"queries": queries},
                    ),
                ])
        return updated

    if recall:
        return replace(
            updated,
            context_retrieval_strategy=SEMANTIC_SEARCH,
            semantic_search_queries=_topic_queries(result, message),
            needs_historical_context=True,
        )

    if updated.relationship_to_history == RECALL and updated.context_retrieval_strategy == NONE:
        queries = _topic_queries(result, message)
        return replace(
            updated,
            context_retrieval_strategy=SEMANTIC_SEARCH if queries else RECENT_ONLY,
            semantic_search_queries=queries,
            needs_historical_context=True,
        )

    return updated
