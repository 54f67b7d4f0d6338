"""Renders retrieved context into a block for the response prompt."""

from datetime import datetime
from typing import Optional

from intent.schema import DATE_BASED_SEARCH, SEMANTIC_SEARCH
from models import Summary, now as current_time
from retrieval.smart_context import RetrievalResult


def describe_age(created_at: datetime, now: Optional[datetime] = None) -> str:
    days = ((now or current_time()).date() - created_at.date()).days
    if days <= 0:
        return "today"
    if days == 1:
        return "1 day ago"
    return f"{days} days ago"


def _header(result: RetrievalResult) -> list[str]:
    meta = result.metadata
    if result.retrieval_method in (DATE_BASED_SEARCH, "hybrid"):
        lines = [
            "## DATE-BASED SEARCH RESULTS",
            f"Search: topics from \"{meta.get('dateQuery') or 'the requested time'}\"",
            f"Results: {result.retrieved} topics from the requested timeframe",
        ]
        parsed = meta.get("parsedTime") or {}
        if parsed.get("startDate") and parsed.get("endDate"):
            start = datetime.fromisoformat(parsed["startDate"]).date()
            end = datetime.fromisoformat(parsed["endDate"]).date()
            lines.append(f"Timeframe: {start}" if start == end else f"Timeframe: {start} to {end}")
        if meta.get("warning"):
            lines.append(f"Note: {meta['warning']}")
        if meta.get("hasMoreTopics"):
            lines.append(f"{meta.get('remainingCount', 0)} more topics exist in this timeframe")
        return lines

    if result.retrieval_method == SEMANTIC_SEARCH:
        lines = [
            "## SEMANTIC SEARCH RESULTS",
            f"Results: {result.retrieved} related topics",
        ]
        if meta.get("searchQueries"):
            lines.append(f"Search terms: {', '.join(meta['searchQueries'])}")
        return lines

    return [
        "## CONVERSATION HISTORY SUMMARIES",
        "The following summaries cover earlier parts of this conversation:",
    ]


def format_topic(index: int, summary: Summary, now: Optional[datetime] = None) -> str:
    lines = [
        f"**Topic {index}:**",
        f"**Name**: {summary.topic_name}",
        f"**Content**: {summary.summary_text}",
        f"**Related**: {', '.join(summary.related_topics) or 'No related topics'}",
    ]
    if summary.time_match:
        lines.append(f"**Time Match**: {summary.time_match}")
    lines.append(f"**Covers**: {summary.message_range.message_count} messages")
    lines.append(
        f"**When**: {describe_age(summary.created_at, now)} "
        f"({summary.created_at:%Y-%m-%d %H:%M})"
    )
    return "\n".join(lines)


def format_retrieved_context(result: RetrievalResult, now: Optional[datetime] = None) -> str:
    """System-prompt block describing the retrieved summaries.

    Returns an empty string when nothing was retrieved and no search ran.
    """
    searched = result.retrieval_method in (DATE_BASED_SEARCH, SEMANTIC_SEARCH, "hybrid")
    if not result.summaries and not searched:
        return ""

    parts = ["\n".join(_header(result))]
    for i, summary in enumerate(result.summaries, start=1):
        parts.append(format_topic(i, summary, now))

    if searched:
        if result.summaries:
            parts.append(
                f"These {result.retrieved} topics were retrieved for the user's question. "
                "They are the conversation content being asked about; reference them directly."
            )
        else:
            parts.append(
                "No matching conversations were found. Say so and suggest another way "
                "to find what the user is looking for."
            )
    else:
        parts.append("The recent messages continue from where these summaries end.")

    meta = result.metadata
    if result.summaries and meta.get("suggestRelatedTopics") and not meta.get("hasExactMatches"):
        names = ", ".join(s.topic_name for s in result.summaries)
        parts.append(
            "## TOPIC INFERENCE GUIDANCE\n"
            "No exact match was found, only related topics. Do not claim the subject never came up; "
            "name the related topics and ask whether the user means one of them.\n"
            f"Related topics found: {names}"
        )

    if result.confidence is not None:
        parts.append(
            f"Retrieval confidence: {result.confidence.quality:.2f} "
            f"({'strong matches' if result.confidence.has_strong_matches else 'no strong matches'})"
        )

    return "\n\n".join(parts)
