"""Confidence reports for retrieved context.

Every strategy reports the same shape so the intent analyzer can back-fill
its search quality factor regardless of how context was found.
"""

from dataclasses import dataclass
from typing import Optional

from models import Summary


STRONG_MATCH = 0.7


@dataclass
class RetrievalConfidence:
    """How trustworthy a retrieval result is.

    Attributes:
        quality: Overall 0..1 score fed back as search_result_quality
        average_similarity: Mean similarity, None when no vectors were used
        has_strong_matches: At least one clearly relevant hit
        result_count: Summaries returned
        query_match_rate: Fraction of queries or filters that found something
    """
    quality: float
    average_similarity: Optional[float]
    has_strong_matches: bool
    result_count: int
    query_match_rate: float

    def to_dict(self) -> dict:
        return {
            "searchResultQuality": self.quality,
            "averageSimilarity": self.average_similarity,
            "hasStrongMatches": self.has_strong_matches,
            "resultCount": self.result_count,
            "queryMatchRate": self.query_match_rate,
        }


def _coverage(count: int, limit: int) -> float:
    return min(1.0, count / limit) if limit > 0 else 0.0


def semantic_confidence(
    summaries: list[Summary],
    limit: int,
    queries_matched: int,
    total_queries: int,
    strong_threshold: float = STRONG_MATCH
) -> RetrievalConfidence:
    """Blend similarity, coverage, strong-hit presence and query hit rate.

    Similarities are capped at the strong threshold before averaging, so
    adding a strong result never lowers the score.
    """
    sims = [s.similarity for s in summaries if s.similarity is not None]
    average = sum(sims) / len(sims) if sims else 0.0
    capped = sum(min(s, strong_threshold) for s in sims) / len(sims) if sims else 0.0
    strong = any(s >= strong_threshold for s in sims)
    rate = queries_matched / total_queries if total_queries else 0.0

    quality = (
        0.35 * (capped / strong_threshold)
        + 0.25 * _coverage(len(summaries), limit)
        + 0.2 * (1.0 if strong else 0.0)
        + 0.2 * rate
    )
    return RetrievalConfidence(
        quality=round(min(1.0, quality), 4),
        average_similarity=round(average, 4) if sims else None,
        has_strong_matches=strong,
        result_count=len(summaries),
        query_match_rate=round(rate, 4),
    )


def recent_confidence(summaries: list[Summary], limit: int, filtered: bool) -> RetrievalConfidence:
    """Recency results are more trustworthy when a topic filter matched."""
    count = len(summaries)
    if count == 0:
        quality = 0.1
    else:
        quality = 0.4 + 0.3 * _coverage(count, limit) + (0.2 if filtered else 0.0)
    return RetrievalConfidence(
        quality=round(quality, 4),
        average_similarity=None,
        has_strong_matches=filtered and count > 0,
        result_count=count,
        query_match_rate=1.0 if filtered and count else 0.0,
    )


def date_confidence(summaries: list[Summary], limit: int, exact_window: bool) -> RetrievalConfidence:
    """Hits inside the requested window; a clamped window costs a little."""
    count = len(summaries)
    quality = 0.2 if count == 0 else 0.5 + 0.3 * _coverage(count, limit) + 0.2
    if not exact_window:
        quality *= 0.8
    return RetrievalConfidence(
        quality=round(min(1.0, quality), 4),
        average_similarity=None,
        has_strong_matches=count > 0 and exact_window,
        result_count=count,
        query_match_rate=1.0 if count else 0.0,
    )


def coverage_confidence(summaries: list[Summary], total_available: int) -> RetrievalConfidence:
    """For full scans: how much of the conversation was returned."""
    count = len(summaries)
    quality = 0.1 if count == 0 else 0.6 + 0.3 * _coverage(count, total_available)
    return RetrievalConfidence(
        quality=round(quality, 4),
        average_similarity=None,
        has_strong_matches=False,
        result_count=count,
        query_match_rate=1.0 if count else 0.0,
    )


def merge_confidence(primary: RetrievalConfidence, secondary: RetrievalConfidence, result_count: int) -> RetrievalConfidence:
    """Combine the reports of concurrently run strategies."""
    return RetrievalConfidence(
        quality=max(primary.quality, secondary.quality),
        average_similarity=secondary.average_similarity if secondary.average_similarity is not None else primary.average_similarity,
        has_strong_matches=primary.has_strong_matches or secondary.has_strong_matches,
        result_count=result_count,
        query_match_rate=max(primary.query_match_rate, secondary.query_match_rate),
    )
