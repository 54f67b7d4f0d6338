"""Confidence scoring for intent analyses.

Four factors in 0..1 are combined with configurable weights:
search_result_quality, context_availability, query_specificity and
historical_match. Search quality starts as a neutral prior and is replaced
with the retriever's measured quality once retrieval runs.
"""

import re
from typing import Optional

from config import get_config
from intent.schema import CLARIFICATION, CONTINUATION, NEW_TOPIC, RECALL, ConfidenceReport, IntentAnalysisResult
from intent.rules import has_recall_reference
from utils.time_query import find_temporal_reference


SEARCH_QUALITY_PRIOR = 0.5

HISTORICAL_MATCH_PRIOR = {
    RECALL: 0.7,
    CONTINUATION: 0.5,
    CLARIFICATION: 0.5,
    NEW_TOPIC: 0.3,
}

_QUESTION_WORDS = re.compile(r"\b(?:what|when|where|which|who|why|how)\b|\?", re.IGNORECASE)


def context_availability(message_count: int, summary_count: int) -> float:
    """More loaded history means a better-informed decision."""
    score = 0.2 + min(message_count, 10) * 0.05 + min(summary_count, 3) * 0.1
    return round(min(1.0, score), 4)


def query_specificity(message: str, key_topics: list[str]) -> float:
    score = 0.3
    if has_recall_reference(message):
        score += 0.25
    score += min(len(key_topics), 3) * 0.1
    if _QUESTION_WORDS.search(message or ""):
        score += 0.15
    if find_temporal_reference(message):
        score += 0.1
    return round(min(1.0, score), 4)


def historical_match(relationship: str) -> float:
    return HISTORICAL_MATCH_PRIOR.get(relationship, 0.4)


def confidence_level(score: float, high: float, medium: float) -> str:
    if score >= high:
        return "high"
    if score >= medium:
        return "medium"
    return "low"


def combine(factors: dict[str, float], weights: Optional[dict[str, float]] = None) -> float:
    """Weighted mean of the factors present in ``weights``."""
    weights = weights or get_config().confidence_weights
    total_weight = sum(w for name, w in weights.items() if name in factors)
    if total_weight <= 0:
        return 0.0
    score = sum(factors[name] * w for name, w in weights.items() if name in factors) / total_weight
    return round(min(1.0, max(0.0, score)), 4)


def score_analysis(
    result: IntentAnalysisResult,
    message: str,
    message_count: int,
    summary_count: int
) -> ConfidenceReport:
    """Confidence for a fresh analysis, before retrieval has run."""
    cfg = get_config()
    factors = {
        "search_result_quality": SEARCH_QUALITY_PRIOR,
        "context_availability": context_availability(message_count, summary_count),
        "query_specificity": query_specificity(message, result.key_topics),
        "historical_match": historical_match(result.relationship_to_history),
    }
    score = combine(factors, cfg.confidence_weights)
    return ConfidenceReport(
        score=score,
        level=confidence_level(score, cfg.high_confidence, cfg.medium_confidence),
        factors=factors,
    )


def rescore_with_search_quality(report: ConfidenceReport, search_quality: float) -> ConfidenceReport:
    """Replace the search prior with measured quality.

    Uses the back-fill thresholds, which sit slightly below the analysis ones.
    """
    cfg = get_config()
    factors = dict(report.factors)
    factors["search_result_quality"] = round(min(1.0, max(0.0, search_quality)), 4)
    score = combine(factors, cfg.confidence_weights)
    return ConfidenceReport(
        score=score,
        level=confidence_level(score, cfg.updated_high_confidence, cfg.updated_medium_confidence),
        factors=factors,
    )
