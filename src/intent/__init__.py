"""Intent analysis and context-retrieval strategy selection."""

from intent.analyzer import IntentAnalyzer
from intent.schema import IntentAnalysisResult, ExecutionPlan, ExecutionStep, fallback_result, parse_intent_result

__all__ = [
    "IntentAnalyzer",
    "IntentAnalysisResult",
    "ExecutionPlan",
    "ExecutionStep",
    "fallback_result",
    "parse_intent_result",
]
