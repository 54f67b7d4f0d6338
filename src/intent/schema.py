"""Intent analysis result types and structured-output schema.

The LLM's JSON is parsed into IntentAnalysisResult and validated per
retrieval strategy; anything that doesn't fit raises ParseError so the
analyzer can fall back instead of acting on a malformed decision.
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Optional

from errors import ParseError


NONE = "none"
RECENT_ONLY = "recent_only"
SEMANTIC_SEARCH = "semantic_search"
DATE_BASED_SEARCH = "date_based_search"
ALL_AVAILABLE = "all_available"

VALID_STRATEGIES = frozenset([NONE, RECENT_ONLY, SEMANTIC_SEARCH, DATE_BASED_SEARCH, ALL_AVAILABLE])

VALID_RELEVANCE = frozenset(["high", "medium", "low"])

CONTINUATION = "continuation"
NEW_TOPIC = "new_topic"
CLARIFICATION = "clarification"
RECALL = "recall"

VALID_RELATIONSHIPS = frozenset([CONTINUATION, NEW_TOPIC, CLARIFICATION, RECALL])

MIN_CONTEXT_ITEMS = 1
MAX_CONTEXT_ITEMS = 10


@dataclass
class ExecutionStep:
    """One retrieval tool call in a multi-tool plan."""
    tool: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass
class ExecutionPlan:
    """Retrieval steps run concurrently and merged.

    Attributes:
        merge: "date_first" keeps date-window hits ahead of semantic ones
    """
    steps: list[ExecutionStep] = field(default_factory=list)
    merge: str = "date_first"

    def to_dict(self) -> dict:
        return {"steps": [asdict(s) for s in self.steps], "merge": self.merge}


@dataclass
class ConfidenceReport:
    score: float
    level: str
    factors: dict[str, float] = field(default_factory=dict)


@dataclass
class IntentAnalysisResult:
    """Validated intent decision for one user turn.

    Attributes:
        context_retrieval_strategy: One of VALID_STRATEGIES
        semantic_search_queries: Non-empty for semantic_search
        date_query: Time expression for date_based_search
        include_hours: Search the date window at hour granularity
        execution_plan: Extra steps when temporal and topic references combine
        stage: "minimal" or "full", the context the final decision saw
        fallback: True when produced without a usable LLM answer
    """
    current_intent: str
    contextual_relevance: str
    relationship_to_history: str
    context_retrieval_strategy: str
    key_topics: list[str] = field(default_factory=list)
    pending_questions: list[str] = field(default_factory=list)
    last_assistant_question: Optional[str] = None
    compressed_context: str = ""
    needs_historical_context: bool = False
    semantic_search_queries: list[str] = field(default_factory=list)
    date_query: Optional[str] = None
    include_hours: bool = False
    max_context_items: int = 5
    execution_plan: Optional[ExecutionPlan] = None
    confidence: Optional[ConfidenceReport] = None
    stage: str = "minimal"
    fallback: bool = False
    analysis_id: Optional[str] = None

    def to_dict(self) -> dict:
        data = {
            "currentIntent": self.current_intent,
            "contextualRelevance": self.contextual_relevance,
            "relationshipToHistory": self.relationship_to_history,
            "keyTopics": self.key_topics,
            "pendingQuestions": self.pending_questions,
            "lastAssistantQuestion": self.last_assistant_question,
            "compressedContext": self.compressed_context,
            "needsHistoricalContext": self.needs_historical_context,
            "contextRetrievalStrategy": self.context_retrieval_strategy,
            "semanticSearchQueries": self.semantic_search_queries,
            "dateQuery": self.date_query,
            "includeHours": self.include_hours,
            "maxContextItems": self.max_context_items,
            "stage": self.stage,
            "fallback": self.fallback,
        }
        if self.execution_plan is not None:
            data["executionPlan"] = self.execution_plan.to_dict()
        if self.confidence is not None:
            data["confidence"] = asdict(self.confidence)
        return data


# Strict structured-output schema sent with the analysis request
INTENT_JSON_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "currentIntent": {
            "type": "string",
            "description": "Clear description of what the user wants to achieve",
        },
        "contextualRelevance": {
            "type": "string",
            "enum": sorted(VALID_RELEVANCE),
            "description": "How relevant the current prompt is to conversation history",
        },
        "relationshipToHistory": {
            "type": "string",
            "enum": sorted(VALID_RELATIONSHIPS),
            "description": "How the current prompt relates to previous conversation",
        },
        "keyTopics": {
            "type": "array",
            "items": {"type": "string"},
            "description": "Key topics identified in the current prompt",
        },
        "pendingQuestions": {
            "type": "array",
            "items": {"type": "string"},
            "description": "Questions that still need follow-up",
        },
        "lastAssistantQuestion": {
            "type": ["string", "null"],
            "description": "Last question asked by assistant (if any)",
        },
        "compressedContext": {
            "type": "string",
            "description": "Brief summary of relevant context for this intent",
        },
        "needsHistoricalContext": {
            "type": "boolean",
            "description": "Whether historical context is needed for this query",
        },
        "contextRetrievalStrategy": {
            "type": "string",
            "enum": sorted(VALID_STRATEGIES),
            "description": "Strategy for retrieving historical context",
        },
        "semanticSearchQueries": {
            "type": "array",
            "items": {"type": "string"},
            "description": "Search queries for semantic context retrieval",
        },
        "dateQuery": {
            "type": ["string", "null"],
            "description": "Time expression to search by, for date_based_search",
        },
        "includeHours": {
            "type": "boolean",
            "description": "Whether the time expression names a specific hour",
        },
        "maxContextItems": {
            "type": "integer",
            "description": "Maximum number of context items to retrieve (1-10)",
        },
    },
    "required": [
        "currentIntent",
        "contextualRelevance",
        "relationshipToHistory",
        "keyTopics",
        "pendingQuestions",
        "lastAssistantQuestion",
        "compressedContext",
        "needsHistoricalContext",
        "contextRetrievalStrategy",
        "semanticSearchQueries",
        "dateQuery",
        "includeHours",
        "maxContextItems",
    ],
    "additionalProperties": False,
}


def _require_str(raw: dict, key: str) -> str:
    value = raw.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ParseError(f"Missing or empty field: {key}")
    return value.strip()


def _str_list(raw: dict, key: str) -> list[str]:
    value = raw.get(key, [])
    if value is None:
        return []
    if not isinstance(value, list):
        raise ParseError(f"Expected list for {key}")
    return [str(v).strip() for v in value if isinstance(v, (str, int, float)) and str(v).strip()]


def parse_intent_result(raw: dict[str, Any]) -> IntentAnalysisResult:
    """Parse and validate the analysis JSON.

    Args:
        raw: Decoded JSON object from the model

    Returns:
        Validated IntentAnalysisResult

    Raises:
        ParseError: If a field is missing, mistyped, or the strategy's
            required parameters are absent
    """
    if not isinstance(raw, dict):
        raise ParseError("Intent analysis is not an object")

    relevance = _require_str(raw, "contextualRelevance").lower()
    if relevance not in VALID_RELEVANCE:
        raise ParseError(f"Invalid contextual relevance: {relevance}")

    relationship = _require_str(raw, "relationshipToHistory").lower()
    if relationship not in VALID_RELATIONSHIPS:
        raise ParseError(f"Invalid relationship to history: {relationship}")

    strategy = _require_str(raw, "contextRetrievalStrategy").lower()
    if strategy not in VALID_STRATEGIES:
        raise ParseError(f"Invalid context retrieval strategy: {strategy}")

    key_topics = _str_list(raw, "keyTopics")
    queries = _str_list(raw, "semanticSearchQueries")

    date_query = raw.get("dateQuery")
    if date_query is not None and not isinstance(date_query, str):
        raise ParseError("Expected string or null for dateQuery")
    date_query = date_query.strip() if date_query and date_query.strip() else None

    if strategy == SEMANTIC_SEARCH and not queries:
        if not key_topics:
            raise ParseError("semantic_search requires search queries or key topics")
        queries = list(key_topics)

    if strategy == DATE_BASED_SEARCH and date_query is None:
        raise ParseError("date_based_search requires dateQuery")

    max_items = raw.get("maxContextItems", 5)
    if isinstance(max_items, bool) or not isinstance(max_items, (int, float)):
        raise ParseError("Expected integer for maxContextItems")
    max_items = min(MAX_CONTEXT_ITEMS, max(MIN_CONTEXT_ITEMS, int(max_items)))

    last_question = raw.get("lastAssistantQuestion")
    if last_question is not None and not isinstance(last_question, str):
        raise ParseError("Expected string or null for lastAssistantQuestion")

    compressed = raw.get("compressedContext", "")
    if not isinstance(compressed, str):
        raise ParseError("Expected string for compressedContext")

    return IntentAnalysisResult(
        current_intent=_require_str(raw, "currentIntent"),
        contextual_relevance=relevance,
        relationship_to_history=relationship,
        context_retrieval_strategy=strategy,
        key_topics=key_topics,
        pending_questions=_str_list(raw, "pendingQuestions"),
        last_assistant_question=last_question or None,
        compressed_context=compressed,
        needs_historical_context=bool(raw.get("needsHistoricalContext", False)),
        semantic_search_queries=queries,
        date_query=date_query,
        include_hours=bool(raw.get("includeHours", False)),
        max_context_items=max_items,
    )


def fallback_result() -> IntentAnalysisResult:
    """Fixed decision used when analysis can't be completed."""
    return IntentAnalysisResult(
        current_intent="User query requiring assistance",
        contextual_relevance="medium",
        relationship_to_history=CONTINUATION,
        context_retrieval_strategy=RECENT_ONLY,
        compressed_context="Context analysis unavailable",
        needs_historical_context=False,
        max_context_items=5,
        confidence=ConfidenceReport(score=0.2, level="low", factors={}),
        fallback=True,
    )
