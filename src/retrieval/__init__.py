"""Context retrieval: strategy dispatch, search tools and confidence."""

from retrieval.confidence import RetrievalConfidence
from retrieval.live_tools import LiveTools, OpenAIWebSearch, register_live_tools
from retrieval.smart_context import RetrievalResult, SmartContextRetriever
from retrieval.tools import RetrievalTools, build_retrieval_registry

__all__ = [
    "LiveTools",
    "OpenAIWebSearch",
    "RetrievalConfidence",
    "RetrievalResult",
    "RetrievalTools",
    "SmartContextRetriever",
    "build_retrieval_registry",
    "register_live_tools",
]
