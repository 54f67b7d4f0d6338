"""Per-turn orchestration: analyze, retrieve, and summarize in the background.

The reply path waits on intent analysis and retrieval only. Summarization is
handed to the SummarizationQueue after the assistant reply is stored and
never delays the turn.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from config import get_config, logger
from db.store import ConversationStore
from embeddings.topic_index import TopicEmbeddingIndex
from intent.analyzer import IntentAnalyzer
from intent.schema import IntentAnalysisResult
from llm.client import ChatClient
from models import Message
from prompt_context import format_retrieved_context
from retrieval.live_tools import LiveTools, OpenAIWebSearch, register_live_tools
from retrieval.smart_context import RetrievalResult, SmartContextRetriever
from retrieval.tools import RetrievalTools, build_retrieval_registry
from summarization_queue import SummarizationQueue
from summary.summarizer import ConversationSummarizer
from usage import UsageTracker


@dataclass
class TurnContext:
    """Everything the response generator needs for one user turn."""
    message: Message
    intent: IntentAnalysisResult
    retrieval: RetrievalResult
    prompt_context: str

    def to_dict(self) -> dict:
        return {
            "messageId": self.message.id,
            "intent": self.intent.to_dict(),
            "retrieval": self.retrieval.to_dict(),
            "promptContext": self.prompt_context,
        }


class ContextPipeline:
    """Wires the context services around a conversation turn."""

    def __init__(
        self,
        store: ConversationStore,
        analyzer: IntentAnalyzer,
        retriever: SmartContextRetriever,
        summarizer: ConversationSummarizer,
        queue: SummarizationQueue,
        usage: Optional[UsageTracker] = None
    ):
        self.store = store
        self.analyzer = analyzer
        self.retriever = retriever
        self.summarizer = summarizer
        self.queue = queue
        self.usage = usage

    async def prepare_turn(
        self,
        conversation_id: str,
        user_message: str,
        user_id: Optional[str] = None
    ) -> TurnContext:
        """Store the user message and work out the context for the reply."""
        await self.store.ensure_conversation(conversation_id, owner_id=user_id)
        message = await self.store.add_message(conversation_id, "user", user_message)

        intent = await self.analyzer.analyze(
            conversation_id, user_message, message_id=message.id, user_id=user_id
        )
        retrieval = await self.retriever.retrieve(conversation_id, intent)

        if retrieval.success and retrieval.confidence is not None:
            await self.analyzer.update_confidence_with_search_results(
                intent, retrieval.confidence.quality
            )

        return TurnContext(
            message=message,
            intent=intent,
            retrieval=retrieval,
            prompt_context=format_retrieved_context(retrieval),
        )

    async def complete_turn(
        self,
        conversation_id: str,
        reply: str,
        user_id: Optional[str] = None
    ) -> bool:
        """Store the assistant reply and trigger summarization.

        Returns:
            True if a summarization run was started
        """
        await self.store.add_message(conversation_id, "assistant", reply)
        started = self.queue.start(
            conversation_id,
            lambda: self.summarizer.check_and_create_summary(conversation_id, user_id=user_id),
        )
        if not started:
            logger.debug(f"Summarization check for {conversation_id} skipped, run in flight")
        return started

    async def close(self, timeout: Optional[float] = None) -> None:
        """Let background summarization and usage writes finish."""
        await self.queue.close(timeout)
        if self.usage is not None:
            await self.usage.stop()


def build_pipeline(db_path: Optional[Path] = None) -> ContextPipeline:
    """Default pipeline over OpenAI models and the local database.

    OpenAI clients are created on first use, so building needs no API key.
    """
    cfg = get_config()
    store = ConversationStore(db_path)
    usage = UsageTracker(store)
    topic_index = TopicEmbeddingIndex(store, usage=usage)
    registry = build_retrieval_registry(RetrievalTools(store, topic_index))
    register_live_tools(registry, LiveTools(OpenAIWebSearch(), usage=usage))

    return ContextPipeline(
        store=store,
        analyzer=IntentAnalyzer(store, ChatClient(model=cfg.intent_model), usage=usage),
        retriever=SmartContextRetriever(store, topic_index, registry=registry),
        summarizer=ConversationSummarizer(
            store, ChatClient(model=cfg.summary_model), topic_index=topic_index, usage=usage
        ),
        queue=SummarizationQueue(),
        usage=usage,
    )
