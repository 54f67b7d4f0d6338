"""Topic embeddings and nearest-neighbour lookup over summaries."""

import asyncio
import time
from datetime import datetime
from typing import Optional, Union

from config import logger
from db.store import ConversationStore
from embeddings.openai import AsyncOpenAIEmbeddings
from embeddings.serialize import serialize_embedding
from errors import ContextRecallError
from models import Summary
from usage import EMBEDDING_GENERATION, UsageTracker
from utils.time_query import resolve_window


DateFilter = Union[str, tuple[datetime, datetime]]


class TopicEmbeddingIndex:
    """Embeds topic names and queries, and searches summaries by similarity.

    Args:
        store: Conversation store holding the summaries
        provider: Embedding provider (defaults to OpenAI)
        usage: Usage tracker for persisted topic embeddings
    """

    def __init__(
        self,
        store: ConversationStore,
        provider: Optional[AsyncOpenAIEmbeddings] = None,
        usage: Optional[UsageTracker] = None
    ):
        self.store = store
        self.provider = provider or AsyncOpenAIEmbeddings()
        self.usage = usage

    async def embed_query(self, text: str) -> list[float]:
        """Embed a transient search query. Not persisted, not accounted."""
        return await self.provider.get_embedding(text)

    async def embed_topic(
        self,
        text: str,
        conversation_id: Optional[str] = None,
        message_id: Optional[str] = None,
        user_id: Optional[str] = None
    ) -> list[float]:
        """Embed a topic name for storage, recording usage either way.

        Raises:
            ContextRecallError: When the provider fails
        """
        started = time.monotonic()
        try:
            batch = await self.provider.embed([text])
        except Exception as e:
            self._track(
                text, started, 0, success=False, error=str(e),
                conversation_id=conversation_id, message_id=message_id, user_id=user_id
            )
            raise ContextRecallError(
                f"Failed to generate embedding for topic: {text}",
                "embedding_failed",
                {"topic": text, "original_error": str(e)}
            ) from e

        self._track(
            text, started, batch.prompt_tokens, success=True,
            conversation_id=conversation_id, message_id=message_id, user_id=user_id
        )
        return batch.vectors[0]

    def _track(self, text: str, started: float, tokens: int, success: bool, error: Optional[str] = None, **ids) -> None:
        if self.usage is None:
            return
        self.usage.track(
            operation_type=EMBEDDING_GENERATION,
            model=self.provider.model,
            input_tokens=tokens,
            duration_ms=int((time.monotonic() - started) * 1000),
            success=success,
            error=error,
            metadata={
                "subtype": "topic_embedding",
                "topicName": text,
                "dimensions": self.provider.dimension,
                "totalTokens": tokens,
            },
            **ids,
        )

    async def update_summary_embedding(self, summary: Summary, user_id: Optional[str] = None) -> None:
        """Embed a summary's topic name and store the vector on its row."""
        vector = await self.embed_topic(
            summary.topic_name,
            conversation_id=summary.conversation_id,
            user_id=user_id,
        )
        await self.store.set_summary_embedding(summary.id, serialize_embedding(vector))
        summary.has_embedding = True

    async def generate_missing_embeddings(self, batch_size: int = 50, pause: float = 0.1) -> dict[str, int]:
        """Backfill vectors for summaries stored without one.

        Failures are logged and counted; the sweep continues. Returns counts.
        """
        processed = 0
        failed = 0
        attempted: set[str] = set()

        while True:
            pending = [
                s for s in await self.store.get_summaries_missing_embedding(batch_size + len(attempted))
                if s.id not in attempted
            ][:batch_size]
            if not pending:
                break

            for summary in pending:
                attempted.add(summary.id)
                try:
                    await self.update_summary_embedding(summary)
                    processed += 1
                except ContextRecallError as e:
                    failed += 1
                    logger.warning(f"Embedding backfill failed for summary {summary.id}: {e}")
                await asyncio.sleep(pause)

            logger.info(f"Embedding backfill progress: {processed} done, {failed} failed")

        return {"processed": processed, "failed": failed}

    async def nearest_neighbors(
        self,
        conversation_id: str,
        query_vector: list[float],
        limit: int = 5,
        similarity_threshold: float = 0.7,
        date_filter: Optional[DateFilter] = None,
        include_hours: bool = False,
        broader_topics: Optional[list[str]] = None
    ) -> list[Summary]:
        """Summaries of this conversation closest to the query vector.

        Args:
            date_filter: Time expression or explicit (start, end) window
            include_hours: Narrow a dated expression with a time to its hour
            broader_topics: Keep only summaries tagged with one of these

        Returns:
            Summaries closest first, each carrying ``similarity``
        """
        start, end = self._resolve_date_filter(date_filter, include_hours)
        return await self.store.nearest_summaries(
            conversation_id,
            serialize_embedding(query_vector),
            limit=limit,
            min_similarity=similarity_threshold,
            start=start,
            end=end,
            broader_topics=broader_topics,
        )

    def _resolve_date_filter(
        self,
        date_filter: Optional[DateFilter],
        include_hours: bool
    ) -> tuple[Optional[datetime], Optional[datetime]]:
        if date_filter is None:
            return None, None
        if isinstance(date_filter, tuple):
            return date_filter
        parsed = resolve_window(date_filter, include_hours=include_hours)
        if not parsed.usable:
            logger.warning(f"Ignoring unparseable date filter '{date_filter}': {parsed.error}")
            return None, None
        return parsed.start_date, parsed.end_date
