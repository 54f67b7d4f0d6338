"""Pytest configuration and fixtures for context-recall tests."""

import asyncio
import json
import math
import os
import sys
from datetime import datetime
from pathlib import Path

import pytest

# Add src directory to path for imports
src_dir = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_dir))

# Set a test database path to avoid touching the real database
os.environ.setdefault("CONTEXT_RECALL_DB_PATH", "/tmp/test_context_recall.db")

EMBEDDING_DIM = 384


def axis_vector(similarity: float, dim: int = EMBEDDING_DIM) -> list[float]:
    """Unit vector whose cosine similarity to axis_vector(1.0) is ``similarity``."""
    vector = [0.0] * dim
    vector[0] = similarity
    vector[1] = math.sqrt(max(0.0, 1.0 - similarity * similarity))
    return vector


class FakeEmbeddings:
    """Embedding provider returning preset vectors per text.

    Unknown texts map to a vector orthogonal to the query axis.
    """

    def __init__(self, vectors: dict[str, list[float]] = None, fail: bool = False):
        self.vectors = vectors or {}
        self.fail = fail
        self.calls: list[list[str]] = []

    @property
    def model(self) -> str:
        return "text-embedding-3-small"

    @property
    def dimension(self) -> int:
        return EMBEDDING_DIM

    async def embed(self, texts):
        from embeddings.openai import EmbeddingBatch

        self.calls.append(list(texts))
        if self.fail:
            raise RuntimeError("embedding service unavailable")
        return EmbeddingBatch(
            vectors=[self.vectors.get(t, axis_vector(0.0)) for t in texts],
            prompt_tokens=sum(len(t.split()) for t in texts),
        )

    async def get_embedding(self, text):
        batch = await self.embed([text])
        return batch.vectors[0]


class FakeChatClient:
    """Chat client returning queued replies (str, dict or exception)."""

    def __init__(self, *replies):
        self.replies = list(replies)
        self.calls: list[dict] = []

    async def complete(self, system_prompt, user_prompt, **kwargs):
        from llm.client import Completion

        self.calls.append({"system": system_prompt, "user": user_prompt, **kwargs})
        if not self.replies:
            raise AssertionError("FakeChatClient ran out of replies")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, dict):
            reply = json.dumps(reply)
        return Completion(content=reply, prompt_tokens=100, completion_tokens=50, model="gpt-4o-mini")


@pytest.fixture(autouse=True)
async def cleanup_after_test():
    """Give aiosqlite threads time to clean up after each test."""
    yield
    await asyncio.sleep(0.01)


@pytest.fixture
async def db_path(tmp_path, monkeypatch):
    """Fresh initialized database; config.DB_PATH points at it."""
    from db.schema import init_db

    path = tmp_path / "context.db"
    monkeypatch.setattr("config.DB_PATH", path)
    await init_db(path)
    return path


@pytest.fixture
def store(db_path):
    from db.store import ConversationStore

    return ConversationStore(db_path)


@pytest.fixture
async def conversation(store):
    return await store.create_conversation(owner_id="user-1")


@pytest.fixture
def fake_embeddings():
    return FakeEmbeddings()


@pytest.fixture
def topic_index(store, fake_embeddings):
    from embeddings.topic_index import TopicEmbeddingIndex

    return TopicEmbeddingIndex(store, provider=fake_embeddings)


async def add_turns(store, conversation_id: str, user_turns: int, final_reply: bool = False) -> list:
    """Interleave user and assistant messages; the last turn gets no reply unless asked."""
    messages = []
    for i in range(user_turns):
        messages.append(await store.add_message(conversation_id, "user", f"Question {i + 1} about telescopes"))
        if i < user_turns - 1 or final_reply:
            messages.append(await store.add_message(conversation_id, "assistant", f"Answer {i + 1}"))
    return messages


async def make_summary(
    store,
    conversation_id: str,
    topic: str,
    level: int,
    created_at: datetime,
    vector: list[float] = None,
    relevance: float = 0.5,
    related: list[str] = None,
    broader: str = "general",
):
    """Store a summary directly, optionally with an embedding."""
    from embeddings.serialize import serialize_embedding
    from models import MessageRange, Summary, new_id

    summary = Summary(
        id=new_id(),
        conversation_id=conversation_id,
        topic_name=topic,
        summary_text=f"Discussion about {topic}",
        message_range=MessageRange(start_message_id=new_id(), end_message_id=new_id(), message_count=4),
        summary_level=level,
        key_topics=[topic],
        related_topics=related or [],
        topic_relevance=relevance,
        broader_topic=broader,
        created_at=created_at,
    )
    await store.save_summary(summary, [])
    if vector is not None:
        await store.set_summary_embedding(summary.id, serialize_embedding(vector))
    return summary
