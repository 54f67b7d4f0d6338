"""Embedding generation and topic vector index.

All network-facing functions are async.
"""

from embeddings.openai import AsyncOpenAIEmbeddings, EmbeddingBatch, create_openai_client
from embeddings.serialize import serialize_embedding, deserialize_embedding
from embeddings.topic_index import TopicEmbeddingIndex

__all__ = [
    "AsyncOpenAIEmbeddings",
    "EmbeddingBatch",
    "create_openai_client",
    "serialize_embedding",
    "deserialize_embedding",
    "TopicEmbeddingIndex",
]
