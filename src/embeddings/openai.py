"""Async OpenAI embedding provider for context-recall."""

import asyncio
import random
from dataclasses import dataclass
from typing import Optional

from openai import AsyncOpenAI, APIStatusError, APIConnectionError, RateLimitError, APITimeoutError

from config import OPENAI_KEY_FILE, get_config, get_openai_api_key, logger
from errors import ContextRecallError


def is_transient_api_error(e: Exception) -> bool:
    """Check if an OpenAI API error is transient (worth retrying)."""
    if isinstance(e, (RateLimitError, APITimeoutError, APIConnectionError)):
        return True
    if isinstance(e, APIStatusError) and e.status_code >= 500:
        return True
    return False


def create_openai_client() -> AsyncOpenAI:
    """Build an AsyncOpenAI client from the configured key."""
    api_key = get_openai_api_key()
    if not api_key:
        raise ContextRecallError(
            f"OpenAI API key not found. Create {OPENAI_KEY_FILE} or set OPENAI_API_KEY.",
            "missing_api_key"
        )
    return AsyncOpenAI(api_key=api_key)


@dataclass
class EmbeddingBatch:
    vectors: list[list[float]]
    prompt_tokens: int


class AsyncOpenAIEmbeddings:
    """Fixed-dimension OpenAI embeddings (text-embedding-3-small, 384 dims)."""

    def __init__(
        self,
        model: Optional[str] = None,
        dimension: Optional[int] = None,
        client: Optional[AsyncOpenAI] = None
    ):
        cfg = get_config()
        self._model = model or cfg.embedding_model
        self._dimension = dimension or cfg.embedding_dim
        self._client = client

    @property
    def model(self) -> str:
        return self._model

    @property
    def dimension(self) -> int:
        return self._dimension

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = create_openai_client()
        return self._client

    async def embed(self, texts: list[str]) -> EmbeddingBatch:
        """Embed several texts in one request.

        Raises:
            ContextRecallError: If the key is missing or the API fails permanently
        """
        if not texts:
            return EmbeddingBatch(vectors=[], prompt_tokens=0)
        response = await self._call_api_with_retry(texts)
        vectors = [item.embedding for item in sorted(response.data, key=lambda d: d.index)]
        usage = getattr(response, "usage", None)
        tokens = getattr(usage, "prompt_tokens", 0) or 0
        return EmbeddingBatch(vectors=vectors, prompt_tokens=tokens)

    async def get_embedding(self, text: str) -> list[float]:
        batch = await self.embed([text])
        return batch.vectors[0]

    async def _call_api_with_retry(
        self, texts: list[str], max_retries: int = 3, max_backoff: float = 20.0
    ):
        """Call the embeddings endpoint, retrying transient failures.

        Permanent errors (auth, bad request) fail fast.
        """
        delay = 1.0
        for attempt in range(max_retries + 1):
            try:
                client = self._get_client()
                response = await client.embeddings.create(
                    model=self._model,
                    input=texts,
                    dimensions=self._dimension,
                )
                if attempt > 0:
                    logger.info(f"Embedding API succeeded after {attempt + 1} attempts")
                return response
            except ContextRecallError:
                raise
            except Exception as e:
                if is_transient_api_error(e) and attempt < max_retries:
                    jittered = delay * (0.5 + random.random())
                    logger.warning(
                        f"Transient embedding error ({type(e).__name__}), "
                        f"retry {attempt + 1}/{max_retries} in {jittered:.1f}s"
                    )
                    await asyncio.sleep(jittered)
                    delay = min(delay * 2, max_backoff)
                else:
                    kind = "transient (exhausted retries)" if is_transient_api_error(e) else "permanent"
                    logger.error(f"Embedding API {kind} error: {e}")
                    raise ContextRecallError(
                        f"Failed to get embedding from OpenAI: {e}",
                        "embedding_failed",
                        {"model": self._model, "original_error": str(e), "attempts": attempt + 1}
                    ) from e
