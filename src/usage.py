"""LLM and embedding usage accounting.

Records are written by a background WriteQueue so tracking never delays or
breaks the operation being tracked.
"""

import asyncio
from typing import Any, Optional

from config import logger
from utils.write_queue import WriteQueue


INTENT_ANALYSIS = "intent_analysis"
SUMMARIZATION = "summarization"
EMBEDDING_GENERATION = "embedding_generation"
WEB_SEARCH = "web_search"

# USD per million tokens: (input, output)
MODEL_PRICING: dict[str, tuple[float, float]] = {
    "gpt-4o-mini": (0.15, 0.60),
    "gpt-4o": (2.50, 10.00),
    "gpt-4.1-mini": (0.40, 1.60),
    "text-embedding-3-small": (0.02, 0.0),
    "text-embedding-3-large": (0.13, 0.0),
}

_DEFAULT_MODEL = "gpt-4o-mini"


def calculate_cost(model: str, input_tokens: int, output_tokens: int = 0) -> float:
    """Cost in USD rounded to 6 decimals; unknown models use gpt-4o-mini rates."""
    pricing = MODEL_PRICING.get(model)
    if pricing is None:
        logger.warning(f"Unknown model {model}, using {_DEFAULT_MODEL} pricing")
        pricing = MODEL_PRICING[_DEFAULT_MODEL]
    input_rate, output_rate = pricing
    cost = (input_tokens / 1_000_000) * input_rate + (output_tokens / 1_000_000) * output_rate
    return round(cost, 6)


def format_cost(cost: float) -> str:
    if cost < 0.000001:
        return "$0.000000"
    return f"${cost:.6f}"


class UsageTracker:
    """Fire-and-forget usage recorder.

    Args:
        store: Anything with an async ``insert_usage(record: dict)``
    """

    def __init__(self, store):
        self._queue = WriteQueue(store.insert_usage, name="usage queue")

    async def start(self) -> None:
        await self._queue.start()

    async def stop(self) -> None:
        await self._queue.stop()

    async def flush(self, timeout: Optional[float] = None) -> bool:
        return await self._queue.flush(timeout)

    @property
    def stats(self) -> dict:
        return self._queue.stats

    def track(
        self,
        operation_type: str,
        model: str,
        input_tokens: int = 0,
        output_tokens: int = 0,
        duration_ms: int = 0,
        success: bool = True,
        error: Optional[str] = None,
        conversation_id: Optional[str] = None,
        message_id: Optional[str] = None,
        user_id: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> None:
        """Queue a usage record. Never raises."""
        try:
            record = {
                "operation_type": operation_type,
                "model": model,
                "input_tokens": input_tokens,
                "output_tokens": output_tokens,
                "cost": calculate_cost(model, input_tokens, output_tokens),
                "duration_ms": duration_ms,
                "success": success,
                "error": error,
                "conversation_id": conversation_id,
                "message_id": message_id,
                "user_id": user_id,
                "metadata": metadata or {},
            }
            self._queue.put_nowait(record)
            if not self._queue.running:
                asyncio.get_running_loop().create_task(self._queue.start())
        except Exception as e:
            logger.warning(f"Failed to record usage for {operation_type}: {e}")
