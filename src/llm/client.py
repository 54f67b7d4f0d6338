"""Async chat completion client for context-recall.

Wraps the OpenAI chat API behind a single ``complete`` call. When a JSON
schema is given the request uses strict structured output, so the returned
content is valid JSON for that schema.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Optional

from openai import AsyncOpenAI

from config import get_config, logger
from embeddings.openai import create_openai_client, is_transient_api_error
from errors import ContextRecallError
from utils.async_retry import with_timeout


@dataclass
class Completion:
    """Text returned by the model plus token usage."""
    content: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    model: str = ""


class ChatClient:
    """OpenAI chat completions with timeout and transient-error retry.

    Args:
        model: Default model for calls that don't pass one
        timeout: Per-attempt timeout in seconds
        client: Pre-built AsyncOpenAI client (created lazily otherwise)
    """

    def __init__(
        self,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[AsyncOpenAI] = None,
        max_retries: int = 2
    ):
        cfg = get_config()
        self.model = model or cfg.intent_model
        self.timeout = timeout or cfg.llm_timeout
        self.max_retries = max_retries
        self._client = client

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = create_openai_client()
        return self._client

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.3,
        max_tokens: int = 1000,
        json_schema: Optional[dict[str, Any]] = None,
        schema_name: str = "response",
        model: Optional[str] = None
    ) -> Completion:
        """Run one chat completion.

        Args:
            json_schema: JSON schema for strict structured output
            schema_name: Name reported to the API for the schema

        Raises:
            ContextRecallError: On timeout, permanent API error or exhausted retries
        """
        model = model or self.model
        params: dict[str, Any] = {
            "model": model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if json_schema is not None:
            params["response_format"] = {
                "type": "json_schema",
                "json_schema": {"name": schema_name, "strict": True, "schema": json_schema},
            }

        for attempt in range(self.max_retries + 1):
            try:
                client = self._get_client()
                response = await with_timeout(
                    client.chat.completions.create(**params),
                    self.timeout,
                    f"LLM call ({model})",
                )
                content = response.choices[0].message.content or ""
                usage = response.usage
                return Completion(
                    content=content,
                    prompt_tokens=getattr(usage, "prompt_tokens", 0) or 0,
                    completion_tokens=getattr(usage, "completion_tokens", 0) or 0,
                    model=model,
                )
            except ContextRecallError:
                raise
            except Exception as e:
                if is_transient_api_error(e) and attempt < self.max_retries:
                    wait_time = 2 ** attempt
                    logger.warning(f"Transient LLM error ({type(e).__name__}), retrying in {wait_time}s")
                    await asyncio.sleep(wait_time)
                    continue
                logger.error(f"LLM call failed: {e}")
                raise ContextRecallError(
                    f"LLM call failed: {e}",
                    "llm_error",
                    {"model": model, "original_error": str(e), "attempts": attempt + 1}
                ) from e

        raise ContextRecallError("LLM call failed", "llm_error", {"model": model})
