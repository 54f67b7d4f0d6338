"""Turn-threshold summarization of conversation history.

Once enough user turns pile up after the last summary, the whole span is
compressed into one topic summary and its messages are linked to it.
"""

import json
import re
import time
from dataclasses import dataclass, field
from typing import Any, Optional

from config import get_config, logger
from db.store import ConversationStore
from embeddings.topic_index import TopicEmbeddingIndex
from errors import ContextRecallError, ParseError
from llm.client import ChatClient
from models import Message, MessageRange, Summary, new_id, now
from summary.prompts import APPROVED_CATEGORIES, SUMMARY_SYSTEM_PROMPT, build_summary_prompt
from usage import SUMMARIZATION, UsageTracker


_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


@dataclass
class SummaryDraft:
    """Summary content before it is bound to a conversation.

    Attributes:
        degraded: True when built without the LLM
    """
    topic_name: str
    summary_text: str
    key_topics: list[str] = field(default_factory=list)
    related_topics: list[str] = field(default_factory=list)
    broader_topic: str = "general"
    topic_relevance: float = 0.5
    degraded: bool = False


def _string_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(v).strip() for v in value if str(v).strip()]


def parse_summary_response(content: str) -> SummaryDraft:
    """Parse the summarizer's free-form JSON reply.

    Tolerates code fences and chatter around the object.

    Raises:
        ParseError: If no usable summary can be extracted
    """
    match = _JSON_OBJECT.search(content or "")
    if not match:
        raise ParseError("No JSON object in summary response")
    try:
        raw = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise ParseError(f"Invalid JSON in summary response: {e}") from e
    if not isinstance(raw, dict):
        raise ParseError("Summary response is not an object")

    summary_text = raw.get("summaryText")
    if not isinstance(summary_text, str) or not summary_text.strip():
        raise ParseError("Summary response missing summaryText")

    key_topics = _string_list(raw.get("keyTopics"))
    topic_name = raw.get("topicName")
    if not isinstance(topic_name, str) or not topic_name.strip():
        topic_name = key_topics[0] if key_topics else summary_text.strip()[:80]

    broader = str(raw.get("broaderTopic") or "general").strip().lower()
    if broader not in APPROVED_CATEGORIES:
        broader = "general"

    try:
        relevance = float(raw.get("topicRelevance", 0.5))
    except (TypeError, ValueError):
        relevance = 0.5

    return SummaryDraft(
        topic_name=topic_name.strip(),
        summary_text=summary_text.strip(),
        key_topics=key_topics,
        related_topics=_string_list(raw.get("relatedTopics")),
        broader_topic=broader,
        topic_relevance=min(1.0, max(0.0, relevance)),
    )


def placeholder_summary(messages: list[Message]) -> SummaryDraft:
    """Minimal summary used when the LLM can't produce one."""
    user_lines = [m.content.strip() for m in messages if m.role == "user" and m.content.strip()]
    excerpt = " | ".join(line[:120] for line in user_lines[:3])
    first = user_lines[0] if user_lines else "conversation"
    return SummaryDraft(
        topic_name=first[:60],
        summary_text=f"Conversation summary ({len(messages)} messages): {excerpt}",
        degraded=True,
    )


class ConversationSummarizer:
    """Creates topic summaries once the turn threshold is reached.

    Args:
        store: Conversation store
        llm: Chat client used for compression
        topic_index: Embeds new summaries; skipped when None
        usage: Usage tracker for the summarization call
        turn_threshold: User turns per summary (defaults to config)
    """

    def __init__(
        self,
        store: ConversationStore,
        llm: ChatClient,
        topic_index: Optional[TopicEmbeddingIndex] = None,
        usage: Optional[UsageTracker] = None,
        turn_threshold: Optional[int] = None
    ):
        cfg = get_config()
        self.store = store
        self.llm = llm
        self.topic_index = topic_index
        self.usage = usage
        self.turn_threshold = turn_threshold or cfg.turn_threshold
        self.model = cfg.summary_model

    async def get_message_count_since_last_summary(self, conversation_id: str) -> int:
        """User messages after the end of the latest summary."""
        latest = await self.store.get_latest_summary(conversation_id)
        after = latest.message_range.end_message_id if latest else None
        return await self.store.count_user_messages_after(conversation_id, after)

    async def get_all_summaries(self, conversation_id: str) -> list[Summary]:
        return await self.store.get_summaries(conversation_id)

    async def check_and_create_summary(
        self,
        conversation_id: str,
        user_id: Optional[str] = None
    ) -> Optional[Summary]:
        """Summarize if the turn threshold has been reached.

        Below the threshold nothing is written and None is returned.
        """
        latest = await self.store.get_latest_summary(conversation_id)
        after = latest.message_range.end_message_id if latest else None
        user_messages = await self.store.get_user_messages_after(conversation_id, after)

        if len(user_messages) < self.turn_threshold:
            logger.debug(
                f"Conversation {conversation_id}: {len(user_messages)}/{self.turn_threshold} "
                "turns since last summary"
            )
            return None

        return await self._create_summary(conversation_id, user_messages, latest, user_id)

    async def _create_summary(
        self,
        conversation_id: str,
        user_messages: list[Message],
        previous: Optional[Summary],
        user_id: Optional[str]
    ) -> Summary:
        # The span runs from just after the previous summary through the
        # newest message, so no message falls between two ranges
        start_seq = user_messages[0].seq
        if previous is not None:
            previous_end = await self.store.get_message(previous.message_range.end_message_id)
            if previous_end is not None:
                start_seq = previous_end.seq + 1
        newest = (await self.store.get_recent_messages(conversation_id, 1))[0]
        messages = await self.store.get_messages_between(conversation_id, start_seq, newest.seq)
        level = previous.summary_level + 1 if previous else 1

        draft = await self._compress(conversation_id, messages, previous, level, user_id)

        summary = Summary(
            id=new_id(),
            conversation_id=conversation_id,
            topic_name=draft.topic_name,
            summary_text=draft.summary_text,
            message_range=MessageRange(
                start_message_id=messages[0].id,
                end_message_id=messages[-1].id,
                message_count=len(messages),
            ),
            summary_level=level,
            key_topics=draft.key_topics,
            related_topics=draft.related_topics,
            topic_relevance=draft.topic_relevance,
            broader_topic=draft.broader_topic,
            created_at=now(),
        )
        linked = await self.store.save_summary(summary, [m.id for m in messages])
        await self.store.touch_conversation(conversation_id)
        logger.info(
            f"Created level {level} summary '{summary.topic_name}' for {conversation_id} "
            f"({len(messages)} messages, {linked} linked{', degraded' if draft.degraded else ''})"
        )

        if self.topic_index is not None:
            try:
                await self.topic_index.update_summary_embedding(summary, user_id=user_id)
            except Exception as e:
                logger.warning(f"Embedding for summary {summary.id} failed, will backfill later: {e}")

        return summary

    async def _compress(
        self,
        conversation_id: str,
        messages: list[Message],
        previous: Optional[Summary],
        level: int,
        user_id: Optional[str]
    ) -> SummaryDraft:
        started = time.monotonic()
        try:
            completion = await self.llm.complete(
                SUMMARY_SYSTEM_PROMPT,
                build_summary_prompt(messages, previous, level),
                temperature=0.3,
                max_tokens=1500,
                model=self.model,
            )
        except ContextRecallError as e:
            logger.warning(f"Summary LLM call failed for {conversation_id}, using placeholder: {e}")
            self._track(conversation_id, user_id, started, 0, 0, success=False, error=str(e))
            return placeholder_summary(messages)

        self._track(
            conversation_id, user_id, started,
            completion.prompt_tokens, completion.completion_tokens, success=True
        )
        try:
            return parse_summary_response(completion.content)
        except ParseError as e:
            logger.warning(f"Unparseable summary for {conversation_id}, using placeholder: {e}")
            return placeholder_summary(messages)

    def _track(
        self,
        conversation_id: str,
        user_id: Optional[str],
        started: float,
        input_tokens: int,
        output_tokens: int,
        success: bool,
        error: Optional[str] = None
    ) -> None:
        if self.usage is None:
            return
        self.usage.track(
            operation_type=SUMMARIZATION,
            model=self.model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            duration_ms=int((time.monotonic() - started) * 1000),
            success=success,
            error=error,
            conversation_id=conversation_id,
            user_id=user_id,
        )
