"""Persistent record types for context-recall.

Rows are loaded into these dataclasses by db.store; services never see raw
sqlite rows. Timestamps are naive local datetimes.
"""

import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional


VALID_ROLES = frozenset(["user", "assistant", "system", "tool"])


def new_id() -> str:
    """Opaque string id for new rows."""
    return uuid.uuid4().hex


def now() -> datetime:
    return datetime.now()


def to_db_time(value: datetime) -> str:
    return value.isoformat(timespec="microseconds")


def from_db_time(value: str) -> datetime:
    return datetime.fromisoformat(value)


def _json_list(value: Optional[str]) -> list:
    if not value:
        return []
    try:
        data = json.loads(value)
    except json.JSONDecodeError:
        return []
    return data if isinstance(data, list) else []


def _json_dict(value: Optional[str]) -> dict:
    if not value:
        return {}
    try:
        data = json.loads(value)
    except json.JSONDecodeError:
        return {}
    return data if isinstance(data, dict) else {}


@dataclass
class Conversation:
    id: str
    owner_id: Optional[str] = None
    behaviors: dict[str, Any] = field(default_factory=dict)
    memory: Optional[str] = None
    created_at: datetime = field(default_factory=now)
    updated_at: datetime = field(default_factory=now)

    @classmethod
    def from_row(cls, row) -> "Conversation":
        return cls(
            id=row["id"],
            owner_id=row["owner_id"],
            behaviors=_json_dict(row["behaviors"]),
            memory=row["memory"],
            created_at=from_db_time(row["created_at"]),
            updated_at=from_db_time(row["updated_at"]),
        )


@dataclass
class Message:
    """A single conversation message.

    Attributes:
        summary_id: Summary that subsumed this message, None while still active
        seq: Insertion order across the database, used for range bookkeeping
    """
    id: str
    conversation_id: str
    role: str
    content: str
    created_at: datetime = field(default_factory=now)
    summary_id: Optional[str] = None
    seq: Optional[int] = None

    @classmethod
    def from_row(cls, row) -> "Message":
        return cls(
            id=row["id"],
            conversation_id=row["conversation_id"],
            role=row["role"],
            content=row["content"],
            created_at=from_db_time(row["created_at"]),
            summary_id=row["summary_id"],
            seq=row["seq"],
        )


@dataclass
class MessageRange:
    start_message_id: str
    end_message_id: str
    message_count: int

    def to_dict(self) -> dict:
        return {
            "startMessageId": self.start_message_id,
            "endMessageId": self.end_message_id,
            "messageCount": self.message_count,
        }


@dataclass
class Summary:
    """Topic summary covering a contiguous range of messages.

    Attributes:
        summary_level: 1 for the first summary, previous level + 1 after that
        similarity: Cosine similarity to the search query, set by vector search
        time_match: How the summary sits in a date window, set by date search
    """
    id: str
    conversation_id: str
    topic_name: str
    summary_text: str
    message_range: MessageRange
    summary_level: int
    key_topics: list[str] = field(default_factory=list)
    related_topics: list[str] = field(default_factory=list)
    topic_relevance: float = 0.5
    broader_topic: Optional[str] = None
    has_embedding: bool = False
    created_at: datetime = field(default_factory=now)
    similarity: Optional[float] = None
    time_match: Optional[str] = None

    @classmethod
    def from_row(cls, row) -> "Summary":
        keys = row.keys()
        similarity = row["similarity"] if "similarity" in keys else None
        has_embedding = bool(row["has_embedding"]) if "has_embedding" in keys else False
        return cls(
            id=row["id"],
            conversation_id=row["conversation_id"],
            topic_name=row["topic_name"],
            summary_text=row["summary_text"],
            message_range=MessageRange(
                start_message_id=row["start_message_id"],
                end_message_id=row["end_message_id"],
                message_count=row["message_count"],
            ),
            summary_level=row["summary_level"],
            key_topics=_json_list(row["key_topics"]),
            related_topics=_json_list(row["related_topics"]),
            topic_relevance=row["topic_relevance"],
            broader_topic=row["broader_topic"],
            has_embedding=has_embedding,
            created_at=from_db_time(row["created_at"]),
            similarity=similarity,
        )

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "conversationId": self.conversation_id,
            "topicName": self.topic_name,
            "summaryText": self.summary_text,
            "keyTopics": self.key_topics,
            "relatedTopics": self.related_topics,
            "messageRange": self.message_range.to_dict(),
            "summaryLevel": self.summary_level,
            "topicRelevance": self.topic_relevance,
            "broaderTopic": self.broader_topic,
            "createdAt": self.created_at.isoformat(),
        }
        if self.similarity is not None:
            data["similarity"] = round(self.similarity, 4)
        if self.time_match is not None:
            data["timeMatch"] = self.time_match
        return data


@dataclass
class IntentAnalysisRecord:
    """Persisted outcome of analysing one user turn.

    Immutable once written, except for the confidence back-fill after
    retrieval runs.
    """
    id: str
    conversation_id: str
    message_id: Optional[str]
    current_intent: str
    contextual_relevance: str
    relationship_to_history: str
    context_retrieval_strategy: str
    confidence_score: float
    confidence_level: str
    key_topics: list[str] = field(default_factory=list)
    pending_questions: list[str] = field(default_factory=list)
    last_assistant_question: Optional[str] = None
    compressed_context: Optional[str] = None
    confidence_factors: dict[str, float] = field(default_factory=dict)
    raw_result: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=now)

    @classmethod
    def from_row(cls, row) -> "IntentAnalysisRecord":
        return cls(
            id=row["id"],
            conversation_id=row["conversation_id"],
            message_id=row["message_id"],
            current_intent=row["current_intent"],
            contextual_relevance=row["contextual_relevance"],
            relationship_to_history=row["relationship_to_history"],
            context_retrieval_strategy=row["context_retrieval_strategy"],
            confidence_score=row["confidence_score"],
            confidence_level=row["confidence_level"],
            key_topics=_json_list(row["key_topics"]),
            pending_questions=_json_list(row["pending_questions"]),
            last_assistant_question=row["last_assistant_question"],
            compressed_context=row["compressed_context"],
            confidence_factors=_json_dict(row["confidence_factors"]),
            raw_result=_json_dict(row["raw_result"]),
            created_at=from_db_time(row["created_at"]),
        )
