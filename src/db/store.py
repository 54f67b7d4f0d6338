"""Async data access for conversations, messages, summaries and analyses.

Every method opens its own connection and retries on transient lock errors,
so callers running as background tasks never share a connection.
"""

import json
from datetime import datetime
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, TypeVar

import aiosqlite

import config
from db.async_connection import get_async_db
from errors import ContextRecallError
from models import (
    VALID_ROLES,
    Conversation,
    IntentAnalysisRecord,
    Message,
    Summary,
    new_id,
    now,
    to_db_time,
)
from utils.async_retry import retry_with_backoff

T = TypeVar('T')

_SUMMARY_COLUMNS = """
    id, conversation_id, topic_name, summary_text, key_topics, related_topics,
    start_message_id, end_message_id, message_count, summary_level,
    topic_relevance, broader_topic, created_at,
    topic_embedding IS NOT NULL AS has_embedding
"""


def _escape_like(term: str) -> str:
    """Make % and _ in a search term match literally."""
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class ConversationStore:
    """Relational store for the context-recall core."""

    def __init__(self, db_path: Optional[Path] = None):
        self.db_path = Path(db_path or config.DB_PATH)

    async def _run(self, operation: Callable[[aiosqlite.Connection], Awaitable[T]]) -> T:
        async def attempt():
            db = await get_async_db(self.db_path)
            try:
                return await operation(db)
            finally:
                await db.close()

        return await retry_with_backoff(attempt, operation="store")

    async def _fetch_all(self, sql: str, params: tuple | list = ()) -> list:
        async def op(db):
            cursor = await db.execute(sql, params)
            return await cursor.fetchall()
        return await self._run(op)

    async def _fetch_one(self, sql: str, params: tuple | list = ()):
        async def op(db):
            cursor = await db.execute(sql, params)
            return await cursor.fetchone()
        return await self._run(op)

    # Conversations

    async def create_conversation(
        self,
        owner_id: Optional[str] = None,
        conversation_id: Optional[str] = None
    ) -> Conversation:
        conversation = Conversation(id=conversation_id or new_id(), owner_id=owner_id)

        async def op(db):
            await db.execute(
                """
                INSERT INTO conversations (id, owner_id, behaviors, memory, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    conversation.id, conversation.owner_id,
                    json.dumps(conversation.behaviors), conversation.memory,
                    to_db_time(conversation.created_at), to_db_time(conversation.updated_at),
                )
            )
            await db.commit()

        await self._run(op)
        return conversation

    async def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        row = await self._fetch_one("SELECT * FROM conversations WHERE id = ?", (conversation_id,))
        return Conversation.from_row(row) if row else None

    async def ensure_conversation(
        self,
        conversation_id: str,
        owner_id: Optional[str] = None
    ) -> Conversation:
        """Return the conversation, creating it on first use."""
        existing = await self.get_conversation(conversation_id)
        if existing:
            return existing
        return await self.create_conversation(owner_id=owner_id, conversation_id=conversation_id)

    async def touch_conversation(self, conversation_id: str) -> None:
        async def op(db):
            await db.execute(
                "UPDATE conversations SET updated_at = ? WHERE id = ?",
                (to_db_time(now()), conversation_id)
            )
            await db.commit()
        await self._run(op)

    async def update_behaviors(self, conversation_id: str, behaviors: dict[str, Any]) -> None:
        async def op(db):
            await db.execute(
                "UPDATE conversations SET behaviors = ?, updated_at = ? WHERE id = ?",
                (json.dumps(behaviors), to_db_time(now()), conversation_id)
            )
            await db.commit()
        await self._run(op)

    # Messages

    async def add_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        created_at: Optional[datetime] = None
    ) -> Message:
        if role not in VALID_ROLES:
            raise ContextRecallError(
                f"Invalid message role: {role}",
                "invalid_role",
                {"role": role, "valid_roles": sorted(VALID_ROLES)}
            )
        message = Message(
            id=new_id(),
            conversation_id=conversation_id,
            role=role,
            content=content,
            created_at=created_at or now(),
        )

        async def op(db):
            cursor = await db.execute(
                """
                INSERT INTO messages (id, conversation_id, role, content, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (message.id, conversation_id, role, content, to_db_time(message.created_at))
            )
            await db.commit()
            return cursor.lastrowid

        message.seq = await self._run(op)
        return message

    async def get_message(self, message_id: str) -> Optional[Message]:
        row = await self._fetch_one("SELECT * FROM messages WHERE id = ?", (message_id,))
        return Message.from_row(row) if row else None

    async def get_messages(self, conversation_id: str) -> list[Message]:
        rows = await self._fetch_all(
            "SELECT * FROM messages WHERE conversation_id = ? ORDER BY seq",
            (conversation_id,)
        )
        return [Message.from_row(r) for r in rows]

    async def get_recent_messages(
        self,
        conversation_id: str,
        limit: int,
        unsummarized_only: bool = False
    ) -> list[Message]:
        """Most recent messages, returned in chronological order."""
        summary_filter = "AND summary_id IS NULL" if unsummarized_only else ""
        rows = await self._fetch_all(
            f"""
            SELECT * FROM messages
            WHERE conversation_id = ? {summary_filter}
            ORDER BY seq DESC
            LIMIT ?
            """,
            (conversation_id, limit)
        )
        return [Message.from_row(r) for r in reversed(rows)]

    async def get_user_messages_after(
        self,
        conversation_id: str,
        after_message_id: Optional[str]
    ) -> list[Message]:
        """User messages strictly after the given message (all if None)."""
        if after_message_id is None:
            rows = await self._fetch_all(
                """
                SELECT * FROM messages
                WHERE conversation_id = ? AND role = 'user'
                ORDER BY seq
                """,
                (conversation_id,)
            )
        else:
            rows = await self._fetch_all(
                """
                SELECT * FROM messages
                WHERE conversation_id = ? AND role = 'user'
                  AND seq > (SELECT seq FROM messages WHERE id = ?)
                ORDER BY seq
                """,
                (conversation_id, after_message_id)
            )
        return [Message.from_row(r) for r in rows]

    async def count_user_messages_after(
        self,
        conversation_id: str,
        after_message_id: Optional[str]
    ) -> int:
        if after_message_id is None:
            row = await self._fetch_one(
                "SELECT COUNT(*) FROM messages WHERE conversation_id = ? AND role = 'user'",
                (conversation_id,)
            )
        else:
            row = await self._fetch_one(
                """
                SELECT COUNT(*) FROM messages
                WHERE conversation_id = ? AND role = 'user'
                  AND seq > (SELECT seq FROM messages WHERE id = ?)
                """,
                (conversation_id, after_message_id)
            )
        return row[0]

    async def get_messages_between(
        self,
        conversation_id: str,
        start_seq: int,
        end_seq: int
    ) -> list[Message]:
        """All messages (any role) with start_seq <= seq <= end_seq."""
        rows = await self._fetch_all(
            """
            SELECT * FROM messages
            WHERE conversation_id = ? AND seq >= ? AND seq <= ?
            ORDER BY seq
            """,
            (conversation_id, start_seq, end_seq)
        )
        return [Message.from_row(r) for r in rows]

    async def count_messages(self, conversation_id: str, unsummarized_only: bool = False) -> int:
        summary_filter = "AND summary_id IS NULL" if unsummarized_only else ""
        row = await self._fetch_one(
            f"SELECT COUNT(*) FROM messages WHERE conversation_id = ? {summary_filter}",
            (conversation_id,)
        )
        return row[0]

    # Summaries

    async def save_summary(self, summary: Summary, message_ids: list[str]) -> int:
        """Insert a summary and point its unsummarized messages at it.

        Both writes share one transaction. Messages that already carry a
        summary are left alone.

        Returns:
            Number of messages linked to the new summary
        """
        async def op(db):
            try:
                await db.execute(
                    """
                    INSERT INTO summaries (
                        id, conversation_id, topic_name, summary_text, key_topics,
                        related_topics, start_message_id, end_message_id, message_count,
                        summary_level, topic_relevance, broader_topic, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        summary.id, summary.conversation_id, summary.topic_name,
                        summary.summary_text, json.dumps(summary.key_topics),
                        json.dumps(summary.related_topics),
                        summary.message_range.start_message_id,
                        summary.message_range.end_message_id,
                        summary.message_range.message_count,
                        summary.summary_level, summary.topic_relevance,
                        summary.broader_topic, to_db_time(summary.created_at),
                    )
                )
                linked = 0
                if message_ids:
                    placeholders = ",".join("?" * len(message_ids))
                    cursor = await db.execute(
                        f"""
                        UPDATE messages SET summary_id = ?
                        WHERE id IN ({placeholders}) AND summary_id IS NULL
                        """,
                        [summary.id] + list(message_ids)
                    )
                    linked = cursor.rowcount
                await db.commit()
                return linked
            except Exception:
                await db.rollback()
                raise

        return await self._run(op)

    async def get_summary(self, summary_id: str) -> Optional[Summary]:
        row = await self._fetch_one(
            f"SELECT {_SUMMARY_COLUMNS} FROM summaries WHERE id = ?",
            (summary_id,)
        )
        return Summary.from_row(row) if row else None

    async def get_latest_summary(self, conversation_id: str) -> Optional[Summary]:
        row = await self._fetch_one(
            f"""
            SELECT {_SUMMARY_COLUMNS} FROM summaries
            WHERE conversation_id = ?
            ORDER BY summary_level DESC
            LIMIT 1
            """,
            (conversation_id,)
        )
        return Summary.from_row(row) if row else None

    async def get_summaries(self, conversation_id: str) -> list[Summary]:
        """All summaries in chronological order."""
        rows = await self._fetch_all(
            f"""
            SELECT {_SUMMARY_COLUMNS} FROM summaries
            WHERE conversation_id = ?
            ORDER BY summary_level ASC
            """,
            (conversation_id,)
        )
        return [Summary.from_row(r) for r in rows]

    async def get_recent_summaries(
        self,
        conversation_id: str,
        limit: int,
        terms: Optional[list[str]] = None
    ) -> list[Summary]:
        """Newest summaries, optionally OR-filtered by terms.

        A term matches when it appears (case-insensitive) in the topic name,
        summary text or related topics.
        """
        where = ["conversation_id = ?"]
        params: list[Any] = [conversation_id]
        if terms:
            clauses = []
            for term in terms:
                pattern = f"%{_escape_like(term.lower())}%"
                clauses.append(
                    "(LOWER(topic_name) LIKE ? ESCAPE '\\' OR LOWER(summary_text) LIKE ? ESCAPE '\\' "
                    "OR LOWER(related_topics) LIKE ? ESCAPE '\\')"
                )
                params.extend([pattern, pattern, pattern])
            where.append("(" + " OR ".join(clauses) + ")")
        params.append(limit)

        rows = await self._fetch_all(
            f"""
            SELECT {_SUMMARY_COLUMNS} FROM summaries
            WHERE {' AND '.join(where)}
            ORDER BY created_at DESC
            LIMIT ?
            """,
            params
        )
        return [Summary.from_row(r) for r in rows]

    async def get_summaries_by_level(self, conversation_id: str, limit: int) -> list[Summary]:
        """Foundational summaries first: level ascending, then newest."""
        rows = await self._fetch_all(
            f"""
            SELECT {_SUMMARY_COLUMNS} FROM summaries
            WHERE conversation_id = ?
            ORDER BY summary_level ASC, created_at DESC
            LIMIT ?
            """,
            (conversation_id, limit)
        )
        return [Summary.from_row(r) for r in rows]

    async def get_summaries_in_window(
        self,
        conversation_id: str,
        start: datetime,
        end: datetime,
        limit: int
    ) -> list[Summary]:
        rows = await self._fetch_all(
            f"""
            SELECT {_SUMMARY_COLUMNS} FROM summaries
            WHERE conversation_id = ? AND created_at >= ? AND created_at <= ?
            ORDER BY created_at DESC, topic_relevance DESC
            LIMIT ?
            """,
            (conversation_id, to_db_time(start), to_db_time(end), limit)
        )
        return [Summary.from_row(r) for r in rows]

    async def count_summaries(
        self,
        conversation_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None
    ) -> int:
        sql = "SELECT COUNT(*) FROM summaries WHERE conversation_id = ?"
        params: list[Any] = [conversation_id]
        if start is not None:
            sql += " AND created_at >= ?"
            params.append(to_db_time(start))
        if end is not None:
            sql += " AND created_at <= ?"
            params.append(to_db_time(end))
        row = await self._fetch_one(sql, params)
        return row[0]

    async def summary_level_counts(self, conversation_id: str) -> dict[int, int]:
        rows = await self._fetch_all(
            """
            SELECT summary_level, COUNT(*) AS n FROM summaries
            WHERE conversation_id = ?
            GROUP BY summary_level
            ORDER BY summary_level
            """,
            (conversation_id,)
        )
        return {r["summary_level"]: r["n"] for r in rows}

    async def set_summary_embedding(self, summary_id: str, embedding: bytes) -> None:
        async def op(db):
            await db.execute(
                "UPDATE summaries SET topic_embedding = ? WHERE id = ?",
                (embedding, summary_id)
            )
            await db.commit()
        await self._run(op)

    async def get_summaries_missing_embedding(self, limit: int) -> list[Summary]:
        rows = await self._fetch_all(
            f"""
            SELECT {_SUMMARY_COLUMNS} FROM summaries
            WHERE topic_embedding IS NULL
            ORDER BY created_at
            LIMIT ?
            """,
            (limit,)
        )
        return [Summary.from_row(r) for r in rows]

    async def nearest_summaries(
        self,
        conversation_id: str,
        query_embedding: bytes,
        limit: int,
        min_similarity: float,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        broader_topics: Optional[list[str]] = None
    ) -> list[Summary]:
        """Cosine nearest neighbours among this conversation's summaries.

        Closest first; equal distances fall back to newest first.
        """
        where = [
            "conversation_id = ?",
            "topic_embedding IS NOT NULL",
            "vec_distance_cosine(topic_embedding, ?) <= ?",
        ]
        params: list[Any] = [query_embedding, conversation_id, query_embedding, 1.0 - min_similarity]
        if start is not None:
            where.append("created_at >= ?")
            params.append(to_db_time(start))
        if end is not None:
            where.append("created_at <= ?")
            params.append(to_db_time(end))
        if broader_topics:
            placeholders = ",".join("?" * len(broader_topics))
            where.append(f"broader_topic IN ({placeholders})")
            params.extend(broader_topics)
        params.append(limit)

        rows = await self._fetch_all(
            f"""
            SELECT {_SUMMARY_COLUMNS},
                   1.0 - vec_distance_cosine(topic_embedding, ?) AS similarity
            FROM summaries
            WHERE {' AND '.join(where)}
            ORDER BY similarity DESC, created_at DESC
            LIMIT ?
            """,
            params
        )
        return [Summary.from_row(r) for r in rows]

    # Intent analyses

    async def save_intent_analysis(self, record: IntentAnalysisRecord) -> None:
        async def op(db):
            await db.execute(
                """
                INSERT INTO intent_analyses (
                    id, conversation_id, message_id, current_intent,
                    contextual_relevance, relationship_to_history, key_topics,
                    pending_questions, last_assistant_question, compressed_context,
                    context_retrieval_strategy, confidence_score, confidence_level,
                    confidence_factors, raw_result, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.id, record.conversation_id, record.message_id,
                    record.current_intent, record.contextual_relevance,
                    record.relationship_to_history, json.dumps(record.key_topics),
                    json.dumps(record.pending_questions), record.last_assistant_question,
                    record.compressed_context, record.context_retrieval_strategy,
                    record.confidence_score, record.confidence_level,
                    json.dumps(record.confidence_factors), json.dumps(record.raw_result),
                    to_db_time(record.created_at),
                )
            )
            await db.commit()
        await self._run(op)

    async def get_latest_intent_analysis(self, conversation_id: str) -> Optional[IntentAnalysisRecord]:
        row = await self._fetch_one(
            """
            SELECT * FROM intent_analyses
            WHERE conversation_id = ?
            ORDER BY created_at DESC
            LIMIT 1
            """,
            (conversation_id,)
        )
        return IntentAnalysisRecord.from_row(row) if row else None

    async def get_intent_analysis(self, analysis_id: str) -> Optional[IntentAnalysisRecord]:
        row = await self._fetch_one("SELECT * FROM intent_analyses WHERE id = ?", (analysis_id,))
        return IntentAnalysisRecord.from_row(row) if row else None

    async def update_intent_confidence(
        self,
        analysis_id: str,
        score: float,
        level: str,
        factors: dict[str, float]
    ) -> None:
        """The one permitted mutation of an analysis row."""
        async def op(db):
            await db.execute(
                """
                UPDATE intent_analyses
                SET confidence_score = ?, confidence_level = ?, confidence_factors = ?
                WHERE id = ?
                """,
                (score, level, json.dumps(factors), analysis_id)
            )
            await db.commit()
        await self._run(op)

    # Usage

    async def insert_usage(self, record: dict[str, Any]) -> None:
        async def op(db):
            await db.execute(
                """
                INSERT INTO usage_records (
                    conversation_id, message_id, user_id, operation_type, model,
                    input_tokens, output_tokens, cost, duration_ms, success, error,
                    metadata, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.get("conversation_id"), record.get("message_id"),
                    record.get("user_id"), record["operation_type"], record["model"],
                    record.get("input_tokens", 0), record.get("output_tokens", 0),
                    record.get("cost", 0.0), record.get("duration_ms", 0),
                    bool(record.get("success", True)), record.get("error"),
                    json.dumps(record.get("metadata") or {}),
                    to_db_time(record.get("created_at") or now()),
                )
            )
            await db.commit()
        await self._run(op)

    async def usage_totals(self) -> dict[str, dict[str, float]]:
        rows = await self._fetch_all(
            """
            SELECT operation_type, COUNT(*) AS calls,
                   SUM(input_tokens) AS input_tokens, SUM(output_tokens) AS output_tokens,
                   SUM(cost) AS cost
            FROM usage_records
            GROUP BY operation_type
            """
        )
        return {
            r["operation_type"]: {
                "calls": r["calls"],
                "input_tokens": r["input_tokens"] or 0,
                "output_tokens": r["output_tokens"] or 0,
                "cost": round(r["cost"] or 0.0, 6),
            }
            for r in rows
        }
