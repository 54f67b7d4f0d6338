"""Database schema and initialization for context-recall."""

from pathlib import Path
from typing import Optional

import config
from db.async_connection import get_async_db
from errors import ContextRecallError


# Schema SQL for all tables
SCHEMA_SQL = """
    -- Conversations (owner reference, style preferences, legacy memory text)
    CREATE TABLE IF NOT EXISTS conversations (
        id TEXT PRIMARY KEY,
        owner_id TEXT,
        behaviors TEXT NOT NULL DEFAULT '{}',
        memory TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    );

    -- Messages; seq gives a stable chronological order within a conversation
    CREATE TABLE IF NOT EXISTS messages (
        seq INTEGER PRIMARY KEY AUTOINCREMENT,
        id TEXT NOT NULL UNIQUE,
        conversation_id TEXT NOT NULL REFERENCES conversations(id),
        role TEXT NOT NULL CHECK(role IN ('user', 'assistant', 'system', 'tool')),
        content TEXT NOT NULL,
        summary_id TEXT REFERENCES summaries(id),
        created_at TEXT NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_messages_conversation ON messages(conversation_id, seq);
    CREATE INDEX IF NOT EXISTS idx_messages_summary ON messages(summary_id);

    -- Topic summaries covering contiguous message ranges
    CREATE TABLE IF NOT EXISTS summaries (
        id TEXT PRIMARY KEY,
        conversation_id TEXT NOT NULL REFERENCES conversations(id),
        topic_name TEXT NOT NULL,
        summary_text TEXT NOT NULL,
        key_topics TEXT NOT NULL DEFAULT '[]',
        related_topics TEXT NOT NULL DEFAULT '[]',
        start_message_id TEXT NOT NULL,
        end_message_id TEXT NOT NULL,
        message_count INTEGER NOT NULL,
        summary_level INTEGER NOT NULL,
        topic_relevance REAL NOT NULL DEFAULT 0.5
            CHECK(topic_relevance >= 0 AND topic_relevance <= 1),
        broader_topic TEXT,
        topic_embedding BLOB,
        created_at TEXT NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_summaries_conversation ON summaries(conversation_id, created_at);
    CREATE UNIQUE INDEX IF NOT EXISTS idx_summaries_level ON summaries(conversation_id, summary_level);

    -- One intent analysis per user turn
    CREATE TABLE IF NOT EXISTS intent_analyses (
        id TEXT PRIMARY KEY,
        conversation_id TEXT NOT NULL REFERENCES conversations(id),
        message_id TEXT,
        current_intent TEXT NOT NULL,
        contextual_relevance TEXT NOT NULL CHECK(contextual_relevance IN ('high', 'medium', 'low')),
        relationship_to_history TEXT NOT NULL,
        key_topics TEXT NOT NULL DEFAULT '[]',
        pending_questions TEXT NOT NULL DEFAULT '[]',
        last_assistant_question TEXT,
        compressed_context TEXT,
        context_retrieval_strategy TEXT NOT NULL,
        confidence_score REAL NOT NULL,
        confidence_level TEXT NOT NULL,
        confidence_factors TEXT NOT NULL DEFAULT '{}',
        raw_result TEXT NOT NULL DEFAULT '{}',
        created_at TEXT NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_intent_conversation ON intent_analyses(conversation_id, created_at);

    -- LLM / embedding usage accounting
    CREATE TABLE IF NOT EXISTS usage_records (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        conversation_id TEXT,
        message_id TEXT,
        user_id TEXT,
        operation_type TEXT NOT NULL,
        model TEXT NOT NULL,
        input_tokens INTEGER NOT NULL DEFAULT 0,
        output_tokens INTEGER NOT NULL DEFAULT 0,
        cost REAL NOT NULL DEFAULT 0,
        duration_ms INTEGER NOT NULL DEFAULT 0,
        success BOOLEAN NOT NULL,
        error TEXT,
        metadata TEXT NOT NULL DEFAULT '{}',
        created_at TEXT NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_usage_operation ON usage_records(operation_type);
"""


async def init_db(db_path: Optional[Path] = None) -> None:
    """Initialize the database schema."""
    path = Path(db_path or config.DB_PATH)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        config.logger.error(f"Failed to create database directory: {e}")
        raise ContextRecallError(
            f"Cannot create database directory: {e}",
            "database_error",
            {"path": str(path.parent), "original_error": str(e)}
        ) from e

    db = await get_async_db(path)
    try:
        await db.executescript(SCHEMA_SQL)
        await db.commit()
    finally:
        await db.close()

    config.logger.info(f"Database initialized at {path}")
