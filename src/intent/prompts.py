"""Prompts for intent analysis."""

from dataclasses import dataclass, field
from typing import Optional

from models import IntentAnalysisRecord, Message, Summary


INTENT_SYSTEM_PROMPT = """You are an expert conversation analyst. Analyze the user's current prompt in the context of their conversation history and return a structured intent analysis.

## Your Task

1. Describe what the user wants to achieve
2. Decide how the prompt relates to earlier conversation
3. Identify key topics and any pending questions from the assistant
4. Write a compressed context summary (under 200 words)
5. Rate contextual relevance as high, medium or low
6. Choose how historical context should be retrieved

## Current Intent

Be specific: the action requested (create, fix, explain, compare, recall...), the subject or technology, and any constraints. If it is a follow-up, say what it builds on. 2-4 sentences.

## Relationship To History

- **continuation**: carries on the current thread
- **new_topic**: starts something unrelated
- **clarification**: answers or refines a question the assistant asked
- **recall**: asks about something discussed earlier

## Context Retrieval Strategy

- **none**: greetings and self-contained questions that need no history
- **recent_only**: only the last few exchanges matter
- **semantic_search**: the user refers to SPECIFIC topics, items or concepts from past conversation
- **date_based_search**: the user refers to a time ("yesterday", "last week", "on March 3rd", "this morning")
- **all_available**: the user wants an overview of the whole conversation

## Critical Rules

- If the prompt says "we talked about", "we discussed", "tell me about X", "what did we say about", "what were the X we discussed", you MUST use semantic_search, even if the topic already appears in the context below.
- If the prompt contains any time reference, you MUST use date_based_search and put the time expression in dateQuery, exactly as the user wrote it. This holds even when a topic is also mentioned; keep the topic in keyTopics and semanticSearchQueries.
- A recall question is never "none".
- Set includeHours to true only when the user names a time of day.

## Search Parameters

- semanticSearchQueries: 1-3 specific search phrases for semantic_search or when a topic accompanies a time reference; otherwise an empty array
- dateQuery: the time expression for date_based_search; otherwise null
- maxContextItems: 3 for casual questions, 5-8 for detailed or comprehensive requests, 10 when the user wants everything"""


@dataclass
class AnalysisContext:
    """History shown to the model for one analysis pass.

    Attributes:
        kind: "minimal" (recent messages only) or "full" (plus summaries)
    """
    kind: str
    messages: list[Message] = field(default_factory=list)
    summaries: list[Summary] = field(default_factory=list)
    last_analysis: Optional[IntentAnalysisRecord] = None


def build_context_text(context: AnalysisContext) -> str:
    parts = []

    if context.summaries:
        lines = ["CONVERSATION SUMMARIES:"]
        for s in context.summaries:
            lines.append(f"[Level {s.summary_level}] {s.topic_name}: {s.summary_text}")
            if s.key_topics:
                lines.append(f"  Topics: {', '.join(s.key_topics)}")
        parts.append("\n".join(lines))

    if context.messages:
        lines = ["RECENT MESSAGES:"]
        for m in context.messages:
            lines.append(f"{m.role.upper()}: {m.content}")
        parts.append("\n".join(lines))

    if context.last_analysis is not None:
        last = context.last_analysis
        lines = [
            "LAST INTENT ANALYSIS:",
            f"Intent: {last.current_intent}",
            f"Key Topics: {', '.join(last.key_topics) or 'none'}",
            f"Pending Questions: {', '.join(last.pending_questions) or 'none'}",
        ]
        if last.last_assistant_question:
            lines.append(f"Last Assistant Question: {last.last_assistant_question}")
        parts.append("\n".join(lines))

    return "\n\n".join(parts) if parts else "No previous conversation."


def build_user_prompt(context: AnalysisContext, message: str) -> str:
    return (
        f"CONVERSATION CONTEXT:\n{build_context_text(context)}\n\n"
        f"CURRENT USER PROMPT:\n{message}\n\n"
        "Provide intent analysis."
    )
