"""Prompts for conversation summarization."""

from models import Message, Summary


APPROVED_CATEGORIES = frozenset([
    "astronomy", "science", "technology", "entertainment", "anime", "health",
    "work", "personal", "finance", "education", "travel", "food", "news",
    "general",
])


SUMMARY_SYSTEM_PROMPT = """You compress a span of conversation into a single topic summary that can be retrieved later.

## Your Task

Read the messages and write a summary that is roughly 20-30% of the original length while keeping everything someone would need to pick the discussion back up.

## What to Preserve

- Decisions made and the reasons given
- Technical details: names, versions, commands, numbers, settings
- Conclusions, answers, and outcomes
- Dates, events, people and personal details the user shared
- Open questions and next steps

## What to Drop

- Greetings, thanks and acknowledgements
- Repetition and filler
- Assistant boilerplate

## Output Format

Return only a JSON object:

```json
{
  "topicName": "Descriptive one-line name for the topic, 8-15 words, specific enough for search",
  "summaryText": "The compressed summary",
  "keyTopics": ["topic1", "topic2"],
  "relatedTopics": ["closely connected subject", "another"],
  "broaderTopic": "one of: astronomy, science, technology, entertainment, anime, health, work, personal, finance, education, travel, food, news, general",
  "topicRelevance": 0.8,
  "summaryLevel": 1
}
```

topicRelevance is 0.0-1.0: how much of the span was spent on the main topic.
Pick the most general broaderTopic that fits; use "general" when unsure."""


def format_messages(messages: list[Message]) -> str:
    lines = []
    for m in messages:
        lines.append(f"[{m.created_at:%Y-%m-%d %H:%M}] {m.role.upper()}: {m.content}")
    return "\n".join(lines)


def build_summary_prompt(messages: list[Message], previous: Summary | None, level: int) -> str:
    """User prompt for one summarization run."""
    parts = []
    if previous is not None:
        parts.append(
            "PREVIOUS SUMMARY (for continuity, do not repeat it):\n"
            f"Topic: {previous.topic_name}\n{previous.summary_text}"
        )
    parts.append(f"MESSAGES TO SUMMARIZE ({len(messages)} messages, summary level {level}):")
    parts.append(format_messages(messages))
    parts.append("Return the JSON summary.")
    return "\n\n".join(parts)
