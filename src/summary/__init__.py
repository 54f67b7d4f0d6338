"""Conversation summarization."""

from summary.summarizer import ConversationSummarizer, SummaryDraft, parse_summary_response

__all__ = ["ConversationSummarizer", "SummaryDraft", "parse_summary_response"]
