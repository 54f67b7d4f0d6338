"""Database access for context-recall."""
