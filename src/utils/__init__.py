"""Utility modules for context-recall."""

from utils.async_retry import retry_with_backoff, with_timeout
from utils.write_queue import WriteQueue

__all__ = ["retry_with_backoff", "with_timeout", "WriteQueue"]
