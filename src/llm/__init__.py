"""LLM completion client and tool plumbing."""
