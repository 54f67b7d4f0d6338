#!/usr/bin/env python3
"""Command line interface for context-recall.

Usage: context-recall <command> [args]

Every command prints one JSON object: {"success": true, "data": ...} or
{"success": false, "error": ..., "error_code": ...}.
"""

import argparse
import asyncio
import json
import sys
from typing import Any

from errors import ContextRecallError


def safe_result(data: Any) -> dict:
    """Wrap successful result."""
    return {"success": True, "data": data}


def error_result(error: str, code: str = "unknown", details: dict = None) -> dict:
    """Wrap error result."""
    result = {"success": False, "error": error, "error_code": code}
    if details:
        result["details"] = details

    if code == "missing_api_key":
        from config import OPENAI_KEY_FILE
        msg = f"""
================================================================================
CONFIGURATION ERROR: {error}

To fix this:
  mkdir -p {OPENAI_KEY_FILE.parent}
  echo 'your-openai-api-key' > {OPENAI_KEY_FILE}

or set OPENAI_API_KEY in the environment.
================================================================================
"""
        print(msg, file=sys.stderr)

    return result


async def _init() -> dict:
    from db.schema import init_db
    import config

    await init_db()
    return {"message": "Database initialized", "path": str(config.DB_PATH)}


def _parse_time(query: str, include_hours: bool) -> dict:
    from utils.time_query import find_temporal_reference, format_date_range, resolve_window

    parsed = resolve_window(query, include_hours=include_hours)
    data = parsed.to_dict()
    data["reference"] = find_temporal_reference(query)
    if parsed.usable:
        data["description"] = format_date_range(parsed.start_date, parsed.end_date)
    return data


async def _summarize(conversation_id: str) -> dict:
    from pipeline import build_pipeline

    pipeline = build_pipeline()
    try:
        summary = await pipeline.summarizer.check_and_create_summary(conversation_id)
        pending = await pipeline.summarizer.get_message_count_since_last_summary(conversation_id)
    finally:
        await pipeline.close()

    return {
        "created": summary is not None,
        "summary": summary.to_dict() if summary else None,
        "userTurnsSinceLastSummary": pending,
        "turnThreshold": pipeline.summarizer.turn_threshold,
    }


async def _backfill_embeddings(batch_size: int) -> dict:
    from db.store import ConversationStore
    from embeddings.topic_index import TopicEmbeddingIndex
    from usage import UsageTracker

    store = ConversationStore()
    usage = UsageTracker(store)
    try:
        return await TopicEmbeddingIndex(store, usage=usage).generate_missing_embeddings(batch_size)
    finally:
        await usage.stop()


async def _stats(conversation_id: str) -> dict:
    from db.store import ConversationStore
    from embeddings.topic_index import TopicEmbeddingIndex
    from retrieval.smart_context import SmartContextRetriever

    store = ConversationStore()
    retriever = SmartContextRetriever(store, TopicEmbeddingIndex(store))
    stats = await retriever.get_context_stats(conversation_id)
    stats["messages"] = await store.count_messages(conversation_id)
    stats["unsummarizedMessages"] = await store.count_messages(conversation_id, unsummarized_only=True)
    return stats


async def _usage() -> dict:
    from db.store import ConversationStore
    from usage import format_cost

    totals = await ConversationStore().usage_totals()
    total_cost = sum(t["cost"] for t in totals.values())
    return {"byOperation": totals, "totalCost": format_cost(total_cost)}


async def _analyze(conversation_id: str, message: str, store_message: bool) -> dict:
    from pipeline import build_pipeline

    pipeline = build_pipeline()
    try:
        if store_message:
            turn = await pipeline.prepare_turn(conversation_id, message)
            return turn.to_dict()

        intent = await pipeline.analyzer.analyze(conversation_id, message)
        retrieval = await pipeline.retriever.retrieve(conversation_id, intent)
        return {"intent": intent.to_dict(), "retrieval": retrieval.to_dict()}
    finally:
        await pipeline.close()


def run_command(args) -> dict:
    """Run a command, converting failures into error results."""
    try:
        if args.command == "init":
            return safe_result(asyncio.run(_init()))

        elif args.command == "parse-time":
            return safe_result(_parse_time(args.query, args.include_hours))

        elif args.command == "summarize":
            return safe_result(asyncio.run(_summarize(args.conversation)))

        elif args.command == "backfill-embeddings":
            return safe_result(asyncio.run(_backfill_embeddings(args.batch_size)))

        elif args.command == "stats":
            return safe_result(asyncio.run(_stats(args.conversation)))

        elif args.command == "usage":
            return safe_result(asyncio.run(_usage()))

        elif args.command == "analyze":
            return safe_result(asyncio.run(_analyze(args.conversation, args.message, args.store)))

        return error_result(f"Unknown command: {args.command}", "unknown_command")

    except ContextRecallError as e:
        return error_result(str(e), e.error_code, e.details)
    except Exception as e:
        return error_result(f"{args.command} failed: {e}", "command_error")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="context-recall",
        description="Intent-driven context retrieval for conversations"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # init
    subparsers.add_parser("init", help="Initialize the database")

    # parse-time
    time_p = subparsers.add_parser("parse-time", help="Resolve a time expression to a date window")
    time_p.add_argument("query", help="Time expression, e.g. 'yesterday' or 'last 3 days'")
    time_p.add_argument("--include-hours", action="store_true", help="Narrow to the hour when a time is given")

    # summarize
    summarize_p = subparsers.add_parser("summarize", help="Summarize a conversation if the turn threshold is met")
    summarize_p.add_argument("conversation", help="Conversation ID")

    # backfill-embeddings
    backfill_p = subparsers.add_parser("backfill-embeddings", help="Embed summaries stored without a vector")
    backfill_p.add_argument("-b", "--batch-size", type=int, default=50, help="Summaries per batch")

    # stats
    stats_p = subparsers.add_parser("stats", help="Summary statistics for a conversation")
    stats_p.add_argument("conversation", help="Conversation ID")

    # usage
    subparsers.add_parser("usage", help="Token usage and cost per operation")

    # analyze
    analyze_p = subparsers.add_parser("analyze", help="Analyze a message and retrieve its context")
    analyze_p.add_argument("conversation", help="Conversation ID")
    analyze_p.add_argument("message", help="User message")
    analyze_p.add_argument("--store", action="store_true",
                           help="Store the message as a user turn before analyzing")

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    # Initialize DB if needed
    if args.command not in ("init", "parse-time"):
        import config
        if not config.DB_PATH.exists():
            init = run_command(argparse.Namespace(command="init"))
            if not init["success"]:
                print(json.dumps(init, indent=2, default=str))
                return 1

    result = run_command(args)
    print(json.dumps(result, indent=2, default=str))
    return 0 if result["success"] else 1


if __name__ == "__main__":
    sys.exit(main())
