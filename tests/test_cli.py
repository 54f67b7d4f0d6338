"""Tests for the command line interface."""

import argparse
import json

import pytest

from cli import error_result, main, run_command, safe_result


@pytest.fixture
def cli_db(tmp_path, monkeypatch):
    """Point the CLI at a fresh database path (created on first use)."""
    path = tmp_path / "cli.db"
    monkeypatch.setattr("config.DB_PATH", path)
    monkeypatch.setattr("embeddings.openai.get_openai_api_key", lambda: None)
    return path


def run(capsys, *argv):
    code = main(list(argv))
    return code, json.loads(capsys.readouterr().out)


def test_result_wrappers():
    assert safe_result({"a": 1}) == {"success": True, "data": {"a": 1}}
    assert error_result("nope", "bad", {"x": 1}) == {
        "success": False, "error": "nope", "error_code": "bad", "details": {"x": 1},
    }


def test_missing_key_help_goes_to_stderr(capsys):
    error_result("OpenAI API key not found", "missing_api_key")
    assert "CONFIGURATION ERROR" in capsys.readouterr().err


def test_parse_time(capsys, cli_db):
    code, out = run(capsys, "parse-time", "last 3 days")

    assert code == 0
    assert out["data"]["isValid"] is True
    assert out["data"]["reference"] == "last 3 days"
    assert "description" in out["data"]
    assert not cli_db.exists()


def test_parse_time_invalid(capsys, cli_db):
    code, out = run(capsys, "parse-time", "whenever")

    assert code == 0
    assert out["data"]["isValid"] is False
    assert "description" not in out["data"]


def test_init(capsys, cli_db):
    code, out = run(capsys, "init")

    assert code == 0
    assert out["data"]["path"] == str(cli_db)
    assert cli_db.exists()


def test_stats_auto_initializes(capsys, cli_db):
    code, out = run(capsys, "stats", "conv-1")

    assert code == 0
    assert cli_db.exists()
    assert out["data"]["totalSummaries"] == 0
    assert out["data"]["messages"] == 0


def test_summarize_below_threshold(capsys, cli_db):
    code, out = run(capsys, "summarize", "conv-1")

    assert code == 0
    assert out["data"]["created"] is False
    assert out["data"]["userTurnsSinceLastSummary"] == 0


def test_usage_empty(capsys, cli_db):
    code, out = run(capsys, "usage")

    assert code == 0
    assert out["data"] == {"byOperation": {}, "totalCost": "$0.000000"}


def test_backfill_with_nothing_missing(capsys, cli_db):
    code, out = run(capsys, "backfill-embeddings", "-b", "10")

    assert code == 0
    assert out["data"] == {"processed": 0, "failed": 0}


def test_analyze_without_key_falls_back(capsys, cli_db):
    """Without an API key analysis degrades to recent context instead of failing."""
    code, out = run(capsys, "analyze", "conv-1", "hello there", "--store")

    assert code == 0
    data = out["data"]
    assert data["intent"]["fallback"] is True
    assert data["retrieval"]["retrievalMethod"] == "recent_only"
    assert data["promptContext"] == ""


def test_unknown_command_result():
    result = run_command(argparse.Namespace(command="teleport"))
    assert result["error_code"] == "unknown_command"


def test_unexpected_error_becomes_command_error(monkeypatch):
    def boom(query, include_hours):
        raise RuntimeError("kaboom")

    monkeypatch.setattr("cli._parse_time", boom)

    result = run_command(argparse.Namespace(command="parse-time", query="x", include_hours=False))

    assert result["success"] is False
    assert result["error_code"] == "command_error"
    assert "kaboom" in result["error"]
