"""Configuration and constants for context-recall."""

import logging
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional


RUNTIME_DIR = Path.home() / ".context-recall"


@dataclass
class ContextRecallConfig:
    """Configuration for context-recall.

    All thresholds and tuneable parameters in one place.
    """
    # Database
    db_path: Path = field(default_factory=lambda: RUNTIME_DIR / "context.db")

    # Embedding settings
    embedding_model: str = "text-embedding-3-small"
    embedding_dim: int = 384

    # Chat models
    intent_model: str = "gpt-4o-mini"
    summary_model: str = "gpt-4o-mini"
    llm_timeout: float = 30.0

    # Summarization
    turn_threshold: int = 10  # User turns since last summary

    # Time queries
    max_date_range_days: int = 10

    # Semantic search
    exact_match_threshold: float = 0.7
    related_match_threshold: float = 0.3
    recency_window_seconds: float = 3600.0  # Beyond this gap, newer wins

    # Retrieval limits
    recent_limit: int = 3
    search_limit: int = 5
    max_context_items: int = 10

    # Per-tool timeouts (seconds)
    semantic_search_timeout: float = 15.0
    date_search_timeout: float = 10.0
    count_topics_timeout: float = 5.0
    current_time_timeout: float = 5.0
    web_search_timeout: float = 30.0

    # Web search
    web_search_model: str = "gpt-4o-mini"

    # Confidence tiers
    high_confidence: float = 0.75
    medium_confidence: float = 0.5
    updated_high_confidence: float = 0.7
    updated_medium_confidence: float = 0.45
    confidence_weights: dict[str, float] = field(default_factory=lambda: {
        "search_result_quality": 0.35,
        "context_availability": 0.2,
        "query_specificity": 0.25,
        "historical_match": 0.2,
    })

    # Run date + semantic searches together when both references appear
    hybrid_retrieval: bool = True

    # Logging
    log_path: Path = field(default_factory=lambda: RUNTIME_DIR / "context-recall.log")


def _find_config_file() -> Optional[Path]:
    """Find context-recall.toml config file.

    Searches in order:
    1. CONTEXT_RECALL_CONFIG env var path
    2. Current working directory
    3. ~/.config/context-recall/
    4. ~/.context-recall/
    """
    env_path = os.environ.get("CONTEXT_RECALL_CONFIG")
    if env_path:
        path = Path(env_path)
        if path.exists():
            return path

    search_paths = [
        Path.cwd() / "context-recall.toml",
        Path.home() / ".config" / "context-recall" / "context-recall.toml",
        RUNTIME_DIR / "context-recall.toml",
    ]

    for path in search_paths:
        if path.exists():
            return path

    return None


def _load_config_from_toml(path: Path) -> ContextRecallConfig:
    """Load config from TOML file."""
    with open(path, "rb") as f:
        data = tomllib.load(f)

    config = ContextRecallConfig()

    if "database" in data:
        if "path" in data["database"]:
            config.db_path = Path(data["database"]["path"])

    if "embedding" in data:
        if "model" in data["embedding"]:
            config.embedding_model = data["embedding"]["model"]
        if "dim" in data["embedding"]:
            config.embedding_dim = data["embedding"]["dim"]

    if "llm" in data:
        llm = data["llm"]
        if "intent_model" in llm:
            config.intent_model = llm["intent_model"]
        if "summary_model" in llm:
            config.summary_model = llm["summary_model"]
        if "web_search_model" in llm:
            config.web_search_model = llm["web_search_model"]
        if "timeout" in llm:
            config.llm_timeout = float(llm["timeout"])

    if "summarization" in data:
        if "turn_threshold" in data["summarization"]:
            config.turn_threshold = int(data["summarization"]["turn_threshold"])

    if "retrieval" in data:
        r = data["retrieval"]
        if "max_date_range_days" in r:
            config.max_date_range_days = int(r["max_date_range_days"])
        if "exact_match_threshold" in r:
            config.exact_match_threshold = r["exact_match_threshold"]
        if "related_match_threshold" in r:
            config.related_match_threshold = r["related_match_threshold"]
        if "recent_limit" in r:
            config.recent_limit = int(r["recent_limit"])
        if "search_limit" in r:
            config.search_limit = int(r["search_limit"])
        if "hybrid" in r:
            config.hybrid_retrieval = bool(r["hybrid"])

    if "timeouts" in data:
        t = data["timeouts"]
        if "semantic_search" in t:
            config.semantic_search_timeout = float(t["semantic_search"])
        if "date_search" in t:
            config.date_search_timeout = float(t["date_search"])
        if "count_topics" in t:
            config.count_topics_timeout = float(t["count_topics"])
        if "current_time" in t:
            config.current_time_timeout = float(t["current_time"])
        if "web_search" in t:
            config.web_search_timeout = float(t["web_search"])

    if "confidence" in data:
        c = data["confidence"]
        if "high" in c:
            config.high_confidence = c["high"]
        if "medium" in c:
            config.medium_confidence = c["medium"]
        if "weights" in c:
            config.confidence_weights.update(c["weights"])

    if "logging" in data:
        if "path" in data["logging"]:
            config.log_path = Path(data["logging"]["path"])

    return config


def _apply_env_overrides(config: ContextRecallConfig) -> ContextRecallConfig:
    """Apply environment variable overrides to config.

    Env vars:
        CONTEXT_RECALL_DB_PATH: Override database path
        CONTEXT_RECALL_TURN_THRESHOLD: Override summarization turn threshold
        CONTEXT_RECALL_HYBRID: "0"/"false" disables hybrid retrieval
    """
    if db_path := os.environ.get("CONTEXT_RECALL_DB_PATH"):
        config.db_path = Path(db_path)

    if threshold := os.environ.get("CONTEXT_RECALL_TURN_THRESHOLD"):
        try:
            config.turn_threshold = int(threshold)
        except ValueError:
            pass  # Ignore invalid values

    if hybrid := os.environ.get("CONTEXT_RECALL_HYBRID"):
        config.hybrid_retrieval = hybrid.lower() not in ("0", "false", "no", "off")

    return config


def _init_config() -> ContextRecallConfig:
    """Initialize config, loading from TOML if available, then applying env overrides."""
    config_file = _find_config_file()
    if config_file:
        config = _load_config_from_toml(config_file)
    else:
        config = ContextRecallConfig()

    return _apply_env_overrides(config)


# Global config instance
_config = _init_config()


def get_config() -> ContextRecallConfig:
    """Get the current configuration."""
    return _config


DB_PATH = _config.db_path
LOG_PATH = _config.log_path

# OpenAI API key file location (config, not state)
OPENAI_KEY_FILE = Path.home() / ".config" / "context-recall" / "openai-api-key"


def get_openai_api_key() -> Optional[str]:
    """Get OpenAI API key from file or environment variable.

    Checks in order:
    1. File at ~/.config/context-recall/openai-api-key
    2. OPENAI_API_KEY env var

    Returns:
        API key string or None if not found
    """
    if OPENAI_KEY_FILE.exists():
        try:
            key = OPENAI_KEY_FILE.read_text().strip()
            if key:
                return key
        except OSError:
            pass

    return os.environ.get("OPENAI_API_KEY")


# Logging setup
LOG_PATH.parent.mkdir(parents=True, exist_ok=True)

_stderr_handler = logging.StreamHandler()
_stderr_handler.setLevel(logging.WARNING)

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    handlers=[
        logging.FileHandler(LOG_PATH),
        _stderr_handler,
    ]
)
logger = logging.getLogger("context-recall")
