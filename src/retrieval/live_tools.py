"""Live context tools: the current date and time, and web search.

These answer from outside the conversation. They share the retrieval
registry so a response model sees one tool list with one timeout and
ToolResult contract.
"""

import time
from datetime import datetime, timedelta
from typing import Any, Optional, Protocol

from openai import AsyncOpenAI

from config import get_config, logger
from embeddings.openai import create_openai_client
from llm.tool_registry import ToolError, ToolRegistry
from llm.tool_schema import ToolDefinition, ToolParameter
from usage import WEB_SEARCH, UsageTracker
from utils.time_query import format_date


TIME_FORMATS = ("iso", "locale", "detailed")
MAX_WEB_RESULTS = 20
SNIPPET_LENGTH = 500


class WebSearchProvider(Protocol):
    """Anything that can turn a query into result dicts."""

    async def search(self, query: str, max_results: int) -> dict[str, Any]:
        ...


def current_time(format: str = "detailed", now: Optional[datetime] = None) -> dict[str, Any]:
    """Current local time in the requested format plus nearby day names."""
    if format not in TIME_FORMATS:
        raise ToolError(
            f"Unknown time format '{format}'",
            data={"formats": list(TIME_FORMATS)},
        )
    now = now or datetime.now().astimezone()

    if format == "iso":
        formatted = now.isoformat()
    elif format == "locale":
        formatted = now.strftime("%c")
    else:
        formatted = f"{format_date(now)} at {now:%H:%M:%S}"

    return {
        "currentDateTime": now.isoformat(),
        "currentDate": now.date().isoformat(),
        "formattedOutput": formatted,
        "timezone": now.tzname() or "local",
        "relativeReferences": {
            "today": format_date(now),
            "yesterday": format_date(now - timedelta(days=1)),
            "lastWeek": format_date(now - timedelta(days=7)),
        },
        "dayOfWeek": f"{now:%A}",
        "month": f"{now:%B}",
        "year": now.year,
    }


def build_search_query(
    query: str,
    include_domains: Optional[list[str]] = None,
    exclude_domains: Optional[list[str]] = None
) -> str:
    """Fold domain filters into the query as site: operators."""
    text = query.strip()
    if include_domains:
        text += " (" + " OR ".join(f"site:{d}" for d in include_domains) + ")"
    if exclude_domains:
        text += " " + " ".join(f"-site:{d}" for d in exclude_domains)
    return text


class OpenAIWebSearch:
    """Web search through the OpenAI Responses API web_search tool.

    Cited URLs become individual results. When the answer carries no
    citations, the answer text itself is returned as a single result.
    """

    def __init__(self, model: Optional[str] = None, client: Optional[AsyncOpenAI] = None):
        self.model = model or get_config().web_search_model
        self._client = client

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = create_openai_client()
        return self._client

    async def search(self, query: str, max_results: int) -> dict[str, Any]:
        response = await self._get_client().responses.create(
            model=self.model,
            input=f'Search for: "{query}". Return up to {max_results} results.',
            tools=[{"type": "web_search"}],
        )
        text = getattr(response, "output_text", "") or ""
        if not text:
            raise ToolError("No search results returned", data={"query": query})

        results = []
        seen = set()
        for item in getattr(response, "output", None) or []:
            for part in getattr(item, "content", None) or []:
                for note in getattr(part, "annotations", None) or []:
                    url = getattr(note, "url", None)
                    if getattr(note, "type", None) != "url_citation" or not url or url in seen:
                        continue
                    seen.add(url)
                    start = getattr(note, "start_index", 0) or 0
                    end = getattr(note, "end_index", 0) or 0
                    results.append({
                        "title": (getattr(note, "title", None) or url).strip(),
                        "url": url,
                        "snippet": text[start:end].strip()[:SNIPPET_LENGTH] or text[:SNIPPET_LENGTH],
                    })

        if not results:
            snippet = text[:SNIPPET_LENGTH] + ("..." if len(text) > SNIPPET_LENGTH else "")
            results.append({"title": f"Search results for: {query}", "url": None, "snippet": snippet})

        usage = getattr(response, "usage", None)
        return {
            "results": results[:max_results],
            "inputTokens": getattr(usage, "input_tokens", 0) or 0,
            "outputTokens": getattr(usage, "output_tokens", 0) or 0,
        }


class LiveTools:
    """Tool handlers for time and web lookups.

    Args:
        search_provider: Web search backend; web_search is not offered without one
        usage: Usage tracker for search calls
    """

    def __init__(
        self,
        search_provider: Optional[WebSearchProvider] = None,
        usage: Optional[UsageTracker] = None
    ):
        self.search_provider = search_provider
        self.usage = usage

    async def get_current_time(self, format: str = "detailed") -> dict[str, Any]:
        return current_time(format)

    async def web_search(
        self,
        query: str,
        max_results: int = 10,
        include_domains: Optional[list[str]] = None,
        exclude_domains: Optional[list[str]] = None
    ) -> dict[str, Any]:
        if self.search_provider is None:
            raise ToolError("Web search is not configured")
        if not query.strip():
            raise ToolError("Search query is empty")

        max_results = max(1, min(max_results, MAX_WEB_RESULTS))
        search_query = build_search_query(query, include_domains, exclude_domains)
        model = getattr(self.search_provider, "model", "web_search")

        started = time.monotonic()
        try:
            found = await self.search_provider.search(search_query, max_results)
        except Exception as e:
            self._track(model, started, 0, 0, False, str(e))
            raise
        self._track(model, started, found.get("inputTokens", 0), found.get("outputTokens", 0), True, None)

        results = found.get("results", [])[:max_results]
        logger.info(f"Web search for '{query}' returned {len(results)} results")
        return {
            "results": results,
            "query": query,
            "searchQuery": search_query,
            "totalResults": len(results),
            "searchTimeMs": int((time.monotonic() - started) * 1000),
        }

    def _track(
        self,
        model: str,
        started: float,
        input_tokens: int,
        output_tokens: int,
        success: bool,
        error: Optional[str]
    ) -> None:
        if self.usage is None:
            return
        self.usage.track(
            operation_type=WEB_SEARCH,
            model=model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            duration_ms=int((time.monotonic() - started) * 1000),
            success=success,
            error=error,
        )


def register_live_tools(registry: ToolRegistry, tools: LiveTools) -> ToolRegistry:
    """Add get_current_time, and web_search when a provider is configured."""
    cfg = get_config()

    registry.register(
        ToolDefinition(
            name="get_current_time",
            description="Get the current date and time.",
            parameters={
                "format": ToolParameter(
                    type="string", description="iso, locale or detailed", required=False, default="detailed"
                ),
            },
            timeout=cfg.current_time_timeout,
        ),
        tools.get_current_time
    )

    if tools.search_provider is not None:
        registry.register(
            ToolDefinition(
                name="web_search",
                description="Search the web for current information; returns titles, URLs and snippets.",
                parameters={
                    "query": ToolParameter(type="string", description="Clear, specific search query"),
                    "max_results": ToolParameter(type="integer", description="Results to return (1-20)", required=False, default=10),
                    "include_domains": ToolParameter(type="array", description="Only these domains", required=False, items_type="string"),
                    "exclude_domains": ToolParameter(type="array", description="Never these domains", required=False, items_type="string"),
                },
                timeout=cfg.web_search_timeout,
            ),
            tools.web_search
        )

    return registry
