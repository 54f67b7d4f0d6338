"""Tool registry with per-tool timeouts and usage metrics.

Handler failures and timeouts come back as unsuccessful ToolResults, so a
caller can switch to its fallback without exception plumbing. Unknown tools
and bad arguments are caller bugs and still raise.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from config import logger
from llm.tool_schema import ToolDefinition, ValidationError


class ToolNotFoundError(Exception):
    """Raised when attempting to invoke an unregistered tool."""
    pass


class ToolError(Exception):
    """Raised by a handler for an expected failure, with optional payload."""

    def __init__(self, message: str, data: Any = None):
        super().__init__(message)
        self.data = data


@dataclass
class ToolResult:
    """Outcome of one tool invocation."""
    success: bool
    data: Any = None
    error: Optional[str] = None
    duration_ms: int = 0


@dataclass
class ToolMetrics:
    total_calls: int = 0
    successful_calls: int = 0
    failed_calls: int = 0
    total_duration_ms: int = 0

    def record(self, result: ToolResult) -> None:
        self.total_calls += 1
        self.total_duration_ms += result.duration_ms
        if result.success:
            self.successful_calls += 1
        else:
            self.failed_calls += 1

    def to_dict(self) -> dict[str, Any]:
        average = self.total_duration_ms / self.total_calls if self.total_calls else 0.0
        error_rate = self.failed_calls / self.total_calls if self.total_calls else 0.0
        return {
            "totalCalls": self.total_calls,
            "successfulCalls": self.successful_calls,
            "failedCalls": self.failed_calls,
            "averageDuration": round(average, 2),
            "errorRate": round(error_rate, 4),
        }


ToolHandler = Callable[..., Awaitable[Any]]


class ToolRegistry:
    """Registry mapping tool names to definitions and async handlers."""

    def __init__(self):
        self._tools: dict[str, tuple[ToolDefinition, ToolHandler]] = {}
        self._metrics: dict[str, ToolMetrics] = {}

    def register(self, tool: ToolDefinition, handler: ToolHandler) -> None:
        self._tools[tool.name] = (tool, handler)
        self._metrics.setdefault(tool.name, ToolMetrics())

    def has_tool(self, tool_name: str) -> bool:
        return tool_name in self._tools

    def get_tool_definitions(self) -> list[dict[str, Any]]:
        """All tools in OpenAI function-calling format."""
        return [tool.to_openai_schema() for tool, _ in self._tools.values()]

    async def invoke(self, tool_name: str, arguments: dict[str, Any]) -> ToolResult:
        """Validate arguments and run the tool under its timeout.

        A handler returns its data payload, or raises to signal failure.

        Raises:
            ToolNotFoundError: If tool is not registered
            ValidationError: If arguments fail validation
        """
        if tool_name not in self._tools:
            raise ToolNotFoundError(f"Tool not found: {tool_name}")

        tool, handler = self._tools[tool_name]
        tool.validate_args(arguments)

        call_args = {}
        for param_name, param in tool.parameters.items():
            if arguments.get(param_name) is not None:
                call_args[param_name] = arguments[param_name]
            elif not param.required and param.default is not None:
                call_args[param_name] = param.default

        started = time.monotonic()
        try:
            data = await asyncio.wait_for(handler(**call_args), tool.timeout)
            result = ToolResult(success=True, data=data)
        except ToolError as e:
            logger.info(f"Tool {tool_name} declined: {e}")
            result = ToolResult(success=False, data=e.data, error=str(e))
        except asyncio.TimeoutError:
            logger.warning(f"Tool {tool_name} timed out after {tool.timeout}s")
            result = ToolResult(success=False, error=f"Tool {tool_name} timed out after {tool.timeout}s")
        except Exception as e:
            logger.warning(f"Tool {tool_name} failed: {e}")
            result = ToolResult(success=False, error=str(e))
        result.duration_ms = int((time.monotonic() - started) * 1000)

        self._metrics[tool_name].record(result)
        return result

    def get_metrics(self, tool_name: Optional[str] = None) -> dict[str, Any]:
        if tool_name is not None:
            return self._metrics[tool_name].to_dict()
        return {name: m.to_dict() for name, m in self._metrics.items()}


__all__ = ["ToolError", "ToolNotFoundError", "ToolRegistry", "ToolResult", "ValidationError"]
