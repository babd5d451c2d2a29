"""Tool system — base classes, registry, dispatcher, and observation truncation."""

from taskloop.tool.base import (
    BaseTool,
    FunctionTool,
    ToolBlocked,
    ToolError,
    ToolOk,
    ToolResult,
    function_tool,
)
from taskloop.tool.dispatcher import (
    ToolDispatcher,
    ToolFailure,
    ToolNotFound,
    ToolOutcome,
    ToolSuccess,
)
from taskloop.tool.registry import ToolRegistry
from taskloop.tool.truncation import truncate_observation

__all__ = [
    "BaseTool",
    "FunctionTool",
    "ToolBlocked",
    "ToolDispatcher",
    "ToolError",
    "ToolFailure",
    "ToolNotFound",
    "ToolOk",
    "ToolOutcome",
    "ToolRegistry",
    "ToolResult",
    "ToolSuccess",
    "function_tool",
    "truncate_observation",
]
