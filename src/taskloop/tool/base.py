"""Base tool classes with Pydantic parameter validation."""

from __future__ import annotations

import inspect
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, ClassVar, Generic, TypeVar

from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


@dataclass
class ToolResult:
    """Base result from a tool execution."""

    output: str = ""
    brief: str = ""  # Short description for status metadata
    is_error: bool = False


@dataclass
class ToolOk(ToolResult):
    """Successful tool result."""

    is_error: bool = False


@dataclass
class ToolError(ToolResult):
    """Tool ran but reports failure."""

    is_error: bool = True


@dataclass
class ToolBlocked(ToolResult):
    """The agent decided the task cannot proceed."""

    reason: str = ""
    is_error: bool = False


class BaseTool(ABC, Generic[T]):
    """Base class for all tools.

    Each tool declares its parameters as a Pydantic model (the type parameter T).
    ``invoke`` validates the raw action input and runs ``execute``; any
    exception propagates to the caller (the dispatcher classifies it).

    Usage:
        class SearchParams(BaseModel):
            q: str

        class SearchTool(BaseTool[SearchParams]):
            name = "search"
            description = "Search the web"
            param_model = SearchParams

            async def execute(self, params: SearchParams) -> ToolResult:
                return ToolOk(output="...")
    """

    name: ClassVar[str]
    description: ClassVar[str]
    param_model: ClassVar[type[BaseModel]]

    async def invoke(self, action_input: dict[str, Any]) -> ToolResult:
        """Validate ``action_input`` and execute.

        Raises:
            pydantic.ValidationError: Input does not match ``param_model``.
        """
        params = self.param_model.model_validate(action_input or {})
        return await self.execute(params)  # type: ignore[arg-type]

    @abstractmethod
    async def execute(self, params: T) -> ToolResult:
        """Execute the tool with validated parameters."""
        ...

    def input_schema(self) -> dict[str, Any]:
        schema = self.param_model.model_json_schema()
        # Strip the title and $defs that Pydantic adds; models don't need them
        schema.pop("title", None)
        schema.pop("$defs", None)
        return schema

    def to_prompt_line(self) -> str:
        """One-line description used in the system prompt."""
        return (
            f"{self.name}: {self.description} "
            f"Tool Input Schema: {json.dumps(self.input_schema())}"
        )


class _AnyInput(BaseModel):
    model_config = ConfigDict(extra="allow")


class FunctionTool(BaseTool[BaseModel]):
    """Wrap a plain sync or async callable as a tool.

    The callable receives the validated params as keyword arguments (or the
    raw dict if ``pass_dict`` is set). A non-``ToolResult`` return value is
    converted to text.
    """

    def __init__(
        self,
        name: str,
        fn: Callable[..., Any],
        description: str = "",
        param_model: type[BaseModel] | None = None,
        pass_dict: bool = False,
    ) -> None:
        self.name = name  # type: ignore[misc]
        self.description = description or (inspect.getdoc(fn) or "")  # type: ignore[misc]
        self.param_model = param_model or _AnyInput  # type: ignore[misc]
        self._fn = fn
        self._pass_dict = pass_dict

    async def execute(self, params: BaseModel) -> ToolResult:
        kwargs = params.model_dump()
        if self._pass_dict:
            value = self._fn(kwargs)
        else:
            value = self._fn(**kwargs)
        if inspect.isawaitable(value):
            value = await value
        if isinstance(value, ToolResult):
            return value
        return ToolOk(output=stringify(value))


def function_tool(
    name: str | None = None,
    description: str = "",
    param_model: type[BaseModel] | None = None,
) -> Callable[[Callable[..., Any]], FunctionTool]:
    """Decorator form of ``FunctionTool``."""

    def wrap(fn: Callable[..., Any]) -> FunctionTool:
        return FunctionTool(
            name=name or fn.__name__,
            fn=fn,
            description=description,
            param_model=param_model,
        )

    return wrap


def stringify(value: Any) -> str:
    """Render a tool return value as observation text."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, BaseModel):
        return value.model_dump_json()
    try:
        return json.dumps(value, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return str(value)
