"""Tool dispatcher — resolve an action against an agent's tools and run it.

The dispatcher never lets a tool exception escape: every call ends in one of
``ToolSuccess``, ``ToolNotFound`` or ``ToolFailure``. Each call is bracketed
by agent status transitions (``USING_TOOL`` -> ``USING_TOOL_END`` /
``USING_TOOL_ERROR``) so the registry records tool latency even on failure.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, ClassVar, Union

from pydantic import ValidationError

from taskloop.cancellation import run_cancellable
from taskloop.errors import LoopCancelledError, ToolExecutionError, ToolNotFoundError
from taskloop.status.registry import StatusError, StatusRegistry
from taskloop.status.statuses import AgentStatus, StatusEntity
from taskloop.tool.base import ToolResult, stringify
from taskloop.tool.truncation import MAX_CHARS, MAX_LINES, strip_ansi, truncate_observation

if TYPE_CHECKING:
    from taskloop.agent.agent import Agent

logger = logging.getLogger(__name__)


@dataclass
class ToolSuccess:
    tool_name: str
    result: ToolResult
    output: str = ""
    duration: float = 0.0
    status_errors: list[StatusError] = field(default_factory=list)

    success: ClassVar[bool] = True


@dataclass
class ToolNotFound:
    tool_name: str
    available: list[str] = field(default_factory=list)
    status_errors: list[StatusError] = field(default_factory=list)

    success: ClassVar[bool] = False
    duration: ClassVar[float] = 0.0

    @property
    def error(self) -> ToolNotFoundError:
        return ToolNotFoundError(self.tool_name, self.available)


@dataclass
class ToolFailure:
    tool_name: str
    error: ToolExecutionError
    duration: float = 0.0
    status_errors: list[StatusError] = field(default_factory=list)

    success: ClassVar[bool] = False


ToolOutcome = Union[ToolSuccess, ToolNotFound, ToolFailure]


class ToolDispatcher:
    """Execute tool actions for agents.

    Args:
        registry: Status registry receiving the bracketing transitions.
        tool_timeout: Per-invocation timeout in seconds (None disables it).
        max_lines / max_chars: Observation truncation budget.
    """

    def __init__(
        self,
        registry: StatusRegistry,
        tool_timeout: float | None = 60.0,
        max_lines: int = MAX_LINES,
        max_chars: int = MAX_CHARS,
    ) -> None:
        self.registry = registry
        self.tool_timeout = tool_timeout
        self.max_lines = max_lines
        self.max_chars = max_chars

    async def execute(
        self,
        agent: Agent,
        action_name: str,
        action_input: dict[str, Any] | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> ToolOutcome:
        """Run ``action_name`` from ``agent.tools`` with ``action_input``.

        Raises:
            LoopCancelledError: The abort signal fired during the call.
        """
        status_errors: list[StatusError] = []
        tool = agent.tools.get(action_name)

        if tool is None:
            logger.warning(
                "Agent %s requested unknown tool '%s'", agent.name, action_name
            )
            outcome = await self.registry.advance(
                StatusEntity.AGENT,
                agent,
                AgentStatus.TOOL_DOES_NOT_EXIST,
                tool_name=action_name,
            )
            if isinstance(outcome, StatusError):
                status_errors.append(outcome)
            return ToolNotFound(
                tool_name=action_name,
                available=agent.tools.names(),
                status_errors=status_errors,
            )

        outcome = await self.registry.advance(
            StatusEntity.AGENT,
            agent,
            AgentStatus.USING_TOOL,
            tool_name=action_name,
            tool_input=action_input,
        )
        if isinstance(outcome, StatusError):
            status_errors.append(outcome)

        logger.info("Agent %s using tool %s", agent.name, action_name)
        started = time.monotonic()
        failure: ToolExecutionError | None = None
        result: ToolResult | None = None
        try:
            result = await run_cancellable(
                tool.invoke(action_input or {}),
                cancel_event,
                timeout=self.tool_timeout,
                where=f"tool {action_name}",
            )
        except LoopCancelledError:
            raise
        except ValidationError as e:
            failure = ToolExecutionError(action_name, f"Invalid parameters: {e}")
        except asyncio.TimeoutError:
            failure = ToolExecutionError(
                action_name, f"timed out after {self.tool_timeout}s"
            )
        except Exception as e:
            logger.error("Tool %s execution error: %s", action_name, e, exc_info=True)
            failure = ToolExecutionError(action_name, e)
        duration = time.monotonic() - started

        if failure is None and result is not None and result.is_error:
            failure = ToolExecutionError(action_name, result.output or "tool reported an error")

        if failure is not None:
            outcome = await self.registry.advance(
                StatusEntity.AGENT,
                agent,
                AgentStatus.USING_TOOL_ERROR,
                tool_name=action_name,
                duration=duration,
                error=str(failure),
            )
            if isinstance(outcome, StatusError):
                status_errors.append(outcome)
            return ToolFailure(
                tool_name=action_name,
                error=failure,
                duration=duration,
                status_errors=status_errors,
            )

        assert result is not None
        output = truncate_observation(
            strip_ansi(stringify(result.output)),
            max_lines=self.max_lines,
            max_chars=self.max_chars,
        )
        outcome = await self.registry.advance(
            StatusEntity.AGENT,
            agent,
            AgentStatus.USING_TOOL_END,
            tool_name=action_name,
            duration=duration,
            brief=result.brief,
        )
        if isinstance(outcome, StatusError):
            status_errors.append(outcome)
        return ToolSuccess(
            tool_name=action_name,
            result=result,
            output=output,
            duration=duration,
            status_errors=status_errors,
        )
