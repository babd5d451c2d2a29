"""Error taxonomy for the agentic loop.

Components report failures as values at their boundaries (``ParseFailure``,
tool outcomes, ``StatusError``). These exception classes classify those
failures, and ``LoopResult.error`` is always built from one of them.
"""

from __future__ import annotations

from typing import Any


class TaskloopError(Exception):
    """Base class for all taskloop errors."""

    kind: str = "TaskloopError"
    recoverable: bool = False

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def describe(self, iteration: int | None = None) -> str:
        """Human-readable classification, optionally with the iteration count."""
        text = f"{self.kind}: {self.message}"
        if iteration is not None:
            text += f" (iteration {iteration})"
        return text


class ParsingError(TaskloopError):
    """The model returned text that could not be turned into a decision."""

    kind = "ParsingError"
    recoverable = True


class ToolNotFoundError(TaskloopError):
    """The decision named a tool the agent does not have."""

    kind = "ToolNotFoundError"
    recoverable = True

    def __init__(self, tool_name: str, available: list[str] | None = None) -> None:
        self.tool_name = tool_name
        self.available = list(available or [])
        super().__init__(f"Tool '{tool_name}' does not exist", tool_name=tool_name)


class ToolExecutionError(TaskloopError):
    """A tool raised (or reported) an error while running."""

    kind = "ToolExecutionError"
    recoverable = True

    def __init__(self, tool_name: str, cause: BaseException | str) -> None:
        self.tool_name = tool_name
        self.cause = cause
        super().__init__(
            f"Error executing tool '{tool_name}': {cause}", tool_name=tool_name
        )


class ThinkingError(TaskloopError):
    """The thinking capability itself failed (network, provider, timeout)."""

    kind = "ThinkingError"

    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        self.cause = cause
        super().__init__(message)


class MaxIterationsError(TaskloopError):
    """The iteration budget was exhausted without a final answer."""

    kind = "MaxIterationsError"

    def __init__(self, max_iterations: int) -> None:
        self.max_iterations = max_iterations
        super().__init__(
            f"Task incomplete: reached maximum iterations ({max_iterations}) "
            "without a final answer"
        )


class InvalidTransitionError(TaskloopError):
    """The status registry rejected a transition."""

    kind = "InvalidTransitionError"

    def __init__(
        self,
        message: str,
        entity: str = "",
        entity_id: str = "",
        from_status: str = "",
        to_status: str = "",
    ) -> None:
        self.entity = entity
        self.entity_id = entity_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            message,
            entity=entity,
            entity_id=entity_id,
            transition=f"{from_status} -> {to_status}",
        )


class TaskBlockedError(TaskloopError):
    """The agent decided the task cannot be completed."""

    kind = "TaskBlockedError"

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Task blocked by agent: {reason}")


class LoopCancelledError(TaskloopError):
    """The loop was aborted from outside."""

    kind = "LoopCancelledError"

    def __init__(self, reason: str = "Task was cancelled") -> None:
        super().__init__(reason)


class AgenticLoopError(TaskloopError):
    """Unexpected internal failure while driving the loop."""

    kind = "AgenticLoopError"
