"""Block-task tool — let the agent declare that the task cannot proceed."""

from __future__ import annotations

from typing import ClassVar

from pydantic import BaseModel, Field

from taskloop.tool.base import BaseTool, ToolBlocked, ToolResult


class BlockTaskParams(BaseModel):
    reason: str = Field(
        description="Why the task cannot be completed (missing access, contradictory goal, ...)."
    )


class BlockTaskTool(BaseTool[BlockTaskParams]):
    """Stop the loop and mark the task BLOCKED.

    The loop treats a ``ToolBlocked`` result as terminal: the agent moves to
    ``DECIDED_TO_BLOCK_TASK`` and the run ends with a ``TaskBlockedError``.
    """

    name: ClassVar[str] = "block_task"
    description: ClassVar[str] = (
        "Use only when the task is impossible or unsafe to complete. "
        "Ends the task as blocked with the given reason."
    )
    param_model: ClassVar[type[BaseModel]] = BlockTaskParams

    async def execute(self, params: BlockTaskParams) -> ToolResult:
        return ToolBlocked(
            output=f"Task blocked: {params.reason}",
            brief="Blocking task",
            reason=params.reason,
        )
