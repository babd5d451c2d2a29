"""Think tool — record a reasoning step without side effects."""

from __future__ import annotations

from typing import ClassVar

from pydantic import BaseModel, Field

from taskloop.tool.base import BaseTool, ToolOk, ToolResult


class ThinkParams(BaseModel):
    thought: str = Field(
        description="Reasoning to record: a plan, a hypothesis or an intermediate conclusion."
    )


class ThinkTool(BaseTool[ThinkParams]):
    """Scratchpad tool. The thought is echoed back as the observation."""

    name: ClassVar[str] = "think"
    description: ClassVar[str] = (
        "Record your reasoning before acting. Has no side effects; "
        "the thought is returned unchanged as the observation."
    )
    param_model: ClassVar[type[BaseModel]] = ThinkParams

    async def execute(self, params: ThinkParams) -> ToolResult:
        return ToolOk(output=f"Thought recorded: {params.thought}", brief="Thinking")
