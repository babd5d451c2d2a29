"""Shared fixtures: scripted thinking capabilities and agent factories."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from typing import Any

import pytest

from taskloop.agent.agent import Agent, AgentConfig
from taskloop.agent.loop import LoopSupervisor
from taskloop.config import LoopConfig
from taskloop.llm.message import Message, TokenUsage
from taskloop.llm.provider import ThinkResult
from taskloop.status.registry import StatusRegistry
from taskloop.tool.base import BaseTool, FunctionTool
from taskloop.tool.registry import ToolRegistry


class ScriptedProvider:
    """Thinking capability that replays canned responses.

    Each item is returned as ``raw_text``; exception instances are raised.
    """

    def __init__(self, responses: Sequence[str | BaseException]) -> None:
        self.responses = list(responses)
        self.calls: list[list[Message]] = []
        self.options: list[dict[str, Any]] = []

    async def think(self, messages: Sequence[Message], **options: Any) -> ThinkResult:
        self.calls.append(list(messages))
        self.options.append(options)
        if not self.responses:
            raise AssertionError("ScriptedProvider ran out of responses")
        item = self.responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        return ThinkResult(
            raw_text=item,
            usage=TokenUsage(input_tokens=10, output_tokens=5, total_tokens=15),
        )


class SlowProvider:
    """Thinking capability that never answers in time."""

    def __init__(self, delay: float = 10.0) -> None:
        self.delay = delay
        self.calls = 0

    async def think(self, messages: Sequence[Message], **options: Any) -> ThinkResult:
        self.calls += 1
        await asyncio.sleep(self.delay)
        return ThinkResult(raw_text='{"finalAnswer": "too late"}')


@pytest.fixture
def search_tool() -> FunctionTool:
    def search(q: str) -> str:
        return f"results for {q}"

    return FunctionTool("search", search, description="Search the web.")


@pytest.fixture
def make_agent() -> Callable[..., Agent]:
    def _make(
        provider: Any,
        tools: Sequence[BaseTool] = (),
        max_iterations: int = 3,
        **config: Any,
    ) -> Agent:
        return Agent(
            config=AgentConfig(name="tester", max_iterations=max_iterations, **config),
            tools=ToolRegistry(tools),
            provider=provider,
        )

    return _make


@pytest.fixture
def registry() -> StatusRegistry:
    return StatusRegistry()


@pytest.fixture
def loop_config() -> LoopConfig:
    return LoopConfig(force_final_answer=False, think_timeout=5.0, tool_timeout=5.0)


@pytest.fixture
def supervisor(registry: StatusRegistry, loop_config: LoopConfig) -> LoopSupervisor:
    return LoopSupervisor(registry, config=loop_config)


@pytest.fixture
def scripted() -> Callable[..., ScriptedProvider]:
    def _make(*responses: str | BaseException) -> ScriptedProvider:
        return ScriptedProvider(responses)

    return _make


@pytest.fixture
def slow_provider() -> SlowProvider:
    return SlowProvider()
