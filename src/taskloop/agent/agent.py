"""Agent definition — loaded from YAML frontmatter in markdown files."""

from __future__ import annotations

import logging
import os
import re
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from taskloop.status.statuses import AgentStatus
from taskloop.tool.base import BaseTool
from taskloop.tool.builtin import BUILTIN_TOOLS
from taskloop.tool.registry import ToolRegistry

if TYPE_CHECKING:
    from taskloop.llm.message import Message
    from taskloop.llm.provider import ThinkResult

logger = logging.getLogger(__name__)


@runtime_checkable
class ThinkingCapability(Protocol):
    """The black-box reasoning call: conversation in, raw text and usage out."""

    async def think(self, messages: Sequence[Message], **options: Any) -> ThinkResult:
        ...


@dataclass
class AgentConfig:
    """Configuration for an agent, typically from YAML frontmatter."""

    name: str
    role: str = ""
    goal: str = ""
    background: str = ""
    description: str = ""
    tools: list[str] = field(default_factory=list)
    max_iterations: int = 10
    model: str | None = None  # Override model for this agent
    temperature: float | None = None
    force_final_answer: bool = True

    def __post_init__(self) -> None:
        if self.max_iterations < 1:
            raise ValueError(
                f"Agent {self.name}: max_iterations must be >= 1, got {self.max_iterations}"
            )


@dataclass
class Agent:
    """A configured agent ready to run.

    Agents are defined as markdown files with YAML frontmatter:

        ---
        name: researcher
        role: Research analyst
        goal: Answer questions with sources
        tools: [think, read_file]
        max_iterations: 8
        ---

        Prefer primary sources...

    ``provider`` is the thinking capability; ``tools`` is the explicit
    name -> tool map the dispatcher resolves actions against.
    """

    config: AgentConfig
    system_prompt: str = ""
    tools: ToolRegistry = field(default_factory=ToolRegistry)
    provider: ThinkingCapability | None = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    status: AgentStatus = AgentStatus.INITIAL

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def max_iterations(self) -> int:
        return self.config.max_iterations

    async def think(self, messages: Sequence[Message], **options: Any) -> ThinkResult:
        """Delegate to the configured thinking capability."""
        if self.provider is None:
            raise RuntimeError(f"Agent {self.name} has no thinking capability configured")
        if self.config.temperature is not None:
            options.setdefault("temperature", self.config.temperature)
        return await self.provider.think(messages, **options)

    @classmethod
    def from_markdown(
        cls,
        path: str,
        provider: ThinkingCapability | None = None,
        catalogue: ToolRegistry | None = None,
        default_max_iterations: int | None = None,
    ) -> Agent:
        """Load an agent definition from a markdown file with YAML frontmatter.

        ``default_max_iterations`` applies when the frontmatter sets no budget.
        """
        with open(path, "r") as f:
            content = f.read()

        config_dict, prompt = _parse_frontmatter(content)
        if "name" not in config_dict:
            config_dict["name"] = os.path.splitext(os.path.basename(path))[0]
        if default_max_iterations is not None:
            config_dict.setdefault("max_iterations", default_max_iterations)
        return cls.from_dict(
            config_dict, prompt.strip(), provider=provider, catalogue=catalogue
        )

    @classmethod
    def from_dict(
        cls,
        data: dict[str, Any],
        system_prompt: str = "",
        provider: ThinkingCapability | None = None,
        catalogue: ToolRegistry | None = None,
        tools: Sequence[BaseTool] | None = None,
    ) -> Agent:
        """Create an agent from a dictionary config.

        Tool names in ``data["tools"]`` are resolved from ``catalogue`` first,
        then from the built-in tools. Unknown names are logged and skipped.
        """
        config = AgentConfig(**data)
        registry = ToolRegistry(tools)
        for name in config.tools:
            if name in registry:
                continue
            tool = catalogue.get(name) if catalogue is not None else None
            if tool is None and name in BUILTIN_TOOLS:
                tool = BUILTIN_TOOLS[name]()
            if tool is None:
                logger.warning("Agent %s: unknown tool %s, skipping", config.name, name)
                continue
            registry.register(tool)
        return cls(
            config=config, system_prompt=system_prompt, tools=registry, provider=provider
        )


def _parse_frontmatter(content: str) -> tuple[dict[str, Any], str]:
    """Parse YAML frontmatter from markdown content.

    Returns (config_dict, body_text).
    """
    import yaml  # lazy import: only needed when loading agents

    pattern = re.compile(r"^---\s*\n(.*?)\n---\s*\n(.*)", re.DOTALL)
    match = pattern.match(content)

    if not match:
        return {}, content

    frontmatter = match.group(1)
    body = match.group(2)

    try:
        config = yaml.safe_load(frontmatter) or {}
    except yaml.YAMLError as e:
        logger.warning("Invalid agent frontmatter: %s", e)
        config = {}
    if not isinstance(config, dict):
        config = {}

    return config, body


def discover_agents(
    search_dirs: list[str],
    provider: ThinkingCapability | None = None,
    catalogue: ToolRegistry | None = None,
    default_max_iterations: int | None = None,
) -> list[Agent]:
    """Discover agent definitions from markdown files in directories.

    Files that fail to load are logged and skipped.
    """
    agents = []
    for dir_path in search_dirs:
        if not os.path.isdir(dir_path):
            continue
        for fname in sorted(os.listdir(dir_path)):
            if not fname.endswith(".md"):
                continue
            full_path = os.path.join(dir_path, fname)
            try:
                agent = Agent.from_markdown(
                    full_path,
                    provider=provider,
                    catalogue=catalogue,
                    default_max_iterations=default_max_iterations,
                )
            except (OSError, TypeError, ValueError) as e:
                logger.warning("Skipping agent file %s: %s", full_path, e)
                continue
            agents.append(agent)
    return agents
