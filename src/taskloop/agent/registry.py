"""Agent registry — discover and manage agents."""

from __future__ import annotations

import logging

from taskloop.agent.agent import Agent, ThinkingCapability, discover_agents
from taskloop.tool.registry import ToolRegistry

logger = logging.getLogger(__name__)


class AgentRegistry:
    """Registry of available agents.

    Agents can be registered programmatically or discovered from
    markdown files in agent directories.
    """

    def __init__(self) -> None:
        self._agents: dict[str, Agent] = {}

    def register(self, agent: Agent) -> None:
        """Register an agent."""
        if agent.name in self._agents:
            logger.warning("Agent %s already registered, overwriting", agent.name)
        self._agents[agent.name] = agent

    def get(self, name: str) -> Agent | None:
        """Get an agent by name."""
        return self._agents.get(name)

    def names(self) -> list[str]:
        """Get all registered agent names."""
        return list(self._agents.keys())

    def discover(
        self,
        search_dirs: list[str],
        provider: ThinkingCapability | None = None,
        catalogue: ToolRegistry | None = None,
        default_max_iterations: int | None = None,
    ) -> None:
        """Discover and register agents from markdown files."""
        for agent in discover_agents(
            search_dirs,
            provider=provider,
            catalogue=catalogue,
            default_max_iterations=default_max_iterations,
        ):
            self.register(agent)
            logger.info("Discovered agent: %s", agent.name)

    def __iter__(self):
        return iter(self._agents.values())

    def __len__(self) -> int:
        return len(self._agents)
