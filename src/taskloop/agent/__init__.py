"""Agent system — definitions, tasks, the iteration controller, and the loop."""

from taskloop.agent.agent import Agent, AgentConfig, ThinkingCapability
from taskloop.agent.iteration import IterationController, IterationRecord, IterationSignal
from taskloop.agent.loop import LoopMetadata, LoopResult, LoopSupervisor
from taskloop.agent.prompts import PromptTemplates
from taskloop.agent.registry import AgentRegistry
from taskloop.agent.task import FeedbackEntry, Task

__all__ = [
    "Agent",
    "AgentConfig",
    "AgentRegistry",
    "FeedbackEntry",
    "IterationController",
    "IterationRecord",
    "IterationSignal",
    "LoopMetadata",
    "LoopResult",
    "LoopSupervisor",
    "PromptTemplates",
    "Task",
    "ThinkingCapability",
]
