"""Transition rule tables for agents, tasks, and workflows.

A transition ``(entity, from, to)`` is legal only if a rule for that entity
lists ``from`` among its sources and ``to`` among its targets. Rules may carry
a validation predicate and a commit hook; both may be sync or async.
"""

from __future__ import annotations

import enum
from collections.abc import Awaitable, Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Union

from taskloop.status.statuses import (
    AgentStatus,
    StatusEntity,
    TaskStatus,
    WorkflowStatus,
    status_value,
)

if TYPE_CHECKING:
    from taskloop.status.registry import StatusTransition, TransitionRequest

Validator = Callable[["TransitionRequest"], Union[bool, Awaitable[bool]]]
CommitHook = Callable[["StatusTransition"], Union[None, Awaitable[None]]]

StatusLike = Union[str, enum.Enum]


def _as_set(statuses: StatusLike | Iterable[StatusLike]) -> frozenset[str]:
    if isinstance(statuses, (str, enum.Enum)):
        return frozenset({status_value(statuses)})
    return frozenset(status_value(s) for s in statuses)


@dataclass(frozen=True)
class TransitionRule:
    """Allows moving from any of ``sources`` to any of ``targets``."""

    sources: frozenset[str]
    targets: frozenset[str]
    validate: Validator | None = None
    on_commit: CommitHook | None = None
    description: str = ""

    def matches(self, from_status: str, to_status: str) -> bool:
        return from_status in self.sources and to_status in self.targets


@dataclass
class RuleTable:
    """Per-entity list of transition rules.

    ``strict_entities`` lists entity kinds whose rejected transitions should
    be treated as fatal by callers (the agentic loop aborts on them).
    """

    rules: dict[StatusEntity, list[TransitionRule]] = field(default_factory=dict)
    strict_entities: frozenset[StatusEntity] = field(default_factory=frozenset)

    def add(
        self,
        entity: StatusEntity | str,
        sources: StatusLike | Iterable[StatusLike],
        targets: StatusLike | Iterable[StatusLike],
        validate: Validator | None = None,
        on_commit: CommitHook | None = None,
        description: str = "",
    ) -> TransitionRule:
        """Register a rule and return it."""
        rule = TransitionRule(
            sources=_as_set(sources),
            targets=_as_set(targets),
            validate=validate,
            on_commit=on_commit,
            description=description,
        )
        self.rules.setdefault(StatusEntity(entity), []).append(rule)
        return rule

    def find(
        self, entity: StatusEntity | str, from_status: StatusLike, to_status: StatusLike
    ) -> TransitionRule | None:
        """First rule allowing ``from_status -> to_status``, or None."""
        src, dst = status_value(from_status), status_value(to_status)
        for rule in self.rules.get(StatusEntity(entity), []):
            if rule.matches(src, dst):
                return rule
        return None

    def is_allowed(
        self, entity: StatusEntity | str, from_status: StatusLike, to_status: StatusLike
    ) -> bool:
        return self.find(entity, from_status, to_status) is not None

    def available(self, entity: StatusEntity | str, from_status: StatusLike) -> list[str]:
        """All statuses reachable in one step from ``from_status``."""
        src = status_value(from_status)
        seen: list[str] = []
        for rule in self.rules.get(StatusEntity(entity), []):
            if src in rule.sources:
                for target in sorted(rule.targets):
                    if target not in seen:
                        seen.append(target)
        return seen

    def pairs(self, entity: StatusEntity | str) -> set[tuple[str, str]]:
        """Every legal ``(from, to)`` pair for an entity."""
        result: set[tuple[str, str]] = set()
        for rule in self.rules.get(StatusEntity(entity), []):
            result.update((s, t) for s in rule.sources for t in rule.targets)
        return result

    def is_strict(self, entity: StatusEntity | str) -> bool:
        return StatusEntity(entity) in self.strict_entities

    def describe(self) -> dict[str, list[dict[str, Any]]]:
        """Plain-data view of the table, for display."""
        return {
            entity.value: [
                {
                    "from": sorted(rule.sources),
                    "to": sorted(rule.targets),
                    "validated": rule.validate is not None,
                    "description": rule.description,
                }
                for rule in rules
            ]
            for entity, rules in self.rules.items()
        }


A = AgentStatus

# Statuses in which an agent is actively working on a task.
AGENT_ACTIVE_STATUSES = frozenset(
    {
        A.ITERATION_START,
        A.THINKING,
        A.THINKING_END,
        A.THOUGHT,
        A.SELF_QUESTION,
        A.OBSERVATION,
        A.EXECUTING_ACTION,
        A.USING_TOOL,
        A.USING_TOOL_END,
        A.USING_TOOL_ERROR,
        A.TOOL_DOES_NOT_EXIST,
        A.ISSUES_PARSING_LLM_OUTPUT,
        A.OUTPUT_SCHEMA_VALIDATION_ERROR,
        A.WEIRD_LLM_OUTPUT,
        A.FINAL_ANSWER,
        A.ITERATION_END,
    }
)

AGENT_TERMINAL_STATUSES = frozenset(
    {
        A.TASK_COMPLETED,
        A.MAX_ITERATIONS_ERROR,
        A.AGENTIC_LOOP_ERROR,
        A.DECIDED_TO_BLOCK_TASK,
        A.TASK_ABORTED,
    }
)


def _add_agent_rules(table: RuleTable) -> None:
    agent = StatusEntity.AGENT
    table.add(agent, A.INITIAL, [A.ITERATION_START, A.TASK_ABORTED], description="start")
    table.add(agent, A.ITERATION_START, A.THINKING)
    table.add(agent, A.THINKING, [A.THINKING_END, A.THINKING_ERROR])
    table.add(
        agent,
        A.THINKING_END,
        [
            A.FINAL_ANSWER,
            A.EXECUTING_ACTION,
            A.THOUGHT,
            A.SELF_QUESTION,
            A.OBSERVATION,
            A.ISSUES_PARSING_LLM_OUTPUT,
            A.OUTPUT_SCHEMA_VALIDATION_ERROR,
            A.WEIRD_LLM_OUTPUT,
        ],
        description="branch on the parsed decision",
    )
    table.add(agent, A.EXECUTING_ACTION, [A.USING_TOOL, A.TOOL_DOES_NOT_EXIST])
    table.add(agent, A.USING_TOOL, [A.USING_TOOL_END, A.USING_TOOL_ERROR])
    table.add(agent, A.USING_TOOL_END, A.OBSERVATION)
    table.add(
        agent,
        [
            A.FINAL_ANSWER,
            A.THOUGHT,
            A.SELF_QUESTION,
            A.OBSERVATION,
            A.USING_TOOL_ERROR,
            A.TOOL_DOES_NOT_EXIST,
            A.ISSUES_PARSING_LLM_OUTPUT,
            A.OUTPUT_SCHEMA_VALIDATION_ERROR,
            A.WEIRD_LLM_OUTPUT,
        ],
        A.ITERATION_END,
        description="close the iteration",
    )
    table.add(
        agent,
        A.ITERATION_END,
        [
            A.ITERATION_START,
            A.TASK_COMPLETED,
            A.DECIDED_TO_BLOCK_TASK,
            A.MAX_ITERATIONS_ERROR,
        ],
    )
    table.add(agent, A.THINKING_ERROR, A.AGENTIC_LOOP_ERROR)
    table.add(agent, AGENT_ACTIVE_STATUSES, [A.TASK_ABORTED, A.AGENTIC_LOOP_ERROR])
    table.add(
        agent,
        AGENT_TERMINAL_STATUSES,
        [A.INITIAL, A.ITERATION_START],
        description="reuse the agent for another run",
    )


def _add_task_rules(table: RuleTable) -> None:
    T = TaskStatus
    task = StatusEntity.TASK
    table.add(task, T.PENDING, T.TODO)
    table.add(task, T.TODO, [T.DOING, T.BLOCKED, T.ABORTED])
    table.add(
        task,
        T.DOING,
        [T.DONE, T.ERROR, T.BLOCKED, T.ABORTED, T.AWAITING_VALIDATION],
    )
    table.add(task, T.AWAITING_VALIDATION, [T.VALIDATED, T.REVISE])
    table.add(task, T.VALIDATED, T.DONE)
    table.add(task, [T.DONE, T.ERROR], T.REVISE)
    table.add(task, T.REVISE, T.DOING)
    table.add(task, [T.BLOCKED, T.ABORTED, T.ERROR], T.TODO)


def _add_workflow_rules(table: RuleTable) -> None:
    W = WorkflowStatus
    workflow = StatusEntity.WORKFLOW
    table.add(workflow, W.INITIAL, W.RUNNING)
    table.add(workflow, W.RUNNING, [W.FINISHED, W.ERRORED, W.BLOCKED, W.STOPPING])
    table.add(workflow, W.STOPPING, W.STOPPED)
    table.add(workflow, W.BLOCKED, [W.RUNNING, W.ERRORED])
    table.add(workflow, [W.STOPPED, W.FINISHED, W.ERRORED], W.INITIAL)


def default_rule_table(
    strict_entities: Iterable[StatusEntity | str] = (),
) -> RuleTable:
    """Build the standard rule table used by the agentic loop."""
    table = RuleTable(
        strict_entities=frozenset(StatusEntity(e) for e in strict_entities)
    )
    _add_agent_rules(table)
    _add_task_rules(table)
    _add_workflow_rules(table)
    return table
