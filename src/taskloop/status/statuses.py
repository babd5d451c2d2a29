"""Lifecycle status enums for agents, tasks, and workflows."""

from __future__ import annotations

import enum


class StatusEntity(str, enum.Enum):
    """Kinds of entities whose status the registry tracks."""

    AGENT = "agent"
    TASK = "task"
    WORKFLOW = "workflow"


class AgentStatus(str, enum.Enum):
    INITIAL = "INITIAL"
    ITERATION_START = "ITERATION_START"
    THINKING = "THINKING"
    THINKING_END = "THINKING_END"
    THINKING_ERROR = "THINKING_ERROR"
    THOUGHT = "THOUGHT"
    SELF_QUESTION = "SELF_QUESTION"
    OBSERVATION = "OBSERVATION"
    EXECUTING_ACTION = "EXECUTING_ACTION"
    USING_TOOL = "USING_TOOL"
    USING_TOOL_END = "USING_TOOL_END"
    USING_TOOL_ERROR = "USING_TOOL_ERROR"
    TOOL_DOES_NOT_EXIST = "TOOL_DOES_NOT_EXIST"
    ISSUES_PARSING_LLM_OUTPUT = "ISSUES_PARSING_LLM_OUTPUT"
    OUTPUT_SCHEMA_VALIDATION_ERROR = "OUTPUT_SCHEMA_VALIDATION_ERROR"
    WEIRD_LLM_OUTPUT = "WEIRD_LLM_OUTPUT"
    FINAL_ANSWER = "FINAL_ANSWER"
    ITERATION_END = "ITERATION_END"
    TASK_COMPLETED = "TASK_COMPLETED"
    MAX_ITERATIONS_ERROR = "MAX_ITERATIONS_ERROR"
    AGENTIC_LOOP_ERROR = "AGENTIC_LOOP_ERROR"
    DECIDED_TO_BLOCK_TASK = "DECIDED_TO_BLOCK_TASK"
    TASK_ABORTED = "TASK_ABORTED"


class TaskStatus(str, enum.Enum):
    PENDING = "PENDING"
    TODO = "TODO"
    DOING = "DOING"
    BLOCKED = "BLOCKED"
    REVISE = "REVISE"
    AWAITING_VALIDATION = "AWAITING_VALIDATION"
    VALIDATED = "VALIDATED"
    DONE = "DONE"
    ERROR = "ERROR"
    ABORTED = "ABORTED"


class WorkflowStatus(str, enum.Enum):
    INITIAL = "INITIAL"
    RUNNING = "RUNNING"
    STOPPING = "STOPPING"
    STOPPED = "STOPPED"
    BLOCKED = "BLOCKED"
    ERRORED = "ERRORED"
    FINISHED = "FINISHED"


STATUS_ENUMS: dict[StatusEntity, type[enum.Enum]] = {
    StatusEntity.AGENT: AgentStatus,
    StatusEntity.TASK: TaskStatus,
    StatusEntity.WORKFLOW: WorkflowStatus,
}

INITIAL_STATUS: dict[StatusEntity, str] = {
    StatusEntity.AGENT: AgentStatus.INITIAL.value,
    StatusEntity.TASK: TaskStatus.PENDING.value,
    StatusEntity.WORKFLOW: WorkflowStatus.INITIAL.value,
}


def status_value(status: str | enum.Enum) -> str:
    """Normalize an enum member or raw string to its string value."""
    if isinstance(status, enum.Enum):
        return str(status.value)
    return str(status)


def is_valid_status(entity: StatusEntity | str, status: str | enum.Enum) -> bool:
    """Is ``status`` a member of the enum for ``entity``?"""
    try:
        kind = StatusEntity(entity)
    except ValueError:
        return False
    members = STATUS_ENUMS[kind].__members__.values()
    return status_value(status) in {m.value for m in members}
