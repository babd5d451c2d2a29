"""Status registry — lifecycle enums, transition rules, and the registry."""

from taskloop.status.registry import (
    StatusError,
    StatusErrorKind,
    StatusRegistry,
    StatusTransition,
    TransitionRequest,
)
from taskloop.status.rules import RuleTable, TransitionRule, default_rule_table
from taskloop.status.statuses import (
    AgentStatus,
    StatusEntity,
    TaskStatus,
    WorkflowStatus,
)

__all__ = [
    "AgentStatus",
    "RuleTable",
    "StatusEntity",
    "StatusError",
    "StatusErrorKind",
    "StatusRegistry",
    "StatusTransition",
    "TaskStatus",
    "TransitionRequest",
    "TransitionRule",
    "WorkflowStatus",
    "default_rule_table",
]
