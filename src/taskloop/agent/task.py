"""Task — the unit of work an agent executes."""

from __future__ import annotations

import enum
import time
import uuid
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel

from taskloop.status.statuses import TaskStatus


class FeedbackStatus(enum.Enum):
    PENDING = "PENDING"
    PROCESSED = "PROCESSED"


@dataclass
class FeedbackEntry:
    """Reviewer feedback attached to a task, consumed by ``work_on_feedback``."""

    content: str
    status: FeedbackStatus = FeedbackStatus.PENDING
    timestamp: float = field(default_factory=time.time)


@dataclass
class Task:
    """A task owned by the caller.

    ``status``, ``iteration_count`` and ``result`` are written only by the
    loop supervisor (through the status registry for ``status``).
    ``output_schema``, when set, is the pydantic model a final answer must
    validate against.
    """

    description: str
    expected_output: str = ""
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    status: TaskStatus = TaskStatus.PENDING
    iteration_count: int = 0
    result: Any = None
    error: str | None = None
    context: str = ""
    output_schema: type[BaseModel] | None = None
    feedback: list[FeedbackEntry] = field(default_factory=list)

    def add_feedback(self, content: str) -> FeedbackEntry:
        entry = FeedbackEntry(content=content)
        self.feedback.append(entry)
        return entry

    def pending_feedback(self) -> list[FeedbackEntry]:
        return [f for f in self.feedback if f.status is FeedbackStatus.PENDING]
