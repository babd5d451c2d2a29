"""The agentic loop — the heart of taskloop.

``LoopSupervisor.run`` drives one (agent, task) attempt:

1. Move the task to ``DOING`` and seed the conversation
2. Run iterations until a final answer, a terminal error, or the budget
3. On budget exhaustion, make one forced final-answer attempt
4. Settle agent and task statuses and build the ``LoopResult``

``run`` never raises: every failure ends up in ``LoopResult.error``.
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from taskloop.agent.iteration import (
    IterationController,
    IterationRecord,
    IterationSignal,
    LoopState,
    finalize_answer,
)
from taskloop.agent.prompts import PromptTemplates
from taskloop.agent.task import FeedbackStatus
from taskloop.cancellation import check_cancelled, run_cancellable
from taskloop.config import LoopConfig
from taskloop.context import Conversation
from taskloop.errors import (
    AgenticLoopError,
    LoopCancelledError,
    MaxIterationsError,
    TaskloopError,
)
from taskloop.llm.message import TokenUsage
from taskloop.parsing.parser import OutputParser, ParsedDecision
from taskloop.session.wire import EventType
from taskloop.status.registry import StatusRegistry
from taskloop.status.statuses import AgentStatus, StatusEntity, TaskStatus, WorkflowStatus
from taskloop.tool.dispatcher import ToolDispatcher

if TYPE_CHECKING:
    from taskloop.agent.agent import Agent
    from taskloop.agent.task import Task
    from taskloop.config import TaskloopConfig
    from taskloop.session.wire import Wire

logger = logging.getLogger(__name__)

# Task statuses -> path to DOING at the start of a run.
_TASK_START_PATHS: dict[TaskStatus, tuple[TaskStatus, ...]] = {
    TaskStatus.PENDING: (TaskStatus.TODO, TaskStatus.DOING),
    TaskStatus.TODO: (TaskStatus.DOING,),
    TaskStatus.REVISE: (TaskStatus.DOING,),
    TaskStatus.DONE: (TaskStatus.REVISE, TaskStatus.DOING),
    TaskStatus.ERROR: (TaskStatus.REVISE, TaskStatus.DOING),
    TaskStatus.BLOCKED: (TaskStatus.TODO, TaskStatus.DOING),
    TaskStatus.ABORTED: (TaskStatus.TODO, TaskStatus.DOING),
}

_STOPPED_WORKFLOW = {WorkflowStatus.STOPPING.value, WorkflowStatus.STOPPED.value}


@dataclass(frozen=True)
class LoopMetadata:
    iterations: int
    max_agent_iterations: int

    def as_dict(self) -> dict[str, int]:
        return {
            "iterations": self.iterations,
            "maxAgentIterations": self.max_agent_iterations,
        }


@dataclass(frozen=True)
class LoopResult:
    """Terminal outcome of one run. Built once, never mutated."""

    metadata: LoopMetadata
    result: Any = None
    error: str | None = None
    error_kind: str | None = None
    records: tuple[IterationRecord, ...] = ()
    usage: TokenUsage = field(default_factory=TokenUsage)

    @property
    def ok(self) -> bool:
        return self.error is None


class LoopSupervisor:
    """Owns the bounded iteration cycle for (agent, task) pairs.

    All collaborators are injected; a supervisor holds no per-run state, so
    one instance can run many (agent, task) pairs concurrently.
    """

    def __init__(
        self,
        registry: StatusRegistry | None = None,
        *,
        config: LoopConfig | None = None,
        parser: OutputParser | None = None,
        dispatcher: ToolDispatcher | None = None,
        prompts: PromptTemplates | None = None,
        wire: Wire | None = None,
        transcript_dir: str | None = None,
    ) -> None:
        self.config = config or LoopConfig()
        self.registry = registry or StatusRegistry()
        self.parser = parser or OutputParser(recover=self.config.recover_malformed_output)
        self.dispatcher = dispatcher or ToolDispatcher(
            self.registry,
            tool_timeout=self.config.tool_timeout,
            max_lines=self.config.max_observation_lines,
            max_chars=self.config.max_observation_chars,
        )
        self.prompts = prompts or PromptTemplates()
        self.wire = wire
        self.transcript_dir = transcript_dir
        self.controller = IterationController(
            self.registry,
            self.parser,
            self.dispatcher,
            self.prompts,
            think_timeout=self.config.think_timeout,
            wire=wire,
        )

    @classmethod
    def from_config(
        cls, config: TaskloopConfig, wire: Wire | None = None
    ) -> LoopSupervisor:
        return cls(
            StatusRegistry.from_config(config.status),
            config=config.loop,
            wire=wire,
            transcript_dir=config.transcript_dir,
        )

    # --- Entry points ---

    async def run(
        self,
        agent: Agent,
        task: Task,
        feedback_message: str | None = None,
        cancel_event: asyncio.Event | None = None,
        workflow_id: str | None = None,
    ) -> LoopResult:
        """Execute ``task`` with ``agent`` and return the terminal result."""
        state = LoopState(
            agent=agent,
            task=task,
            conversation=Conversation(path=self._transcript_path(agent, task)),
            feedback_message=feedback_message,
            cancel_event=cancel_event,
            workflow_id=workflow_id,
            force_final_answer=self.config.force_final_answer,
        )
        task.iteration_count = 0
        task.error = None
        logger.info("Agent %s starting task %s", agent.name, task.id)
        self._emit(EventType.RUN_BEGIN, agent=agent.name, task=task.id)

        try:
            result = await self._run(state)
        except LoopCancelledError as e:
            logger.info("Agent %s: task %s cancelled", agent.name, task.id)
            result = await self._settle(
                state, e, AgentStatus.TASK_ABORTED, TaskStatus.ABORTED
            )
        except TaskloopError as e:
            logger.error("Agent %s: %s", agent.name, e.message)
            result = await self._settle(
                state, e, AgentStatus.AGENTIC_LOOP_ERROR, TaskStatus.ERROR
            )
        except Exception as e:
            logger.error(
                "Agent %s: unexpected error in task %s: %s",
                agent.name,
                task.id,
                e,
                exc_info=True,
            )
            result = await self._settle(
                state,
                AgenticLoopError(f"Unexpected error: {e}"),
                AgentStatus.AGENTIC_LOOP_ERROR,
                TaskStatus.ERROR,
            )

        self._emit(
            EventType.RUN_END,
            agent=agent.name,
            task=task.id,
            result=result.result,
            error=result.error,
            **result.metadata.as_dict(),
        )
        return result

    async def work_on_feedback(
        self,
        agent: Agent,
        task: Task,
        cancel_event: asyncio.Event | None = None,
        workflow_id: str | None = None,
    ) -> LoopResult:
        """Re-run ``task`` addressing its pending feedback entries."""
        pending = task.pending_feedback()
        if not pending:
            logger.warning("Task %s has no pending feedback", task.id)
        message = "\n".join(entry.content for entry in pending) or None
        result = await self.run(
            agent,
            task,
            feedback_message=message,
            cancel_event=cancel_event,
            workflow_id=workflow_id,
        )
        for entry in pending:
            entry.status = FeedbackStatus.PROCESSED
        return result

    # --- Loop ---

    async def _run(self, state: LoopState) -> LoopResult:
        agent, task = state.agent, state.task
        await self._start_task(state)
        await state.conversation.add_system(self.prompts.system_message(agent, task))
        await state.conversation.add_user(self.prompts.initial_message(agent, task))

        while state.iterations < state.max_iterations:
            self._check_stop(state)
            outcome = await self.controller.run_iteration(state)
            state.records.append(outcome.record)

            if outcome.signal is IterationSignal.FINAL_ANSWER:
                logger.info(
                    "Agent %s completed task %s after %d iterations",
                    agent.name,
                    task.id,
                    state.iterations,
                )
                return await self._settle(
                    state,
                    None,
                    AgentStatus.TASK_COMPLETED,
                    TaskStatus.DONE,
                    answer=outcome.answer,
                )
            if outcome.signal is IterationSignal.BLOCKED:
                return await self._settle(
                    state, outcome.error, AgentStatus.DECIDED_TO_BLOCK_TASK, TaskStatus.BLOCKED
                )
            if outcome.signal is IterationSignal.ERROR:
                return await self._settle(
                    state, outcome.error, AgentStatus.AGENTIC_LOOP_ERROR, TaskStatus.ERROR
                )

        return await self._exhausted(state)

    async def _exhausted(self, state: LoopState) -> LoopResult:
        """Budget spent: one forced final-answer attempt, then report exhaustion."""
        agent = state.agent
        logger.warning("Agent %s hit max iterations (%d)", agent.name, state.max_iterations)

        # The agent stays at ITERATION_END until the forced attempt returns,
        # so an abort during it can still reach TASK_ABORTED.
        record = IterationRecord(index=state.iterations, forced=True)
        state.records.append(record)
        answer: Any = None
        await state.conversation.add_user(
            self.prompts.force_final_answer(state.iterations, state.max_iterations),
            kind="forced_final_answer",
        )
        try:
            think = await run_cancellable(
                agent.think(state.conversation.get_messages()),
                state.cancel_event,
                timeout=self.config.think_timeout,
                where="forced final answer",
            )
        except LoopCancelledError:
            raise
        except Exception as e:
            logger.warning("Agent %s: forced final answer failed: %s", agent.name, e)
        else:
            record.raw_text = think.raw_text
            record.usage = think.usage
            state.usage = state.usage + think.usage
            await state.conversation.add_assistant(think.raw_text, kind="forced_final_answer")
            parsed = self.parser.parse(think.raw_text)
            if isinstance(parsed, ParsedDecision):
                record.decision = parsed
                if parsed.has_final_answer:
                    answer = self._forced_answer(parsed, state)
            else:
                record.parse_error = parsed
                logger.warning(
                    "Agent %s: forced final answer unparsable (%s)", agent.name, parsed.message
                )

        return await self._settle(
            state,
            MaxIterationsError(state.max_iterations),
            AgentStatus.MAX_ITERATIONS_ERROR,
            TaskStatus.ERROR,
            answer=answer,
        )

    def _forced_answer(self, parsed: ParsedDecision, state: LoopState) -> Any:
        try:
            return finalize_answer(parsed.final_answer, state.task)
        except ValueError as e:
            logger.warning("Forced final answer failed schema validation: %s", e)
            return None

    # --- Status bookkeeping ---

    async def _start_task(self, state: LoopState) -> None:
        task = state.task
        path = _TASK_START_PATHS.get(task.status)
        if path is None:
            if task.status is not TaskStatus.DOING:
                logger.warning(
                    "Task %s is %s; running without a status change",
                    task.id,
                    task.status.value,
                )
            return
        for status in path:
            await self.controller.advance(
                StatusEntity.TASK, task, status, agent=state.agent.name
            )

    async def _settle(
        self,
        state: LoopState,
        error: TaskloopError | None,
        agent_status: AgentStatus | None,
        task_status: TaskStatus,
        answer: Any = None,
    ) -> LoopResult:
        """Final status transitions plus the single ``LoopResult`` for this run."""
        agent, task = state.agent, state.task
        if agent_status is not None and agent.status is not agent_status:
            await self.controller.advance(
                StatusEntity.AGENT,
                agent,
                agent_status,
                raise_fatal=False,
                task_id=task.id,
                iterations=state.iterations,
            )
        if task.status is not task_status:
            await self.controller.advance(
                StatusEntity.TASK,
                task,
                task_status,
                raise_fatal=False,
                agent=agent.name,
            )

        task.iteration_count = state.iterations
        task.result = answer
        error_text = error.describe(state.iterations) if error is not None else None
        task.error = error_text
        if error_text:
            self._emit(EventType.ERROR, agent=agent.name, error=error_text)
        return LoopResult(
            metadata=LoopMetadata(
                iterations=state.iterations, max_agent_iterations=state.max_iterations
            ),
            result=answer,
            error=error_text,
            error_kind=error.kind if error is not None else None,
            records=tuple(state.records),
            usage=state.usage,
        )

    # --- Helpers ---

    def _check_stop(self, state: LoopState) -> None:
        check_cancelled(state.cancel_event, "iteration start")
        if state.workflow_id is None:
            return
        current = self.registry.current(StatusEntity.WORKFLOW, state.workflow_id)
        if current in _STOPPED_WORKFLOW:
            raise LoopCancelledError(f"Workflow {state.workflow_id} is {current}")

    def _transcript_path(self, agent: Agent, task: Task) -> Path | None:
        if not self.transcript_dir:
            return None
        directory = os.path.expanduser(self.transcript_dir)
        return Path(directory) / f"{task.id}-{agent.id}.jsonl"

    def _emit(self, type: EventType, **data: Any) -> None:
        if self.wire is not None:
            self.wire.emit(type, **data)
