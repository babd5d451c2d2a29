"""Iteration controller — one think / parse / act cycle of the agentic loop.

Per iteration the agent moves through::

    ITERATION_START -> THINKING -> THINKING_END -> <branch> [-> ...] -> ITERATION_END

where the branch is chosen from the parsed decision. Parse and tool problems
are turned into corrective user messages and the controller signals
``CONTINUE``; only a thinking failure, a final answer or a blocked task end
the loop from here.
"""

from __future__ import annotations

import asyncio
import enum
import json
import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from taskloop.cancellation import check_cancelled, run_cancellable
from taskloop.errors import (
    LoopCancelledError,
    TaskBlockedError,
    TaskloopError,
    ThinkingError,
)
from taskloop.llm.message import TokenUsage
from taskloop.parsing.parser import DecisionBranch, OutputParser, ParsedDecision, ParseFailure
from taskloop.session.wire import EventType
from taskloop.status.registry import StatusError, StatusRegistry, StatusTransition
from taskloop.status.statuses import AgentStatus, StatusEntity
from taskloop.tool.base import ToolBlocked
from taskloop.tool.dispatcher import (
    ToolDispatcher,
    ToolFailure,
    ToolNotFound,
    ToolOutcome,
    ToolSuccess,
)

if TYPE_CHECKING:
    from taskloop.agent.agent import Agent
    from taskloop.agent.prompts import PromptTemplates
    from taskloop.agent.task import Task
    from taskloop.context import Conversation
    from taskloop.session.wire import Wire

logger = logging.getLogger(__name__)


class IterationSignal(enum.Enum):
    """What the supervisor should do after an iteration."""

    CONTINUE = "continue"
    FINAL_ANSWER = "final_answer"
    BLOCKED = "blocked"
    ERROR = "error"


@dataclass
class IterationRecord:
    """Diagnostic record of one iteration (or of the forced final attempt)."""

    index: int
    timestamp: float = field(default_factory=time.time)
    raw_text: str | None = None
    decision: ParsedDecision | None = None
    parse_error: ParseFailure | None = None
    tool_outcome: ToolOutcome | None = None
    feedback: str | None = None
    usage: TokenUsage = field(default_factory=TokenUsage)
    transitions: list[StatusTransition] = field(default_factory=list)
    status_errors: list[StatusError] = field(default_factory=list)
    forced: bool = False

    @property
    def transition(self) -> StatusTransition | None:
        """The last status transition committed during this iteration."""
        return self.transitions[-1] if self.transitions else None


@dataclass
class IterationOutcome:
    signal: IterationSignal
    record: IterationRecord
    answer: Any = None
    error: TaskloopError | None = None

    @property
    def terminal(self) -> bool:
        return self.signal is not IterationSignal.CONTINUE


@dataclass
class LoopState:
    """Mutable state of one supervisor run. Never shared between runs."""

    agent: Agent
    task: Task
    conversation: Conversation
    feedback_message: str | None = None
    cancel_event: asyncio.Event | None = None
    workflow_id: str | None = None
    force_final_answer: bool = True
    iterations: int = 0
    records: list[IterationRecord] = field(default_factory=list)
    usage: TokenUsage = field(default_factory=TokenUsage)

    @property
    def max_iterations(self) -> int:
        return self.agent.max_iterations


class IterationController:
    """Drives single iterations for the loop supervisor."""

    def __init__(
        self,
        registry: StatusRegistry,
        parser: OutputParser,
        dispatcher: ToolDispatcher,
        prompts: PromptTemplates,
        think_timeout: float | None = None,
        wire: Wire | None = None,
    ) -> None:
        self.registry = registry
        self.parser = parser
        self.dispatcher = dispatcher
        self.prompts = prompts
        self.think_timeout = think_timeout
        self.wire = wire

    # --- Status helpers ---

    async def advance(
        self,
        entity: StatusEntity,
        subject: Any,
        status: enum.Enum,
        record: IterationRecord | None = None,
        raise_fatal: bool = True,
        **metadata: Any,
    ) -> StatusTransition | StatusError:
        """Request a transition; fatal rejections raise ``InvalidTransitionError``."""
        outcome = await self.registry.advance(entity, subject, status, **metadata)
        if isinstance(outcome, StatusError):
            if record is not None:
                record.status_errors.append(outcome)
            if outcome.fatal and raise_fatal:
                raise outcome.to_exception()
        elif record is not None:
            record.transitions.append(outcome)
        return outcome

    async def _agent(
        self, state: LoopState, record: IterationRecord, status: AgentStatus, **metadata: Any
    ) -> None:
        await self.advance(
            StatusEntity.AGENT,
            state.agent,
            status,
            record,
            task_id=state.task.id,
            iteration=record.index,
            **metadata,
        )

    def _emit(self, type: EventType, **data: Any) -> None:
        if self.wire is not None:
            self.wire.emit(type, **data)

    async def _feedback(self, state: LoopState, record: IterationRecord, text: str) -> None:
        record.feedback = text
        await state.conversation.add_user(text, kind="feedback", iteration=record.index)
        self._emit(EventType.FEEDBACK, agent=state.agent.name, text=text)

    # --- Iteration ---

    async def run_iteration(self, state: LoopState) -> IterationOutcome:
        """Run one iteration and tell the supervisor what to do next.

        Raises:
            LoopCancelledError: The abort signal fired.
            InvalidTransitionError: The registry rejected a transition fatally.
        """
        agent, task = state.agent, state.task
        record = IterationRecord(index=state.iterations)
        logger.info(
            "Agent %s: iteration %d/%d", agent.name, record.index + 1, state.max_iterations
        )
        check_cancelled(state.cancel_event, "iteration start")
        self._emit(EventType.ITERATION_BEGIN, agent=agent.name, iteration=record.index)

        await self._agent(state, record, AgentStatus.ITERATION_START)
        if record.index == 0 and state.feedback_message:
            await state.conversation.add_user(
                self.prompts.work_on_feedback(state.feedback_message), kind="feedback"
            )
        if (
            state.force_final_answer
            and agent.config.force_final_answer
            and record.index == state.max_iterations - 2
        ):
            await self._feedback(
                state,
                record,
                self.prompts.force_final_answer(record.index, state.max_iterations),
            )

        await self._agent(state, record, AgentStatus.THINKING)
        try:
            result = await run_cancellable(
                agent.think(state.conversation.get_messages()),
                state.cancel_event,
                timeout=self.think_timeout,
                where="thinking",
            )
        except LoopCancelledError:
            raise
        except asyncio.TimeoutError as e:
            return await self._thinking_failed(
                state, record, ThinkingError(f"Thinking timed out after {self.think_timeout}s", e)
            )
        except Exception as e:
            return await self._thinking_failed(
                state, record, ThinkingError(f"Thinking failed: {e}", e)
            )

        record.raw_text = result.raw_text
        record.usage = result.usage
        state.usage = state.usage + result.usage
        await state.conversation.add_assistant(result.raw_text, iteration=record.index)
        await self._agent(
            state, record, AgentStatus.THINKING_END, output_tokens=result.usage.output_tokens
        )
        check_cancelled(state.cancel_event, "after thinking")

        parsed = self.parser.parse(result.raw_text)
        if isinstance(parsed, ParseFailure):
            record.parse_error = parsed
            logger.warning(
                "Agent %s: could not parse model output (%s)", agent.name, parsed.message
            )
            await self._agent(
                state, record, AgentStatus.ISSUES_PARSING_LLM_OUTPUT, error=parsed.message
            )
            await self._feedback(state, record, self.prompts.invalid_output(parsed))
            return await self._end_iteration(state, record)

        record.decision = parsed
        branch = parsed.branch

        if branch is DecisionBranch.FINAL_ANSWER:
            return await self._final_answer(state, record, parsed, task)
        if branch is DecisionBranch.ACTION:
            return await self._action(state, record, parsed)

        if branch is DecisionBranch.SELF_QUESTION:
            question = _question_text(parsed)
            if parsed.thought:
                await self._agent(state, record, AgentStatus.THOUGHT, thought=parsed.thought)
                text = self.prompts.thought_with_question(question)
            else:
                await self._agent(state, record, AgentStatus.SELF_QUESTION)
                text = self.prompts.self_question()
        elif branch is DecisionBranch.OBSERVATION:
            await self._agent(state, record, AgentStatus.OBSERVATION)
            text = self.prompts.observation()
        else:
            logger.warning("Agent %s: output has no actionable keys", agent.name)
            await self._agent(state, record, AgentStatus.WEIRD_LLM_OUTPUT)
            text = self.prompts.weird_output()
        await self._feedback(state, record, text)
        return await self._end_iteration(state, record)

    async def _end_iteration(
        self,
        state: LoopState,
        record: IterationRecord,
        signal: IterationSignal = IterationSignal.CONTINUE,
        answer: Any = None,
        error: TaskloopError | None = None,
    ) -> IterationOutcome:
        await self._agent(state, record, AgentStatus.ITERATION_END)
        state.iterations += 1
        state.task.iteration_count = state.iterations
        self._emit(
            EventType.ITERATION_END,
            agent=state.agent.name,
            iteration=record.index,
            signal=signal.value,
        )
        return IterationOutcome(signal=signal, record=record, answer=answer, error=error)

    async def _thinking_failed(
        self, state: LoopState, record: IterationRecord, error: ThinkingError
    ) -> IterationOutcome:
        logger.error(
            "Agent %s: thinking failed at iteration %d: %s",
            state.agent.name,
            record.index,
            error.message,
            exc_info=error.cause,
        )
        await self._agent(state, record, AgentStatus.THINKING_ERROR, error=error.message)
        return IterationOutcome(signal=IterationSignal.ERROR, record=record, error=error)

    async def _final_answer(
        self, state: LoopState, record: IterationRecord, parsed: ParsedDecision, task: Task
    ) -> IterationOutcome:
        if parsed.action:
            logger.debug(
                "Agent %s: ignoring action %s alongside a final answer",
                state.agent.name,
                parsed.action,
            )
        try:
            answer = finalize_answer(parsed.final_answer, task)
        except ValidationError as e:
            logger.warning("Agent %s: final answer failed schema validation", state.agent.name)
            await self._agent(
                state, record, AgentStatus.OUTPUT_SCHEMA_VALIDATION_ERROR, error=str(e)
            )
            assert task.output_schema is not None
            await self._feedback(
                state,
                record,
                self.prompts.schema_error(str(e), task.output_schema.model_json_schema()),
            )
            return await self._end_iteration(state, record)

        await self._agent(state, record, AgentStatus.FINAL_ANSWER)
        self._emit(EventType.FINAL_ANSWER, agent=state.agent.name, answer=answer)
        return await self._end_iteration(
            state, record, IterationSignal.FINAL_ANSWER, answer=answer
        )

    async def _action(
        self, state: LoopState, record: IterationRecord, parsed: ParsedDecision
    ) -> IterationOutcome:
        agent = state.agent
        name = parsed.action or ""
        tool_input = parsed.tool_input()
        await self._agent(state, record, AgentStatus.EXECUTING_ACTION, tool_name=name)
        self._emit(EventType.TOOL_CALL, agent=agent.name, tool=name, input=tool_input)

        outcome = await self.dispatcher.execute(agent, name, tool_input, state.cancel_event)
        record.tool_outcome = outcome
        record.status_errors.extend(outcome.status_errors)
        for status_error in outcome.status_errors:
            if status_error.fatal:
                raise status_error.to_exception()

        if isinstance(outcome, ToolNotFound):
            self._emit(EventType.TOOL_RESULT, agent=agent.name, tool=name, error="not found")
            await self._feedback(
                state, record, self.prompts.tool_not_found(name, outcome.available)
            )
            return await self._end_iteration(state, record)

        if isinstance(outcome, ToolFailure):
            logger.warning("Agent %s: %s", agent.name, outcome.error.message)
            self._emit(
                EventType.TOOL_RESULT, agent=agent.name, tool=name, error=outcome.error.message
            )
            await self._feedback(
                state, record, self.prompts.tool_error(name, outcome.error.cause)
            )
            return await self._end_iteration(state, record)

        assert isinstance(outcome, ToolSuccess)
        self._emit(EventType.TOOL_RESULT, agent=agent.name, tool=name, output=outcome.output)
        await self._agent(state, record, AgentStatus.OBSERVATION, tool_name=name)
        if isinstance(outcome.result, ToolBlocked):
            reason = outcome.result.reason or outcome.output
            logger.info("Agent %s blocked the task: %s", agent.name, reason)
            return await self._end_iteration(
                state, record, IterationSignal.BLOCKED, error=TaskBlockedError(reason)
            )
        await self._feedback(state, record, self.prompts.tool_result(outcome.output))
        return await self._end_iteration(state, record)


def _question_text(parsed: ParsedDecision) -> str:
    value = parsed.action_input
    if isinstance(value, dict):
        value = value.get("question") or value.get("input") or json.dumps(value)
    if value is None or value == "":
        return parsed.thought or ""
    return str(value)


def finalize_answer(answer: Any, task: Task) -> Any:
    """Shape a final answer for the result.

    With an output schema the answer must validate and is returned as a
    plain dict; without one, non-string answers are serialized to JSON.

    Raises:
        pydantic.ValidationError: The answer does not match ``task.output_schema``.
    """
    if task.output_schema is not None:
        if isinstance(answer, str):
            model = task.output_schema.model_validate_json(answer)
        else:
            model = task.output_schema.model_validate(answer)
        return model.model_dump()
    if isinstance(answer, str):
        return answer
    return json.dumps(answer, ensure_ascii=False)
