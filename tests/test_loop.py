"""Tests for taskloop.agent.loop (LoopSupervisor end to end with scripted thinking)."""

from __future__ import annotations

import asyncio
import dataclasses
import json

import pytest
from pydantic import BaseModel

from taskloop.agent.iteration import IterationSignal
from taskloop.agent.loop import LoopMetadata, LoopResult, LoopSupervisor
from taskloop.agent.task import FeedbackStatus, Task
from taskloop.config import LoopConfig
from taskloop.context import Conversation
from taskloop.llm.provider import ThinkResult
from taskloop.parsing.parser import ParseFailure
from taskloop.session.wire import EventType, Wire
from taskloop.status.registry import StatusRegistry
from taskloop.status.rules import TransitionRule, default_rule_table
from taskloop.status.statuses import AgentStatus, StatusEntity, TaskStatus, WorkflowStatus
from taskloop.tool.base import FunctionTool
from taskloop.tool.builtin import BlockTaskTool
from taskloop.tool.dispatcher import ToolFailure, ToolNotFound, ToolSuccess

SEARCH = json.dumps({"thought": "look it up", "action": "search", "actionInput": {"q": "x"}})
DONE = json.dumps({"finalAnswer": "done"})
GARBAGE = "I am not sure what to do here."


def agent_path(registry: StatusRegistry, agent) -> list[str]:
    return [t.to_status for t in registry.history(StatusEntity.AGENT, agent.id)]


def task_path(registry: StatusRegistry, task: Task) -> list[str]:
    return [t.to_status for t in registry.history(StatusEntity.TASK, task.id)]


# ---------------------------------------------------------------------------
# Reference scenarios
# ---------------------------------------------------------------------------


class TestScenarios:
    async def test_tool_then_final_answer(
        self, supervisor, registry, scripted, make_agent, search_tool
    ) -> None:
        provider = scripted(SEARCH, DONE)
        agent = make_agent(provider, tools=[search_tool], max_iterations=3)
        task = Task(description="find x")

        result = await supervisor.run(agent, task)

        assert result.ok
        assert result.result == "done"
        assert result.error is None
        assert result.metadata == LoopMetadata(iterations=2, max_agent_iterations=3)
        assert result.metadata.as_dict() == {"iterations": 2, "maxAgentIterations": 3}
        assert len(provider.calls) == 2

        assert task.status is TaskStatus.DONE
        assert task.result == "done"
        assert task.iteration_count == 2
        assert agent.status is AgentStatus.TASK_COMPLETED

        assert agent_path(registry, agent) == [
            "ITERATION_START",
            "THINKING",
            "THINKING_END",
            "EXECUTING_ACTION",
            "USING_TOOL",
            "USING_TOOL_END",
            "OBSERVATION",
            "ITERATION_END",
            "ITERATION_START",
            "THINKING",
            "THINKING_END",
            "FINAL_ANSWER",
            "ITERATION_END",
            "TASK_COMPLETED",
        ]
        assert task_path(registry, task) == ["TODO", "DOING", "DONE"]

        second_call = provider.calls[1]
        assert [m.role for m in second_call] == ["system", "user", "assistant", "user"]
        assert second_call[-1].content == 'You got this result from the tool: "results for x"'

    async def test_unparsable_output_exhausts_budget(
        self, supervisor, registry, scripted, make_agent
    ) -> None:
        provider = scripted(GARBAGE, GARBAGE, GARBAGE, GARBAGE)
        agent = make_agent(provider, max_iterations=3)
        task = Task(description="find x")

        result = await supervisor.run(agent, task)

        assert result.result is None
        assert result.error_kind == "MaxIterationsError"
        assert result.error == (
            "MaxIterationsError: Task incomplete: reached maximum iterations (3) "
            "without a final answer (iteration 3)"
        )
        assert result.metadata.iterations == 3
        assert len(provider.calls) == 4
        assert task.status is TaskStatus.ERROR
        assert task.error == result.error
        assert agent.status is AgentStatus.MAX_ITERATIONS_ERROR
        assert all(isinstance(r.parse_error, ParseFailure) for r in result.records)
        assert [r.forced for r in result.records] == [False, False, False, True]
        assert "You returned an invalid JSON object" in result.records[0].feedback

    async def test_thinking_failure_is_immediately_terminal(
        self, supervisor, registry, scripted, make_agent
    ) -> None:
        provider = scripted(RuntimeError("provider down"), DONE)
        agent = make_agent(provider, max_iterations=3)
        task = Task(description="find x")

        result = await supervisor.run(agent, task)

        assert result.error_kind == "ThinkingError"
        assert result.error == "ThinkingError: Thinking failed: provider down (iteration 0)"
        assert result.metadata.iterations == 0
        assert len(provider.calls) == 1
        assert agent.status is AgentStatus.AGENTIC_LOOP_ERROR
        assert task.status is TaskStatus.ERROR
        assert agent_path(registry, agent)[-2:] == ["THINKING_ERROR", "AGENTIC_LOOP_ERROR"]


class TestIterationBound:
    @pytest.mark.parametrize("budget", [1, 2, 5])
    async def test_at_most_budget_plus_one_thinking_calls(
        self, supervisor, scripted, make_agent, budget
    ) -> None:
        provider = scripted(*([GARBAGE] * (budget + 1)))
        agent = make_agent(provider, max_iterations=budget)

        result = await supervisor.run(agent, Task(description="loop"))

        assert len(provider.calls) == budget + 1
        assert result.metadata.iterations == budget
        assert result.metadata.max_agent_iterations == budget
        assert result.error_kind == "MaxIterationsError"

    @pytest.mark.parametrize("budget", [1, 3])
    async def test_tool_loops_are_bounded_too(
        self, supervisor, scripted, make_agent, search_tool, budget
    ) -> None:
        provider = scripted(*([SEARCH] * (budget + 1)))
        agent = make_agent(provider, tools=[search_tool], max_iterations=budget)

        result = await supervisor.run(agent, Task(description="loop"))

        assert len(provider.calls) == budget + 1
        assert result.metadata.iterations == budget
        assert all(isinstance(r.tool_outcome, ToolSuccess) for r in result.records[:-1])


# ---------------------------------------------------------------------------
# Decision branches
# ---------------------------------------------------------------------------


class TestBranches:
    async def test_final_answer_on_first_iteration(
        self, supervisor, scripted, make_agent
    ) -> None:
        result = await supervisor.run(make_agent(scripted(DONE)), Task(description="t"))
        assert result.result == "done"
        assert result.metadata.iterations == 1
        assert result.records[0].decision.final_answer == "done"

    async def test_final_answer_wins_over_action(
        self, supervisor, scripted, make_agent
    ) -> None:
        calls = []
        tool = FunctionTool("search", lambda q: calls.append(q) or "hit")
        raw = json.dumps({"action": "search", "actionInput": {"q": "x"}, "finalAnswer": "now"})
        agent = make_agent(scripted(raw), tools=[tool])

        result = await supervisor.run(agent, Task(description="t"))

        assert result.result == "now"
        assert calls == []
        assert result.records[0].tool_outcome is None

    async def test_unknown_tool_consumes_an_iteration(
        self, supervisor, scripted, make_agent, search_tool
    ) -> None:
        raw = json.dumps({"action": "calculator", "actionInput": {"expr": "1+1"}})
        provider = scripted(raw, DONE)
        agent = make_agent(provider, tools=[search_tool])

        result = await supervisor.run(agent, Task(description="t"))

        assert result.result == "done"
        assert result.metadata.iterations == 2
        first = result.records[0]
        assert isinstance(first.tool_outcome, ToolNotFound)
        assert first.feedback.startswith("Hey, the tool calculator does not exist.")
        assert "Available tools: search" in first.feedback

    async def test_tool_error_consumes_an_iteration(
        self, supervisor, scripted, make_agent
    ) -> None:
        def flaky(q: str) -> str:
            raise ConnectionError("upstream reset")

        provider = scripted(SEARCH, DONE)
        agent = make_agent(provider, tools=[FunctionTool("search", flaky)])

        result = await supervisor.run(agent, Task(description="t"))

        assert result.ok
        assert result.metadata.iterations == 2
        first = result.records[0]
        assert isinstance(first.tool_outcome, ToolFailure)
        assert first.feedback.startswith(
            "An error occurred while using the tool search: upstream reset."
        )

    async def test_block_task(self, supervisor, registry, scripted, make_agent) -> None:
        raw = json.dumps({"action": "block_task", "actionInput": {"reason": "no access"}})
        agent = make_agent(scripted(raw), tools=[BlockTaskTool()])
        task = Task(description="t")

        result = await supervisor.run(agent, task)

        assert result.result is None
        assert result.error_kind == "TaskBlockedError"
        assert result.error == "TaskBlockedError: Task blocked by agent: no access (iteration 1)"
        assert task.status is TaskStatus.BLOCKED
        assert agent.status is AgentStatus.DECIDED_TO_BLOCK_TASK
        assert agent_path(registry, agent)[-3:] == [
            "OBSERVATION",
            "ITERATION_END",
            "DECIDED_TO_BLOCK_TASK",
        ]

    async def test_self_question_with_thought(self, supervisor, scripted, make_agent) -> None:
        raw = json.dumps(
            {"thought": "hmm", "action": "self_question", "actionInput": {"question": "why?"}}
        )
        agent = make_agent(scripted(raw, DONE))
        result = await supervisor.run(agent, Task(description="t"))
        assert result.records[0].feedback == "Awesome, please answer yourself the question: why?."
        assert AgentStatus.THOUGHT.value in [
            t.to_status for t in result.records[0].transitions
        ]

    async def test_bare_self_question(self, supervisor, scripted, make_agent) -> None:
        agent = make_agent(scripted('{"action": "self_question"}', DONE))
        result = await supervisor.run(agent, Task(description="t"))
        assert result.records[0].feedback == "Awesome, please answer yourself the question."

    async def test_observation(self, supervisor, scripted, make_agent) -> None:
        agent = make_agent(scripted('{"observation": "the index is stale"}', DONE))
        result = await supervisor.run(agent, Task(description="t"))
        assert result.records[0].feedback.startswith("Great observation.")
        assert result.metadata.iterations == 2

    async def test_weird_output(self, supervisor, scripted, make_agent) -> None:
        agent = make_agent(scripted('{"isFinalAnswerReady": false}', DONE))
        result = await supervisor.run(agent, Task(description="t"))
        assert result.records[0].feedback.startswith("Your latest response does not match")
        assert result.records[0].transitions[-2].to_status == "WEIRD_LLM_OUTPUT"

    async def test_fenced_output_is_recovered(self, supervisor, scripted, make_agent) -> None:
        agent = make_agent(scripted('```json\n{"finalAnswer": "fenced"}\n```'))
        result = await supervisor.run(agent, Task(description="t"))
        assert result.result == "fenced"
        assert result.metadata.iterations == 1

    async def test_recovery_can_be_disabled(self, registry, scripted, make_agent) -> None:
        supervisor = LoopSupervisor(
            registry, config=LoopConfig(force_final_answer=False, recover_malformed_output=False)
        )
        agent = make_agent(scripted('```json\n{"finalAnswer": "fenced"}\n```', DONE))
        result = await supervisor.run(agent, Task(description="t"))
        assert result.result == "done"
        assert result.metadata.iterations == 2


# ---------------------------------------------------------------------------
# Final answers and output schemas
# ---------------------------------------------------------------------------


class Report(BaseModel):
    title: str
    score: int


class TestFinalAnswer:
    async def test_structured_answer_is_json_text(self, supervisor, scripted, make_agent) -> None:
        agent = make_agent(scripted('{"finalAnswer": {"a": 1, "b": [2]}}'))
        result = await supervisor.run(agent, Task(description="t"))
        assert result.result == '{"a": 1, "b": [2]}'

    async def test_schema_mismatch_retries(self, supervisor, scripted, make_agent) -> None:
        provider = scripted(
            '{"finalAnswer": {"title": "x"}}',
            '{"finalAnswer": {"title": "x", "score": 3}}',
        )
        task = Task(description="t", output_schema=Report)

        result = await supervisor.run(make_agent(provider), task)

        assert result.result == {"title": "x", "score": 3}
        assert result.metadata.iterations == 2
        assert result.records[0].feedback.startswith(
            "Your finalAnswer does not match the required output schema."
        )
        assert "OUTPUT_SCHEMA_VALIDATION_ERROR" in [
            t.to_status for t in result.records[0].transitions
        ]

    async def test_schema_accepts_json_string(self, supervisor, scripted, make_agent) -> None:
        raw = json.dumps({"finalAnswer": json.dumps({"title": "y", "score": 1})})
        task = Task(description="t", output_schema=Report)
        result = await supervisor.run(make_agent(scripted(raw)), task)
        assert result.result == {"title": "y", "score": 1}

    async def test_schema_is_in_system_prompt(self, supervisor, scripted, make_agent) -> None:
        provider = scripted('{"finalAnswer": {"title": "x", "score": 1}}')
        await supervisor.run(make_agent(provider), Task(description="t", output_schema=Report))
        assert "must match this JSON schema" in provider.calls[0][0].content


class TestForcedFinalAnswer:
    async def test_forced_attempt_surfaces_answer(
        self, supervisor, scripted, make_agent
    ) -> None:
        provider = scripted(GARBAGE, GARBAGE, '{"finalAnswer": "late"}')
        agent = make_agent(provider, max_iterations=2)
        task = Task(description="t")

        result = await supervisor.run(agent, task)

        assert result.result == "late"
        assert result.error_kind == "MaxIterationsError"
        assert task.result == "late"
        assert task.status is TaskStatus.ERROR
        forced = result.records[-1]
        assert forced.forced is True
        assert forced.raw_text == '{"finalAnswer": "late"}'
        assert provider.calls[-1][-1].content.startswith("We don't have more time")

    async def test_forced_attempt_failure_is_swallowed(
        self, supervisor, scripted, make_agent
    ) -> None:
        provider = scripted(GARBAGE, RuntimeError("boom"))
        result = await supervisor.run(make_agent(provider, max_iterations=1), Task(description="t"))
        assert result.result is None
        assert result.error_kind == "MaxIterationsError"

    async def test_forced_attempt_schema_mismatch_gives_no_result(
        self, supervisor, scripted, make_agent
    ) -> None:
        provider = scripted(GARBAGE, '{"finalAnswer": {"title": "x"}}')
        task = Task(description="t", output_schema=Report)
        result = await supervisor.run(make_agent(provider, max_iterations=1), task)
        assert result.result is None
        assert result.error_kind == "MaxIterationsError"

    async def test_nudge_before_last_iteration(self, registry, scripted, make_agent) -> None:
        supervisor = LoopSupervisor(registry, config=LoopConfig(force_final_answer=True))
        provider = scripted('{"observation": "warming up"}', DONE)
        await supervisor.run(make_agent(provider, max_iterations=3), Task(description="t"))

        assert not any("We don't have more time" in m.content for m in provider.calls[0])
        assert provider.calls[1][-1].content.startswith("We don't have more time")

    async def test_agent_can_opt_out_of_nudge(self, registry, scripted, make_agent) -> None:
        supervisor = LoopSupervisor(registry, config=LoopConfig(force_final_answer=True))
        provider = scripted('{"observation": "warming up"}', DONE)
        agent = make_agent(provider, max_iterations=3, force_final_answer=False)
        await supervisor.run(agent, Task(description="t"))
        assert not any("We don't have more time" in m.content for m in provider.calls[1])


# ---------------------------------------------------------------------------
# Cancellation and timeouts
# ---------------------------------------------------------------------------


class TestCancellation:
    async def test_cancelled_before_start(self, supervisor, scripted, make_agent) -> None:
        provider = scripted(DONE)
        agent = make_agent(provider)
        task = Task(description="t")
        cancel = asyncio.Event()
        cancel.set()

        result = await supervisor.run(agent, task, cancel_event=cancel)

        assert result.error_kind == "LoopCancelledError"
        assert result.metadata.iterations == 0
        assert provider.calls == []
        assert task.status is TaskStatus.ABORTED
        assert agent.status is AgentStatus.TASK_ABORTED

    async def test_cancelled_while_thinking(self, supervisor, slow_provider, make_agent) -> None:
        agent = make_agent(slow_provider)
        task = Task(description="t")
        cancel = asyncio.Event()
        asyncio.get_running_loop().call_later(0.05, cancel.set)

        result = await asyncio.wait_for(
            supervisor.run(agent, task, cancel_event=cancel), timeout=2
        )

        assert result.error == "LoopCancelledError: Task was cancelled (thinking) (iteration 0)"
        assert slow_provider.calls == 1
        assert task.status is TaskStatus.ABORTED
        assert agent.status is AgentStatus.TASK_ABORTED

    async def test_think_timeout(self, registry, slow_provider, make_agent) -> None:
        supervisor = LoopSupervisor(
            registry, config=LoopConfig(force_final_answer=False, think_timeout=0.05)
        )
        result = await supervisor.run(make_agent(slow_provider), Task(description="t"))
        assert result.error == "ThinkingError: Thinking timed out after 0.05s (iteration 0)"
        assert slow_provider.calls == 1

    async def test_workflow_stop_ends_run(
        self, supervisor, registry, scripted, make_agent
    ) -> None:
        registry.register(StatusEntity.WORKFLOW, "wf-1", WorkflowStatus.RUNNING)

        async def stop(q: str) -> str:
            await registry.transition(
                StatusEntity.WORKFLOW, "wf-1", WorkflowStatus.RUNNING, WorkflowStatus.STOPPING
            )
            return "stopping"

        provider = scripted(SEARCH, DONE)
        agent = make_agent(provider, tools=[FunctionTool("search", stop)])
        task = Task(description="t")

        result = await supervisor.run(agent, task, workflow_id="wf-1")

        assert result.error == "LoopCancelledError: Workflow wf-1 is STOPPING (iteration 1)"
        assert len(provider.calls) == 1
        assert task.status is TaskStatus.ABORTED

    async def test_cancelled_during_forced_attempt(self, supervisor, registry, make_agent) -> None:
        cancel = asyncio.Event()

        class CancelOnSecondCall:
            calls = 0

            async def think(self, messages, **options) -> ThinkResult:
                self.calls += 1
                if self.calls == 2:
                    cancel.set()
                    await asyncio.sleep(5)
                return ThinkResult(raw_text=GARBAGE)

        provider = CancelOnSecondCall()
        agent = make_agent(provider, max_iterations=1)
        task = Task(description="t")

        result = await supervisor.run(agent, task, cancel_event=cancel)

        assert result.error == (
            "LoopCancelledError: Task was cancelled (forced final answer) (iteration 1)"
        )
        assert provider.calls == 2
        assert agent.status is AgentStatus.TASK_ABORTED
        assert task.status is TaskStatus.ABORTED
        assert agent_path(registry, agent)[-2:] == ["ITERATION_END", "TASK_ABORTED"]
        assert "MAX_ITERATIONS_ERROR" not in agent_path(registry, agent)

    async def test_cancelling_the_run_stops_thinking(self, supervisor, make_agent) -> None:
        seen: dict[str, bool] = {"cancelled": False}

        class Hanging:
            async def think(self, messages, **options) -> ThinkResult:
                try:
                    await asyncio.sleep(5)
                except asyncio.CancelledError:
                    seen["cancelled"] = True
                    raise
                return ThinkResult(raw_text=DONE)

        run = asyncio.ensure_future(
            supervisor.run(
                make_agent(Hanging()), Task(description="t"), cancel_event=asyncio.Event()
            )
        )
        await asyncio.sleep(0.05)
        run.cancel()
        with pytest.raises(asyncio.CancelledError):
            await run
        await asyncio.sleep(0.01)

        assert seen["cancelled"] is True


# ---------------------------------------------------------------------------
# Status registry interaction
# ---------------------------------------------------------------------------


class TestStatusIntegration:
    async def test_strict_rejection_aborts_run(self, scripted, make_agent) -> None:
        registry = StatusRegistry(default_rule_table(strict_entities=[StatusEntity.AGENT]))
        supervisor = LoopSupervisor(registry, config=LoopConfig(force_final_answer=False))
        provider = scripted(DONE)
        agent = make_agent(provider)
        agent.status = AgentStatus.THINKING

        result = await supervisor.run(agent, Task(description="t"))

        assert result.error_kind == "InvalidTransitionError"
        assert "INVALID_TRANSITION" in result.error
        assert provider.calls == []
        assert agent.status is AgentStatus.AGENTIC_LOOP_ERROR

    async def test_failed_validation_aborts_run(self, scripted, make_agent) -> None:
        table = default_rule_table()
        table.rules[StatusEntity.TASK].insert(
            0,
            TransitionRule(
                sources=frozenset({"PENDING"}),
                targets=frozenset({"TODO"}),
                validate=lambda request: False,
            ),
        )
        supervisor = LoopSupervisor(
            StatusRegistry(table), config=LoopConfig(force_final_answer=False)
        )
        provider = scripted(DONE)
        task = Task(description="t")

        result = await supervisor.run(make_agent(provider), task)

        assert result.error == (
            "InvalidTransitionError: VALIDATION_FAILED: Validation rejected "
            "PENDING -> TODO (iteration 0)"
        )
        assert provider.calls == []
        assert task.status is TaskStatus.PENDING

    async def test_status_events_reach_the_wire(
        self, registry, loop_config, scripted, make_agent
    ) -> None:
        wire = Wire()
        queue = wire.subscribe()
        supervisor = LoopSupervisor(registry, config=loop_config, wire=wire)
        unsubscribe = wire.attach(registry)
        task = Task(description="t")

        await supervisor.run(make_agent(scripted(DONE)), task)
        unsubscribe()
        wire.close()

        events = []
        while (event := queue.get_nowait()) is not None:
            events.append(event)
        types = [e.type for e in events]
        assert types[0] is EventType.RUN_BEGIN
        assert types[-1] is EventType.RUN_END
        assert EventType.FINAL_ANSWER in types
        task_updates = [
            e.data["to_status"]
            for e in events
            if e.type is EventType.STATUS and e.data["entity"] == "task"
        ]
        assert task_updates == ["TODO", "DOING", "DONE"]
        assert events[-1].data["iterations"] == 1


# ---------------------------------------------------------------------------
# Results, reuse, concurrency, feedback
# ---------------------------------------------------------------------------


class TestResults:
    async def test_result_is_frozen(self, supervisor, scripted, make_agent) -> None:
        result = await supervisor.run(make_agent(scripted(DONE)), Task(description="t"))
        assert isinstance(result, LoopResult)
        with pytest.raises(dataclasses.FrozenInstanceError):
            result.error = "changed"  # type: ignore[misc]

    async def test_usage_is_summed(self, supervisor, scripted, make_agent, search_tool) -> None:
        agent = make_agent(scripted(SEARCH, DONE), tools=[search_tool])
        result = await supervisor.run(agent, Task(description="t"))
        assert result.usage.input_tokens == 20
        assert result.usage.total_tokens == 30

    async def test_records_carry_transitions(self, supervisor, scripted, make_agent) -> None:
        result = await supervisor.run(make_agent(scripted(DONE)), Task(description="t"))
        record = result.records[0]
        assert record.index == 0
        assert record.transition.to_status == "ITERATION_END"
        assert record.status_errors == []

    async def test_agent_reused_across_tasks(self, supervisor, scripted, make_agent) -> None:
        agent = make_agent(scripted(DONE, '{"finalAnswer": "again"}'))
        first = await supervisor.run(agent, Task(description="one"))
        second = await supervisor.run(agent, Task(description="two"))
        assert first.result == "done"
        assert second.result == "again"
        assert second.records[0].status_errors == []

    async def test_concurrent_runs_are_isolated(
        self, supervisor, scripted, make_agent, search_tool
    ) -> None:
        slow = make_agent(scripted(SEARCH, SEARCH, DONE), tools=[search_tool])
        fast = make_agent(scripted(DONE), tools=[search_tool])

        slow_result, fast_result = await asyncio.gather(
            supervisor.run(slow, Task(description="slow")),
            supervisor.run(fast, Task(description="fast")),
        )

        assert slow_result.metadata.iterations == 3
        assert fast_result.metadata.iterations == 1
        assert slow_result.ok and fast_result.ok

    async def test_transcript_written(
        self, registry, loop_config, scripted, make_agent, search_tool, tmp_path
    ) -> None:
        supervisor = LoopSupervisor(
            registry, config=loop_config, transcript_dir=str(tmp_path / "runs")
        )
        agent = make_agent(scripted(SEARCH, DONE), tools=[search_tool])
        task = Task(description="t")

        await supervisor.run(agent, task)

        path = tmp_path / "runs" / f"{task.id}-{agent.id}.jsonl"
        restored = await Conversation.restore(path)
        assert [m.role for m in restored.messages] == [
            "system",
            "user",
            "assistant",
            "user",
            "assistant",
        ]
        assert restored.messages[-1].content == DONE

    async def test_context_and_expected_output_in_first_message(
        self, supervisor, scripted, make_agent
    ) -> None:
        provider = scripted(DONE)
        task = Task(description="summarize", expected_output="three bullets", context="x=1")
        await supervisor.run(make_agent(provider), task)
        first_user = provider.calls[0][1].content
        assert first_user.startswith("Hi tester, please complete the following task: summarize.")
        assert 'Your expected output should be: "three bullets".' in first_user
        assert 'Use these findings from previous tasks: "x=1".' in first_user


class TestWorkOnFeedback:
    async def test_feedback_rerun(self, supervisor, registry, scripted, make_agent) -> None:
        provider = scripted(DONE, '{"finalAnswer": "revised"}')
        agent = make_agent(provider)
        task = Task(description="t")
        await supervisor.run(agent, task)

        entry = task.add_feedback("Use a friendlier tone")
        result = await supervisor.work_on_feedback(agent, task)

        assert result.result == "revised"
        assert entry.status is FeedbackStatus.PROCESSED
        assert task.pending_feedback() == []
        assert task.status is TaskStatus.DONE
        assert task_path(registry, task) == ["TODO", "DOING", "DONE", "REVISE", "DOING", "DONE"]
        contents = [m.content for m in provider.calls[1]]
        assert "Here is some feedback for you to address: Use a friendlier tone" in contents

    def test_iteration_signal_values(self) -> None:
        assert {s.value for s in IterationSignal} == {
            "continue",
            "final_answer",
            "blocked",
            "error",
        }
