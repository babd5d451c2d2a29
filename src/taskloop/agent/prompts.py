"""Prompt and feedback texts used by the loop.

Every message the loop injects into a conversation comes from a
``PromptTemplates`` instance, so callers can swap wording without touching
control flow.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from taskloop.agent.agent import Agent
    from taskloop.agent.task import Task
    from taskloop.parsing.parser import ParseFailure

OUTPUT_FORMAT = """\
## Format of your output

Return exactly one JSON object, in one of these shapes:

Thought + Action (use a tool, or "self_question" to ask yourself a follow-up):
{"thought": "what to do next", "action": "tool name", "actionInput": {...}}

Observation (reflect on the last result):
{"observation": "what the result tells you", "isFinalAnswerReady": false}

Final Answer:
{"finalAnswer": "the final answer to the task"}

Return only the JSON object, with no prose or code fences around it."""


@dataclass
class PromptTemplates:
    """Default texts; subclass or replace fields to customize."""

    output_format: str = OUTPUT_FORMAT

    def system_message(self, agent: Agent, task: Task) -> str:
        tool_lines = agent.tools.prompt_lines()
        tools = (
            "\n".join(f"- {line}" for line in tool_lines)
            if tool_lines
            else "No tools available. Reply using your own knowledge."
        )
        parts = [f"You are {agent.name}."]
        if agent.config.role:
            parts.append(f"Your role is: {agent.config.role}.")
        if agent.config.background:
            parts.append(f"Your background is: {agent.config.background}.")
        if agent.config.goal:
            parts.append(f"Your main goal is: {agent.config.goal}.")
        if agent.system_prompt:
            parts.append(agent.system_prompt)
        parts.append(
            "## Tools available for your use\n\n"
            f"{tools}\n\n"
            "You ONLY have access to the tools above; never make up tools."
        )
        parts.append(self.output_format)
        if task.expected_output:
            parts.append(f"Expected output for the final answer: {task.expected_output}")
        if task.output_schema is not None:
            schema = json.dumps(task.output_schema.model_json_schema())
            parts.append(f"The finalAnswer must match this JSON schema: {schema}")
        return "\n\n".join(parts)

    def initial_message(self, agent: Agent, task: Task) -> str:
        text = f"Hi {agent.name}, please complete the following task: {task.description}."
        if task.expected_output:
            text += f'\nYour expected output should be: "{task.expected_output}".'
        if task.context:
            text += f'\nUse these findings from previous tasks: "{task.context}".'
        return text

    def invalid_output(self, failure: ParseFailure) -> str:
        where = f" (line {failure.line}, column {failure.column})" if failure.line else ""
        return (
            f"You returned an invalid JSON object{where}: {failure.message}. "
            "Please reply with a single valid JSON object and nothing else. "
            'E.g: {"finalAnswer": "The final answer"}'
        )

    def thought_with_question(self, question: str) -> str:
        return f"Awesome, please answer yourself the question: {question}."

    def thought(self, thought: str) -> str:
        return "Your thoughts are great, let's keep going."

    def self_question(self) -> str:
        return "Awesome, please answer yourself the question."

    def tool_result(self, output: str) -> str:
        return f"You got this result from the tool: {json.dumps(output, ensure_ascii=False)}"

    def tool_error(self, tool_name: str, error: Any) -> str:
        return (
            f"An error occurred while using the tool {tool_name}: {error}. "
            "Please try again or use a different method."
        )

    def tool_not_found(self, tool_name: str, available: list[str]) -> str:
        names = ", ".join(available) if available else "none"
        return (
            f"Hey, the tool {tool_name} does not exist. Available tools: {names}. "
            "Please find another way."
        )

    def observation(self) -> str:
        return "Great observation. Please keep going. Let's get to the final answer."

    def weird_output(self) -> str:
        return (
            "Your latest response does not match the way you are expected to "
            "output information. Please correct it."
        )

    def schema_error(self, errors: str, schema: dict[str, Any]) -> str:
        return (
            "Your finalAnswer does not match the required output schema. "
            f"Errors: {errors}. Schema: {json.dumps(schema)}. "
            "Please return a corrected finalAnswer."
        )

    def force_final_answer(self, iterations: int, max_iterations: int) -> str:
        return (
            "We don't have more time to keep looking for the answer. Please use "
            "all the information you have gathered until now and give the "
            "finalAnswer right away."
        )

    def work_on_feedback(self, feedback: str) -> str:
        return f"Here is some feedback for you to address: {feedback}"
