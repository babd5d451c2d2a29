"""Output parser — turns raw model text into a structured decision.

The model is prompted to answer with a single JSON object using the keys
``thought``, ``action``, ``actionInput``, ``observation``,
``isFinalAnswerReady`` and ``finalAnswer``. The parser never raises: it
returns either a ``ParsedDecision`` or a ``ParseFailure``.
"""

from __future__ import annotations

import enum
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from taskloop.errors import ParsingError
from taskloop.parsing.sanitizers import DEFAULT_SANITIZERS, Sanitizer, apply_sanitizers

logger = logging.getLogger(__name__)

SELF_QUESTION_ACTION = "self_question"


class DecisionBranch(enum.Enum):
    """Which way the loop should go for a parsed decision."""

    FINAL_ANSWER = "final_answer"
    ACTION = "action"
    SELF_QUESTION = "self_question"
    OBSERVATION = "observation"
    NONE = "none"


class ParsedDecision(BaseModel):
    """One reasoning step from the model. Unknown keys are kept as extras."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    thought: str | None = None
    action: str | None = None
    action_input: Any = Field(default=None, alias="actionInput")
    observation: str | None = None
    is_final_answer_ready: bool | None = Field(
        default=None, alias="isFinalAnswerReady"
    )
    final_answer: Any = Field(default=None, alias="finalAnswer")

    @field_validator("thought", "action", "observation", mode="before")
    @classmethod
    def _as_text(cls, value: Any) -> Any:
        """Models sometimes send numbers, lists or objects for text keys."""
        if value is None or isinstance(value, str):
            return value
        try:
            return json.dumps(value, ensure_ascii=False)
        except (TypeError, ValueError):
            return str(value)

    @field_validator("is_final_answer_ready", mode="before")
    @classmethod
    def _as_flag(cls, value: Any) -> Any:
        if value is None or isinstance(value, bool):
            return value
        if isinstance(value, (int, float)):
            return bool(value)
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in ("true", "yes", "1"):
                return True
            if lowered in ("false", "no", "0", ""):
                return False
        return None

    @property
    def has_final_answer(self) -> bool:
        return self.final_answer is not None and self.final_answer != ""

    @property
    def extras(self) -> dict[str, Any]:
        return dict(self.model_extra or {})

    @property
    def branch(self) -> DecisionBranch:
        """``finalAnswer`` wins over ``action`` when both are present."""
        if self.has_final_answer:
            return DecisionBranch.FINAL_ANSWER
        if self.action:
            if self.action == SELF_QUESTION_ACTION:
                return DecisionBranch.SELF_QUESTION
            return DecisionBranch.ACTION
        if self.observation:
            return DecisionBranch.OBSERVATION
        return DecisionBranch.NONE

    def tool_input(self) -> dict[str, Any]:
        """``actionInput`` normalized to a dict for tool invocation."""
        if self.action_input is None:
            return {}
        if isinstance(self.action_input, dict):
            return self.action_input
        if isinstance(self.action_input, str):
            try:
                loaded = json.loads(self.action_input)
            except json.JSONDecodeError:
                return {"input": self.action_input}
            if isinstance(loaded, dict):
                return loaded
            return {"input": loaded}
        return {"input": self.action_input}


@dataclass
class ParseFailure:
    """Raw text that could not be parsed, with a best guess at where."""

    text: str
    message: str
    position: int | None = None
    line: int | None = None
    column: int | None = None
    partial: dict[str, Any] = field(default_factory=dict)
    recovered_text: str | None = None

    def to_exception(self) -> ParsingError:
        return ParsingError(self.message, position=self.position, partial=self.partial)


ParseResult = Union[ParsedDecision, ParseFailure]


# Field-level patterns used to salvage partial structure from broken output.
_PARTIAL_PATTERNS: dict[str, re.Pattern[str]] = {
    "thought": re.compile(r'"thought"\s*:\s*"([^"]*)"'),
    "action": re.compile(r'"action"\s*:\s*"([^"]*)"'),
    "actionInput": re.compile(r'"actionInput"\s*:\s*(\{[^}]*\})'),
    "observation": re.compile(r'"observation"\s*:\s*"([^"]*)"'),
    "isFinalAnswerReady": re.compile(r'"isFinalAnswerReady"\s*:\s*(true|false)'),
    "finalAnswer": re.compile(r'"finalAnswer"\s*:\s*"([^"]*)"'),
}


def extract_partial(text: str) -> dict[str, Any]:
    """Pull whatever recognizable key/value pairs survive in ``text``."""
    result: dict[str, Any] = {}
    for key, pattern in _PARTIAL_PATTERNS.items():
        match = pattern.search(text)
        if not match:
            continue
        value = match.group(1)
        if key == "actionInput":
            try:
                result[key] = json.loads(value.replace("'", '"'))
            except json.JSONDecodeError:
                result[key] = None
        elif key == "isFinalAnswerReady":
            result[key] = value == "true"
        else:
            result[key] = value
    return result


class _Rejected(Exception):
    def __init__(self, message: str, error: json.JSONDecodeError | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.error = error


class OutputParser:
    """Parse model output into a ``ParsedDecision``.

    Args:
        sanitizers: Ordered text fixes applied once when the primary parse
            fails. Pass an empty tuple to disable recovery.
        recover: Whether to attempt recovery at all.
    """

    def __init__(
        self,
        sanitizers: tuple[Sanitizer, ...] = DEFAULT_SANITIZERS,
        recover: bool = True,
    ) -> None:
        self.sanitizers = tuple(sanitizers)
        self.recover = recover

    def parse(self, raw_text: str) -> ParseResult:
        text = raw_text if isinstance(raw_text, str) else str(raw_text)
        try:
            return self._parse_record(text)
        except _Rejected as primary:
            failure = self._failure(text, primary)

        if not (self.recover and self.sanitizers):
            return failure

        try:
            recovered = apply_sanitizers(text, self.sanitizers)
        except Exception as e:
            logger.error("Sanitizer failed: %s", e, exc_info=True)
            return failure

        try:
            decision = self._parse_record(recovered)
        except _Rejected as retry:
            logger.debug("Recovery failed: %s", retry.message)
            failure.recovered_text = recovered
            return failure

        logger.info("Recovered malformed model output with sanitizers")
        return decision

    def _parse_record(self, text: str) -> ParsedDecision:
        try:
            data = json.loads(text.strip())
        except json.JSONDecodeError as e:
            raise _Rejected(f"Invalid JSON: {e.msg}", e) from e
        except (TypeError, ValueError) as e:
            raise _Rejected(f"Invalid JSON: {e}") from e

        if not isinstance(data, dict):
            raise _Rejected(
                f"Expected a JSON object, got {type(data).__name__}"
            )
        try:
            return ParsedDecision.model_validate(data)
        except ValidationError as e:
            raise _Rejected(f"Unexpected field types: {e.error_count()} error(s)") from e

    def _failure(self, text: str, rejected: _Rejected) -> ParseFailure:
        error = rejected.error
        return ParseFailure(
            text=text,
            message=rejected.message,
            position=error.pos if error else None,
            line=error.lineno if error else None,
            column=error.colno if error else None,
            partial=extract_partial(text),
        )


def parse_output(raw_text: str, recover: bool = True) -> ParseResult:
    """Parse with the default sanitizers."""
    return OutputParser(recover=recover).parse(raw_text)
