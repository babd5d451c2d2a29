"""Output parsing — model text to structured decisions, with recovery."""

from taskloop.parsing.parser import (
    SELF_QUESTION_ACTION,
    DecisionBranch,
    OutputParser,
    ParsedDecision,
    ParseFailure,
    extract_partial,
    parse_output,
)
from taskloop.parsing.sanitizers import DEFAULT_SANITIZERS

__all__ = [
    "DEFAULT_SANITIZERS",
    "SELF_QUESTION_ACTION",
    "DecisionBranch",
    "OutputParser",
    "ParsedDecision",
    "ParseFailure",
    "extract_partial",
    "parse_output",
]
