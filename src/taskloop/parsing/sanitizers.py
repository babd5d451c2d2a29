"""Text sanitizers used to recover structure from malformed model output.

Each sanitizer is a plain ``str -> str`` function. The parser applies them in
order, feeding each one the output of the previous. The structural fixes only
touch text outside double-quoted string literals, so answers that contain
commas, colons or ``True`` survive recovery unchanged.
"""

from __future__ import annotations

import functools
import re
from typing import Callable

Sanitizer = Callable[[str], str]

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*\n?(.*?)\n?\s*```", re.DOTALL)
_STRING_RE = re.compile(r'"(?:\\.|[^"\\])*"')
_PLACEHOLDER_RE = re.compile(r'"\x00(\d+)\x00"')


def _outside_strings(fn: Sanitizer) -> Sanitizer:
    """Run ``fn`` with every string literal swapped for a short placeholder."""

    @functools.wraps(fn)
    def wrapper(text: str) -> str:
        literals: list[str] = []

        def stash(match: re.Match[str]) -> str:
            literals.append(match.group(0))
            return f'"\x00{len(literals) - 1}\x00"'

        fixed = fn(_STRING_RE.sub(stash, text))
        return _PLACEHOLDER_RE.sub(lambda m: literals[int(m.group(1))], fixed)

    return wrapper


def strip_code_fence(text: str) -> str:
    """Keep only the body of the first ```json fenced block, if any."""
    match = _FENCE_RE.search(text)
    if match:
        return match.group(1)
    return text


def extract_json_object(text: str) -> str:
    """Cut away prose around the outermost ``{ ... }``."""
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end < start:
        return text
    return text[start : end + 1]


def normalize_newlines(text: str) -> str:
    """Replace raw newlines (illegal inside JSON strings) with spaces."""
    return text.replace("\r\n", " ").replace("\n", " ").replace("\t", " ")


@_outside_strings
def remove_trailing_commas(text: str) -> str:
    return re.sub(r",\s*([}\]])", r"\1", text)


@_outside_strings
def insert_missing_commas(text: str) -> str:
    """Add a comma between adjacent values such as ``"a" "b"`` or ``} {``."""
    text = re.sub(r'([}\]"])(\s+)(?=["{\[])', r"\1,\2", text)
    text = re.sub(r"(\btrue|\bfalse|\bnull|\d)(\s+)(?=\")", r"\1,\2", text)
    return text


@_outside_strings
def quote_bare_keys(text: str) -> str:
    """Quote unquoted or single-quoted object keys."""
    return re.sub(
        r"([{,]\s*)'?([A-Za-z_][A-Za-z0-9_]*)'?(\s*):",
        r'\1"\2"\3:',
        text,
    )


@_outside_strings
def python_literals(text: str) -> str:
    """Map Python-style ``True``/``False``/``None`` to JSON literals."""
    text = re.sub(r"(:\s*)True\b", r"\1true", text)
    text = re.sub(r"(:\s*)False\b", r"\1false", text)
    return re.sub(r"(:\s*)None\b", r"\1null", text)


DEFAULT_SANITIZERS: tuple[Sanitizer, ...] = (
    strip_code_fence,
    extract_json_object,
    normalize_newlines,
    python_literals,
    quote_bare_keys,
    insert_missing_commas,
    remove_trailing_commas,
)


def apply_sanitizers(text: str, sanitizers: tuple[Sanitizer, ...]) -> str:
    for sanitize in sanitizers:
        text = sanitize(text)
    return text
