"""Observation truncation — bound tool output before it re-enters the conversation."""

from __future__ import annotations

import os
import re
import tempfile

MAX_LINES = 500
MAX_CHARS = 20_000
OVERFLOW_DIR = "~/.taskloop/observations"

_ANSI_RE = re.compile(r"\x1b\[[0-9;]*[a-zA-Z]")


def truncate_observation(
    text: str,
    max_lines: int = MAX_LINES,
    max_chars: int = MAX_CHARS,
    save_full: bool = False,
) -> str:
    """Shorten ``text`` to fit the observation budget.

    The head and the tail are kept (tool output tends to put the summary at
    one end and errors at the other) and a notice replaces the middle. When
    ``save_full`` is set the untouched text is written to a temp file whose
    path is included in the notice.
    """
    if not text:
        return text

    lines = text.split("\n")
    if len(lines) <= max_lines and len(text) <= max_chars:
        return text

    full_path = _save_to_temp(text) if save_full else None

    if len(lines) > max_lines:
        head_n = max_lines // 2
        tail_n = max_lines - head_n
        kept_head, kept_tail = lines[:head_n], lines[-tail_n:] if tail_n else []
        skipped_lines = len(lines) - head_n - tail_n
    else:
        kept_head, kept_tail = lines, []
        skipped_lines = 0

    head = "\n".join(kept_head)
    tail = "\n".join(kept_tail)
    budget = max(max_chars, 0)
    skipped_chars = 0
    if len(head) + len(tail) > budget:
        half = budget // 2
        original = len(head) + len(tail)
        if not tail:
            # One oversized block: keep both of its ends.
            tail = head
        head = head[:half]
        tail = tail[-(budget - half) :] if budget - half > 0 else ""
        skipped_chars = original - len(head) - len(tail)

    parts = []
    if skipped_lines:
        parts.append(f"{skipped_lines} lines")
    if skipped_chars:
        parts.append(f"{skipped_chars} characters")
    notice = f"[... observation truncated: {', '.join(parts)} omitted ...]"
    if full_path:
        notice += f"\n[Full output saved to: {full_path}]"

    return "\n".join(p for p in (head, notice, tail) if p)


def strip_ansi(text: str) -> str:
    """Strip ANSI escape sequences from text."""
    return _ANSI_RE.sub("", text)


def _save_to_temp(text: str) -> str:
    directory = os.path.expanduser(OVERFLOW_DIR)
    os.makedirs(directory, exist_ok=True)
    fd, path = tempfile.mkstemp(prefix="observation-", suffix=".txt", dir=directory)
    with os.fdopen(fd, "w") as f:
        f.write(text)
    return path
