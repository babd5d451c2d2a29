"""Conversation — per-run message history with an optional JSONL transcript."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path

import aiofiles

from taskloop.llm.message import Message

logger = logging.getLogger(__name__)


@dataclass
class Conversation:
    """Conversation history owned by a single loop run.

    When ``path`` is set, every appended message is also written as one JSON
    line, so a transcript survives the process.
    """

    path: Path | None = None
    messages: list[Message] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.path is not None:
            self.path = Path(self.path)

    async def append(self, message: Message) -> None:
        """Append a message and persist it if a transcript path is set."""
        self.messages.append(message)
        if self.path is not None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(self.path, "a", encoding="utf-8") as f:
                await f.write(json.dumps(message.to_dict(), ensure_ascii=False) + "\n")

    async def add_system(self, text: str) -> None:
        await self.append(Message.system(text))

    async def add_user(self, text: str, **metadata) -> None:
        await self.append(Message.user(text, **metadata))

    async def add_assistant(self, text: str, **metadata) -> None:
        await self.append(Message.assistant(text, **metadata))

    def get_messages(self) -> list[Message]:
        """Snapshot of the history for the thinking capability."""
        return list(self.messages)

    @property
    def last(self) -> Message | None:
        return self.messages[-1] if self.messages else None

    def __len__(self) -> int:
        return len(self.messages)

    def estimate_tokens(self) -> int:
        """Rough token estimate: ~4 characters per token."""
        return sum(len(m.content) for m in self.messages) // 4

    @classmethod
    async def restore(cls, path: Path) -> Conversation:
        """Load a transcript written by ``append``; malformed lines are skipped."""
        path = Path(path)
        conversation = cls(path=path)
        if not path.exists():
            return conversation

        async with aiofiles.open(path, "r", encoding="utf-8") as f:
            async for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    data = json.loads(line)
                except json.JSONDecodeError:
                    logger.warning("Skipping malformed JSONL line in %s", path)
                    continue
                if isinstance(data, dict) and "role" in data:
                    conversation.messages.append(Message.from_dict(data))
        return conversation
