"""Message types exchanged with the thinking capability."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Literal

Role = Literal["system", "user", "assistant"]


@dataclass
class TokenUsage:
    """Token usage stats from an LLM call."""

    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0

    def __add__(self, other: TokenUsage) -> TokenUsage:
        return TokenUsage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )

    @classmethod
    def from_response(cls, usage: Any) -> TokenUsage:
        """Build from a litellm/OpenAI ``usage`` object or dict (None-safe)."""
        if usage is None:
            return cls()

        def _get(name: str) -> int:
            value = usage.get(name) if isinstance(usage, dict) else getattr(usage, name, 0)
            return int(value or 0)

        prompt = _get("prompt_tokens")
        completion = _get("completion_tokens")
        return cls(
            input_tokens=prompt,
            output_tokens=completion,
            total_tokens=_get("total_tokens") or prompt + completion,
        )


@dataclass
class Message:
    """A single conversation message."""

    role: Role
    content: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)

    # --- Convenience constructors ---

    @classmethod
    def system(cls, text: str) -> Message:
        return cls(role="system", content=text)

    @classmethod
    def user(cls, text: str, **metadata: Any) -> Message:
        return cls(role="user", content=text, metadata=metadata)

    @classmethod
    def assistant(cls, text: str, **metadata: Any) -> Message:
        return cls(role="assistant", content=text, metadata=metadata)

    def to_openai_dict(self) -> dict[str, Any]:
        """Convert to the chat-completions wire format (metadata dropped)."""
        return {"role": self.role, "content": self.content}

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Message:
        return cls(
            role=data["role"],
            content=data.get("content") or "",
            metadata=dict(data.get("metadata") or {}),
        )
