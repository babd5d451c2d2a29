"""Tests for taskloop.llm.message."""

from __future__ import annotations

from types import SimpleNamespace

from taskloop.llm.message import Message, TokenUsage


# ---------------------------------------------------------------------------
# TokenUsage
# ---------------------------------------------------------------------------


class TestTokenUsage:
    def test_defaults(self) -> None:
        usage = TokenUsage()
        assert usage.input_tokens == 0
        assert usage.output_tokens == 0
        assert usage.total_tokens == 0

    def test_add(self) -> None:
        total = TokenUsage(10, 5, 15) + TokenUsage(1, 2, 3)
        assert total == TokenUsage(11, 7, 18)

    def test_from_dict(self) -> None:
        usage = TokenUsage.from_response(
            {"prompt_tokens": 100, "completion_tokens": 50, "total_tokens": 150}
        )
        assert usage == TokenUsage(100, 50, 150)

    def test_from_object(self) -> None:
        usage = TokenUsage.from_response(
            SimpleNamespace(prompt_tokens=7, completion_tokens=3, total_tokens=None)
        )
        assert usage.total_tokens == 10

    def test_from_none(self) -> None:
        assert TokenUsage.from_response(None) == TokenUsage()


# ---------------------------------------------------------------------------
# Message
# ---------------------------------------------------------------------------


class TestMessage:
    def test_constructors(self) -> None:
        assert Message.system("sys").role == "system"
        user = Message.user("hi", kind="feedback", iteration=2)
        assert user.role == "user"
        assert user.metadata == {"kind": "feedback", "iteration": 2}
        assert Message.assistant("{}").content == "{}"

    def test_openai_dict_drops_metadata(self) -> None:
        msg = Message.user("hello", kind="initial")
        assert msg.to_openai_dict() == {"role": "user", "content": "hello"}

    def test_dict_round_trip(self) -> None:
        msg = Message.assistant('{"finalAnswer": "x"}', iteration=0)
        assert Message.from_dict(msg.to_dict()) == msg

    def test_from_dict_tolerates_missing_fields(self) -> None:
        msg = Message.from_dict({"role": "user", "content": None})
        assert msg.content == ""
        assert msg.metadata == {}
