"""Configuration — Pydantic models for taskloop settings."""

from __future__ import annotations

import json
import os
from typing import Any

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

from taskloop.status.statuses import StatusEntity


class LLMConfig(BaseModel):
    """LLM provider configuration.

    Model names use litellm's provider-prefix format:
        "openai/gpt-4o-mini"
        "anthropic/claude-sonnet-4-5-20250929"
        "gemini/gemini-2.5-flash"

    API keys are read from env vars automatically by litellm
    (ANTHROPIC_API_KEY, GEMINI_API_KEY, OPENAI_API_KEY).
    """

    model: str = Field(default="openai/gpt-4o-mini")
    temperature: float | None = Field(default=None)
    max_tokens: int | None = Field(default=None)
    reasoning_effort: str | None = Field(
        default=None,
        description="Reasoning effort level: 'low', 'medium', or 'high'.",
    )
    json_mode: bool = Field(
        default=True, description="Request JSON-object responses from the provider"
    )


class LoopConfig(BaseModel):
    """Agentic loop settings."""

    max_iterations: int = Field(
        default=10, ge=1, description="Default iteration budget per task"
    )
    think_timeout: float | None = Field(
        default=120.0, description="Seconds allowed per thinking call (None = no limit)"
    )
    tool_timeout: float | None = Field(
        default=60.0, description="Seconds allowed per tool call (None = no limit)"
    )
    force_final_answer: bool = Field(
        default=True,
        description="Ask for a final answer one iteration before the budget runs out",
    )
    recover_malformed_output: bool = Field(
        default=True, description="Sanitize and re-parse malformed model output"
    )
    max_observation_chars: int = Field(
        default=20_000, ge=1, description="Observations longer than this are truncated"
    )
    max_observation_lines: int = Field(default=500, ge=1)


class StatusConfig(BaseModel):
    """Status registry settings."""

    max_history: int = Field(default=1000, ge=1)
    validation_timeout: float | None = Field(default=5.0)
    lock_timeout: float | None = Field(default=5.0)
    allow_concurrent_transitions: bool = Field(default=False)
    strict_entities: list[StatusEntity] = Field(
        default_factory=list,
        description="Entity kinds whose rejected transitions abort the loop",
    )

    @field_validator("strict_entities", mode="before")
    @classmethod
    def _split_entities(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [v.strip().lower() for v in value.split(",") if v.strip()]
        return value


class TaskloopConfig(BaseModel):
    """Top-level taskloop configuration."""

    llm: LLMConfig = Field(default_factory=LLMConfig)
    loop: LoopConfig = Field(default_factory=LoopConfig)
    status: StatusConfig = Field(default_factory=StatusConfig)
    agents_dir: str = Field(
        default="agents", description="Directory for agent definitions"
    )
    transcript_dir: str | None = Field(
        default=None, description="Write a JSONL transcript per run here"
    )

    @classmethod
    def load(cls, config_path: str | None = None) -> TaskloopConfig:
        """Load config from file, env vars, or defaults.

        Priority: env vars > config file > defaults.

        Env vars:
            TASKLOOP_MODEL             - Model (litellm format with provider prefix)
            TASKLOOP_MAX_ITERATIONS    - Default iteration budget
            TASKLOOP_THINK_TIMEOUT     - Seconds per thinking call
            TASKLOOP_TOOL_TIMEOUT      - Seconds per tool call
            TASKLOOP_REASONING_EFFORT  - Reasoning effort (low/medium/high)
        """
        # .env values take precedence over stale shell exports.
        load_dotenv(override=True)

        config_data: dict[str, Any] = {}
        if config_path and os.path.exists(config_path):
            with open(config_path) as f:
                config_data = json.load(f)

        llm = config_data.get("llm", {})
        loop = config_data.get("loop", {})

        env_model = os.environ.get("TASKLOOP_MODEL")
        if env_model:
            llm["model"] = env_model

        env_reasoning_effort = os.environ.get("TASKLOOP_REASONING_EFFORT")
        if env_reasoning_effort:
            llm["reasoning_effort"] = env_reasoning_effort.lower()

        env_max_iterations = os.environ.get("TASKLOOP_MAX_ITERATIONS")
        if env_max_iterations:
            loop["max_iterations"] = int(env_max_iterations)

        env_think_timeout = os.environ.get("TASKLOOP_THINK_TIMEOUT")
        if env_think_timeout:
            loop["think_timeout"] = float(env_think_timeout)

        env_tool_timeout = os.environ.get("TASKLOOP_TOOL_TIMEOUT")
        if env_tool_timeout:
            loop["tool_timeout"] = float(env_tool_timeout)

        if llm:
            config_data["llm"] = llm
        if loop:
            config_data["loop"] = loop

        return cls.model_validate(config_data)
