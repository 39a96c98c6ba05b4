"""Configuration schema using Pydantic."""

from __future__ import annotations

import json
import os
import re
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator

from parley.errors import ConfigError
from parley.providers.retry import RetryPolicy, exponential_backoff

_ENV_REF_RE = re.compile(r"^\$\{?([A-Za-z_][A-Za-z0-9_]*)\}?$")


def _resolve_env(value: str) -> str:
    """Resolve ``$VAR`` / ``${VAR}`` references against the environment.

    Plain values pass through unchanged; unknown variables resolve to "".
    """
    if not value:
        return value
    m = _ENV_REF_RE.match(value.strip())
    if not m:
        return value
    return os.environ.get(m.group(1), "")


class ToolResultPersistence(str, Enum):
    """Role under which the capped copy of a tool result is written to the log."""

    ASSISTANT = "assistant"
    SYSTEM = "system"
    NONE = "none"


class ConfigPrecedence(str, Enum):
    """Which side wins when per-call params and configured defaults disagree."""

    CALL = "call"
    CONFIG = "config"


class ResilienceConfig(BaseModel):
    """Timeout and retry settings for completion calls."""

    timeout: float = 120
    max_retries: int = Field(default=3, ge=0)
    backoff_base: float = Field(default=0.5, ge=0)
    backoff_max: float = Field(default=8.0, ge=0)

    def to_retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_retries + 1,
            backoff=exponential_backoff(self.backoff_base, self.backoff_max),
        )


class ProviderConfig(BaseModel):
    """Completion service credentials and defaults."""

    api_key: str = ""
    api_base: str | None = None
    model: str = "gpt-4.1"
    extra_headers: dict[str, str] = Field(default_factory=dict)
    resilience: ResilienceConfig = Field(default_factory=ResilienceConfig)

    @field_validator("api_key", mode="after")
    @classmethod
    def _resolve_api_key(cls, value: str) -> str:
        return _resolve_env(value)

    def require_api_key(self) -> str:
        if not self.api_key:
            raise ConfigError("provider.api_key is not set (use a literal key or $ENV_VAR)")
        return self.api_key


class SummaryConfig(BaseModel):
    """Delta summarization settings."""

    model: str | None = None
    max_tokens: int = 900
    chunk_max_tokens: int = 1200
    keep_summaries: int = Field(default=5, ge=0)
    single_pass_max_tokens: int = 12_000
    chunk_rows: int = Field(default=500, ge=1)
    chunk_chars: int = Field(default=15_000, ge=1)
    prompt: str = ""
    auto_threshold: int = Field(default=30, ge=0)


class ConversationConfig(BaseModel):
    """Per-conversation persona, window and turn settings."""

    persona: str = ""
    instructions: str = ""
    summary_prompt: str = ""
    max_user_blocks: int | None = Field(default=None, ge=0)
    pseudo_tool_calls: bool = False
    max_output_tokens: int = Field(default=4096, ge=1)
    sequence_limit: int = Field(default=8, ge=1)
    bot_name: str = "assistant"
    inject_time: bool = True
    tools: list[str] | None = None

    def signature(self) -> str:
        """Stable digest of the settings that shape a conversation's buffer."""
        return json.dumps(self.model_dump(mode="json"), sort_keys=True, ensure_ascii=False)


class RuntimeConfig(BaseModel):
    max_inflight_per_conversation: int = Field(default=3, ge=1)
    tool_result_persist_max_chars: int = Field(default=2000, ge=0)
    tool_result_persistence: ToolResultPersistence = ToolResultPersistence.ASSISTANT
    config_precedence: ConfigPrecedence = ConfigPrecedence.CALL


class Config(BaseModel):
    """Root configuration."""

    provider: ProviderConfig = Field(default_factory=ProviderConfig)
    summary: SummaryConfig = Field(default_factory=SummaryConfig)
    conversation: ConversationConfig = Field(default_factory=ConversationConfig)
    runtime: RuntimeConfig = Field(default_factory=RuntimeConfig)
    store_path: str = "~/.parley/parley.db"

    @property
    def store_file(self) -> Path:
        return Path(self.store_path).expanduser()


def load_config(path: Path | str | None = None) -> Config:
    """Load configuration from a JSON file; a missing file yields defaults."""
    if path is None:
        return Config()
    file = Path(path).expanduser()
    if not file.exists():
        return Config()
    try:
        data: Any = json.loads(file.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in {file}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Config root in {file} must be an object")
    return Config.model_validate(data)
