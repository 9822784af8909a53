"""
Configuration Settings.

Environment-driven settings used to wire the engine. Values come from
``CODELOOP_*`` environment variables and an optional ``.env`` file; nested
sections use ``__`` (e.g. ``CODELOOP_OPENAI__BASE_URL``).

The engine itself never reads settings: ``Settings.agent_configuration``
produces the immutable ``AgentConfiguration`` snapshot handed to each turn.
"""

from functools import lru_cache
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from codeloop_ai.agent_core.schemas.domain import AgentConfiguration, PermissionMode, PermissionRule


class OpenAICompatibleConfig(BaseModel):
    """OpenAI-compatible endpoint configuration."""

    api_key: Optional[str] = Field(default=None, description="Bearer token for the endpoint")
    base_url: str = Field(default="https://api.openai.com/v1", description="API root URL")
    model: str = Field(default="gpt-4o", description="Default model name for this endpoint")
    timeout: float = Field(default=120.0, gt=0, description="Request timeout in seconds")


class RetryConfig(BaseModel):
    """Provider retry/backoff configuration."""

    max_attempts: int = Field(default=3, ge=1, le=10)
    initial_backoff: float = Field(default=0.5, ge=0)
    backoff_factor: float = Field(default=2.0, ge=1)
    max_backoff: float = Field(default=8.0, ge=0)


class LogfireConfig(BaseModel):
    """Logfire monitoring configuration."""

    enabled: bool = Field(default=False, description="Enable Logfire tracing")
    token: Optional[str] = Field(default=None, description="Logfire write token")
    service_name: str = Field(default="codeloop-ai")
    environment: str = Field(default="development")
    trace_pydantic_ai: bool = Field(default=True)
    trace_httpx: bool = Field(default=True)


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_prefix="CODELOOP_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Storage
    state_dir: str = Field(default="~/.codeloop", description="Per-user state directory for session logs")

    # Logging
    log_level: str = Field(default="INFO", description="Console log level")
    log_format: Literal["simple", "detailed", "json"] = Field(default="detailed")
    enable_file_logging: bool = Field(default=False)
    log_file_dir: str = Field(default="~/.codeloop/logs")

    # Model
    provider: str = Field(default="pydantic_ai", description="Provider id used for new turns")
    model: str = Field(default="openai:gpt-4o", description="Model identifier passed to the provider")
    stream: bool = Field(default=False)
    system_prompt: Optional[str] = Field(default=None)
    temperature: Optional[float] = Field(default=None, ge=0, le=2)
    max_tokens: Optional[int] = Field(default=None, ge=1)

    # Turn loop and policy
    max_turns: int = Field(default=50, ge=1)
    permission_mode: PermissionMode = Field(default=PermissionMode.default)
    permission_rules: List[PermissionRule] = Field(default_factory=list)
    allowed_tools: Optional[List[str]] = Field(default=None)
    blocked_tools: List[str] = Field(default_factory=list)
    max_tool_args_bytes: int = Field(default=64_000, ge=1)
    redact_secrets: bool = Field(default=True)
    loop_detection_threshold: Optional[int] = Field(default=5, ge=2)

    retry: RetryConfig = Field(default_factory=RetryConfig)
    openai: OpenAICompatibleConfig = Field(default_factory=OpenAICompatibleConfig)
    logfire: LogfireConfig = Field(default_factory=LogfireConfig)

    def agent_configuration(self, **overrides: Any) -> AgentConfiguration:
        """Build an ``AgentConfiguration`` snapshot, applying ``overrides`` on top."""
        values: dict[str, Any] = {
            "provider": self.provider,
            "model": self.model,
            "permission_mode": self.permission_mode,
            "max_turns": self.max_turns,
            "rules": tuple(self.permission_rules),
            "allowed_tools": frozenset(self.allowed_tools) if self.allowed_tools is not None else None,
            "blocked_tools": frozenset(self.blocked_tools),
            "stream": self.stream,
            "system_prompt": self.system_prompt,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "max_tool_args_bytes": self.max_tool_args_bytes,
            "redact_secrets": self.redact_secrets,
            "loop_detection_threshold": self.loop_detection_threshold,
        }
        values.update(overrides)
        return AgentConfiguration.model_validate(values)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
