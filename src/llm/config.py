"""
LLM configuration models for SRE Dreamer.

Provides Pydantic-validated configuration for OpenAI-compatible chat and
embedding endpoints with per-task enable/disable capability.
"""

from __future__ import annotations

from enum import StrEnum
from functools import cached_property
from pathlib import Path
from typing import Any, Self

import yaml
from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    SecretStr,
    field_validator,
    model_validator,
)
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict


class LLMProvider(StrEnum):
    """Supported LLM provider types."""

    OPENAI = "openai"
    CEREBRAS = "cerebras"
    LOCAL = "local"  # For local/self-hosted models
    CUSTOM = "custom"  # For any OpenAI-compatible endpoint


class ReasoningTask(StrEnum):
    """Reasoning operations that call the LLM."""

    DIAGNOSIS = "diagnosis"
    VISUAL_ASSESSMENT = "visual_assessment"
    POST_MORTEM = "post_mortem"
    ACTION_RESOLUTION = "action_resolution"
    EMBEDDING = "embedding"


class RetryConfig(BaseModel):
    """Configuration for retry behavior on LLM API calls."""

    model_config = ConfigDict(frozen=True)

    max_retries: int = Field(default=3, ge=0, le=10)
    initial_delay_ms: int = Field(default=1000, ge=100, le=30000)
    max_delay_ms: int = Field(default=30000, ge=1000, le=120000)
    exponential_base: float = Field(default=2.0, ge=1.0, le=4.0)
    jitter: bool = True


class RateLimitConfig(BaseModel):
    """Configuration for rate limiting LLM API calls."""

    model_config = ConfigDict(frozen=True)

    requests_per_minute: int = Field(default=60, ge=1, le=10000)
    tokens_per_minute: int = Field(default=90000, ge=1000, le=10000000)
    concurrent_requests: int = Field(default=5, ge=1, le=100)


class LLMEndpointConfig(BaseModel):
    """Configuration for an OpenAI-compatible API endpoint."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    base_url: str = Field(
        default="https://api.openai.com/v1",
        description="Base URL for the OpenAI-compatible API endpoint",
    )
    api_key: SecretStr = Field(
        default=SecretStr(""),
        description="API key for authentication",
    )
    model: str = Field(
        default="gpt-4o-mini",
        description="Model identifier used for chat completions",
    )
    embedding_model: str = Field(
        default="text-embedding-3-small",
        description="Model identifier used for embeddings",
    )
    provider: LLMProvider = Field(
        default=LLMProvider.OPENAI,
        description="LLM provider type",
    )

    # Request parameters
    temperature: float = Field(default=0.2, ge=0.0, le=2.0)
    max_tokens: int = Field(default=1024, ge=1, le=128000)
    timeout_ms: int = Field(default=30000, ge=1000, le=300000)

    # Retry and rate limiting
    retry: RetryConfig = Field(default_factory=RetryConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        """Ensure base_url is valid and strip trailing slashes."""
        v = v.rstrip("/")
        if not v.startswith(("http://", "https://")):
            raise ValueError("base_url must start with http:// or https://")
        return v

    @property
    def has_api_key(self) -> bool:
        """Check if API key is configured."""
        return bool(self.api_key.get_secret_value())


class TaskLLMConfig(BaseModel):
    """Per-task LLM configuration."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    enabled: bool = Field(
        default=True,
        description="Whether the LLM is used for this task",
    )
    temperature_override: float | None = Field(default=None, ge=0.0, le=2.0)
    max_tokens_override: int | None = Field(default=None, ge=1, le=128000)


class LLMConfig(BaseModel):
    """Complete LLM configuration for SRE Dreamer."""

    model_config = ConfigDict(extra="forbid")

    enabled: bool = Field(
        default=True,
        description="Global LLM enable flag. When False, every task uses its fallback.",
    )
    default_endpoint: LLMEndpointConfig = Field(
        default_factory=LLMEndpointConfig,
        description="Endpoint used for chat completions",
    )
    embedding_endpoint: LLMEndpointConfig | None = Field(
        default=None,
        description="Separate endpoint for embeddings when the chat provider has none",
    )

    diagnosis: TaskLLMConfig = Field(default_factory=TaskLLMConfig)
    visual_assessment: TaskLLMConfig = Field(default_factory=TaskLLMConfig)
    post_mortem: TaskLLMConfig = Field(default_factory=TaskLLMConfig)
    action_resolution: TaskLLMConfig = Field(default_factory=TaskLLMConfig)
    embedding: TaskLLMConfig = Field(default_factory=TaskLLMConfig)

    @model_validator(mode="after")
    def validate_embedding_provider(self) -> Self:
        """Cerebras serves no embeddings; a separate endpoint is required to use them."""
        if (
            self.default_endpoint.provider == LLMProvider.CEREBRAS
            and self.embedding_endpoint is None
            and self.embedding.enabled
        ):
            self.embedding = TaskLLMConfig(enabled=False)
        return self

    def is_task_enabled(self, task: ReasoningTask) -> bool:
        """Check if the LLM is enabled for a specific task."""
        if not self.enabled:
            return False
        return self.get_task_config(task).enabled

    def get_task_config(self, task: ReasoningTask) -> TaskLLMConfig:
        """Get configuration for a specific task."""
        match task:
            case ReasoningTask.DIAGNOSIS:
                return self.diagnosis
            case ReasoningTask.VISUAL_ASSESSMENT:
                return self.visual_assessment
            case ReasoningTask.POST_MORTEM:
                return self.post_mortem
            case ReasoningTask.ACTION_RESOLUTION:
                return self.action_resolution
            case ReasoningTask.EMBEDDING:
                return self.embedding
            case _:
                raise ValueError(f"Unknown task: {task}")

    def get_effective_endpoint(self, task: ReasoningTask) -> LLMEndpointConfig:
        """Get the endpoint that serves a task."""
        if task == ReasoningTask.EMBEDDING and self.embedding_endpoint is not None:
            return self.embedding_endpoint
        return self.default_endpoint

    def get_effective_temperature(self, task: ReasoningTask, default: float) -> float:
        """Task override, else the prompt's own temperature."""
        override = self.get_task_config(task).temperature_override
        return override if override is not None else default

    def get_effective_max_tokens(self, task: ReasoningTask, default: int) -> int:
        """Task override, else the prompt's own token budget."""
        override = self.get_task_config(task).max_tokens_override
        return override if override is not None else default


class LLMSettings(BaseSettings):
    """
    Environment-based LLM settings.

    Loads configuration from environment variables with SRE_DREAMER_LLM_ prefix.
    The conventional OPENAI_API_KEY / CEREBRAS_API_KEY variables are honoured too.
    Values passed in (for example from a YAML file) rank below the environment.
    """

    model_config = SettingsConfigDict(
        env_prefix="SRE_DREAMER_LLM_",
        env_nested_delimiter="__",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    enabled: bool = True
    base_url: str = "https://api.openai.com/v1"
    api_key: SecretStr = Field(
        default=SecretStr(""),
        validation_alias=AliasChoices("SRE_DREAMER_LLM_API_KEY", "OPENAI_API_KEY"),
    )
    model: str = "gpt-4o-mini"
    provider: LLMProvider = LLMProvider.OPENAI
    temperature: float = 0.2
    max_tokens: int = 1024
    timeout_ms: int = 30000

    # Optional fast chat provider; embeddings stay on the default endpoint
    cerebras_api_key: SecretStr = Field(
        default=SecretStr(""),
        validation_alias=AliasChoices("SRE_DREAMER_LLM_CEREBRAS_API_KEY", "CEREBRAS_API_KEY"),
    )
    cerebras_base_url: str = "https://api.cerebras.ai/v1"
    cerebras_model: str = "llama-3.3-70b"

    embedding_model: str = "text-embedding-3-small"

    config_file: Path | None = None

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # File values arrive as init kwargs and must not shadow the environment
        return env_settings, dotenv_settings, init_settings, file_secret_settings

    @cached_property
    def config(self) -> LLMConfig:
        """Build complete LLMConfig from the resolved settings and per-task file sections."""
        file_config = _read_config_file(self.config_file)

        openai_endpoint = LLMEndpointConfig(
            base_url=self.base_url,
            api_key=self.api_key,
            model=self.model,
            embedding_model=self.embedding_model,
            provider=self.provider,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            timeout_ms=self.timeout_ms,
        )

        # Chat on Cerebras when a key is present, embeddings on the OpenAI endpoint
        chat_endpoint = openai_endpoint
        embedding_endpoint: LLMEndpointConfig | None = None
        if self.cerebras_api_key.get_secret_value():
            chat_endpoint = openai_endpoint.model_copy(
                update={
                    "base_url": self.cerebras_base_url.rstrip("/"),
                    "api_key": self.cerebras_api_key,
                    "model": self.cerebras_model,
                    "provider": LLMProvider.CEREBRAS,
                }
            )
            embedding_endpoint = openai_endpoint

        def build_task_config(name: str) -> TaskLLMConfig:
            task_file_config = file_config.get(name) or {}
            return TaskLLMConfig(
                enabled=task_file_config.get("enabled", True),
                temperature_override=task_file_config.get("temperature"),
                max_tokens_override=task_file_config.get("max_tokens"),
            )

        return LLMConfig(
            enabled=self.enabled,
            default_endpoint=chat_endpoint,
            embedding_endpoint=embedding_endpoint,
            diagnosis=build_task_config("diagnosis"),
            visual_assessment=build_task_config("visual_assessment"),
            post_mortem=build_task_config("post_mortem"),
            action_resolution=build_task_config("action_resolution"),
            embedding=build_task_config("embedding"),
        )


def _read_config_file(path: Path | None) -> dict[str, Any]:
    if path is None or not path.exists():
        return {}
    with path.open() as f:
        return yaml.safe_load(f) or {}


def load_llm_config(config_file: Path | str | None = None) -> LLMConfig:
    """
    Load LLM configuration from an optional YAML file and the environment.

    Args:
        config_file: Optional path to YAML config file. When omitted,
            ``.sre-dreamer/llm.yaml`` is used if it exists.

    Returns:
        Complete LLMConfig instance
    """
    path = Path(config_file) if config_file else None
    if path is None:
        for candidate in (Path(".sre-dreamer/llm.yaml"), Path(".sre-dreamer/llm.yml")):
            if candidate.exists():
                path = candidate
                break

    file_values = {
        name: value
        for name, value in _read_config_file(path).items()
        if name in LLMSettings.model_fields and name != "config_file"
    }
    settings = LLMSettings(config_file=path, **file_values)
    return settings.config
