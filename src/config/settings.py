"""
Agent configuration for SRE Dreamer.

Settings come from (highest to lowest priority) environment variables,
a ``.env`` file, an optional YAML file, and defaults. Environment variables
use the ``SRE_DREAMER_`` prefix with ``__`` as the nested delimiter, e.g.
``SRE_DREAMER_BROWSER__HEADLESS=false``. The conventional ``TARGET_URL``,
``REDIS_URL``, ``VERCEL_*`` and ``GITHUB_TOKEN`` variables are honoured too.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import structlog
import yaml
from dotenv import load_dotenv
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, SecretStr
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

logger = structlog.get_logger(__name__)


class BrowserSettings(BaseModel):
    """Sandboxed browser provisioning and interaction timeouts."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    headless: bool = True
    cdp_endpoint: str | None = Field(
        default=None,
        description="Remote browser CDP endpoint; a local Chromium is launched when unset",
    )
    navigation_timeout_ms: int = Field(default=30000, ge=1000, le=120000)
    action_timeout_ms: int = Field(default=5000, ge=500, le=60000)
    verification_timeout_ms: int = Field(default=3000, ge=500, le=30000)
    viewport_width: int = Field(default=1280, ge=320, le=3840)
    viewport_height: int = Field(default=800, ge=240, le=2160)


class VercelSettings(BaseModel):
    """Deployment control API credentials."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    token: SecretStr = SecretStr("")
    project_id: str = ""
    team_id: str | None = None
    good_deployment_id: str = ""
    api_base_url: str = "https://api.vercel.com"

    @property
    def rollback_configured(self) -> bool:
        """True when real rollbacks can be triggered."""
        return bool(self.token.get_secret_value() and self.project_id)


class DreamSettings(BaseModel):
    """Dream cycle tuning."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    dream_timeout_seconds: float = Field(
        default=120.0,
        ge=5.0,
        le=600.0,
        description="Upper bound for one whole dream; exceeding it fails that dream only",
    )
    rollback_listing_limit: int = Field(default=5, ge=1, le=50)


class MemorySettings(BaseModel):
    """Incident memory retrieval tuning."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    recency_window: int = Field(default=50, ge=1, le=1000)
    similar_limit: int = Field(default=5, ge=1, le=50)
    thread_ttl_seconds: int = Field(default=3600, ge=60, le=86400)


class AgentSettings(BaseSettings):
    """Complete agent configuration."""

    model_config = SettingsConfigDict(
        env_prefix="SRE_DREAMER_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    target_url: str = Field(
        default="http://localhost:3000",
        validation_alias=AliasChoices("SRE_DREAMER_TARGET_URL", "TARGET_URL", "target_url"),
    )
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        validation_alias=AliasChoices("SRE_DREAMER_REDIS_URL", "REDIS_URL", "redis_url"),
    )
    github_token: SecretStr = Field(
        default=SecretStr(""),
        validation_alias=AliasChoices(
            "SRE_DREAMER_GITHUB_TOKEN", "GITHUB_TOKEN", "github_token"
        ),
    )
    verification_delay_seconds: float = Field(default=5.0, ge=0.0, le=300.0)

    browser: BrowserSettings = Field(default_factory=BrowserSettings)
    vercel: VercelSettings = Field(default_factory=VercelSettings)
    dream: DreamSettings = Field(default_factory=DreamSettings)
    memory: MemorySettings = Field(default_factory=MemorySettings)

    llm_config_file: Path | None = None

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


def _vercel_from_environment(file_config: dict[str, Any]) -> dict[str, Any]:
    """Merge the bare VERCEL_* variables under any file-provided vercel section."""
    vercel = dict(file_config.get("vercel") or {})
    for key, env_name in (
        ("token", "VERCEL_TOKEN"),
        ("project_id", "VERCEL_PROJECT_ID"),
        ("team_id", "VERCEL_TEAM_ID"),
        ("good_deployment_id", "VERCEL_GOOD_DEPLOYMENT_ID"),
    ):
        value = os.environ.get(env_name)
        if value:
            vercel[key] = value
    return vercel


def load_agent_config(config_file: Path | str | None = None) -> AgentSettings:
    """
    Load agent configuration.

    Args:
        config_file: Optional YAML file; ``.sre-dreamer/agent.yaml`` is used
            when omitted and present.

    Returns:
        Validated AgentSettings
    """
    load_dotenv()

    path = Path(config_file) if config_file else Path(".sre-dreamer/agent.yaml")
    file_config: dict[str, Any] = {}
    if path.exists():
        with path.open() as f:
            file_config = yaml.safe_load(f) or {}
        logger.debug("Loaded agent config file", path=str(path))

    vercel = _vercel_from_environment(file_config)
    if vercel:
        file_config["vercel"] = vercel

    return AgentSettings(**file_config)
