"""Tests for agent configuration, LLM configuration and logging setup."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterator

import pytest
import structlog
from pydantic import SecretStr, ValidationError

from sre_dreamer.config import (
    AgentSettings,
    BrowserSettings,
    DreamSettings,
    VercelSettings,
    load_agent_config,
)
from sre_dreamer.llm.config import (
    LLMConfig,
    LLMEndpointConfig,
    LLMProvider,
    ReasoningTask,
    TaskLLMConfig,
    load_llm_config,
)
from sre_dreamer.logging_config import configure_logging

AGENT_ENV_VARS = (
    "TARGET_URL",
    "REDIS_URL",
    "GITHUB_TOKEN",
    "VERCEL_TOKEN",
    "VERCEL_PROJECT_ID",
    "VERCEL_TEAM_ID",
    "VERCEL_GOOD_DEPLOYMENT_ID",
    "SRE_DREAMER_TARGET_URL",
    "SRE_DREAMER_REDIS_URL",
    "SRE_DREAMER_BROWSER__HEADLESS",
    "SRE_DREAMER_VERIFICATION_DELAY_SECONDS",
)

LLM_ENV_VARS = (
    "OPENAI_API_KEY",
    "CEREBRAS_API_KEY",
    "SRE_DREAMER_LLM_API_KEY",
    "SRE_DREAMER_LLM_CEREBRAS_API_KEY",
    "SRE_DREAMER_LLM_ENABLED",
    "SRE_DREAMER_LLM_MODEL",
)


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    """Run from an empty directory with no agent variables set."""
    for name in AGENT_ENV_VARS + LLM_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path


class TestAgentSettings:
    """Tests for AgentSettings."""

    def test_default_values(self, clean_env: Path) -> None:
        """Test defaults match a local development setup."""
        settings = AgentSettings()

        assert settings.target_url == "http://localhost:3000"
        assert settings.redis_url == "redis://localhost:6379/0"
        assert settings.verification_delay_seconds == 5.0
        assert settings.browser.headless is True
        assert settings.dream.dream_timeout_seconds == 120.0
        assert settings.memory.recency_window == 50
        assert settings.memory.similar_limit == 5
        assert settings.memory.thread_ttl_seconds == 3600
        assert not settings.vercel.rollback_configured

    def test_conventional_env_names(
        self, clean_env: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Test the unprefixed variable names are honoured."""
        monkeypatch.setenv("TARGET_URL", "https://shop.example.com")
        monkeypatch.setenv("REDIS_URL", "redis://cache:6379/1")
        monkeypatch.setenv("GITHUB_TOKEN", "ghp_test")

        settings = AgentSettings()

        assert settings.target_url == "https://shop.example.com"
        assert settings.redis_url == "redis://cache:6379/1"
        assert settings.github_token.get_secret_value() == "ghp_test"

    def test_nested_env_override(
        self, clean_env: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Test nested sections load with the double underscore delimiter."""
        monkeypatch.setenv("SRE_DREAMER_BROWSER__HEADLESS", "false")
        assert AgentSettings().browser.headless is False

    def test_validation_bounds(self) -> None:
        """Test out-of-range tuning is rejected."""
        with pytest.raises(ValidationError):
            DreamSettings(dream_timeout_seconds=1.0)
        with pytest.raises(ValidationError):
            BrowserSettings(action_timeout_ms=10)

    def test_rollback_configured(self) -> None:
        """Test rollbacks need both a token and a project id."""
        assert not VercelSettings(token=SecretStr("t")).rollback_configured
        assert VercelSettings(token=SecretStr("t"), project_id="prj_1").rollback_configured


class TestLoadAgentConfig:
    """Tests for load_agent_config."""

    def test_loads_yaml_file(self, clean_env: Path) -> None:
        """Test values come from the YAML file."""
        path = clean_env / "agent.yaml"
        path.write_text(
            "target_url: https://yaml.example.com\n"
            "verification_delay_seconds: 1.5\n"
            "dream:\n"
            "  dream_timeout_seconds: 45\n",
            encoding="utf-8",
        )

        settings = load_agent_config(path)

        assert settings.target_url == "https://yaml.example.com"
        assert settings.verification_delay_seconds == 1.5
        assert settings.dream.dream_timeout_seconds == 45

    def test_environment_beats_file(
        self, clean_env: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Test environment variables take precedence over the file."""
        path = clean_env / "agent.yaml"
        path.write_text("target_url: https://yaml.example.com\n", encoding="utf-8")
        monkeypatch.setenv("TARGET_URL", "https://env.example.com")

        assert load_agent_config(path).target_url == "https://env.example.com"

    def test_vercel_variables_merge(
        self, clean_env: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Test VERCEL_* variables fill the vercel section."""
        path = clean_env / "agent.yaml"
        path.write_text("vercel:\n  project_id: prj_file\n", encoding="utf-8")
        monkeypatch.setenv("VERCEL_TOKEN", "tok")
        monkeypatch.setenv("VERCEL_GOOD_DEPLOYMENT_ID", "dpl_good")

        vercel = load_agent_config(path).vercel

        assert vercel.project_id == "prj_file"
        assert vercel.good_deployment_id == "dpl_good"
        assert vercel.rollback_configured

    def test_missing_file_uses_defaults(self, clean_env: Path) -> None:
        """Test a missing default file is not an error."""
        assert load_agent_config().target_url == "http://localhost:3000"


class TestLLMConfig:
    """Tests for LLM configuration."""

    def test_global_disable(self) -> None:
        """Test the global flag disables every task."""
        config = LLMConfig(enabled=False)
        assert not any(config.is_task_enabled(task) for task in ReasoningTask)

    def test_task_disable(self) -> None:
        """Test tasks can be disabled individually."""
        config = LLMConfig(post_mortem=TaskLLMConfig(enabled=False))

        assert config.is_task_enabled(ReasoningTask.DIAGNOSIS)
        assert not config.is_task_enabled(ReasoningTask.POST_MORTEM)

    def test_cerebras_without_embedding_endpoint(self) -> None:
        """Test embeddings are disabled when the chat provider cannot serve them."""
        config = LLMConfig(
            default_endpoint=LLMEndpointConfig(
                base_url="https://api.cerebras.ai/v1",
                provider=LLMProvider.CEREBRAS,
            )
        )
        assert not config.is_task_enabled(ReasoningTask.EMBEDDING)

    def test_embedding_endpoint_routing(self) -> None:
        """Test embeddings use their own endpoint when configured."""
        embeddings = LLMEndpointConfig(base_url="https://embed.example.com/v1")
        config = LLMConfig(embedding_endpoint=embeddings)

        assert config.get_effective_endpoint(ReasoningTask.EMBEDDING) is embeddings
        assert config.get_effective_endpoint(ReasoningTask.DIAGNOSIS) is config.default_endpoint

    def test_overrides(self) -> None:
        """Test task overrides win over prompt defaults."""
        config = LLMConfig(diagnosis=TaskLLMConfig(temperature_override=0.0, max_tokens_override=64))

        assert config.get_effective_temperature(ReasoningTask.DIAGNOSIS, 0.3) == 0.0
        assert config.get_effective_max_tokens(ReasoningTask.DIAGNOSIS, 500) == 64
        assert config.get_effective_temperature(ReasoningTask.POST_MORTEM, 0.3) == 0.3

    def test_base_url_validation(self) -> None:
        """Test endpoints need an http(s) URL."""
        with pytest.raises(ValidationError, match="http"):
            LLMEndpointConfig(base_url="api.openai.com")
        assert LLMEndpointConfig(base_url="https://x.example.com/v1/").base_url == (
            "https://x.example.com/v1"
        )

    def test_load_from_file(self, clean_env: Path) -> None:
        """Test a YAML file configures the endpoint and tasks."""
        path = clean_env / "llm.yaml"
        path.write_text(
            "model: gpt-4o\napi_key: sk-file\nvisual_assessment:\n  enabled: false\n",
            encoding="utf-8",
        )

        config = load_llm_config(path)

        assert config.default_endpoint.model == "gpt-4o"
        assert config.default_endpoint.has_api_key
        assert not config.is_task_enabled(ReasoningTask.VISUAL_ASSESSMENT)

    def test_environment_beats_file(
        self, clean_env: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Test environment variables take precedence over the YAML file."""
        path = clean_env / "llm.yaml"
        path.write_text(
            "model: file-model\nmax_tokens: 256\npost_mortem:\n  enabled: false\n",
            encoding="utf-8",
        )
        monkeypatch.setenv("SRE_DREAMER_LLM_MODEL", "env-model")

        config = load_llm_config(path)

        assert config.default_endpoint.model == "env-model"
        assert config.default_endpoint.max_tokens == 256
        assert not config.is_task_enabled(ReasoningTask.POST_MORTEM)

    def test_cerebras_key_splits_endpoints(
        self, clean_env: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Test chat moves to Cerebras while embeddings stay on OpenAI."""
        monkeypatch.setenv("OPENAI_API_KEY", "sk-openai")
        monkeypatch.setenv("CEREBRAS_API_KEY", "csk-test")

        config = load_llm_config()

        assert config.default_endpoint.provider == LLMProvider.CEREBRAS
        assert config.embedding_endpoint is not None
        assert config.embedding_endpoint.provider == LLMProvider.OPENAI
        assert config.is_task_enabled(ReasoningTask.EMBEDDING)


class TestConfigureLogging:
    """Tests for structlog configuration."""

    @pytest.fixture(autouse=True)
    def reset_structlog(self) -> Iterator[None]:
        yield
        structlog.reset_defaults()

    @pytest.mark.parametrize(
        ("verbose", "renderer"),
        [(True, structlog.dev.ConsoleRenderer), (False, structlog.processors.JSONRenderer)],
    )
    def test_renderer_selection(self, verbose: bool, renderer: type) -> None:
        """Test verbose mode renders for humans and quiet mode emits JSON."""
        configure_logging(verbose=verbose)

        config = structlog.get_config()
        assert isinstance(config["processors"][-1], renderer)
        assert isinstance(config["logger_factory"], structlog.stdlib.LoggerFactory)

    def test_level(self) -> None:
        """Test verbose mode lowers the root level to DEBUG."""
        root = logging.getLogger()
        previous_level, previous_handlers = root.level, root.handlers[:]
        root.handlers.clear()
        try:
            configure_logging(verbose=True)
            assert root.level == logging.DEBUG
        finally:
            root.handlers[:] = previous_handlers
            root.setLevel(previous_level)
