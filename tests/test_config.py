"""Tests for configuration management."""

from __future__ import annotations

from pathlib import Path

import pytest

from mcpeverything.config import (
    DEFAULT_MODEL,
    Config,
    DiscoveryConfig,
    GenerationConfig,
    ModelSettings,
)

ENV_VARS = (
    "ANTHROPIC_API_KEY",
    "GITHUB_TOKEN",
    "MCPE_OUTPUT_DIR",
    "MCPE_LOG_DIR",
    "MCPE_USAGE_FILE",
    "MCPE_LOG_LEVEL",
    "MCPE_MOCK_MODE",
    "MCPE_TIER",
    "MCPE_RETRY_MAX_ATTEMPTS",
)


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    """Environment without any mcpeverything variables or .env loading."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr("mcpeverything.config.load_dotenv", lambda: None)
    return monkeypatch


class TestConfig:
    """Tests for Config class."""

    def test_from_env_defaults(self, clean_env: pytest.MonkeyPatch, tmp_path: Path) -> None:
        """Test Config.from_env with default values."""
        config = Config.from_env(tmp_path)

        assert config.anthropic_api_key is None
        assert config.github_token is None
        assert config.config_dir == tmp_path
        assert config.log_level == "INFO"
        assert config.mock_mode is False
        assert config.tier == "free"
        assert config.retry_max_attempts == 3
        assert config.generation.max_regeneration_attempts == 3

    def test_from_env_with_values(self, clean_env: pytest.MonkeyPatch, tmp_path: Path) -> None:
        """Test Config.from_env with environment values."""
        clean_env.setenv("ANTHROPIC_API_KEY", "sk-ant-test")
        clean_env.setenv("GITHUB_TOKEN", "ghp_test")
        clean_env.setenv("MCPE_OUTPUT_DIR", str(tmp_path / "out"))
        clean_env.setenv("MCPE_MOCK_MODE", "true")
        clean_env.setenv("MCPE_TIER", "PRO")
        clean_env.setenv("MCPE_RETRY_MAX_ATTEMPTS", "5")

        config = Config.from_env(tmp_path)

        assert config.anthropic_api_key == "sk-ant-test"
        assert config.github_token == "ghp_test"
        assert config.output_dir == tmp_path / "out"
        assert config.mock_mode is True
        assert config.tier == "pro"
        assert config.retry_max_attempts == 5

    def test_placeholder_secrets_are_ignored(self, clean_env: pytest.MonkeyPatch, tmp_path: Path) -> None:
        """Test that example .env placeholder values count as unset."""
        clean_env.setenv("ANTHROPIC_API_KEY", "your-anthropic-api-key-here")

        config = Config.from_env(tmp_path)

        assert config.anthropic_api_key is None

    def test_usage_file_expands_home(self, clean_env: pytest.MonkeyPatch, tmp_path: Path) -> None:
        """Test that ~ in MCPE_USAGE_FILE is expanded."""
        clean_env.setenv("MCPE_USAGE_FILE", "~/usage.json")

        config = Config.from_env(tmp_path)

        assert "~" not in str(config.usage_file)
        assert config.usage_file.name == "usage.json"

    def test_validate_mock_mode(self) -> None:
        """Test validation passes in mock mode without API key."""
        config = Config(mock_mode=True)

        assert config.validate() == []

    def test_validate_missing_key(self) -> None:
        """Test validation fails without API key outside mock mode."""
        config = Config()

        errors = config.validate()

        assert any("ANTHROPIC_API_KEY" in e for e in errors)

    def test_validate_unknown_tier(self) -> None:
        """Test validation rejects unknown tiers."""
        config = Config(mock_mode=True, tier="platinum")

        assert config.validate() == ["Unknown tier: platinum"]

    def test_validate_threshold_range(self) -> None:
        """Test validation rejects a quality threshold outside 0..1."""
        config = Config(mock_mode=True)
        config.generation.discovery.quality_threshold = 1.5

        errors = config.validate()

        assert len(errors) == 1
        assert "quality_threshold" in errors[0]

    def test_log_level_from_env(self, clean_env: pytest.MonkeyPatch, tmp_path: Path) -> None:
        """Test that MCPE_LOG_LEVEL is read case-insensitively."""
        clean_env.setenv("MCPE_LOG_LEVEL", "warning")

        config = Config.from_env(tmp_path)

        assert config.log_level == "WARNING"

    def test_validate_log_level(self) -> None:
        """Test validation rejects unknown log levels."""
        config = Config(mock_mode=True, log_level="LOUD")

        errors = config.validate()

        assert len(errors) == 1
        assert errors[0].startswith("Unknown log level: LOUD")

    def test_validate_retry_attempts(self) -> None:
        """Test validation requires at least one request attempt."""
        config = Config(mock_mode=True, retry_max_attempts=0)

        assert config.validate() == ["MCPE_RETRY_MAX_ATTEMPTS must be at least 1, got 0"]


class TestGenerationConfig:
    """Tests for generation.yaml loading."""

    def test_defaults_without_file(self, tmp_path: Path) -> None:
        """Test defaults are used when generation.yaml is missing."""
        config = GenerationConfig.load_from_file(tmp_path)

        assert config.max_regeneration_attempts == 3
        assert config.model.model == DEFAULT_MODEL
        assert config.discovery.quality_threshold == 0.7

    def test_load_from_file(self, tmp_path: Path) -> None:
        """Test values are read from generation.yaml."""
        (tmp_path / "generation.yaml").write_text(
            """generation:
  max_regeneration_attempts: 1
model:
  model: claude-sonnet-4-20250514
  code_max_tokens: 8000
discovery:
  max_iterations: 2
  quality_threshold: 0.5
  preferred_categories: [search]
  complexity_bias: simple
"""
        )

        config = GenerationConfig.load_from_file(tmp_path)

        assert config.max_regeneration_attempts == 1
        assert config.model.model == "claude-sonnet-4-20250514"
        assert config.model.code_max_tokens == 8000
        assert config.model.judge_max_tokens == 1500
        assert config.discovery.max_iterations == 2
        assert config.discovery.quality_threshold == 0.5
        assert config.discovery.preferred_categories == ["search"]
        assert config.discovery.complexity_bias == "simple"

    def test_empty_file(self, tmp_path: Path) -> None:
        """Test an empty generation.yaml yields defaults."""
        (tmp_path / "generation.yaml").write_text("")

        config = GenerationConfig.load_from_file(tmp_path)

        assert config == GenerationConfig()


class TestSettingsFromDict:
    """Tests for the nested settings dataclasses."""

    def test_model_settings_casts_values(self) -> None:
        """Test numeric values are cast from strings."""
        settings = ModelSettings.from_dict({"temperature": "0.5", "max_tokens": "200"})

        assert settings.temperature == 0.5
        assert settings.max_tokens == 200

    def test_discovery_config_defaults(self) -> None:
        """Test DiscoveryConfig defaults from an empty dict."""
        config = DiscoveryConfig.from_dict({})

        assert config.max_iterations == 5
        assert config.max_tools_per_category == 5
        assert config.preferred_categories == ["data", "api", "analysis", "utility"]
        assert config.complexity_bias == "balanced"
