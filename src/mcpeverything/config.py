"""Configuration management for mcpeverything."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal, Optional

import yaml
from dotenv import load_dotenv


ComplexityBias = Literal["simple", "balanced", "complex"]

DEFAULT_MODEL = "claude-3-5-haiku-20241022"
DEFAULT_PREFERRED_CATEGORIES = ["data", "api", "analysis", "utility"]
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

# Placeholder values shipped in example .env files
PLACEHOLDER_SECRETS = frozenset({
    "your-anthropic-api-key-here",
    "your-github-token-here",
})


def _env_flag(name: str, default: str = "") -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


def _secret(name: str) -> Optional[str]:
    value = os.getenv(name)
    if not value or value in PLACEHOLDER_SECRETS:
        return None
    return value


@dataclass
class ModelSettings:
    """Settings for the text-generation model."""

    model: str = DEFAULT_MODEL
    temperature: float = 0.2
    max_tokens: int = 1000
    code_max_tokens: int = 6000
    implementation_max_tokens: int = 2000
    judge_max_tokens: int = 1500
    timeout: int = 30

    @classmethod
    def from_dict(cls, data: dict) -> ModelSettings:
        """Create ModelSettings from dictionary."""
        return cls(
            model=data.get("model", DEFAULT_MODEL),
            temperature=float(data.get("temperature", 0.2)),
            max_tokens=int(data.get("max_tokens", 1000)),
            code_max_tokens=int(data.get("code_max_tokens", 6000)),
            implementation_max_tokens=int(data.get("implementation_max_tokens", 2000)),
            judge_max_tokens=int(data.get("judge_max_tokens", 1500)),
            timeout=int(data.get("timeout", 30)),
        )


@dataclass
class DiscoveryConfig:
    """Limits for the tool discovery judge loop."""

    max_iterations: int = 5
    quality_threshold: float = 0.7
    max_tools_per_category: int = 5
    preferred_categories: list[str] = field(
        default_factory=lambda: list(DEFAULT_PREFERRED_CATEGORIES)
    )
    complexity_bias: ComplexityBias = "balanced"

    @classmethod
    def from_dict(cls, data: dict) -> DiscoveryConfig:
        """Create DiscoveryConfig from dictionary."""
        return cls(
            max_iterations=int(data.get("max_iterations", 5)),
            quality_threshold=float(data.get("quality_threshold", 0.7)),
            max_tools_per_category=int(data.get("max_tools_per_category", 5)),
            preferred_categories=list(
                data.get("preferred_categories", DEFAULT_PREFERRED_CATEGORIES)
            ),
            complexity_bias=data.get("complexity_bias", "balanced"),
        )


@dataclass
class GenerationConfig:
    """Settings loaded from generation.yaml."""

    max_regeneration_attempts: int = 3
    model: ModelSettings = field(default_factory=ModelSettings)
    discovery: DiscoveryConfig = field(default_factory=DiscoveryConfig)

    @classmethod
    def from_dict(cls, data: dict) -> GenerationConfig:
        """Create GenerationConfig from dictionary."""
        generation = data.get("generation", {})
        return cls(
            max_regeneration_attempts=int(generation.get("max_regeneration_attempts", 3)),
            model=ModelSettings.from_dict(data.get("model", {})),
            discovery=DiscoveryConfig.from_dict(data.get("discovery", {})),
        )

    @classmethod
    def load_from_file(cls, config_dir: Path) -> GenerationConfig:
        """Load generation config from YAML file."""
        config_path = config_dir / "generation.yaml"
        if config_path.exists():
            with open(config_path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
            return cls.from_dict(data)
        return cls()  # Defaults if the file doesn't exist


@dataclass
class Config:
    """Configuration settings for mcpeverything."""

    # API Keys
    anthropic_api_key: Optional[str] = None
    github_token: Optional[str] = None

    # Paths
    config_dir: Path = field(default_factory=lambda: Path.cwd() / "config")
    output_dir: Path = field(default_factory=lambda: Path.cwd() / "generated-servers")
    log_dir: Path = field(default_factory=lambda: Path.cwd() / "logs" / "generations")
    usage_file: Path = field(
        default_factory=lambda: Path.home() / ".mcpeverything" / "usage.json"
    )

    # GitHub Settings
    github_api_url: str = "https://api.github.com"
    github_timeout: int = 30

    # Runtime Settings
    log_level: str = "INFO"
    mock_mode: bool = False
    tier: str = "free"

    # Retry Settings
    retry_max_attempts: int = 3
    retry_backoff_base: float = 2.0  # Base seconds for exponential backoff
    retry_backoff_max: float = 60.0  # Maximum backoff in seconds

    # Generation Settings (loaded from generation.yaml)
    generation: GenerationConfig = field(default_factory=GenerationConfig)

    @classmethod
    def from_env(cls, config_dir: Optional[Path] = None) -> Config:
        """Load configuration from environment variables.

        Args:
            config_dir: Optional directory holding generation.yaml.
                Defaults to ./config.

        Returns:
            Config instance populated from environment.
        """
        load_dotenv()

        cfg_dir = Path(config_dir) if config_dir else Path.cwd() / "config"
        generation = GenerationConfig.load_from_file(cfg_dir)

        output_dir = os.getenv("MCPE_OUTPUT_DIR")
        log_dir = os.getenv("MCPE_LOG_DIR")
        usage_file = os.getenv("MCPE_USAGE_FILE")

        return cls(
            anthropic_api_key=_secret("ANTHROPIC_API_KEY"),
            github_token=_secret("GITHUB_TOKEN"),
            config_dir=cfg_dir,
            output_dir=Path(output_dir) if output_dir else Path.cwd() / "generated-servers",
            log_dir=Path(log_dir) if log_dir else Path.cwd() / "logs" / "generations",
            usage_file=(
                Path(usage_file).expanduser()
                if usage_file
                else Path.home() / ".mcpeverything" / "usage.json"
            ),
            github_api_url=os.getenv("MCPE_GITHUB_API_URL", "https://api.github.com"),
            github_timeout=int(os.getenv("MCPE_GITHUB_TIMEOUT", "30")),
            log_level=os.getenv("MCPE_LOG_LEVEL", "INFO").upper(),
            mock_mode=_env_flag("MCPE_MOCK_MODE"),
            tier=os.getenv("MCPE_TIER", "free").lower(),
            retry_max_attempts=int(os.getenv("MCPE_RETRY_MAX_ATTEMPTS", "3")),
            retry_backoff_base=float(os.getenv("MCPE_RETRY_BACKOFF_BASE", "2.0")),
            retry_backoff_max=float(os.getenv("MCPE_RETRY_BACKOFF_MAX", "60.0")),
            generation=generation,
        )

    def validate(self) -> list[str]:
        """Validate configuration and return list of errors.

        Returns:
            List of validation error messages. Empty if valid.
        """
        errors = []

        # API key not required in mock mode
        if not self.mock_mode and not self.anthropic_api_key:
            errors.append("ANTHROPIC_API_KEY is required when not in mock mode")

        if self.tier not in ("free", "pro", "enterprise"):
            errors.append(f"Unknown tier: {self.tier}")

        if self.log_level not in LOG_LEVELS:
            errors.append(
                f"Unknown log level: {self.log_level} (expected one of: {', '.join(LOG_LEVELS)})"
            )

        if self.retry_max_attempts < 1:
            errors.append(
                f"MCPE_RETRY_MAX_ATTEMPTS must be at least 1, got {self.retry_max_attempts}"
            )

        if self.generation.max_regeneration_attempts < 0:
            errors.append("max_regeneration_attempts must not be negative")

        threshold = self.generation.discovery.quality_threshold
        if not 0.0 <= threshold <= 1.0:
            errors.append(f"quality_threshold must be between 0 and 1, got {threshold}")

        return errors
