"""
Central configuration management using Pydantic settings.

Provides type-safe configuration with validation, environment variable
support, and YAML configuration file loading.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from explainability_system.core.exceptions import ConfigParseError


# Base paths
CONFIG_DIR = Path(__file__).resolve().parent


class ExplainerSettings(BaseModel):
    """Default parameters for the SHAP explainer."""

    confidence: float = Field(default=0.95, description="Confidence level of attribution bounds")
    batch_count: int = Field(default=1, description="Number of prediction batches per explanation")
    timeout_seconds: float = Field(default=30.0, description="Bounded wait for synchronous explanations")
    max_workers: int = Field(default=4, description="Worker threads of the explanation pool")
    exhaustive_limit: int = Field(default=65536, description="Max coalitions enumerated exhaustively")
    seed: int = Field(default=0, description="Seed of the perturbation context")
    track_counterfactuals: bool = Field(default=False, description="Collect counterfactual byproducts")
    counterfactual_tolerance: float = Field(
        default=1e-9,
        description="Absolute difference above which a numeric output counts as changed",
    )

    @field_validator("confidence")
    @classmethod
    def validate_confidence(cls, v: float) -> float:
        """Confidence must lie strictly between 0 and 1."""
        if not 0.0 < v < 1.0:
            raise ValueError("confidence must be in (0, 1)")
        return v

    @field_validator("batch_count", "max_workers", "exhaustive_limit")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Counts must be positive."""
        if v < 1:
            raise ValueError("must be >= 1")
        return v


class LoggingSettings(BaseModel):
    """Logging configuration settings."""

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="json", description="Log format (json or text)")
    file_path: Path | None = Field(default=None, description="Log file path")
    max_bytes: int = Field(default=10 * 1024 * 1024, description="Rotate log file after this size")
    backup_count: int = Field(default=5, description="Number of rotated log files kept")


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_prefix="EXPLAINABILITY_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # Application settings
    app_name: str = "Explainability System"
    app_version: str = "1.0.0"
    debug: bool = False
    environment: str = Field(default="development", description="Environment (development, staging, production)")

    # Component settings
    explainer: ExplainerSettings = Field(default_factory=ExplainerSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @classmethod
    def load_yaml_config(cls, config_path: Path) -> dict[str, Any]:
        """Load configuration from a YAML file."""
        if not config_path.exists():
            return {}
        try:
            with open(config_path, "r") as f:
                return yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigParseError(f"Cannot parse {config_path.name}: {e}", file_path=str(config_path)) from e

    def load_explainer_config(self, config_path: Path | None = None) -> ExplainerSettings:
        """Overlay explainer parameters from YAML on the current values."""
        config = self.load_yaml_config(config_path or CONFIG_DIR / "explainer.yaml")
        section = config.get("explainer", {})
        if section:
            return ExplainerSettings(**{**self.explainer.model_dump(), **section})
        return self.explainer


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance with all configurations loaded.

    Loads configurations in order:
    1. Base settings from environment and .env file
    2. Explainer defaults from explainer.yaml
    """
    settings = Settings()
    settings.explainer = settings.load_explainer_config()
    return settings
