"""Configuration loader with YAML parsing, env-var interpolation, and Pydantic validation."""

from __future__ import annotations

import os
import re
from fractions import Fraction
from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

DEFAULT_MODEL_MULTIPLIERS: dict[str, str] = {
    "claude-3-5-haiku-latest": "1",
    "claude-sonnet-4-20250514": "3",
    "claude-opus-4-20250514": "15",
}


class AnthropicConfig(BaseModel):
    api_key: str
    base_url: Optional[str] = None
    max_retries: int = 3
    timeout: int = 120


class AIConfig(BaseModel):
    default_model: str = "claude-sonnet-4-20250514"
    max_tokens: int = 4096
    temperature: float = 0.7
    system_prompt: str = "You are a friendly and helpful assistant."
    memory_context_limit: int = Field(default=20, ge=0)


class ToolsConfig(BaseModel):
    max_rounds: int = Field(default=10, ge=1)
    call_timeout: float = Field(default=30.0, gt=0)


class OrchestratorConfig(BaseModel):
    model_timeout: float = Field(default=120.0, gt=0)


class DailyClaimConfig(BaseModel):
    verified: int = Field(default=10000, ge=0)
    non_verified: int = Field(default=5000, ge=0)


class SparksConfig(BaseModel):
    timezone: str = "UTC"
    daily_claim: DailyClaimConfig = Field(default_factory=DailyClaimConfig)
    initial_grant: DailyClaimConfig = Field(default_factory=DailyClaimConfig)
    min_cost: int = Field(default=1, ge=0)
    model_multipliers: dict[str, str] = Field(
        default_factory=lambda: dict(DEFAULT_MODEL_MULTIPLIERS)
    )

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {value}") from e
        return value

    @field_validator("model_multipliers", mode="before")
    @classmethod
    def _exact_multipliers(cls, value: dict) -> dict[str, str]:
        # Multipliers are kept as decimal strings so they parse into exact fractions.
        result: dict[str, str] = {}
        for model_id, raw in (value or {}).items():
            text = str(raw).strip()
            try:
                multiplier = Fraction(text)
            except (ValueError, ZeroDivisionError) as e:
                raise ValueError(f"Invalid multiplier for {model_id}: {raw!r}") from e
            if multiplier < 1:
                raise ValueError(f"Multiplier for {model_id} must be >= 1, got {raw!r}")
            result[str(model_id)] = text
        return result

    def multipliers(self) -> dict[str, Fraction]:
        return {model_id: Fraction(text) for model_id, text in self.model_multipliers.items()}


class StorageConfig(BaseModel):
    db_path: str = "./data/sparks_chat.db"


class HistoryConfig(BaseModel):
    default_limit: int = Field(default=10, ge=1)
    max_limit: int = Field(default=50, ge=1)


class AppConfig(BaseModel):
    log_level: str = "INFO"
    json_logs: bool = False
    data_dir: str = "./data"
    anthropic: Optional[AnthropicConfig] = None
    ai: AIConfig = Field(default_factory=AIConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    orchestrator: OrchestratorConfig = Field(default_factory=OrchestratorConfig)
    sparks: SparksConfig = Field(default_factory=SparksConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    history: HistoryConfig = Field(default_factory=HistoryConfig)


_ENV_VAR_PATTERN = re.compile(r"\$\{(\w+)\}")


def _interpolate_env_vars(text: str, extra: dict[str, str] | None = None) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        if extra and var_name in extra:
            return extra[var_name]
        value = os.environ.get(var_name)
        if value is None:
            return match.group(0)
        return value

    return _ENV_VAR_PATTERN.sub(_replace, text)


def load_config(config_path: str | Path = "config.yaml", env_path: str | Path = ".env") -> AppConfig:
    """Load and validate configuration from YAML file with env-var interpolation."""
    env_file = Path(env_path)
    if env_file.exists():
        load_dotenv(env_file)

    config_file = Path(config_path)
    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_file}")

    raw_text = config_file.read_text(encoding="utf-8")

    # First pass: extract data_dir for self-referencing
    raw_data = yaml.safe_load(raw_text) or {}
    data_dir = _interpolate_env_vars(str(raw_data.get("data_dir", "./data")))

    # Second pass: interpolate all env vars
    interpolated = _interpolate_env_vars(raw_text, extra={"data_dir": data_dir})
    data = yaml.safe_load(interpolated) or {}

    return AppConfig(**data)
