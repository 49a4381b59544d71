"""Load configuration from YAML and environment variables. No hardcoded secrets."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Default config lives next to this module
_DEFAULT_CONFIG_PATH = Path(__file__).parent / "default.yaml"

# Environment variable -> (section, field). Applied on top of YAML.
_ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "REDIS_URL": ("resumable", "redis_url"),
    "STORAGE_REDIS_URL": ("storage", "redis_url"),
    "OPENAI_API_KEY": ("model", "openai_api_key"),
    "OPENAI_BASE_URL": ("model", "openai_base_url"),
    "MODEL_NAME": ("model", "name"),
    "MODEL_PROVIDER": ("model", "provider"),
    "LOG_LEVEL": ("logging", "level"),
    "API_HOST": ("api", "host"),
    "API_PORT": ("api", "port"),
}


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


class StorageSettings(BaseModel):
    """Chat, message, feedback and stream-id storage."""

    redis_url: str = "redis://localhost:6379/0"
    key_prefix: str = "feedback"


class ResumableSettings(BaseModel):
    """Side-channel for resumable streams. No redis_url means pass-through mode."""

    redis_url: Optional[str] = None
    key_prefix: str = "resumable-stream"
    staleness_seconds: float = 15.0
    max_duration_seconds: float = 60.0
    stream_ttl_seconds: int = 3600
    read_block_ms: int = 1000
    idle_timeout_seconds: float = 60.0


class ModelSettings(BaseModel):
    provider: str = "openai"  # openai | lm_studio
    name: str = "gpt-4o"
    openai_api_key: str = ""
    openai_base_url: Optional[str] = None
    send_reasoning: bool = True
    lm_studio_reasoning: str = "on"
    request_timeout_seconds: float = 120.0


class SmoothingSettings(BaseModel):
    enabled: bool = True
    chunking: str = "word"  # word | line | a regular expression
    delay_ms: int = 10


class PromptSettings(BaseModel):
    default_language: str = "en"
    # Instruction prepended for any non-English language without its own entry.
    fallback_language_instruction: str = "You have to use Italian"
    language_instructions: dict[str, str] = Field(
        default_factory=lambda: {"it": "You have to use Italian"}
    )


class ApiSettings(BaseModel):
    host: str = "0.0.0.0"
    port: int = 8000
    error_message: str = "Oops, an error occurred!"
    session_cookie: str = "feedback_sid"


class LoggingSettings(BaseModel):
    level: str = "INFO"
    json_output: bool = True


class Config(BaseSettings):
    """Application config: YAML + env. Secrets from env only."""

    model_config = SettingsConfigDict(
        env_prefix="FEEDBACK_", env_nested_delimiter="__", extra="ignore"
    )

    storage: StorageSettings = Field(default_factory=StorageSettings)
    resumable: ResumableSettings = Field(default_factory=ResumableSettings)
    model: ModelSettings = Field(default_factory=ModelSettings)
    smoothing: SmoothingSettings = Field(default_factory=SmoothingSettings)
    prompts: PromptSettings = Field(default_factory=PromptSettings)
    api: ApiSettings = Field(default_factory=ApiSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @classmethod
    def load(cls, config_path: str | Path | None = None) -> "Config":
        path = Path(config_path) if config_path else _DEFAULT_CONFIG_PATH
        yaml_data = _load_yaml(path)
        env_name = os.getenv("FEEDBACK_ENV", "")
        if env_name:
            yaml_data = _deep_merge(yaml_data, _load_yaml(Path(f"config/{env_name}.yaml")))
        for env_var, (section, field) in _ENV_OVERRIDES.items():
            value = os.getenv(env_var)
            if value:
                yaml_data.setdefault(section, {})[field] = value
        return cls(**yaml_data)


def get_config(config_path: str | Path | None = None) -> Config:
    return Config.load(config_path)
