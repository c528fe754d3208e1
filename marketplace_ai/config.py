"""
Centralized configuration for the marketplace AI layer.

All settings are loaded from environment variables with sensible defaults.
Pydantic Settings provides validation and type coercion; per-task model
routing lives in config/models.yaml.
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings

# Load .env then .env.local (so .env.local overrides).
_repo_root = Path(__file__).resolve().parent.parent
load_dotenv(_repo_root / ".env", override=True)
_env_local = _repo_root / ".env.local"
if _env_local.exists():
    load_dotenv(_env_local, override=True)

# Disable LangSmith tracing when no API key, avoids 403 Forbidden noise
if not os.environ.get("LANGCHAIN_API_KEY", "").strip():
    os.environ["LANGCHAIN_TRACING_V2"] = "false"


def split_models(raw: str) -> tuple[str, ...]:
    """Parse a comma-separated model list, keeping priority order and dropping blanks/duplicates."""
    seen: list[str] = []
    for part in (raw or "").split(","):
        name = part.strip()
        if name and name not in seen:
            seen.append(name)
    return tuple(seen)


class LLMConfig(BaseSettings):
    """Provider credentials and ordered candidate model lists."""

    # Presence of a key is what activates a provider. Gemini is primary.
    gemini_api_key: str = Field(default="", alias="GEMINI_API_KEY")
    openai_api_key: str = Field(default="", alias="OPENAI_API_KEY")
    # "openai" forces the secondary provider even when a Gemini key exists
    ai_provider: str = Field(default="", alias="AI_PROVIDER")

    # Candidate lists, tried left to right by the fallback executor.
    gemini_chat_models: str = Field(
        default="gemini-2.5-flash,gemini-2.0-flash,gemini-flash-latest",
        alias="GEMINI_CHAT_MODELS",
    )
    gemini_content_models: str = Field(
        default="gemini-2.5-flash,gemini-2.5-pro,gemini-2.0-flash",
        alias="GEMINI_CONTENT_MODELS",
    )
    openai_chat_models: str = Field(default="gpt-4o-mini", alias="OPENAI_CHAT_MODELS")
    openai_content_models: str = Field(default="gpt-4o,gpt-4o-mini", alias="OPENAI_CONTENT_MODELS")

    # Shared generation params
    temperature: float = Field(default=0.7, alias="LLM_TEMPERATURE")
    max_tokens: int = Field(default=4096, alias="LLM_MAX_TOKENS")
    request_timeout: float = Field(
        default=60.0,
        alias="LLM_REQUEST_TIMEOUT",
        description="Per network call timeout handed to the chat model (seconds).",
    )
    invocation_timeout: float = Field(
        default=0.0,
        alias="LLM_INVOCATION_TIMEOUT",
        description="Deadline for a whole orchestration call including backoff; 0 = none.",
    )

    @property
    def force_secondary(self) -> bool:
        return self.ai_provider.strip().lower() == "openai"


class RetryConfig(BaseSettings):
    """Backoff tuning. Retries apply only to overloaded / unavailable errors."""

    chat_max_retries: int = Field(default=2, alias="LLM_CHAT_MAX_RETRIES")
    content_max_retries: int = Field(default=3, alias="LLM_CONTENT_MAX_RETRIES")
    # Delay before retry n is base_delay * 2**n: 1s, 2s, 4s ...
    base_delay_seconds: float = Field(default=1.0, alias="LLM_RETRY_BASE_DELAY")
    # Pause before moving to candidate i+1 after candidate i stayed overloaded: (i+1) * cooldown
    model_cooldown_seconds: float = Field(default=0.5, alias="LLM_MODEL_COOLDOWN")


class SiteConfig(BaseSettings):
    """Public site identity used by deterministic structured-data defaults."""

    site_url: str = Field(default="http://localhost:5173", alias="SITE_URL")
    site_name: str = Field(default="Infinity Web Technology", alias="SITE_NAME")

    @property
    def base_url(self) -> str:
        # SITE_URL may hold a comma-separated CORS list; the first entry is canonical
        return self.site_url.split(",")[0].strip().rstrip("/")


class ObservabilityConfig(BaseSettings):
    """LangSmith, Prometheus metrics and log level."""

    langsmith_api_key: str = Field(default="", alias="LANGCHAIN_API_KEY")
    langsmith_project: str = Field(default="marketplace-ai", alias="LANGCHAIN_PROJECT")
    tracing_enabled: bool = Field(default=False, alias="LANGCHAIN_TRACING_V2")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    metrics_enabled: bool = Field(default=False, alias="PROMETHEUS_METRICS_ENABLED")
    metrics_port: int = Field(default=8000, alias="PROMETHEUS_METRICS_PORT")

    @property
    def tracing_active(self) -> bool:
        """LangSmith tracing needs both the switch and a key."""
        return self.tracing_enabled and bool(self.langsmith_api_key.strip())


class YAMLConfigLoader:
    """Loads YAML config files from a configurable directory."""

    def __init__(self, config_dir: str | Path = "config") -> None:
        self._dir = _repo_root / config_dir

    def load(self, filename: str) -> dict[str, Any]:
        """Load a YAML file; returns empty dict if the file is absent."""
        path = self._dir / filename
        if not path.exists():
            return {}
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
        return data if isinstance(data, dict) else {}


class Settings(BaseSettings):
    """Root settings container, access all config from one object."""

    llm: LLMConfig = Field(default_factory=LLMConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    site: SiteConfig = Field(default_factory=SiteConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)

    # YAML-loaded config (populated in get_settings)
    model_routing: dict[str, Any] = Field(default_factory=dict)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Singleton settings instance. Cached after first call."""
    settings = Settings()
    settings.model_routing = YAMLConfigLoader().load("models.yaml")
    return settings
