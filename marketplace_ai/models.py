"""
Core data models for the AI orchestration layer.

Everything here is transient: created per call, discarded afterwards. The only
long-lived values are ProviderConfig instances, built once at startup from
settings and frozen.

Design principles:
  - Provider configuration is immutable and safe to share across tasks
  - Every invocation records its attempt trace (model, attempt, outcome)
  - Extraction results say explicitly whether they parsed or fell back
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, SecretStr

# ═══════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════


class ProviderName(str, Enum):
    """Registry slot. PRIMARY is preferred unless explicitly overridden."""

    PRIMARY = "primary"
    SECONDARY = "secondary"


class ProviderKind(str, Enum):
    """Which vendor API sits behind a registry slot."""

    GEMINI = "gemini"
    OPENAI = "openai"


class ModelProfile(str, Enum):
    """Candidate list family: conversational vs long-form content generation."""

    CHAT = "chat"
    CONTENT = "content"


class ChatRole(str, Enum):
    """Canonical conversation roles after normalization."""

    USER = "user"
    ASSISTANT = "assistant"


class AttemptOutcome(str, Enum):
    SUCCESS = "success"
    RETRYABLE_FAILURE = "retryable_failure"
    FATAL_FAILURE = "fatal_failure"


class ExtractionStatus(str, Enum):
    PARSED = "parsed"
    FALLBACK = "fallback"


# ═══════════════════════════════════════════════════════════
# Provider configuration
# ═══════════════════════════════════════════════════════════


class ProviderConfig(BaseModel):
    """One configured language-model provider. Frozen after startup."""

    model_config = ConfigDict(frozen=True)

    name: ProviderName
    kind: ProviderKind
    credential_env: str = Field(description="Environment variable holding the API key")
    api_key: SecretStr = SecretStr("")
    chat_models: tuple[str, ...] = ()
    content_models: tuple[str, ...] = ()

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_key.get_secret_value().strip())

    def candidate_models(self, profile: ModelProfile = ModelProfile.CHAT) -> tuple[str, ...]:
        """Ordered candidates for a profile; content falls back to the chat list when empty."""
        if profile == ModelProfile.CONTENT and self.content_models:
            return self.content_models
        return self.chat_models or self.content_models

    @property
    def key_suffix(self) -> str:
        """Last four characters of the key for log correlation, never the key itself."""
        secret = self.api_key.get_secret_value().strip()
        return f"...{secret[-4:]}" if secret else ""


# ═══════════════════════════════════════════════════════════
# Invocation
# ═══════════════════════════════════════════════════════════


class ChatTurn(BaseModel):
    """A single turn of a normalized conversation."""

    role: ChatRole
    content: str


class InvocationRequest(BaseModel):
    """Everything one orchestration call needs."""

    prompt: str
    system_instruction: Optional[str] = None
    # Raw caller-supplied history; the normalizer validates each entry.
    conversation_history: list[Any] = Field(default_factory=list)
    # Overrides the provider's default candidates when set.
    models: Optional[list[str]] = None
    task: str = ""
    json_mode: bool = False
    max_retries: Optional[int] = None
    timeout: Optional[float] = Field(default=None, description="Deadline in seconds for the whole call")


class InvocationAttempt(BaseModel):
    """One call of one model. Attempt numbers per model run 0..max_retries."""

    model: str
    attempt: int = Field(ge=0)
    outcome: AttemptOutcome
    reason: str = ""


class Completion(BaseModel):
    """Raw text produced by the first model that succeeded."""

    text: str
    provider: ProviderKind
    model: str
    attempts: list[InvocationAttempt] = Field(default_factory=list)

    @property
    def used_fallback_model(self) -> bool:
        return len({a.model for a in self.attempts}) > 1


# ═══════════════════════════════════════════════════════════
# Extraction
# ═══════════════════════════════════════════════════════════


class ExtractionResult(BaseModel):
    """Parsed-and-valid JSON object, or an explicit could-not-parse signal with the raw text."""

    status: ExtractionStatus
    value: Optional[dict[str, Any]] = None
    raw_text: str = ""
    missing_fields: list[str] = Field(default_factory=list)
    reason: str = ""

    @property
    def ok(self) -> bool:
        return self.status == ExtractionStatus.PARSED and self.value is not None


class GenerationResult(BaseModel):
    """Use-case output. ai_generated=False means the deterministic default was substituted."""

    data: dict[str, Any]
    ai_generated: bool
    model: Optional[str] = None
    fallback_reason: Optional[str] = None

    def __getitem__(self, key: str) -> Any:
        return self.data[key]

    def to_response(self) -> dict[str, Any]:
        """Shape returned to route handlers (camelCase marker next to the payload)."""
        return {**self.data, "aiGenerated": self.ai_generated}
