"""
Provider adapters: the only code that touches vendor SDKs.

Each adapter turns (model, prompt, system instruction, normalized history)
into raw text and turns every SDK exception into a ProviderError carrying an
ErrorKind. Two response shapes are normalized here:
  - Gemini-style: Markdown / JSON-in-prose, content may arrive as a list of parts
  - OpenAI-style: native JSON mode (response_format=json_object), plain string content
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING, Any, Optional, Protocol

import structlog
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from langchain_google_genai import ChatGoogleGenerativeAI
from langchain_openai import ChatOpenAI

from marketplace_ai.conversation import normalize_history
from marketplace_ai.llm_client import ErrorKind, ProviderError
from marketplace_ai.models import ChatRole, ChatTurn, ProviderConfig, ProviderKind, ProviderName

if TYPE_CHECKING:
    from marketplace_ai.config import Settings
    from marketplace_ai.llm_client import ProviderRegistry

logger = structlog.get_logger()


class ProviderAdapter(Protocol):
    """What the orchestration layer needs from a provider."""

    async def complete(
        self,
        *,
        model: str,
        prompt: str,
        system_instruction: Optional[str],
        history: Sequence[ChatTurn],
        json_mode: bool,
    ) -> str: ...


# ── Error classification (adapter boundary) ──

_OVERLOADED_STATUSES = frozenset({500, 502, 503, 504, 529})
_AUTH_STATUSES = frozenset({401, 403})

# Exception class names raised by the Google, OpenAI and httpx client libraries (plus builtins)
_CLASS_NAME_KINDS: dict[str, ErrorKind] = {
    "ServiceUnavailable": ErrorKind.OVERLOADED,
    "InternalServerError": ErrorKind.OVERLOADED,
    "DeadlineExceeded": ErrorKind.OVERLOADED,
    "APIConnectionError": ErrorKind.OVERLOADED,
    "APITimeoutError": ErrorKind.OVERLOADED,
    "ConnectError": ErrorKind.OVERLOADED,
    "ReadTimeout": ErrorKind.OVERLOADED,
    "TimeoutError": ErrorKind.OVERLOADED,
    "ConnectionError": ErrorKind.OVERLOADED,
    "ResourceExhausted": ErrorKind.QUOTA,
    "RateLimitError": ErrorKind.QUOTA,
    "TooManyRequests": ErrorKind.QUOTA,
    "NotFound": ErrorKind.NOT_FOUND,
    "NotFoundError": ErrorKind.NOT_FOUND,
    "Unauthenticated": ErrorKind.AUTH,
    "PermissionDenied": ErrorKind.AUTH,
    "PermissionDeniedError": ErrorKind.AUTH,
    "AuthenticationError": ErrorKind.AUTH,
}


def status_code_of(exc: BaseException) -> Optional[int]:
    """Best-effort HTTP status from OpenAI (status_code), google-genai (code) or httpx (response.status_code)."""
    for attr in ("status_code", "code", "status"):
        val = getattr(exc, attr, None)
        if isinstance(val, int) and 100 <= val < 600:
            return val
        if isinstance(val, str) and val.isdigit():
            return int(val)
    response = getattr(exc, "response", None)
    val = getattr(response, "status_code", None)
    if isinstance(val, int):
        return val
    return None


def _mentions_api_key(msg: str) -> bool:
    return "api key" in msg or "api_key" in msg or "apikey" in msg


def classify_exception(exc: BaseException) -> ErrorKind:
    """Map an SDK exception onto the closed ErrorKind set; status first, class name next, message last."""
    msg = str(exc).lower()
    status = status_code_of(exc)
    if status is not None:
        if status in _OVERLOADED_STATUSES:
            return ErrorKind.OVERLOADED
        if status == 404:
            return ErrorKind.NOT_FOUND
        if status == 429:
            return ErrorKind.QUOTA
        if status in _AUTH_STATUSES:
            return ErrorKind.AUTH
        if status == 400 and _mentions_api_key(msg):
            # Gemini reports a bad key as 400 INVALID_ARGUMENT "API key not valid"
            return ErrorKind.AUTH
        if 400 <= status < 500:
            return ErrorKind.INVALID_REQUEST

    for klass in type(exc).__mro__:
        kind = _CLASS_NAME_KINDS.get(klass.__name__)
        if kind is not None:
            return kind

    if "overloaded" in msg or "503" in msg or "service unavailable" in msg or "unavailable" in msg:
        return ErrorKind.OVERLOADED
    if "429" in msg or "quota" in msg or "rate limit" in msg or "resource_exhausted" in msg:
        return ErrorKind.QUOTA
    if "404" in msg or "not found" in msg:
        return ErrorKind.NOT_FOUND
    if "401" in msg or "403" in msg or _mentions_api_key(msg) or "unauthorized" in msg:
        return ErrorKind.AUTH
    if "timeout" in msg or "timed out" in msg or "connection" in msg:
        return ErrorKind.OVERLOADED
    return ErrorKind.INVALID_REQUEST


# ── Response normalization ──


def response_text(response: Any) -> str:
    """Flatten a chat model reply (str, list of str / {"text": ...} parts, or message object) into text."""
    content = getattr(response, "content", response)
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts: list[str] = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict) and part.get("type", "text") == "text":
                parts.append(str(part.get("text", "")))
        return "".join(parts)
    return "" if content is None else str(content)


def build_messages(
    prompt: str,
    system_instruction: Optional[str] = None,
    history: Sequence[ChatTurn] = (),
) -> list[BaseMessage]:
    """
    System instruction, then either the normalized history followed by the prompt
    (chat-style call) or the prompt alone (single-shot) when there is no usable history.
    """
    messages: list[BaseMessage] = []
    if system_instruction:
        messages.append(SystemMessage(content=system_instruction))
    turns = normalize_history([*history, ChatTurn(role=ChatRole.USER, content=prompt)]) if history else []
    if not turns:
        messages.append(HumanMessage(content=prompt))
        return messages
    for turn in turns:
        if turn.role == ChatRole.USER:
            messages.append(HumanMessage(content=turn.content))
        else:
            messages.append(AIMessage(content=turn.content))
    return messages


# ── Adapters ──


class LangChainProvider:
    """Adapter over a LangChain chat model factory (one chat model instance per model name)."""

    def __init__(
        self,
        config: ProviderConfig,
        factory: Callable[[str], BaseChatModel],
        *,
        supports_json_mode: bool = False,
    ) -> None:
        self.config = config
        self._factory = factory
        self._supports_json_mode = supports_json_mode
        # Idempotent cache: concurrent first calls may both build, either instance is equivalent
        self._models: dict[str, BaseChatModel] = {}

    def get_model(self, model: str) -> BaseChatModel:
        chat_model = self._models.get(model)
        if chat_model is None:
            chat_model = self._factory(model)
            self._models[model] = chat_model
        return chat_model

    async def complete(
        self,
        *,
        model: str,
        prompt: str,
        system_instruction: Optional[str] = None,
        history: Sequence[ChatTurn] = (),
        json_mode: bool = False,
    ) -> str:
        messages = build_messages(prompt, system_instruction, history)
        runnable: Any = self.get_model(model)
        if json_mode and self._supports_json_mode:
            runnable = runnable.bind(response_format={"type": "json_object"})

        try:
            response = await runnable.ainvoke(messages)
        except Exception as exc:
            kind = classify_exception(exc)
            logger.warning(
                "llm_provider_error",
                provider=self.config.kind.value,
                model=model,
                kind=kind.value,
                error_type=type(exc).__name__,
                status=status_code_of(exc),
                error=str(exc)[:200],
            )
            raise ProviderError(str(exc) or type(exc).__name__, kind, model, status_code_of(exc)) from exc

        text = response_text(response)
        if not text.strip():
            raise ProviderError(f"Empty response from {self.config.kind.value} model {model}", ErrorKind.EMPTY_RESPONSE, model)
        return text


def gemini_factory(config: ProviderConfig, settings: Settings) -> Callable[[str], BaseChatModel]:
    api_key = config.api_key.get_secret_value()

    def _create(model: str) -> BaseChatModel:
        return ChatGoogleGenerativeAI(
            model=model,
            google_api_key=api_key,
            temperature=settings.llm.temperature,
            max_output_tokens=settings.llm.max_tokens,
            timeout=settings.llm.request_timeout,
            max_retries=0,
        )

    return _create


def openai_factory(config: ProviderConfig, settings: Settings) -> Callable[[str], BaseChatModel]:
    api_key = config.api_key.get_secret_value()

    def _create(model: str) -> BaseChatModel:
        return ChatOpenAI(
            model=model,
            api_key=api_key,
            temperature=settings.llm.temperature,
            max_tokens=settings.llm.max_tokens,
            timeout=settings.llm.request_timeout,
            max_retries=0,
        )

    return _create


def build_adapters(registry: ProviderRegistry, settings: Settings) -> dict[ProviderName, ProviderAdapter]:
    """One adapter per credentialed provider; chat models are created lazily on first use."""
    adapters: dict[ProviderName, ProviderAdapter] = {}
    for config in registry.providers:
        if not config.has_credentials:
            continue
        if config.kind == ProviderKind.GEMINI:
            adapters[config.name] = LangChainProvider(config, gemini_factory(config, settings))
        elif config.kind == ProviderKind.OPENAI:
            adapters[config.name] = LangChainProvider(
                config, openai_factory(config, settings), supports_json_mode=True
            )
    return adapters
