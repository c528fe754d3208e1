"""Tests for the adapter boundary: error classification, message building and the LangChain adapter."""

from typing import Any, Optional

import pytest
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from conftest import provider_config
from marketplace_ai.config import LLMConfig, Settings
from marketplace_ai.llm_client import ErrorKind, ProviderError, ProviderRegistry
from marketplace_ai.models import ChatRole, ChatTurn, ProviderKind, ProviderName
from marketplace_ai.providers import (
    LangChainProvider,
    build_adapters,
    build_messages,
    classify_exception,
    response_text,
    status_code_of,
)


class _StatusError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ServiceUnavailable(Exception):
    pass


class ResourceExhausted(Exception):
    pass


class RateLimitError(Exception):
    pass


# ── classify_exception ──


@pytest.mark.parametrize(
    "exc, expected",
    [
        (_StatusError("upstream", 503), ErrorKind.OVERLOADED),
        (_StatusError("bad gateway", 502), ErrorKind.OVERLOADED),
        (_StatusError("models/x is not found", 404), ErrorKind.NOT_FOUND),
        (_StatusError("slow down", 429), ErrorKind.QUOTA),
        (_StatusError("forbidden", 403), ErrorKind.AUTH),
        (_StatusError("API key not valid. Please pass a valid API key.", 400), ErrorKind.AUTH),
        (_StatusError("Invalid JSON payload received", 400), ErrorKind.INVALID_REQUEST),
        (ServiceUnavailable("backend"), ErrorKind.OVERLOADED),
        (ResourceExhausted("limit"), ErrorKind.QUOTA),
        (RateLimitError("limit"), ErrorKind.QUOTA),
        (RuntimeError("The model is overloaded. Please try again later."), ErrorKind.OVERLOADED),
        (RuntimeError("[503 Service Unavailable]"), ErrorKind.OVERLOADED),
        (RuntimeError("You exceeded your current quota"), ErrorKind.QUOTA),
        (RuntimeError("models/gemini-9 not found for API version v1beta"), ErrorKind.NOT_FOUND),
        (RuntimeError("401 Unauthorized"), ErrorKind.AUTH),
        (RuntimeError("Request timed out"), ErrorKind.OVERLOADED),
        (TimeoutError(), ErrorKind.OVERLOADED),
        (ConnectionResetError("peer reset"), ErrorKind.OVERLOADED),
        (ValueError("something odd"), ErrorKind.INVALID_REQUEST),
    ],
)
def test_classify_exception(exc: BaseException, expected: ErrorKind) -> None:
    assert classify_exception(exc) is expected


def test_status_code_from_nested_response() -> None:
    class _Response:
        status_code = 503

    exc = Exception("boom")
    exc.response = _Response()  # type: ignore[attr-defined]
    assert status_code_of(exc) == 503


def test_status_code_from_string_code() -> None:
    exc = Exception("boom")
    exc.code = "429"  # type: ignore[attr-defined]
    assert status_code_of(exc) == 429


# ── response_text / build_messages ──


def test_response_text_variants() -> None:
    assert response_text(AIMessage(content="hello")) == "hello"
    assert response_text(AIMessage(content=["a", {"type": "text", "text": "b"}, {"type": "image_url"}])) == "ab"
    assert response_text("raw") == "raw"
    assert response_text(None) == ""


def test_build_messages_single_shot() -> None:
    messages = build_messages("write", "be brief")
    assert isinstance(messages[0], SystemMessage)
    assert messages[0].content == "be brief"
    assert isinstance(messages[1], HumanMessage)
    assert len(messages) == 2


def test_build_messages_with_history_appends_prompt_as_user_turn() -> None:
    history = [
        ChatTurn(role=ChatRole.USER, content="Hi"),
        ChatTurn(role=ChatRole.ASSISTANT, content="Hello! How can I help?"),
    ]
    messages = build_messages("Suggest a project", None, history)
    assert [type(m) for m in messages] == [HumanMessage, AIMessage, HumanMessage]
    assert messages[-1].content == "Suggest a project"


def test_build_messages_merges_prompt_into_trailing_user_turn() -> None:
    history = [ChatTurn(role=ChatRole.USER, content="Hi")]
    messages = build_messages("again", None, history)
    assert len(messages) == 1
    assert messages[0].content == "Hi again"


# ── LangChainProvider ──


class FakeChatModel:
    """Duck-typed stand-in for a LangChain chat model."""

    def __init__(self, reply: Any = None, error: Optional[BaseException] = None) -> None:
        self.reply = reply
        self.error = error
        self.bound: list[dict[str, Any]] = []
        self.received: list[Any] = []

    def bind(self, **kwargs: Any) -> "FakeChatModel":
        self.bound.append(kwargs)
        return self

    async def ainvoke(self, messages: Any) -> Any:
        self.received.append(messages)
        if self.error is not None:
            raise self.error
        return self.reply


@pytest.mark.asyncio
async def test_adapter_returns_text_and_caches_models() -> None:
    created: list[str] = []
    chat_model = FakeChatModel(AIMessage(content='{"ok": true}'))

    def factory(model: str) -> FakeChatModel:
        created.append(model)
        return chat_model

    adapter = LangChainProvider(provider_config(), factory)
    assert await adapter.complete(model="m1", prompt="p") == '{"ok": true}'
    await adapter.complete(model="m1", prompt="p")
    assert created == ["m1"]


@pytest.mark.asyncio
async def test_json_mode_bound_only_when_supported() -> None:
    gemini_model = FakeChatModel(AIMessage(content="{}x"))
    openai_model = FakeChatModel(AIMessage(content="{}"))

    gemini = LangChainProvider(provider_config(), lambda _m: gemini_model)
    openai = LangChainProvider(
        provider_config(ProviderName.SECONDARY, ProviderKind.OPENAI),
        lambda _m: openai_model,
        supports_json_mode=True,
    )

    await gemini.complete(model="m1", prompt="p", json_mode=True)
    await openai.complete(model="gpt-4o", prompt="p", json_mode=True)

    assert gemini_model.bound == []
    assert openai_model.bound == [{"response_format": {"type": "json_object"}}]


@pytest.mark.asyncio
async def test_sdk_error_is_wrapped_with_kind_and_cause() -> None:
    original = _StatusError("The model is overloaded", 503)
    adapter = LangChainProvider(provider_config(), lambda _m: FakeChatModel(error=original))

    with pytest.raises(ProviderError) as exc_info:
        await adapter.complete(model="m1", prompt="p")

    err = exc_info.value
    assert err.kind is ErrorKind.OVERLOADED
    assert err.model == "m1"
    assert err.status_code == 503
    assert err.__cause__ is original


@pytest.mark.asyncio
async def test_blank_reply_is_empty_response() -> None:
    adapter = LangChainProvider(provider_config(), lambda _m: FakeChatModel(AIMessage(content="  \n")))

    with pytest.raises(ProviderError) as exc_info:
        await adapter.complete(model="m1", prompt="p")
    assert exc_info.value.kind is ErrorKind.EMPTY_RESPONSE


def test_build_adapters_only_for_credentialed_providers() -> None:
    settings = Settings(llm=LLMConfig(GEMINI_API_KEY="", OPENAI_API_KEY="sk-abc", AI_PROVIDER=""))
    registry = ProviderRegistry.from_settings(settings)

    adapters = build_adapters(registry, settings)

    assert list(adapters) == [ProviderName.SECONDARY]
    adapter = adapters[ProviderName.SECONDARY]
    assert isinstance(adapter, LangChainProvider)
    assert adapter.config.kind is ProviderKind.OPENAI
