"""Tests for provider selection, retry/backoff, model fallback, deadlines and routing."""

import asyncio

import pytest

from conftest import FakeAdapter, SleepRecorder, build_client, not_found, overloaded, provider_config, quota
from marketplace_ai.llm_client import (
    OVERLOADED_MESSAGE,
    UNAVAILABLE_MESSAGE,
    AllModelsExhaustedError,
    AuthenticationError,
    ConfigurationError,
    Deadline,
    DeadlineExceededError,
    ErrorKind,
    InvalidRequestError,
    LLMClient,
    ModelFallbackExecutor,
    ModelTask,
    ProviderError,
    ProviderRegistry,
    QuotaExceededError,
    RetryPolicy,
    error_payload,
)
from marketplace_ai.models import (
    AttemptOutcome,
    ChatRole,
    InvocationRequest,
    ModelProfile,
    ProviderKind,
    ProviderName,
)
from marketplace_ai.parsing import parse_json

# ── Provider registry ──


def test_registry_prefers_primary(gemini_config, openai_config) -> None:
    registry = ProviderRegistry([gemini_config, openai_config])
    assert registry.active_provider() is gemini_config
    assert registry.is_available()
    assert registry.provider_name() == "gemini"


def test_registry_force_secondary(gemini_config, openai_config) -> None:
    registry = ProviderRegistry([gemini_config, openai_config], force_secondary=True)
    assert registry.active_provider() is openai_config
    assert registry.provider_name() == "openai"


def test_registry_falls_back_to_secondary_without_primary_key(openai_config) -> None:
    primary = provider_config(api_key="  ")
    registry = ProviderRegistry([primary, openai_config])
    assert registry.active_provider() is openai_config


def test_registry_none_configured() -> None:
    registry = ProviderRegistry(
        [
            provider_config(api_key=""),
            provider_config(ProviderName.SECONDARY, ProviderKind.OPENAI, api_key=""),
        ]
    )
    assert registry.active_provider() is None
    assert not registry.is_available()
    assert registry.provider_name() == "none"


def test_force_secondary_without_secondary_key_is_unavailable(gemini_config) -> None:
    registry = ProviderRegistry([gemini_config], force_secondary=True)
    assert registry.active_provider() is None


# ── Retry / backoff policy ──


@pytest.mark.asyncio
async def test_retry_backoff_schedule_and_trace(sleeper: SleepRecorder) -> None:
    adapter = FakeAdapter({"m1": [overloaded("m1")]})
    policy = RetryPolicy(max_retries=2, base_delay=1.0)
    trace = []

    async def invoke(model: str) -> str:
        return await adapter.complete(model=model, prompt="p")

    with pytest.raises(ProviderError) as exc_info:
        await policy.invoke_with_retry("m1", invoke, deadline=Deadline(sleep=sleeper), attempts=trace)

    assert exc_info.value.kind is ErrorKind.OVERLOADED
    assert adapter.calls_for("m1") == 3
    # No sleep after the final failed attempt
    assert sleeper.delays == [1.0, 2.0]
    assert [a.attempt for a in trace] == [0, 1, 2]
    assert all(a.outcome is AttemptOutcome.RETRYABLE_FAILURE for a in trace)


@pytest.mark.asyncio
async def test_retry_three_retries_doubles_each_time(sleeper: SleepRecorder) -> None:
    adapter = FakeAdapter({"m1": [overloaded("m1")]})
    policy = RetryPolicy(max_retries=3, base_delay=1.0)

    async def invoke(model: str) -> str:
        return await adapter.complete(model=model, prompt="p")

    with pytest.raises(ProviderError):
        await policy.invoke_with_retry("m1", invoke, deadline=Deadline(sleep=sleeper))
    assert sleeper.delays == [1.0, 2.0, 4.0]


@pytest.mark.asyncio
async def test_retry_recovers_after_transient_overload(sleeper: SleepRecorder) -> None:
    adapter = FakeAdapter({"m1": [overloaded("m1"), "ok"]})
    policy = RetryPolicy(max_retries=2)
    trace = []

    async def invoke(model: str) -> str:
        return await adapter.complete(model=model, prompt="p")

    text = await policy.invoke_with_retry("m1", invoke, deadline=Deadline(sleep=sleeper), attempts=trace)
    assert text == "ok"
    assert sleeper.delays == [1.0]
    assert [a.outcome for a in trace] == [AttemptOutcome.RETRYABLE_FAILURE, AttemptOutcome.SUCCESS]


@pytest.mark.asyncio
async def test_retry_does_not_retry_quota(sleeper: SleepRecorder) -> None:
    adapter = FakeAdapter({"m1": [quota("m1")]})
    policy = RetryPolicy(max_retries=2)
    trace = []

    async def invoke(model: str) -> str:
        return await adapter.complete(model=model, prompt="p")

    with pytest.raises(ProviderError) as exc_info:
        await policy.invoke_with_retry("m1", invoke, deadline=Deadline(sleep=sleeper), attempts=trace)
    assert exc_info.value.kind is ErrorKind.QUOTA
    assert adapter.calls_for("m1") == 1
    assert sleeper.delays == []
    assert trace[0].outcome is AttemptOutcome.FATAL_FAILURE


# ── Model fallback executor ──


@pytest.mark.asyncio
async def test_overloaded_model_falls_back_after_retries(sleeper: SleepRecorder) -> None:
    """m1 keeps answering 503 until its retry budget is spent; m2 returns the JSON."""
    adapter = FakeAdapter({"m1": [overloaded("m1")], "m2": ['{"title":"X"}']})
    client = build_client(adapter, sleeper, chat_max_retries=2)

    completion = await client.generate(InvocationRequest(prompt="write", task=ModelTask.CHAT.value))

    assert parse_json(completion.text) == {"title": "X"}
    assert completion.model == "m2"
    assert completion.used_fallback_model
    assert adapter.models_called == ["m1", "m1", "m1", "m2"]
    # Two backoffs on m1, then the (index+1) * 0.5s cooldown before m2
    assert sleeper.delays == [1.0, 2.0, 0.5]


@pytest.mark.asyncio
async def test_fallback_model_called_once_when_it_succeeds(sleeper: SleepRecorder) -> None:
    adapter = FakeAdapter({"A": [overloaded("A")], "B": ["b-result"]})
    client = build_client(adapter, sleeper, chat_models=("A", "B"))

    text = await client.generate_text("hi")

    assert text == "b-result"
    assert adapter.calls_for("B") == 1


@pytest.mark.asyncio
async def test_quota_error_aborts_without_trying_next_model(sleeper: SleepRecorder) -> None:
    adapter = FakeAdapter({"A": [quota("A")], "B": ["never"]})
    client = build_client(adapter, sleeper, chat_models=("A", "B"))

    with pytest.raises(QuotaExceededError, match="quota"):
        await client.generate_text("hi")

    assert adapter.calls_for("B") == 0
    assert sleeper.delays == []


@pytest.mark.asyncio
async def test_auth_error_names_the_credential_variable(sleeper: SleepRecorder) -> None:
    auth = ProviderError("API key not valid", ErrorKind.AUTH, "A", 400)
    adapter = FakeAdapter({"A": [auth], "B": ["never"]})
    client = build_client(adapter, sleeper, chat_models=("A", "B"))

    with pytest.raises(AuthenticationError, match="GEMINI_API_KEY"):
        await client.generate_text("hi")
    assert adapter.calls_for("B") == 0


@pytest.mark.asyncio
async def test_invalid_request_aborts(sleeper: SleepRecorder) -> None:
    bad = ProviderError("400 Request contains an invalid argument", ErrorKind.INVALID_REQUEST, "A", 400)
    adapter = FakeAdapter({"A": [bad], "B": ["never"]})
    client = build_client(adapter, sleeper, chat_models=("A", "B"))

    with pytest.raises(InvalidRequestError):
        await client.generate_text("hi")
    assert adapter.models_called == ["A"]


@pytest.mark.asyncio
async def test_not_found_advances_without_delay(sleeper: SleepRecorder) -> None:
    adapter = FakeAdapter({"A": [not_found("A")], "B": ["from-b"]})
    client = build_client(adapter, sleeper, chat_models=("A", "B"))

    assert await client.generate_text("hi") == "from-b"
    assert adapter.calls_for("A") == 1
    assert sleeper.delays == []


@pytest.mark.asyncio
async def test_empty_response_advances_like_not_found(sleeper: SleepRecorder) -> None:
    empty = ProviderError("Empty response", ErrorKind.EMPTY_RESPONSE, "A")
    adapter = FakeAdapter({"A": [empty], "B": ["from-b"]})
    client = build_client(adapter, sleeper, chat_models=("A", "B"))

    assert await client.generate_text("hi") == "from-b"
    assert sleeper.delays == []


@pytest.mark.asyncio
async def test_all_models_overloaded_collapse_into_retry_later_error(sleeper: SleepRecorder) -> None:
    adapter = FakeAdapter({"A": [overloaded("A")], "B": [overloaded("B")]})
    client = build_client(adapter, sleeper, chat_models=("A", "B"), chat_max_retries=2)

    with pytest.raises(AllModelsExhaustedError) as exc_info:
        await client.generate_text("hi")

    err = exc_info.value
    assert err.kind is ErrorKind.OVERLOADED
    assert err.retry_later
    assert err.user_message == OVERLOADED_MESSAGE
    assert len(err.attempts) == 6
    # Cooldown only between models, never after the last one
    assert sleeper.delays == [1.0, 2.0, 0.5, 1.0, 2.0]

    payload = error_payload(err)
    assert payload == {
        "success": False,
        "message": OVERLOADED_MESSAGE,
        "retryable": True,
        "error": "AllModelsExhaustedError",
    }


@pytest.mark.asyncio
async def test_all_models_missing_is_unavailable_not_overloaded(sleeper: SleepRecorder) -> None:
    adapter = FakeAdapter({})
    client = build_client(adapter, sleeper, chat_models=("A", "B", "C"))

    with pytest.raises(AllModelsExhaustedError) as exc_info:
        await client.generate_text("hi")

    assert exc_info.value.kind is ErrorKind.NOT_FOUND
    assert not exc_info.value.retry_later
    assert exc_info.value.user_message == UNAVAILABLE_MESSAGE
    assert adapter.models_called == ["A", "B", "C"]


@pytest.mark.asyncio
async def test_cooldown_grows_with_model_index(sleeper: SleepRecorder) -> None:
    adapter = FakeAdapter({"A": [overloaded("A")], "B": [overloaded("B")], "C": ["ok"]})
    executor = ModelFallbackExecutor(RetryPolicy(max_retries=0), cooldown_seconds=0.5)

    async def invoke(model: str) -> str:
        return await adapter.complete(model=model, prompt="p")

    text = await executor.execute(
        provider_config(), ["A", "B", "C"], invoke, deadline=Deadline(sleep=sleeper)
    )
    assert text == "ok"
    assert sleeper.delays == [0.5, 1.0]


@pytest.mark.asyncio
async def test_empty_candidate_list_is_configuration_error(sleeper: SleepRecorder) -> None:
    executor = ModelFallbackExecutor(RetryPolicy())

    async def invoke(model: str) -> str:
        return model

    with pytest.raises(ConfigurationError):
        await executor.execute(provider_config(), [], invoke, deadline=Deadline(sleep=sleeper))


# ── Client facade ──


@pytest.mark.asyncio
async def test_no_provider_fails_before_any_call(sleeper: SleepRecorder) -> None:
    adapter = FakeAdapter({"m1": ["never"]})
    registry = ProviderRegistry([provider_config(api_key="")])
    client = LLMClient(registry, {ProviderName.PRIMARY: adapter}, sleep=sleeper)

    with pytest.raises(ConfigurationError, match="GEMINI_API_KEY or OPENAI_API_KEY"):
        await client.generate_text("hi")
    assert adapter.calls == []
    assert not client.is_available()
    assert client.provider_name() == "none"


@pytest.mark.asyncio
async def test_request_model_override_and_flags_reach_adapter(sleeper: SleepRecorder) -> None:
    adapter = FakeAdapter({"custom": ["ok"]})
    client = build_client(adapter, sleeper)

    await client.generate(
        InvocationRequest(prompt="p", system_instruction="sys", models=["custom"], json_mode=True)
    )

    call = adapter.calls[0]
    assert call["model"] == "custom"
    assert call["system_instruction"] == "sys"
    assert call["json_mode"] is True


@pytest.mark.asyncio
async def test_history_is_normalized_before_reaching_adapter(sleeper: SleepRecorder) -> None:
    adapter = FakeAdapter({"m1": ["ok"]})
    client = build_client(adapter, sleeper)
    history = [
        {"role": "assistant", "content": "Welcome!"},
        {"role": "user", "content": "Hello"},
        {"role": "user", "content": "there"},
        {"role": "assistant", "content": "draft"},
        {"role": "assistant", "content": "final"},
        {"role": "user", "content": "   "},
    ]

    await client.generate_text("next", conversation_history=history)

    turns = adapter.calls[0]["history"]
    assert [t.role for t in turns] == [ChatRole.USER, ChatRole.ASSISTANT]
    assert turns[0].content == "Hello there"
    assert turns[1].content == "final"


@pytest.mark.asyncio
async def test_deadline_aborts_mid_backoff() -> None:
    """The second backoff (2s) would overrun a 1.5s deadline, so the call aborts instead of sleeping."""
    sleeper = SleepRecorder()
    adapter = FakeAdapter({"m1": [overloaded("m1")], "m2": ["never"]})
    client = build_client(adapter, sleeper, chat_max_retries=2, invocation_timeout=1.5)

    with pytest.raises(DeadlineExceededError) as exc_info:
        await client.generate_text("hi")

    assert sleeper.delays == [1.0]
    assert adapter.calls_for("m2") == 0
    assert error_payload(exc_info.value)["retryable"] is True


@pytest.mark.asyncio
async def test_deadline_bounds_a_slow_provider_call() -> None:
    async def slow() -> str:
        await asyncio.sleep(5)
        return "late"

    deadline = Deadline(0.05)
    with pytest.raises(DeadlineExceededError):
        await deadline.run(slow)


@pytest.mark.asyncio
async def test_cancellation_interrupts_backoff() -> None:
    adapter = FakeAdapter({"m1": [overloaded("m1")]})
    client = build_client(adapter, SleepRecorder(), chat_models=("m1",), chat_max_retries=2, base_delay=10.0)
    # Real sleeps so the task is parked inside the backoff when cancelled
    client._sleep = asyncio.sleep

    task = asyncio.create_task(client.generate_text("hi"))
    await asyncio.sleep(0.05)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert adapter.calls_for("m1") == 1


# ── Task routing ──

ROUTING = {
    "tasks": {
        "chat": {"profile": "chat"},
        "blog_post": {"profile": "content", "max_retries": 3},
        "seo_product_structured_data": {"profile": "content", "models": {"gemini": ["special"]}},
    }
}


def test_routing_profiles_and_retries(sleeper: SleepRecorder) -> None:
    client = build_client(
        FakeAdapter(),
        sleeper,
        chat_models=("c1",),
        content_models=("p1", "p2"),
        routing=ROUTING,
        chat_max_retries=2,
        content_max_retries=5,
    )
    provider = client.active_provider()

    assert client.resolve_profile("chat") is ModelProfile.CHAT
    assert client.resolve_profile("blog_post") is ModelProfile.CONTENT
    assert client.resolve_models(provider, "chat") == ("c1",)
    assert client.resolve_models(provider, "blog_post") == ("p1", "p2")
    assert client.resolve_models(provider, "seo_product_structured_data") == ("special",)
    assert client.resolve_max_retries("chat") == 2
    assert client.resolve_max_retries("blog_post") == 3
    # Unrouted non-chat tasks default to the content profile
    assert client.resolve_profile("seo_keywords") is ModelProfile.CONTENT
    assert client.resolve_max_retries("seo_keywords") == 5


def test_content_profile_falls_back_to_chat_models(sleeper: SleepRecorder) -> None:
    client = build_client(FakeAdapter(), sleeper, chat_models=("c1", "c2"), content_models=())
    assert client.resolve_models(client.active_provider(), ModelTask.BLOG_POST.value) == ("c1", "c2")
