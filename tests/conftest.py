"""Shared pytest fixtures: scripted fake providers and a recording sleep."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any, Optional, Union

import pytest

from marketplace_ai.llm_client import ErrorKind, LLMClient, ProviderError, ProviderRegistry
from marketplace_ai.models import ChatTurn, ProviderConfig, ProviderKind, ProviderName

Step = Union[str, BaseException]

BLOG_REPLY = (
    '{"title": "Generated post", "excerpt": "Short summary.", '
    '"content": "<h2>Intro</h2><p>Body</p>", "tags": ["guide"]}'
)


def overloaded(model: str = "") -> ProviderError:
    return ProviderError("503 Service Unavailable: the model is overloaded", ErrorKind.OVERLOADED, model, 503)


def not_found(model: str = "") -> ProviderError:
    return ProviderError(f"404 models/{model} is not found", ErrorKind.NOT_FOUND, model, 404)


def quota(model: str = "") -> ProviderError:
    return ProviderError("429 Resource has been exhausted (check quota)", ErrorKind.QUOTA, model, 429)


class FakeAdapter:
    """
    Provider adapter driven by a per-model script.

    Each model maps to a list of replies (text) or exceptions consumed in order;
    the last entry repeats forever. Unknown models raise NOT_FOUND.
    """

    def __init__(self, script: Optional[dict[str, Sequence[Step]]] = None) -> None:
        self.script = {model: list(steps) for model, steps in (script or {}).items()}
        self.calls: list[dict[str, Any]] = []

    async def complete(
        self,
        *,
        model: str,
        prompt: str,
        system_instruction: Optional[str] = None,
        history: Sequence[ChatTurn] = (),
        json_mode: bool = False,
    ) -> str:
        self.calls.append(
            {
                "model": model,
                "prompt": prompt,
                "system_instruction": system_instruction,
                "history": list(history),
                "json_mode": json_mode,
            }
        )
        steps = self.script.get(model)
        if not steps:
            raise not_found(model)
        step = steps.pop(0) if len(steps) > 1 else steps[0]
        if isinstance(step, BaseException):
            raise step
        return step

    def calls_for(self, model: str) -> int:
        return sum(1 for call in self.calls if call["model"] == model)

    @property
    def models_called(self) -> list[str]:
        return [call["model"] for call in self.calls]


class SleepRecorder:
    """Injected in place of asyncio.sleep; records delays without waiting."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def provider_config(
    name: ProviderName = ProviderName.PRIMARY,
    kind: ProviderKind = ProviderKind.GEMINI,
    *,
    api_key: str = "test-key-1234",
    chat_models: Sequence[str] = ("m1", "m2"),
    content_models: Sequence[str] = (),
) -> ProviderConfig:
    return ProviderConfig(
        name=name,
        kind=kind,
        credential_env="GEMINI_API_KEY" if kind == ProviderKind.GEMINI else "OPENAI_API_KEY",
        api_key=api_key,
        chat_models=tuple(chat_models),
        content_models=tuple(content_models),
    )


def build_client(
    adapter: FakeAdapter,
    sleeper: SleepRecorder,
    *,
    chat_models: Sequence[str] = ("m1", "m2"),
    content_models: Sequence[str] = (),
    routing: Optional[dict[str, Any]] = None,
    **kwargs: Any,
) -> LLMClient:
    """Client with one credentialed primary provider backed by `adapter`."""
    registry = ProviderRegistry(
        [provider_config(chat_models=chat_models, content_models=content_models)]
    )
    return LLMClient(
        registry,
        {ProviderName.PRIMARY: adapter},
        routing=routing,
        sleep=sleeper,
        **kwargs,
    )


@pytest.fixture
def sleeper() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def gemini_config() -> ProviderConfig:
    return provider_config()


@pytest.fixture
def openai_config() -> ProviderConfig:
    return provider_config(
        ProviderName.SECONDARY,
        ProviderKind.OPENAI,
        api_key="sk-test-5678",
        chat_models=("gpt-4o-mini",),
        content_models=("gpt-4o", "gpt-4o-mini"),
    )
