"""
Provider orchestration: turns a prompt into text despite flaky, rate-limited,
multi-model language-model APIs.

Layers, leaves first:
  - ProviderRegistry: which configured provider is active (pure, read-only)
  - RetryPolicy: bounded exponential backoff for one model, overload errors only
  - ModelFallbackExecutor: walks the ordered candidate models, composing the
    retry policy per model and deciding when to advance or abort
  - LLMClient: assembles the request, normalizes history and runs the executor

Design decisions:
  - Error classification happens once, at the adapter boundary, into a closed
    ErrorKind enum; everything above pattern-matches on it
  - Retry only on overload/unavailable; quota and auth errors abort immediately
  - Strictly sequential attempts, no fan-out across models
  - A Deadline token wraps every network call and every sleep
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Iterable, Mapping, Sequence
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional, TypeVar

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from marketplace_ai.config import Settings, get_settings, split_models
from marketplace_ai.conversation import normalize_history
from marketplace_ai.models import (
    AttemptOutcome,
    Completion,
    InvocationAttempt,
    InvocationRequest,
    ModelProfile,
    ProviderConfig,
    ProviderKind,
    ProviderName,
)
from marketplace_ai.observability import metrics as obs_metrics

if TYPE_CHECKING:
    from marketplace_ai.providers import ProviderAdapter

logger = structlog.get_logger()
T = TypeVar("T")

SleepFn = Callable[[float], Awaitable[None]]


# ── Error taxonomy: classify once, retry only overload, fail fast on account problems ──


class ErrorKind(str, Enum):
    """Closed set of provider failure classes produced by the adapter boundary."""

    OVERLOADED = "overloaded"
    NOT_FOUND = "not_found"
    EMPTY_RESPONSE = "empty_response"
    QUOTA = "quota"
    AUTH = "auth"
    INVALID_REQUEST = "invalid_request"


OVERLOADED_MESSAGE = "AI service is currently overloaded. Please try again in a few moments."
UNAVAILABLE_MESSAGE = "AI service is unavailable right now."


class LLMClientError(Exception):
    """Base for LLM client errors."""

    retry_later: bool = False

    @property
    def user_message(self) -> str:
        return str(self)


class ProviderError(LLMClientError):
    """Raised by adapters; carries the classified kind of a single failed call."""

    def __init__(
        self,
        message: str,
        kind: ErrorKind,
        model: str = "",
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.model = model
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        return self.kind is ErrorKind.OVERLOADED


class PermanentError(LLMClientError):
    """Configuration, credential, quota or malformed-request problem; never retried."""


class ConfigurationError(PermanentError):
    """No provider has credentials (or a provider has no candidate models)."""


class QuotaExceededError(PermanentError):
    """Rate limit or quota hit; another model on the same account will not help."""


class AuthenticationError(PermanentError):
    """Credential rejected by the provider."""


class InvalidRequestError(PermanentError):
    """Provider rejected the request for a reason that retrying cannot fix."""


class AllModelsExhaustedError(LLMClientError):
    """Every candidate model failed with overload / not-found class errors."""

    def __init__(
        self,
        message: str,
        kind: Optional[ErrorKind],
        attempts: Optional[list[InvocationAttempt]] = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.attempts = list(attempts or [])

    @property
    def retry_later(self) -> bool:  # type: ignore[override]
        return self.kind is ErrorKind.OVERLOADED

    @property
    def user_message(self) -> str:
        return OVERLOADED_MESSAGE if self.retry_later else UNAVAILABLE_MESSAGE


class DeadlineExceededError(LLMClientError):
    """The caller's deadline ran out during a network call or a backoff sleep."""

    retry_later = True

    @property
    def user_message(self) -> str:
        return "AI service did not answer in time. Please try again."


class UnparsableResponseError(LLMClientError):
    """Every extraction strategy failed to recover a JSON object."""

    def __init__(self, message: str, raw_text: str = "") -> None:
        super().__init__(message)
        self.raw_text = raw_text


def error_payload(exc: LLMClientError) -> dict[str, Any]:
    """Render an orchestration error for a route handler: no stack traces, clear retry hint."""
    return {
        "success": False,
        "message": exc.user_message,
        "retryable": exc.retry_later,
        "error": type(exc).__name__,
    }


# ── Deadline / cancellation token ──


class Deadline:
    """
    Per-invocation deadline threaded through every suspension point.

    Network calls run under asyncio.wait_for with the remaining budget; sleeps
    that would overrun the budget raise instead of waiting it out. Plain task
    cancellation also interrupts both.
    """

    def __init__(self, timeout: Optional[float] = None, sleep: SleepFn = asyncio.sleep) -> None:
        self._expires_at = time.monotonic() + timeout if timeout and timeout > 0 else None
        self._sleep = sleep

    @property
    def remaining(self) -> Optional[float]:
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - time.monotonic())

    def check(self) -> None:
        remaining = self.remaining
        if remaining is not None and remaining <= 0:
            raise DeadlineExceededError("Deadline exceeded before the next AI call")

    async def sleep(self, seconds: float) -> None:
        self.check()
        remaining = self.remaining
        if remaining is not None and seconds >= remaining:
            raise DeadlineExceededError(
                f"Backoff of {seconds:.2f}s would overrun the deadline ({remaining:.2f}s left)"
            )
        await self._sleep(seconds)

    async def run(self, factory: Callable[[], Awaitable[T]]) -> T:
        self.check()
        remaining = self.remaining
        if remaining is None:
            return await factory()
        try:
            return await asyncio.wait_for(factory(), timeout=remaining)
        except asyncio.TimeoutError:
            raise DeadlineExceededError("Deadline exceeded while waiting for the AI provider") from None


# ── Provider registry ──


class ProviderRegistry:
    """
    Immutable set of configured providers.

    Primary wins when it has credentials and the caller has not forced
    secondary; otherwise secondary if it has credentials; otherwise none.
    """

    def __init__(self, providers: Iterable[ProviderConfig], *, force_secondary: bool = False) -> None:
        self._providers: dict[ProviderName, ProviderConfig] = {p.name: p for p in providers}
        self._force_secondary = force_secondary

    @classmethod
    def from_settings(cls, settings: Settings) -> ProviderRegistry:
        llm = settings.llm
        return cls(
            [
                ProviderConfig(
                    name=ProviderName.PRIMARY,
                    kind=ProviderKind.GEMINI,
                    credential_env="GEMINI_API_KEY",
                    api_key=llm.gemini_api_key,
                    chat_models=split_models(llm.gemini_chat_models),
                    content_models=split_models(llm.gemini_content_models),
                ),
                ProviderConfig(
                    name=ProviderName.SECONDARY,
                    kind=ProviderKind.OPENAI,
                    credential_env="OPENAI_API_KEY",
                    api_key=llm.openai_api_key,
                    chat_models=split_models(llm.openai_chat_models),
                    content_models=split_models(llm.openai_content_models),
                ),
            ],
            force_secondary=llm.force_secondary,
        )

    def get(self, name: ProviderName) -> Optional[ProviderConfig]:
        return self._providers.get(name)

    def active_provider(self) -> Optional[ProviderConfig]:
        primary = self._providers.get(ProviderName.PRIMARY)
        if primary is not None and primary.has_credentials and not self._force_secondary:
            return primary
        secondary = self._providers.get(ProviderName.SECONDARY)
        if secondary is not None and secondary.has_credentials:
            return secondary
        return None

    def is_available(self) -> bool:
        return self.active_provider() is not None

    def provider_name(self) -> str:
        active = self.active_provider()
        return active.kind.value if active else "none"

    @property
    def providers(self) -> list[ProviderConfig]:
        return list(self._providers.values())


# ── Retry / backoff policy (one model) ──


def _is_overloaded(exc: BaseException) -> bool:
    return isinstance(exc, ProviderError) and exc.retryable


class RetryPolicy:
    """
    Bounded exponential backoff around a single model invocation.

    Only ErrorKind.OVERLOADED is retried. Delay before retry n (n starting at 0)
    is base_delay * 2**n; there is no sleep after the final failed attempt.
    """

    def __init__(self, max_retries: int = 2, base_delay: float = 1.0) -> None:
        self.max_retries = max(0, max_retries)
        self.base_delay = base_delay

    async def invoke_with_retry(
        self,
        model: str,
        invoke: Callable[[str], Awaitable[str]],
        *,
        deadline: Optional[Deadline] = None,
        attempts: Optional[list[InvocationAttempt]] = None,
        task: str = "",
    ) -> str:
        deadline = deadline or Deadline()
        trace = attempts if attempts is not None else []

        def _before_sleep(rs: RetryCallState) -> None:
            obs_metrics.record_llm_retry(model=model, task=task)
            logger.warning(
                "llm_retry",
                model=model,
                attempt=rs.attempt_number,
                max_retries=self.max_retries,
                delay_s=rs.next_action.sleep if rs.next_action else None,
                error=str(rs.outcome.exception()) if rs.outcome else "unknown",
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_exponential(multiplier=self.base_delay, exp_base=2, min=0),
            retry=retry_if_exception(_is_overloaded),
            sleep=deadline.sleep,
            before_sleep=_before_sleep,
            reraise=True,
        )

        text = ""
        async for attempt in retrying:
            with attempt:
                number = attempt.retry_state.attempt_number - 1
                try:
                    text = await deadline.run(lambda: invoke(model))
                except ProviderError as exc:
                    trace.append(
                        InvocationAttempt(
                            model=model,
                            attempt=number,
                            outcome=(
                                AttemptOutcome.RETRYABLE_FAILURE if exc.retryable else AttemptOutcome.FATAL_FAILURE
                            ),
                            reason=f"{exc.kind.value}: {str(exc)[:200]}",
                        )
                    )
                    raise
                trace.append(InvocationAttempt(model=model, attempt=number, outcome=AttemptOutcome.SUCCESS))
        return text


# ── Model fallback executor (ordered candidates) ──


def _exhausted_message(kind: Optional[ErrorKind], last: Optional[ProviderError], models: Sequence[str]) -> str:
    if kind is ErrorKind.OVERLOADED:
        return OVERLOADED_MESSAGE
    if kind in (ErrorKind.NOT_FOUND, ErrorKind.EMPTY_RESPONSE):
        return f"None of the configured AI models answered ({', '.join(models)}). Last error: {last}"
    return f"AI service error: {last}" if last else "Failed to generate AI response"


class ModelFallbackExecutor:
    """
    Try candidate models in order, composing the retry policy per model.

      NOT_FOUND / EMPTY_RESPONSE -> next candidate immediately
      OVERLOADED (retries spent) -> sleep (index+1) * cooldown, next candidate
      QUOTA / AUTH               -> abort, account-level problem
      INVALID_REQUEST            -> abort, request itself is wrong
    """

    def __init__(self, retry_policy: RetryPolicy, cooldown_seconds: float = 0.5) -> None:
        self.retry_policy = retry_policy
        self.cooldown_seconds = cooldown_seconds

    async def execute(
        self,
        provider: ProviderConfig,
        candidate_models: Sequence[str],
        invoke: Callable[[str], Awaitable[str]],
        *,
        deadline: Optional[Deadline] = None,
        attempts: Optional[list[InvocationAttempt]] = None,
        task: str = "",
    ) -> str:
        models = list(candidate_models)
        if not models:
            raise ConfigurationError(f"No candidate models configured for provider '{provider.kind.value}'")
        deadline = deadline or Deadline()
        trace = attempts if attempts is not None else []
        last_error: Optional[ProviderError] = None

        for index, model in enumerate(models):
            try:
                text = await self.retry_policy.invoke_with_retry(
                    model, invoke, deadline=deadline, attempts=trace, task=task
                )
            except ProviderError as exc:
                last_error = exc
                if exc.kind is ErrorKind.QUOTA:
                    logger.error("llm_quota_exceeded", provider=provider.kind.value, model=model, error=str(exc)[:200])
                    raise QuotaExceededError(
                        f"API quota exceeded. Please check your {provider.kind.value} API quota limits. "
                        "You may need to wait or upgrade your plan."
                    ) from exc
                if exc.kind is ErrorKind.AUTH:
                    logger.error("llm_auth_failed", provider=provider.kind.value, model=model, error=str(exc)[:200])
                    raise AuthenticationError(f"Invalid or missing {provider.credential_env}") from exc
                if exc.kind is ErrorKind.INVALID_REQUEST:
                    logger.error("llm_request_rejected", provider=provider.kind.value, model=model, error=str(exc)[:200])
                    raise InvalidRequestError(f"AI service error ({model}): {exc}") from exc
                if exc.kind in (ErrorKind.NOT_FOUND, ErrorKind.EMPTY_RESPONSE):
                    logger.warning("llm_model_unavailable", model=model, kind=exc.kind.value, error=str(exc)[:200])
                    continue
                # OVERLOADED with retries spent
                if index < len(models) - 1:
                    delay = (index + 1) * self.cooldown_seconds
                    logger.warning(
                        "llm_model_overloaded",
                        model=model,
                        next_model=models[index + 1],
                        delay_s=delay,
                    )
                    await deadline.sleep(delay)
                continue

            if index > 0:
                logger.warning(
                    "llm_fallback_triggered",
                    provider=provider.kind.value,
                    primary_model=models[0],
                    fallback_model=model,
                    task=task or "unknown",
                )
                obs_metrics.record_llm_fallback(primary=models[0], fallback=model, task=task)
            return text

        kind = last_error.kind if last_error else None
        logger.error(
            "llm_all_models_failed",
            provider=provider.kind.value,
            models=models,
            kind=kind.value if kind else None,
            attempts=len(trace),
        )
        raise AllModelsExhaustedError(_exhausted_message(kind, last_error, models), kind=kind, attempts=trace)


# ── Task routing ──


class ModelTask(str, Enum):
    """Per-use-case identifiers for routing (profile, retries, model overrides) and metrics."""

    CHAT = "chat"
    REQUIREMENTS_ANALYSIS = "requirements_analysis"
    PROJECT_SUGGESTIONS = "project_suggestions"
    PROJECT_IDEAS = "project_ideas"
    PROJECT_RECOMMENDATIONS = "project_recommendations"
    FUNCTIONALITY_EXPLANATION = "functionality_explanation"
    BLOG_POST = "blog_post"
    BLOG_IMAGE_PROMPT = "blog_image_prompt"
    SEO_META_DESCRIPTION = "seo_meta_description"
    SEO_PAGE_TITLE = "seo_page_title"
    SEO_PRODUCT_DESCRIPTION = "seo_product_description"
    SEO_KEYWORDS = "seo_keywords"
    SEO_BLOG_IDEAS = "seo_blog_ideas"
    SEO_CONTENT_ANALYSIS = "seo_content_analysis"
    SEO_BLOG_STRUCTURED_DATA = "seo_blog_structured_data"
    SEO_PRODUCT_STRUCTURED_DATA = "seo_product_structured_data"


_CHAT_TASKS = frozenset(
    {
        ModelTask.CHAT.value,
        ModelTask.REQUIREMENTS_ANALYSIS.value,
        ModelTask.PROJECT_SUGGESTIONS.value,
        ModelTask.PROJECT_IDEAS.value,
        ModelTask.PROJECT_RECOMMENDATIONS.value,
        ModelTask.FUNCTIONALITY_EXPLANATION.value,
    }
)


# ── Client facade ──


class LLMClient:
    """
    Entry point for use-case code.

    Constructed explicitly from a registry and one adapter per provider slot;
    holds no mutable state, so one instance serves any number of concurrent calls.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        adapters: Mapping[ProviderName, ProviderAdapter],
        *,
        chat_max_retries: int = 2,
        content_max_retries: int = 3,
        base_delay: float = 1.0,
        cooldown_seconds: float = 0.5,
        routing: Optional[Mapping[str, Any]] = None,
        invocation_timeout: Optional[float] = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self.registry = registry
        self._adapters = dict(adapters)
        self._chat_max_retries = chat_max_retries
        self._content_max_retries = content_max_retries
        self._base_delay = base_delay
        self._cooldown_seconds = cooldown_seconds
        self._routing: Mapping[str, Any] = (routing or {}).get("tasks", {}) or {}
        self._invocation_timeout = invocation_timeout
        self._sleep = sleep

        active = registry.active_provider()
        logger.info(
            "llm_client_initialized",
            provider=active.kind.value if active else "none",
            key_suffix=active.key_suffix if active else "",
            configured=[p.kind.value for p in registry.providers if p.has_credentials],
        )

    # -- availability --

    def active_provider(self) -> Optional[ProviderConfig]:
        return self.registry.active_provider()

    def is_available(self) -> bool:
        return self.registry.is_available()

    def provider_name(self) -> str:
        return self.registry.provider_name()

    # -- routing --

    def _task_config(self, task: str) -> Mapping[str, Any]:
        cfg = self._routing.get(task, {}) if task else {}
        return cfg if isinstance(cfg, Mapping) else {}

    def resolve_profile(self, task: str) -> ModelProfile:
        """Profile from YAML routing, else chat for assistant tasks and content for the rest."""
        profile = str(self._task_config(task).get("profile", "")).lower()
        if profile == ModelProfile.CHAT.value:
            return ModelProfile.CHAT
        if profile == ModelProfile.CONTENT.value:
            return ModelProfile.CONTENT
        return ModelProfile.CHAT if not task or task in _CHAT_TASKS else ModelProfile.CONTENT

    def resolve_models(self, provider: ProviderConfig, task: str) -> tuple[str, ...]:
        overrides = self._task_config(task).get("models") or {}
        if isinstance(overrides, Mapping):
            listed = overrides.get(provider.kind.value)
            if listed:
                return tuple(str(m) for m in listed)
        return provider.candidate_models(self.resolve_profile(task))

    def resolve_max_retries(self, task: str) -> int:
        configured = self._task_config(task).get("max_retries")
        if configured is not None:
            return int(configured)
        if self.resolve_profile(task) == ModelProfile.CHAT:
            return self._chat_max_retries
        return self._content_max_retries

    # -- generation --

    async def generate(self, request: InvocationRequest) -> Completion:
        """
        Run one orchestration call and return the first successful model's text.

        Raises:
            ConfigurationError: no provider has credentials (before any network call).
            QuotaExceededError / AuthenticationError: account problem, no fallback attempted.
            InvalidRequestError: request rejected by the provider.
            AllModelsExhaustedError: every candidate overloaded / unavailable.
            DeadlineExceededError: the request's timeout ran out.
        """
        provider = self.registry.active_provider()
        if provider is None:
            raise ConfigurationError(
                "No AI provider configured. Please set GEMINI_API_KEY or OPENAI_API_KEY in environment variables."
            )
        adapter = self._adapters.get(provider.name)
        if adapter is None:
            raise ConfigurationError(f"No adapter registered for provider '{provider.kind.value}'")

        task = request.task
        models = tuple(request.models) if request.models else self.resolve_models(provider, task)
        max_retries = request.max_retries if request.max_retries is not None else self.resolve_max_retries(task)
        history = normalize_history(request.conversation_history)
        timeout = request.timeout if request.timeout is not None else self._invocation_timeout
        deadline = Deadline(timeout, sleep=self._sleep)
        executor = ModelFallbackExecutor(
            RetryPolicy(max_retries=max_retries, base_delay=self._base_delay),
            cooldown_seconds=self._cooldown_seconds,
        )
        attempts: list[InvocationAttempt] = []

        async def _invoke(model: str) -> str:
            async with obs_metrics.track_llm_call(model=model, task=task, provider=provider.kind.value):
                return await adapter.complete(
                    model=model,
                    prompt=request.prompt,
                    system_instruction=request.system_instruction,
                    history=history,
                    json_mode=request.json_mode,
                )

        text = await executor.execute(provider, models, _invoke, deadline=deadline, attempts=attempts, task=task)
        model = attempts[-1].model if attempts else models[0]
        logger.info(
            "llm_call_succeeded",
            provider=provider.kind.value,
            model=model,
            task=task or "unknown",
            attempts=len(attempts),
            history_turns=len(history),
            chars=len(text),
        )
        return Completion(text=text, provider=provider.kind, model=model, attempts=attempts)

    async def generate_text(
        self,
        prompt: str,
        *,
        system_instruction: Optional[str] = None,
        conversation_history: Optional[list[Any]] = None,
        task: str = "",
        json_mode: bool = False,
        models: Optional[list[str]] = None,
    ) -> str:
        """Convenience wrapper returning only the text."""
        completion = await self.generate(
            InvocationRequest(
                prompt=prompt,
                system_instruction=system_instruction,
                conversation_history=conversation_history or [],
                task=task,
                json_mode=json_mode,
                models=models,
            )
        )
        return completion.text


def build_llm_client(settings: Optional[Settings] = None) -> LLMClient:
    """Wire the production client: registry from settings, LangChain adapters per provider."""
    from marketplace_ai.providers import build_adapters

    settings = settings or get_settings()
    registry = ProviderRegistry.from_settings(settings)
    timeout = settings.llm.invocation_timeout
    return LLMClient(
        registry,
        build_adapters(registry, settings),
        chat_max_retries=settings.retry.chat_max_retries,
        content_max_retries=settings.retry.content_max_retries,
        base_delay=settings.retry.base_delay_seconds,
        cooldown_seconds=settings.retry.model_cooldown_seconds,
        routing=settings.model_routing,
        invocation_timeout=timeout if timeout > 0 else None,
    )
