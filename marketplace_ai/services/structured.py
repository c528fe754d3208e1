"""
Two-attempt-then-fallback generation shared by every structured use case.

    PROMPT_BUILT -> attempt 1 -> PARSED | PARSE_FAIL
                 -> attempt 2 (stronger "return ONLY JSON") -> PARSED | PARSE_FAIL
                 -> FALLBACK (deterministic default built by the caller)

Only extraction failure leads to the fallback. Provider errors (configuration,
quota, auth, exhausted models, deadline) propagate unchanged so the caller can
tell "AI unavailable" apart from "AI answered badly".
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import Any, Optional

import structlog

from marketplace_ai.llm_client import LLMClient
from marketplace_ai.models import GenerationResult, InvocationRequest
from marketplace_ai.observability import metrics as obs_metrics
from marketplace_ai.parsing import extract_json
from marketplace_ai.prompts.templates import JSON_ONLY_REMINDER, JSON_RETRY_PREAMBLE, JSON_RETRY_SUFFIX

logger = structlog.get_logger()

FallbackFn = Callable[[str], dict[str, Any]]
FinalizeFn = Callable[[dict[str, Any]], dict[str, Any]]


def first_attempt_prompt(prompt: str) -> str:
    return f"{prompt}\n\n{JSON_ONLY_REMINDER}"


def retry_prompt(prompt: str) -> str:
    return f"{JSON_RETRY_PREAMBLE}\n\n{prompt}\n\n{JSON_RETRY_SUFFIX}"


class StructuredGenerator:
    """Runs the JSON use-case state machine on top of an LLMClient."""

    def __init__(self, client: LLMClient, *, attempts: int = 2, max_parse_attempts: int = 3) -> None:
        self.client = client
        self.attempts = max(1, attempts)
        self.max_parse_attempts = max_parse_attempts

    async def generate(
        self,
        *,
        task: str,
        prompt: str,
        fallback: FallbackFn,
        system_instruction: Optional[str] = None,
        required_fields: Sequence[str] = (),
        finalize: Optional[FinalizeFn] = None,
    ) -> GenerationResult:
        """
        Ask for JSON up to `attempts` times; return the AI object or the fallback.

        Args:
            fallback: builds the default object from the last raw reply ("" if none).
            finalize: post-processes a parsed, schema-valid object (e.g. fills optional fields).
        """
        raw_text = ""
        model: Optional[str] = None
        reason = ""

        for attempt in range(1, self.attempts + 1):
            text = first_attempt_prompt(prompt) if attempt == 1 else retry_prompt(prompt)
            completion = await self.client.generate(
                InvocationRequest(
                    prompt=text,
                    system_instruction=system_instruction,
                    task=task,
                    json_mode=True,
                )
            )
            raw_text, model = completion.text, completion.model
            extraction = extract_json(raw_text, required_fields, max_attempts=self.max_parse_attempts)
            if extraction.ok:
                obs_metrics.record_extraction(task=task, outcome="parsed")
                data = extraction.value or {}
                return GenerationResult(
                    data=finalize(data) if finalize else data,
                    ai_generated=True,
                    model=model,
                )

            reason = extraction.reason
            logger.warning(
                "structured_parse_failed",
                task=task,
                attempt=attempt,
                model=model,
                missing_fields=extraction.missing_fields,
                reason=reason,
                preview=raw_text[:200],
            )

        obs_metrics.record_extraction(task=task, outcome="fallback")
        logger.warning("structured_fallback_used", task=task, model=model, reason=reason)
        return GenerationResult(
            data=fallback(raw_text),
            ai_generated=False,
            model=model,
            fallback_reason=reason or "unparsable response",
        )
