"""
Assistant use cases: requirement analysis, project suggestions / ideas /
recommendations, functionality explanations and the support chatbot.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any, Optional

import structlog

from marketplace_ai.llm_client import LLMClient, ModelTask
from marketplace_ai.models import GenerationResult
from marketplace_ai.prompts.templates import (
    ASSISTANT_CHAT_SYSTEM,
    FUNCTIONALITY_EXPLAINER_SYSTEM,
    FUNCTIONALITY_EXPLANATION_TEMPLATE,
    PROJECT_IDEAS_SYSTEM,
    PROJECT_IDEAS_TEMPLATE,
    PROJECT_RECOMMENDATIONS_SYSTEM,
    PROJECT_RECOMMENDATIONS_TEMPLATE,
    PROJECT_SUGGESTIONS_SYSTEM,
    PROJECT_SUGGESTIONS_TEMPLATE,
    REQUIREMENTS_ANALYSIS_TEMPLATE,
    REQUIREMENTS_ANALYST_SYSTEM,
)
from marketplace_ai.services.structured import StructuredGenerator

logger = structlog.get_logger()

NOT_SPECIFIED = "Not specified"


def _join(values: Optional[Sequence[str]], empty: str = NOT_SPECIFIED) -> str:
    items = [str(v) for v in (values or []) if str(v).strip()]
    return ", ".join(items) if items else empty


class AssistantService:
    """General assistant calls for the marketplace frontend."""

    def __init__(self, client: LLMClient, structured: Optional[StructuredGenerator] = None) -> None:
        self.client = client
        self.structured = structured or StructuredGenerator(client)

    def is_available(self) -> bool:
        return self.client.is_available()

    def provider_name(self) -> str:
        return self.client.provider_name()

    async def analyze_project_requirements(
        self,
        title: str,
        description: str,
        domain: str = "",
        budget: Any = "",
        currency: str = "",
    ) -> GenerationResult:
        prompt = REQUIREMENTS_ANALYSIS_TEMPLATE.format(
            title=title,
            description=description,
            domain=domain or NOT_SPECIFIED,
            budget=budget if budget not in (None, "") else NOT_SPECIFIED,
            currency=currency,
        )

        def _default(raw_text: str) -> dict[str, Any]:
            # Keep whatever the model said so the analyst still sees it
            return {
                "category": "Other",
                "techStack": [],
                "features": [],
                "complexity": "medium",
                "timeline": "2-4 weeks",
                "budgetRecommendation": "Please contact for custom quote",
                "suggestions": raw_text,
            }

        return await self.structured.generate(
            task=ModelTask.REQUIREMENTS_ANALYSIS.value,
            prompt=prompt,
            system_instruction=REQUIREMENTS_ANALYST_SYSTEM,
            required_fields=("category",),
            fallback=_default,
        )

    async def get_project_suggestions(self, query: str) -> GenerationResult:
        return await self.structured.generate(
            task=ModelTask.PROJECT_SUGGESTIONS.value,
            prompt=PROJECT_SUGGESTIONS_TEMPLATE.format(query=query),
            system_instruction=PROJECT_SUGGESTIONS_SYSTEM,
            required_fields=("suggestions",),
            fallback=lambda _raw: {"suggestions": []},
        )

    async def chat(self, message: str, conversation_history: Optional[list[Any]] = None) -> str:
        """
        Support chatbot reply.

        The history is normalized by the client; an empty normalized history
        means a single-shot prompt.

        Raises:
            ValueError: message is empty.
        """
        if not isinstance(message, str) or not message.strip():
            raise ValueError("Message is required and must be a non-empty string")
        return await self.client.generate_text(
            message,
            system_instruction=ASSISTANT_CHAT_SYSTEM,
            conversation_history=conversation_history or [],
            task=ModelTask.CHAT.value,
        )

    async def get_project_ideas(
        self,
        interests: str,
        budget: Optional[str] = None,
        tech_stack: Optional[Sequence[str]] = None,
    ) -> GenerationResult:
        prompt = PROJECT_IDEAS_TEMPLATE.format(
            interests=interests,
            budget=budget or NOT_SPECIFIED,
            tech_stack=_join(tech_stack, "Open to suggestions"),
        )

        def _finalize(data: dict[str, Any]) -> dict[str, Any]:
            ideas = data.get("ideas")
            return {**data, "ideas": ideas if isinstance(ideas, list) else []}

        return await self.structured.generate(
            task=ModelTask.PROJECT_IDEAS.value,
            prompt=prompt,
            system_instruction=PROJECT_IDEAS_SYSTEM,
            required_fields=("ideas",),
            fallback=lambda _raw: {"ideas": []},
            finalize=_finalize,
        )

    async def recommend_projects(self, user_profile: Mapping[str, Any]) -> GenerationResult:
        skills = user_profile.get("skills")
        prompt = PROJECT_RECOMMENDATIONS_TEMPLATE.format(
            experience_level=user_profile.get("experienceLevel") or NOT_SPECIFIED,
            interests=user_profile.get("interests") or NOT_SPECIFIED,
            skills=_join(skills) if isinstance(skills, (list, tuple)) else (skills or NOT_SPECIFIED),
            goals=user_profile.get("goals") or NOT_SPECIFIED,
            budget=user_profile.get("budget") or NOT_SPECIFIED,
            timeline=user_profile.get("timeline") or NOT_SPECIFIED,
        )
        return await self.structured.generate(
            task=ModelTask.PROJECT_RECOMMENDATIONS.value,
            prompt=prompt,
            system_instruction=PROJECT_RECOMMENDATIONS_SYSTEM,
            required_fields=("recommendations",),
            fallback=lambda _raw: {"recommendations": [], "summary": "Unable to generate recommendations"},
        )

    async def explain_project_functionality(
        self,
        title: str,
        description: str,
        features: Optional[Sequence[str]] = None,
    ) -> GenerationResult:
        prompt = FUNCTIONALITY_EXPLANATION_TEMPLATE.format(
            title=title,
            description=description,
            features=_join(features),
        )
        return await self.structured.generate(
            task=ModelTask.FUNCTIONALITY_EXPLANATION.value,
            prompt=prompt,
            system_instruction=FUNCTIONALITY_EXPLAINER_SYSTEM,
            required_fields=("coreFunctionality",),
            fallback=lambda _raw: {"coreFunctionality": "Unable to generate explanation", "featureExplanations": []},
        )
