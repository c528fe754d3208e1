"""
Blog generation: full SEO blog posts and featured-image prompts.

generate_blog_post is the reference use case for the two-attempt-then-fallback
flow. A parsed reply must carry title, excerpt and content; the optional SEO
fields are then completed from topic/category defaults. Anything else yields
the deterministic template, marked ai_generated=False.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any, Optional

import structlog

from marketplace_ai.llm_client import LLMClient, ModelTask
from marketplace_ai.models import GenerationResult
from marketplace_ai.prompts.templates import (
    BLOG_POST_TEMPLATE,
    BLOG_WRITER_SYSTEM,
    IMAGE_PROMPT_SYSTEM,
    IMAGE_PROMPT_TEMPLATE,
)
from marketplace_ai.services.structured import StructuredGenerator

logger = structlog.get_logger()

LENGTH_WORDS = {"short": 500, "medium": 1500, "long": 3000}
DEFAULT_SEO_SCORE = 70
BLOG_REQUIRED_FIELDS = ("title", "excerpt", "content")


def _image_prompt(topic: str, category: str) -> str:
    return (
        f"Professional, modern illustration related to {topic}, {category} theme, "
        "tech-focused, vibrant colors, clean design"
    )


def _image_suggestions(topic: str, category: str) -> list[str]:
    return [
        f"{topic} concept illustration",
        f"{category} technology visual",
        f"Modern {topic} design",
    ]


def fallback_blog_post(topic: str, category: str, keywords: Sequence[str] = ()) -> dict[str, Any]:
    """Always-valid placeholder post built only from the caller's inputs."""
    return {
        "title": f"{topic} - Complete Guide",
        "excerpt": f"Learn everything about {topic} in this comprehensive guide.",
        "content": (
            f"<h2>Introduction</h2><p>This is a comprehensive guide about {topic} in the {category} category.</p>"
            f"<h2>Key Points</h2><p>Explore important aspects of {topic} and learn how to implement it effectively.</p>"
            f"<h2>Conclusion</h2><p>{topic} is an essential topic in {category}. "
            "This guide provides the foundation you need to get started.</p>"
        ),
        "metaTitle": f"{topic} - Complete Guide",
        "metaDescription": f"Comprehensive guide about {topic}. Learn everything you need to know.",
        "keywords": list(keywords) if keywords else [topic, category],
        "tags": [category, topic],
        "seoScore": DEFAULT_SEO_SCORE,
        "imagePrompt": _image_prompt(topic, category),
        "imageSuggestions": _image_suggestions(topic, category),
    }


def complete_blog_post(parsed: dict[str, Any], topic: str, category: str, keywords: Sequence[str] = ()) -> dict[str, Any]:
    """Fill optional SEO fields of a schema-valid post; required fields are kept as the model wrote them."""
    seo_score = parsed.get("seoScore")
    return {
        "title": parsed["title"],
        "excerpt": parsed["excerpt"],
        "content": parsed["content"],
        "metaTitle": parsed.get("metaTitle") or parsed["title"],
        "metaDescription": parsed.get("metaDescription") or parsed["excerpt"],
        "keywords": parsed["keywords"] if isinstance(parsed.get("keywords"), list) else (list(keywords) or [topic, category]),
        "tags": parsed["tags"] if isinstance(parsed.get("tags"), list) else [category, topic],
        # bool is an int subclass; a True score is not a score
        "seoScore": seo_score if isinstance(seo_score, (int, float)) and not isinstance(seo_score, bool) else DEFAULT_SEO_SCORE,
        "imagePrompt": parsed.get("imagePrompt") or _image_prompt(topic, category),
        "imageSuggestions": (
            parsed["imageSuggestions"]
            if isinstance(parsed.get("imageSuggestions"), list)
            else _image_suggestions(topic, category)
        ),
    }


class BlogWriter:
    def __init__(self, client: LLMClient, structured: Optional[StructuredGenerator] = None) -> None:
        self.client = client
        self.structured = structured or StructuredGenerator(client)

    async def generate_blog_post(
        self,
        topic: str,
        category: str,
        keywords: Optional[Sequence[str]] = None,
        tone: str = "professional",
        length: str = "medium",
    ) -> GenerationResult:
        keywords = list(keywords or [])
        prompt = BLOG_POST_TEMPLATE.format(
            topic=topic,
            category=category,
            target_words=LENGTH_WORDS.get(length, LENGTH_WORDS["medium"]),
            tone=tone,
            keywords=", ".join(keywords) or "related to the topic",
        )
        result = await self.structured.generate(
            task=ModelTask.BLOG_POST.value,
            prompt=prompt,
            system_instruction=BLOG_WRITER_SYSTEM,
            required_fields=BLOG_REQUIRED_FIELDS,
            fallback=lambda _raw: fallback_blog_post(topic, category, keywords),
            finalize=lambda parsed: complete_blog_post(parsed, topic, category, keywords),
        )
        logger.info(
            "blog_post_generated",
            topic=topic,
            category=category,
            ai_generated=result.ai_generated,
            model=result.model,
        )
        return result

    async def generate_image_prompt(
        self,
        title: str,
        category: str,
        keywords: Optional[Sequence[str]] = None,
    ) -> GenerationResult:
        prompt = IMAGE_PROMPT_TEMPLATE.format(
            title=title,
            category=category,
            keywords=", ".join(keywords or []),
        )

        def _default(_raw: str) -> dict[str, Any]:
            return {
                "imagePrompt": (
                    f"Professional {category} illustration, {title} concept, "
                    "modern tech design, vibrant colors, clean composition"
                ),
                "imageSuggestions": [
                    f"{title} illustration",
                    f"{category} technology visual",
                    f"Modern {category} design",
                ],
                "style": "modern illustration",
                "colors": ["#3B82F6", "#8B5CF6"],
                "dimensions": "1200x630",
            }

        return await self.structured.generate(
            task=ModelTask.BLOG_IMAGE_PROMPT.value,
            prompt=prompt,
            system_instruction=IMAGE_PROMPT_SYSTEM,
            required_fields=("imagePrompt",),
            fallback=_default,
        )
