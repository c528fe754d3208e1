"""
SEO content use cases for marketplace products and blog posts.

Meta descriptions and page titles are plain text; everything else is JSON and
goes through the structured generator with a deterministic default.
"""

from __future__ import annotations

import json
import re
from collections.abc import Mapping, Sequence
from datetime import datetime, timezone
from typing import Any, Optional

import structlog

from marketplace_ai.config import SiteConfig
from marketplace_ai.llm_client import LLMClient, ModelTask
from marketplace_ai.models import GenerationResult
from marketplace_ai.prompts.templates import (
    BLOG_IDEAS_TEMPLATE,
    BLOG_STRUCTURED_DATA_SYSTEM,
    BLOG_STRUCTURED_DATA_TEMPLATE,
    CONTENT_ANALYSIS_TEMPLATE,
    CONTENT_ANALYST_SYSTEM,
    CONTENT_MARKETING_SYSTEM,
    KEYWORD_RESEARCH_SYSTEM,
    KEYWORD_SUGGESTIONS_TEMPLATE,
    META_DESCRIPTION_SYSTEM,
    META_DESCRIPTION_TEMPLATE,
    PAGE_TITLE_SYSTEM,
    PAGE_TITLE_TEMPLATE,
    PRODUCT_DESCRIPTION_SYSTEM,
    PRODUCT_DESCRIPTION_TEMPLATE,
    PRODUCT_STRUCTURED_DATA_SYSTEM,
    PRODUCT_STRUCTURED_DATA_TEMPLATE,
)
from marketplace_ai.services.structured import StructuredGenerator

logger = structlog.get_logger()

_WRAPPING_QUOTES_RE = re.compile(r"^[\"']|[\"']$")


def strip_wrapping_quotes(text: str) -> str:
    """Trim and drop one leading and one trailing quote character."""
    return _WRAPPING_QUOTES_RE.sub("", text.strip()).strip()


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _dumps(data: Mapping[str, Any]) -> str:
    return json.dumps(dict(data), indent=2, default=str, ensure_ascii=False)


class SEOWriter:
    def __init__(
        self,
        client: LLMClient,
        site: Optional[SiteConfig] = None,
        structured: Optional[StructuredGenerator] = None,
    ) -> None:
        self.client = client
        self.site = site or SiteConfig()
        self.structured = structured or StructuredGenerator(client)

    # -- plain text --

    async def generate_meta_description(
        self,
        title: str,
        description: str,
        keywords: Optional[Sequence[str]] = None,
    ) -> str:
        text = await self.client.generate_text(
            META_DESCRIPTION_TEMPLATE.format(
                title=title,
                description=description,
                keywords=", ".join(keywords or []),
            ),
            system_instruction=META_DESCRIPTION_SYSTEM,
            task=ModelTask.SEO_META_DESCRIPTION.value,
        )
        return strip_wrapping_quotes(text)

    async def generate_page_title(
        self,
        title: str,
        category: str,
        keywords: Optional[Sequence[str]] = None,
    ) -> str:
        text = await self.client.generate_text(
            PAGE_TITLE_TEMPLATE.format(
                title=title,
                category=category,
                keywords=", ".join(keywords or []),
                brand=self.site.site_name,
            ),
            system_instruction=PAGE_TITLE_SYSTEM,
            task=ModelTask.SEO_PAGE_TITLE.value,
        )
        return strip_wrapping_quotes(text)

    # -- structured --

    async def generate_product_description(
        self,
        title: str,
        tech_stack: Sequence[str],
        features: Sequence[str],
        category: str,
    ) -> GenerationResult:
        prompt = PRODUCT_DESCRIPTION_TEMPLATE.format(
            title=title,
            tech_stack=", ".join(tech_stack),
            features=", ".join(features),
            category=category,
        )
        return await self.structured.generate(
            task=ModelTask.SEO_PRODUCT_DESCRIPTION.value,
            prompt=prompt,
            system_instruction=PRODUCT_DESCRIPTION_SYSTEM,
            required_fields=("description",),
            fallback=lambda raw: {
                "description": raw,
                "keywords": list(tech_stack),
                "headings": {"h2": ["Features", "Technology Stack", "Use Cases"]},
                "seoTips": "Add more keywords and improve content structure",
            },
        )

    async def generate_keyword_suggestions(
        self,
        title: str,
        category: str,
        tech_stack: Sequence[str],
    ) -> GenerationResult:
        prompt = KEYWORD_SUGGESTIONS_TEMPLATE.format(
            title=title,
            category=category,
            tech_stack=", ".join(tech_stack),
        )
        return await self.structured.generate(
            task=ModelTask.SEO_KEYWORDS.value,
            prompt=prompt,
            system_instruction=KEYWORD_RESEARCH_SYSTEM,
            required_fields=("primaryKeywords",),
            fallback=lambda _raw: {
                "primaryKeywords": [title, f"{category} project", "IT project"],
                "longTailKeywords": [f"buy {title} online", f"{category} project with source code"],
                "questionKeywords": [f"where to buy {category} projects", f"best {category} projects"],
                "localKeywords": [f"{category} projects India", "IT projects India"],
                "actionKeywords": ["buy IT projects", "download source code", "get project"],
            },
        )

    async def generate_blog_post_ideas(self, category: str, tech_stack: Sequence[str]) -> GenerationResult:
        return await self.structured.generate(
            task=ModelTask.SEO_BLOG_IDEAS.value,
            prompt=BLOG_IDEAS_TEMPLATE.format(category=category, tech_stack=", ".join(tech_stack)),
            system_instruction=CONTENT_MARKETING_SYSTEM,
            required_fields=("blogPosts",),
            fallback=lambda _raw: {
                "blogPosts": [
                    {
                        "title": f"Complete Guide to {category} Projects for College Students",
                        "description": f"Learn everything about {category} projects",
                        "targetKeywords": [f"{category} projects", "college projects"],
                        "estimatedWordCount": 2000,
                    }
                ]
            },
        )

    async def analyze_content_seo(self, content: str, target_keywords: Sequence[str]) -> GenerationResult:
        return await self.structured.generate(
            task=ModelTask.SEO_CONTENT_ANALYSIS.value,
            prompt=CONTENT_ANALYSIS_TEMPLATE.format(content=content, keywords=", ".join(target_keywords)),
            system_instruction=CONTENT_ANALYST_SYSTEM,
            required_fields=("score",),
            fallback=lambda _raw: {
                "score": 70,
                "strengths": ["Content is readable", "Has some keywords"],
                "weaknesses": ["Low keyword density", "Needs more optimization"],
                "keywordDensity": {},
                "suggestions": ["Add more target keywords", "Improve content structure"],
                "improvedContent": content,
            },
        )

    def default_blog_structured_data(self, blog: Mapping[str, Any]) -> dict[str, Any]:
        """Minimal schema.org BlogPosting from stored blog fields and the site identity."""
        base_url = self.site.base_url
        now = _now_iso()
        return {
            "@context": "https://schema.org",
            "@type": "BlogPosting",
            "headline": blog.get("title") or "",
            "description": blog.get("excerpt") or blog.get("metaDescription") or "",
            "image": blog.get("featuredImage") or f"{base_url}/og-image.jpg",
            "datePublished": blog.get("publishedAt") or blog.get("createdAt") or now,
            "dateModified": blog.get("updatedAt") or blog.get("publishedAt") or now,
            "author": {"@type": "Person", "name": blog.get("authorName") or "Admin"},
            "publisher": {
                "@type": "Organization",
                "name": self.site.site_name,
                "logo": {"@type": "ImageObject", "url": f"{base_url}/logo.png"},
            },
            "mainEntityOfPage": {"@type": "WebPage", "@id": f"{base_url}/blog/{blog.get('slug') or ''}"},
            "keywords": blog.get("keywords") or blog.get("tags") or [],
            "articleSection": blog.get("category") or "",
        }

    async def generate_blog_structured_data(self, blog: Mapping[str, Any]) -> GenerationResult:
        return await self.structured.generate(
            task=ModelTask.SEO_BLOG_STRUCTURED_DATA.value,
            prompt=BLOG_STRUCTURED_DATA_TEMPLATE.format(blog_json=_dumps(blog)),
            system_instruction=BLOG_STRUCTURED_DATA_SYSTEM,
            required_fields=("@type",),
            fallback=lambda _raw: self.default_blog_structured_data(blog),
        )

    async def generate_structured_data(self, product: Mapping[str, Any]) -> GenerationResult:
        return await self.structured.generate(
            task=ModelTask.SEO_PRODUCT_STRUCTURED_DATA.value,
            prompt=PRODUCT_STRUCTURED_DATA_TEMPLATE.format(product_json=_dumps(product)),
            system_instruction=PRODUCT_STRUCTURED_DATA_SYSTEM,
            required_fields=("@type",),
            fallback=lambda _raw: {
                "@context": "https://schema.org",
                "@type": "Product",
                "name": product.get("title"),
                "description": product.get("description"),
            },
        )
