"""
Marketplace AI: command-line entry point.

Usage:
    python -m marketplace_ai.main status
    python -m marketplace_ai.main chat "Which React projects do you have?"
    python -m marketplace_ai.main analyze --title "Hotel booking" --description "..." --budget 500
    python -m marketplace_ai.main blog --topic "React Hooks Explained" --category "React Projects" --length short
    python -m marketplace_ai.main generate-blogs --limit 3
    python -m marketplace_ai.main seo-meta --title "Inventory System" --description "..."
"""

from __future__ import annotations

# Load .env before any other imports so provider SDKs see the final environment
import marketplace_ai.config  # noqa: F401, E402

import argparse
import asyncio
import contextlib
import logging
import sys
from collections.abc import Awaitable, Callable
from typing import Any, Optional

import structlog
from langchain_core.tracers.context import tracing_v2_enabled
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.theme import Theme

from marketplace_ai.config import ObservabilityConfig, Settings, get_settings
from marketplace_ai.llm_client import LLMClient, LLMClientError, ModelTask, build_llm_client, error_payload
from marketplace_ai.observability import metrics as obs_metrics
from marketplace_ai.services.assistant import AssistantService
from marketplace_ai.services.blog_writer import LENGTH_WORDS, BlogWriter
from marketplace_ai.services.seo_writer import SEOWriter

_CUSTOM_THEME = Theme({
    "log.info":        "dim white",
    "log.warning":     "bold #f59e0b",
    "log.error":       "bold #dc2626",
    "log.debug":       "dim #64748b",
    "primary":         "#ea580c",
    "fallback.banner": "bold yellow on #ea580c",
})

console = Console(theme=_CUSTOM_THEME, highlight=False)

# Topics for batch blog generation; storing the posts is the caller's job
BLOG_TOPICS: tuple[dict[str, Any], ...] = (
    {
        "topic": "Complete Guide to React Projects for College Students",
        "category": "React Projects",
        "keywords": ["React", "React projects", "college projects", "final year projects", "React tutorials"],
        "tone": "educational",
    },
    {
        "topic": "Best Python Projects for Final Year Students",
        "category": "Python Projects",
        "keywords": ["Python", "Python projects", "final year projects", "college projects", "Python programming"],
        "tone": "professional",
    },
    {
        "topic": "How to Build a Full-Stack E-Commerce Website",
        "category": "Full-Stack Projects",
        "keywords": ["Full-stack", "E-commerce", "MERN stack", "web development", "online shopping"],
        "tone": "technical",
    },
    {
        "topic": "AI and Machine Learning Projects for Beginners",
        "category": "AI/ML Projects",
        "keywords": ["AI", "Machine Learning", "ML projects", "artificial intelligence", "data science"],
        "tone": "friendly",
    },
    {
        "topic": "Top 10 Web Development Projects to Build in 2025",
        "category": "Web Development",
        "keywords": ["Web development", "web projects", "frontend", "backend", "full-stack development"],
        "tone": "professional",
    },
    {
        "topic": "MERN Stack vs MEAN Stack: Which Should You Choose?",
        "category": "Tutorials",
        "keywords": ["MERN stack", "MEAN stack", "web development", "JavaScript", "Node.js"],
        "tone": "technical",
    },
    {
        "topic": "How to Buy IT Projects Online: A Complete Guide",
        "category": "Tutorials",
        "keywords": ["buy IT projects", "online projects", "source code", "project marketplace", "IT projects"],
        "tone": "friendly",
    },
    {
        "topic": "React Hooks Explained: useState, useEffect, and More",
        "category": "React Projects",
        "keywords": ["React Hooks", "useState", "useEffect", "React tutorials", "React development"],
        "tone": "educational",
    },
    {
        "topic": "Building RESTful APIs with Node.js and Express",
        "category": "Full-Stack Projects",
        "keywords": ["Node.js", "Express", "REST API", "backend development", "API design"],
        "tone": "technical",
    },
    {
        "topic": "Mobile App Development: React Native vs Flutter",
        "category": "Mobile Development",
        "keywords": ["React Native", "Flutter", "mobile development", "app development", "cross-platform"],
        "tone": "professional",
    },
    {
        "topic": "Database Design Best Practices for Web Applications",
        "category": "Web Development",
        "keywords": ["Database", "MongoDB", "MySQL", "database design", "data modeling"],
        "tone": "technical",
    },
    {
        "topic": "SEO Optimization Tips for IT Project Websites",
        "category": "Industry News",
        "keywords": ["SEO", "search engine optimization", "website SEO", "Google ranking", "SEO tips"],
        "tone": "professional",
    },
    {
        "topic": "Why Buy Ready-Made IT Projects Instead of Building from Scratch",
        "category": "Industry News",
        "keywords": ["buy projects", "ready-made projects", "IT projects", "source code", "project marketplace"],
        "tone": "friendly",
    },
    {
        "topic": "Top Programming Languages to Learn in 2025",
        "category": "Industry News",
        "keywords": ["programming languages", "JavaScript", "Python", "career", "coding"],
        "tone": "professional",
    },
    {
        "topic": "Complete Guide to Authentication in Web Applications",
        "category": "Tutorials",
        "keywords": ["authentication", "JWT", "OAuth", "login system", "user authentication"],
        "tone": "technical",
    },
)


class _RichStructlogRenderer:
    """Custom structlog processor that renders log lines via Rich."""

    _SKIP_KEYS = frozenset({"event", "level"})

    def __call__(self, logger_: object, method: str, event_dict: dict) -> str:  # noqa: ARG002
        event = event_dict.get("event", "")
        level = event_dict.get("level", "info").lower()

        if event == "llm_fallback_triggered":
            console.print(
                f"  [fallback.banner] MODEL FALLBACK [/fallback.banner]  "
                f"[#64748b]{event_dict.get('primary_model', '?')}[/#64748b] [primary]→[/primary] "
                f"[bold #0ea5e9]{event_dict.get('fallback_model', '?')}[/bold #0ea5e9]  "
                f"[#64748b]task={event_dict.get('task', '')}[/#64748b]"
            )
            raise structlog.DropEvent()

        kv_parts = []
        for k, v in event_dict.items():
            if k in self._SKIP_KEYS:
                continue
            vs = escape(str(v))
            if len(vs) > 120:
                vs = vs[:117] + "…"
            kv_parts.append(f"[#64748b]{k}[/#64748b]=[#94a3b8]{vs}[/#94a3b8]")

        if level == "warning":
            prefix, style = "⚠", "log.warning"
        elif level in ("error", "critical"):
            prefix, style = "✗", "log.error"
        elif level == "debug":
            prefix, style = "·", "log.debug"
        else:
            prefix, style = "▪", "log.info"
        console.print(f"  [{style}]{prefix} {escape(event)}[/{style}]  " + "  ".join(kv_parts))
        raise structlog.DropEvent()


def configure_logging(level: str = "INFO") -> None:
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            _RichStructlogRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level.upper(), logging.INFO)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
    )


logger = structlog.get_logger()


def tracing_context(observability: ObservabilityConfig) -> contextlib.AbstractContextManager[Any]:
    """LangSmith run tracing around a command, only when switched on and a key is set."""
    if observability.tracing_active:
        return tracing_v2_enabled(project_name=observability.langsmith_project)
    return contextlib.nullcontext()


def _split_csv(raw: Optional[str]) -> list[str]:
    return [part.strip() for part in (raw or "").split(",") if part.strip()]


def _print_result(title: str, data: Any, ai_generated: Optional[bool] = None) -> None:
    subtitle = None
    if ai_generated is not None:
        subtitle = "[primary]AI generated[/primary]" if ai_generated else "[log.warning]fallback template[/log.warning]"
    console.print(Panel.fit(title, subtitle=subtitle, border_style="#ea580c"))
    if isinstance(data, str):
        console.print(data, markup=False)
    else:
        console.print_json(data=data)


# ── Commands ──


async def show_status(client: LLMClient, settings: Settings) -> None:
    table = Table(title="AI providers", border_style="#64748b")
    table.add_column("Slot")
    table.add_column("Kind")
    table.add_column("Credentials")
    table.add_column("Chat models")
    table.add_column("Content models")
    active = client.active_provider()
    for provider in client.registry.providers:
        marker = " (active)" if active is not None and provider.name == active.name else ""
        table.add_row(
            provider.name.value + marker,
            provider.kind.value,
            provider.key_suffix or "missing",
            ", ".join(client.resolve_models(provider, ModelTask.CHAT.value)),
            ", ".join(client.resolve_models(provider, ModelTask.BLOG_POST.value)),
        )
    console.print(table)
    console.print(f"available={client.is_available()}  provider={client.provider_name()}")
    console.print(
        f"retries chat={settings.retry.chat_max_retries} content={settings.retry.content_max_retries}  "
        f"base_delay={settings.retry.base_delay_seconds}s  cooldown={settings.retry.model_cooldown_seconds}s"
    )
    obs = settings.observability
    console.print(
        f"tracing={'on' if obs.tracing_active else 'off'} project={obs.langsmith_project}  "
        f"metrics={'on' if obs.metrics_enabled else 'off'} port={obs.metrics_port}"
    )


async def run_chat(client: LLMClient, message: str) -> None:
    reply = await AssistantService(client).chat(message)
    _print_result("Assistant", reply)


async def run_analyze(client: LLMClient, args: argparse.Namespace) -> None:
    result = await AssistantService(client).analyze_project_requirements(
        args.title, args.description, args.domain, args.budget, args.currency
    )
    _print_result("Requirements analysis", result.data, result.ai_generated)


async def run_blog(client: LLMClient, args: argparse.Namespace) -> None:
    result = await BlogWriter(client).generate_blog_post(
        args.topic,
        args.category,
        keywords=_split_csv(args.keywords),
        tone=args.tone,
        length=args.length,
    )
    _print_result(result.data["title"], result.to_response(), result.ai_generated)


async def run_generate_blogs(client: LLMClient, limit: Optional[int], delay: float) -> None:
    """Generate posts for the built-in topics one after another; one failure does not stop the batch."""
    writer = BlogWriter(client)
    topics = BLOG_TOPICS[:limit] if limit else BLOG_TOPICS
    posts: list[dict[str, Any]] = []
    errors = 0
    for i, item in enumerate(topics, start=1):
        console.print(f"[primary][{i}/{len(topics)}][/primary] {item['topic']}")
        try:
            result = await writer.generate_blog_post(
                item["topic"], item["category"], keywords=item["keywords"], tone=item["tone"]
            )
        except LLMClientError as exc:
            errors += 1
            logger.error("blog_generation_failed", topic=item["topic"], error=exc.user_message)
            continue
        posts.append({**result.to_response(), "category": item["category"], "isPublished": False})
        if i < len(topics) and delay > 0:
            # Small pause between posts to stay under provider rate limits
            await asyncio.sleep(delay)
    console.print_json(data=posts)
    console.print(f"success={len(posts)}  errors={errors}")


async def run_seo_meta(client: LLMClient, args: argparse.Namespace, settings: Settings) -> None:
    text = await SEOWriter(client, settings.site).generate_meta_description(
        args.title, args.description, _split_csv(args.keywords)
    )
    _print_result("Meta description", text)


def _run(command: Callable[[], Awaitable[None]], observability: Optional[ObservabilityConfig] = None) -> int:
    try:
        with tracing_context(observability) if observability else contextlib.nullcontext():
            asyncio.run(command())
    except LLMClientError as exc:
        payload = error_payload(exc)
        console.print(f"[log.error]✗ {payload['message']}[/log.error]")
        if payload["retryable"]:
            console.print("[#64748b]This is temporary; retry shortly.[/#64748b]")
        return 1
    except ValueError as exc:
        console.print(f"[log.error]✗ {exc}[/log.error]")
        return 2
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Marketplace AI content tools")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("status", help="Show configured providers and candidate models")

    ch = sub.add_parser("chat", help="Ask the support assistant")
    ch.add_argument("message", help="User message")

    an = sub.add_parser("analyze", help="Analyze project requirements")
    an.add_argument("--title", required=True)
    an.add_argument("--description", required=True)
    an.add_argument("--domain", default="")
    an.add_argument("--budget", default="")
    an.add_argument("--currency", default="INR")

    bl = sub.add_parser("blog", help="Generate one blog post")
    bl.add_argument("--topic", required=True)
    bl.add_argument("--category", required=True)
    bl.add_argument("--keywords", default="", help="Comma-separated keywords")
    bl.add_argument("--tone", default="professional")
    bl.add_argument("--length", default="medium", choices=sorted(LENGTH_WORDS))

    gb = sub.add_parser("generate-blogs", help="Generate posts for the built-in topic list")
    gb.add_argument("--limit", type=int, default=None, help="Only the first N topics")
    gb.add_argument("--delay", type=float, default=2.0, help="Seconds between posts")

    sm = sub.add_parser("seo-meta", help="Generate a product meta description")
    sm.add_argument("--title", required=True)
    sm.add_argument("--description", required=True)
    sm.add_argument("--keywords", default="", help="Comma-separated keywords")

    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 0

    settings = get_settings()
    configure_logging(settings.observability.log_level)
    obs_metrics.start_server(settings.observability.metrics_port)
    client = build_llm_client(settings)

    if args.command == "status":
        return _run(lambda: show_status(client, settings), settings.observability)
    if args.command == "chat":
        return _run(lambda: run_chat(client, args.message), settings.observability)
    if args.command == "analyze":
        return _run(lambda: run_analyze(client, args), settings.observability)
    if args.command == "blog":
        return _run(lambda: run_blog(client, args), settings.observability)
    if args.command == "generate-blogs":
        return _run(lambda: run_generate_blogs(client, args.limit, args.delay), settings.observability)
    if args.command == "seo-meta":
        return _run(lambda: run_seo_meta(client, args, settings), settings.observability)
    parser.print_help()
    return 0


if __name__ == "__main__":
    sys.exit(main())
