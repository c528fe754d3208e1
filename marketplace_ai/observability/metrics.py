"""
Prometheus metrics for the marketplace AI layer.

All metrics are no-op when observability.metrics_enabled is False.
Exposes track_llm_call, record_llm_retry, record_llm_fallback,
record_extraction and start_server.
"""

from __future__ import annotations

import contextlib
import threading
import time
from typing import Any

import structlog
from prometheus_client import (
    Counter,
    Histogram,
    start_http_server as prometheus_start_http_server,
)

logger = structlog.get_logger()


def _enabled() -> bool:
    from marketplace_ai.config import get_settings

    return bool(get_settings().observability.metrics_enabled)


# Lazy registry: only create metrics when enabled and first used
_metrics_created = False
_lock = threading.Lock()


def _ensure_metrics() -> bool:
    global _metrics_created
    if _metrics_created or not _enabled():
        return _metrics_created
    with _lock:
        if not _metrics_created:
            _create_metrics()
            _metrics_created = True
    return True


def _create_metrics() -> None:
    """Create all Prometheus metrics (called once when enabled)."""
    _registry = {
        "llm_duration": Histogram(
            "llm_call_duration_seconds",
            "LLM call latency",
            ["model", "task", "provider"],
            buckets=[0.5, 1, 2, 5, 10, 30],
        ),
        "llm_errors": Counter(
            "llm_call_errors_total",
            "LLM call errors",
            ["model", "task", "error_type"],
        ),
        "llm_retries": Counter(
            "llm_call_retries_total",
            "Backoff retries on the same model",
            ["model", "task"],
        ),
        "llm_fallback": Counter(
            "llm_call_fallback_total",
            "Fallback to alternate model",
            ["primary_model", "fallback_model", "task"],
        ),
        "extraction": Counter(
            "llm_extraction_total",
            "Structured output extraction outcomes",
            ["task", "outcome"],
        ),
    }
    setattr(_MetricsCollector, "_registry", _registry)


class _MetricsCollector:
    """Collector that delegates to Prometheus when enabled, no-op otherwise."""

    _registry: dict[str, Any] = {}

    def _get(self, name: str) -> Any:
        _ensure_metrics()
        return self._registry.get(name)

    @contextlib.asynccontextmanager
    async def track_llm_call(self, model: str = "", task: str = "", provider: str = ""):
        m = self._get("llm_duration")
        start = time.perf_counter()
        try:
            yield
        except Exception as e:
            err = self._get("llm_errors")
            if err:
                # ProviderError carries a kind; label by it so overload vs quota is visible
                kind = getattr(e, "kind", None)
                err.labels(
                    model=model or "unknown",
                    task=task or "unknown",
                    error_type=getattr(kind, "value", None) or type(e).__name__,
                ).inc()
            raise
        finally:
            if m:
                m.labels(
                    model=model or "unknown",
                    task=task or "unknown",
                    provider=provider or "unknown",
                ).observe(time.perf_counter() - start)

    def record_llm_retry(self, model: str = "", task: str = "") -> None:
        c = self._get("llm_retries")
        if c:
            c.labels(model=model or "unknown", task=task or "unknown").inc()

    def record_llm_fallback(
        self,
        primary: str,
        fallback: str,
        task: str = "",
    ) -> None:
        c = self._get("llm_fallback")
        if c:
            c.labels(
                primary_model=primary or "unknown",
                fallback_model=fallback or "unknown",
                task=task or "unknown",
            ).inc()

    def record_extraction(self, task: str = "", outcome: str = "") -> None:
        """outcome: parsed / fallback."""
        c = self._get("extraction")
        if c:
            c.labels(task=task or "unknown", outcome=outcome or "unknown").inc()

    def start_server(self, port: int = 8000) -> None:
        if not _enabled():
            return
        _ensure_metrics()

        def run() -> None:
            try:
                prometheus_start_http_server(port, addr="0.0.0.0")
            except OSError as exc:
                logger.warning("metrics_server_failed", port=port, error=str(exc))

        t = threading.Thread(target=run, daemon=True)
        t.start()


metrics = _MetricsCollector()
