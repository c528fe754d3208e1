"""Observability: Prometheus metrics for the marketplace AI layer."""

from marketplace_ai.observability.metrics import metrics

__all__ = ["metrics"]
