"""Observability infrastructure for seashare."""

from seashare.observability.logging import configure_logging, get_logger
from seashare.observability.metrics import metrics_registry, setup_metrics

__all__ = ["configure_logging", "get_logger", "metrics_registry", "setup_metrics"]
