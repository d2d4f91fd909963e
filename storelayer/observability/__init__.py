"""
Observability module - Logging, Metrics, and Tracing.
"""

from storelayer.observability.logging import get_logger, log_context, setup_logging
from storelayer.observability.metrics import metrics
from storelayer.observability.tracing import get_tracer, setup_tracing

__all__ = [
    "get_logger",
    "get_tracer",
    "log_context",
    "setup_logging",
    "metrics",
    "setup_tracing",
]
