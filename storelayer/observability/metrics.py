"""
Metrics Collection with Prometheus.

Exposes purchase and receipt validation metrics for monitoring.
"""

from enum import Enum
from typing import Callable

from prometheus_client import Counter, Histogram, Info

from storelayer.config import settings


class MetricLabels(str, Enum):
    """Standard metric label names."""

    OUTCOME = "outcome"
    ACTION = "action"
    STATE = "state"
    EVENT = "event"
    SUCCESS = "success"


class StoreMetrics:
    """
    Centralized metrics for the store.

    Covers:
    - Receipt validation (outcomes, follow-up actions, duration)
    - Purchase queue transactions by state
    - Product catalog requests
    - Broadcast events
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""

        # ====================================================================
        # Service Info
        # ====================================================================
        self.service_info = Info(
            "storelayer_service",
            "Service information",
        )
        self.service_info.info(
            {
                "version": settings.service_version,
                "service_name": settings.service_name,
            }
        )

        # ====================================================================
        # Receipt Validation Metrics
        # ====================================================================
        self.validations_total = Counter(
            "storelayer_receipt_validations_total",
            "Total receipt validation attempts by outcome",
            [MetricLabels.OUTCOME, MetricLabels.ACTION],
        )

        self.validation_duration_seconds = Histogram(
            "storelayer_receipt_validation_duration_seconds",
            "Receipt validation duration in seconds",
            buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
        )

        # ====================================================================
        # Transaction Metrics
        # ====================================================================
        self.transactions_total = Counter(
            "storelayer_transactions_total",
            "Total purchase queue transactions observed",
            [MetricLabels.STATE],
        )

        # ====================================================================
        # Catalog Metrics
        # ====================================================================
        self.product_requests_total = Counter(
            "storelayer_product_requests_total",
            "Total product catalog requests",
            [MetricLabels.SUCCESS],
        )

        # ====================================================================
        # Event Metrics
        # ====================================================================
        self.events_total = Counter(
            "storelayer_events_total",
            "Total broadcast events",
            [MetricLabels.EVENT],
        )

    # ========================================================================
    # Helper Methods
    # ========================================================================

    def record_validation(self, outcome: str, action: str, duration: float) -> None:
        """Record a finished receipt validation."""
        if not settings.metrics_enabled:
            return
        self.validations_total.labels(outcome=outcome, action=action).inc()
        self.validation_duration_seconds.observe(duration)

    def record_transaction(self, state: str) -> None:
        """Record an observed transaction."""
        if not settings.metrics_enabled:
            return
        self.transactions_total.labels(state=state).inc()

    def record_product_request(self, success: bool) -> None:
        """Record a finished product request."""
        if not settings.metrics_enabled:
            return
        self.product_requests_total.labels(success=str(success)).inc()

    def record_event(self, event: str) -> None:
        """Record a broadcast event."""
        if not settings.metrics_enabled:
            return
        self.events_total.labels(event=event).inc()


# Global metrics instance
metrics = StoreMetrics()


def get_metrics_handler() -> Callable[[], bytes]:
    """
    Get a Prometheus exposition handler for the host application.

    Usage:
        handler = get_metrics_handler()
        body = handler()
    """
    from prometheus_client import REGISTRY, generate_latest

    def metrics_endpoint() -> bytes:
        return generate_latest(REGISTRY)

    return metrics_endpoint
