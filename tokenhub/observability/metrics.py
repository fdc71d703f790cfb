"""
Metrics Collection with Prometheus.

Exposes settlement, refund and sweep metrics for monitoring.
"""

from enum import Enum

from prometheus_client import Counter, Gauge, Histogram, Info

from tokenhub.config import settings


class MetricLabels(str, Enum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OPERATION = "operation"
    PRODUCT_TYPE = "product_type"
    STATUS = "status"
    LEDGER = "ledger"
    ERROR_TYPE = "error_type"


class MarketplaceMetrics:
    """
    Centralized metrics for the settlement service.

    Covers:
    - HTTP requests (rate, duration)
    - Settlements (rate by product type and outcome, credits, units)
    - Upstream calls (rate, duration)
    - Refund requests and automatic refunds
    - Batched lookups and errors
    """

    def __init__(self) -> None:
        self.service_info = Info("tokenhub_service", "Service information")
        self.service_info.info(
            {
                "version": settings.api_version,
                "service_name": settings.service_name,
            }
        )

        # ====================================================================
        # HTTP Metrics
        # ====================================================================
        self.http_requests_total = Counter(
            "tokenhub_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.http_request_duration_seconds = Histogram(
            "tokenhub_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
        )

        # ====================================================================
        # Settlement Metrics
        # ====================================================================
        self.settlements_total = Counter(
            "tokenhub_settlements_total",
            "Settlement attempts by product type and terminal status",
            [MetricLabels.PRODUCT_TYPE, MetricLabels.STATUS],
        )

        self.credits_debited_total = Counter(
            "tokenhub_credits_debited_total",
            "Credits debited from token ledgers",
            [MetricLabels.LEDGER],
        )

        self.units_delivered_total = Counter(
            "tokenhub_units_delivered_total",
            "Units delivered to callers",
            [MetricLabels.PRODUCT_TYPE],
        )

        # ====================================================================
        # Upstream Metrics
        # ====================================================================
        self.upstream_calls_total = Counter(
            "tokenhub_upstream_calls_total",
            "Calls to third-party endpoints",
            [MetricLabels.OPERATION, "success"],
        )

        self.upstream_call_duration_seconds = Histogram(
            "tokenhub_upstream_call_duration_seconds",
            "Upstream call duration in seconds",
            [MetricLabels.OPERATION],
            buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
        )

        # ====================================================================
        # Refund Metrics
        # ====================================================================
        self.refund_requests_total = Counter(
            "tokenhub_refund_requests_total",
            "Refund requests recorded by resulting status",
            [MetricLabels.STATUS],
        )

        self.sweep_refunds_total = Counter(
            "tokenhub_sweep_refunds_total",
            "Transactions reversed by the refund sweep",
            [MetricLabels.LEDGER],
        )

        # ====================================================================
        # Lookup Metrics
        # ====================================================================
        self.lookup_items_total = Counter(
            "tokenhub_lookup_items_total",
            "Credential lookup items by outcome",
            [MetricLabels.STATUS],
        )

        self.lookup_in_flight = Gauge(
            "tokenhub_lookup_in_flight",
            "Credential lookups currently in flight",
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.errors_total = Counter(
            "tokenhub_errors_total",
            "Total errors by type",
            [MetricLabels.ERROR_TYPE, MetricLabels.OPERATION],
        )

    # ========================================================================
    # Helper Methods
    # ========================================================================

    def record_http_request(
        self, endpoint: str, method: str, status_code: int, duration: float
    ) -> None:
        """Record HTTP request metrics."""
        self.http_requests_total.labels(
            endpoint=endpoint, method=method, status_code=status_code
        ).inc()
        self.http_request_duration_seconds.labels(endpoint=endpoint, method=method).observe(
            duration
        )

    def record_settlement(
        self, product_type: str, status: str, ledger: str, credits: float, units: int
    ) -> None:
        """Record a recorded settlement attempt."""
        self.settlements_total.labels(product_type=product_type, status=status).inc()
        if status == "success":
            self.credits_debited_total.labels(ledger=ledger).inc(credits)
            self.units_delivered_total.labels(product_type=product_type).inc(units)

    def record_upstream_call(self, operation: str, success: bool, duration: float) -> None:
        """Record one upstream HTTP call."""
        self.upstream_calls_total.labels(operation=operation, success=str(success)).inc()
        self.upstream_call_duration_seconds.labels(operation=operation).observe(duration)

    def record_refund_request(self, status: str) -> None:
        """Record a persisted refund request."""
        self.refund_requests_total.labels(status=status).inc()

    def record_sweep_refund(self, ledger: str) -> None:
        """Record one automatic reversal."""
        self.sweep_refunds_total.labels(ledger=ledger).inc()

    def record_lookup_item(self, status: str) -> None:
        """Record one credential lookup outcome."""
        self.lookup_items_total.labels(status=status).inc()

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = MarketplaceMetrics()
