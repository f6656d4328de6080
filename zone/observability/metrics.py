"""
Metrics Collection with Prometheus.

Exposes ledger, decision and override metrics for monitoring.
"""

from enum import Enum

from prometheus_client import Counter, Gauge, Histogram, Info

from zone.config import settings


class MetricLabels(str, Enum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OPERATION = "operation"
    ERROR_TYPE = "error_type"


class ZoneMetrics:
    """
    Centralized metrics for the Zone API.

    Covers:
    - HTTP requests (rate, duration, errors)
    - Heartbeats (rate, matched/unmatched, minutes ingested)
    - Decisions (rate, blocked rules, purged overrides)
    - Overrides (codes issued, deliveries, verifications)
    - Rate limiting rejections
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""

        self.service_info = Info(
            "zone_service",
            "Service information",
        )
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
            "zone_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.http_request_duration_seconds = Histogram(
            "zone_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        self.http_requests_in_progress = Gauge(
            "zone_http_requests_in_progress",
            "Number of HTTP requests currently being processed",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
        )

        # ====================================================================
        # Ledger Metrics
        # ====================================================================
        self.heartbeats_total = Counter(
            "zone_heartbeats_total",
            "Total heartbeats received",
            ["matched"],
        )

        self.usage_minutes_ingested = Histogram(
            "zone_usage_minutes_ingested",
            "Minutes added to a rule by a single heartbeat",
            buckets=(0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0),
        )

        self.daily_resets_total = Counter(
            "zone_daily_resets_total",
            "Rules whose daily usage was reset by an ingestion",
        )

        self.users_created_total = Counter(
            "zone_users_created_total",
            "Total users created",
        )

        # ====================================================================
        # Decision Metrics
        # ====================================================================
        self.decisions_total = Counter(
            "zone_decisions_total",
            "Rule decisions served",
            ["block"],
        )

        self.overrides_purged_total = Counter(
            "zone_overrides_purged_total",
            "Expired overrides removed during decision reads",
        )

        # ====================================================================
        # Override Metrics
        # ====================================================================
        self.override_codes_issued_total = Counter(
            "zone_override_codes_issued_total",
            "Override codes generated",
        )

        self.override_code_deliveries_total = Counter(
            "zone_override_code_deliveries_total",
            "Override code delivery attempts",
            ["success"],
        )

        self.override_verifications_total = Counter(
            "zone_override_verifications_total",
            "Override verification attempts",
            ["result"],
        )

        # ====================================================================
        # Rate Limiting / Errors
        # ====================================================================
        self.rate_limited_total = Counter(
            "zone_rate_limited_total",
            "Requests rejected by a rate limiter",
            ["scope"],
        )

        self.errors_total = Counter(
            "zone_errors_total",
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

    def record_heartbeat(self, matched: bool, minutes: float, reset: bool) -> None:
        """Record an ingested heartbeat."""
        self.heartbeats_total.labels(matched=str(matched)).inc()
        if matched:
            self.usage_minutes_ingested.observe(minutes)
        if reset:
            self.daily_resets_total.inc()

    def record_decisions(self, blocked: int, allowed: int, purged: int) -> None:
        """Record one decision read."""
        if blocked:
            self.decisions_total.labels(block="True").inc(blocked)
        if allowed:
            self.decisions_total.labels(block="False").inc(allowed)
        if purged:
            self.overrides_purged_total.inc(purged)

    def record_code_delivery(self, success: bool) -> None:
        """Record an override code delivery attempt."""
        self.override_code_deliveries_total.labels(success=str(success)).inc()

    def record_verification(self, result: str) -> None:
        """Record an override verification attempt (unlocked or failure reason)."""
        self.override_verifications_total.labels(result=result).inc()

    def record_rate_limited(self, scope: str) -> None:
        """Record a rate limiter rejection."""
        self.rate_limited_total.labels(scope=scope).inc()

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = ZoneMetrics()
