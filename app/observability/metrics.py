"""
Metrics Collection with Prometheus.

Exposes business and system metrics for monitoring.
"""

from enum import StrEnum

from prometheus_client import Counter, Gauge, Histogram, Info

from app.config import settings


class MetricLabels(StrEnum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OPERATION = "operation"
    ERROR_TYPE = "error_type"
    TRANSITION = "transition"
    EVENT_TYPE = "event_type"


class CommunityMetrics:
    """
    Centralized metrics for the community API.

    Covers:
    - HTTP requests (rate, duration, in flight)
    - Votes (transitions, failures)
    - Feed (requests, duration, number of lists ranked)
    - Downgrade reconciliation (runs, lists converted)
    - List copies and billing webhooks
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""

        self.service_info = Info("community_service", "Service information")
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
            "community_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.http_request_duration_seconds = Histogram(
            "community_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        self.http_requests_in_progress = Gauge(
            "community_http_requests_in_progress",
            "Number of HTTP requests currently being processed",
            [MetricLabels.METHOD],
        )

        # ====================================================================
        # Vote Metrics
        # ====================================================================
        self.votes_total = Counter(
            "community_votes_total",
            "Vote casts by resulting storage action",
            [MetricLabels.TRANSITION],
        )

        self.vote_failures_total = Counter(
            "community_vote_failures_total",
            "Vote casts rejected or failed",
            ["reason"],
        )

        # ====================================================================
        # Feed Metrics
        # ====================================================================
        self.feed_requests_total = Counter(
            "community_feed_requests_total",
            "Discovery feed page requests",
            ["authenticated", "filtered"],
        )

        self.feed_duration_seconds = Histogram(
            "community_feed_duration_seconds",
            "Time to score and page the discovery feed",
            buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
        )

        self.feed_candidates = Histogram(
            "community_feed_candidates",
            "Number of public lists scored for one feed request",
            buckets=(10, 50, 100, 500, 1000, 5000, 10000, 50000),
        )

        self.feed_invalidations_total = Counter(
            "community_feed_invalidations_total",
            "Feed invalidation signals published",
            ["reason"],
        )

        # ====================================================================
        # Entitlement Metrics
        # ====================================================================
        self.reconciliations_total = Counter(
            "community_reconciliations_total",
            "Downgrade reconciliations by outcome",
            ["outcome"],
        )

        self.lists_converted_total = Counter(
            "community_lists_converted_total",
            "Private lists made public by downgrade reconciliation",
        )

        # ====================================================================
        # Copy / Billing Metrics
        # ====================================================================
        self.copies_total = Counter(
            "community_copies_total",
            "List copy attempts by outcome",
            ["outcome"],
        )

        self.webhook_events_total = Counter(
            "community_webhook_events_total",
            "Billing webhook events by type and outcome",
            [MetricLabels.EVENT_TYPE, "outcome"],
        )

        self.external_service_errors_total = Counter(
            "community_external_service_errors_total",
            "Payment provider failures by category",
            ["category"],
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.errors_total = Counter(
            "community_errors_total",
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

    def record_vote(self, transition: str) -> None:
        self.votes_total.labels(transition=transition).inc()

    def record_vote_failure(self, reason: str) -> None:
        self.vote_failures_total.labels(reason=reason).inc()

    def record_feed(
        self, authenticated: bool, filtered: bool, candidates: int, duration: float
    ) -> None:
        """Record one served feed page."""
        self.feed_requests_total.labels(
            authenticated=str(authenticated), filtered=str(filtered)
        ).inc()
        self.feed_candidates.observe(candidates)
        self.feed_duration_seconds.observe(duration)

    def record_reconciliation(self, outcome: str, converted: int = 0) -> None:
        """Record a reconciliation run."""
        self.reconciliations_total.labels(outcome=outcome).inc()
        if converted:
            self.lists_converted_total.inc(converted)

    def record_webhook_event(self, event_type: str, outcome: str) -> None:
        self.webhook_events_total.labels(event_type=event_type, outcome=outcome).inc()

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = CommunityMetrics()
