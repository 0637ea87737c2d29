"""
Metrics Collection with Prometheus.

Exposes business and system metrics for monitoring.
"""

import time
from enum import Enum
from typing import Callable

from prometheus_client import Counter, Gauge, Histogram, Info

from guitar_dice.config import settings


class MetricLabels(str, Enum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OPERATION = "operation"
    OUTCOME = "outcome"
    LIMITER = "limiter"
    ERROR_TYPE = "error_type"


class GuitarDiceMetrics:
    """
    Centralized metrics for the Guitar Dice API.

    Covers:
    - HTTP requests (rate, duration)
    - Quota ledger (consumes, bonus tokens, resets)
    - Referrals (applications, rewards granted)
    - Chat (messages, audio rejections, connected sockets)
    - Rate limiting rejections
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""

        # ====================================================================
        # Service Info
        # ====================================================================
        self.service_info = Info(
            "guitar_dice_service",
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
            "guitar_dice_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.http_request_duration_seconds = Histogram(
            "guitar_dice_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        # ====================================================================
        # Quota Ledger Metrics
        # ====================================================================
        self.dice_rolls_total = Counter(
            "guitar_dice_dice_rolls_total",
            "Dice roll consume attempts",
            [MetricLabels.OUTCOME],
        )

        self.bonus_tokens_total = Counter(
            "guitar_dice_bonus_tokens_total",
            "Bonus token grant attempts",
            [MetricLabels.OUTCOME],
        )

        self.quota_resets_total = Counter(
            "guitar_dice_quota_resets_total",
            "Daily quota resets applied",
        )

        # ====================================================================
        # Referral Metrics
        # ====================================================================
        self.referrals_applied_total = Counter(
            "guitar_dice_referrals_applied_total",
            "Referral code applications",
            [MetricLabels.OUTCOME],
        )

        self.referral_rewards_granted_total = Counter(
            "guitar_dice_referral_rewards_granted_total",
            "Referral rewards granted to referrers",
        )

        self.referral_processing_duration_seconds = Histogram(
            "guitar_dice_referral_processing_duration_seconds",
            "Referral reward processing run duration in seconds",
            buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 10.0, 30.0),
        )

        # ====================================================================
        # Chat Metrics
        # ====================================================================
        self.chat_messages_total = Counter(
            "guitar_dice_chat_messages_total",
            "Chat messages persisted",
            ["kind", "transport"],
        )

        self.audio_rejections_total = Counter(
            "guitar_dice_audio_rejections_total",
            "Audio uploads rejected by validation",
            [MetricLabels.ERROR_TYPE],
        )

        self.chat_connections_active = Gauge(
            "guitar_dice_chat_connections_active",
            "Number of connected chat sockets",
        )

        # ====================================================================
        # Rate Limiting
        # ====================================================================
        self.rate_limited_total = Counter(
            "guitar_dice_rate_limited_total",
            "Requests rejected by a rate limiter",
            [MetricLabels.LIMITER],
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.errors_total = Counter(
            "guitar_dice_errors_total",
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

    def record_dice_roll(self, outcome: str) -> None:
        """Record a consume attempt (consumed, test_user, premium, denied)."""
        self.dice_rolls_total.labels(outcome=outcome).inc()

    def record_bonus_token(self, outcome: str) -> None:
        """Record a bonus token attempt (granted, daily_limit, disabled)."""
        self.bonus_tokens_total.labels(outcome=outcome).inc()

    def record_referral_applied(self, success: bool) -> None:
        self.referrals_applied_total.labels(
            outcome="applied" if success else "rejected"
        ).inc()

    def record_reward_run(self, processed: int, duration: float) -> None:
        """Record a referral reward processing run."""
        if processed:
            self.referral_rewards_granted_total.inc(processed)
        self.referral_processing_duration_seconds.observe(duration)

    def record_chat_message(self, kind: str, transport: str) -> None:
        self.chat_messages_total.labels(kind=kind, transport=transport).inc()

    def record_audio_rejection(self, code: str) -> None:
        self.audio_rejections_total.labels(error_type=code).inc()

    def record_rate_limited(self, limiter: str) -> None:
        self.rate_limited_total.labels(limiter=limiter).inc()

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = GuitarDiceMetrics()


class track_http_request:
    """
    Context manager for tracking HTTP requests.

    Usage:
        with track_http_request("/api/usage/status", "GET") as tracker:
            response = await call_next(request)
            tracker.set_status_code(response.status_code)
    """

    def __init__(self, endpoint: str, method: str) -> None:
        self.endpoint = endpoint
        self.method = method
        self.status_code = 200
        self.start_time: float = 0.0

    def set_status_code(self, status_code: int) -> None:
        """Set the response status code."""
        self.status_code = status_code

    def __enter__(self) -> "track_http_request":
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type: type, exc_val: Exception, exc_tb: object) -> None:
        duration = time.perf_counter() - self.start_time
        if exc_type is not None:
            self.status_code = 500
        metrics.record_http_request(self.endpoint, self.method, self.status_code, duration)


def get_metrics_handler() -> Callable[[], bytes]:
    """Get Prometheus exposition handler for the /metrics route."""
    from prometheus_client import REGISTRY, generate_latest

    def metrics_endpoint() -> bytes:
        return generate_latest(REGISTRY)

    return metrics_endpoint
