"""
Observability module - Logging, Metrics, and Tracing.
"""

from guitar_dice.observability.logging import get_logger, log_context, setup_logging
from guitar_dice.observability.metrics import metrics
from guitar_dice.observability.tracing import setup_tracing

__all__ = [
    "get_logger",
    "log_context",
    "setup_logging",
    "metrics",
    "setup_tracing",
]
