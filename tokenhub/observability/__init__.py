"""
Observability module - Logging, Metrics, and Tracing.
"""

from tokenhub.observability.logging import get_logger, setup_logging
from tokenhub.observability.metrics import metrics
from tokenhub.observability.tracing import setup_tracing

__all__ = [
    "get_logger",
    "setup_logging",
    "metrics",
    "setup_tracing",
]
