"""
Observability module - Logging, Metrics, and Tracing.
"""

from vivebien_admin.observability.logging import get_logger, setup_logging
from vivebien_admin.observability.metrics import metrics
from vivebien_admin.observability.tracing import setup_tracing

__all__ = [
    "get_logger",
    "setup_logging",
    "metrics",
    "setup_tracing",
]
