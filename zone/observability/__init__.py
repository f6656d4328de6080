"""Logging, metrics and tracing for the ledger API."""

from zone.observability.logging import get_logger, log_context, setup_logging
from zone.observability.metrics import metrics
from zone.observability.tracing import setup_tracing, trace_operation

__all__ = [
    "get_logger",
    "log_context",
    "metrics",
    "setup_logging",
    "setup_tracing",
    "trace_operation",
]
