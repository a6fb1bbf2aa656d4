"""
Observability module - Logging, Metrics, and Tracing.
"""

from hotspot_ledger.observability.logging import get_logger, log_context, setup_logging
from hotspot_ledger.observability.metrics import metrics
from hotspot_ledger.observability.tracing import setup_tracing, trace_operation

__all__ = [
    "get_logger",
    "log_context",
    "setup_logging",
    "metrics",
    "setup_tracing",
    "trace_operation",
]
