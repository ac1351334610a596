"""
Observability module.
Contains logging, metrics, and tracing setup.
"""

from clipworker.observability.logging import (
    setup_logging,
)
from clipworker.observability.metrics import (
    MetricsCollector,
    get_metrics,
    setup_metrics,
)
from clipworker.observability.tracing import (
    get_tracer,
    instrument_sqlalchemy,
    setup_tracing,
)

__all__ = [
    "setup_logging",
    "setup_metrics",
    "get_metrics",
    "MetricsCollector",
    "setup_tracing",
    "get_tracer",
    "instrument_sqlalchemy",
]
