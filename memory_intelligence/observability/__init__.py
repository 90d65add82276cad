"""
Observability for the memory pipeline - performance samples, metrics and
structured logging.
"""

from .context import ContextScope, TaskContext, get_current_context
from .logging import StructuredFormatter, configure_logging
from .metrics import Metric, MetricsCollector, MetricType
from .monitor import PerformanceMonitor, Sample

__all__ = [
    # Context
    "TaskContext",
    "ContextScope",
    "get_current_context",
    # Logging
    "StructuredFormatter",
    "configure_logging",
    # Metrics
    "MetricsCollector",
    "MetricType",
    "Metric",
    # Monitor
    "PerformanceMonitor",
    "Sample",
]
