"""
Metrics collection.

Counters, gauges and histograms for the memory pipeline, exportable in
Prometheus text format.
"""

import statistics
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class MetricType(str, Enum):
    """Type of metric."""
    COUNTER = "counter"
    GAUGE = "gauge"
    HISTOGRAM = "histogram"


@dataclass
class MetricValue:
    """A single metric value with timestamp."""
    value: float
    timestamp: datetime = field(default_factory=datetime.now)
    labels: Dict[str, str] = field(default_factory=dict)


@dataclass
class Metric:
    """A metric being tracked, holding a bounded list of recorded values."""

    name: str
    type: MetricType
    description: str = ""
    unit: str = ""
    values: List[MetricValue] = field(default_factory=list)
    max_values: int = 10000

    # Histogram buckets, in milliseconds
    buckets: List[float] = field(default_factory=lambda: [1, 5, 10, 25, 50, 100, 250, 500, 1000, 5000])

    def record(self, value: float, labels: Optional[Dict[str, str]] = None) -> None:
        """Record a metric value."""
        self.values.append(MetricValue(value=value, labels=labels or {}))
        if len(self.values) > self.max_values:
            del self.values[:len(self.values) - self.max_values]

    def get_current_value(self) -> Optional[float]:
        """Get the most recent value."""
        if self.values:
            return self.values[-1].value
        return None

    def get_sum(self, labels: Optional[Dict[str, str]] = None) -> float:
        """Sum of values, optionally restricted to matching labels."""
        return sum(v.value for v in self._matching(labels))

    def get_average(self) -> Optional[float]:
        """Get average of all values."""
        if self.values:
            return statistics.mean(v.value for v in self.values)
        return None

    def get_percentile(self, percentile: float) -> Optional[float]:
        """Get a percentile value (0-100)."""
        if not self.values:
            return None
        sorted_values = sorted(v.value for v in self.values)
        index = int(len(sorted_values) * percentile / 100)
        return sorted_values[min(index, len(sorted_values) - 1)]

    def get_histogram_buckets(self) -> Dict[str, int]:
        """Cumulative bucket counts."""
        bucket_counts = {f"le_{b}": 0 for b in self.buckets}
        bucket_counts["le_inf"] = 0
        for metric_value in self.values:
            for bucket in self.buckets:
                if metric_value.value <= bucket:
                    bucket_counts[f"le_{bucket}"] += 1
            bucket_counts["le_inf"] += 1
        return bucket_counts

    def _matching(self, labels: Optional[Dict[str, str]]) -> List[MetricValue]:
        if not labels:
            return self.values
        return [
            v for v in self.values
            if all(v.labels.get(key) == value for key, value in labels.items())
        ]

    def _label_sets(self) -> Dict[tuple, float]:
        sums: Dict[tuple, float] = {}
        for v in self.values:
            key = tuple(sorted(v.labels.items()))
            sums[key] = sums.get(key, 0.0) + v.value
        return sums

    def to_dict(self) -> Dict[str, Any]:
        """Convert metric to dictionary."""
        base = {
            "name": self.name,
            "type": self.type.value,
            "description": self.description,
            "unit": self.unit,
            "value_count": len(self.values),
        }

        if self.type == MetricType.COUNTER:
            base["sum"] = self.get_sum()
        elif self.type == MetricType.GAUGE:
            base["current"] = self.get_current_value()
        elif self.type == MetricType.HISTOGRAM:
            base["average"] = self.get_average()
            base["p50"] = self.get_percentile(50)
            base["p95"] = self.get_percentile(95)
        return base

    def to_prometheus(self) -> str:
        """Export metric in Prometheus text format."""
        lines = []
        if self.description:
            lines.append(f"# HELP {self.name} {self.description}")
        lines.append(f"# TYPE {self.name} {self.type.value}")

        if self.type == MetricType.COUNTER:
            for labels, total in self._label_sets().items():
                lines.append(f"{self.name}_total{_format_labels(labels)} {total}")
        elif self.type == MetricType.GAUGE:
            value = self.get_current_value()
            if value is not None:
                lines.append(f"{self.name} {value}")
        elif self.type == MetricType.HISTOGRAM:
            for bucket_name, count in self.get_histogram_buckets().items():
                le_value = bucket_name.replace("le_", "").replace("inf", "+Inf")
                lines.append(f'{self.name}_bucket{{le="{le_value}"}} {count}')
            lines.append(f"{self.name}_count {len(self.values)}")
            lines.append(f"{self.name}_sum {self.get_sum()}")

        return "\n".join(lines)


def _format_labels(labels: tuple) -> str:
    if not labels:
        return ""
    inner = ",".join(f'{key}="{value}"' for key, value in labels)
    return "{" + inner + "}"


class MetricsCollector:
    """
    Central collector for all metrics.

    Usage:
        collector = MetricsCollector()
        collector.increment_counter("dedup_decisions", labels={"outcome": "merge"})
        collector.record_histogram("operation_duration_ms", 12.5, labels={"component": "retrieval"})
        print(collector.to_prometheus())
    """

    def __init__(self, prefix: str = "memory_intelligence"):
        self.prefix = prefix
        self._metrics: Dict[str, Metric] = {}
        self._lock = threading.Lock()
        self._setup_default_metrics()

    def _setup_default_metrics(self) -> None:
        """Set up default metrics for pipeline monitoring."""
        self._create_metric(
            "operation_duration_ms",
            MetricType.HISTOGRAM,
            "Operation duration in milliseconds",
            "milliseconds",
        )
        self._create_metric(
            "operations",
            MetricType.COUNTER,
            "Total number of monitored operations",
        )
        self._create_metric(
            "operation_errors",
            MetricType.COUNTER,
            "Total number of failed operations",
        )
        self._create_metric(
            "dedup_decisions",
            MetricType.COUNTER,
            "Deduplication decisions by outcome",
        )

    def _create_metric(
        self,
        name: str,
        metric_type: MetricType,
        description: str = "",
        unit: str = "",
    ) -> Metric:
        full_name = f"{self.prefix}_{name}"
        metric = Metric(name=full_name, type=metric_type, description=description, unit=unit)
        self._metrics[full_name] = metric
        return metric

    def get_or_create_metric(
        self,
        name: str,
        metric_type: MetricType,
        description: str = "",
        unit: str = "",
    ) -> Metric:
        """Get an existing metric or create a new one."""
        full_name = f"{self.prefix}_{name}"
        if full_name not in self._metrics:
            return self._create_metric(name, metric_type, description, unit)
        return self._metrics[full_name]

    def increment_counter(
        self,
        name: str,
        value: float = 1.0,
        labels: Optional[Dict[str, str]] = None,
    ) -> None:
        """Increment a counter metric."""
        with self._lock:
            self.get_or_create_metric(name, MetricType.COUNTER).record(value, labels)

    def set_gauge(
        self,
        name: str,
        value: float,
        labels: Optional[Dict[str, str]] = None,
    ) -> None:
        """Set a gauge metric value."""
        with self._lock:
            self.get_or_create_metric(name, MetricType.GAUGE).record(value, labels)

    def record_histogram(
        self,
        name: str,
        value: float,
        labels: Optional[Dict[str, str]] = None,
    ) -> None:
        """Record a histogram value."""
        with self._lock:
            self.get_or_create_metric(name, MetricType.HISTOGRAM).record(value, labels)

    def get_metric(self, name: str) -> Optional[Metric]:
        """Get a metric by name (without prefix)."""
        return self._metrics.get(f"{self.prefix}_{name}")

    def get_all_metrics(self) -> Dict[str, Dict[str, Any]]:
        """Get all metrics as dictionaries."""
        with self._lock:
            return {name: metric.to_dict() for name, metric in self._metrics.items()}

    def to_prometheus(self) -> str:
        """Export all metrics in Prometheus text format."""
        with self._lock:
            lines = []
            for metric in self._metrics.values():
                lines.append(metric.to_prometheus())
                lines.append("")
            return "\n".join(lines)

    def clear(self) -> None:
        """Clear all metric values."""
        with self._lock:
            for metric in self._metrics.values():
                metric.values.clear()
