"""
Performance monitoring for the memory pipeline.

Components report one sample per operation (duration and outcome). The
monitor keeps a bounded window of samples per component, answers failure-rate queries,
mirrors samples into a MetricsCollector and notifies subscribers, which
is how the circuit breaker learns about background failures.
"""

import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Deque, Dict, List, Optional

from ..config import MonitorConfig
from .metrics import MetricsCollector

logger = logging.getLogger(__name__)

SampleListener = Callable[[str, float, bool], None]


@dataclass
class Sample:
    """One timed operation."""
    component: str
    duration_ms: float
    success: bool
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class PerformanceMonitor:
    """
    Records operation samples and derives health statistics.

    Usage:
        monitor = PerformanceMonitor()
        monitor.record_sample("retrieval", 12.3, True)
        monitor.current_failure_rate("retrieval")
    """

    def __init__(
        self,
        config: Optional[MonitorConfig] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.config = config or MonitorConfig()
        self.metrics = metrics or MetricsCollector()
        self._samples: Dict[str, Deque[Sample]] = {}
        self._listeners: List[SampleListener] = []
        self._lock = threading.Lock()

    def record_sample(self, component: str, duration_ms: float, success: bool) -> None:
        """
        Record one operation.

        Args:
            component: Reporting component (e.g. "detector", "processor")
            duration_ms: Operation duration in milliseconds
            success: Whether the operation succeeded
        """
        sample = Sample(component=component, duration_ms=max(0.0, float(duration_ms)), success=bool(success))
        with self._lock:
            if component not in self._samples:
                self._samples[component] = deque(maxlen=self.config.max_samples)
            self._samples[component].append(sample)
            listeners = list(self._listeners)

        labels = {"component": component}
        self.metrics.record_histogram("operation_duration_ms", sample.duration_ms, labels=labels)
        self.metrics.increment_counter("operations", labels={**labels, "status": "success" if success else "error"})
        if not success:
            self.metrics.increment_counter("operation_errors", labels=labels)

        if sample.duration_ms > self.config.slow_threshold_ms:
            logger.warning(
                f"Slow operation: {component} took {sample.duration_ms:.1f}ms "
                f"(threshold {self.config.slow_threshold_ms:.0f}ms)"
            )

        for listener in listeners:
            try:
                listener(component, sample.duration_ms, sample.success)
            except Exception as e:
                logger.exception(f"Monitor listener failed for {component}: {e}")

    def subscribe(self, callback: SampleListener) -> Callable[[], None]:
        """
        Register a listener for every recorded sample.

        Returns:
            A function that removes the listener
        """
        with self._lock:
            self._listeners.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._listeners:
                    self._listeners.remove(callback)

        return unsubscribe

    def current_failure_rate(self, component: str, window_size: Optional[int] = None) -> float:
        """
        Failure rate over the component's most recent samples.

        Args:
            component: Component name
            window_size: Number of recent samples to consider

        Returns:
            Fraction of failures in [0, 1]; 0.0 when there are no samples
        """
        window_size = window_size or self.config.window_size
        recent = self._component_samples(component)[-window_size:]
        if not recent:
            return 0.0
        failures = sum(1 for s in recent if not s.success)
        return failures / len(recent)

    def get_stats(self) -> Dict[str, Dict[str, Any]]:
        """Per-component count, errors, error rate and latency figures."""
        with self._lock:
            grouped = {component: list(samples) for component, samples in self._samples.items() if samples}

        stats = {}
        for component, items in sorted(grouped.items()):
            durations = sorted(s.duration_ms for s in items)
            errors = sum(1 for s in items if not s.success)
            p95_index = min(int(len(durations) * 0.95), len(durations) - 1)
            stats[component] = {
                "count": len(items),
                "errors": errors,
                "error_rate": errors / len(items),
                "avg_ms": sum(durations) / len(durations),
                "p95_ms": durations[p95_index],
                "max_ms": durations[-1],
            }
        return stats

    def sample_count(self) -> int:
        """Number of samples currently retained across all components."""
        with self._lock:
            return sum(len(samples) for samples in self._samples.values())

    def clear(self) -> None:
        """Drop all samples and metric values."""
        with self._lock:
            self._samples.clear()
        self.metrics.clear()

    def _component_samples(self, component: str) -> List[Sample]:
        with self._lock:
            return list(self._samples.get(component, ()))
