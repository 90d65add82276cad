"""
Background processing - priority task queue, worker pool, circuit breaker
and per-call timeouts for AI backend calls.
"""

from .circuit_breaker import CircuitBreaker, CircuitState
from .processor import BackgroundProcessor
from .tasks import ProcessingTask, TaskHandle, TaskKind, TaskPriority, TaskStatus
from .timeouts import CallTimeout, run_with_timeout

__all__ = [
    "BackgroundProcessor",
    "CircuitBreaker",
    "CircuitState",
    "ProcessingTask",
    "TaskHandle",
    "TaskKind",
    "TaskPriority",
    "TaskStatus",
    "CallTimeout",
    "run_with_timeout",
]
