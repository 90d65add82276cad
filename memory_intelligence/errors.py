"""
Exception hierarchy for the memory intelligence subsystem.

Only ValidationError is meant to reach end users (malformed manual
inserts). Everything else is handled inside the subsystem: detection and
retrieval degrade to empty results, the background processor defers or
retries.
"""

from typing import Optional


class MemoryIntelligenceError(Exception):
    """Base exception for memory intelligence errors."""
    pass


class ValidationError(MemoryIntelligenceError, ValueError):
    """Raised when a candidate or request fails validation."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class NotFoundError(MemoryIntelligenceError, KeyError):
    """Raised when a memory id does not exist."""

    def __init__(self, memory_id: str):
        super().__init__(memory_id)
        self.memory_id = memory_id

    def __str__(self) -> str:
        return f"Memory not found: {self.memory_id}"


class BackendUnavailable(MemoryIntelligenceError):
    """Raised when an AI backend (classification or embedding) fails or times out."""
    pass


class EmbeddingUnavailable(BackendUnavailable):
    """Raised when the embedding backend fails or times out."""
    pass


class ClassificationUnavailable(BackendUnavailable):
    """Raised when the classification backend fails or times out."""
    pass


class CircuitOpen(MemoryIntelligenceError):
    """Raised when the circuit breaker refuses a call."""

    def __init__(self, message: str = "Circuit breaker is open", retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


class TaskExhausted(MemoryIntelligenceError):
    """Raised on a task handle after the task used up all of its attempts."""

    def __init__(self, task_id: str, attempts: int, last_error: Optional[BaseException] = None):
        message = f"Task {task_id} failed after {attempts} attempts"
        if last_error is not None:
            message += f": {type(last_error).__name__}: {last_error}"
        super().__init__(message)
        self.task_id = task_id
        self.attempts = attempts
        self.last_error = last_error
