"""
Background task types.
"""

import json
import uuid
from concurrent.futures import Future
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from ..memory.types import utc_now


class TaskKind(str, Enum):
    """Kinds of background work."""
    DETECT = "detect"
    STORE = "store"
    RELATE = "relate"


class TaskStatus(str, Enum):
    """Lifecycle status of a task."""
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_final(self) -> bool:
        return self in (TaskStatus.SUCCEEDED, TaskStatus.FAILED, TaskStatus.CANCELLED)


class TaskPriority:
    """Priority levels; higher runs sooner."""
    LOW = 0
    NORMAL = 5
    HIGH = 10


@dataclass
class ProcessingTask:
    """
    A unit of background work.

    Attributes:
        kind: Handler that runs the task
        payload: Handler input; must be JSON-serializable
        priority: Higher values are dequeued first
        attempts: Executions consumed so far
        status: Current lifecycle status
        sequence: Enqueue order, kept across retries
    """

    kind: TaskKind
    payload: Dict[str, Any]
    priority: int = TaskPriority.NORMAL
    id: str = field(default_factory=lambda: f"task_{uuid.uuid4().hex[:16]}")
    attempts: int = 0
    status: TaskStatus = TaskStatus.QUEUED
    created_at: datetime = field(default_factory=utc_now)
    sequence: int = 0
    last_error: Optional[str] = None

    @property
    def coalesce_key(self) -> str:
        """Identity of (kind, payload) used to merge duplicate enqueues."""
        return f"{self.kind.value}:{json.dumps(self.payload, sort_keys=True, default=str)}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "priority": self.priority,
            "payload": self.payload,
            "attempts": self.attempts,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "last_error": self.last_error,
        }


class TaskHandle:
    """
    Awaitable view of an enqueued task.

    Callers in production fire and forget; tests use result() to wait.
    """

    def __init__(self, task: ProcessingTask, future: Future):
        self._task = task
        self._future = future

    @property
    def task_id(self) -> str:
        return self._task.id

    @property
    def status(self) -> TaskStatus:
        return self._task.status

    @property
    def attempts(self) -> int:
        return self._task.attempts

    def done(self) -> bool:
        return self._future.done()

    def result(self, timeout: Optional[float] = None) -> Any:
        """
        Wait for the task to finish.

        Raises:
            TaskExhausted: If every attempt failed.
            concurrent.futures.CancelledError: If the task was cancelled.
            concurrent.futures.TimeoutError: If timeout elapses first.
        """
        return self._future.result(timeout=timeout)

    def __repr__(self) -> str:
        return f"TaskHandle({self._task.id}, {self._task.kind.value}, {self._task.status.value})"
