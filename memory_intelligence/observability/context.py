"""
Task context propagation for logging.

Workers set a TaskContext while a background task runs so every log
record emitted during the task carries its id, kind and owner.
"""

from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


_current_context: ContextVar[Optional["TaskContext"]] = ContextVar("current_task_context", default=None)


@dataclass
class TaskContext:
    """
    Context describing the unit of work currently executing.

    Attributes:
        task_id: Background task id, if running inside a worker
        kind: Task kind (detect, store, relate)
        owner_id: Owner whose memories are being processed
        request_id: HTTP request id, if running inside a request
        attributes: Additional attributes stamped on log records
    """

    task_id: Optional[str] = None
    kind: Optional[str] = None
    owner_id: Optional[str] = None
    request_id: Optional[str] = None
    attributes: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Non-empty fields, for structured log output."""
        result = {
            key: value
            for key, value in (
                ("task_id", self.task_id),
                ("task_kind", self.kind),
                ("owner_id", self.owner_id),
                ("request_id", self.request_id),
            )
            if value is not None
        }
        result.update(self.attributes)
        return result


def get_current_context() -> Optional[TaskContext]:
    """Get the context of the running task or request."""
    return _current_context.get()


class ContextScope:
    """
    Context manager for scoped task context.

    Usage:
        with ContextScope(TaskContext(task_id="task_1", kind="detect")):
            # log records carry task_id here
            pass
        # previous context is restored
    """

    def __init__(self, context: TaskContext):
        self.context = context
        self._token = None

    def __enter__(self) -> TaskContext:
        self._token = _current_context.set(self.context)
        return self.context

    def __exit__(self, exc_type, exc_val, exc_tb):
        _current_context.reset(self._token)
        return False
