"""
Background task processing.

A priority queue of ProcessingTask drained by a fixed pool of worker
threads. Every execution is gated by the circuit breaker, timed into the
performance monitor and retried with exponential backoff.
"""

import heapq
import itertools
import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..config import ProcessingConfig
from ..errors import TaskExhausted
from ..observability.context import ContextScope, TaskContext
from ..observability.monitor import PerformanceMonitor
from .circuit_breaker import CircuitBreaker
from .tasks import ProcessingTask, TaskHandle, TaskKind, TaskPriority, TaskStatus

logger = logging.getLogger(__name__)

TaskHandler = Callable[[Dict[str, Any]], Any]


class BackgroundProcessor:
    """
    Fire-and-forget task pipeline.

    Higher priority runs first; equal priorities run in enqueue order,
    and a task keeps its place in that order across retries. While the
    circuit breaker refuses work, tasks are deferred without consuming
    attempts.

    Usage:
        processor = BackgroundProcessor(ProcessingConfig(workers=2))
        processor.register_handler(TaskKind.DETECT, handle_detect)
        with processor:
            handle = processor.enqueue(TaskKind.DETECT, {"owner_id": "u1", "message": "..."})
            handle.result(timeout=5)
    """

    BREAKER_COMPONENT = "processor"
    IDLE_POLL_SECONDS = 0.5

    def __init__(
        self,
        config: Optional[ProcessingConfig] = None,
        breaker: Optional[CircuitBreaker] = None,
        monitor: Optional[PerformanceMonitor] = None,
    ):
        self.config = config or ProcessingConfig()
        self.monitor = monitor or PerformanceMonitor()
        self.breaker = breaker or CircuitBreaker()
        self.breaker.attach(self.monitor, self.BREAKER_COMPONENT)

        self._handlers: Dict[TaskKind, TaskHandler] = {}
        self._cond = threading.Condition()
        self._ready: List[Tuple[int, int, str]] = []
        self._delayed: List[Tuple[float, int, str]] = []
        self._tasks: Dict[str, ProcessingTask] = {}
        self._futures: Dict[str, Future] = {}
        self._queued_keys: Dict[str, str] = {}
        self._sequence = itertools.count()
        self._running = 0
        self._counters: Dict[str, int] = {status.value: 0 for status in TaskStatus}
        self._deferrals = 0

        self._executor: Optional[ThreadPoolExecutor] = None
        self._started = False
        self._stopping = False

    # ========== Lifecycle ==========

    def start(self) -> "BackgroundProcessor":
        """Start the worker pool. Safe to call twice."""
        with self._cond:
            if self._stopping:
                raise RuntimeError("Processor has been shut down")
            if self._started:
                return self
            self._started = True

        workers = max(1, self.config.workers)
        self._executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="memory-worker")
        for _ in range(workers):
            self._executor.submit(self._worker_loop)
        logger.info(f"Background processor started with {workers} worker(s)")
        return self

    def shutdown(self, wait: bool = True) -> None:
        """
        Stop the workers.

        Running tasks finish; tasks still queued are cancelled. Call
        join() first to drain the queue.
        """
        with self._cond:
            if self._stopping:
                return
            self._stopping = True
            pending = [t for t in self._tasks.values() if t.status == TaskStatus.QUEUED]
            for task in pending:
                self._cancel_locked(task)
            self._cond.notify_all()

        if pending:
            logger.info(f"Cancelled {len(pending)} queued task(s) on shutdown")
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
        self.breaker.detach()

    def __enter__(self) -> "BackgroundProcessor":
        return self.start()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.shutdown(wait=True)
        return False

    def join(self, timeout: Optional[float] = None) -> bool:
        """
        Wait until no task is queued or running.

        Returns:
            True if the queue drained, False if timeout elapsed first
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while self._pending_locked() or self._running:
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    return False
                self._cond.wait(remaining)
            return True

    # ========== Queue operations ==========

    def register_handler(self, kind: TaskKind, handler: TaskHandler) -> None:
        """Register the function that executes tasks of a kind."""
        self._handlers[TaskKind(kind)] = handler

    def enqueue(
        self,
        kind: TaskKind,
        payload: Dict[str, Any],
        priority: int = TaskPriority.NORMAL,
    ) -> TaskHandle:
        """
        Queue a task without blocking.

        Enqueuing a (kind, payload) identical to a task that is still
        queued returns the existing task's handle.

        Raises:
            ValueError: If no handler is registered for the kind.
            RuntimeError: If the processor has been shut down.
        """
        kind = TaskKind(kind)
        if kind not in self._handlers:
            raise ValueError(f"No handler registered for task kind: {kind.value}")

        task = ProcessingTask(kind=kind, payload=dict(payload), priority=int(priority))
        with self._cond:
            if self._stopping:
                raise RuntimeError("Processor has been shut down")

            existing_id = self._queued_keys.get(task.coalesce_key)
            if existing_id is not None:
                existing = self._tasks[existing_id]
                if task.priority > existing.priority and existing.attempts == 0:
                    existing.priority = task.priority
                    heapq.heappush(self._ready, (-existing.priority, existing.sequence, existing.id))
                logger.debug(f"Coalesced {kind.value} task into queued {existing_id}")
                return TaskHandle(existing, self._futures[existing_id])

            task.sequence = next(self._sequence)
            future: Future = Future()
            self._tasks[task.id] = task
            self._futures[task.id] = future
            self._queued_keys[task.coalesce_key] = task.id
            heapq.heappush(self._ready, (-task.priority, task.sequence, task.id))
            self._counters[TaskStatus.QUEUED.value] += 1
            self._cond.notify()

        logger.debug(f"Enqueued {kind.value} task {task.id} (priority {task.priority})")
        return TaskHandle(task, future)

    def cancel(self, task_id: str) -> bool:
        """
        Cancel a task that has not started.

        Returns:
            True if the task was removed, False if it is unknown, running
            or already finished
        """
        with self._cond:
            task = self._tasks.get(task_id)
            if task is None or task.status != TaskStatus.QUEUED:
                return False
            self._cancel_locked(task)
            self._cond.notify_all()
        logger.info(f"Cancelled task {task_id}")
        return True

    def get_task(self, task_id: str) -> Optional[ProcessingTask]:
        """Task that is still queued or running."""
        with self._cond:
            return self._tasks.get(task_id)

    def stats(self) -> Dict[str, Any]:
        with self._cond:
            return {
                "workers": self.config.workers,
                "started": self._started and not self._stopping,
                "queued": self._pending_locked(),
                "running": self._running,
                "deferrals": self._deferrals,
                "status_counts": dict(self._counters),
                "circuit_breaker": self.breaker.snapshot(),
            }

    # ========== Worker internals ==========

    def _worker_loop(self) -> None:
        while True:
            task = self._next_task()
            if task is None:
                return
            self._execute(task)

    def _next_task(self) -> Optional[ProcessingTask]:
        """Block until a runnable task is available, or return None on shutdown."""
        with self._cond:
            while True:
                # Workers also exit once the interpreter starts shutting down
                if self._stopping or not threading.main_thread().is_alive():
                    return None

                self._promote_due_locked()
                task = self._pop_ready_locked()
                if task is not None:
                    if not self.breaker.allow_request():
                        self._defer_locked(task)
                        continue
                    self._queued_keys.pop(task.coalesce_key, None)
                    task.status = TaskStatus.RUNNING
                    task.attempts += 1
                    self._running += 1
                    self._move_counter(TaskStatus.QUEUED, TaskStatus.RUNNING)
                    return task

                timeout = self.IDLE_POLL_SECONDS
                if self._delayed:
                    timeout = min(timeout, max(0.0, self._delayed[0][0] - time.monotonic()))
                self._cond.wait(timeout)

    def _execute(self, task: ProcessingTask) -> None:
        handler = self._handlers[task.kind]
        context = TaskContext(task_id=task.id, kind=task.kind.value, owner_id=task.payload.get("owner_id"))

        start = time.perf_counter()
        error: Optional[BaseException] = None
        result: Any = None
        with ContextScope(context):
            try:
                result = handler(task.payload)
            except Exception as e:
                error = e
            duration_ms = (time.perf_counter() - start) * 1000

            success = error is None
            self.monitor.record_sample(f"processor.{task.kind.value}", duration_ms, success)
            self.monitor.record_sample(self.BREAKER_COMPONENT, duration_ms, success)

            if success:
                self._finish(task, result=result)
            else:
                self._handle_failure(task, error)

    def _handle_failure(self, task: ProcessingTask, error: BaseException) -> None:
        task.last_error = f"{type(error).__name__}: {error}"
        if task.attempts >= self.config.max_attempts:
            logger.error(
                f"Task {task.id} ({task.kind.value}) failed after {task.attempts} attempt(s): {task.last_error}"
            )
            self._finish(task, error=TaskExhausted(task.id, task.attempts, error))
            return

        delay = min(self.config.backoff_max, self.config.backoff_base * 2 ** (task.attempts - 1))
        logger.warning(
            f"Task {task.id} ({task.kind.value}) attempt {task.attempts} failed: {task.last_error}; "
            f"retrying in {delay:.2f}s"
        )
        with self._cond:
            self._running -= 1
            self._move_counter(TaskStatus.RUNNING, TaskStatus.QUEUED)
            task.status = TaskStatus.QUEUED
            self._queued_keys.setdefault(task.coalesce_key, task.id)
            heapq.heappush(self._delayed, (time.monotonic() + delay, task.sequence, task.id))
            self._cond.notify_all()

    def _finish(self, task: ProcessingTask, result: Any = None, error: Optional[BaseException] = None) -> None:
        status = TaskStatus.SUCCEEDED if error is None else TaskStatus.FAILED
        with self._cond:
            task.status = status
            self._running -= 1
            self._move_counter(TaskStatus.RUNNING, status)
            self._tasks.pop(task.id, None)
            future = self._futures.pop(task.id)
            self._cond.notify_all()

        if error is None:
            future.set_result(result)
        else:
            future.set_exception(error)

    # Callers must hold self._cond
    def _pop_ready_locked(self) -> Optional[ProcessingTask]:
        while self._ready:
            neg_priority, _, task_id = heapq.heappop(self._ready)
            task = self._tasks.get(task_id)
            # Entries left behind by a priority bump are stale
            if task is not None and task.status == TaskStatus.QUEUED and -neg_priority == task.priority:
                return task
        return None

    def _promote_due_locked(self) -> None:
        now = time.monotonic()
        while self._delayed and self._delayed[0][0] <= now:
            _, sequence, task_id = heapq.heappop(self._delayed)
            task = self._tasks.get(task_id)
            if task is not None and task.status == TaskStatus.QUEUED:
                heapq.heappush(self._ready, (-task.priority, sequence, task_id))

    def _defer_locked(self, task: ProcessingTask) -> None:
        self._deferrals += 1
        due = time.monotonic() + self.config.defer_interval
        heapq.heappush(self._delayed, (due, task.sequence, task.id))
        logger.debug(f"Circuit open; deferred task {task.id} for {self.config.defer_interval:.2f}s")

    def _cancel_locked(self, task: ProcessingTask) -> None:
        task.status = TaskStatus.CANCELLED
        self._queued_keys.pop(task.coalesce_key, None)
        self._move_counter(TaskStatus.QUEUED, TaskStatus.CANCELLED)
        self._tasks.pop(task.id, None)
        future = self._futures.pop(task.id, None)
        if future is not None:
            future.cancel()

    def _pending_locked(self) -> int:
        return sum(1 for t in self._tasks.values() if t.status == TaskStatus.QUEUED)

    def _move_counter(self, source: TaskStatus, target: TaskStatus) -> None:
        self._counters[source.value] -= 1
        self._counters[target.value] += 1
