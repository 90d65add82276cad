"""
Per-call timeouts for blocking backend calls.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from typing import Any, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CallTimeout(TimeoutError):
    """Raised when a backend call does not finish within its timeout."""

    def __init__(self, name: str, timeout: float):
        super().__init__(f"{name} timed out after {timeout:.2f}s")
        self.name = name
        self.timeout = timeout


def run_with_timeout(
    func: Callable[..., T],
    timeout: float,
    *args: Any,
    name: str = "",
    **kwargs: Any,
) -> T:
    """
    Run func in a helper thread and wait at most `timeout` seconds.

    The caller gets CallTimeout when the deadline passes; the helper thread
    is abandoned and finishes in the background. Exceptions raised by func
    propagate unchanged. A non-positive timeout runs func inline.
    """
    if timeout is None or timeout <= 0:
        return func(*args, **kwargs)

    label = name or getattr(func, "__qualname__", repr(func))
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="backend-call")
    try:
        future = executor.submit(func, *args, **kwargs)
        try:
            return future.result(timeout=timeout)
        except FutureTimeoutError:
            logger.warning(f"{label} exceeded {timeout:.2f}s timeout")
            raise CallTimeout(label, timeout)
    finally:
        executor.shutdown(wait=False)
