"""
Request/response logging middleware.
"""

import logging
import time
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from ..observability.context import ContextScope, TaskContext

logger = logging.getLogger("memory_intelligence.api.requests")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs every request with its status and duration and tags it with X-Request-ID."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())[:8]
        request.state.request_id = request_id
        start_time = time.perf_counter()

        with ContextScope(TaskContext(request_id=request_id, owner_id=request.headers.get("X-Owner-Id"))):
            try:
                response = await call_next(request)
            except Exception as e:
                duration = time.perf_counter() - start_time
                logger.error(
                    f"{request.method} {request.url.path} failed: {type(e).__name__}: {e} "
                    f"({duration * 1000:.2f}ms)"
                )
                raise

            duration = time.perf_counter() - start_time
            logger.info(
                f"{request.method} {request.url.path} {response.status_code} "
                f"({duration * 1000:.2f}ms) from {self._get_client_ip(request)}"
            )

        response.headers["X-Request-ID"] = request_id
        return response

    def _get_client_ip(self, request: Request) -> str:
        """Get client IP address from request."""
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            return forwarded.split(",")[0].strip()
        if request.client:
            return request.client.host
        return "unknown"
