"""
FastAPI application for the Memory Intelligence REST API.
"""

import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import Depends, FastAPI, Header, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .. import __version__
from ..config import MemoryIntelligenceConfig, load_config
from ..errors import BackendUnavailable, NotFoundError, ValidationError
from ..service import MemoryService
from .logging_middleware import RequestLoggingMiddleware
from .models import (
    CreateMemoryRequest,
    ErrorResponse,
    HealthResponse,
    MemoryResponse,
    RelatedMemoryResponse,
    RelationshipResponse,
    RelationshipsResponse,
    SearchResponse,
    SearchResult,
)

logger = logging.getLogger(__name__)

DEFAULT_OWNER = "default"


def create_app(
    service: Optional[MemoryService] = None,
    config: Optional[MemoryIntelligenceConfig] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        service: Service to serve. When None, one is built from `config`
            (or load_config()) at startup and closed at shutdown.
        config: Configuration for the service built at startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = app.state.service is None
        if owned:
            app.state.service = MemoryService(config or load_config())
        logger.info("Starting Memory Intelligence API")
        app.state.service.start()

        yield

        logger.info("Shutting down Memory Intelligence API")
        if owned:
            app.state.service.close()
            app.state.service = None

    app = FastAPI(
        title="Memory Intelligence API",
        description="""
REST API for the Memory Intelligence subsystem.

## Features
- Manually add memories
- Three-tier semantic search over an owner's memories
- Relationship graph between memories

## Owners
Requests act on the owner named by the `X-Owner-Id` header (`default` when
absent). Authentication is expected to happen in front of this service.
        """,
        version=__version__,
        lifespan=lifespan,
    )
    app.state.service = service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=os.environ.get("MEMORY_INTELLIGENCE_CORS_ORIGINS", "*").split(","),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    register_exception_handlers(app)
    register_routes(app)
    return app


def get_service(request: Request) -> MemoryService:
    service = request.app.state.service
    if service is None:
        raise BackendUnavailable("Memory service is not running")
    return service


def get_owner_id(x_owner_id: Optional[str] = Header(default=None)) -> str:
    return (x_owner_id or "").strip() or DEFAULT_OWNER


def _error(status_code: int, error: str, detail: str, field: Optional[str] = None) -> JSONResponse:
    body = ErrorResponse(error=error, detail=detail, field=field)
    return JSONResponse(status_code=status_code, content=body.model_dump())


def register_exception_handlers(app: FastAPI):
    """Map subsystem errors to HTTP responses."""

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError):
        return _error(422, "validation_error", str(exc), field=exc.field)

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError):
        return _error(404, "not_found", str(exc))

    @app.exception_handler(BackendUnavailable)
    async def backend_unavailable_handler(request: Request, exc: BackendUnavailable):
        logger.warning(f"Backend unavailable for {request.method} {request.url.path}: {exc}")
        return _error(503, "backend_unavailable", str(exc))


def _split_hints(hints: List[str]) -> List[str]:
    """Accept both repeated ?hints= parameters and comma-separated values."""
    result = []
    for value in hints:
        result.extend(part.strip() for part in value.split(",") if part.strip())
    return result


def register_routes(app: FastAPI):
    """Register all API routes."""

    @app.get(
        "/health",
        response_model=HealthResponse,
        tags=["Health"],
        summary="Health check endpoint",
    )
    def health_check(service: MemoryService = Depends(get_service)):
        breaker_state = service.breaker.state.value
        return HealthResponse(
            status="healthy" if breaker_state == "closed" else "degraded",
            version=__version__,
            timestamp=datetime.now(timezone.utc),
            circuit_breaker=breaker_state,
        )

    @app.post(
        "/memories",
        response_model=MemoryResponse,
        status_code=201,
        responses={
            422: {"model": ErrorResponse, "description": "Validation Error"},
            503: {"model": ErrorResponse, "description": "Embedding backend unavailable"},
        },
        tags=["Memories"],
        summary="Add a memory",
    )
    def create_memory(
        request: CreateMemoryRequest,
        service: MemoryService = Depends(get_service),
        owner_id: str = Depends(get_owner_id),
    ):
        """
        Manually add a memory.

        The memory goes through deduplication, so adding content that
        duplicates an existing memory returns that (possibly merged) memory.
        """
        memory = service.add_memory(
            owner_id,
            request.content,
            request.category,
            request.importance,
            keywords=request.keywords,
        )
        return MemoryResponse.from_memory(memory)

    @app.get(
        "/memories/search",
        response_model=SearchResponse,
        tags=["Memories"],
        summary="Search memories",
    )
    def search_memories(
        q: str = Query(..., min_length=1, description="Query text"),
        limit: int = Query(5, ge=1, le=50, description="Maximum number of results"),
        hints: List[str] = Query(default=[], description="Contextual hints (repeat or comma-separate)"),
        service: MemoryService = Depends(get_service),
        owner_id: str = Depends(get_owner_id),
    ):
        """Ranked memories relevant to the query, deduplicated."""
        results = service.search(owner_id, q, _split_hints(hints), limit)
        return SearchResponse(
            query=q,
            count=len(results),
            results=[SearchResult.from_scored(scored) for scored in results],
        )

    @app.get(
        "/memories/{memory_id}",
        response_model=MemoryResponse,
        responses={404: {"model": ErrorResponse, "description": "Memory not found"}},
        tags=["Memories"],
        summary="Get a memory",
    )
    def get_memory(
        memory_id: str,
        service: MemoryService = Depends(get_service),
        owner_id: str = Depends(get_owner_id),
    ):
        return MemoryResponse.from_memory(service.get_memory(memory_id, owner_id))

    @app.delete(
        "/memories/{memory_id}",
        status_code=204,
        responses={404: {"model": ErrorResponse, "description": "Memory not found"}},
        tags=["Memories"],
        summary="Delete a memory",
    )
    def delete_memory(
        memory_id: str,
        service: MemoryService = Depends(get_service),
        owner_id: str = Depends(get_owner_id),
    ):
        if not service.delete_memory(memory_id, owner_id):
            raise NotFoundError(memory_id)
        return Response(status_code=204)

    @app.get(
        "/memories/{memory_id}/relationships",
        response_model=RelationshipsResponse,
        responses={404: {"model": ErrorResponse, "description": "Memory not found"}},
        tags=["Relationships"],
        summary="Get relationships of a memory",
    )
    def get_relationships(
        memory_id: str,
        service: MemoryService = Depends(get_service),
        owner_id: str = Depends(get_owner_id),
    ):
        """Stored edges touching the memory and the memories they lead to."""
        relationships = service.get_relationships(memory_id, owner_id)
        related = service.related_memories(memory_id, owner_id)
        return RelationshipsResponse(
            memory_id=memory_id,
            relationships=[RelationshipResponse.from_relationship(r) for r in relationships],
            related=[RelatedMemoryResponse.from_related(r) for r in related],
        )

    @app.get(
        "/stats",
        tags=["Health"],
        summary="Monitor, processor and storage statistics",
    )
    def get_stats(
        service: MemoryService = Depends(get_service),
        owner_id: Optional[str] = Query(None, description="Restrict storage stats to one owner"),
    ):
        return service.stats(owner_id)

    @app.get(
        "/metrics",
        tags=["Health"],
        summary="Prometheus metrics",
    )
    def get_metrics(service: MemoryService = Depends(get_service)):
        return Response(content=service.monitor.metrics.to_prometheus(), media_type="text/plain")


# Default application instance for uvicorn
app = create_app()
