"""
REST API for Memory Intelligence.

Provides HTTP endpoints for adding, searching and relating memories.
"""

from .app import create_app
from .models import (
    CreateMemoryRequest,
    ErrorResponse,
    HealthResponse,
    MemoryResponse,
    RelationshipResponse,
    RelationshipsResponse,
    SearchResponse,
)

__all__ = [
    "create_app",
    "CreateMemoryRequest",
    "ErrorResponse",
    "HealthResponse",
    "MemoryResponse",
    "RelationshipResponse",
    "RelationshipsResponse",
    "SearchResponse",
]
