"""
Pydantic models for API request/response schemas.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ..memory.relationships import RelatedMemory
from ..memory.types import Memory, MemoryCategory, Relationship, RelationshipType, ScoredMemory


class CreateMemoryRequest(BaseModel):
    """Request model for a manual memory insert."""
    content: str = Field(..., min_length=10, max_length=500, description="What to remember")
    category: MemoryCategory = Field(..., description="Memory category")
    importance: float = Field(..., ge=0.0, le=1.0, description="Importance score (0-1)")
    keywords: Optional[List[str]] = Field(
        default=None,
        description="Optional keywords; extracted from the content when omitted",
    )


class MemoryResponse(BaseModel):
    """A stored memory."""
    id: str = Field(..., description="Memory identifier")
    owner_id: str = Field(..., description="Owner of the memory")
    content: str = Field(..., description="Remembered text")
    category: MemoryCategory = Field(..., description="Memory category")
    importance: float = Field(..., description="Importance score (0-1)")
    keywords: List[str] = Field(default_factory=list, description="Keywords")
    source_conversation_id: Optional[str] = Field(default=None, description="Originating conversation")
    source_message_id: Optional[str] = Field(default=None, description="Originating message")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Review flags and extra data")
    created_at: datetime = Field(..., description="Creation timestamp")
    updated_at: datetime = Field(..., description="Last update timestamp")
    access_count: int = Field(default=0, description="Times returned by retrieval")
    last_accessed: Optional[datetime] = Field(default=None, description="Last time returned by retrieval")

    @classmethod
    def from_memory(cls, memory: Memory) -> "MemoryResponse":
        return cls(
            id=memory.id,
            owner_id=memory.owner_id,
            content=memory.content,
            category=memory.category,
            importance=memory.importance,
            keywords=list(memory.keywords),
            source_conversation_id=memory.source_conversation_id,
            source_message_id=memory.source_message_id,
            metadata=dict(memory.metadata),
            created_at=memory.created_at,
            updated_at=memory.updated_at,
            access_count=memory.access_count,
            last_accessed=memory.last_accessed,
        )


class SearchResult(BaseModel):
    """One ranked search hit."""
    memory: MemoryResponse
    score: float = Field(..., description="Blended ranking score")
    similarity: float = Field(..., description="Cosine similarity to the query")
    signals: Dict[str, float] = Field(default_factory=dict, description="Per-signal score breakdown")

    @classmethod
    def from_scored(cls, scored: ScoredMemory) -> "SearchResult":
        return cls(
            memory=MemoryResponse.from_memory(scored.memory),
            score=scored.score,
            similarity=scored.similarity,
            signals=scored.signals,
        )


class SearchResponse(BaseModel):
    """Response model for memory search."""
    query: str
    count: int
    results: List[SearchResult] = Field(default_factory=list)


class RelationshipResponse(BaseModel):
    """A stored edge between two memories."""
    id: str
    from_memory_id: str
    to_memory_id: str
    type: RelationshipType
    strength: float = Field(..., description="Edge strength (0-1)")
    created_at: datetime

    @classmethod
    def from_relationship(cls, relationship: Relationship) -> "RelationshipResponse":
        return cls(
            id=relationship.id,
            from_memory_id=relationship.from_memory_id,
            to_memory_id=relationship.to_memory_id,
            type=relationship.type,
            strength=relationship.strength,
            created_at=relationship.created_at,
        )


class RelatedMemoryResponse(BaseModel):
    """A memory reached through stored edges."""
    memory: MemoryResponse
    relationship: RelationshipResponse
    depth: int

    @classmethod
    def from_related(cls, related: RelatedMemory) -> "RelatedMemoryResponse":
        return cls(
            memory=MemoryResponse.from_memory(related.memory),
            relationship=RelationshipResponse.from_relationship(related.relationship),
            depth=related.depth,
        )


class RelationshipsResponse(BaseModel):
    """Edges touching a memory, plus the memories one hop away."""
    memory_id: str
    relationships: List[RelationshipResponse] = Field(default_factory=list)
    related: List[RelatedMemoryResponse] = Field(default_factory=list)


class HealthResponse(BaseModel):
    """Response model for health check."""
    status: str = Field(..., description="Service health status")
    version: str = Field(..., description="Package version")
    timestamp: datetime = Field(..., description="Current server time")
    circuit_breaker: str = Field(..., description="Circuit breaker state")


class ErrorResponse(BaseModel):
    """Response model for errors."""
    error: str = Field(..., description="Error type")
    detail: Optional[str] = Field(default=None, description="Error details")
    field: Optional[str] = Field(default=None, description="Offending field, for validation errors")
