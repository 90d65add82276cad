"""
Memory Intelligence - durable, searchable memories for conversational agents.

Turns chat messages into categorized memories in the background, keeps
them deduplicated and linked, and hands the most relevant ones back to
the conversation as context.

Key Features:
- Non-blocking detection of memorable content (rules or LLM backed)
- Vector-embedding storage with owner-scoped similarity search
- Deduplication with merge and contradiction flagging
- Relationship graph between memories
- Three-tier retrieval and re-ranking
- Priority task queue protected by a circuit breaker
"""

from .config import MemoryIntelligenceConfig, load_config
from .errors import (
    BackendUnavailable,
    CircuitOpen,
    ClassificationUnavailable,
    EmbeddingUnavailable,
    MemoryIntelligenceError,
    NotFoundError,
    TaskExhausted,
    ValidationError,
)
from .memory import (
    CandidateMemory,
    Memory,
    MemoryCategory,
    Relationship,
    RelationshipType,
)
from .service import MemoryService

__version__ = "0.1.0"

__all__ = [
    "MemoryService",
    "MemoryIntelligenceConfig",
    "load_config",
    # Types
    "CandidateMemory",
    "Memory",
    "MemoryCategory",
    "Relationship",
    "RelationshipType",
    # Errors
    "MemoryIntelligenceError",
    "ValidationError",
    "NotFoundError",
    "BackendUnavailable",
    "EmbeddingUnavailable",
    "ClassificationUnavailable",
    "CircuitOpen",
    "TaskExhausted",
]
