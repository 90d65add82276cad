"""
Memory type definitions for the memory intelligence subsystem.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from ..errors import ValidationError


MAX_MEMORY_CONTENT_LENGTH = 2000


def utc_now() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def parse_datetime(value: Any) -> Optional[datetime]:
    """
    Parse a datetime from string or return as-is if already datetime.

    Handles ISO format strings including 'Z' suffix for UTC. Naive values
    are assumed to be UTC.

    Args:
        value: String or datetime to parse

    Returns:
        Parsed datetime or None
    """
    if value is None:
        return None
    if isinstance(value, str):
        if value.endswith('Z'):
            value = value[:-1] + '+00:00'
        value = datetime.fromisoformat(value)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value
    return None


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:16]}"


class MemoryCategory(str, Enum):
    """Categories a memory can belong to."""

    # Likes, dislikes, preferred ways of doing things
    PREFERENCE = "preference"

    # Facts about the person: name, job, family, health
    PERSONAL_INFO = "personal_info"

    # Ongoing situations, goals, projects
    CONTEXT = "context"

    # How the assistant should behave
    INSTRUCTION = "instruction"

    @classmethod
    def parse(cls, value: Union[str, "MemoryCategory"]) -> "MemoryCategory":
        """Parse a category, raising ValidationError for unknown values."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            allowed = ", ".join(c.value for c in cls)
            raise ValidationError(
                f"Invalid category {value!r}; expected one of: {allowed}",
                field="category",
            )


class RelationshipType(str, Enum):
    """Directed relationship types between memories."""
    RELATES_TO = "relates_to"
    CONTRADICTS = "contradicts"
    SUPERSEDES = "supersedes"
    ELABORATES = "elaborates"


def validate_importance(value: Any) -> float:
    """Return importance as float, raising ValidationError outside [0, 1]."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"Importance must be a number, got {value!r}", field="importance")
    value = float(value)
    if not 0.0 <= value <= 1.0:
        raise ValidationError(f"Importance must be within [0, 1], got {value}", field="importance")
    return value


@dataclass
class Memory:
    """
    A persisted unit of remembered information.

    Attributes:
        content: The remembered text (1-2000 characters)
        category: One of the MemoryCategory values
        owner_id: Tenant that owns this memory
        importance: Importance score in [0, 1]
        embedding: Vector representation used for similarity search
        keywords: Ordered keywords extracted at detection time
        source_conversation_id: Conversation the memory came from
        source_message_id: Message the memory came from
        metadata: Free-form flags (e.g. contradiction candidates)
        created_at: When the memory was created
        updated_at: When the memory was last changed
        access_count: How many times retrieval has returned the memory
        last_accessed: When retrieval last returned the memory
    """

    content: str
    category: MemoryCategory
    owner_id: str
    importance: float = 0.5
    id: Optional[str] = None
    embedding: Optional[List[float]] = None
    keywords: List[str] = field(default_factory=list)
    source_conversation_id: Optional[str] = None
    source_message_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    access_count: int = 0
    last_accessed: Optional[datetime] = None

    def __post_init__(self):
        """Validate fields and fill in defaults."""
        self.category = MemoryCategory.parse(self.category)
        self.importance = validate_importance(self.importance)
        if not self.content or not self.content.strip():
            raise ValidationError("Memory content must not be empty", field="content")
        if len(self.content) > MAX_MEMORY_CONTENT_LENGTH:
            raise ValidationError(
                f"Memory content exceeds {MAX_MEMORY_CONTENT_LENGTH} characters",
                field="content",
            )
        if not self.owner_id:
            raise ValidationError("Memory owner_id must not be empty", field="owner_id")
        if self.created_at is None:
            self.created_at = utc_now()
        if self.updated_at is None:
            self.updated_at = self.created_at
        if self.id is None:
            self.id = _new_id("mem")

    @property
    def contradiction_candidates(self) -> List[str]:
        """Ids flagged by deduplication as possibly contradicting this memory."""
        return list(self.metadata.get("contradiction_candidates", []))

    def to_dict(self, include_embedding: bool = False) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        data = {
            "id": self.id,
            "owner_id": self.owner_id,
            "content": self.content,
            "category": self.category.value,
            "importance": self.importance,
            "keywords": list(self.keywords),
            "source_conversation_id": self.source_conversation_id,
            "source_message_id": self.source_message_id,
            "metadata": self.metadata,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "access_count": self.access_count,
            "last_accessed": self.last_accessed.isoformat() if self.last_accessed else None,
        }
        if include_embedding:
            data["embedding"] = self.embedding
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Memory":
        """Create from dictionary."""
        return cls(
            id=data.get("id"),
            owner_id=data.get("owner_id", ""),
            content=data.get("content", ""),
            category=data.get("category", MemoryCategory.CONTEXT.value),
            importance=data.get("importance", 0.5),
            embedding=data.get("embedding"),
            keywords=data.get("keywords", []),
            source_conversation_id=data.get("source_conversation_id"),
            source_message_id=data.get("source_message_id"),
            metadata=data.get("metadata", {}),
            created_at=parse_datetime(data.get("created_at")),
            updated_at=parse_datetime(data.get("updated_at")),
            access_count=int(data.get("access_count") or 0),
            last_accessed=parse_datetime(data.get("last_accessed")),
        )


@dataclass
class AtomicFact:
    """A minimal statement extracted from a memory, owned by that memory."""

    memory_id: str
    statement: str
    confidence: float = 1.0
    id: Optional[str] = None

    def __post_init__(self):
        if not 0.0 <= self.confidence <= 1.0:
            raise ValidationError(f"Fact confidence must be within [0, 1], got {self.confidence}")
        if self.id is None:
            self.id = _new_id("fact")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "memory_id": self.memory_id,
            "statement": self.statement,
            "confidence": self.confidence,
        }


@dataclass
class Relationship:
    """
    Directed, typed edge between two memories.

    Both endpoints are memory ids; the store enforces that they exist.
    """

    from_memory_id: str
    to_memory_id: str
    type: RelationshipType
    strength: float = 0.5
    id: Optional[str] = None
    created_at: Optional[datetime] = None

    def __post_init__(self):
        self.type = RelationshipType(self.type)
        if self.from_memory_id == self.to_memory_id:
            raise ValidationError("A memory cannot be related to itself")
        if not 0.0 <= self.strength <= 1.0:
            raise ValidationError(f"Relationship strength must be within [0, 1], got {self.strength}")
        if self.created_at is None:
            self.created_at = utc_now()
        if self.id is None:
            self.id = _new_id("rel")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "from_memory_id": self.from_memory_id,
            "to_memory_id": self.to_memory_id,
            "type": self.type.value,
            "strength": self.strength,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


@dataclass
class ConversationTurn:
    """One prior turn of a conversation."""

    role: str
    content: str

    @classmethod
    def from_value(cls, value: Union["ConversationTurn", Dict[str, Any], str]) -> "ConversationTurn":
        """Accept a turn, a {role, content} dict or a bare string."""
        if isinstance(value, cls):
            return value
        if isinstance(value, dict):
            return cls(role=str(value.get("role", "user")), content=str(value.get("content", "")))
        return cls(role="user", content=str(value))

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass
class CandidateMemory:
    """
    A memory proposed by the detector, not yet persisted.

    Attributes:
        content: Extracted text (10-500 characters once validated)
        category: Proposed category
        importance: Proposed importance in [0, 1]
        keywords: Extracted keywords
        embedding: Filled in by the processing pipeline before dedup
        explicit: True when the user explicitly asked to remember this
    """

    content: str
    category: MemoryCategory
    importance: float
    keywords: List[str] = field(default_factory=list)
    embedding: Optional[List[float]] = None
    source_conversation_id: Optional[str] = None
    source_message_id: Optional[str] = None
    explicit: bool = False

    def to_memory(self, owner_id: str, metadata: Optional[Dict[str, Any]] = None) -> Memory:
        """Build a new Memory from this candidate."""
        return Memory(
            content=self.content,
            category=self.category,
            owner_id=owner_id,
            importance=self.importance,
            embedding=self.embedding,
            keywords=list(self.keywords),
            source_conversation_id=self.source_conversation_id,
            source_message_id=self.source_message_id,
            metadata=dict(metadata or {}),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "content": self.content,
            "category": MemoryCategory.parse(self.category).value,
            "importance": self.importance,
            "keywords": list(self.keywords),
            "source_conversation_id": self.source_conversation_id,
            "source_message_id": self.source_message_id,
            "explicit": self.explicit,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CandidateMemory":
        return cls(
            content=data["content"],
            category=MemoryCategory.parse(data["category"]),
            importance=validate_importance(data["importance"]),
            keywords=list(data.get("keywords", [])),
            embedding=data.get("embedding"),
            source_conversation_id=data.get("source_conversation_id"),
            source_message_id=data.get("source_message_id"),
            explicit=bool(data.get("explicit", False)),
        )


@dataclass
class ScoredMemory:
    """A memory with its retrieval score and per-signal breakdown."""

    memory: Memory
    score: float = 0.0
    similarity: float = 0.0
    signals: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "memory": self.memory.to_dict(),
            "score": self.score,
            "similarity": self.similarity,
            "signals": self.signals,
        }


class DedupDecision:
    """Base class for deduplication outcomes."""

    outcome = ""


@dataclass
class Insert(DedupDecision):
    """Store the candidate as a new memory."""

    memory: Memory
    contradiction_of: Optional[str] = None
    similarity: float = 0.0

    outcome = "insert"


@dataclass
class Merge(DedupDecision):
    """Fold the candidate into an existing memory."""

    existing_id: str
    merged_content: str
    importance: float
    keywords: List[str] = field(default_factory=list)
    similarity: float = 0.0
    changed: bool = True

    outcome = "merge"


@dataclass
class Discard(DedupDecision):
    """Drop the candidate."""

    reason: str

    outcome = "discard"


@dataclass
class MemoryStats:
    """Statistics about stored memories."""

    total_memories: int = 0
    memories_by_category: Dict[str, int] = field(default_factory=dict)
    total_owners: int = 0
    total_facts: int = 0
    total_relationships: int = 0
    relationships_by_type: Dict[str, int] = field(default_factory=dict)
    total_size_bytes: int = 0
    oldest_memory: Optional[datetime] = None
    newest_memory: Optional[datetime] = None
    average_importance: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "total_memories": self.total_memories,
            "memories_by_category": self.memories_by_category,
            "total_owners": self.total_owners,
            "total_facts": self.total_facts,
            "total_relationships": self.total_relationships,
            "relationships_by_type": self.relationships_by_type,
            "total_size_bytes": self.total_size_bytes,
            "oldest_memory": self.oldest_memory.isoformat() if self.oldest_memory else None,
            "newest_memory": self.newest_memory.isoformat() if self.newest_memory else None,
            "average_importance": self.average_importance,
        }
