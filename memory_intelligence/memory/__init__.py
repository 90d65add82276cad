"""
Memory engines.

Key features:
- SQLite-based embedding store with owner-scoped similarity search
- Detection of memorable content through pluggable classifiers
- Deduplication and conflict resolution with atomic fact merging
- Relationship graph between memories
- Three-tier retrieval and re-ranking with a warm query cache
"""

from .types import (
    AtomicFact,
    CandidateMemory,
    ConversationTurn,
    DedupDecision,
    Discard,
    Insert,
    Memory,
    MemoryCategory,
    MemoryStats,
    Merge,
    Relationship,
    RelationshipType,
    ScoredMemory,
)

from .embeddings import (
    EmbeddingProvider,
    OpenAIEmbedding,
    SentenceTransformerEmbedding,
    SimpleEmbedding,
    cosine_similarity,
    get_embedding_provider,
)

from .storage import (
    EmbeddingStore,
    SQLiteEmbeddingStore,
)

from .cache import TTLCache

from .classifiers import (
    Classifier,
    LLMClassifier,
    RuleBasedClassifier,
    create_classifier,
)

from .detector import Detector
from .dedup import DeduplicationEngine
from .relationships import RelatedMemory, RelationshipEngine
from .retrieval import RetrievalEngine, format_memory_context, infer_intent


__all__ = [
    # Types
    "AtomicFact",
    "CandidateMemory",
    "ConversationTurn",
    "DedupDecision",
    "Discard",
    "Insert",
    "Memory",
    "MemoryCategory",
    "MemoryStats",
    "Merge",
    "Relationship",
    "RelationshipType",
    "ScoredMemory",
    # Embeddings
    "EmbeddingProvider",
    "OpenAIEmbedding",
    "SentenceTransformerEmbedding",
    "SimpleEmbedding",
    "cosine_similarity",
    "get_embedding_provider",
    # Storage
    "EmbeddingStore",
    "SQLiteEmbeddingStore",
    "TTLCache",
    # Detection
    "Classifier",
    "LLMClassifier",
    "RuleBasedClassifier",
    "create_classifier",
    "Detector",
    # Engines
    "DeduplicationEngine",
    "RelatedMemory",
    "RelationshipEngine",
    "RetrievalEngine",
    "format_memory_context",
    "infer_intent",
]
