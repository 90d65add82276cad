"""
Memory Service - High-level interface for the memory intelligence subsystem.

Wires the detector, deduplication, storage, relationship and retrieval
engines together behind one explicitly constructed object, and runs the
write path (detect -> store -> relate) on the background processor.
"""

import logging
import threading
from typing import Any, Dict, Iterable, List, Optional

from .config import MemoryIntelligenceConfig
from .errors import NotFoundError, ValidationError
from .memory.cache import TTLCache
from .memory.classifiers import Classifier, create_classifier
from .memory.dedup import DeduplicationEngine
from .memory.detector import Detector
from .memory.embeddings import EmbeddingProvider, get_embedding_provider
from .memory.facts import extract_atomic_facts
from .memory.relationships import RelatedMemory, RelationshipEngine
from .memory.retrieval import RetrievalEngine, format_memory_context
from .memory.storage import EmbeddingStore, SQLiteEmbeddingStore
from .memory.text import extract_keywords, normalize_whitespace
from .memory.types import (
    CandidateMemory,
    Discard,
    Insert,
    Memory,
    MemoryCategory,
    Merge,
    Relationship,
    RelationshipType,
    ScoredMemory,
    validate_importance,
)
from .observability.monitor import PerformanceMonitor
from .processing.circuit_breaker import CircuitBreaker
from .processing.processor import BackgroundProcessor
from .processing.tasks import TaskHandle, TaskKind, TaskPriority

logger = logging.getLogger(__name__)


class MemoryService:
    """
    Entry point used by the chat layer, the HTTP API and the CLI.

    Example usage:
        service = MemoryService(load_config())
        with service:
            # Fire-and-forget: returns immediately
            service.process_message("user-1", "I prefer morning workouts", [])

            # Later, when answering the user
            memories = service.retrieve("user-1", "plan my workout week")
    """

    def __init__(
        self,
        config: Optional[MemoryIntelligenceConfig] = None,
        store: Optional[EmbeddingStore] = None,
        embedding_provider: Optional[EmbeddingProvider] = None,
        classifier: Optional[Classifier] = None,
        monitor: Optional[PerformanceMonitor] = None,
        breaker: Optional[CircuitBreaker] = None,
    ):
        """
        Build every component from configuration.

        Args:
            config: Subsystem configuration. Defaults are used when None.
            store: Embedding store. Defaults to SQLite at config.storage.db_path.
            embedding_provider: Embedding backend for the default store.
            classifier: Classification backend. Defaults to config.classifier.
            monitor: Shared performance monitor.
            breaker: Circuit breaker guarding background work.
        """
        self.config = config or MemoryIntelligenceConfig()
        self.monitor = monitor or PerformanceMonitor(self.config.monitor)

        if store is None:
            provider = embedding_provider or get_embedding_provider(self.config.embedding)
            store = SQLiteEmbeddingStore(
                provider,
                db_path=self.config.storage.db_path,
                embed_timeout=self.config.embedding.timeout,
                monitor=self.monitor,
            )
        self.store = store

        classifier = classifier or create_classifier(
            self.config.classifier, timeout=self.config.detector.call_timeout
        )
        self.detector = Detector(classifier, self.config.detector, self.monitor)
        self.deduplication = DeduplicationEngine(self.store, self.config.deduplication, self.monitor)
        self.relationships = RelationshipEngine(self.store, self.config.relationships, self.monitor)
        self.retrieval = RetrievalEngine(
            self.store,
            self.config.retrieval,
            self.monitor,
            query_cache=TTLCache.from_config(self.config.cache),
        )

        self.breaker = breaker or CircuitBreaker.from_config(self.config.circuit_breaker)
        self.processor = BackgroundProcessor(self.config.processing, self.breaker, self.monitor)
        self.processor.register_handler(TaskKind.DETECT, self._handle_detect)
        self.processor.register_handler(TaskKind.STORE, self._handle_store)
        self.processor.register_handler(TaskKind.RELATE, self._handle_relate)

        self._owner_locks: Dict[str, threading.Lock] = {}
        self._owner_locks_guard = threading.Lock()

    # ========== Lifecycle ==========

    def start(self) -> "MemoryService":
        self.processor.start()
        return self

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until background work has drained. Intended for tests and the CLI."""
        return self.processor.join(timeout)

    def close(self) -> None:
        self.processor.shutdown(wait=True)
        self.store.close()

    def __enter__(self) -> "MemoryService":
        return self.start()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    # ========== Write path ==========

    def process_message(
        self,
        owner_id: str,
        message: str,
        recent_history: Optional[Iterable[Any]] = None,
        conversation_id: Optional[str] = None,
        message_id: Optional[str] = None,
    ) -> Optional[TaskHandle]:
        """
        Queue a chat message for memory detection and return immediately.

        Explicit "remember that ..." messages jump the queue.

        Returns:
            Handle of the detect task, or None when nothing was queued
        """
        if not self.detector.config.enabled:
            return None

        text = self.detector.prepare_message(message)
        if not text:
            logger.debug(f"Ignoring empty message for owner {owner_id}")
            return None

        history = [turn.to_dict() for turn in self.detector.prepare_history(recent_history)]
        explicit = self.detector.detect_explicit_trigger(text) is not None
        payload = {
            "owner_id": owner_id,
            "message": text,
            "history": history,
            "conversation_id": conversation_id,
            "message_id": message_id,
        }
        priority = TaskPriority.HIGH if explicit else TaskPriority.NORMAL
        return self.processor.enqueue(TaskKind.DETECT, payload, priority=priority)

    def add_memory(
        self,
        owner_id: str,
        content: str,
        category: Any,
        importance: Any,
        keywords: Optional[List[str]] = None,
    ) -> Memory:
        """
        Manually insert a memory, going through the same deduplication.

        Returns:
            The stored memory; when the content duplicates an existing
            memory, the existing (possibly merged) memory

        Raises:
            ValidationError: If content, category or importance is invalid,
                or the memory cannot be stored consistently.
            EmbeddingUnavailable: If the embedding backend is down.
        """
        content = normalize_whitespace(content or "")
        detector_config = self.detector.config
        if not detector_config.min_content_length <= len(content) <= detector_config.max_content_length:
            raise ValidationError(
                f"Content must be {detector_config.min_content_length}-"
                f"{detector_config.max_content_length} characters",
                field="content",
            )
        if keywords:
            keywords = list(dict.fromkeys(k.strip().lower() for k in keywords if k and k.strip()))
        else:
            keywords = extract_keywords(content, detector_config.max_keywords)

        candidate = CandidateMemory(
            content=content,
            category=MemoryCategory.parse(category),
            importance=validate_importance(importance),
            keywords=keywords[:detector_config.max_keywords],
            explicit=True,
        )
        candidate.embedding = self.store.embed(content)

        memory = self.store_candidate(owner_id, candidate)
        if memory is None:
            raise ValidationError("Memory cannot be stored for this owner", field="content")
        return memory

    def store_candidate(self, owner_id: str, candidate: CandidateMemory) -> Optional[Memory]:
        """
        Embed, deduplicate and persist one candidate.

        Dedup and the write run under a per-owner lock so two workers
        cannot both insert the same content.

        Returns:
            The inserted or merged memory, or None if the candidate was
            discarded
        """
        if candidate.embedding is None:
            candidate.embedding = self.store.embed(candidate.content)

        with self._owner_lock(owner_id):
            decision = self.deduplication.resolve(candidate, owner_id)

            if isinstance(decision, Insert):
                memory = decision.memory
                self.store.put(memory, facts=extract_atomic_facts(memory.id, memory.content))
                if decision.contradiction_of:
                    logger.info(
                        f"Stored {memory.id} for owner {owner_id}; possible contradiction of "
                        f"{decision.contradiction_of} (similarity {decision.similarity:.2f})"
                    )
                else:
                    logger.info(f"Stored new memory {memory.id} for owner {owner_id}")

            elif isinstance(decision, Merge):
                if not decision.changed:
                    logger.info(f"Candidate duplicates {decision.existing_id}; nothing to merge")
                    return self.store.get(decision.existing_id)
                memory = self._apply_merge(decision)
                logger.info(f"Merged candidate into {memory.id} (similarity {decision.similarity:.2f})")

            else:
                reason = decision.reason if isinstance(decision, Discard) else decision.outcome
                logger.info(f"Discarded candidate for owner {owner_id}: {reason}")
                return None

        self._queue_relate(memory.id)
        return memory

    def _apply_merge(self, decision: Merge) -> Memory:
        changes: Dict[str, Any] = {
            "importance": decision.importance,
            "keywords": decision.keywords,
        }
        current = self.store.get(decision.existing_id)
        if decision.merged_content != current.content:
            changes["content"] = decision.merged_content
            changes["embedding"] = self.store.embed(decision.merged_content)

        memory = self.store.update(decision.existing_id, changes)
        if "content" in changes:
            self.store.replace_facts(memory.id, extract_atomic_facts(memory.id, memory.content))
        return memory

    def _queue_relate(self, memory_id: str) -> None:
        if self.config.relationships.enabled:
            self.processor.enqueue(TaskKind.RELATE, {"memory_id": memory_id}, priority=TaskPriority.LOW)

    def _owner_lock(self, owner_id: str) -> threading.Lock:
        with self._owner_locks_guard:
            lock = self._owner_locks.get(owner_id)
            if lock is None:
                lock = self._owner_locks[owner_id] = threading.Lock()
            return lock

    # ========== Task handlers ==========

    def _handle_detect(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        owner_id = payload["owner_id"]
        candidates = self.detector.analyze(
            owner_id,
            payload["message"],
            payload.get("history"),
            source_conversation_id=payload.get("conversation_id"),
            source_message_id=payload.get("message_id"),
        )
        handles = [
            self.processor.enqueue(
                TaskKind.STORE,
                {"owner_id": owner_id, "candidate": candidate.to_dict()},
                priority=TaskPriority.HIGH if candidate.explicit else TaskPriority.NORMAL,
            )
            for candidate in candidates
        ]
        return {"candidates": len(candidates), "store_tasks": [h.task_id for h in handles]}

    def _handle_store(self, payload: Dict[str, Any]) -> Optional[str]:
        candidate = CandidateMemory.from_dict(payload["candidate"])
        memory = self.store_candidate(payload["owner_id"], candidate)
        return memory.id if memory else None

    def _handle_relate(self, payload: Dict[str, Any]) -> List[str]:
        relationships = self.relationships.discover_relationships(payload["memory_id"])
        return [r.id for r in relationships]

    # ========== Read path ==========

    def retrieve(
        self,
        owner_id: str,
        current_turn_text: str,
        contextual_hints: Optional[List[str]] = None,
        limit: Optional[int] = None,
    ) -> List[Memory]:
        """Relevant memories for the current turn; never raises."""
        return self.retrieval.retrieve(owner_id, current_turn_text, contextual_hints, limit)

    def search(
        self,
        owner_id: str,
        query: str,
        contextual_hints: Optional[List[str]] = None,
        limit: Optional[int] = None,
    ) -> List[ScoredMemory]:
        return self.retrieval.retrieve_scored(owner_id, query, contextual_hints, limit)

    def build_memory_context(
        self,
        owner_id: str,
        current_turn_text: str,
        contextual_hints: Optional[List[str]] = None,
        limit: Optional[int] = None,
    ) -> str:
        """Prompt block with the memories relevant to the current turn."""
        return format_memory_context(self.retrieve(owner_id, current_turn_text, contextual_hints, limit))

    def get_memory(self, memory_id: str, owner_id: Optional[str] = None) -> Memory:
        """
        Fetch a memory, optionally checking its owner.

        Raises:
            NotFoundError: If missing or owned by someone else.
        """
        memory = self.store.get(memory_id)
        if owner_id is not None and memory.owner_id != owner_id:
            raise NotFoundError(memory_id)
        return memory

    def list_memories(
        self,
        owner_id: str,
        limit: Optional[int] = None,
        category: Optional[str] = None,
    ) -> List[Memory]:
        if category is not None:
            category = MemoryCategory.parse(category).value
        return self.store.list_memories(owner_id, limit=limit, category=category)

    def delete_memory(self, memory_id: str, owner_id: Optional[str] = None) -> bool:
        try:
            self.get_memory(memory_id, owner_id)
        except NotFoundError:
            return False
        return self.store.delete(memory_id)

    # ========== Relationships ==========

    def get_relationships(self, memory_id: str, owner_id: Optional[str] = None) -> List[Relationship]:
        self.get_memory(memory_id, owner_id)
        return self.relationships.get_relationships(memory_id)

    def related_memories(
        self,
        memory_id: str,
        owner_id: Optional[str] = None,
        max_depth: int = 1,
        limit: int = 5,
    ) -> List[RelatedMemory]:
        self.get_memory(memory_id, owner_id)
        return self.relationships.related_memories(memory_id, max_depth=max_depth, limit=limit)

    def link(
        self,
        from_memory_id: str,
        to_memory_id: str,
        relationship_type: RelationshipType,
        strength: float = 1.0,
        owner_id: Optional[str] = None,
    ) -> Relationship:
        self.get_memory(from_memory_id, owner_id)
        self.get_memory(to_memory_id, owner_id)
        return self.relationships.link(from_memory_id, to_memory_id, relationship_type, strength)

    # ========== Statistics ==========

    def stats(self, owner_id: Optional[str] = None) -> Dict[str, Any]:
        """Monitor, processor, circuit breaker, query cache and storage statistics."""
        return {
            "monitor": self.monitor.get_stats(),
            "processor": self.processor.stats(),
            "query_cache": self.retrieval.query_cache.get_stats(),
            "storage": self.store.get_stats(owner_id).to_dict(),
        }
