"""
Relationship discovery between memories.

Edges are stored as an id-keyed edge list in the EmbeddingStore. The
engine discovers edges for a newly written memory and answers graph
queries over what is stored.
"""

import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Set

from ..config import RelationshipConfig
from ..errors import NotFoundError
from .embeddings import cosine_similarity
from .facts import is_redundant, split_statements
from .storage import EmbeddingStore
from .types import Memory, Relationship, RelationshipType

if TYPE_CHECKING:
    from ..observability.monitor import PerformanceMonitor

logger = logging.getLogger(__name__)


@dataclass
class RelatedMemory:
    """A memory reached by traversing stored edges."""
    memory: Memory
    relationship: Relationship
    depth: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "memory": self.memory.to_dict(),
            "relationship": self.relationship.to_dict(),
            "depth": self.depth,
        }


def _clamp_strength(value: float) -> float:
    return min(1.0, max(0.0, float(value)))


def covers(source: Memory, target: Memory) -> bool:
    """True when every statement of target is already stated by source."""
    statements = split_statements(source.content)
    target_statements = split_statements(target.content)
    if not statements or not target_statements:
        return False
    return all(is_redundant(statement, statements) for statement in target_statements)


class RelationshipEngine:
    """
    Discovers and queries typed edges between an owner's memories.

    Edge types:
    - contradicts: the memory was flagged by deduplication as a possible
      contradiction of another one
    - elaborates: a longer memory of the same category that states
      everything the other one does, and more
    - relates_to: any other memory above the relation threshold
    - supersedes: only created explicitly through link()
    """

    def __init__(
        self,
        store: EmbeddingStore,
        config: Optional[RelationshipConfig] = None,
        monitor: Optional["PerformanceMonitor"] = None,
    ):
        self.store = store
        self.config = config or RelationshipConfig()
        self.monitor = monitor

    def discover_relationships(self, memory_id: str) -> List[Relationship]:
        """
        Find and persist edges between a memory and its owner's other memories.

        Args:
            memory_id: The memory to relate

        Returns:
            The stored edges (empty when the memory no longer exists)
        """
        start = time.perf_counter()
        try:
            relationships = self._discover(memory_id)
        except Exception:
            self._record(start, False)
            raise
        self._record(start, True)

        if relationships:
            logger.info(f"Discovered {len(relationships)} relationship(s) for {memory_id}")
        return relationships

    def _discover(self, memory_id: str) -> List[Relationship]:
        try:
            memory = self.store.get(memory_id)
        except NotFoundError:
            logger.debug(f"Skipping relationship discovery for missing memory {memory_id}")
            return []
        if not memory.embedding:
            return []

        proposed: List[Relationship] = []
        handled: Set[str] = {memory.id}

        for other_id in memory.contradiction_candidates:
            if other_id in handled:
                continue
            handled.add(other_id)
            try:
                other = self.store.get(other_id)
            except NotFoundError:
                continue
            strength = _clamp_strength(cosine_similarity(memory.embedding, other.embedding or []))
            proposed.append(Relationship(
                from_memory_id=memory.id,
                to_memory_id=other.id,
                type=RelationshipType.CONTRADICTS,
                strength=strength,
            ))

        matches = self.store.similarity_search(
            memory.owner_id,
            memory.embedding,
            k=self.config.max_candidates + 1,
            min_similarity=self.config.relation_threshold,
        )
        for other, similarity in matches:
            if other.id in handled:
                continue
            handled.add(other.id)
            proposed.append(self._classify_edge(memory, other, similarity))

        stored = []
        for relationship in proposed:
            try:
                stored.append(self.store.put_relationship(relationship))
            except NotFoundError as e:
                # Endpoint deleted while discovery was running
                logger.debug(f"Dropping relationship {relationship.type.value}: {e}")
        return stored

    def _classify_edge(self, memory: Memory, other: Memory, similarity: float) -> Relationship:
        strength = _clamp_strength(similarity)
        if memory.category == other.category:
            if len(memory.content) > len(other.content) and covers(memory, other):
                return Relationship(memory.id, other.id, RelationshipType.ELABORATES, strength)
            if len(other.content) > len(memory.content) and covers(other, memory):
                return Relationship(other.id, memory.id, RelationshipType.ELABORATES, strength)
        return Relationship(memory.id, other.id, RelationshipType.RELATES_TO, strength)

    def get_relationships(self, memory_id: str, direction: str = "both") -> List[Relationship]:
        """
        Stored edges touching a memory.

        Raises:
            NotFoundError: If the memory does not exist.
        """
        if not self.store.exists(memory_id):
            raise NotFoundError(memory_id)
        return self.store.get_relationships(memory_id, direction=direction)

    def related_memories(self, memory_id: str, max_depth: int = 1, limit: int = 5) -> List[RelatedMemory]:
        """
        Breadth-first traversal over stored edges.

        Args:
            memory_id: Starting memory
            max_depth: Number of hops to follow
            limit: Maximum number of memories returned

        Returns:
            Related memories, nearest first and strongest edge first
            within a depth

        Raises:
            NotFoundError: If the starting memory does not exist.
        """
        if not self.store.exists(memory_id):
            raise NotFoundError(memory_id)

        results: List[RelatedMemory] = []
        visited = {memory_id}
        frontier = deque([(memory_id, 0)])

        while frontier and len(results) < limit:
            current_id, depth = frontier.popleft()
            if depth >= max_depth:
                continue
            edges = sorted(
                self.store.get_relationships(current_id),
                key=lambda edge: edge.strength,
                reverse=True,
            )
            for edge in edges:
                neighbor_id = edge.to_memory_id if edge.from_memory_id == current_id else edge.from_memory_id
                if neighbor_id in visited:
                    continue
                visited.add(neighbor_id)
                try:
                    neighbor = self.store.get(neighbor_id)
                except NotFoundError:
                    continue
                results.append(RelatedMemory(memory=neighbor, relationship=edge, depth=depth + 1))
                frontier.append((neighbor_id, depth + 1))
                if len(results) >= limit:
                    break

        return results

    def link(
        self,
        from_memory_id: str,
        to_memory_id: str,
        relationship_type: RelationshipType,
        strength: float = 1.0,
    ) -> Relationship:
        """
        Store an explicit edge, e.g. a newer memory superseding an older one.

        Raises:
            ValidationError: For self loops, bad strength or cross-owner links.
            NotFoundError: If either memory does not exist.
        """
        relationship = Relationship(
            from_memory_id=from_memory_id,
            to_memory_id=to_memory_id,
            type=RelationshipType(relationship_type),
            strength=strength,
        )
        stored = self.store.put_relationship(relationship)
        logger.info(f"Linked {from_memory_id} -[{stored.type.value}]-> {to_memory_id}")
        return stored

    def _record(self, start: float, success: bool) -> None:
        if self.monitor is not None:
            self.monitor.record_sample("relationships", (time.perf_counter() - start) * 1000, success)
