"""
Deduplication and conflict resolution for new candidate memories.
"""

import logging
import time
from typing import TYPE_CHECKING, List, Optional

from ..config import DeduplicationConfig
from .embeddings import is_zero_vector
from .facts import merge_content
from .storage import EmbeddingStore
from .types import CandidateMemory, DedupDecision, Discard, Insert, Merge

if TYPE_CHECKING:
    from ..observability.monitor import PerformanceMonitor

logger = logging.getLogger(__name__)


MAX_MERGED_KEYWORDS = 20


def merge_keywords(existing: List[str], new: List[str], limit: int = MAX_MERGED_KEYWORDS) -> List[str]:
    """Ordered union of two keyword lists, existing first."""
    merged: List[str] = []
    for keyword in list(existing) + list(new):
        if keyword not in merged:
            merged.append(keyword)
    return merged[:limit]


class DeduplicationEngine:
    """
    Decides whether a candidate is new, folds into an existing memory, or
    cannot be stored.

    The candidate must already carry its embedding; this engine only
    queries the store and never calls an embedding backend.

    Decision rules, with the best match chosen by similarity and then by
    most recent update:
    - best >= merge_threshold and same category: Merge
    - best >= contradiction_threshold: Insert, flagged as a possible
      contradiction of the best match
    - otherwise: Insert
    - unusable embedding: Discard
    """

    def __init__(
        self,
        store: EmbeddingStore,
        config: Optional[DeduplicationConfig] = None,
        monitor: Optional["PerformanceMonitor"] = None,
    ):
        self.store = store
        self.config = config or DeduplicationConfig()
        self.monitor = monitor

        if self.config.contradiction_threshold > self.config.merge_threshold:
            raise ValueError("contradiction_threshold must not exceed merge_threshold")

    def resolve(self, candidate: CandidateMemory, owner_id: str) -> DedupDecision:
        """Decide what to do with a candidate for the given owner."""
        start = time.perf_counter()
        try:
            decision = self._resolve(candidate, owner_id)
        except Exception:
            self._record(start, False)
            raise

        self._record(start, True)
        if self.monitor is not None:
            self.monitor.metrics.increment_counter(
                "dedup_decisions", labels={"outcome": decision.outcome}
            )
        logger.debug(f"Dedup decision for owner {owner_id}: {decision.outcome}")
        return decision

    def _resolve(self, candidate: CandidateMemory, owner_id: str) -> DedupDecision:
        embedding = candidate.embedding
        if is_zero_vector(embedding):
            return Discard(reason="empty_embedding")

        expected_dim = self.store.owner_dimension(owner_id)
        if expected_dim is not None and expected_dim != len(embedding):
            logger.warning(
                f"Discarding candidate for owner {owner_id}: embedding length "
                f"{len(embedding)} != {expected_dim}"
            )
            return Discard(reason="dimension_mismatch")

        matches = self.store.similarity_search(
            owner_id,
            embedding,
            k=self.config.top_k,
            min_similarity=self.config.contradiction_threshold,
        )
        if not matches:
            return Insert(memory=candidate.to_memory(owner_id))

        best, similarity = max(matches, key=lambda match: (match[1], match[0].updated_at))

        if similarity >= self.config.merge_threshold and best.category == candidate.category:
            merged = merge_content(best.content, candidate.content)
            keywords = merge_keywords(best.keywords, candidate.keywords)
            importance = max(best.importance, candidate.importance)
            return Merge(
                existing_id=best.id,
                merged_content=merged,
                importance=importance,
                keywords=keywords,
                similarity=similarity,
                changed=(
                    merged != best.content
                    or importance != best.importance
                    or keywords != best.keywords
                ),
            )

        if similarity >= self.config.contradiction_threshold:
            memory = candidate.to_memory(
                owner_id,
                metadata={"contradiction_candidates": [best.id]},
            )
            return Insert(memory=memory, contradiction_of=best.id, similarity=similarity)

        return Insert(memory=candidate.to_memory(owner_id), similarity=similarity)

    def _record(self, start: float, success: bool) -> None:
        if self.monitor is not None:
            self.monitor.record_sample("deduplication", (time.perf_counter() - start) * 1000, success)
