"""
Three-tier memory retrieval.

1. Semantic recall: embed the query and pull a candidate pool from the
   owner's memories by cosine similarity.
2. Contextual re-rank: blend similarity with keyword overlap, category
   affinity to the query's intent, recency and importance.
3. Deduplication: drop candidates nearly identical to one already kept.

Query embeddings are served from a TTL cache when warm, and every
returned memory has its access count and last access time updated.
"""

import logging
import math
import re
import sqlite3
import time
from typing import TYPE_CHECKING, Callable, Dict, Iterable, List, Optional

from ..config import RetrievalConfig
from ..errors import MemoryIntelligenceError
from ..llm.prompts import CATEGORY_HEADINGS, MEMORY_CONTEXT_FOOTER, MEMORY_CONTEXT_HEADER
from .cache import TTLCache, make_key
from .embeddings import cosine_similarity
from .storage import EmbeddingStore
from .text import content_terms, normalize_whitespace
from .types import Memory, MemoryCategory, ScoredMemory, utc_now

if TYPE_CHECKING:
    from datetime import datetime

    from ..observability.monitor import PerformanceMonitor

logger = logging.getLogger(__name__)


INTENT_PATTERNS = [
    (MemoryCategory.INSTRUCTION, re.compile(
        r"\b(how should you|respond|reply|answer|tone|format|call me|address me)\b", re.IGNORECASE,
    )),
    (MemoryCategory.PREFERENCE, re.compile(
        r"\b(prefer\w*|like|likes|favou?rite\w*|enjoy\w*|dislike\w*|taste)\b", re.IGNORECASE,
    )),
    (MemoryCategory.PERSONAL_INFO, re.compile(
        r"\b(who am i|about me|my name|allerg\w*|health|job|family|age|background)\b", re.IGNORECASE,
    )),
    (MemoryCategory.CONTEXT, re.compile(
        r"\b(goal\w*|plan\w*|working on|progress|training|project\w*|current\w*)\b", re.IGNORECASE,
    )),
]

LN2 = math.log(2)
SECONDS_PER_DAY = 86400.0


def infer_intent(query: str) -> Optional[MemoryCategory]:
    """Category a query is most likely asking about, if any."""
    for category, pattern in INTENT_PATTERNS:
        if pattern.search(query or ""):
            return category
    return None


def recency_weight(age_days: float, half_life_days: float) -> float:
    """Exponential decay: 1.0 for brand new, 0.5 after one half-life."""
    if half_life_days <= 0:
        return 0.0
    return math.exp(-LN2 * max(0.0, age_days) / half_life_days)


def format_memory_context(memories: Iterable[Memory]) -> str:
    """
    Render memories as a prompt block for the chat model.

    Memories are grouped by category (instructions first); an empty
    input renders as an empty string.
    """
    grouped: Dict[str, List[str]] = {}
    for memory in memories:
        grouped.setdefault(memory.category.value, []).append(memory.content)
    if not grouped:
        return ""

    lines = [MEMORY_CONTEXT_HEADER]
    for category, heading in CATEGORY_HEADINGS.items():
        contents = grouped.get(category)
        if not contents:
            continue
        lines.append("")
        lines.append(f"{heading}:")
        lines.extend(f"- {content}" for content in contents)
    lines.append("")
    lines.append(MEMORY_CONTEXT_FOOTER)
    return "\n".join(lines)


class RetrievalEngine:
    """
    Returns the memories most relevant to the current conversation turn.

    retrieve() never raises to the chat caller: backend or storage
    failures are logged, recorded to the monitor and yield an empty list.
    """

    COMPONENT = "retrieval"

    def __init__(
        self,
        store: EmbeddingStore,
        config: Optional[RetrievalConfig] = None,
        monitor: Optional["PerformanceMonitor"] = None,
        clock: Callable[[], "datetime"] = utc_now,
        query_cache: Optional[TTLCache] = None,
    ):
        self.store = store
        self.config = config or RetrievalConfig()
        self.monitor = monitor
        self._clock = clock
        self.query_cache = query_cache if query_cache is not None else TTLCache.from_config()

    def retrieve(
        self,
        owner_id: str,
        query_text: str,
        contextual_hints: Optional[List[str]] = None,
        limit: Optional[int] = None,
    ) -> List[Memory]:
        """
        Retrieve relevant memories.

        Args:
            owner_id: Owner whose memories are searched
            query_text: The current conversation turn
            contextual_hints: Topic words from the conversation
            limit: Maximum number of memories (config default when None)

        Returns:
            At most `limit` memories, best first
        """
        return [scored.memory for scored in self.retrieve_scored(owner_id, query_text, contextual_hints, limit)]

    def retrieve_scored(
        self,
        owner_id: str,
        query_text: str,
        contextual_hints: Optional[List[str]] = None,
        limit: Optional[int] = None,
    ) -> List[ScoredMemory]:
        """Same as retrieve(), keeping scores and per-signal breakdowns."""
        limit = self.config.default_limit if limit is None else int(limit)
        hints = [normalize_whitespace(h) for h in (contextual_hints or []) if h and h.strip()]
        query = normalize_whitespace(query_text) or " ".join(hints)
        if limit <= 0 or not query:
            return []

        start = time.perf_counter()
        try:
            results = self._retrieve(owner_id, query, hints, limit)
        except (MemoryIntelligenceError, sqlite3.Error) as e:
            self._record(start, False)
            logger.warning(f"Memory retrieval failed for owner {owner_id}: {e}")
            return []

        self._record(start, True)
        logger.debug(f"Retrieved {len(results)} memories for owner {owner_id}")
        return results

    def _retrieve(self, owner_id: str, query: str, hints: List[str], limit: int) -> List[ScoredMemory]:
        # Tier 1: semantic recall
        vector = self._embed_query(query)
        pool = self.store.similarity_search(
            owner_id,
            vector,
            k=max(limit, self.config.pool_multiplier * limit),
            min_similarity=self.config.min_similarity,
        )
        if not pool:
            return []

        # Tier 2: contextual re-rank
        hint_terms = content_terms(" ".join(hints)) if hints else content_terms(query)
        intent = infer_intent(" ".join([query] + hints))
        now = self._clock()
        scored = [self._score(memory, similarity, hint_terms, intent, now) for memory, similarity in pool]
        scored.sort(
            key=lambda s: (s.score, s.memory.importance, s.memory.created_at.timestamp()),
            reverse=True,
        )

        # Tier 3: drop near-duplicates of already kept memories
        kept: List[ScoredMemory] = []
        for candidate in scored:
            if any(self._is_duplicate(candidate.memory, other.memory) for other in kept):
                continue
            kept.append(candidate)
            if len(kept) >= limit:
                break

        if self.config.track_access:
            self._record_access(owner_id, kept, now)
        return kept

    def _embed_query(self, query: str) -> List[float]:
        key = make_key("query", query)
        cached = self.query_cache.get(key)
        if cached is not None:
            return list(cached)
        vector = self.store.embed(query)
        self.query_cache.set(key, tuple(vector))
        return vector

    def _record_access(self, owner_id: str, results: List[ScoredMemory], now: "datetime") -> None:
        if not results:
            return
        try:
            self.store.record_access([s.memory.id for s in results], accessed_at=now)
        except sqlite3.Error as e:
            logger.warning(f"Could not record memory access for owner {owner_id}: {e}")
            return
        for scored in results:
            scored.memory.access_count += 1
            scored.memory.last_accessed = now

    def _score(
        self,
        memory: Memory,
        similarity: float,
        hint_terms: set,
        intent: Optional[MemoryCategory],
        now: "datetime",
    ) -> ScoredMemory:
        config = self.config

        memory_terms = content_terms(memory.content) | content_terms(" ".join(memory.keywords))
        keyword = len(hint_terms & memory_terms) / len(hint_terms) if hint_terms else 0.0
        category = 1.0 if intent is not None and memory.category == intent else 0.0
        age_days = (now - memory.updated_at).total_seconds() / SECONDS_PER_DAY
        recency = recency_weight(age_days, config.half_life_days)

        signals = {
            "similarity": max(0.0, similarity),
            "keyword": keyword,
            "category": category,
            "recency": recency,
            "importance": memory.importance,
        }
        score = (
            config.similarity_weight * signals["similarity"]
            + config.keyword_weight * keyword
            + config.category_weight * category
            + config.recency_weight * recency
            + config.importance_weight * memory.importance
        )
        return ScoredMemory(memory=memory, score=score, similarity=similarity, signals=signals)

    def _is_duplicate(self, memory: Memory, other: Memory) -> bool:
        if not memory.embedding or not other.embedding:
            return False
        return cosine_similarity(memory.embedding, other.embedding) >= self.config.duplicate_threshold

    def _record(self, start: float, success: bool) -> None:
        if self.monitor is not None:
            self.monitor.record_sample(self.COMPONENT, (time.perf_counter() - start) * 1000, success)
