"""
Test doubles shared across the test suite.
"""

import math
import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from memory_intelligence.memory.classifiers import Classifier
from memory_intelligence.memory.embeddings import EmbeddingProvider, SimpleEmbedding
from memory_intelligence.memory.types import Memory, MemoryCategory

DIM = 16


def vector(*components: float, dim: int = DIM) -> List[float]:
    """Vector with the given leading components, zero padded."""
    return list(components) + [0.0] * (dim - len(components))


def near(similarity: float, axis: int, base_axis: int = 0, dim: int = DIM) -> List[float]:
    """
    Unit vector with the given cosine to the base axis.

    Vectors built on different `axis` values have cosine
    similarity_a * similarity_b to each other.
    """
    values = [0.0] * dim
    values[base_axis] = similarity
    values[axis] = math.sqrt(max(0.0, 1.0 - similarity ** 2))
    return values


class KeyedEmbedding(EmbeddingProvider):
    """Returns preset vectors for known texts and hashes everything else."""

    name = "keyed"

    def __init__(self, vectors: Optional[Dict[str, List[float]]] = None, dim: int = DIM):
        self.vectors = dict(vectors or {})
        self.fallback = SimpleEmbedding(dimension=dim)
        self.calls: List[str] = []
        self.error: Optional[Exception] = None

    @property
    def dimension(self) -> int:
        return self.fallback.dimension

    def embed(self, text: str) -> List[float]:
        self.calls.append(text)
        if self.error is not None:
            raise self.error
        if text in self.vectors:
            return list(self.vectors[text])
        return self.fallback.embed(text)


class FakeClassifier(Classifier):
    """Classifier returning a canned response, optionally slow or failing."""

    name = "fake"

    def __init__(self, response: Any = None, error: Optional[Exception] = None,
                 delay: float = 0.0, slow_calls: Optional[int] = None):
        self.response = {"memories": []} if response is None else response
        self.error = error
        self.delay = delay
        self.slow_calls = slow_calls
        self.calls: List[tuple] = []
        self._lock = threading.Lock()

    @property
    def call_count(self) -> int:
        with self._lock:
            return len(self.calls)

    def classify(self, text, schema_hint, history=None):
        with self._lock:
            self.calls.append((text, schema_hint, history))
            call_number = len(self.calls)
        if self.delay and (self.slow_calls is None or call_number <= self.slow_calls):
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if callable(self.response):
            return self.response(text)
        return self.response


class ManualClock:
    """Monotonic-style clock advanced by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_memory(
    content: str,
    embedding: List[float],
    category: MemoryCategory = MemoryCategory.PREFERENCE,
    owner_id: str = "user-1",
    importance: float = 0.5,
    age_days: float = 0.0,
    **kwargs: Any,
) -> Memory:
    """Memory with an explicit embedding, optionally backdated."""
    timestamp = datetime.now(timezone.utc) - timedelta(days=age_days)
    return Memory(
        content=content,
        category=category,
        owner_id=owner_id,
        importance=importance,
        embedding=embedding,
        created_at=timestamp,
        updated_at=timestamp,
        **kwargs,
    )
