"""
Tests for three-tier retrieval.
"""

from datetime import datetime, timezone

import pytest

from memory_intelligence.config import CacheConfig, RetrievalConfig
from memory_intelligence.memory.cache import TTLCache
from memory_intelligence.memory.retrieval import (
    RetrievalEngine,
    format_memory_context,
    infer_intent,
    recency_weight,
)
from memory_intelligence.memory.types import MemoryCategory

from helpers import ManualClock, make_memory, near, vector


@pytest.fixture
def engine(store, monitor):
    return RetrievalEngine(store, RetrievalConfig(), monitor)


class TestRetrieve:
    """Test ranking and filtering."""

    def test_category_affinity_ranks_preferences_first(self, engine, store, embedding):
        """Preference memories outrank slightly closer context memories for a preference query."""
        embedding.vectors["workout preferences"] = vector(1.0)
        preferences = [
            make_memory("I prefer morning workouts", near(0.70, 1)),
            make_memory("My favorite workout is swimming", near(0.72, 2)),
            make_memory("I like short workout sessions", near(0.68, 3)),
        ]
        context = [
            make_memory("Training for a marathon this spring", near(0.80, 4), category=MemoryCategory.CONTEXT),
            make_memory("Busy with a big project at work", near(0.78, 5), category=MemoryCategory.CONTEXT),
        ]
        for memory in preferences + context:
            store.put(memory)

        results = engine.retrieve("user-1", "workout preferences", limit=5)

        assert len(results) == 5
        assert {m.id for m in results[:3]} == {m.id for m in preferences}
        assert all(m.category == MemoryCategory.PREFERENCE for m in results[:3])

    def test_hints_drive_keyword_overlap(self, engine, store, embedding):
        embedding.vectors["what should I do"] = vector(1.0)
        marathon = make_memory("Training for a marathon", near(0.5, 1), category=MemoryCategory.CONTEXT)
        tea = make_memory("I enjoy green tea", near(0.7, 2))
        store.put(marathon)
        store.put(tea)

        results = engine.retrieve("user-1", "what should I do", contextual_hints=["marathon training"])

        assert [m.id for m in results] == [marathon.id, tea.id]

    def test_recency_breaks_near_ties(self, engine, store, embedding):
        embedding.vectors["green tea"] = vector(1.0)
        old = make_memory("I drink green tea daily", near(0.8, 1), age_days=90)
        new = make_memory("I drink green tea at night", near(0.8, 2))
        store.put(old)
        store.put(new)

        results = engine.retrieve("user-1", "green tea")

        assert [m.id for m in results] == [new.id, old.id]

    def test_near_duplicates_collapsed(self, engine, store, embedding):
        embedding.vectors["green tea"] = vector(1.0)
        first = make_memory("I drink green tea daily", near(0.9, 1))
        copy = make_memory("I drink green tea every day", near(0.9, 1), age_days=1)
        other = make_memory("I am training for a marathon", near(0.5, 2), category=MemoryCategory.CONTEXT)
        for memory in (first, copy, other):
            store.put(memory)

        results = engine.retrieve("user-1", "green tea")

        assert [m.id for m in results] == [first.id, other.id]

    def test_limit(self, engine, store, embedding):
        embedding.vectors["green tea"] = vector(1.0)
        for i in range(1, 5):
            store.put(make_memory(f"tea memory number {i}", near(0.6, i)))

        assert len(engine.retrieve("user-1", "green tea", limit=2)) == 2
        assert engine.retrieve("user-1", "green tea", limit=0) == []

    def test_owner_scoped(self, engine, store, embedding):
        embedding.vectors["green tea"] = vector(1.0)
        store.put(make_memory("I drink green tea daily", vector(1.0), owner_id="user-2"))

        assert engine.retrieve("user-1", "green tea") == []

    def test_empty_query_skips_backend(self, engine, embedding):
        assert engine.retrieve("user-1", "   ") == []
        assert embedding.calls == []

    def test_hints_used_when_query_blank(self, engine, store, embedding):
        embedding.vectors["green tea"] = vector(1.0)
        memory = make_memory("I drink green tea daily", vector(1.0))
        store.put(memory)

        results = engine.retrieve("user-1", "", contextual_hints=["green tea"])

        assert [m.id for m in results] == [memory.id]

    def test_backend_failure_degrades(self, engine, embedding, monitor):
        """Test that retrieval returns nothing instead of raising."""
        embedding.error = RuntimeError("backend down")

        assert engine.retrieve("user-1", "green tea") == []
        assert monitor.get_stats()["retrieval"]["errors"] == 1

    def test_scored_signals(self, engine, store, embedding):
        embedding.vectors["green tea"] = vector(1.0)
        store.put(make_memory("I drink green tea daily", near(0.8, 1), importance=0.7))

        (scored,) = engine.retrieve_scored("user-1", "green tea")

        assert scored.similarity == pytest.approx(0.8)
        assert scored.signals["keyword"] == pytest.approx(1.0)
        assert scored.signals["importance"] == 0.7
        assert scored.signals["recency"] == pytest.approx(1.0, abs=1e-3)
        assert 0 < scored.score <= 1


class TestHelpers:
    """Test intent, recency and formatting helpers."""

    @pytest.mark.parametrize("query, expected", [
        ("How should you respond to me?", MemoryCategory.INSTRUCTION),
        ("what drinks do I like", MemoryCategory.PREFERENCE),
        ("what's my name", MemoryCategory.PERSONAL_INFO),
        ("how is my training going", MemoryCategory.CONTEXT),
        ("hello there", None),
    ])
    def test_infer_intent(self, query, expected):
        assert infer_intent(query) == expected

    def test_recency_weight(self):
        assert recency_weight(0, 30) == 1.0
        assert recency_weight(30, 30) == pytest.approx(0.5)
        assert recency_weight(-5, 30) == 1.0
        assert recency_weight(10, 0) == 0.0

    def test_format_memory_context(self):
        memories = [
            make_memory("I prefer morning workouts", vector(1.0)),
            make_memory("Always answer briefly", vector(1.0), category=MemoryCategory.INSTRUCTION),
        ]

        text = format_memory_context(memories)
        lines = text.splitlines()

        assert lines[0] == "REMEMBERED INFORMATION ABOUT THIS USER:"
        assert lines.index("Instructions:") < lines.index("Preferences:")
        assert "- I prefer morning workouts" in lines
        assert "- Always answer briefly" in lines

    def test_format_empty(self):
        assert format_memory_context([]) == ""


class TestQueryCache:
    """Test that warm queries skip the embedding backend."""

    def test_repeated_query_embedded_once(self, engine, store, embedding):
        embedding.vectors["green tea"] = vector(1.0)
        store.put(make_memory("I drink green tea daily", vector(1.0)))

        first = engine.retrieve("user-1", "green tea")
        second = engine.retrieve("user-1", "green tea")

        assert [m.id for m in first] == [m.id for m in second]
        assert embedding.calls.count("green tea") == 1
        assert engine.query_cache.get_stats()["hits"] == 1

    def test_expired_query_embedded_again(self, store, embedding):
        clock = ManualClock()
        engine = RetrievalEngine(store, RetrievalConfig(), query_cache=TTLCache(ttl=60, clock=clock))

        engine.retrieve("user-1", "green tea")
        clock.advance(61)
        engine.retrieve("user-1", "green tea")

        assert embedding.calls.count("green tea") == 2

    def test_failed_embedding_not_cached(self, engine, embedding):
        embedding.error = RuntimeError("backend down")
        assert engine.retrieve("user-1", "green tea") == []

        embedding.error = None
        engine.retrieve("user-1", "green tea")

        assert embedding.calls.count("green tea") == 2

    def test_disabled_cache(self, store, embedding):
        engine = RetrievalEngine(store, RetrievalConfig(), query_cache=TTLCache.from_config(CacheConfig(enabled=False)))

        engine.retrieve("user-1", "green tea")
        engine.retrieve("user-1", "green tea")

        assert embedding.calls.count("green tea") == 2


class TestAccessTracking:
    """Test that retrieval records which memories it returned."""

    def test_returned_memories_counted(self, store, embedding, monitor):
        now = datetime(2026, 5, 1, tzinfo=timezone.utc)
        engine = RetrievalEngine(store, RetrievalConfig(), monitor, clock=lambda: now)
        embedding.vectors["green tea"] = vector(1.0)
        tea = make_memory("I drink green tea daily", near(0.9, 1))
        unrelated = make_memory("I own a red bicycle", near(0.0, 2))
        store.put(tea)
        store.put(unrelated)

        (result,) = engine.retrieve("user-1", "green tea")
        engine.retrieve("user-1", "green tea")

        assert result.access_count == 1
        assert result.last_accessed == now
        stored = store.get(tea.id)
        assert stored.access_count == 2
        assert stored.last_accessed == now
        assert stored.updated_at == tea.updated_at
        assert store.get(unrelated.id).access_count == 0

    def test_tracking_disabled(self, store, embedding):
        engine = RetrievalEngine(store, RetrievalConfig(track_access=False))
        embedding.vectors["green tea"] = vector(1.0)
        memory = make_memory("I drink green tea daily", vector(1.0))
        store.put(memory)

        (result,) = engine.retrieve("user-1", "green tea")

        assert result.access_count == 0
        assert store.get(memory.id).last_accessed is None
