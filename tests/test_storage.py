"""
Tests for the SQLite embedding store.
"""

import json
import sqlite3
from datetime import datetime, timezone

import pytest

from memory_intelligence.errors import EmbeddingUnavailable, NotFoundError, ValidationError
from memory_intelligence.memory.facts import extract_atomic_facts
from memory_intelligence.memory.storage import SQLiteEmbeddingStore
from memory_intelligence.memory.types import AtomicFact, MemoryCategory, Relationship, RelationshipType

from helpers import DIM, KeyedEmbedding, make_memory, near, vector

V1_SCHEMA = """
CREATE TABLE schema_version (version INTEGER PRIMARY KEY);
INSERT INTO schema_version (version) VALUES (1);
CREATE TABLE memories (
    id TEXT PRIMARY KEY,
    owner_id TEXT NOT NULL,
    content TEXT NOT NULL,
    category TEXT NOT NULL,
    importance REAL NOT NULL,
    embedding TEXT NOT NULL,
    embedding_dim INTEGER NOT NULL,
    keywords TEXT,
    source_conversation_id TEXT,
    source_message_id TEXT,
    metadata TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""


class TestPutAndGet:
    """Test storing and fetching memories."""

    def test_put_and_get(self, store):
        memory = make_memory("I prefer morning workouts", vector(1.0), keywords=["morning"])

        memory_id = store.put(memory)
        fetched = store.get(memory_id)

        assert fetched.id == memory.id
        assert fetched.content == "I prefer morning workouts"
        assert fetched.category == MemoryCategory.PREFERENCE
        assert fetched.keywords == ["morning"]
        assert fetched.embedding == vector(1.0)
        assert fetched.created_at == memory.created_at

    def test_get_missing(self, store):
        with pytest.raises(NotFoundError):
            store.get("mem_missing")

    def test_exists(self, store):
        memory = make_memory("I prefer morning workouts", vector(1.0))
        store.put(memory)

        assert store.exists(memory.id)
        assert not store.exists("mem_missing")

    def test_put_requires_embedding(self, store):
        memory = make_memory("I prefer morning workouts", None)
        with pytest.raises(ValidationError):
            store.put(memory)

    def test_duplicate_id_rejected(self, store):
        memory = make_memory("I prefer morning workouts", vector(1.0))
        store.put(memory)
        with pytest.raises(ValidationError):
            store.put(memory)

    def test_owner_dimension_enforced(self, store):
        """Test that one owner's memories share an embedding length."""
        store.put(make_memory("I prefer morning workouts", vector(1.0)))

        assert store.owner_dimension("user-1") == DIM
        assert store.owner_dimension("someone-else") is None
        with pytest.raises(ValidationError):
            store.put(make_memory("I like green tea a lot", [1.0, 0.0]))

    def test_other_owner_may_use_other_dimension(self, store):
        store.put(make_memory("I prefer morning workouts", vector(1.0)))
        store.put(make_memory("I like green tea a lot", [1.0, 0.0], owner_id="user-2"))
        assert store.owner_dimension("user-2") == 2

    def test_persists_across_instances(self, db_path):
        """Test that data survives reopening the database."""
        first = SQLiteEmbeddingStore(KeyedEmbedding(), db_path=db_path)
        memory = make_memory("I prefer morning workouts", vector(1.0))
        first.put(memory)
        first.close()

        second = SQLiteEmbeddingStore(KeyedEmbedding(), db_path=db_path)
        assert second.get(memory.id).content == "I prefer morning workouts"
        second.close()

    def test_upgrades_v1_database(self, db_path):
        """Test that a store created before access tracking gains the new columns."""
        conn = sqlite3.connect(db_path)
        conn.executescript(V1_SCHEMA)
        conn.execute(
            "INSERT INTO memories VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            ("mem_old", "user-1", "I prefer morning workouts", "preference", 0.5, json.dumps(vector(1.0)),
             DIM, "[]", None, None, None, "2026-01-01T00:00:00+00:00", "2026-01-01T00:00:00+00:00"),
        )
        conn.commit()
        conn.close()

        store = SQLiteEmbeddingStore(KeyedEmbedding(), db_path=db_path)
        try:
            old = store.get("mem_old")
            assert (old.access_count, old.last_accessed) == (0, None)
            assert store.record_access(["mem_old"]) == 1
            assert store.get("mem_old").access_count == 1
        finally:
            store.close()

        reopened = SQLiteEmbeddingStore(KeyedEmbedding(), db_path=db_path)
        assert reopened.get("mem_old").access_count == 1
        reopened.close()


class TestSimilaritySearch:
    """Test owner-scoped similarity search."""

    def test_ranked_by_similarity(self, store):
        close = make_memory("close match memory", near(0.9, 1))
        far = make_memory("far match memory", near(0.3, 2))
        store.put(far)
        store.put(close)

        results = store.similarity_search("user-1", vector(1.0), k=5)

        assert [m.id for m, _ in results] == [close.id, far.id]
        assert results[0][1] == pytest.approx(0.9)
        assert results[1][1] == pytest.approx(0.3)

    def test_owner_scoped(self, store):
        store.put(make_memory("mine mine mine", vector(1.0)))
        store.put(make_memory("theirs theirs", vector(1.0), owner_id="user-2"))

        results = store.similarity_search("user-1", vector(1.0), k=5)

        assert len(results) == 1
        assert results[0][0].owner_id == "user-1"

    def test_min_similarity_and_k(self, store):
        for i, similarity in enumerate([0.9, 0.8, 0.7, 0.2], start=1):
            store.put(make_memory(f"memory number {i}", near(similarity, i)))

        assert len(store.similarity_search("user-1", vector(1.0), k=2)) == 2
        filtered = store.similarity_search("user-1", vector(1.0), k=10, min_similarity=0.5)
        assert len(filtered) == 3

    def test_negative_scores_kept(self, store):
        """Test that the full cosine range is reported."""
        store.put(make_memory("opposite memory", vector(-1.0)))
        results = store.similarity_search("user-1", vector(1.0), k=1)
        assert results[0][1] == pytest.approx(-1.0)

    def test_ties_prefer_recent(self, store):
        old = make_memory("older memory text", vector(1.0), age_days=10)
        new = make_memory("newer memory text", vector(1.0), age_days=1)
        store.put(old)
        store.put(new)

        results = store.similarity_search("user-1", vector(1.0), k=2)

        assert results[0][0].id == new.id

    def test_degenerate_queries(self, store):
        store.put(make_memory("I prefer morning workouts", vector(1.0)))
        assert store.similarity_search("user-1", vector(1.0), k=0) == []
        assert store.similarity_search("user-1", vector(0.0), k=5) == []
        assert store.similarity_search("user-1", [1.0, 0.0], k=5) == []


class TestUpdateAndDelete:
    """Test mutations."""

    def test_update_with_dict(self, store):
        memory = make_memory("I prefer morning workouts", vector(1.0), age_days=1)
        store.put(memory)

        updated = store.update(memory.id, {"importance": 0.9, "keywords": ["gym"]})

        assert updated.importance == 0.9
        assert updated.keywords == ["gym"]
        assert updated.updated_at > memory.updated_at
        assert store.get(memory.id).importance == 0.9

    def test_update_with_callable(self, store):
        memory = make_memory("I prefer morning workouts", vector(1.0))
        store.put(memory)

        def mutate(current):
            current.content = current.content + " on weekdays"
            return current

        assert store.update(memory.id, mutate).content == "I prefer morning workouts on weekdays"

    def test_update_immutable_fields(self, store):
        memory = make_memory("I prefer morning workouts", vector(1.0))
        store.put(memory)
        with pytest.raises(ValidationError):
            store.update(memory.id, {"owner_id": "someone-else"})

    def test_update_embedding_length_checked(self, store):
        memory = make_memory("I prefer morning workouts", vector(1.0))
        store.put(memory)
        with pytest.raises(ValidationError):
            store.update(memory.id, {"embedding": [1.0]})

    def test_update_missing(self, store):
        with pytest.raises(NotFoundError):
            store.update("mem_missing", {"importance": 0.1})

    def test_delete_cascades(self, store):
        """Test that facts and edges go with the memory."""
        a = make_memory("I prefer morning workouts", vector(1.0))
        b = make_memory("I like green tea a lot", near(0.8, 1))
        store.put(a, facts=extract_atomic_facts(a.id, a.content))
        store.put(b)
        store.put_relationship(Relationship(a.id, b.id, RelationshipType.RELATES_TO, 0.8))

        assert store.delete(a.id)

        assert not store.exists(a.id)
        assert store.get_facts(a.id) == []
        assert store.get_relationships(b.id) == []
        assert not store.delete(a.id)

    def test_list_memories(self, store):
        older = make_memory("older memory text", vector(1.0), age_days=2)
        newer = make_memory("newer memory text", vector(1.0), category=MemoryCategory.CONTEXT, age_days=1)
        store.put(older)
        store.put(newer)

        assert [m.id for m in store.list_memories("user-1")] == [newer.id, older.id]
        assert [m.id for m in store.list_memories("user-1", category="context")] == [newer.id]
        assert len(store.list_memories("user-1", limit=1)) == 1
        assert store.count("user-1") == 2

    def test_clear_all(self, store):
        a = make_memory("I prefer morning workouts", vector(1.0))
        b = make_memory("I like green tea a lot", vector(1.0), owner_id="user-2")
        store.put(a, facts=extract_atomic_facts(a.id, a.content))
        store.put(b)

        assert store.clear_all(owner_id="user-1") == 1
        assert store.get_facts(a.id) == []
        assert store.exists(b.id)

        assert store.clear_all() == 1
        assert store.count() == 0


class TestFactsAndRelationships:
    """Test atomic facts and relationship edges."""

    def test_facts(self, store):
        memory = make_memory("I like tea. I own a cat.", vector(1.0))
        store.put(memory, facts=extract_atomic_facts(memory.id, memory.content))

        assert [f.statement for f in store.get_facts(memory.id)] == ["I like tea.", "I own a cat."]

        store.replace_facts(memory.id, [AtomicFact(memory_id=memory.id, statement="I like tea.")])
        assert len(store.get_facts(memory.id)) == 1

    def test_replace_facts_wrong_owner(self, store):
        memory = make_memory("I like tea. I own a cat.", vector(1.0))
        store.put(memory)
        with pytest.raises(ValidationError):
            store.replace_facts(memory.id, [AtomicFact(memory_id="mem_other", statement="x")])

    def test_relationship_upsert(self, store):
        """Test that a repeated (from, to, type) edge refreshes its strength."""
        a = make_memory("I prefer morning workouts", vector(1.0))
        b = make_memory("I like green tea a lot", near(0.8, 1))
        store.put(a)
        store.put(b)

        first = store.put_relationship(Relationship(a.id, b.id, RelationshipType.RELATES_TO, 0.5))
        second = store.put_relationship(Relationship(a.id, b.id, RelationshipType.RELATES_TO, 0.9))

        assert second.id == first.id
        assert second.strength == 0.9
        assert len(store.get_relationships(a.id)) == 1

    def test_relationship_directions(self, store):
        a = make_memory("I prefer morning workouts", vector(1.0))
        b = make_memory("I like green tea a lot", near(0.8, 1))
        store.put(a)
        store.put(b)
        store.put_relationship(Relationship(a.id, b.id, RelationshipType.ELABORATES, 0.8))

        assert len(store.get_relationships(a.id, direction="out")) == 1
        assert store.get_relationships(a.id, direction="in") == []
        assert len(store.get_relationships(b.id, direction="in")) == 1
        with pytest.raises(ValidationError):
            store.get_relationships(a.id, direction="sideways")

    def test_relationship_endpoints_must_exist(self, store):
        a = make_memory("I prefer morning workouts", vector(1.0))
        store.put(a)
        with pytest.raises(NotFoundError):
            store.put_relationship(Relationship(a.id, "mem_missing", RelationshipType.RELATES_TO))

    def test_relationship_cannot_cross_owners(self, store):
        a = make_memory("I prefer morning workouts", vector(1.0))
        b = make_memory("I like green tea a lot", vector(1.0), owner_id="user-2")
        store.put(a)
        store.put(b)
        with pytest.raises(ValidationError):
            store.put_relationship(Relationship(a.id, b.id, RelationshipType.RELATES_TO))


class TestEmbedAndStats:
    """Test embedding through the store and statistics."""

    def test_embed_records_sample(self, store, monitor):
        assert len(store.embed("hello there")) == DIM
        assert monitor.get_stats()["embedding"]["count"] == 1

    def test_embed_failure(self, store, embedding, monitor):
        embedding.error = RuntimeError("backend down")

        with pytest.raises(EmbeddingUnavailable):
            store.embed("hello there")
        assert monitor.get_stats()["embedding"]["errors"] == 1

    def test_get_stats(self, store):
        a = make_memory("I prefer morning workouts", vector(1.0), importance=0.4)
        b = make_memory("Training for a marathon", near(0.8, 1), category=MemoryCategory.CONTEXT, importance=0.8)
        c = make_memory("Someone else entirely", vector(1.0), owner_id="user-2")
        store.put(a, facts=extract_atomic_facts(a.id, a.content))
        store.put(b)
        store.put(c)
        store.put_relationship(Relationship(a.id, b.id, RelationshipType.RELATES_TO, 0.8))

        stats = store.get_stats("user-1")

        assert stats.total_memories == 2
        assert stats.total_owners == 1
        assert stats.memories_by_category == {"preference": 1, "context": 1}
        assert stats.total_facts == 1
        assert stats.total_relationships == 1
        assert stats.average_importance == pytest.approx(0.6)
        assert store.get_stats().total_memories == 3


class TestAccessLog:
    """Test retrieval access bookkeeping."""

    def test_record_access(self, store):
        memory = make_memory("I prefer morning workouts", vector(1.0))
        store.put(memory)
        accessed_at = datetime(2026, 5, 1, 12, 30, tzinfo=timezone.utc)

        assert store.record_access([memory.id, memory.id, "mem_missing"], accessed_at=accessed_at) == 1

        stored = store.get(memory.id)
        assert stored.access_count == 1
        assert stored.last_accessed == accessed_at
        assert stored.updated_at == memory.updated_at

    def test_record_access_empty(self, store):
        assert store.record_access([]) == 0

    def test_update_keeps_access_counts(self, store):
        memory = make_memory("I prefer morning workouts", vector(1.0))
        store.put(memory)
        store.record_access([memory.id])

        updated = store.update(memory.id, {"importance": 0.9})

        assert updated.access_count == 1
        assert store.get(memory.id).access_count == 1
        assert store.get(memory.id).importance == 0.9
