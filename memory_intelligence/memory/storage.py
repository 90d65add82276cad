"""
Embedding store backends.

Persists memories with their vector embeddings, atomic facts and
relationship edges, and answers owner-scoped similarity queries.
"""

import json
import logging
import sqlite3
import threading
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterator, List, Optional, Tuple, Union

import numpy as np

from ..errors import EmbeddingUnavailable, NotFoundError, ValidationError
from ..processing.timeouts import run_with_timeout
from .embeddings import EmbeddingProvider
from .types import (
    AtomicFact,
    Memory,
    MemoryStats,
    Relationship,
    RelationshipType,
    parse_datetime,
    utc_now,
)

if TYPE_CHECKING:
    from ..observability.monitor import PerformanceMonitor


logger = logging.getLogger(__name__)


Mutation = Union[Dict[str, Any], Callable[[Memory], Optional[Memory]]]

IMMUTABLE_FIELDS = ("id", "owner_id", "created_at")


class EmbeddingStore(ABC):
    """Abstract base class for embedding stores."""

    @abstractmethod
    def embed(self, text: str) -> List[float]:
        """
        Embed text with the configured embedding backend.

        Raises:
            EmbeddingUnavailable: If the backend fails or times out.
        """
        pass

    @abstractmethod
    def put(self, memory: Memory, facts: Optional[List[AtomicFact]] = None) -> str:
        """
        Persist a new memory (and optionally its atomic facts).

        Args:
            memory: The memory to store; must carry an embedding
            facts: Atomic facts owned by the memory

        Returns:
            The id of the stored memory
        """
        pass

    @abstractmethod
    def get(self, memory_id: str) -> Memory:
        """
        Fetch a memory by id.

        Raises:
            NotFoundError: If no memory has this id.
        """
        pass

    @abstractmethod
    def exists(self, memory_id: str) -> bool:
        """Whether a memory with this id is stored."""
        pass

    @abstractmethod
    def owner_dimension(self, owner_id: str) -> Optional[int]:
        """Embedding length used by the owner's memories, or None if they have none."""
        pass

    @abstractmethod
    def similarity_search(
        self,
        owner_id: str,
        vector: List[float],
        k: int,
        min_similarity: float = -1.0,
    ) -> List[Tuple[Memory, float]]:
        """
        Find the owner's memories most similar to a vector.

        Args:
            owner_id: Only this owner's memories are considered
            vector: Query embedding
            k: Maximum number of results
            min_similarity: Results scoring below this are excluded

        Returns:
            (memory, cosine score) pairs, best first
        """
        pass

    @abstractmethod
    def list_memories(
        self,
        owner_id: str,
        limit: Optional[int] = None,
        category: Optional[str] = None,
    ) -> List[Memory]:
        """Owner's memories, most recently updated first."""
        pass

    @abstractmethod
    def update(self, memory_id: str, mutation: Mutation) -> Memory:
        """
        Atomically change a memory.

        Args:
            memory_id: Memory to change
            mutation: Field changes, or a callable that edits the memory

        Returns:
            The updated memory
        """
        pass

    @abstractmethod
    def delete(self, memory_id: str) -> bool:
        """
        Delete a memory together with its facts and edges.

        Returns:
            True if the memory existed
        """
        pass

    @abstractmethod
    def record_access(self, memory_ids: List[str], accessed_at: Optional[datetime] = None) -> int:
        """
        Count one retrieval of each memory and stamp its last access.

        Access bookkeeping never changes updated_at.

        Returns:
            Number of memories updated
        """
        pass

    @abstractmethod
    def put_relationship(self, relationship: Relationship) -> Relationship:
        """Insert an edge, or refresh the strength of an existing (from, to, type) edge."""
        pass

    @abstractmethod
    def get_relationships(self, memory_id: str, direction: str = "both") -> List[Relationship]:
        """Edges touching a memory; direction is "out", "in" or "both"."""
        pass

    @abstractmethod
    def get_facts(self, memory_id: str) -> List[AtomicFact]:
        """Atomic facts owned by a memory."""
        pass

    @abstractmethod
    def replace_facts(self, memory_id: str, facts: List[AtomicFact]) -> None:
        """Replace all atomic facts of a memory."""
        pass

    @abstractmethod
    def get_stats(self, owner_id: Optional[str] = None) -> MemoryStats:
        """Get storage statistics, optionally for one owner."""
        pass

    def close(self) -> None:
        """Release backend resources."""
        pass


class SQLiteEmbeddingStore(EmbeddingStore):
    """
    SQLite-based embedding store.

    Embeddings are stored as JSON arrays and scored with numpy at query
    time. Every mutation runs in its own transaction. Connections are
    thread-local, so db_path must point at a file when the store is used
    from several worker threads.
    """

    # Default database location
    DEFAULT_DB_PATH = ".memory_intelligence/memories.db"

    # Schema version for migrations
    SCHEMA_VERSION = 2

    def __init__(
        self,
        embedding_provider: EmbeddingProvider,
        db_path: Optional[str] = None,
        embed_timeout: float = 5.0,
        monitor: Optional["PerformanceMonitor"] = None,
        auto_create: bool = True,
    ):
        """
        Initialize the store.

        Args:
            embedding_provider: Backend used by embed()
            db_path: Path to the database file. If None, uses default.
            embed_timeout: Seconds allowed per embedding call
            monitor: Receives an "embedding" sample per embed() call
            auto_create: Whether to create the database if it doesn't exist.
        """
        if db_path is None:
            db_path = str(Path.home() / self.DEFAULT_DB_PATH)

        self.db_path = str(Path(db_path).expanduser())
        self.embedding_provider = embedding_provider
        self.embed_timeout = embed_timeout
        self.monitor = monitor
        self._local = threading.local()
        self._connections: List[sqlite3.Connection] = []
        self._connections_lock = threading.Lock()

        if auto_create:
            self._ensure_db_exists()
            self._ensure_schema()

    def _ensure_db_exists(self):
        """Ensure the database directory exists."""
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

    @property
    def _conn(self) -> sqlite3.Connection:
        """Get thread-local database connection."""
        if getattr(self._local, "conn", None) is None:
            conn = sqlite3.connect(self.db_path, timeout=30.0, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON")
            self._local.conn = conn
            with self._connections_lock:
                self._connections.append(conn)
        return self._local.conn

    @contextmanager
    def _transaction(self, immediate: bool = False) -> Iterator[sqlite3.Cursor]:
        """Context manager for database transactions."""
        conn = self._conn
        cursor = conn.cursor()
        try:
            if immediate:
                cursor.execute("BEGIN IMMEDIATE")
            yield cursor
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            cursor.close()

    def _ensure_schema(self):
        """Create or migrate the database schema."""
        with self._transaction(immediate=True) as cursor:
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY
                )
            """)

            cursor.execute("SELECT version FROM schema_version LIMIT 1")
            row = cursor.fetchone()
            current_version = row["version"] if row else 0

            if current_version < self.SCHEMA_VERSION:
                self._apply_migrations(cursor, current_version)

    def _apply_migrations(self, cursor: sqlite3.Cursor, from_version: int):
        """Apply schema migrations."""
        if from_version < 1:
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS memories (
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
                )
            """)
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS atomic_facts (
                    id TEXT PRIMARY KEY,
                    memory_id TEXT NOT NULL
                        REFERENCES memories(id) ON DELETE CASCADE,
                    statement TEXT NOT NULL,
                    confidence REAL NOT NULL
                )
            """)
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS relationships (
                    id TEXT PRIMARY KEY,
                    from_memory_id TEXT NOT NULL
                        REFERENCES memories(id) ON DELETE CASCADE,
                    to_memory_id TEXT NOT NULL
                        REFERENCES memories(id) ON DELETE CASCADE,
                    type TEXT NOT NULL,
                    strength REAL NOT NULL,
                    created_at TEXT NOT NULL,
                    CHECK (from_memory_id != to_memory_id),
                    UNIQUE (from_memory_id, to_memory_id, type)
                )
            """)

            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_memories_owner
                ON memories(owner_id, updated_at DESC)
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_facts_memory
                ON atomic_facts(memory_id)
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_relationships_from
                ON relationships(from_memory_id)
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_relationships_to
                ON relationships(to_memory_id)
            """)

        if from_version < 2:
            cursor.execute("ALTER TABLE memories ADD COLUMN access_count INTEGER NOT NULL DEFAULT 0")
            cursor.execute("ALTER TABLE memories ADD COLUMN last_accessed TEXT")

        cursor.execute("DELETE FROM schema_version")
        cursor.execute("INSERT INTO schema_version (version) VALUES (?)", (self.SCHEMA_VERSION,))
        if from_version:
            logger.info(f"Migrated memory store schema from v{from_version} to v{self.SCHEMA_VERSION}")

    # ========== Embedding ==========

    def embed(self, text: str) -> List[float]:
        """Embed text under the per-call timeout."""
        start = time.perf_counter()
        try:
            vector = run_with_timeout(
                self.embedding_provider.embed,
                self.embed_timeout,
                text,
                name="embedding",
            )
        except Exception as e:
            self._record_sample("embedding", start, False)
            raise EmbeddingUnavailable(f"Embedding backend failed: {type(e).__name__}: {e}") from e

        self._record_sample("embedding", start, True)
        return [float(x) for x in vector]

    def _record_sample(self, component: str, start: float, success: bool) -> None:
        if self.monitor is not None:
            self.monitor.record_sample(component, (time.perf_counter() - start) * 1000, success)

    # ========== Memories ==========

    def owner_dimension(self, owner_id: str, cursor: Optional[sqlite3.Cursor] = None) -> Optional[int]:
        """Embedding length used by the owner's existing memories, if any."""
        sql = "SELECT embedding_dim FROM memories WHERE owner_id = ? LIMIT 1"
        if cursor is not None:
            cursor.execute(sql, (owner_id,))
            row = cursor.fetchone()
        else:
            with self._transaction() as cur:
                cur.execute(sql, (owner_id,))
                row = cur.fetchone()
        return row["embedding_dim"] if row else None

    def _check_embedding(self, memory: Memory, cursor: sqlite3.Cursor) -> None:
        if not memory.embedding:
            raise ValidationError("Memory must carry an embedding before it is stored", field="embedding")
        expected = self.owner_dimension(memory.owner_id, cursor)
        if expected is not None and expected != len(memory.embedding):
            raise ValidationError(
                f"Embedding length {len(memory.embedding)} does not match "
                f"owner dimension {expected}",
                field="embedding",
            )

    def put(self, memory: Memory, facts: Optional[List[AtomicFact]] = None) -> str:
        """Store a new memory."""
        with self._transaction(immediate=True) as cursor:
            self._check_embedding(memory, cursor)
            try:
                cursor.execute("""
                    INSERT INTO memories (
                        id, owner_id, content, category, importance,
                        embedding, embedding_dim, keywords,
                        source_conversation_id, source_message_id, metadata,
                        created_at, updated_at, access_count, last_accessed
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, self._memory_params(memory))
            except sqlite3.IntegrityError as e:
                raise ValidationError(f"Memory {memory.id} already exists: {e}", field="id") from e

            for fact in facts or []:
                self._insert_fact(cursor, fact)

        logger.debug(f"Stored memory {memory.id} for owner {memory.owner_id}")
        return memory.id

    def _memory_params(self, memory: Memory) -> tuple:
        return (
            memory.id,
            memory.owner_id,
            memory.content,
            memory.category.value,
            memory.importance,
            json.dumps(memory.embedding),
            len(memory.embedding),
            json.dumps(memory.keywords),
            memory.source_conversation_id,
            memory.source_message_id,
            json.dumps(memory.metadata) if memory.metadata else None,
            memory.created_at.isoformat(),
            memory.updated_at.isoformat(),
            memory.access_count,
            memory.last_accessed.isoformat() if memory.last_accessed else None,
        )

    def get(self, memory_id: str) -> Memory:
        """Fetch a memory by id."""
        with self._transaction() as cursor:
            row = self._fetch_row(cursor, memory_id)
        return self._row_to_memory(row)

    def _fetch_row(self, cursor: sqlite3.Cursor, memory_id: str) -> sqlite3.Row:
        cursor.execute("SELECT * FROM memories WHERE id = ?", (memory_id,))
        row = cursor.fetchone()
        if row is None:
            raise NotFoundError(memory_id)
        return row

    def exists(self, memory_id: str) -> bool:
        with self._transaction() as cursor:
            cursor.execute("SELECT 1 FROM memories WHERE id = ?", (memory_id,))
            return cursor.fetchone() is not None

    def _row_to_memory(self, row: sqlite3.Row) -> Memory:
        """Convert a database row to a Memory."""
        return Memory(
            id=row["id"],
            owner_id=row["owner_id"],
            content=row["content"],
            category=row["category"],
            importance=row["importance"],
            embedding=json.loads(row["embedding"]),
            keywords=json.loads(row["keywords"]) if row["keywords"] else [],
            source_conversation_id=row["source_conversation_id"],
            source_message_id=row["source_message_id"],
            metadata=json.loads(row["metadata"]) if row["metadata"] else {},
            created_at=parse_datetime(row["created_at"]),
            updated_at=parse_datetime(row["updated_at"]),
            access_count=row["access_count"],
            last_accessed=parse_datetime(row["last_accessed"]),
        )

    def similarity_search(
        self,
        owner_id: str,
        vector: List[float],
        k: int,
        min_similarity: float = -1.0,
    ) -> List[Tuple[Memory, float]]:
        """Owner-scoped cosine similarity search."""
        if k <= 0 or not vector:
            return []

        query = np.asarray(vector, dtype=float)
        query_norm = np.linalg.norm(query)
        if query_norm == 0:
            return []

        with self._transaction() as cursor:
            cursor.execute(
                "SELECT * FROM memories WHERE owner_id = ? AND embedding_dim = ?",
                (owner_id, len(vector)),
            )
            rows = cursor.fetchall()

        if not rows:
            return []

        matrix = np.asarray([json.loads(row["embedding"]) for row in rows], dtype=float)
        norms = np.linalg.norm(matrix, axis=1)
        with np.errstate(divide="ignore", invalid="ignore"):
            scores = np.where(norms > 0, matrix @ query / (norms * query_norm), 0.0)
        scores = np.clip(scores, -1.0, 1.0)

        scored = []
        for row, score in zip(rows, scores):
            score = float(score)
            if score < min_similarity:
                continue
            scored.append((score, row["updated_at"], row))

        # Best score first; equal scores prefer the most recently updated
        scored.sort(key=lambda item: (item[0], parse_datetime(item[1])), reverse=True)
        return [(self._row_to_memory(row), score) for score, _, row in scored[:k]]

    def list_memories(
        self,
        owner_id: str,
        limit: Optional[int] = None,
        category: Optional[str] = None,
    ) -> List[Memory]:
        """Owner's memories, most recently updated first."""
        sql = "SELECT * FROM memories WHERE owner_id = ?"
        params: list = [owner_id]
        if category:
            sql += " AND category = ?"
            params.append(category)
        sql += " ORDER BY updated_at DESC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))

        with self._transaction() as cursor:
            cursor.execute(sql, params)
            return [self._row_to_memory(row) for row in cursor.fetchall()]

    def count(self, owner_id: Optional[str] = None) -> int:
        with self._transaction() as cursor:
            if owner_id is None:
                cursor.execute("SELECT COUNT(*) AS count FROM memories")
            else:
                cursor.execute("SELECT COUNT(*) AS count FROM memories WHERE owner_id = ?", (owner_id,))
            return cursor.fetchone()["count"]

    def update(self, memory_id: str, mutation: Mutation) -> Memory:
        """Apply a mutation inside one immediate transaction."""
        with self._transaction(immediate=True) as cursor:
            current = self._row_to_memory(self._fetch_row(cursor, memory_id))

            if callable(mutation):
                changed = mutation(current) or current
                data = changed.to_dict(include_embedding=True)
            else:
                blocked = [f for f in IMMUTABLE_FIELDS if f in mutation]
                if blocked:
                    raise ValidationError(f"Cannot change {', '.join(blocked)} of a memory")
                data = current.to_dict(include_embedding=True)
                data.update(mutation)

            data["id"] = current.id
            data["owner_id"] = current.owner_id
            data["created_at"] = current.created_at.isoformat()
            data["updated_at"] = utc_now().isoformat()
            updated = Memory.from_dict(data)

            if not updated.embedding:
                raise ValidationError("Memory must keep an embedding", field="embedding")
            if len(updated.embedding) != len(current.embedding):
                raise ValidationError(
                    f"Embedding length {len(updated.embedding)} does not match "
                    f"owner dimension {len(current.embedding)}",
                    field="embedding",
                )

            cursor.execute("""
                UPDATE memories SET
                    content = ?,
                    category = ?,
                    importance = ?,
                    embedding = ?,
                    embedding_dim = ?,
                    keywords = ?,
                    source_conversation_id = ?,
                    source_message_id = ?,
                    metadata = ?,
                    updated_at = ?
                WHERE id = ?
            """, (
                updated.content,
                updated.category.value,
                updated.importance,
                json.dumps(updated.embedding),
                len(updated.embedding),
                json.dumps(updated.keywords),
                updated.source_conversation_id,
                updated.source_message_id,
                json.dumps(updated.metadata) if updated.metadata else None,
                updated.updated_at.isoformat(),
                memory_id,
            ))

        logger.debug(f"Updated memory {memory_id}")
        return updated

    def delete(self, memory_id: str) -> bool:
        """Delete a memory; facts and edges go with it."""
        with self._transaction() as cursor:
            cursor.execute("DELETE FROM memories WHERE id = ?", (memory_id,))
            deleted = cursor.rowcount > 0

        if deleted:
            logger.debug(f"Deleted memory {memory_id}")
        return deleted

    def record_access(self, memory_ids: List[str], accessed_at: Optional[datetime] = None) -> int:
        """Increment access_count and set last_accessed for each id."""
        ids = list(dict.fromkeys(memory_ids))
        if not ids:
            return 0
        accessed_at = accessed_at or utc_now()
        placeholders = ", ".join("?" for _ in ids)
        with self._transaction() as cursor:
            cursor.execute(
                f"UPDATE memories SET access_count = access_count + 1, last_accessed = ? WHERE id IN ({placeholders})",
                [accessed_at.isoformat(), *ids],
            )
            return cursor.rowcount

    # ========== Atomic facts ==========

    def _insert_fact(self, cursor: sqlite3.Cursor, fact: AtomicFact) -> None:
        cursor.execute(
            "INSERT INTO atomic_facts (id, memory_id, statement, confidence) VALUES (?, ?, ?, ?)",
            (fact.id, fact.memory_id, fact.statement, fact.confidence),
        )

    def get_facts(self, memory_id: str) -> List[AtomicFact]:
        with self._transaction() as cursor:
            cursor.execute(
                "SELECT * FROM atomic_facts WHERE memory_id = ? ORDER BY rowid",
                (memory_id,),
            )
            return [
                AtomicFact(
                    id=row["id"],
                    memory_id=row["memory_id"],
                    statement=row["statement"],
                    confidence=row["confidence"],
                )
                for row in cursor.fetchall()
            ]

    def replace_facts(self, memory_id: str, facts: List[AtomicFact]) -> None:
        with self._transaction(immediate=True) as cursor:
            self._fetch_row(cursor, memory_id)
            cursor.execute("DELETE FROM atomic_facts WHERE memory_id = ?", (memory_id,))
            for fact in facts:
                if fact.memory_id != memory_id:
                    raise ValidationError(f"Fact {fact.id} belongs to {fact.memory_id}, not {memory_id}")
                self._insert_fact(cursor, fact)

    # ========== Relationships ==========

    def put_relationship(self, relationship: Relationship) -> Relationship:
        """Insert an edge or refresh the strength of the existing one."""
        with self._transaction(immediate=True) as cursor:
            source = self._fetch_row(cursor, relationship.from_memory_id)
            target = self._fetch_row(cursor, relationship.to_memory_id)
            if source["owner_id"] != target["owner_id"]:
                raise ValidationError("Relationships cannot cross owners")

            cursor.execute("""
                INSERT INTO relationships (
                    id, from_memory_id, to_memory_id, type, strength, created_at
                ) VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT (from_memory_id, to_memory_id, type)
                DO UPDATE SET strength = excluded.strength
            """, (
                relationship.id,
                relationship.from_memory_id,
                relationship.to_memory_id,
                relationship.type.value,
                relationship.strength,
                relationship.created_at.isoformat(),
            ))
            cursor.execute("""
                SELECT * FROM relationships
                WHERE from_memory_id = ? AND to_memory_id = ? AND type = ?
            """, (
                relationship.from_memory_id,
                relationship.to_memory_id,
                relationship.type.value,
            ))
            return self._row_to_relationship(cursor.fetchone())

    def get_relationships(self, memory_id: str, direction: str = "both") -> List[Relationship]:
        if direction == "out":
            where, params = "from_memory_id = ?", (memory_id,)
        elif direction == "in":
            where, params = "to_memory_id = ?", (memory_id,)
        elif direction == "both":
            where, params = "from_memory_id = ? OR to_memory_id = ?", (memory_id, memory_id)
        else:
            raise ValidationError(f"Unknown direction: {direction}")

        with self._transaction() as cursor:
            cursor.execute(
                f"SELECT * FROM relationships WHERE {where} ORDER BY strength DESC, created_at",
                params,
            )
            return [self._row_to_relationship(row) for row in cursor.fetchall()]

    def _row_to_relationship(self, row: sqlite3.Row) -> Relationship:
        return Relationship(
            id=row["id"],
            from_memory_id=row["from_memory_id"],
            to_memory_id=row["to_memory_id"],
            type=RelationshipType(row["type"]),
            strength=row["strength"],
            created_at=parse_datetime(row["created_at"]),
        )

    # ========== Maintenance ==========

    def get_stats(self, owner_id: Optional[str] = None) -> MemoryStats:
        """Get storage statistics."""
        stats = MemoryStats()
        owner_clause = " WHERE owner_id = ?" if owner_id else ""
        owner_params: tuple = (owner_id,) if owner_id else ()
        memory_subquery = (
            f"SELECT id FROM memories{owner_clause}"
        )

        with self._transaction() as cursor:
            cursor.execute(f"""
                SELECT
                    COUNT(*) AS count,
                    COUNT(DISTINCT owner_id) AS owners,
                    AVG(importance) AS avg_importance,
                    MIN(created_at) AS oldest,
                    MAX(created_at) AS newest
                FROM memories{owner_clause}
            """, owner_params)
            row = cursor.fetchone()
            stats.total_memories = row["count"]
            stats.total_owners = row["owners"]
            stats.average_importance = row["avg_importance"] or 0.0
            stats.oldest_memory = parse_datetime(row["oldest"])
            stats.newest_memory = parse_datetime(row["newest"])

            cursor.execute(f"""
                SELECT category, COUNT(*) AS count
                FROM memories{owner_clause}
                GROUP BY category
            """, owner_params)
            for row in cursor.fetchall():
                stats.memories_by_category[row["category"]] = row["count"]

            cursor.execute(
                f"SELECT COUNT(*) AS count FROM atomic_facts WHERE memory_id IN ({memory_subquery})",
                owner_params,
            )
            stats.total_facts = cursor.fetchone()["count"]

            cursor.execute(f"""
                SELECT type, COUNT(*) AS count
                FROM relationships
                WHERE from_memory_id IN ({memory_subquery})
                GROUP BY type
            """, owner_params)
            for row in cursor.fetchall():
                stats.relationships_by_type[row["type"]] = row["count"]
            stats.total_relationships = sum(stats.relationships_by_type.values())

        db_path = Path(self.db_path)
        if db_path.exists():
            stats.total_size_bytes = db_path.stat().st_size

        return stats

    def clear_all(self, owner_id: Optional[str] = None) -> int:
        """
        Delete every memory, or every memory of one owner. Use with caution!

        Facts and edges go with their memories.

        Returns:
            Number of memories deleted
        """
        with self._transaction() as cursor:
            if owner_id is None:
                cursor.execute("DELETE FROM memories")
            else:
                cursor.execute("DELETE FROM memories WHERE owner_id = ?", (owner_id,))
            deleted = cursor.rowcount

        if owner_id is None:
            self._conn.execute("VACUUM")
            logger.warning(f"Cleared all {deleted} memories")
        else:
            logger.warning(f"Cleared {deleted} memories of owner {owner_id}")
        return deleted

    def close(self):
        """Close every connection opened by this store."""
        with self._connections_lock:
            connections, self._connections = self._connections, []
        for conn in connections:
            try:
                conn.close()
            except sqlite3.ProgrammingError as e:
                logger.debug(f"Connection already closed: {e}")
        self._local = threading.local()
