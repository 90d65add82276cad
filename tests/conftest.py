"""
Pytest configuration and shared fixtures.
"""

import logging

import pytest

from memory_intelligence.config import MemoryIntelligenceConfig
from memory_intelligence.memory.classifiers import RuleBasedClassifier
from memory_intelligence.memory.storage import SQLiteEmbeddingStore
from memory_intelligence.observability.logging import PACKAGE_LOGGER
from memory_intelligence.observability.monitor import PerformanceMonitor
from memory_intelligence.service import MemoryService

from helpers import DIM, KeyedEmbedding, ManualClock


@pytest.fixture(autouse=True)
def propagate_package_logs():
    """Let caplog see package records even after configure_logging() ran."""
    logger = logging.getLogger(PACKAGE_LOGGER)
    previous = logger.propagate
    logger.propagate = True
    yield
    logger.propagate = previous


@pytest.fixture
def embedding():
    """Embedding provider with no preset vectors."""
    return KeyedEmbedding()


@pytest.fixture
def monitor():
    """Fresh performance monitor."""
    return PerformanceMonitor()


@pytest.fixture
def clock():
    """Manual clock for circuit breaker tests."""
    return ManualClock()


@pytest.fixture
def db_path(tmp_path):
    """Database file inside the test's temp directory."""
    return str(tmp_path / "memories.db")


@pytest.fixture
def store(embedding, db_path, monitor):
    """SQLite store whose embed() runs inline."""
    store = SQLiteEmbeddingStore(embedding, db_path=db_path, embed_timeout=0, monitor=monitor)
    yield store
    store.close()


@pytest.fixture
def config(db_path):
    """Configuration tuned for fast, deterministic tests."""
    return MemoryIntelligenceConfig.from_dict({
        "storage": {"db_path": db_path},
        "embedding": {"dimension": DIM, "timeout": 0},
        "detector": {"call_timeout": 0},
        "processing": {
            "workers": 2,
            "max_attempts": 2,
            "backoff_base": 0.01,
            "backoff_max": 0.05,
            "defer_interval": 0.01,
        },
        "monitor": {"slow_threshold_ms": 10000},
    })


@pytest.fixture
def service(config, embedding):
    """Started service backed by the rule-based classifier."""
    svc = MemoryService(config, embedding_provider=embedding, classifier=RuleBasedClassifier())
    svc.start()
    yield svc
    svc.close()
