"""
Configuration Module - Load and manage memory intelligence configuration.

This module provides support for loading configuration from:
- YAML configuration files (.memory-intelligence.yml)
- Environment variables
- Programmatic configuration

Configuration precedence (highest to lowest):
1. Programmatic configuration (keyword overrides)
2. Environment variables
3. Configuration file
4. Default values
"""

import logging
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


logger = logging.getLogger(__name__)


# Default configuration file names (in order of precedence)
CONFIG_FILE_NAMES = [
    ".memory-intelligence.yml",
    ".memory-intelligence.yaml",
    "memory-intelligence.yml",
    "memory-intelligence.yaml",
]

ENV_PREFIX = "MEMORY_INTELLIGENCE_"


def _section_from_dict(cls, data: Optional[Dict[str, Any]]):
    """Build a section dataclass from a dict, ignoring unknown keys."""
    data = data or {}
    known = {f.name for f in fields(cls)}
    unknown = set(data) - known
    if unknown:
        logger.warning(f"Ignoring unknown {cls.__name__} keys: {sorted(unknown)}")
    return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class StorageConfig:
    """Where memories are persisted."""

    db_path: Optional[str] = None


@dataclass
class EmbeddingConfig:
    """Embedding backend selection."""

    provider: str = "simple"  # "simple", "sentence_transformers", "openai"
    model: str = ""
    dimension: int = 256  # only used by the hash-based provider
    api_key: Optional[str] = None
    api_base: Optional[str] = None
    timeout: float = 5.0


@dataclass
class ClassifierConfig:
    """Classification backend used by the detector."""

    backend: str = "rules"  # "rules" or "llm"
    provider: str = "openai"
    model: str = ""
    api_key: Optional[str] = None
    api_base: Optional[str] = None
    temperature: float = 0.1
    max_tokens: int = 1000
    max_retries: int = 1


@dataclass
class DetectorConfig:
    """Input bounds and validation limits for detection."""

    enabled: bool = True
    history_limit: int = 3
    max_message_chars: int = 2000
    max_turn_chars: int = 500
    call_timeout: float = 5.0
    min_content_length: int = 10
    max_content_length: int = 500
    max_keywords: int = 10


@dataclass
class DeduplicationConfig:
    """Thresholds for merge and contradiction decisions."""

    top_k: int = 5
    merge_threshold: float = 0.92
    contradiction_threshold: float = 0.75


@dataclass
class RetrievalConfig:
    """Three-tier retrieval tuning."""

    default_limit: int = 5
    pool_multiplier: int = 3
    min_similarity: float = 0.1
    duplicate_threshold: float = 0.95
    half_life_days: float = 30.0
    similarity_weight: float = 0.55
    keyword_weight: float = 0.15
    category_weight: float = 0.15
    recency_weight: float = 0.05
    importance_weight: float = 0.10
    track_access: bool = True


@dataclass
class CacheConfig:
    """Query embedding cache."""

    enabled: bool = True
    max_size: int = 1000
    ttl_seconds: float = 3600.0


@dataclass
class RelationshipConfig:
    """Relationship discovery tuning."""

    enabled: bool = True
    relation_threshold: float = 0.70
    max_candidates: int = 10


@dataclass
class ProcessingConfig:
    """Background worker pool and retry policy."""

    workers: int = 4
    max_attempts: int = 3
    backoff_base: float = 0.5
    backoff_max: float = 30.0
    defer_interval: float = 1.0


@dataclass
class CircuitBreakerConfig:
    """Circuit breaker thresholds."""

    failure_threshold: int = 5
    cooldown_seconds: float = 60.0


@dataclass
class MonitorConfig:
    """Performance monitor sample window and alerting."""

    max_samples: int = 1000  # per component
    slow_threshold_ms: float = 100.0
    window_size: int = 50


@dataclass
class LoggingConfig:
    """Log output settings."""

    level: str = "INFO"
    json_output: bool = False


@dataclass
class MemoryIntelligenceConfig:
    """
    Complete configuration for the memory intelligence subsystem.

    Example YAML configuration:
        ```yaml
        storage:
          db_path: "~/.memory_intelligence/memories.db"

        embedding:
          provider: "sentence_transformers"
          model: "all-MiniLM-L6-v2"

        classifier:
          backend: "llm"
          provider: "anthropic"

        deduplication:
          merge_threshold: 0.92
          contradiction_threshold: 0.75

        cache:
          ttl_seconds: 600

        processing:
          workers: 4
        ```
    """

    storage: StorageConfig = field(default_factory=StorageConfig)
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    classifier: ClassifierConfig = field(default_factory=ClassifierConfig)
    detector: DetectorConfig = field(default_factory=DetectorConfig)
    deduplication: DeduplicationConfig = field(default_factory=DeduplicationConfig)
    retrieval: RetrievalConfig = field(default_factory=RetrievalConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    relationships: RelationshipConfig = field(default_factory=RelationshipConfig)
    processing: ProcessingConfig = field(default_factory=ProcessingConfig)
    circuit_breaker: CircuitBreakerConfig = field(default_factory=CircuitBreakerConfig)
    monitor: MonitorConfig = field(default_factory=MonitorConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MemoryIntelligenceConfig":
        """Create configuration from dictionary."""
        return cls(
            storage=_section_from_dict(StorageConfig, data.get("storage")),
            embedding=_section_from_dict(EmbeddingConfig, data.get("embedding")),
            classifier=_section_from_dict(ClassifierConfig, data.get("classifier")),
            detector=_section_from_dict(DetectorConfig, data.get("detector")),
            deduplication=_section_from_dict(DeduplicationConfig, data.get("deduplication")),
            retrieval=_section_from_dict(RetrievalConfig, data.get("retrieval")),
            cache=_section_from_dict(CacheConfig, data.get("cache")),
            relationships=_section_from_dict(RelationshipConfig, data.get("relationships")),
            processing=_section_from_dict(ProcessingConfig, data.get("processing")),
            circuit_breaker=_section_from_dict(CircuitBreakerConfig, data.get("circuit_breaker")),
            monitor=_section_from_dict(MonitorConfig, data.get("monitor")),
            logging=_section_from_dict(LoggingConfig, data.get("logging")),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary with secrets redacted."""
        data = asdict(self)
        for section in ("embedding", "classifier"):
            if data[section].get("api_key"):
                data[section]["api_key"] = "***"
        return data


def find_config_file(start_path: Optional[str] = None) -> Optional[Path]:
    """
    Find the configuration file starting from the given path.

    Searches the start path, the current directory and its parents,
    then the user's home directory.

    Args:
        start_path: Directory to start searching from.

    Returns:
        Path to configuration file if found, None otherwise.
    """
    search_dirs = []

    if start_path:
        search_dirs.append(Path(start_path))

    search_dirs.append(Path.cwd())

    current = Path.cwd()
    while current.parent != current:
        current = current.parent
        search_dirs.append(current)

    search_dirs.append(Path.home())

    for directory in search_dirs:
        for config_name in CONFIG_FILE_NAMES:
            config_path = directory / config_name
            if config_path.exists() and config_path.is_file():
                logger.debug(f"Found config file: {config_path}")
                return config_path

    return None


def load_yaml_file(file_path: Path) -> dict:
    """
    Load a YAML configuration file.

    Args:
        file_path: Path to the YAML file.

    Returns:
        Dictionary with configuration data.
    """
    try:
        with open(file_path, "r") as f:
            return yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Error loading config file {file_path}: {e}")
        return {}


def _env_value(name: str, cast, config: dict, section: str, key: str) -> None:
    """Copy one environment variable into the config dict if set and parseable."""
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return
    try:
        value = cast(raw)
    except ValueError:
        logger.warning(f"Ignoring invalid value for {name}: {raw!r}")
        return
    config.setdefault(section, {})[key] = value


def _parse_bool(raw: str) -> bool:
    lowered = raw.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    raise ValueError(raw)


def load_config_from_env() -> dict:
    """
    Load configuration from environment variables.

    Supported environment variables:
    - MEMORY_INTELLIGENCE_DB_PATH: SQLite database path
    - MEMORY_INTELLIGENCE_EMBEDDING_PROVIDER / _EMBEDDING_MODEL
    - MEMORY_INTELLIGENCE_CLASSIFIER: "rules" or "llm"
    - MEMORY_INTELLIGENCE_CLASSIFIER_PROVIDER / _CLASSIFIER_MODEL
    - MEMORY_INTELLIGENCE_WORKERS: worker pool size
    - MEMORY_INTELLIGENCE_FAILURE_THRESHOLD / _COOLDOWN_SECONDS
    - MEMORY_INTELLIGENCE_MERGE_THRESHOLD / _CONTRADICTION_THRESHOLD
    - MEMORY_INTELLIGENCE_DETECTION_ENABLED / _RELATIONSHIPS_ENABLED
    - MEMORY_INTELLIGENCE_LOG_LEVEL / _LOG_JSON
    - OPENAI_API_KEY: used by the OpenAI embedding backend

    Returns:
        Dictionary with configuration from environment.
    """
    config: dict = {}

    _env_value(f"{ENV_PREFIX}DB_PATH", str, config, "storage", "db_path")
    _env_value(f"{ENV_PREFIX}EMBEDDING_PROVIDER", str, config, "embedding", "provider")
    _env_value(f"{ENV_PREFIX}EMBEDDING_MODEL", str, config, "embedding", "model")
    _env_value(f"{ENV_PREFIX}CLASSIFIER", str, config, "classifier", "backend")
    _env_value(f"{ENV_PREFIX}CLASSIFIER_PROVIDER", str, config, "classifier", "provider")
    _env_value(f"{ENV_PREFIX}CLASSIFIER_MODEL", str, config, "classifier", "model")
    _env_value(f"{ENV_PREFIX}WORKERS", int, config, "processing", "workers")
    _env_value(f"{ENV_PREFIX}FAILURE_THRESHOLD", int, config, "circuit_breaker", "failure_threshold")
    _env_value(f"{ENV_PREFIX}COOLDOWN_SECONDS", float, config, "circuit_breaker", "cooldown_seconds")
    _env_value(f"{ENV_PREFIX}MERGE_THRESHOLD", float, config, "deduplication", "merge_threshold")
    _env_value(
        f"{ENV_PREFIX}CONTRADICTION_THRESHOLD", float, config, "deduplication", "contradiction_threshold"
    )
    _env_value(f"{ENV_PREFIX}DETECTION_ENABLED", _parse_bool, config, "detector", "enabled")
    _env_value(f"{ENV_PREFIX}RELATIONSHIPS_ENABLED", _parse_bool, config, "relationships", "enabled")
    _env_value(f"{ENV_PREFIX}LOG_LEVEL", str.upper, config, "logging", "level")
    _env_value(f"{ENV_PREFIX}LOG_JSON", _parse_bool, config, "logging", "json_output")

    if os.environ.get("OPENAI_API_KEY"):
        config.setdefault("embedding", {})["api_key"] = os.environ["OPENAI_API_KEY"]

    return config


def load_config(
    config_path: Optional[str] = None,
    project_path: Optional[str] = None,
    **overrides: Any,
) -> MemoryIntelligenceConfig:
    """
    Load configuration from all sources.

    Args:
        config_path: Optional explicit path to config file.
        project_path: Optional directory to search for a config file.
        **overrides: Section dictionaries, e.g. ``processing={"workers": 2}``.

    Returns:
        Merged MemoryIntelligenceConfig.
    """
    merged_config: dict = {}

    if config_path:
        file_path = Path(config_path)
        if file_path.exists():
            merged_config = _deep_merge(merged_config, load_yaml_file(file_path))
        else:
            logger.warning(f"Config file not found: {config_path}")
    else:
        config_file = find_config_file(project_path)
        if config_file:
            merged_config = _deep_merge(merged_config, load_yaml_file(config_file))

    merged_config = _deep_merge(merged_config, load_config_from_env())

    if overrides:
        merged_config = _deep_merge(merged_config, overrides)

    return MemoryIntelligenceConfig.from_dict(merged_config)


def _deep_merge(base: dict, override: dict) -> dict:
    """
    Deep merge two dictionaries.

    Args:
        base: Base dictionary.
        override: Dictionary with override values.

    Returns:
        Merged dictionary.
    """
    result = base.copy()

    for key, value in override.items():
        if (
            key in result
            and isinstance(result[key], dict)
            and isinstance(value, dict)
        ):
            result[key] = _deep_merge(result[key], value)
        elif value is not None:
            result[key] = value

    return result
