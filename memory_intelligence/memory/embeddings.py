"""
Embedding providers for semantic search.

Provides vector embeddings for memories to enable similarity search.
Providers are chosen by configuration when the service is built.
"""

import hashlib
import logging
import os
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

import numpy as np

from ..config import EmbeddingConfig
from ..errors import EmbeddingUnavailable
from .text import stem, tokenize

logger = logging.getLogger(__name__)


def cosine_similarity(vec1: Sequence[float], vec2: Sequence[float]) -> float:
    """
    Cosine similarity of two vectors, in [-1, 1].

    Returns 0.0 for empty, zero-norm or mismatched vectors.
    """
    if vec1 is None or vec2 is None or len(vec1) == 0 or len(vec2) == 0:
        return 0.0
    if len(vec1) != len(vec2):
        return 0.0
    a = np.asarray(vec1, dtype=float)
    b = np.asarray(vec2, dtype=float)
    denom = np.linalg.norm(a) * np.linalg.norm(b)
    if denom == 0:
        return 0.0
    return float(np.clip(np.dot(a, b) / denom, -1.0, 1.0))


def is_zero_vector(vector: Optional[Sequence[float]]) -> bool:
    """True when the vector is missing, empty or has zero norm."""
    if vector is None or len(vector) == 0:
        return True
    return float(np.linalg.norm(np.asarray(vector, dtype=float))) == 0.0


class EmbeddingProvider(ABC):
    """Abstract base class for embedding providers."""

    name = "base"

    @abstractmethod
    def embed(self, text: str) -> List[float]:
        """
        Generate an embedding vector for text.

        Args:
            text: The text to embed

        Returns:
            A list of floats representing the embedding vector
        """
        pass

    def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """Generate embeddings for multiple texts."""
        return [self.embed(text) for text in texts]

    def similarity(self, vec1: List[float], vec2: List[float]) -> float:
        """Cosine similarity between two embedding vectors, in [-1, 1]."""
        return cosine_similarity(vec1, vec2)

    @property
    @abstractmethod
    def dimension(self) -> int:
        """Get the embedding dimension."""
        pass


class SimpleEmbedding(EmbeddingProvider):
    """
    Hash-based bag-of-words embedding provider.

    Lightweight and deterministic, with no model download. Words are
    stemmed and hashed into a fixed number of buckets with a hashed sign,
    then L2 normalized. For real semantic similarity use
    SentenceTransformerEmbedding or OpenAIEmbedding.
    """

    name = "simple"

    DIMENSION = 256

    def __init__(self, dimension: int = DIMENSION):
        """
        Initialize the embedding provider.

        Args:
            dimension: Embedding vector dimension
        """
        self._dimension = dimension

    @property
    def dimension(self) -> int:
        """Get the embedding dimension."""
        return self._dimension

    def embed(self, text: str) -> List[float]:
        """
        Generate a simple embedding for text.

        Empty text embeds to the zero vector.
        """
        words = [stem(w) for w in tokenize(text)]
        vector = np.zeros(self._dimension, dtype=float)
        if not words:
            return vector.tolist()

        for word in words:
            # Hash word to get index
            word_hash = int(hashlib.md5(word.encode()).hexdigest(), 16)
            index = word_hash % self._dimension

            # Use a second hash for the sign
            sign_hash = int(hashlib.sha256(word.encode()).hexdigest(), 16)
            sign = 1.0 if sign_hash % 2 == 0 else -1.0

            vector[index] += sign / len(words)

        norm = np.linalg.norm(vector)
        if norm > 0:
            vector = vector / norm
        return vector.tolist()


class SentenceTransformerEmbedding(EmbeddingProvider):
    """
    Sentence-transformers based embedding provider.

    Provides high-quality semantic embeddings using pre-trained
    transformer models. The model is loaded on first use.
    """

    name = "sentence_transformers"

    # Default model for efficiency
    DEFAULT_MODEL = "all-MiniLM-L6-v2"

    def __init__(self, model_name: Optional[str] = None):
        """
        Initialize with a sentence-transformers model.

        Args:
            model_name: Name of the model to use. Defaults to MiniLM.
        """
        self.model_name = model_name or self.DEFAULT_MODEL
        self._model = None
        self._dimension = None

    @property
    def model(self):
        """Lazy load the model."""
        if self._model is None:
            from sentence_transformers import SentenceTransformer

            self._model = SentenceTransformer(self.model_name)
            self._dimension = self._model.get_sentence_embedding_dimension()
            logger.info(f"Loaded embedding model: {self.model_name}")
        return self._model

    @property
    def dimension(self) -> int:
        """Get the embedding dimension."""
        if self._dimension is None:
            _ = self.model  # Force load
        return self._dimension

    def embed(self, text: str) -> List[float]:
        """Generate embedding using sentence-transformers."""
        embedding = self.model.encode(text, convert_to_numpy=True)
        return embedding.tolist()

    def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """Generate embeddings for multiple texts."""
        embeddings = self.model.encode(texts, convert_to_numpy=True)
        return [e.tolist() for e in embeddings]


class OpenAIEmbedding(EmbeddingProvider):
    """Embedding provider backed by the OpenAI embeddings endpoint."""

    name = "openai"

    DEFAULT_MODEL = "text-embedding-3-small"

    # Known output sizes; other models report theirs on first call
    MODEL_DIMENSIONS = {
        "text-embedding-3-small": 1536,
        "text-embedding-3-large": 3072,
        "text-embedding-ada-002": 1536,
    }

    def __init__(
        self,
        model_name: Optional[str] = None,
        api_key: Optional[str] = None,
        api_base: Optional[str] = None,
        timeout: float = 5.0,
    ):
        self.model_name = model_name or self.DEFAULT_MODEL
        self.api_key = api_key or os.environ.get("OPENAI_API_KEY")
        if not self.api_key:
            logger.warning("No OpenAI API key provided. Set OPENAI_API_KEY environment variable.")
        self.api_base = api_base or "https://api.openai.com/v1"
        self.timeout = timeout
        self._client = None
        self._dimension = self.MODEL_DIMENSIONS.get(self.model_name)

    def _get_client(self):
        """Get or create the OpenAI client."""
        if self._client is None:
            import openai

            self._client = openai.OpenAI(
                api_key=self.api_key,
                base_url=self.api_base,
                timeout=self.timeout,
                max_retries=0,
            )
        return self._client

    @property
    def dimension(self) -> int:
        if self._dimension is None:
            self._dimension = len(self.embed("dimension probe"))
        return self._dimension

    def embed(self, text: str) -> List[float]:
        return self.embed_batch([text])[0]

    def embed_batch(self, texts: List[str]) -> List[List[float]]:
        client = self._get_client()
        response = client.embeddings.create(model=self.model_name, input=texts)
        vectors = [list(item.embedding) for item in sorted(response.data, key=lambda d: d.index)]
        if vectors and self._dimension is None:
            self._dimension = len(vectors[0])
        return vectors


def get_embedding_provider(config: Optional[EmbeddingConfig] = None) -> EmbeddingProvider:
    """
    Build the embedding provider named by configuration.

    Args:
        config: Embedding configuration. Defaults to the hash-based provider.

    Returns:
        An embedding provider instance

    Raises:
        EmbeddingUnavailable: If the provider name is unknown.
    """
    config = config or EmbeddingConfig()
    provider = config.provider.lower()

    if provider == "simple":
        return SimpleEmbedding(dimension=config.dimension)
    if provider in ("sentence_transformers", "sentence-transformers", "transformers"):
        return SentenceTransformerEmbedding(config.model or None)
    if provider == "openai":
        return OpenAIEmbedding(
            model_name=config.model or None,
            api_key=config.api_key,
            api_base=config.api_base,
            timeout=config.timeout,
        )

    raise EmbeddingUnavailable(
        f"Unknown embedding provider: {config.provider}. "
        "Available providers: simple, sentence_transformers, openai"
    )
