"""
Embedders and the embedding cache.

An embedder turns text into a fixed-length vector.  Two interchangeable
implementations are provided:

  - ``HashEmbedder``: deterministic SHA-256 derived vectors.  No model, no
    I/O; equal texts map to equal vectors, anything else is effectively
    random.  Good for tests and offline use.
  - ``SentenceTransformerEmbedder``: a sentence-transformers model loaded
    through ChromaDB's embedding-function helpers.

``EmbeddingCache`` is a bounded LRU map from content hash to vector that
lets the orchestrator skip recomputing embeddings for repeated text.
"""

from __future__ import annotations

import hashlib
import logging
import threading
from abc import ABC, abstractmethod
from collections import OrderedDict
from collections.abc import Sequence
from typing import Any

from .errors import EmbeddingError, InvalidArgumentError
from .models import compute_hash

logger = logging.getLogger(__name__)

DEFAULT_DIMENSION: int = 384
DEFAULT_MODEL: str = "all-MiniLM-L6-v2"


class Embedder(ABC):
    @abstractmethod
    def embed(self, text: str) -> list[float]:
        """Return the embedding of *text*."""

    def embed_batch(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed every text in order.  Sequential unless overridden."""
        return [self.embed(text) for text in texts]

    @abstractmethod
    def dimension(self) -> int: ...


class HashEmbedder(Embedder):
    """
    Deterministic embedder that expands SHA-256 digests into a unit vector.

    Bytes are drawn from ``sha256(f"{block}:{text}")`` for successive block
    numbers until *dimension* values are available, then mapped to [-1, 1].
    """

    def __init__(self, dimension: int = DEFAULT_DIMENSION) -> None:
        if dimension < 1:
            raise InvalidArgumentError(f"dimension must be positive, got {dimension}")
        self._dimension = dimension

    def embed(self, text: str) -> list[float]:
        raw = bytearray()
        block = 0
        while len(raw) < self._dimension:
            raw.extend(hashlib.sha256(f"{block}:{text}".encode("utf-8")).digest())
            block += 1
        vec = [(b - 127.5) / 127.5 for b in raw[: self._dimension]]
        norm = sum(x * x for x in vec) ** 0.5 or 1.0
        return [x / norm for x in vec]

    def dimension(self) -> int:
        return self._dimension


class SentenceTransformerEmbedder(Embedder):
    """
    Embedder backed by a HuggingFace sentence-transformers model.

    The model is loaded on first use so that constructing the embedder (and
    therefore the memory manager) stays cheap.
    """

    def __init__(
        self,
        model_name: str = DEFAULT_MODEL,
        dimension: int = DEFAULT_DIMENSION,
        _embedding_function: Any | None = None,
    ) -> None:
        self.model_name = model_name
        self._dimension = dimension
        self._ef = _embedding_function
        self._ef_lock = threading.Lock()

    def _function(self):
        with self._ef_lock:
            if self._ef is None:
                from chromadb.utils import embedding_functions

                logger.info("Loading sentence-transformers model %s", self.model_name)
                try:
                    self._ef = embedding_functions.SentenceTransformerEmbeddingFunction(
                        model_name=self.model_name
                    )
                except Exception as exc:
                    raise EmbeddingError(
                        f"Cannot load embedding model {self.model_name}: {exc}"
                    ) from exc
            return self._ef

    def embed(self, text: str) -> list[float]:
        return self.embed_batch([text])[0]

    def embed_batch(self, texts: Sequence[str]) -> list[list[float]]:
        if not texts:
            return []
        ef = self._function()
        try:
            vectors = ef(list(texts))
        except Exception as exc:
            raise EmbeddingError(f"Embedding with {self.model_name} failed: {exc}") from exc
        if len(vectors) != len(texts):
            raise EmbeddingError(
                f"Model {self.model_name} returned {len(vectors)} vectors for {len(texts)} texts"
            )
        return [[float(x) for x in v] for v in vectors]

    def dimension(self) -> int:
        return self._dimension


class EmbeddingCache:
    """
    Bounded least-recently-used cache of embeddings keyed by content hash.

    ``get`` hits move the key to the most-recently-used end; ``put`` on a
    full cache evicts exactly the least-recently-used key first.  The cache
    has its own lock and can be shared between threads.
    """

    def __init__(self, max_size: int = 1024) -> None:
        if max_size < 1:
            raise InvalidArgumentError(f"max_size must be positive, got {max_size}")
        self.max_size = max_size
        self._entries: OrderedDict[str, list[float]] = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, text: str) -> list[float] | None:
        key = compute_hash(text)
        with self._lock:
            vector = self._entries.get(key)
            if vector is None:
                self.misses += 1
                return None
            self._entries.move_to_end(key)
            self.hits += 1
            return list(vector)

    def put(self, text: str, vector: Sequence[float]) -> None:
        key = compute_hash(text)
        with self._lock:
            if key in self._entries:
                self._entries.move_to_end(key)
            elif len(self._entries) >= self.max_size:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("Evicted embedding %s from cache", evicted[:12])
            self._entries[key] = list(vector)

    def contains(self, text: str) -> bool:
        """Membership test; does not affect recency."""
        with self._lock:
            return compute_hash(text) in self._entries

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self.hits = 0
            self.misses = 0

    def size(self) -> int:
        with self._lock:
            return len(self._entries)

    def hit_rate(self) -> float:
        """
        Occupancy ratio (size / capacity).

        This is an approximation kept for compatibility, not a hit/miss
        ratio; use the ``hits`` and ``misses`` counters for that.
        """
        with self._lock:
            return len(self._entries) / self.max_size
