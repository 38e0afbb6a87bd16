"""
Deduplication: decide whether new content has been seen before.

Two detection modes are supported:
  - Exact: SHA-256 of the content matches a registered entry
  - Similarity: exact match, or an embedding whose cosine similarity to a
    candidate vector reaches the configured threshold

The deduplicator only answers questions; whether a duplicate is rejected,
merged or stored anyway is up to the caller.
"""

from __future__ import annotations

import enum
import threading
from collections.abc import Iterable, Sequence

from .models import compute_hash
from .store import cosine_similarity

#: Cosine-similarity threshold at or above which two vectors are treated
#: as the same memory.
SIMILARITY_THRESHOLD: float = 0.95


class DeduplicationStrategy(str, enum.Enum):
    EXACT = "exact"
    SIMILARITY = "similarity"
    NONE = "none"


class Deduplicator:
    """
    Content registry keyed by SHA-256 hash.

    Several memories may hold the same content (an update can make two
    equal); each hash keeps every id registered for it, oldest first, and
    reports the oldest as the duplicate.

    Thread-safe; the registry has its own lock and is not coordinated with
    the vector store.
    """

    def __init__(
        self,
        strategy: DeduplicationStrategy = DeduplicationStrategy.EXACT,
        similarity_threshold: float = SIMILARITY_THRESHOLD,
    ) -> None:
        self.strategy = DeduplicationStrategy(strategy)
        self.similarity_threshold = similarity_threshold
        self._hashes: dict[str, list[str]] = {}
        self._lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        return self.strategy is not DeduplicationStrategy.NONE

    compute_hash = staticmethod(compute_hash)

    @staticmethod
    def compute_similarity(a: Sequence[float], b: Sequence[float]) -> float:
        """Cosine similarity; 0.0 for empty, mismatched or zero-norm vectors."""
        return cosine_similarity(a, b)

    def is_duplicate(self, content: str) -> bool:
        return self.get_duplicate(content) is not None

    def get_duplicate(self, content: str) -> str | None:
        """ID registered for identical *content*, if any."""
        if not self.enabled:
            return None
        with self._lock:
            ids = self._hashes.get(compute_hash(content))
            return ids[0] if ids else None

    def register(self, content: str, id: str) -> None:
        if not self.enabled:
            return
        with self._lock:
            ids = self._hashes.setdefault(compute_hash(content), [])
            if id not in ids:
                ids.append(id)

    def unregister(self, content: str, id: str | None = None) -> None:
        """
        Forget *content*.  When *id* is given only that id is dropped; other
        memories holding the same content stay registered.
        """
        key = compute_hash(content)
        with self._lock:
            if id is None:
                self._hashes.pop(key, None)
                return
            ids = self._hashes.get(key)
            if ids and id in ids:
                ids.remove(id)
                if not ids:
                    del self._hashes[key]

    def find_similar(
        self,
        vector: Sequence[float],
        candidates: Iterable[tuple[str, Sequence[float] | float]],
    ) -> str | None:
        """
        Return the id of the closest candidate whose similarity to *vector*
        reaches the threshold, or ``None``.

        *candidates* yields ``(id, vector)`` pairs, or ``(id, score)`` pairs
        when the similarity was already computed by a store search.
        Only the ``SIMILARITY`` strategy consults vectors.
        """
        if self.strategy is not DeduplicationStrategy.SIMILARITY:
            return None
        best_id: str | None = None
        best_score = float("-inf")
        for id_, other in candidates:
            if isinstance(other, (int, float)):
                score = float(other)
            else:
                score = cosine_similarity(vector, other)
            if score > best_score:
                best_id, best_score = id_, score
        if best_id is not None and best_score >= self.similarity_threshold:
            return best_id
        return None

    def clear(self) -> None:
        with self._lock:
            self._hashes.clear()

    def cache_size(self) -> int:
        with self._lock:
            return len(self._hashes)
