"""
Vector store contract and the in-process reference implementation.

A store holds named collections.  Each collection is an id-keyed table of
``(vector, metadata)`` entries and supports idempotent upsert plus an
exhaustive cosine-similarity scan:

    score = dot(a, b) / (|a| * |b|)      score ∈ [-1, 1]

There is no index; every search visits every entry of the collection.
Per-user collections are expected to stay small enough for that to be fast.
"""

from __future__ import annotations

import functools
import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, replace

import numpy as np

from .errors import CollectionNotFoundError
from .models import SearchResult, VectorMetadata

logger = logging.getLogger(__name__)

#: ``(id, vector, metadata)`` triple accepted by :meth:`VectorStoreBase.upsert`.
VectorRecord = tuple[str, Sequence[float], VectorMetadata]


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine similarity between *a* and *b*.

    Returns 0.0 instead of raising when the vectors differ in length, either
    one is empty, or either one has zero norm.
    """
    if len(a) == 0 or len(b) == 0 or len(a) != len(b):
        return 0.0
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    norm_a = float(np.linalg.norm(va))
    norm_b = float(np.linalg.norm(vb))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return float(np.dot(va, vb) / (norm_a * norm_b))


def _by_score_desc(a: SearchResult, b: SearchResult) -> int:
    # NaN compares false both ways and therefore sorts as "equal".
    if a.score > b.score:
        return -1
    if a.score < b.score:
        return 1
    return 0


def rank_results(
    results: list[SearchResult],
    limit: int,
    score_threshold: float | None = None,
) -> list[SearchResult]:
    """Filter by *score_threshold*, sort by descending score, keep *limit*."""
    if score_threshold is not None:
        results = [r for r in results if not r.score < score_threshold]
    results.sort(key=functools.cmp_to_key(_by_score_desc))
    return results[: max(limit, 0)]


class ReadWriteLock:
    """
    Many concurrent readers or a single writer.

    Waiting writers block new readers from entering, so a steady stream of
    searches cannot starve an upsert.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class VectorStoreBase(ABC):
    """Backend-agnostic vector store interface."""

    @abstractmethod
    def create_collection(self, name: str, dimension: int) -> None:
        """Create *name* if absent.  Never fails for an existing collection."""

    @abstractmethod
    def collection_exists(self, name: str) -> bool: ...

    @abstractmethod
    def upsert(self, name: str, records: Sequence[VectorRecord]) -> None:
        """Insert or overwrite entries by id, creating the collection if needed."""

    @abstractmethod
    def search(
        self,
        name: str,
        query_vector: Sequence[float],
        limit: int,
        score_threshold: float | None = None,
    ) -> list[SearchResult]:
        """
        Return at most *limit* entries ranked by descending similarity.

        Raises :class:`CollectionNotFoundError` if *name* does not exist.
        """

    @abstractmethod
    def delete(self, name: str, ids: Sequence[str]) -> None:
        """Remove *ids* from *name*; unknown ids are ignored."""

    @abstractmethod
    def delete_collection(self, name: str) -> None: ...

    @abstractmethod
    def count(self, name: str) -> int:
        """Number of entries in *name*, or 0 when it does not exist."""

    @abstractmethod
    def get(self, name: str, id: str) -> VectorMetadata | None: ...

    @abstractmethod
    def get_all(self, name: str) -> list[VectorMetadata]:
        """Every entry's metadata, or an empty list when *name* is absent."""

    @abstractmethod
    def list_collections(self) -> list[str]: ...


def _copy(meta: VectorMetadata) -> VectorMetadata:
    return replace(meta, custom_metadata=dict(meta.custom_metadata))


@dataclass
class _Entry:
    vector: list[float]
    metadata: VectorMetadata


class InMemoryVectorStore(VectorStoreBase):
    """
    Process-local vector store.

    The collection map is owned by the store and only touched under its
    reader/writer lock: ``search``, ``count``, ``get``, ``get_all``,
    ``collection_exists`` and ``list_collections`` share the lock, every
    mutation takes it exclusively.  Nothing is written to disk; use
    :class:`~memory_engine.chroma_store.ChromaVectorStore` for durability.
    """

    def __init__(self) -> None:
        self._collections: dict[str, dict[str, _Entry]] = {}
        self._dimensions: dict[str, int] = {}
        self._lock = ReadWriteLock()

    # ------------------------------------------------------------------
    # Write operations
    # ------------------------------------------------------------------

    def create_collection(self, name: str, dimension: int) -> None:
        with self._lock.write():
            if name in self._collections:
                return
            self._collections[name] = {}
            self._dimensions[name] = dimension
        logger.info("Created collection %s (dim=%d)", name, dimension)

    def upsert(self, name: str, records: Sequence[VectorRecord]) -> None:
        with self._lock.write():
            collection = self._collections.get(name)
            if collection is None:
                # Auto-create, mirroring the orchestrator's lazy collections.
                collection = self._collections[name] = {}
                if records:
                    self._dimensions[name] = len(records[0][1])
                logger.info("Auto-created collection %s on upsert", name)
            for id_, vector, metadata in records:
                collection[id_] = _Entry(vector=[float(x) for x in vector], metadata=_copy(metadata))
        logger.debug("Upserted %d record(s) into %s", len(records), name)

    def delete(self, name: str, ids: Sequence[str]) -> None:
        with self._lock.write():
            collection = self._collections.get(name)
            if collection is None:
                return
            for id_ in ids:
                collection.pop(id_, None)

    def delete_collection(self, name: str) -> None:
        with self._lock.write():
            removed = self._collections.pop(name, None)
            self._dimensions.pop(name, None)
        if removed is not None:
            logger.info("Deleted collection %s (%d entries)", name, len(removed))

    # ------------------------------------------------------------------
    # Read operations
    # ------------------------------------------------------------------

    def collection_exists(self, name: str) -> bool:
        with self._lock.read():
            return name in self._collections

    def search(
        self,
        name: str,
        query_vector: Sequence[float],
        limit: int,
        score_threshold: float | None = None,
    ) -> list[SearchResult]:
        with self._lock.read():
            collection = self._collections.get(name)
            if collection is None:
                raise CollectionNotFoundError(name)
            results = [
                SearchResult(
                    id=id_,
                    score=cosine_similarity(query_vector, entry.vector),
                    metadata=entry.metadata,
                )
                for id_, entry in collection.items()
            ]
        ranked = rank_results(results, limit, score_threshold)
        for result in ranked:
            result.metadata = _copy(result.metadata)
        return ranked

    def count(self, name: str) -> int:
        with self._lock.read():
            return len(self._collections.get(name, ()))

    def get(self, name: str, id: str) -> VectorMetadata | None:
        with self._lock.read():
            entry = self._collections.get(name, {}).get(id)
            return _copy(entry.metadata) if entry is not None else None

    def get_all(self, name: str) -> list[VectorMetadata]:
        with self._lock.read():
            return [_copy(entry.metadata) for entry in self._collections.get(name, {}).values()]

    def list_collections(self) -> list[str]:
        with self._lock.read():
            return list(self._collections)

    def dimension(self, name: str) -> int | None:
        """Dimension recorded when *name* was created, if known."""
        with self._lock.read():
            return self._dimensions.get(name)
