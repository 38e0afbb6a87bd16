"""
MemoryManager: high-level API for storing and retrieving agent memories.

This is the main entry-point for applications that want durable, per-user
semantic memory.

Usage example::

    from memory_engine import MemoryManager

    memory = MemoryManager()

    item = memory.add("alice", "Alice prefers Python.", memory_type="preference")

    for hit in memory.search("alice", "Which language does Alice like?"):
        print(hit.memory.content, hit.score)

    memory.update(item.id, "Alice prefers Rust these days.")
    memory.delete(item.id)
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from typing import Any

from .config import MemoryConfig
from .dedup import DeduplicationStrategy, Deduplicator
from .embeddings import Embedder, EmbeddingCache, HashEmbedder, SentenceTransformerEmbedder
from .errors import (
    ConfigError,
    EmbeddingError,
    InvalidArgumentError,
    MemoryEngineError,
    NotFoundError,
    StorageError,
)
from .models import MemoryItem, SearchResultItem, VectorMetadata, compute_hash, utc_now
from .store import InMemoryVectorStore, VectorStoreBase

logger = logging.getLogger(__name__)


def build_store(config: MemoryConfig) -> VectorStoreBase:
    """Instantiate the vector store selected by *config*."""
    if config.backend == "chroma":
        from .chroma_store import ChromaVectorStore

        return ChromaVectorStore(path=config.db_path)
    return InMemoryVectorStore()


def build_embedder(config: MemoryConfig) -> Embedder:
    """Instantiate the embedder selected by *config*."""
    if config.embedder == "sentence-transformers":
        return SentenceTransformerEmbedder(
            model_name=config.embedding_model,
            dimension=config.vector_dimension,
        )
    return HashEmbedder(dimension=config.vector_dimension)


@contextmanager
def _storage_stage(operation: str, collection: str) -> Iterator[None]:
    """Wrap untyped backend failures in :class:`StorageError`."""
    try:
        yield
    except MemoryEngineError:
        raise
    except Exception as exc:
        raise StorageError(f"{operation} on collection {collection} failed: {exc}") from exc


class MemoryManager:
    """
    Per-user memory orchestrator on top of a vector store and an embedder.

    Responsibilities
    ----------------
    * **Collections** – Every user gets a dedicated collection named
      ``<prefix>_<user_id>``, created lazily on first use.  User ids that
      are not collection-name safe get a sanitised, hash-suffixed name.
    * **Embedding** – Text is embedded through an LRU cache so repeated
      content is only embedded once.  Embedding always happens before any
      lock is taken, so a slow model never blocks other callers.
    * **Deduplication** – With an ``exact`` or ``similarity`` strategy,
      ``add`` returns the already-stored item instead of writing a duplicate.
    * **Id index** – A memory-id → collection index lets ``update``,
      ``delete`` and ``get`` work from an id alone.  It is updated together
      with every store write and rebuilt from the store at start-up.

    Parameters
    ----------
    config:
        Engine configuration.  Defaults to ``MemoryConfig()``.
    _store:
        Pre-built vector store (dependency injection / tests).
    _embedder:
        Pre-built embedder (dependency injection / tests).  Its dimension
        must match ``config.vector_dimension``.
    """

    def __init__(
        self,
        config: MemoryConfig | None = None,
        _store: VectorStoreBase | None = None,
        _embedder: Embedder | None = None,
    ) -> None:
        self.config = config or MemoryConfig()
        self._store = _store or build_store(self.config)
        self._embedder = _embedder or build_embedder(self.config)
        if self._embedder.dimension() != self.config.vector_dimension:
            raise ConfigError(
                f"Embedder dimension {self._embedder.dimension()} does not match "
                f"configured vector_dimension {self.config.vector_dimension}"
            )
        self._cache = EmbeddingCache(self.config.cache_size)
        self._index: dict[str, str] = {}
        self._dedup: dict[str, Deduplicator] = {}
        # Guards the id index, the deduplicators and every store mutation
        # that has to stay in step with them.
        self._lock = threading.RLock()
        self.rebuild_index()

    @property
    def store(self) -> VectorStoreBase:
        return self._store

    @property
    def embedder(self) -> Embedder:
        return self._embedder

    @property
    def cache(self) -> EmbeddingCache:
        return self._cache

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def ensure_collection(self, user_id: str) -> str:
        """Create *user_id*'s collection if needed and return its name."""
        _check_user_id(user_id)
        name = self.config.collection_name(user_id)
        with _storage_stage("create_collection", name):
            self._store.create_collection(name, self.config.vector_dimension)
        return name

    def add(
        self,
        user_id: str,
        content: str,
        memory_type: str | None = None,
        *,
        agent_id: str | None = None,
        run_id: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> MemoryItem:
        """
        Store *content* as a new memory for *user_id*.

        When deduplication is enabled and *content* matches an existing
        memory, nothing is written and the existing item is returned.

        Parameters
        ----------
        user_id:
            Owner of the memory.
        content:
            The text to remember.  Must not be blank.
        memory_type:
            Free-form tag such as ``"fact"`` or ``"preference"``.  Defaults
            to ``"general"``.
        agent_id, run_id:
            Optional provenance identifiers.
        metadata:
            Extra string key/value pairs stored with the memory.

        Returns
        -------
        MemoryItem
            The stored (or already existing) memory.
        """
        _check_content(content)
        name = self.ensure_collection(user_id)

        duplicate = self._duplicate_of(name, content)
        if duplicate is not None:
            logger.debug("Content already stored as %s in %s", duplicate.id, name)
            return _item_with_hash(duplicate)

        vector = self._embed(content)
        if self.config.dedup_strategy is DeduplicationStrategy.SIMILARITY:
            duplicate = self._duplicate_of(name, content, vector)
            if duplicate is not None:
                logger.debug("Near-duplicate of %s in %s", duplicate.id, name)
                return _item_with_hash(duplicate)

        item = MemoryItem.new(
            user_id,
            content,
            memory_type,
            agent_id=agent_id,
            run_id=run_id,
            metadata=metadata,
        )
        with self._lock:
            # Re-check under the lock; a concurrent add may have won.
            duplicate = self._duplicate_of(name, content)
            if duplicate is not None:
                return _item_with_hash(duplicate)
            with _storage_stage("upsert", name):
                self._store.upsert(name, [(item.id, vector, item.to_vector_metadata())])
            self._index[item.id] = name
            # Looked up under the lock: rebuild_index may have replaced it.
            self._deduplicator(name).register(content, item.id)
        logger.debug("Added memory %s to %s", item.id, name)
        return item

    def search(
        self,
        user_id: str,
        query: str,
        limit: int = 5,
        score_threshold: float | None = None,
    ) -> list[SearchResultItem]:
        """
        Return up to *limit* of *user_id*'s memories ranked by similarity to
        *query*, best first.

        Items rebuilt from storage carry an empty ``hash``.
        """
        if limit < 1:
            raise InvalidArgumentError(f"limit must be positive, got {limit}")
        if not isinstance(query, str):
            raise InvalidArgumentError("query must be a string")
        name = self.ensure_collection(user_id)
        vector = self._embed(query)
        with _storage_stage("search", name):
            results = self._store.search(name, vector, limit, score_threshold)
        return [
            SearchResultItem(memory=MemoryItem.from_vector_metadata(r.metadata), score=r.score)
            for r in results
        ]

    def get_all(self, user_id: str) -> list[MemoryItem]:
        """Every memory stored for *user_id*, in store order."""
        name = self.ensure_collection(user_id)
        with _storage_stage("get_all", name):
            metas = self._store.get_all(name)
        return [MemoryItem.from_vector_metadata(m) for m in metas]

    def get(self, memory_id: str) -> MemoryItem:
        """Fetch a single memory by ID.  Raises :class:`NotFoundError`."""
        name = self._locate(memory_id)
        with _storage_stage("get", name):
            meta = self._store.get(name, memory_id)
        if meta is None:
            self._forget(memory_id, name)
            raise NotFoundError(f"Memory not found: {memory_id}")
        return _item_with_hash(meta)

    def update(self, memory_id: str, content: str) -> MemoryItem:
        """
        Replace the content of *memory_id*.

        The vector is recomputed; id, owner, type, metadata and creation time
        are preserved; ``hash`` and ``updated_at`` change.
        """
        _check_content(content)
        name = self._locate(memory_id)
        vector = self._embed(content)

        with self._lock:
            if self._index.get(memory_id) != name:
                raise NotFoundError(f"Memory not found: {memory_id}")
            with _storage_stage("get", name):
                current = self._store.get(name, memory_id)
            if current is None:
                self._forget(memory_id, name)
                raise NotFoundError(f"Memory not found: {memory_id}")

            item = MemoryItem.from_vector_metadata(current)
            item.content = content
            item.hash = compute_hash(content)
            item.updated_at = max(utc_now(), item.created_at)
            with _storage_stage("upsert", name):
                self._store.upsert(name, [(item.id, vector, item.to_vector_metadata())])
            dedup = self._deduplicator(name)
            dedup.unregister(current.text, memory_id)
            dedup.register(content, memory_id)
        logger.debug("Updated memory %s in %s", memory_id, name)
        return item

    def delete(self, memory_id: str) -> None:
        """Delete a memory by its ID.  Raises :class:`NotFoundError`."""
        name = self._locate(memory_id)
        with self._lock:
            with _storage_stage("get", name):
                current = self._store.get(name, memory_id)
            with _storage_stage("delete", name):
                self._store.delete(name, [memory_id])
            self._forget(memory_id, name)
            if current is not None:
                self._deduplicator(name).unregister(current.text, memory_id)
        if current is None:
            raise NotFoundError(f"Memory not found: {memory_id}")
        logger.debug("Deleted memory %s from %s", memory_id, name)

    def count(self, user_id: str) -> int:
        """Number of memories stored for *user_id* (0 if none)."""
        _check_user_id(user_id)
        name = self.config.collection_name(user_id)
        with _storage_stage("count", name):
            return self._store.count(name)

    def delete_user(self, user_id: str) -> None:
        """Drop *user_id*'s collection and everything indexed for it."""
        _check_user_id(user_id)
        name = self.config.collection_name(user_id)
        with self._lock:
            with _storage_stage("delete_collection", name):
                self._store.delete_collection(name)
            self._index = {mid: coll for mid, coll in self._index.items() if coll != name}
            self._dedup.pop(name, None)
        logger.info("Deleted all memories of user %s", user_id)

    def find_duplicate(self, user_id: str, content: str) -> MemoryItem | None:
        """
        Explicit duplicate pre-check for *content* in *user_id*'s memories.

        Always ``None`` when the configured strategy is ``none``.
        """
        _check_user_id(user_id)
        _check_content(content)
        name = self.config.collection_name(user_id)
        duplicate = self._duplicate_of(name, content)
        if duplicate is not None:
            return _item_with_hash(duplicate)
        if self._deduplicator(name).strategy is DeduplicationStrategy.SIMILARITY:
            duplicate = self._duplicate_of(name, content, self._embed(content))
            if duplicate is not None:
                return _item_with_hash(duplicate)
        return None

    def warm_cache(self, texts: Sequence[str]) -> int:
        """
        Embed every uncached text in *texts* with a single ``embed_batch``
        call.  Returns the number of texts embedded.
        """
        missing = [t for t in dict.fromkeys(texts) if not self._cache.contains(t)]
        if not missing:
            return 0
        try:
            vectors = self._embedder.embed_batch(missing)
        except MemoryEngineError:
            raise
        except Exception as exc:
            raise EmbeddingError(f"Batch embedding of {len(missing)} texts failed: {exc}") from exc
        if len(vectors) != len(missing):
            raise EmbeddingError(
                f"Embedder returned {len(vectors)} vectors for {len(missing)} texts"
            )
        for text, vector in zip(missing, vectors):
            self._cache.put(text, self._validate_vector(vector))
        return len(missing)

    def rebuild_index(self) -> None:
        """Reload the id index and deduplicators from the store."""
        with self._lock:
            index: dict[str, str] = {}
            dedups: dict[str, Deduplicator] = {}
            names = self._own_collections()
            for name in names:
                dedup = self._new_deduplicator()
                with _storage_stage("get_all", name):
                    metas = self._store.get_all(name)
                for meta in metas:
                    index[meta.id] = name
                    dedup.register(meta.text, meta.id)
                dedups[name] = dedup
            self._index = index
            self._dedup = dedups
        logger.debug("Indexed %d memories in %d collections", len(index), len(names))

    def stats(self, user_id: str | None = None) -> dict[str, Any]:
        """Counters describing the store, the cache and the id index."""
        collections = self._own_collections()
        if user_id is not None:
            _check_user_id(user_id)
            collections = [n for n in collections if n == self.config.collection_name(user_id)]
        with _storage_stage("count", "*"):
            memories = sum(self._store.count(n) for n in collections)
        with self._lock:
            indexed = len(self._index)
            dedup_entries = sum(d.cache_size() for d in self._dedup.values())
        return {
            "users": len(collections),
            "memories": memories,
            "indexed_ids": indexed,
            "dedup_strategy": self.config.dedup_strategy.value,
            "dedup_entries": dedup_entries,
            "cache_size": self._cache.size(),
            "cache_capacity": self._cache.max_size,
            "cache_occupancy": round(self._cache.hit_rate(), 4),
            "cache_hits": self._cache.hits,
            "cache_misses": self._cache.misses,
        }

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _own_collections(self) -> list[str]:
        """Collections named with this manager's prefix."""
        prefix = f"{self.config.collection_prefix}_"
        with _storage_stage("list_collections", "*"):
            return [n for n in self._store.list_collections() if n.startswith(prefix)]

    def _new_deduplicator(self) -> Deduplicator:
        return Deduplicator(self.config.dedup_strategy, self.config.similarity_threshold)

    def _deduplicator(self, name: str) -> Deduplicator:
        with self._lock:
            dedup = self._dedup.get(name)
            if dedup is None:
                dedup = self._dedup[name] = self._new_deduplicator()
            return dedup

    def _duplicate_of(
        self,
        name: str,
        content: str,
        vector: Sequence[float] | None = None,
    ) -> VectorMetadata | None:
        """
        Stored entry that *content* duplicates, if any.

        Without *vector* only the exact-hash registry is consulted; with one,
        the similarity strategy also searches the collection.
        """
        dedup = self._deduplicator(name)
        if not dedup.enabled:
            return None
        if vector is None:
            dup_id = dedup.get_duplicate(content)
            if dup_id is None:
                return None
            with _storage_stage("get", name):
                return self._store.get(name, dup_id)
        if dedup.strategy is not DeduplicationStrategy.SIMILARITY:
            return None
        with _storage_stage("search", name):
            if not self._store.collection_exists(name):
                return None
            hits = self._store.search(name, vector, 1, dedup.similarity_threshold)
        dup_id = dedup.find_similar(vector, [(h.id, h.score) for h in hits])
        if dup_id is None:
            return None
        return next(h.metadata for h in hits if h.id == dup_id)

    def _embed(self, text: str) -> list[float]:
        """Embedding of *text*, served from the cache when possible."""
        cached = self._cache.get(text)
        if cached is not None:
            return cached
        try:
            vector = self._embedder.embed(text)
        except MemoryEngineError:
            raise
        except Exception as exc:
            raise EmbeddingError(f"Embedding failed: {exc}") from exc
        vector = self._validate_vector(vector)
        self._cache.put(text, vector)
        return vector

    def _validate_vector(self, vector: Sequence[float]) -> list[float]:
        expected = self.config.vector_dimension
        if vector is None or len(vector) != expected:
            got = 0 if vector is None else len(vector)
            raise EmbeddingError(f"Embedder returned a vector of length {got}, expected {expected}")
        return [float(x) for x in vector]

    def _locate(self, memory_id: str) -> str:
        """Collection holding *memory_id*; probes the store once on an index miss."""
        if not isinstance(memory_id, str) or not memory_id:
            raise InvalidArgumentError("memory_id must be a non-empty string")
        with self._lock:
            name = self._index.get(memory_id)
        if name is None:
            name = self._discover(memory_id)
        if name is None:
            raise NotFoundError(f"Memory not found: {memory_id}")
        return name

    def _discover(self, memory_id: str) -> str | None:
        """
        Look *memory_id* up collection by collection and index it if found.

        Covers memories written by another manager on the same store.  Only
        point reads are issued and the manager lock is held just to record
        the hit.
        """
        for name in self._own_collections():
            with _storage_stage("get", name):
                meta = self._store.get(name, memory_id)
            if meta is not None:
                with self._lock:
                    self._index[memory_id] = name
                    self._deduplicator(name).register(meta.text, memory_id)
                logger.debug("Indexed %s from %s after a lookup miss", memory_id, name)
                return name
        return None

    def _forget(self, memory_id: str, name: str) -> None:
        with self._lock:
            if self._index.get(memory_id) == name:
                del self._index[memory_id]


def _check_user_id(user_id: str) -> None:
    if not isinstance(user_id, str) or not user_id.strip():
        raise InvalidArgumentError("user_id must be a non-empty string")


def _check_content(content: str) -> None:
    if not isinstance(content, str) or not content.strip():
        raise InvalidArgumentError("content must be a non-empty string")


def _item_with_hash(meta: VectorMetadata) -> MemoryItem:
    item = MemoryItem.from_vector_metadata(meta)
    item.hash = compute_hash(item.content)
    return item
