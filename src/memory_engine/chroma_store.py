"""
Persistent vector store backed by ChromaDB.

Satisfies the same contract as the in-memory store.  Collections use cosine
space so that distances returned by queries are in the range [0, 2]:

    distance = 1 - cosine_similarity
    cosine_similarity ∈ [-1, 1]  →  distance ∈ [0, 2]

Embeddings are always supplied by the caller; no Chroma embedding function
is attached to the collections.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

import chromadb

from .errors import CollectionNotFoundError, StorageError
from .models import SearchResult, VectorMetadata
from .store import VectorRecord, VectorStoreBase, rank_results

logger = logging.getLogger(__name__)

#: Prefix for user metadata keys when flattened into Chroma metadata.
CUSTOM_PREFIX = "meta."


def to_chroma_metadata(meta: VectorMetadata) -> dict[str, Any]:
    """Flatten *meta* into the scalar-only mapping Chroma accepts."""
    flat: dict[str, Any] = {
        "id": meta.id,
        "user_id": meta.user_id,
        "memory_type": meta.memory_type,
        "created_at": meta.created_at,
        "updated_at": meta.updated_at,
    }
    # Chroma rejects None values.
    if meta.agent_id is not None:
        flat["agent_id"] = meta.agent_id
    if meta.run_id is not None:
        flat["run_id"] = meta.run_id
    for key, value in meta.custom_metadata.items():
        flat[f"{CUSTOM_PREFIX}{key}"] = value
    return flat


def from_chroma_metadata(id: str, document: str | None, flat: dict[str, Any] | None) -> VectorMetadata:
    flat = flat or {}
    custom = {
        key[len(CUSTOM_PREFIX):]: str(value)
        for key, value in flat.items()
        if key.startswith(CUSTOM_PREFIX)
    }
    return VectorMetadata(
        id=str(flat.get("id", id)),
        user_id=str(flat.get("user_id", "")),
        text=document or "",
        memory_type=str(flat.get("memory_type", "general")),
        created_at=str(flat.get("created_at", "")),
        updated_at=str(flat.get("updated_at", "")),
        agent_id=flat.get("agent_id"),
        run_id=flat.get("run_id"),
        custom_metadata=custom,
    )


class ChromaVectorStore(VectorStoreBase):
    """
    Durable vector store using a local ChromaDB client.

    Parameters
    ----------
    path:
        Filesystem path for the ChromaDB persistent store.
    _client:
        Pre-built client, used by tests to inject an ``EphemeralClient``.
    """

    def __init__(
        self,
        path: str = "./chroma_db",
        _client: Any | None = None,
    ) -> None:
        self.client = _client or chromadb.PersistentClient(path=path)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _create(self, name: str, dimension: int):
        try:
            return self.client.get_or_create_collection(
                name=name,
                embedding_function=None,
                metadata={"hnsw:space": "cosine", "dimension": dimension},
            )
        except Exception as exc:
            raise StorageError(f"Cannot create collection {name}: {exc}") from exc

    def _collection(self, name: str):
        try:
            return self.client.get_collection(name=name, embedding_function=None)
        except Exception as exc:
            raise StorageError(f"Cannot open collection {name}: {exc}") from exc

    def _existing(self, name: str):
        if not self.collection_exists(name):
            raise CollectionNotFoundError(name)
        return self._collection(name)

    # ------------------------------------------------------------------
    # Write operations
    # ------------------------------------------------------------------

    def create_collection(self, name: str, dimension: int) -> None:
        if self.collection_exists(name):
            return
        self._create(name, dimension)
        logger.info("Created Chroma collection %s (dim=%d)", name, dimension)

    def upsert(self, name: str, records: Sequence[VectorRecord]) -> None:
        if not records:
            return
        if self.collection_exists(name):
            collection = self._collection(name)
        else:
            # Auto-create, mirroring the orchestrator's lazy collections.
            collection = self._create(name, len(records[0][1]))
            logger.info("Auto-created Chroma collection %s on upsert", name)
        try:
            collection.upsert(
                ids=[id_ for id_, _, _ in records],
                embeddings=[[float(x) for x in vector] for _, vector, _ in records],
                documents=[meta.text for _, _, meta in records],
                metadatas=[to_chroma_metadata(meta) for _, _, meta in records],
            )
        except Exception as exc:
            raise StorageError(f"Upsert into {name} failed: {exc}") from exc
        logger.debug("Upserted %d record(s) into %s", len(records), name)

    def delete(self, name: str, ids: Sequence[str]) -> None:
        if not ids or not self.collection_exists(name):
            return
        try:
            self._collection(name).delete(ids=list(ids))
        except Exception as exc:
            raise StorageError(f"Delete from {name} failed: {exc}") from exc

    def delete_collection(self, name: str) -> None:
        if not self.collection_exists(name):
            return
        try:
            self.client.delete_collection(name=name)
        except Exception as exc:
            raise StorageError(f"Cannot delete collection {name}: {exc}") from exc
        logger.info("Deleted Chroma collection %s", name)

    # ------------------------------------------------------------------
    # Read operations
    # ------------------------------------------------------------------

    def list_collections(self) -> list[str]:
        try:
            collections = self.client.list_collections()
        except Exception as exc:
            raise StorageError(f"Cannot list collections: {exc}") from exc
        # Older clients return Collection objects, newer ones plain names.
        return [getattr(c, "name", c) for c in collections]

    def collection_exists(self, name: str) -> bool:
        return name in self.list_collections()

    def search(
        self,
        name: str,
        query_vector: Sequence[float],
        limit: int,
        score_threshold: float | None = None,
    ) -> list[SearchResult]:
        collection = self._existing(name)
        n = min(limit, collection.count())
        if n <= 0:
            return []
        try:
            raw = collection.query(
                query_embeddings=[[float(x) for x in query_vector]],
                n_results=n,
                include=["documents", "metadatas", "distances"],
            )
        except Exception as exc:
            raise StorageError(f"Search in {name} failed: {exc}") from exc

        ids = raw["ids"][0]
        documents = (raw.get("documents") or [[None] * len(ids)])[0]
        metadatas = (raw.get("metadatas") or [[None] * len(ids)])[0]
        distances = raw["distances"][0]
        results = [
            SearchResult(
                id=ids[i],
                score=1.0 - float(distances[i]),
                metadata=from_chroma_metadata(ids[i], documents[i], metadatas[i]),
            )
            for i in range(len(ids))
        ]
        return rank_results(results, limit, score_threshold)

    def count(self, name: str) -> int:
        if not self.collection_exists(name):
            return 0
        return self._collection(name).count()

    def get(self, name: str, id: str) -> VectorMetadata | None:
        if not self.collection_exists(name):
            return None
        raw = self._collection(name).get(ids=[id], include=["documents", "metadatas"])
        if not raw["ids"]:
            return None
        return from_chroma_metadata(raw["ids"][0], raw["documents"][0], raw["metadatas"][0])

    def get_all(self, name: str) -> list[VectorMetadata]:
        if not self.collection_exists(name):
            return []
        raw = self._collection(name).get(include=["documents", "metadatas"])
        ids = raw.get("ids") or []
        docs = raw.get("documents") or [None] * len(ids)
        metas = raw.get("metadatas") or [None] * len(ids)
        return [from_chroma_metadata(ids[i], docs[i], metas[i]) for i in range(len(ids))]
