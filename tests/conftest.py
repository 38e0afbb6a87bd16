"""
Shared pytest fixtures for memory-engine tests.

Uses the in-process vector store (or ChromaDB in ephemeral mode) and the
deterministic hash embedder so that tests run fast without downloading
any ML models.
"""

from __future__ import annotations

import hashlib
import uuid
from collections.abc import Sequence

import chromadb
import pytest

from memory_engine.chroma_store import ChromaVectorStore
from memory_engine.config import MemoryConfig
from memory_engine.embeddings import Embedder, HashEmbedder
from memory_engine.memory import MemoryManager
from memory_engine.models import VectorMetadata
from memory_engine.store import InMemoryVectorStore

DIM = 16


class FakeEmbeddingFunction:
    """
    Stand-in for a ChromaDB sentence-transformer embedding function: maps
    text to a unit vector derived from its MD5 hash.
    """

    def __init__(self) -> None:
        self.calls = 0

    def __call__(self, input: list[str]) -> list[list[float]]:  # noqa: A002
        self.calls += 1
        embeddings = []
        for text in input:
            digest = hashlib.md5(text.encode()).digest()
            # 16-byte digest → 16-dim float vector in [-1, 1]
            vec = [(b - 128) / 128.0 for b in digest]
            norm = sum(x * x for x in vec) ** 0.5 or 1.0
            embeddings.append([x / norm for x in vec])
        return embeddings


class CountingEmbedder(Embedder):
    """Hash embedder that records how often it is asked for vectors."""

    def __init__(self, dimension: int = DIM) -> None:
        self._inner = HashEmbedder(dimension)
        self.embed_calls = 0
        self.batch_calls = 0

    def embed(self, text: str) -> list[float]:
        self.embed_calls += 1
        return self._inner.embed(text)

    def embed_batch(self, texts: Sequence[str]) -> list[list[float]]:
        self.batch_calls += 1
        return [self._inner.embed(t) for t in texts]

    def dimension(self) -> int:
        return self._inner.dimension()


class StaticEmbedder(Embedder):
    """Returns hand-picked vectors, falling back to a hash embedding."""

    def __init__(self, vectors: dict[str, list[float]], dimension: int) -> None:
        self.vectors = vectors
        self._fallback = HashEmbedder(dimension)

    def embed(self, text: str) -> list[float]:
        return self.vectors.get(text) or self._fallback.embed(text)

    def dimension(self) -> int:
        return self._fallback.dimension()


class FailingEmbedder(Embedder):
    def embed(self, text: str) -> list[float]:
        raise RuntimeError("model unavailable")

    def dimension(self) -> int:
        return DIM


def make_meta(id: str, text: str = "text", user_id: str = "u1", **kwargs) -> VectorMetadata:
    return VectorMetadata(
        id=id,
        user_id=user_id,
        text=text,
        memory_type=kwargs.pop("memory_type", "fact"),
        created_at="2024-01-01T00:00:00+00:00",
        updated_at="2024-01-01T00:00:00+00:00",
        **kwargs,
    )


# A single shared EphemeralClient instance for the test session.
# Each fixture call uses unique collection names so tests are isolated.
_EPHEMERAL_CLIENT = chromadb.EphemeralClient()


@pytest.fixture()
def memory_store() -> InMemoryVectorStore:
    return InMemoryVectorStore()


@pytest.fixture()
def chroma_store() -> ChromaVectorStore:
    return ChromaVectorStore(_client=_EPHEMERAL_CLIENT)


@pytest.fixture()
def unique_name() -> str:
    return f"test_{uuid.uuid4().hex}"


@pytest.fixture()
def config() -> MemoryConfig:
    # Unique prefix: the ephemeral Chroma client is shared across tests.
    return MemoryConfig(vector_dimension=DIM, collection_prefix=f"t{uuid.uuid4().hex[:12]}")


@pytest.fixture()
def embedder() -> CountingEmbedder:
    return CountingEmbedder()


@pytest.fixture()
def memory_manager(
    config: MemoryConfig, memory_store: InMemoryVectorStore, embedder: CountingEmbedder
) -> MemoryManager:
    """MemoryManager wired to a fresh in-memory store."""
    return MemoryManager(config, _store=memory_store, _embedder=embedder)
