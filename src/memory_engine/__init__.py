"""
memory-engine: durable, queryable long-term memory for software agents.

Stores short text memories per user and retrieves them by semantic
nearest-neighbour search, with an embedding cache and optional content
deduplication.
"""

from .batch import BatchOp, BatchOpType, BatchProcessor, BatchResult
from .config import MemoryConfig
from .dedup import DeduplicationStrategy, Deduplicator
from .embeddings import Embedder, EmbeddingCache, HashEmbedder, SentenceTransformerEmbedder
from .errors import (
    CollectionNotFoundError,
    ConfigError,
    EmbeddingError,
    InvalidArgumentError,
    MemoryEngineError,
    NotFoundError,
    SerializationError,
    StorageError,
)
from .memory import MemoryManager
from .models import MemoryItem, SearchResult, SearchResultItem, VectorMetadata
from .store import InMemoryVectorStore, VectorStoreBase, cosine_similarity

__all__ = [
    "BatchOp",
    "BatchOpType",
    "BatchProcessor",
    "BatchResult",
    "CollectionNotFoundError",
    "ConfigError",
    "DeduplicationStrategy",
    "Deduplicator",
    "Embedder",
    "EmbeddingCache",
    "EmbeddingError",
    "HashEmbedder",
    "InMemoryVectorStore",
    "InvalidArgumentError",
    "MemoryConfig",
    "MemoryEngineError",
    "MemoryItem",
    "MemoryManager",
    "NotFoundError",
    "SearchResult",
    "SearchResultItem",
    "SentenceTransformerEmbedder",
    "SerializationError",
    "StorageError",
    "VectorMetadata",
    "VectorStoreBase",
    "cosine_similarity",
]
