"""
Engine configuration.

``MemoryConfig`` is built once and never mutated.  Defaults are applied at
construction; ``MemoryConfig.from_env`` resolves overrides from the
environment:

    MEMORY_ENGINE_DIMENSION           - vector dimension (default: 384)
    MEMORY_ENGINE_COLLECTION_PREFIX   - per-user collection prefix (default: memory)
    MEMORY_ENGINE_BATCH_SIZE          - batch size for bulk operations (default: 32)
    MEMORY_ENGINE_CACHE_SIZE          - embedding cache capacity (default: 1024)
    MEMORY_ENGINE_DEDUP               - none | exact | similarity (default: none)
    MEMORY_ENGINE_SIMILARITY          - similarity dedup threshold (default: 0.95)
    MEMORY_ENGINE_BACKEND             - memory | chroma (default: memory)
    MEMORY_ENGINE_DB_PATH             - ChromaDB path (default: ~/.cache/memory-engine)
    MEMORY_ENGINE_EMBEDDER            - hash | sentence-transformers (default: hash)
    MEMORY_ENGINE_MODEL               - sentence-transformers model (default: all-MiniLM-L6-v2)
"""

from __future__ import annotations

import hashlib
import os
import re
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from .dedup import SIMILARITY_THRESHOLD, DeduplicationStrategy
from .embeddings import DEFAULT_DIMENSION, DEFAULT_MODEL
from .errors import ConfigError

BACKENDS = ("memory", "chroma")
EMBEDDERS = ("hash", "sentence-transformers")

DEFAULT_DB_PATH = str(Path.home() / ".cache" / "memory-engine")

# No underscore: it separates the prefix from the user part of a collection name.
_PREFIX_RE = re.compile(r"^[A-Za-z0-9](?:[A-Za-z0-9-]*[A-Za-z0-9])?$")
_SAFE_USER_RE = re.compile(r"^[A-Za-z0-9](?:[A-Za-z0-9_-]{0,30}[A-Za-z0-9])?$")
_UNSAFE_CHARS_RE = re.compile(r"[^A-Za-z0-9_-]+")


@dataclass(frozen=True)
class MemoryConfig:
    vector_dimension: int = DEFAULT_DIMENSION
    collection_prefix: str = "memory"
    batch_size: int = 32
    cache_size: int = 1024
    dedup_strategy: DeduplicationStrategy = DeduplicationStrategy.NONE
    similarity_threshold: float = SIMILARITY_THRESHOLD
    backend: str = "memory"
    db_path: str = DEFAULT_DB_PATH
    embedder: str = "hash"
    embedding_model: str = DEFAULT_MODEL

    def __post_init__(self) -> None:
        try:
            strategy = DeduplicationStrategy(self.dedup_strategy)
        except ValueError:
            raise ConfigError(f"Unknown dedup strategy: {self.dedup_strategy!r}") from None
        object.__setattr__(self, "dedup_strategy", strategy)

        if self.vector_dimension < 1:
            raise ConfigError(f"vector_dimension must be positive, got {self.vector_dimension}")
        if self.batch_size < 1:
            raise ConfigError(f"batch_size must be positive, got {self.batch_size}")
        if self.cache_size < 1:
            raise ConfigError(f"cache_size must be positive, got {self.cache_size}")
        if not -1.0 <= self.similarity_threshold <= 1.0:
            raise ConfigError(
                f"similarity_threshold must be within [-1, 1], got {self.similarity_threshold}"
            )
        if not _PREFIX_RE.match(self.collection_prefix):
            raise ConfigError(f"Invalid collection prefix: {self.collection_prefix!r}")
        if self.backend not in BACKENDS:
            raise ConfigError(f"Unknown backend {self.backend!r}; expected one of {BACKENDS}")
        if self.embedder not in EMBEDDERS:
            raise ConfigError(f"Unknown embedder {self.embedder!r}; expected one of {EMBEDDERS}")

    def collection_name(self, user_id: str) -> str:
        """
        Name of the collection holding *user_id*'s memories.

        User ids that are not valid collection-name characters (e-mail
        addresses, spaces, a trailing ``_`` ...) are sanitised and suffixed
        with a short SHA-256 of the original id, so distinct ids keep
        distinct collections.
        """
        if _SAFE_USER_RE.match(user_id):
            return f"{self.collection_prefix}_{user_id}"
        safe = _UNSAFE_CHARS_RE.sub("-", user_id).strip("_-")[:24]
        digest = hashlib.sha256(user_id.encode("utf-8")).hexdigest()[:12]
        user_part = f"{safe}-{digest}" if safe else digest
        return f"{self.collection_prefix}_{user_part}"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> MemoryConfig:
        env = os.environ if environ is None else environ
        defaults = cls()

        def _int(name: str, default: int) -> int:
            value = env.get(name)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError:
                raise ConfigError(f"{name} must be an integer, got {value!r}") from None

        def _float(name: str, default: float) -> float:
            value = env.get(name)
            if value is None:
                return default
            try:
                return float(value)
            except ValueError:
                raise ConfigError(f"{name} must be a number, got {value!r}") from None

        return cls(
            vector_dimension=_int("MEMORY_ENGINE_DIMENSION", defaults.vector_dimension),
            collection_prefix=env.get("MEMORY_ENGINE_COLLECTION_PREFIX", defaults.collection_prefix),
            batch_size=_int("MEMORY_ENGINE_BATCH_SIZE", defaults.batch_size),
            cache_size=_int("MEMORY_ENGINE_CACHE_SIZE", defaults.cache_size),
            dedup_strategy=env.get("MEMORY_ENGINE_DEDUP", defaults.dedup_strategy.value),
            similarity_threshold=_float("MEMORY_ENGINE_SIMILARITY", defaults.similarity_threshold),
            backend=env.get("MEMORY_ENGINE_BACKEND", defaults.backend),
            db_path=env.get("MEMORY_ENGINE_DB_PATH", defaults.db_path),
            embedder=env.get("MEMORY_ENGINE_EMBEDDER", defaults.embedder),
            embedding_model=env.get("MEMORY_ENGINE_MODEL", defaults.embedding_model),
        )
