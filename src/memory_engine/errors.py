"""
Exception hierarchy for memory-engine.

Every error raised by the engine derives from :class:`MemoryEngineError`, so
callers can catch the whole family in one place or single out a stage
(storage, embedding, ...) when they need to.
"""

from __future__ import annotations


class MemoryEngineError(Exception):
    """Base class for all memory-engine errors."""


class ConfigError(MemoryEngineError):
    """Invalid or inconsistent configuration."""


class StorageError(MemoryEngineError):
    """A vector store operation failed."""


class EmbeddingError(MemoryEngineError):
    """The embedder failed or returned a malformed vector."""


class MemoryDomainError(MemoryEngineError):
    """A memory item is in an invalid state."""


class SerializationError(MemoryEngineError):
    """A record could not be converted to or from its serialized form."""


class NotFoundError(MemoryEngineError):
    """The requested memory or collection does not exist."""


class InvalidArgumentError(MemoryEngineError, ValueError):
    """A caller supplied an argument outside the accepted domain."""


class OperationTimeoutError(MemoryEngineError):
    """An operation exceeded its deadline."""


class AuthenticationError(MemoryEngineError):
    """A backend rejected the supplied credentials."""


class InternalError(MemoryEngineError):
    """An invariant inside the engine was violated."""


class CollectionNotFoundError(StorageError, NotFoundError):
    """The named collection does not exist in the vector store."""

    def __init__(self, collection_name: str) -> None:
        super().__init__(f"Collection not found: {collection_name}")
        self.collection_name = collection_name
