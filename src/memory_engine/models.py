"""
Record types shared by the storage and orchestration layers.

``MemoryItem`` is the orchestrator-level record.  On write it is projected
into a ``VectorMetadata`` which is what the vector store actually keeps.
The projection drops the content hash, so items reconstructed from storage
carry an empty ``hash`` field.
"""

from __future__ import annotations

import hashlib
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from .errors import SerializationError

DEFAULT_MEMORY_TYPE: str = "general"


def compute_hash(content: str) -> str:
    """Return the SHA-256 hex digest of *content*."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def generate_id() -> str:
    """Return a new unique memory ID."""
    return str(uuid.uuid4())


def utc_now() -> str:
    """Current time as an ISO-8601 UTC timestamp."""
    return datetime.now(timezone.utc).isoformat()


@dataclass
class VectorMetadata:
    """Persisted projection of a memory item."""

    id: str
    user_id: str
    text: str
    memory_type: str = DEFAULT_MEMORY_TYPE
    created_at: str = ""
    updated_at: str = ""
    agent_id: str | None = None
    run_id: str | None = None
    custom_metadata: dict[str, str] = field(default_factory=dict)


@dataclass
class SearchResult:
    """A single hit returned by a vector store search."""

    id: str
    score: float
    metadata: VectorMetadata


@dataclass
class MemoryItem:
    id: str
    user_id: str
    content: str
    memory_type: str = DEFAULT_MEMORY_TYPE
    hash: str = ""
    created_at: str = ""
    updated_at: str = ""
    agent_id: str | None = None
    run_id: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)

    @classmethod
    def new(
        cls,
        user_id: str,
        content: str,
        memory_type: str | None = None,
        *,
        agent_id: str | None = None,
        run_id: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> MemoryItem:
        """Create a fresh item with a new ID, content hash and timestamps."""
        now = utc_now()
        return cls(
            id=generate_id(),
            user_id=user_id,
            content=content,
            memory_type=memory_type or DEFAULT_MEMORY_TYPE,
            hash=compute_hash(content),
            created_at=now,
            updated_at=now,
            agent_id=agent_id,
            run_id=run_id,
            metadata={str(k): str(v) for k, v in (metadata or {}).items()},
        )

    @classmethod
    def from_vector_metadata(cls, meta: VectorMetadata) -> MemoryItem:
        # The hash is not persisted; reconstruction leaves it empty.
        return cls(
            id=meta.id,
            user_id=meta.user_id,
            content=meta.text,
            memory_type=meta.memory_type,
            hash="",
            created_at=meta.created_at,
            updated_at=meta.updated_at,
            agent_id=meta.agent_id,
            run_id=meta.run_id,
            metadata=dict(meta.custom_metadata),
        )

    def to_vector_metadata(self) -> VectorMetadata:
        return VectorMetadata(
            id=self.id,
            user_id=self.user_id,
            text=self.content,
            memory_type=self.memory_type,
            created_at=self.created_at,
            updated_at=self.updated_at,
            agent_id=self.agent_id,
            run_id=self.run_id,
            custom_metadata=dict(self.metadata),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "agent_id": self.agent_id,
            "run_id": self.run_id,
            "content": self.content,
            "memory_type": self.memory_type,
            "hash": self.hash,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Any) -> MemoryItem:
        """
        Rebuild an item from a dict produced by :meth:`to_dict`.

        Only ``id``, ``user_id`` and ``content`` are required.  Raises
        :class:`SerializationError` for anything that is not a mapping with
        string values in those fields.
        """
        if not isinstance(data, dict):
            raise SerializationError(f"Expected a mapping, got {type(data).__name__}")
        for key in ("id", "user_id", "content"):
            if not isinstance(data.get(key), str):
                raise SerializationError(f"Field {key!r} must be a string")
        metadata = data.get("metadata") or {}
        if not isinstance(metadata, dict):
            raise SerializationError("Field 'metadata' must be a mapping")
        return cls(
            id=data["id"],
            user_id=data["user_id"],
            content=data["content"],
            memory_type=data.get("memory_type") or DEFAULT_MEMORY_TYPE,
            hash=data.get("hash") or "",
            created_at=data.get("created_at") or "",
            updated_at=data.get("updated_at") or "",
            agent_id=data.get("agent_id"),
            run_id=data.get("run_id"),
            metadata={str(k): str(v) for k, v in metadata.items()},
        )


@dataclass
class SearchResultItem:
    """A memory paired with its similarity to the query."""

    memory: MemoryItem
    score: float

    def to_dict(self) -> dict[str, Any]:
        data = self.memory.to_dict()
        data["score"] = self.score
        return data
