"""
Bulk operations on top of :class:`~memory_engine.memory.MemoryManager`.

The manager itself never applies part of a call.  This module is the layer
that runs many calls and keeps going when some of them fail, tallying the
outcome in a :class:`BatchResult`.  It also moves a user's whole memory set
to and from JSON files.
"""

from __future__ import annotations

import enum
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from .errors import EmbeddingError, InvalidArgumentError, MemoryEngineError, SerializationError

if TYPE_CHECKING:
    from .memory import MemoryManager

logger = logging.getLogger(__name__)


class BatchOpType(str, enum.Enum):
    ADD = "add"
    UPDATE = "update"
    DELETE = "delete"


@dataclass
class BatchOp:
    op_type: BatchOpType
    memory_id: str | None = None
    content: str | None = None
    memory_type: str | None = None
    metadata: dict[str, str] | None = None

    @classmethod
    def add(
        cls,
        content: str,
        memory_type: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> BatchOp:
        return cls(BatchOpType.ADD, content=content, memory_type=memory_type, metadata=metadata)

    @classmethod
    def update(cls, memory_id: str, content: str) -> BatchOp:
        return cls(BatchOpType.UPDATE, memory_id=memory_id, content=content)

    @classmethod
    def delete(cls, memory_id: str) -> BatchOp:
        return cls(BatchOpType.DELETE, memory_id=memory_id)

    def describe(self) -> str:
        return f"{self.op_type.value} {self.memory_id}" if self.memory_id else self.op_type.value


@dataclass
class BatchResult:
    """Outcome of a bulk run: attempted, succeeded, failed and why."""

    total: int
    successful: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)
    memory_ids: list[str] = field(default_factory=list)

    def add_success(self, memory_id: str | None = None) -> None:
        self.successful += 1
        if memory_id:
            self.memory_ids.append(memory_id)

    def add_error(self, error: str) -> None:
        self.failed += 1
        self.errors.append(error)

    def all_succeeded(self) -> bool:
        return self.failed == 0

    def success_rate(self) -> float:
        if self.total == 0:
            return 1.0
        return self.successful / self.total

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "successful": self.successful,
            "failed": self.failed,
            "errors": list(self.errors),
            "memory_ids": list(self.memory_ids),
        }


class BatchProcessor:
    """
    Applies operations in fixed-size batches.

    Each batch first embeds all of its new texts with one ``embed_batch``
    call, then runs the operations one by one.  With *continue_on_error*
    (the default) a failing operation is recorded and the run goes on;
    otherwise the first failure is raised.
    """

    def __init__(self, batch_size: int = 32, continue_on_error: bool = True) -> None:
        if batch_size < 1:
            raise InvalidArgumentError(f"batch_size must be positive, got {batch_size}")
        self.batch_size = batch_size
        self.continue_on_error = continue_on_error

    def split_into_batches(self, ops: list[BatchOp]) -> list[list[BatchOp]]:
        return [ops[i : i + self.batch_size] for i in range(0, len(ops), self.batch_size)]

    @staticmethod
    def optimize_batch_size(op_count: int) -> int:
        """Suggested batch size for *op_count* operations."""
        if op_count < 10:
            return op_count
        if op_count < 100:
            return 10
        if op_count < 1000:
            return 32
        return 64

    def process(self, manager: MemoryManager, user_id: str, ops: list[BatchOp]) -> BatchResult:
        result = BatchResult(total=len(ops))
        for batch in self.split_into_batches(ops):
            texts = [op.content for op in batch if op.content and op.op_type is not BatchOpType.DELETE]
            try:
                manager.warm_cache(texts)
            except EmbeddingError as exc:
                # Each operation embeds on its own below and records its failure.
                logger.warning("Batch embedding failed, falling back to single calls: %s", exc)

            for op in batch:
                try:
                    memory_id = self._apply(manager, user_id, op)
                except MemoryEngineError as exc:
                    if not self.continue_on_error:
                        raise
                    logger.warning("Batch operation %s failed: %s", op.describe(), exc)
                    result.add_error(f"{op.describe()}: {exc}")
                else:
                    result.add_success(memory_id)
        logger.info(
            "Batch for %s finished: %d/%d succeeded", user_id, result.successful, result.total
        )
        return result

    @staticmethod
    def _apply(manager: MemoryManager, user_id: str, op: BatchOp) -> str:
        if op.op_type is BatchOpType.ADD:
            if op.content is None:
                raise InvalidArgumentError("add operation requires content")
            return manager.add(user_id, op.content, op.memory_type, metadata=op.metadata).id
        if op.memory_id is None:
            raise InvalidArgumentError(f"{op.op_type.value} operation requires a memory_id")
        if op.op_type is BatchOpType.UPDATE:
            if op.content is None:
                raise InvalidArgumentError("update operation requires content")
            return manager.update(op.memory_id, op.content).id
        manager.delete(op.memory_id)
        return op.memory_id


# ---------------------------------------------------------------------------
# Export / import
# ---------------------------------------------------------------------------


def export_memories(manager: MemoryManager, user_id: str, path: str | Path) -> int:
    """Write every memory of *user_id* to *path* as a JSON array.  Returns the count."""
    items = manager.get_all(user_id)
    try:
        Path(path).write_text(json.dumps([item.to_dict() for item in items], indent=2))
    except OSError as exc:
        raise SerializationError(f"Cannot write {path}: {exc}") from exc
    logger.info("Exported %d memories of %s to %s", len(items), user_id, path)
    return len(items)


def load_records(text: str) -> list[dict]:
    """Parse an exported memory file.  The top level must be a JSON array."""
    try:
        records = json.loads(text)
    except json.JSONDecodeError as exc:
        raise SerializationError(f"Invalid JSON: {exc}") from exc
    if not isinstance(records, list):
        raise SerializationError("Expected a JSON array of memory records")
    return records


def import_memories(
    manager: MemoryManager,
    user_id: str,
    path: str | Path,
    processor: BatchProcessor | None = None,
) -> BatchResult:
    """
    Add every record in the JSON file at *path* to *user_id*'s memories.

    Records need a string ``content``; ``memory_type`` and ``metadata`` are
    optional and everything else is ignored.  Malformed records are counted
    as failures rather than aborting the import.
    """
    try:
        text = Path(path).read_text()
    except OSError as exc:
        raise SerializationError(f"Cannot read {path}: {exc}") from exc
    records = load_records(text)

    ops: list[BatchOp] = []
    rejected: list[str] = []
    for i, record in enumerate(records):
        if not isinstance(record, dict) or not isinstance(record.get("content"), str):
            rejected.append(f"record {i}: missing string 'content'")
            continue
        metadata = record.get("metadata")
        ops.append(
            BatchOp.add(
                record["content"],
                record.get("memory_type"),
                metadata if isinstance(metadata, dict) else None,
            )
        )

    processor = processor or BatchProcessor(manager.config.batch_size)
    result = processor.process(manager, user_id, ops)
    result.total += len(rejected)
    for error in rejected:
        result.add_error(error)
    return result
