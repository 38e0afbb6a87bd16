"""
MCP (Model Context Protocol) server for memory-engine.

Exposes the MemoryManager as a set of tools so that an agent can persist
and retrieve per-user memories across sessions.

Run as a stdio server:
    python -m memory_engine.mcp_server

Or via the installed entry-point:
    memory-engine-mcp

Configuration comes from ``MEMORY_ENGINE_*`` environment variables (see
:mod:`memory_engine.config`).  ``MEMORY_ENGINE_LOG_LEVEL`` sets the log
level; logs go to stderr because stdout carries the protocol.
"""

from __future__ import annotations

import json
import logging
import os
import sys

from mcp.server.fastmcp import FastMCP

from . import batch
from .config import MemoryConfig
from .errors import NotFoundError
from .memory import MemoryManager

logger = logging.getLogger(__name__)

# Lazy-initialised singleton so the backend and model are only loaded once.
_manager: MemoryManager | None = None


def _get_manager() -> MemoryManager:
    global _manager
    if _manager is None:
        _manager = MemoryManager(MemoryConfig.from_env())
    return _manager


# ---------------------------------------------------------------------------
# FastMCP server
# ---------------------------------------------------------------------------

mcp = FastMCP(
    "memory-engine",
    instructions=(
        "Long-term per-user memory. "
        "Use `add_memory` to save facts, preferences or insights about a user. "
        "Use `search_memories` to recall what is relevant to the current task. "
        "Use `update_memory` or `delete_memory` to correct or remove an entry. "
        "Use `list_memories` to browse a user's memories, `export_memories` and "
        "`import_memories` to move them to and from JSON files, and "
        "`memory_stats` for counters."
    ),
)


@mcp.tool()
def add_memory(user_id: str, content: str, memory_type: str = "general") -> str:
    """
    Store a memory for a user.

    Args:
        user_id:     User the memory belongs to.
        content:     The text to remember.
        memory_type: Free-form tag, e.g. "fact", "preference", "insight".

    Returns:
        JSON object describing the stored memory.
    """
    item = _get_manager().add(user_id, content, memory_type)
    return json.dumps(item.to_dict(), indent=2)


@mcp.tool()
def search_memories(user_id: str, query: str, limit: int = 5) -> str:
    """
    Find a user's memories most similar to a natural-language query.

    Args:
        user_id: User whose memories are searched.
        query:   Question or topic to search for.
        limit:   Maximum number of memories to return (default 5).

    Returns:
        JSON array of memories with a ``score`` field, best match first.
    """
    results = _get_manager().search(user_id, query, limit=limit)
    if not results:
        return "No memories found."
    simplified = [
        {
            "id": r.memory.id,
            "content": r.memory.content,
            "memory_type": r.memory.memory_type,
            "score": round(r.score, 4),
            "updated_at": r.memory.updated_at,
        }
        for r in results
    ]
    return json.dumps(simplified, indent=2)


@mcp.tool()
def update_memory(memory_id: str, content: str) -> str:
    """
    Replace the content of an existing memory.

    Args:
        memory_id: ID returned by add_memory or list_memories.
        content:   New text for the memory.

    Returns:
        JSON object describing the updated memory.
    """
    try:
        item = _get_manager().update(memory_id, content)
    except NotFoundError:
        return f"Memory {memory_id} not found."
    return json.dumps(item.to_dict(), indent=2)


@mcp.tool()
def delete_memory(memory_id: str) -> str:
    """
    Delete a stored memory by its ID.

    Args:
        memory_id: ID returned by add_memory or list_memories.

    Returns:
        A confirmation message.
    """
    try:
        _get_manager().delete(memory_id)
    except NotFoundError:
        return f"Memory {memory_id} not found."
    return f"Deleted memory {memory_id}."


@mcp.tool()
def list_memories(user_id: str, limit: int = 50) -> str:
    """
    List a user's memories (no ranking applied).

    Args:
        user_id: User whose memories are listed.
        limit:   Maximum number of entries to return (default 50).

    Returns:
        JSON array of memory records.
    """
    items = _get_manager().get_all(user_id)[:limit]
    if not items:
        return "No memories stored."
    return json.dumps([item.to_dict() for item in items], indent=2)


@mcp.tool()
def export_memories(user_id: str, path: str) -> str:
    """
    Write all of a user's memories to a JSON file.

    Args:
        user_id: User whose memories are exported.
        path:    Destination file.

    Returns:
        A short message with the number of exported memories.
    """
    n = batch.export_memories(_get_manager(), user_id, path)
    return f"Exported {n} {'memory' if n == 1 else 'memories'} to {path}."


@mcp.tool()
def import_memories(user_id: str, path: str) -> str:
    """
    Add memories from a JSON file (an array of records with ``content`` and
    optional ``memory_type``).

    Args:
        user_id: User the memories are added to.
        path:    Source file.

    Returns:
        JSON object with total, successful and failed counts and any errors.
    """
    result = batch.import_memories(_get_manager(), user_id, path)
    return json.dumps(result.to_dict(), indent=2)


@mcp.tool()
def memory_stats(user_id: str | None = None) -> str:
    """
    Report counters for the memory store and embedding cache.

    Args:
        user_id: Restrict memory counts to one user (default: all users).

    Returns:
        JSON object of counters.
    """
    return json.dumps(_get_manager().stats(user_id), indent=2)


# ---------------------------------------------------------------------------
# Entry-point
# ---------------------------------------------------------------------------


def main() -> None:
    """Run the MCP server over stdio."""
    logging.basicConfig(
        stream=sys.stderr,
        level=os.environ.get("MEMORY_ENGINE_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.info("Starting memory-engine MCP server")
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
