"""Tests for the memory record types."""

from __future__ import annotations

import pytest

from memory_engine.errors import SerializationError
from memory_engine.models import MemoryItem, SearchResultItem, compute_hash


class TestMemoryItem:
    def test_new_sets_id_hash_and_timestamps(self):
        item = MemoryItem.new("user_1", "I like coffee", "preference")
        assert item.id
        assert item.user_id == "user_1"
        assert item.memory_type == "preference"
        assert item.hash == compute_hash("I like coffee")
        assert item.created_at == item.updated_at
        assert item.created_at.endswith("+00:00")

    def test_new_defaults_memory_type(self):
        assert MemoryItem.new("u", "text").memory_type == "general"

    def test_new_ids_are_unique(self):
        assert MemoryItem.new("u", "same").id != MemoryItem.new("u", "same").id

    def test_vector_metadata_projection_drops_hash(self):
        item = MemoryItem.new("u", "hello", agent_id="agent", metadata={"source": "chat"})
        meta = item.to_vector_metadata()
        assert meta.text == "hello"
        assert meta.agent_id == "agent"
        assert meta.custom_metadata == {"source": "chat"}

        rebuilt = MemoryItem.from_vector_metadata(meta)
        assert rebuilt.hash == ""
        assert rebuilt.content == item.content
        assert rebuilt.created_at == item.created_at

    def test_metadata_values_are_stringified(self):
        item = MemoryItem.new("u", "x", metadata={"count": 3})
        assert item.metadata == {"count": "3"}

    def test_dict_round_trip(self):
        item = MemoryItem.new("u", "content", "fact", run_id="run-1", metadata={"k": "v"})
        assert MemoryItem.from_dict(item.to_dict()) == item

    def test_from_dict_applies_defaults(self):
        item = MemoryItem.from_dict({"id": "1", "user_id": "u", "content": "c"})
        assert item.memory_type == "general"
        assert item.metadata == {}
        assert item.agent_id is None

    @pytest.mark.parametrize(
        "data",
        [
            "not a dict",
            {"user_id": "u", "content": "c"},
            {"id": 5, "user_id": "u", "content": "c"},
            {"id": "1", "user_id": "u", "content": "c", "metadata": ["x"]},
        ],
    )
    def test_from_dict_rejects_malformed_records(self, data):
        with pytest.raises(SerializationError):
            MemoryItem.from_dict(data)


def test_search_result_item_to_dict_includes_score():
    item = MemoryItem.new("u", "hello")
    data = SearchResultItem(item, 0.75).to_dict()
    assert data["score"] == 0.75
    assert data["content"] == "hello"
