"""Tests for MemoryConfig."""

from __future__ import annotations

import dataclasses
import re

import pytest

from memory_engine.config import MemoryConfig
from memory_engine.dedup import DeduplicationStrategy
from memory_engine.errors import ConfigError


class TestDefaults:
    def test_defaults(self):
        config = MemoryConfig()
        assert config.vector_dimension == 384
        assert config.collection_prefix == "memory"
        assert config.batch_size == 32
        assert config.cache_size == 1024
        assert config.dedup_strategy is DeduplicationStrategy.NONE
        assert config.similarity_threshold == 0.95
        assert config.backend == "memory"
        assert config.embedder == "hash"

    def test_collection_name(self):
        assert MemoryConfig().collection_name("alice") == "memory_alice"
        assert MemoryConfig(collection_prefix="agent").collection_name("u1") == "agent_u1"

    @pytest.mark.parametrize("user_id", ["alice@example.com", "bob smith", "carol_", "_dave", "x" * 40, "@@@"])
    def test_unsafe_user_ids_get_valid_distinct_names(self, user_id):
        name = MemoryConfig().collection_name(user_id)
        assert re.fullmatch(r"[A-Za-z0-9][A-Za-z0-9_-]{1,61}[A-Za-z0-9]", name)
        assert name.startswith("memory_")
        assert name != MemoryConfig().collection_name(user_id + "!")

    def test_frozen(self):
        with pytest.raises(dataclasses.FrozenInstanceError):
            MemoryConfig().batch_size = 10

    def test_strategy_string_is_coerced(self):
        assert MemoryConfig(dedup_strategy="exact").dedup_strategy is DeduplicationStrategy.EXACT


class TestValidation:
    @pytest.mark.parametrize(
        "kwargs",
        [
            {"vector_dimension": 0},
            {"batch_size": 0},
            {"cache_size": -1},
            {"similarity_threshold": 1.5},
            {"dedup_strategy": "fuzzy"},
            {"collection_prefix": ""},
            {"collection_prefix": "bad prefix"},
            {"collection_prefix": "memory_x"},
            {"collection_prefix": "trailing-"},
            {"backend": "postgres"},
            {"embedder": "openai"},
        ],
    )
    def test_invalid_values_raise(self, kwargs):
        with pytest.raises(ConfigError):
            MemoryConfig(**kwargs)


class TestFromEnv:
    def test_empty_environment_gives_defaults(self):
        assert MemoryConfig.from_env({}) == MemoryConfig()

    def test_overrides(self):
        config = MemoryConfig.from_env(
            {
                "MEMORY_ENGINE_DIMENSION": "64",
                "MEMORY_ENGINE_COLLECTION_PREFIX": "agent",
                "MEMORY_ENGINE_BATCH_SIZE": "8",
                "MEMORY_ENGINE_CACHE_SIZE": "10",
                "MEMORY_ENGINE_DEDUP": "similarity",
                "MEMORY_ENGINE_SIMILARITY": "0.9",
                "MEMORY_ENGINE_BACKEND": "chroma",
                "MEMORY_ENGINE_DB_PATH": "/tmp/mem",
            }
        )
        assert config.vector_dimension == 64
        assert config.collection_prefix == "agent"
        assert config.batch_size == 8
        assert config.cache_size == 10
        assert config.dedup_strategy is DeduplicationStrategy.SIMILARITY
        assert config.similarity_threshold == 0.9
        assert config.backend == "chroma"
        assert config.db_path == "/tmp/mem"

    def test_non_numeric_value_raises(self):
        with pytest.raises(ConfigError, match="MEMORY_ENGINE_DIMENSION"):
            MemoryConfig.from_env({"MEMORY_ENGINE_DIMENSION": "large"})

    def test_reads_process_environment(self, monkeypatch):
        monkeypatch.setenv("MEMORY_ENGINE_BATCH_SIZE", "4")
        assert MemoryConfig.from_env().batch_size == 4
