"""Tests for the embedders and the LRU embedding cache."""

from __future__ import annotations

import threading

import pytest

from memory_engine.embeddings import EmbeddingCache, HashEmbedder, SentenceTransformerEmbedder
from memory_engine.errors import EmbeddingError, InvalidArgumentError
from conftest import FakeEmbeddingFunction


# ---------------------------------------------------------------------------
# HashEmbedder
# ---------------------------------------------------------------------------


class TestHashEmbedder:
    def test_dimension(self):
        embedder = HashEmbedder(128)
        assert embedder.dimension() == 128
        assert len(embedder.embed("hello world")) == 128

    def test_default_dimension(self):
        assert HashEmbedder().dimension() == 384

    def test_deterministic(self):
        embedder = HashEmbedder(256)
        assert embedder.embed("same text") == embedder.embed("same text")

    def test_different_text(self):
        embedder = HashEmbedder(256)
        assert embedder.embed("text one") != embedder.embed("text two")

    def test_unit_norm_and_range(self):
        vec = HashEmbedder(64).embed("normalise me")
        assert sum(x * x for x in vec) == pytest.approx(1.0)
        assert all(-1.0 <= x <= 1.0 for x in vec)

    def test_embed_batch(self):
        embedder = HashEmbedder(64)
        vectors = embedder.embed_batch(["hello", "world", "test"])
        assert len(vectors) == 3
        assert vectors[1] == embedder.embed("world")

    def test_invalid_dimension(self):
        with pytest.raises(InvalidArgumentError):
            HashEmbedder(0)


# ---------------------------------------------------------------------------
# SentenceTransformerEmbedder
# ---------------------------------------------------------------------------


class TestSentenceTransformerEmbedder:
    def test_embed_uses_embedding_function(self):
        ef = FakeEmbeddingFunction()
        embedder = SentenceTransformerEmbedder(dimension=16, _embedding_function=ef)
        vec = embedder.embed("hello")
        assert len(vec) == 16
        assert ef.calls == 1
        assert embedder.dimension() == 16

    def test_embed_batch_is_a_single_call(self):
        ef = FakeEmbeddingFunction()
        embedder = SentenceTransformerEmbedder(dimension=16, _embedding_function=ef)
        vectors = embedder.embed_batch(["a", "b", "c"])
        assert len(vectors) == 3
        assert ef.calls == 1
        assert embedder.embed_batch([]) == []

    def test_model_failure_is_wrapped(self):
        def broken(input):  # noqa: A002
            raise RuntimeError("CUDA out of memory")

        embedder = SentenceTransformerEmbedder(_embedding_function=broken)
        with pytest.raises(EmbeddingError, match="CUDA out of memory"):
            embedder.embed("text")

    def test_wrong_vector_count_is_rejected(self):
        embedder = SentenceTransformerEmbedder(_embedding_function=lambda input: [])
        with pytest.raises(EmbeddingError):
            embedder.embed("text")


# ---------------------------------------------------------------------------
# EmbeddingCache
# ---------------------------------------------------------------------------


class TestEmbeddingCache:
    def test_put_get(self):
        cache = EmbeddingCache(10)
        cache.put("test", [0.1, 0.2, 0.3])
        assert cache.get("test") == [0.1, 0.2, 0.3]
        assert cache.get("other") is None

    def test_lru_eviction(self):
        cache = EmbeddingCache(2)
        cache.put("text1", [0.1])
        cache.put("text2", [0.2])
        cache.put("text3", [0.3])
        # text1 was least recently used
        assert cache.get("text1") is None
        assert cache.get("text2") == [0.2]
        assert cache.get("text3") == [0.3]
        assert cache.size() == 2

    def test_overflow_evicts_exactly_one(self):
        cache = EmbeddingCache(5)
        for i in range(6):
            cache.put(f"t{i}", [float(i)])
        assert cache.size() == 5
        assert not cache.contains("t0")
        assert all(cache.contains(f"t{i}") for i in range(1, 6))

    def test_get_refreshes_recency(self):
        cache = EmbeddingCache(2)
        cache.put("text1", [0.1])
        cache.put("text2", [0.2])
        cache.get("text1")
        cache.put("text3", [0.3])
        assert cache.contains("text1")
        assert not cache.contains("text2")

    def test_put_existing_updates_and_refreshes(self):
        cache = EmbeddingCache(2)
        cache.put("text1", [0.1])
        cache.put("text2", [0.2])
        cache.put("text1", [0.9])
        cache.put("text3", [0.3])
        assert cache.get("text1") == [0.9]
        assert not cache.contains("text2")

    def test_contains_does_not_refresh(self):
        cache = EmbeddingCache(2)
        cache.put("text1", [0.1])
        cache.put("text2", [0.2])
        assert cache.contains("text1")
        cache.put("text3", [0.3])
        assert not cache.contains("text1")

    def test_clear(self):
        cache = EmbeddingCache(10)
        cache.put("text1", [0.1])
        cache.put("text2", [0.2])
        assert cache.size() == 2
        cache.clear()
        assert cache.size() == 0

    def test_hit_rate_is_occupancy(self):
        cache = EmbeddingCache(10)
        assert cache.hit_rate() == 0.0
        cache.put("text1", [0.1])
        assert cache.hit_rate() == pytest.approx(0.1)

    def test_hit_and_miss_counters(self):
        cache = EmbeddingCache(10)
        cache.put("a", [1.0])
        cache.get("a")
        cache.get("b")
        assert (cache.hits, cache.misses) == (1, 1)

    def test_returned_vector_is_a_copy(self):
        cache = EmbeddingCache(10)
        cache.put("a", [1.0, 2.0])
        cache.get("a").append(3.0)
        assert cache.get("a") == [1.0, 2.0]

    def test_invalid_capacity(self):
        with pytest.raises(InvalidArgumentError):
            EmbeddingCache(0)

    def test_concurrent_puts_respect_capacity(self):
        cache = EmbeddingCache(50)

        def worker(n: int) -> None:
            for i in range(100):
                cache.put(f"{n}-{i}", [float(i)])
                cache.get(f"{n}-{i // 2}")

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(30)
        assert cache.size() == 50
