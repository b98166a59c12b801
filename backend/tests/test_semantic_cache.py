from __future__ import annotations

import asyncio
from dataclasses import asdict

import pytest

from backend.app.cache import CachedResponse, SemanticCache, cosine_similarity, embed, normalize_query
from backend.app.cache import semantic as semantic_module
from backend.app.plans.policy import Plan


def _reply(text: str = "Paris is the capital of France.") -> CachedResponse:
    return CachedResponse(text=text, model="fake-model", prompt_tokens=10, completion_tokens=8)


@pytest.fixture
def clock(monkeypatch):
    now = {"t": 1_000.0}
    monkeypatch.setattr(semantic_module, "_now", lambda: now["t"])
    return now


class TestEmbedding:
    def test_normalize(self):
        assert normalize_query("  What is   the Capital of France?? ") == "what is the capital of france"
        assert normalize_query(None) == ""

    def test_embedding_is_unit_length_and_stable(self):
        vector = embed("capital of france")
        assert len(vector) == 100
        assert round(sum(v * v for v in vector), 6) == 1.0
        assert vector == embed("Capital of France?")

    def test_empty_text_has_zero_similarity(self):
        assert cosine_similarity(embed(""), embed("hello")) == 0.0

    def test_dimension_mismatch(self):
        with pytest.raises(ValueError):
            cosine_similarity([1.0, 0.0], [1.0])


class TestLookup:
    def test_exact_repeat_hits_with_full_similarity(self, clock):
        cache = SemanticCache()
        cache.store("u1", "What is the capital of France?", _reply())
        found = cache.lookup("u1", "what is the capital of france")
        assert found.hit is True
        assert found.similarity == 1.0
        assert found.response.text == "Paris is the capital of France."
        assert found.matched_query == "What is the capital of France?"

    def test_users_are_isolated(self, clock):
        cache = SemanticCache()
        cache.store("u1", "What is the capital of France?", _reply())
        assert cache.lookup("u2", "What is the capital of France?").hit is False

    def test_below_threshold_misses(self, clock):
        cache = SemanticCache(similarity_threshold=0.85)
        cache.store("u1", "What is the capital of France?", _reply())
        found = cache.lookup("u1", "best pizza toppings for a party")
        assert found.hit is False
        assert found.similarity < 0.85

    def test_session_scoped_lookup(self, clock):
        cache = SemanticCache()
        cache.store("u1", "hello there friend", _reply("Hi!"), session_id="s1")
        assert cache.lookup("u1", "hello there friend", session_id="s2").hit is False
        assert cache.lookup("u1", "hello there friend", session_id="s1").hit is True

    def test_disabled_cache(self, clock):
        cache = SemanticCache(enabled=False)
        assert cache.store("u1", "hello", _reply()) is False
        assert cache.lookup("u1", "hello").hit is False

    def test_blank_query_is_ignored(self, clock):
        cache = SemanticCache()
        assert cache.store("u1", "   ", _reply()) is False
        assert cache.lookup("u1", "?").hit is False


class TestExpiryAndEviction:
    def test_expired_entry_is_dropped_on_lookup(self, clock):
        cache = SemanticCache(default_ttl_seconds=60)
        cache.store("u1", "weather in delhi", _reply("Sunny."))
        clock["t"] += 61
        assert cache.lookup("u1", "weather in delhi").hit is False
        assert len(cache) == 0
        assert cache.stats().expirations == 1

    def test_purge_expired(self, clock):
        cache = SemanticCache(default_ttl_seconds=60)
        cache.store("u1", "first question here", _reply())
        cache.store("u1", "second question here", _reply(), ttl_seconds=600)
        clock["t"] += 120
        assert cache.purge_expired() == 1
        assert len(cache) == 1

    def test_global_capacity_evicts_least_recently_used(self, clock):
        cache = SemanticCache(max_entries=2)
        cache.store("u1", "alpha question", _reply("a"))
        cache.store("u1", "beta question", _reply("b"))
        assert cache.lookup("u1", "alpha question").hit is True
        cache.store("u1", "gamma question", _reply("c"))
        assert len(cache) == 2
        assert sorted(entry.response.text for entry in cache._entries.values()) == ["a", "c"]
        assert cache.stats().evictions == 1

    def test_plan_caps_entries_per_user(self, clock):
        cache = SemanticCache()
        for i in range(12):
            cache.store("u1", f"question number {i} about topic {i * 7}", _reply(), plan=Plan.STARTER)
        cache.store("u2", "other user question", _reply(), plan=Plan.STARTER)
        assert len(cache) == 11
        assert cache.clear_user("u1") == 10

    def test_storing_same_query_overwrites(self, clock):
        cache = SemanticCache()
        cache.store("u1", "capital of france", _reply("old"))
        cache.store("u1", "Capital of France?", _reply("new"))
        assert len(cache) == 1
        assert cache.lookup("u1", "capital of france").response.text == "new"


class TestStats:
    def test_hit_rate_and_similarity(self, clock):
        cache = SemanticCache()
        cache.store("u1", "capital of france", _reply())
        cache.lookup("u1", "capital of france")
        cache.lookup("u1", "something unrelated entirely")
        stats = asdict(cache.stats())
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["hit_rate"] == 0.5
        assert stats["avg_similarity"] == 1.0
        assert stats["entries"] == 1


def test_sweeper_purges_in_background(clock):
    async def _run():
        cache = SemanticCache(default_ttl_seconds=1, sweep_interval_seconds=0)
        cache.store("u1", "short lived entry", _reply())
        clock["t"] += 5
        cache.start_sweeper()
        for _ in range(5):
            await asyncio.sleep(0)
        await cache.stop_sweeper()
        return len(cache)

    assert asyncio.run(_run()) == 0
