"""Tests for the bounded completion and summary caches."""

from __future__ import annotations

from wordloom.ai.memory.result_cache import BoundedResultCache, CompletionCache, SummaryCache


class _Clock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


def test_put_then_get_returns_value_and_clear_misses() -> None:
    cache = CompletionCache()

    cache.put("fp", "suggestion")
    assert cache.get("fp") == "suggestion"

    cache.clear()
    assert cache.get("fp") is None
    assert len(cache) == 0


def test_oldest_entry_is_evicted_at_capacity(telemetry_sink) -> None:
    cache: BoundedResultCache[str] = BoundedResultCache(name="test", max_entries=2)

    cache.put("a", "1")
    cache.put("b", "2")
    cache.put("a", "1b")
    cache.put("c", "3")

    assert "b" not in cache
    assert cache.get("a") == "1b"
    assert cache.get("c") == "3"
    evictions = [record.payload for record in telemetry_sink.tail() if record.name == "cache.evicted"]
    assert evictions[-1]["reason"] == "capacity"
    assert evictions[-1]["cache"] == "test"


def test_entries_expire_after_ttl(telemetry_sink) -> None:
    clock = _Clock()
    cache = CompletionCache(ttl_seconds=10, clock=clock)
    cache.put("fp", "value")

    clock.now += 9.9
    assert cache.get("fp") == "value"

    clock.now += 0.2
    assert cache.get("fp") is None
    misses = [record.payload for record in telemetry_sink.tail() if record.name == "cache.miss"]
    assert misses[-1]["reason"] == "expired"


def test_stats_track_hits_misses_and_evictions() -> None:
    cache = SummaryCache(max_entries=1)

    cache.put("k1", "summary one")
    cache.get("k1")
    cache.get("missing")
    cache.put("k2", "summary two")
    assert cache.invalidate("k2") is True
    assert cache.invalidate("k2") is False

    stats = cache.stats()

    assert stats.name == "summary"
    assert (stats.hits, stats.misses, stats.evictions) == (1, 1, 2)
    assert stats.size == 0
    assert stats.capacity == 1


def test_fingerprint_uses_cursor_neighbourhood_and_model() -> None:
    base = CompletionCache.fingerprint("x" * 500 + "tail", "after", "lmstudio", "m1")

    assert base == CompletionCache.fingerprint("y" * 500 + "x" * 196 + "tail", "after", "lmstudio", "m1")
    assert base != CompletionCache.fingerprint("x" * 500 + "tail!", "after", "lmstudio", "m1")
    assert base != CompletionCache.fingerprint("x" * 500 + "tail", "after", "lmstudio", "m2")
    assert base != CompletionCache.fingerprint("x" * 500 + "tail", "after", "ollama", "m1")
    assert CompletionCache.fingerprint("text", "a" * 50 + "one", "p", "m") == CompletionCache.fingerprint(
        "text", "a" * 50 + "two", "p", "m"
    )


def test_summary_key_combines_document_id_and_content() -> None:
    first = SummaryCache.key_for("doc", "text")

    assert first.startswith("doc:")
    assert first == SummaryCache.key_for("doc", "text")
    assert first != SummaryCache.key_for("doc", "text 2")
    assert SummaryCache.key_for(None, "text").startswith("document:")


def test_empty_keys_are_ignored() -> None:
    cache = CompletionCache()

    cache.put("", "value")

    assert len(cache) == 0
    assert cache.get("") is None
